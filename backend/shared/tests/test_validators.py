import pytest

from lobby.server.settings import LobbyServerSettings
from shared.validators import parse_origin_list


class TestParseOriginList:
    def test_list_passes_through(self):
        assert parse_origin_list(["http://a", "http://b"]) == ["http://a", "http://b"]

    def test_json_array(self):
        assert parse_origin_list('["http://a", "http://b"]') == ["http://a", "http://b"]

    def test_comma_separated_with_whitespace(self):
        assert parse_origin_list(" http://a , http://b ,") == ["http://a", "http://b"]

    def test_empty_string_means_none(self):
        assert parse_origin_list("  ") == []

    def test_malformed_json(self):
        with pytest.raises(ValueError, match="Invalid JSON array"):
            parse_origin_list('["http://a"')

    def test_json_must_hold_strings(self):
        with pytest.raises(ValueError, match="array of strings"):
            parse_origin_list("[1, 2]")


class TestEnvSource:
    def test_comma_separated_env_value(self, monkeypatch):
        monkeypatch.setenv("LOBBY_CORS_ORIGINS", "http://a,http://b")

        assert LobbyServerSettings().cors_origins == ["http://a", "http://b"]

    def test_json_env_value(self, monkeypatch):
        monkeypatch.setenv("LOBBY_CORS_ORIGINS", '["http://a"]')

        assert LobbyServerSettings().cors_origins == ["http://a"]
