import random

import pytest

from game.logic.rules import DEFAULT_RULES, GameRules
from lobby.rooms.codes import generate_room_code, normalize_room_code
from lobby.rooms.exceptions import InvalidRoomCodeError


class TestGenerateRoomCode:
    def test_uses_reduced_alphabet(self):
        rng = random.Random(7)

        codes = [generate_room_code(rng=rng) for _ in range(200)]

        assert all(len(code) == 4 for code in codes)
        assert all(set(code) <= set(DEFAULT_RULES.room_code_alphabet) for code in codes)
        assert not any("I" in code or "O" in code for code in codes)

    def test_seeded_rng_is_reproducible(self):
        assert generate_room_code(rng=random.Random(3)) == generate_room_code(rng=random.Random(3))

    def test_custom_length(self):
        assert len(generate_room_code(GameRules(room_code_length=6))) == 6


class TestNormalizeRoomCode:
    @pytest.mark.parametrize("typed", ["abcd", " ABCD ", "AbCd"])
    def test_trims_and_uppercases(self, typed):
        assert normalize_room_code(typed) == "ABCD"

    @pytest.mark.parametrize("typed", ["", "ABC", "ABCDE", "AB1D", "ABIO", "AB D"])
    def test_rejects_codes_that_cannot_exist(self, typed):
        with pytest.raises(InvalidRoomCodeError, match="Room codes are 4 letters"):
            normalize_room_code(typed)
