"""Typed domain exceptions for round and ranking rule violations.

Raised by the ranking validator and the round coordinator. The client
session catches GameRuleError at its boundary and turns it into a failed
ActionResult carrying the message.
"""


class GameRuleError(Exception):
    """Base exception for game rule violations."""


class InvalidRankingError(GameRuleError):
    """Ranking is not a complete permutation of the round's cards onto 1..N."""


class InvalidPhaseError(GameRuleError):
    """Action is not valid in the round's (or room's) current phase."""


class RoundNotFoundError(GameRuleError):
    """The referenced round (or its room) does not exist."""


class NotEnoughPlayersError(GameRuleError):
    """Fewer connected players than a round needs."""


class NotAuthorizedError(GameRuleError):
    """The acting player does not hold the role the action requires.

    Attributes:
        action: The attempted action (e.g. "submit_picker_ranking").
        player_id: The acting player's id.
        required_role: The role the action needs ("picker", "guesser", "host").

    """

    def __init__(self, *, action: str, player_id: str, required_role: str) -> None:
        self.action = action
        self.player_id = player_id
        self.required_role = required_role
        super().__init__(f"Only the {required_role} can {action.replace('_', ' ')}")
