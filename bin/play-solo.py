"""Play the solo game in a terminal.

Usage: uv run python bin/play-solo.py [--deck PATH] [--seed N]

Each round shows five cards. Rank them by typing their numbers from most
to least favourite (e.g. "3 1 5 2 4"), then recall that ranking after the
cards are shuffled. First side to 10 points wins.
"""

import argparse
import logging
import random
import sys
from pathlib import Path

# Add backend to path for imports
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "backend"))

from game.logic.deck import Deck
from game.logic.exceptions import GameRuleError
from game.logic.solo import SoloGame, SoloPhase
from shared.dal.models import RankingEntry, Winner
from shared.logging import setup_logging


def _read_order(prompt: str, cards_count: int) -> list[int] | None:
    """Read a line of card numbers; None means quit."""
    while True:
        line = input(prompt).strip().lower()
        if line in {"q", "quit"}:
            return None
        try:
            order = [int(token) for token in line.replace(",", " ").split()]
        except ValueError:
            print(f"Type {cards_count} card numbers separated by spaces, or q to quit.")
            continue
        if sorted(order) != list(range(1, cards_count + 1)):
            print(f"Use each number from 1 to {cards_count} exactly once.")
            continue
        return order


def _ranking_from_order(order: list[int], card_ids: list[str]) -> list[RankingEntry]:
    return [RankingEntry(id=card_ids[number - 1], position=position) for position, number in enumerate(order, start=1)]


def _show(game: SoloGame, card_ids: list[str]) -> None:
    cards = {card.id: card for card in game.selected_cards}
    for number, card_id in enumerate(card_ids, start=1):
        print(f"  {number}. {cards[card_id].text}")


def _play_round(game: SoloGame, rng: random.Random) -> bool:
    """Play one round; False means the player quit."""
    print(f"\n=== Round {game.current_round} | You {game.player_score} - Game {game.game_score} ===")
    dealt = game.card_ids
    _show(game, dealt)
    order = _read_order("Your ranking (best first): ", len(dealt))
    if order is None:
        return False
    game.submit_ranking(_ranking_from_order(order, dealt))

    shuffled = dealt[:]
    rng.shuffle(shuffled)
    print("\nNow recall it. The cards, shuffled:")
    _show(game, shuffled)
    order = _read_order("Your ranking again: ", len(shuffled))
    if order is None:
        return False
    game.submit_guess(_ranking_from_order(order, shuffled))

    for result in game.results:
        mark = "ok" if result.is_correct else "--"
        text = next(card.text for card in game.selected_cards if card.id == result.card_id)
        print(f"  [{mark}] {text}: ranked {result.actual_position}, recalled {result.guessed_position}")
    print(f"You scored {game.player_round_score}, the game scored {game.game_round_score}.")
    return True


def main() -> None:
    parser = argparse.ArgumentParser(description="Play the ranking memory game solo.")
    parser.add_argument("--deck", type=Path, default=None, help="Card deck JSON file (defaults to the bundled deck)")
    parser.add_argument("--seed", type=int, default=None, help="Seed for reproducible deals")
    args = parser.parse_args()

    setup_logging(level=logging.WARNING)
    deck = Deck.from_file(args.deck) if args.deck else Deck.bundled()
    rng = random.Random(args.seed)
    game = SoloGame(deck=deck, rng=rng)
    game.start_round()

    try:
        while True:
            if not _play_round(game, rng):
                break
            if game.phase is SoloPhase.GAME_OVER:
                outcome = "You win!" if game.winner is Winner.PLAYERS else "The game wins."
                print(f"\n{outcome} Final score: You {game.player_score} - Game {game.game_score}")
                if input("Play again? [y/N] ").strip().lower() != "y":
                    break
                game.reset_game()
            else:
                game.next_round()
    except GameRuleError as e:
        print(f"Error: {e}")
        sys.exit(1)
    except (EOFError, KeyboardInterrupt):
        print()


if __name__ == "__main__":
    main()
