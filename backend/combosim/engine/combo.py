from collections import Counter
from typing import Dict, Iterable, List, Sequence, Tuple

from combosim.models import Combo, Requirement

# (card_id, min, max, in_deck) - plain tuples keep the per-trial loop cheap.
InternedRequirement = Tuple[int, int, int, bool]
InternedCombo = List[List[List[InternedRequirement]]]


def requirement_met(hand_count: int, deck_count: int, low: int, high: int, in_deck: bool) -> bool:
    if in_deck:
        return deck_count - hand_count >= low
    return low <= hand_count <= high


def satisfies(hand_counts: Sequence[int], deck_counts: Sequence[int], combo: InternedCombo) -> bool:
    """
    True when at least one AND-group has every OR-group satisfied.

    Both count arrays are indexed by interned card id. An empty AND-group is
    vacuously satisfied; an empty combo never is.
    """
    for and_group in combo:
        for or_group in and_group:
            for card, low, high, in_deck in or_group:
                if requirement_met(hand_counts[card], deck_counts[card], low, high, in_deck):
                    break
            else:
                break
        else:
            return True
    return False


def hand_satisfies(hand: Iterable[str], deck: Iterable[str], combo: Combo) -> bool:
    """Label-keyed variant of `satisfies` for parsed structures."""
    hand_counts: Dict[str, int] = Counter(hand)
    deck_counts: Dict[str, int] = Counter(deck)

    def met(req: Requirement) -> bool:
        return requirement_met(hand_counts.get(req.card, 0), deck_counts.get(req.card, 0), req.min, req.max, req.in_deck)

    return any(all(any(met(req) for req in or_group) for or_group in and_group) for and_group in combo)
