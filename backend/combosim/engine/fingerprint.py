"""
Fingerprinting and interning of simulation inputs.

The fingerprint captures only what changes the statistics of a run: deck
size, hand size, trial count and the combo as seen through the deck counts of
the cards it mentions. Requirements on cards missing from the deck reduce to
constants (hand and deck count are both 0), so they are folded away before
hashing.
"""
import hashlib
import json
from collections import Counter
from dataclasses import dataclass
from typing import Dict, List, Sequence

import numpy as np

from combosim.engine.combo import InternedCombo, requirement_met
from combosim.models import Combo

ALWAYS = "*"


def _canonical_or_group(or_group, deck_counts: Dict[str, int]):
    options = []
    for req in or_group:
        count = deck_counts.get(req.card, 0)
        if count == 0:
            if requirement_met(0, 0, req.min, req.max, req.in_deck):
                return [ALWAYS]
            continue
        options.append([req.card, req.min, req.max, req.in_deck, count])
    # An OR-group with no live options can never hold; [] keeps that meaning.
    return sorted(options)


def canonical_form(deck: Sequence[str], combo: Combo, hand_size: int, trials: int) -> Dict:
    deck_counts = Counter(deck)
    and_groups = []
    for and_group in combo:
        or_groups = [_canonical_or_group(or_group, deck_counts) for or_group in and_group]
        and_groups.append(sorted(group for group in or_groups if group != [ALWAYS]))
    return {
        "deck_size": len(deck),
        "hand_size": hand_size,
        "trials": trials,
        "combo": sorted(and_groups),
    }


def fingerprint(deck: Sequence[str], combo: Combo, hand_size: int, trials: int) -> str:
    payload = json.dumps(canonical_form(deck, combo, hand_size, trials), sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


@dataclass
class InternedInputs:
    card_ids: Dict[str, int]
    deck: List[int]
    deck_counts: List[int]
    combo: InternedCombo

    @property
    def card_count(self) -> int:
        return len(self.card_ids)


def intern_inputs(deck: Sequence[str], combo: Combo) -> InternedInputs:
    """Map every card label in deck and combo onto a dense id in [0, K)."""
    card_ids: Dict[str, int] = {}
    for card in deck:
        card_ids.setdefault(card, len(card_ids))
    for and_group in combo:
        for or_group in and_group:
            for req in or_group:
                card_ids.setdefault(req.card, len(card_ids))

    deck_ids = [card_ids[card] for card in deck]
    counts = np.bincount(np.asarray(deck_ids, dtype=np.int64), minlength=len(card_ids))
    interned_combo: InternedCombo = [
        [[(card_ids[req.card], req.min, req.max, req.in_deck) for req in or_group] for or_group in and_group]
        for and_group in combo
    ]
    return InternedInputs(card_ids=card_ids, deck=deck_ids, deck_counts=counts.tolist(), combo=interned_combo)
