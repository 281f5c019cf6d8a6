"""
Parsers for the line-oriented deck and combo text formats.

Deck lines look like ``3 card a``; the reserved name ``total`` sets the target
deck size and the gap is filled with ``UNKNOWN CARD``. Combo lines are
AND-groups whose terms are separated by ``+``; a term may be an OR-group
written as ``(card b | 2 card c)``. Bad lines are reported as warnings and
skipped, never fatal.
"""
import re
from typing import List, Optional, Tuple

from combosim.models import FILLER_CARD, MAX_DECK_SIZE, AndGroup, Combo, Requirement

_COUNT_LINE = re.compile(r"^(\d{1,9}) (.+)$")
_EXACT_REQ = re.compile(r"^(\d+) (.+)$")
_RANGE_REQ = re.compile(r"^(\d+)-(\d+) (.+)$")
_IN_DECK_REQ = re.compile(r"^-(\d+) (.+)$")
_OR_TERM = re.compile(r"^\((.*)\)$")


class ComboSyntaxError(ValueError):
    pass


def split_lines(text: str) -> List[str]:
    lines = (line.strip() for line in text.split("\n"))
    return [line for line in lines if line and not line.startswith("#")]


def parse_deck(text: str) -> Tuple[List[str], List[str]]:
    deck: List[str] = []
    warnings: List[str] = []
    total: Optional[int] = None
    for line in split_lines(text):
        match = _COUNT_LINE.match(line)
        if not match:
            warnings.append(f"Line with invalid format ignored: {line}.")
            continue
        count, card = int(match.group(1)), match.group(2).strip()
        if card == "total":
            if count > MAX_DECK_SIZE:
                warnings.append(f"Line with invalid format ignored: {line} (deck limit is {MAX_DECK_SIZE} cards).")
                continue
            total = count
        elif len(deck) + count > MAX_DECK_SIZE:
            warnings.append(f"Line with invalid format ignored: {line} (deck limit is {MAX_DECK_SIZE} cards).")
        else:
            deck.extend([card] * count)
    if total is not None and total > len(deck):
        deck.extend([FILLER_CARD] * (total - len(deck)))
    return deck, warnings


def parse_requirement(text: str) -> Requirement:
    text = text.strip()
    if not text:
        raise ComboSyntaxError("empty requirement")
    match = _IN_DECK_REQ.match(text)
    if match:
        return Requirement.remaining(match.group(2).strip(), int(match.group(1)))
    match = _RANGE_REQ.match(text)
    if match:
        low, high = int(match.group(1)), int(match.group(2))
        if high < low:
            raise ComboSyntaxError(f"range {low}-{high} is empty")
        return Requirement(card=match.group(3).strip(), min=low, max=high)
    match = _EXACT_REQ.match(text)
    if match:
        return Requirement.exactly(match.group(2).strip(), int(match.group(1)))
    return Requirement.at_least(text, 1)


def parse_combo_line(line: str) -> AndGroup:
    and_group: AndGroup = []
    for term in (part.strip() for part in line.split("+")):
        or_match = _OR_TERM.match(term)
        if or_match:
            and_group.append([parse_requirement(option) for option in or_match.group(1).split("|")])
        else:
            and_group.append([parse_requirement(term)])
    return and_group


def parse_combo(text: str) -> Tuple[Combo, List[str]]:
    combo: Combo = []
    warnings: List[str] = []
    for line in split_lines(text):
        try:
            combo.append(parse_combo_line(line))
        except ValueError as exc:
            warnings.append(f"Line with invalid format ignored: {line} ({exc}).")
    return combo, warnings
