import os
from typing import Callable, List, MutableSequence, Optional

import numpy as np

DEFAULT_CHUNK_SIZE = 64 * 1024


class ByteSource:
    """
    Batched random bytes.

    Without a seed the pool is filled from the operating system's CSPRNG.
    With a seed it is filled from numpy's PCG64 so runs can be replayed.
    Refills only happen when the pool cannot supply a whole value.
    """

    def __init__(
        self,
        seed: Optional[int] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        fill: Optional[Callable[[int], bytes]] = None,
    ) -> None:
        if chunk_size < 2:
            raise ValueError("chunk_size must hold at least one 16-bit value")
        if fill is None:
            if seed is None:
                fill = os.urandom
            else:
                fill = np.random.default_rng(seed).bytes
        self._fill = fill
        self._chunk_size = chunk_size
        self._pool = b""
        self._offset = 0
        self.refills = 0

    def _refill(self) -> None:
        self._pool = self._fill(self._chunk_size)
        self._offset = 0
        self.refills += 1

    def read(self, width: int) -> int:
        """Return the next unsigned little-endian value of 8 or 16 bits."""
        if width == 8:
            if self._offset >= len(self._pool):
                self._refill()
            value = self._pool[self._offset]
            self._offset += 1
            return value
        if self._offset + 2 > len(self._pool):
            self._refill()
        value = self._pool[self._offset] | (self._pool[self._offset + 1] << 8)
        self._offset += 2
        return value


def value_width(deck_size: int) -> int:
    return 8 if deck_size < 256 else 16


def uniform_index(range_size: int, width: int, source: ByteSource) -> int:
    """Uniform integer in [0, range_size) with rejection of the biased tail."""
    space = 1 << width
    max_acceptable = space - (space % range_size)
    while True:
        value = source.read(width)
        if value < max_acceptable:
            return value % range_size


def draw_hand(
    deck: MutableSequence[int],
    hand_size: int,
    source: ByteSource,
    hand_counts: MutableSequence[int],
) -> int:
    """
    Partial Fisher-Yates over `deck`, counting drawn card ids into `hand_counts`.

    `deck` is used as scratch and left permuted; `hand_counts` must be zeroed
    by the caller. Returns the number of cards drawn.
    """
    deck_size = len(deck)
    drawn = min(hand_size, deck_size)
    width = value_width(deck_size)
    for position in range(drawn):
        chosen = position + uniform_index(deck_size - position, width, source)
        deck[position], deck[chosen] = deck[chosen], deck[position]
        hand_counts[deck[position]] += 1
    return drawn


def sample_hand(deck: List[int], hand_size: int, source: ByteSource) -> List[int]:
    """Draw one hand and return its card ids, mostly for inspection and tests."""
    scratch = list(deck)
    counts = [0] * (max(scratch) + 1 if scratch else 0)
    drawn = draw_hand(scratch, hand_size, source, counts)
    return scratch[:drawn]
