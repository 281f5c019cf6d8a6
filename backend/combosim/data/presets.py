DEFAULT_HAND_SIZE = 5
DEFAULT_TRIALS = 10_000

DEFAULT_DECK = """# List the deck, one "<count> <card name>" per line
# Comments start with a '#' and empty lines are ignored

# Total number of cards; anything not listed is padded as UNKNOWN CARD
40 total

# Each card that appears in a combo
3 card a
3 card b
3 card c
3 card d
1 card e
1 card f
1 card g"""

DEFAULT_COMBO = """# Simple one card combo
card a

# Multi-card combo, need card b and either card c or card d
card b + (card c | card d)

# A card can be required absent (0 card f), in a range (1-2 card g),
# or to stay in the deck (-1 card e)
card e + 0 card f + 1-2 card g
card b + -2 card a"""
