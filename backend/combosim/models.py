from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, validator

# Infinity can't round-trip through JSON, so "at least n" uses a large sentinel.
UNBOUNDED = 1_000_000
FILLER_CARD = "UNKNOWN CARD"
# Positions are drawn with at most 16 random bits.
MAX_DECK_SIZE = 1 << 16


class Requirement(BaseModel):
    model_config = ConfigDict(frozen=True)

    card: str
    min: int = Field(1, ge=0)
    max: int = UNBOUNDED
    in_deck: bool = False  # at least `min` copies must stay undrawn

    @validator("max")
    def validate_max(cls, v: int, values: Dict) -> int:
        low = values.get("min")
        if low is not None and v < low:
            raise ValueError("max must be greater than or equal to min")
        return v

    @classmethod
    def at_least(cls, card: str, count: int) -> "Requirement":
        return cls(card=card, min=count, max=UNBOUNDED)

    @classmethod
    def exactly(cls, card: str, count: int) -> "Requirement":
        return cls(card=card, min=count, max=count)

    @classmethod
    def remaining(cls, card: str, count: int) -> "Requirement":
        return cls(card=card, min=count, max=UNBOUNDED, in_deck=True)


# A combo is a list of alternatives (AND-groups); each AND-group is a list of
# OR-groups that must all hold; each OR-group holds if any requirement does.
OrGroup = List[Requirement]
AndGroup = List[OrGroup]
Combo = List[AndGroup]


class SimulationRequest(BaseModel):
    deck: List[str] = Field(default_factory=list, max_length=MAX_DECK_SIZE)
    combo: Combo = Field(default_factory=list)
    hand_size: int = Field(5, ge=1)
    trials: int = Field(10_000, ge=1, le=10_000_000)
    seed: Optional[int] = Field(None, ge=0)  # reproducible byte stream when set

    @validator("combo")
    def no_empty_or_groups(cls, combo: Combo) -> Combo:
        for and_group in combo:
            for or_group in and_group:
                if not or_group:
                    raise ValueError("OR-groups must contain at least one requirement")
        return combo


class TextSimulationRequest(BaseModel):
    deck_text: str = ""
    combo_text: str = ""
    hand_size: int = Field(5, ge=1)
    trials: int = Field(10_000, ge=1, le=10_000_000)
    seed: Optional[int] = Field(None, ge=0)
    skip_if_unchanged: bool = False


class ParseResult(BaseModel):
    deck: List[str] = Field(default_factory=list)
    combo: Combo = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    fingerprint: Optional[str] = None


class SimulationStatus(BaseModel):
    status: str  # queued | running | done | skipped | superseded | error
    generation: Optional[int] = None
    trials: int = 0
    error: Optional[str] = None


class SimulationResult(BaseModel):
    probability: float
    successful_trials: Optional[int] = None  # unknown when served from cache
    trials: int
    fingerprint: str
    cached: bool = False
    generation: Optional[int] = None
    std_error: float = 0.0
    warnings: List[str] = Field(default_factory=list)
    meta: Dict[str, str] = Field(default_factory=dict)


class SampleHand(BaseModel):
    hand: List[str] = Field(default_factory=list)
    satisfied: bool
    warnings: List[str] = Field(default_factory=list)
