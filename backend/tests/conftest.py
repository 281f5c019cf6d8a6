"""Shared pytest fixtures."""

from concurrent.futures import ThreadPoolExecutor

import pytest

from combosim.core.config import Settings
from combosim.models import Requirement, SimulationRequest
from combosim.services.session import SimulationSession


@pytest.fixture
def pair_request():
    """Two copies each of two cards; exact pair of card a in a 2-card hand."""
    return SimulationRequest(
        deck=["card a"] * 2 + ["card b"] * 2,
        combo=[[[Requirement.exactly("card a", 2)]]],
        hand_size=2,
        trials=20_000,
        seed=3,
    )


@pytest.fixture
def session():
    """Session backed by threads so tests avoid spawning processes."""
    executor = ThreadPoolExecutor(max_workers=2)
    with SimulationSession(Settings(workers=2, cache_capacity=3), executor=executor) as s:
        yield s
    executor.shutdown(wait=True)
