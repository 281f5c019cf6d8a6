import asyncio
import logging
from typing import Dict, List, Optional, Set

from combosim.engine.combo import hand_satisfies
from combosim.engine.fingerprint import fingerprint, intern_inputs
from combosim.engine.parser import parse_combo, parse_deck
from combosim.engine.sampler import ByteSource, sample_hand
from combosim.models import (
    ParseResult,
    SampleHand,
    SimulationRequest,
    SimulationResult,
    SimulationStatus,
    TextSimulationRequest,
)
from combosim.services.session import FingerprintUnchanged, SimulationError, SimulationSession

logger = logging.getLogger(__name__)


def parse_text_request(request: TextSimulationRequest) -> ParseResult:
    deck, deck_warnings = parse_deck(request.deck_text)
    combo, combo_warnings = parse_combo(request.combo_text)
    return ParseResult(
        deck=deck,
        combo=combo,
        warnings=deck_warnings + combo_warnings,
        fingerprint=fingerprint(deck, combo, request.hand_size, request.trials),
    )


def sample_text_request(request: TextSimulationRequest) -> SampleHand:
    """Deal one example hand and report whether it makes any combo."""
    parsed = parse_text_request(request)
    interned = intern_inputs(parsed.deck, parsed.combo)
    labels = {card_id: card for card, card_id in interned.card_ids.items()}
    drawn = sample_hand(interned.deck, request.hand_size, ByteSource(seed=request.seed))
    hand = [labels[card_id] for card_id in drawn]
    return SampleHand(hand=hand, satisfied=hand_satisfies(hand, parsed.deck, parsed.combo), warnings=parsed.warnings)


def to_simulation_request(request: TextSimulationRequest, parsed: ParseResult) -> SimulationRequest:
    return SimulationRequest(
        deck=parsed.deck,
        combo=parsed.combo,
        hand_size=request.hand_size,
        trials=request.trials,
        seed=request.seed,
    )


class InMemorySimulationRunner:
    """
    Tracks simulations by id on top of a single SimulationSession.

    All methods run on the event loop thread, which is the session's only
    orchestrating context. Starting a simulation supersedes any that is still
    running; the superseded one ends with status "superseded".
    """

    def __init__(self, session: SimulationSession) -> None:
        self.session = session
        self._status: Dict[str, SimulationStatus] = {}
        self._results: Dict[str, SimulationResult] = {}
        self._tasks: Set[asyncio.Task] = set()

    def start(self, sim_id: str, request: TextSimulationRequest) -> SimulationStatus:
        parsed = parse_text_request(request)
        sim_request = to_simulation_request(request, parsed)
        try:
            key, cached = self.session.lookup(sim_request, request.skip_if_unchanged, parsed.warnings)
        except FingerprintUnchanged:
            status = SimulationStatus(status="skipped", generation=self.session.generation, trials=request.trials)
            self._status[sim_id] = status
            return status
        if cached is not None:
            self._results[sim_id] = cached
            status = SimulationStatus(status="done", generation=cached.generation, trials=request.trials)
            self._status[sim_id] = status
            return status

        dispatch = self.session.dispatch(sim_request, key)
        dispatch.warnings = parsed.warnings
        status = SimulationStatus(status="running", generation=dispatch.generation, trials=request.trials)
        self._status[sim_id] = status
        task = asyncio.get_running_loop().create_task(self._collect(sim_id, dispatch))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return status

    async def _collect(self, sim_id: str, dispatch) -> None:
        status = self._status[sim_id]
        try:
            result = await self.session.collect_async(dispatch)
        except SimulationError as exc:
            self._status[sim_id] = status.model_copy(update={"status": "error", "error": str(exc)})
            return
        if result is None:
            self._status[sim_id] = status.model_copy(update={"status": "superseded"})
            return
        self._results[sim_id] = result
        self._status[sim_id] = status.model_copy(update={"status": "done"})

    async def estimate(self, request: TextSimulationRequest) -> Optional[SimulationResult]:
        """Run a request and wait for it. None when skipped or superseded."""
        parsed = parse_text_request(request)
        sim_request = to_simulation_request(request, parsed)
        try:
            key, cached = self.session.lookup(sim_request, request.skip_if_unchanged, parsed.warnings)
        except FingerprintUnchanged:
            return None
        if cached is not None:
            return cached
        dispatch = self.session.dispatch(sim_request, key)
        dispatch.warnings = parsed.warnings
        return await self.session.collect_async(dispatch)

    def get(self, sim_id: str) -> Optional[SimulationResult]:
        return self._results.get(sim_id)

    def status(self, sim_id: str) -> Optional[SimulationStatus]:
        return self._status.get(sim_id)

    async def wait_idle(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def cache_snapshot(self) -> List:
        return [list(pair) for pair in self.session.cache.to_list()]

    def close(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        self.session.close()
        logger.info("Simulation runner closed")
