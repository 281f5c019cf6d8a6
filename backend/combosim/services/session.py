import asyncio
import concurrent.futures
import logging
from concurrent.futures import BrokenExecutor, Executor, Future, ProcessPoolExecutor
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from combosim.core.config import Settings
from combosim.engine.fingerprint import fingerprint
from combosim.engine.simulation import ShareResult, aggregate_shares, binomial_std_error, build_share_tasks, run_share
from combosim.models import SimulationRequest, SimulationResult
from combosim.services.cache import ResultCache

logger = logging.getLogger(__name__)


class SimulationError(RuntimeError):
    """A worker failed; the partial estimate is discarded."""


class FingerprintUnchanged(Exception):
    """The inputs match the last simulated request."""


class InlineExecutor(Executor):
    """Runs submitted work immediately in the calling thread."""

    def submit(self, fn, /, *args, **kwargs) -> Future:
        future: Future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as exc:
            future.set_exception(exc)
        return future


def cache_key(request: SimulationRequest, key: str) -> str:
    """Seeded runs are only interchangeable with runs of the same seed."""
    return key if request.seed is None else f"{key}:seed={request.seed}"


@dataclass
class Dispatch:
    generation: int
    fingerprint: str
    trials: int
    cache_key: str = ""
    futures: List[Future] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def workers(self) -> int:
        return len(self.futures)

    def cancel(self) -> None:
        for future in self.futures:
            future.cancel()


class SimulationSession:
    """
    Owns everything that outlives a single run: the generation counter, the
    last fingerprint, the result cache and the worker pool.

    Every method must be called from one orchestrating context (a thread or an
    event loop). Workers only ever see pickled copies of their share.
    """

    def __init__(self, settings: Optional[Settings] = None, executor: Optional[Executor] = None) -> None:
        self.settings = settings or Settings.from_env()
        self.cache = ResultCache(self.settings.cache_capacity)
        self.generation = 0
        self.last_fingerprint: Optional[str] = None
        self._executor = executor
        self._owns_executor = executor is None
        self._inline = InlineExecutor()
        self._inflight: Optional[Dispatch] = None

    def __enter__(self) -> "SimulationSession":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        if self._inflight is not None:
            self._inflight.cancel()
            self._inflight = None
        self._discard_pool()

    def _discard_pool(self) -> None:
        if self._executor is not None and self._owns_executor:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None

    def _pool(self, trials: int) -> Executor:
        if trials < self.settings.inline_below:
            return self._inline
        if self._executor is None:
            self._executor = ProcessPoolExecutor(max_workers=self.settings.workers)
        return self._executor

    def _advance(self) -> int:
        """Start a new generation; whatever is still in flight becomes stale."""
        self.generation += 1
        if self._inflight is not None:
            self._inflight.cancel()
            self._inflight = None
        return self.generation

    def _fail(self, generation: int, exc: BaseException) -> SimulationError:
        self.last_fingerprint = None
        if isinstance(exc, BrokenExecutor):
            # A dead worker poisons the pool; the next dispatch builds a fresh one.
            self._discard_pool()
        logger.error("Worker failed for generation %d: %s", generation, exc)
        return SimulationError(f"worker failed: {exc}")

    def is_current(self, dispatch: Dispatch) -> bool:
        return dispatch.generation == self.generation

    def dispatch(self, request: SimulationRequest, key: Optional[str] = None) -> Dispatch:
        generation = self._advance()
        key = key or fingerprint(request.deck, request.combo, request.hand_size, request.trials)
        executor = self._pool(request.trials)
        tasks = build_share_tasks(request, self.settings.workers, generation, chunk_size=self.settings.byte_chunk)
        dispatch = Dispatch(
            generation=generation, fingerprint=key, trials=request.trials, cache_key=cache_key(request, key)
        )
        try:
            for task in tasks:
                dispatch.futures.append(executor.submit(run_share, task))
        except BrokenExecutor as exc:
            dispatch.cancel()
            raise self._fail(generation, exc) from exc
        self._inflight = dispatch
        self.last_fingerprint = dispatch.cache_key
        logger.info(
            "Dispatched generation %d: %d trials over %d workers", generation, request.trials, dispatch.workers
        )
        return dispatch

    def _finish(self, dispatch: Dispatch) -> Optional[SimulationResult]:
        if not self.is_current(dispatch):
            logger.info("Dropping stale result for generation %d (current %d)", dispatch.generation, self.generation)
            return None
        self._inflight = None
        results: List[ShareResult] = []
        for future in dispatch.futures:
            try:
                results.append(future.result())
            except Exception as exc:
                raise self._fail(dispatch.generation, exc) from exc
        successes = aggregate_shares(results, dispatch.generation, dispatch.workers, dispatch.trials)
        probability = successes / dispatch.trials
        self.cache.set(dispatch.cache_key, probability)
        return SimulationResult(
            probability=probability,
            successful_trials=successes,
            trials=dispatch.trials,
            fingerprint=dispatch.fingerprint,
            generation=dispatch.generation,
            std_error=binomial_std_error(probability, dispatch.trials),
            warnings=dispatch.warnings,
            meta={"workers": str(dispatch.workers)},
        )

    def collect(self, dispatch: Dispatch) -> Optional[SimulationResult]:
        """Block until every share reports; None if the dispatch was superseded."""
        concurrent.futures.wait(dispatch.futures)
        return self._finish(dispatch)

    async def collect_async(self, dispatch: Dispatch) -> Optional[SimulationResult]:
        if dispatch.futures:
            await asyncio.wait([asyncio.wrap_future(f) for f in dispatch.futures])
        return self._finish(dispatch)

    def lookup(
        self, request: SimulationRequest, skip_if_unchanged: bool = False, warnings: Optional[List[str]] = None
    ) -> Tuple[str, Optional[SimulationResult]]:
        """
        Resolve a request without dispatching. Returns ``(fingerprint, result)``
        where result is a cached SimulationResult, or None when the request
        must run. Raises FingerprintUnchanged when skipping an unchanged request.
        """
        key = fingerprint(request.deck, request.combo, request.hand_size, request.trials)
        stored_as = cache_key(request, key)
        if skip_if_unchanged and stored_as == self.last_fingerprint:
            logger.debug("Fingerprint unchanged, skipping simulation")
            raise FingerprintUnchanged(key)
        cached = self.cache.get(stored_as)
        if cached is None:
            return key, None
        generation = self._advance()
        self.last_fingerprint = stored_as
        logger.info("Cache hit for generation %d", generation)
        return key, SimulationResult(
            probability=cached,
            trials=request.trials,
            fingerprint=key,
            cached=True,
            generation=generation,
            std_error=binomial_std_error(cached, request.trials),
            warnings=list(warnings or []),
        )

    def simulate(
        self, request: SimulationRequest, skip_if_unchanged: bool = False, warnings: Optional[List[str]] = None
    ) -> Optional[SimulationResult]:
        """Run a request end to end. None when skipped as unchanged."""
        try:
            key, cached = self.lookup(request, skip_if_unchanged, warnings)
        except FingerprintUnchanged:
            return None
        if cached is not None:
            return cached
        dispatch = self.dispatch(request, key)
        dispatch.warnings = list(warnings or [])
        return self.collect(dispatch)
