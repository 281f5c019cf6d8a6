import asyncio
from concurrent.futures import Executor, Future
from concurrent.futures.process import BrokenProcessPool

import pytest

from combosim.core.config import Settings
from combosim.models import Requirement, SimulationRequest
from combosim.services import session as session_module
from combosim.services.session import InlineExecutor, SimulationError, SimulationSession


def test_simulate_then_cache_hit(session, pair_request):
    first = session.simulate(pair_request)
    assert first is not None and not first.cached
    assert first.successful_trials is not None and 0 <= first.successful_trials <= pair_request.trials
    assert abs(first.probability - 1 / 6) < 0.02
    assert first.meta["workers"] == "2"

    second = session.simulate(pair_request)
    assert second.cached
    assert second.probability == first.probability
    assert second.fingerprint == first.fingerprint
    assert second.generation == first.generation + 1


def test_skip_if_unchanged(session, pair_request):
    assert session.simulate(pair_request, skip_if_unchanged=True) is not None
    assert session.simulate(pair_request, skip_if_unchanged=True) is None
    changed = pair_request.model_copy(update={"hand_size": 3})
    assert session.simulate(changed, skip_if_unchanged=True) is not None


def test_superseded_dispatch_is_dropped(session, pair_request):
    stale = session.dispatch(pair_request)
    other = pair_request.model_copy(update={"trials": 1_000})
    current = session.dispatch(other)
    assert session.collect(stale) is None
    result = session.collect(current)
    assert result is not None
    assert result.trials == 1_000
    assert result.generation == current.generation == stale.generation + 1
    # only the current result is cached
    assert [key for key, _ in session.cache.to_list()] == [current.cache_key]


def test_collect_async(session, pair_request):
    dispatch = session.dispatch(pair_request)
    result = asyncio.run(session.collect_async(dispatch))
    assert result is not None and result.generation == dispatch.generation


def test_cache_capacity_bounded(session, pair_request):
    for trials in (100, 200, 300, 400):
        session.simulate(pair_request.model_copy(update={"trials": trials}))
    assert len(session.cache) == 3


def test_worker_failure_raises_and_resets_fingerprint(monkeypatch, pair_request):
    def broken(task):
        raise RuntimeError("boom")

    monkeypatch.setattr(session_module, "run_share", broken)
    with SimulationSession(Settings(workers=2, inline_below=1_000_000)) as s:
        with pytest.raises(SimulationError):
            s.simulate(pair_request)
        assert s.last_fingerprint is None
        assert len(s.cache) == 0


def test_small_runs_stay_inline():
    req = SimulationRequest(deck=["a"] * 3, combo=[[[Requirement.at_least("a", 1)]]], hand_size=1, trials=50)
    with SimulationSession(Settings(workers=4, inline_below=100)) as s:
        result = s.simulate(req)
        assert result.probability == 1.0
        assert s._executor is None


def test_seed_is_part_of_the_cache_key(session, pair_request):
    first = session.simulate(pair_request)
    reseeded = session.simulate(pair_request.model_copy(update={"seed": 4}))
    assert not reseeded.cached
    assert reseeded.fingerprint == first.fingerprint
    unseeded = session.simulate(pair_request.model_copy(update={"seed": None}))
    assert not unseeded.cached
    again = session.simulate(pair_request)
    assert again.cached and again.probability == first.probability


def test_new_seed_is_not_skipped_as_unchanged(session, pair_request):
    session.simulate(pair_request, skip_if_unchanged=True)
    assert session.simulate(pair_request.model_copy(update={"seed": 9}), skip_if_unchanged=True) is not None


def test_seeded_runs_reproduce_across_sessions(pair_request):
    settings = Settings(workers=2, inline_below=1_000_000)
    with SimulationSession(settings) as a, SimulationSession(settings) as b:
        assert a.simulate(pair_request).successful_trials == b.simulate(pair_request).successful_trials


class FlakyPool(Executor):
    """The first pool ever built is broken, the way a pool is after a worker dies."""

    def __init__(self, pools, fail_on_submit):
        self.broken = not pools
        self.fail_on_submit = fail_on_submit
        self.shut_down = False
        pools.append(self)

    def submit(self, fn, /, *args, **kwargs):
        if self.broken and self.fail_on_submit:
            raise BrokenProcessPool("a worker died")
        if self.broken:
            future = Future()
            future.set_exception(BrokenProcessPool("a worker died"))
            return future
        return InlineExecutor().submit(fn, *args, **kwargs)

    def shutdown(self, wait=True, *, cancel_futures=False):
        self.shut_down = True


@pytest.mark.parametrize("fail_on_submit", [True, False])
def test_broken_pool_is_replaced(monkeypatch, pair_request, fail_on_submit):
    pools = []
    monkeypatch.setattr(session_module, "ProcessPoolExecutor", lambda max_workers: FlakyPool(pools, fail_on_submit))
    with SimulationSession(Settings(workers=2)) as s:
        with pytest.raises(SimulationError):
            s.simulate(pair_request)
        assert s.last_fingerprint is None
        assert pools[0].shut_down

        result = s.simulate(pair_request)
        assert result is not None and not result.cached
        assert len(pools) == 2
