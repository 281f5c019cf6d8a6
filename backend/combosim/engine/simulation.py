import math
import multiprocessing as mp
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

from combosim.engine.combo import InternedCombo, satisfies
from combosim.engine.fingerprint import fingerprint, intern_inputs
from combosim.engine.sampler import DEFAULT_CHUNK_SIZE, ByteSource, draw_hand
from combosim.models import SimulationRequest, SimulationResult

# Offset between per-worker seeds so seeded shares draw disjoint streams.
SEED_STRIDE = 1_000_000_007


@dataclass
class ShareTask:
    """One worker's slice of a dispatch. Pickled, so every worker gets its own copy."""
    generation: int
    worker: int
    trials: int
    hand_size: int
    deck: List[int]
    deck_counts: List[int]
    combo: InternedCombo
    seed: Optional[int] = None
    chunk_size: int = DEFAULT_CHUNK_SIZE


@dataclass
class ShareResult:
    generation: int
    worker: int
    trials: int
    successful_trials: int


class StaleResultError(RuntimeError):
    pass


def default_worker_count() -> int:
    return max(1, mp.cpu_count() - 1)


def split_trials(total: int, workers: int) -> List[int]:
    """Equal integer shares with the whole remainder on worker 0."""
    if workers < 1:
        raise ValueError("workers must be at least 1")
    if total < 0:
        raise ValueError("total trials must not be negative")
    base, remainder = divmod(total, workers)
    shares = [base] * workers
    shares[0] += remainder
    return shares


def run_trials(
    deck: List[int],
    combo: InternedCombo,
    deck_counts: Sequence[int],
    hand_size: int,
    trials: int,
    source: ByteSource,
) -> int:
    """Count the trials whose drawn hand satisfies `combo`. `deck` is scratch."""
    hand_counts = [0] * len(deck_counts)
    zeros = [0] * len(deck_counts)
    successes = 0
    for _ in range(trials):
        hand_counts[:] = zeros
        draw_hand(deck, hand_size, source, hand_counts)
        if satisfies(hand_counts, deck_counts, combo):
            successes += 1
    return successes


def run_share(task: ShareTask) -> ShareResult:
    """
    Worker entry point, kept at module level for multiprocessing pickle
    compatibility. The deck list is copied so the sampler never touches a
    caller's array.
    """
    seed = None if task.seed is None else task.seed + task.worker * SEED_STRIDE
    source = ByteSource(seed=seed, chunk_size=task.chunk_size)
    successes = run_trials(list(task.deck), task.combo, task.deck_counts, task.hand_size, task.trials, source)
    return ShareResult(generation=task.generation, worker=task.worker, trials=task.trials, successful_trials=successes)


def build_share_tasks(
    request: SimulationRequest,
    workers: int,
    generation: int,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> List[ShareTask]:
    interned = intern_inputs(request.deck, request.combo)
    tasks = []
    for worker, share in enumerate(split_trials(request.trials, workers)):
        if share == 0:
            continue
        tasks.append(
            ShareTask(
                generation=generation,
                worker=worker,
                trials=share,
                hand_size=request.hand_size,
                deck=list(interned.deck),
                deck_counts=list(interned.deck_counts),
                combo=interned.combo,
                seed=request.seed,
                chunk_size=chunk_size,
            )
        )
    return tasks


def binomial_std_error(probability: float, trials: int) -> float:
    if trials <= 0:
        return 0.0
    return math.sqrt(max(probability * (1.0 - probability), 0.0) / trials)


def aggregate_shares(results: Iterable[ShareResult], generation: int, expected_workers: int, total_trials: int) -> int:
    """
    Sum successes for one dispatch.

    Results from other generations are ignored. Exactly one result per
    dispatched worker must be present and the shares must add up to the
    requested trial count.
    """
    current = [r for r in results if r.generation == generation]
    if not current and expected_workers:
        raise StaleResultError(f"no results for generation {generation}")
    workers = {r.worker for r in current}
    if len(workers) != len(current) or len(current) != expected_workers:
        raise ValueError(f"expected {expected_workers} worker results, got {len(current)}")
    if sum(r.trials for r in current) != total_trials:
        raise ValueError("worker shares do not add up to the requested trials")
    return sum(r.successful_trials for r in current)


def run_simulation(request: SimulationRequest, workers: int = 1, chunk_size: int = DEFAULT_CHUNK_SIZE) -> SimulationResult:
    """Run every share in-process. Used for small runs and in tests."""
    tasks = build_share_tasks(request, workers, generation=0, chunk_size=chunk_size)
    results = [run_share(task) for task in tasks]
    successes = aggregate_shares(results, 0, len(tasks), request.trials)
    probability = successes / request.trials
    return SimulationResult(
        probability=probability,
        successful_trials=successes,
        trials=request.trials,
        fingerprint=fingerprint(request.deck, request.combo, request.hand_size, request.trials),
        generation=0,
        std_error=binomial_std_error(probability, request.trials),
        meta={"workers": str(len(tasks)), "mode": "inline"},
    )
