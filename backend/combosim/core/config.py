"""Runtime settings, read from the environment."""

import os
from dataclasses import dataclass

from combosim.engine.sampler import DEFAULT_CHUNK_SIZE
from combosim.engine.simulation import default_worker_count


@dataclass(frozen=True)
class Settings:
    """
    Attributes:
        cache_capacity: Number of fingerprints kept in the result cache.
        workers: Size of the worker process pool.
        byte_chunk: Bytes fetched per refill of a worker's random pool.
        log_level: Root logging level.
        inline_below: Requests with fewer trials run in-process, skipping the pool.
    """

    cache_capacity: int = 10
    workers: int = 1
    byte_chunk: int = DEFAULT_CHUNK_SIZE
    log_level: str = "INFO"
    inline_below: int = 0

    @classmethod
    def from_env(cls) -> "Settings":
        """
        Environment variables:
            COMBOSIM_CACHE_CAPACITY (default: 10)
            COMBOSIM_WORKERS (default: CPU count - 1, at least 1)
            COMBOSIM_BYTE_CHUNK (default: 65536)
            COMBOSIM_LOG_LEVEL (default: INFO)
            COMBOSIM_INLINE_BELOW (default: 0, always use the pool)
        """
        return cls(
            cache_capacity=max(1, int(os.getenv("COMBOSIM_CACHE_CAPACITY", "10"))),
            workers=max(1, int(os.getenv("COMBOSIM_WORKERS", str(default_worker_count())))),
            byte_chunk=int(os.getenv("COMBOSIM_BYTE_CHUNK", str(DEFAULT_CHUNK_SIZE))),
            log_level=os.getenv("COMBOSIM_LOG_LEVEL", "INFO"),
            inline_below=int(os.getenv("COMBOSIM_INLINE_BELOW", "0")),
        )
