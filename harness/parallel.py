"""
harness/parallel.py - Parallel Seed Runner

Runs independent (config, seed) units in a process or thread pool. Each
worker builds its own oracle, so no state is shared between runs. Results
come back in input order whatever order the workers finish in.
"""

from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor, as_completed
from dataclasses import replace
from typing import Iterable, List, Optional

from .cycle import run_events
from .types_config import RunConfig
from .types_result import RunResult


def seed_configs(config: RunConfig, seeds: Iterable[int]) -> List[RunConfig]:
    """One config per seed, everything else shared."""
    return [replace(config, seed=int(s)) for s in seeds]


def run_configs(configs: List[RunConfig], max_workers: Optional[int] = None,
                use_processes: bool = True) -> List[RunResult]:
    """
    Run every config with its reference oracle, in parallel.

    Args:
        configs: Independent run configurations
        max_workers: Pool size; 1 runs inline without a pool
        use_processes: Process pool when True, thread pool otherwise

    Returns:
        RunResults in the order of configs

    Raises:
        StopRule: the first failure among the workers, unchanged
    """
    if max_workers == 1 or len(configs) <= 1:
        return [run_events(c) for c in configs]

    results: List[Optional[RunResult]] = [None] * len(configs)
    executor_class = ProcessPoolExecutor if use_processes else ThreadPoolExecutor
    with executor_class(max_workers=max_workers) as executor:
        futures = {executor.submit(run_events, c): i for i, c in enumerate(configs)}
        for future in as_completed(futures):
            # result() re-raises the worker's exception
            results[futures[future]] = future.result()
    return results


def run_seeds(config: RunConfig, seeds: Iterable[int], max_workers: Optional[int] = None,
              use_processes: bool = True) -> List[RunResult]:
    """Run one config over several seeds; results follow the seed order."""
    return run_configs(seed_configs(config, seeds), max_workers, use_processes)
