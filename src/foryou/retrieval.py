"""
Parallel retrieval helpers shared by the feed and reel orchestrators.

Every source call runs in a thread pool and is isolated: an exception or a
timeout yields None for that source, is logged, and is counted in
telemetry. Nothing here raises.
"""

import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Any, Callable, Dict, List, Optional

from core.logging import get_logger
from core.telemetry import NoOpTelemetry, Telemetry
from core.utils import unique_first
from foryou.candidate_factory import normalize_candidate
from foryou.models import Candidate
from foryou.profile import Profile, top_handles_by_score
from foryou.sources import CandidateSource


logger = get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = 8.0
DEFAULT_MAX_WORKERS = 4


def run_isolated(
    tasks: Dict[str, Callable[[], Any]],
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    max_workers: int = DEFAULT_MAX_WORKERS,
    telemetry: Optional[Telemetry] = None,
) -> Dict[str, Any]:
    """
    Run named zero-argument callables in parallel.

    Args:
        tasks: name -> callable
        timeout: Overall deadline in seconds for all tasks
        max_workers: Thread pool size
        telemetry: Receives 'source.<name>.error' / '.timeout' counters

    Returns:
        name -> result, or None for tasks that failed or timed out
    """
    telemetry = telemetry or NoOpTelemetry()
    results: Dict[str, Any] = {name: None for name in tasks}
    if not tasks:
        return results

    deadline = time.monotonic() + max(0.0, timeout)
    executor = ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(tasks))))
    try:
        futures = {name: executor.submit(fn) for name, fn in tasks.items()}
        for name, future in futures.items():
            try:
                results[name] = future.result(timeout=max(0.0, deadline - time.monotonic()))
            except FutureTimeout:
                future.cancel()
                telemetry.increment(f"source.{name}.timeout")
                logger.warning("Candidate source timed out", source=name, timeout_s=timeout)
            except Exception as e:
                telemetry.increment(f"source.{name}.error")
                logger.warning("Candidate source failed", source=name, error=str(e))
    finally:
        # Do not block the page on a hung source
        executor.shutdown(wait=False, cancel_futures=True)
    return results


def profile_seed_handles(profile: Profile, limit: int) -> List[str]:
    """Recent handles first, then handles by raw score."""
    return unique_first([*profile.signals.recent_handles, *top_handles_by_score(profile)], limit)


def fetch_products_by_handle(
    source: CandidateSource,
    handles: List[str],
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    max_workers: int = DEFAULT_MAX_WORKERS,
    telemetry: Optional[Telemetry] = None,
) -> List[Candidate]:
    """Look up products in parallel; failed or missing lookups are skipped."""
    if not handles:
        return []
    results = run_isolated(
        {handle: (lambda h=handle: source.product_by_handle(h)) for handle in handles},
        timeout=timeout,
        max_workers=max_workers,
        telemetry=telemetry,
    )
    out = []
    for handle in handles:
        candidate = normalize_candidate(results.get(handle))
        if candidate is not None:
            out.append(candidate)
    return out
