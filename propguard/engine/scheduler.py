"""
Periodic circuit breaker sweep.

Every tick re-evaluates all accounts in parallel so that time-based locks
(trading hours) and equity changes that did not come from a trade close are
still enforced. A tick has a wall-clock timeout; evaluations still running
when it expires are abandoned for that tick and picked up by the next one.
"""

from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, List, Dict, Any
import logging
import threading

from propguard.accounts.stores import AccountStateStore
from propguard.lib.config import SweepConfig
from propguard.lib.errors import DependencyUnavailableError, RiskEngineError
from propguard.lib.time_utils import get_utc_now, to_utc, format_timestamp
from propguard.risk.circuit_breakers import CircuitBreakerEvaluator

logger = logging.getLogger(__name__)


@dataclass
class SweepSummary:
    """Outcome of one sweep tick."""
    started_at: datetime
    evaluated: int = 0
    locked: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    timed_out: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": format_timestamp(self.started_at),
            "evaluated": self.evaluated,
            "locked": list(self.locked),
            "failed": dict(self.failed),
            "timed_out": list(self.timed_out),
        }


class BreakerSweep:
    """
    Scheduler-driven circuit breaker evaluation.

    Usage:
        sweep = BreakerSweep(engine.breaker, store, config.sweep)
        summary = sweep.run_once()

        stop = threading.Event()
        sweep.run_forever(stop)   # until stop.set()
    """

    def __init__(
        self,
        evaluator: CircuitBreakerEvaluator,
        store: AccountStateStore,
        config: Optional[SweepConfig] = None,
    ):
        self.evaluator = evaluator
        self.store = store
        self.config = config or SweepConfig()

    def run_once(self, now: Optional[datetime] = None) -> SweepSummary:
        """
        Evaluate every account once.

        Failures are logged per account and never stop the tick.
        """
        now = to_utc(now) if now else get_utc_now()
        summary = SweepSummary(started_at=now)

        try:
            account_ids = self.store.list_account_ids()
        except DependencyUnavailableError as e:
            logger.error(f"Sweep skipped, account store unavailable: {e}")
            summary.failed["*"] = str(e)
            return summary

        if not account_ids:
            return summary

        executor = ThreadPoolExecutor(max_workers=self.config.max_workers)
        try:
            futures = {
                executor.submit(self.evaluator.evaluate, account_id, None, False, now): account_id
                for account_id in account_ids
            }
            done, not_done = wait(futures, timeout=self.config.timeout_seconds)

            for future in done:
                account_id = futures[future]
                try:
                    result = future.result()
                except DependencyUnavailableError as e:
                    logger.error(f"Store unavailable for {account_id}, retrying next tick: {e}")
                    summary.failed[account_id] = str(e)
                    continue
                except RiskEngineError as e:
                    logger.warning(f"Sweep evaluation of {account_id} failed: {e}")
                    summary.failed[account_id] = str(e)
                    continue
                except Exception as e:
                    logger.exception(f"Unexpected error evaluating {account_id}")
                    summary.failed[account_id] = str(e)
                    continue

                summary.evaluated += 1
                if result.is_locked:
                    summary.locked.append(account_id)

            for future in not_done:
                future.cancel()
                summary.timed_out.append(futures[future])
        finally:
            # Do not wait for abandoned evaluations
            executor.shutdown(wait=False)

        summary.locked.sort()
        summary.timed_out.sort()
        if summary.timed_out:
            logger.warning(
                f"Sweep tick timed out after {self.config.timeout_seconds}s, "
                f"{len(summary.timed_out)} accounts deferred"
            )
        logger.info(
            f"Sweep tick: {summary.evaluated}/{len(account_ids)} evaluated, "
            f"{len(summary.locked)} locked, {len(summary.failed)} failed"
        )
        return summary

    def run_forever(self, stop_event: threading.Event, max_ticks: Optional[int] = None) -> int:
        """
        Run ticks every ``interval_seconds`` until ``stop_event`` is set.

        Returns:
            Number of ticks run
        """
        ticks = 0
        logger.info(f"Breaker sweep started (interval {self.config.interval_seconds}s)")
        while not stop_event.is_set():
            self.run_once()
            ticks += 1
            if max_ticks is not None and ticks >= max_ticks:
                break
            stop_event.wait(self.config.interval_seconds)
        logger.info(f"Breaker sweep stopped after {ticks} ticks")
        return ticks
