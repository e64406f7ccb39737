"""
Post-commit side effect execution.

Runs the audit, alert, pattern and lot average effects returned by the
decision steps. Each effect is isolated: a failure is logged and the remaining
effects still run. Nothing here can undo or block a lock that has already
been committed.
"""

from dataclasses import dataclass, field
from typing import Optional, List, Iterable
import logging

from propguard.accounts.stores import AccountStateStore, MistakePatternStore
from propguard.lib.alerts import AlertDispatcher
from propguard.lib.logging_utils import RiskLogger
from propguard.risk.effects import AuditEffect, AlertEffect, LotAverageEffect, PatternEffect, SideEffect

logger = logging.getLogger(__name__)
risk_log = RiskLogger(__name__)


@dataclass
class DispatchReport:
    """What happened to a batch of side effects."""
    applied: int = 0
    skipped: int = 0
    failures: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


class SideEffectDispatcher:
    """
    Executes side effects against the configured collaborators.

    Effects whose collaborator is not configured (e.g. alerts without an
    AlertDispatcher) are skipped with a debug log.

    Usage:
        dispatcher = SideEffectDispatcher(store, alerts=alert_dispatcher, patterns=pattern_store)
        report = dispatcher.run(decision.effects)
    """

    def __init__(
        self,
        store: Optional[AccountStateStore] = None,
        alerts: Optional[AlertDispatcher] = None,
        patterns: Optional[MistakePatternStore] = None,
    ):
        self.store = store
        self.alerts = alerts
        self.patterns = patterns

    def run(self, effects: Iterable[SideEffect]) -> DispatchReport:
        """
        Run every effect in order; never raises.

        Args:
            effects: Effects from a committed decision

        Returns:
            DispatchReport with counts and failure descriptions
        """
        report = DispatchReport()
        for effect in effects:
            name = type(effect).__name__
            try:
                if self._apply(effect):
                    report.applied += 1
                else:
                    report.skipped += 1
            except Exception as e:
                report.failures.append(f"{name}: {e}")
                risk_log.side_effect_failed(name, effect.account_id, e)
        return report

    def _apply(self, effect: SideEffect) -> bool:
        if isinstance(effect, AuditEffect):
            if self.store is None:
                logger.debug(f"No store configured, audit entry for {effect.account_id} dropped")
                return False
            self.store.append_audit_entry(effect.entry)
            return True

        if isinstance(effect, AlertEffect):
            if self.alerts is None:
                logger.debug(f"No alert dispatcher configured, alert for {effect.account_id} dropped")
                return False
            self.alerts.notify(effect.account_id, effect.payload)
            return True

        if isinstance(effect, PatternEffect):
            if self.patterns is None:
                logger.debug(f"No pattern store configured, {effect.mistake_type.value} not aggregated")
                return False
            self.patterns.upsert_weekly_pattern(
                effect.account_id,
                effect.week_start,
                effect.mistake_type,
                effect.delta_count,
                effect.delta_pnl,
            )
            return True

        if isinstance(effect, LotAverageEffect):
            if self.store is None:
                logger.debug(f"No store configured, lot average for {effect.account_id} dropped")
                return False
            self.store.update_average_lot_size(effect.account_id, effect.average_lot_size)
            return True

        raise TypeError(f"Unknown side effect {effect!r}")
