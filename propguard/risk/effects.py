"""
Post-commit side effects produced by the pure decision steps.

The circuit breaker and the mistake detector never write audit rows, send
notifications or touch pattern aggregates themselves. They return a list of
these values and ``propguard.engine.effects.SideEffectDispatcher`` runs them
after the lock (if any) has been committed.
"""

from dataclasses import dataclass
from datetime import date
from typing import Union

from propguard.accounts.models import AuditEntry, MistakeTag
from propguard.lib.alerts import AlertPayload


@dataclass(frozen=True)
class AuditEffect:
    """Append an entry to the circuit breaker audit trail."""
    entry: AuditEntry

    @property
    def account_id(self) -> str:
        return self.entry.account_id


@dataclass(frozen=True)
class AlertEffect:
    """Notify the account owner."""
    account_id: str
    payload: AlertPayload


@dataclass(frozen=True)
class PatternEffect:
    """Add one tagged trade to the weekly mistake aggregate."""
    account_id: str
    week_start: date
    mistake_type: MistakeTag
    delta_count: int
    delta_pnl: float


@dataclass(frozen=True)
class LotAverageEffect:
    """Store the account's new running average lot size."""
    account_id: str
    average_lot_size: float


SideEffect = Union[AuditEffect, AlertEffect, PatternEffect, LotAverageEffect]
