"""
Account, trade and store types shared by every risk component.
"""

from .models import (
    Account,
    AuditEntry,
    Direction,
    LockKind,
    LockUpdate,
    MistakePattern,
    MistakeTag,
    Trade,
    TradingHours,
)
from .stores import (
    AccountStateStore,
    TradeHistorySource,
    MistakePatternStore,
    InMemoryAccountStore,
    InMemoryTradeHistory,
    InMemoryMistakePatternStore,
)

__all__ = [
    # Models
    'Account',
    'AuditEntry',
    'Direction',
    'LockKind',
    'LockUpdate',
    'MistakePattern',
    'MistakeTag',
    'Trade',
    'TradingHours',
    # Stores
    'AccountStateStore',
    'TradeHistorySource',
    'MistakePatternStore',
    'InMemoryAccountStore',
    'InMemoryTradeHistory',
    'InMemoryMistakePatternStore',
]
