"""
Weekly mistake analytics for the trader dashboard.

Reads the weekly pattern aggregates and produces:
- weekly_summary: this week's totals, per-type rows and the costliest mistake
- mistake_history: the last 8 weeks grouped by week, plus a trend label

Trend compares the average weekly mistake count of the two most recent weeks
against the weeks before them: below 70% is ``improving``, above 130% is
``worsening``, anything else ``stable``. Fewer than two weeks of data gives
``insufficient_data``.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional, List, Dict, Any, Sequence

import numpy as np
import pandas as pd

from propguard.accounts.models import MistakePattern
from propguard.accounts.stores import MistakePatternStore
from propguard.lib.constants import PATTERN_HISTORY_WEEKS
from propguard.lib.time_utils import get_utc_now, to_utc, week_start

IMPROVING_RATIO = 0.7
WORSENING_RATIO = 1.3
RECENT_WEEKS = 2

PATTERN_COLUMNS = ["account_id", "week_start", "mistake_type", "count", "total_pnl_impact"]


@dataclass
class WeeklySummary:
    """Mistake totals for one week."""
    week_start: str
    total_mistakes: int = 0
    total_pnl_impact: float = 0.0
    patterns: List[Dict[str, Any]] = field(default_factory=list)
    worst_mistake: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "week_start": self.week_start,
            "total_mistakes": self.total_mistakes,
            "total_pnl_impact": round(self.total_pnl_impact, 2),
            "patterns": self.patterns,
            "worst_mistake": self.worst_mistake,
        }


@dataclass
class MistakeHistory:
    """Per-week totals over the history window and their trend."""
    weeks: List[Dict[str, Any]] = field(default_factory=list)
    trend: str = "insufficient_data"

    def to_dict(self) -> Dict[str, Any]:
        return {"weeks": self.weeks, "trend": self.trend}


def patterns_frame(patterns: Sequence[MistakePattern]) -> pd.DataFrame:
    """Tabulate pattern rows (one row per account/week/type)."""
    if not patterns:
        return pd.DataFrame(columns=PATTERN_COLUMNS)
    return pd.DataFrame([p.to_dict() for p in patterns], columns=PATTERN_COLUMNS)


def calculate_trend(weekly_counts: Sequence[float]) -> str:
    """
    Classify a chronological series of weekly mistake counts.

    Args:
        weekly_counts: Total mistakes per week, oldest first

    Returns:
        improving, worsening, stable or insufficient_data
    """
    counts = np.asarray(weekly_counts, dtype=float)
    if counts.size < RECENT_WEEKS:
        return "insufficient_data"

    recent_avg = counts[-RECENT_WEEKS:].mean()
    older = counts[:-RECENT_WEEKS]
    older_avg = older.mean() if older.size else recent_avg

    if recent_avg < older_avg * IMPROVING_RATIO:
        return "improving"
    if recent_avg > older_avg * WORSENING_RATIO:
        return "worsening"
    return "stable"


def weekly_summary(
    store: MistakePatternStore,
    account_id: str,
    now: Optional[datetime] = None,
) -> WeeklySummary:
    """
    Summarize the current week's mistakes for an account.

    Args:
        store: Weekly pattern aggregates
        account_id: Account to summarize
        now: Reference time (default: current UTC time)

    Returns:
        WeeklySummary for the week containing ``now``
    """
    week = week_start(to_utc(now) if now else get_utc_now())
    rows = [p for p in store.patterns_for(account_id, since=week) if p.week_start == week]
    df = patterns_frame(rows)

    summary = WeeklySummary(week_start=week.isoformat())
    if df.empty:
        return summary

    df = df.sort_values("total_pnl_impact", kind="stable")
    summary.total_mistakes = int(df["count"].sum())
    summary.total_pnl_impact = float(df["total_pnl_impact"].sum())
    summary.patterns = df.to_dict(orient="records")
    summary.worst_mistake = summary.patterns[0]
    return summary


def mistake_history(
    store: MistakePatternStore,
    account_id: str,
    now: Optional[datetime] = None,
    weeks: int = PATTERN_HISTORY_WEEKS,
) -> MistakeHistory:
    """
    Group an account's mistakes by week over the last ``weeks`` weeks.

    Args:
        store: Weekly pattern aggregates
        account_id: Account to analyze
        now: Reference time (default: current UTC time)
        weeks: Length of the history window

    Returns:
        MistakeHistory with weeks oldest first and the trend label
    """
    now = to_utc(now) if now else get_utc_now()
    since = (now - timedelta(weeks=weeks)).date()
    df = patterns_frame(store.patterns_for(account_id, since=since))

    if df.empty:
        return MistakeHistory()

    history = MistakeHistory()
    for week, group in df.groupby("week_start", sort=True):
        history.weeks.append({
            "week": week,
            "mistakes": group.to_dict(orient="records"),
            "total_count": int(group["count"].sum()),
            "total_pnl_impact": round(float(group["total_pnl_impact"].sum()), 2),
        })

    history.trend = calculate_trend([w["total_count"] for w in history.weeks])
    return history
