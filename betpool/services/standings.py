"""
Standings built from closed-week statements.

All public functions receive a SQLAlchemy Session and return plain
dataclasses / strings so they can be called from the API or from scripts
without importing any web-layer code.
"""

import math
from dataclasses import asdict, dataclass, field
from fractions import Fraction
from typing import Dict, List

from sqlalchemy.orm import Session, joinedload

from betpool.core.states import WEEK_CLOSED
from betpool.errors import InvalidState
from betpool.models import Week, WeekStatement
from betpool.services.common import load_week


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _signed(units: int) -> str:
    return f"+{units}" if units >= 0 else str(units)


def _rounded_mean(values: List[int]) -> int:
    if not values:
        return 0
    return math.floor(Fraction(sum(values), len(values)) + Fraction(1, 2))


# ---------------------------------------------------------------------------
# Week results
# ---------------------------------------------------------------------------

@dataclass
class WeekResults:
    week_id: int
    week_name: str
    statements: List[WeekStatement]
    summary_text: str


def format_results_summary(week_name: str, statements: List[WeekStatement]) -> str:
    """Plain-text results block for pasting into the group chat."""
    lines = [f"🏆 {week_name} Results"]
    for i, s in enumerate(statements, start=1):
        lines.append(f"{i}. {s.member.name}: {_signed(s.weekly_score_units)} units")

    lines.append("")
    lines.append("Settlements:")
    for s in statements:
        if s.owes_house_units > 0:
            lines.append(f"{s.member.name} owes house: {s.owes_house_units} units")
    for s in statements:
        if s.house_owes_units > 0:
            line = f"House owes {s.member.name}: {s.house_owes_units} units"
            if s.house_owes_free_play_units > 0:
                line += f" + {s.house_owes_free_play_units} free play"
            lines.append(line)
    return "\n".join(lines)


def week_results(db: Session, week_id: int) -> WeekResults:
    """Statements of a CLOSED week, best weekly score first."""
    week = load_week(db, week_id)
    if week.status != WEEK_CLOSED:
        raise InvalidState(f"Week {week_id} is not closed yet")

    statements = (
        db.query(WeekStatement)
        .options(joinedload(WeekStatement.member))
        .filter(WeekStatement.week_id == week_id)
        .order_by(WeekStatement.weekly_score_units.desc(), WeekStatement.id.asc())
        .all()
    )
    return WeekResults(
        week_id=week.id,
        week_name=week.name,
        statements=statements,
        summary_text=format_results_summary(week.name, statements),
    )


# ---------------------------------------------------------------------------
# Leaderboard
# ---------------------------------------------------------------------------

@dataclass
class LeaderboardEntry:
    member_id: int
    name: str
    total_pl: int = 0
    total_free_play: int = 0
    weeks_played: int = 0
    wins: int = 0
    losses: int = 0
    best_week: int = 0
    worst_week: int = 0
    avg_score: int = 0
    scores: List[int] = field(default_factory=list)

    def to_dict(self) -> Dict:
        data = asdict(self)
        data.pop("scores")
        return data


def leaderboard(db: Session) -> List[LeaderboardEntry]:
    """
    All-time standings across CLOSED weeks, by total cash P&L.

    A weekly win goes to the top weekly score of a week, a weekly loss to
    the bottom one (only when more than one member played that week).
    """
    statements = (
        db.query(WeekStatement)
        .join(Week)
        .options(joinedload(WeekStatement.member))
        .filter(Week.status == WEEK_CLOSED)
        .order_by(Week.closed_at.desc(), WeekStatement.id.asc())
        .all()
    )

    entries: Dict[int, LeaderboardEntry] = {}
    by_week: Dict[int, List[WeekStatement]] = {}

    for s in statements:
        by_week.setdefault(s.week_id, []).append(s)
        entry = entries.get(s.member_id)
        if entry is None:
            entry = LeaderboardEntry(
                member_id=s.member_id,
                name=s.member.name,
                best_week=s.weekly_score_units,
                worst_week=s.weekly_score_units,
            )
            entries[s.member_id] = entry
        entry.total_pl += s.cash_profit_units
        entry.total_free_play += s.free_play_earned_units
        entry.weeks_played += 1
        entry.scores.append(s.weekly_score_units)
        entry.best_week = max(entry.best_week, s.weekly_score_units)
        entry.worst_week = min(entry.worst_week, s.weekly_score_units)

    for week_statements in by_week.values():
        ranked = sorted(week_statements, key=lambda s: s.weekly_score_units, reverse=True)
        entries[ranked[0].member_id].wins += 1
        if len(ranked) > 1:
            entries[ranked[-1].member_id].losses += 1

    for entry in entries.values():
        entry.avg_score = _rounded_mean(entry.scores)

    return sorted(entries.values(), key=lambda e: e.total_pl, reverse=True)
