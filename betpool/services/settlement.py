"""
Week close: default rebates, free-play crediting, statements.

close_week() runs a fixed, ordered pipeline inside one transaction:

    0. lock the week, mark it CLOSED, refuse if any bet is still OPEN
    1. generate_promo_awards      PROMO awards        (promo_engine)
    2. generate_default_rebates   DEFAULT_REBATE top-ups
    3. update_free_play_balances  credit EARNED awards to Member balances
    4. generate_week_statements   upsert one WeekStatement per member

The status is written and flushed before the OPEN-bet count, so a bet
placed concurrently is either counted here or rejected by its own
re-check of the week.  Stage 2 reads the PROMO awards written by stage 1,
so the order is fixed.  Each stage is idempotent on its own (award
existence checks, applied_at on awards, statement upsert), and the
pipeline commits once at the end, so a failure anywhere leaves the week
exactly as it was.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy.orm import Session, joinedload

from betpool.core.pool_config import PoolConfig
from betpool.core.rebate_math import default_rebate, settled_cash_pl, statement_figures
from betpool.core.states import (
    AWARD_DEFAULT_REBATE,
    AWARD_EARNED,
    AWARD_PROMO,
    BET_OPEN,
    BET_SETTLED,
    WEEK_CLOSED,
)
from betpool.errors import WeekNotCloseable
from betpool.models import Bet, FreePlayAward, Member, WeekMember, WeekStatement
from betpool.services.common import atomic, load_open_week
from betpool.services.promo_engine import PromoAwardRun, generate_promo_awards

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Stage results
# ---------------------------------------------------------------------------

@dataclass
class DefaultRebateRun:
    awards_created: List[FreePlayAward] = field(default_factory=list)
    covered_by_promo: int = 0  # losing members whose promo awards already exceed the default
    already_awarded: int = 0


@dataclass
class BalanceRun:
    credited: Dict[int, int] = field(default_factory=dict)  # member_id -> units

    @property
    def total_units(self) -> int:
        return sum(self.credited.values())


@dataclass
class CloseWeekSummary:
    week_id: int
    promo_awards: int
    default_rebates: int
    free_play_credited: int
    statements: int
    closed_at: Optional[datetime]

    def to_dict(self) -> Dict:
        return {
            "week_id": self.week_id,
            "promo_awards": self.promo_awards,
            "default_rebates": self.default_rebates,
            "free_play_credited": self.free_play_credited,
            "statements": self.statements,
            "closed_at": self.closed_at.isoformat() if self.closed_at else None,
        }


def _enrolled(db: Session, week_id: int) -> List[WeekMember]:
    return (
        db.query(WeekMember)
        .options(joinedload(WeekMember.member))
        .filter(WeekMember.week_id == week_id)
        .order_by(WeekMember.id.asc())
        .all()
    )


def _settled_bets(db: Session, week_id: int, member_id: int) -> List[Bet]:
    return (
        db.query(Bet)
        .filter(
            Bet.week_id == week_id,
            Bet.member_id == member_id,
            Bet.status == BET_SETTLED,
        )
        .all()
    )


def _earned_awards(
    db: Session, week_id: int, member_id: int, source: Optional[str] = None
) -> List[FreePlayAward]:
    query = db.query(FreePlayAward).filter(
        FreePlayAward.week_id == week_id,
        FreePlayAward.member_id == member_id,
        FreePlayAward.status == AWARD_EARNED,
    )
    if source is not None:
        query = query.filter(FreePlayAward.source == source)
    return query.all()


# ---------------------------------------------------------------------------
# Stage 2: default rebate
# ---------------------------------------------------------------------------

def generate_default_rebates(
    db: Session, week_id: int, config: Optional[PoolConfig] = None
) -> DefaultRebateRun:
    """
    Top up every losing member to the default rebate percentage.

    Must run after generate_promo_awards: the top-up is the excess of the
    default rebate over PROMO awards already earned this week.  At most one
    DEFAULT_REBATE award per (week, member).  Flushes, does not commit.
    """
    config = config or PoolConfig.from_env()
    pct = config.default_rebate_percent
    run = DefaultRebateRun()

    for wm in _enrolled(db, week_id):
        cash_pl = settled_cash_pl(_settled_bets(db, week_id, wm.member_id))
        if cash_pl >= 0:
            continue

        promo_total = sum(
            a.amount_units for a in _earned_awards(db, week_id, wm.member_id, AWARD_PROMO)
        )
        rebate = default_rebate(cash_pl, pct, promo_total)
        if rebate.top_up <= 0:
            if rebate.default_rebate > 0:
                run.covered_by_promo += 1
            continue

        existing = (
            db.query(FreePlayAward)
            .filter(
                FreePlayAward.week_id == week_id,
                FreePlayAward.member_id == wm.member_id,
                FreePlayAward.source == AWARD_DEFAULT_REBATE,
            )
            .first()
        )
        if existing is not None:
            run.already_awarded += 1
            continue

        award = FreePlayAward(
            week_id=week_id,
            member_id=wm.member_id,
            source=AWARD_DEFAULT_REBATE,
            status=AWARD_EARNED,
            amount_units=rebate.top_up,
            notes=rebate.note(pct),
        )
        db.add(award)
        run.awards_created.append(award)
        logger.info(
            "Default rebate: member %d | loss %d -> %d FP (promo %d, top-up %d)",
            wm.member_id, rebate.cash_loss, rebate.default_rebate,
            rebate.promo_total, rebate.top_up,
        )

    db.flush()
    return run


# ---------------------------------------------------------------------------
# Stage 3: free-play balances
# ---------------------------------------------------------------------------

def update_free_play_balances(db: Session, week_id: int) -> BalanceRun:
    """
    Credit each member's EARNED, not-yet-applied awards to their balance.

    ``applied_at`` marks an award as credited, so a re-run adds nothing.
    """
    run = BalanceRun()
    pending = (
        db.query(FreePlayAward)
        .filter(
            FreePlayAward.week_id == week_id,
            FreePlayAward.status == AWARD_EARNED,
            FreePlayAward.applied_at.is_(None),
        )
        .order_by(FreePlayAward.id.asc())
        .all()
    )

    now = datetime.utcnow()
    for award in pending:
        run.credited[award.member_id] = run.credited.get(award.member_id, 0) + award.amount_units
        award.applied_at = now

    for member_id, total in run.credited.items():
        member = db.query(Member).filter(Member.id == member_id).with_for_update().one()
        member.free_play_balance += total
        logger.info("Free play credited: member %d +%d (balance %d)", member_id, total, member.free_play_balance)

    db.flush()
    return run


# ---------------------------------------------------------------------------
# Stage 4: statements
# ---------------------------------------------------------------------------

def generate_week_statements(db: Session, week_id: int) -> List[WeekStatement]:
    """Upsert one statement per enrolled member; deterministic on re-run."""
    statements: List[WeekStatement] = []

    for wm in _enrolled(db, week_id):
        cash_profit = settled_cash_pl(_settled_bets(db, week_id, wm.member_id))
        free_play = sum(a.amount_units for a in _earned_awards(db, week_id, wm.member_id))
        figures = statement_figures(cash_profit, free_play)

        stmt = (
            db.query(WeekStatement)
            .filter(WeekStatement.week_id == week_id, WeekStatement.member_id == wm.member_id)
            .one_or_none()
        )
        if stmt is None:
            stmt = WeekStatement(week_id=week_id, member_id=wm.member_id)
            db.add(stmt)

        stmt.cash_profit_units = figures.cash_profit_units
        stmt.free_play_earned_units = figures.free_play_earned_units
        stmt.weekly_score_units = figures.weekly_score_units
        stmt.owes_house_units = figures.owes_house_units
        stmt.house_owes_units = figures.house_owes_units
        stmt.house_owes_free_play_units = figures.house_owes_free_play_units
        statements.append(stmt)

    db.flush()
    return statements


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

def close_week(
    db: Session, week_id: int, config: Optional[PoolConfig] = None
) -> CloseWeekSummary:
    """
    Close a week: status CLOSED, then awards, balances and statements.

    Raises:
        WeekNotCloseable: If any bet in the week is still OPEN.
        InvalidState: If the week is already CLOSED.
    """
    config = config or PoolConfig.from_env()
    logger.info("Closing week %d", week_id)

    with atomic(db):
        week = load_open_week(db, week_id, for_update=True)
        week.status = WEEK_CLOSED
        week.closed_at = datetime.utcnow()
        db.flush()

        open_bets = (
            db.query(Bet).filter(Bet.week_id == week_id, Bet.status == BET_OPEN).count()
        )
        if open_bets > 0:
            logger.warning("Week %d not closeable: %d open bets", week_id, open_bets)
            raise WeekNotCloseable(open_bets, week_id)

        promo_run: PromoAwardRun = generate_promo_awards(db, week_id)
        rebate_run = generate_default_rebates(db, week_id, config)
        balance_run = update_free_play_balances(db, week_id)
        statements = generate_week_statements(db, week_id)

    summary = CloseWeekSummary(
        week_id=week_id,
        promo_awards=promo_run.created_count,
        default_rebates=len(rebate_run.awards_created),
        free_play_credited=balance_run.total_units,
        statements=len(statements),
        closed_at=week.closed_at,
    )
    logger.info("Week %d closed: %s", week_id, summary.to_dict())
    return summary
