"""
Credit ledger: open exposure and available credit per (week, member).

Credit behaves like a running account for the week:

    available = credit_limit + settled_cash_pl - open_exposure

It shrinks while bets are pending or lost and is restored by wins.  Nothing
here is stored; every snapshot is recomputed from bet rows.  Free play is
reported alongside but never enters the cash formula.
"""

from dataclasses import asdict, dataclass
from typing import Dict, List

from sqlalchemy import func
from sqlalchemy.orm import Session

from betpool.core.rebate_math import available_credit, bet_cash_pl
from betpool.core.states import BET_OPEN, BET_SETTLED
from betpool.models import Bet, Member, WeekMember


@dataclass
class CreditSnapshot:
    """Per-member credit view exposed to the UI and intake sources."""

    member_id: int
    credit_limit: int
    open_exposure: int
    cash_pl: int
    available_credit: int
    free_play_balance: int

    def to_dict(self) -> Dict:
        return asdict(self)


def get_open_exposure(db: Session, week_id: int, member_id: int) -> int:
    """Sum of cash stakes over the member's OPEN bets in the week."""
    total = (
        db.query(func.sum(Bet.stake_cash_units))
        .filter(
            Bet.week_id == week_id,
            Bet.member_id == member_id,
            Bet.status == BET_OPEN,
        )
        .scalar()
    )
    return int(total or 0)


def get_settled_cash_pl(db: Session, week_id: int, member_id: int) -> int:
    """Net ``payout - stake`` over the member's SETTLED bets (may be negative)."""
    settled = (
        db.query(Bet)
        .filter(
            Bet.week_id == week_id,
            Bet.member_id == member_id,
            Bet.status == BET_SETTLED,
        )
        .all()
    )
    return sum(bet_cash_pl(b) for b in settled)


def get_credit_info(db: Session, week_id: int, member_id: int) -> CreditSnapshot:
    """
    Credit snapshot for one member.

    A member who is not enrolled in the week gets an all-zero snapshot,
    which rejects any cash stake unless the caller overrides.
    """
    wm = (
        db.query(WeekMember)
        .filter(WeekMember.week_id == week_id, WeekMember.member_id == member_id)
        .one_or_none()
    )
    if wm is None:
        return CreditSnapshot(
            member_id=member_id,
            credit_limit=0,
            open_exposure=0,
            cash_pl=0,
            available_credit=0,
            free_play_balance=0,
        )

    exposure = get_open_exposure(db, week_id, member_id)
    cash_pl = get_settled_cash_pl(db, week_id, member_id)

    return CreditSnapshot(
        member_id=member_id,
        credit_limit=wm.credit_limit_units,
        open_exposure=exposure,
        cash_pl=cash_pl,
        available_credit=available_credit(wm.credit_limit_units, cash_pl, exposure),
        free_play_balance=wm.member.free_play_balance,
    )


def get_week_credit(db: Session, week_id: int) -> List[CreditSnapshot]:
    """Credit snapshots for every member enrolled in the week, by member name."""
    enrolled = (
        db.query(WeekMember)
        .join(Member)
        .filter(WeekMember.week_id == week_id)
        .order_by(Member.name.asc())
        .all()
    )
    return [get_credit_info(db, week_id, wm.member_id) for wm in enrolled]
