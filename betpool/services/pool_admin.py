"""
Pool administration: members, weeks, enrollment, credit limits and
manual free-play awards.
"""

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from betpool.core.pool_config import PoolConfig
from betpool.core.promo_rule import to_naive_utc
from betpool.core.states import AWARD_EARNED, AWARD_MANUAL, AWARD_VOIDED, BET_OPEN, WEEK_OPEN
from betpool.errors import InvalidState, ValidationFailed
from betpool.models import Bet, FreePlayAward, Member, Week, WeekMember
from betpool.services.common import (
    atomic,
    confirm_week_open,
    load_award,
    load_member,
    load_open_week,
    load_week_member,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Members
# ---------------------------------------------------------------------------

def _clean_name(name: str, what: str) -> str:
    if not name or not name.strip():
        raise ValidationFailed(f"{what} name is required")
    return name.strip()


def create_member(db: Session, name: str) -> Member:
    name = _clean_name(name, "Member")
    with atomic(db):
        if db.query(Member).filter(Member.name == name).first() is not None:
            raise ValidationFailed(f"Member {name!r} already exists")
        member = Member(name=name, free_play_balance=0)
        db.add(member)
        db.flush()
    logger.info("Member %d created: %s", member.id, member.name)
    return member


def rename_member(db: Session, member_id: int, name: str) -> Member:
    name = _clean_name(name, "Member")
    with atomic(db):
        member = load_member(db, member_id)
        clash = db.query(Member).filter(Member.name == name, Member.id != member_id).first()
        if clash is not None:
            raise ValidationFailed(f"Member {name!r} already exists")
        member.name = name
    return member


def list_members(db: Session) -> List[Member]:
    return db.query(Member).order_by(Member.name.asc()).all()


# ---------------------------------------------------------------------------
# Weeks
# ---------------------------------------------------------------------------

def create_week(db: Session, name: str, start_at: datetime, end_at: datetime) -> Week:
    name = _clean_name(name, "Week")
    start_at, end_at = to_naive_utc(start_at), to_naive_utc(end_at)
    if end_at < start_at:
        raise ValidationFailed("Week end must not precede its start")
    with atomic(db):
        week = Week(name=name, status=WEEK_OPEN, start_at=start_at, end_at=end_at)
        db.add(week)
        db.flush()
    logger.info("Week %d created: %s (%s - %s)", week.id, name, start_at, end_at)
    return week


def list_weeks(db: Session) -> List[Week]:
    return db.query(Week).order_by(Week.start_at.desc(), Week.id.desc()).all()


# ---------------------------------------------------------------------------
# Enrollment and credit limits
# ---------------------------------------------------------------------------

def add_member_to_week(
    db: Session,
    week_id: int,
    member_id: int,
    credit_limit_units: Optional[int] = None,
    config: Optional[PoolConfig] = None,
) -> WeekMember:
    if credit_limit_units is None:
        credit_limit_units = (config or PoolConfig.from_env()).default_credit_limit_units
    if credit_limit_units < 0:
        raise ValidationFailed("Credit limit cannot be negative")

    with atomic(db):
        load_open_week(db, week_id, for_update=True)
        load_member(db, member_id)
        existing = (
            db.query(WeekMember)
            .filter(WeekMember.week_id == week_id, WeekMember.member_id == member_id)
            .first()
        )
        if existing is not None:
            raise ValidationFailed(f"Member {member_id} is already in week {week_id}")
        wm = WeekMember(week_id=week_id, member_id=member_id, credit_limit_units=credit_limit_units)
        db.add(wm)
        confirm_week_open(db, week_id)

    logger.info("Member %d joined week %d (credit %d)", member_id, week_id, credit_limit_units)
    return wm


def remove_member_from_week(db: Session, week_id: int, member_id: int) -> None:
    with atomic(db):
        load_open_week(db, week_id, for_update=True)
        wm = load_week_member(db, week_id, member_id)
        open_bets = (
            db.query(Bet)
            .filter(Bet.week_id == week_id, Bet.member_id == member_id, Bet.status == BET_OPEN)
            .count()
        )
        if open_bets > 0:
            raise InvalidState(f"Cannot remove member with {open_bets} open bets")
        db.delete(wm)
        confirm_week_open(db, week_id)
    logger.info("Member %d removed from week %d", member_id, week_id)


def set_credit_limit(db: Session, week_id: int, member_id: int, credit_limit_units: int) -> WeekMember:
    if credit_limit_units < 0:
        raise ValidationFailed("Credit limit cannot be negative")
    with atomic(db):
        load_open_week(db, week_id, for_update=True)
        wm = load_week_member(db, week_id, member_id)
        old = wm.credit_limit_units
        wm.credit_limit_units = credit_limit_units
        confirm_week_open(db, week_id)
    logger.info("Credit limit: member %d week %d %d -> %d", member_id, week_id, old, credit_limit_units)
    return wm


# ---------------------------------------------------------------------------
# Manual free-play awards
# ---------------------------------------------------------------------------

def create_free_play_award(
    db: Session,
    week_id: int,
    member_id: int,
    amount_units: int,
    notes: Optional[str] = None,
) -> FreePlayAward:
    """Operator-granted free play; credited to the balance when the week closes."""
    if amount_units <= 0:
        raise ValidationFailed("Award amount must be positive")
    with atomic(db):
        load_open_week(db, week_id, for_update=True)
        load_week_member(db, week_id, member_id)
        award = FreePlayAward(
            week_id=week_id,
            member_id=member_id,
            amount_units=amount_units,
            source=AWARD_MANUAL,
            status=AWARD_EARNED,
            notes=notes or None,
        )
        db.add(award)
        confirm_week_open(db, week_id)
    logger.info("Manual award %d: member %d week %d +%d FP", award.id, member_id, week_id, amount_units)
    return award


def void_free_play_award(db: Session, award_id: int) -> FreePlayAward:
    with atomic(db):
        award = load_award(db, award_id)
        load_open_week(db, award.week_id, for_update=True)
        if award.status != AWARD_EARNED:
            raise InvalidState(f"Award {award_id} is already {award.status}")
        award.status = AWARD_VOIDED
        confirm_week_open(db, award.week_id)
    logger.info("Award %d voided (%s, %d FP)", award_id, award.source, award.amount_units)
    return award


def list_week_awards(db: Session, week_id: int) -> List[FreePlayAward]:
    return (
        db.query(FreePlayAward)
        .filter(FreePlayAward.week_id == week_id)
        .order_by(FreePlayAward.created_at.asc(), FreePlayAward.id.asc())
        .all()
    )
