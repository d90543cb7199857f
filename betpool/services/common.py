"""
Shared session helpers for the pool services.

Every mutating service call runs inside :func:`atomic`, so a rejected or
failed operation leaves the database untouched.  Week-scoped mutations lock
the week row on entry and call :func:`confirm_week_open` before commit, so
they serialise with ``close_week``.
"""

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.orm import Session

from betpool.core.states import WEEK_CLOSED
from betpool.errors import InvalidState, NotFound
from betpool.models import Bet, FreePlayAward, Member, Promo, Week, WeekMember


@contextmanager
def atomic(db: Session) -> Iterator[Session]:
    """Commit on success, roll back and re-raise on any error."""
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise


def load_week(db: Session, week_id: int, *, for_update: bool = False) -> Week:
    if not for_update:
        week = db.get(Week, week_id)
    else:
        week = (
            db.query(Week)
            .filter(Week.id == week_id)
            .with_for_update()
            .populate_existing()
            .one_or_none()
        )
    if week is None:
        raise NotFound("Week", week_id)
    return week


def load_open_week(db: Session, week_id: int, *, for_update: bool = False) -> Week:
    week = load_week(db, week_id, for_update=for_update)
    if week.status == WEEK_CLOSED:
        raise InvalidState(f"Week {week_id} is closed")
    return week


def confirm_week_open(db: Session, week_id: int) -> Week:
    """
    Flush pending writes, then re-read the week under lock.

    Called last inside a mutation's transaction.  Once the flush holds the
    write lock, a concurrent close has either committed already (and is
    seen here as CLOSED) or waits for this transaction to finish.
    """
    db.flush()
    return load_open_week(db, week_id, for_update=True)


def load_member(db: Session, member_id: int, *, for_update: bool = False) -> Member:
    query = db.query(Member).filter(Member.id == member_id)
    if for_update:
        query = query.with_for_update()
    member = query.one_or_none()
    if member is None:
        raise NotFound("Member", member_id)
    return member


def load_week_member(db: Session, week_id: int, member_id: int) -> WeekMember:
    wm = (
        db.query(WeekMember)
        .filter(WeekMember.week_id == week_id, WeekMember.member_id == member_id)
        .one_or_none()
    )
    if wm is None:
        raise NotFound("WeekMember", f"{week_id}/{member_id}")
    return wm


def load_bet(db: Session, bet_id: int) -> Bet:
    bet = db.get(Bet, bet_id)
    if bet is None:
        raise NotFound("Bet", bet_id)
    return bet


def load_promo(db: Session, promo_id: int) -> Promo:
    promo = db.get(Promo, promo_id)
    if promo is None:
        raise NotFound("Promo", promo_id)
    return promo


def load_award(db: Session, award_id: int) -> FreePlayAward:
    award = db.get(FreePlayAward, award_id)
    if award is None:
        raise NotFound("FreePlayAward", award_id)
    return award
