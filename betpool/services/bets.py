"""
Bet lifecycle: placement, settlement, void and pre-settlement edits.

    OPEN ──settle──▶ SETTLED
      └───void────▶ VOIDED

Both end states are terminal.  Cash P&L is never written at settlement:
the ledger and statement generator derive it lazily from
``payout - stake``.  The only balance side effect in this module is on
``Member.free_play_balance``, which is debited when a free-play stake is
placed (or increased) and credited back on void (or decrease), always in
the same transaction as the bet write.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from betpool.core.odds_math import validate_american_odds
from betpool.core.promo_rule import to_naive_utc
from betpool.core.states import (
    BET_OPEN,
    BET_RESULTS,
    BET_SETTLED,
    BET_VOIDED,
    RESULT_LOSS,
    RESULT_PUSH,
)
from betpool.errors import (
    CreditExceeded,
    FreePlayInsufficient,
    InvalidState,
    ValidationFailed,
)
from betpool.models import Bet, Member
from betpool.services.common import (
    atomic,
    confirm_week_open,
    load_bet,
    load_member,
    load_open_week,
    load_week_member,
)
from betpool.services.ledger import get_credit_info

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------

def _check_stakes(stake_cash_units: int, stake_free_play_units: int) -> None:
    if stake_cash_units < 0 or stake_free_play_units < 0:
        raise ValidationFailed("Stakes cannot be negative")
    if stake_cash_units + stake_free_play_units <= 0:
        raise ValidationFailed("A bet needs a cash or free play stake")


def _check_odds(odds_american: int) -> int:
    try:
        return validate_american_odds(odds_american)
    except ValueError as exc:
        raise ValidationFailed(str(exc)) from exc


def _debit_free_play(member: Member, amount: int) -> None:
    if amount > member.free_play_balance:
        logger.warning(
            "Free play rejected for member %d: %d requested, balance %d",
            member.id, amount, member.free_play_balance,
        )
        raise FreePlayInsufficient(amount, member.free_play_balance)
    member.free_play_balance -= amount


def _require_open(bet: Bet, action: str) -> None:
    if bet.status != BET_OPEN:
        raise InvalidState(f"Cannot {action} bet {bet.id}: status is {bet.status}")


# ---------------------------------------------------------------------------
# Place
# ---------------------------------------------------------------------------

def place_bet(
    db: Session,
    week_id: int,
    member_id: int,
    *,
    description: str,
    odds_american: int,
    stake_cash_units: int,
    stake_free_play_units: int = 0,
    event_key: Optional[str] = None,
    sport: Optional[str] = None,
    bet_type: Optional[str] = None,
    placed_at: Optional[datetime] = None,
    override_credit: bool = False,
) -> Bet:
    """
    Validate and record a new OPEN bet.

    The cash stake must fit within available credit unless
    ``override_credit`` is set; a free-play stake must fit within the
    member's free-play balance and is debited immediately.

    Raises:
        CreditExceeded, FreePlayInsufficient, InvalidState (closed week),
        NotFound (member not enrolled), ValidationFailed.
    """
    _check_stakes(stake_cash_units, stake_free_play_units)
    odds = _check_odds(odds_american)
    if not description or not description.strip():
        raise ValidationFailed("Bet description is required")

    with atomic(db):
        load_open_week(db, week_id, for_update=True)
        load_week_member(db, week_id, member_id)
        member = load_member(db, member_id, for_update=True)

        if not override_credit:
            credit = get_credit_info(db, week_id, member_id)
            if stake_cash_units > credit.available_credit:
                logger.warning(
                    "Bet rejected for member %d in week %d: stake %d > available %d",
                    member_id, week_id, stake_cash_units, credit.available_credit,
                )
                raise CreditExceeded(stake_cash_units, credit.available_credit)

        if stake_free_play_units > 0:
            _debit_free_play(member, stake_free_play_units)

        bet = Bet(
            week_id=week_id,
            member_id=member_id,
            description=description.strip(),
            odds_american=odds,
            stake_cash_units=stake_cash_units,
            stake_free_play_units=stake_free_play_units,
            event_key=event_key or None,
            sport=sport or None,
            bet_type=bet_type or None,
            status=BET_OPEN,
            placed_at=to_naive_utc(placed_at) if placed_at else datetime.utcnow(),
        )
        db.add(bet)
        confirm_week_open(db, week_id)

    logger.info(
        "Bet %d placed: member %d week %d | %s @ %+d | cash %d fp %d%s",
        bet.id, member_id, week_id, bet.description, odds,
        stake_cash_units, stake_free_play_units,
        " (credit override)" if override_credit else "",
    )
    return bet


# ---------------------------------------------------------------------------
# Settle
# ---------------------------------------------------------------------------

def settle_bet(db: Session, bet_id: int, result: str, payout_cash_units: int) -> Bet:
    """
    Record the outcome supplied by the settlement source.

    ``payout_cash_units`` is the total cash returned including the stake:
    0 for a loss, the cash stake for a push, stake + profit for a win.
    """
    if result not in BET_RESULTS:
        raise ValidationFailed(f"Unknown result {result!r}")
    if payout_cash_units < 0:
        raise ValidationFailed("Payout cannot be negative")

    with atomic(db):
        bet = load_bet(db, bet_id)
        load_open_week(db, bet.week_id, for_update=True)
        _require_open(bet, "settle")

        if result == RESULT_LOSS and payout_cash_units != 0:
            raise ValidationFailed("A losing bet pays out 0")
        if result == RESULT_PUSH and payout_cash_units != bet.stake_cash_units:
            raise ValidationFailed(
                f"A push returns the cash stake ({bet.stake_cash_units}), "
                f"got {payout_cash_units}"
            )

        bet.status = BET_SETTLED
        bet.result = result
        bet.payout_cash_units = payout_cash_units
        bet.settled_at = datetime.utcnow()
        confirm_week_open(db, bet.week_id)

    logger.info(
        "%s: bet %d (%s) | payout %d, P&L %+d",
        result, bet.id, bet.description, payout_cash_units,
        payout_cash_units - bet.stake_cash_units,
    )
    return bet


def quick_settle(db: Session, bet_id: int, result: str) -> Bet:
    """Settle a LOSS (payout 0) or PUSH (cash stake returned) without a payout."""
    if result not in (RESULT_LOSS, RESULT_PUSH):
        raise ValidationFailed("Quick settle supports LOSS or PUSH only")
    bet = load_bet(db, bet_id)
    payout = 0 if result == RESULT_LOSS else bet.stake_cash_units
    return settle_bet(db, bet_id, result, payout)


# ---------------------------------------------------------------------------
# Void
# ---------------------------------------------------------------------------

def void_bet(db: Session, bet_id: int) -> Bet:
    """Void an OPEN bet, returning any free-play stake to the member."""
    with atomic(db):
        bet = load_bet(db, bet_id)
        load_open_week(db, bet.week_id, for_update=True)
        _require_open(bet, "void")

        if bet.stake_free_play_units > 0:
            member = load_member(db, bet.member_id, for_update=True)
            member.free_play_balance += bet.stake_free_play_units

        bet.status = BET_VOIDED
        confirm_week_open(db, bet.week_id)

    logger.info(
        "Bet %d voided (%s) | free play restored %d",
        bet.id, bet.description, bet.stake_free_play_units,
    )
    return bet


# ---------------------------------------------------------------------------
# Edit
# ---------------------------------------------------------------------------

def edit_bet(
    db: Session,
    bet_id: int,
    *,
    description: Optional[str] = None,
    odds_american: Optional[int] = None,
    stake_cash_units: Optional[int] = None,
    stake_free_play_units: Optional[int] = None,
    event_key: Optional[str] = None,
    sport: Optional[str] = None,
    bet_type: Optional[str] = None,
    override_credit: bool = False,
) -> Bet:
    """
    Edit an OPEN bet.  ``None`` leaves a field unchanged.

    A larger cash stake is checked against ``available + old stake`` (the
    old stake released first); a smaller one only reduces exposure and is
    always accepted.  A free-play change applies only the delta to
    the member's current balance, so an increase must fit within what is
    left after the original debit.
    """
    with atomic(db):
        bet = load_bet(db, bet_id)
        load_open_week(db, bet.week_id, for_update=True)
        _require_open(bet, "edit")

        new_cash = bet.stake_cash_units if stake_cash_units is None else stake_cash_units
        new_fp = bet.stake_free_play_units if stake_free_play_units is None else stake_free_play_units
        _check_stakes(new_cash, new_fp)

        if new_cash > bet.stake_cash_units and not override_credit:
            credit = get_credit_info(db, bet.week_id, bet.member_id)
            limit = credit.available_credit + bet.stake_cash_units
            if new_cash > limit:
                logger.warning(
                    "Edit rejected for bet %d: stake %d > available %d",
                    bet.id, new_cash, limit,
                )
                raise CreditExceeded(new_cash, limit)

        fp_delta = new_fp - bet.stake_free_play_units
        if fp_delta != 0:
            member = load_member(db, bet.member_id, for_update=True)
            if fp_delta > 0:
                _debit_free_play(member, fp_delta)
            else:
                member.free_play_balance += -fp_delta

        bet.stake_cash_units = new_cash
        bet.stake_free_play_units = new_fp
        if description is not None:
            if not description.strip():
                raise ValidationFailed("Bet description is required")
            bet.description = description.strip()
        if odds_american is not None:
            bet.odds_american = _check_odds(odds_american)
        if event_key is not None:
            bet.event_key = event_key or None
        if sport is not None:
            bet.sport = sport or None
        if bet_type is not None:
            bet.bet_type = bet_type or None
        confirm_week_open(db, bet.week_id)

    logger.info(
        "Bet %d edited: cash %d fp %d (fp delta %+d)",
        bet.id, bet.stake_cash_units, bet.stake_free_play_units, fp_delta,
    )
    return bet
