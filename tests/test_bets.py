"""Tests for bet placement, settlement, void and edits."""

from datetime import datetime

import pytest

from betpool.errors import (
    CreditExceeded,
    FreePlayInsufficient,
    InvalidState,
    NotFound,
    ValidationFailed,
)
from betpool.models import Bet, Member
from betpool.services import bets, ledger, pool_admin, settlement

PLACED = datetime(2025, 1, 6, 18, 0)


def _place(db, pool, stake=100, fp=0, member_id=None, **kwargs):
    return bets.place_bet(
        db,
        pool.week_id,
        member_id or pool.alice_id,
        description=kwargs.pop("description", "Chiefs -3.5"),
        odds_american=kwargs.pop("odds_american", -110),
        stake_cash_units=stake,
        stake_free_play_units=fp,
        placed_at=PLACED,
        **kwargs,
    )


def _give_free_play(db, member_id, amount):
    db.get(Member, member_id).free_play_balance = amount
    db.commit()


def _balance(db, member_id):
    return db.get(Member, member_id).free_play_balance


# ---------------------------------------------------------------------------
# Place
# ---------------------------------------------------------------------------

class TestPlaceBet:
    def test_records_open_bet(self, db_session, pool):
        bet = _place(db_session, pool, 300, event_key="KC@BUF", sport="nfl")
        assert bet.status == "OPEN"
        assert bet.result is None
        assert bet.placed_at == PLACED
        assert bet.event_key == "KC@BUF"

    def test_credit_exceeded(self, db_session, pool):
        _place(db_session, pool, 900)
        with pytest.raises(CreditExceeded) as exc:
            _place(db_session, pool, 200)
        assert exc.value.stake == 200
        assert exc.value.available == 100
        assert db_session.query(Bet).count() == 1

    def test_exact_available_allowed(self, db_session, pool):
        _place(db_session, pool, 1000)
        assert ledger.get_credit_info(db_session, pool.week_id, pool.alice_id).available_credit == 0

    def test_override_skips_credit_check(self, db_session, pool):
        bet = _place(db_session, pool, 5000, override_credit=True)
        assert bet.status == "OPEN"
        info = ledger.get_credit_info(db_session, pool.week_id, pool.alice_id)
        assert info.available_credit == -4000

    def test_free_play_debited(self, db_session, pool):
        _give_free_play(db_session, pool.alice_id, 100)
        _place(db_session, pool, 0, fp=60)
        assert _balance(db_session, pool.alice_id) == 40

    def test_free_play_insufficient(self, db_session, pool):
        _give_free_play(db_session, pool.alice_id, 50)
        with pytest.raises(FreePlayInsufficient) as exc:
            _place(db_session, pool, 0, fp=60)
        assert exc.value.requested == 60
        assert exc.value.balance == 50
        assert _balance(db_session, pool.alice_id) == 50
        assert db_session.query(Bet).count() == 0

    def test_free_play_not_checked_against_credit(self, db_session, pool):
        _place(db_session, pool, 1000)
        _give_free_play(db_session, pool.alice_id, 100)
        bet = _place(db_session, pool, 0, fp=100)
        assert bet.stake_free_play_units == 100

    @pytest.mark.parametrize("stake, fp, odds", [
        (0, 0, -110),
        (-5, 0, -110),
        (100, 0, 50),
        (100, 0, 0),
    ])
    def test_invalid_input_rejected(self, db_session, pool, stake, fp, odds):
        with pytest.raises(ValidationFailed):
            _place(db_session, pool, stake, fp=fp, odds_american=odds)

    def test_blank_description_rejected(self, db_session, pool):
        with pytest.raises(ValidationFailed):
            _place(db_session, pool, 100, description="   ")

    def test_unenrolled_member_rejected(self, db_session, pool):
        carol = pool_admin.create_member(db_session, "Carol")
        with pytest.raises(NotFound):
            _place(db_session, pool, 100, member_id=carol.id)


# ---------------------------------------------------------------------------
# Settle
# ---------------------------------------------------------------------------

class TestSettleBet:
    def test_win(self, db_session, pool):
        bet = _place(db_session, pool, 110)
        settled = bets.settle_bet(db_session, bet.id, "WIN", 210)
        assert settled.status == "SETTLED"
        assert settled.result == "WIN"
        assert settled.payout_cash_units == 210
        assert settled.settled_at is not None

    def test_loss_must_pay_zero(self, db_session, pool):
        bet = _place(db_session, pool, 100)
        with pytest.raises(ValidationFailed):
            bets.settle_bet(db_session, bet.id, "LOSS", 50)
        assert db_session.get(Bet, bet.id).status == "OPEN"

    def test_push_returns_cash_stake(self, db_session, pool):
        bet = _place(db_session, pool, 100)
        with pytest.raises(ValidationFailed):
            bets.settle_bet(db_session, bet.id, "PUSH", 90)
        assert bets.settle_bet(db_session, bet.id, "PUSH", 100).result == "PUSH"

    def test_unknown_result_and_negative_payout(self, db_session, pool):
        bet = _place(db_session, pool, 100)
        with pytest.raises(ValidationFailed):
            bets.settle_bet(db_session, bet.id, "CANCELLED", 0)
        with pytest.raises(ValidationFailed):
            bets.settle_bet(db_session, bet.id, "WIN", -1)

    def test_settled_bet_is_terminal(self, db_session, pool):
        bet = _place(db_session, pool, 100)
        bets.settle_bet(db_session, bet.id, "LOSS", 0)
        with pytest.raises(InvalidState):
            bets.settle_bet(db_session, bet.id, "WIN", 190)
        with pytest.raises(InvalidState):
            bets.void_bet(db_session, bet.id)
        with pytest.raises(InvalidState):
            bets.edit_bet(db_session, bet.id, stake_cash_units=50)

    def test_quick_settle(self, db_session, pool):
        loss = _place(db_session, pool, 100)
        push = _place(db_session, pool, 80)
        assert bets.quick_settle(db_session, loss.id, "LOSS").payout_cash_units == 0
        assert bets.quick_settle(db_session, push.id, "PUSH").payout_cash_units == 80

    def test_quick_settle_rejects_win(self, db_session, pool):
        bet = _place(db_session, pool, 100)
        with pytest.raises(ValidationFailed):
            bets.quick_settle(db_session, bet.id, "WIN")

    def test_missing_bet(self, db_session, pool):
        with pytest.raises(NotFound):
            bets.settle_bet(db_session, 999, "LOSS", 0)


# ---------------------------------------------------------------------------
# Void
# ---------------------------------------------------------------------------

class TestVoidBet:
    def test_void_restores_free_play(self, db_session, pool):
        _give_free_play(db_session, pool.alice_id, 100)
        bet = _place(db_session, pool, 50, fp=70)
        assert _balance(db_session, pool.alice_id) == 30
        voided = bets.void_bet(db_session, bet.id)
        assert voided.status == "VOIDED"
        assert _balance(db_session, pool.alice_id) == 100

    def test_cash_only_void_leaves_balance(self, db_session, pool):
        _give_free_play(db_session, pool.alice_id, 25)
        bet = _place(db_session, pool, 100)
        bets.void_bet(db_session, bet.id)
        assert _balance(db_session, pool.alice_id) == 25

    def test_void_twice_rejected(self, db_session, pool):
        bet = _place(db_session, pool, 100)
        bets.void_bet(db_session, bet.id)
        with pytest.raises(InvalidState):
            bets.void_bet(db_session, bet.id)


# ---------------------------------------------------------------------------
# Edit
# ---------------------------------------------------------------------------

class TestEditBet:
    def test_cash_increase_checked_against_released_stake(self, db_session, pool):
        bet = _place(db_session, pool, 600)
        # available 400 + released 600 = 1000
        edited = bets.edit_bet(db_session, bet.id, stake_cash_units=1000)
        assert edited.stake_cash_units == 1000
        with pytest.raises(CreditExceeded):
            bets.edit_bet(db_session, bet.id, stake_cash_units=1001)
        assert db_session.get(Bet, bet.id).stake_cash_units == 1000

    def test_cash_edit_override(self, db_session, pool):
        bet = _place(db_session, pool, 600)
        edited = bets.edit_bet(db_session, bet.id, stake_cash_units=2000, override_credit=True)
        assert edited.stake_cash_units == 2000

    def test_cash_decrease_accepted_when_over_limit(self, db_session, pool):
        _place(db_session, pool, 900)
        bet = _place(db_session, pool, 600, override_credit=True)
        assert ledger.get_credit_info(db_session, pool.week_id, pool.alice_id).available_credit == -500

        edited = bets.edit_bet(db_session, bet.id, stake_cash_units=200)
        assert edited.stake_cash_units == 200
        assert ledger.get_credit_info(db_session, pool.week_id, pool.alice_id).available_credit == -100

        # still over the limit, so growing it back is checked against -100 + 200
        with pytest.raises(CreditExceeded) as exc:
            bets.edit_bet(db_session, bet.id, stake_cash_units=300)
        assert exc.value.available == 100

    def test_free_play_delta_applied(self, db_session, pool):
        _give_free_play(db_session, pool.alice_id, 100)
        bet = _place(db_session, pool, 0, fp=40)
        bets.edit_bet(db_session, bet.id, stake_free_play_units=90)
        assert _balance(db_session, pool.alice_id) == 10
        bets.edit_bet(db_session, bet.id, stake_free_play_units=20)
        assert _balance(db_session, pool.alice_id) == 80

    def test_free_play_increase_beyond_balance(self, db_session, pool):
        _give_free_play(db_session, pool.alice_id, 100)
        bet = _place(db_session, pool, 0, fp=80)
        with pytest.raises(FreePlayInsufficient):
            bets.edit_bet(db_session, bet.id, stake_free_play_units=110)
        assert _balance(db_session, pool.alice_id) == 20
        assert db_session.get(Bet, bet.id).stake_free_play_units == 80

    def test_fields_updated(self, db_session, pool):
        bet = _place(db_session, pool, 100)
        edited = bets.edit_bet(
            db_session, bet.id, description="Bills +3.5", odds_american=120, sport="NFL"
        )
        assert edited.description == "Bills +3.5"
        assert edited.odds_american == 120
        assert edited.sport == "NFL"
        assert edited.stake_cash_units == 100

    def test_edit_cannot_zero_both_stakes(self, db_session, pool):
        bet = _place(db_session, pool, 100)
        with pytest.raises(ValidationFailed):
            bets.edit_bet(db_session, bet.id, stake_cash_units=0)


# ---------------------------------------------------------------------------
# Closed week
# ---------------------------------------------------------------------------

def test_closed_week_rejects_bet_changes(db_session, pool):
    settled = _place(db_session, pool, 100)
    bets.settle_bet(db_session, settled.id, "LOSS", 0)
    settlement.close_week(db_session, pool.week_id, pool.config)

    with pytest.raises(InvalidState):
        _place(db_session, pool, 100)
    with pytest.raises(InvalidState):
        bets.void_bet(db_session, settled.id)
