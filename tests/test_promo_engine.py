"""Tests for loss-rebate promo evaluation, award generation and promo admin."""

from datetime import datetime

import pytest

from betpool.errors import InvalidPromoRule, InvalidState, NotFound, PromoHasAwards, ValidationFailed
from betpool.models import FreePlayAward, Promo
from betpool.services import bets, promo_engine

PLACED = datetime(2025, 1, 6, 18, 0)

RULE = {
    "windowStart": "2025-01-05T00:00:00Z",
    "windowEnd": "2025-01-12T00:00:00Z",
    "minHandleUnits": 500,
    "percentBack": 50,
    "capUnits": 200,
    "oddsMin": None,
    "oddsMax": None,
    "disqualifyBothSides": False,
    "sport": None,
    "betType": None,
}


def _place(db, pool, member_id, stake, **kwargs):
    return bets.place_bet(
        db,
        pool.week_id,
        member_id,
        description=kwargs.pop("description", "Chiefs -3.5"),
        odds_american=kwargs.pop("odds_american", -110),
        stake_cash_units=stake,
        placed_at=kwargs.pop("placed_at", PLACED),
        **kwargs,
    )


def _settle(db, bet, result):
    payout = {"LOSS": 0, "PUSH": bet.stake_cash_units}.get(result)
    if payout is None:
        payout = bet.stake_cash_units + bet.stake_cash_units * 100 // 110
    return bets.settle_bet(db, bet.id, result, payout)


def _qualifying_week(db, pool):
    """Alice: 600 handle, 300 lost. Bob: 100 handle, 100 lost."""
    _settle(db, _place(db, pool, pool.alice_id, 300), "LOSS")
    _settle(db, _place(db, pool, pool.alice_id, 300), "WIN")
    _settle(db, _place(db, pool, pool.bob_id, 100), "LOSS")


# ---------------------------------------------------------------------------
# Administration
# ---------------------------------------------------------------------------

def test_create_promo_normalises_rule(db_session, pool):
    promo = promo_engine.create_promo(
        db_session, pool.week_id, "Sunday 50%", dict(RULE, percentBack=50.0)
    )
    assert promo.active is True
    assert promo.type == "LOSS_REBATE"
    assert promo.rule_json["percentBack"] == 50
    assert promo.rule_json["eventKeyPattern"] is None


def test_create_promo_rejects_bad_rule(db_session, pool):
    with pytest.raises(InvalidPromoRule):
        promo_engine.create_promo(db_session, pool.week_id, "Bad", dict(RULE, percentBack=0))
    assert db_session.query(Promo).count() == 0


def test_create_promo_rejects_unknown_type(db_session, pool):
    with pytest.raises(ValidationFailed):
        promo_engine.create_promo(db_session, pool.week_id, "Boost", RULE, promo_type="ODDS_BOOST")


def test_update_and_toggle(db_session, pool):
    promo = promo_engine.create_promo(db_session, pool.week_id, "Sunday", RULE)
    updated = promo_engine.update_promo(
        db_session, promo.id, name="Sunday NFL", rule_json=dict(RULE, sport="nfl")
    )
    assert updated.name == "Sunday NFL"
    assert updated.rule_json["sport"] == "nfl"

    assert promo_engine.toggle_promo(db_session, promo.id).active is False
    assert promo_engine.toggle_promo(db_session, promo.id).active is True


def test_delete_promo_without_awards(db_session, pool):
    promo = promo_engine.create_promo(db_session, pool.week_id, "Sunday", RULE)
    promo_engine.delete_promo(db_session, promo.id)
    with pytest.raises(NotFound):
        promo_engine.compute_promo_results(db_session, promo.id)


def test_delete_promo_with_awards_rejected(db_session, pool):
    promo = promo_engine.create_promo(db_session, pool.week_id, "Sunday", RULE)
    _qualifying_week(db_session, pool)
    promo_engine.generate_promo_awards(db_session, pool.week_id)
    db_session.commit()

    with pytest.raises(PromoHasAwards) as exc:
        promo_engine.delete_promo(db_session, promo.id)
    assert exc.value.award_count == 1
    assert db_session.get(Promo, promo.id) is not None


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------

def test_progress_per_member(db_session, pool):
    promo = promo_engine.create_promo(db_session, pool.week_id, "Sunday", RULE)
    _qualifying_week(db_session, pool)

    results = {r.member_name: r for r in promo_engine.compute_promo_results(db_session, promo.id)}
    alice, bob = results["Alice"], results["Bob"]

    assert alice.eligible_handle_units == 600
    assert alice.eligible_losing_stake == 300
    assert alice.qualified
    assert alice.projected_award == 150

    assert not bob.qualified
    assert bob.projected_award == 0
    assert bob.handle_progress == pytest.approx(20.0)


def test_open_bets_count_toward_handle(db_session, pool):
    promo = promo_engine.create_promo(db_session, pool.week_id, "Sunday", RULE)
    _place(db_session, pool, pool.alice_id, 600)
    alice = promo_engine.compute_promo_results(db_session, promo.id)[0]
    assert alice.eligible_handle_units == 600
    assert alice.handle_progress == 100.0
    assert not alice.qualified


def test_bets_outside_window_ignored(db_session, pool):
    promo = promo_engine.create_promo(db_session, pool.week_id, "Sunday", RULE)
    late = _place(db_session, pool, pool.alice_id, 600, placed_at=datetime(2025, 1, 13))
    _settle(db_session, late, "LOSS")
    alice = promo_engine.compute_promo_results(db_session, promo.id)[0]
    assert alice.eligible_bets_count == 0


def test_both_sides_disqualifies(db_session, pool):
    promo = promo_engine.create_promo(
        db_session, pool.week_id, "No hedging", dict(RULE, disqualifyBothSides=True)
    )
    _settle(db_session, _place(db_session, pool, pool.alice_id, 300, event_key="KC@BUF"), "LOSS")
    _settle(db_session, _place(db_session, pool, pool.alice_id, 300, event_key="KC@BUF"), "WIN")

    alice = promo_engine.compute_promo_results(db_session, promo.id)[0]
    assert alice.disqualified
    assert alice.disqualify_reason == "Bet both sides: KC@BUF"
    assert alice.projected_award == 0


# ---------------------------------------------------------------------------
# Award generation
# ---------------------------------------------------------------------------

def test_generate_awards_once_per_member(db_session, pool):
    promo = promo_engine.create_promo(db_session, pool.week_id, "Sunday", RULE)
    _qualifying_week(db_session, pool)

    first = promo_engine.generate_promo_awards(db_session, pool.week_id)
    db_session.commit()
    assert first.created_count == 1
    award = first.awards_created[0]
    assert award.member_id == pool.alice_id
    assert award.promo_id == promo.id
    assert award.amount_units == 150
    assert award.source == "PROMO"
    assert award.notes == "Sunday: 300 losing units × 50%"

    second = promo_engine.generate_promo_awards(db_session, pool.week_id)
    db_session.commit()
    assert second.created_count == 0
    assert second.already_awarded == 1
    assert db_session.query(FreePlayAward).count() == 1


def test_inactive_promo_not_awarded(db_session, pool):
    promo = promo_engine.create_promo(db_session, pool.week_id, "Sunday", RULE)
    promo_engine.toggle_promo(db_session, promo.id)
    _qualifying_week(db_session, pool)

    run = promo_engine.generate_promo_awards(db_session, pool.week_id)
    assert run.promos_evaluated == 0
    assert run.created_count == 0


def test_promo_changes_rejected_after_close(db_session, pool):
    from betpool.services import settlement

    promo = promo_engine.create_promo(db_session, pool.week_id, "Sunday", RULE)
    settlement.close_week(db_session, pool.week_id, pool.config)

    with pytest.raises(InvalidState):
        promo_engine.toggle_promo(db_session, promo.id)
    with pytest.raises(InvalidState):
        promo_engine.create_promo(db_session, pool.week_id, "Late", RULE)
