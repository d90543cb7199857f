"""Tests for pure rebate, credit and statement arithmetic."""

from datetime import datetime
from types import SimpleNamespace

import pytest

from betpool.core.promo_rule import LossRebateRule, SportBetTypeFilter
from betpool.core.rebate_math import (
    available_credit,
    default_rebate,
    evaluate_member,
    is_bet_eligible,
    open_exposure,
    promo_award_units,
    settled_cash_pl,
    statement_figures,
)


def _rule(**overrides):
    fields = dict(
        window_start=datetime(2025, 1, 5),
        window_end=datetime(2025, 1, 12),
        min_handle_units=500,
        percent_back=50,
        cap_units=200,
    )
    fields.update(overrides)
    return LossRebateRule(**fields)


def _bet(stake=100, result=None, status="SETTLED", odds=-110, payout=None,
         placed_at=datetime(2025, 1, 6, 18, 0), event_key=None, sport=None,
         bet_type=None, description="bet"):
    if payout is None and status == "SETTLED":
        payout = 0 if result == "LOSS" else stake
    return SimpleNamespace(
        stake_cash_units=stake,
        result=result,
        status=status,
        odds_american=odds,
        payout_cash_units=payout,
        placed_at=placed_at,
        event_key=event_key,
        sport=sport,
        bet_type=bet_type,
        description=description,
    )


# ---------------------------------------------------------------------------
# Credit
# ---------------------------------------------------------------------------

def test_credit_formula():
    bets = [
        _bet(stake=300, status="OPEN"),
        _bet(stake=100, result="LOSS"),
        _bet(stake=110, result="WIN", payout=210),
        _bet(stake=500, status="VOIDED"),
    ]
    assert open_exposure(bets) == 300
    assert settled_cash_pl(bets) == 0
    assert available_credit(1000, settled_cash_pl(bets), open_exposure(bets)) == 700


# ---------------------------------------------------------------------------
# Eligibility
# ---------------------------------------------------------------------------

def test_window_is_inclusive():
    rule = _rule()
    assert is_bet_eligible(_bet(placed_at=datetime(2025, 1, 5)), rule)
    assert is_bet_eligible(_bet(placed_at=datetime(2025, 1, 12)), rule)
    assert not is_bet_eligible(_bet(placed_at=datetime(2025, 1, 12, 0, 0, 1)), rule)


def test_odds_bounds():
    rule = _rule(odds_min=-200, odds_max=300)
    assert is_bet_eligible(_bet(odds=-200), rule)
    assert not is_bet_eligible(_bet(odds=-250), rule)
    assert not is_bet_eligible(_bet(odds=350), rule)


def test_free_play_and_voided_bets_never_count():
    rule = _rule()
    assert not is_bet_eligible(_bet(stake=0), rule)
    assert not is_bet_eligible(_bet(status="VOIDED"), rule)


def test_structured_filter_applied():
    rule = _rule(bet_filter=SportBetTypeFilter(sport="golf"))
    assert is_bet_eligible(_bet(sport="Golf"), rule)
    assert not is_bet_eligible(_bet(sport="nfl"), rule)


# ---------------------------------------------------------------------------
# Qualification and award
# ---------------------------------------------------------------------------

def test_award_scenario_qualifies_at_150():
    # handle 600, losing stake 300, 50% back, cap 200
    bets = [_bet(stake=300, result="LOSS"), _bet(stake=300, result="WIN", payout=573)]
    r = evaluate_member(_rule(), bets, member_id=1, member_name="Alice")
    assert r.eligible_handle_units == 600
    assert r.eligible_losing_stake == 300
    assert r.qualified
    assert r.projected_award == 150
    assert r.handle_progress == 100.0


def test_award_is_capped():
    bets = [_bet(stake=1000, result="LOSS")]
    r = evaluate_member(_rule(), bets, member_id=1)
    assert r.projected_award == 200


@pytest.mark.parametrize("losing, pct, cap", [
    (333, 33, 50), (999, 100, 1000), (1, 99, 0), (12345, 7, 800),
])
def test_award_never_exceeds_cap(losing, pct, cap):
    assert promo_award_units(losing, pct, cap) <= cap
    assert promo_award_units(losing, pct, cap) == min(cap, losing * pct // 100)


def test_short_handle_not_qualified():
    bets = [_bet(stake=200, result="LOSS")]
    r = evaluate_member(_rule(), bets, member_id=1)
    assert not r.qualified
    assert r.projected_award == 0
    assert r.handle_progress == pytest.approx(40.0)


def test_no_losses_not_qualified():
    bets = [_bet(stake=600, result="WIN", payout=1145)]
    r = evaluate_member(_rule(), bets, member_id=1)
    assert not r.qualified
    assert r.projected_award == 0


def test_zero_min_handle_progress_is_full():
    r = evaluate_member(_rule(min_handle_units=0), [], member_id=1)
    assert r.handle_progress == 100.0
    assert not r.qualified


def test_both_sides_disqualifies():
    bets = [
        _bet(stake=300, result="LOSS", event_key="KC@BUF"),
        _bet(stake=300, result="WIN", payout=573, event_key="KC@BUF"),
    ]
    r = evaluate_member(_rule(disqualify_both_sides=True), bets, member_id=1)
    assert r.disqualified
    assert r.disqualify_reason == "Bet both sides: KC@BUF"
    assert not r.qualified
    assert r.projected_award == 0


def test_both_sides_ignored_when_flag_off():
    bets = [
        _bet(stake=300, result="LOSS", event_key="KC@BUF"),
        _bet(stake=300, result="WIN", payout=573, event_key="KC@BUF"),
    ]
    r = evaluate_member(_rule(), bets, member_id=1)
    assert not r.disqualified
    assert r.projected_award == 150


def test_both_sides_only_counts_eligible_bets():
    bets = [
        _bet(stake=600, result="LOSS", event_key="KC@BUF"),
        _bet(stake=100, result="WIN", payout=190, event_key="KC@BUF", status="VOIDED"),
    ]
    r = evaluate_member(_rule(disqualify_both_sides=True), bets, member_id=1)
    assert not r.disqualified
    assert r.projected_award == 200


# ---------------------------------------------------------------------------
# Default rebate
# ---------------------------------------------------------------------------

def test_default_rebate_floor():
    r = default_rebate(-333, 30, 0)
    assert r.cash_loss == 333
    assert r.default_rebate == 99
    assert r.top_up == 99


def test_default_rebate_tops_up_above_promo():
    r = default_rebate(-1000, 30, 150)
    assert r.default_rebate == 300
    assert r.top_up == 150
    assert r.note(30) == "30% rebate: 1000 loss × 30% = 300 FP (promo: 150, top-up: 150)"


def test_default_rebate_never_negative():
    r = default_rebate(-100, 30, 200)
    assert r.top_up == 0


def test_winning_week_gets_no_rebate():
    r = default_rebate(250, 30, 0)
    assert r.default_rebate == 0
    assert r.top_up == 0


# ---------------------------------------------------------------------------
# Statement figures
# ---------------------------------------------------------------------------

def test_statement_losing_week():
    f = statement_figures(-300, 90)
    assert f.weekly_score_units == -210
    assert f.owes_house_units == 300
    assert f.house_owes_units == 0
    assert f.house_owes_free_play_units == 90


def test_statement_winning_week():
    f = statement_figures(420, 0)
    assert f.weekly_score_units == 420
    assert f.owes_house_units == 0
    assert f.house_owes_units == 420
