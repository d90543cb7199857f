"""Pure arithmetic behind credit, promo rebates, default rebates and statements.

Functions take already-loaded bet rows (anything exposing the ``Bet``
attribute names) so they can be unit-tested with simple stand-in objects
and reused by every service without re-querying.

All amounts are integer units.  Percentages are applied with floor
division so an award is never rounded up past what the rule grants.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from betpool.core.promo_rule import LossRebateRule, to_naive_utc
from betpool.core.states import BET_OPEN, BET_SETTLED, BET_VOIDED, RESULT_LOSS


# ---------------------------------------------------------------------------
# Cash P&L and exposure
# ---------------------------------------------------------------------------

def bet_cash_pl(bet: Any) -> int:
    """``payout - stake`` for a settled bet (a missing payout counts as 0)."""
    return (bet.payout_cash_units or 0) - bet.stake_cash_units


def settled_cash_pl(bets: Iterable[Any]) -> int:
    """Net cash P&L over the SETTLED bets in ``bets``."""
    return sum(bet_cash_pl(b) for b in bets if b.status == BET_SETTLED)


def open_exposure(bets: Iterable[Any]) -> int:
    """Cash currently at risk: sum of cash stakes over OPEN bets."""
    return sum(b.stake_cash_units for b in bets if b.status == BET_OPEN)


def available_credit(credit_limit: int, cash_pl: int, exposure: int) -> int:
    return credit_limit + cash_pl - exposure


# ---------------------------------------------------------------------------
# Promo rebate
# ---------------------------------------------------------------------------

@dataclass
class PromoMemberResult:
    """Progress of one member against one loss-rebate promo."""

    member_id: int
    member_name: str
    eligible_bets_count: int
    eligible_handle_units: int
    eligible_losing_stake: int
    qualified: bool
    disqualified: bool
    projected_award: int
    handle_progress: float
    disqualify_reason: Optional[str] = None


def is_bet_eligible(bet: Any, rule: LossRebateRule) -> bool:
    """True if ``bet`` counts toward ``rule``'s handle and losing stake."""
    if bet.status == BET_VOIDED:
        return False
    placed = to_naive_utc(bet.placed_at)
    if placed < rule.window_start or placed > rule.window_end:
        return False
    if rule.odds_min is not None and bet.odds_american < rule.odds_min:
        return False
    if rule.odds_max is not None and bet.odds_american > rule.odds_max:
        return False
    # Free-play-funded bets never count toward promo handle
    if bet.stake_cash_units <= 0:
        return False
    return rule.bet_filter.matches(bet)


def promo_award_units(losing_stake: int, percent_back: int, cap_units: int) -> int:
    """``min(cap, floor(losing_stake * percent_back / 100))``."""
    return min(cap_units, (losing_stake * percent_back) // 100)


def handle_progress(handle_units: int, min_handle_units: int) -> float:
    if min_handle_units <= 0:
        return 100.0
    return min(100.0, handle_units / min_handle_units * 100.0)


def find_both_sides(bets: Iterable[Any]) -> Optional[str]:
    """First event key carried by two or more of ``bets``, in bet order."""
    counts: Dict[str, int] = {}
    for b in bets:
        if b.event_key:
            counts[b.event_key] = counts.get(b.event_key, 0) + 1
    for key, count in counts.items():
        if count >= 2:
            return key
    return None


def evaluate_member(
    rule: LossRebateRule,
    bets: Iterable[Any],
    member_id: int,
    member_name: str = "",
) -> PromoMemberResult:
    """Evaluate one member's bets for the week against ``rule``."""
    eligible: List[Any] = [b for b in bets if is_bet_eligible(b, rule)]

    handle = sum(b.stake_cash_units for b in eligible)
    losing_stake = sum(b.stake_cash_units for b in eligible if b.result == RESULT_LOSS)

    disqualified = False
    reason = None
    if rule.disqualify_both_sides:
        key = find_both_sides(eligible)
        if key is not None:
            disqualified = True
            reason = f"Bet both sides: {key}"

    qualified = (
        not disqualified
        and handle >= rule.min_handle_units
        and losing_stake > 0
    )
    award = (
        promo_award_units(losing_stake, rule.percent_back, rule.cap_units)
        if qualified
        else 0
    )

    return PromoMemberResult(
        member_id=member_id,
        member_name=member_name,
        eligible_bets_count=len(eligible),
        eligible_handle_units=handle,
        eligible_losing_stake=losing_stake,
        qualified=qualified,
        disqualified=disqualified,
        disqualify_reason=reason,
        projected_award=award,
        handle_progress=handle_progress(handle, rule.min_handle_units),
    )


# ---------------------------------------------------------------------------
# Default rebate
# ---------------------------------------------------------------------------

@dataclass
class DefaultRebate:
    cash_loss: int
    default_rebate: int
    promo_total: int
    top_up: int

    def note(self, percent: int) -> str:
        text = (
            f"{percent}% rebate: {self.cash_loss} loss × {percent}% = "
            f"{self.default_rebate} FP"
        )
        if self.promo_total > 0:
            text += f" (promo: {self.promo_total}, top-up: {self.top_up})"
        return text


def default_rebate(cash_pl: int, percent: int, promo_total: int) -> DefaultRebate:
    """Default loss rebate for a week's net cash P&L.

    Promo and default rebates overlap rather than stack: only the excess of
    the default over the promo awards already earned is granted.
    """
    cash_loss = -cash_pl if cash_pl < 0 else 0
    rebate = (cash_loss * percent) // 100
    return DefaultRebate(
        cash_loss=cash_loss,
        default_rebate=rebate,
        promo_total=promo_total,
        top_up=max(0, rebate - promo_total),
    )


# ---------------------------------------------------------------------------
# Statement
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StatementFigures:
    cash_profit_units: int
    free_play_earned_units: int
    weekly_score_units: int
    owes_house_units: int
    house_owes_units: int
    house_owes_free_play_units: int


def statement_figures(cash_profit: int, free_play_earned: int) -> StatementFigures:
    return StatementFigures(
        cash_profit_units=cash_profit,
        free_play_earned_units=free_play_earned,
        weekly_score_units=cash_profit + free_play_earned,
        owes_house_units=max(0, -cash_profit),
        house_owes_units=max(0, cash_profit),
        house_owes_free_play_units=free_play_earned,
    )
