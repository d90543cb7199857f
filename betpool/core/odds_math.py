"""American odds arithmetic: the single source of truth for payouts.

Every function here is **pure**: no I/O, no logging, no side effects.

The ledger itself never derives a payout: settlement sources (the operator
or an external score-matching assistant) supply ``payout_cash_units``.  The
helpers below are what those sources use to propose one.

Conventions
-----------
* Odds are integer American odds.  Negative = favourite (risk ``|odds|`` to
  win 100), positive = underdog (risk 100 to win ``odds``).
* A *payout* is the total cash returned, **including** the original stake.
  A loss pays 0 and a push returns the cash stake.
* Fractional profits are rounded half-up to whole units.
"""

from __future__ import annotations

import math
from fractions import Fraction
from typing import Final

from betpool.core.states import RESULT_LOSS, RESULT_PUSH, RESULT_WIN

#: American-odds magnitude floor.  Anything between -100 and +100
#: is not a representable American price.
_MIN_ODDS_MAGNITUDE: Final[int] = 100


def validate_american_odds(odds: int) -> int:
    """Return ``odds`` unchanged, raising ``ValueError`` for impossible prices."""
    if abs(int(odds)) < _MIN_ODDS_MAGNITUDE:
        raise ValueError(
            f"Invalid American odds {odds!r}: magnitude must be >= 100."
        )
    return int(odds)


def _round_half_up(value: Fraction) -> int:
    return math.floor(value + Fraction(1, 2))


def win_profit_units(stake_units: int, odds: int) -> int:
    """Profit (excluding stake) of a winning bet.

    Examples::

        win_profit_units(110, -110) -> 100
        win_profit_units(100, +150) -> 150
        win_profit_units(50, -120)  -> 42
    """
    validate_american_odds(odds)
    if stake_units <= 0:
        return 0
    if odds > 0:
        return _round_half_up(Fraction(stake_units * odds, 100))
    return _round_half_up(Fraction(stake_units * 100, abs(odds)))


def suggested_payout(
    stake_cash_units: int,
    stake_free_play_units: int,
    odds: int,
    result: str,
) -> int:
    """Total cash payout a settlement source should report for ``result``.

    A win returns the combined cash and free-play stake plus the profit on
    that combined stake, so a winning free-play bet is paid out in cash.
    """
    if result == RESULT_LOSS:
        return 0
    if result == RESULT_PUSH:
        return stake_cash_units
    if result != RESULT_WIN:
        raise ValueError(f"Unknown bet result {result!r}")

    total_stake = stake_cash_units + stake_free_play_units
    return total_stake + win_profit_units(total_stake, odds)
