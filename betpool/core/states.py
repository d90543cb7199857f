"""Status, result and source identifiers stored in the database.

Plain string constants rather than Enum members so they can be written to
``String`` columns and compared against request payloads without
conversion.
"""

from __future__ import annotations

from typing import Final, FrozenSet

# Week lifecycle
WEEK_OPEN: Final[str] = "OPEN"
WEEK_CLOSED: Final[str] = "CLOSED"

# Bet lifecycle: OPEN -> SETTLED | VOIDED (both terminal)
BET_OPEN: Final[str] = "OPEN"
BET_SETTLED: Final[str] = "SETTLED"
BET_VOIDED: Final[str] = "VOIDED"

# Bet results (only set once SETTLED)
RESULT_WIN: Final[str] = "WIN"
RESULT_LOSS: Final[str] = "LOSS"
RESULT_PUSH: Final[str] = "PUSH"
BET_RESULTS: Final[FrozenSet[str]] = frozenset({RESULT_WIN, RESULT_LOSS, RESULT_PUSH})

# Free-play awards
AWARD_MANUAL: Final[str] = "MANUAL"
AWARD_PROMO: Final[str] = "PROMO"
AWARD_DEFAULT_REBATE: Final[str] = "DEFAULT_REBATE"

AWARD_EARNED: Final[str] = "EARNED"
AWARD_VOIDED: Final[str] = "VOIDED"

# Promo types
PROMO_LOSS_REBATE: Final[str] = "LOSS_REBATE"
