"""Pool-level configuration: every tunable business constant in one place.

:class:`PoolConfig` is a frozen dataclass carrying the constants that the
rebate policy and pool administration need.  Nowhere else in the codebase
should the default rebate percentage or the default credit limit be
hard-coded; services receive a ``PoolConfig`` instance instead.

Typical usage::

    from betpool.core.pool_config import PoolConfig

    cfg = PoolConfig.from_env()

    # Override a single constant for a promotional season:
    from dataclasses import replace
    generous = replace(cfg, default_rebate_percent=40)
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Final

#: Percentage of a losing week's cash loss returned as free play when no
#: promo covers more.
DEFAULT_REBATE_PERCENT: Final[int] = 30

#: Credit ceiling given to a member when they are enrolled in a week
#: without an explicit limit.
DEFAULT_CREDIT_LIMIT_UNITS: Final[int] = 1000


@dataclass(frozen=True)
class PoolConfig:
    """Immutable configuration bundle for one pool.

    Attributes:
        default_rebate_percent: Flat loss-rebate percentage (0-100) applied
            at week close to every member with a net cash loss.  Promo
            awards already earned that week are subtracted from it.
        default_credit_limit_units: Per-week credit limit used when a
            member is enrolled without one.
    """

    default_rebate_percent: int = DEFAULT_REBATE_PERCENT
    default_credit_limit_units: int = DEFAULT_CREDIT_LIMIT_UNITS

    def __post_init__(self) -> None:
        if not 0 <= self.default_rebate_percent <= 100:
            raise ValueError(
                f"default_rebate_percent must be in [0, 100], "
                f"got {self.default_rebate_percent!r}"
            )
        if self.default_credit_limit_units < 0:
            raise ValueError(
                f"default_credit_limit_units must be >= 0, "
                f"got {self.default_credit_limit_units!r}"
            )

    @classmethod
    def from_env(cls) -> PoolConfig:
        """Build a config from ``DEFAULT_REBATE_PERCENT`` / ``DEFAULT_CREDIT_LIMIT``."""
        return cls(
            default_rebate_percent=int(
                os.getenv("DEFAULT_REBATE_PERCENT", str(DEFAULT_REBATE_PERCENT))
            ),
            default_credit_limit_units=int(
                os.getenv("DEFAULT_CREDIT_LIMIT", str(DEFAULT_CREDIT_LIMIT_UNITS))
            ),
        )
