"""Core arithmetic and configuration for the betting pool ledger.

This package contains pure building blocks:

- ``pool_config``: pool-wide constants (default rebate percent, credit limit)
- ``states``: status / result / award-source identifiers
- ``odds_math``: American odds payout arithmetic
- ``promo_rule``: typed loss-rebate rule and its bet filter variant
- ``rebate_math``: promo qualification, default rebate and statement figures

Nothing in this package imports from ``betpool.services`` or ``betpool.models``.
All modules are side-effect-free and unit-testable in isolation.
"""
