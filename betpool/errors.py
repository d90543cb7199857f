"""
Domain errors raised by the pool services.

Every error is a ``ValueError`` so callers that only care about "bad
request" can catch one type, and each carries the limiting numbers that
explain the rejection.  The API layer maps them to HTTP status codes.
"""

from typing import Optional


class PoolError(ValueError):
    """Base class for every rejection raised by the ledger services."""

    status_code = 400


class NotFound(PoolError):
    status_code = 404

    def __init__(self, entity: str, entity_id: object):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class ValidationFailed(PoolError):
    status_code = 422


class InvalidPromoRule(ValidationFailed):
    """Promo ``rule_json`` could not be parsed into a loss-rebate rule."""


class InvalidState(PoolError):
    """Transition attempted on a terminal bet/award or a CLOSED week."""

    status_code = 409


class CreditExceeded(PoolError):
    status_code = 409

    def __init__(self, stake: int, available: int):
        self.stake = stake
        self.available = available
        super().__init__(f"Stake {stake} exceeds available credit {available}")


class FreePlayInsufficient(PoolError):
    status_code = 409

    def __init__(self, requested: int, balance: int):
        self.requested = requested
        self.balance = balance
        super().__init__(
            f"Free play stake {requested} exceeds free play balance {balance}"
        )


class WeekNotCloseable(PoolError):
    status_code = 409

    def __init__(self, open_bets: int, week_id: Optional[int] = None):
        self.open_bets = open_bets
        self.week_id = week_id
        super().__init__(f"Cannot close week: {open_bets} open bets remaining")


class PromoHasAwards(PoolError):
    status_code = 409

    def __init__(self, award_count: int):
        self.award_count = award_count
        super().__init__(
            f"Cannot delete promo with {award_count} existing awards. "
            "Deactivate it instead."
        )
