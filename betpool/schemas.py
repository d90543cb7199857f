"""
Pydantic request/response schemas for the pool API.

Balances and statuses are never writable through these models; they change
only through the ledger services.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator


def _validate_american_odds(v: Optional[int]) -> Optional[int]:
    if v is None:
        return v
    if -100 < v < 100:
        raise ValueError(
            f"odds_american={v} is not valid American odds. "
            "Must be >= +100 or <= -100."
        )
    return v


# ---------------------------------------------------------------------------
# Members and weeks
# ---------------------------------------------------------------------------

class MemberCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)


class MemberResponse(BaseModel):
    id: int
    name: str
    free_play_balance: int

    model_config = {"from_attributes": True}


class WeekCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100, description='e.g. "NFL Week 7"')
    start_at: datetime
    end_at: datetime


class WeekResponse(BaseModel):
    id: int
    name: str
    status: str
    start_at: datetime
    end_at: datetime
    closed_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class WeekMemberCreate(BaseModel):
    member_id: int
    credit_limit_units: Optional[int] = Field(
        None, ge=0, description="Defaults to DEFAULT_CREDIT_LIMIT"
    )


class CreditLimitUpdate(BaseModel):
    credit_limit_units: int = Field(..., ge=0)


class WeekMemberResponse(BaseModel):
    id: int
    week_id: int
    member_id: int
    credit_limit_units: int

    model_config = {"from_attributes": True}


class CreditSnapshotResponse(BaseModel):
    """Per-member credit view: available = limit + cash P&L - open exposure."""

    member_id: int
    credit_limit: int
    open_exposure: int
    cash_pl: int
    available_credit: int
    free_play_balance: int

    model_config = {"from_attributes": True}


# ---------------------------------------------------------------------------
# Bets
# ---------------------------------------------------------------------------

class BetCreate(BaseModel):
    """
    Payload for POST /api/weeks/{week_id}/bets.

    Produced by the bet intake (manual entry or slip parsing).  The core
    validates and stores it; it never interprets the description.
    """

    member_id: int
    description: str = Field(..., min_length=1, max_length=300, description='e.g. "Chiefs -3.5"')
    odds_american: int = Field(..., description="American odds at placement")
    stake_cash_units: int = Field(..., ge=0)
    stake_free_play_units: int = Field(0, ge=0)
    event_key: Optional[str] = Field(None, max_length=200)
    sport: Optional[str] = Field(None, max_length=50)
    bet_type: Optional[str] = Field(None, max_length=50)
    placed_at: Optional[datetime] = None
    override_credit: bool = Field(False, description="Admin only: skip the credit check")

    @field_validator("odds_american")
    @classmethod
    def validate_odds(cls, v: int) -> int:
        return _validate_american_odds(v)

    model_config = {
        "json_schema_extra": {
            "example": {
                "member_id": 3,
                "description": "Chiefs -3.5",
                "odds_american": -110,
                "stake_cash_units": 110,
                "event_key": "KC@BUF",
                "sport": "nfl",
                "bet_type": "spread",
            }
        }
    }


class BetSettle(BaseModel):
    """Supplied by the operator or an external score-matching assistant."""

    result: Literal["WIN", "LOSS", "PUSH"]
    payout_cash_units: int = Field(..., ge=0, description="Total return incl. stake")


class BetQuickSettle(BaseModel):
    result: Literal["LOSS", "PUSH"]


class BetEdit(BaseModel):
    description: Optional[str] = Field(None, min_length=1, max_length=300)
    odds_american: Optional[int] = None
    stake_cash_units: Optional[int] = Field(None, ge=0)
    stake_free_play_units: Optional[int] = Field(None, ge=0)
    event_key: Optional[str] = Field(None, max_length=200)
    sport: Optional[str] = Field(None, max_length=50)
    bet_type: Optional[str] = Field(None, max_length=50)
    override_credit: bool = False

    @field_validator("odds_american")
    @classmethod
    def validate_odds(cls, v: Optional[int]) -> Optional[int]:
        return _validate_american_odds(v)


class BetResponse(BaseModel):
    id: int
    week_id: int
    member_id: int
    description: str
    odds_american: int
    stake_cash_units: int
    stake_free_play_units: int
    status: str
    result: Optional[str] = None
    payout_cash_units: Optional[int] = None
    event_key: Optional[str] = None
    sport: Optional[str] = None
    bet_type: Optional[str] = None
    placed_at: datetime
    settled_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class SuggestedPayoutResponse(BaseModel):
    bet_id: int
    result: str
    payout_cash_units: int
    profit_units: int


# ---------------------------------------------------------------------------
# Promos
# ---------------------------------------------------------------------------

class PromoCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    type: Literal["LOSS_REBATE"] = "LOSS_REBATE"
    rule_json: Dict[str, Any] = Field(..., description="Loss-rebate rule, camelCase keys")

    model_config = {
        "json_schema_extra": {
            "example": {
                "name": "NFL Sunday 50% back",
                "type": "LOSS_REBATE",
                "rule_json": {
                    "windowStart": "2025-01-05T00:00:00Z",
                    "windowEnd": "2025-01-06T08:00:00Z",
                    "minHandleUnits": 500,
                    "percentBack": 50,
                    "capUnits": 200,
                    "oddsMin": -200,
                    "oddsMax": None,
                    "disqualifyBothSides": True,
                    "sport": "nfl",
                    "betType": None,
                },
            }
        }
    }


class PromoUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    rule_json: Optional[Dict[str, Any]] = None


class PromoResponse(BaseModel):
    id: int
    week_id: int
    name: str
    type: str
    active: bool
    rule_json: Dict[str, Any]
    summary: str


class PromoMemberProgress(BaseModel):
    member_id: int
    member_name: str
    eligible_bets_count: int
    eligible_handle_units: int
    eligible_losing_stake: int
    qualified: bool
    disqualified: bool
    disqualify_reason: Optional[str] = None
    projected_award: int
    handle_progress: float

    model_config = {"from_attributes": True}


# ---------------------------------------------------------------------------
# Free play, close, results
# ---------------------------------------------------------------------------

class AwardCreate(BaseModel):
    member_id: int
    amount_units: int = Field(..., gt=0)
    notes: Optional[str] = Field(None, max_length=500)


class AwardResponse(BaseModel):
    id: int
    week_id: int
    member_id: int
    promo_id: Optional[int] = None
    amount_units: int
    source: str
    status: str
    notes: Optional[str] = None
    applied_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class CloseWeekResponse(BaseModel):
    week_id: int
    promo_awards: int
    default_rebates: int
    free_play_credited: int
    statements: int
    closed_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class StatementResponse(BaseModel):
    member_id: int
    member_name: str
    cash_profit_units: int
    free_play_earned_units: int
    weekly_score_units: int
    owes_house_units: int
    house_owes_units: int
    house_owes_free_play_units: int


class WeekResultsResponse(BaseModel):
    week_id: int
    week_name: str
    statements: List[StatementResponse]
    summary_text: str


class LeaderboardEntryResponse(BaseModel):
    member_id: int
    name: str
    total_pl: int
    total_free_play: int
    weeks_played: int
    wins: int
    losses: int
    best_week: int
    worst_week: int
    avg_score: int

    model_config = {"from_attributes": True}
