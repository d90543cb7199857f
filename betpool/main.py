"""
FastAPI application for the betting pool ledger
Thin JSON surface over the ledger, rebate and settlement services
"""

from fastapi import FastAPI, Depends, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from sqlalchemy import text
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional
import logging
import os

from betpool.auth import is_admin, member_id_for, verify_api_key, verify_admin_api_key
from betpool.core.odds_math import suggested_payout
from betpool.core.pool_config import PoolConfig
from betpool.core.promo_rule import parse_rule
from betpool.errors import PoolError
from betpool.models import Base, Bet, Promo, engine, get_db
from betpool.schemas import (
    AwardCreate,
    AwardResponse,
    BetCreate,
    BetEdit,
    BetQuickSettle,
    BetResponse,
    BetSettle,
    CloseWeekResponse,
    CreditLimitUpdate,
    CreditSnapshotResponse,
    LeaderboardEntryResponse,
    MemberCreate,
    MemberResponse,
    PromoCreate,
    PromoMemberProgress,
    PromoResponse,
    PromoUpdate,
    StatementResponse,
    SuggestedPayoutResponse,
    WeekCreate,
    WeekMemberCreate,
    WeekMemberResponse,
    WeekResponse,
    WeekResultsResponse,
)
from betpool.services import bets as bet_service
from betpool.services import pool_admin, promo_engine, settlement, standings
from betpool.services.common import load_bet, load_week
from betpool.services.ledger import get_credit_info, get_week_credit

# Logging setup
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

POOL_CONFIG = PoolConfig.from_env()


def get_pool_config() -> PoolConfig:
    return POOL_CONFIG


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    logger.info("Starting betting pool ledger (default rebate %d%%)", POOL_CONFIG.default_rebate_percent)
    Base.metadata.create_all(bind=engine)
    yield
    logger.info("Shutting down betting pool ledger")


app = FastAPI(
    title="Betting Pool Ledger",
    description="Weekly credit, loss-rebate promos and settlement for a private betting pool",
    version="1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "http://localhost:3000").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PoolError)
async def pool_error_handler(request: Request, exc: PoolError):
    return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})


def _promo_response(promo: Promo) -> PromoResponse:
    return PromoResponse(
        id=promo.id,
        week_id=promo.week_id,
        name=promo.name,
        type=promo.type,
        active=promo.active,
        rule_json=promo.rule_json,
        summary=parse_rule(promo.rule_json).summary(),
    )


def _statement_response(s) -> StatementResponse:
    return StatementResponse(
        member_id=s.member_id,
        member_name=s.member.name,
        cash_profit_units=s.cash_profit_units,
        free_play_earned_units=s.free_play_earned_units,
        weekly_score_units=s.weekly_score_units,
        owes_house_units=s.owes_house_units,
        house_owes_units=s.house_owes_units,
        house_owes_free_play_units=s.house_owes_free_play_units,
    )


# ============================================================================
# PUBLIC ENDPOINTS
# ============================================================================

@app.get("/")
async def root():
    """Health check"""
    return {
        "app": "Betting Pool Ledger",
        "version": "1.0",
        "status": "operational",
        "timestamp": datetime.utcnow().isoformat(),
    }


@app.get("/health")
async def health_check(db: Session = Depends(get_db)):
    """Health check endpoint"""
    health = {"status": "healthy", "database": "connected"}

    try:
        db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("Health check database error: %s", e)
        health["status"] = "degraded"
        health["database"] = f"error: {str(e)}"

    return health


# ============================================================================
# MEMBERS AND WEEKS
# ============================================================================

@app.get("/api/members", response_model=List[MemberResponse])
async def list_members(user: str = Depends(verify_api_key), db: Session = Depends(get_db)):
    return pool_admin.list_members(db)


@app.post("/api/members", response_model=MemberResponse, status_code=201)
async def create_member(
    payload: MemberCreate,
    user: str = Depends(verify_admin_api_key),
    db: Session = Depends(get_db),
):
    return pool_admin.create_member(db, payload.name)


@app.put("/api/members/{member_id}", response_model=MemberResponse)
async def rename_member(
    member_id: int,
    payload: MemberCreate,
    user: str = Depends(verify_admin_api_key),
    db: Session = Depends(get_db),
):
    return pool_admin.rename_member(db, member_id, payload.name)


@app.get("/api/weeks", response_model=List[WeekResponse])
async def list_weeks(user: str = Depends(verify_api_key), db: Session = Depends(get_db)):
    return pool_admin.list_weeks(db)


@app.post("/api/weeks", response_model=WeekResponse, status_code=201)
async def create_week(
    payload: WeekCreate,
    user: str = Depends(verify_admin_api_key),
    db: Session = Depends(get_db),
):
    return pool_admin.create_week(db, payload.name, payload.start_at, payload.end_at)


@app.get("/api/weeks/{week_id}", response_model=WeekResponse)
async def get_week(week_id: int, user: str = Depends(verify_api_key), db: Session = Depends(get_db)):
    return load_week(db, week_id)


@app.post("/api/weeks/{week_id}/members", response_model=WeekMemberResponse, status_code=201)
async def add_member_to_week(
    week_id: int,
    payload: WeekMemberCreate,
    user: str = Depends(verify_admin_api_key),
    db: Session = Depends(get_db),
    config: PoolConfig = Depends(get_pool_config),
):
    return pool_admin.add_member_to_week(
        db, week_id, payload.member_id, payload.credit_limit_units, config
    )


@app.delete("/api/weeks/{week_id}/members/{member_id}", status_code=204)
async def remove_member_from_week(
    week_id: int,
    member_id: int,
    user: str = Depends(verify_admin_api_key),
    db: Session = Depends(get_db),
):
    pool_admin.remove_member_from_week(db, week_id, member_id)


@app.put("/api/weeks/{week_id}/members/{member_id}/credit-limit", response_model=WeekMemberResponse)
async def set_credit_limit(
    week_id: int,
    member_id: int,
    payload: CreditLimitUpdate,
    user: str = Depends(verify_admin_api_key),
    db: Session = Depends(get_db),
):
    return pool_admin.set_credit_limit(db, week_id, member_id, payload.credit_limit_units)


# ============================================================================
# CREDIT
# ============================================================================

@app.get("/api/weeks/{week_id}/credit", response_model=List[CreditSnapshotResponse])
async def week_credit(week_id: int, user: str = Depends(verify_api_key), db: Session = Depends(get_db)):
    load_week(db, week_id)
    return get_week_credit(db, week_id)


@app.get("/api/weeks/{week_id}/members/{member_id}/credit", response_model=CreditSnapshotResponse)
async def member_credit(
    week_id: int,
    member_id: int,
    user: str = Depends(verify_api_key),
    db: Session = Depends(get_db),
):
    load_week(db, week_id)
    return get_credit_info(db, week_id, member_id)


# ============================================================================
# BETS
# ============================================================================

@app.get("/api/weeks/{week_id}/bets", response_model=List[BetResponse])
async def list_bets(
    week_id: int,
    member_id: Optional[int] = Query(default=None),
    status: Optional[str] = Query(default=None, pattern="^(OPEN|SETTLED|VOIDED)$"),
    user: str = Depends(verify_api_key),
    db: Session = Depends(get_db),
):
    load_week(db, week_id)
    query = db.query(Bet).filter(Bet.week_id == week_id)
    if member_id is not None:
        query = query.filter(Bet.member_id == member_id)
    if status is not None:
        query = query.filter(Bet.status == status)
    return query.order_by(Bet.placed_at.desc(), Bet.id.desc()).all()


@app.post("/api/weeks/{week_id}/bets", response_model=BetResponse, status_code=201)
async def place_bet(
    week_id: int,
    payload: BetCreate,
    user: str = Depends(verify_api_key),
    db: Session = Depends(get_db),
):
    """Place a bet. Members bet only for themselves; only the operator may skip the credit check."""
    if not is_admin(user) and member_id_for(user) != payload.member_id:
        raise HTTPException(status_code=403, detail="API key does not belong to this member")
    if payload.override_credit and not is_admin(user):
        raise HTTPException(status_code=403, detail="Credit override requires admin access")

    bet = bet_service.place_bet(
        db,
        week_id,
        payload.member_id,
        description=payload.description,
        odds_american=payload.odds_american,
        stake_cash_units=payload.stake_cash_units,
        stake_free_play_units=payload.stake_free_play_units,
        event_key=payload.event_key,
        sport=payload.sport,
        bet_type=payload.bet_type,
        placed_at=payload.placed_at,
        override_credit=payload.override_credit,
    )
    logger.info("Bet %d placed by %s", bet.id, user)
    return bet


@app.post("/api/bets/{bet_id}/settle", response_model=BetResponse)
async def settle_bet(
    bet_id: int,
    payload: BetSettle,
    user: str = Depends(verify_admin_api_key),
    db: Session = Depends(get_db),
):
    return bet_service.settle_bet(db, bet_id, payload.result, payload.payout_cash_units)


@app.post("/api/bets/{bet_id}/quick-settle", response_model=BetResponse)
async def quick_settle(
    bet_id: int,
    payload: BetQuickSettle,
    user: str = Depends(verify_admin_api_key),
    db: Session = Depends(get_db),
):
    return bet_service.quick_settle(db, bet_id, payload.result)


@app.get("/api/bets/{bet_id}/suggested-payout", response_model=SuggestedPayoutResponse)
async def get_suggested_payout(
    bet_id: int,
    result: str = Query(default="WIN", pattern="^(WIN|LOSS|PUSH)$"),
    user: str = Depends(verify_api_key),
    db: Session = Depends(get_db),
):
    """Payout a settlement source would report for ``result`` at the bet's odds."""
    bet = load_bet(db, bet_id)
    payout = suggested_payout(
        bet.stake_cash_units, bet.stake_free_play_units, bet.odds_american, result
    )
    return SuggestedPayoutResponse(
        bet_id=bet.id,
        result=result,
        payout_cash_units=payout,
        profit_units=payout - bet.stake_cash_units,
    )


@app.post("/api/bets/{bet_id}/void", response_model=BetResponse)
async def void_bet(
    bet_id: int,
    user: str = Depends(verify_admin_api_key),
    db: Session = Depends(get_db),
):
    return bet_service.void_bet(db, bet_id)


@app.patch("/api/bets/{bet_id}", response_model=BetResponse)
async def edit_bet(
    bet_id: int,
    payload: BetEdit,
    user: str = Depends(verify_admin_api_key),
    db: Session = Depends(get_db),
):
    return bet_service.edit_bet(
        db,
        bet_id,
        description=payload.description,
        odds_american=payload.odds_american,
        stake_cash_units=payload.stake_cash_units,
        stake_free_play_units=payload.stake_free_play_units,
        event_key=payload.event_key,
        sport=payload.sport,
        bet_type=payload.bet_type,
        override_credit=payload.override_credit,
    )


# ============================================================================
# PROMOS
# ============================================================================

@app.get("/api/weeks/{week_id}/promos", response_model=List[PromoResponse])
async def list_promos(week_id: int, user: str = Depends(verify_api_key), db: Session = Depends(get_db)):
    load_week(db, week_id)
    promos = db.query(Promo).filter(Promo.week_id == week_id).order_by(Promo.id.asc()).all()
    return [_promo_response(p) for p in promos]


@app.post("/api/weeks/{week_id}/promos", response_model=PromoResponse, status_code=201)
async def create_promo(
    week_id: int,
    payload: PromoCreate,
    user: str = Depends(verify_admin_api_key),
    db: Session = Depends(get_db),
):
    promo = promo_engine.create_promo(db, week_id, payload.name, payload.rule_json, payload.type)
    return _promo_response(promo)


@app.put("/api/promos/{promo_id}", response_model=PromoResponse)
async def update_promo(
    promo_id: int,
    payload: PromoUpdate,
    user: str = Depends(verify_admin_api_key),
    db: Session = Depends(get_db),
):
    promo = promo_engine.update_promo(db, promo_id, payload.name, payload.rule_json)
    return _promo_response(promo)


@app.post("/api/promos/{promo_id}/toggle", response_model=PromoResponse)
async def toggle_promo(
    promo_id: int,
    user: str = Depends(verify_admin_api_key),
    db: Session = Depends(get_db),
):
    return _promo_response(promo_engine.toggle_promo(db, promo_id))


@app.delete("/api/promos/{promo_id}", status_code=204)
async def delete_promo(
    promo_id: int,
    user: str = Depends(verify_admin_api_key),
    db: Session = Depends(get_db),
):
    promo_engine.delete_promo(db, promo_id)


@app.get("/api/promos/{promo_id}/progress", response_model=List[PromoMemberProgress])
async def promo_progress(promo_id: int, user: str = Depends(verify_api_key), db: Session = Depends(get_db)):
    """Live per-member qualification progress for one promo."""
    return promo_engine.compute_promo_results(db, promo_id)


# ============================================================================
# FREE PLAY
# ============================================================================

@app.get("/api/weeks/{week_id}/awards", response_model=List[AwardResponse])
async def list_awards(week_id: int, user: str = Depends(verify_api_key), db: Session = Depends(get_db)):
    load_week(db, week_id)
    return pool_admin.list_week_awards(db, week_id)


@app.post("/api/weeks/{week_id}/awards", response_model=AwardResponse, status_code=201)
async def create_award(
    week_id: int,
    payload: AwardCreate,
    user: str = Depends(verify_admin_api_key),
    db: Session = Depends(get_db),
):
    return pool_admin.create_free_play_award(
        db, week_id, payload.member_id, payload.amount_units, payload.notes
    )


@app.post("/api/awards/{award_id}/void", response_model=AwardResponse)
async def void_award(
    award_id: int,
    user: str = Depends(verify_admin_api_key),
    db: Session = Depends(get_db),
):
    return pool_admin.void_free_play_award(db, award_id)


# ============================================================================
# CLOSE AND RESULTS
# ============================================================================

@app.post("/admin/weeks/{week_id}/close", response_model=CloseWeekResponse)
async def close_week(
    week_id: int,
    user: str = Depends(verify_admin_api_key),
    db: Session = Depends(get_db),
    config: PoolConfig = Depends(get_pool_config),
):
    """Run the close pipeline: promo awards, default rebates, balances, statements."""
    summary = settlement.close_week(db, week_id, config)
    logger.info("Week %d closed by %s", week_id, user)
    return summary


@app.get("/api/weeks/{week_id}/results", response_model=WeekResultsResponse)
async def week_results(week_id: int, user: str = Depends(verify_api_key), db: Session = Depends(get_db)):
    results = standings.week_results(db, week_id)
    return WeekResultsResponse(
        week_id=results.week_id,
        week_name=results.week_name,
        statements=[_statement_response(s) for s in results.statements],
        summary_text=results.summary_text,
    )


@app.get("/api/leaderboard", response_model=List[LeaderboardEntryResponse])
async def get_leaderboard(user: str = Depends(verify_api_key), db: Session = Depends(get_db)):
    return standings.leaderboard(db)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("betpool.main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
