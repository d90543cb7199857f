"""
Database models for the betting pool ledger
SQLAlchemy ORM (SQLite for local use, PostgreSQL in production)
"""

from sqlalchemy import (
    create_engine,
    CheckConstraint,
    Column,
    Integer,
    String,
    DateTime,
    Boolean,
    JSON,
    Text,
    ForeignKey,
    Index,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import declarative_base, sessionmaker, relationship
from datetime import datetime
import logging
import os
from dotenv import load_dotenv

from betpool.core.states import (
    AWARD_DEFAULT_REBATE,
    AWARD_EARNED,
    BET_OPEN,
    PROMO_LOSS_REBATE,
    WEEK_OPEN,
)

load_dotenv()

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./betpool.db")

# SQLite connections are shared across FastAPI's worker threads
_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, pool_pre_ping=True, echo=False, connect_args=_connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


# Dependency for FastAPI
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


class Member(Base):
    """Pool member. The free-play balance runs across weeks."""

    __tablename__ = "members"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), unique=True, nullable=False)
    free_play_balance = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, default=datetime.utcnow)

    week_members = relationship("WeekMember", back_populates="member")

    __table_args__ = (
        CheckConstraint("free_play_balance >= 0", name="ck_member_free_play_non_negative"),
    )


class Week(Base):
    """One betting week. Terminal once CLOSED."""

    __tablename__ = "weeks"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    status = Column(String(10), nullable=False, default=WEEK_OPEN, index=True)  # OPEN | CLOSED
    start_at = Column(DateTime, nullable=False)
    end_at = Column(DateTime, nullable=False)
    closed_at = Column(DateTime)

    created_at = Column(DateTime, default=datetime.utcnow)

    # Everything below is owned by the week
    week_members = relationship(
        "WeekMember", back_populates="week", cascade="all, delete-orphan"
    )
    bets = relationship("Bet", back_populates="week", cascade="all, delete-orphan")
    promos = relationship("Promo", back_populates="week", cascade="all, delete-orphan")
    free_play_awards = relationship(
        "FreePlayAward", back_populates="week", cascade="all, delete-orphan"
    )
    statements = relationship(
        "WeekStatement", back_populates="week", cascade="all, delete-orphan"
    )


class WeekMember(Base):
    """Enrollment of a member in a week, with that week's credit limit."""

    __tablename__ = "week_members"

    id = Column(Integer, primary_key=True, index=True)
    week_id = Column(Integer, ForeignKey("weeks.id", ondelete="CASCADE"), nullable=False, index=True)
    member_id = Column(Integer, ForeignKey("members.id"), nullable=False, index=True)
    credit_limit_units = Column(Integer, nullable=False, default=1000)

    week = relationship("Week", back_populates="week_members")
    member = relationship("Member", back_populates="week_members")

    __table_args__ = (
        UniqueConstraint("week_id", "member_id", name="_week_member_uc"),
        CheckConstraint("credit_limit_units >= 0", name="ck_week_member_credit_non_negative"),
    )


class Bet(Base):
    """A wager. OPEN -> SETTLED | VOIDED."""

    __tablename__ = "bets"

    id = Column(Integer, primary_key=True, index=True)
    week_id = Column(Integer, ForeignKey("weeks.id", ondelete="CASCADE"), nullable=False, index=True)
    member_id = Column(Integer, ForeignKey("members.id"), nullable=False, index=True)

    # Bet details
    description = Column(String(300), nullable=False)  # "Chiefs -3.5"
    odds_american = Column(Integer, nullable=False)
    event_key = Column(String(200), index=True)  # Same key on both sides of one event
    sport = Column(String(50))  # "nfl", "golf" - promo filtering only
    bet_type = Column(String(50))  # "spread", "outright" - promo filtering only

    # Sizing
    stake_cash_units = Column(Integer, nullable=False, default=0)
    stake_free_play_units = Column(Integer, nullable=False, default=0)

    # Lifecycle
    status = Column(String(10), nullable=False, default=BET_OPEN, index=True)  # OPEN | SETTLED | VOIDED
    result = Column(String(10))  # WIN | LOSS | PUSH, null until settled
    payout_cash_units = Column(Integer)  # Total return incl. stake, null until settled
    placed_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    settled_at = Column(DateTime)

    week = relationship("Week", back_populates="bets")
    member = relationship("Member")

    __table_args__ = (
        CheckConstraint("stake_cash_units >= 0", name="ck_bet_cash_stake_non_negative"),
        CheckConstraint("stake_free_play_units >= 0", name="ck_bet_fp_stake_non_negative"),
    )


class Promo(Base):
    """A loss-rebate promotion configured for one week."""

    __tablename__ = "promos"

    id = Column(Integer, primary_key=True, index=True)
    week_id = Column(Integer, ForeignKey("weeks.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    type = Column(String(20), nullable=False, default=PROMO_LOSS_REBATE)
    active = Column(Boolean, nullable=False, default=True)
    rule_json = Column(JSON, nullable=False)  # camelCase wire format, see core.promo_rule

    created_at = Column(DateTime, default=datetime.utcnow)

    week = relationship("Week", back_populates="promos")
    awards = relationship("FreePlayAward", back_populates="promo")


class FreePlayAward(Base):
    """Free play earned by a member in a week (manual, promo or default rebate)."""

    __tablename__ = "free_play_awards"

    id = Column(Integer, primary_key=True, index=True)
    week_id = Column(Integer, ForeignKey("weeks.id", ondelete="CASCADE"), nullable=False, index=True)
    member_id = Column(Integer, ForeignKey("members.id"), nullable=False, index=True)
    promo_id = Column(Integer, ForeignKey("promos.id"), index=True)

    amount_units = Column(Integer, nullable=False)
    source = Column(String(20), nullable=False)  # MANUAL | PROMO | DEFAULT_REBATE
    status = Column(String(10), nullable=False, default=AWARD_EARNED)  # EARNED | VOIDED
    notes = Column(Text)

    created_at = Column(DateTime, default=datetime.utcnow)
    # Set when the award was credited to Member.free_play_balance at week close
    applied_at = Column(DateTime)

    week = relationship("Week", back_populates="free_play_awards")
    member = relationship("Member")
    promo = relationship("Promo", back_populates="awards")

    __table_args__ = (
        UniqueConstraint("promo_id", "member_id", name="_promo_member_award_uc"),
        Index(
            "ix_default_rebate_once",
            "week_id",
            "member_id",
            unique=True,
            sqlite_where=text(f"source = '{AWARD_DEFAULT_REBATE}'"),
            postgresql_where=text(f"source = '{AWARD_DEFAULT_REBATE}'"),
        ),
        CheckConstraint("amount_units > 0", name="ck_award_positive"),
    )


class WeekStatement(Base):
    """Final per-member figures for a closed week."""

    __tablename__ = "week_statements"

    id = Column(Integer, primary_key=True, index=True)
    week_id = Column(Integer, ForeignKey("weeks.id", ondelete="CASCADE"), nullable=False, index=True)
    member_id = Column(Integer, ForeignKey("members.id"), nullable=False, index=True)

    cash_profit_units = Column(Integer, nullable=False, default=0)
    free_play_earned_units = Column(Integer, nullable=False, default=0)
    weekly_score_units = Column(Integer, nullable=False, default=0)
    owes_house_units = Column(Integer, nullable=False, default=0)
    house_owes_units = Column(Integer, nullable=False, default=0)
    house_owes_free_play_units = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    week = relationship("Week", back_populates="statements")
    member = relationship("Member")

    __table_args__ = (UniqueConstraint("week_id", "member_id", name="_week_statement_uc"),)


# Create all tables
def init_db():
    """Initialize database tables"""
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    init_db()
