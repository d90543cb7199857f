#!/usr/bin/env python3
"""
Database initialization script
Creates all tables and optionally seeds a demo pool
"""

import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

# Load .env file
from dotenv import load_dotenv
load_dotenv()

from betpool.models import Base, engine, SessionLocal, Member
from betpool.core.pool_config import PoolConfig
from betpool.services import pool_admin, promo_engine
from datetime import datetime, timedelta
import logging
from sqlalchemy import text, inspect

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

DEMO_MEMBERS = ["Alex", "Jordan", "Sam", "Taylor"]


def init_database(drop_existing: bool = False):
    """
    Initialize database tables

    Args:
        drop_existing: If True, drops all tables first (DANGER: data loss!)
    """
    logger.info("Initializing pool database...")

    if drop_existing:
        logger.warning("Dropping all existing tables!")
        response = input("Are you sure? This will delete all data. Type 'yes' to confirm: ")
        if response.lower() != 'yes':
            logger.info("Aborted.")
            return False

        Base.metadata.drop_all(bind=engine)
        logger.info("Existing tables dropped")

    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created successfully")

    inspector = inspect(engine)
    tables = inspector.get_table_names()
    logger.info("Tables: %s", ", ".join(tables))

    return True


def seed_demo_pool():
    """Add members, an open week starting today and one sample promo"""
    logger.info("Seeding demo pool...")

    db = SessionLocal()
    config = PoolConfig.from_env()

    try:
        if db.query(Member).count() > 0:
            logger.info("Members already exist, skipping seed")
            return

        members = [pool_admin.create_member(db, name) for name in DEMO_MEMBERS]

        start = datetime.utcnow().replace(hour=0, minute=0, second=0, microsecond=0)
        end = start + timedelta(days=7)
        week = pool_admin.create_week(db, f"Week of {start:%b %d}", start, end)

        for m in members:
            pool_admin.add_member_to_week(db, week.id, m.id, config=config)

        promo_engine.create_promo(
            db,
            week.id,
            "Sunday 50% back",
            {
                "windowStart": start.isoformat() + "Z",
                "windowEnd": end.isoformat() + "Z",
                "minHandleUnits": 500,
                "percentBack": 50,
                "capUnits": 200,
                "oddsMin": None,
                "oddsMax": None,
                "disqualifyBothSides": True,
                "sport": "nfl",
                "betType": None,
            },
        )

        logger.info("Demo pool seeded: %d members, week %d", len(members), week.id)

    except Exception as e:
        logger.error("Error seeding data: %s", e)
        db.rollback()

    finally:
        db.close()


def check_connection():
    """Test database connection"""
    try:
        db = SessionLocal()
        db.execute(text("SELECT 1"))
        db.close()
        logger.info("Database connection successful")
        return True
    except Exception as e:
        logger.error("Database connection failed: %s", e)
        return False


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Initialize betting pool database")
    parser.add_argument("--drop", action="store_true", help="Drop existing tables (DANGER!)")
    parser.add_argument("--seed", action="store_true", help="Seed a demo pool")
    parser.add_argument("--check", action="store_true", help="Only check connection")

    args = parser.parse_args()

    if args.check:
        check_connection()
    else:
        if check_connection():
            if init_database(drop_existing=args.drop) and args.seed:
                seed_demo_pool()

            logger.info("Database initialization complete!")
        else:
            logger.error("Cannot initialize database - connection failed")
            sys.exit(1)
