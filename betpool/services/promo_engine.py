"""
Loss-rebate promo engine.

Two responsibilities:

  compute_promo_results()  - live per-member progress for one promo
                             (eligible handle, losing stake, projected award)
  generate_promo_awards()  - at week close, turn qualified results into PROMO
                             free-play awards, at most one per (promo, member)

plus promo administration (create / update / toggle / delete), all of which
require the week to be OPEN.

The qualification arithmetic lives in ``betpool.core.rebate_math``; this
module only loads rows and writes awards.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy.orm import Session, joinedload

from betpool.core.promo_rule import LossRebateRule, parse_rule
from betpool.core.rebate_math import PromoMemberResult, evaluate_member
from betpool.core.states import AWARD_EARNED, AWARD_PROMO, PROMO_LOSS_REBATE
from betpool.errors import PromoHasAwards, ValidationFailed
from betpool.models import Bet, FreePlayAward, Promo, WeekMember
from betpool.services.common import atomic, confirm_week_open, load_open_week, load_promo

logger = logging.getLogger(__name__)


@dataclass
class PromoAwardRun:
    """Outcome of one promo-award stage run."""

    awards_created: List[FreePlayAward] = field(default_factory=list)
    already_awarded: int = 0
    promos_evaluated: int = 0

    @property
    def created_count(self) -> int:
        return len(self.awards_created)


def promo_rule(promo: Promo) -> LossRebateRule:
    return parse_rule(promo.rule_json or {})


def _check_type(promo_type: str) -> None:
    if promo_type != PROMO_LOSS_REBATE:
        raise ValidationFailed(f"Unsupported promo type {promo_type!r}")


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------

def _results_for(db: Session, promo: Promo) -> List[PromoMemberResult]:
    rule = promo_rule(promo)

    enrolled = (
        db.query(WeekMember)
        .options(joinedload(WeekMember.member))
        .filter(WeekMember.week_id == promo.week_id)
        .order_by(WeekMember.id.asc())
        .all()
    )
    bets = (
        db.query(Bet)
        .filter(Bet.week_id == promo.week_id)
        .order_by(Bet.placed_at.asc(), Bet.id.asc())
        .all()
    )
    by_member: Dict[int, List[Bet]] = defaultdict(list)
    for b in bets:
        by_member[b.member_id].append(b)

    return [
        evaluate_member(rule, by_member[wm.member_id], wm.member_id, wm.member.name)
        for wm in enrolled
    ]


def compute_promo_results(db: Session, promo_id: int) -> List[PromoMemberResult]:
    """Per-member progress for a promo; empty for unsupported promo types."""
    promo = load_promo(db, promo_id)
    if promo.type != PROMO_LOSS_REBATE:
        return []
    return _results_for(db, promo)


def generate_promo_awards(db: Session, week_id: int) -> PromoAwardRun:
    """
    Issue PROMO awards for every active loss-rebate promo in the week.

    Idempotent: a (promo, member) pair that already has an award is skipped,
    so re-running after a partial close never double-awards.  Flushes but
    does not commit; the caller owns the transaction.
    """
    run = PromoAwardRun()
    promos = (
        db.query(Promo)
        .filter(Promo.week_id == week_id, Promo.active.is_(True))
        .order_by(Promo.id.asc())
        .all()
    )

    for promo in promos:
        if promo.type != PROMO_LOSS_REBATE:
            continue
        run.promos_evaluated += 1
        rule = promo_rule(promo)

        for r in _results_for(db, promo):
            if not r.qualified or r.projected_award <= 0:
                continue

            existing = (
                db.query(FreePlayAward)
                .filter(
                    FreePlayAward.promo_id == promo.id,
                    FreePlayAward.member_id == r.member_id,
                )
                .first()
            )
            if existing is not None:
                run.already_awarded += 1
                continue

            award = FreePlayAward(
                week_id=week_id,
                member_id=r.member_id,
                promo_id=promo.id,
                source=AWARD_PROMO,
                status=AWARD_EARNED,
                amount_units=r.projected_award,
                notes=(
                    f"{promo.name}: {r.eligible_losing_stake} losing units × "
                    f"{rule.percent_back}%"
                ),
            )
            db.add(award)
            run.awards_created.append(award)
            logger.info(
                "Promo award: %s -> member %d | %d FP (losing stake %d)",
                promo.name, r.member_id, r.projected_award, r.eligible_losing_stake,
            )

    db.flush()
    return run


# ---------------------------------------------------------------------------
# Administration
# ---------------------------------------------------------------------------

def create_promo(
    db: Session,
    week_id: int,
    name: str,
    rule_json: Mapping[str, Any],
    promo_type: str = PROMO_LOSS_REBATE,
) -> Promo:
    """Create an active promo; ``rule_json`` is validated and normalised."""
    _check_type(promo_type)
    if not name or not name.strip():
        raise ValidationFailed("Promo name is required")
    rule = parse_rule(rule_json)

    with atomic(db):
        load_open_week(db, week_id, for_update=True)
        promo = Promo(
            week_id=week_id,
            name=name.strip(),
            type=promo_type,
            active=True,
            rule_json=rule.to_wire(),
        )
        db.add(promo)
        confirm_week_open(db, week_id)

    logger.info("Promo %d created for week %d: %s (%s)", promo.id, week_id, promo.name, rule.summary())
    return promo


def update_promo(
    db: Session,
    promo_id: int,
    name: Optional[str] = None,
    rule_json: Optional[Mapping[str, Any]] = None,
) -> Promo:
    rule = parse_rule(rule_json) if rule_json is not None else None
    with atomic(db):
        promo = load_promo(db, promo_id)
        load_open_week(db, promo.week_id, for_update=True)
        if name is not None:
            if not name.strip():
                raise ValidationFailed("Promo name is required")
            promo.name = name.strip()
        if rule is not None:
            promo.rule_json = rule.to_wire()
        confirm_week_open(db, promo.week_id)

    logger.info("Promo %d updated", promo_id)
    return promo


def toggle_promo(db: Session, promo_id: int) -> Promo:
    """Flip ``active``; the supported way to retire a promo that has awards."""
    with atomic(db):
        promo = load_promo(db, promo_id)
        load_open_week(db, promo.week_id, for_update=True)
        promo.active = not promo.active
        confirm_week_open(db, promo.week_id)

    logger.info("Promo %d %s", promo_id, "activated" if promo.active else "deactivated")
    return promo


def delete_promo(db: Session, promo_id: int) -> None:
    with atomic(db):
        promo = load_promo(db, promo_id)
        load_open_week(db, promo.week_id, for_update=True)
        award_count = (
            db.query(FreePlayAward).filter(FreePlayAward.promo_id == promo_id).count()
        )
        if award_count > 0:
            logger.warning("Promo %d delete rejected: %d awards exist", promo_id, award_count)
            raise PromoHasAwards(award_count)
        week_id = promo.week_id
        db.delete(promo)
        confirm_week_open(db, week_id)

    logger.info("Promo %d deleted", promo_id)
