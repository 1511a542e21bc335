# services/plan_catalog.py
import logging
from typing import List, Optional

from sqlmodel import Session, select

from core.config import settings
from models.models import Plan, DEFAULT_PLANS

logger = logging.getLogger(__name__)


def list_active_plans(session: Session) -> List[Plan]:
    statement = select(Plan).where(Plan.is_active == True).order_by(Plan.price_monthly, Plan.id)  # noqa: E712
    return list(session.exec(statement).all())


def get_free_plan(session: Session) -> Optional[Plan]:
    return session.exec(select(Plan).where(Plan.name == settings.FREE_PLAN_NAME)).first()


def create_default_plans(session: Session) -> List[Plan]:
    """
    Insert the default catalog entries that are missing (matched by name).
    Existing plans are left untouched so admin edits survive restarts.
    """
    existing = {plan.name for plan in session.exec(select(Plan)).all()}
    created = []
    for plan_data in DEFAULT_PLANS:
        if plan_data["name"] in existing:
            continue
        plan = Plan(**plan_data)
        session.add(plan)
        created.append(plan)

    if created:
        session.commit()
        for plan in created:
            session.refresh(plan)
        logger.info(f"✅ Created {len(created)} default plans: {[p.name for p in created]}")
    return created
