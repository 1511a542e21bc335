# scripts/seed.py

import os
import sys
import argparse
from datetime import timedelta

from dotenv import load_dotenv
from sqlmodel import Session, select

# Ensure root path for relative imports
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# ✅ Load environment variables before settings are read
load_dotenv()

from core.database import create_db_and_tables, engine  # noqa: E402
from models.models import Plan, Profile, Subscription, SubscriptionStatus, User, utcnow  # noqa: E402
from services.plan_catalog import create_default_plans  # noqa: E402


def seed_plans():
    """Create the default plan catalog (free / pro / business)."""
    print("🌱 Seeding plan catalog...")
    with Session(engine) as session:
        created = create_default_plans(session)
        print(f"✅ {len(created)} plan(s) created")


def seed_dev_data(trial_days: int = 3):
    """Seed a demo user on a Pro trial ending in `trial_days` days."""
    print("🌱 Seeding development data...")

    with Session(engine) as session:
        pro = session.exec(select(Plan).where(Plan.name == "pro")).first()
        if not pro:
            print("❌ Pro plan missing, run with --plans first")
            return

        # -----------------------------
        # 👤 Demo User + Profile
        # -----------------------------
        user = session.exec(select(User).where(User.email == "demo@taskmaster.app")).first()
        if not user:
            user = User(email="demo@taskmaster.app", full_name="Demo User")
            session.add(user)
            session.commit()
            session.refresh(user)
            print("✅ Created demo user: demo@taskmaster.app")

        profile = session.get(Profile, user.id)
        if not profile:
            session.add(Profile(id=user.id, full_name=user.full_name, plan_id=pro.id))
            print("✅ Created demo profile")

        # -----------------------------
        # ⏳ Internal trial
        # -----------------------------
        subscription = session.exec(select(Subscription).where(Subscription.user_id == user.id)).first()
        if not subscription:
            session.add(
                Subscription(
                    user_id=user.id,
                    plan_id=pro.id,
                    status=SubscriptionStatus.TRIALING.value,
                    current_period_end=utcnow() + timedelta(days=trial_days),
                )
            )
            print(f"✅ Created Pro trial ending in {trial_days} day(s)")

        session.commit()

    print("🎉 Development data seeded successfully!")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed the TaskMaster billing database")
    parser.add_argument("--plans", action="store_true", help="Seed the default plan catalog")
    parser.add_argument("--dev", action="store_true", help="Seed a demo user with a Pro trial")
    parser.add_argument("--trial-days", type=int, default=3, help="Days until the demo trial ends")
    args = parser.parse_args()

    create_db_and_tables()
    if args.plans or not args.dev:
        seed_plans()
    if args.dev:
        seed_dev_data(args.trial_days)
