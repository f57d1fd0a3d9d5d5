from datetime import datetime, timedelta

from loguru import logger
from sqlalchemy.orm import Session

from autorenew.db.database import Base, sync_engine
from autorenew.models import Account, AutomationConfig, AutomationHealth

DEMO_ACCOUNTS = [
    {"system_id": "1", "username": "demo_user_01", "password": "demo01", "hours": 12},
    {"system_id": "2", "username": "demo_user_02", "password": "demo02", "hours": 0.5},
    {"system_id": "3", "username": "demo_user_03", "password": "demo03", "hours": -1},
]


def seed_singletons(session: Session) -> None:
    """建立設定與健康狀態的單筆資料"""
    if session.query(AutomationConfig).first() is None:
        session.add(AutomationConfig(is_enabled=False, renewal_advance_minutes=60))
        logger.info("Added automation config (disabled)")
    else:
        logger.info("Automation config already exists")

    if session.query(AutomationHealth).first() is None:
        session.add(AutomationHealth(is_active=False, is_logged_in=False))
        logger.info("Added automation health record")

    session.commit()


def seed_demo_accounts(session: Session) -> None:
    now = datetime.now()
    for data in DEMO_ACCOUNTS:
        existing = session.query(Account).filter_by(system_id=data["system_id"]).first()
        if existing:
            logger.info(f"Account already exists: {data['system_id']}")
            continue
        session.add(
            Account(
                system_id=data["system_id"],
                username=data["username"],
                password=data["password"],
                expiration=now + timedelta(hours=data["hours"]),
            )
        )
        logger.info(f"Added account: {data['system_id']} ({data['username']})")
    session.commit()


def seed(demo: bool = False) -> None:
    import autorenew.models  # noqa: F401

    Base.metadata.create_all(sync_engine)
    with Session(sync_engine) as session:
        seed_singletons(session)
        if demo:
            seed_demo_accounts(session)

    logger.info("Seed completed")


if __name__ == "__main__":
    seed()
