import argparse
import asyncio

from loguru import logger
from sqlalchemy.orm import Session

from autorenew.config import get_settings
from autorenew.db.database import Base, sync_engine
from autorenew.logging_setup import setup_logging
from autorenew.models import AutomationConfig, AutomationHealth, RenewalTask, TaskStatus
from autorenew.renewal.errors import AccountNotFoundError, RenewalLockedError

settings = get_settings()


def init_database():
    """初始化資料庫"""
    import autorenew.models  # noqa: F401

    Base.metadata.create_all(sync_engine)
    logger.info("Database initialized")


def run_scan():
    """執行一次到期掃描"""
    from autorenew.scheduler.jobs import get_services

    result = asyncio.run(get_services().scanner.run_tick())
    logger.info(f"Scan result: {result}")


def run_force_renew(system_id: str) -> bool:
    from autorenew.scheduler.jobs import get_services

    try:
        item = get_services().manager.force_renew(system_id)
    except AccountNotFoundError:
        logger.error(f"Unknown system: {system_id}")
        return False
    except RenewalLockedError:
        logger.error(f"System {system_id} is already being renewed")
        return False
    logger.info(f"Force renewal dispatched: {item.to_dict()}")
    return True


def show_status():
    with Session(sync_engine) as session:
        config = session.query(AutomationConfig).first()
        health = session.query(AutomationHealth).first()
        counts = {
            status.value: session.query(RenewalTask).filter(RenewalTask.status == status).count()
            for status in TaskStatus
        }

    if config is None:
        logger.info("Automation config: not configured (disabled)")
    else:
        logger.info(
            f"Automation config: enabled={config.is_enabled} "
            f"advance={config.renewal_advance_minutes}min mode={config.distribution_mode}"
        )
    if health is None:
        logger.info("Automation health: no record")
    else:
        logger.info(
            f"Automation health: active={health.is_active} logged_in={health.is_logged_in} "
            f"heartbeat={health.last_heartbeat} url={health.current_url} error={health.last_error}"
        )
    logger.info(f"Renewal tasks: {counts}")


def main():
    parser = argparse.ArgumentParser(description="Auto Renewal CLI")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # init command
    subparsers.add_parser("init", help="Initialize database")

    # seed command
    seed_parser = subparsers.add_parser("seed", help="Seed config and health records")
    seed_parser.add_argument("--demo", action="store_true", help="Also add demo accounts")

    # serve command
    subparsers.add_parser("serve", help="Start API server with the renewal loops")

    # scan command
    subparsers.add_parser("scan", help="Run one expiration scan")

    # force-renew command
    force_parser = subparsers.add_parser("force-renew", help="Force renewal of one system")
    force_parser.add_argument("system_id", help="External system id")

    # status command
    subparsers.add_parser("status", help="Show automation config, health and task counts")

    args = parser.parse_args()
    setup_logging()

    if args.command == "init":
        init_database()
    elif args.command == "seed":
        from autorenew.db.seed import seed

        seed(demo=args.demo)
    elif args.command == "serve":
        import uvicorn

        uvicorn.run(
            "autorenew.main:app",
            host=settings.api_host,
            port=settings.api_port,
            reload=settings.debug,
        )
    elif args.command == "scan":
        run_scan()
    elif args.command == "force-renew":
        if not run_force_renew(args.system_id):
            raise SystemExit(1)
    elif args.command == "status":
        show_status()
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
