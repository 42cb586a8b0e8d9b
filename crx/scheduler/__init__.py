"""
CRX: Periodic Jobs
APScheduler jobs: bank statement sync, refresh-token cleanup, reset-token purge.
"""
import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from crx.config import BANK_SYNC_MINUTES
from crx.db import get_db, save_db
from crx import auth, bank, password_reset

logger = logging.getLogger(__name__)


async def bank_sync_job():
    summary = await bank.run_statement_job()
    if not summary["success"]:
        logger.warning("Scheduled bank sync failed: %s", summary.get("error"))

def token_cleanup_job():
    db = get_db()
    removed = auth.cleanup_expired_tokens(db)
    save_db(db)
    logger.info("Expired token cleanup removed %d tokens", removed)

def reset_purge_job():
    db = get_db()
    removed = password_reset.purge_expired(db)
    save_db(db)
    logger.info("Purged %d expired password reset tokens", removed)

def create_scheduler() -> AsyncIOScheduler:
    scheduler = AsyncIOScheduler()
    if bank.get_client().configured:
        scheduler.add_job(bank_sync_job, "interval", minutes=BANK_SYNC_MINUTES, id="bank_sync",
                          max_instances=1, coalesce=True)
    else:
        logger.info("Bank credentials not set, statement sync job disabled")
    scheduler.add_job(token_cleanup_job, "cron", hour=0, minute=0, id="token_cleanup")
    scheduler.add_job(reset_purge_job, "cron", hour=0, minute=30, id="reset_purge")
    return scheduler
