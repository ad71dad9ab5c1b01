"""
Periodic housekeeping: expired refresh tokens and old read notifications.
"""

import asyncio
from typing import Dict, Optional

from masada.core.database import session_scope
from masada.core.logging_config import logger
from masada.services.auth_service import cleanup_expired_tokens
from masada.services.notification_service import notification_service

CLEANUP_INTERVAL_SECONDS = 6 * 60 * 60
NOTIFICATION_RETENTION_DAYS = 30


async def run_maintenance() -> Dict[str, int]:
    async with session_scope() as db:
        tokens = await cleanup_expired_tokens(db)
        notifications = await notification_service.cleanup_old_notifications(
            db, days=NOTIFICATION_RETENTION_DAYS
        )
        await db.commit()
    return {"expired_tokens": tokens, "old_notifications": notifications}


class MaintenanceScheduler:

    def __init__(self, interval: int = CLEANUP_INTERVAL_SECONDS):
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        """Start background cleanup task"""
        async def cleanup_loop():
            while True:
                await asyncio.sleep(self.interval)
                try:
                    result = await run_maintenance()
                    logger.info(f"[Maintenance] Cleanup done: {result}")
                except Exception as e:
                    logger.error(f"[Maintenance] Cleanup failed: {e}", exc_info=True)

        self._task = asyncio.create_task(cleanup_loop())
        logger.info("[Maintenance] Started cleanup background task")

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None


maintenance_scheduler = MaintenanceScheduler()
