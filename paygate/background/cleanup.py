import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from paygate.constants import NONCE_CLEANUP_INTERVAL_SECONDS
from paygate.db.repositories.sessions import PaymentSessionRepository
from paygate.services.replay_guard import NonceRegistry

logger = logging.getLogger(__name__)


async def nonce_cleanup_task(
    registry: NonceRegistry,
    sessions: Optional[PaymentSessionRepository] = None,
    interval: float = NONCE_CLEANUP_INTERVAL_SECONDS
):
    """Фоновая задача: удаляет истекшие nonce и забытые снимки платёжных сессий"""
    logger.info("🔄 Запущена фоновая задача очистки nonce")

    try:
        while True:
            try:
                await asyncio.sleep(interval)

                removed = await registry.purge_expired()
                if removed:
                    logger.info(f"🗑️ Удалено истекших nonce: {removed}")

                # снимки сессий, чей таймер не сработал из-за рестарта
                if sessions is not None:
                    stale = await sessions.delete_stale(datetime.now(timezone.utc))
                    if stale:
                        logger.info(f"🗑️ Удалено устаревших снимков сессий: {stale}")

            except asyncio.CancelledError:
                logger.info("🛑 Задача очистки nonce остановлена")
                raise

            except Exception as e:
                logger.error(f"Ошибка в задаче очистки nonce: {e}")

    except asyncio.CancelledError:
        logger.info("✅ Задача очистки завершена")
        raise
