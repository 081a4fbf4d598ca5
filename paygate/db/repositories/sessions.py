"""Снимки платёжных сессий для восстановления после рестарта"""
import asyncpg
from datetime import datetime
from typing import Any, Optional


class PaymentSessionRepository:

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def save(self, payment_id: str, session: dict[str, Any], purge_at: datetime) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO payment_session_snapshots (payment_id, session, purge_at)
                VALUES ($1, $2, $3)
                ON CONFLICT (payment_id)
                DO UPDATE SET session = $2, purge_at = $3
                """,
                payment_id, session, purge_at
            )

    async def load(self, payment_id: str) -> Optional[tuple[dict[str, Any], datetime]]:
        """Снимок и момент его удаления, или None"""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT session, purge_at FROM payment_session_snapshots WHERE payment_id = $1",
                payment_id
            )
            if not row:
                return None
            return row["session"], row["purge_at"]

    async def delete(self, payment_id: str) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                "DELETE FROM payment_session_snapshots WHERE payment_id = $1",
                payment_id
            )

    async def delete_stale(self, now: datetime) -> int:
        async with self.pool.acquire() as conn:
            result = await conn.execute(
                "DELETE FROM payment_session_snapshots WHERE purge_at < $1",
                now
            )
            return int(result.split()[-1])
