"""Репозиторий использованных nonce"""
import asyncpg
from datetime import datetime


class NonceRepository:
    """Запись nonce пишется один раз; просроченная запись может быть занята заново"""

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def exists(self, nonce: str, cutoff: datetime) -> bool:
        async with self.pool.acquire() as conn:
            found = await conn.fetchval(
                "SELECT 1 FROM request_nonces WHERE nonce = $1 AND reserved_at >= $2",
                nonce, cutoff
            )
            return found is not None

    async def reserve(self, nonce: str, now: datetime, cutoff: datetime) -> bool:
        """
        Атомарно занять nonce

        Одна инструкция: вставка либо перехват просроченной записи.
        Из параллельных вызовов строку вернёт ровно один.
        """
        async with self.pool.acquire() as conn:
            reserved = await conn.fetchval(
                """
                INSERT INTO request_nonces (nonce, reserved_at)
                VALUES ($1, $2)
                ON CONFLICT (nonce)
                DO UPDATE SET reserved_at = EXCLUDED.reserved_at
                WHERE request_nonces.reserved_at < $3
                RETURNING nonce
                """,
                nonce, now, cutoff
            )
            return reserved is not None

    async def delete_expired(self, cutoff: datetime) -> int:
        """Удаляет просроченные nonce, возвращает количество удаленных"""
        async with self.pool.acquire() as conn:
            result = await conn.execute(
                "DELETE FROM request_nonces WHERE reserved_at < $1",
                cutoff
            )

            if result == "DELETE 0":
                return 0

            # Извлекаем число из "DELETE N"
            return int(result.split()[-1])
