"""Репозиторий разработчиков и их API-ключей"""
import asyncpg
from typing import Optional


class DeveloperRepository:

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def find_active_api_key(self, key_value: str) -> Optional[dict]:
        """Активный API-ключ вместе с владельцем"""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT k.id, k.developer_id, k.name
                FROM api_keys k
                JOIN developers d ON d.id = k.developer_id
                WHERE k.key_value = $1 AND k.is_active AND d.is_active
                """,
                key_value
            )
            return dict(row) if row else None

    async def get_by_email(self, email: str) -> Optional[dict]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT id, email, company_name, is_active FROM developers WHERE email = $1",
                email
            )
            return dict(row) if row else None
