"""Репозиторий планов подписки и поддерживаемых токенов"""
import asyncpg
from typing import Optional

from paygate.models.payment import PlanDetails, SupportedToken


class PlanRepository:
    """Планы читаются вместе с настройками проекта: контракт и токен оплаты"""

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def get_by_contract_plan(self, project_id: str, contract_plan_id: int) -> Optional[PlanDetails]:
        """
        Найти план по ончейн-идентификатору внутри проекта

        Args:
            project_id: ID проекта
            contract_plan_id: Номер плана в контракте (0, 1, 2...)

        Returns:
            План с адресом контракта и токеном проекта или None
        """
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT p.id, p.name, p.description, p.price::float8 AS price,
                       p.period_seconds, p.contract_plan_id,
                       COALESCE(p.developer_id, pr.developer_id) AS developer_id,
                       d.company_name,
                       pr.id AS project_id,
                       pr.subscription_manager_address,
                       t.token_address,
                       t.symbol AS token_symbol
                FROM subscription_plans p
                JOIN projects pr ON pr.id = p.project_id
                LEFT JOIN developers d ON d.id = COALESCE(p.developer_id, pr.developer_id)
                LEFT JOIN supported_tokens t ON t.id = pr.supported_token_id
                WHERE p.project_id = $1 AND p.contract_plan_id = $2
                LIMIT 1
                """,
                project_id, contract_plan_id
            )
            return dict(row) if row else None  # type: ignore

    async def list_supported_tokens(self) -> list[SupportedToken]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT id, name, symbol, token_address, image_url
                FROM supported_tokens
                ORDER BY symbol
                LIMIT 200
                """
            )
            return [dict(row) for row in rows]  # type: ignore
