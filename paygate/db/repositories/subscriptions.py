from typing import Optional
import asyncpg

from paygate.constants import SUBSCRIPTION_ACTIVE, SUBSCRIPTION_CANCELLED
from paygate.models.subscription import SubscriptionRecord, UserSubscriptionRow


_COLUMNS = """
    s.id, s.user_id, s.plan_id, s.developer_id, s.status, s.start_date,
    s.last_payment_date, s.next_payment_date, s.cancelled_at,
    s.cancellation_effective_at, s.subscription_manager_address
"""


class SubscriptionRepository:
    """Репозиторий подписок. Исторические записи никогда не удаляются."""

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def find_active(
        self,
        user_id: str,
        plan_id: str,
        subscription_manager_address: str
    ) -> Optional[SubscriptionRecord]:
        """Активная (не отменённая) подписка для тройки пользователь/план/контракт"""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                SELECT {_COLUMNS}
                FROM user_subscriptions s
                WHERE s.user_id = $1
                  AND s.plan_id = $2
                  AND lower(s.subscription_manager_address) = lower($3)
                  AND s.status = $4
                  AND s.cancelled_at IS NULL
                LIMIT 1
                """,
                user_id, plan_id, subscription_manager_address, SUBSCRIPTION_ACTIVE
            )
            return dict(row) if row else None  # type: ignore

    async def create_subscription(
        self,
        user_id: str,
        plan_id: str,
        developer_id: str,
        start_date: int,
        next_payment_date: int,
        subscription_manager_address: str
    ) -> SubscriptionRecord:
        """Всегда создаёт новую запись, чтобы история оставалась полной"""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO user_subscriptions AS s (
                    user_id, plan_id, developer_id, status, start_date,
                    last_payment_date, next_payment_date, subscription_manager_address
                )
                VALUES ($1, $2, $3, $4, $5, $5, $6, $7)
                RETURNING """ + _COLUMNS,
                user_id, plan_id, developer_id, SUBSCRIPTION_ACTIVE,
                start_date, next_payment_date, subscription_manager_address
            )
            return dict(row)  # type: ignore

    async def find_latest(
        self,
        user_id: str,
        plan_id: Optional[str] = None,
        subscription_manager_address: Optional[str] = None,
        active_only: bool = True
    ) -> Optional[SubscriptionRecord]:
        """Самая свежая подписка пользователя по необязательным фильтрам"""
        conditions = ["s.user_id = $1"]
        args: list = [user_id]
        if plan_id:
            args.append(plan_id)
            conditions.append(f"s.plan_id = ${len(args)}")
        if subscription_manager_address:
            args.append(subscription_manager_address)
            conditions.append(f"lower(s.subscription_manager_address) = lower(${len(args)})")
        if active_only:
            args.append(SUBSCRIPTION_ACTIVE)
            conditions.append(f"s.status = ${len(args)}")

        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                SELECT {_COLUMNS}
                FROM user_subscriptions s
                WHERE {' AND '.join(conditions)}
                ORDER BY s.start_date DESC
                LIMIT 1
                """,
                *args
            )
            return dict(row) if row else None  # type: ignore

    async def mark_cancelled(
        self,
        subscription_id: str,
        cancelled_at: int,
        cancellation_effective_at: int
    ) -> None:
        """Отметить подписку отменённой"""
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE user_subscriptions
                SET status = $2, cancelled_at = $3, cancellation_effective_at = $4
                WHERE id = $1
                """,
                subscription_id, SUBSCRIPTION_CANCELLED, cancelled_at, cancellation_effective_at
            )

    async def list_for_user(self, user_id: str, limit: int = 50) -> list[UserSubscriptionRow]:
        """Все подписки пользователя с данными плана, компании и токена"""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_COLUMNS},
                       p.name AS plan_name,
                       p.price::float8 AS price,
                       d.company_name,
                       pr.subscription_manager_address AS project_manager_address,
                       t.symbol AS token_symbol,
                       t.token_address
                FROM user_subscriptions s
                JOIN subscription_plans p ON p.id = s.plan_id
                JOIN projects pr ON pr.id = p.project_id
                LEFT JOIN developers d ON d.id = p.developer_id
                LEFT JOIN supported_tokens t ON t.id = pr.supported_token_id
                WHERE s.user_id = $1
                ORDER BY s.start_date DESC
                LIMIT $2
                """,
                user_id, limit
            )
            return [dict(row) for row in rows]  # type: ignore
