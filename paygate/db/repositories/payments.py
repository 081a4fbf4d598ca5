"""Репозиторий для работы с платежами"""
import asyncpg
from typing import Optional

from paygate.models.payment import PaymentRecord

_COLUMNS = """
    id, subscription_id, user_id, developer_id, amount::float8 AS amount,
    token_address, token_symbol, tx_hash, payment_date
"""


class PaymentRepository:
    """Репозиторий для работы с платежами. tx_hash уникален."""

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def get_by_tx_hash(self, tx_hash: str) -> Optional[PaymentRecord]:
        """Найти платеж по хешу транзакции"""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_COLUMNS} FROM payments WHERE tx_hash = $1",
                tx_hash
            )
            return dict(row) if row else None  # type: ignore

    async def create_payment(
        self,
        subscription_id: str,
        user_id: str,
        developer_id: Optional[str],
        amount: float,
        token_address: str,
        token_symbol: str,
        tx_hash: str,
        payment_date: int
    ) -> PaymentRecord:
        """
        Создать платеж

        Повторная вставка того же tx_hash ничего не пишет
        и возвращает уже существующую запись.
        """
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO payments (
                    subscription_id, user_id, developer_id, amount,
                    token_address, token_symbol, tx_hash, payment_date
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                ON CONFLICT (tx_hash) DO NOTHING
                RETURNING {_COLUMNS}
                """,
                subscription_id, user_id, developer_id, amount,
                token_address, token_symbol, tx_hash, payment_date
            )
            if row is None:
                row = await conn.fetchrow(
                    f"SELECT {_COLUMNS} FROM payments WHERE tx_hash = $1",
                    tx_hash
                )
            return dict(row)  # type: ignore
