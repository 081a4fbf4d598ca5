"""Жизненный цикл делегирований, по которым агент списывает платежи"""
import json
import logging
import time
from typing import Any, Callable, Optional

from paygate.db.repositories.delegations import DelegationRepository
from paygate.exceptions import NotFoundError

logger = logging.getLogger(__name__)


class DelegationService:
    """Одна запись на пару (смарт-аккаунт, контракт): перезапись на месте, отмена без удаления"""

    def __init__(self, repo: DelegationRepository, clock: Callable[[], float] = time.time):
        self.repo = repo
        self.clock = clock

    async def upsert(
        self,
        user_smart_account: str,
        subscription_manager_address: str,
        delegation_data: Any,
        user_wallet_address: Optional[str] = None
    ) -> str:
        """Сохраняет делегирование, возвращает id записи"""
        payload = delegation_data if isinstance(delegation_data, str) else json.dumps(delegation_data)

        existing = await self.repo.get(user_smart_account, subscription_manager_address)
        if existing:
            await self.repo.replace_payload(existing["id"], payload)
            logger.info(f"🔁 Делегирование {user_smart_account} → {subscription_manager_address} обновлено")
            return existing["id"]

        record = await self.repo.create_delegation(
            user_wallet_address,
            user_smart_account,
            subscription_manager_address,
            payload,
            int(self.clock())
        )
        logger.info(f"✍️ Делегирование {user_smart_account} → {subscription_manager_address} сохранено")
        return record["id"]

    async def deactivate(self, user_smart_account: str, subscription_manager_address: str) -> bool:
        """Отключает активное делегирование. False, если отключать нечего."""
        existing = await self.repo.get(user_smart_account, subscription_manager_address, active_only=True)
        if not existing:
            return False
        await self.repo.deactivate(existing["id"], int(self.clock()))
        logger.info(f"⛔ Делегирование {user_smart_account} → {subscription_manager_address} отключено")
        return True

    async def get_active(self, user_smart_account: str, subscription_manager_address: str) -> Any:
        existing = await self.repo.get(user_smart_account, subscription_manager_address, active_only=True)
        if not existing:
            raise NotFoundError("Delegation not found", code="delegation_not_found")
        try:
            return json.loads(existing["delegation_data"])
        except (TypeError, ValueError):
            logger.warning(f"Делегирование {existing['id']} хранится не в JSON")
            return existing["delegation_data"]
