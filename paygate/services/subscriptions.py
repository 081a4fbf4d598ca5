"""
Сверка ончейн-оплат с подписками.

Подтверждённая транзакция превращается в подписку и платёж ровно один раз:
tx_hash служит ключом идемпотентности, а работа над одним хешем
сериализуется локом. Подписка - основная запись; делегирование и платёж
пишутся после неё параллельно и их ошибки только логируются.
"""
import asyncio
import logging
import time
from typing import Any, Callable, Optional

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic import ValidationError as PydanticValidationError

from paygate.clients.blockchain import BlockchainVerifier
from paygate.constants import (
    DEFAULT_TOKEN_SYMBOL,
    SUBSCRIPTION_ACTIVE,
    SUBSCRIPTION_CANCELLED,
    SUBSCRIPTION_EXPIRED,
)
from paygate.db.repositories.payments import PaymentRepository
from paygate.db.repositories.plans import PlanRepository
from paygate.db.repositories.subscriptions import SubscriptionRepository
from paygate.db.repositories.users import UserRepository
from paygate.exceptions import ConflictError, NotFoundError, ValidationError, VerificationError
from paygate.models.subscription import SubscriptionRecord, SubscriptionView, UserSubscriptionRow
from paygate.services.delegations import DelegationService
from paygate.utils.locks import KeyedLock

logger = logging.getLogger(__name__)


class CreateSubscriptionPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    user_email: str
    user_wallet_address: Optional[str] = None
    user_smart_account_address: Optional[str] = None
    plan_id: int  # номер плана в контракте
    project_id: str
    tx_hash: Optional[str] = None
    start_date: Optional[int] = None
    subscription_manager_address: Optional[str] = None
    amount: Optional[float] = None
    token_address: str
    payment_date: Optional[int] = None
    delegation_data: Optional[Any] = None

    @field_validator("token_address")
    @classmethod
    def token_required(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("token_address is required")
        return v

    @field_validator("tx_hash")
    @classmethod
    def normalize_tx_hash(cls, v: Optional[str]) -> Optional[str]:
        # хеш в hex, регистр не значим
        if v is None:
            return None
        return v.strip().lower() or None


class CancelSubscriptionPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    user_email: str
    plan_id: Optional[str] = None
    subscription_manager_address: Optional[str] = None
    user_smart_account_address: Optional[str] = None
    tx_hash: Optional[str] = None


def parse_payload(model: type[BaseModel], data: dict[str, Any]) -> Any:
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise ValidationError(f"Invalid payload: {fields}", code="invalid_payload", status=422) from e


def derive_status(record: SubscriptionRecord, now: int) -> str:
    """
    Статус подписки на момент now (секунды)

    Хранимому статусу не доверяем: фонового процесса, который бы его
    обновлял, нет. Отменённая подписка остаётся активной до конца
    оплаченного периода.
    """
    if record.get("cancelled_at"):
        effective_at = (
            record.get("cancellation_effective_at")
            or record.get("next_payment_date")
            or record["cancelled_at"]
        )
        return SUBSCRIPTION_CANCELLED if now >= effective_at else SUBSCRIPTION_ACTIVE

    next_payment_date = record.get("next_payment_date")
    if next_payment_date and now >= next_payment_date:
        return SUBSCRIPTION_EXPIRED
    return SUBSCRIPTION_ACTIVE


def _latest_per_plan(rows: list[UserSubscriptionRow]) -> dict[str, str]:
    latest: dict[str, UserSubscriptionRow] = {}
    for row in rows:
        current = latest.get(row["plan_id"])
        if current is None or (
            (row.get("next_payment_date") or 0, row["start_date"])
            > (current.get("next_payment_date") or 0, current["start_date"])
        ):
            latest[row["plan_id"]] = row
    return {plan_id: row["id"] for plan_id, row in latest.items()}


class SubscriptionService:
    """Сервис подписок: создание по оплате, отмена, чтение"""

    def __init__(
        self,
        users: UserRepository,
        plans: PlanRepository,
        subscriptions: SubscriptionRepository,
        payments: PaymentRepository,
        delegations: DelegationService,
        verifier: BlockchainVerifier,
        clock: Callable[[], float] = time.time
    ):
        self.users = users
        self.plans = plans
        self.subscriptions = subscriptions
        self.payments = payments
        self.delegations = delegations
        self.verifier = verifier
        self.clock = clock
        self._tx_locks = KeyedLock()

    async def create_subscription(self, payload: CreateSubscriptionPayload) -> dict[str, Any]:
        """
        Создаёт подписку по подтверждённой оплате

        Повторный вызов с тем же tx_hash возвращает уже созданные записи.

        Raises:
            NotFoundError: Нет пользователя или плана
            ValidationError: Настройки проекта не совпадают с платежом
            VerificationError: Транзакция не подтвердилась в блокчейне
            ConflictError: Уже есть активная подписка на этот план
        """
        if payload.tx_hash:
            async with self._tx_locks.hold(payload.tx_hash):
                return await self._create(payload)
        return await self._create(payload)

    async def _create(self, payload: CreateSubscriptionPayload) -> dict[str, Any]:
        user, existing_payment, plan = await asyncio.gather(
            self.users.get_by_email(payload.user_email),
            self.payments.get_by_tx_hash(payload.tx_hash) if payload.tx_hash else _none(),
            self.plans.get_by_contract_plan(payload.project_id, payload.plan_id),
        )

        if not user:
            raise NotFoundError("User not found", code="user_not_found")

        if existing_payment:
            logger.info(f"🔂 Транзакция {payload.tx_hash} уже обработана")
            return {
                "success": True,
                "message": "Transaction already processed",
                "subscription_id": existing_payment["subscription_id"],
                "payment_id": existing_payment["id"],
            }

        if not plan:
            raise NotFoundError(
                f"Subscription plan not found for contract_plan_id: {payload.plan_id} in project: {payload.project_id}",
                code="plan_not_found"
            )

        manager = plan["subscription_manager_address"]
        if not manager:
            raise ValidationError(
                "Project does not have a subscription manager address configured",
                code="project_missing_manager", status=422
            )
        if not plan["token_address"]:
            raise ValidationError(
                "Project does not have a supported token configured",
                code="project_missing_token", status=422
            )
        if payload.token_address.lower() != plan["token_address"].lower():
            raise ValidationError("Token address does not match project's supported token", code="token_mismatch")
        if payload.subscription_manager_address and payload.subscription_manager_address.lower() != manager.lower():
            raise ValidationError(
                "Subscription manager address does not match project configuration",
                code="manager_mismatch"
            )
        if not plan["developer_id"]:
            raise ValidationError("Plan does not have a valid developer_id", code="plan_missing_developer", status=422)

        if payload.tx_hash:
            verification = await self.verifier.verify(payload.tx_hash, manager)
            if not verification.valid:
                logger.warning(f"❌ Транзакция {payload.tx_hash} не прошла проверку: {verification.error}")
                raise VerificationError(f"Blockchain verification failed: {verification.error}")

        if await self.subscriptions.find_active(user["id"], plan["id"], manager):
            raise ConflictError("Already have an active plan", code="active_subscription_exists")

        start_date = payload.start_date or int(self.clock())
        subscription = await self.subscriptions.create_subscription(
            user["id"],
            plan["id"],
            plan["developer_id"],
            start_date,
            start_date + plan["period_seconds"],
            manager
        )
        subscription_id = subscription["id"]
        logger.info(f"✅ Подписка {subscription_id} создана: user={user['id']}, plan={plan['id']}")

        tasks = []
        if payload.delegation_data and payload.user_smart_account_address:
            tasks.append(self._store_delegation(payload, manager))
        # платёж - единственная запись, по которой узнаётся повторный tx_hash
        record_payment = bool(payload.tx_hash)
        if record_payment:
            tasks.append(self._record_payment(payload, subscription_id, user["id"], plan, start_date))

        results = await asyncio.gather(*tasks)
        payment_id = results[-1] if record_payment else None

        result = {
            "success": True,
            "message": "Subscription created successfully",
            "subscription_id": subscription_id,
        }
        if payment_id:
            result["payment_id"] = payment_id
            result["message"] += " and payment recorded"
        return result

    async def _store_delegation(self, payload: CreateSubscriptionPayload, manager: str) -> None:
        try:
            await self.delegations.upsert(
                payload.user_smart_account_address,
                manager,
                payload.delegation_data,
                payload.user_wallet_address
            )
        except Exception as e:
            logger.error(f"Ошибка сохранения делегирования для {payload.user_smart_account_address}: {e}")

    async def _record_payment(
        self,
        payload: CreateSubscriptionPayload,
        subscription_id: str,
        user_id: str,
        plan: dict,
        start_date: int
    ) -> Optional[str]:
        try:
            payment = await self.payments.create_payment(
                subscription_id,
                user_id,
                plan["developer_id"],
                payload.amount if payload.amount is not None else plan.get("price") or 0,
                payload.token_address,
                plan["token_symbol"] or DEFAULT_TOKEN_SYMBOL,
                payload.tx_hash,
                payload.payment_date or start_date
            )
            return payment["id"]
        except Exception as e:
            logger.error(f"Ошибка записи платежа {payload.tx_hash}: {e}")
            return None

    async def cancel_subscription(self, payload: CancelSubscriptionPayload) -> dict[str, Any]:
        """Отменяет подписку с конца текущего оплаченного периода"""
        user = await self.users.get_by_email(payload.user_email)
        if not user:
            raise NotFoundError("User not found", code="user_not_found")

        subscription = await self.subscriptions.find_latest(
            user["id"], payload.plan_id, payload.subscription_manager_address
        )
        if not subscription:
            # хранимый статус мог разойтись с реальным
            subscription = await self.subscriptions.find_latest(
                user["id"], payload.plan_id, payload.subscription_manager_address, active_only=False
            )
        if not subscription:
            raise NotFoundError("Subscription not found", code="subscription_not_found")

        now = int(self.clock())
        effective_at = subscription["next_payment_date"] or now
        await self.subscriptions.mark_cancelled(subscription["id"], now, effective_at)
        logger.info(f"🛑 Подписка {subscription['id']} отменена, действует до {effective_at}")

        manager = payload.subscription_manager_address or subscription["subscription_manager_address"]
        if payload.user_smart_account_address and manager:
            try:
                await self.delegations.deactivate(payload.user_smart_account_address, manager)
            except Exception as e:
                logger.error(f"Ошибка отключения делегирования {payload.user_smart_account_address}: {e}")

        return {
            "success": True,
            "message": "Subscription cancelled successfully",
            "subscription_id": subscription["id"],
            "status": SUBSCRIPTION_CANCELLED,
            "cancelled_at": now,
            "cancellation_effective_at": effective_at,
        }

    async def list_user_subscriptions(self, email: str) -> list[SubscriptionView]:
        """История подписок пользователя, новые сверху"""
        user = await self.users.get_by_email(email)
        if not user:
            return []

        rows = await self.subscriptions.list_for_user(user["id"])
        latest = _latest_per_plan(rows)
        now = int(self.clock())

        views: list[SubscriptionView] = []
        for row in rows:
            views.append({
                "subscription_id": row["id"],
                "plan_id": row["plan_id"],
                "plan_name": row.get("plan_name"),
                "company_name": row.get("company_name"),
                "status": derive_status(row, now),
                "start_date": row["start_date"],
                "next_payment_date": row.get("next_payment_date"),
                "last_payment_date": row.get("last_payment_date"),
                "cancelled_at": row.get("cancelled_at"),
                "cancellation_effective_at": row.get("cancellation_effective_at"),
                "price": row.get("price") or 0,
                "subscription_manager_address": (
                    row.get("subscription_manager_address") or row.get("project_manager_address")
                ),
                "token_symbol": row.get("token_symbol"),
                "token_address": row.get("token_address"),
                "is_latest": latest.get(row["plan_id"]) == row["id"],
            })

        views.sort(key=lambda view: view["start_date"], reverse=True)
        return views


async def _none() -> None:
    return None
