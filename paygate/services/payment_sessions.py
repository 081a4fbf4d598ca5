"""
Хранилище платёжных сессий.

Каждой paymentId соответствует свой актор: asyncio-задача с очередью
входящих сообщений. Все операции над сессией выполняются внутри актора
строго по очереди, поэтому проверка-и-запись перехода в `paid` атомарна
без явных блокировок. Разные сессии обрабатываются параллельно.

Сессия истекает двумя путями: лениво при чтении (now >= expiresAt) и по
таймеру, который после окна удержания удаляет её целиком.
"""
import asyncio
import logging
import secrets
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional

from paygate.constants import (
    PAYMENT_SESSION_FINALIZED_RETENTION,
    PAYMENT_SESSION_MIN_ALARM_DELAY,
    PAYMENT_SESSION_STATUSES,
    PAYMENT_SESSION_STORAGE_BUFFER,
    PAYMENT_SESSION_WINDOW,
    SESSION_STATUS_RANK,
    TERMINAL_SESSION_STATUSES,
)
from paygate.db.repositories.sessions import PaymentSessionRepository
from paygate.exceptions import ConflictError, NotFoundError, ValidationError
from paygate.models.session import PaymentSession

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
Reconcile = Callable[[PaymentSession], Awaitable[dict[str, Any]]]


def generate_payment_id() -> str:
    return f"pay_{secrets.token_hex(16)}"


class _SessionActor:
    """Единственный владелец состояния одной сессии"""

    def __init__(self, store: "PaymentSessionStore", payment_id: str):
        self.store = store
        self.payment_id = payment_id
        self.session: Optional[PaymentSession] = None
        self.loaded = False
        self.inbox: asyncio.Queue = asyncio.Queue()
        self._timer: Optional[asyncio.TimerHandle] = None
        self._generation = 0
        self.task = asyncio.create_task(self._run(), name=f"payment-session-{payment_id}")

    def submit(self, operation: Callable[["_SessionActor"], Awaitable[Any]]) -> asyncio.Future:
        future = asyncio.get_running_loop().create_future()
        self.inbox.put_nowait((operation, future))
        return future

    async def _run(self) -> None:
        while True:
            operation, future = await self.inbox.get()
            try:
                if not self.loaded:
                    await self._hydrate()
                result = await operation(self)
            except asyncio.CancelledError:
                if not future.done():
                    future.cancel()
                raise
            except Exception as e:
                if not future.done():
                    future.set_exception(e)
            else:
                if not future.done():
                    future.set_result(result)

            if self.session is None and self.inbox.empty():
                self.store._retire(self)
                return

    async def _hydrate(self) -> None:
        # при ошибке загрузки следующая операция в очереди повторит её
        repo = self.store.repo
        snapshot = await repo.load(self.payment_id) if repo is not None else None

        if snapshot is not None:
            data, purge_at = snapshot
            if purge_at.timestamp() <= self.store.clock():
                await repo.delete(self.payment_id)
            else:
                self.session = PaymentSession.model_validate(data)
                self._schedule(purge_at.timestamp())
                logger.info(f"♻️ Сессия {self.payment_id} восстановлена из снимка")

        self.loaded = True

    def now_ms(self) -> int:
        return int(self.store.clock() * 1000)

    def purge_deadline(self, now_ms: int) -> int:
        session = self.session
        if session.status in TERMINAL_SESSION_STATUSES:
            anchor = session.paid_at or session.updated_at or now_ms
            return anchor + self.store.finalized_retention_ms
        return max(session.expires_at or now_ms, now_ms) + self.store.storage_buffer_ms

    def _schedule(self, purge_at: float) -> None:
        if self._timer is not None:
            self._timer.cancel()
        self._generation += 1
        generation = self._generation
        delay = max(self.store.min_alarm_delay, purge_at - self.store.clock())
        self._timer = asyncio.get_running_loop().call_later(delay, self._alarm, generation)

    def _alarm(self, generation: int) -> None:
        self.submit(lambda actor: actor._purge(generation))

    async def _purge(self, generation: int) -> None:
        # перенесённый таймер мог сработать до обработки новой записи
        if generation != self._generation or self.session is None:
            return
        self.session = None
        self._timer = None
        if self.store.repo is not None:
            await self.store.repo.delete(self.payment_id)
        logger.info(f"🧹 Сессия {self.payment_id} удалена по таймеру")

    async def persist(self) -> None:
        """Фиксирует запись: переносит таймер и сохраняет снимок"""
        now_ms = self.now_ms()
        purge_at = max(now_ms + int(self.store.min_alarm_delay * 1000), self.purge_deadline(now_ms)) / 1000
        self._schedule(purge_at)

        if self.store.repo is None:
            return
        try:
            await self.store.repo.save(
                self.payment_id,
                self.session.model_dump(mode="json"),
                datetime.fromtimestamp(purge_at, tz=timezone.utc)
            )
        except Exception as e:
            logger.error(f"Не удалось сохранить снимок сессии {self.payment_id}: {e}")

    def require(self) -> PaymentSession:
        if self.session is None:
            raise NotFoundError("Payment session not found", code="payment_session_not_found")
        return self.session

    def is_stale(self, now_ms: int) -> bool:
        session = self.session
        return (
            session.status not in TERMINAL_SESSION_STATUSES
            and session.expires_at is not None
            and now_ms >= session.expires_at
        )

    def expire(self, now_ms: int) -> None:
        self.session.status = "expired"
        self.session.updated_at = now_ms
        self.session.expires_at = now_ms

    def stop(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self.task.cancel()


class PaymentSessionStore:
    """
    Платёжные сессии, по одному актору на paymentId

    Args:
        clock: Источник времени в секундах epoch
        repo: Репозиторий снимков; без него состояние живёт только в памяти
        window: Время жизни сессии в состоянии ожидания оплаты
        storage_buffer: Сколько хранить незавершённую сессию после expiresAt
        finalized_retention: Сколько хранить завершённую сессию для опроса
        min_alarm_delay: Минимальная задержка таймера удаления
    """

    def __init__(
        self,
        clock: Clock = time.time,
        repo: Optional[PaymentSessionRepository] = None,
        window: timedelta = PAYMENT_SESSION_WINDOW,
        storage_buffer: timedelta = PAYMENT_SESSION_STORAGE_BUFFER,
        finalized_retention: timedelta = PAYMENT_SESSION_FINALIZED_RETENTION,
        min_alarm_delay: timedelta = PAYMENT_SESSION_MIN_ALARM_DELAY
    ):
        self.clock = clock
        self.repo = repo
        self.window_ms = int(window.total_seconds() * 1000)
        self.storage_buffer_ms = int(storage_buffer.total_seconds() * 1000)
        self.finalized_retention_ms = int(finalized_retention.total_seconds() * 1000)
        self.min_alarm_delay = min_alarm_delay.total_seconds()
        self._actors: dict[str, _SessionActor] = {}

    def _actor(self, payment_id: str) -> _SessionActor:
        actor = self._actors.get(payment_id)
        if actor is None:
            actor = _SessionActor(self, payment_id)
            self._actors[payment_id] = actor
        return actor

    def _retire(self, actor: _SessionActor) -> None:
        if self._actors.get(actor.payment_id) is actor:
            del self._actors[actor.payment_id]

    async def _call(self, payment_id: str, operation) -> Any:
        return await self._actor(payment_id).submit(operation)

    async def create(self, session: PaymentSession) -> PaymentSession:
        if session.status not in PAYMENT_SESSION_STATUSES:
            raise ValidationError(f"Invalid status: {session.status}", code="invalid_status")

        async def operation(actor: _SessionActor) -> PaymentSession:
            if actor.session is not None:
                raise ConflictError("Payment session already exists", code="payment_session_exists")

            now_ms = actor.now_ms()
            created = session.model_copy(deep=True)
            created.created_at = now_ms
            created.updated_at = now_ms
            if created.expires_at is None:
                created.expires_at = now_ms + self.window_ms
            if created.metadata is None:
                created.metadata = {}

            actor.session = created
            await actor.persist()
            logger.info(f"🧾 Создана платёжная сессия {created.payment_id} на {created.amount} {created.token_symbol}")
            return created.model_copy(deep=True)

        return await self._call(session.payment_id, operation)

    async def get(self, payment_id: str) -> PaymentSession:
        """Текущее состояние сессии; просроченная при чтении переходит в expired"""

        async def operation(actor: _SessionActor) -> PaymentSession:
            session = actor.require()
            now_ms = actor.now_ms()
            if actor.is_stale(now_ms):
                actor.expire(now_ms)
                await actor.persist()
                logger.info(f"⌛ Сессия {payment_id} истекла")
            return session.model_copy(deep=True)

        return await self._call(payment_id, operation)

    async def update(
        self,
        payment_id: str,
        status: Optional[str] = None,
        tx_hash: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None
    ) -> PaymentSession:
        """
        Применяет изменения к сессии

        Оплаченная сессия не меняется. Просроченная сессия, которую не
        отмечают оплаченной, переходит в expired. Статус может двигаться
        только вперёд.
        """
        if status is not None and status not in PAYMENT_SESSION_STATUSES:
            raise ValidationError(f"Invalid status: {status}", code="invalid_status")

        async def operation(actor: _SessionActor) -> PaymentSession:
            session = actor.require()
            if session.status == "paid":
                return session.model_copy(deep=True)

            now_ms = actor.now_ms()
            if status != "paid":
                if actor.is_stale(now_ms):
                    actor.expire(now_ms)
                    await actor.persist()
                    return session.model_copy(deep=True)
                if session.status == "expired":
                    return session.model_copy(deep=True)

            if status is not None and SESSION_STATUS_RANK[status] < SESSION_STATUS_RANK[session.status]:
                raise ValidationError(
                    f"Cannot move session from {session.status} to {status}",
                    code="invalid_transition"
                )

            if status is not None:
                session.status = status
                if status == "paid":
                    session.paid_at = now_ms
            if tx_hash:
                session.tx_hash = tx_hash
            if metadata:
                session.metadata = {**session.metadata, **metadata}
            session.updated_at = now_ms

            await actor.persist()
            return session.model_copy(deep=True)

        return await self._call(payment_id, operation)

    async def settle(self, payment_id: str, tx_hash: str, reconcile: Reconcile) -> tuple[PaymentSession, Optional[dict[str, Any]]]:
        """
        Единственный переход в paid

        reconcile выполняется внутри актора сессии, так что параллельные
        запросы на оплату одной сессии ждут друг друга, и только первый
        создаёт подписку. Ошибка reconcile пробрасывается, сессия остаётся
        неоплаченной.

        Returns:
            (сессия, результат reconcile или None, если сессия уже была оплачена)
        """

        async def operation(actor: _SessionActor) -> tuple[PaymentSession, Optional[dict[str, Any]]]:
            session = actor.require()
            if session.status == "paid":
                return session.model_copy(deep=True), None

            result = await reconcile(session.model_copy(deep=True))

            now_ms = actor.now_ms()
            session.status = "paid"
            session.paid_at = now_ms
            session.updated_at = now_ms
            session.tx_hash = tx_hash
            session.metadata = {
                **session.metadata,
                "subscription_id": result.get("subscription_id"),
                "payment_id": result.get("payment_id"),
            }
            await actor.persist()
            logger.info(f"💰 Сессия {payment_id} оплачена, tx {tx_hash}")
            return session.model_copy(deep=True), result

        return await self._call(payment_id, operation)

    def __len__(self) -> int:
        return len(self._actors)

    async def close(self) -> None:
        actors = list(self._actors.values())
        self._actors.clear()
        for actor in actors:
            actor.stop()
        await asyncio.gather(*(actor.task for actor in actors), return_exceptions=True)
