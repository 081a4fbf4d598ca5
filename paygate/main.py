import asyncio

import aiohttp
from aiohttp import web

from paygate.api.routes import create_app
from paygate.background.cleanup import nonce_cleanup_task
from paygate.clients.blockchain import BlockchainVerifier
from paygate.clients.jwks import JwksClient, TokenVerifier
from paygate.config import Config, setup_logging
from paygate.db.pool import close_pool, init_pool
from paygate.db.repositories.delegations import DelegationRepository
from paygate.db.repositories.developers import DeveloperRepository
from paygate.db.repositories.nonces import NonceRepository
from paygate.db.repositories.payments import PaymentRepository
from paygate.db.repositories.plans import PlanRepository
from paygate.db.repositories.sessions import PaymentSessionRepository
from paygate.db.repositories.subscriptions import SubscriptionRepository
from paygate.db.repositories.users import UserRepository
from paygate.services.auth import Authenticator
from paygate.services.delegations import DelegationService
from paygate.services.payment_sessions import PaymentSessionStore
from paygate.services.replay_guard import MemoryNonceRegistry, PostgresNonceRegistry, ReplayGuard
from paygate.services.subscriptions import SubscriptionService


async def main():
    """Главная функция запуска сервиса"""
    config = Config.from_env()
    logger = setup_logging(config.log_level)
    logger.info("🚀 Запуск платёжного сервиса...")

    # Инициализация базы данных
    pool = await init_pool(config.database_url)
    http = aiohttp.ClientSession()

    users = UserRepository(pool)
    plans = PlanRepository(pool)
    developers = DeveloperRepository(pool)
    session_snapshots = PaymentSessionRepository(pool) if config.persist_sessions else None

    if config.nonce_backend == "postgres":
        registry = PostgresNonceRegistry(NonceRepository(pool))
    else:
        registry = MemoryNonceRegistry()

    tokens = TokenVerifier(
        JwksClient(http, config.jwks_url),
        audience=config.privy_app_id,
        issuer=config.privy_issuer,
        algorithms=config.jwt_algorithms
    )
    delegations = DelegationService(DelegationRepository(pool))
    sessions = PaymentSessionStore(repo=session_snapshots)
    subscriptions = SubscriptionService(
        users,
        plans,
        SubscriptionRepository(pool),
        PaymentRepository(pool),
        delegations,
        BlockchainVerifier(http, config.rpc_url)
    )

    app = create_app(
        Authenticator(developers, tokens),
        ReplayGuard(registry),
        sessions,
        subscriptions,
        delegations,
        users,
        plans,
        developers,
        cors_allow_origin=config.cors_allow_origin
    )

    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, config.host, config.port)

    # Запуск фоновой задачи очистки nonce и снимков сессий
    cleanup_task = asyncio.create_task(nonce_cleanup_task(registry, session_snapshots))

    try:
        await site.start()
        logger.info(f"✅ Сервис слушает {config.host}:{config.port}")
        logger.info(f"🔑 Nonce: {config.nonce_backend}, снимки сессий: {config.persist_sessions}")
        await asyncio.Event().wait()
    finally:
        # Очистка ресурсов
        cleanup_task.cancel()
        try:
            await cleanup_task
        except asyncio.CancelledError:
            pass
        await runner.cleanup()
        await sessions.close()
        await http.close()
        await close_pool()
        logger.info("👋 Сервис остановлен")


if __name__ == "__main__":
    asyncio.run(main())
