"""Сборка aiohttp-приложения"""
from aiohttp import web

from paygate.api import sessions, subscriptions
from paygate.api.keys import (
    AUTHENTICATOR,
    CORS_ORIGIN,
    DELEGATIONS,
    DEVELOPERS,
    PLANS,
    REPLAY_GUARD,
    ROUTE_POLICIES,
    SESSIONS,
    SUBSCRIPTIONS,
    USERS,
)
from paygate.api.middleware import RoutePolicy, auth_middleware, cors_middleware, error_middleware
from paygate.db.repositories.developers import DeveloperRepository
from paygate.db.repositories.plans import PlanRepository
from paygate.db.repositories.users import UserRepository
from paygate.services.auth import Authenticator
from paygate.services.delegations import DelegationService
from paygate.services.payment_sessions import PaymentSessionStore
from paygate.services.replay_guard import ReplayGuard
from paygate.services.subscriptions import SubscriptionService

ROUTES = [
    ("/api/create-payment-session", sessions.create_payment_session, RoutePolicy("bearer", "required")),
    ("/api/get-payment-session", sessions.get_payment_session, RoutePolicy("optional_bearer", "none")),
    ("/api/update-payment-session", sessions.update_payment_session, RoutePolicy("bearer", "required")),
    ("/api/create-subscription", subscriptions.create_subscription, RoutePolicy("api_key_or_bearer", "required")),
    ("/api/cancel-subscription", subscriptions.cancel_subscription, RoutePolicy("api_key_or_bearer", "required")),
    ("/api/get-user-subscriptions", subscriptions.get_user_subscriptions, RoutePolicy("bearer", "optional")),
    ("/api/get-user-delegation", subscriptions.get_user_delegation, RoutePolicy("api_key_or_bearer", "optional")),
    ("/api/get-user-info", subscriptions.get_user_info, RoutePolicy("bearer", "optional")),
    ("/api/create-user", subscriptions.create_user, RoutePolicy("bearer", "required")),
    ("/api/verify-key", subscriptions.verify_key, RoutePolicy("none", "none")),
    ("/api/get-supported-tokens", subscriptions.get_supported_tokens, RoutePolicy("api_key_or_bearer", "optional")),
]


def create_app(
    authenticator: Authenticator,
    replay_guard: ReplayGuard,
    sessions_store: PaymentSessionStore,
    subscription_service: SubscriptionService,
    delegation_service: DelegationService,
    users: UserRepository,
    plans: PlanRepository,
    developers: DeveloperRepository,
    cors_allow_origin: str = "*"
) -> web.Application:
    """Создает aiohttp приложение с API"""
    app = web.Application(middlewares=[cors_middleware, error_middleware, auth_middleware])
    app[AUTHENTICATOR] = authenticator
    app[REPLAY_GUARD] = replay_guard
    app[SESSIONS] = sessions_store
    app[SUBSCRIPTIONS] = subscription_service
    app[DELEGATIONS] = delegation_service
    app[USERS] = users
    app[PLANS] = plans
    app[DEVELOPERS] = developers
    app[CORS_ORIGIN] = cors_allow_origin
    app[ROUTE_POLICIES] = {path: policy for path, _, policy in ROUTES}

    for path, handler, _ in ROUTES:
        app.router.add_post(path, handler)
        app.router.add_get(path, handler)

    return app
