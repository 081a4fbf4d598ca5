"""Ключи зависимостей в aiohttp-приложении"""
from aiohttp import web

from paygate.db.repositories.developers import DeveloperRepository
from paygate.db.repositories.plans import PlanRepository
from paygate.db.repositories.users import UserRepository
from paygate.services.auth import Authenticator
from paygate.services.delegations import DelegationService
from paygate.services.payment_sessions import PaymentSessionStore
from paygate.services.replay_guard import ReplayGuard
from paygate.services.subscriptions import SubscriptionService

AUTHENTICATOR = web.AppKey("authenticator", Authenticator)
REPLAY_GUARD = web.AppKey("replay_guard", ReplayGuard)
SESSIONS = web.AppKey("sessions", PaymentSessionStore)
SUBSCRIPTIONS = web.AppKey("subscriptions", SubscriptionService)
DELEGATIONS = web.AppKey("delegations", DelegationService)
USERS = web.AppKey("users", UserRepository)
PLANS = web.AppKey("plans", PlanRepository)
DEVELOPERS = web.AppKey("developers", DeveloperRepository)
CORS_ORIGIN = web.AppKey("cors_origin", str)
ROUTE_POLICIES = web.AppKey("route_policies", dict)
