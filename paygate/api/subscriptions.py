"""HTTP-обработчики подписок, делегирований, пользователей и токенов"""
from aiohttp import web

from paygate.api.keys import DELEGATIONS, DEVELOPERS, PLANS, SUBSCRIPTIONS, USERS
from paygate.exceptions import ValidationError
from paygate.services.auth import Caller
from paygate.services.subscriptions import CancelSubscriptionPayload, CreateSubscriptionPayload, parse_payload


def _as_caller(request: web.Request) -> dict:
    """Тело запроса; bearer-пользователь действует только от своего имени"""
    body = dict(request["body"])
    caller: Caller = request["caller"]
    if caller.is_bearer:
        body["user_email"] = caller.email
    return body


async def create_subscription(request: web.Request) -> web.Response:
    payload = parse_payload(CreateSubscriptionPayload, _as_caller(request))
    result = await request.app[SUBSCRIPTIONS].create_subscription(payload)
    return web.json_response(result, status=201)


async def cancel_subscription(request: web.Request) -> web.Response:
    payload = parse_payload(CancelSubscriptionPayload, _as_caller(request))
    result = await request.app[SUBSCRIPTIONS].cancel_subscription(payload)
    return web.json_response(result)


async def get_user_subscriptions(request: web.Request) -> web.Response:
    subscriptions = await request.app[SUBSCRIPTIONS].list_user_subscriptions(request["caller"].email)
    return web.json_response({"success": True, "subscriptions": subscriptions})


async def get_user_delegation(request: web.Request) -> web.Response:
    body = request["body"]
    account = body.get("user_smart_account")
    manager = body.get("subscription_manager_address")
    if not account or not manager:
        raise ValidationError(
            "user_smart_account and subscription_manager_address are required",
            code="missing_delegation_keys"
        )
    delegation = await request.app[DELEGATIONS].get_active(account, manager)
    return web.json_response({"success": True, "delegation": delegation})


async def get_user_info(request: web.Request) -> web.Response:
    user = await request.app[USERS].get_by_email(request["caller"].email)
    if not user:
        return web.json_response({"found": False})
    return web.json_response({"found": True, "user": user})


async def create_user(request: web.Request) -> web.Response:
    body = request["body"]
    user = await request.app[USERS].create_user(
        request["caller"].email,
        body.get("wallet_address"),
        body.get("smart_account_address")
    )
    return web.json_response(user, status=201)


async def verify_key(request: web.Request) -> web.Response:
    api_key = request.headers.get("X-Api-Key") or request.query.get("api_key")
    record = await request.app[DEVELOPERS].find_active_api_key(api_key) if api_key else None
    valid = record is not None
    return web.json_response({"valid": valid}, status=200 if valid else 401)


async def get_supported_tokens(request: web.Request) -> web.Response:
    tokens = await request.app[PLANS].list_supported_tokens()
    return web.json_response({"success": True, "tokens": tokens})
