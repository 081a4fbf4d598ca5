"""Middleware: CORS, единый формат ошибок, аутентификация и защита от повторов"""
import json
import logging
from dataclasses import dataclass

from aiohttp import web

from paygate.api.keys import AUTHENTICATOR, CORS_ORIGIN, REPLAY_GUARD, ROUTE_POLICIES
from paygate.exceptions import PaygateError, ValidationError
from paygate.services.auth import ANONYMOUS

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Methods": "POST, GET, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization, X-Api-Key, X-Payment-Id",
    "Access-Control-Max-Age": "86400",
}


@dataclass(frozen=True)
class RoutePolicy:
    """
    Требования маршрута к вызывающему

    auth: none | bearer | optional_bearer | api_key_or_bearer
    replay: none | optional | required (только для bearer-вызовов)
    """
    auth: str = "bearer"
    replay: str = "none"


def error_response(status: int, code: str, message: str) -> web.Response:
    return web.json_response({"success": False, "error": code, "message": message}, status=status)


@web.middleware
async def cors_middleware(request: web.Request, handler):
    origin = request.app[CORS_ORIGIN]
    if request.method == "OPTIONS":
        return web.Response(status=204, headers={"Access-Control-Allow-Origin": origin, **CORS_HEADERS})

    response = await handler(request)
    response.headers["Access-Control-Allow-Origin"] = origin
    return response


@web.middleware
async def error_middleware(request: web.Request, handler):
    try:
        return await handler(request)
    except PaygateError as e:
        if e.status >= 500:
            logger.error(f"{request.path}: {e.code} - {e.message}")
        return error_response(e.status, e.code, e.message)
    except web.HTTPException as e:
        return error_response(e.status, e.reason.lower().replace(" ", "_"), e.reason)
    except Exception:
        logger.exception(f"Необработанная ошибка в {request.path}")
        return error_response(500, "internal_error", "Internal server error")


async def read_body(request: web.Request) -> dict:
    if not request.can_read_body:
        return {}
    text = await request.text()
    if not text.strip():
        return {}
    try:
        body = json.loads(text)
    except ValueError as e:
        raise ValidationError("Request body is not valid JSON", code="invalid_json") from e
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object", code="invalid_json")
    return body


@web.middleware
async def auth_middleware(request: web.Request, handler):
    """Определяет вызывающего и для bearer-запросов проверяет timestamp и nonce"""
    policy = request.app[ROUTE_POLICIES].get(request.path)
    if policy is None:
        return await handler(request)

    request["body"] = await read_body(request)

    api_key = request.headers.get("X-Api-Key") or request.query.get("api_key")
    authorization = request.headers.get("Authorization")
    authenticator = request.app[AUTHENTICATOR]

    if policy.auth == "none":
        caller = ANONYMOUS
    elif policy.auth == "bearer":
        caller = await authenticator.authenticate_bearer(authorization)
    elif policy.auth == "optional_bearer":
        caller = await authenticator.authenticate(None, authorization, optional=True)
    else:
        caller = await authenticator.authenticate(api_key, authorization)
    request["caller"] = caller

    if caller.is_bearer and policy.replay != "none":
        await request.app[REPLAY_GUARD].enforce(
            request["body"].get("timestamp"),
            request["body"].get("nonce"),
            required=policy.replay == "required"
        )

    return await handler(request)
