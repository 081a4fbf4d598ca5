"""HTTP-обработчики платёжных сессий"""
import logging
from typing import Any, Optional

from aiohttp import web

from paygate.api.keys import PLANS, SESSIONS, SUBSCRIPTIONS, USERS
from paygate.exceptions import ForbiddenError, NotFoundError, ValidationError
from paygate.models.session import PaymentSession, sanitize_session
from paygate.services.auth import Caller
from paygate.services.payment_sessions import generate_payment_id
from paygate.services.subscriptions import CreateSubscriptionPayload, parse_payload
from paygate.utils.text import format_billing_interval

logger = logging.getLogger(__name__)


def _first(body: dict, *names: str) -> Any:
    for name in names:
        value = body.get(name)
        if value is not None and value != "":
            return value
    return None


def _check_owner(caller: Caller, session: PaymentSession) -> None:
    if caller.email and session.user_email and caller.email != session.user_email:
        logger.warning(f"🚫 {caller.email} запросил чужую сессию {session.payment_id}")
        raise ForbiddenError("Payment session belongs to another user")


def _payment_id(request: web.Request) -> str:
    payment_id = _first(request["body"], "payment_id", "paymentId") or request.headers.get("X-Payment-Id")
    if not payment_id:
        raise ValidationError("payment_id is required", code="missing_payment_id")
    return str(payment_id)


async def create_payment_session(request: web.Request) -> web.Response:
    body = request["body"]
    caller: Caller = request["caller"]

    project_id = _first(body, "project_id", "projectId")
    contract_plan_raw = _first(body, "contract_plan_id", "contractPlanId", "plan_id", "planId")
    try:
        contract_plan_id: Optional[int] = int(contract_plan_raw)
    except (TypeError, ValueError):
        contract_plan_id = None
    if not project_id or contract_plan_id is None:
        raise ValidationError("project_id and contract_plan_id are required", code="missing_project_or_plan")

    plan = await request.app[PLANS].get_by_contract_plan(project_id, contract_plan_id)
    if not plan:
        raise NotFoundError("Subscription plan not found", code="plan_not_found")

    manager = plan["subscription_manager_address"]
    if not plan["token_address"] or not plan["token_symbol"] or not manager:
        raise ValidationError(
            "Plan's project lacks a token or subscription manager",
            code="plan_missing_token_or_manager", status=422
        )

    user = await request.app[USERS].get_by_email(caller.email)

    metadata: dict[str, Any] = {"projectId": project_id, "subscription_manager_address": manager}
    if isinstance(body.get("metadata"), dict):
        metadata.update(body["metadata"])
    if isinstance(body.get("delegation_data"), dict):
        metadata["delegation_data"] = body["delegation_data"]

    session = PaymentSession(
        payment_id=generate_payment_id(),
        user_email=caller.email,
        project_id=project_id,
        plan_id=plan["id"],
        contract_plan_id=contract_plan_id,
        plan_name=plan["name"],
        company_name=plan["company_name"],
        plan_description=plan["description"],
        amount=plan["price"] or 0,
        billing_interval_seconds=plan["period_seconds"],
        billing_interval_text=format_billing_interval(plan["period_seconds"]),
        token_address=plan["token_address"],
        token_symbol=plan["token_symbol"],
        user_wallet_address=user["wallet_address"] if user else None,
        user_smart_account_address=user["smart_account_address"] if user else None,
        metadata=metadata,
    )
    created = await request.app[SESSIONS].create(session)
    return web.json_response({"success": True, "session": sanitize_session(created)})


async def get_payment_session(request: web.Request) -> web.Response:
    """Публичный опрос статуса; с bearer-токеном проверяется владелец"""
    session = await request.app[SESSIONS].get(_payment_id(request))
    _check_owner(request["caller"], session)
    return web.json_response({"success": True, "session": sanitize_session(session)})


async def update_payment_session(request: web.Request) -> web.Response:
    """
    Обновление сессии

    status=paid вместе с tx_hash запускает полную сверку: проверку
    транзакции и создание подписки. Остальные статусы меняются напрямую.
    """
    body = request["body"]
    caller: Caller = request["caller"]
    payment_id = _payment_id(request)
    status = body.get("status")
    tx_hash = _first(body, "tx_hash", "txHash")
    if isinstance(tx_hash, str):
        tx_hash = tx_hash.strip().lower() or None

    store = request.app[SESSIONS]
    session = await store.get(payment_id)
    _check_owner(caller, session)

    if session.status == "paid":
        return web.json_response({"success": True, "session": sanitize_session(session)})

    if status == "paid":
        if not tx_hash:
            raise ValidationError("tx_hash is required to mark a session paid", code="missing_tx_hash")

        subscriptions = request.app[SUBSCRIPTIONS]

        async def reconcile(current: PaymentSession) -> dict[str, Any]:
            payload: CreateSubscriptionPayload = parse_payload(CreateSubscriptionPayload, {
                "user_email": current.user_email or caller.email,
                "user_wallet_address": current.user_wallet_address,
                "user_smart_account_address": current.user_smart_account_address,
                "plan_id": current.contract_plan_id,
                "project_id": current.project_id,
                "tx_hash": tx_hash,
                "subscription_manager_address": current.metadata.get("subscription_manager_address"),
                "amount": current.amount,
                "token_address": current.token_address,
                "delegation_data": current.metadata.get("delegation_data"),
            })
            return await subscriptions.create_subscription(payload)

        settled, result = await store.settle(payment_id, tx_hash, reconcile)
        data = sanitize_session(settled)
        outcome = result or settled.metadata
        data["subscriptionId"] = outcome.get("subscription_id")
        if outcome.get("payment_id"):
            data["paymentRecordId"] = outcome["payment_id"]
        return web.json_response({"success": True, "session": data})

    if not status:
        raise ValidationError("status is required", code="missing_status")

    metadata = body.get("metadata") if isinstance(body.get("metadata"), dict) else None
    updated = await store.update(payment_id, status=status, tx_hash=tx_hash, metadata=metadata)
    return web.json_response({"success": True, "session": sanitize_session(updated)})
