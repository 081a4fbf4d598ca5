import asyncio
import base64
import itertools
import time
import uuid
from datetime import datetime
from typing import Any, Optional

import pytest
import pytest_asyncio
from aiohttp.test_utils import TestClient, TestServer
from jose import jwt

from paygate.api.routes import create_app
from paygate.clients.blockchain import VerificationResult
from paygate.clients.jwks import TokenVerifier
from paygate.services.auth import Authenticator
from paygate.services.delegations import DelegationService
from paygate.services.payment_sessions import PaymentSessionStore
from paygate.services.replay_guard import MemoryNonceRegistry, ReplayGuard
from paygate.services.subscriptions import SubscriptionService

APP_ID = "test-app-id"
ISSUER = "privy.io"
KID = "test-key"
SECRET = b"paygate-test-signing-secret-0123456789abcdef"

USER_EMAIL = "alice@example.com"
OTHER_EMAIL = "bob@example.com"
PROJECT_ID = "proj_1"
PLAN_ID = "plan_1"
CONTRACT_PLAN_ID = 0
PERIOD_SECONDS = 300
MANAGER = "0xAbC0000000000000000000000000000000000001"
TOKEN_ADDRESS = "0x7000000000000000000000000000000000000USDC"
API_KEY = "sk_test_123"


class FakeClock:
    """Управляемые часы в секундах epoch"""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


_ids = itertools.count(1)


def _next_id(prefix: str) -> str:
    return f"{prefix}_{next(_ids)}"


class FakeUserRepository:
    def __init__(self):
        self.users: dict[str, dict] = {}

    def add(self, email: str, wallet: str = "0xWallet", smart_account: str = "0xSmart") -> dict:
        user = {
            "id": _next_id("user"),
            "email": email,
            "wallet_address": wallet,
            "smart_account_address": smart_account,
        }
        self.users[email] = user
        return user

    async def get_by_email(self, email: str) -> Optional[dict]:
        return self.users.get(email)

    async def create_user(self, email, wallet_address, smart_account_address=None) -> dict:
        user = self.users.get(email)
        if user is None:
            return self.add(email, wallet_address, smart_account_address or "")
        user["wallet_address"] = wallet_address or user["wallet_address"]
        user["smart_account_address"] = smart_account_address or user["smart_account_address"]
        return user


class FakePlanRepository:
    def __init__(self):
        self.plans: list[dict] = []
        self.tokens = [{
            "id": "tok_1",
            "name": "USD Coin",
            "symbol": "USDC",
            "token_address": TOKEN_ADDRESS,
            "image_url": None,
        }]

    def add(self, **overrides) -> dict:
        plan = {
            "id": PLAN_ID,
            "name": "Pro",
            "description": "Pro plan",
            "price": 10.0,
            "period_seconds": PERIOD_SECONDS,
            "contract_plan_id": CONTRACT_PLAN_ID,
            "developer_id": "dev_1",
            "company_name": "Acme",
            "project_id": PROJECT_ID,
            "subscription_manager_address": MANAGER,
            "token_address": TOKEN_ADDRESS,
            "token_symbol": "USDC",
        }
        plan.update(overrides)
        self.plans.append(plan)
        return plan

    async def get_by_contract_plan(self, project_id: str, contract_plan_id: int) -> Optional[dict]:
        for plan in self.plans:
            if plan["project_id"] == project_id and plan["contract_plan_id"] == contract_plan_id:
                return dict(plan)
        return None

    async def list_supported_tokens(self) -> list[dict]:
        return list(self.tokens)


class FakeSubscriptionRepository:
    def __init__(self, plans: FakePlanRepository):
        self.plans = plans
        self.rows: list[dict] = []

    async def find_active(self, user_id, plan_id, subscription_manager_address) -> Optional[dict]:
        for row in self.rows:
            if (
                row["user_id"] == user_id
                and row["plan_id"] == plan_id
                and row["subscription_manager_address"].lower() == subscription_manager_address.lower()
                and row["status"] == "active"
                and row["cancelled_at"] is None
            ):
                return dict(row)
        return None

    async def create_subscription(self, user_id, plan_id, developer_id, start_date, next_payment_date, subscription_manager_address) -> dict:
        # уступаем управление, чтобы параллельные вызовы успели переплестись
        await asyncio.sleep(0)
        row = {
            "id": _next_id("sub"),
            "user_id": user_id,
            "plan_id": plan_id,
            "developer_id": developer_id,
            "status": "active",
            "start_date": start_date,
            "last_payment_date": start_date,
            "next_payment_date": next_payment_date,
            "cancelled_at": None,
            "cancellation_effective_at": None,
            "subscription_manager_address": subscription_manager_address,
        }
        self.rows.append(row)
        return dict(row)

    async def find_latest(self, user_id, plan_id=None, subscription_manager_address=None, active_only=True) -> Optional[dict]:
        matches = [
            row for row in self.rows
            if row["user_id"] == user_id
            and (not plan_id or row["plan_id"] == plan_id)
            and (
                not subscription_manager_address
                or row["subscription_manager_address"].lower() == subscription_manager_address.lower()
            )
            and (not active_only or row["status"] == "active")
        ]
        if not matches:
            return None
        return dict(max(matches, key=lambda row: row["start_date"]))

    async def mark_cancelled(self, subscription_id, cancelled_at, cancellation_effective_at) -> None:
        for row in self.rows:
            if row["id"] == subscription_id:
                row.update(
                    status="cancelled",
                    cancelled_at=cancelled_at,
                    cancellation_effective_at=cancellation_effective_at,
                )

    async def list_for_user(self, user_id, limit=50) -> list[dict]:
        result = []
        for row in sorted(self.rows, key=lambda r: r["start_date"], reverse=True):
            if row["user_id"] != user_id:
                continue
            plan = next((p for p in self.plans.plans if p["id"] == row["plan_id"]), {})
            result.append({
                **row,
                "plan_name": plan.get("name"),
                "price": plan.get("price"),
                "company_name": plan.get("company_name"),
                "project_manager_address": plan.get("subscription_manager_address"),
                "token_symbol": plan.get("token_symbol"),
                "token_address": plan.get("token_address"),
            })
        return result[:limit]

    def active(self) -> list[dict]:
        return [row for row in self.rows if row["status"] == "active"]


class FakePaymentRepository:
    def __init__(self):
        self.rows: dict[str, dict] = {}
        self.fail = False

    async def get_by_tx_hash(self, tx_hash: str) -> Optional[dict]:
        row = self.rows.get(tx_hash)
        return dict(row) if row else None

    async def create_payment(self, subscription_id, user_id, developer_id, amount, token_address, token_symbol, tx_hash, payment_date) -> dict:
        if self.fail:
            raise RuntimeError("payments table unavailable")
        if tx_hash not in self.rows:
            self.rows[tx_hash] = {
                "id": _next_id("pmt"),
                "subscription_id": subscription_id,
                "user_id": user_id,
                "developer_id": developer_id,
                "amount": amount,
                "token_address": token_address,
                "token_symbol": token_symbol,
                "tx_hash": tx_hash,
                "payment_date": payment_date,
            }
        return dict(self.rows[tx_hash])


class FakeDelegationRepository:
    def __init__(self):
        self.rows: list[dict] = []

    def _find(self, account, manager) -> Optional[dict]:
        for row in self.rows:
            if row["user_smart_account"].lower() == account.lower() and row["subscription_manager_address"].lower() == manager.lower():
                return row
        return None

    async def get(self, user_smart_account, subscription_manager_address, active_only=False) -> Optional[dict]:
        row = self._find(user_smart_account, subscription_manager_address)
        if row is None or (active_only and not row["is_active"]):
            return None
        return dict(row)

    async def create_delegation(self, user_wallet_address, user_smart_account, subscription_manager_address, delegation_data, created_at) -> dict:
        row = {
            "id": _next_id("dlg"),
            "user_wallet_address": user_wallet_address,
            "user_smart_account": user_smart_account,
            "subscription_manager_address": subscription_manager_address,
            "delegation_data": delegation_data,
            "is_active": True,
            "created_at": created_at,
            "cancelled_at": None,
        }
        self.rows.append(row)
        return dict(row)

    async def replace_payload(self, delegation_id, delegation_data) -> None:
        for row in self.rows:
            if row["id"] == delegation_id:
                row.update(delegation_data=delegation_data, is_active=True, cancelled_at=None)

    async def deactivate(self, delegation_id, cancelled_at) -> None:
        for row in self.rows:
            if row["id"] == delegation_id:
                row.update(is_active=False, cancelled_at=cancelled_at)


class FakeDeveloperRepository:
    def __init__(self):
        self.api_keys = {API_KEY: {"id": "key_1", "developer_id": "dev_1", "name": "default"}}
        self.developers = {USER_EMAIL: {"id": "dev_1", "email": USER_EMAIL, "company_name": "Acme", "is_active": True}}

    async def find_active_api_key(self, key_value: str) -> Optional[dict]:
        return self.api_keys.get(key_value)

    async def get_by_email(self, email: str) -> Optional[dict]:
        return self.developers.get(email)


class FakeSessionRepository:
    def __init__(self):
        self.snapshots: dict[str, tuple[dict, datetime]] = {}

    async def save(self, payment_id, session, purge_at) -> None:
        self.snapshots[payment_id] = (session, purge_at)

    async def load(self, payment_id):
        return self.snapshots.get(payment_id)

    async def delete(self, payment_id) -> None:
        self.snapshots.pop(payment_id, None)

    async def delete_stale(self, now) -> int:
        stale = [pid for pid, (_, purge_at) in self.snapshots.items() if purge_at < now]
        for pid in stale:
            del self.snapshots[pid]
        return len(stale)


class FakeVerifier:
    """Подтверждает любую транзакцию, кроме явно отмеченных"""

    def __init__(self):
        self.results: dict[str, VerificationResult] = {}
        self.calls: list[tuple[str, str]] = []
        self.delay = 0.0

    async def verify(self, tx_hash: str, expected_contract_address: str) -> VerificationResult:
        self.calls.append((tx_hash, expected_contract_address))
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.results.get(tx_hash, VerificationResult(True))


class FakeJwks:
    """Набор ключей с одним симметричным ключом для HS256"""

    def __init__(self, secret: bytes = SECRET, kid: str = KID):
        self.keys = {"keys": [{
            "kty": "oct",
            "kid": kid,
            "alg": "HS256",
            "k": base64.urlsafe_b64encode(secret).rstrip(b"=").decode(),
        }]}
        self.refreshes = 0

    async def get_keys(self, refresh: bool = False) -> dict:
        if refresh:
            self.refreshes += 1
        return self.keys

    @staticmethod
    def has_kid(keys: dict, kid: Optional[str]) -> bool:
        if not kid:
            return True
        return any(key.get("kid") == kid for key in keys.get("keys", []))


def make_token(email: Optional[str] = USER_EMAIL, secret: bytes = SECRET, kid: str = KID, **overrides: Any) -> str:
    now = int(time.time())
    claims: dict[str, Any] = {
        "sub": "did:privy:test",
        "aud": APP_ID,
        "iss": ISSUER,
        "iat": now,
        "exp": now + 3600,
    }
    if email:
        claims["email"] = email
    claims.update(overrides)
    return jwt.encode(claims, secret, algorithm="HS256", headers={"kid": kid})


def bearer(email: Optional[str] = USER_EMAIL, **overrides: Any) -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token(email, **overrides)}"}


def signed(clock: FakeClock, **fields: Any) -> dict[str, Any]:
    """Тело мутирующего запроса со свежим timestamp и новым nonce"""
    return {"timestamp": int(clock() * 1000), "nonce": uuid.uuid4().hex, **fields}


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def users() -> FakeUserRepository:
    repo = FakeUserRepository()
    repo.add(USER_EMAIL)
    repo.add(OTHER_EMAIL, wallet="0xOtherWallet", smart_account="0xOtherSmart")
    return repo


@pytest.fixture
def plans() -> FakePlanRepository:
    repo = FakePlanRepository()
    repo.add()
    return repo


@pytest.fixture
def subscriptions_repo(plans) -> FakeSubscriptionRepository:
    return FakeSubscriptionRepository(plans)


@pytest.fixture
def payments() -> FakePaymentRepository:
    return FakePaymentRepository()


@pytest.fixture
def delegations_repo() -> FakeDelegationRepository:
    return FakeDelegationRepository()


@pytest.fixture
def developers() -> FakeDeveloperRepository:
    return FakeDeveloperRepository()


@pytest.fixture
def verifier() -> FakeVerifier:
    return FakeVerifier()


@pytest.fixture
def delegation_service(delegations_repo, clock) -> DelegationService:
    return DelegationService(delegations_repo, clock=clock)


@pytest.fixture
def subscription_service(users, plans, subscriptions_repo, payments, delegation_service, verifier, clock) -> SubscriptionService:
    return SubscriptionService(
        users, plans, subscriptions_repo, payments, delegation_service, verifier, clock=clock
    )


@pytest.fixture
def token_verifier() -> TokenVerifier:
    return TokenVerifier(FakeJwks(), audience=APP_ID, issuer=ISSUER, algorithms=["HS256"])


@pytest.fixture
def authenticator(developers, token_verifier) -> Authenticator:
    return Authenticator(developers, token_verifier)


@pytest_asyncio.fixture
async def session_store(clock):
    store = PaymentSessionStore(clock=clock)
    yield store
    await store.close()


@pytest_asyncio.fixture
async def api_client(clock, authenticator, session_store, subscription_service, delegation_service, users, plans, developers):
    """HTTP-клиент к приложению, собранному на фейковых репозиториях"""
    app = create_app(
        authenticator,
        ReplayGuard(MemoryNonceRegistry(clock=clock), clock=clock),
        session_store,
        subscription_service,
        delegation_service,
        users,
        plans,
        developers,
    )
    client = TestClient(TestServer(app))
    await client.start_server()
    yield client
    await client.close()
