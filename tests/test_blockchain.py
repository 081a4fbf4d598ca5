import aiohttp
import pytest
import pytest_asyncio
from aiohttp import test_utils, web

from paygate.clients.blockchain import BlockchainVerifier

pytestmark = pytest.mark.asyncio

CONTRACT = "0xAbC0000000000000000000000000000000000001"


class RpcStub:
    """JSON-RPC узел, отдающий заранее заданные квитанции"""

    def __init__(self):
        self.receipts: dict[str, dict] = {}
        self.errors: dict[str, dict] = {}
        self.requests: list[dict] = []

    async def handle(self, request: web.Request) -> web.Response:
        body = await request.json()
        self.requests.append(body)
        tx_hash = body["params"][0]
        if tx_hash in self.errors:
            return web.json_response({"jsonrpc": "2.0", "id": body["id"], "error": self.errors[tx_hash]})
        return web.json_response({"jsonrpc": "2.0", "id": body["id"], "result": self.receipts.get(tx_hash)})


@pytest_asyncio.fixture
async def rpc():
    stub = RpcStub()
    app = web.Application()
    app.router.add_post("/", stub.handle)
    server = test_utils.TestServer(app)
    await server.start_server()
    yield stub, str(server.make_url("/"))
    await server.close()


@pytest_asyncio.fixture
async def verifier(rpc):
    _, url = rpc
    async with aiohttp.ClientSession() as http:
        yield BlockchainVerifier(http, url)


def receipt(status: str = "0x1", addresses: tuple = (CONTRACT,)) -> dict:
    return {"status": status, "logs": [{"address": address, "topics": []} for address in addresses]}


async def test_valid_transaction(rpc, verifier):
    stub, _ = rpc
    stub.receipts["0xok"] = receipt(addresses=("0x9999", CONTRACT))

    result = await verifier.verify("0xok", CONTRACT)

    assert result.valid is True
    assert result.error is None
    assert stub.requests[0]["method"] == "eth_getTransactionReceipt"


async def test_address_match_ignores_case(rpc, verifier):
    stub, _ = rpc
    stub.receipts["0xok"] = receipt(addresses=(CONTRACT.lower(),))

    result = await verifier.verify("0xok", CONTRACT.upper().replace("0X", "0x"))

    assert result.valid is True


async def test_missing_receipt(verifier):
    result = await verifier.verify("0xunknown", CONTRACT)

    assert result.valid is False
    assert "not found" in result.error


async def test_reverted_transaction(rpc, verifier):
    stub, _ = rpc
    stub.receipts["0xfail"] = receipt(status="0x0")

    result = await verifier.verify("0xfail", CONTRACT)

    assert result.valid is False
    assert "failed" in result.error


async def test_zero_logs(rpc, verifier):
    stub, _ = rpc
    stub.receipts["0xempty"] = receipt(addresses=())

    result = await verifier.verify("0xempty", CONTRACT)

    assert result.valid is False
    assert "No events" in result.error


async def test_logs_from_other_contract(rpc, verifier):
    stub, _ = rpc
    stub.receipts["0xother"] = receipt(addresses=("0x9999",))

    result = await verifier.verify("0xother", CONTRACT)

    assert result.valid is False
    assert CONTRACT in result.error


async def test_missing_expected_address(rpc, verifier):
    stub, _ = rpc
    stub.receipts["0xok"] = receipt()

    result = await verifier.verify("0xok", None)

    assert result.valid is False


async def test_rpc_error_fails_closed(rpc, verifier):
    stub, _ = rpc
    stub.errors["0xbad"] = {"code": -32000, "message": "header not found"}

    result = await verifier.verify("0xbad", CONTRACT)

    assert result.valid is False
    assert "header not found" in result.error


async def test_unreachable_node_fails_closed():
    async with aiohttp.ClientSession() as http:
        verifier = BlockchainVerifier(http, f"http://127.0.0.1:{test_utils.unused_port()}/")

        result = await verifier.verify("0xok", CONTRACT)

    assert result.valid is False


@pytest.mark.parametrize("malformed", ["0xdeadbeef", ["0x1"], {"status": "0x1", "logs": "0x"}])
async def test_malformed_receipt_fails_closed(rpc, verifier, malformed):
    stub, _ = rpc
    stub.receipts["0xodd"] = malformed

    result = await verifier.verify("0xodd", CONTRACT)

    assert result.valid is False


async def test_non_object_log_entries_are_skipped(rpc, verifier):
    stub, _ = rpc
    stub.receipts["0xjunk"] = {"status": "0x1", "logs": ["junk", None]}
    stub.receipts["0xmixed"] = {"status": "0x1", "logs": ["junk", {"address": CONTRACT}]}

    junk = await verifier.verify("0xjunk", CONTRACT)
    mixed = await verifier.verify("0xmixed", CONTRACT)

    assert junk.valid is False
    assert mixed.valid is True
