"""Проверка ончейн-транзакций через JSON-RPC"""
import asyncio
import itertools
import logging
from dataclasses import dataclass
from typing import Any, Optional

import aiohttp

from paygate.constants import RECEIPT_SUCCESS_STATUS, RPC_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VerificationResult:
    valid: bool
    error: Optional[str] = None


class RpcError(Exception):
    pass


class BlockchainVerifier:
    """
    Проверяет, что транзакция прошла успешно и породила событие нужного контракта

    Работает по принципу fail closed: любая неясность означает невалидную
    транзакцию. Повторов нет, решение о ретрае принимает клиент.
    """

    def __init__(self, http: aiohttp.ClientSession, rpc_url: str):
        self.http = http
        self.rpc_url = rpc_url
        self._ids = itertools.count(1)

    async def _call(self, method: str, params: list[Any]) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }
        async with self.http.post(
            self.rpc_url,
            json=payload,
            timeout=aiohttp.ClientTimeout(total=RPC_TIMEOUT_SECONDS)
        ) as response:
            if response.status >= 400:
                raise RpcError(f"RPC request failed with status {response.status}")
            body = await response.json(content_type=None)

        error = body.get("error") if isinstance(body, dict) else None
        if error:
            message = error if isinstance(error, str) else error.get("message", str(error))
            raise RpcError(f"RPC error: {message}")
        return body.get("result") if isinstance(body, dict) else None

    async def get_receipt(self, tx_hash: str) -> Optional[dict[str, Any]]:
        return await self._call("eth_getTransactionReceipt", [tx_hash])

    async def verify(self, tx_hash: str, expected_contract_address: Optional[str]) -> VerificationResult:
        """
        Проверяет транзакцию

        Args:
            tx_hash: Хеш транзакции
            expected_contract_address: Адрес контракта SubscriptionManager проекта

        Returns:
            VerificationResult(valid, error)
        """
        try:
            receipt = await self.get_receipt(tx_hash)
        except (aiohttp.ClientError, asyncio.TimeoutError, RpcError, ValueError) as e:
            logger.error(f"Ошибка проверки транзакции {tx_hash}: {e}")
            return VerificationResult(False, f"Failed to verify blockchain transaction: {e}")

        if not receipt:
            return VerificationResult(False, "Transaction not found on blockchain")
        if not isinstance(receipt, dict):
            return VerificationResult(False, "Malformed transaction receipt")

        if receipt.get("status") != RECEIPT_SUCCESS_STATUS:
            return VerificationResult(False, "Transaction failed on blockchain")

        if not expected_contract_address:
            return VerificationResult(False, "Subscription manager address not provided")

        logs = receipt.get("logs") or []
        if not isinstance(logs, list):
            return VerificationResult(False, "Malformed transaction receipt")
        logs = [log for log in logs if isinstance(log, dict)]
        if not logs:
            return VerificationResult(False, "No events found in transaction")

        expected = expected_contract_address.lower()
        matching = [log for log in logs if str(log.get("address", "")).lower() == expected]
        if not matching:
            logger.warning(
                f"Нет событий от контракта {expected_contract_address} в {tx_hash}, "
                f"адреса логов: {', '.join(str(log.get('address')) for log in logs)}"
            )
            return VerificationResult(False, f"No events from SubscriptionManager contract ({expected_contract_address})")

        logger.info(f"⛓️ Транзакция {tx_hash} подтверждена: логов {len(logs)}, от контракта {len(matching)}")
        return VerificationResult(True)
