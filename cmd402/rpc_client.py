"""Typed JSON-RPC client for EVM-compatible nodes.

The ledger façade and the wallet provider both sit on top of this client. It
forwards well-typed requests to the configured endpoint and surfaces errors
clearly; no contract logic lives here.
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any, Dict, Optional

import requests
from requests import RequestException, Response

from .config import ConfigurationError, NetworkConfig

logger = logging.getLogger(__name__)


class RPCError(RuntimeError):
    """Raised when the node responds with a JSON-RPC error object."""

    def __init__(self, code: int, message: str, data: Any = None) -> None:
        super().__init__(f"RPC error {code}: {message}")
        self.code = code
        self.message = message
        self.data = data


class RPCTransportError(RuntimeError):
    """Raised when the RPC endpoint is unreachable or returns malformed data."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class EthRPCClient:
    """Thin JSON-RPC client; each helper maps directly to an ``eth_*`` method."""

    def __init__(self, config: NetworkConfig) -> None:
        self.config = config
        self._session = requests.Session()
        self._url = config.rpc_url

    def call(self, method: str, params: Optional[list[Any]] = None) -> Any:
        """Perform a JSON-RPC request."""

        payload = {
            "jsonrpc": "2.0",
            "id": str(uuid.uuid4()),
            "method": method,
            "params": params or [],
        }
        logger.debug("RPC call %s params=%s", method, params)
        try:
            response = self._session.post(
                self._url,
                data=json.dumps(payload),
                headers={"content-type": "application/json"},
                timeout=self.config.request_timeout,
            )
        except RequestException as exc:
            logger.error(
                "RPC connection failed: %s",
                exc,
                exc_info=logger.isEnabledFor(logging.DEBUG),
            )
            raise RPCTransportError(
                "RPC connection failed. Ensure the node is reachable and CMD402_RPC_URL "
                "(or network.rpc_url in ~/.cmd402.yaml) points to the right endpoint."
            ) from exc
        try:
            self._raise_for_status(response)
        except requests.HTTPError as exc:
            logger.error(
                "RPC HTTP error: %s", exc, exc_info=logger.isEnabledFor(logging.DEBUG)
            )
            raise RPCTransportError(
                "RPC server returned an HTTP error; check the endpoint URL and any API key in it.",
                status_code=response.status_code,
            ) from exc
        try:
            result = response.json()
        except ValueError as exc:
            logger.debug("RPC JSON parse error: %s", response.text, exc_info=True)
            raise RPCTransportError("RPC server returned malformed JSON") from exc
        if not isinstance(result, dict):
            raise RPCTransportError("RPC server returned an unexpected payload")
        if result.get("error"):
            error = result["error"]
            raise RPCError(
                error.get("code", -1), error.get("message", "unknown"), error.get("data")
            )
        return result.get("result")

    def _raise_for_status(self, response: Response) -> None:
        # Some providers report JSON-RPC errors with HTTP 4xx/5xx; the body
        # still carries the structured error worth logging.
        if not response.ok:
            try:
                err_body = response.json()
            except ValueError:
                err_body = response.text

            logger.error("RPC HTTP error %s from %s", response.status_code, response.url)
            logger.error("RPC error body: %s", err_body)
            if response.status_code in {401, 403}:
                raise RPCTransportError(
                    f"Unauthorized ({response.status_code}). Check the API key embedded in CMD402_RPC_URL.",
                    status_code=response.status_code,
                )
            if response.status_code == 429:
                raise RPCTransportError(
                    "Rate limited (429) by the RPC provider; wait a moment and retry.",
                    status_code=response.status_code,
                )
        response.raise_for_status()

    # Convenience wrappers -------------------------------------------------

    def eth_chainId(self) -> int:
        return int(self.call("eth_chainId"), 16)

    def eth_blockNumber(self) -> int:
        return int(self.call("eth_blockNumber"), 16)

    def eth_accounts(self) -> list[str]:
        return list(self.call("eth_accounts") or [])

    def eth_requestAccounts(self) -> list[str]:
        return list(self.call("eth_requestAccounts") or [])

    def eth_getBalance(self, address: str, block: str = "latest") -> int:
        return int(self.call("eth_getBalance", [address, block]), 16)

    def eth_call(
        self,
        to: str,
        data: str,
        block: str = "latest",
        sender: str | None = None,
        value: int | None = None,
    ) -> str:
        request: Dict[str, Any] = {"to": to, "data": data}
        if sender is not None:
            request["from"] = sender
        if value:
            request["value"] = hex(value)
        return self.call("eth_call", [request, block])

    def eth_sendTransaction(self, transaction: Dict[str, Any]) -> str:
        return self.call("eth_sendTransaction", [transaction])

    def eth_getTransactionReceipt(self, tx_hash: str) -> Dict[str, Any] | None:
        return self.call("eth_getTransactionReceipt", [tx_hash])


__all__ = [
    "ConfigurationError",
    "EthRPCClient",
    "NetworkConfig",
    "RPCError",
    "RPCTransportError",
]
