"""Wallet rail client for digipog transfers

The rail offers no idempotency: a timed-out call may or may not have moved
funds, and retrying it could move them twice. Timeouts are therefore raised
as GatewayTimeout and never retried here.
"""

import abc
import time
import logging
from typing import Optional

import httpx

from formbank.config import settings
from formbank.domain.exceptions import GatewayFailure, GatewayLockout, GatewayTimeout, ValidationError
from formbank.domain.models import TransferReceipt, TransferRequest
from formbank.infrastructure.observability.logging import log_transfer
from formbank.infrastructure.observability.metrics import record_transfer

logger = logging.getLogger(__name__)

LOCKOUT_MARKERS = ("locked", "too many failed attempts")


def is_lockout_message(message: str) -> bool:
    lowered = (message or "").lower()
    return any(marker in lowered for marker in LOCKOUT_MARKERS)


def failure_for(message: str) -> GatewayFailure:
    """Classify a decline message from the rail"""
    if is_lockout_message(message):
        return GatewayLockout(message)
    return GatewayFailure(message or "Transfer failed")


class TransferGateway(abc.ABC):
    """Request/response bridge to the external wallet service"""

    @abc.abstractmethod
    async def transfer(self, request: TransferRequest) -> TransferReceipt:
        """
        Move digipogs between two identities.

        Raises:
            ValidationError: amount not positive or secret not numeric
            GatewayLockout: the paying identity is locked out
            GatewayTimeout: no response in time; outcome unknown
            GatewayFailure: any other decline or transport error
        """


def validate_request(request: TransferRequest) -> None:
    if request.amount is None or request.amount <= 0:
        raise ValidationError("Invalid transfer amount")
    if isinstance(request.secret, bool) or not isinstance(request.secret, int):
        raise ValidationError("Invalid PIN - must be a number")


class HttpTransferGateway(TransferGateway):
    """Client for the wallet service's transfer endpoint"""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url or settings.wallet_api_base
        self.api_key = api_key or settings.wallet_api_key
        self.timeout = timeout or settings.transfer_timeout_seconds
        self.transport = transport

    def _payload(self, request: TransferRequest) -> dict:
        data = {
            "request_id": request.request_id,
            "from": request.from_id,
            "to": request.to_id,
            "amount": request.amount,
            "pin": request.secret,
            "reason": request.reason or "Credit Pog transfer",
        }
        # Only sent when paying into a pool
        if request.pool:
            data["pool"] = True
        return data

    async def transfer(self, request: TransferRequest) -> TransferReceipt:
        validate_request(request)
        start_time = time.time()
        try:
            receipt = await self._send(request)
        except GatewayFailure as e:
            outcome = "timeout" if isinstance(e, GatewayTimeout) else "locked" if isinstance(e, GatewayLockout) else "declined"
            self._record(request, outcome, start_time, str(e))
            raise
        self._record(request, "success", start_time, receipt.message)
        return receipt

    async def _send(self, request: TransferRequest) -> TransferReceipt:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                response = await client.post(
                    f"{self.base_url}/api/digipogs/transfer",
                    json=self._payload(request),
                    headers={"API": self.api_key, "X-Request-ID": request.request_id},
                )
            except httpx.TimeoutException as e:
                raise GatewayTimeout(
                    f"Transfer timeout - no response from wallet service after {self.timeout}s. "
                    "Please verify the transfer manually.",
                    request_id=request.request_id,
                ) from e
            except httpx.RequestError as e:
                raise GatewayFailure(f"Wallet service unreachable: {e}") from e

        try:
            data = response.json()
        except ValueError as e:
            raise GatewayFailure(f"Wallet service error: {response.status_code}") from e

        if not isinstance(data, dict):
            raise GatewayFailure("Unexpected response format from wallet service")

        echoed = data.get("request_id")
        if echoed is not None and echoed != request.request_id:
            logger.error(
                "Transfer response correlated to another request",
                extra={"request_id": request.request_id, "echoed_request_id": echoed},
            )
            raise GatewayFailure("Transfer response did not match the request")

        success = data.get("success")
        message = data.get("message") or ""
        if success is True and response.is_success:
            return TransferReceipt(request_id=request.request_id, message=message)
        if success is False or not response.is_success:
            raise failure_for(message or f"Wallet service error: {response.status_code}")
        raise GatewayFailure("Unexpected response format from wallet service")

    def _record(self, request: TransferRequest, outcome: str, start_time: float, message: str) -> None:
        duration = time.time() - start_time
        record_transfer(outcome, duration)
        log_transfer(
            request.request_id,
            request.from_id,
            request.to_id,
            request.amount,
            outcome,
            duration * 1000,
            message,
        )
