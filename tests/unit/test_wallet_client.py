"""Unit tests for the wallet rail HTTP client"""

import json

import httpx
import pytest

from formbank.domain.exceptions import GatewayFailure, GatewayLockout, GatewayTimeout, ValidationError
from formbank.domain.models import TransferRequest
from formbank.infrastructure.clients.wallet import HttpTransferGateway, is_lockout_message


def make_gateway(handler) -> HttpTransferGateway:
    return HttpTransferGateway(
        base_url="http://wallet.test",
        api_key="test-key",
        timeout=10.0,
        transport=httpx.MockTransport(handler),
    )


def make_request(**overrides) -> TransferRequest:
    fields = dict(from_id=7, to_id=1, amount=25, secret=1234, reason="FormBank loan repayment: 25 digipogs")
    fields.update(overrides)
    return TransferRequest(**fields)


async def test_successful_transfer_sends_contract_payload():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"success": True, "message": "ok", "request_id": seen["body"]["request_id"]})

    req = make_request()
    receipt = await make_gateway(handler).transfer(req)

    assert receipt.request_id == req.request_id
    assert seen["url"] == "http://wallet.test/api/digipogs/transfer"
    assert seen["headers"]["API"] == "test-key"
    assert seen["body"] == {
        "request_id": req.request_id,
        "from": 7,
        "to": 1,
        "amount": 25,
        "pin": 1234,
        "reason": "FormBank loan repayment: 25 digipogs",
    }


async def test_pool_flag_only_sent_when_set():
    bodies = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"success": True})

    await make_gateway(handler).transfer(make_request(pool=True))

    assert bodies[0]["pool"] is True


async def test_decline_raises_gateway_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"success": False, "message": "Insufficient funds"})

    with pytest.raises(GatewayFailure, match="Insufficient funds") as exc_info:
        await make_gateway(handler).transfer(make_request())
    assert not isinstance(exc_info.value, GatewayLockout)


@pytest.mark.parametrize("message", ["Account LOCKED for 5 minutes", "Too many failed attempts"])
async def test_lockout_messages_raise_lockout(message):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403, json={"success": False, "message": message})

    with pytest.raises(GatewayLockout):
        await make_gateway(handler).transfer(make_request())


async def test_timeout_is_reported_as_ambiguous():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    req = make_request()
    with pytest.raises(GatewayTimeout, match="verify the transfer manually") as exc_info:
        await make_gateway(handler).transfer(req)
    # Carried so the ambiguous transfer can be traced on the rail side
    assert exc_info.value.request_id == req.request_id


async def test_mismatched_request_id_is_rejected(caplog):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"success": True, "request_id": "someone-else"})

    with pytest.raises(GatewayFailure, match="did not match"):
        await make_gateway(handler).transfer(make_request())

    (record,) = [r for r in caplog.records if r.getMessage() == "Transfer response correlated to another request"]
    assert record.name == "formbank.infrastructure.clients.wallet"
    assert record.echoed_request_id == "someone-else"


async def test_unexpected_response_format():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"status": "maybe"})

    with pytest.raises(GatewayFailure, match="Unexpected response format"):
        await make_gateway(handler).transfer(make_request())


async def test_non_json_error_response():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, text="Bad Gateway")

    with pytest.raises(GatewayFailure, match="502"):
        await make_gateway(handler).transfer(make_request())


async def test_invalid_request_rejected_before_sending():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={"success": True})

    gateway = make_gateway(handler)
    with pytest.raises(ValidationError):
        await gateway.transfer(make_request(amount=0))
    with pytest.raises(ValidationError):
        await gateway.transfer(make_request(secret="12ab"))
    assert calls == []


def test_is_lockout_message():
    assert is_lockout_message("Your account is locked")
    assert is_lockout_message("too many failed attempts, try later")
    assert not is_lockout_message("Insufficient funds")
    assert not is_lockout_message("")
