from datetime import datetime, timezone
from urllib.parse import parse_qs

import httpx
import pytest

from app.config import Settings
from app.services.masspay import (
    MassPayClient,
    MassPayError,
    MassPayItem,
    MassPayTransportError,
    TransactionRow,
)

ENDPOINT = "https://api-3t.masspay.test/nvp"


def _client(handler):
    return MassPayClient(
        ENDPOINT,
        "api-user",
        "api-pass",
        "api-signature",
        http_client=httpx.Client(transport=httpx.MockTransport(handler)),
    )


def _form(request: httpx.Request) -> dict[str, str]:
    return {key: values[0] for key, values in parse_qs(request.content.decode()).items()}


def test_mass_pay_sends_numbered_items():
    captured = {}

    def handler(request):
        captured.update(_form(request))
        return httpx.Response(200, text="ACK=Success&CORRELATIONID=abc123&TIMESTAMP=2026-10-16T10%3A00%3A00Z")

    response = _client(handler).mass_pay(
        [
            MassPayItem("one@example.com", 10_01, "USD", "41", note="Acme, earnings through 2026-10-16"),
            MassPayItem("two@example.com", 5_00, "USD", "42-1"),
        ]
    )

    assert response.succeeded is True
    assert response.correlation_id == "abc123"
    assert response.errors == []
    assert captured["METHOD"] == "MassPay"
    assert captured["USER"] == "api-user"
    assert captured["CURRENCYCODE"] == "USD"
    assert captured["RECEIVERTYPE"] == "EmailAddress"
    assert (captured["L_EMAIL0"], captured["L_AMT0"], captured["L_UNIQUEID0"]) == (
        "one@example.com",
        "10.01",
        "41",
    )
    assert captured["L_NOTE0"] == "Acme, earnings through 2026-10-16"
    assert (captured["L_AMT1"], captured["L_UNIQUEID1"]) == ("5.00", "42-1")
    assert "L_NOTE1" not in captured


def test_mass_pay_failure_ack_collects_errors():
    def handler(request):
        return httpx.Response(
            200,
            text=(
                "ACK=Failure&CORRELATIONID=c1&L_ERRORCODE0=10321"
                "&L_SHORTMESSAGE0=Insufficient+funds&L_LONGMESSAGE0=Not+enough+money"
            ),
        )

    response = _client(handler).mass_pay([MassPayItem("one@example.com", 100, "USD", "1")])

    assert response.succeeded is False
    assert response.errors == ["10321 - Insufficient funds - Not enough money"]


def test_mass_pay_validates_items():
    client = _client(lambda request: httpx.Response(200, text="ACK=Success"))

    with pytest.raises(ValueError):
        client.mass_pay([])
    with pytest.raises(ValueError):
        client.mass_pay(
            [
                MassPayItem("one@example.com", 100, "USD", "1"),
                MassPayItem("two@example.com", 100, "EUR", "2"),
            ]
        )


def test_server_errors_and_timeouts_are_transport_errors():
    def unavailable(request):
        return httpx.Response(503, text="unavailable")

    def timeout(request):
        raise httpx.ReadTimeout("timed out", request=request)

    item = MassPayItem("one@example.com", 100, "USD", "1")
    for handler in (unavailable, timeout):
        with pytest.raises(MassPayTransportError):
            _client(handler).mass_pay([item])


def test_client_errors_are_not_transport_errors():
    def handler(request):
        return httpx.Response(400, text="bad request")

    with pytest.raises(MassPayError) as exc_info:
        _client(handler).mass_pay([MassPayItem("one@example.com", 100, "USD", "1")])

    assert not isinstance(exc_info.value, MassPayTransportError)


def test_transaction_search_parses_rows():
    captured = {}

    def handler(request):
        captured.update(_form(request))
        return httpx.Response(
            200,
            text=(
                "ACK=Success&L_STATUS0=Completed&L_TRANSACTIONID0=T1&L_AMT0=-10.01"
                "&L_FEEAMT0=-0.25&L_TIMESTAMP0=2026-10-16T10%3A00%3A00Z"
                "&L_STATUS1=Pending&L_TRANSACTIONID1=T2&L_AMT1=-5.00"
            ),
        )

    rows = _client(handler).transaction_search(
        datetime(2026, 10, 15, tzinfo=timezone.utc),
        transaction_id="T1",
        amount_cents=10_01,
    )

    assert captured["METHOD"] == "TransactionSearch"
    assert captured["TRANSACTIONCLASS"] == "Sent"
    assert captured["TRANSACTIONID"] == "T1"
    assert captured["AMT"] == "10.01"
    assert "EMAIL" not in captured
    assert rows == [
        TransactionRow("Completed", "T1", "-10.01", "-0.25", "2026-10-16T10:00:00Z"),
        TransactionRow("Pending", "T2", "-5.00", None, None),
    ]


def test_transaction_search_failure_raises():
    def handler(request):
        return httpx.Response(200, text="ACK=Failure&L_ERRORCODE0=10004&L_SHORTMESSAGE0=Invalid")

    with pytest.raises(MassPayError):
        _client(handler).transaction_search(datetime(2026, 10, 15, tzinfo=timezone.utc))


def test_from_settings_requires_credentials():
    with pytest.raises(ValueError):
        MassPayClient.from_settings(
            Settings(masspay_user=None, masspay_password=None, masspay_signature=None)
        )

    client = MassPayClient.from_settings(
        Settings(masspay_user="u", masspay_password="p", masspay_signature="s")
    )
    assert client.user == "u"


def test_get_balance_returns_cents():
    captured = {}

    def handler(request):
        captured.update(_form(request))
        return httpx.Response(200, text="ACK=Success&L_AMT0=123456.78&L_CURRENCYCODE0=USD")

    assert _client(handler).get_balance() == 123_456_78
    assert captured["METHOD"] == "GetBalance"


def test_get_balance_failure_raises():
    def handler(request):
        return httpx.Response(200, text="ACK=Failure&L_ERRORCODE0=10002&L_SHORTMESSAGE0=Security error")

    with pytest.raises(MassPayError):
        _client(handler).get_balance()
