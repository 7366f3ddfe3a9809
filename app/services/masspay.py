"""MassPay NVP API client.

Requests and responses are form-encoded name/value pairs. List fields carry a
numeric suffix (``L_EMAIL0``, ``L_AMT0`` ...).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from urllib.parse import parse_qs

import httpx

from app.config import Settings, settings as app_settings
from app.services.common import cents_to_dollars, dollars_to_cents

logger = logging.getLogger(__name__)

SUCCESS_ACKS = frozenset({"Success", "SuccessWithWarning"})


class MassPayError(Exception):
    """Base class for MassPay client errors."""


class MassPayTransportError(MassPayError):
    """The request may or may not have reached MassPay; the outcome is unknown."""


class AmbiguousTransactionError(MassPayError):
    """A transaction search matched more than one candidate."""


class TransactionNotFoundError(MassPayError):
    """A search by a known transaction id returned nothing."""


@dataclass(frozen=True)
class MassPayItem:
    destination: str
    amount_cents: int
    currency: str
    unique_id: str
    note: str | None = None


@dataclass(frozen=True)
class MassPayResponse:
    ack: str | None
    correlation_id: str | None
    errors: list[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.ack in SUCCESS_ACKS


@dataclass(frozen=True)
class TransactionRow:
    status: str | None
    transaction_id: str | None
    amount: str | None
    fee_amount: str | None
    timestamp: str | None


def parse_nvp(body: str) -> dict[str, str]:
    """Decode an NVP response body, keeping the first value for each key."""
    return {key: values[0] for key, values in parse_qs(body, keep_blank_values=True).items()}


def errors_from_response(data: dict[str, str]) -> list[str]:
    errors = []
    index = 0
    while data.get(f"L_SHORTMESSAGE{index}"):
        errors.append(
            " - ".join(
                [
                    data.get(f"L_ERRORCODE{index}", ""),
                    data.get(f"L_SHORTMESSAGE{index}", ""),
                    data.get(f"L_LONGMESSAGE{index}", ""),
                ]
            )
        )
        index += 1
    return errors


def transaction_rows(data: dict[str, str]) -> list[TransactionRow]:
    rows = []
    index = 0
    while data.get(f"L_STATUS{index}") or data.get(f"L_TRANSACTIONID{index}"):
        rows.append(
            TransactionRow(
                status=data.get(f"L_STATUS{index}") or None,
                transaction_id=data.get(f"L_TRANSACTIONID{index}") or None,
                amount=data.get(f"L_AMT{index}") or None,
                fee_amount=data.get(f"L_FEEAMT{index}") or None,
                timestamp=data.get(f"L_TIMESTAMP{index}") or None,
            )
        )
        index += 1
    return rows


class MassPayClient:
    def __init__(
        self,
        endpoint: str,
        user: str | None,
        password: str | None,
        signature: str | None,
        version: str = "90.0",
        timeout: float = 30,
        http_client: httpx.Client | None = None,
    ):
        self.endpoint = endpoint
        self.user = user
        self.password = password
        self.signature = signature
        self.version = version
        self.timeout = timeout
        self._http = http_client

    @classmethod
    def from_settings(cls, source: Settings | None = None) -> "MassPayClient":
        source = source or app_settings
        source.validate_masspay_config()
        return cls(
            endpoint=source.masspay_endpoint,
            user=source.masspay_user,
            password=source.masspay_password,
            signature=source.masspay_signature,
            version=source.masspay_api_version,
            timeout=source.masspay_timeout_seconds,
        )

    def _auth_params(self, method: str) -> dict[str, Any]:
        return {
            "USER": self.user or "",
            "PWD": self.password or "",
            "SIGNATURE": self.signature or "",
            "VERSION": self.version,
            "METHOD": method,
        }

    def _post(self, params: dict[str, Any]) -> dict[str, str]:
        """POST an NVP request.

        Raises:
            MassPayTransportError: timeouts, connection failures and 5xx
                responses, where the request may have been applied
            MassPayError: other non-2xx responses
        """
        try:
            if self._http is not None:
                resp = self._http.post(self.endpoint, data=params, timeout=self.timeout)
            else:
                resp = httpx.post(self.endpoint, data=params, timeout=self.timeout)
        except httpx.RequestError as exc:
            raise MassPayTransportError(f"MassPay request failed: {exc}") from exc
        if resp.status_code >= 500:
            raise MassPayTransportError(f"MassPay returned HTTP {resp.status_code}")
        try:
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise MassPayError(f"MassPay returned HTTP {resp.status_code}") from exc
        return parse_nvp(resp.text)

    def mass_pay(self, items: list[MassPayItem]) -> MassPayResponse:
        """Submit one bulk MassPay call. All items must share a currency."""
        if not items:
            raise ValueError("MassPay requires at least one item")
        currencies = {item.currency for item in items}
        if len(currencies) > 1:
            raise ValueError("MassPay items must share a currency")
        params = self._auth_params("MassPay")
        params["RECEIVERTYPE"] = "EmailAddress"
        params["CURRENCYCODE"] = items[0].currency
        for index, item in enumerate(items):
            params[f"L_EMAIL{index}"] = item.destination
            params[f"L_AMT{index}"] = cents_to_dollars(item.amount_cents)
            params[f"L_UNIQUEID{index}"] = item.unique_id
            if item.note:
                params[f"L_NOTE{index}"] = item.note

        unique_ids = [item.unique_id for item in items]
        logger.info("MassPay: submitting %s items %s", len(items), unique_ids)
        data = self._post(params)
        response = MassPayResponse(
            ack=data.get("ACK"),
            correlation_id=data.get("CORRELATIONID"),
            errors=errors_from_response(data),
        )
        logger.info(
            "MassPay: ack=%s correlation_id=%s for %s",
            response.ack,
            response.correlation_id,
            unique_ids,
        )
        if response.errors:
            logger.warning("MassPay: errors for %s: %s", unique_ids, response.errors)
        return response

    def transaction_search(
        self,
        start_date: datetime,
        end_date: datetime | None = None,
        transaction_id: str | None = None,
        amount_cents: int | None = None,
        email: str | None = None,
    ) -> list[TransactionRow]:
        params = self._auth_params("TransactionSearch")
        params["TRANSACTIONCLASS"] = "Sent"
        params["STARTDATE"] = start_date.isoformat()
        if end_date is not None:
            params["ENDDATE"] = end_date.isoformat()
        if transaction_id:
            params["TRANSACTIONID"] = transaction_id
        if amount_cents is not None:
            params["AMT"] = cents_to_dollars(amount_cents)
        if email:
            params["EMAIL"] = email
        data = self._post(params)
        if data.get("ACK") not in SUCCESS_ACKS:
            raise MassPayError(
                f"TransactionSearch failed: {errors_from_response(data) or data.get('ACK')}"
            )
        return transaction_rows(data)

    def get_balance(self) -> int:
        """Primary MassPay account balance in cents."""
        data = self._post(self._auth_params("GetBalance"))
        if data.get("ACK") not in SUCCESS_ACKS:
            raise MassPayError(
                f"GetBalance failed: {errors_from_response(data) or data.get('ACK')}"
            )
        cents = dollars_to_cents(data.get("L_AMT0"))
        if cents is None:
            raise MassPayError("GetBalance response has no balance amount")
        return cents
