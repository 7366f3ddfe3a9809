"""Decode MassPay notifications into typed confirmation events.

A notification is one flat form with numbered keys, one group per transfer::

    unique_id_1=42&status_1=Completed&masspay_txn_id_1=9XY...&mc_fee_1=0.25
    unique_id_2=43-1&status_2=Failed&reason_code_2=1001
"""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from typing import Mapping

from app.models.payout import FailureReason, PaymentState
from app.services.common import dollars_to_cents

_NUMBERED_KEY = re.compile(r"\A(?P<field>.+)_(?P<index>\d+)\Z")
_NON_SPLIT_ID = re.compile(r"\A(?P<payment_id>\d+)\Z")
_SPLIT_ID = re.compile(r"\A(?P<payment_id>\d+)-(?P<ordinal>\d+)\Z")

_FIELD_ALIASES = {
    "receiver_email": "receiver_address",
    "masspay_txn_id": "transfer_txn_id",
    "mc_fee": "processor_fee",
}


class ProcessorStatus(enum.Enum):
    completed = "Completed"
    failed = "Failed"
    unclaimed = "Unclaimed"
    pending = "Pending"
    reversed = "Reversed"
    returned = "Returned"


STATUS_TARGETS = {
    ProcessorStatus.completed: PaymentState.completed,
    ProcessorStatus.failed: PaymentState.failed,
    ProcessorStatus.unclaimed: PaymentState.unclaimed,
    ProcessorStatus.pending: PaymentState.processing,
    ProcessorStatus.reversed: PaymentState.reversed,
    ProcessorStatus.returned: PaymentState.returned,
}

REASON_CODES = {
    "1001": FailureReason.invalid_recipient,
    "1002": FailureReason.invalid_transaction,
    "3004": FailureReason.transaction_failed,
    "3015": FailureReason.account_locked,
    "3047": FailureReason.receiving_limit_exceeded,
}


def failure_reason_for(reason_code: str | None) -> FailureReason:
    return REASON_CODES.get((reason_code or "").strip(), FailureReason.unclassified)


def parse_status(value: str | None) -> ProcessorStatus | None:
    raw = (value or "").strip().lower()
    for status in ProcessorStatus:
        if status.value.lower() == raw:
            return status
    return None


@dataclass(frozen=True)
class ConfirmationEvent:
    unique_id: str
    status: ProcessorStatus | None
    raw_status: str | None = None
    transfer_txn_id: str | None = None
    receiver_address: str | None = None
    processor_fee_cents: int | None = None
    reason_code: str | None = None
    payment_id: int | None = None
    ordinal: int | None = None
    error: str | None = None

    @property
    def is_split(self) -> bool:
        return self.ordinal is not None

    @property
    def target_state(self) -> PaymentState | None:
        return STATUS_TARGETS.get(self.status) if self.status else None


def _blank_to_none(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def build_event(fields: Mapping[str, str]) -> ConfirmationEvent:
    unique_id = (fields.get("unique_id") or "").strip()
    raw_status = _blank_to_none(fields.get("status"))
    errors = []

    payment_id = ordinal = None
    if match := _NON_SPLIT_ID.match(unique_id):
        payment_id = int(match.group("payment_id"))
    elif match := _SPLIT_ID.match(unique_id):
        payment_id = int(match.group("payment_id"))
        ordinal = int(match.group("ordinal"))
        if ordinal < 1:
            errors.append(f"invalid split ordinal in {unique_id!r}")
    else:
        errors.append(f"unroutable unique_id {unique_id!r}")

    status = parse_status(raw_status)
    if status is None:
        errors.append(f"unknown status {raw_status!r}")

    fee_cents = None
    try:
        fee_cents = dollars_to_cents(fields.get("processor_fee"))
    except ValueError:
        errors.append(f"invalid fee {fields.get('processor_fee')!r}")

    return ConfirmationEvent(
        unique_id=unique_id,
        status=status,
        raw_status=raw_status,
        transfer_txn_id=_blank_to_none(fields.get("transfer_txn_id")),
        receiver_address=_blank_to_none(fields.get("receiver_address")),
        processor_fee_cents=fee_cents,
        reason_code=_blank_to_none(fields.get("reason_code")),
        payment_id=payment_id,
        ordinal=ordinal,
        error="; ".join(errors) or None,
    )


def decode_notification(form: Mapping[str, str]) -> list[ConfirmationEvent]:
    """Group numbered keys by suffix and build one event per group, in suffix order."""
    groups: dict[int, dict[str, str]] = {}
    for key, value in form.items():
        match = _NUMBERED_KEY.match(key)
        if not match:
            continue
        field = match.group("field")
        groups.setdefault(int(match.group("index")), {})[
            _FIELD_ALIASES.get(field, field)
        ] = value
    return [build_event(fields) for _, fields in sorted(groups.items())]
