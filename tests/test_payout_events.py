from app.models.payout import FailureReason, PaymentState
from app.services.payouts.events import (
    ProcessorStatus,
    build_event,
    decode_notification,
    failure_reason_for,
    parse_status,
)


def test_decode_groups_numbered_fields_in_suffix_order():
    form = {
        "unique_id_10": "12",
        "status_10": "Completed",
        "unique_id_2": "11-2",
        "status_2": "Unclaimed",
        "receiver_email_2": "seller@example.com",
        "masspay_txn_id_2": "9XY",
        "mc_fee_2": "0.30",
        "payer_id": "ABC",
    }

    events = decode_notification(form)

    assert [event.unique_id for event in events] == ["11-2", "12"]
    split, regular = events
    assert (split.payment_id, split.ordinal, split.is_split) == (11, 2, True)
    assert split.status == ProcessorStatus.unclaimed
    assert split.target_state == PaymentState.unclaimed
    assert split.receiver_address == "seller@example.com"
    assert split.transfer_txn_id == "9XY"
    assert split.processor_fee_cents == 30
    assert (regular.payment_id, regular.ordinal, regular.is_split) == (12, None, False)
    assert regular.error is None


def test_pending_maps_to_processing():
    event = build_event({"unique_id": "5", "status": "pending"})

    assert event.status == ProcessorStatus.pending
    assert event.target_state == PaymentState.processing


def test_fee_is_trimmed_and_blank_fields_are_dropped():
    event = build_event(
        {"unique_id": " 5 ", "status": "Completed", "processor_fee": " 1.05 ", "transfer_txn_id": "  "}
    )

    assert event.unique_id == "5"
    assert event.processor_fee_cents == 105
    assert event.transfer_txn_id is None


def test_invalid_fields_are_reported_on_the_event():
    assert "invalid fee" in build_event(
        {"unique_id": "5", "status": "Completed", "processor_fee": "abc"}
    ).error
    assert "unknown status" in build_event({"unique_id": "5", "status": "Denied"}).error
    assert "unknown status" in build_event({"unique_id": "5"}).error
    assert "unroutable" in build_event({"unique_id": "SPLIT_5", "status": "Completed"}).error
    assert "ordinal" in build_event({"unique_id": "5-0", "status": "Completed"}).error


def test_parse_status_is_case_insensitive():
    assert parse_status(" COMPLETED ") == ProcessorStatus.completed
    assert parse_status("Reversed") == ProcessorStatus.reversed
    assert parse_status(None) is None


def test_failure_reason_codes():
    assert failure_reason_for("1001") == FailureReason.invalid_recipient
    assert failure_reason_for("1002") == FailureReason.invalid_transaction
    assert failure_reason_for("3004") == FailureReason.transaction_failed
    assert failure_reason_for("3015") == FailureReason.account_locked
    assert failure_reason_for(" 3047 ") == FailureReason.receiving_limit_exceeded
    assert failure_reason_for("9999") == FailureReason.unclassified
    assert failure_reason_for(None) == FailureReason.unclassified
