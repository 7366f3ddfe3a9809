"""Mock utilities for testing external dependencies."""

from app.services.masspay import MassPayItem, MassPayResponse, TransactionRow


def masspay_ack(ack: str = "Success", correlation_id: str = "CORR1", errors=None):
    return MassPayResponse(ack=ack, correlation_id=correlation_id, errors=list(errors or []))


def search_row(
    status: str,
    transaction_id: str = "TXN1",
    amount: str = "100.00",
    fee_amount: str | None = "-2.00",
    timestamp: str = "2026-10-16T10:00:00Z",
) -> TransactionRow:
    return TransactionRow(
        status=status,
        transaction_id=transaction_id,
        amount=amount,
        fee_amount=fee_amount,
        timestamp=timestamp,
    )


class FakeMassPayClient:
    """Stands in for MassPayClient.

    ``responses`` and ``search_results`` are consumed in order; an exception
    instance in either list is raised instead of returned. ``on_submit`` is
    called with the items of each MassPay call before it returns.
    """

    def __init__(self, responses=None, search_results=None):
        self.responses = list(responses or [])
        self.search_results = list(search_results or [])
        self.calls: list[list[MassPayItem]] = []
        self.search_calls: list[dict] = []
        self.balance_cents = 0
        self.on_submit = None

    def mass_pay(self, items):
        self.calls.append(list(items))
        if self.responses:
            response = self.responses.pop(0)
        else:
            response = masspay_ack(correlation_id=f"CORR{len(self.calls)}")
        if self.on_submit is not None:
            self.on_submit(items)
        if isinstance(response, Exception):
            raise response
        return response

    def transaction_search(self, start_date, **kwargs):
        self.search_calls.append({"start_date": start_date, **kwargs})
        rows = self.search_results.pop(0) if self.search_results else []
        if isinstance(rows, Exception):
            raise rows
        return rows

    def get_balance(self):
        return self.balance_cents

    @property
    def unique_ids(self) -> list[str]:
        return [item.unique_id for call in self.calls for item in call]


class PollRecorder:
    """Collects status polls instead of scheduling Celery tasks."""

    def __init__(self):
        self.calls: list[tuple[int, int]] = []

    def __call__(self, payment_id: int, countdown: int) -> None:
        self.calls.append((payment_id, countdown))

    @property
    def payment_ids(self) -> list[int]:
        return [payment_id for payment_id, _ in self.calls]
