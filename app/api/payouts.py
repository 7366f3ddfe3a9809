from datetime import date

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from app.api.deps import (
    get_db,
    get_masspay_client,
    get_payout_dispatcher,
    require_admin_api_key,
)
from app.models.payout import PaymentState
from app.schemas.payout import (
    EligibilityRead,
    ForcePaymentRequest,
    ListResponse,
    PaymentRead,
    ProcessorBalanceRead,
)
from app.services import api_payout_webhooks as api_payout_webhooks_service
from app.services import payouts as payout_service
from app.services.masspay import MassPayClient
from app.services.payouts.dispatcher import PayoutDispatcher
from app.services.payouts.reconciliation import sync_payment

router = APIRouter(prefix="/payouts")


@router.post("/notifications", tags=["payout-events"])
async def masspay_notification(request: Request, db: Session = Depends(get_db)):
    body = await request.body()
    return api_payout_webhooks_service.process_masspay_notification(db=db, body=body)


@router.get(
    "/payments/{payment_id}",
    response_model=PaymentRead,
    tags=["payouts"],
    dependencies=[Depends(require_admin_api_key)],
)
def get_payment(payment_id: int, db: Session = Depends(get_db)):
    return payout_service.payments.get(db, payment_id)


@router.get(
    "/payees/{payee_id}/payments",
    response_model=ListResponse,
    tags=["payouts"],
    dependencies=[Depends(require_admin_api_key)],
)
def list_payee_payments(
    payee_id: str,
    state: PaymentState | None = None,
    order_by: str = Query(default="created_at"),
    order_dir: str = Query(default="desc", pattern="^(asc|desc)$"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    payee = payout_service.payees.get(db, payee_id)
    items = payout_service.payments.list_for_payee(
        db, payee.id, state, order_by, order_dir, limit, offset
    )
    return {"items": items, "count": len(items), "limit": limit, "offset": offset}


@router.get(
    "/payees/{payee_id}/eligibility",
    response_model=EligibilityRead,
    tags=["payouts"],
    dependencies=[Depends(require_admin_api_key)],
)
def get_payee_eligibility(
    payee_id: str,
    as_of_date: date | None = None,
    db: Session = Depends(get_db),
):
    payee = payout_service.payees.get(db, payee_id)
    result = payout_service.check_payable(db, payee, as_of_date or date.today())
    return EligibilityRead(
        payable=result.payable,
        reason=result.reason,
        blocking_payment_ids=list(result.blocking_payment_ids),
    )


@router.post(
    "/payees/{payee_id}/force",
    response_model=PaymentRead,
    status_code=201,
    tags=["payouts"],
    dependencies=[Depends(require_admin_api_key)],
)
def force_payee_payout(
    payee_id: str,
    payload: ForcePaymentRequest | None = None,
    db: Session = Depends(get_db),
    dispatcher: PayoutDispatcher = Depends(get_payout_dispatcher),
):
    """Create and submit a payment for one payee outside the weekly run."""
    cutoff_date = (payload.cutoff_date if payload else None) or date.today()
    aggregator = payout_service.PaymentAggregator(dispatcher.config)
    payment = aggregator.create_payment_for_payee(db, payee_id, cutoff_date)
    dispatcher.process_payments(db, [payment])
    db.refresh(payment)
    return payment


@router.post(
    "/payments/{payment_id}/sync",
    response_model=PaymentRead,
    tags=["payouts"],
    dependencies=[Depends(require_admin_api_key)],
)
def sync_payment_status(
    payment_id: int,
    db: Session = Depends(get_db),
    client: MassPayClient = Depends(get_masspay_client),
):
    """Look the payment up on MassPay and apply whatever it reports."""
    payout_service.payments.get(db, payment_id)
    payment = payout_service.payments.lock(db, payment_id)
    sync_payment(db, client, payment)
    db.commit()
    db.refresh(payment)
    return payment


@router.get(
    "/balance",
    response_model=ProcessorBalanceRead,
    tags=["payouts"],
    dependencies=[Depends(require_admin_api_key)],
)
def get_processor_balance(client: MassPayClient = Depends(get_masspay_client)):
    """Funds available on the MassPay account for upcoming payouts."""
    return ProcessorBalanceRead(balance_cents=client.get_balance())
