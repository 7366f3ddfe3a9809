"""MassPay notification webhook orchestration."""

from __future__ import annotations

import logging
from collections import Counter
from urllib.parse import parse_qs

from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.schemas.payout import NotificationResult
from app.services.payouts.confirmations import ConfirmationHandler

logger = logging.getLogger(__name__)


def _decode_form(body: bytes) -> dict[str, str]:
    text = body.decode("utf-8", errors="replace")
    return {key: values[0] for key, values in parse_qs(text, keep_blank_values=True).items()}


def process_masspay_notification(
    *,
    db: Session,
    body: bytes,
    handler: ConfirmationHandler | None = None,
) -> JSONResponse:
    """Apply a MassPay notification; always acknowledge so MassPay stops retrying."""
    form = _decode_form(body)
    logger.info("MassPay webhook: %s keys", len(form))
    try:
        outcomes = (handler or ConfirmationHandler()).handle_notification(db, form)
    except Exception:
        logger.exception("MassPay webhook processing error")
        outcomes = []
    result = NotificationResult(
        received=len(outcomes),
        outcomes=dict(Counter(outcome.value for outcome in outcomes)),
    )
    return JSONResponse(result.model_dump(), status_code=200)
