"""
M-Pesa Callback Endpoint.

Public endpoint the gateway posts STK push results to. Always answers
HTTP 200 with a ResultCode body; the gateway retries anything else.
"""

import logging

from fastapi import APIRouter, Depends, Request
from pydantic import ValidationError as PydanticValidationError

from payments_backend.app.schemas.payment import StkCallbackEnvelope, CallbackAck
from payments_backend.app.core.dependencies import get_callback_processor
from payments_backend.app.domain.payments.callback_processor import CallbackProcessor, ACK_INVALID_PAYLOAD

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/mpesa", tags=["M-Pesa"])


@router.post("/callback", response_model=CallbackAck)
async def mpesa_callback(
    request: Request,
    processor: CallbackProcessor = Depends(get_callback_processor),
):
    try:
        envelope = StkCallbackEnvelope.model_validate(await request.json())
    except (ValueError, PydanticValidationError) as e:
        logger.warning("Rejected malformed M-Pesa callback: %s", e)
        return ACK_INVALID_PAYLOAD

    return await processor.process(envelope)
