import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.exc import SQLAlchemyError

from app.schemas.common import ErrorResponse, LedgerErrorResponse
from app.schemas.delivery import (
    ConfirmDeliveryRequest,
    ConfirmDeliveryResponse,
    DeliveryOut,
    RegisterDeliveryResponse,
)
from app.services.errors import DeliveryError
from app.services.reconciler import DeliveryReconciler
from app.services.runtime import get_reconciler

router = APIRouter()

log = logging.getLogger(__name__)


@router.get(
    "/pharm/delivery",
    response_model=RegisterDeliveryResponse,
    responses={400: {"model": ErrorResponse}},
)
async def register_delivery(
    delivery_id: str | None = Query(default=None, alias="deliveryId"),
    callback: str | None = Query(default=None),
    pharmacist: str | None = Query(default=None),
    reconciler: DeliveryReconciler = Depends(get_reconciler),
) -> RegisterDeliveryResponse:
    try:
        result = await reconciler.register_delivery(delivery_id, callback, pharmacist)
    except DeliveryError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    except SQLAlchemyError:
        log.exception("register failed: delivery_id=%s", delivery_id)
        raise HTTPException(status_code=500, detail="DB error")

    return RegisterDeliveryResponse(ok=result.ok, id=result.id, status=result.status)


@router.post(
    "/confirm",
    response_model=ConfirmDeliveryResponse,
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        502: {"model": LedgerErrorResponse},
    },
)
async def confirm_delivery(
    body: ConfirmDeliveryRequest,
    reconciler: DeliveryReconciler = Depends(get_reconciler),
) -> ConfirmDeliveryResponse:
    try:
        result = await reconciler.confirm_delivery(body.delivery_id, body.name, body.signature)
    except DeliveryError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    except SQLAlchemyError:
        log.exception("confirm failed: delivery_id=%s", body.delivery_id)
        raise HTTPException(status_code=500, detail="DB error")

    return ConfirmDeliveryResponse(ok=result.ok, onchain_tx=result.onchain_tx, record_hash=result.record_hash)


@router.get(
    "/deliveries/{delivery_id}",
    response_model=DeliveryOut,
    responses={404: {"model": ErrorResponse}},
)
async def get_delivery(
    delivery_id: str,
    reconciler: DeliveryReconciler = Depends(get_reconciler),
) -> DeliveryOut:
    try:
        record = await reconciler.get_delivery(delivery_id)
    except DeliveryError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    return DeliveryOut.model_validate(record)
