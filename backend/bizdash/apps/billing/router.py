# backend/bizdash/apps/billing/router.py

from __future__ import annotations

from functools import lru_cache
from typing import Dict, List, Type

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from bizdash.apps.accounts import permissions
from bizdash.database import get_db
from bizdash.security import get_current_active_user
from . import checkout, lifecycle, reconciliation, schemas, store
from .config import BillingSettings
from .errors import (
    AuthorizationError,
    BillingError,
    ConcurrentUpdateError,
    ConfigurationError,
    GatewayError,
    NoOpError,
    NotFoundError,
    StaleReferenceError,
    TransientError,
)
from .gateway import PaymentGateway, StripeGateway

router = APIRouter(
    prefix="/billing",
    tags=["billing"],
    responses={
        403: {"model": schemas.BillingErrorResponse},
        404: {"model": schemas.BillingErrorResponse},
        409: {"model": schemas.BillingErrorResponse},
        503: {"model": schemas.BillingErrorResponse},
    },
)


_STATUS_BY_ERROR: Dict[Type[BillingError], int] = {
    AuthorizationError: status.HTTP_403_FORBIDDEN,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ConfigurationError: status.HTTP_500_INTERNAL_SERVER_ERROR,
    NoOpError: status.HTTP_409_CONFLICT,
    ConcurrentUpdateError: status.HTTP_409_CONFLICT,
    TransientError: status.HTTP_503_SERVICE_UNAVAILABLE,
    StaleReferenceError: status.HTTP_410_GONE,
    GatewayError: status.HTTP_502_BAD_GATEWAY,
}


def _http_error(exc: BillingError) -> HTTPException:
    status_code = status.HTTP_400_BAD_REQUEST
    for klass in type(exc).__mro__:
        if klass in _STATUS_BY_ERROR:
            status_code = _STATUS_BY_ERROR[klass]
            break
    return HTTPException(
        status_code=status_code,
        detail={"code": exc.code, "message": exc.message or str(exc)},
    )


@lru_cache(maxsize=1)
def get_billing_settings() -> BillingSettings:
    return BillingSettings.from_env()


@lru_cache(maxsize=1)
def _stripe_gateway(api_key: str, timeout_seconds: int) -> StripeGateway:
    # StripeGateway installs the process-wide Stripe HTTP client; build it once.
    return StripeGateway(api_key, timeout_seconds=timeout_seconds)


def get_gateway(
    settings: BillingSettings = Depends(get_billing_settings),
) -> PaymentGateway:
    return _stripe_gateway(settings.stripe_secret_key, settings.stripe_timeout_seconds)


@router.get("/status", response_model=schemas.BillingStatusRead)
def get_status(
    db: Session = Depends(get_db),
    current_user=Depends(get_current_active_user),
    gateway: PaymentGateway = Depends(get_gateway),
    settings: BillingSettings = Depends(get_billing_settings),
):
    try:
        return reconciliation.get_status(
            db, actor=current_user, gateway=gateway, policy=settings.policy
        )
    except BillingError as exc:
        raise _http_error(exc) from exc


@router.post(
    "/checkout",
    response_model=schemas.CheckoutResponse,
    status_code=status.HTTP_201_CREATED,
)
def start_checkout(
    payload: schemas.CheckoutRequest,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_active_user),
    gateway: PaymentGateway = Depends(get_gateway),
    settings: BillingSettings = Depends(get_billing_settings),
):
    try:
        return checkout.initiate_checkout(
            db,
            actor=current_user,
            gateway=gateway,
            plan=payload.plan,
            billing_period=payload.billing_period,
            settings=settings,
        )
    except BillingError as exc:
        raise _http_error(exc) from exc


@router.post("/cancel", response_model=schemas.BillingActionResult)
def cancel(
    db: Session = Depends(get_db),
    current_user=Depends(get_current_active_user),
    gateway: PaymentGateway = Depends(get_gateway),
    settings: BillingSettings = Depends(get_billing_settings),
):
    try:
        return lifecycle.cancel_subscription(
            db, actor=current_user, gateway=gateway, policy=settings.policy
        )
    except BillingError as exc:
        raise _http_error(exc) from exc


@router.post("/resume", response_model=schemas.BillingActionResult)
def resume(
    db: Session = Depends(get_db),
    current_user=Depends(get_current_active_user),
    gateway: PaymentGateway = Depends(get_gateway),
    settings: BillingSettings = Depends(get_billing_settings),
):
    try:
        return lifecycle.resume_subscription(
            db, actor=current_user, gateway=gateway, policy=settings.policy
        )
    except BillingError as exc:
        raise _http_error(exc) from exc


@router.post("/change-plan", response_model=schemas.BillingActionResult)
def change_plan(
    payload: schemas.ChangePlanRequest,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_active_user),
    gateway: PaymentGateway = Depends(get_gateway),
    settings: BillingSettings = Depends(get_billing_settings),
):
    try:
        return lifecycle.change_plan(
            db,
            actor=current_user,
            gateway=gateway,
            plan=payload.plan,
            settings=settings,
        )
    except BillingError as exc:
        raise _http_error(exc) from exc


@router.post("/portal", response_model=schemas.PortalResponse)
def open_portal(
    db: Session = Depends(get_db),
    current_user=Depends(get_current_active_user),
    gateway: PaymentGateway = Depends(get_gateway),
    settings: BillingSettings = Depends(get_billing_settings),
):
    try:
        return lifecycle.open_billing_portal(
            db, actor=current_user, gateway=gateway, settings=settings
        )
    except BillingError as exc:
        raise _http_error(exc) from exc


@router.get("/history", response_model=List[schemas.SubscriptionHistoryRead])
def list_history(
    db: Session = Depends(get_db),
    current_user=Depends(get_current_active_user),
):
    try:
        organization_id, _ = reconciliation.load_tenant_record(
            db, actor=current_user, permission=permissions.VIEW_BILLING
        )
    except BillingError as exc:
        raise _http_error(exc) from exc
    return store.list_history(db, organization_id)
