"""Funding router - donations, gateway callbacks and withdrawals"""

import logging
from typing import Callable

import pydantic
from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from ...auth import get_current_user, require_roles
from ...database import get_db
from ...exceptions import ValidationError
from ...models import ADMIN_ROLES, Donation, User
from ...rate_limiter import donation_rate_limit
from ...services.notification_service import NotificationDispatcher, get_notification_dispatcher
from ...shared.timeutils import get_clock
from ...webhook_security import verify_gateway_webhook
from ..assistance.router import assistance_response
from .schemas import DonationCreate, DonationResponse, GatewayCallback, WithdrawalCreate
from .service import FundingLedger

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/donations", tags=["Donations"])
withdrawals_router = APIRouter(prefix="/assistance", tags=["Assistance"])


def get_funding_ledger(
    db: Session = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notification_dispatcher),
    clock: Callable = Depends(get_clock),
) -> FundingLedger:
    """Dependency injection for FundingLedger"""
    return FundingLedger(db, notifier, clock)


def donation_response(d: Donation) -> DonationResponse:
    return DonationResponse(
        id=d.id,
        assistanceId=d.assistance_id,
        amount=d.amount,
        paymentMethod=d.payment_method,
        status=d.status,
        isAnonymous=d.is_anonymous,
        donorName=d.donor_name,
        donorEmail=d.donor_email,
        donorPhone=d.donor_phone,
        message=d.message,
        gatewayRef=d.gateway_ref,
        confirmedAt=d.confirmed_at,
        createdAt=d.created_at,
    )


@router.post("", status_code=201)
async def create_donation(
    data: DonationCreate,
    current_user: User = Depends(get_current_user),
    ledger: FundingLedger = Depends(get_funding_ledger),
    _: None = Depends(donation_rate_limit),
):
    """Start a donation; the gateway reference identifies it in the callback"""
    donation = ledger.create_donation(data, current_user)
    return {
        "success": True,
        "message": "Donation created, awaiting payment confirmation",
        "donation": donation_response(donation),
    }


@router.get("")
async def list_donations(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    ledger: FundingLedger = Depends(get_funding_ledger),
):
    """Admins see every donation, donors their own"""
    donations, pagination = ledger.list_donations(current_user, page, limit)
    return {
        "success": True,
        "message": "Donations retrieved",
        "data": [donation_response(d) for d in donations],
        "pagination": pagination,
    }


@router.post("/gateway/callback")
async def gateway_callback(request: Request, ledger: FundingLedger = Depends(get_funding_ledger)):
    """Payment confirmation pushed by the gateway"""
    raw_body = await verify_gateway_webhook(request)
    try:
        event = GatewayCallback.model_validate_json(raw_body)
    except pydantic.ValidationError as e:
        logger.error(f"❌ Malformed gateway callback: {e}")
        raise ValidationError("Malformed gateway callback")

    logger.info(f"📥 Gateway callback {event.gatewayRef}: {event.status} {event.amount}")
    donation, credited = ledger.confirm_donation(
        event.assistanceId, event.amount, event.gatewayRef, event.status
    )
    return {
        "success": True,
        "message": "Donation confirmed" if credited else "Callback already processed",
        "credited": credited,
        "donation": donation_response(donation),
    }


@withdrawals_router.post("/{assistance_id}/withdraw")
async def withdraw_funds(
    assistance_id: int,
    data: WithdrawalCreate,
    current_user: User = Depends(require_roles(*ADMIN_ROLES)),
    ledger: FundingLedger = Depends(get_funding_ledger),
):
    """Record a payout of raised funds to the patient"""
    assistance, withdrawal = ledger.withdraw(assistance_id, data.amount, current_user, data.note)
    return {
        "success": True,
        "message": f"Withdrew {withdrawal.amount} successfully",
        "data": assistance_response(assistance),
    }
