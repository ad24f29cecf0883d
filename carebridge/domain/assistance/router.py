"""Assistance router - FastAPI endpoints for funding requests"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Query, UploadFile
from sqlalchemy.orm import Session

from ...auth import get_current_user, require_roles
from ...database import get_db
from ...models import ADMIN_ROLES, PatientAssistance, User
from ...services.attachment_storage import AttachmentStorage, get_attachment_storage
from ...services.notification_service import NotificationDispatcher, get_notification_dispatcher
from .schemas import (
    AssistanceCreate,
    AssistanceResponse,
    AssistanceStatusUpdate,
    AttachmentResponse,
    WithdrawalResponse,
)
from .service import AssistanceService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/assistance", tags=["Assistance"])


def get_assistance_service(
    db: Session = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notification_dispatcher),
) -> AssistanceService:
    """Dependency injection for AssistanceService"""
    return AssistanceService(db, notifier)


def attachment_response(f, storage: Optional[AttachmentStorage] = None) -> AttachmentResponse:
    return AttachmentResponse(
        id=f.id,
        filename=f.filename,
        path=f.path,
        size=f.size,
        url=storage.url(f.path) if storage else None,
    )


def assistance_response(
    a: PatientAssistance, storage: Optional[AttachmentStorage] = None
) -> AssistanceResponse:
    return AssistanceResponse(
        id=a.id,
        patientId=a.patient_id,
        requestType=a.request_type,
        title=a.title,
        description=a.description,
        medicalCondition=a.medical_condition,
        requestedAmount=a.requested_amount,
        raisedAmount=a.raised_amount,
        withdrawnAmount=a.withdrawn_amount,
        remainingAmount=a.remaining_amount,
        urgency=a.urgency,
        supportStartDate=a.support_start_date,
        supportEndDate=a.support_end_date,
        contactPhone=a.contact_phone,
        status=a.status,
        approvedBy=a.approved_by,
        withdrawals=[
            WithdrawalResponse(
                id=w.id, amount=w.amount, adminId=w.admin_id, note=w.note, createdAt=w.created_at
            )
            for w in a.withdrawals
        ],
        attachments=[attachment_response(f, storage) for f in a.attachments],
        createdAt=a.created_at,
        updatedAt=a.updated_at,
    )


@router.post("", status_code=201)
async def create_assistance(
    data: AssistanceCreate,
    current_user: User = Depends(require_roles("patient")),
    service: AssistanceService = Depends(get_assistance_service),
):
    """Submit a funding request"""
    assistance = service.create_assistance(data, current_user)
    return {
        "success": True,
        "message": "Assistance request created successfully",
        "data": assistance_response(assistance),
    }


@router.get("")
async def list_assistance(
    status: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    service: AssistanceService = Depends(get_assistance_service),
):
    items, pagination = service.list_assistance(current_user, status, page, limit)
    return {
        "success": True,
        "message": "Assistance requests retrieved",
        "data": [assistance_response(a) for a in items],
        "pagination": pagination,
    }


@router.get("/public")
async def list_public_assistance(service: AssistanceService = Depends(get_assistance_service)):
    """Requests currently open for donations"""
    items = service.list_public()
    return {
        "success": True,
        "message": "Public assistance requests retrieved",
        "data": [assistance_response(a) for a in items],
        "count": len(items),
    }


@router.get("/{assistance_id}")
async def get_assistance(
    assistance_id: int,
    current_user: User = Depends(get_current_user),
    service: AssistanceService = Depends(get_assistance_service),
    storage: AttachmentStorage = Depends(get_attachment_storage),
):
    assistance = service.get_assistance(assistance_id, current_user)
    return {
        "success": True,
        "message": "Assistance request retrieved",
        "data": assistance_response(assistance, storage),
    }


@router.patch("/{assistance_id}/status")
async def update_assistance_status(
    assistance_id: int,
    data: AssistanceStatusUpdate,
    current_user: User = Depends(require_roles(*ADMIN_ROLES)),
    service: AssistanceService = Depends(get_assistance_service),
):
    """Admin decision on a request"""
    assistance = service.update_status(assistance_id, data.status, current_user)
    return {
        "success": True,
        "message": f"Status updated to {assistance.status}",
        "data": assistance_response(assistance),
    }


@router.delete("/{assistance_id}")
async def delete_assistance(
    assistance_id: int,
    current_user: User = Depends(require_roles(*ADMIN_ROLES)),
    service: AssistanceService = Depends(get_assistance_service),
):
    result = service.delete_assistance(assistance_id, current_user)
    return {"success": True, **result}


@router.post("/{assistance_id}/attachments", status_code=201)
async def upload_attachments(
    assistance_id: int,
    files: list[UploadFile] = File(...),
    current_user: User = Depends(get_current_user),
    service: AssistanceService = Depends(get_assistance_service),
    storage: AttachmentStorage = Depends(get_attachment_storage),
):
    """Upload up to five supporting images"""
    uploads = [(f.filename, f.content_type, await f.read()) for f in files]
    attachments = service.add_attachments(assistance_id, uploads, current_user, storage)
    return {
        "success": True,
        "message": f"Uploaded {len(attachments)} attachment(s)",
        "attachments": [attachment_response(a, storage) for a in attachments],
    }
