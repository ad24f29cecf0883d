"""Assistance service - Business logic for patient funding requests"""

import logging
import uuid
from typing import Optional

from sqlalchemy.orm import Session

from ...config import MAX_ATTACHMENT_BYTES, MAX_ATTACHMENTS
from ...exceptions import (
    Forbidden,
    IllegalTransition,
    InvalidStatus,
    NotFound,
    StorageFailure,
    ValidationError,
)
from ...models import ADMIN_ROLES, ASSISTANCE_STATUSES, PatientAssistance, User
from ...services.attachment_storage import (
    ALLOWED_IMAGE_TYPES,
    AttachmentStorage,
    StorageError,
    check_image_filename,
)
from ...services.notification_service import NotificationDispatcher
from ...shared.pagination import paginate
from ...shared.timeutils import to_local
from .repository import PUBLIC_STATUSES, AssistanceRepository
from .schemas import AssistanceCreate

logger = logging.getLogger(__name__)

# Requests only move forward; rejected and completed are final
ALLOWED_TRANSITIONS = {
    "pending": {"approved", "rejected"},
    "approved": {"in_progress"},
    "in_progress": {"completed"},
    "completed": set(),
    "rejected": set(),
}


class AssistanceService:
    """Service layer for assistance request business logic"""

    def __init__(self, db: Session, notifier: NotificationDispatcher):
        self.db = db
        self.notifier = notifier
        self.repo = AssistanceRepository()

    def create_assistance(self, data: AssistanceCreate, user: User) -> PatientAssistance:
        logger.info(f"📥 Creating assistance request for user_id: {user.id}")

        patient = self.repo.get_patient_by_user(self.db, user.id)
        if not patient:
            raise NotFound("Patient profile not found")

        assistance = self.repo.create_assistance(
            self.db,
            patient_id=patient.id,
            request_type=data.requestType,
            title=data.title.strip(),
            description=data.description.strip(),
            medical_condition=data.medicalCondition.strip(),
            requested_amount=data.requestedAmount,
            urgency=data.urgency,
            support_start_date=to_local(data.supportStartDate),
            support_end_date=to_local(data.supportEndDate),
            contact_phone=data.contactPhone,
            raised_amount=0,
            withdrawn_amount=0,
            status="pending",
        )
        logger.info(f"✅ Assistance request {assistance.id} created ({assistance.requested_amount})")
        return assistance

    def get_assistance(self, assistance_id: int, user: User) -> PatientAssistance:
        assistance = self.repo.get_assistance(self.db, assistance_id)
        if not assistance:
            raise NotFound("Assistance request not found")
        if user.role in ADMIN_ROLES or assistance.status in PUBLIC_STATUSES:
            return assistance
        if assistance.patient.user_id != user.id:
            raise Forbidden("You do not have access to this assistance request")
        return assistance

    def list_assistance(
        self, user: User, status: Optional[str] = None, page: int = 1, limit: int = 10
    ) -> tuple[list[PatientAssistance], dict]:
        """Patients see their own requests; everyone else sees all of them"""
        if status and status not in ASSISTANCE_STATUSES:
            raise InvalidStatus(f"Invalid status: {status}")

        patient_id = None
        if user.role == "patient":
            patient = self.repo.get_patient_by_user(self.db, user.id)
            if not patient:
                return [], {"total": 0, "pages": 0, "page": page, "limit": limit}
            patient_id = patient.id

        query = self.repo.assistance_query(self.db, patient_id=patient_id, status=status)
        return paginate(query, page, limit)

    def list_public(self) -> list[PatientAssistance]:
        return self.repo.public_query(self.db).all()

    def update_status(self, assistance_id: int, new_status: str, admin: User) -> PatientAssistance:
        if new_status not in ASSISTANCE_STATUSES:
            raise InvalidStatus(f"Invalid status: {new_status}")

        assistance = self.repo.get_assistance(self.db, assistance_id)
        if not assistance:
            raise NotFound("Assistance request not found")

        current = assistance.status
        if new_status not in ALLOWED_TRANSITIONS[current]:
            logger.warning(f"⚠️ Assistance {assistance_id}: refused {current} -> {new_status}")
            raise IllegalTransition(f"Cannot change status from {current} to {new_status}")

        values = {"status": new_status}
        if current == "pending":
            # approved_by records who made the approve/reject decision
            values["approved_by"] = admin.id

        try:
            moved = self.repo.transition(self.db, assistance_id, current, values)
            if not moved:
                raise IllegalTransition("Assistance status was changed by another request")
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(assistance)
        logger.info(f"✅ Assistance {assistance_id}: {current} -> {new_status} by admin {admin.id}")

        self.notifier.notify(
            assistance.patient.user_id,
            "assistance_status_update",
            {
                "assistanceId": assistance.id,
                "previousStatus": current,
                "status": new_status,
                "message": f"Your assistance request \"{assistance.title}\" is now {new_status}",
            },
        )
        return assistance

    def delete_assistance(self, assistance_id: int, admin: User) -> dict:
        assistance = self.repo.get_assistance(self.db, assistance_id)
        if not assistance:
            raise NotFound("Assistance request not found")
        if assistance.raised_amount > 0:
            raise ValidationError("Cannot delete a request that has already received donations")

        try:
            if not self.repo.delete_unfunded(self.db, assistance_id):
                raise ValidationError("Cannot delete a request that has already received donations")
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"🗑️ Assistance {assistance_id} deleted by admin {admin.id}")
        return {"message": "Assistance request deleted"}

    def add_attachments(
        self, assistance_id: int, files: list[tuple[str, str, bytes]], user: User, storage: AttachmentStorage
    ):
        """
        Store uploaded images for a request.

        Args:
            files: (filename, content_type, content) per upload
        """
        assistance = self.repo.get_assistance(self.db, assistance_id)
        if not assistance:
            raise NotFound("Assistance request not found")
        if user.role not in ADMIN_ROLES and assistance.patient.user_id != user.id:
            raise Forbidden("You do not have access to this assistance request")

        if not files:
            raise ValidationError("No files provided")
        existing = self.repo.count_attachments(self.db, assistance_id)
        if existing + len(files) > MAX_ATTACHMENTS:
            raise ValidationError(f"A request can have at most {MAX_ATTACHMENTS} attachments")

        for filename, content_type, content in files:
            if content_type not in ALLOWED_IMAGE_TYPES:
                raise ValidationError(f"{filename}: only image files are allowed")
            error = check_image_filename(filename)
            if error:
                raise ValidationError(error)
            if len(content) > MAX_ATTACHMENT_BYTES:
                raise ValidationError(
                    f"{filename}: file size exceeds {MAX_ATTACHMENT_BYTES // (1024 * 1024)}MB limit"
                )

        stored = []
        try:
            for filename, content_type, content in files:
                extension = filename.rsplit(".", 1)[-1].lower()
                key = f"assistance/{assistance_id}/{uuid.uuid4().hex}.{extension}"
                stored.append(storage.store(key, content, content_type, filename))
        except StorageError as e:
            logger.error(
                f"❌ Upload to assistance {assistance_id} failed after {len(stored)} file(s): {e}"
            )
            self._discard(storage, stored)
            raise StorageFailure("Failed to store attachments, please try again") from e

        try:
            attachments = self.repo.add_attachments(self.db, assistance_id, stored)
        except Exception:
            self.db.rollback()
            self._discard(storage, stored)
            raise
        logger.info(f"📎 Added {len(attachments)} attachment(s) to assistance {assistance_id}")
        return attachments

    @staticmethod
    def _discard(storage: AttachmentStorage, stored: list) -> None:
        """Remove uploads whose batch was not recorded"""
        for item in stored:
            try:
                storage.delete(item.path)
            except StorageError as e:
                logger.warning(f"⚠️ Orphaned attachment left in storage: {item.path} ({e})")
