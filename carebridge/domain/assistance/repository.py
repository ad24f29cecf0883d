"""Assistance repository - Database operations for assistance requests"""

from typing import Optional

from sqlalchemy.orm import Query, Session

from ...models import AssistanceAttachment, Donation, Patient, PatientAssistance

# Statuses a request is visible to donors in
PUBLIC_STATUSES = ("approved", "in_progress", "completed")


class AssistanceRepository:
    """Repository for assistance request database operations"""

    @staticmethod
    def get_assistance(db: Session, assistance_id: int) -> Optional[PatientAssistance]:
        return db.query(PatientAssistance).filter(PatientAssistance.id == assistance_id).first()

    @staticmethod
    def get_patient_by_user(db: Session, user_id: int) -> Optional[Patient]:
        return db.query(Patient).filter(Patient.user_id == user_id).first()

    @staticmethod
    def create_assistance(db: Session, **assistance_data) -> PatientAssistance:
        assistance = PatientAssistance(**assistance_data)
        db.add(assistance)
        db.commit()
        db.refresh(assistance)
        return assistance

    @staticmethod
    def transition(db: Session, assistance_id: int, expected_status: str, values: dict) -> bool:
        """Apply `values` only while the request is still in `expected_status`"""
        updated = (
            db.query(PatientAssistance)
            .filter(
                PatientAssistance.id == assistance_id,
                PatientAssistance.status == expected_status,
            )
            .update(values, synchronize_session=False)
        )
        return updated == 1

    @staticmethod
    def assistance_query(
        db: Session, patient_id: Optional[int] = None, status: Optional[str] = None
    ) -> Query:
        query = db.query(PatientAssistance)
        if patient_id is not None:
            query = query.filter(PatientAssistance.patient_id == patient_id)
        if status:
            query = query.filter(PatientAssistance.status == status)
        return query.order_by(PatientAssistance.created_at.desc(), PatientAssistance.id.desc())

    @staticmethod
    def public_query(db: Session) -> Query:
        return (
            db.query(PatientAssistance)
            .filter(PatientAssistance.status.in_(("approved", "in_progress")))
            .order_by(PatientAssistance.created_at.desc(), PatientAssistance.id.desc())
        )

    @staticmethod
    def delete_unfunded(db: Session, assistance_id: int) -> bool:
        """
        Delete a request that never received money.

        Pending and failed donations go with it; the final DELETE only matches
        while raised_amount is still zero. The caller commits or rolls back.
        """
        db.query(AssistanceAttachment).filter(
            AssistanceAttachment.assistance_id == assistance_id
        ).delete(synchronize_session=False)
        db.query(Donation).filter(
            Donation.assistance_id == assistance_id, Donation.status != "completed"
        ).delete(synchronize_session=False)
        deleted = (
            db.query(PatientAssistance)
            .filter(PatientAssistance.id == assistance_id, PatientAssistance.raised_amount == 0)
            .delete(synchronize_session=False)
        )
        return deleted == 1

    @staticmethod
    def count_attachments(db: Session, assistance_id: int) -> int:
        return (
            db.query(AssistanceAttachment)
            .filter(AssistanceAttachment.assistance_id == assistance_id)
            .count()
        )

    @staticmethod
    def add_attachments(db: Session, assistance_id: int, files: list) -> list[AssistanceAttachment]:
        attachments = [
            AssistanceAttachment(
                assistance_id=assistance_id, filename=f.filename, path=f.path, size=f.size
            )
            for f in files
        ]
        db.add_all(attachments)
        db.commit()
        for attachment in attachments:
            db.refresh(attachment)
        return attachments
