"""Funding repository - Ledger statements for donations and withdrawals"""

from typing import Optional

from sqlalchemy import case, func, update
from sqlalchemy.orm import Query, Session

from ...database import insert_ignore
from ...models import AssistanceWithdrawal, Donation, PatientAssistance


class FundingRepository:
    """
    Every balance change here is a single conditional statement.

    remaining_amount is written in the same statement as raised_amount and
    is listed first, so it is computed from the pre-update balance on every
    backend (MySQL evaluates SET assignments left to right).
    """

    @staticmethod
    def get_assistance(db: Session, assistance_id: int) -> Optional[PatientAssistance]:
        return db.query(PatientAssistance).filter(PatientAssistance.id == assistance_id).first()

    @staticmethod
    def get_donation_by_ref(db: Session, gateway_ref: str) -> Optional[Donation]:
        return db.query(Donation).filter(Donation.gateway_ref == gateway_ref).first()

    @staticmethod
    def add_donation(db: Session, **donation_data) -> Donation:
        donation = Donation(**donation_data)
        db.add(donation)
        db.commit()
        db.refresh(donation)
        return donation

    @staticmethod
    def insert_donation_once(db: Session, values: dict) -> bool:
        """Insert unless the gateway reference is already recorded"""
        return insert_ignore(db, Donation, values)

    @staticmethod
    def settle_donation(db: Session, donation_id: int, status: str, values: Optional[dict] = None) -> bool:
        """Move a pending donation to `status`; only one caller can win"""
        updated = (
            db.query(Donation)
            .filter(Donation.id == donation_id, Donation.status == "pending")
            .update(dict(values or {}, status=status), synchronize_session=False)
        )
        return updated == 1

    @staticmethod
    def credit_raised(db: Session, assistance_id: int, amount: int) -> bool:
        new_raised = PatientAssistance.raised_amount + amount
        stmt = (
            update(PatientAssistance)
            .where(PatientAssistance.id == assistance_id)
            .ordered_values(
                (
                    PatientAssistance.remaining_amount,
                    case(
                        (
                            PatientAssistance.requested_amount > new_raised,
                            PatientAssistance.requested_amount - new_raised,
                        ),
                        else_=0,
                    ),
                ),
                (PatientAssistance.raised_amount, new_raised),
            )
            .execution_options(synchronize_session=False)
        )
        return db.execute(stmt).rowcount == 1

    @staticmethod
    def debit_withdrawn(db: Session, assistance_id: int, amount: int) -> bool:
        """Increase withdrawn_amount only if it stays within raised_amount"""
        updated = (
            db.query(PatientAssistance)
            .filter(
                PatientAssistance.id == assistance_id,
                PatientAssistance.withdrawn_amount + amount <= PatientAssistance.raised_amount,
            )
            .update(
                {PatientAssistance.withdrawn_amount: PatientAssistance.withdrawn_amount + amount},
                synchronize_session=False,
            )
        )
        return updated == 1

    @staticmethod
    def add_withdrawal(db: Session, **withdrawal_data) -> AssistanceWithdrawal:
        withdrawal = AssistanceWithdrawal(**withdrawal_data)
        db.add(withdrawal)
        db.flush()
        return withdrawal

    @staticmethod
    def donations_query(db: Session, user_id: Optional[int] = None) -> Query:
        query = db.query(Donation)
        if user_id is not None:
            query = query.filter(Donation.user_id == user_id)
        return query.order_by(Donation.created_at.desc(), Donation.id.desc())

    @staticmethod
    def funding_totals(db: Session) -> dict:
        row = db.query(
            func.count(PatientAssistance.id),
            func.coalesce(func.sum(PatientAssistance.requested_amount), 0),
            func.coalesce(func.sum(PatientAssistance.raised_amount), 0),
            func.coalesce(func.sum(PatientAssistance.withdrawn_amount), 0),
            func.coalesce(func.sum(PatientAssistance.remaining_amount), 0),
        ).one()
        by_status = dict(
            db.query(PatientAssistance.status, func.count(PatientAssistance.id))
            .group_by(PatientAssistance.status)
            .all()
        )
        donations = dict(
            db.query(Donation.status, func.count(Donation.id)).group_by(Donation.status).all()
        )
        return {
            "requests": int(row[0]),
            "requestedAmount": int(row[1]),
            "raisedAmount": int(row[2]),
            "withdrawnAmount": int(row[3]),
            "remainingAmount": int(row[4]),
            "availableAmount": int(row[2]) - int(row[3]),
            "requestsByStatus": by_status,
            "donationsByStatus": donations,
        }
