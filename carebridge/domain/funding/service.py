"""
Funding ledger - donations and withdrawals against assistance requests

Invariants kept by the statements in FundingRepository:
- remaining_amount == max(0, requested_amount - raised_amount)
- withdrawn_amount <= raised_amount
- a gateway reference credits raised_amount at most once
"""

import logging
import uuid
from typing import Callable, Optional

from sqlalchemy.orm import Session

from ...config import PAYMENT_METHOD
from ...exceptions import InsufficientFunds, InvalidAmount, NotFound, ValidationError
from ...models import ADMIN_ROLES, AssistanceWithdrawal, Donation, PatientAssistance, User
from ...services.notification_service import NotificationDispatcher
from ...shared.pagination import paginate
from ...shared.timeutils import local_now
from .repository import FundingRepository
from .schemas import DonationCreate

logger = logging.getLogger(__name__)

# Gateway statuses that mean the money arrived
SUCCESS_STATUSES = ("success", "succeeded", "completed", "paid")

# Requests that accept new donations
OPEN_STATUSES = ("approved", "in_progress")


def new_gateway_ref() -> str:
    return f"CB{uuid.uuid4().hex[:20].upper()}"


class FundingLedger:
    def __init__(
        self,
        db: Session,
        notifier: NotificationDispatcher,
        clock: Callable = local_now,
    ):
        self.db = db
        self.notifier = notifier
        self.clock = clock
        self.repo = FundingRepository()

    def _assistance(self, assistance_id: int) -> PatientAssistance:
        assistance = self.repo.get_assistance(self.db, assistance_id)
        if not assistance:
            raise NotFound("Assistance request not found")
        return assistance

    # ------------------------------------------------------------------
    # Donations
    # ------------------------------------------------------------------

    def create_donation(self, data: DonationCreate, user: Optional[User]) -> Donation:
        """Record a pending donation; it counts only once the gateway confirms it"""
        if data.amount <= 0:
            raise InvalidAmount("Donation amount must be greater than zero")

        assistance = self._assistance(data.assistanceId)
        if assistance.status not in OPEN_STATUSES:
            raise ValidationError("This assistance request is not accepting donations")
        if data.amount > assistance.remaining_amount:
            raise ValidationError(
                f"Donation exceeds the remaining need of {assistance.remaining_amount}",
                remaining=assistance.remaining_amount,
            )

        def contact(value):
            if data.isAnonymous or value is None:
                return None
            return value.strip() or None

        donation = self.repo.add_donation(
            self.db,
            user_id=user.id if user else None,
            assistance_id=assistance.id,
            amount=data.amount,
            payment_method=PAYMENT_METHOD,
            status="pending",
            is_anonymous=data.isAnonymous,
            donor_name=contact(data.donorName),
            donor_email=contact(data.donorEmail),
            donor_phone=contact(data.donorPhone),
            message=data.message.strip() if data.message else None,
            gateway_ref=new_gateway_ref(),
        )
        logger.info(f"💳 Pending donation {donation.gateway_ref} for assistance {assistance.id}")
        return donation

    def confirm_donation(
        self, assistance_id: int, amount: int, gateway_ref: str, status: str = "success"
    ) -> tuple[Donation, bool]:
        """
        Apply a gateway confirmation.

        Idempotent on `gateway_ref`: a reference that was already settled is
        returned unchanged. Returns (donation, credited).
        """
        if amount <= 0:
            raise InvalidAmount("Donation amount must be greater than zero")
        assistance = self._assistance(assistance_id)
        succeeded = status.lower() in SUCCESS_STATUSES

        existing = self.repo.get_donation_by_ref(self.db, gateway_ref)
        if existing is not None:
            return self._settle_pending(existing, assistance, amount, succeeded)

        # No pending record: the callback itself is the donation
        values = {
            "assistance_id": assistance_id,
            "amount": amount,
            "payment_method": PAYMENT_METHOD,
            "status": "completed" if succeeded else "failed",
            "is_anonymous": True,
            "gateway_ref": gateway_ref,
            "confirmed_at": self.clock() if succeeded else None,
        }
        if not succeeded:
            logger.warning(f"⚠️ Gateway reported {status} for unknown reference {gateway_ref}")

        try:
            inserted = self.repo.insert_donation_once(self.db, values)
            credited = inserted and succeeded
            if credited:
                self.repo.credit_raised(self.db, assistance_id, amount)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        donation = self.repo.get_donation_by_ref(self.db, gateway_ref)
        if not inserted:
            logger.info(f"🔁 Gateway reference {gateway_ref} was recorded concurrently")
        if credited:
            logger.info(f"✅ Donation {gateway_ref} recorded from callback (+{amount})")
            self._notify_credit(assistance, donation)
        return donation, credited

    def _settle_pending(
        self, donation: Donation, assistance: PatientAssistance, amount: int, succeeded: bool
    ) -> tuple[Donation, bool]:
        if donation.assistance_id != assistance.id:
            raise ValidationError("Gateway reference belongs to a different assistance request")
        if donation.status != "pending":
            logger.info(f"🔁 Duplicate callback for {donation.gateway_ref} ({donation.status})")
            return donation, False

        if not succeeded:
            try:
                self.repo.settle_donation(self.db, donation.id, "failed")
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise
            self.db.refresh(donation)
            logger.info(f"❌ Donation {donation.gateway_ref} failed at the gateway")
            return donation, False

        if donation.amount != amount:
            logger.warning(
                f"⚠️ Amount mismatch for {donation.gateway_ref}: expected {donation.amount}, got {amount}"
            )
            raise ValidationError("Confirmed amount does not match the donation")

        try:
            won = self.repo.settle_donation(
                self.db, donation.id, "completed", {"confirmed_at": self.clock()}
            )
            if won:
                self.repo.credit_raised(self.db, assistance.id, amount)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(donation)
        if won:
            logger.info(f"✅ Donation {donation.gateway_ref} completed (+{amount})")
            self._notify_credit(assistance, donation)
        return donation, won

    def _notify_credit(self, assistance: PatientAssistance, donation: Donation) -> None:
        self.db.refresh(assistance)
        self.notifier.notify(
            assistance.patient.user_id,
            "donation_received",
            {
                "assistanceId": assistance.id,
                "donationId": donation.id,
                "amount": donation.amount,
                "raisedAmount": assistance.raised_amount,
                "message": f"You received a donation of {donation.amount}",
            },
        )

    def list_donations(
        self, user: User, page: int = 1, limit: int = 10
    ) -> tuple[list[Donation], dict]:
        user_id = None if user.role in ADMIN_ROLES else user.id
        return paginate(self.repo.donations_query(self.db, user_id), page, limit)

    # ------------------------------------------------------------------
    # Withdrawals
    # ------------------------------------------------------------------

    def withdraw(
        self, assistance_id: int, amount: int, admin: User, note: Optional[str] = None
    ) -> tuple[PatientAssistance, AssistanceWithdrawal]:
        """Pay out raised funds to the patient"""
        if amount <= 0:
            raise InvalidAmount("Withdrawal amount must be greater than zero")
        assistance = self._assistance(assistance_id)

        try:
            if not self.repo.debit_withdrawn(self.db, assistance_id, amount):
                self.db.rollback()
                self.db.refresh(assistance)
                available = assistance.raised_amount - assistance.withdrawn_amount
                logger.warning(
                    f"⚠️ Withdrawal of {amount} refused for assistance {assistance_id}; available {available}"
                )
                raise InsufficientFunds(
                    f"Insufficient funds: only {available} available", available=available
                )
            withdrawal = self.repo.add_withdrawal(
                self.db,
                assistance_id=assistance_id,
                amount=amount,
                admin_id=admin.id,
                note=note.strip() if note else None,
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(assistance)
        self.db.refresh(withdrawal)
        logger.info(f"💸 Withdrew {amount} from assistance {assistance_id} by admin {admin.id}")

        payload = {
            "assistanceId": assistance.id,
            "withdrawalId": withdrawal.id,
            "amount": amount,
            "withdrawnAmount": assistance.withdrawn_amount,
            "raisedAmount": assistance.raised_amount,
        }
        self.notifier.notify(
            assistance.patient.user_id,
            "assistance_withdrawal",
            dict(payload, message=f"{amount} has been disbursed for \"{assistance.title}\""),
        )
        self.notifier.notify(
            None,
            "funds_withdrawn",
            dict(
                payload,
                adminId=admin.id,
                message=f"Admin {admin.id} withdrew {amount} from \"{assistance.title}\"",
            ),
        )
        return assistance, withdrawal

    def funding_summary(self) -> dict:
        return self.repo.funding_totals(self.db)
