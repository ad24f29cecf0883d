import pytest

from carebridge.domain.funding.repository import FundingRepository
from carebridge.domain.funding.schemas import DonationCreate
from carebridge.domain.funding.service import FundingLedger
from carebridge.exceptions import InsufficientFunds, InvalidAmount, NotFound, ValidationError
from carebridge.models import AssistanceWithdrawal, Donation, PatientAssistance
from conftest import fixed_clock, make_admin, make_assistance, make_patient, make_user, reload


@pytest.fixture
def patient(db):
    return make_patient(db)


@pytest.fixture
def assistance(db, patient):
    return make_assistance(db, patient, requested=10_000_000)


@pytest.fixture
def ledger(db, notifier):
    return FundingLedger(db, notifier, fixed_clock)


def balances(db, assistance_id):
    a = reload(db, PatientAssistance, assistance_id)
    return a.raised_amount, a.withdrawn_amount, a.remaining_amount


# ---------------------------------------------------------------------------
# Gateway confirmations
# ---------------------------------------------------------------------------


def test_confirmations_and_withdrawals_keep_the_ledger_consistent(db, ledger, assistance):
    admin = make_admin(db)
    ledger.confirm_donation(assistance.id, 3_000_000, "GW-1")
    ledger.confirm_donation(assistance.id, 3_000_000, "GW-2")
    assert balances(db, assistance.id) == (6_000_000, 0, 4_000_000)

    with pytest.raises(InsufficientFunds) as exc:
        ledger.withdraw(assistance.id, 7_000_000, admin)
    assert exc.value.context["available"] == 6_000_000
    with pytest.raises(InsufficientFunds):
        ledger.withdraw(assistance.id, 6_000_001, admin)
    assert balances(db, assistance.id) == (6_000_000, 0, 4_000_000)

    updated, withdrawal = ledger.withdraw(assistance.id, 6_000_000, admin, note="  Hospital invoice ")
    assert updated.withdrawn_amount == 6_000_000
    assert withdrawal.note == "Hospital invoice"
    assert withdrawal.admin_id == admin.id

    with pytest.raises(InsufficientFunds) as exc:
        ledger.withdraw(assistance.id, 1, admin)
    assert exc.value.context["available"] == 0
    assert db.query(AssistanceWithdrawal).count() == 1


def test_duplicate_confirmation_credits_once(db, ledger, assistance, notifier):
    first, credited = ledger.confirm_donation(assistance.id, 500_000, "GW-DUP")
    again, credited_again = ledger.confirm_donation(assistance.id, 500_000, "GW-DUP")

    assert credited is True
    assert credited_again is False
    assert first.id == again.id
    assert again.status == "completed"
    assert again.confirmed_at == fixed_clock()
    assert balances(db, assistance.id)[0] == 500_000
    assert db.query(Donation).count() == 1
    assert len(notifier.events("donation_received")) == 1


def test_pending_donation_is_completed_by_callback(db, ledger, assistance, patient, notifier):
    donor = make_user(db, "donor")
    pending = ledger.create_donation(
        DonationCreate(assistanceId=assistance.id, amount=250_000, donorName="Lan"), donor
    )
    assert pending.status == "pending"
    assert pending.gateway_ref.startswith("CB")
    assert balances(db, assistance.id)[0] == 0

    donation, credited = ledger.confirm_donation(assistance.id, 250_000, pending.gateway_ref)

    assert credited is True
    assert donation.id == pending.id
    assert donation.status == "completed"
    assert balances(db, assistance.id) == (250_000, 0, 9_750_000)
    target, _, payload = notifier.events("donation_received")[0]
    assert target == patient.user_id
    assert payload["raisedAmount"] == 250_000


def test_stale_pending_read_cannot_double_credit(db, other_db, notifier, assistance):
    donor = make_user(db, "donor")
    pending = FundingLedger(db, notifier, fixed_clock).create_donation(
        DonationCreate(assistanceId=assistance.id, amount=1_000_000), donor
    )
    # A second worker already loaded the pending record
    late = FundingLedger(other_db, notifier, fixed_clock)
    assert FundingRepository.get_donation_by_ref(other_db, pending.gateway_ref).status == "pending"

    FundingLedger(db, notifier, fixed_clock).confirm_donation(assistance.id, 1_000_000, pending.gateway_ref)
    _, credited = late.confirm_donation(assistance.id, 1_000_000, pending.gateway_ref)

    assert credited is False
    assert balances(db, assistance.id)[0] == 1_000_000


def test_failed_callback_marks_pending_donation(db, ledger, assistance):
    pending = ledger.create_donation(
        DonationCreate(assistanceId=assistance.id, amount=100_000), make_user(db, "donor")
    )

    donation, credited = ledger.confirm_donation(assistance.id, 100_000, pending.gateway_ref, "failed")

    assert credited is False
    assert donation.status == "failed"
    assert balances(db, assistance.id)[0] == 0
    # A late success for the same reference changes nothing
    assert ledger.confirm_donation(assistance.id, 100_000, pending.gateway_ref)[1] is False


def test_failed_callback_for_unknown_reference_is_recorded(db, ledger, assistance):
    donation, credited = ledger.confirm_donation(assistance.id, 100_000, "GW-LOST", "FAILED")

    assert credited is False
    assert donation.status == "failed"
    assert donation.confirmed_at is None
    assert balances(db, assistance.id)[0] == 0


def test_confirmation_amount_must_match_pending_donation(db, ledger, assistance):
    pending = ledger.create_donation(
        DonationCreate(assistanceId=assistance.id, amount=100_000), make_user(db, "donor")
    )

    with pytest.raises(ValidationError):
        ledger.confirm_donation(assistance.id, 999_999, pending.gateway_ref)
    assert reload(db, Donation, pending.id).status == "pending"


def test_reference_bound_to_its_request(db, ledger, assistance, patient):
    other = make_assistance(db, patient)
    ledger.confirm_donation(assistance.id, 100_000, "GW-X")

    with pytest.raises(ValidationError):
        ledger.confirm_donation(other.id, 100_000, "GW-X")


def test_confirmation_guards(ledger, assistance):
    with pytest.raises(InvalidAmount):
        ledger.confirm_donation(assistance.id, 0, "GW-0")
    with pytest.raises(NotFound):
        ledger.confirm_donation(424242, 100, "GW-404")


def test_overfunding_clamps_remaining_at_zero(db, ledger, patient):
    small = make_assistance(db, patient, requested=1_000_000)

    ledger.confirm_donation(small.id, 800_000, "GW-A")
    ledger.confirm_donation(small.id, 800_000, "GW-B")

    assert balances(db, small.id) == (1_600_000, 0, 0)


# ---------------------------------------------------------------------------
# Donation intake
# ---------------------------------------------------------------------------


def test_anonymous_donation_drops_contact_details(db, ledger, assistance):
    donation = ledger.create_donation(
        DonationCreate(
            assistanceId=assistance.id,
            amount=100_000,
            isAnonymous=True,
            donorName="Minh",
            donorEmail="minh@example.com",
            donorPhone="0901234567",
            message=" Get well soon ",
        ),
        make_user(db, "donor"),
    )

    assert donation.is_anonymous is True
    assert (donation.donor_name, donation.donor_email, donation.donor_phone) == (None, None, None)
    assert donation.message == "Get well soon"


@pytest.mark.parametrize("status", ["pending", "rejected", "completed"])
def test_closed_requests_refuse_donations(db, ledger, patient, status):
    closed = make_assistance(db, patient, status=status)

    with pytest.raises(ValidationError):
        ledger.create_donation(DonationCreate(assistanceId=closed.id, amount=1_000), None)


def test_donation_cannot_exceed_remaining_need(db, ledger, assistance):
    with pytest.raises(ValidationError):
        ledger.create_donation(DonationCreate(assistanceId=assistance.id, amount=10_000_001), None)
    with pytest.raises(InvalidAmount):
        ledger.create_donation(DonationCreate(assistanceId=assistance.id, amount=-5), None)
    assert db.query(Donation).count() == 0


# ---------------------------------------------------------------------------
# Withdrawals
# ---------------------------------------------------------------------------


def test_stale_withdrawal_read_cannot_overdraw(db, other_db, notifier, assistance):
    admin = make_admin(db)
    FundingLedger(db, notifier, fixed_clock).confirm_donation(assistance.id, 2_000_000, "GW-1")
    first = FundingLedger(db, notifier, fixed_clock)
    second = FundingLedger(other_db, notifier, fixed_clock)
    # Both admins saw 2,000,000 available
    FundingRepository.get_assistance(db, assistance.id)
    FundingRepository.get_assistance(other_db, assistance.id)

    first.withdraw(assistance.id, 1_500_000, admin)
    with pytest.raises(InsufficientFunds):
        second.withdraw(assistance.id, 1_500_000, admin)

    assert balances(db, assistance.id)[1] == 1_500_000


def test_withdrawal_notifies_patient_and_admin_feed(db, ledger, assistance, patient, notifier):
    admin = make_admin(db, "charity_admin")
    ledger.confirm_donation(assistance.id, 1_000_000, "GW-1")

    ledger.withdraw(assistance.id, 400_000, admin)

    target, _, payload = notifier.events("assistance_withdrawal")[0]
    assert target == patient.user_id
    assert payload["amount"] == 400_000
    assert payload["withdrawnAmount"] == 400_000
    event_type, broadcast = notifier.broadcasts[0]
    assert event_type == "funds_withdrawn"
    assert broadcast["adminId"] == admin.id


def test_withdrawal_survives_notification_failure(db, ledger, assistance, notifier):
    ledger.confirm_donation(assistance.id, 1_000_000, "GW-1")
    notifier.fail = True

    ledger.withdraw(assistance.id, 1_000_000, make_admin(db))

    assert balances(db, assistance.id)[1] == 1_000_000


def test_withdrawal_guards(db, ledger, assistance):
    admin = make_admin(db)
    with pytest.raises(InvalidAmount):
        ledger.withdraw(assistance.id, 0, admin)
    with pytest.raises(NotFound):
        ledger.withdraw(424242, 100, admin)


def test_funding_summary(db, ledger, patient, assistance):
    make_assistance(db, patient, requested=2_000_000, status="pending")
    ledger.confirm_donation(assistance.id, 3_000_000, "GW-1")
    ledger.withdraw(assistance.id, 1_000_000, make_admin(db))

    summary = ledger.funding_summary()

    assert summary["requests"] == 2
    assert summary["requestedAmount"] == 12_000_000
    assert summary["raisedAmount"] == 3_000_000
    assert summary["withdrawnAmount"] == 1_000_000
    assert summary["availableAmount"] == 2_000_000
    assert summary["remainingAmount"] == 9_000_000
    assert summary["requestsByStatus"] == {"approved": 1, "pending": 1}
    assert summary["donationsByStatus"] == {"completed": 1}
