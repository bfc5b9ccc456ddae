import pytest
from datetime import datetime, timedelta
from decimal import Decimal
from unittest.mock import patch

from medconnect.core.exceptions import (
    AlreadyConsumedError,
    CorruptTokenError,
    ExpiredError,
    InvalidStateTransitionError,
    NotFoundError,
    ValidationError,
)
from medconnect.domain.auth.models import User, UserRole
from medconnect.domain.notifications.repository import OutboxRepository
from medconnect.domain.patients.repository import PatientRepository
from medconnect.domain.prescriptions.models import (
    Prescription, PrescriptionStatus, PharmacyAction, PharmacyLog, AppendOnlyViolation, can_transition
)
from medconnect.domain.prescriptions.schemas import DispenseLine, DispenseRequest, ItemInput

# Matches the issue time of the `created` fixture
NOW = datetime(2024, 3, 1, 12, 0, 0)


def _actions(service, prescription_id):
    return [entry.action for entry in service.get_prescription_logs(prescription_id)]


def _to_validated(service, created, pharmacist):
    prescription_id = created.prescription.id
    service.scan(created.token.token_hash, pharmacist.id, now=NOW + timedelta(hours=1))
    service.validate(prescription_id, pharmacist.id, now=NOW + timedelta(hours=2))
    return prescription_id


def _dispense_all(quantity=10, unit_price="5", **kwargs):
    return DispenseRequest(items=[DispenseLine(quantity=quantity, unit_price=Decimal(unit_price))], **kwargs)


class TestStateMachine:
    def test_no_shortcuts(self):
        assert can_transition(PrescriptionStatus.PENDING, PrescriptionStatus.SCANNED)
        assert not can_transition(PrescriptionStatus.PENDING, PrescriptionStatus.DISPENSED)
        assert not can_transition(PrescriptionStatus.SCANNED, PrescriptionStatus.DISPENSED)
        assert can_transition(PrescriptionStatus.DISPENSED, PrescriptionStatus.FULFILLED)

    @pytest.mark.parametrize("terminal", [
        PrescriptionStatus.FULFILLED,
        PrescriptionStatus.REJECTED,
        PrescriptionStatus.CANCELLED,
        PrescriptionStatus.EXPIRED,
    ])
    def test_terminal_states_have_no_exits(self, terminal):
        assert not any(can_transition(terminal, target) for target in PrescriptionStatus)


class TestCreate:
    def test_creates_pending_prescription_with_token(self, created, service):
        assert created.prescription.status == PrescriptionStatus.PENDING
        assert created.prescription.prescription_number == "RX-20240301-0001"
        assert created.prescription.patient_name == "John Doe"
        assert created.prescription.doctor_name == "Gregory House"
        assert created.prescription.qr_code.token_hash == created.token.token_hash
        assert created.token.expires_at == NOW + timedelta(days=7)
        assert created.token.rendered_code.startswith("data:image/png;base64,")

    def test_numbers_increment_per_day(self, created, service, patient, doctor, sample_items):
        second = service.create_prescription(patient.id, doctor.id, sample_items, now=NOW)
        assert second.prescription.prescription_number == "RX-20240301-0002"

    def test_issuance_event_written(self, created, db_session):
        events = OutboxRepository(db_session).list_for_aggregate(created.prescription.id)

        assert len(events) == 1
        payload = events[0].payload
        assert payload["prescriptionId"] == created.prescription.id
        assert payload["tokenHash"] == created.token.token_hash
        assert payload["renderedCode"] == created.token.rendered_code
        assert payload["expiresAt"] == created.token.expires_at.isoformat()

    def test_token_snapshot_matches_prescription(self, created, service):
        decoded = service.codec.verify(created.token.token_hash, now=NOW)

        assert decoded.snapshot.prescription_number == "RX-20240301-0001"
        assert decoded.snapshot.patient_name == "John Doe"
        assert [m.name for m in decoded.snapshot.medicines] == ["Amoxicillin"]

    def test_unknown_patient(self, service, doctor, sample_items):
        with pytest.raises(NotFoundError):
            service.create_prescription("missing", doctor.id, sample_items, now=NOW)

    def test_unknown_doctor(self, service, patient, sample_items):
        with pytest.raises(NotFoundError):
            service.create_prescription(patient.id, "missing", sample_items, now=NOW)

    def test_requires_items(self, service, patient, doctor):
        with pytest.raises(ValidationError):
            service.create_prescription(patient.id, doctor.id, [], now=NOW)

    def test_requires_positive_quantity(self, service, patient, doctor):
        items = [ItemInput(medicine_name="Ibuprofen", dosage="200mg", frequency="Daily", quantity=0)]
        with pytest.raises(ValidationError):
            service.create_prescription(patient.id, doctor.id, items, now=NOW)


class TestHappyPath:
    def test_scan_validate_dispense(self, service, created, pharmacist):
        prescription_id = created.prescription.id

        scan = service.scan(created.token.token_hash, pharmacist.id, now=NOW + timedelta(hours=1))
        assert scan.is_valid
        assert scan.can_dispense
        assert scan.prescription.status == PrescriptionStatus.SCANNED

        validated = service.validate(prescription_id, pharmacist.id, now=NOW + timedelta(hours=2))
        assert validated.status == PrescriptionStatus.VALIDATED

        result = service.dispense(prescription_id, pharmacist.id, _dispense_all(), now=NOW + timedelta(hours=3))

        assert result.prescription.status == PrescriptionStatus.FULFILLED
        assert result.total_amount == Decimal("50.00")
        assert result.patient_payment == Decimal("50.00")
        assert result.insurance_coverage == Decimal("0")
        assert _actions(service, prescription_id) == [
            PharmacyAction.SCANNED,
            PharmacyAction.VALIDATED,
            PharmacyAction.DISPENSED,
            PharmacyAction.FULFILLED,
        ]

    def test_dispense_updates_items_and_consumes_token(self, service, created, pharmacist):
        prescription_id = _to_validated(service, created, pharmacist)
        service.dispense(prescription_id, pharmacist.id, _dispense_all(quantity=8), now=NOW + timedelta(hours=3))

        item = service.get_prescription(prescription_id).items[0]
        assert item.dispensed_quantity == 8
        assert item.unit_price == Decimal("5.00")
        assert item.is_dispensed

        status = service.get_qr_scan_status(created.token.token_hash, now=NOW + timedelta(hours=4))
        assert status.is_used
        assert status.is_scanned

    def test_dispensing_summary(self, service, created, pharmacist):
        prescription_id = _to_validated(service, created, pharmacist)
        service.dispense(prescription_id, pharmacist.id, _dispense_all(), now=NOW + timedelta(hours=3))

        summary = service.get_dispensing_summary(prescription_id)

        assert summary.total_amount == Decimal("50.00")
        assert summary.pharmacist_id == pharmacist.id
        assert len(summary.dispensed_items) == 1

    def test_dispensing_history_newest_first(self, service, created, pharmacist):
        prescription_id = _to_validated(service, created, pharmacist)
        assert service.get_dispensing_history(prescription_id) == []

        service.dispense(prescription_id, pharmacist.id, _dispense_all(), now=NOW + timedelta(hours=3))

        history = service.get_dispensing_history(prescription_id)
        assert [entry.action for entry in history] == [PharmacyAction.FULFILLED, PharmacyAction.DISPENSED]
        assert history[1].total_amount == Decimal("50.00")

    def test_dispensing_history_unknown_prescription(self, service):
        with pytest.raises(NotFoundError):
            service.get_dispensing_history("missing")

    def test_dispensing_summary_before_dispense(self, service, created):
        with pytest.raises(NotFoundError):
            service.get_dispensing_summary(created.prescription.id)


class TestScan:
    def test_rescan_is_idempotent_but_counted(self, service, created, pharmacist):
        token_hash = created.token.token_hash

        service.scan(token_hash, pharmacist.id, now=NOW + timedelta(hours=1))
        again = service.scan(token_hash, pharmacist.id, now=NOW + timedelta(hours=2))

        assert again.prescription.status == PrescriptionStatus.SCANNED
        assert _actions(service, created.prescription.id) == [PharmacyAction.SCANNED, PharmacyAction.SCAN]
        status = service.get_qr_scan_status(token_hash, now=NOW + timedelta(hours=2))
        assert status.scan_count == 2
        assert status.last_scanned_at == NOW + timedelta(hours=2)

    def test_rescan_after_validation_keeps_status(self, service, created, pharmacist):
        _to_validated(service, created, pharmacist)

        result = service.scan(created.token.token_hash, pharmacist.id, now=NOW + timedelta(hours=3))

        assert result.prescription.status == PrescriptionStatus.VALIDATED
        assert result.can_dispense

    def test_scan_at_expiry_fails(self, service, created, pharmacist):
        with pytest.raises(ExpiredError):
            service.scan(created.token.token_hash, pharmacist.id, now=created.token.expires_at)

        assert service.get_prescription(created.prescription.id).status == PrescriptionStatus.PENDING
        assert service.get_qr_scan_status(created.token.token_hash, now=NOW).scan_count == 0

    def test_scan_unknown_token(self, service, pharmacist):
        with pytest.raises(NotFoundError):
            service.scan("0" * 32, pharmacist.id, now=NOW)

    def test_scan_used_token(self, service, created, pharmacist):
        prescription_id = _to_validated(service, created, pharmacist)
        service.dispense(prescription_id, pharmacist.id, _dispense_all(), now=NOW + timedelta(hours=3))

        with pytest.raises(AlreadyConsumedError):
            service.scan(created.token.token_hash, pharmacist.id, now=NOW + timedelta(hours=4))

    def test_scan_rejected_prescription(self, service, created, pharmacist):
        service.reject(created.prescription.id, pharmacist.id, "Allergy conflict", now=NOW)

        with pytest.raises(InvalidStateTransitionError):
            service.scan(created.token.token_hash, pharmacist.id, now=NOW + timedelta(hours=1))

    def test_scan_tampered_token(self, service, created, pharmacist, db_session):
        token = service.token_repo.get_by_hash(created.token.token_hash)
        token.encrypted_payload = "gAAAAA" + token.encrypted_payload[6:40]
        db_session.commit()

        with pytest.raises(CorruptTokenError):
            service.scan(created.token.token_hash, pharmacist.id, now=NOW + timedelta(hours=1))


class TestValidateAndDispense:
    def test_validate_requires_scan(self, service, created, pharmacist):
        with pytest.raises(InvalidStateTransitionError):
            service.validate(created.prescription.id, pharmacist.id, now=NOW)

    def test_dispense_requires_validation(self, service, created, pharmacist):
        service.scan(created.token.token_hash, pharmacist.id, now=NOW)

        with pytest.raises(InvalidStateTransitionError):
            service.dispense(created.prescription.id, pharmacist.id, _dispense_all(), now=NOW)

    def test_double_dispense_is_refused(self, service, created, pharmacist):
        prescription_id = _to_validated(service, created, pharmacist)
        service.dispense(prescription_id, pharmacist.id, _dispense_all(), now=NOW + timedelta(hours=3))
        logs_before = len(service.get_prescription_logs(prescription_id))

        with pytest.raises(InvalidStateTransitionError):
            service.dispense(prescription_id, pharmacist.id, _dispense_all(), now=NOW + timedelta(hours=4))

        assert len(service.get_prescription_logs(prescription_id)) == logs_before
        assert service.get_dispensing_summary(prescription_id).total_amount == Decimal("50.00")

    @pytest.mark.parametrize("line", [
        DispenseLine(quantity=0, unit_price=Decimal("5")),
        DispenseLine(quantity=-1, unit_price=Decimal("5")),
        DispenseLine(quantity=11, unit_price=Decimal("5")),
        DispenseLine(quantity=10, unit_price=Decimal("-0.01")),
        DispenseLine(prescription_item_id="not-an-item", quantity=1, unit_price=Decimal("5")),
    ])
    def test_invalid_lines_change_nothing(self, service, created, pharmacist, line):
        prescription_id = _to_validated(service, created, pharmacist)

        with pytest.raises(ValidationError):
            service.dispense(prescription_id, pharmacist.id, DispenseRequest(items=[line]), now=NOW + timedelta(hours=3))

        assert service.get_prescription(prescription_id).status == PrescriptionStatus.VALIDATED
        assert PharmacyAction.DISPENSED not in _actions(service, prescription_id)
        assert not service.get_qr_scan_status(created.token.token_hash, now=NOW).is_used

    def test_empty_dispense_is_invalid(self, service, created, pharmacist):
        prescription_id = _to_validated(service, created, pharmacist)

        with pytest.raises(ValidationError):
            service.dispense(prescription_id, pharmacist.id, DispenseRequest(items=[]), now=NOW + timedelta(hours=3))

    def test_same_item_twice_is_invalid(self, service, created, pharmacist):
        prescription_id = _to_validated(service, created, pharmacist)
        item_id = created.prescription.items[0].id
        request = DispenseRequest(items=[
            DispenseLine(prescription_item_id=item_id, quantity=5, unit_price=Decimal("5")),
            DispenseLine(prescription_item_id=item_id, quantity=5, unit_price=Decimal("5")),
        ])

        with pytest.raises(ValidationError):
            service.dispense(prescription_id, pharmacist.id, request, now=NOW + timedelta(hours=3))

    def test_matching_insurance_splits_payment(self, service, created, pharmacist):
        prescription_id = _to_validated(service, created, pharmacist)
        request = _dispense_all(insurance_provider="Blue Cross", insurance_number="BC-123456")

        result = service.dispense(prescription_id, pharmacist.id, request, now=NOW + timedelta(hours=3))

        assert result.insurance_coverage == Decimal("40.00")
        assert result.patient_payment == Decimal("10.00")
        assert result.insurance_approval_code.startswith("APP-")
        assert len(result.insurance_approval_code.rsplit("-", 1)[1]) == 6

    def test_mismatched_insurance_pays_nothing(self, service, created, pharmacist):
        prescription_id = _to_validated(service, created, pharmacist)
        request = _dispense_all(insurance_provider="Blue Cross", insurance_number="BC-999999")

        result = service.dispense(prescription_id, pharmacist.id, request, now=NOW + timedelta(hours=3))

        assert result.insurance_coverage == Decimal("0")
        assert result.patient_payment == Decimal("50.00")
        assert result.insurance_approval_code is None


class TestRejectAndCancel:
    def test_reject_records_reason(self, service, created, pharmacist):
        view = service.reject(created.prescription.id, pharmacist.id, "Allergy conflict", now=NOW)

        assert view.status == PrescriptionStatus.REJECTED
        logs = service.get_prescription_logs(created.prescription.id)
        assert [entry.action for entry in logs] == [PharmacyAction.REJECTED]
        assert logs[0].notes == "Prescription rejected: Allergy conflict"

    @pytest.mark.parametrize("reason", ["", "   "])
    def test_reject_requires_reason(self, service, created, pharmacist, reason):
        with pytest.raises(ValidationError):
            service.reject(created.prescription.id, pharmacist.id, reason, now=NOW)

    def test_cannot_reject_fulfilled(self, service, created, pharmacist):
        prescription_id = _to_validated(service, created, pharmacist)
        service.dispense(prescription_id, pharmacist.id, _dispense_all(), now=NOW + timedelta(hours=3))

        with pytest.raises(InvalidStateTransitionError):
            service.reject(prescription_id, pharmacist.id, "Too late", now=NOW + timedelta(hours=4))

    def test_prescriber_cancels(self, service, created, doctor_user, db_session):
        view = service.cancel(created.prescription.id, doctor_user.id, "Wrong dosage", now=NOW)

        assert view.status == PrescriptionStatus.CANCELLED
        assert db_session.get(Prescription, created.prescription.id).is_terminal
        assert _actions(service, created.prescription.id) == [PharmacyAction.CANCELLED]

    def test_other_doctor_cannot_cancel(self, service, created, other_doctor):
        with pytest.raises(NotFoundError):
            service.cancel(created.prescription.id, other_doctor.user_id, now=NOW)

        assert service.get_prescription(created.prescription.id).status == PrescriptionStatus.PENDING


class TestIssueToken:
    def test_valid_token_is_reused(self, service, created, db_session):
        issued = service.issue_token(created.prescription.id, now=NOW + timedelta(days=1))

        assert issued.reused
        assert issued.token_hash == created.token.token_hash
        assert len(OutboxRepository(db_session).list_for_aggregate(created.prescription.id)) == 1

    def test_expired_token_is_replaced(self, service, created, db_session):
        later = created.token.expires_at + timedelta(minutes=1)

        issued = service.issue_token(created.prescription.id, now=later)

        assert not issued.reused
        assert issued.token_hash != created.token.token_hash
        assert issued.expires_at == later + timedelta(days=7)
        active = service.token_repo.get_active_for_prescription(created.prescription.id)
        assert active.token_hash == issued.token_hash
        old = service.token_repo.get_by_hash(created.token.token_hash)
        assert old is not None and not old.is_active
        assert len(OutboxRepository(db_session).list_for_aggregate(created.prescription.id)) == 2

    def test_closed_prescription_gets_no_token(self, service, created, doctor_user):
        service.cancel(created.prescription.id, doctor_user.id, now=NOW)

        with pytest.raises(InvalidStateTransitionError):
            service.issue_token(created.prescription.id, now=NOW)

    def test_closed_prescription_with_lapsed_token_gets_no_token(self, service, created, doctor_user, db_session):
        service.cancel(created.prescription.id, doctor_user.id, now=NOW)
        later = created.token.expires_at + timedelta(minutes=1)

        with pytest.raises(InvalidStateTransitionError):
            service.issue_token(created.prescription.id, now=later)

        active = service.token_repo.get_active_for_prescription(created.prescription.id)
        assert active.token_hash == created.token.token_hash
        assert len(OutboxRepository(db_session).list_for_aggregate(created.prescription.id)) == 1


class TestResendTokenEmail:
    def test_valid_token_is_emailed_again(self, service, created, db_session):
        resent = service.resend_token_email(created.prescription.id, now=NOW + timedelta(days=1))

        assert resent.reused
        assert resent.token_hash == created.token.token_hash
        events = OutboxRepository(db_session).list_for_aggregate(created.prescription.id)
        assert len(events) == 2
        assert [event.payload["tokenHash"] for event in events] == [created.token.token_hash] * 2

    def test_lapsed_token_is_replaced_and_emailed_once(self, service, created, db_session):
        later = created.token.expires_at + timedelta(minutes=1)

        resent = service.resend_token_email(created.prescription.id, now=later)

        assert not resent.reused
        assert resent.token_hash != created.token.token_hash
        events = OutboxRepository(db_session).list_for_aggregate(created.prescription.id)
        assert len(events) == 2
        assert {event.payload["tokenHash"] for event in events} == {created.token.token_hash, resent.token_hash}

    def test_closed_prescription_is_not_emailed(self, service, created, doctor_user, db_session):
        service.cancel(created.prescription.id, doctor_user.id, now=NOW)

        with pytest.raises(InvalidStateTransitionError):
            service.resend_token_email(created.prescription.id, now=NOW)

        assert len(OutboxRepository(db_session).list_for_aggregate(created.prescription.id)) == 1

    def test_unknown_prescription(self, service):
        with pytest.raises(NotFoundError):
            service.resend_token_email("missing", now=NOW)


class TestLookupByReference:
    def test_recent_prescription_found(self, service, created, pharmacist):
        result = service.lookup_by_reference("PAT-20240101-0001", pharmacist.id, now=NOW + timedelta(hours=1))

        assert result.is_valid
        assert result.prescription.id == created.prescription.id
        assert result.prescription.status == PrescriptionStatus.PENDING
        assert not result.can_dispense
        assert _actions(service, created.prescription.id) == [PharmacyAction.SCAN]

    def test_prescription_older_than_thirty_days(self, service, patient, doctor, sample_items, pharmacist):
        old = service.create_prescription(patient.id, doctor.id, sample_items, now=NOW - timedelta(days=40))

        result = service.lookup_by_reference("PAT-20240101-0001", pharmacist.id, now=NOW)

        assert not result.is_valid
        assert not result.can_dispense
        assert "40 days" in result.message
        assert service.get_prescription_logs(old.prescription.id) == []

    def test_expired_token_regenerated(self, service, patient, doctor, sample_items, pharmacist):
        stale = service.create_prescription(patient.id, doctor.id, sample_items, now=NOW - timedelta(days=10))

        result = service.lookup_by_reference("PAT-20240101-0001", pharmacist.id, now=NOW)

        assert result.is_valid
        assert result.prescription.qr_code.token_hash != stale.token.token_hash
        assert result.prescription.qr_code.expires_at == NOW + timedelta(days=7)

    def test_failed_log_write_leaves_no_new_token_or_email(
        self, service, patient, doctor, sample_items, pharmacist, db_session
    ):
        stale = service.create_prescription(patient.id, doctor.id, sample_items, now=NOW - timedelta(days=10))
        prescription_id = stale.prescription.id

        with patch.object(
            service.prescription_repo,
            "save_transition",
            side_effect=InvalidStateTransitionError("Prescription is CANCELLED"),
        ):
            with pytest.raises(InvalidStateTransitionError):
                service.lookup_by_reference("PAT-20240101-0001", pharmacist.id, now=NOW)

        active = service.token_repo.get_active_for_prescription(prescription_id, refresh=True)
        assert active.token_hash == stale.token.token_hash
        assert len(OutboxRepository(db_session).list_for_aggregate(prescription_id)) == 1

    def test_generated_reference_is_searchable(self, service, db_session, doctor, sample_items, pharmacist):
        user = User(email="jane@example.com", full_name="Jane Roe", role=UserRole.PATIENT)
        db_session.add(user)
        db_session.commit()
        jane = PatientRepository(db_session).create({"user_id": user.id})
        service.create_prescription(jane.id, doctor.id, sample_items, now=NOW)

        assert jane.reference_number.startswith("PAT-")
        result = service.lookup_by_reference(jane.reference_number, pharmacist.id, now=NOW)
        assert result.prescription.patient_name == "Jane Roe"

    def test_unknown_reference(self, service, pharmacist):
        with pytest.raises(NotFoundError):
            service.lookup_by_reference("PAT-19990101-0000", pharmacist.id, now=NOW)

    def test_no_open_prescription(self, service, created, pharmacist):
        service.reject(created.prescription.id, pharmacist.id, "Duplicate", now=NOW)

        with pytest.raises(NotFoundError):
            service.lookup_by_reference("PAT-20240101-0001", pharmacist.id, now=NOW)


class TestExpirySweep:
    def test_expires_open_prescriptions_with_lapsed_tokens(self, service, created):
        report = service.sweep_expired(now=created.token.expires_at)

        assert report.expired == 1
        assert report.expired_ids == [created.prescription.id]
        assert service.get_prescription(created.prescription.id).status == PrescriptionStatus.EXPIRED
        assert service.get_prescription_logs(created.prescription.id) == []

    def test_leaves_valid_tokens_alone(self, service, created):
        report = service.sweep_expired(now=created.token.expires_at - timedelta(seconds=1))

        assert report.expired == 0
        assert service.get_prescription(created.prescription.id).status == PrescriptionStatus.PENDING

    def test_leaves_closed_prescriptions_alone(self, service, created, pharmacist):
        prescription_id = _to_validated(service, created, pharmacist)
        service.dispense(prescription_id, pharmacist.id, _dispense_all(), now=NOW + timedelta(hours=3))

        report = service.sweep_expired(now=NOW + timedelta(days=30))

        assert report.expired == 0
        assert service.get_prescription(prescription_id).status == PrescriptionStatus.FULFILLED

    def test_sweep_failure_is_counted(self, service, created, monkeypatch):
        def explode(*args, **kwargs):
            raise RuntimeError("database went away")

        monkeypatch.setattr(service.prescription_repo, "save_transition", explode)

        report = service.sweep_expired(now=created.token.expires_at)

        assert report.failed == 1
        assert report.expired == 0


class TestReadModels:
    def test_history_is_paginated_newest_first(self, service, created, pharmacist):
        token_hash = created.token.token_hash
        for hour in range(1, 4):
            service.scan(token_hash, pharmacist.id, now=NOW + timedelta(hours=hour))

        page = service.get_pharmacist_history(pharmacist.id, page=1, limit=2)

        assert page.total == 3
        assert page.pages == 2
        assert [entry.action_timestamp for entry in page.items] == [
            NOW + timedelta(hours=3),
            NOW + timedelta(hours=2),
        ]

    def test_logs_for_unknown_prescription(self, service):
        with pytest.raises(NotFoundError):
            service.get_prescription_logs("missing")

    def test_qr_status_for_unknown_token(self, service):
        with pytest.raises(NotFoundError):
            service.get_qr_scan_status("missing")


class TestAuditLog:
    def test_entries_cannot_be_edited(self, service, created, pharmacist, db_session):
        service.scan(created.token.token_hash, pharmacist.id, now=NOW)
        entry = db_session.query(PharmacyLog).first()
        entry.notes = "rewritten"

        with pytest.raises(AppendOnlyViolation):
            db_session.flush()
        db_session.rollback()

    def test_entries_cannot_be_deleted(self, service, created, pharmacist, db_session):
        service.scan(created.token.token_hash, pharmacist.id, now=NOW)
        entry = db_session.query(PharmacyLog).first()
        db_session.delete(entry)

        with pytest.raises(AppendOnlyViolation):
            db_session.flush()
        db_session.rollback()

    def test_sequence_orders_same_instant_entries(self, service, created, pharmacist):
        prescription_id = _to_validated(service, created, pharmacist)
        service.dispense(prescription_id, pharmacist.id, _dispense_all(), now=NOW + timedelta(hours=3))

        logs = service.get_prescription_logs(prescription_id)

        assert [entry.sequence for entry in logs] == [1, 2, 3, 4]
        assert logs[2].action_timestamp == logs[3].action_timestamp
