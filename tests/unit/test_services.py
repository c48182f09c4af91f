"""Test resource services: client-side checks in front of the backend."""
from types import SimpleNamespace
from unittest.mock import Mock

import pytest

from docsmile.backends import ClinicBackend
from docsmile.backends.static import StaticBackend
from docsmile.debounce import Debouncer
from docsmile.errors import ApiError, FormValidationError, OperationNotSupportedError
from docsmile.services import ClinicClient, PatientService
from docsmile.session import ClinicSession
from docsmile.taxonomy import AppliedServiceStatus


class TestAuthService:

    def test_blank_credentials_rejected_locally(self, clinic):
        with pytest.raises(FormValidationError) as exc:
            clinic.auth.login(" ", "")
        assert set(exc.value.errors) == {"username", "password"}

    def test_login_starts_session(self, clinic, session):
        user = clinic.auth.login("doctor", "doctor123")

        assert user.username == "doctor"
        assert session.is_authenticated

    def test_bad_credentials_propagate(self, clinic, session):
        with pytest.raises(ApiError) as exc:
            clinic.auth.login("doctor", "wrong")
        assert exc.value.status_code == 401
        assert not session.is_authenticated

    def test_session_survives_restart(self, signed_in, store, clock):
        restarted = ClinicClient(
            backend=StaticBackend(clock=clock, tz="America/Lima"),
            session=ClinicSession(store),
            clock=clock,
        )

        user = restarted.auth.check_auth_status()

        assert user is not None
        assert user.username == "doctor"

    def test_rejected_token_ends_session(self, clinic, session):
        session.token = "forged"
        session.user = None

        assert clinic.auth.check_auth_status() is None
        assert session.token is None

    def test_no_token_means_signed_out(self, clinic):
        assert clinic.auth.check_auth_status() is None

    def test_logout(self, signed_in):
        signed_in.auth.logout()
        assert not signed_in.session.is_authenticated

    def test_password_recovery(self, clinic):
        account = clinic.auth.start_recovery("doctor")
        token = clinic.auth.answer_security_question(account["userId"], "firulais")

        with pytest.raises(FormValidationError) as exc:
            clinic.auth.reset_password(token, "nuevo123", "nuevo124")
        assert "confirm_password" in exc.value.errors

        clinic.auth.reset_password(token, "nuevo123", "nuevo123")
        assert clinic.auth.login("doctor", "nuevo123").username == "doctor"


class TestPatientService:

    def test_invalid_form_never_reaches_backend(self, clock):
        backend = Mock(spec=ClinicBackend)
        patients = PatientService(backend, clock=clock, tz="America/Lima")

        with pytest.raises(FormValidationError) as exc:
            patients.create({"dni": "123", "first_name": "", "last_name": "Torres"})

        assert set(exc.value.errors) == {"dni", "first_name"}
        backend.create_patient.assert_not_called()

    def test_age_filled_in(self, clinic):
        assert clinic.patients.get("p2").age == 32
        assert all(p.age is not None for p in clinic.patients.list().items)

    def test_create_drops_blank_optional_fields(self, clinic):
        patient = clinic.patients.create({
            "dni": " 11112222 ",
            "first_name": "Lucía",
            "last_name": "Torres",
            "email": "",
            "medical_history": {"allergies": "Látex, Penicilina"},
        })

        assert patient.dni == "11112222"
        assert patient.email is None
        assert patient.medical_history.allergies == ["Látex", "Penicilina"]

    def test_backend_rejection_propagates(self, clinic):
        with pytest.raises(ApiError) as exc:
            clinic.patients.create({"dni": "45678912", "first_name": "X", "last_name": "Y"})
        assert exc.value.status_code == 400

    def test_deactivate_and_restore(self, clinic):
        clinic.patients.deactivate("p1")
        assert clinic.patients.get("p1").is_active is False
        assert clinic.patients.restore("p1").is_active is True


class TestCatalogService:

    def test_active_catalog(self, clinic):
        clinic.catalog.deactivate("s6")
        catalog = clinic.catalog.active_catalog()
        assert sorted(catalog) == ["s1", "s2", "s3", "s4", "s5"]

    def test_invalid_service_form(self, clinic):
        with pytest.raises(FormValidationError) as exc:
            clinic.catalog.create({"name": "Resina", "description": "x", "category": "restaurativo",
                                   "price": 0, "duration": 30})
        assert set(exc.value.errors) == {"price"}

    def test_blank_numbers_are_field_errors(self, clinic):
        with pytest.raises(FormValidationError) as exc:
            clinic.catalog.create({"name": "Resina", "description": "x", "category": "restaurativo",
                                   "price": "", "duration": "abc"})
        assert set(exc.value.errors) == {"price", "duration"}


class TestAppointmentService:

    def test_create(self, signed_in, appointment_form):
        appointment = signed_in.appointments.create(appointment_form)

        assert appointment.payment.total_amount == 1100
        assert [line.quantity for line in appointment.services] == [2, 1]

    def test_past_date_rejected(self, clinic, appointment_form):
        appointment_form["date"] = "2024-07-24"
        with pytest.raises(FormValidationError) as exc:
            clinic.appointments.create(appointment_form)
        assert "date" in exc.value.errors

    def test_minimum_duration(self, clinic, appointment_form):
        appointment_form["end_time"] = "09:29"
        with pytest.raises(FormValidationError) as exc:
            clinic.appointments.create(appointment_form)
        assert "end_time" in exc.value.errors

    def test_inactive_service_rejected_on_create(self, clinic, appointment_form):
        clinic.catalog.deactivate("s2")
        with pytest.raises(FormValidationError) as exc:
            clinic.appointments.create(appointment_form)
        assert "services" in exc.value.errors

    def test_update_keeps_booked_service_after_deactivation(self, clinic):
        clinic.catalog.deactivate("s4")

        updated = clinic.appointments.update("a5", {
            "patient": "p2",
            "date": "2024-07-26",
            "start_time": "16:00",
            "end_time": "17:30",
            "services": [{"service": {"_id": "s4"}, "quantity": 1}],
        })

        assert [line.service_id for line in updated.services] == ["s4"]

    def test_update_cannot_add_inactive_service(self, clinic):
        clinic.catalog.deactivate("s6")
        with pytest.raises(FormValidationError):
            clinic.appointments.update("a5", {
                "patient": "p2",
                "date": "2024-07-26",
                "start_time": "16:00",
                "end_time": "17:30",
                "services": [{"service": "s6", "quantity": 1}],
            })

    def test_cancel(self, clinic):
        clinic.appointments.cancel("a2")
        assert clinic.appointments.get("a2").status.value == "cancelada"


class TestTreatmentService:

    def test_record(self, clinic):
        record = clinic.treatments.record({
            "appointment": "a2",
            "services": [{"service": "s2", "quantity": 1, "notes": "Sin sangrado"}],
        })

        assert record.status == AppliedServiceStatus.PENDING
        assert record.total_amount == 300

    def test_record_needs_services(self, clinic):
        with pytest.raises(FormValidationError):
            clinic.treatments.record({"appointment": "a2", "services": []})

    def test_records_are_append_only(self, clinic):
        with pytest.raises(OperationNotSupportedError):
            clinic.treatments.update("a1", {})


class TestPaymentService:

    def test_submit_draft(self, clinic):
        draft = clinic.payments.new_draft()
        draft.add_service(clinic.catalog.get("s6"))
        draft.set_discount(10)

        payment = clinic.payments.submit(draft, patient_id="p3")

        assert payment.total == 720
        assert payment.receipt_number.startswith("REC-20240725-")

    def test_bad_split_blocks_submission(self, clinic):
        draft = clinic.payments.new_draft()
        draft.add_service(clinic.catalog.get("s6"))
        draft.split([{"method": "efectivo", "amount": 500}])

        with pytest.raises(FormValidationError) as exc:
            clinic.payments.submit(draft, patient_id="p3")
        assert "payment_methods" in exc.value.errors

    def test_submit_form(self, clinic):
        payment = clinic.payments.submit({
            "patient": "p3",
            "services": [{"service": "s1", "unit_price": 500, "quantity": 1}],
            "subtotal": 500,
            "discount": 100,
            "discount_type": "fixed",
            "total": 400,
            "payment_methods": [{"method": "transferencia", "amount": 400, "reference": "OP-1"}],
        })
        assert payment.final_amount == 400

    def test_discount_range(self, clinic):
        with pytest.raises(FormValidationError):
            clinic.payments.apply_discount("a2", 150)

    def test_discount_not_a_number(self, clinic):
        with pytest.raises(FormValidationError) as exc:
            clinic.payments.apply_discount("a2", "")
        assert exc.value.errors == {"discount": "Discount must be a number"}

    def test_blank_discount_on_submit_is_field_error(self, clinic):
        with pytest.raises(FormValidationError) as exc:
            clinic.payments.submit({
                "patient": "p1",
                "services": [{"service": "s1", "unit_price": 500, "quantity": 1}],
                "discount": "",
                "total": 500,
                "payment_methods": [{"method": "efectivo", "amount": 500}],
            })
        assert "discount" in exc.value.errors

    def test_process(self, clinic):
        result = clinic.payments.process("a2", "credit-card")
        assert result["receipt"]["totals"]["paymentMethod"] == "tarjeta_credito"
        assert result["change"] == 0

    def test_process_invalid_method(self, clinic):
        with pytest.raises(FormValidationError) as exc:
            clinic.payments.process("a2", "bitcoin")
        assert "payment_method" in exc.value.errors

    def test_payments_are_append_only(self, clinic):
        with pytest.raises(OperationNotSupportedError):
            clinic.payments.update("pay100", {})


class TestProfileService:

    def test_update_refreshes_session_user(self, signed_in):
        signed_in.profile.update({"full_name": "Dr. C. Rodríguez", "email": "c@happydent.com"})
        assert signed_in.session.user.full_name == "Dr. C. Rodríguez"

    def test_invalid_profile(self, signed_in):
        with pytest.raises(FormValidationError):
            signed_in.profile.update({"full_name": "", "email": "c@happydent.com"})

    def test_change_password(self, signed_in):
        signed_in.profile.change_password({
            "current_password": "doctor123",
            "new_password": "nuevo123",
            "confirm_password": "nuevo123",
        })
        assert signed_in.auth.login("doctor", "nuevo123").username == "doctor"

    def test_change_password_from_form_object(self, signed_in):
        signed_in.profile.change_password(SimpleNamespace(
            current_password="doctor123",
            new_password="nuevo123",
            confirm_password="nuevo123",
        ))
        assert signed_in.auth.login("doctor", "nuevo123").username == "doctor"

    def test_change_password_wrong_current(self, signed_in):
        with pytest.raises(ApiError):
            signed_in.profile.change_password({
                "current_password": "wrong",
                "new_password": "nuevo123",
                "confirm_password": "nuevo123",
            })

    def test_security_question(self, signed_in):
        signed_in.profile.update_security_question({
            "question": "¿Ciudad natal?",
            "answer": "Arequipa",
            "current_password": "doctor123",
        })
        assert signed_in.profile.get().security_question.question == "¿Ciudad natal?"


class TestClinicClient:

    def test_mode_from_backend(self, clinic):
        assert clinic.mode == "static"

    def test_builds_backend_from_mode(self, session):
        assert ClinicClient(mode="STATIC", session=session).mode == "static"
        assert ClinicClient(mode="live", session=session).mode == "live"

    def test_unknown_mode(self, session):
        with pytest.raises(ValueError):
            ClinicClient(mode="mongo", session=session)

    def test_debounced_search(self, clinic):
        results = []
        search = clinic.debounced(lambda term: results.append(clinic.patients.list(search=term)), delay_ms=10_000)

        assert isinstance(search, Debouncer)
        search("gar")
        search("garcía")
        search.flush()

        assert [p.id for p in results[0].items] == ["p2"]
        assert len(results) == 1
