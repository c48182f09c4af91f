"""Test the fixture-backed backend."""
import pytest

from docsmile.errors import (
    ApiError,
    AuthenticationError,
    NotFoundError,
    OperationNotSupportedError,
)
from docsmile.models import (
    AppliedServiceItem,
    AppointmentCreate,
    AppointmentServiceItem,
    PatientCreate,
    PaymentCreate,
    PaymentItem,
    PaymentMethodEntry,
    ProfileUpdate,
    SecurityQuestionUpdate,
    ServiceCreate,
)
from docsmile.taxonomy import AppliedServiceStatus, AppointmentStatus, PaymentMethod, PaymentStatus

# Days around the pinned clock in conftest
TODAY = "2024-07-25"
YESTERDAY = "2024-07-24"
TOMORROW = "2024-07-26"


def booking(services, day=TOMORROW, patient="p3"):
    return AppointmentCreate(
        patient=patient,
        services=[AppointmentServiceItem(service=s, quantity=q) for s, q in services],
        date=day,
        start_time="09:00",
        end_time="10:00",
    )


class TestAuth:

    def test_login(self, backend):
        result = backend.login("doctor", "doctor123")

        assert result.token.startswith("static-token-")
        assert result.token.endswith("-doctor")
        assert result.user.full_name == "Dr. Carlos Rodríguez"
        assert backend.authenticate(result.token).username == "doctor"

    def test_wrong_password(self, backend):
        with pytest.raises(AuthenticationError):
            backend.login("doctor", "nope")

    def test_token_from_previous_run_accepted_by_shape(self, backend):
        assert backend.authenticate("static-token-1721900000000-admin").username == "admin"

    def test_unknown_token_rejected(self, backend):
        with pytest.raises(AuthenticationError):
            backend.authenticate("forged")
        with pytest.raises(AuthenticationError):
            backend.authenticate("static-token-1-nobody")

    @pytest.mark.parametrize("token", [
        "static-token-0-admin",
        "static-token-abc-admin",
        "static-token-9999999999999-admin",
    ])
    def test_handmade_token_rejected(self, backend, token):
        with pytest.raises(AuthenticationError):
            backend.authenticate(token)

    def test_password_recovery(self, backend):
        account = backend.forgot_verify("doctor")
        assert account["userId"] == "2"
        assert account["securityQuestion"] == "¿Cuál fue tu primera mascota?"

        token = backend.verify_security_answer("2", "  Firulais ")
        backend.reset_password(token, "nuevo123")

        assert backend.login("doctor", "nuevo123").user.id == "2"
        with pytest.raises(ApiError):
            backend.reset_password(token, "otro1234")

    def test_wrong_security_answer(self, backend):
        with pytest.raises(AuthenticationError):
            backend.verify_security_answer("2", "michi")

    def test_account_without_security_question(self, backend):
        with pytest.raises(ApiError) as exc:
            backend.verify_security_answer("1", "firulais")
        assert exc.value.status_code == 400

    def test_recovery_unknown_user(self, backend):
        with pytest.raises(NotFoundError):
            backend.forgot_verify("ghost")


class TestPatients:

    def test_list_sorted_by_last_name(self, backend):
        page = backend.list_patients()
        assert [p.last_name for p in page.items] == ["García", "Martínez", "Pérez"]
        assert page.pagination.total_items == 3

    @pytest.mark.parametrize("term,expected", [("ana", ["p2"]), ("4012", ["p3"]), ("PÉREZ", ["p1"])])
    def test_search(self, backend, term, expected):
        assert [p.id for p in backend.list_patients(search=term).items] == expected

    def test_by_dni(self, backend):
        assert backend.get_patient_by_dni("72345678").id == "p2"
        with pytest.raises(NotFoundError):
            backend.get_patient_by_dni("00000000")

    def test_create_and_duplicate_dni(self, backend):
        patient = backend.create_patient(PatientCreate(dni="11112222", first_name="Lucía", last_name="Torres"))

        assert patient.full_name == "Lucía Torres"
        assert backend.patient_stats()["newThisMonth"] == 1
        with pytest.raises(ApiError) as exc:
            backend.create_patient(PatientCreate(dni="45678912", first_name="X", last_name="Y"))
        assert exc.value.status_code == 400

    def test_update_propagates_to_appointments(self, backend):
        backend.update_patient("p1", PatientCreate(dni="45678912", first_name="Juan Carlos", last_name="Pérez"))

        assert backend.get_patient("p1").full_name == "Juan Carlos Pérez"
        assert backend.get_appointment("a1").patient.full_name == "Juan Carlos Pérez"

    def test_soft_delete_and_restore(self, backend):
        backend.delete_patient("p3")

        assert [p.id for p in backend.list_patients(is_active=False).items] == ["p3"]
        assert backend.patient_stats()["inactive"] == 1

        assert backend.restore_patient("p3").is_active is True

    def test_returned_records_are_copies(self, backend):
        patient = backend.get_patient("p1")
        patient.first_name = "Changed"
        assert backend.get_patient("p1").first_name == "Juan"


class TestCatalog:

    def test_filter_by_category(self, backend):
        names = [s.name for s in backend.list_services(category="preventivo").items]
        assert names == ["Consulta general", "Limpieza dental"]

    def test_invalid_category_filter(self, backend):
        with pytest.raises(ApiError) as exc:
            backend.list_services(category="laser")
        assert exc.value.status_code == 400

    def test_all_means_no_filter(self, backend):
        assert backend.list_services(category="all").pagination.total_items == 6

    def test_categories_with_counts(self, backend):
        categories = {c["category"]: c["count"] for c in backend.list_categories()}
        assert categories == {"preventivo": 2, "endodoncia": 1, "ortodoncia": 1, "cirugia": 1, "estetico": 1}

    def test_create_deactivate_restore(self, backend):
        service = backend.create_service(ServiceCreate(
            name="Resina", description="Restauración", category="restaurativo", price=200, duration=40,
        ))
        backend.delete_service(service.id)

        assert backend.get_service(service.id).is_active is False
        assert service.id not in [s.id for s in backend.services_by_category("restaurativo")]
        assert backend.restore_service(service.id).is_active is True

    def test_stats(self, backend):
        stats = backend.service_stats()
        assert stats["total"] == 6
        assert stats["averagePrice"] == 1066.67


class TestAppointments:

    def test_fixture_dates_follow_today(self, backend):
        assert backend.get_appointment("a1").date == TODAY
        assert backend.get_appointment("a4").date == YESTERDAY
        assert backend.get_appointment("a5").date == TOMORROW

    def test_filter_by_status(self, backend):
        page = backend.list_appointments(status="programada")
        assert [a.id for a in page.items] == ["a5", "a3"]

    def test_filter_by_date_range(self, backend):
        page = backend.list_appointments(date_from=TODAY, date_to=TODAY)
        assert sorted(a.id for a in page.items) == ["a1", "a2", "a3"]

    def test_create_bills_services(self, backend):
        appointment = backend.create_appointment(booking([("s2", 2), ("s1", 1)]))

        assert appointment.status == AppointmentStatus.SCHEDULED
        assert appointment.dentist.full_name == "Dr. Carlos Rodríguez"
        assert [(line.service_id, line.quantity) for line in appointment.services] == [("s2", 2), ("s1", 1)]
        assert appointment.services[0].service.name == "Limpieza dental"
        assert appointment.payment.total_amount == 1100
        assert appointment.payment.is_paid is False

    def test_inactive_service_not_bookable(self, backend):
        backend.delete_service("s4")
        with pytest.raises(ApiError):
            backend.create_appointment(booking([("s4", 1)]))

    def test_update_keeps_already_booked_inactive_service(self, backend):
        backend.delete_service("s4")

        updated = backend.update_appointment("a5", booking([("s4", 1)], patient="p2"))

        assert updated.payment.total_amount == 1500

    def test_cancel(self, backend):
        backend.delete_appointment("a3")
        assert backend.get_appointment("a3").status == AppointmentStatus.CANCELLED

    def test_by_patient_dni(self, backend):
        patient, appointments = backend.appointments_by_patient_dni("45678912")
        assert patient.id == "p1"
        assert [a.id for a in appointments] == ["a1", "a4"]

    def test_dashboard(self, backend):
        dashboard = backend.dashboard()

        assert dashboard.date == TODAY
        assert [a.id for a in dashboard.today_appointments] == ["a1", "a2", "a3"]
        assert [a.id for a in dashboard.upcoming_appointments] == ["a5"]
        assert dashboard.stats["today"] == {"total": 3, "completed": 1, "pending": 2, "cancelled": 0}
        assert dashboard.stats["completionRate"] == 50.0

    def test_missing_appointment(self, backend):
        with pytest.raises(NotFoundError):
            backend.get_appointment("a999")


class TestTreatments:

    def test_fixture_records(self, backend):
        page = backend.list_applied_services(status="completado")
        assert [r.id for r in page.items] == ["a1", "a4"]

    def test_apply_rebills_appointment(self, backend):
        record = backend.apply_services("a2", [AppliedServiceItem(service="s2", quantity=1, discount=10)])

        assert record.status == AppliedServiceStatus.PENDING
        assert record.total_amount == 270
        assert backend.get_appointment("a2").payment.total_amount == 270

    def test_status_follows_appointment(self, backend):
        backend.apply_services("a3", [AppliedServiceItem(service="s3")])
        backend.update_appointment("a3", booking([("s3", 1)], day=TODAY).model_copy(
            update={"status": AppointmentStatus.COMPLETED}
        ))

        record = next(r for r in backend.list_applied_services().items if r.id == "a3")
        assert record.status == AppliedServiceStatus.COMPLETED

    def test_full_discount_zeroes_record_total(self, backend):
        backend.apply_services("a3", [AppliedServiceItem(service="s3")])
        backend.update_appointment("a3", booking([("s3", 1)], day=TODAY).model_copy(
            update={"status": AppointmentStatus.COMPLETED}
        ))
        backend.apply_discount("a3", 100)

        record = next(r for r in backend.list_applied_services().items if r.id == "a3")

        assert backend.get_appointment("a3").payment.final_amount == 0
        assert record.total_amount == 0
        assert backend.applied_service_stats()["totalRevenue"] == 800

    def test_paid_appointment_rejects_new_treatments(self, backend):
        with pytest.raises(ApiError) as exc:
            backend.apply_services("a1", [AppliedServiceItem(service="s2")])
        assert exc.value.status_code == 400

    def test_stats(self, backend):
        stats = backend.applied_service_stats()
        assert stats["total"] == 2
        assert stats["completed"] == 2
        assert stats["totalRevenue"] == 800

    def test_patient_history(self, backend):
        history = backend.patient_history("p1")
        assert [visit["appointmentId"] for visit in history["history"]] == ["a1", "a4"]
        assert history["stats"]["totalAmountSpent"] == 800
        assert history["stats"]["lastVisit"] == TODAY

    def test_records_cannot_be_edited(self, backend):
        with pytest.raises(OperationNotSupportedError):
            backend.delete_applied_service("a1")


class TestPayments:

    def test_fixture_payments(self, backend):
        page = backend.list_payments()
        assert [p.appointment_id for p in page.items] == ["a1", "a4"]
        assert page.items[0].receipt_number == "REC-20240725-0001"

        by_card = backend.list_payments(payment_method="tarjeta_credito")
        assert [p.appointment_id for p in by_card.items] == ["a4"]

    def test_discount_then_pay(self, backend):
        discount = backend.apply_discount("a2", 10, reason="Cliente frecuente")
        assert discount["finalAmount"] == 270
        assert discount["discountAmount"] == 30

        result = backend.process_payment("a2", "efectivo", amount_paid=300)

        assert result["change"] == 30
        assert result["receipt"]["totals"]["finalAmount"] == 270
        assert result["receipt"]["receiptNumber"].startswith("REC-20240725-")
        assert backend.payment_summary("a2")["isPaid"] is True

        with pytest.raises(ApiError):
            backend.process_payment("a2", "efectivo")

    def test_underpayment_rejected(self, backend):
        with pytest.raises(ApiError):
            backend.process_payment("a3", "efectivo", amount_paid=100)

    def test_invalid_method(self, backend):
        with pytest.raises(ApiError) as exc:
            backend.process_payment("a3", "bitcoin")
        assert exc.value.status_code == 400

    def test_discount_out_of_range(self, backend):
        with pytest.raises(ApiError):
            backend.apply_discount("a2", 120)

    def test_discount_must_be_numeric(self, backend):
        with pytest.raises(ApiError) as exc:
            backend.apply_discount("a2", "abc")
        assert exc.value.status_code == 400

    def test_receipt_requires_payment(self, backend):
        with pytest.raises(NotFoundError):
            backend.get_receipt("a3")
        assert backend.get_receipt("a1")["totals"]["paymentMethod"] == "efectivo"

    def test_free_form_payment_with_split(self, backend):
        payment = backend.create_payment(PaymentCreate(
            patient="p3",
            services=[PaymentItem(service="s6", unit_price=800, quantity=1)],
            subtotal=800,
            total=800,
            payment_methods=[
                PaymentMethodEntry(method=PaymentMethod.CASH, amount=500),
                PaymentMethodEntry(method=PaymentMethod.BANK_TRANSFER, amount=300),
            ],
        ))

        assert payment.status == PaymentStatus.PAID
        assert payment.services[0].service_name == "Extracción dental"
        assert payment.patient.full_name == "Roberto Martínez"

    def test_payment_total_must_match(self, backend):
        with pytest.raises(ApiError):
            backend.create_payment(PaymentCreate(
                patient="p3",
                services=[PaymentItem(service="s6", unit_price=800, quantity=1)],
                subtotal=800,
                total=700,
                payment_methods=[PaymentMethodEntry(method=PaymentMethod.CASH, amount=700)],
            ))

    def test_stats(self, backend):
        stats = backend.payment_stats()
        assert stats["totalRevenue"] == 800
        assert stats["todayRevenue"] == 500
        assert stats["pendingAmount"] == 4800
        assert stats["pendingCount"] == 3
        assert stats["byMethod"] == {"efectivo": 500, "tarjeta_credito": 300}

    def test_payments_cannot_be_deleted(self, backend):
        with pytest.raises(OperationNotSupportedError):
            backend.delete_payment("pay100")


class TestProfile:

    def test_profile_of_current_user(self, backend):
        backend.login("admin", "admin123")
        assert backend.get_profile().username == "admin"

    def test_default_profile_has_security_question(self, backend):
        profile = backend.get_profile()
        assert profile.username == "doctor"
        assert profile.security_question.question == "¿Cuál fue tu primera mascota?"

    def test_update_profile(self, backend):
        profile = backend.update_profile(ProfileUpdate(full_name="Dr. C. Rodríguez", email="c@happydent.com"))
        assert profile.full_name == "Dr. C. Rodríguez"
        assert profile.profile.specialty == "Odontología General"

    def test_username_taken(self, backend):
        with pytest.raises(ApiError):
            backend.update_profile(ProfileUpdate(username="admin"))

    def test_change_password(self, backend):
        with pytest.raises(ApiError) as exc:
            backend.change_password("wrong", "nuevo123")
        assert exc.value.status_code == 400

        backend.change_password("doctor123", "nuevo123")
        assert backend.login("doctor", "nuevo123").user.username == "doctor"

    def test_security_question_update(self, backend):
        backend.update_security_question(SecurityQuestionUpdate(
            question="¿Ciudad natal?", answer="Arequipa", current_password="doctor123",
        ))
        assert backend.verify_security_answer("2", "arequipa")

    def test_clinic_settings_merge(self, backend):
        settings = backend.update_clinic_settings({"contact": {"phone": "+51 111 222 333"}})
        assert settings["contact"]["phone"] == "+51 111 222 333"
        assert settings["contact"]["email"] == "contacto@happydent.com"

    def test_activity_stats(self, backend):
        stats = backend.activity_stats()
        assert stats["appointments"]["total"] == 5
        assert stats["profileCompleteness"] == 100
