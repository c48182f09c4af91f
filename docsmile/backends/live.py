"""REST implementation of ClinicBackend.

Every method is one HTTP call through ApiClient. Response envelopes are
``{success, message, data}``; the few reshapings the backend leaves to the
client (treatment records, history) happen here.
"""
from typing import Any, Dict, List, Optional, Tuple, Type

from docsmile import config
from docsmile.backends.base import ClinicBackend
from docsmile.http_client import ApiClient
from docsmile.logging_config import get_logger
from docsmile.models import (
    AppliedService,
    AppliedServiceItem,
    Appointment,
    AppointmentCreate,
    AppointmentRef,
    Dashboard,
    DentalService,
    LoginResult,
    Page,
    Pagination,
    Patient,
    PatientCreate,
    PatientSummary,
    Payment,
    PaymentCreate,
    ProfileUpdate,
    SecurityQuestionUpdate,
    ServiceCreate,
    UserProfile,
)
from docsmile.taxonomy import applied_status_for

logger = get_logger(__name__)


def _data(envelope: Dict[str, Any]) -> Any:
    return envelope.get("data")


def _first_present(*values: Any) -> Any:
    """First value that is not None (a zero amount counts)."""
    return next((value for value in values if value is not None), None)


def _pagination(raw: Optional[Dict[str, Any]], count: int) -> Pagination:
    if raw:
        return Pagination.model_validate(raw)
    return Pagination(total_items=count, items_per_page=max(1, count))


def _page(envelope: Dict[str, Any], key: str, model: Type) -> Page:
    """
    Build a Page from a list response.

    The list sits under ``data.<key>`` (or is ``data`` itself); entries that
    do not fit the model are logged and skipped.
    """
    data = _data(envelope) or {}
    raw_items = data.get(key, []) if isinstance(data, dict) else data
    raw_pagination = data.get("pagination") if isinstance(data, dict) else None

    items = []
    for raw in raw_items or []:
        try:
            items.append(model.model_validate(raw))
        except ValueError as e:
            logger.warning("skipped_malformed_record", resource=key, error=str(e))

    return Page(items=items, pagination=_pagination(raw_pagination, len(items)))


def _treatment_from_backend(raw: Dict[str, Any]) -> Optional[AppliedService]:
    """
    Reshape a treatment entry of the applied-services listing.

    Entries without a patient are dropped. Status follows the appointment's
    status; total is the final (discounted) amount when present.
    """
    patient = raw.get("patient")
    if not patient:
        return None

    appointment_id = raw.get("appointmentId") or raw.get("_id")
    return AppliedService(
        id=appointment_id,
        appointment=AppointmentRef(
            id=appointment_id,
            patient=PatientSummary.model_validate(patient),
            date=raw.get("date", ""),
            start_time=raw.get("startTime"),
            end_time=raw.get("endTime"),
            type=raw.get("type"),
        ),
        services=[
            AppliedServiceItem(
                service=line.get("service"),
                quantity=line.get("quantity", 1),
                discount=line.get("discount", 0),
                notes=line.get("notes") or "",
                completed=True,
            )
            for line in raw.get("appliedServices", [])
        ],
        status=applied_status_for(raw.get("status", "programada")),
        total_amount=_first_present(raw.get("finalAmount"), raw.get("totalAmount"), 0),
        notes=raw.get("notes"),
        created_at=raw.get("createdAt"),
        updated_at=raw.get("updatedAt"),
    )


class LiveBackend(ClinicBackend):
    """ClinicBackend over the clinic REST API."""

    mode = "live"

    def __init__(self, client: Optional[ApiClient] = None, session=None, base_url: Optional[str] = None):
        """
        Args:
            client: Preconfigured ApiClient (tests inject one)
            session: ClinicSession providing the bearer token
            base_url: API root (default: DOCSMILE_API_BASE_URL)
        """
        self.client = client or ApiClient(base_url=base_url, auth=session)

    # ------------------------------------------------------------ auth

    def login(self, username: str, password: str) -> LoginResult:
        envelope = self.client.post(
            "/auth/login",
            json={"username": username, "password": password},
            error_message="Invalid credentials",
        )
        data = _data(envelope) or {}
        return LoginResult(
            success=envelope.get("success", True),
            message=envelope.get("message", ""),
            token=data.get("token") or envelope.get("token"),
            user=data.get("user") or envelope.get("user"),
        )

    def forgot_verify(self, username: str) -> Dict[str, Any]:
        envelope = self.client.post(
            "/auth/forgot/verify",
            json={"username": username},
            error_message="User not found",
        )
        return _data(envelope) or {}

    def verify_security_answer(self, user_id: str, answer: str) -> str:
        envelope = self.client.post(
            "/auth/forgot/answer",
            json={"userId": user_id, "answer": answer},
            error_message="Incorrect answer",
        )
        return (_data(envelope) or {}).get("resetToken", "")

    def reset_password(self, reset_token: str, new_password: str) -> None:
        self.client.post(
            "/auth/forgot/reset",
            json={"resetToken": reset_token, "newPassword": new_password},
            error_message="Could not reset password",
        )

    # ------------------------------------------------------------ patients

    def list_patients(self, page=1, limit=config.DEFAULT_PAGE_SIZE, search=None, is_active=None) -> Page[Patient]:
        envelope = self.client.get(
            "/patients",
            params={"page": page, "limit": limit, "search": search, "isActive": is_active},
            error_message="Error loading patients",
        )
        return _page(envelope, "patients", Patient)

    def get_patient(self, patient_id: str) -> Patient:
        envelope = self.client.get(f"/patients/{patient_id}", error_message="Error loading patient")
        return Patient.model_validate(_data(envelope))

    def get_patient_by_dni(self, dni: str) -> Patient:
        envelope = self.client.get(f"/patients/by-dni/{dni}", error_message="Patient not found")
        return Patient.model_validate(_data(envelope))

    def create_patient(self, data: PatientCreate) -> Patient:
        envelope = self.client.post("/patients", json=data.to_wire(), error_message="Error creating patient")
        return Patient.model_validate(_data(envelope))

    def update_patient(self, patient_id: str, data: PatientCreate) -> Patient:
        envelope = self.client.put(
            f"/patients/{patient_id}",
            json=data.to_wire(),
            error_message="Error updating patient",
        )
        return Patient.model_validate(_data(envelope))

    def delete_patient(self, patient_id: str) -> None:
        self.client.delete(f"/patients/{patient_id}", error_message="Error deleting patient")

    def restore_patient(self, patient_id: str) -> Patient:
        envelope = self.client.patch(f"/patients/{patient_id}/restore", error_message="Error restoring patient")
        return Patient.model_validate(_data(envelope))

    def patient_stats(self) -> Dict[str, Any]:
        envelope = self.client.get("/patients/stats/summary", error_message="Error loading patient statistics")
        return _data(envelope) or {}

    # ------------------------------------------------------------ catalog

    def list_services(self, page=1, limit=config.DEFAULT_PAGE_SIZE, search=None, category=None,
                      is_active=None) -> Page[DentalService]:
        envelope = self.client.get(
            "/services",
            params={
                "page": page,
                "limit": limit,
                "search": search,
                "category": category,
                "isActive": is_active,
            },
            error_message="Error loading services",
        )
        return _page(envelope, "services", DentalService)

    def get_service(self, service_id: str) -> DentalService:
        envelope = self.client.get(f"/services/{service_id}", error_message="Error loading service")
        return DentalService.model_validate(_data(envelope))

    def list_categories(self) -> List[Dict[str, Any]]:
        envelope = self.client.get("/services/categories", error_message="Error loading categories")
        return _data(envelope) or []

    def services_by_category(self, category: str) -> List[DentalService]:
        envelope = self.client.get(
            f"/services/by-category/{category}",
            error_message="Error loading services by category",
        )
        return [DentalService.model_validate(raw) for raw in _data(envelope) or []]

    def create_service(self, data: ServiceCreate) -> DentalService:
        envelope = self.client.post("/services", json=data.to_wire(), error_message="Error creating service")
        return DentalService.model_validate(_data(envelope))

    def update_service(self, service_id: str, data: ServiceCreate) -> DentalService:
        envelope = self.client.put(
            f"/services/{service_id}",
            json=data.to_wire(),
            error_message="Error updating service",
        )
        return DentalService.model_validate(_data(envelope))

    def delete_service(self, service_id: str) -> None:
        self.client.delete(f"/services/{service_id}", error_message="Error deleting service")

    def restore_service(self, service_id: str) -> DentalService:
        envelope = self.client.patch(f"/services/{service_id}/restore", error_message="Error restoring service")
        return DentalService.model_validate(_data(envelope))

    def service_stats(self) -> Dict[str, Any]:
        envelope = self.client.get("/services/stats/summary", error_message="Error loading service statistics")
        return _data(envelope) or {}

    # ------------------------------------------------------------ appointments

    def list_appointments(self, page=1, limit=config.DEFAULT_PAGE_SIZE, status=None, date=None,
                          patient_dni=None, date_from=None, date_to=None) -> Page[Appointment]:
        envelope = self.client.get(
            "/appointments",
            params={
                "page": page,
                "limit": limit,
                "status": status,
                "date": date,
                "patientDni": patient_dni,
                "dateFrom": date_from,
                "dateTo": date_to,
            },
            error_message="Error loading appointments",
        )
        return _page(envelope, "appointments", Appointment)

    def get_appointment(self, appointment_id: str) -> Appointment:
        envelope = self.client.get(f"/appointments/{appointment_id}", error_message="Error loading appointment")
        return Appointment.model_validate(_data(envelope))

    def appointments_by_patient_dni(self, dni: str) -> Tuple[Patient, List[Appointment]]:
        envelope = self.client.get(
            f"/appointments/by-patient-dni/{dni}",
            error_message="Error loading patient appointments",
        )
        data = _data(envelope) or {}
        return (
            Patient.model_validate(data.get("patient")),
            [Appointment.model_validate(raw) for raw in data.get("appointments", [])],
        )

    def create_appointment(self, data: AppointmentCreate) -> Appointment:
        envelope = self.client.post(
            "/appointments",
            json=data.to_wire(),
            error_message="Error creating appointment",
        )
        return Appointment.model_validate(_data(envelope))

    def update_appointment(self, appointment_id: str, data: AppointmentCreate) -> Appointment:
        envelope = self.client.put(
            f"/appointments/{appointment_id}",
            json=data.to_wire(),
            error_message="Error updating appointment",
        )
        return Appointment.model_validate(_data(envelope))

    def delete_appointment(self, appointment_id: str) -> None:
        self.client.delete(f"/appointments/{appointment_id}", error_message="Error cancelling appointment")

    def appointment_stats(self) -> Dict[str, Any]:
        envelope = self.client.get(
            "/appointments/stats/summary",
            error_message="Error loading appointment statistics",
        )
        return _data(envelope) or {}

    def dashboard(self, date=None, status=None, limit=None) -> Dashboard:
        envelope = self.client.get(
            "/appointments/dashboard",
            params={"date": date, "status": status, "limit": limit},
            error_message="Error loading dashboard",
        )
        return Dashboard.model_validate(_data(envelope))

    # ------------------------------------------------------------ treatments

    def list_applied_services(self, page=1, limit=config.DEFAULT_PAGE_SIZE, status=None, patient=None,
                              date=None, search=None) -> Page[AppliedService]:
        envelope = self.client.get(
            "/applied-services",
            params={
                "page": page,
                "limit": limit,
                "status": status,
                "patient": patient,
                "date": date,
                "search": search,
            },
            error_message="Error loading applied services",
        )
        data = _data(envelope) or {}
        raw_items = data.get("appliedServices", []) if isinstance(data, dict) else data
        items = [
            record for record in (_treatment_from_backend(raw) for raw in raw_items or [])
            if record is not None
        ]
        raw_pagination = data.get("pagination") if isinstance(data, dict) else None
        return Page(items=items, pagination=_pagination(raw_pagination, len(items)))

    def applied_service_stats(self) -> Dict[str, Any]:
        envelope = self.client.get("/applied-services/stats", error_message="Error loading treatment statistics")
        return _data(envelope) or {}

    def apply_services(self, appointment_id: str, items: List[AppliedServiceItem],
                       notes: Optional[str] = None) -> AppliedService:
        payload: Dict[str, Any] = {
            "appliedServices": [
                {
                    "service": item.service_id,
                    "quantity": item.quantity,
                    "discount": item.discount,
                    "notes": item.notes or "",
                }
                for item in items
            ],
        }
        if notes:
            payload["notes"] = notes
        envelope = self.client.post(
            f"/applied-services/appointment/{appointment_id}",
            json=payload,
            error_message="Error applying services",
        )
        data = _data(envelope) or {}
        appointment = Appointment.model_validate(data.get("appointment"))
        return AppliedService(
            id=appointment.id,
            appointment=AppointmentRef(
                id=appointment.id,
                patient=appointment.patient,
                date=appointment.date,
                start_time=appointment.start_time,
                end_time=appointment.end_time,
                type=appointment.type,
            ),
            services=[
                AppliedServiceItem(
                    service=line.service,
                    quantity=line.quantity,
                    discount=line.discount,
                    notes=line.notes or "",
                    completed=True,
                )
                for line in appointment.applied_services
            ],
            status=applied_status_for(appointment.status),
            total_amount=_first_present(data.get("totalAmount"), appointment.payment.final_amount),
            notes=appointment.notes,
            updated_at=appointment.updated_at,
        )

    def patient_history(self, patient_id: str) -> Dict[str, Any]:
        envelope = self.client.get(
            f"/applied-services/patient/{patient_id}/history",
            error_message="Error loading patient history",
        )
        return _data(envelope) or {}

    # ------------------------------------------------------------ payments

    def list_payments(self, page=1, limit=config.DEFAULT_PAGE_SIZE, search=None, status=None,
                      payment_method=None, date=None) -> Page[Payment]:
        envelope = self.client.get(
            "/payments",
            params={
                "page": page,
                "limit": limit,
                "search": search,
                "status": status,
                "paymentMethod": payment_method,
                "date": date,
            },
            error_message="Error loading payments",
        )
        return _page(envelope, "payments", Payment)

    def create_payment(self, data: PaymentCreate) -> Payment:
        envelope = self.client.post("/payments", json=data.to_wire(), error_message="Error creating payment")
        return Payment.model_validate(_data(envelope))

    def payment_summary(self, appointment_id: str) -> Dict[str, Any]:
        envelope = self.client.get(
            f"/payments/appointment/{appointment_id}/summary",
            error_message="Error loading payment summary",
        )
        return _data(envelope) or {}

    def apply_discount(self, appointment_id: str, discount: float, reason: Optional[str] = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"discount": discount}
        if reason:
            payload["reason"] = reason
        envelope = self.client.post(
            f"/payments/appointment/{appointment_id}/discount",
            json=payload,
            error_message="Error applying discount",
        )
        return _data(envelope) or {}

    def process_payment(self, appointment_id: str, payment_method: str, amount_paid: Optional[float] = None,
                        notes: Optional[str] = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"paymentMethod": getattr(payment_method, "value", payment_method)}
        if amount_paid is not None:
            payload["amountPaid"] = amount_paid
        if notes:
            payload["notes"] = notes
        envelope = self.client.post(
            f"/payments/appointment/{appointment_id}/pay",
            json=payload,
            error_message="Error processing payment",
        )
        return _data(envelope) or {}

    def get_receipt(self, appointment_id: str) -> Dict[str, Any]:
        envelope = self.client.get(f"/payments/receipt/{appointment_id}", error_message="Error loading receipt")
        return _data(envelope) or {}

    def payment_stats(self) -> Dict[str, Any]:
        envelope = self.client.get("/payments/stats", error_message="Error loading payment statistics")
        return _data(envelope) or {}

    # ------------------------------------------------------------ profile

    def get_profile(self) -> UserProfile:
        envelope = self.client.get("/profile", error_message="Error loading profile")
        return UserProfile.model_validate(_data(envelope))

    def update_profile(self, data: ProfileUpdate) -> UserProfile:
        envelope = self.client.put("/profile", json=data.to_wire(), error_message="Error updating profile")
        return UserProfile.model_validate(_data(envelope))

    def update_security_question(self, data: SecurityQuestionUpdate) -> None:
        self.client.put(
            "/profile/security-question",
            json=data.to_wire(),
            error_message="Error updating security question",
        )

    def change_password(self, current_password: str, new_password: str) -> None:
        self.client.post(
            "/auth/change-password",
            json={"currentPassword": current_password, "newPassword": new_password},
            error_message="Error changing password",
        )

    def get_clinic_settings(self) -> Dict[str, Any]:
        envelope = self.client.get("/profile/clinic-settings", error_message="Error loading clinic settings")
        return _data(envelope) or {}

    def update_clinic_settings(self, changes: Dict[str, Any]) -> Dict[str, Any]:
        envelope = self.client.put(
            "/profile/clinic-settings",
            json=changes,
            error_message="Error updating clinic settings",
        )
        return _data(envelope) or {}

    def activity_stats(self) -> Dict[str, Any]:
        envelope = self.client.get("/profile/activity-stats", error_message="Error loading activity statistics")
        return _data(envelope) or {}
