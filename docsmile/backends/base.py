"""Backend interface shared by the live REST client and the static fixtures.

Callers depend on ClinicBackend only; create_backend() picks the
implementation from DOCSMILE_DATA_MODE.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

from docsmile import config
from docsmile.errors import OperationNotSupportedError
from docsmile.models import (
    AppliedService,
    AppliedServiceCreate,
    AppliedServiceItem,
    Appointment,
    AppointmentCreate,
    Dashboard,
    DentalService,
    LoginResult,
    Page,
    Patient,
    PatientCreate,
    Payment,
    PaymentCreate,
    ProfileUpdate,
    SecurityQuestionUpdate,
    ServiceCreate,
    UserProfile,
)


class ClinicBackend(ABC):
    """Data access for every clinic resource."""

    mode: str = ""

    def resume_session(self, token: str) -> None:
        """Bind a token restored from a previous run (no-op by default)."""

    # ------------------------------------------------------------ auth

    @abstractmethod
    def login(self, username: str, password: str) -> LoginResult:
        """Exchange credentials for a token (AuthenticationError if rejected)."""

    @abstractmethod
    def forgot_verify(self, username: str) -> Dict[str, Any]:
        """Look up an account for recovery: user_id, username, security_question."""

    @abstractmethod
    def verify_security_answer(self, user_id: str, answer: str) -> str:
        """Check the recovery answer and return a one-time reset token."""

    @abstractmethod
    def reset_password(self, reset_token: str, new_password: str) -> None:
        ...

    # ------------------------------------------------------------ patients

    @abstractmethod
    def list_patients(
        self,
        page: int = 1,
        limit: int = config.DEFAULT_PAGE_SIZE,
        search: Optional[str] = None,
        is_active: Optional[bool] = None
    ) -> Page[Patient]:
        ...

    @abstractmethod
    def get_patient(self, patient_id: str) -> Patient:
        ...

    @abstractmethod
    def get_patient_by_dni(self, dni: str) -> Patient:
        ...

    @abstractmethod
    def create_patient(self, data: PatientCreate) -> Patient:
        ...

    @abstractmethod
    def update_patient(self, patient_id: str, data: PatientCreate) -> Patient:
        ...

    @abstractmethod
    def delete_patient(self, patient_id: str) -> None:
        """Soft delete: the patient becomes inactive."""

    @abstractmethod
    def restore_patient(self, patient_id: str) -> Patient:
        ...

    @abstractmethod
    def patient_stats(self) -> Dict[str, Any]:
        ...

    # ------------------------------------------------------------ catalog

    @abstractmethod
    def list_services(
        self,
        page: int = 1,
        limit: int = config.DEFAULT_PAGE_SIZE,
        search: Optional[str] = None,
        category: Optional[str] = None,
        is_active: Optional[bool] = None
    ) -> Page[DentalService]:
        ...

    @abstractmethod
    def get_service(self, service_id: str) -> DentalService:
        ...

    @abstractmethod
    def list_categories(self) -> List[Dict[str, Any]]:
        """Categories in use with their service counts."""

    @abstractmethod
    def services_by_category(self, category: str) -> List[DentalService]:
        ...

    @abstractmethod
    def create_service(self, data: ServiceCreate) -> DentalService:
        ...

    @abstractmethod
    def update_service(self, service_id: str, data: ServiceCreate) -> DentalService:
        ...

    @abstractmethod
    def delete_service(self, service_id: str) -> None:
        """Soft delete: the service stays referenced but cannot be booked."""

    @abstractmethod
    def restore_service(self, service_id: str) -> DentalService:
        ...

    @abstractmethod
    def service_stats(self) -> Dict[str, Any]:
        ...

    # ------------------------------------------------------------ appointments

    @abstractmethod
    def list_appointments(
        self,
        page: int = 1,
        limit: int = config.DEFAULT_PAGE_SIZE,
        status: Optional[str] = None,
        date: Optional[str] = None,
        patient_dni: Optional[str] = None,
        date_from: Optional[str] = None,
        date_to: Optional[str] = None
    ) -> Page[Appointment]:
        ...

    @abstractmethod
    def get_appointment(self, appointment_id: str) -> Appointment:
        ...

    @abstractmethod
    def appointments_by_patient_dni(self, dni: str) -> Tuple[Patient, List[Appointment]]:
        ...

    @abstractmethod
    def create_appointment(self, data: AppointmentCreate) -> Appointment:
        ...

    @abstractmethod
    def update_appointment(self, appointment_id: str, data: AppointmentCreate) -> Appointment:
        ...

    @abstractmethod
    def delete_appointment(self, appointment_id: str) -> None:
        """Cancel the appointment."""

    @abstractmethod
    def appointment_stats(self) -> Dict[str, Any]:
        ...

    @abstractmethod
    def dashboard(
        self,
        date: Optional[str] = None,
        status: Optional[str] = None,
        limit: Optional[int] = None
    ) -> Dashboard:
        """Today's appointments, upcoming ones and headline counts."""

    # ------------------------------------------------------------ treatments

    @abstractmethod
    def list_applied_services(
        self,
        page: int = 1,
        limit: int = config.DEFAULT_PAGE_SIZE,
        status: Optional[str] = None,
        patient: Optional[str] = None,
        date: Optional[str] = None,
        search: Optional[str] = None
    ) -> Page[AppliedService]:
        ...

    @abstractmethod
    def applied_service_stats(self) -> Dict[str, Any]:
        ...

    @abstractmethod
    def apply_services(
        self,
        appointment_id: str,
        items: List[AppliedServiceItem],
        notes: Optional[str] = None
    ) -> AppliedService:
        """Record performed services against an appointment."""

    @abstractmethod
    def patient_history(self, patient_id: str) -> Dict[str, Any]:
        ...

    def create_applied_service(self, data: AppliedServiceCreate) -> AppliedService:
        return self.apply_services(data.appointment, data.services, data.notes)

    def update_applied_service(self, record_id: str, data: AppliedServiceCreate) -> AppliedService:
        raise OperationNotSupportedError("Treatment records cannot be edited")

    def delete_applied_service(self, record_id: str) -> None:
        raise OperationNotSupportedError("Treatment records cannot be deleted")

    # ------------------------------------------------------------ payments

    @abstractmethod
    def list_payments(
        self,
        page: int = 1,
        limit: int = config.DEFAULT_PAGE_SIZE,
        search: Optional[str] = None,
        status: Optional[str] = None,
        payment_method: Optional[str] = None,
        date: Optional[str] = None
    ) -> Page[Payment]:
        ...

    @abstractmethod
    def create_payment(self, data: PaymentCreate) -> Payment:
        ...

    @abstractmethod
    def payment_summary(self, appointment_id: str) -> Dict[str, Any]:
        """Billable lines and totals for an appointment."""

    @abstractmethod
    def apply_discount(
        self,
        appointment_id: str,
        discount: float,
        reason: Optional[str] = None
    ) -> Dict[str, Any]:
        """Apply a percentage discount to an appointment's bill."""

    @abstractmethod
    def process_payment(
        self,
        appointment_id: str,
        payment_method: str,
        amount_paid: Optional[float] = None,
        notes: Optional[str] = None
    ) -> Dict[str, Any]:
        """Settle an appointment's bill; returns the receipt and change."""

    @abstractmethod
    def get_receipt(self, appointment_id: str) -> Dict[str, Any]:
        ...

    @abstractmethod
    def payment_stats(self) -> Dict[str, Any]:
        ...

    def update_payment(self, payment_id: str, data: PaymentCreate) -> Payment:
        raise OperationNotSupportedError("Payments cannot be edited")

    def delete_payment(self, payment_id: str) -> None:
        raise OperationNotSupportedError("Payments cannot be deleted")

    # ------------------------------------------------------------ profile

    @abstractmethod
    def get_profile(self) -> UserProfile:
        ...

    @abstractmethod
    def update_profile(self, data: ProfileUpdate) -> UserProfile:
        ...

    @abstractmethod
    def update_security_question(self, data: SecurityQuestionUpdate) -> None:
        ...

    @abstractmethod
    def change_password(self, current_password: str, new_password: str) -> None:
        ...

    @abstractmethod
    def get_clinic_settings(self) -> Dict[str, Any]:
        ...

    @abstractmethod
    def update_clinic_settings(self, changes: Dict[str, Any]) -> Dict[str, Any]:
        ...

    @abstractmethod
    def activity_stats(self) -> Dict[str, Any]:
        ...
