"""Resource services: the client-side rules in front of each backend call.

Each service validates form input before anything reaches the backend
(FormValidationError, no network), builds the request model, calls the
backend and logs failures. Backend errors propagate unchanged so the caller
can show them; nothing is retried.
"""
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError

from docsmile import config
from docsmile.backends import ClinicBackend, create_backend
from docsmile.billing import PaymentDraft
from docsmile.dates import calculate_age
from docsmile.debounce import Debouncer
from docsmile.errors import ApiError, DocSmileError, FormValidationError
from docsmile.logging_config import get_logger
from docsmile.models import (
    AppliedService,
    AppliedServiceCreate,
    Appointment,
    AppointmentCreate,
    Dashboard,
    DentalService,
    Page,
    Patient,
    PatientCreate,
    Payment,
    PaymentCreate,
    ProfileUpdate,
    SecurityQuestionUpdate,
    ServiceCreate,
    User,
    UserProfile,
)
from docsmile.session import ClinicSession, SessionStore
from docsmile.taxonomy import DiscountType, PaymentMethod
from docsmile.validation import (
    _get,
    validate_applied_service_form,
    validate_appointment_form,
    validate_password_form,
    validate_patient_form,
    validate_payment_form,
    validate_profile_form,
    validate_security_question_form,
    validate_service_form,
)

logger = get_logger(__name__)

M = TypeVar("M", bound=BaseModel)

CATALOG_PAGE_SIZE = 100


def _ensure_valid(errors: Dict[str, str]):
    if errors:
        raise FormValidationError(errors)


def _form_data(form: Any) -> Dict[str, Any]:
    """Form input as a dict: strings trimmed, blank optional fields dropped."""
    if isinstance(form, BaseModel):
        return form.model_dump(exclude_unset=True)
    data = {}
    for key, value in dict(form).items():
        if isinstance(value, str) and not key.endswith("password"):
            value = value.strip()
            if not value:
                continue
        data[key] = value
    return data


def _build(model_cls: Type[M], form: Any) -> M:
    """Build a request model, reporting schema failures as field errors."""
    if isinstance(form, model_cls):
        return form
    try:
        return model_cls.model_validate(_form_data(form))
    except ValidationError as e:
        errors = {
            ".".join(str(part) for part in error["loc"]) or "form": error["msg"]
            for error in e.errors()
        }
        raise FormValidationError(errors) from e


def _attempt(action: str, call: Callable, *args, **kwargs):
    try:
        return call(*args, **kwargs)
    except ApiError as e:
        logger.warning("backend_call_failed", action=action, status=e.status_code, error=e.message)
        raise


def _service_lines(lines: Any) -> List[Dict[str, Any]]:
    """Normalize line items to ``{"service": id, ...}`` so requests carry ids."""
    normalized = []
    for line in lines or []:
        data = line.model_dump() if isinstance(line, BaseModel) else dict(line)
        service = data.get("service")
        if isinstance(service, Mapping):
            data["service"] = service.get("id") or service.get("_id")
        normalized.append(data)
    return normalized


class AuthService:
    """Sign in/out, session restore and password recovery."""

    def __init__(self, backend: ClinicBackend, session: ClinicSession):
        self.backend = backend
        self.session = session

    def login(self, username: str, password: str) -> User:
        errors = {}
        if not (username or "").strip():
            errors["username"] = "Username is required"
        if not password:
            errors["password"] = "Password is required"
        _ensure_valid(errors)

        result = _attempt("login", self.backend.login, username.strip(), password)
        return self.session.login(result)

    def logout(self) -> None:
        self.session.logout()

    def check_auth_status(self) -> Optional[User]:
        """
        Restore a persisted session.

        Returns the signed-in user, or None. A token the backend no longer
        accepts ends the session.
        """
        if not self.session.token:
            return None

        try:
            self.backend.resume_session(self.session.token)
            if self.session.user is None:
                self.session.update_user(self.backend.get_profile())
        except DocSmileError as e:
            logger.warning("session_restore_failed", error=str(e))
            self.session.logout()
            return None
        return self.session.user

    def start_recovery(self, username: str) -> Dict[str, Any]:
        """Look up the account and its security question."""
        if not (username or "").strip():
            raise FormValidationError({"username": "Username is required"})
        return _attempt("forgot_verify", self.backend.forgot_verify, username.strip())

    def answer_security_question(self, user_id: str, answer: str) -> str:
        if not (answer or "").strip():
            raise FormValidationError({"answer": "Answer is required"})
        return _attempt("verify_security_answer", self.backend.verify_security_answer, user_id, answer)

    def reset_password(self, reset_token: str, new_password: str, confirm_password: str) -> None:
        errors = {}
        if len(new_password or "") < config.MIN_PASSWORD_LENGTH:
            errors["new_password"] = (
                f"New password must have at least {config.MIN_PASSWORD_LENGTH} characters"
            )
        if new_password != confirm_password:
            errors["confirm_password"] = "Passwords do not match"
        _ensure_valid(errors)
        _attempt("reset_password", self.backend.reset_password, reset_token, new_password)


class PatientService:

    def __init__(self, backend: ClinicBackend, clock: Optional[Callable[[], datetime]] = None, tz=None):
        self.backend = backend
        self.clock = clock
        self.tz = tz

    def _now(self) -> Optional[datetime]:
        return self.clock() if self.clock else None

    def _with_age(self, patient: Patient) -> Patient:
        if patient.age is not None or not patient.date_of_birth:
            return patient
        try:
            patient.age = calculate_age(patient.date_of_birth, now=self._now(), tz=self.tz)
        except ValueError:
            logger.warning("invalid_birth_date", patient_id=patient.id, value=patient.date_of_birth)
        return patient

    def list(self, page: int = 1, search: Optional[str] = None, is_active: Optional[bool] = None,
             limit: int = config.DEFAULT_PAGE_SIZE) -> Page[Patient]:
        result = self.backend.list_patients(page=page, limit=limit, search=search, is_active=is_active)
        result.items = [self._with_age(p) for p in result.items]
        return result

    def get(self, patient_id: str) -> Patient:
        return self._with_age(self.backend.get_patient(patient_id))

    def get_by_dni(self, dni: str) -> Patient:
        return self._with_age(self.backend.get_patient_by_dni(dni))

    def create(self, form: Any) -> Patient:
        _ensure_valid(validate_patient_form(form, now=self._now(), tz=self.tz))
        data = _build(PatientCreate, form)
        patient = _attempt("create_patient", self.backend.create_patient, data)
        logger.info("patient_created", patient_id=patient.id)
        return self._with_age(patient)

    def update(self, patient_id: str, form: Any) -> Patient:
        _ensure_valid(validate_patient_form(form, now=self._now(), tz=self.tz))
        data = _build(PatientCreate, form)
        return self._with_age(_attempt("update_patient", self.backend.update_patient, patient_id, data))

    def deactivate(self, patient_id: str) -> None:
        _attempt("delete_patient", self.backend.delete_patient, patient_id)

    def restore(self, patient_id: str) -> Patient:
        return self._with_age(_attempt("restore_patient", self.backend.restore_patient, patient_id))

    def stats(self) -> Dict[str, Any]:
        return self.backend.patient_stats()


class CatalogService:
    """Dental services offered by the clinic."""

    def __init__(self, backend: ClinicBackend):
        self.backend = backend

    def list(self, page: int = 1, search: Optional[str] = None, category: Optional[str] = None,
             is_active: Optional[bool] = None, limit: int = config.DEFAULT_PAGE_SIZE) -> Page[DentalService]:
        return self.backend.list_services(
            page=page, limit=limit, search=search, category=category, is_active=is_active
        )

    def get(self, service_id: str) -> DentalService:
        return self.backend.get_service(service_id)

    def categories(self) -> List[Dict[str, Any]]:
        return self.backend.list_categories()

    def by_category(self, category: str) -> List[DentalService]:
        return self.backend.services_by_category(category)

    def active_catalog(self) -> Dict[str, DentalService]:
        """Every active service, by id (walks all pages)."""
        catalog: Dict[str, DentalService] = {}
        page = 1
        while True:
            result = self.backend.list_services(page=page, limit=CATALOG_PAGE_SIZE, is_active=True)
            for service in result.items:
                catalog[service.id] = service
            if page >= result.pagination.total_pages or not result.items:
                return catalog
            page += 1

    def create(self, form: Any) -> DentalService:
        _ensure_valid(validate_service_form(form))
        return _attempt("create_service", self.backend.create_service, _build(ServiceCreate, form))

    def update(self, service_id: str, form: Any) -> DentalService:
        _ensure_valid(validate_service_form(form))
        return _attempt("update_service", self.backend.update_service, service_id, _build(ServiceCreate, form))

    def deactivate(self, service_id: str) -> None:
        _attempt("delete_service", self.backend.delete_service, service_id)

    def restore(self, service_id: str) -> DentalService:
        return _attempt("restore_service", self.backend.restore_service, service_id)

    def stats(self) -> Dict[str, Any]:
        return self.backend.service_stats()


class AppointmentService:
    """
    Scheduling.

    Bookings are checked locally first: a time range of at least the minimum
    duration, a date that is not in the past (clinic timezone) and only
    active catalog services. On update, services already on the appointment
    stay bookable even if they were deactivated since.
    """

    def __init__(self, backend: ClinicBackend, catalog: CatalogService,
                 clock: Optional[Callable[[], datetime]] = None, tz=None):
        self.backend = backend
        self.catalog = catalog
        self.clock = clock
        self.tz = tz

    def _validate(self, form: Any, allowed: Mapping[str, Any]):
        _ensure_valid(validate_appointment_form(
            form,
            now=self.clock() if self.clock else None,
            tz=self.tz,
            catalog=allowed,
        ))

    def _request(self, form: Any) -> AppointmentCreate:
        data = _form_data(form)
        data["services"] = _service_lines(data.get("services"))
        return _build(AppointmentCreate, data)

    def list(self, page: int = 1, status: Optional[str] = None, date: Optional[str] = None,
             patient_dni: Optional[str] = None, date_from: Optional[str] = None, date_to: Optional[str] = None,
             limit: int = config.DEFAULT_PAGE_SIZE) -> Page[Appointment]:
        return self.backend.list_appointments(
            page=page, limit=limit, status=status, date=date,
            patient_dni=patient_dni, date_from=date_from, date_to=date_to,
        )

    def get(self, appointment_id: str) -> Appointment:
        return self.backend.get_appointment(appointment_id)

    def by_patient_dni(self, dni: str):
        return self.backend.appointments_by_patient_dni(dni)

    def create(self, form: Any) -> Appointment:
        self._validate(form, self.catalog.active_catalog())
        appointment = _attempt("create_appointment", self.backend.create_appointment, self._request(form))
        logger.info("appointment_created", appointment_id=appointment.id, date=appointment.date)
        return appointment

    def update(self, appointment_id: str, form: Any) -> Appointment:
        existing = self.backend.get_appointment(appointment_id)
        allowed: Dict[str, Any] = dict(self.catalog.active_catalog())
        for line in existing.services:
            allowed.setdefault(line.service_id, {"is_active": True})

        self._validate(form, allowed)
        return _attempt(
            "update_appointment", self.backend.update_appointment, appointment_id, self._request(form)
        )

    def cancel(self, appointment_id: str) -> None:
        _attempt("cancel_appointment", self.backend.delete_appointment, appointment_id)

    def dashboard(self, date: Optional[str] = None, status: Optional[str] = None,
                  limit: Optional[int] = None) -> Dashboard:
        return self.backend.dashboard(date=date, status=status, limit=limit)

    def stats(self) -> Dict[str, Any]:
        return self.backend.appointment_stats()


class TreatmentService:
    """Services applied during appointments."""

    def __init__(self, backend: ClinicBackend):
        self.backend = backend

    def list(self, page: int = 1, status: Optional[str] = None, patient: Optional[str] = None,
             date: Optional[str] = None, search: Optional[str] = None,
             limit: int = config.DEFAULT_PAGE_SIZE) -> Page[AppliedService]:
        return self.backend.list_applied_services(
            page=page, limit=limit, status=status, patient=patient, date=date, search=search
        )

    def stats(self) -> Dict[str, Any]:
        return self.backend.applied_service_stats()

    def history(self, patient_id: str) -> Dict[str, Any]:
        return self.backend.patient_history(patient_id)

    def record(self, form: Any) -> AppliedService:
        _ensure_valid(validate_applied_service_form(form))
        data = _form_data(form)
        data["services"] = _service_lines(data.get("services"))
        request = _build(AppliedServiceCreate, data)
        record = _attempt("apply_services", self.backend.create_applied_service, request)
        logger.info("services_applied", appointment_id=request.appointment, lines=len(request.services))
        return record

    def update(self, record_id: str, form: Any) -> AppliedService:
        return self.backend.update_applied_service(record_id, form)

    def delete(self, record_id: str) -> None:
        self.backend.delete_applied_service(record_id)


class PaymentService:
    """Billing: free-form payments and settling appointment bills."""

    def __init__(self, backend: ClinicBackend):
        self.backend = backend

    def list(self, page: int = 1, search: Optional[str] = None, status: Optional[str] = None,
             payment_method: Optional[str] = None, date: Optional[str] = None,
             limit: int = config.DEFAULT_PAGE_SIZE) -> Page[Payment]:
        return self.backend.list_payments(
            page=page, limit=limit, search=search, status=status,
            payment_method=payment_method, date=date,
        )

    def new_draft(self, discount_type: Union[DiscountType, str] = DiscountType.PERCENTAGE,
                  method: Union[PaymentMethod, str] = PaymentMethod.CASH) -> PaymentDraft:
        return PaymentDraft(discount_type=discount_type, method=method)

    def submit(self, form: Union[PaymentDraft, PaymentCreate, Mapping[str, Any]],
               patient_id: Optional[str] = None, appointment_id: Optional[str] = None,
               notes: str = "") -> Payment:
        """
        Create a payment from a draft or a form.

        Blocks submission when the total does not match the items and
        discount, or the payment methods do not add up to the total.
        """
        if isinstance(form, PaymentDraft):
            form = form.to_request(patient_id or "", appointment_id, notes)
        _ensure_valid(validate_payment_form(form))

        if isinstance(form, PaymentCreate):
            request = form
        else:
            data = _form_data(form)
            data["services"] = _service_lines(data.get("services"))
            request = _build(PaymentCreate, data)

        payment = _attempt("create_payment", self.backend.create_payment, request)
        logger.info("payment_created", payment_id=payment.id, total=payment.total)
        return payment

    def summary(self, appointment_id: str) -> Dict[str, Any]:
        return self.backend.payment_summary(appointment_id)

    def apply_discount(self, appointment_id: str, discount: float, reason: Optional[str] = None) -> Dict[str, Any]:
        try:
            discount = float(discount)
        except (TypeError, ValueError):
            raise FormValidationError({"discount": "Discount must be a number"})
        if not 0 <= discount <= 100:
            raise FormValidationError({"discount": "Discount must be between 0 and 100"})
        return _attempt("apply_discount", self.backend.apply_discount, appointment_id, discount, reason)

    def process(self, appointment_id: str, payment_method: Union[PaymentMethod, str],
                amount_paid: Optional[float] = None, notes: Optional[str] = None) -> Dict[str, Any]:
        """Settle an appointment's bill with a single method."""
        errors = {}
        try:
            method = PaymentMethod.parse(payment_method)
        except ValueError:
            errors["payment_method"] = "Invalid payment method"
        if amount_paid is not None and float(amount_paid) < 0:
            errors["amount_paid"] = "Amount paid cannot be negative"
        _ensure_valid(errors)

        result = _attempt(
            "process_payment", self.backend.process_payment, appointment_id, method.value, amount_paid, notes
        )
        logger.info("appointment_paid", appointment_id=appointment_id, method=method.value)
        return result

    def receipt(self, appointment_id: str) -> Dict[str, Any]:
        return self.backend.get_receipt(appointment_id)

    def stats(self) -> Dict[str, Any]:
        return self.backend.payment_stats()

    def update(self, payment_id: str, form: Any) -> Payment:
        return self.backend.update_payment(payment_id, form)

    def delete(self, payment_id: str) -> None:
        self.backend.delete_payment(payment_id)


class ProfileService:
    """Signed-in clinician's account and clinic settings."""

    def __init__(self, backend: ClinicBackend, session: Optional[ClinicSession] = None):
        self.backend = backend
        self.session = session

    def get(self) -> UserProfile:
        return self.backend.get_profile()

    def update(self, form: Any) -> UserProfile:
        _ensure_valid(validate_profile_form(form))
        profile = _attempt("update_profile", self.backend.update_profile, _build(ProfileUpdate, form))
        if self.session is not None and self.session.token:
            self.session.update_user(profile)
        return profile

    def update_security_question(self, form: Any) -> None:
        _ensure_valid(validate_security_question_form(form))
        _attempt(
            "update_security_question",
            self.backend.update_security_question,
            _build(SecurityQuestionUpdate, form),
        )

    def change_password(self, form: Any) -> None:
        _ensure_valid(validate_password_form(form))
        _attempt(
            "change_password",
            self.backend.change_password,
            _get(form, "current_password", ""),
            _get(form, "new_password", ""),
        )

    def clinic_settings(self) -> Dict[str, Any]:
        return self.backend.get_clinic_settings()

    def update_clinic_settings(self, changes: Dict[str, Any]) -> Dict[str, Any]:
        return _attempt("update_clinic_settings", self.backend.update_clinic_settings, changes)

    def activity_stats(self) -> Dict[str, Any]:
        return self.backend.activity_stats()


class ClinicClient:
    """
    Everything a front-end needs, wired from configuration.

    Example:
        >>> clinic = ClinicClient(mode="static")
        >>> clinic.auth.login("doctor", "doctor123")
        >>> clinic.appointments.dashboard().today_appointments
    """

    def __init__(
        self,
        backend: Optional[ClinicBackend] = None,
        session: Optional[ClinicSession] = None,
        mode: Optional[str] = None,
        clock: Optional[Callable[[], datetime]] = None,
        tz=None
    ):
        """
        Args:
            backend: Backend to use (default: create_backend(mode))
            session: Session (default: persisted at DOCSMILE_SESSION_FILE)
            mode: "live" or "static" when no backend is given
            clock: Pinned clock for date rules (default: current time)
            tz: Clinic timezone (default: DOCSMILE_CLINIC_TIMEZONE)
        """
        self.session = session if session is not None else ClinicSession(SessionStore())
        self.backend = backend or create_backend(mode, session=self.session, clock=clock, tz=tz)
        backend = self.backend

        self.auth = AuthService(backend, self.session)
        self.patients = PatientService(backend, clock=clock, tz=tz)
        self.catalog = CatalogService(backend)
        self.appointments = AppointmentService(backend, self.catalog, clock=clock, tz=tz)
        self.treatments = TreatmentService(backend)
        self.payments = PaymentService(backend)
        self.profile = ProfileService(backend, self.session)

    @property
    def mode(self) -> str:
        return self.backend.mode

    def debounced(self, func: Callable[..., Any], delay_ms: Optional[int] = None,
                  on_error: Optional[Callable[[Exception], Any]] = None) -> Debouncer:
        """Wrap a search callback so typing triggers one call per pause."""
        return Debouncer(func, delay_ms=delay_ms, on_error=on_error)
