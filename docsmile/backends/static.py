"""In-memory backend over demo fixtures.

Behaves like the REST backend for every operation (filters, pagination,
soft delete, billing, receipts) without a network. Each instance starts
from a fresh copy of the fixtures; nothing is persisted.
"""
import copy
import itertools
import re
import time
import uuid
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from docsmile import config
from docsmile.backends import fixtures
from docsmile.backends.base import ClinicBackend
from docsmile.billing import (
    applied_line_total,
    calculate_change,
    compute_totals,
    line_total,
    sum_applied_totals,
    validate_split,
)
from docsmile.dates import clinic_now, clinic_today, to_clinic_date
from docsmile.errors import ApiError, AuthenticationError, NotFoundError
from docsmile.logging_config import get_logger
from docsmile.models import (
    AppliedService,
    AppliedServiceItem,
    AppliedServiceLine,
    Appointment,
    AppointmentCreate,
    AppointmentRef,
    AppointmentServiceItem,
    Dashboard,
    DentalService,
    DentistRef,
    LoginResult,
    Page,
    Patient,
    PatientCreate,
    PatientSummary,
    Payment,
    PaymentCreate,
    PaymentItem,
    PaymentMethodEntry,
    PaymentPatient,
    ProfileUpdate,
    SecurityQuestion,
    SecurityQuestionUpdate,
    ServiceCreate,
    ServiceRef,
    User,
    UserProfile,
    paginate,
)
from docsmile.taxonomy import (
    AppliedServiceStatus,
    AppointmentStatus,
    DiscountType,
    PaymentMethod,
    PaymentStatus,
    ServiceCategory,
    applied_status_for,
)

logger = get_logger(__name__)

TOKEN_PREFIX = "static-token-"
TOKEN_PATTERN = re.compile(r"^static-token-(\d{13})-(.+)$")
DEFAULT_PROFILE_USER = "2"
UPCOMING_LIMIT = 5
CLOSED_STATUSES = (AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW)


def _matches(term: Optional[str], *fields: Optional[str]) -> bool:
    if not term:
        return True
    needle = term.strip().lower()
    return any(needle in (field or "").lower() for field in fields)


def _deep_merge(target: Dict[str, Any], changes: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in changes.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            _deep_merge(target[key], value)
        else:
            target[key] = value
    return target


def _normalize_answer(answer: str) -> str:
    return answer.strip().lower()


def _parse_filter(enum_cls, raw: Optional[str]):
    """Enum filter value; empty or "all" means no filter."""
    if not raw or raw == "all":
        return None
    try:
        return enum_cls.parse(raw)
    except ValueError as e:
        raise ApiError(f"Invalid filter value: {raw}", status_code=400) from e


class StaticBackend(ClinicBackend):
    """
    Fixture-backed implementation of ClinicBackend.

    Args:
        clock: Returns the current instant (default: UTC now); naive values
               are taken as UTC
        tz: Clinic timezone (default: configured)
    """

    mode = "static"

    def __init__(self, clock: Optional[Callable[[], datetime]] = None, tz=None):
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._tz = tz
        self._ids = itertools.count(100)
        self._receipt_counter = itertools.count(1)

        self._users: Dict[str, Dict[str, Any]] = {}
        for raw in fixtures.USERS:
            user = User.model_validate(copy.deepcopy(raw))
            self._users[user.id] = {
                "user": user,
                "password_hash": fixtures.hash_secret(fixtures.DEMO_CREDENTIALS[user.username]),
                "security_question": None,
                "answer_hash": None,
                "created_at": "2024-01-01T00:00:00Z",
                "updated_at": "2024-07-24T08:00:00Z",
            }
        doctor = self._users[DEFAULT_PROFILE_USER]
        doctor["security_question"] = fixtures.SECURITY_QUESTION
        doctor["answer_hash"] = fixtures.hash_secret(_normalize_answer(fixtures.DEMO_SECURITY_ANSWER))

        self._tokens: Dict[str, str] = {}
        self._reset_tokens: Dict[str, str] = {}
        self._current_user_id: Optional[str] = None

        self._patients: Dict[str, Patient] = {
            raw["_id"]: Patient.model_validate(copy.deepcopy(raw)) for raw in fixtures.PATIENTS
        }
        self._services: Dict[str, DentalService] = {
            raw["_id"]: DentalService.model_validate({
                **copy.deepcopy(raw),
                "isActive": True,
                "createdAt": "2024-01-01T00:00:00Z",
            })
            for raw in fixtures.SERVICES
        }
        self._clinic_settings = copy.deepcopy(fixtures.CLINIC_SETTINGS)
        self._payments: List[Payment] = []

        self._appointments: Dict[str, Appointment] = {}
        for raw in fixtures.build_appointments(self._today()):
            appointment = Appointment(
                id=raw["_id"],
                patient=self._summary(self._require_patient(raw["patient"])),
                dentist=DentistRef.model_validate(raw["dentist"]),
                services=self._scheduled_lines(raw["services"]),
                date=raw["date"],
                start_time=raw["startTime"],
                end_time=raw["endTime"],
                status=AppointmentStatus.parse(raw["status"]),
                type=raw["type"],
                notes=raw["notes"],
                created_at=raw["createdAt"],
            )
            self._appointments[appointment.id] = self._rebill(appointment)

        for appointment_id, lines in fixtures.build_treatments().items():
            self._append_treatments(
                appointment_id,
                [AppliedServiceItem.model_validate(line) for line in lines],
            )
        for appointment_id, method in fixtures.PAID_APPOINTMENTS.items():
            appointment = self._appointments[appointment_id]
            self._settle(appointment, PaymentMethod.parse(method), paid_on=appointment.date)

    # ------------------------------------------------------------ helpers

    def _now(self) -> datetime:
        return clinic_now(timezone.utc, self._clock())

    def _today(self) -> date:
        return clinic_today(self._tz, self._clock())

    def _stamp(self) -> str:
        return self._now().strftime("%Y-%m-%dT%H:%M:%SZ")

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}{next(self._ids)}"

    def _in_this_month(self, value: Optional[str]) -> bool:
        if not value:
            return False
        day = to_clinic_date(value, self._tz)
        today = self._today()
        return (day.year, day.month) == (today.year, today.month)

    def _require_patient(self, patient_id: str) -> Patient:
        patient = self._patients.get(patient_id)
        if patient is None:
            raise NotFoundError("Patient not found")
        return patient

    def _require_service(self, service_id: str) -> DentalService:
        service = self._services.get(service_id)
        if service is None:
            raise NotFoundError("Service not found")
        return service

    def _require_appointment(self, appointment_id: str) -> Appointment:
        appointment = self._appointments.get(appointment_id)
        if appointment is None:
            raise NotFoundError("Appointment not found")
        return appointment

    def _require_user(self, user_id: str) -> Dict[str, Any]:
        account = self._users.get(user_id)
        if account is None:
            raise NotFoundError("User not found")
        return account

    @staticmethod
    def _summary(patient: Patient) -> PatientSummary:
        return PatientSummary(
            id=patient.id,
            dni=patient.dni,
            first_name=patient.first_name,
            last_name=patient.last_name,
            phone=patient.phone,
            email=patient.email,
        )

    @staticmethod
    def _ref(service: DentalService) -> ServiceRef:
        return ServiceRef(
            id=service.id,
            name=service.name,
            category=service.category.value,
            price=service.price,
            duration=service.duration,
            code=service.code,
            is_active=service.is_active,
        )

    def _scheduled_lines(self, lines: Iterable[Any]) -> List[AppointmentServiceItem]:
        items = []
        for line in lines:
            item = line if isinstance(line, AppointmentServiceItem) else AppointmentServiceItem.model_validate(line)
            service = self._require_service(item.service_id)
            items.append(AppointmentServiceItem(service=self._ref(service), quantity=item.quantity))
        return items

    def _bill_lines(self, appointment: Appointment) -> List[PaymentItem]:
        """Billable lines: applied treatments when recorded, else the booking."""
        if appointment.applied_services:
            return [
                PaymentItem(
                    service=line.service_id,
                    service_name=getattr(line.service, "name", ""),
                    category=getattr(line.service, "category", None),
                    quantity=line.quantity,
                    unit_price=line.price,
                    total=line.total,
                )
                for line in appointment.applied_services
            ]
        items = []
        for line in appointment.services:
            price = getattr(line.service, "price", None) or 0
            items.append(PaymentItem(
                service=line.service_id,
                service_name=getattr(line.service, "name", ""),
                category=getattr(line.service, "category", None),
                quantity=line.quantity,
                unit_price=price,
                total=line_total(price, line.quantity),
            ))
        return items

    def _rebill(self, appointment: Appointment) -> Appointment:
        """Recompute the embedded bill after services or discount change."""
        subtotal = sum(item.total for item in self._bill_lines(appointment))
        totals = compute_totals(
            [{"unit_price": subtotal, "quantity": 1}],
            appointment.payment.discount,
            DiscountType.PERCENTAGE,
        )
        payment = appointment.payment.model_copy(update={
            "total_amount": totals.subtotal,
            "final_amount": totals.total,
        })
        return appointment.model_copy(update={"payment": payment})

    def _store(self, appointment: Appointment) -> Appointment:
        self._appointments[appointment.id] = appointment
        return appointment.model_copy(deep=True)

    def _current_account(self) -> Dict[str, Any]:
        return self._require_user(self._current_user_id or DEFAULT_PROFILE_USER)

    def _check_password(self, account: Dict[str, Any], password: str):
        if not password or not fixtures.check_secret(password, account["password_hash"]):
            raise ApiError("Current password is incorrect", status_code=400)

    # ------------------------------------------------------------ auth

    def login(self, username: str, password: str) -> LoginResult:
        account = next(
            (a for a in self._users.values() if a["user"].username == username),
            None
        )
        if account is None or not fixtures.check_secret(password or "", account["password_hash"]):
            logger.warning("login_rejected", username=username)
            raise AuthenticationError("Invalid credentials")

        user = account["user"].model_copy(update={"last_login": self._stamp()})
        account["user"] = user
        token = f"{TOKEN_PREFIX}{int(time.time() * 1000)}-{username}"
        self._tokens[token] = user.id
        self._current_user_id = user.id
        return LoginResult(success=True, message="Login successful", token=token, user=user)

    def resume_session(self, token: str) -> None:
        self.authenticate(token)

    def authenticate(self, token: Optional[str]) -> User:
        """
        Resolve a bearer token to its user and make it the current user.

        Tokens issued by an earlier instance are accepted by their
        ``static-token-<ms>-<username>`` shape: a millisecond timestamp that
        is not in the future, then a known username. Demo use only.
        """
        if not token:
            raise AuthenticationError("Authentication required")

        user_id = self._tokens.get(token)
        match = TOKEN_PATTERN.match(token) if user_id is None else None
        if match and int(match.group(1)) <= int(time.time() * 1000):
            user_id = next(
                (uid for uid, a in self._users.items() if a["user"].username == match.group(2)),
                None
            )
        if user_id is None:
            raise AuthenticationError("Invalid or expired token")

        self._current_user_id = user_id
        return self._users[user_id]["user"]

    def forgot_verify(self, username: str) -> Dict[str, Any]:
        account = next(
            (a for a in self._users.values() if a["user"].username == username),
            None
        )
        if account is None:
            raise NotFoundError("User not found")
        user = account["user"]
        return {
            "userId": user.id,
            "username": user.username,
            "email": user.email,
            "securityQuestion": account["security_question"],
            "hasSecurityQuestion": account["security_question"] is not None,
        }

    def verify_security_answer(self, user_id: str, answer: str) -> str:
        account = self._require_user(user_id)
        if not account["answer_hash"]:
            raise ApiError("No security question configured", status_code=400)
        if not fixtures.check_secret(_normalize_answer(answer or ""), account["answer_hash"]):
            raise AuthenticationError("Incorrect answer")

        reset_token = uuid.uuid4().hex
        self._reset_tokens[reset_token] = user_id
        return reset_token

    def reset_password(self, reset_token: str, new_password: str) -> None:
        user_id = self._reset_tokens.get(reset_token)
        if user_id is None:
            raise ApiError("Invalid or expired reset token", status_code=400)
        if len(new_password or "") < config.MIN_PASSWORD_LENGTH:
            raise ApiError(
                f"Password must have at least {config.MIN_PASSWORD_LENGTH} characters",
                status_code=400
            )
        self._users[user_id]["password_hash"] = fixtures.hash_secret(new_password)
        del self._reset_tokens[reset_token]

    # ------------------------------------------------------------ patients

    def list_patients(self, page=1, limit=config.DEFAULT_PAGE_SIZE, search=None, is_active=None) -> Page[Patient]:
        items = [
            p.model_copy(deep=True) for p in self._patients.values()
            if (is_active is None or p.is_active == is_active)
            and _matches(search, p.full_name, p.dni, p.email, p.phone)
        ]
        items.sort(key=lambda p: (p.last_name.lower(), p.first_name.lower()))
        return paginate(items, page, limit)

    def get_patient(self, patient_id: str) -> Patient:
        return self._require_patient(patient_id).model_copy(deep=True)

    def get_patient_by_dni(self, dni: str) -> Patient:
        patient = next((p for p in self._patients.values() if p.dni == dni), None)
        if patient is None:
            raise NotFoundError("Patient not found")
        return patient.model_copy(deep=True)

    def _check_dni_free(self, dni: str, patient_id: Optional[str] = None):
        if any(p.dni == dni and p.id != patient_id for p in self._patients.values()):
            raise ApiError("A patient with this DNI already exists", status_code=400)

    def create_patient(self, data: PatientCreate) -> Patient:
        self._check_dni_free(data.dni)
        stamp = self._stamp()
        patient = Patient.model_validate({
            **data.model_dump(by_alias=True),
            "_id": self._next_id("p"),
            "isActive": True,
            "createdAt": stamp,
            "updatedAt": stamp,
        })
        self._patients[patient.id] = patient
        return patient.model_copy(deep=True)

    def update_patient(self, patient_id: str, data: PatientCreate) -> Patient:
        existing = self._require_patient(patient_id)
        self._check_dni_free(data.dni, patient_id)
        patient = Patient.model_validate({
            **existing.model_dump(by_alias=True),
            **data.model_dump(by_alias=True, exclude_unset=True),
            "fullName": "",
            "updatedAt": self._stamp(),
        })
        self._patients[patient_id] = patient

        summary = self._summary(patient)
        for appointment in list(self._appointments.values()):
            if appointment.patient.id == patient_id:
                self._appointments[appointment.id] = appointment.model_copy(update={"patient": summary})
        return patient.model_copy(deep=True)

    def delete_patient(self, patient_id: str) -> None:
        patient = self._require_patient(patient_id)
        self._patients[patient_id] = patient.model_copy(
            update={"is_active": False, "updated_at": self._stamp()}
        )

    def restore_patient(self, patient_id: str) -> Patient:
        patient = self._require_patient(patient_id).model_copy(
            update={"is_active": True, "updated_at": self._stamp()}
        )
        self._patients[patient_id] = patient
        return patient.model_copy(deep=True)

    def patient_stats(self) -> Dict[str, Any]:
        patients = list(self._patients.values())
        active = sum(1 for p in patients if p.is_active)
        return {
            "total": len(patients),
            "active": active,
            "inactive": len(patients) - active,
            "newThisMonth": sum(1 for p in patients if self._in_this_month(p.created_at)),
        }

    # ------------------------------------------------------------ catalog

    def list_services(self, page=1, limit=config.DEFAULT_PAGE_SIZE, search=None, category=None,
                      is_active=None) -> Page[DentalService]:
        wanted = _parse_filter(ServiceCategory, category)
        items = [
            s.model_copy(deep=True) for s in self._services.values()
            if (is_active is None or s.is_active == is_active)
            and (wanted is None or s.category == wanted)
            and _matches(search, s.name, s.description, s.code)
        ]
        items.sort(key=lambda s: s.name.lower())
        return paginate(items, page, limit)

    def get_service(self, service_id: str) -> DentalService:
        return self._require_service(service_id).model_copy(deep=True)

    def list_categories(self) -> List[Dict[str, Any]]:
        counts: Dict[ServiceCategory, int] = {}
        for service in self._services.values():
            if service.is_active:
                counts[service.category] = counts.get(service.category, 0) + 1
        return [
            {"category": category.value, "label": category.label, "count": counts[category]}
            for category in ServiceCategory if category in counts
        ]

    def services_by_category(self, category: str) -> List[DentalService]:
        wanted = _parse_filter(ServiceCategory, category)
        return [
            s.model_copy(deep=True) for s in self._services.values()
            if s.category == wanted and s.is_active
        ]

    def create_service(self, data: ServiceCreate) -> DentalService:
        stamp = self._stamp()
        service = DentalService.model_validate({
            **data.model_dump(by_alias=True),
            "_id": self._next_id("s"),
            "isActive": True,
            "createdAt": stamp,
            "updatedAt": stamp,
        })
        self._services[service.id] = service
        return service.model_copy(deep=True)

    def update_service(self, service_id: str, data: ServiceCreate) -> DentalService:
        existing = self._require_service(service_id)
        service = DentalService.model_validate({
            **existing.model_dump(by_alias=True),
            **data.model_dump(by_alias=True, exclude_unset=True),
            "updatedAt": self._stamp(),
        })
        self._services[service_id] = service
        return service.model_copy(deep=True)

    def delete_service(self, service_id: str) -> None:
        service = self._require_service(service_id)
        self._services[service_id] = service.model_copy(
            update={"is_active": False, "updated_at": self._stamp()}
        )

    def restore_service(self, service_id: str) -> DentalService:
        service = self._require_service(service_id).model_copy(
            update={"is_active": True, "updated_at": self._stamp()}
        )
        self._services[service_id] = service
        return service.model_copy(deep=True)

    def service_stats(self) -> Dict[str, Any]:
        services = list(self._services.values())
        active = [s for s in services if s.is_active]
        by_category: Dict[str, int] = {}
        for service in active:
            by_category[service.category.value] = by_category.get(service.category.value, 0) + 1
        return {
            "total": len(services),
            "active": len(active),
            "inactive": len(services) - len(active),
            "byCategory": by_category,
            "averagePrice": round(sum(s.price for s in active) / len(active), 2) if active else 0,
        }

    # ------------------------------------------------------------ appointments

    def list_appointments(self, page=1, limit=config.DEFAULT_PAGE_SIZE, status=None, date=None,
                          patient_dni=None, date_from=None, date_to=None) -> Page[Appointment]:
        wanted = _parse_filter(AppointmentStatus, status)
        items = [
            a.model_copy(deep=True) for a in self._appointments.values()
            if (wanted is None or a.status == wanted)
            and (not date or a.date == date)
            and (not patient_dni or a.patient.dni == patient_dni)
            and (not date_from or a.date >= date_from)
            and (not date_to or a.date <= date_to)
        ]
        items.sort(key=lambda a: (a.date, a.start_time), reverse=True)
        return paginate(items, page, limit)

    def get_appointment(self, appointment_id: str) -> Appointment:
        return self._require_appointment(appointment_id).model_copy(deep=True)

    def appointments_by_patient_dni(self, dni: str) -> Tuple[Patient, List[Appointment]]:
        patient = self.get_patient_by_dni(dni)
        appointments = [
            a.model_copy(deep=True) for a in self._appointments.values()
            if a.patient.id == patient.id
        ]
        appointments.sort(key=lambda a: (a.date, a.start_time), reverse=True)
        return patient, appointments

    def _check_bookable(self, items: List[AppointmentServiceItem], already_booked: Iterable[str] = ()):
        booked = set(already_booked)
        for item in items:
            if item.service_id in booked:
                continue
            service = self._require_service(item.service_id)
            if not service.is_active:
                raise ApiError(f"Service '{service.name}' is not available", status_code=400)

    def create_appointment(self, data: AppointmentCreate) -> Appointment:
        patient = self._require_patient(data.patient)
        self._check_bookable(data.services)
        account = self._current_account()
        stamp = self._stamp()

        appointment = Appointment(
            id=self._next_id("a"),
            patient=self._summary(patient),
            dentist=DentistRef(id=account["user"].id, full_name=account["user"].full_name),
            services=self._scheduled_lines(data.services),
            date=data.date,
            start_time=data.start_time,
            end_time=data.end_time,
            status=data.status or AppointmentStatus.SCHEDULED,
            type=data.type,
            notes=data.notes,
            reason_for_visit=data.reason_for_visit,
            created_at=stamp,
            updated_at=stamp,
        )
        return self._store(self._rebill(appointment))

    def update_appointment(self, appointment_id: str, data: AppointmentCreate) -> Appointment:
        existing = self._require_appointment(appointment_id)
        patient = self._require_patient(data.patient)
        self._check_bookable(data.services, already_booked=(s.service_id for s in existing.services))

        appointment = existing.model_copy(update={
            "patient": self._summary(patient),
            "services": self._scheduled_lines(data.services),
            "date": data.date,
            "start_time": data.start_time,
            "end_time": data.end_time,
            "status": data.status or existing.status,
            "type": data.type,
            "notes": data.notes,
            "reason_for_visit": data.reason_for_visit,
            "updated_at": self._stamp(),
        })
        return self._store(self._rebill(appointment))

    def delete_appointment(self, appointment_id: str) -> None:
        appointment = self._require_appointment(appointment_id)
        self._appointments[appointment_id] = appointment.model_copy(update={
            "status": AppointmentStatus.CANCELLED,
            "updated_at": self._stamp(),
        })

    def appointment_stats(self) -> Dict[str, Any]:
        today = self._today()
        week_end = (today + timedelta(days=7)).isoformat()
        day = today.isoformat()
        appointments = list(self._appointments.values())
        todays = [a for a in appointments if a.date == day]
        past = [a for a in appointments if a.date <= day and a.status != AppointmentStatus.CANCELLED]
        completed = [a for a in past if a.status == AppointmentStatus.COMPLETED]
        return {
            "today": {
                "total": len(todays),
                "completed": sum(1 for a in todays if a.status == AppointmentStatus.COMPLETED),
                "pending": sum(
                    1 for a in todays
                    if a.status in (AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED)
                ),
                "cancelled": sum(1 for a in todays if a.status == AppointmentStatus.CANCELLED),
            },
            "upcomingWeek": sum(
                1 for a in appointments
                if day < a.date <= week_end and a.status not in CLOSED_STATUSES
            ),
            "thisMonth": sum(1 for a in appointments if self._in_this_month(a.date)),
            "completionRate": round(100 * len(completed) / len(past), 1) if past else 0,
        }

    def dashboard(self, date=None, status=None, limit=None) -> Dashboard:
        day = date or self._today().isoformat()
        wanted = _parse_filter(AppointmentStatus, status)
        todays = sorted(
            (a for a in self._appointments.values()
             if a.date == day and (wanted is None or a.status == wanted)),
            key=lambda a: a.start_time,
        )
        upcoming = sorted(
            (a for a in self._appointments.values()
             if a.date > day and a.status not in CLOSED_STATUSES),
            key=lambda a: (a.date, a.start_time),
        )[:limit or UPCOMING_LIMIT]
        return Dashboard(
            date=day,
            today_appointments=[a.model_copy(deep=True) for a in todays],
            upcoming_appointments=[a.model_copy(deep=True) for a in upcoming],
            stats=self.appointment_stats(),
        )

    # ------------------------------------------------------------ treatments

    def _treatment_record(self, appointment: Appointment) -> AppliedService:
        first_applied = min(
            (line.applied_at for line in appointment.applied_services if line.applied_at),
            default=None
        )
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
            total_amount=appointment.payment.final_amount,
            notes=appointment.notes,
            created_at=first_applied,
            updated_at=appointment.updated_at,
        )

    def _treatment_records(self) -> List[AppliedService]:
        return [
            self._treatment_record(a) for a in self._appointments.values()
            if a.applied_services
        ]

    def list_applied_services(self, page=1, limit=config.DEFAULT_PAGE_SIZE, status=None, patient=None,
                              date=None, search=None) -> Page[AppliedService]:
        wanted = _parse_filter(AppliedServiceStatus, status)
        items = []
        for record in self._treatment_records():
            ref = record.appointment
            service_names = [getattr(item.service, "name", "") for item in record.services]
            if wanted is not None and record.status != wanted:
                continue
            if patient and ref.patient.id != patient:
                continue
            if date and ref.date != date:
                continue
            if not _matches(search, ref.patient.full_name, ref.patient.dni, *service_names):
                continue
            items.append(record)
        items.sort(key=lambda r: (r.appointment.date, r.appointment.start_time or ""), reverse=True)
        return paginate(items, page, limit)

    def applied_service_stats(self) -> Dict[str, Any]:
        records = self._treatment_records()
        day = self._today().isoformat()

        def count(status):
            return sum(1 for r in records if r.status == status)

        return {
            "total": len(records),
            "pending": count(AppliedServiceStatus.PENDING),
            "inProgress": count(AppliedServiceStatus.IN_PROGRESS),
            "completed": count(AppliedServiceStatus.COMPLETED),
            "cancelled": count(AppliedServiceStatus.CANCELLED),
            "today": sum(1 for r in records if r.appointment.date == day),
            "totalRevenue": sum_applied_totals(
                r for r in records if r.status == AppliedServiceStatus.COMPLETED
            ),
        }

    def _append_treatments(self, appointment_id: str, items: List[AppliedServiceItem],
                           notes: Optional[str] = None) -> Appointment:
        appointment = self._require_appointment(appointment_id)
        if appointment.payment.is_paid:
            raise ApiError("Appointment is already paid", status_code=400)

        stamp = self._stamp()
        lines = list(appointment.applied_services)
        for item in items:
            service = self._require_service(item.service_id)
            lines.append(AppliedServiceLine(
                service=self._ref(service),
                quantity=item.quantity,
                price=service.price,
                discount=item.discount,
                total=applied_line_total(service.price, item.quantity, item.discount),
                notes=item.notes,
                applied_at=stamp,
            ))

        update: Dict[str, Any] = {"applied_services": lines, "updated_at": stamp}
        if notes:
            update["notes"] = notes
        appointment = self._rebill(appointment.model_copy(update=update))
        self._appointments[appointment_id] = appointment
        return appointment

    def apply_services(self, appointment_id: str, items: List[AppliedServiceItem],
                       notes: Optional[str] = None) -> AppliedService:
        appointment = self._append_treatments(appointment_id, items, notes)
        return self._treatment_record(appointment)

    def patient_history(self, patient_id: str) -> Dict[str, Any]:
        patient = self._require_patient(patient_id)
        visits = sorted(
            (a for a in self._appointments.values()
             if a.patient.id == patient_id and a.applied_services),
            key=lambda a: (a.date, a.start_time),
            reverse=True,
        )
        history = [
            {
                "appointmentId": a.id,
                "date": a.date,
                "type": a.type.value,
                "status": a.status.value,
                "dentist": a.dentist.to_wire() if a.dentist else None,
                "appliedServices": [line.to_wire() for line in a.applied_services],
                "totalAmount": a.payment.total_amount,
                "finalAmount": a.payment.final_amount,
                "notes": a.notes,
            }
            for a in visits
        ]
        return {
            "patient": patient.to_wire(),
            "history": history,
            "stats": {
                "totalVisits": len(history),
                "totalServicesApplied": sum(
                    line.quantity for a in visits for line in a.applied_services
                ),
                "totalAmountSpent": sum(a.payment.final_amount for a in visits if a.payment.is_paid),
                "lastVisit": history[0]["date"] if history else None,
            },
        }

    # ------------------------------------------------------------ payments

    def _record_payment(
        self,
        patient: PatientSummary,
        appointment_id: Optional[str],
        items: List[PaymentItem],
        discount: float,
        discount_type: DiscountType,
        methods: List[PaymentMethodEntry],
        notes: Optional[str],
        paid_on: Optional[str] = None
    ) -> Payment:
        totals = compute_totals(items, discount, discount_type)
        day = paid_on or self._today().isoformat()
        stamp = self._stamp()
        receipt_number = f"REC-{day.replace('-', '')}-{next(self._receipt_counter):04d}"
        payment = Payment(
            id=self._next_id("pay"),
            appointment_id=appointment_id,
            patient=PaymentPatient(
                id=patient.id,
                name=patient.full_name,
                dni=patient.dni,
                phone=patient.phone,
            ),
            services=items,
            subtotal=totals.subtotal,
            discount=discount,
            discount_type=discount_type,
            discount_amount=totals.discount_amount,
            final_amount=totals.total,
            total=totals.total,
            payment_method=methods[0].method.value if methods else None,
            payment_methods=methods,
            is_paid=True,
            paid_at=stamp,
            receipt_number=receipt_number,
            notes=notes,
            date=day,
            created_at=stamp,
            status=PaymentStatus.PAID,
        )
        self._payments.append(payment)
        return payment

    def _settle(self, appointment: Appointment, method: PaymentMethod, notes: Optional[str] = None,
                paid_on: Optional[str] = None) -> Payment:
        amount = appointment.payment.final_amount
        payment = self._record_payment(
            appointment.patient,
            appointment.id,
            self._bill_lines(appointment),
            appointment.payment.discount,
            DiscountType.PERCENTAGE,
            [PaymentMethodEntry(method=method, amount=amount)],
            notes,
            paid_on=paid_on,
        )
        self._appointments[appointment.id] = appointment.model_copy(update={
            "payment": appointment.payment.model_copy(update={
                "is_paid": True,
                "payment_method": method.value,
                "paid_at": payment.paid_at,
                "receipt": payment.receipt_number,
            }),
        })
        return payment

    def list_payments(self, page=1, limit=config.DEFAULT_PAGE_SIZE, search=None, status=None,
                      payment_method=None, date=None) -> Page[Payment]:
        wanted_status = _parse_filter(PaymentStatus, status)
        wanted_method = _parse_filter(PaymentMethod, payment_method)
        items = [
            p.model_copy(deep=True) for p in self._payments
            if (wanted_status is None or p.status == wanted_status)
            and (wanted_method is None or any(m.method == wanted_method for m in p.payment_methods))
            and (not date or p.date == date)
            and _matches(search, p.patient.full_name, p.patient.dni, p.receipt_number)
        ]
        items.sort(key=lambda p: (p.date or "", p.created_at or ""), reverse=True)
        return paginate(items, page, limit)

    def create_payment(self, data: PaymentCreate) -> Payment:
        patient = self._summary(self._require_patient(data.patient))

        appointment = None
        if data.appointment:
            appointment = self._require_appointment(data.appointment)
            if appointment.payment.is_paid:
                raise ApiError("Appointment is already paid", status_code=400)

        items = []
        for item in data.services:
            service = self._services.get(item.service_id) if item.service_id else None
            items.append(item.model_copy(update={
                "service_name": item.service_name or (service.name if service else ""),
                "category": item.category or (service.category.value if service else None),
                "total": line_total(item.unit_price, item.quantity),
            }))

        totals = compute_totals(items, data.discount, data.discount_type)
        if abs(totals.total - data.total) > config.PAYMENT_TOLERANCE:
            raise ApiError("Total does not match the items and discount", status_code=400)
        if not data.payment_methods or not validate_split(data.payment_methods, totals.total):
            raise ApiError("Payment method amounts must add up to the total", status_code=400)

        payment = self._record_payment(
            patient,
            data.appointment,
            items,
            data.discount,
            data.discount_type,
            list(data.payment_methods),
            data.notes,
        )
        if appointment is not None:
            self._appointments[appointment.id] = appointment.model_copy(update={
                "payment": appointment.payment.model_copy(update={
                    "is_paid": True,
                    "payment_method": payment.payment_method,
                    "paid_at": payment.paid_at,
                    "receipt": payment.receipt_number,
                }),
            })
        return payment.model_copy(deep=True)

    def payment_summary(self, appointment_id: str) -> Dict[str, Any]:
        appointment = self._require_appointment(appointment_id)
        bill = appointment.payment
        return {
            "appointmentId": appointment.id,
            "date": appointment.date,
            "patient": {"name": appointment.patient.full_name, "dni": appointment.patient.dni},
            "services": [item.to_wire() for item in self._bill_lines(appointment)],
            "subtotal": bill.total_amount,
            "discount": bill.discount,
            "discountAmount": bill.total_amount - bill.final_amount,
            "finalAmount": bill.final_amount,
            "isPaid": bill.is_paid,
            "paymentMethod": bill.payment_method,
            "receipt": bill.receipt,
        }

    def apply_discount(self, appointment_id: str, discount: float, reason: Optional[str] = None) -> Dict[str, Any]:
        appointment = self._require_appointment(appointment_id)
        if appointment.payment.is_paid:
            raise ApiError("Appointment is already paid", status_code=400)
        try:
            discount = float(discount)
        except (TypeError, ValueError):
            raise ApiError("Discount must be a number", status_code=400)
        if not 0 <= discount <= 100:
            raise ApiError("Discount must be between 0 and 100", status_code=400)

        appointment = self._rebill(appointment.model_copy(update={
            "payment": appointment.payment.model_copy(update={"discount": float(discount)}),
        }))
        self._appointments[appointment_id] = appointment
        return {
            "originalAmount": appointment.payment.total_amount,
            "discount": appointment.payment.discount,
            "discountAmount": appointment.payment.total_amount - appointment.payment.final_amount,
            "finalAmount": appointment.payment.final_amount,
            "reason": reason,
        }

    def process_payment(self, appointment_id: str, payment_method: str, amount_paid: Optional[float] = None,
                        notes: Optional[str] = None) -> Dict[str, Any]:
        appointment = self._require_appointment(appointment_id)
        try:
            method = PaymentMethod.parse(payment_method)
        except ValueError as e:
            raise ApiError(f"Invalid payment method: {payment_method}", status_code=400) from e
        if appointment.payment.is_paid:
            raise ApiError("Appointment is already paid", status_code=400)

        due = appointment.payment.final_amount
        if amount_paid is not None and float(amount_paid) < due - config.PAYMENT_TOLERANCE:
            raise ApiError("Amount paid is less than the amount due", status_code=400)

        self._settle(appointment, method, notes)
        return {
            "appointment": self.get_appointment(appointment_id).to_wire(),
            "receipt": self.get_receipt(appointment_id),
            "change": calculate_change(amount_paid if amount_paid is not None else due, due),
        }

    def get_receipt(self, appointment_id: str) -> Dict[str, Any]:
        appointment = self._require_appointment(appointment_id)
        bill = appointment.payment
        if not bill.is_paid:
            raise NotFoundError("No receipt for this appointment")
        return {
            "receiptNumber": bill.receipt,
            "date": bill.paid_at,
            "appointmentDate": appointment.date,
            "patient": {
                "name": appointment.patient.full_name,
                "dni": appointment.patient.dni,
                "phone": appointment.patient.phone,
            },
            "dentist": {"name": appointment.dentist.full_name if appointment.dentist else ""},
            "services": [item.to_wire() for item in self._bill_lines(appointment)],
            "totals": {
                "subtotal": bill.total_amount,
                "generalDiscount": bill.discount,
                "discountAmount": bill.total_amount - bill.final_amount,
                "finalAmount": bill.final_amount,
                "paymentMethod": bill.payment_method,
            },
            "currency": config.CURRENCY,
            "clinicInfo": dict(config.CLINIC_INFO),
        }

    def payment_stats(self) -> Dict[str, Any]:
        day = self._today().isoformat()
        paid = [p for p in self._payments if p.status == PaymentStatus.PAID]
        pending = [
            a for a in self._appointments.values()
            if not a.payment.is_paid and a.status not in CLOSED_STATUSES
        ]
        by_method: Dict[str, float] = {}
        for payment in paid:
            for entry in payment.payment_methods:
                by_method[entry.method.value] = by_method.get(entry.method.value, 0) + entry.amount
        return {
            "totalRevenue": sum(p.final_amount for p in paid),
            "todayRevenue": sum(p.final_amount for p in paid if p.date == day),
            "monthRevenue": sum(p.final_amount for p in paid if self._in_this_month(p.date)),
            "totalPayments": len(paid),
            "pendingAmount": sum(a.payment.final_amount for a in pending),
            "pendingCount": len(pending),
            "byMethod": by_method,
        }

    # ------------------------------------------------------------ profile

    def _profile(self, account: Dict[str, Any]) -> UserProfile:
        question = account["security_question"]
        return UserProfile(
            **account["user"].model_dump(),
            security_question=SecurityQuestion(question=question) if question else None,
            is_active=True,
            created_at=account["created_at"],
            updated_at=account["updated_at"],
        )

    def get_profile(self) -> UserProfile:
        return self._profile(self._current_account())

    def update_profile(self, data: ProfileUpdate) -> UserProfile:
        account = self._current_account()
        user = account["user"]
        if data.username and any(
            a["user"].username == data.username and a["user"].id != user.id
            for a in self._users.values()
        ):
            raise ApiError("Username already taken", status_code=400)

        changes = data.model_dump(exclude_none=True, exclude={"profile"})
        if data.profile is not None:
            changes["profile"] = user.profile.model_copy(
                update=data.profile.model_dump(exclude_none=True)
            )
        account["user"] = user.model_copy(update=changes)
        account["updated_at"] = self._stamp()
        return self._profile(account)

    def update_security_question(self, data: SecurityQuestionUpdate) -> None:
        account = self._current_account()
        self._check_password(account, data.current_password)
        account["security_question"] = data.question.strip()
        account["answer_hash"] = fixtures.hash_secret(_normalize_answer(data.answer))
        account["updated_at"] = self._stamp()

    def change_password(self, current_password: str, new_password: str) -> None:
        account = self._current_account()
        self._check_password(account, current_password)
        if len(new_password or "") < config.MIN_PASSWORD_LENGTH:
            raise ApiError(
                f"Password must have at least {config.MIN_PASSWORD_LENGTH} characters",
                status_code=400
            )
        account["password_hash"] = fixtures.hash_secret(new_password)
        account["updated_at"] = self._stamp()

    def get_clinic_settings(self) -> Dict[str, Any]:
        return copy.deepcopy(self._clinic_settings)

    def update_clinic_settings(self, changes: Dict[str, Any]) -> Dict[str, Any]:
        _deep_merge(self._clinic_settings, copy.deepcopy(changes))
        return self.get_clinic_settings()

    def activity_stats(self) -> Dict[str, Any]:
        account = self._current_account()
        user = account["user"]
        appointments = list(self._appointments.values())
        this_month = [a for a in appointments if self._in_this_month(a.date)]

        filled = [
            user.full_name,
            user.email,
            user.profile.phone,
            user.profile.address,
            user.profile.specialty,
            user.profile.professional_license,
            user.profile.bio,
            account["security_question"],
        ]
        return {
            "appointments": {"total": len(appointments), "thisMonth": len(this_month)},
            "patients": {
                "total": len(self._patients),
                "activeThisMonth": len({a.patient.id for a in this_month}),
            },
            "lastLogin": user.last_login,
            "accountCreated": account["created_at"],
            "profileCompleteness": round(100 * sum(1 for f in filled if f) / len(filled)),
        }
