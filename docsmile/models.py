"""Pydantic models for clinic records and request payloads.

Python attributes are snake_case; the backend speaks camelCase with Mongo
style ``_id`` keys. ``to_wire()`` produces the request body, and
``model_validate`` accepts either spelling.
"""
from typing import Any, Dict, Generic, List, Optional, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from docsmile import config
from docsmile.taxonomy import (
    AppliedServiceStatus,
    AppointmentStatus,
    AppointmentType,
    DiscountType,
    Gender,
    PaymentMethod,
    PaymentStatus,
    ServiceCategory,
)


class WireModel(BaseModel):
    """Base for models exchanged with the backend."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_wire(self) -> Dict[str, Any]:
        """JSON-ready dict with backend field names."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def _full_name(first: Optional[str], last: Optional[str]) -> str:
    return f"{first or ''} {last or ''}".strip()


# ---------------------------------------------------------------- patients


class Address(WireModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    country: Optional[str] = None


class EmergencyContact(WireModel):
    name: Optional[str] = None
    relationship: Optional[str] = None
    phone: Optional[str] = None


class MedicalHistory(WireModel):
    allergies: List[str] = Field(default_factory=list)
    medications: List[str] = Field(default_factory=list)
    diseases: List[str] = Field(default_factory=list)
    notes: Optional[str] = None

    @field_validator("allergies", "medications", "diseases", mode="before")
    @classmethod
    def split_comma_list(cls, v):
        """Forms send comma-separated text; the record keeps a list."""
        if v is None:
            return []
        if isinstance(v, str):
            return [part.strip() for part in v.split(",") if part.strip()]
        return v


class DentalHistory(WireModel):
    previous_dentist: Optional[str] = None
    last_visit: Optional[str] = None
    treatments: List[str] = Field(default_factory=list)
    notes: Optional[str] = None


class PatientBase(WireModel):
    dni: str = Field(..., description="National ID (8-12 digits)")
    first_name: str
    last_name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[Address] = None
    date_of_birth: Optional[str] = None
    gender: Optional[Gender] = None
    emergency_contact: Optional[EmergencyContact] = None
    medical_history: Optional[MedicalHistory] = None
    dental_history: Optional[DentalHistory] = None


class PatientCreate(PatientBase):
    """Create/update payload for a patient."""
    pass


class Patient(PatientBase):
    """Patient record. Deactivation is soft; inactive patients can be restored."""
    id: str = Field(..., alias="_id")
    full_name: str = ""
    is_active: bool = True
    age: Optional[int] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @model_validator(mode="after")
    def derive_full_name(self):
        if not self.full_name:
            self.full_name = _full_name(self.first_name, self.last_name)
        return self


class PatientSummary(WireModel):
    """Patient as embedded in appointments and treatment records."""
    id: str = Field("", alias="_id")
    dni: str = ""
    first_name: str = ""
    last_name: str = ""
    full_name: str = ""
    phone: Optional[str] = None
    email: Optional[str] = None

    @model_validator(mode="after")
    def derive_full_name(self):
        if not self.full_name:
            self.full_name = _full_name(self.first_name, self.last_name)
        return self


# ---------------------------------------------------------------- catalog


class ServiceBase(WireModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    category: ServiceCategory
    price: float = Field(..., ge=0, description="Price in PEN (0 or positive)")
    duration: int = Field(..., gt=0, description="Duration in minutes")
    code: Optional[str] = None
    notes: Optional[str] = None


class ServiceCreate(ServiceBase):
    """Create/update payload for a catalog service."""
    pass


class DentalService(ServiceBase):
    """Catalog service."""
    id: str = Field(..., alias="_id")
    is_active: bool = True
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class ServiceRef(WireModel):
    """Service as referenced from line items (possibly partially populated)."""
    id: str = Field(..., alias="_id")
    name: str = ""
    category: Optional[str] = None
    price: Optional[float] = None
    duration: Optional[int] = None
    code: Optional[str] = None
    is_active: Optional[bool] = None


def _service_id(service: Union[ServiceRef, str, None]) -> Optional[str]:
    if service is None or isinstance(service, str):
        return service
    return service.id


# ---------------------------------------------------------------- appointments


class AppointmentServiceItem(WireModel):
    """Scheduled line: a catalog service and how many times it is planned."""
    service: Union[ServiceRef, str]
    quantity: int = Field(1, ge=1)

    @property
    def service_id(self) -> str:
        return _service_id(self.service)


class AppliedServiceLine(WireModel):
    """Treatment embedded in an appointment record."""
    service: Union[ServiceRef, str]
    quantity: int = Field(1, ge=1)
    price: float = 0
    discount: float = 0
    total: float = 0
    notes: Optional[str] = None
    applied_at: Optional[str] = None

    @property
    def service_id(self) -> str:
        return _service_id(self.service)


class AppointmentPayment(WireModel):
    """Payment summary embedded in an appointment."""
    total_amount: float = 0
    discount: float = 0
    final_amount: float = 0
    is_paid: bool = False
    payment_method: Optional[str] = None
    paid_at: Optional[str] = None
    receipt: Optional[str] = None


class DentistRef(WireModel):
    id: str = Field("", alias="_id")
    full_name: str = ""


class AppointmentCreate(WireModel):
    """Create/update payload for an appointment."""
    patient: str
    services: List[AppointmentServiceItem]
    date: str
    start_time: str
    end_time: str
    type: AppointmentType = AppointmentType.CONSULTATION
    status: Optional[AppointmentStatus] = None
    reason_for_visit: Optional[str] = None
    notes: Optional[str] = None


class Appointment(WireModel):
    id: str = Field(..., alias="_id")
    patient: PatientSummary
    dentist: Optional[DentistRef] = None
    services: List[AppointmentServiceItem] = Field(default_factory=list)
    date: str
    start_time: str
    end_time: str
    status: AppointmentStatus = AppointmentStatus.SCHEDULED
    type: AppointmentType = AppointmentType.CONSULTATION
    notes: Optional[str] = None
    reason_for_visit: Optional[str] = None
    applied_services: List[AppliedServiceLine] = Field(default_factory=list)
    payment: AppointmentPayment = Field(default_factory=AppointmentPayment)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class Dashboard(WireModel):
    """Day view: the day's appointments, what comes next, headline counts."""
    date: str
    today_appointments: List[Appointment] = Field(default_factory=list)
    upcoming_appointments: List[Appointment] = Field(default_factory=list)
    stats: Dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------- treatments


class AppliedServiceItem(WireModel):
    """Performed line of a treatment record."""
    service: Union[ServiceRef, str]
    quantity: int = Field(1, ge=1)
    discount: float = Field(0, ge=0, le=100)
    notes: Optional[str] = ""
    completed: bool = False

    @property
    def service_id(self) -> str:
        return _service_id(self.service)


class AppointmentRef(WireModel):
    id: str = Field(..., alias="_id")
    patient: PatientSummary
    date: str
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    type: Optional[AppointmentType] = None


class AppliedServiceCreate(WireModel):
    """Payload that records treatments against an appointment."""
    appointment: str
    services: List[AppliedServiceItem]
    notes: Optional[str] = None


class AppliedService(WireModel):
    """Treatment record: what was performed during an appointment."""
    id: str = Field(..., alias="_id")
    appointment: AppointmentRef
    services: List[AppliedServiceItem] = Field(default_factory=list)
    status: AppliedServiceStatus = AppliedServiceStatus.PENDING
    total_amount: float = 0
    notes: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


# ---------------------------------------------------------------- payments


class PaymentItem(WireModel):
    service: Union[ServiceRef, str, None] = None
    service_name: str = ""
    category: Optional[str] = None
    quantity: int = Field(1, ge=1)
    unit_price: float = Field(0, ge=0)
    total: float = 0

    @property
    def service_id(self) -> Optional[str]:
        return _service_id(self.service)


class PaymentMethodEntry(WireModel):
    method: PaymentMethod
    amount: float = Field(0, ge=0)
    reference: Optional[str] = None


class PaymentPatient(WireModel):
    id: str = Field("", alias="_id")
    name: str = ""
    full_name: str = ""
    dni: str = ""
    phone: Optional[str] = None

    @model_validator(mode="after")
    def derive_full_name(self):
        if not self.full_name:
            self.full_name = self.name
        return self


class PaymentCreate(WireModel):
    """Create payload for a payment."""
    patient: str
    appointment: Optional[str] = None
    services: List[PaymentItem]
    subtotal: float
    discount: float = 0
    discount_type: DiscountType = DiscountType.PERCENTAGE
    total: float
    payment_methods: List[PaymentMethodEntry]
    notes: str = ""


class Payment(WireModel):
    id: str = Field(..., alias="_id")
    appointment_id: Optional[str] = None
    patient: PaymentPatient
    services: List[PaymentItem] = Field(default_factory=list)
    subtotal: float = 0
    discount: float = 0
    discount_type: DiscountType = DiscountType.PERCENTAGE
    discount_amount: float = 0
    final_amount: float = 0
    total: float = 0
    payment_method: Optional[str] = None
    payment_methods: List[PaymentMethodEntry] = Field(default_factory=list)
    is_paid: bool = False
    paid_at: Optional[str] = None
    receipt_number: Optional[str] = None
    notes: Optional[str] = None
    date: Optional[str] = None
    created_at: Optional[str] = None
    status: PaymentStatus = PaymentStatus.PENDING


# ---------------------------------------------------------------- accounts


class ProfessionalInfo(WireModel):
    phone: Optional[str] = None
    address: Optional[str] = None
    specialty: Optional[str] = None
    professional_license: Optional[str] = None
    bio: Optional[str] = None


class User(WireModel):
    """Signed-in clinician as returned by login."""
    id: str
    username: str
    email: str = ""
    full_name: str = ""
    role: str = "dentist"
    profile: ProfessionalInfo = Field(default_factory=ProfessionalInfo)
    last_login: Optional[str] = None


class SecurityQuestion(WireModel):
    question: str


class UserProfile(User):
    """Clinician account with its recovery question (answer never returned)."""
    security_question: Optional[SecurityQuestion] = None
    is_active: bool = True
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class ProfileUpdate(WireModel):
    full_name: Optional[str] = None
    username: Optional[str] = None
    email: Optional[str] = None
    profile: Optional[ProfessionalInfo] = None


class SecurityQuestionUpdate(WireModel):
    question: str = Field(..., min_length=1, max_length=200)
    answer: str = Field(..., min_length=1, max_length=100)
    current_password: str


class LoginResult(WireModel):
    success: bool = True
    message: str = ""
    token: str
    user: User


# ---------------------------------------------------------------- listing


class Pagination(WireModel):
    current_page: int = 1
    total_pages: int = 1
    total_items: int = 0
    items_per_page: int = config.DEFAULT_PAGE_SIZE


T = TypeVar("T")


class Page(BaseModel, Generic[T]):
    """One page of a filtered list."""
    items: List[T]
    pagination: Pagination = Field(default_factory=Pagination)


def paginate(items: List[T], page: int = 1, limit: int = config.DEFAULT_PAGE_SIZE) -> Page[T]:
    """Slice an in-memory list into a Page (page numbers start at 1)."""
    page = max(1, int(page or 1))
    limit = max(1, int(limit or config.DEFAULT_PAGE_SIZE))
    total_items = len(items)
    total_pages = max(1, -(-total_items // limit))
    start = (page - 1) * limit
    return Page(
        items=items[start:start + limit],
        pagination=Pagination(
            current_page=page,
            total_pages=total_pages,
            total_items=total_items,
            items_per_page=limit,
        ),
    )
