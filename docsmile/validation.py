"""Form validation for clinic records.

Each validator takes the raw form data (a mapping or a model) and returns a
``{field: message}`` map; an empty map means the form may be submitted.
Validation never touches the network.
"""
import re
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel

from docsmile import config
from docsmile.billing import compute_totals, validate_split
from docsmile.dates import is_past_date, is_valid_birth_date, validate_time_range
from docsmile.taxonomy import DiscountType, ServiceCategory

DNI_PATTERN = re.compile(r"^[0-9]{8,12}$")
EMAIL_PATTERN = re.compile(r"^[\w\-.]+@([\w-]+\.)+[\w-]{2,4}$")
PHONE_PATTERN = re.compile(r"^[0-9+\-\s()]{7,15}$")
PROFILE_EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def _get(form: Any, key: str, default: Any = None) -> Any:
    if isinstance(form, Mapping):
        value = form.get(key, default)
    else:
        value = getattr(form, key, default)
    return default if value is None else value


def _text(form: Any, key: str) -> str:
    value = _get(form, key, "")
    return value.strip() if isinstance(value, str) else str(value)


def _number(form: Any, key: str, default: Any = 0, cast=float) -> Optional[float]:
    """Numeric field value, or None when it is blank or not a number."""
    try:
        return cast(_get(form, key, default))
    except (TypeError, ValueError):
        return None


def _service_ref(line: Any) -> Optional[str]:
    service = _get(line, "service")
    if isinstance(service, BaseModel):
        return getattr(service, "id", None)
    if isinstance(service, Mapping):
        return service.get("_id") or service.get("id")
    return service or None


def validate_patient_form(form: Any, now: Optional[datetime] = None, tz=None) -> Dict[str, str]:
    """Validate patient form: DNI, names, contact formats, birth date."""
    errors: Dict[str, str] = {}

    dni = _text(form, "dni")
    if not dni:
        errors["dni"] = "DNI is required"
    elif not DNI_PATTERN.match(dni):
        errors["dni"] = "DNI must have between 8 and 12 digits"

    if not _text(form, "first_name"):
        errors["first_name"] = "First name is required"
    if not _text(form, "last_name"):
        errors["last_name"] = "Last name is required"

    email = _text(form, "email")
    if email and not EMAIL_PATTERN.match(email):
        errors["email"] = "Invalid email"

    phone = _text(form, "phone")
    if phone and not PHONE_PATTERN.match(phone):
        errors["phone"] = "Invalid phone number"

    if not is_valid_birth_date(_get(form, "date_of_birth"), now=now, tz=tz):
        errors["date_of_birth"] = "Date of birth cannot be in the future"

    return errors


def validate_appointment_form(
    form: Any,
    now: Optional[datetime] = None,
    tz=None,
    min_duration: Optional[int] = None,
    catalog: Optional[Mapping[str, Any]] = None
) -> Dict[str, str]:
    """
    Validate appointment form.

    Args:
        form: patient, date, start_time, end_time, services
        now: Pinned clock (default: current time)
        tz: Clinic timezone (default: configured)
        min_duration: Minimum length in minutes (default: configured)
        catalog: Services by id; when given, every referenced service must
                 exist and be active
    """
    if min_duration is None:
        min_duration = config.MIN_APPOINTMENT_MINUTES

    errors: Dict[str, str] = {}

    if not _text(form, "patient"):
        errors["patient"] = "Patient is required"

    day = _get(form, "date")
    if not day:
        errors["date"] = "Date is required"
    else:
        try:
            if is_past_date(day, now=now, tz=tz):
                errors["date"] = "Appointments cannot be scheduled in the past"
        except ValueError:
            errors["date"] = "Invalid date"

    start_time = _text(form, "start_time")
    end_time = _text(form, "end_time")
    if not start_time:
        errors["start_time"] = "Start time is required"
    if not end_time:
        errors["end_time"] = "End time is required"
    if start_time and end_time and not validate_time_range(start_time, end_time, min_duration):
        errors["end_time"] = (
            f"End time must be after start time and the appointment must last "
            f"at least {min_duration} minutes"
        )

    services = list(_get(form, "services", []))
    if not services or any(not _service_ref(line) for line in services):
        errors["services"] = "Select at least one service"
    elif any(_number(line, "quantity", 1, int) is None for line in services):
        errors["services"] = "Quantity must be a whole number"
    elif any(_number(line, "quantity", 1, int) < 1 for line in services):
        errors["services"] = "Quantity must be at least 1"
    elif catalog is not None:
        unavailable = [
            ref for ref in (_service_ref(line) for line in services)
            if ref not in catalog or not _get(catalog[ref], "is_active", True)
        ]
        if unavailable:
            errors["services"] = "Only active services can be booked"

    return errors


def validate_service_form(form: Any) -> Dict[str, str]:
    """Validate catalog service form."""
    errors: Dict[str, str] = {}

    if not _text(form, "name"):
        errors["name"] = "Service name is required"
    if not _text(form, "description"):
        errors["description"] = "Description is required"

    try:
        ServiceCategory.parse(_get(form, "category", ""))
    except ValueError:
        errors["category"] = "Invalid category"

    price = _number(form, "price")
    if price is None:
        errors["price"] = "Price must be a number"
    elif price <= 0:
        errors["price"] = "Price must be greater than 0"

    duration = _number(form, "duration", cast=int)
    if duration is None:
        errors["duration"] = "Duration must be a whole number of minutes"
    elif duration <= 0:
        errors["duration"] = "Duration must be greater than 0"

    return errors


def validate_applied_service_form(form: Any) -> Dict[str, str]:
    """Validate treatment form: an appointment and fully selected lines."""
    errors: Dict[str, str] = {}

    if not _text(form, "appointment"):
        errors["appointment"] = "Appointment is required"

    services = list(_get(form, "services", []))
    if not services:
        errors["services"] = "Add at least one service"
    elif any(not _service_ref(line) for line in services):
        errors["services"] = "Every line must have a service selected"

    return errors


def validate_payment_form(form: Any) -> Dict[str, str]:
    """
    Validate payment form.

    The submitted total must match the items and discount, and the
    payment-method amounts must add up to it (within 0.01).
    """
    errors: Dict[str, str] = {}

    if not _text(form, "patient"):
        errors["patient"] = "Patient is required"

    services = list(_get(form, "services", []))
    if not services:
        errors["services"] = "Add at least one service"
    elif any(
        _number(line, "unit_price", _get(line, "unitPrice", 0)) is None
        or _number(line, "quantity", 1, int) is None
        for line in services
    ):
        errors["services"] = "Price and quantity must be numbers"

    discount = _number(form, "discount")
    try:
        discount_type = DiscountType.parse(_get(form, "discount_type", DiscountType.PERCENTAGE))
    except ValueError:
        errors["discount_type"] = "Invalid discount type"
        discount_type = DiscountType.PERCENTAGE

    if discount is None:
        errors["discount"] = "Discount must be a number"
    elif discount < 0:
        errors["discount"] = "Discount cannot be negative"
    elif discount_type == DiscountType.PERCENTAGE and discount > 100:
        errors["discount"] = "Percentage discount cannot exceed 100"

    total = _number(form, "total")
    if total is None:
        errors["total"] = "Total must be a number"
    elif total <= 0:
        errors["total"] = "Total must be greater than 0"
    elif services and "services" not in errors and "discount" not in errors:
        expected = compute_totals(services, discount, discount_type).total
        if abs(expected - total) > config.PAYMENT_TOLERANCE:
            errors["total"] = "Total does not match the items and discount"

    methods = list(_get(form, "payment_methods", []))
    if not methods:
        errors["payment_methods"] = "Add at least one payment method"
    elif any(_number(method, "amount") is None for method in methods):
        errors["payment_methods"] = "Payment method amounts must be numbers"
    elif total is not None and not validate_split(methods, total):
        errors["payment_methods"] = "Payment method amounts must add up to the total"

    return errors


def validate_profile_form(form: Any) -> Dict[str, str]:
    errors: Dict[str, str] = {}

    if not _text(form, "full_name"):
        errors["full_name"] = "Full name is required"

    email = _text(form, "email")
    if not email:
        errors["email"] = "Email is required"
    elif not PROFILE_EMAIL_PATTERN.match(email):
        errors["email"] = "Invalid email"

    return errors


def validate_password_form(form: Any) -> Dict[str, str]:
    errors: Dict[str, str] = {}

    new_password = _get(form, "new_password", "")
    if not _get(form, "current_password", ""):
        errors["current_password"] = "Current password is required"
    if not new_password:
        errors["new_password"] = "New password is required"
    elif len(new_password) < config.MIN_PASSWORD_LENGTH:
        errors["new_password"] = (
            f"New password must have at least {config.MIN_PASSWORD_LENGTH} characters"
        )
    if new_password != _get(form, "confirm_password", ""):
        errors["confirm_password"] = "Passwords do not match"

    return errors


def validate_security_question_form(form: Any) -> Dict[str, str]:
    errors: Dict[str, str] = {}

    question = _text(form, "question")
    answer = _text(form, "answer")
    if not question:
        errors["question"] = "Question is required"
    elif len(question) > 200:
        errors["question"] = "Question cannot exceed 200 characters"
    if not answer:
        errors["answer"] = "Answer is required"
    elif len(answer) > 100:
        errors["answer"] = "Answer cannot exceed 100 characters"
    if not _get(form, "current_password", ""):
        errors["current_password"] = "Current password is required"

    return errors

