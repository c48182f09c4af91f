"""Test wire models: aliases, derived fields and pagination."""
import pytest
from pydantic import ValidationError

from docsmile.models import (
    AppointmentCreate,
    AppointmentServiceItem,
    DentalService,
    MedicalHistory,
    Patient,
    PatientSummary,
    PaymentPatient,
    ServiceCreate,
    paginate,
)
from docsmile.taxonomy import AppointmentType


def test_patient_from_wire():
    patient = Patient.model_validate({
        "_id": "p9",
        "dni": "12345678",
        "firstName": "Lucía",
        "lastName": "Torres",
        "dateOfBirth": "1990-01-01",
        "isActive": False,
    })

    assert patient.id == "p9"
    assert patient.full_name == "Lucía Torres"
    assert patient.is_active is False


def test_patient_to_wire_uses_backend_names():
    patient = Patient(id="p9", dni="12345678", first_name="Lucía", last_name="Torres")
    wire = patient.to_wire()

    assert wire["_id"] == "p9"
    assert wire["firstName"] == "Lucía"
    assert "email" not in wire


def test_summary_full_name_derived():
    assert PatientSummary(first_name="Ana", last_name="García").full_name == "Ana García"
    assert PaymentPatient(name="Ana García").full_name == "Ana García"


def test_medical_history_splits_comma_text():
    history = MedicalHistory(allergies="Penicilina, Látex ,", medications=None)
    assert history.allergies == ["Penicilina", "Látex"]
    assert history.medications == []


def test_service_price_and_duration_bounds():
    with pytest.raises(ValidationError):
        ServiceCreate(name="X", category="otro", price=-1, duration=30)
    with pytest.raises(ValidationError):
        ServiceCreate(name="X", category="otro", price=10, duration=0)
    assert ServiceCreate(name="X", category="otro", price=0, duration=30).price == 0


def test_service_reference_may_be_populated():
    item = AppointmentServiceItem.model_validate({
        "service": {"_id": "s1", "name": "Consulta general", "price": 500},
        "quantity": 2,
    })
    assert item.service_id == "s1"
    assert AppointmentServiceItem(service="s2").service_id == "s2"


def test_appointment_create_wire_shape():
    request = AppointmentCreate(
        patient="p1",
        services=[AppointmentServiceItem(service="s1", quantity=2)],
        date="2024-07-26",
        start_time="09:00",
        end_time="10:00",
    )
    wire = request.to_wire()

    assert wire["startTime"] == "09:00"
    assert wire["type"] == AppointmentType.CONSULTATION.value
    assert wire["services"] == [{"service": "s1", "quantity": 2}]


def test_dental_service_category_parsed_leniently():
    service = DentalService.model_validate({
        "_id": "s1", "name": "Consulta", "category": "Preventivo", "price": 1, "duration": 10,
    })
    assert service.category.value == "preventivo"


class TestPaginate:

    def test_slices_pages(self):
        page = paginate(list(range(25)), page=3, limit=10)
        assert page.items == [20, 21, 22, 23, 24]
        assert page.pagination.total_pages == 3
        assert page.pagination.total_items == 25

    def test_empty_list_has_one_page(self):
        page = paginate([], page=1, limit=10)
        assert page.items == []
        assert page.pagination.total_pages == 1

    def test_wire_names(self):
        wire = paginate([1, 2], page=1, limit=10).pagination.to_wire()
        assert wire == {"currentPage": 1, "totalPages": 1, "totalItems": 2, "itemsPerPage": 10}
