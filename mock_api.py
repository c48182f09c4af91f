"""Mock clinic API.

Flask server exposing the clinic REST contract under /api, backed by the
static demo data, for developing against live mode without the real backend:
- Auth, password recovery
- Patients, services, appointments
- Applied services, payments, receipts
- Profile and clinic settings

Bearer-token auth here is for demos only: tokens are unsigned
``static-token-<ms>-<username>`` strings. Do not expose this server.

Run with: python mock_api.py
"""
from typing import Any, Dict, Optional

from flask import Flask, jsonify, request
from flask_cors import CORS
from pydantic import ValidationError

from docsmile import config
from docsmile.backends.static import StaticBackend
from docsmile.errors import ApiError, AuthenticationError
from docsmile.logging_config import RequestIDMiddleware, get_logger, setup_structured_logging
from docsmile.models import (
    AppliedServiceItem,
    AppointmentCreate,
    Page,
    PatientCreate,
    PaymentCreate,
    ProfileUpdate,
    SecurityQuestionUpdate,
    ServiceCreate,
)

logger = get_logger(__name__)

app = Flask(__name__)
CORS(app)
app.wsgi_app = RequestIDMiddleware(app.wsgi_app)

PUBLIC_PATHS = (
    "/api/auth/login",
    "/api/auth/forgot/",
    "/api/health",
)


def reset_backend(backend: Optional[StaticBackend] = None) -> StaticBackend:
    """Replace the in-memory data (fresh fixtures by default)."""
    app.config["CLINIC_BACKEND"] = backend or StaticBackend()
    return app.config["CLINIC_BACKEND"]


def get_backend() -> StaticBackend:
    if "CLINIC_BACKEND" not in app.config:
        reset_backend()
    return app.config["CLINIC_BACKEND"]


def ok(data: Any = None, message: str = "", status: int = 200):
    body: Dict[str, Any] = {"success": True, "message": message}
    if data is not None:
        body["data"] = data
    return jsonify(body), status


def page_body(page: Page, key: str) -> Dict[str, Any]:
    return {
        key: [item.to_wire() for item in page.items],
        "pagination": page.pagination.to_wire(),
    }


def body() -> Dict[str, Any]:
    return request.get_json(silent=True) or {}


def page_args() -> Dict[str, int]:
    return {
        "page": request.args.get("page", 1, type=int),
        "limit": request.args.get("limit", config.DEFAULT_PAGE_SIZE, type=int),
    }


def bool_arg(name: str) -> Optional[bool]:
    value = request.args.get(name)
    if value is None or value == "":
        return None
    return value.lower() == "true"


@app.errorhandler(ApiError)
def handle_api_error(error: ApiError):
    return jsonify({"success": False, "message": error.message}), error.status_code or 400


@app.errorhandler(ValidationError)
def handle_validation_error(error: ValidationError):
    return jsonify({
        "success": False,
        "message": "Invalid request body",
        "errors": [
            {"field": ".".join(str(p) for p in e["loc"]), "message": e["msg"]}
            for e in error.errors()
        ],
    }), 400


@app.before_request
def require_token():
    if request.method == "OPTIONS" or request.path.startswith(PUBLIC_PATHS):
        return None

    header = request.headers.get("Authorization", "")
    if not header.startswith("Bearer "):
        raise AuthenticationError("Authentication required")
    get_backend().authenticate(header[len("Bearer "):])
    return None


@app.route('/api/health', methods=['GET'])
def health():
    return ok({"status": "healthy", "mode": "static"})


# ---------------------------------------------------------------- auth


@app.route('/api/auth/login', methods=['POST'])
def login():
    data = body()
    result = get_backend().login(data.get("username", ""), data.get("password", ""))
    logger.info("login", username=result.user.username)
    return ok({"token": result.token, "user": result.user.to_wire()}, result.message)


@app.route('/api/auth/forgot/verify', methods=['POST'])
def forgot_verify():
    return ok(get_backend().forgot_verify(body().get("username", "")))


@app.route('/api/auth/forgot/answer', methods=['POST'])
def forgot_answer():
    data = body()
    token = get_backend().verify_security_answer(data.get("userId", ""), data.get("answer", ""))
    return ok({"resetToken": token})


@app.route('/api/auth/forgot/reset', methods=['POST'])
def forgot_reset():
    data = body()
    get_backend().reset_password(data.get("resetToken", ""), data.get("newPassword", ""))
    return ok(message="Password updated")


@app.route('/api/auth/change-password', methods=['POST'])
def change_password():
    data = body()
    get_backend().change_password(data.get("currentPassword", ""), data.get("newPassword", ""))
    return ok(message="Password updated")


# ---------------------------------------------------------------- patients


@app.route('/api/patients', methods=['GET'])
def list_patients():
    page = get_backend().list_patients(
        search=request.args.get("search"),
        is_active=bool_arg("isActive"),
        **page_args(),
    )
    return ok(page_body(page, "patients"))


@app.route('/api/patients', methods=['POST'])
def create_patient():
    patient = get_backend().create_patient(PatientCreate.model_validate(body()))
    return ok(patient.to_wire(), "Patient created", 201)


@app.route('/api/patients/stats/summary', methods=['GET'])
def patient_stats():
    return ok(get_backend().patient_stats())


@app.route('/api/patients/by-dni/<dni>', methods=['GET'])
def patient_by_dni(dni):
    return ok(get_backend().get_patient_by_dni(dni).to_wire())


@app.route('/api/patients/<patient_id>', methods=['GET'])
def get_patient(patient_id):
    return ok(get_backend().get_patient(patient_id).to_wire())


@app.route('/api/patients/<patient_id>', methods=['PUT'])
def update_patient(patient_id):
    patient = get_backend().update_patient(patient_id, PatientCreate.model_validate(body()))
    return ok(patient.to_wire(), "Patient updated")


@app.route('/api/patients/<patient_id>', methods=['DELETE'])
def delete_patient(patient_id):
    get_backend().delete_patient(patient_id)
    return ok(message="Patient deactivated")


@app.route('/api/patients/<patient_id>/restore', methods=['PATCH'])
def restore_patient(patient_id):
    return ok(get_backend().restore_patient(patient_id).to_wire(), "Patient restored")


# ---------------------------------------------------------------- services


@app.route('/api/services', methods=['GET'])
def list_services():
    page = get_backend().list_services(
        search=request.args.get("search"),
        category=request.args.get("category"),
        is_active=bool_arg("isActive"),
        **page_args(),
    )
    return ok(page_body(page, "services"))


@app.route('/api/services', methods=['POST'])
def create_service():
    service = get_backend().create_service(ServiceCreate.model_validate(body()))
    return ok(service.to_wire(), "Service created", 201)


@app.route('/api/services/categories', methods=['GET'])
def service_categories():
    return ok(get_backend().list_categories())


@app.route('/api/services/stats/summary', methods=['GET'])
def service_stats():
    return ok(get_backend().service_stats())


@app.route('/api/services/by-category/<category>', methods=['GET'])
def services_by_category(category):
    return ok([s.to_wire() for s in get_backend().services_by_category(category)])


@app.route('/api/services/<service_id>', methods=['GET'])
def get_service(service_id):
    return ok(get_backend().get_service(service_id).to_wire())


@app.route('/api/services/<service_id>', methods=['PUT'])
def update_service(service_id):
    service = get_backend().update_service(service_id, ServiceCreate.model_validate(body()))
    return ok(service.to_wire(), "Service updated")


@app.route('/api/services/<service_id>', methods=['DELETE'])
def delete_service(service_id):
    get_backend().delete_service(service_id)
    return ok(message="Service deactivated")


@app.route('/api/services/<service_id>/restore', methods=['PATCH'])
def restore_service(service_id):
    return ok(get_backend().restore_service(service_id).to_wire(), "Service restored")


# ---------------------------------------------------------------- appointments


@app.route('/api/appointments', methods=['GET'])
def list_appointments():
    page = get_backend().list_appointments(
        status=request.args.get("status"),
        date=request.args.get("date"),
        patient_dni=request.args.get("patientDni"),
        date_from=request.args.get("dateFrom"),
        date_to=request.args.get("dateTo"),
        **page_args(),
    )
    return ok(page_body(page, "appointments"))


@app.route('/api/appointments', methods=['POST'])
def create_appointment():
    appointment = get_backend().create_appointment(AppointmentCreate.model_validate(body()))
    logger.info("appointment_created", appointment_id=appointment.id)
    return ok(appointment.to_wire(), "Appointment created", 201)


@app.route('/api/appointments/dashboard', methods=['GET'])
def appointments_dashboard():
    dashboard = get_backend().dashboard(
        date=request.args.get("date"),
        status=request.args.get("status"),
        limit=request.args.get("limit", type=int),
    )
    return ok(dashboard.to_wire())


@app.route('/api/appointments/stats/summary', methods=['GET'])
def appointment_stats():
    return ok(get_backend().appointment_stats())


@app.route('/api/appointments/by-patient-dni/<dni>', methods=['GET'])
def appointments_by_patient_dni(dni):
    patient, appointments = get_backend().appointments_by_patient_dni(dni)
    return ok({
        "patient": patient.to_wire(),
        "appointments": [a.to_wire() for a in appointments],
    })


@app.route('/api/appointments/<appointment_id>', methods=['GET'])
def get_appointment(appointment_id):
    return ok(get_backend().get_appointment(appointment_id).to_wire())


@app.route('/api/appointments/<appointment_id>', methods=['PUT'])
def update_appointment(appointment_id):
    appointment = get_backend().update_appointment(
        appointment_id, AppointmentCreate.model_validate(body())
    )
    return ok(appointment.to_wire(), "Appointment updated")


@app.route('/api/appointments/<appointment_id>', methods=['DELETE'])
def delete_appointment(appointment_id):
    get_backend().delete_appointment(appointment_id)
    return ok(message="Appointment cancelled")


# ---------------------------------------------------------------- applied services


def treatment_body(record_id: str) -> Dict[str, Any]:
    """Treatment entry as the backend lists it (appointment status, raw lines)."""
    appointment = get_backend().get_appointment(record_id)
    return {
        "appointmentId": appointment.id,
        "patient": appointment.patient.to_wire(),
        "date": appointment.date,
        "startTime": appointment.start_time,
        "endTime": appointment.end_time,
        "type": appointment.type.value,
        "status": appointment.status.value,
        "appliedServices": [line.to_wire() for line in appointment.applied_services],
        "totalAmount": appointment.payment.total_amount,
        "finalAmount": appointment.payment.final_amount,
        "notes": appointment.notes,
        "updatedAt": appointment.updated_at,
    }


@app.route('/api/applied-services', methods=['GET'])
def list_applied_services():
    page = get_backend().list_applied_services(
        status=request.args.get("status"),
        patient=request.args.get("patient"),
        date=request.args.get("date"),
        search=request.args.get("search"),
        **page_args(),
    )
    return ok({
        "appliedServices": [treatment_body(record.id) for record in page.items],
        "pagination": page.pagination.to_wire(),
    })


@app.route('/api/applied-services/stats', methods=['GET'])
def applied_service_stats():
    return ok(get_backend().applied_service_stats())


@app.route('/api/applied-services/appointment/<appointment_id>', methods=['POST'])
def apply_services(appointment_id):
    data = body()
    items = [AppliedServiceItem.model_validate(line) for line in data.get("appliedServices", [])]
    if not items:
        raise ApiError("At least one service is required", status_code=400)

    record = get_backend().apply_services(appointment_id, items, data.get("notes"))
    appointment = get_backend().get_appointment(appointment_id)
    return ok({
        "appointment": appointment.to_wire(),
        "appliedServices": [line.to_wire() for line in appointment.applied_services],
        "totalAmount": record.total_amount,
    }, "Services applied", 201)


@app.route('/api/applied-services/patient/<patient_id>/history', methods=['GET'])
def patient_history(patient_id):
    return ok(get_backend().patient_history(patient_id))


# ---------------------------------------------------------------- payments


@app.route('/api/payments', methods=['GET'])
def list_payments():
    page = get_backend().list_payments(
        search=request.args.get("search"),
        status=request.args.get("status"),
        payment_method=request.args.get("paymentMethod"),
        date=request.args.get("date"),
        **page_args(),
    )
    return ok(page_body(page, "payments"))


@app.route('/api/payments', methods=['POST'])
def create_payment():
    payment = get_backend().create_payment(PaymentCreate.model_validate(body()))
    logger.info("payment_created", payment_id=payment.id)
    return ok(payment.to_wire(), "Payment registered", 201)


@app.route('/api/payments/stats', methods=['GET'])
def payment_stats():
    return ok(get_backend().payment_stats())


@app.route('/api/payments/appointment/<appointment_id>/summary', methods=['GET'])
def payment_summary(appointment_id):
    return ok(get_backend().payment_summary(appointment_id))


@app.route('/api/payments/appointment/<appointment_id>/discount', methods=['POST'])
def apply_discount(appointment_id):
    data = body()
    return ok(get_backend().apply_discount(appointment_id, data.get("discount"), data.get("reason")))


@app.route('/api/payments/appointment/<appointment_id>/pay', methods=['POST'])
def process_payment(appointment_id):
    data = body()
    result = get_backend().process_payment(
        appointment_id,
        data.get("paymentMethod", ""),
        data.get("amountPaid"),
        data.get("notes"),
    )
    return ok(result, "Payment processed")


@app.route('/api/payments/receipt/<appointment_id>', methods=['GET'])
def get_receipt(appointment_id):
    return ok(get_backend().get_receipt(appointment_id))


# ---------------------------------------------------------------- profile


@app.route('/api/profile', methods=['GET'])
def get_profile():
    return ok(get_backend().get_profile().to_wire())


@app.route('/api/profile', methods=['PUT'])
def update_profile():
    profile = get_backend().update_profile(ProfileUpdate.model_validate(body()))
    return ok(profile.to_wire(), "Profile updated")


@app.route('/api/profile/security-question', methods=['PUT'])
def update_security_question():
    get_backend().update_security_question(SecurityQuestionUpdate.model_validate(body()))
    return ok(message="Security question updated")


@app.route('/api/profile/clinic-settings', methods=['GET'])
def get_clinic_settings():
    return ok(get_backend().get_clinic_settings())


@app.route('/api/profile/clinic-settings', methods=['PUT'])
def update_clinic_settings():
    return ok(get_backend().update_clinic_settings(body()), "Clinic settings updated")


@app.route('/api/profile/activity-stats', methods=['GET'])
def activity_stats():
    return ok(get_backend().activity_stats())


def print_startup_info():
    """Print server startup information."""
    print("=" * 70)
    print("DOCSMILE MOCK API")
    print("=" * 70)
    print(f"\nServer: http://localhost:{config.MOCK_API_PORT}/api")
    print(f"Clinic: {config.CLINIC_INFO['name']}")
    print("Demo accounts: admin / admin123, doctor / doctor123")

    print("\nEndpoints:")
    print("   POST  /api/auth/login                       - Sign in")
    print("   GET   /api/patients                         - List patients")
    print("   GET   /api/services                         - List services")
    print("   GET   /api/appointments/dashboard           - Today's agenda")
    print("   POST  /api/applied-services/appointment/<id> - Record treatments")
    print("   POST  /api/payments/appointment/<id>/pay    - Settle a bill")
    print("   GET   /api/profile                          - Current clinician")
    print("   GET   /api/health                           - Health check")

    print("\nServer ready! Waiting for requests...")
    print("=" * 70)


if __name__ == '__main__':
    setup_structured_logging(config.LOG_LEVEL)
    print_startup_info()
    app.run(
        debug=False,
        port=config.MOCK_API_PORT,
        host='0.0.0.0'
    )
