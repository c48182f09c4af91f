"""Demo data for static mode.

Records are stored in wire shape (camelCase, ``_id``) so the static backend
validates them through the same models as live responses. Appointment dates
are laid out around "today" so the dashboard always has something to show.
"""
from datetime import date, timedelta
from typing import Any, Dict, List

import bcrypt

# Demo accounts: username -> password
DEMO_CREDENTIALS = {
    "admin": "admin123",
    "doctor": "doctor123",
}

DEMO_SECURITY_ANSWER = "firulais"

# Low cost factor keeps demo start-up fast; these are not real credentials
DEMO_BCRYPT_ROUNDS = 4


def hash_secret(secret: str, rounds: int = DEMO_BCRYPT_ROUNDS) -> str:
    """Hash a password or security answer with bcrypt."""
    return bcrypt.hashpw(secret.encode(), bcrypt.gensalt(rounds=rounds)).decode()


def check_secret(secret: str, hashed: str) -> bool:
    return bcrypt.checkpw(secret.encode(), hashed.encode())


USERS: List[Dict[str, Any]] = [
    {
        "id": "1",
        "username": "admin",
        "email": "admin@happydent.com",
        "fullName": "Administrador HappyDent",
        "role": "admin",
        "profile": {
            "phone": "+51 999 000 000",
            "address": "Av. Arequipa 1234, Miraflores, Lima",
            "specialty": "Administración",
            "professionalLicense": "ADMIN001",
            "bio": "Administrador del sistema",
        },
        "lastLogin": "2024-07-24T08:00:00Z",
    },
    {
        "id": "2",
        "username": "doctor",
        "email": "doctor@happydent.com",
        "fullName": "Dr. Carlos Rodríguez",
        "role": "dentist",
        "profile": {
            "phone": "+51 999 888 777",
            "address": "Av. Arequipa 1234, Miraflores, Lima",
            "specialty": "Odontología General",
            "professionalLicense": "CED123456",
            "bio": (
                "Odontólogo con más de 10 años de experiencia en rehabilitación "
                "oral y estética dental."
            ),
        },
        "lastLogin": "2024-07-24T07:30:00Z",
    },
]

SECURITY_QUESTION = "¿Cuál fue tu primera mascota?"

PATIENTS: List[Dict[str, Any]] = [
    {
        "_id": "p1",
        "dni": "45678912",
        "firstName": "Juan",
        "lastName": "Pérez",
        "email": "juan.perez@email.com",
        "phone": "+51 999 123 456",
        "address": {
            "street": "Calle Principal 123",
            "city": "Lima",
            "state": "Lima",
            "zipCode": "15001",
            "country": "Perú",
        },
        "dateOfBirth": "1985-06-15",
        "gender": "masculino",
        "emergencyContact": {"name": "María Pérez", "relationship": "Esposa", "phone": "+51 999 987 654"},
        "medicalHistory": {
            "allergies": ["Penicilina"],
            "medications": ["Lisinopril 10mg"],
            "diseases": ["Hipertensión"],
            "notes": "Paciente regular, última visita hace 6 meses",
        },
        "isActive": True,
        "createdAt": "2024-01-15T10:30:00Z",
        "updatedAt": "2024-06-20T14:22:00Z",
    },
    {
        "_id": "p2",
        "dni": "72345678",
        "firstName": "Ana",
        "lastName": "García",
        "email": "ana.garcia@email.com",
        "phone": "+51 999 234 567",
        "address": {
            "street": "Avenida Reforma 456",
            "city": "Lima",
            "state": "Lima",
            "zipCode": "15002",
            "country": "Perú",
        },
        "dateOfBirth": "1992-03-22",
        "gender": "femenino",
        "emergencyContact": {"name": "Carlos García", "relationship": "Hermano", "phone": "+51 999 345 678"},
        "medicalHistory": {
            "allergies": [],
            "medications": ["Vitamina D"],
            "diseases": [],
            "notes": "Paciente nueva, primera consulta",
        },
        "isActive": True,
        "createdAt": "2024-06-10T09:15:00Z",
        "updatedAt": "2024-06-10T09:15:00Z",
    },
    {
        "_id": "p3",
        "dni": "40123987",
        "firstName": "Roberto",
        "lastName": "Martínez",
        "email": "roberto.martinez@email.com",
        "phone": "+51 999 345 679",
        "address": {
            "street": "Boulevard Insurgentes 789",
            "city": "Lima",
            "state": "Lima",
            "zipCode": "15003",
            "country": "Perú",
        },
        "dateOfBirth": "1978-11-08",
        "gender": "masculino",
        "emergencyContact": {"name": "Laura Martínez", "relationship": "Hija", "phone": "+51 999 456 789"},
        "medicalHistory": {
            "allergies": ["Ibuprofeno"],
            "medications": ["Metformina 500mg"],
            "diseases": ["Diabetes Tipo 2"],
            "notes": "Paciente con sensibilidad dental, requiere anestesia local",
        },
        "isActive": True,
        "createdAt": "2024-02-28T16:45:00Z",
        "updatedAt": "2024-07-15T11:30:00Z",
    },
]

SERVICES: List[Dict[str, Any]] = [
    {
        "_id": "s1",
        "name": "Consulta general",
        "description": "Examen dental completo y diagnóstico",
        "category": "preventivo",
        "price": 500.0,
        "duration": 60,
        "code": "CON-001",
    },
    {
        "_id": "s2",
        "name": "Limpieza dental",
        "description": "Profilaxis dental completa",
        "category": "preventivo",
        "price": 300.0,
        "duration": 45,
        "code": "PRE-001",
    },
    {
        "_id": "s3",
        "name": "Tratamiento de conducto",
        "description": "Endodoncia para salvar diente afectado",
        "category": "endodoncia",
        "price": 2500.0,
        "duration": 120,
        "code": "END-001",
    },
    {
        "_id": "s4",
        "name": "Blanqueamiento dental",
        "description": "Blanqueamiento profesional con láser",
        "category": "estetico",
        "price": 1500.0,
        "duration": 90,
        "code": "EST-001",
    },
    {
        "_id": "s5",
        "name": "Ortodoncia",
        "description": "Control de tratamiento de alineación dental",
        "category": "ortodoncia",
        "price": 800.0,
        "duration": 30,
        "code": "ORT-001",
    },
    {
        "_id": "s6",
        "name": "Extracción dental",
        "description": "Extracción simple o quirúrgica",
        "category": "cirugia",
        "price": 800.0,
        "duration": 60,
        "code": "CIR-001",
    },
]

CLINIC_SETTINGS: Dict[str, Any] = {
    "name": "HappyDent - Clínica Dental",
    "dentist": {
        "name": "Dr. Carlos Rodríguez",
        "specialty": "Odontología General",
        "license": "CED123456",
        "bio": "Odontólogo con más de 10 años de experiencia en rehabilitación oral y estética dental.",
    },
    "contact": {
        "phone": "+51 999 888 777",
        "address": "Av. Arequipa 1234, Miraflores, Lima",
        "email": "contacto@happydent.com",
    },
    "workingHours": {
        "monday": {"start": "09:00", "end": "18:00", "isWorking": True},
        "tuesday": {"start": "09:00", "end": "18:00", "isWorking": True},
        "wednesday": {"start": "09:00", "end": "18:00", "isWorking": True},
        "thursday": {"start": "09:00", "end": "18:00", "isWorking": True},
        "friday": {"start": "09:00", "end": "18:00", "isWorking": True},
        "saturday": {"start": "09:00", "end": "14:00", "isWorking": True},
        "sunday": {"start": "00:00", "end": "00:00", "isWorking": False},
    },
}


def _appointment(
    appointment_id: str,
    patient_id: str,
    day: date,
    start: str,
    end: str,
    services: List[Dict[str, Any]],
    status: str,
    kind: str,
    notes: str
) -> Dict[str, Any]:
    return {
        "_id": appointment_id,
        "patient": patient_id,
        "dentist": {"_id": "2", "fullName": "Dr. Carlos Rodríguez"},
        "services": services,
        "date": day.isoformat(),
        "startTime": start,
        "endTime": end,
        "status": status,
        "type": kind,
        "notes": notes,
        "createdAt": f"{(day - timedelta(days=14)).isoformat()}T09:00:00Z",
    }


def build_appointments(today: date) -> List[Dict[str, Any]]:
    """Demo appointments around ``today`` (patients/services by id)."""
    yesterday = today - timedelta(days=1)
    tomorrow = today + timedelta(days=1)
    return [
        _appointment(
            "a1", "p1", today, "09:00", "10:00",
            [{"service": "s1", "quantity": 1}],
            "completada", "consulta", "Revisión semestral de rutina",
        ),
        _appointment(
            "a2", "p2", today, "10:30", "11:15",
            [{"service": "s2", "quantity": 1}],
            "confirmada", "limpieza", "Primera consulta del paciente",
        ),
        _appointment(
            "a3", "p3", today, "11:30", "13:30",
            [{"service": "s3", "quantity": 1}],
            "programada", "tratamiento", "Segunda sesión de endodoncia",
        ),
        _appointment(
            "a4", "p1", yesterday, "14:00", "14:45",
            [{"service": "s2", "quantity": 1}],
            "completada", "limpieza", "Limpieza y pulido",
        ),
        _appointment(
            "a5", "p2", tomorrow, "16:00", "17:30",
            [{"service": "s4", "quantity": 1}, {"service": "s1", "quantity": 1}],
            "programada", "tratamiento", "Blanqueamiento y control",
        ),
    ]


def build_treatments() -> Dict[str, List[Dict[str, Any]]]:
    """Services already applied, keyed by appointment id."""
    return {
        "a1": [{"service": "s1", "quantity": 1, "discount": 0, "notes": "Sin hallazgos"}],
        "a4": [{"service": "s2", "quantity": 1, "discount": 0, "notes": "Limpieza completa sin complicaciones"}],
    }


# Appointments already settled at start-up: appointment id -> payment method
PAID_APPOINTMENTS = {
    "a1": "efectivo",
    "a4": "tarjeta_credito",
}
