"""Closed enumerations used across the clinic domain.

Values are the backend's wire strings. Each member carries a display label
and a style hint (badge tone). These are lookups only: any status may be set
to any other, transition rules belong to the backend.
"""
from enum import Enum
from typing import Dict, List, Optional


class TaxonomyEnum(str, Enum):
    """Enum whose members have a display label and a style hint.

    Members also accept their Python name or hyphenated English name
    ("in-progress", "credit-card") in addition to the wire value.
    """

    @property
    def label(self) -> str:
        return LABELS[type(self)][self]

    @property
    def style(self) -> str:
        return STYLES[type(self)][self]

    @property
    def slug(self) -> str:
        return self.name.lower().replace("_", "-")

    @classmethod
    def _missing_(cls, value):
        if not isinstance(value, str):
            return None
        text = value.strip()
        for member in cls:
            if member.value == text.lower():
                return member
        key = text.upper().replace("-", "_").replace(" ", "_")
        return cls.__members__.get(key)

    @classmethod
    def parse(cls, raw):
        """Parse a wire value, member name or slug (raises ValueError)."""
        if isinstance(raw, str):
            raw = raw.strip()
        return cls(raw)

    @classmethod
    def choices(cls) -> List[str]:
        return [member.value for member in cls]


class AppointmentStatus(TaxonomyEnum):
    SCHEDULED = "programada"
    CONFIRMED = "confirmada"
    IN_PROGRESS = "en_progreso"
    COMPLETED = "completada"
    CANCELLED = "cancelada"
    NO_SHOW = "no_asistio"


class AppointmentType(TaxonomyEnum):
    CONSULTATION = "consulta"
    TREATMENT = "tratamiento"
    EMERGENCY = "emergencia"
    FOLLOW_UP = "seguimiento"
    CLEANING = "limpieza"


class AppliedServiceStatus(TaxonomyEnum):
    PENDING = "pendiente"
    IN_PROGRESS = "en_progreso"
    COMPLETED = "completado"
    CANCELLED = "cancelado"


class ServiceCategory(TaxonomyEnum):
    PREVENTIVE = "preventivo"
    RESTORATIVE = "restaurativo"
    ENDODONTICS = "endodoncia"
    PERIODONTICS = "periodoncia"
    ORTHODONTICS = "ortodoncia"
    SURGERY = "cirugia"
    PROSTHETICS = "protesis"
    COSMETIC = "estetico"
    PEDIATRIC = "pediatrico"
    OTHER = "otro"


class PaymentMethod(TaxonomyEnum):
    CASH = "efectivo"
    CREDIT_CARD = "tarjeta_credito"
    DEBIT_CARD = "tarjeta_debito"
    BANK_TRANSFER = "transferencia"
    CHECK = "cheque"
    OTHER = "otro"


class DiscountType(TaxonomyEnum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class PaymentStatus(TaxonomyEnum):
    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"


class Gender(TaxonomyEnum):
    MALE = "masculino"
    FEMALE = "femenino"
    OTHER = "otro"


LABELS: Dict[type, Dict[TaxonomyEnum, str]] = {
    AppointmentStatus: {
        AppointmentStatus.SCHEDULED: "Programada",
        AppointmentStatus.CONFIRMED: "Confirmada",
        AppointmentStatus.IN_PROGRESS: "En curso",
        AppointmentStatus.COMPLETED: "Completada",
        AppointmentStatus.CANCELLED: "Cancelada",
        AppointmentStatus.NO_SHOW: "No asistió",
    },
    AppointmentType: {
        AppointmentType.CONSULTATION: "Consulta",
        AppointmentType.TREATMENT: "Tratamiento",
        AppointmentType.EMERGENCY: "Emergencia",
        AppointmentType.FOLLOW_UP: "Seguimiento",
        AppointmentType.CLEANING: "Limpieza",
    },
    AppliedServiceStatus: {
        AppliedServiceStatus.PENDING: "Pendiente",
        AppliedServiceStatus.IN_PROGRESS: "En Progreso",
        AppliedServiceStatus.COMPLETED: "Completado",
        AppliedServiceStatus.CANCELLED: "Cancelado",
    },
    ServiceCategory: {
        ServiceCategory.PREVENTIVE: "Preventivo",
        ServiceCategory.RESTORATIVE: "Restaurativo",
        ServiceCategory.ENDODONTICS: "Endodoncia",
        ServiceCategory.PERIODONTICS: "Periodoncia",
        ServiceCategory.ORTHODONTICS: "Ortodoncia",
        ServiceCategory.SURGERY: "Cirugía",
        ServiceCategory.PROSTHETICS: "Prótesis",
        ServiceCategory.COSMETIC: "Estético",
        ServiceCategory.PEDIATRIC: "Pediátrico",
        ServiceCategory.OTHER: "Otro",
    },
    PaymentMethod: {
        PaymentMethod.CASH: "Efectivo",
        PaymentMethod.CREDIT_CARD: "Tarjeta Crédito",
        PaymentMethod.DEBIT_CARD: "Tarjeta Débito",
        PaymentMethod.BANK_TRANSFER: "Transferencia",
        PaymentMethod.CHECK: "Cheque",
        PaymentMethod.OTHER: "Otro",
    },
    DiscountType: {
        DiscountType.PERCENTAGE: "Porcentaje",
        DiscountType.FIXED: "Monto fijo",
    },
    PaymentStatus: {
        PaymentStatus.PENDING: "Pendiente",
        PaymentStatus.PAID: "Pagado",
        PaymentStatus.CANCELLED: "Anulado",
    },
    Gender: {
        Gender.MALE: "Masculino",
        Gender.FEMALE: "Femenino",
        Gender.OTHER: "Otro",
    },
}

STYLES: Dict[type, Dict[TaxonomyEnum, str]] = {
    AppointmentStatus: {
        AppointmentStatus.SCHEDULED: "primary",
        AppointmentStatus.CONFIRMED: "blue",
        AppointmentStatus.IN_PROGRESS: "accent",
        AppointmentStatus.COMPLETED: "green",
        AppointmentStatus.CANCELLED: "destructive",
        AppointmentStatus.NO_SHOW: "orange",
    },
    AppointmentType: {
        AppointmentType.CONSULTATION: "blue",
        AppointmentType.TREATMENT: "green",
        AppointmentType.EMERGENCY: "red",
        AppointmentType.FOLLOW_UP: "purple",
        AppointmentType.CLEANING: "cyan",
    },
    AppliedServiceStatus: {
        AppliedServiceStatus.PENDING: "yellow",
        AppliedServiceStatus.IN_PROGRESS: "blue",
        AppliedServiceStatus.COMPLETED: "green",
        AppliedServiceStatus.CANCELLED: "red",
    },
    ServiceCategory: {
        ServiceCategory.PREVENTIVE: "green",
        ServiceCategory.RESTORATIVE: "blue",
        ServiceCategory.ENDODONTICS: "red",
        ServiceCategory.PERIODONTICS: "purple",
        ServiceCategory.ORTHODONTICS: "yellow",
        ServiceCategory.SURGERY: "orange",
        ServiceCategory.PROSTHETICS: "cyan",
        ServiceCategory.COSMETIC: "pink",
        ServiceCategory.PEDIATRIC: "emerald",
        ServiceCategory.OTHER: "gray",
    },
    PaymentMethod: {
        PaymentMethod.CASH: "green",
        PaymentMethod.CREDIT_CARD: "blue",
        PaymentMethod.DEBIT_CARD: "purple",
        PaymentMethod.BANK_TRANSFER: "cyan",
        PaymentMethod.CHECK: "yellow",
        PaymentMethod.OTHER: "gray",
    },
    DiscountType: {
        DiscountType.PERCENTAGE: "gray",
        DiscountType.FIXED: "gray",
    },
    PaymentStatus: {
        PaymentStatus.PENDING: "yellow",
        PaymentStatus.PAID: "green",
        PaymentStatus.CANCELLED: "red",
    },
    Gender: {
        Gender.MALE: "gray",
        Gender.FEMALE: "gray",
        Gender.OTHER: "gray",
    },
}

TAXONOMIES = (
    AppointmentStatus,
    AppointmentType,
    AppliedServiceStatus,
    ServiceCategory,
    PaymentMethod,
    DiscountType,
    PaymentStatus,
    Gender,
)


def _check_exhaustive():
    for enum_cls in TAXONOMIES:
        for table_name, table in (("label", LABELS), ("style", STYLES)):
            missing = set(enum_cls) - set(table.get(enum_cls, {}))
            if missing:
                names = ", ".join(sorted(m.name for m in missing))
                raise RuntimeError(f"{enum_cls.__name__} has no {table_name} for: {names}")


_check_exhaustive()


def display_label(enum_cls, raw: Optional[str]) -> str:
    """Label for a raw value; unknown values are shown as-is."""
    if raw is None:
        return ""
    try:
        return enum_cls.parse(raw).label
    except ValueError:
        return raw


def applied_status_for(appointment_status) -> AppliedServiceStatus:
    """
    Treatment status derived from the status of its appointment.

    completed -> completed, scheduled/confirmed -> pending, the rest map by
    name (in-progress, cancelled); no-show has no treatment and counts as
    cancelled.
    """
    status = AppointmentStatus.parse(appointment_status)
    mapping = {
        AppointmentStatus.SCHEDULED: AppliedServiceStatus.PENDING,
        AppointmentStatus.CONFIRMED: AppliedServiceStatus.PENDING,
        AppointmentStatus.IN_PROGRESS: AppliedServiceStatus.IN_PROGRESS,
        AppointmentStatus.COMPLETED: AppliedServiceStatus.COMPLETED,
        AppointmentStatus.CANCELLED: AppliedServiceStatus.CANCELLED,
        AppointmentStatus.NO_SHOW: AppliedServiceStatus.CANCELLED,
    }
    return mapping[status]
