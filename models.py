"""
models.py
---------
Defines the clinic records (patients, appointments, consultations, invoices,
expenses, user accounts) as plain dictionaries keyed like the remote table
columns, plus the enumerations and invariants they must respect.
"""

import logging
import secrets
import string
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional

logger = logging.getLogger(__name__)

WALK_IN_PATIENT_ID = "divers"
MANUAL_APPOINTMENT_ID = "manual"


class RecordValidationError(ValueError):
    """A record violates one of its entity invariants."""


class InsuranceType(str, Enum):
    NONE = "AUCUNE"
    CNSS = "CNSS"
    CNOPS = "CNOPS"
    PRIVATE = "PRIVEE"


class AppointmentStatus(str, Enum):
    SCHEDULED = "Planifié"
    CONFIRMED = "Confirmé"
    COMPLETED = "Terminé"
    CANCELLED = "Annulé"
    NO_SHOW = "Absent"


class PaymentType(str, Enum):
    CASH = "Espèces"
    CHECK = "Chèque"
    CARD = "Carte Bancaire"
    TRANSFER = "Virement"


class InvoiceStatus(str, Enum):
    PAID = "PAID"
    PENDING = "PENDING"


class ExpenseCategory(str, Enum):
    FIXED = "FIXED"
    CONSUMABLE = "CONSUMABLE"
    SALARY = "SALARY"
    EQUIPMENT = "EQUIPMENT"
    TAX = "TAX"
    OTHER = "OTHER"


EXPENSE_CATEGORY_LABELS = {
    ExpenseCategory.FIXED: "Charges Fixes (Loyer, Eau, Elec)",
    ExpenseCategory.CONSUMABLE: "Consommables Médicaux",
    ExpenseCategory.SALARY: "Salaires & Primes",
    ExpenseCategory.EQUIPMENT: "Matériel & Maintenance",
    ExpenseCategory.TAX: "Taxes & Impôts",
    ExpenseCategory.OTHER: "Divers",
}


class Role(str, Enum):
    ADMIN = "Administrateur"
    DOCTOR = "Médecin"
    SECRETARY = "Secrétaire"
    ASSISTANT = "Assistante"


class Permission(str, Enum):
    DASHBOARD = "dashboard"
    PATIENTS = "patients"
    IMPORT = "import"
    AGENDA = "agenda"
    CONSULTATIONS = "consultations"
    PRESCRIPTIONS = "prescriptions"
    BILLING = "billing"
    BILLING_VIEW = "billing_view"
    FINANCE = "finance"
    USERS = "users"
    STATS = "stats"
    DMP_VIEW = "dmp_view"


VITAL_FIELDS = (
    "weight", "height", "temperature", "bloodPressure",
    "heartRate", "respiratoryRate", "oximetry", "urinaryStrip",
)
PATIENT_LIST_FIELDS = ("medicalHistory", "allergies")

_ID_ALPHABET = string.digits + string.ascii_lowercase


def generate_id(prefix: str) -> str:
    """Unique id: prefix, epoch milliseconds and a random base36 suffix."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(8))
    return f"{prefix}-{int(time.time() * 1000)}-{suffix}"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _enum_value(enum_cls, value, field_name):
    try:
        return enum_cls(value).value
    except ValueError:
        raise RecordValidationError(f"{field_name}: unknown value {value!r}") from None


def _require_id(record: Mapping):
    if not isinstance(record, Mapping):
        raise RecordValidationError("record must be an object")
    if not record.get("id") or not isinstance(record.get("id"), str):
        raise RecordValidationError("id: a non-empty string id is required")


# ---------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------

def create_patient_model(
    first_name: str,
    last_name: str,
    birth_date: str = "1990-01-01",
    phone: str = "",
    email: str = "",
    cin: str = "",
    insurance_type: str = InsuranceType.NONE.value,
    insurance_number: str = "",
    address: str = "",
    medical_history: Optional[List[str]] = None,
    allergies: Optional[List[str]] = None,
    vitals: Optional[Dict[str, str]] = None,
    id: Optional[str] = None,
    created_at: Optional[str] = None,
) -> Dict:
    """
    Creates a patient record.

    Args:
        first_name (str): Given name.
        last_name (str): Family name.
        birth_date (str): ISO date (YYYY-MM-DD).
        insurance_type (str): One of the InsuranceType values.
        medical_history (List[str]): History items, empty list when unknown.
        allergies (List[str]): Known allergies.
        vitals (Dict[str, str]): Latest known vital signs, keyed by VITAL_FIELDS.

    Returns:
        dict: Validated patient record.
    """
    record = {
        "id": id or generate_id("P"),
        "firstName": first_name,
        "lastName": last_name,
        "birthDate": birth_date,
        "phone": phone,
        "email": email,
        "cin": cin,
        "insuranceType": insurance_type,
        "insuranceNumber": insurance_number,
        "address": address,
        "medicalHistory": list(medical_history or []),
        "allergies": list(allergies or []),
        "createdAt": created_at or utc_now_iso(),
    }
    for key, value in (vitals or {}).items():
        if key not in VITAL_FIELDS:
            raise RecordValidationError(f"vitals: unknown vital sign {key!r}")
        record[key] = value
    return validate_patient(record)


def create_appointment_model(patient_id, date, reason, duration_minutes=30,
                             status=AppointmentStatus.SCHEDULED.value, notes=None, id=None) -> Dict:
    record = {
        "id": id or generate_id("A"),
        "patientId": patient_id,
        "date": date,
        "durationMinutes": duration_minutes,
        "reason": reason,
        "status": status,
    }
    if notes:
        record["notes"] = notes
    return validate_appointment(record)


def create_consultation_model(patient_id, date, diagnosis, symptoms="", notes="",
                              prescription=None, appointment_id=MANUAL_APPOINTMENT_ID,
                              vitals=None, id=None) -> Dict:
    record = {
        "id": id or generate_id("C"),
        "appointmentId": appointment_id,
        "patientId": patient_id,
        "date": date,
        "symptoms": symptoms,
        "diagnosis": diagnosis,
        "notes": notes,
        "prescription": list(prescription or []),
    }
    if vitals:
        record["vitals"] = dict(vitals)
    return validate_consultation(record)


def invoice_total(items: Iterable[Mapping]) -> float:
    return round(sum(float(item.get("price") or 0) for item in items), 2)


def create_invoice_model(patient_id, date, items, amount=None,
                         status=InvoiceStatus.PENDING.value,
                         payment_method=PaymentType.CASH.value, id=None) -> Dict:
    """Builds an invoice; the amount defaults to the sum of the line items."""
    items = [{"description": i["description"], "price": i["price"]} for i in items]
    record = {
        "id": id or generate_id("INV"),
        "patientId": patient_id or WALK_IN_PATIENT_ID,
        "date": date,
        "amount": invoice_total(items) if amount is None else amount,
        "status": status,
        "paymentMethod": payment_method,
        "items": items,
    }
    return validate_invoice(record)


def create_expense_model(date, amount, description, category=ExpenseCategory.OTHER.value,
                         payment_method=PaymentType.CASH.value, id=None) -> Dict:
    record = {
        "id": id or generate_id("EXP"),
        "date": date,
        "category": category,
        "amount": amount,
        "description": description,
        "paymentMethod": payment_method,
    }
    return validate_expense(record)


def create_user_model(name, email, role, permissions=(), password=None, id=None) -> Dict:
    record = {
        "id": id or generate_id("U"),
        "name": name,
        "email": email,
        "role": role,
        "permissions": sorted(Permission(p).value for p in permissions),
        "avatar": avatar_initials(name),
    }
    if password:
        record["password"] = password
    return validate_user(record)


# ---------------------------------------------------------------------
# Validators (identity on valid records)
# ---------------------------------------------------------------------

def validate_patient(record: Dict) -> Dict:
    _require_id(record)
    for name_field in ("firstName", "lastName"):
        value = record.get(name_field)
        if not isinstance(value, str) or not value.strip():
            raise RecordValidationError(f"{name_field}: must not be empty")
    _enum_value(InsuranceType, record.get("insuranceType", InsuranceType.NONE.value), "insuranceType")
    for list_field in PATIENT_LIST_FIELDS:
        value = record.get(list_field)
        if value is None:
            record[list_field] = []
        elif not isinstance(value, list):
            raise RecordValidationError(f"{list_field}: must be a list")
    return record


def validate_appointment(record: Dict) -> Dict:
    _require_id(record)
    duration = record.get("durationMinutes")
    if isinstance(duration, bool) or not isinstance(duration, (int, float)) or duration <= 0:
        raise RecordValidationError("durationMinutes: must be a positive number")
    _enum_value(AppointmentStatus, record.get("status"), "status")
    return record


def validate_consultation(record: Dict) -> Dict:
    _require_id(record)
    if record.get("prescription") is None:
        record["prescription"] = []
    return record


def validate_invoice(record: Dict) -> Dict:
    _require_id(record)
    _enum_value(InvoiceStatus, record.get("status"), "status")
    _enum_value(PaymentType, record.get("paymentMethod"), "paymentMethod")
    items = record.get("items") or []
    try:
        total = invoice_total(items)
    except (AttributeError, TypeError, ValueError):
        raise RecordValidationError("items: each line needs a numeric price") from None
    amount = record.get("amount")
    if isinstance(amount, (int, float)) and items and abs(total - amount) > 0.005:
        logger.debug(f"Invoice {record['id']} amount differs from its line items total")
    return record


def validate_expense(record: Dict) -> Dict:
    _require_id(record)
    _enum_value(ExpenseCategory, record.get("category"), "category")
    _enum_value(PaymentType, record.get("paymentMethod"), "paymentMethod")
    return record


def validate_user(record: Dict) -> Dict:
    _require_id(record)
    if not record.get("email"):
        raise RecordValidationError("email: required")
    _enum_value(Role, record.get("role"), "role")
    if record.get("permissions") is None:
        record["permissions"] = []
    return record


VALIDATORS = {
    "patients": validate_patient,
    "appointments": validate_appointment,
    "consultations": validate_consultation,
    "invoices": validate_invoice,
    "expenses": validate_expense,
    "users": validate_user,
}


# ---------------------------------------------------------------------
# Permissions
# ---------------------------------------------------------------------

def effective_permissions(user: Optional[Mapping]) -> FrozenSet[Permission]:
    """Admins hold every permission whatever their stored list says."""
    if not user:
        return frozenset()
    if user.get("role") == Role.ADMIN.value:
        return frozenset(Permission)
    granted = set()
    for tag in user.get("permissions") or []:
        try:
            granted.add(Permission(tag))
        except ValueError:
            logger.debug(f"Ignoring unknown permission tag {tag!r}")
    return frozenset(granted)


def has_permission(user: Optional[Mapping], permission) -> bool:
    return Permission(permission) in effective_permissions(user)


def decode_permission_form(fields: Mapping[str, object]) -> FrozenSet[Permission]:
    """Maps submitted 'perm_<tag>' checkbox fields to permission tags."""
    selected = set()
    for permission in Permission:
        value = fields.get(f"perm_{permission.value}")
        if value and str(value).lower() not in ("0", "false", "off"):
            selected.add(permission)
    return frozenset(selected)


def avatar_initials(name: str) -> str:
    return "".join(part[0] for part in (name or "").split() if part).upper()
