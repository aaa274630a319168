"""
seed_data.py
------------
Built-in demo records returned for a collection whose local cache has never
been written. Dates relative to "today" are computed on each call.
"""

from datetime import datetime, timedelta, timezone

from models import (
    AppointmentStatus, ExpenseCategory, InvoiceStatus, PaymentType, Permission, Role,
)


def _iso(dt):
    return dt.isoformat().replace("+00:00", "Z")


def seed_users():
    return [
        {
            "id": "u1",
            "name": "Dr. Hasnaa El Malki",
            "email": "admin@cmhe.ma",
            "role": Role.ADMIN.value,
            "avatar": "HM",
            "permissions": [p.value for p in Permission],
        },
        {
            "id": "u2",
            "name": "Secrétaire Principale",
            "email": "secretaire@cmhe.ma",
            "role": Role.SECRETARY.value,
            "avatar": "SP",
            "permissions": [p.value for p in (
                Permission.DASHBOARD, Permission.PATIENTS, Permission.AGENDA, Permission.BILLING,
                Permission.BILLING_VIEW, Permission.IMPORT, Permission.STATS, Permission.DMP_VIEW,
            )],
        },
        {
            "id": "u3",
            "name": "Assistante Cabinet",
            "email": "assistante@cmhe.ma",
            "role": Role.ASSISTANT.value,
            "avatar": "AC",
            "permissions": [p.value for p in (
                Permission.DASHBOARD, Permission.PATIENTS, Permission.AGENDA,
                Permission.BILLING, Permission.DMP_VIEW,
            )],
        },
        {
            "id": "u4",
            "name": "Dr. Remplaçant",
            "email": "medecin@cmhe.ma",
            "role": Role.DOCTOR.value,
            "avatar": "DR",
            "permissions": [p.value for p in (
                Permission.DASHBOARD, Permission.PATIENTS, Permission.AGENDA,
                Permission.CONSULTATIONS, Permission.PRESCRIPTIONS, Permission.DMP_VIEW,
            )],
        },
    ]


def seed_patients():
    return [
        {
            "id": "p1",
            "firstName": "Amine",
            "lastName": "Benjelloun",
            "birthDate": "1985-04-12",
            "phone": "0661123456",
            "email": "amine.ben@example.com",
            "cin": "A123456",
            "insuranceType": "CNSS",
            "insuranceNumber": "123456789",
            "address": "12, Av Hassan II, Casablanca",
            "medicalHistory": ["Hypertension", "Asthme"],
            "allergies": ["Pénicilline"],
            "createdAt": "2023-01-15T10:00:00Z",
            "weight": "78",
            "height": "180",
        },
        {
            "id": "p2",
            "firstName": "Fatima",
            "lastName": "El Amrani",
            "birthDate": "1990-11-23",
            "phone": "0663987654",
            "email": "fatima.ela@example.com",
            "cin": "BE98765",
            "insuranceType": "CNOPS",
            "insuranceNumber": "987654321",
            "address": "45, Rue des Far, Rabat",
            "medicalHistory": ["Diabète Type 2"],
            "allergies": [],
            "createdAt": "2023-02-20T09:30:00Z",
            "weight": "65",
        },
        {
            "id": "p3",
            "firstName": "Youssef",
            "lastName": "Chraibi",
            "birthDate": "1978-08-05",
            "phone": "0655443322",
            "email": "y.chraibi@example.com",
            "cin": "K456123",
            "insuranceType": "PRIVEE",
            "insuranceNumber": "AXA-885522",
            "address": "Villa 10, Hay Riad, Rabat",
            "medicalHistory": [],
            "allergies": ["Pollen"],
            "createdAt": "2023-03-10T14:15:00Z",
            "weight": "82",
        },
    ]


def seed_appointments():
    now = datetime.now(timezone.utc)
    return [
        {
            "id": "a1",
            "patientId": "p1",
            "date": _iso(now + timedelta(days=1)),
            "durationMinutes": 30,
            "reason": "Suivi hypertension",
            "status": AppointmentStatus.SCHEDULED.value,
        }
    ]


def seed_invoices():
    now = datetime.now(timezone.utc)
    return [
        {
            "id": "inv1",
            "patientId": "p3",
            "date": _iso(now - timedelta(days=1)),
            "amount": 300,
            "status": InvoiceStatus.PAID.value,
            "paymentMethod": PaymentType.CASH.value,
            "items": [{"description": "Consultation Généraliste", "price": 300}],
        }
    ]


def seed_expenses():
    now = datetime.now(timezone.utc)
    return [
        {
            "id": "exp1",
            "date": _iso(now.replace(day=1)),
            "category": ExpenseCategory.FIXED.value,
            "amount": 4500,
            "description": "Loyer Cabinet",
            "paymentMethod": PaymentType.TRANSFER.value,
        }
    ]


_SEEDS = {
    "patients": seed_patients,
    "appointments": seed_appointments,
    "invoices": seed_invoices,
    "expenses": seed_expenses,
    "users": seed_users,
}


def default_seed(table_name):
    """Fresh copy of the demo records for a table (consultations start empty)."""
    factory = _SEEDS.get(table_name)
    return factory() if factory else []


def empty_seed(table_name):
    return []
