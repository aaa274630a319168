"""
import_reconciler.py
--------------------
Turns rows read from an arbitrary spreadsheet into clinic records.
Column headers are matched by keyword after accent/case/punctuation folding,
cell values are coerced (dates, amounts, lists, payment modes), and patient
rows already present in the store are skipped before anything is persisted.
"""

import logging
import math
import re
import unicodedata
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Mapping, Optional

from dateutil import parser

from models import (
    ExpenseCategory, InsuranceType, InvoiceStatus, PaymentType, WALK_IN_PATIENT_ID,
    generate_id, utc_now_iso,
)

logger = logging.getLogger(__name__)

DEFAULT_BIRTH_DATE = "1990-01-01"
DEFAULT_FIRST_NAME = "Prénom"
DEFAULT_LAST_NAME = "NOM"
DEFAULT_PAYMENT_LABEL = "Especes"
DEFAULT_INVOICE_DESCRIPTION = "Recette Importée"
DEFAULT_EXPENSE_DESCRIPTION = "Dépense Importée"
WALK_IN_LABEL = "Divers"

# Spreadsheet serial 25569 is 1970-01-01
SPREADSHEET_EPOCH_OFFSET = 25569
_UNIX_EPOCH = datetime(1970, 1, 1)

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_DATE_SEPARATORS = re.compile(r"[/\-.]")
_LEADING_NUMBER = re.compile(r"[+-]?(\d+(\.\d*)?|\.\d+)")

# Patient sheets: header must equal one of the keywords once folded
PATIENT_COLUMNS = {
    "firstName": ["prenom", "first name"],
    "lastName": ["nom", "last name", "nom de famille"],
    "birthDate": ["date de naissance", "naissance", "dob", "date naissance"],
    "cin": ["cin", "cnie", "carte identite", "identite"],
    "phone": ["telephone", "tel", "phone", "gsm", "mobile"],
    "email": ["email", "mail", "courriel"],
    "insurance": ["mutuelle", "assurance", "type assurance"],
    "insuranceNumber": ["n immatriculation", "immatriculation", "numero mutuelle", "n mutuelle", "affiliation"],
    "address": ["adresse", "lieu residence", "ville"],
    "medicalHistory": ["antecedents", "historique medical", "maladies", "atcd"],
    "allergies": ["allergies", "intolerances"],
}

# Finance sheets: header only needs to contain one of the keywords
INVOICE_COLUMNS = {
    "amount": ["montant", "prix", "valeur", "somme", "amount", "total", "honoraire", "frais"],
    "date": ["date", "jour", "periode"],
    "description": ["designation", "motif", "acte", "libelle", "description"],
    "patient": ["patient", "client", "nom", "prenom", "beneficiaire"],
    "payment": ["paiement", "mode", "reglement", "type"],
}

EXPENSE_COLUMNS = {
    "amount": ["montant", "prix", "total", "valeur"],
    "date": ["date", "jour"],
    "description": ["designation", "motif", "label", "libelle"],
    "payment": ["paiement", "mode", "reglement", "type"],
}


def normalize(text) -> str:
    """Lower-case, strip accents and drop every non-alphanumeric character."""
    if text is None:
        return ""
    decomposed = unicodedata.normalize("NFD", str(text).strip().lower())
    without_accents = "".join(c for c in decomposed if not unicodedata.combining(c))
    return re.sub(r"[^a-z0-9]", "", without_accents)


def find_value(row: Mapping, keywords: Iterable[str], strict: bool = False):
    """
    Returns the value of the first column whose header matches a keyword.

    Args:
        row (Mapping): header -> value mapping for one spreadsheet row.
        keywords (Iterable[str]): Accepted header spellings.
        strict (bool): Require equality instead of containment.
    """
    folded_keywords = [normalize(k) for k in keywords]
    for header, value in row.items():
        folded = normalize(header)
        if not folded:
            continue
        if strict:
            if folded in folded_keywords:
                return value
        elif any(k in folded for k in folded_keywords):
            return value
    return None


def _text(value, default="") -> str:
    if value is None:
        return default
    text = str(value).strip()
    return text or default


def parse_excel_date(value, default: str = DEFAULT_BIRTH_DATE) -> str:
    """
    Coerces a cell to an ISO date string (YYYY-MM-DD).

    Accepts date objects, spreadsheet serial numbers, ISO strings and
    d/m/Y, Y/m/d or d/m/yy strings separated by '/', '-' or '.'.
    Anything else yields the default.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        return default
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        try:
            return (_UNIX_EPOCH + timedelta(days=value - SPREADSHEET_EPOCH_OFFSET)).date().isoformat()
        except (OverflowError, ValueError):
            logger.warning(f"Date serial out of range: {value}")
            return default

    text = str(value).strip()
    if _ISO_DATE.match(text):
        try:
            datetime.strptime(text, "%Y-%m-%d")
            return text
        except ValueError:
            return default

    parts = _DATE_SEPARATORS.split(text)
    if len(parts) == 3 and all(p.isdigit() for p in parts):
        if len(parts[2]) == 4:
            d, m, y = parts
        elif len(parts[0]) == 4:
            y, m, d = parts
        else:
            d, m, y = parts[0], parts[1], "20" + parts[2].zfill(2)[-2:]
        try:
            return date(int(y), int(m), int(d)).isoformat()
        except ValueError:
            logger.warning(f"Invalid date detected: {value!r}")
            return default

    if re.search(r"\d", text):
        try:
            return parser.parse(text, dayfirst=True).date().isoformat()
        except (ValueError, OverflowError):
            pass
    logger.warning(f"Invalid date detected: {value!r}")
    return default


def parse_amount(value) -> float:
    """
    Coerces a money cell to a float.

    '1.234,56 MAD' -> 1234.56; every dot group but the last is a thousands
    separator. Unreadable values give 0.
    """
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else 0.0
    text = re.sub(r"\s", "", str(value))
    text = re.sub(r"[A-Za-z]", "", text).replace(",", ".", 1)
    parts = text.split(".")
    if len(parts) > 2:
        text = "".join(parts[:-1]) + "." + parts[-1]
    match = _LEADING_NUMBER.match(text)
    if not match:
        return 0.0
    return float(match.group(0))


def parse_list(value) -> List[str]:
    if value is None:
        return []
    return [piece.strip() for piece in str(value).split(",") if piece.strip()]


def infer_payment_method(raw) -> str:
    label = normalize(raw if raw not in (None, "") else DEFAULT_PAYMENT_LABEL)
    if "cheque" in label:
        return PaymentType.CHECK.value
    if "virement" in label:
        return PaymentType.TRANSFER.value
    if "carte" in label or "cb" in label:
        return PaymentType.CARD.value
    return PaymentType.CASH.value


def infer_insurance_type(raw) -> str:
    label = _text(raw).upper()
    if "CNSS" in label:
        return InsuranceType.CNSS.value
    if "CNOPS" in label:
        return InsuranceType.CNOPS.value
    if "PRIVE" in label or "AXA" in label or "SANLAM" in label:
        return InsuranceType.PRIVATE.value
    return InsuranceType.NONE.value


def match_patient(name, patients: Iterable[Mapping]) -> str:
    """
    Finds the patient whose family name contains, or is contained in, the
    imported name. Falls back to the walk-in sentinel.
    """
    folded_name = normalize(name)
    if not folded_name:
        return WALK_IN_PATIENT_ID
    for patient in patients:
        folded_last = normalize(patient.get("lastName"))
        if folded_last and (folded_name in folded_last or folded_last in folded_name):
            return patient["id"]
    return WALK_IN_PATIENT_ID


# ---------------------------------------------------------------------
# Row mapping
# ---------------------------------------------------------------------

def map_patient_row(row: Mapping) -> Dict:
    """Maps one spreadsheet row to a patient record without id/createdAt."""
    def get(field):
        return find_value(row, PATIENT_COLUMNS[field], strict=True)

    return {
        "firstName": _text(get("firstName"), DEFAULT_FIRST_NAME),
        "lastName": _text(get("lastName"), DEFAULT_LAST_NAME).upper(),
        "birthDate": parse_excel_date(get("birthDate"), DEFAULT_BIRTH_DATE),
        "cin": _text(get("cin")).upper(),
        "phone": _text(get("phone")),
        "email": _text(get("email")).lower(),
        "insuranceType": infer_insurance_type(get("insurance")),
        "insuranceNumber": _text(get("insuranceNumber")),
        "address": _text(get("address")),
        "medicalHistory": parse_list(get("medicalHistory")),
        "allergies": parse_list(get("allergies")),
    }


def map_invoice_row(row: Mapping, patients: Iterable[Mapping], default_date: str) -> Dict:
    patient_name = _text(find_value(row, INVOICE_COLUMNS["patient"]))
    return {
        "date": parse_excel_date(find_value(row, INVOICE_COLUMNS["date"]), default_date),
        "amount": parse_amount(find_value(row, INVOICE_COLUMNS["amount"])),
        "description": _text(find_value(row, INVOICE_COLUMNS["description"]), DEFAULT_INVOICE_DESCRIPTION),
        "patientId": match_patient(patient_name, patients),
        "patientName": patient_name or WALK_IN_LABEL,
        "paymentMethod": infer_payment_method(find_value(row, INVOICE_COLUMNS["payment"])),
    }


def map_expense_row(row: Mapping, default_date: str) -> Dict:
    return {
        "date": parse_excel_date(find_value(row, EXPENSE_COLUMNS["date"]), default_date),
        "amount": parse_amount(find_value(row, EXPENSE_COLUMNS["amount"])),
        "description": _text(find_value(row, EXPENSE_COLUMNS["description"]), DEFAULT_EXPENSE_DESCRIPTION),
        "category": ExpenseCategory.OTHER.value,
        "paymentMethod": infer_payment_method(find_value(row, EXPENSE_COLUMNS["payment"])),
    }


def is_duplicate_patient(candidate: Mapping, existing: Iterable[Mapping]) -> bool:
    """Same non-empty CIN, or same (last name, first name, phone)."""
    cin = candidate.get("cin")
    for patient in existing:
        if cin and patient.get("cin") == cin:
            return True
        if (patient.get("lastName") == candidate.get("lastName")
                and patient.get("firstName") == candidate.get("firstName")
                and patient.get("phone") == candidate.get("phone")):
            return True
    return False


def _is_positive(amount) -> bool:
    return math.isfinite(amount) and amount > 0


def _report(imported=0, duplicates=0, rejected=0, total=0) -> Dict:
    return {"imported": imported, "duplicates": duplicates, "rejected": rejected, "total": total}


def preview_patients(rows: List[Mapping]) -> List[Dict]:
    return [map_patient_row(row) for row in rows]


# ---------------------------------------------------------------------
# Persistence (sequential, one record at a time)
# ---------------------------------------------------------------------

async def import_patients(data_service, rows: List[Mapping]) -> Dict:
    """
    Imports patient rows, skipping those already in the store.

    Returns:
        dict: imported, duplicates, rejected (always 0 here) and total counts.
    """
    existing = list(await data_service.patients.list())
    imported = duplicates = 0

    for candidate in preview_patients(rows):
        if is_duplicate_patient(candidate, existing):
            duplicates += 1
            continue
        record = dict(candidate, id=generate_id("P-IMP"), createdAt=utc_now_iso())
        await data_service.patients.save(record)
        existing.append(record)
        imported += 1

    logger.info(f"Patient import: {imported} new, {duplicates} duplicates skipped")
    return _report(imported=imported, duplicates=duplicates, total=len(rows))


async def import_invoices(data_service, rows: List[Mapping], default_date: Optional[str] = None) -> Dict:
    """Imports revenue rows as paid single-line invoices; rows without a positive amount are rejected."""
    default_date = default_date or date.today().isoformat()
    patients = await data_service.patients.list()
    imported = rejected = 0

    for row in rows:
        mapped = map_invoice_row(row, patients, default_date)
        if not _is_positive(mapped["amount"]):
            rejected += 1
            continue
        await data_service.invoices.save({
            "id": generate_id("INV-IMP"),
            "patientId": mapped["patientId"],
            "date": mapped["date"],
            "amount": mapped["amount"],
            "status": InvoiceStatus.PAID.value,
            "paymentMethod": mapped["paymentMethod"],
            "items": [{"description": mapped["description"], "price": mapped["amount"]}],
        })
        imported += 1

    logger.info(f"Invoice import: {imported} imported, {rejected} rejected")
    return _report(imported=imported, rejected=rejected, total=len(rows))


async def import_expenses(data_service, rows: List[Mapping], default_date: Optional[str] = None) -> Dict:
    default_date = default_date or date.today().isoformat()
    imported = rejected = 0

    for row in rows:
        mapped = map_expense_row(row, default_date)
        if not _is_positive(mapped["amount"]):
            rejected += 1
            continue
        await data_service.expenses.save(dict(mapped, id=generate_id("EXP-IMP")))
        imported += 1

    logger.info(f"Expense import: {imported} imported, {rejected} rejected")
    return _report(imported=imported, rejected=rejected, total=len(rows))
