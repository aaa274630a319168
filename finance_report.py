"""
finance_report.py
-----------------
Bookkeeping aggregates over invoices and expenses (dashboard totals, monthly
revenue, period balance) and the rows of the Excel exports.
"""

from datetime import date
from typing import Dict, Iterable, List, Mapping, Optional

from models import (
    AppointmentStatus, EXPENSE_CATEGORY_LABELS, ExpenseCategory, InvoiceStatus,
)
from spreadsheet import format_display_date

MONTH_LABELS = ("Jan", "Fév", "Mar", "Avr", "Mai", "Juin", "Juil", "Août", "Sep", "Oct", "Nov", "Déc")
WALK_IN_LABEL = "Divers"


def _date_prefix(record: Mapping) -> str:
    return str(record.get("date") or "")[:10]


def _amount(record: Mapping) -> float:
    try:
        return float(record.get("amount") or 0)
    except (TypeError, ValueError):
        return 0.0


def _is_paid(invoice: Mapping) -> bool:
    return invoice.get("status") == InvoiceStatus.PAID.value


def filter_period(records: Iterable[Mapping], year: int, month: Optional[int] = None) -> List[Mapping]:
    """Records whose ISO date falls in the year (and month, 1-12, when given)."""
    prefix = f"{year:04d}" if month is None else f"{year:04d}-{month:02d}"
    return [r for r in records if _date_prefix(r).startswith(prefix)]


def dashboard_stats(appointments: Iterable[Mapping], invoices: Iterable[Mapping],
                    today: Optional[date] = None) -> Dict:
    today = today or date.today()
    day = today.isoformat()
    invoices = list(invoices)
    paid = [i for i in invoices if _is_paid(i)]

    return {
        "today_appointments": sum(
            1 for a in appointments
            if _date_prefix(a) == day and a.get("status") != AppointmentStatus.CANCELLED.value
        ),
        "today_revenue": sum(_amount(i) for i in paid if _date_prefix(i) == day),
        "month_revenue": sum(_amount(i) for i in filter_period(paid, today.year, today.month)),
        "year_revenue": sum(_amount(i) for i in filter_period(paid, today.year)),
        "pending_amount": sum(
            _amount(i) for i in invoices if i.get("status") == InvoiceStatus.PENDING.value
        ),
    }


def monthly_revenue(invoices: Iterable[Mapping], year: int) -> List[Dict]:
    totals = [0.0] * 12
    for invoice in filter_period((i for i in invoices if _is_paid(i)), year):
        try:
            month = int(_date_prefix(invoice)[5:7])
        except ValueError:
            continue
        if 1 <= month <= 12:
            totals[month - 1] += _amount(invoice)
    return [{"month": MONTH_LABELS[i], "revenue": totals[i]} for i in range(12)]


def balance(invoices: Iterable[Mapping], expenses: Iterable[Mapping],
            year: int, month: Optional[int] = None) -> Dict:
    revenue = sum(_amount(i) for i in filter_period(invoices, year, month) if _is_paid(i))
    spent = sum(_amount(e) for e in filter_period(expenses, year, month))
    return {"revenue": revenue, "expenses": spent, "net": revenue - spent}


# ---------------------------------------------------------------------
# Export rows
# ---------------------------------------------------------------------

def _patients_by_id(patients: Iterable[Mapping]) -> Dict[str, Mapping]:
    return {p.get("id"): p for p in patients}


def invoice_export_rows(invoices: Iterable[Mapping], patients: Iterable[Mapping]) -> List[Dict]:
    by_id = _patients_by_id(patients)
    rows = []
    for inv in invoices:
        patient = by_id.get(inv.get("patientId"))
        rows.append({
            "N° Facture": str(inv.get("id", ""))[-6:].upper(),
            "Date": format_display_date(inv.get("date")),
            "Patient": f"{patient.get('lastName', '').upper()} {patient.get('firstName', '')}" if patient else WALK_IN_LABEL,
            "Montant (MAD)": _amount(inv),
            "Mode": inv.get("paymentMethod"),
            "Statut": "Payée" if _is_paid(inv) else "Attente",
        })
    return rows


def accounting_export_sheets(invoices: Iterable[Mapping], expenses: Iterable[Mapping],
                             patients: Iterable[Mapping], year: int,
                             month: Optional[int] = None) -> Dict[str, List[Dict]]:
    by_id = _patients_by_id(patients)
    revenues = [{
        "Date": format_display_date(inv.get("date")),
        "Patient": (by_id.get(inv.get("patientId")) or {}).get("lastName") or WALK_IN_LABEL,
        "Mode": inv.get("paymentMethod"),
        "Montant": _amount(inv),
    } for inv in filter_period(invoices, year, month)]

    spent = []
    for exp in filter_period(expenses, year, month):
        try:
            category = EXPENSE_CATEGORY_LABELS[ExpenseCategory(exp.get("category"))]
        except ValueError:
            category = exp.get("category")
        spent.append({
            "Date": format_display_date(exp.get("date")),
            "Catégorie": category,
            "Désignation": exp.get("description"),
            "Montant": _amount(exp),
        })
    return {"Recettes": revenues, "Dépenses": spent}
