"""
main.py
-------
Entry point for the clinic records FastAPI application.
Exposes the collections, Excel import/export, backup/restore, login and
AI suggestions over HTTP, and starts the server.
"""

from datetime import date
from functools import lru_cache
from typing import Dict, List, Optional

from fastapi import Depends, FastAPI, File, Header, HTTPException, Query, Request, UploadFile
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel
import uvicorn
import logging

# Configure logging at the top
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(name)s - %(message)s')
logger = logging.getLogger(__name__)

from auth_service import AuthenticationError, SessionContext, without_password
from backup_service import BackupFormatError, backup_filename, dumps_backup, export_all_data, import_data
from config import get_configuration_status, load_clean_config, log_level
from database import DataService
from finance_report import accounting_export_sheets, balance, dashboard_stats, invoice_export_rows, monthly_revenue
from import_reconciler import import_expenses, import_invoices, import_patients, preview_patients
from local_cache import LocalStorageError
from models import Permission, RecordValidationError, create_user_model, decode_permission_form, has_permission
from openai_handler import analyze_symptoms, suggest_prescription
from spreadsheet import (
    XLSX_MEDIA_TYPE, ImportFileError, accounting_export_filename, invoices_export_filename,
    read_rows, write_workbook,
)

config = load_clean_config()
logging.getLogger().setLevel(log_level(config["LOG_LEVEL"]))

app = FastAPI(title="Clinic Records")
sessions = SessionContext()

# (read, write) permissions per collection; holding any one of a set is enough
COLLECTION_PERMISSIONS = {
    "patients": (
        {Permission.PATIENTS, Permission.DMP_VIEW, Permission.AGENDA, Permission.CONSULTATIONS,
         Permission.PRESCRIPTIONS, Permission.BILLING},
        {Permission.PATIENTS},
    ),
    "appointments": (
        {Permission.AGENDA, Permission.DASHBOARD, Permission.CONSULTATIONS},
        {Permission.AGENDA},
    ),
    "consultations": (
        {Permission.CONSULTATIONS, Permission.PRESCRIPTIONS, Permission.DMP_VIEW},
        {Permission.CONSULTATIONS, Permission.PRESCRIPTIONS},
    ),
    "invoices": (
        {Permission.BILLING, Permission.BILLING_VIEW, Permission.FINANCE},
        {Permission.BILLING},
    ),
    "expenses": ({Permission.FINANCE}, {Permission.FINANCE}),
    "users": ({Permission.USERS}, {Permission.USERS}),
}


@lru_cache(maxsize=1)
def get_data_service() -> DataService:
    return DataService(config=config)


def get_sessions() -> SessionContext:
    return sessions


def _bearer(authorization: Optional[str]) -> Optional[str]:
    if authorization and authorization.lower().startswith("bearer "):
        return authorization[7:].strip()
    return None


def get_current_user(authorization: Optional[str] = Header(None),
                     session_context: SessionContext = Depends(get_sessions)) -> Dict:
    user = session_context.current_user(_bearer(authorization))
    if not user:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user


def _ensure_allowed(user: Dict, permissions) -> None:
    if not any(has_permission(user, p) for p in permissions):
        logger.info(f"User {user.get('id')} denied, needs one of {sorted(p.value for p in permissions)}")
        raise HTTPException(status_code=403, detail="Permission refusée")


def require_permission(*permissions: Permission):
    """Dependency: the logged-in account must hold at least one of the permissions."""
    def dependency(user: Dict = Depends(get_current_user)) -> Dict:
        _ensure_allowed(user, permissions)
        return user
    return dependency


@app.exception_handler(LocalStorageError)
async def local_storage_error_handler(request: Request, exc: LocalStorageError):
    logger.error(f"Local storage failure on {request.url.path}: {exc}")
    return JSONResponse(status_code=507, content={"detail": str(exc)})


@app.exception_handler(RecordValidationError)
async def validation_error_handler(request: Request, exc: RecordValidationError):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.get("/")
async def root():
    logger.info("Root endpoint accessed")
    return {"message": "Clinic records service is running"}


@app.get("/config/status")
async def config_status(user: Dict = Depends(require_permission(Permission.USERS))):
    """Diagnostic of the remote store credentials (the key itself is never returned)."""
    return get_configuration_status(config)


# ----------------------------- Collections -----------------------------

class BulkDeleteRequest(BaseModel):
    ids: List[str]


def _collection(data_service: DataService, name: str, user: Dict, write: bool = False):
    try:
        collection = data_service.collection(name)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown collection '{name}'")
    read_permissions, write_permissions = COLLECTION_PERMISSIONS[name]
    _ensure_allowed(user, write_permissions if write else read_permissions)
    return collection


@app.get("/api/{collection}")
async def list_records(collection: str, data_service: DataService = Depends(get_data_service),
                       user: Dict = Depends(get_current_user)):
    records = await _collection(data_service, collection, user).list()
    if collection == "users":
        return [without_password(r) for r in records]
    return records


@app.post("/api/{collection}")
async def save_record(collection: str, record: dict, data_service: DataService = Depends(get_data_service),
                      user: Dict = Depends(get_current_user)):
    await _collection(data_service, collection, user, write=True).save(record)
    return {"success": True, "id": record.get("id")}


@app.delete("/api/{collection}/{record_id}")
async def delete_record(collection: str, record_id: str, data_service: DataService = Depends(get_data_service),
                        user: Dict = Depends(get_current_user)):
    await _collection(data_service, collection, user, write=True).delete(record_id)
    return {"success": True}


@app.post("/api/{collection}/bulk-delete")
async def bulk_delete(collection: str, body: BulkDeleteRequest,
                      data_service: DataService = Depends(get_data_service),
                      user: Dict = Depends(get_current_user)):
    await _collection(data_service, collection, user, write=True).delete_bulk(body.ids)
    return {"success": True, "count": len(body.ids)}


@app.post("/accounts")
async def create_account(request: Request, data_service: DataService = Depends(get_data_service),
                         user: Dict = Depends(require_permission(Permission.USERS))):
    """Creates an account from the staff form (name, email, role, password, perm_<tag> checkboxes)."""
    form = await request.form()
    account = create_user_model(
        name=form.get("name") or "",
        email=(form.get("email") or "").strip(),
        role=form.get("role") or "",
        permissions=decode_permission_form(form),
        password=form.get("password") or None,
        id=form.get("id") or None,
    )
    await data_service.users.save(account)
    logger.info(f"Account {account['id']} created by {user.get('id')}")
    return without_password(account)


# ----------------------------- Excel import / export -----------------------------

async def _read_upload(file: UploadFile):
    content = await file.read()
    try:
        return read_rows(content, file.filename)
    except ImportFileError as e:
        logger.warning(f"Rejected upload {file.filename}: {e}")
        raise HTTPException(status_code=400, detail=str(e))


@app.post("/import/patients/preview")
async def preview_patient_import(file: UploadFile = File(...),
                                 user: Dict = Depends(require_permission(Permission.IMPORT))):
    return preview_patients(await _read_upload(file))


@app.post("/import/patients")
async def import_patient_file(file: UploadFile = File(...),
                              data_service: DataService = Depends(get_data_service),
                              user: Dict = Depends(require_permission(Permission.IMPORT))):
    return await import_patients(data_service, await _read_upload(file))


@app.post("/import/invoices")
async def import_invoice_file(file: UploadFile = File(...), default_date: Optional[date] = Query(None),
                              data_service: DataService = Depends(get_data_service),
                              user: Dict = Depends(require_permission(Permission.IMPORT))):
    rows = await _read_upload(file)
    return await import_invoices(data_service, rows, default_date.isoformat() if default_date else None)


@app.post("/import/expenses")
async def import_expense_file(file: UploadFile = File(...), default_date: Optional[date] = Query(None),
                              data_service: DataService = Depends(get_data_service),
                              user: Dict = Depends(require_permission(Permission.IMPORT))):
    rows = await _read_upload(file)
    return await import_expenses(data_service, rows, default_date.isoformat() if default_date else None)


def _download(content: bytes, filename: str, media_type: str) -> Response:
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.get("/export/invoices")
async def export_invoices(year: Optional[int] = None, data_service: DataService = Depends(get_data_service),
                          user: Dict = Depends(require_permission(
                              Permission.BILLING, Permission.BILLING_VIEW, Permission.FINANCE))):
    year = year or date.today().year
    invoices = await data_service.invoices.list()
    patients = await data_service.patients.list()
    rows = invoice_export_rows([i for i in invoices if str(i.get("date", "")).startswith(str(year))], patients)
    return _download(write_workbook({"Factures": rows}), invoices_export_filename(year), XLSX_MEDIA_TYPE)


@app.get("/export/accounting")
async def export_accounting(year: Optional[int] = None, month: Optional[int] = Query(None, ge=1, le=12),
                            data_service: DataService = Depends(get_data_service),
                            user: Dict = Depends(require_permission(Permission.FINANCE))):
    year = year or date.today().year
    sheets = accounting_export_sheets(
        await data_service.invoices.list(),
        await data_service.expenses.list(),
        await data_service.patients.list(),
        year, month,
    )
    return _download(write_workbook(sheets), accounting_export_filename(year), XLSX_MEDIA_TYPE)


# ----------------------------- Backup -----------------------------

@app.get("/backup")
async def export_backup(data_service: DataService = Depends(get_data_service),
                        user: Dict = Depends(require_permission(Permission.USERS))):
    document = await export_all_data(data_service)
    return _download(dumps_backup(document).encode("utf-8"), backup_filename(), "application/json")


@app.post("/backup/restore")
async def restore_backup(request: Request, data_service: DataService = Depends(get_data_service),
                         user: Dict = Depends(require_permission(Permission.USERS))):
    try:
        result = await import_data(data_service, await request.body())
    except BackupFormatError as e:
        logger.warning(f"Backup restore rejected: {e}")
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": True, **result}


# ----------------------------- Stats -----------------------------

@app.get("/stats/dashboard")
async def stats_dashboard(data_service: DataService = Depends(get_data_service),
                          user: Dict = Depends(require_permission(Permission.DASHBOARD, Permission.STATS))):
    today = date.today()
    invoices = await data_service.invoices.list()
    expenses = await data_service.expenses.list()
    stats = dashboard_stats(await data_service.appointments.list(), invoices, today)
    stats["monthly_revenue"] = monthly_revenue(invoices, today.year)
    stats["balance"] = balance(invoices, expenses, today.year, today.month)
    return stats


# ----------------------------- Auth -----------------------------

class LoginRequest(BaseModel):
    email: str
    password: str


@app.post("/auth/login")
async def auth_login(body: LoginRequest, data_service: DataService = Depends(get_data_service),
                     session_context: SessionContext = Depends(get_sessions)):
    try:
        token, user = await session_context.login(data_service, body.email, body.password)
    except AuthenticationError as e:
        raise HTTPException(status_code=401, detail=str(e))
    return {"token": token, "user": without_password(user)}


@app.post("/auth/logout")
async def auth_logout(authorization: Optional[str] = Header(None),
                      session_context: SessionContext = Depends(get_sessions)):
    session_context.logout(_bearer(authorization))
    return {"success": True}


@app.get("/auth/me")
async def auth_me(user: Dict = Depends(get_current_user)):
    return without_password(user)


# ----------------------------- AI suggestions -----------------------------

class SymptomRequest(BaseModel):
    symptoms: str
    history: List[str] = []


class PrescriptionRequest(BaseModel):
    diagnosis: str


@app.post("/ai/analyze")
async def ai_analyze(body: SymptomRequest,
                     user: Dict = Depends(require_permission(Permission.CONSULTATIONS))):
    return {"analysis": await analyze_symptoms(body.symptoms, body.history)}


@app.post("/ai/prescription")
async def ai_prescription(body: PrescriptionRequest,
                          user: Dict = Depends(require_permission(Permission.PRESCRIPTIONS, Permission.CONSULTATIONS))):
    return {"medications": await suggest_prescription(body.diagnosis)}


if __name__ == "__main__":
    logger.info("Starting FastAPI server on port %d", config["PORT"])
    uvicorn.run(app, host="0.0.0.0", port=config["PORT"])
