import base64
import logging
from typing import Iterator, Optional

from fastapi import (
    APIRouter,
    Depends,
    FastAPI,
    File,
    Form,
    HTTPException,
    Query,
    Request,
    UploadFile,
)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session, sessionmaker
from starlette.middleware.sessions import SessionMiddleware

from config import Settings, get_settings
from csrf import generate_csrf_token, validate_csrf_token
from database import create_db_engine, create_session_factory
from invoices import TesseractTextExtractor, TextExtractor
from models import User
from scheduler import SchedulerManager
from schemas import (
    AuthOut,
    BalanceOut,
    CategoryIn,
    CategoryOut,
    InstallmentsOut,
    InvoiceDetailOut,
    InvoiceOut,
    InvoiceUploadOut,
    LoginIn,
    MessageOut,
    MonthlySummaryOut,
    MonthlySummaryPoint,
    RegisterIn,
    ReminderOut,
    SessionOut,
    SettingsIn,
    StatusIn,
    TransactionIn,
    TransactionOut,
    TransactionUpdateIn,
    UserMessageOut,
    UserOut,
)
from services import (
    CategoryService,
    DashboardService,
    InvoiceService,
    ReminderService,
    TransactionService,
    UserService,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def _load_app_version() -> str:
    try:
        import tomllib
    except Exception:
        return "unknown"
    try:
        with open("pyproject.toml", "rb") as f:
            data = tomllib.load(f)
        return str(data.get("project", {}).get("version", "unknown"))
    except Exception:
        return "unknown"


APP_VERSION = _load_app_version()

router = APIRouter(prefix="/api")


def app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_db(request: Request) -> Iterator[Session]:
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def get_text_extractor(request: Request) -> TextExtractor:
    return request.app.state.text_extractor


def current_user_id(request: Request) -> int:
    user_id = request.session.get("user_id")
    if not user_id:
        logger.info(f"unauthenticated: method={request.method} path={request.url.path}")
        raise HTTPException(status_code=401, detail="Not authenticated")
    return int(user_id)


def csrf_user_id(
    request: Request,
    user_id: int = Depends(current_user_id),
    settings: Settings = Depends(app_settings),
) -> int:
    token = request.headers.get("X-CSRF-Token", "")
    if not validate_csrf_token(token, settings.secret_key, user_id):
        raise HTTPException(status_code=400, detail="Invalid CSRF token")
    return user_id


def _auth_payload(settings: Settings, user: User, message: str) -> AuthOut:
    return AuthOut(
        message=message,
        user=UserOut.model_validate(user),
        csrf_token=generate_csrf_token(settings.secret_key, user.id),
    )


def _transaction_service(
    db: Session, user_id: int, settings: Settings
) -> TransactionService:
    return TransactionService(
        db,
        user_id,
        max_installments=settings.max_installments,
        timezone=settings.timezone,
    )


@router.get("/health")
def health():
    return {"status": "ok", "version": APP_VERSION}


@router.post("/auth/register", status_code=201, response_model=AuthOut)
def register(
    data: RegisterIn,
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(app_settings),
):
    try:
        user = UserService(db).register(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    request.session["user_id"] = user.id
    return _auth_payload(settings, user, "User created successfully")


@router.post("/auth/login", response_model=AuthOut)
def login(
    data: LoginIn,
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(app_settings),
):
    try:
        user = UserService(db).authenticate(data.email, data.password)
    except ValueError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc
    request.session["user_id"] = user.id
    logger.info(f"login: user_id={user.id}")
    return _auth_payload(settings, user, "Logged in successfully")


@router.post("/auth/logout", response_model=MessageOut)
def logout(request: Request):
    request.session.clear()
    return MessageOut(message="Logged out successfully")


@router.get("/auth/user", response_model=SessionOut)
def session_user(
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(app_settings),
):
    user_id = request.session.get("user_id")
    if not user_id:
        return SessionOut(is_authenticated=False)
    try:
        user = UserService(db).get(int(user_id))
    except ValueError:
        request.session.clear()
        return SessionOut(is_authenticated=False)
    return SessionOut(
        is_authenticated=True,
        user=UserOut.model_validate(user),
        csrf_token=generate_csrf_token(settings.secret_key, user.id),
    )


@router.patch("/users/settings", response_model=UserMessageOut)
def update_settings(
    data: SettingsIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(csrf_user_id),
):
    try:
        user = UserService(db).update_settings(user_id, data)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return UserMessageOut(
        message="Settings updated successfully", user=UserOut.model_validate(user)
    )


@router.get("/categories", response_model=list[CategoryOut])
def list_categories(
    db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    categories = CategoryService(db, user_id).list_all()
    logger.info(f"categories_listed: user_id={user_id} count={len(categories)}")
    return categories


@router.post("/categories", status_code=201, response_model=CategoryOut)
def create_category(
    data: CategoryIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(csrf_user_id),
):
    try:
        return CategoryService(db, user_id).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.get("/transactions", response_model=list[TransactionOut])
def list_transactions(
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
    settings: Settings = Depends(app_settings),
):
    return _transaction_service(db, user_id, settings).list_all()


@router.get("/transactions/recent", response_model=list[TransactionOut])
def recent_transactions(
    limit: int = Query(5, ge=1, le=100),
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
    settings: Settings = Depends(app_settings),
):
    return _transaction_service(db, user_id, settings).recent(limit)


@router.get("/transactions/upcoming", response_model=list[TransactionOut])
def upcoming_transactions(
    limit: int = Query(5, ge=1, le=100),
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
    settings: Settings = Depends(app_settings),
):
    return _transaction_service(db, user_id, settings).upcoming(limit)


@router.post("/transactions", status_code=201)
def create_transaction(
    data: TransactionIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(csrf_user_id),
    settings: Settings = Depends(app_settings),
):
    service = _transaction_service(db, user_id, settings)
    try:
        if data.expands_to_installments:
            batch = service.create_installments(data)
            payload = InstallmentsOut(
                message=f"{len(batch.transactions)} installments created successfully",
                transactions=[
                    TransactionOut.model_validate(txn) for txn in batch.transactions
                ],
                recurring_group_id=batch.recurring_group_id,
            )
        else:
            payload = TransactionOut.model_validate(service.create(data))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return JSONResponse(status_code=201, content=payload.model_dump(mode="json"))


@router.patch("/transactions/{transaction_id}", response_model=TransactionOut)
def update_transaction(
    transaction_id: int,
    data: TransactionUpdateIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(csrf_user_id),
    settings: Settings = Depends(app_settings),
):
    service = _transaction_service(db, user_id, settings)
    try:
        service.get(transaction_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    try:
        return service.update(transaction_id, data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.patch("/transactions/{transaction_id}/status", response_model=TransactionOut)
def update_transaction_status(
    transaction_id: int,
    data: StatusIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(csrf_user_id),
    settings: Settings = Depends(app_settings),
):
    try:
        return _transaction_service(db, user_id, settings).set_status(
            transaction_id, data.status
        )
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@router.delete("/transactions/{transaction_id}", response_model=MessageOut)
def delete_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(csrf_user_id),
    settings: Settings = Depends(app_settings),
):
    try:
        _transaction_service(db, user_id, settings).delete(transaction_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return MessageOut(message="Transaction deleted successfully")


@router.delete("/transactions", response_model=MessageOut)
def delete_all_transactions(
    db: Session = Depends(get_db),
    user_id: int = Depends(csrf_user_id),
    settings: Settings = Depends(app_settings),
):
    count = _transaction_service(db, user_id, settings).delete_all()
    return MessageOut(message=f"{count} transactions deleted successfully")


@router.get("/invoices", response_model=list[InvoiceOut])
def list_invoices(
    db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    return InvoiceService(db, user_id).list_all()


@router.get("/invoices/{invoice_id}", response_model=InvoiceDetailOut)
def get_invoice(
    invoice_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        invoice = InvoiceService(db, user_id).get(invoice_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return InvoiceDetailOut(
        id=invoice.id,
        filename=invoice.filename,
        content_type=invoice.content_type,
        processed_text=invoice.processed_text,
        created_at=invoice.created_at,
        file_content=base64.b64encode(invoice.file_content).decode("ascii"),
    )


@router.post("/invoices/upload", status_code=201, response_model=InvoiceUploadOut)
async def upload_invoice(
    file: Optional[UploadFile] = File(None),
    barcode: Optional[str] = Form(None),
    db: Session = Depends(get_db),
    user_id: int = Depends(csrf_user_id),
    settings: Settings = Depends(app_settings),
    extractor: TextExtractor = Depends(get_text_extractor),
):
    content = None
    filename = None
    content_type = None
    if file is not None:
        # One byte past the limit is enough to reject an oversized upload.
        content = await file.read(settings.max_upload_bytes + 1)
        filename = file.filename
        content_type = file.content_type
    service = InvoiceService(
        db,
        user_id,
        extractor=extractor,
        max_upload_bytes=settings.max_upload_bytes,
    )
    try:
        invoice, processed = service.upload(content, filename, content_type, barcode)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return InvoiceUploadOut(
        id=invoice.id,
        filename=invoice.filename,
        processed_text=invoice.processed_text,
        created_at=invoice.created_at,
        barcode=processed.barcode,
    )


@router.delete("/invoices/{invoice_id}", response_model=MessageOut)
def delete_invoice(
    invoice_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(csrf_user_id),
):
    try:
        InvoiceService(db, user_id).delete(invoice_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return MessageOut(message="Invoice deleted successfully")


@router.get("/reminders", response_model=list[ReminderOut])
def list_reminders(
    db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    return ReminderService(db, user_id).list_all()


@router.get("/reminders/upcoming", response_model=list[ReminderOut])
def upcoming_reminders(
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
    settings: Settings = Depends(app_settings),
):
    return ReminderService(db, user_id, timezone=settings.timezone).upcoming()


@router.patch("/reminders/{reminder_id}/mark-sent", response_model=MessageOut)
def mark_reminder_sent(
    reminder_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(csrf_user_id),
):
    try:
        ReminderService(db, user_id).mark_sent(reminder_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return MessageOut(message="Reminder marked as sent")


@router.get("/dashboard/balance", response_model=BalanceOut)
def dashboard_balance(
    db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    try:
        user = UserService(db).get(user_id)
        position = DashboardService(db, user_id).balance()
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return BalanceOut(
        balance=position.balance,
        initial_balance=user.initial_balance,
        overdraft_limit=position.overdraft_limit,
        available=position.available,
        over_limit=position.over_limit,
    )


@router.get("/dashboard/monthly-summary", response_model=MonthlySummaryOut)
def dashboard_monthly_summary(
    year: Optional[str] = None,
    month: Optional[str] = None,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
    settings: Settings = Depends(app_settings),
):
    dashboard = DashboardService(db, user_id, timezone=settings.timezone)
    summary = dashboard.monthly_summary(year, month)
    return MonthlySummaryOut(
        year=summary.year,
        month=summary.month,
        total_income=summary.total_income,
        total_expense=summary.total_expense,
    )


@router.get(
    "/dashboard/monthly-summary/last-6-months",
    response_model=list[MonthlySummaryPoint],
)
def dashboard_last_six_months(
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
    settings: Settings = Depends(app_settings),
):
    dashboard = DashboardService(db, user_id, timezone=settings.timezone)
    return [
        MonthlySummaryPoint(
            month=period.name,
            year=period.year,
            income=summary.total_income,
            expense=summary.total_expense,
        )
        for period, summary in dashboard.recent_summaries(6)
    ]


def create_app(
    settings: Optional[Settings] = None,
    session_factory: Optional[sessionmaker[Session]] = None,
    text_extractor: Optional[TextExtractor] = None,
) -> FastAPI:
    settings = settings or get_settings()
    if session_factory is None:
        session_factory = create_session_factory(create_db_engine(settings.database_url))

    app = FastAPI(title="Finance Tracker", version=APP_VERSION)
    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.text_extractor = text_extractor or TesseractTextExtractor(
        settings.ocr_language
    )

    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.secret_key,
        session_cookie="finance_session",
        max_age=settings.session_max_age,
        same_site="lax",
        https_only=False,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_origin],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception):
        logger.exception(f"unhandled_error: method={request.method} path={request.url.path}")
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    app.include_router(router)

    if settings.scheduler_enabled:
        scheduler_manager = SchedulerManager(settings, session_factory)

        @app.on_event("startup")
        def startup_event():
            scheduler_manager.start()

        @app.on_event("shutdown")
        def shutdown_event():
            scheduler_manager.stop()

    return app


def main():
    import uvicorn

    uvicorn.run("main:create_app", factory=True, host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
