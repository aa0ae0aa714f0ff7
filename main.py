import logging
import tomllib
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from auth import Identity, TokenVerifier, bearer_token
from config import Settings, get_settings
from database import Base, create_db_engine, create_session_factory
from errors import AuthError, LedgerError
from periods import parse_bound
from scheduler import SchedulerManager
from schemas import (
    BalanceIn,
    BudgetIn,
    ExpenseIn,
    ExpenseUpdateIn,
    ProfileIn,
    RecurringIn,
    RecurringToggleIn,
)
from serializers import (
    balance_payload,
    budget_payload,
    expense_payload,
    profile_payload,
    recurring_payload,
)
from services import (
    AnalyticsService,
    BalanceService,
    BudgetService,
    ExpenseFilters,
    ExpenseService,
    ProfileService,
    RecurringService,
)

logger = logging.getLogger(__name__)

GENERIC_ERROR = "A server error has occurred"


def _load_app_version() -> str:
    try:
        with open(Path(__file__).with_name("pyproject.toml"), "rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError):
        return "unknown"
    return str(data.get("project", {}).get("version", "unknown"))


APP_VERSION = _load_app_version()


def get_db(request: Request):
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def get_timezone(request: Request) -> ZoneInfo:
    return ZoneInfo(request.app.state.settings.timezone)


def current_identity(request: Request) -> Identity:
    try:
        token = bearer_token(request.headers.get("Authorization"))
        return request.app.state.verifier.verify(token)
    except AuthError as exc:
        logger.warning(
            f"auth_rejected: path={request.url.path} status={exc.status_code}"
        )
        raise


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    msg = str(first.get("msg", "Invalid request"))
    if msg.startswith("Value error, "):
        return msg[len("Value error, "):]
    fields = [str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path")]
    if fields:
        return f"{'.'.join(fields)}: {msg}"
    return msg


api = APIRouter(prefix="/api")
expenses_router = APIRouter()


@api.get("/health")
def health():
    return {
        "status": "ok",
        "message": "Expense Logger API is running",
        "version": APP_VERSION,
    }


@api.get("/profile")
def get_profile(
    identity: Identity = Depends(current_identity), db: Session = Depends(get_db)
):
    return profile_payload(ProfileService(db, identity.uid).get())


@api.post("/profile")
def update_profile(
    data: ProfileIn,
    identity: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
):
    profile = ProfileService(db, identity.uid).update(data)
    return {"message": "Profile updated", "profile": profile_payload(profile)}


@api.get("/balance")
def get_balance(
    identity: Identity = Depends(current_identity), db: Session = Depends(get_db)
):
    return balance_payload(BalanceService(db, identity.uid).get())


@api.post("/balance")
def set_balance(
    data: BalanceIn,
    identity: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
):
    balance = BalanceService(db, identity.uid).set(data)
    return {"message": "Balance updated", "balance": balance_payload(balance)}


@expenses_router.post("")
def add_expense(
    data: ExpenseIn,
    identity: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
):
    expense = ExpenseService(db, identity.uid).create(data)
    return {
        "message": "Expense added",
        "id": expense.id,
        "expense": expense_payload(expense),
    }


@expenses_router.get("")
def list_expenses(
    request: Request,
    identity: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
    tz: ZoneInfo = Depends(get_timezone),
):
    params = request.query_params
    filters = ExpenseFilters(
        category=params.get("category") or None,
        start=parse_bound(params.get("startDate"), tz),
        end=parse_bound(params.get("endDate"), tz, end=True),
        search=params.get("search") or None,
    )
    items = ExpenseService(db, identity.uid).list(filters)
    return [expense_payload(expense) for expense in items]


@expenses_router.put("/{expense_id}")
def edit_expense(
    expense_id: int,
    data: ExpenseUpdateIn,
    identity: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
):
    expense = ExpenseService(db, identity.uid).update(expense_id, data)
    return {"message": "Expense updated", "expense": expense_payload(expense)}


@expenses_router.delete("/{expense_id}")
def delete_expense(
    expense_id: int,
    identity: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
):
    ExpenseService(db, identity.uid).delete(expense_id)
    return {"message": "Expense deleted"}


@api.get("/budgets")
def list_budgets(
    identity: Identity = Depends(current_identity), db: Session = Depends(get_db)
):
    return [budget_payload(b) for b in BudgetService(db, identity.uid).list()]


@api.post("/budgets")
def upsert_budget(
    data: BudgetIn,
    identity: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
):
    budget, created = BudgetService(db, identity.uid).upsert(data)
    return {
        "message": "Budget created" if created else "Budget updated",
        "id": budget.id,
        "budget": budget_payload(budget),
    }


@api.delete("/budgets/{budget_id}")
def delete_budget(
    budget_id: int,
    identity: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
):
    BudgetService(db, identity.uid).delete(budget_id)
    return {"message": "Budget deleted"}


@api.get("/recurring")
def list_recurring(
    identity: Identity = Depends(current_identity), db: Session = Depends(get_db)
):
    return [recurring_payload(r) for r in RecurringService(db, identity.uid).list()]


@api.post("/recurring")
def create_recurring(
    data: RecurringIn,
    identity: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
):
    rule = RecurringService(db, identity.uid).create(data)
    return {
        "message": "Recurring expense created",
        "id": rule.id,
        "recurring": recurring_payload(rule),
    }


@api.post("/recurring/apply")
def apply_recurring(
    identity: Identity = Depends(current_identity), db: Session = Depends(get_db)
):
    applied = RecurringService(db, identity.uid).apply_due()
    return {
        "message": f"Applied {len(applied)} recurring expense(s)",
        "applied": applied,
    }


@api.post("/recurring/{rule_id}/toggle")
def toggle_recurring(
    rule_id: int,
    data: RecurringToggleIn,
    identity: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
):
    rule = RecurringService(db, identity.uid).toggle(rule_id, data.active)
    state = "resumed" if rule.active else "paused"
    return {
        "message": f"Recurring expense {state}",
        "recurring": recurring_payload(rule),
    }


@api.delete("/recurring/{rule_id}")
def delete_recurring(
    rule_id: int,
    identity: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
):
    RecurringService(db, identity.uid).delete(rule_id)
    return {"message": "Recurring expense deleted"}


@api.get("/stats")
def stats(
    identity: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
    tz: ZoneInfo = Depends(get_timezone),
):
    return AnalyticsService(db, identity.uid, tz).stats()


@api.get("/stats/budget/check")
def budget_check(
    identity: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
    tz: ZoneInfo = Depends(get_timezone),
):
    return AnalyticsService(db, identity.uid, tz).budget_alerts()


api.include_router(expenses_router, prefix="/expense")
api.include_router(expenses_router, prefix="/expenses")


def _register_error_handlers(app: FastAPI, settings: Settings) -> None:
    def server_error(exc: Exception) -> JSONResponse:
        body: dict[str, object] = {"error": GENERIC_ERROR}
        if settings.is_development:
            body["detail"] = str(exc)
        return JSONResponse(status_code=500, content=body)

    @app.exception_handler(LedgerError)
    async def ledger_error_handler(request: Request, exc: LedgerError):
        if exc.status_code >= 500:
            logger.error(f"store_error: path={request.url.path} error={exc.message}")
            return server_error(exc)
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"error": _validation_message(exc)})

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": str(exc.detail)},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(SQLAlchemyError)
    async def database_error_handler(request: Request, exc: SQLAlchemyError):
        logger.exception(f"database_error: path={request.url.path}")
        return server_error(exc)

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception(f"server_error: path={request.url.path}")
        return server_error(exc)


@asynccontextmanager
async def lifespan(app: FastAPI):
    scheduler: Optional[SchedulerManager] = app.state.scheduler
    if scheduler is not None:
        scheduler.start()
    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.stop()


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level.upper())

    engine = create_db_engine(settings.database_url)
    if settings.create_schema:
        Base.metadata.create_all(engine)
    session_factory = create_session_factory(engine)

    app = FastAPI(title="Expense Logger", version=APP_VERSION, lifespan=lifespan)
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.verifier = TokenVerifier(
        settings.token_secret, settings.token_max_age_secs
    )
    app.state.scheduler = (
        SchedulerManager(session_factory, settings)
        if settings.scheduler_enabled
        else None
    )

    _register_error_handlers(app, settings)
    app.include_router(api)
    return app


def main():
    import uvicorn

    uvicorn.run("main:create_app", factory=True, host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
