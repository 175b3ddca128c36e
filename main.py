import logging
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import get_settings
from database import SessionLocal, init_db
from reports import BudgetReportService
from schemas import (
    BudgetIn,
    BudgetOut,
    BudgetReportOut,
    BudgetUpdate,
    CategoryIn,
    CategoryOut,
    CategoryUpdate,
    LoginIn,
    RegisterIn,
    TokenOut,
    TransactionIn,
    TransactionOut,
    TransactionPage,
    TransactionUpdate,
    UserOut,
)
from services import (
    AuthService,
    BudgetService,
    CategoryService,
    ConflictError,
    EmptyReportError,
    FieldValidationError,
    NotFoundError,
    TransactionService,
    parse_page_window,
    parse_transaction_query,
)

logging.basicConfig(level=get_settings().log_level)
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

app = FastAPI(title="Personal Finance API", version=APP_VERSION)
api = APIRouter(prefix="/api/v1")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@app.on_event("startup")
def startup_event():
    init_db()
    logger.info(f"startup: version={APP_VERSION}")


def current_user_id(
    authorization: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
) -> int:
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(status_code=401, detail="Unauthenticated.")
    user_id = AuthService(db).authenticate(token.strip())
    if user_id is None:
        raise HTTPException(status_code=401, detail="Unauthenticated.")
    return user_id


def _error_field(loc: tuple) -> str:
    parts = [str(p) for p in loc]
    if parts and parts[0] in ("body", "query", "path", "header"):
        parts = parts[1:]
    return ".".join(parts) or "body"


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    headers = getattr(exc, "headers", None)
    if exc.status_code == 401:
        headers = {**(headers or {}), "WWW-Authenticate": "Bearer"}
    return JSONResponse(
        status_code=exc.status_code, content={"message": exc.detail}, headers=headers
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors: dict[str, list[str]] = {}
    for error in exc.errors():
        errors.setdefault(_error_field(error.get("loc", ())), []).append(error["msg"])
    return JSONResponse(
        status_code=400,
        content={"message": "The given data was invalid.", "errors": errors},
    )


@app.exception_handler(FieldValidationError)
async def field_validation_handler(request: Request, exc: FieldValidationError):
    return JSONResponse(
        status_code=400,
        content={"message": exc.message, "errors": {exc.field: [exc.message]}},
    )


@app.exception_handler(ConflictError)
async def conflict_handler(request: Request, exc: ConflictError):
    return JSONResponse(status_code=400, content={"message": str(exc)})


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return Response(status_code=404)


@app.exception_handler(EmptyReportError)
async def empty_report_handler(request: Request, exc: EmptyReportError):
    return JSONResponse(status_code=404, content={"message": str(exc)})


@app.get("/health")
def health():
    return {"status": "ok", "version": APP_VERSION}


@api.post("/register", response_model=TokenOut, status_code=201)
def register(data: RegisterIn, db: Session = Depends(get_db)):
    _, token = AuthService(db).register(data)
    return TokenOut(token=token)


@api.post("/login", response_model=TokenOut)
def login(data: LoginIn, db: Session = Depends(get_db)):
    _, token = AuthService(db).login(data)
    return TokenOut(token=token)


@api.post("/logout")
def logout(
    db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    AuthService(db).logout(user_id)
    return {"message": "Logged out"}


@api.get("/me", response_model=UserOut)
def me(db: Session = Depends(get_db), user_id: int = Depends(current_user_id)):
    return AuthService(db).get_user(user_id)


@api.get(
    "/categories",
    response_model=list[CategoryOut],
    dependencies=[Depends(current_user_id)],
)
def list_categories(db: Session = Depends(get_db)):
    return CategoryService(db).list_all()


@api.post(
    "/categories",
    response_model=CategoryOut,
    status_code=201,
    dependencies=[Depends(current_user_id)],
)
def create_category(data: CategoryIn, db: Session = Depends(get_db)):
    return CategoryService(db).create(data)


@api.get(
    "/categories/{category_id}",
    response_model=CategoryOut,
    dependencies=[Depends(current_user_id)],
)
def show_category(category_id: int, db: Session = Depends(get_db)):
    return CategoryService(db).get(category_id)


@api.put(
    "/categories/{category_id}",
    response_model=CategoryOut,
    dependencies=[Depends(current_user_id)],
)
@api.patch(
    "/categories/{category_id}",
    response_model=CategoryOut,
    dependencies=[Depends(current_user_id)],
)
def update_category(
    category_id: int, data: CategoryUpdate, db: Session = Depends(get_db)
):
    return CategoryService(db).update(category_id, data)


@api.delete(
    "/categories/{category_id}",
    status_code=204,
    dependencies=[Depends(current_user_id)],
)
def delete_category(category_id: int, db: Session = Depends(get_db)):
    CategoryService(db).delete(category_id)
    return Response(status_code=204)


@api.get("/budgets", response_model=list[BudgetOut])
def list_budgets(
    db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    return BudgetService(db, user_id).list_all()


@api.post("/budgets", response_model=BudgetOut, status_code=201)
def create_budget(
    data: BudgetIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    return BudgetService(db, user_id).create(data)


# registered before /budgets/{budget_id} so "reports" is not read as an id
@api.get("/budgets/reports", response_model=BudgetReportOut)
def budget_reports(
    request: Request,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    window = parse_page_window(request.query_params)
    report = BudgetReportService(db, user_id).build(window)
    return BudgetReportOut(
        statistics=vars(report.statistics),
        budgets_by_category={
            name: vars(bucket) for name, bucket in report.budgets_by_category.items()
        },
        data=[BudgetOut.model_validate(b) for b in report.data],
        total_count=report.total_count,
        current_page=report.current_page,
        per_page=report.per_page,
        total_pages=report.total_pages,
    )


@api.get("/budgets/{budget_id}", response_model=BudgetOut)
def show_budget(
    budget_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    return BudgetService(db, user_id).get(budget_id)


@api.put("/budgets/{budget_id}", response_model=BudgetOut)
@api.patch("/budgets/{budget_id}", response_model=BudgetOut)
def update_budget(
    budget_id: int,
    data: BudgetUpdate,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    return BudgetService(db, user_id).update(budget_id, data)


@api.delete("/budgets/{budget_id}", status_code=204)
def delete_budget(
    budget_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    BudgetService(db, user_id).delete(budget_id)
    return Response(status_code=204)


@api.get("/transactions", response_model=TransactionPage)
def list_transactions(
    request: Request,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    query = parse_transaction_query(request.query_params)
    page = TransactionService(db, user_id).search(query)
    return TransactionPage(
        data=[TransactionOut.model_validate(txn) for txn in page.data],
        total_count=page.total_count,
        current_page=page.current_page,
        per_page=page.per_page,
        total_pages=page.total_pages,
    )


@api.post("/transactions", response_model=TransactionOut, status_code=201)
def create_transaction(
    data: TransactionIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    return TransactionService(db, user_id).create(data)


@api.get("/transactions/{transaction_id}", response_model=TransactionOut)
def show_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    return TransactionService(db, user_id).get(transaction_id)


@api.put("/transactions/{transaction_id}", response_model=TransactionOut)
@api.patch("/transactions/{transaction_id}", response_model=TransactionOut)
def update_transaction(
    transaction_id: int,
    data: TransactionUpdate,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    return TransactionService(db, user_id).update(transaction_id, data)


@api.delete("/transactions/{transaction_id}", status_code=204)
def delete_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    TransactionService(db, user_id).delete(transaction_id)
    return Response(status_code=204)


app.include_router(api)
