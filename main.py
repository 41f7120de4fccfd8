import logging
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request, Response
from sqlalchemy.orm import Session

from database import get_db
from errors import (
    ConflictError,
    FinanceError,
    NotFoundError,
    RangeError,
    UnauthorizedError,
    ValidationError,
)
from identity import bearer_token, resolve_user_id
from models import TransactionType
from schemas import (
    CategoryIn,
    CategoryOut,
    HistoryQuery,
    SetupIn,
    TransactionIn,
    UserSettingsIn,
    parse_payload,
)
from services import (
    CategoryService,
    HistoryService,
    MetricsService,
    SetupService,
    StatementService,
    TransactionService,
    UserSettingsService,
    rebuild_rollups,
    transaction_out,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="Finance Tracker")

ERROR_STATUS: list[tuple[type[FinanceError], int]] = [
    (UnauthorizedError, 401),
    (ValidationError, 400),
    (RangeError, 400),
    (NotFoundError, 404),
    (ConflictError, 409),
]


def http_error(exc: FinanceError) -> HTTPException:
    status_code = 400
    for error_type, code in ERROR_STATUS:
        if isinstance(exc, error_type):
            status_code = code
            break
    detail: object = str(exc)
    if isinstance(exc, ValidationError):
        detail = {"message": str(exc), "fields": exc.fields}
    return HTTPException(status_code=status_code, detail=detail)


def current_user_id(authorization: Optional[str] = Header(default=None)) -> str:
    user_id = resolve_user_id(bearer_token(authorization))
    if not user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user_id


async def _json_body(request: Request) -> object:
    try:
        return await request.json()
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid JSON body") from exc


def _range_params(request: Request) -> tuple[Optional[str], Optional[str]]:
    return request.query_params.get("from"), request.query_params.get("to")


@app.post("/api/transactions", status_code=201)
async def create_transaction(
    request: Request,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    payload = await _json_body(request)
    try:
        data = parse_payload(TransactionIn, payload)
        txn = TransactionService(db, user_id).record(data)
    except FinanceError as exc:
        raise http_error(exc) from exc
    return transaction_out(txn)


@app.put("/api/transactions/{transaction_id}")
async def update_transaction(
    transaction_id: int,
    request: Request,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    payload = await _json_body(request)
    try:
        data = parse_payload(TransactionIn, payload)
        txn = TransactionService(db, user_id).edit(transaction_id, data)
    except FinanceError as exc:
        raise http_error(exc) from exc
    return transaction_out(txn)


@app.delete("/api/transactions/{transaction_id}", status_code=204)
def delete_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    try:
        TransactionService(db, user_id).remove(transaction_id)
    except FinanceError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.get("/api/transactions")
def api_monthly_statement(
    db: Session = Depends(get_db), user_id: str = Depends(current_user_id)
):
    return StatementService(db, user_id).monthly_statement()


@app.get("/api/transactions/recent")
def api_recent_transactions(
    request: Request,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    try:
        limit = int(request.query_params.get("limit", "10"))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid limit") from exc
    limit = min(max(limit, 1), 100)
    items = TransactionService(db, user_id).recent(limit)
    return [transaction_out(txn) for txn in items]


@app.get("/api/transactions-history")
def api_transactions_history(
    request: Request,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    start, end = _range_params(request)
    try:
        return TransactionService(db, user_id).history(start, end)
    except FinanceError as exc:
        raise http_error(exc) from exc


@app.get("/api/stats")
def api_balance(
    request: Request,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    start, end = _range_params(request)
    try:
        return MetricsService(db, user_id).balance(start, end)
    except FinanceError as exc:
        raise http_error(exc) from exc


@app.get("/api/stats/categories")
def api_category_breakdown(
    request: Request,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    start, end = _range_params(request)
    try:
        return MetricsService(db, user_id).category_breakdown(start, end)
    except FinanceError as exc:
        raise http_error(exc) from exc


@app.get("/api/history-data")
def api_history_data(
    request: Request,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    params = {
        key: value
        for key, value in request.query_params.items()
        if key in ("timeframe", "month", "year") and value != ""
    }
    try:
        query = parse_payload(HistoryQuery, params)
    except FinanceError as exc:
        raise http_error(exc) from exc
    points = HistoryService(db, user_id).history(query)
    return [point.model_dump(mode="json", exclude_none=True) for point in points]


@app.get("/api/history-periods")
def api_history_periods(
    db: Session = Depends(get_db), user_id: str = Depends(current_user_id)
):
    return HistoryService(db, user_id).periods()


@app.get("/api/categories")
def api_categories(
    request: Request,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    type_param = request.query_params.get("type")
    txn_type = None
    if type_param:
        try:
            txn_type = TransactionType(type_param)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail="Invalid type") from exc
    categories = CategoryService(db, user_id).list_all(txn_type)
    return [CategoryOut.model_validate(category) for category in categories]


@app.post("/api/categories", status_code=201)
async def create_category(
    request: Request,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    payload = await _json_body(request)
    try:
        data = parse_payload(CategoryIn, payload)
        category = CategoryService(db, user_id).create(data)
    except FinanceError as exc:
        raise http_error(exc) from exc
    return CategoryOut.model_validate(category)


@app.put("/api/categories/{category_type}/{name}")
async def update_category(
    category_type: TransactionType,
    name: str,
    request: Request,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    payload = await _json_body(request)
    try:
        data = parse_payload(CategoryIn, payload)
        category = CategoryService(db, user_id).update(name, category_type, data)
    except FinanceError as exc:
        raise http_error(exc) from exc
    return CategoryOut.model_validate(category)


@app.delete("/api/categories/{category_type}/{name}", status_code=204)
def delete_category(
    category_type: TransactionType,
    name: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    try:
        CategoryService(db, user_id).delete(name, category_type)
    except FinanceError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.get("/api/user-settings")
def api_user_settings(
    db: Session = Depends(get_db), user_id: str = Depends(current_user_id)
):
    return UserSettingsService(db, user_id).describe()


@app.put("/api/user-settings")
async def update_user_settings(
    request: Request,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    payload = await _json_body(request)
    try:
        data = parse_payload(UserSettingsIn, payload)
        service = UserSettingsService(db, user_id)
        service.update(data)
    except FinanceError as exc:
        raise http_error(exc) from exc
    return service.describe()


@app.post("/api/wizard")
async def apply_setup(
    request: Request,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    payload = await _json_body(request)
    try:
        data = parse_payload(SetupIn, payload)
        categories = SetupService(db, user_id).apply(data)
    except FinanceError as exc:
        raise http_error(exc) from exc
    return [CategoryOut.model_validate(category) for category in categories]


@app.get("/api/wizard/suggestions")
def api_setup_suggestions(user_id: str = Depends(current_user_id)):
    return SetupService.suggestions()


@app.post("/api/admin/rebuild-rollups", status_code=204)
def api_rebuild_rollups(
    db: Session = Depends(get_db), user_id: str = Depends(current_user_id)
):
    rebuild_rollups(db, user_id)
    return Response(status_code=204)
