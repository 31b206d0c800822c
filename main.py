import logging
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Response
from sqlalchemy.orm import Session

from aggregation import summarize_budget
from auth import resolve_owner
from database import get_db
from errors import ConsistencyError, NotFoundError, ProviderError, ValidationError
from rollover import RolloverEngine
from scheduler import SchedulerManager
from schemas import (
    BudgetBufferIn,
    BudgetItemIn,
    BudgetItemUpdate,
    BudgetOut,
    BudgetPeriodIn,
    CategorizeIn,
    CategoryIn,
    CopyIn,
    LinkedAccountIn,
    LinkedAccountOut,
    LinkedAccountToggleIn,
    RecurringPaymentIn,
    RecurringPaymentOut,
    RecurringPaymentUpdate,
    ReorderIn,
    ResetIn,
    RolloverResultOut,
    SplitIn,
    SplitOut,
    SyncIn,
    SyncResultOut,
    TransactionIn,
    TransactionOut,
    UncategorizedTransactionOut,
)
from services import (
    BudgetItemService,
    BudgetService,
    CategoryService,
    LinkedAccountService,
    RecurringPaymentService,
    TransactionService,
)
from sync import SyncEngine

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="Budget Ledger")

SERVICE_ERRORS = (ValidationError, NotFoundError, ProviderError, ConsistencyError)


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, ProviderError):
        return HTTPException(status_code=502, detail=str(exc))
    logger.exception(f"internal_error: {exc}")
    return HTTPException(status_code=500, detail="Internal consistency error")


def current_user(authorization: Optional[str] = Header(default=None)) -> str:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Missing bearer token")
    user_id = resolve_owner(authorization[7:].strip())
    if user_id is None:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    return user_id


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


@app.get("/health")
def health():
    return {"status": "ok"}


# Budget periods


@app.post("/api/budgets/open")
def open_budget(
    data: BudgetPeriodIn,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user),
):
    service = BudgetService(db, user_id)
    try:
        budget, result = service.open_period(data.month, data.year)
    except SERVICE_ERRORS as exc:
        raise _http_error(exc) from exc
    return {
        "budget": BudgetOut.from_budget(budget, summarize_budget(budget)),
        "rollover": RolloverResultOut.model_validate(result),
    }


@app.get("/api/budgets/{year}/{month}", response_model=BudgetOut)
def get_budget(
    year: int,
    month: int,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user),
):
    service = BudgetService(db, user_id)
    try:
        budget = service.load(month, year)
    except SERVICE_ERRORS as exc:
        raise _http_error(exc) from exc
    if budget is None:
        raise HTTPException(status_code=404, detail="Budget not found")
    return BudgetOut.from_budget(budget, summarize_budget(budget))


@app.patch("/api/budgets/{budget_id}/buffer", response_model=BudgetOut)
def update_buffer(
    budget_id: int,
    data: BudgetBufferIn,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user),
):
    service = BudgetService(db, user_id)
    try:
        budget = service.update_buffer(budget_id, data.buffer)
    except SERVICE_ERRORS as exc:
        raise _http_error(exc) from exc
    return BudgetOut.from_budget(budget, summarize_budget(budget))


@app.post("/api/budgets/reset", response_model=RolloverResultOut)
def reset_budget(
    data: ResetIn,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user),
):
    try:
        result = RolloverEngine(db, user_id).reset(data.budget_id, data.mode)
    except SERVICE_ERRORS as exc:
        raise _http_error(exc) from exc
    return RolloverResultOut.model_validate(result)


@app.post("/api/budgets/copy", response_model=RolloverResultOut)
def copy_budget(
    data: CopyIn,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user),
):
    try:
        result = RolloverEngine(db, user_id).copy(
            data.source_month, data.source_year, data.target_month, data.target_year
        )
    except SERVICE_ERRORS as exc:
        raise _http_error(exc) from exc
    return RolloverResultOut.model_validate(result)


# Categories and items


@app.post("/api/categories", status_code=201)
def create_category(
    data: CategoryIn,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user),
):
    try:
        category = CategoryService(db, user_id).create(data)
    except SERVICE_ERRORS as exc:
        raise _http_error(exc) from exc
    return {"id": category.id, "category_type": category.category_type}


@app.delete("/api/categories/{category_id}", status_code=204)
def delete_category(
    category_id: int,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user),
):
    try:
        CategoryService(db, user_id).delete(category_id)
    except SERVICE_ERRORS as exc:
        raise _http_error(exc) from exc
    return Response(status_code=204)


@app.post("/api/items", status_code=201)
def create_item(
    data: BudgetItemIn,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user),
):
    try:
        item = BudgetItemService(db, user_id).create(data)
    except SERVICE_ERRORS as exc:
        raise _http_error(exc) from exc
    return {"id": item.id, "order": item.order}


@app.post("/api/items/reorder")
def reorder_items(
    data: ReorderIn,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user),
):
    try:
        count = BudgetItemService(db, user_id).reorder(data.items)
    except SERVICE_ERRORS as exc:
        raise _http_error(exc) from exc
    return {"updated": count}


@app.patch("/api/items/{item_id}")
def update_item(
    item_id: int,
    data: BudgetItemUpdate,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user),
):
    try:
        item = BudgetItemService(db, user_id).update(item_id, data)
    except SERVICE_ERRORS as exc:
        raise _http_error(exc) from exc
    return {"id": item.id, "name": item.name, "planned": str(item.planned)}


@app.delete("/api/items/{item_id}", status_code=204)
def delete_item(
    item_id: int,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user),
):
    try:
        BudgetItemService(db, user_id).delete(item_id)
    except SERVICE_ERRORS as exc:
        raise _http_error(exc) from exc
    return Response(status_code=204)


# Transactions


@app.get("/api/transactions", response_model=list[TransactionOut])
def list_transactions(
    month: int = Query(..., ge=1, le=12),
    year: int = Query(..., ge=1970, le=3000),
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user),
):
    txns = TransactionService(db, user_id).list_for_period(month, year)
    return [TransactionOut.model_validate(t) for t in txns]


@app.get("/api/transactions/deleted", response_model=list[TransactionOut])
def list_deleted_transactions(
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user),
):
    txns = TransactionService(db, user_id).deleted()
    return [TransactionOut.model_validate(t) for t in txns]


@app.get(
    "/api/transactions/uncategorized",
    response_model=list[UncategorizedTransactionOut],
)
def list_uncategorized(
    month: Optional[int] = Query(default=None, ge=1, le=12),
    year: Optional[int] = Query(default=None, ge=1970, le=3000),
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user),
):
    rows = TransactionService(db, user_id).list_uncategorized(month, year)
    return [
        UncategorizedTransactionOut(
            **TransactionOut.model_validate(row.transaction).model_dump(),
            suggested_budget_item_id=row.suggested_budget_item_id,
        )
        for row in rows
    ]


@app.post("/api/transactions", response_model=TransactionOut, status_code=201)
def create_transaction(
    data: TransactionIn,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user),
):
    try:
        txn = TransactionService(db, user_id).create(data)
    except SERVICE_ERRORS as exc:
        raise _http_error(exc) from exc
    return TransactionOut.model_validate(txn)


@app.put("/api/transactions/{transaction_id}", response_model=TransactionOut)
def update_transaction(
    transaction_id: int,
    data: TransactionIn,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user),
):
    try:
        txn = TransactionService(db, user_id).update(transaction_id, data)
    except SERVICE_ERRORS as exc:
        raise _http_error(exc) from exc
    return TransactionOut.model_validate(txn)


@app.post(
    "/api/transactions/{transaction_id}/categorize", response_model=TransactionOut
)
def categorize_transaction(
    transaction_id: int,
    data: CategorizeIn,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user),
):
    try:
        txn = TransactionService(db, user_id).categorize(
            transaction_id, data.budget_item_id
        )
    except SERVICE_ERRORS as exc:
        raise _http_error(exc) from exc
    return TransactionOut.model_validate(txn)


@app.delete("/api/transactions/{transaction_id}", status_code=204)
def delete_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user),
):
    try:
        TransactionService(db, user_id).soft_delete(transaction_id)
    except SERVICE_ERRORS as exc:
        raise _http_error(exc) from exc
    return Response(status_code=204)


@app.post("/api/transactions/{transaction_id}/restore", status_code=204)
def restore_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user),
):
    try:
        TransactionService(db, user_id).restore(transaction_id)
    except SERVICE_ERRORS as exc:
        raise _http_error(exc) from exc
    return Response(status_code=204)


@app.put("/api/transactions/{transaction_id}/splits", response_model=list[SplitOut])
def split_transaction(
    transaction_id: int,
    data: SplitIn,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user),
):
    try:
        splits = TransactionService(db, user_id).split(transaction_id, data.parts)
    except SERVICE_ERRORS as exc:
        raise _http_error(exc) from exc
    return [SplitOut.model_validate(s) for s in splits]


@app.delete("/api/transactions/{transaction_id}/splits", status_code=204)
def clear_splits(
    transaction_id: int,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user),
):
    try:
        TransactionService(db, user_id).clear_splits(transaction_id)
    except SERVICE_ERRORS as exc:
        raise _http_error(exc) from exc
    return Response(status_code=204)


# Recurring payments


@app.get("/api/recurring", response_model=list[RecurringPaymentOut])
def list_recurring(
    include_inactive: bool = False,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user),
):
    summaries = RecurringPaymentService(db, user_id).list_all(
        include_inactive=include_inactive
    )
    return [RecurringPaymentOut.from_summary(s) for s in summaries]


@app.post("/api/recurring", response_model=RecurringPaymentOut, status_code=201)
def create_recurring(
    data: RecurringPaymentIn,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user),
):
    try:
        summary = RecurringPaymentService(db, user_id).create(data)
    except SERVICE_ERRORS as exc:
        raise _http_error(exc) from exc
    return RecurringPaymentOut.from_summary(summary)


@app.patch("/api/recurring/{payment_id}", response_model=RecurringPaymentOut)
def update_recurring(
    payment_id: int,
    data: RecurringPaymentUpdate,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user),
):
    try:
        summary = RecurringPaymentService(db, user_id).update(payment_id, data)
    except SERVICE_ERRORS as exc:
        raise _http_error(exc) from exc
    return RecurringPaymentOut.from_summary(summary)


@app.delete("/api/recurring/{payment_id}", status_code=204)
def delete_recurring(
    payment_id: int,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user),
):
    try:
        RecurringPaymentService(db, user_id).delete(payment_id)
    except SERVICE_ERRORS as exc:
        raise _http_error(exc) from exc
    return Response(status_code=204)


# Linked accounts and sync


@app.get("/api/accounts", response_model=list[LinkedAccountOut])
def list_accounts(
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user),
):
    accounts = LinkedAccountService(db, user_id).list_all()
    return [LinkedAccountOut.model_validate(a) for a in accounts]


@app.post("/api/accounts", response_model=LinkedAccountOut, status_code=201)
def link_account(
    data: LinkedAccountIn,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user),
):
    account = LinkedAccountService(db, user_id).create(data)
    return LinkedAccountOut.model_validate(account)


@app.patch("/api/accounts/{account_id}", response_model=LinkedAccountOut)
def toggle_account(
    account_id: int,
    data: LinkedAccountToggleIn,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user),
):
    try:
        account = LinkedAccountService(db, user_id).set_sync_enabled(
            account_id, data.sync_enabled
        )
    except SERVICE_ERRORS as exc:
        raise _http_error(exc) from exc
    return LinkedAccountOut.model_validate(account)


@app.delete("/api/accounts/{account_id}", status_code=204)
def delete_account(
    account_id: int,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user),
):
    try:
        LinkedAccountService(db, user_id).delete(account_id)
    except SERVICE_ERRORS as exc:
        raise _http_error(exc) from exc
    return Response(status_code=204)


@app.post("/api/sync", response_model=SyncResultOut)
def sync_transactions(
    data: SyncIn,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user),
):
    try:
        result = SyncEngine(db, user_id).sync(
            account_id=data.account_id,
            start_date=data.start_date,
            end_date=data.end_date,
        )
    except SERVICE_ERRORS as exc:
        raise _http_error(exc) from exc
    return SyncResultOut(
        synced=result.synced,
        updated=result.updated,
        skipped=result.skipped,
        errors=result.errors,
    )
