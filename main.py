import logging
from typing import Optional

from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    FastAPI,
    Header,
    HTTPException,
    Query,
    Request,
    WebSocket,
    WebSocketDisconnect,
    status,
)
from fastapi.websockets import WebSocketState
from sqlalchemy.orm import Session

from alerts import DedupStore, NotFoundError
from config import get_settings
from database import Database
from periods import parse_month
from realtime import (
    ConnectionRegistry,
    DeliveryFanout,
    budget_updated_event,
    event,
    expense_created_event,
    notification_payload,
)
from schemas import (
    AuthOut,
    BudgetDetailOut,
    BudgetIn,
    BudgetOut,
    CategoryIn,
    CategoryLimitOut,
    CategoryOut,
    CategorySpendOut,
    ExpenseCreatedOut,
    ExpenseIn,
    ExpenseOut,
    LoginIn,
    NotificationOut,
    RegisterIn,
    SummaryOut,
    UserOut,
)
from services import (
    BudgetService,
    CategoryService,
    ConflictError,
    ExpenseService,
    UserService,
)
from tokens import InvalidAccessToken, issue_access_token, verify_access_token


logger = logging.getLogger(__name__)

SESSION_READY = "session:ready"

router = APIRouter(prefix="/api")
live_router = APIRouter()


def get_db(request: Request):
    db = request.app.state.database.session()
    try:
        yield db
    finally:
        db.close()


def current_user_id(authorization: Optional[str] = Header(default=None)) -> int:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing token")
    try:
        return verify_access_token(authorization[len("Bearer ") :].strip())
    except InvalidAccessToken as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc


def month_from_path(month: str) -> str:
    try:
        return parse_month(month)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def _auth_response(user) -> AuthOut:
    return AuthOut(
        token=issue_access_token(user.id), user=UserOut.model_validate(user)
    )


@router.get("/health")
def health():
    return {"ok": True}


@router.post("/auth/register", response_model=AuthOut)
def register(data: RegisterIn, db: Session = Depends(get_db)):
    try:
        user = UserService(db).register(data)
    except ConflictError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return _auth_response(user)


@router.post("/auth/login", response_model=AuthOut)
def login(data: LoginIn, db: Session = Depends(get_db)):
    user = UserService(db).authenticate(data)
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return _auth_response(user)


@router.get("/categories", response_model=list[CategoryOut])
def list_categories(
    user_id: int = Depends(current_user_id), db: Session = Depends(get_db)
):
    return CategoryService(db, user_id).list_all()


@router.post("/categories", response_model=CategoryOut)
def create_category(
    data: CategoryIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        return CategoryService(db, user_id).create(data)
    except ConflictError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.get("/budget/{month}", response_model=BudgetDetailOut)
def get_budget(
    month: str,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    month = month_from_path(month)
    try:
        budget, limits = BudgetService(db, user_id).detail(month)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return BudgetDetailOut(
        budget=BudgetOut.model_validate(budget),
        category_limits=[
            CategoryLimitOut(
                id=row.id,
                category_id=row.category_id,
                category_name=row.category.name,
                limit_cents=row.limit_cents,
            )
            for row in limits
        ],
    )


@router.put("/budget/{month}")
def save_budget(
    month: str,
    data: BudgetIn,
    request: Request,
    background_tasks: BackgroundTasks,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    month = month_from_path(month)
    try:
        BudgetService(db, user_id).save(month, data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    background_tasks.add_task(
        request.app.state.fanout.broadcast, user_id, [budget_updated_event(month)]
    )
    return {"ok": True}


@router.get("/expenses", response_model=list[ExpenseOut])
def list_expenses(
    month: str = Query(...),
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    month = month_from_path(month)
    return [
        ExpenseOut(
            id=expense.id,
            month=expense.month,
            category_id=expense.category_id,
            category_name=expense.category.name,
            amount_cents=expense.amount_cents,
            description=expense.description,
            expense_date=expense.expense_date,
            created_at=expense.created_at,
        )
        for expense in ExpenseService(db, user_id).list_for_month(month)
    ]


@router.post("/expenses", response_model=ExpenseCreatedOut)
def create_expense(
    data: ExpenseIn,
    request: Request,
    background_tasks: BackgroundTasks,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        result = ExpenseService(db, user_id).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    notifications = [notification_payload(n) for n in result.notifications]
    background_tasks.add_task(
        request.app.state.fanout.deliver,
        user_id,
        notifications,
        expense_created_event(result.expense.id, result.expense.month),
    )
    return {
        "expense_id": result.expense.id,
        "month": result.expense.month,
        "notifications": notifications,
    }


@router.get("/summary/{month}", response_model=SummaryOut)
def month_summary(
    month: str,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    month = month_from_path(month)
    summary = BudgetService(db, user_id).summary(month)
    budget = summary["budget"]
    return SummaryOut(
        month=month,
        budget=BudgetOut.model_validate(budget) if budget else None,
        total_spend_cents=summary["total_spend_cents"],
        remaining_cents=summary["remaining_cents"],
        by_category=[
            CategorySpendOut.model_validate(row) for row in summary["by_category"]
        ],
    )


@router.get("/notifications", response_model=list[NotificationOut])
def list_notifications(
    month: Optional[str] = Query(default=None),
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    if month is not None:
        month = month_from_path(month)
    return DedupStore(db, user_id).list_recent(month)


@router.post("/notifications/{notification_id}/read")
def mark_notification_read(
    notification_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        DedupStore(db, user_id).mark_read(notification_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"ok": True}


@live_router.websocket("/ws")
async def live_session(websocket: WebSocket, token: str = Query(default="")):
    try:
        user_id = verify_access_token(token)
    except InvalidAccessToken as exc:
        logger.info(f"session_rejected: reason={exc}")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    registry: ConnectionRegistry = websocket.app.state.registry
    session = registry.attach(user_id, websocket)
    try:
        await websocket.send_json(event(SESSION_READY, {"user_id": user_id}))
        while websocket.application_state == WebSocketState.CONNECTED:
            # inbound frames carry nothing; reading keeps disconnects observable
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        registry.detach(session)


def create_app(
    database: Optional[Database] = None,
    registry: Optional[ConnectionRegistry] = None,
) -> FastAPI:
    settings = get_settings()
    logging.basicConfig(level=settings.log_level)

    owns_database = database is None
    database = database or Database(settings.database_url)
    registry = registry or ConnectionRegistry()

    app = FastAPI(title="Budget Alerts")
    app.state.database = database
    app.state.registry = registry
    app.state.fanout = DeliveryFanout(registry)
    app.include_router(router)
    app.include_router(live_router)

    @app.on_event("shutdown")
    def shutdown_event():
        if owns_database:
            database.dispose()
            logger.info("Database engine disposed")

    return app


app = create_app()


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
