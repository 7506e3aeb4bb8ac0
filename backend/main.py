import logging
import os
import uuid
from datetime import date, datetime
from decimal import Decimal

import bcrypt
from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Header, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    create_engine,
    func,
    insert,
    select,
    update,
)
from sqlalchemy.exc import IntegrityError

from backend.budget_adjustment import (
    InvalidTransfer,
    apply_transfer,
    eligible_donors,
    plan_transfer,
)
from backend.budget_engine import (
    BudgetSummary,
    Category,
    Expense,
    Period,
    budget_report,
    budget_totals,
    daily_totals,
    expenses_on,
    monthly_total,
    over_budget_categories,
    round_percentage,
    spending_by_category,
)
from backend.period_resolver import (
    InvalidPeriod,
    PeriodKind,
    month_period,
    parse_period_date,
    resolve_period,
)
from backend.spending_analysis import GroqSummarizer, analyze_spending

load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI()

frontend_origin = os.getenv("FRONTEND_ORIGIN", "http://localhost:3000")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[frontend_origin],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

database_url = os.getenv("DATABASE_URL", "sqlite:///./budget.db")
connect_args = {}
if database_url.startswith("sqlite"):
    connect_args = {"check_same_thread": False}

engine = create_engine(database_url, connect_args=connect_args)
metadata = MetaData()

CURRENCY_SYMBOL = os.getenv("CURRENCY_SYMBOL", "¥")
SUMMARIZER = GroqSummarizer(
    timeout_seconds=float(os.getenv("ANALYSIS_TIMEOUT_SECONDS", "20")),
)

DEFAULT_CATEGORY_COLOR = "#6b7280"

users = Table(
    "users",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("email", String(255), unique=True, nullable=False),
    Column("hashed_password", String(255), nullable=False),
    Column("monthly_income", Numeric(12, 2), nullable=False, default=0),
    Column("is_setup_complete", Boolean, nullable=False, default=False),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

categories = Table(
    "categories",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("user_id", String(32), ForeignKey("users.id"), nullable=False),
    Column("name", String(255), nullable=False),
    Column("spending_limit", Numeric(12, 2), nullable=False),
    Column("color", String(32), nullable=False),
    Column("is_essential", Boolean, nullable=False, default=False),
    Column("position", Integer, nullable=False, default=0),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

expenses = Table(
    "expenses",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("user_id", String(32), ForeignKey("users.id"), nullable=False),
    Column("category_id", String(32), ForeignKey("categories.id"), nullable=False),
    Column("amount", Numeric(12, 2), nullable=False),
    Column("description", String(500)),
    Column("date", Date, nullable=False),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)


@app.on_event("startup")
def init_db() -> None:
    metadata.create_all(engine)


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CredentialsPayload(BaseModel):
    email: str
    password: str


class UserResponse(ApiModel):
    id: str
    email: str
    created_at: datetime | None = None


class CategoryPayload(ApiModel):
    id: str | None = None
    name: str
    limit: Decimal
    color: str | None = None
    is_essential: bool = False

    @classmethod
    def validate_payload(cls, payload: "CategoryPayload") -> "CategoryPayload":
        payload.name = payload.name.strip()
        if not payload.name:
            raise ValueError("Category name required.")
        if payload.limit < 0:
            raise ValueError("Category limit must be zero or greater.")
        payload.color = payload.color.strip() if payload.color else DEFAULT_CATEGORY_COLOR
        payload.id = payload.id.strip() if payload.id else None
        return payload


class CategoryResponse(ApiModel):
    id: str
    name: str
    limit: Decimal
    color: str
    is_essential: bool


class CategoryListPayload(ApiModel):
    categories: list[CategoryPayload]

    @classmethod
    def validate_payload(cls, payload: "CategoryListPayload") -> "CategoryListPayload":
        payload.categories = [
            CategoryPayload.validate_payload(item) for item in payload.categories
        ]
        ids = [item.id for item in payload.categories if item.id]
        if len(ids) != len(set(ids)):
            raise ValueError("Category ids must be unique.")
        return payload


class SetupPayload(CategoryListPayload):
    monthly_income: Decimal = Decimal("0")

    @classmethod
    def validate_payload(cls, payload: "SetupPayload") -> "SetupPayload":
        payload = super().validate_payload(payload)
        if payload.monthly_income < 0:
            raise ValueError("Monthly income must be zero or greater.")
        if not payload.categories:
            raise ValueError("At least one category is required.")
        return payload


class SetupResponse(ApiModel):
    categories: list[CategoryResponse]
    monthly_income: Decimal


class IncomePayload(ApiModel):
    monthly_income: Decimal


class IncomeResponse(ApiModel):
    monthly_income: Decimal


class ExpensePayload(ApiModel):
    category_id: str
    amount: Decimal
    description: str | None = None
    date: date

    @classmethod
    def validate_payload(cls, payload: "ExpensePayload") -> "ExpensePayload":
        payload.category_id = payload.category_id.strip()
        if not payload.category_id:
            raise ValueError("Category required.")
        if payload.amount <= 0:
            raise ValueError("Amount must be greater than zero.")
        payload.description = payload.description.strip() if payload.description else None
        return payload


class ExpenseResponse(ApiModel):
    id: str
    category_id: str
    amount: Decimal
    description: str
    date: date
    created_at: datetime | None = None


class UserDataResponse(ApiModel):
    id: str
    email: str
    monthly_income: Decimal
    is_setup_complete: bool
    categories: list[CategoryResponse]
    expenses: list[ExpenseResponse]


class DailyTotalResponse(ApiModel):
    date: date
    total: Decimal


class DayDetailResponse(ApiModel):
    date: date
    total: Decimal
    expenses: list[ExpenseResponse]


class PeriodResponse(ApiModel):
    start_date: date
    end_date: date


class CategorySummaryResponse(ApiModel):
    category_id: str
    category_name: str
    limit: Decimal
    spent: Decimal
    remaining: Decimal
    percentage: Decimal
    status: str


class BudgetSummaryResponse(ApiModel):
    period: PeriodResponse
    categories: list[CategorySummaryResponse]
    total_budget: Decimal
    total_spent: Decimal
    remaining: Decimal
    unmatched: Decimal
    period_total: Decimal
    over_budget_category_ids: list[str]


class DonorResponse(ApiModel):
    category: CategoryResponse
    spent: Decimal
    remaining: Decimal
    transfer_amount: Decimal
    fully_covered: bool


class DonorListResponse(ApiModel):
    target: CategorySummaryResponse
    amount_needed: Decimal
    donors: list[DonorResponse]


class AdjustmentPayload(ApiModel):
    target_category_id: str
    donor_category_id: str
    transfer_amount: Decimal | None = None


class AnalysisPayload(ApiModel):
    period: str = PeriodKind.THIS_MONTH
    start_date: str | None = None
    end_date: str | None = None


class AnalysisSummaryResponse(ApiModel):
    total_spent: Decimal
    total_budget: Decimal
    unmatched: Decimal
    budget_status: list[CategorySummaryResponse]
    period: PeriodResponse


class AnalysisResponse(ApiModel):
    analysis: str | None = None
    analysis_available: bool
    analysis_error: str | None = None
    summary: AnalysisSummaryResponse


def new_id() -> str:
    return uuid.uuid4().hex


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed_password: str) -> bool:
    return bcrypt.checkpw(password.encode("utf-8"), hashed_password.encode("utf-8"))


def get_user_id(x_user_id: str | None = Header(None)) -> str:
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing user identity.")
    user_id = x_user_id.strip()
    with engine.begin() as conn:
        result = conn.execute(select(users.c.id).where(users.c.id == user_id))
        if not result.first():
            raise HTTPException(status_code=404, detail="User not found.")
    return user_id


def category_from_row(row) -> Category:
    return Category(
        id=row["id"],
        name=row["name"],
        limit=Decimal(str(row["spending_limit"])),
        color=row["color"],
        is_essential=bool(row["is_essential"]),
    )


def expense_from_row(row) -> Expense:
    return Expense(
        id=row["id"],
        category_id=row["category_id"],
        amount=Decimal(str(row["amount"])),
        date=row["date"],
        description=row["description"] or "",
        created_at=row["created_at"],
    )


def category_response(category: Category) -> CategoryResponse:
    return CategoryResponse(
        id=category.id,
        name=category.name,
        limit=category.limit,
        color=category.color,
        is_essential=category.is_essential,
    )


def expense_response(expense: Expense) -> ExpenseResponse:
    return ExpenseResponse(
        id=expense.id,
        category_id=expense.category_id,
        amount=expense.amount,
        description=expense.description,
        date=expense.date,
        created_at=expense.created_at,
    )


def summary_response(summary: BudgetSummary) -> CategorySummaryResponse:
    return CategorySummaryResponse(
        category_id=summary.category_id,
        category_name=summary.category_name,
        limit=summary.limit,
        spent=summary.spent,
        remaining=summary.remaining,
        percentage=round_percentage(summary.percentage),
        status=summary.status,
    )


def period_response(period: Period) -> PeriodResponse:
    return PeriodResponse(start_date=period.start, end_date=period.end)


def fetch_categories(conn, user_id: str, for_update: bool = False) -> list[Category]:
    stmt = (
        select(categories)
        .where(categories.c.user_id == user_id)
        .order_by(categories.c.position.asc(), categories.c.created_at.asc())
    )
    if for_update:
        stmt = stmt.with_for_update()
    rows = conn.execute(stmt).mappings().all()
    return [category_from_row(row) for row in rows]


def persist_transfer(
    conn,
    user_id: str,
    target_id: str,
    donor_id: str,
    transfer_amount: Decimal,
) -> None:
    """Move ``transfer_amount`` of limit from donor to target in the database.

    Both updates are relative to the stored limits, so transfers committed in
    between the caller's read and this write are not overwritten.
    """
    donor_result = conn.execute(
        update(categories)
        .where(
            categories.c.id == donor_id,
            categories.c.user_id == user_id,
            categories.c.is_essential.is_(False),
            categories.c.spending_limit >= transfer_amount,
        )
        .values(spending_limit=categories.c.spending_limit - transfer_amount)
    )
    if donor_result.rowcount == 0:
        raise InvalidTransfer("Donor category no longer has enough budget to transfer.")
    target_result = conn.execute(
        update(categories)
        .where(categories.c.id == target_id, categories.c.user_id == user_id)
        .values(spending_limit=categories.c.spending_limit + transfer_amount)
    )
    if target_result.rowcount == 0:
        raise InvalidTransfer(f"Unknown target category: {target_id}")


def fetch_expenses(
    conn,
    user_id: str,
    start_date: date | None = None,
    end_date: date | None = None,
) -> list[Expense]:
    stmt = select(expenses).where(expenses.c.user_id == user_id)
    if start_date is not None:
        stmt = stmt.where(expenses.c.date >= start_date)
    if end_date is not None:
        stmt = stmt.where(expenses.c.date <= end_date)
    stmt = stmt.order_by(expenses.c.date.desc(), expenses.c.created_at.desc())
    return [expense_from_row(row) for row in conn.execute(stmt).mappings().all()]


def category_in_use(conn, user_id: str, category_id: str) -> bool:
    match = conn.execute(
        select(expenses.c.id)
        .where(expenses.c.user_id == user_id, expenses.c.category_id == category_id)
        .limit(1)
    ).first()
    return bool(match)


def insert_category(conn, user_id: str, payload: CategoryPayload, position: int) -> Category:
    category_id = new_id()
    conn.execute(
        insert(categories).values(
            id=category_id,
            user_id=user_id,
            name=payload.name,
            spending_limit=payload.limit,
            color=payload.color,
            is_essential=payload.is_essential,
            position=position,
        )
    )
    return Category(
        id=category_id,
        name=payload.name,
        limit=payload.limit,
        color=payload.color,
        is_essential=payload.is_essential,
    )


def resolve_request_period(
    period: str,
    start_date: str | None,
    end_date: str | None,
    today: date | None = None,
) -> Period:
    return resolve_period(
        period,
        today or date.today(),
        custom_start=parse_period_date(start_date),
        custom_end=parse_period_date(end_date),
    )


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.post("/auth/signup", response_model=UserResponse)
def signup(payload: CredentialsPayload) -> UserResponse:
    email = payload.email.strip().lower()
    if not email or not payload.password:
        raise HTTPException(status_code=400, detail="Email and password required.")
    hashed_password = hash_password(payload.password)

    stmt = (
        insert(users)
        .values(
            id=new_id(),
            email=email,
            hashed_password=hashed_password,
            monthly_income=0,
            is_setup_complete=False,
        )
        .returning(users.c.id, users.c.email, users.c.created_at)
    )
    try:
        with engine.begin() as conn:
            row = conn.execute(stmt).mappings().first()
    except IntegrityError as exc:
        raise HTTPException(status_code=409, detail="Email already exists.") from exc

    if not row:
        raise HTTPException(status_code=500, detail="Failed to create user.")
    logger.info("Created user %s", row["id"])
    return UserResponse(id=row["id"], email=row["email"], created_at=row["created_at"])


@app.post("/auth/login", response_model=UserResponse)
def login(payload: CredentialsPayload) -> UserResponse:
    email = payload.email.strip().lower()
    with engine.begin() as conn:
        row = conn.execute(select(users).where(users.c.email == email)).mappings().first()

    if not row or not verify_password(payload.password, row["hashed_password"]):
        raise HTTPException(status_code=401, detail="Invalid credentials.")

    return UserResponse(id=row["id"], email=row["email"], created_at=row["created_at"])


@app.get("/users/me", response_model=UserDataResponse)
def get_user_data(
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> UserDataResponse:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        row = conn.execute(select(users).where(users.c.id == user_id)).mappings().first()
        if not row:
            raise HTTPException(status_code=404, detail="User not found.")
        category_items = fetch_categories(conn, user_id)
        expense_items = fetch_expenses(conn, user_id)
    return UserDataResponse(
        id=row["id"],
        email=row["email"],
        monthly_income=row["monthly_income"],
        is_setup_complete=bool(row["is_setup_complete"]),
        categories=[category_response(item) for item in category_items],
        expenses=[expense_response(item) for item in expense_items],
    )


@app.delete("/users/me", response_model=UserDataResponse)
def reset_user_data(
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> UserDataResponse:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        conn.execute(expenses.delete().where(expenses.c.user_id == user_id))
        conn.execute(categories.delete().where(categories.c.user_id == user_id))
        row = conn.execute(
            update(users)
            .where(users.c.id == user_id)
            .values(is_setup_complete=False, monthly_income=0)
            .returning(users.c.id, users.c.email, users.c.monthly_income)
        ).mappings().first()
    if not row:
        raise HTTPException(status_code=404, detail="User not found.")
    logger.info("Reset budget data for user %s", user_id)
    return UserDataResponse(
        id=row["id"],
        email=row["email"],
        monthly_income=row["monthly_income"],
        is_setup_complete=False,
        categories=[],
        expenses=[],
    )


@app.put("/users/me/income", response_model=IncomeResponse)
def update_income(
    payload: IncomePayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> IncomeResponse:
    user_id = get_user_id(x_user_id)
    if payload.monthly_income < 0:
        raise HTTPException(status_code=400, detail="Monthly income must be zero or greater.")
    with engine.begin() as conn:
        row = conn.execute(
            update(users)
            .where(users.c.id == user_id)
            .values(monthly_income=payload.monthly_income)
            .returning(users.c.monthly_income)
        ).mappings().first()
    if not row:
        raise HTTPException(status_code=404, detail="User not found.")
    return IncomeResponse(monthly_income=row["monthly_income"])


@app.post("/categories/setup", response_model=SetupResponse)
def setup_categories(
    payload: SetupPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> SetupResponse:
    user_id = get_user_id(x_user_id)
    try:
        payload = SetupPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    with engine.begin() as conn:
        has_expenses = conn.execute(
            select(expenses.c.id).where(expenses.c.user_id == user_id).limit(1)
        ).first()
        if has_expenses:
            raise HTTPException(
                status_code=409,
                detail="Existing expenses must be reset before running setup.",
            )
        conn.execute(categories.delete().where(categories.c.user_id == user_id))
        created = [
            insert_category(conn, user_id, item, position)
            for position, item in enumerate(payload.categories)
        ]
        conn.execute(
            update(users)
            .where(users.c.id == user_id)
            .values(is_setup_complete=True, monthly_income=payload.monthly_income)
        )
    logger.info("Completed budget setup for user %s with %d categories", user_id, len(created))
    return SetupResponse(
        categories=[category_response(item) for item in created],
        monthly_income=payload.monthly_income,
    )


@app.get("/categories", response_model=list[CategoryResponse])
def list_categories(
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[CategoryResponse]:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        category_items = fetch_categories(conn, user_id)
    return [category_response(item) for item in category_items]


@app.put("/categories", response_model=list[CategoryResponse])
def replace_categories(
    payload: CategoryListPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[CategoryResponse]:
    user_id = get_user_id(x_user_id)
    try:
        payload = CategoryListPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    with engine.begin() as conn:
        existing_ids = {item.id for item in fetch_categories(conn, user_id)}
        result: list[Category] = []
        for position, item in enumerate(payload.categories):
            if item.id and item.id in existing_ids:
                conn.execute(
                    update(categories)
                    .where(categories.c.id == item.id, categories.c.user_id == user_id)
                    .values(
                        name=item.name,
                        spending_limit=item.limit,
                        color=item.color,
                        is_essential=item.is_essential,
                        position=position,
                    )
                )
                existing_ids.discard(item.id)
                result.append(
                    Category(
                        id=item.id,
                        name=item.name,
                        limit=item.limit,
                        color=item.color,
                        is_essential=item.is_essential,
                    )
                )
            else:
                result.append(insert_category(conn, user_id, item, position))

        for removed_id in existing_ids:
            if category_in_use(conn, user_id, removed_id):
                raise HTTPException(
                    status_code=409,
                    detail=f"Category {removed_id} still has expenses.",
                )
            conn.execute(
                categories.delete().where(
                    categories.c.id == removed_id, categories.c.user_id == user_id
                )
            )
    return [category_response(item) for item in result]


@app.get("/expenses", response_model=list[ExpenseResponse])
def list_expenses(
    start_date: str | None = Query(None),
    end_date: str | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[ExpenseResponse]:
    user_id = get_user_id(x_user_id)
    try:
        start_value = parse_period_date(start_date)
        end_value = parse_period_date(end_date)
    except InvalidPeriod as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    with engine.begin() as conn:
        expense_items = fetch_expenses(conn, user_id, start_value, end_value)
    return [expense_response(item) for item in expense_items]


@app.get("/expenses/daily", response_model=list[DailyTotalResponse])
def list_daily_totals(
    month: str = Query(...),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[DailyTotalResponse]:
    user_id = get_user_id(x_user_id)
    try:
        period = month_period(month)
    except InvalidPeriod as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    with engine.begin() as conn:
        expense_items = fetch_expenses(conn, user_id, period.start, period.end)
    return [
        DailyTotalResponse(date=day, total=total)
        for day, total in daily_totals(expense_items, period).items()
    ]


@app.get("/expenses/daily/{day}", response_model=DayDetailResponse)
def get_day_detail(
    day: date,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> DayDetailResponse:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        expense_items = fetch_expenses(conn, user_id, day, day)
    detail = expenses_on(expense_items, day)
    return DayDetailResponse(
        date=detail.date,
        total=detail.total,
        expenses=[expense_response(item) for item in detail.expenses],
    )


@app.post("/expenses", response_model=ExpenseResponse)
def create_expense(
    payload: ExpensePayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> ExpenseResponse:
    user_id = get_user_id(x_user_id)
    try:
        payload = ExpensePayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    with engine.begin() as conn:
        category_exists = conn.execute(
            select(categories.c.id).where(
                categories.c.id == payload.category_id, categories.c.user_id == user_id
            )
        ).first()
        if not category_exists:
            raise HTTPException(status_code=404, detail="Category not found.")
        row = conn.execute(
            insert(expenses)
            .values(
                id=new_id(),
                user_id=user_id,
                category_id=payload.category_id,
                amount=payload.amount,
                description=payload.description,
                date=payload.date,
            )
            .returning(*expenses.c)
        ).mappings().first()

    if not row:
        raise HTTPException(status_code=500, detail="Failed to create expense.")
    return expense_response(expense_from_row(row))


@app.put("/expenses/{expense_id}", response_model=ExpenseResponse)
def update_expense(
    expense_id: str,
    payload: ExpensePayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> ExpenseResponse:
    user_id = get_user_id(x_user_id)
    try:
        payload = ExpensePayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    with engine.begin() as conn:
        category_exists = conn.execute(
            select(categories.c.id).where(
                categories.c.id == payload.category_id, categories.c.user_id == user_id
            )
        ).first()
        if not category_exists:
            raise HTTPException(status_code=404, detail="Category not found.")
        row = conn.execute(
            update(expenses)
            .where(expenses.c.id == expense_id, expenses.c.user_id == user_id)
            .values(
                category_id=payload.category_id,
                amount=payload.amount,
                description=payload.description,
                date=payload.date,
            )
            .returning(*expenses.c)
        ).mappings().first()

    if not row:
        raise HTTPException(status_code=404, detail="Expense not found.")
    return expense_response(expense_from_row(row))


@app.delete("/expenses/{expense_id}")
def delete_expense(
    expense_id: str, x_user_id: str | None = Header(None, alias="x-user-id")
) -> dict:
    user_id = get_user_id(x_user_id)
    stmt = expenses.delete().where(
        expenses.c.id == expense_id, expenses.c.user_id == user_id
    )
    with engine.begin() as conn:
        result = conn.execute(stmt)
        if result.rowcount == 0:
            raise HTTPException(status_code=404, detail="Expense not found.")
    return {"success": True}


@app.get("/budget/summary", response_model=BudgetSummaryResponse)
def get_budget_summary(
    period: str = Query(PeriodKind.THIS_MONTH),
    start_date: str | None = Query(None),
    end_date: str | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> BudgetSummaryResponse:
    user_id = get_user_id(x_user_id)
    try:
        resolved = resolve_request_period(period, start_date, end_date)
    except InvalidPeriod as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    with engine.begin() as conn:
        category_items = fetch_categories(conn, user_id)
        expense_items = fetch_expenses(conn, user_id, resolved.start, resolved.end)

    spending = spending_by_category(category_items, expense_items, resolved)
    totals = budget_totals(category_items, spending)
    return BudgetSummaryResponse(
        period=period_response(resolved),
        categories=[
            summary_response(item) for item in budget_report(category_items, spending)
        ],
        total_budget=totals.total_budget,
        total_spent=totals.total_spent,
        remaining=totals.remaining,
        unmatched=spending.unmatched,
        period_total=monthly_total(expense_items, resolved),
        over_budget_category_ids=[
            item.id for item in over_budget_categories(category_items, spending)
        ],
    )


@app.get("/budget/adjustments/{category_id}/donors", response_model=DonorListResponse)
def list_adjustment_donors(
    category_id: str,
    period: str = Query(PeriodKind.THIS_MONTH),
    start_date: str | None = Query(None),
    end_date: str | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> DonorListResponse:
    user_id = get_user_id(x_user_id)
    try:
        resolved = resolve_request_period(period, start_date, end_date)
    except InvalidPeriod as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    with engine.begin() as conn:
        category_items = fetch_categories(conn, user_id)
        expense_items = fetch_expenses(conn, user_id, resolved.start, resolved.end)

    spending = spending_by_category(category_items, expense_items, resolved)
    target = next((item for item in category_items if item.id == category_id), None)
    if target is None:
        raise HTTPException(status_code=404, detail="Category not found.")
    target_summary = budget_report([target], spending)[0]
    amount_needed = max(-target_summary.remaining, Decimal("0"))

    donors = []
    for donor in eligible_donors(category_items, spending, category_id):
        plan = plan_transfer(donor, amount_needed)
        donors.append(
            DonorResponse(
                category=category_response(donor.category),
                spent=donor.spent,
                remaining=donor.remaining,
                transfer_amount=plan.transfer_amount,
                fully_covered=plan.fully_covered,
            )
        )
    return DonorListResponse(
        target=summary_response(target_summary),
        amount_needed=amount_needed,
        donors=donors,
    )


@app.post("/budget/adjustments", response_model=list[CategoryResponse])
def adjust_budget(
    payload: AdjustmentPayload,
    period: str = Query(PeriodKind.THIS_MONTH),
    start_date: str | None = Query(None),
    end_date: str | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[CategoryResponse]:
    user_id = get_user_id(x_user_id)
    try:
        resolved = resolve_request_period(period, start_date, end_date)
    except InvalidPeriod as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    with engine.begin() as conn:
        category_items = fetch_categories(conn, user_id, for_update=True)
        expense_items = fetch_expenses(conn, user_id, resolved.start, resolved.end)
        spending = spending_by_category(category_items, expense_items, resolved)

        known_ids = {item.id for item in category_items}
        if payload.target_category_id not in known_ids:
            raise HTTPException(status_code=404, detail="Category not found.")
        if payload.donor_category_id not in known_ids:
            raise HTTPException(status_code=404, detail="Donor category not found.")

        try:
            if payload.donor_category_id == payload.target_category_id:
                raise InvalidTransfer("Cannot transfer budget to the same category.")
            donor = next(
                (
                    item
                    for item in eligible_donors(
                        category_items, spending, payload.target_category_id
                    )
                    if item.category.id == payload.donor_category_id
                ),
                None,
            )
            if donor is None:
                raise InvalidTransfer("Donor category has no budget available to transfer.")

            transfer_amount = payload.transfer_amount
            if transfer_amount is None:
                target = next(
                    item for item in category_items if item.id == payload.target_category_id
                )
                deficit = spending.get(target.id, Decimal("0")) - target.limit
                transfer_amount = plan_transfer(
                    donor, max(deficit, Decimal("0"))
                ).transfer_amount
            elif transfer_amount > donor.remaining:
                raise InvalidTransfer("Transfer amount exceeds the donor's remaining budget.")

            apply_transfer(
                category_items,
                payload.target_category_id,
                payload.donor_category_id,
                transfer_amount,
            )
            persist_transfer(
                conn,
                user_id,
                payload.target_category_id,
                payload.donor_category_id,
                transfer_amount,
            )
        except InvalidTransfer as exc:
            logger.warning("Rejected budget transfer for user %s: %s", user_id, exc)
            raise HTTPException(status_code=400, detail=str(exc)) from exc

        updated = fetch_categories(conn, user_id)

    logger.info(
        "Transferred %s from %s to %s for user %s",
        transfer_amount,
        payload.donor_category_id,
        payload.target_category_id,
        user_id,
    )
    return [category_response(item) for item in updated]


@app.post("/analysis", response_model=AnalysisResponse)
def analyze_expenses(
    payload: AnalysisPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> AnalysisResponse:
    user_id = get_user_id(x_user_id)
    try:
        resolved = resolve_request_period(payload.period, payload.start_date, payload.end_date)
    except InvalidPeriod as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    with engine.begin() as conn:
        category_items = fetch_categories(conn, user_id)
        expense_items = fetch_expenses(conn, user_id, resolved.start, resolved.end)

    result = analyze_spending(
        category_items,
        expense_items,
        resolved,
        SUMMARIZER,
        currency_symbol=CURRENCY_SYMBOL,
    )
    snapshot = result.summary
    return AnalysisResponse(
        analysis=result.narrative,
        analysis_available=result.narrative_available,
        analysis_error=result.error,
        summary=AnalysisSummaryResponse(
            total_spent=snapshot.total_spent,
            total_budget=snapshot.total_budget,
            unmatched=snapshot.unmatched,
            budget_status=[summary_response(item) for item in snapshot.categories],
            period=period_response(snapshot.period),
        ),
    )
