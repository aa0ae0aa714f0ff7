from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy import delete, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from errors import NotFoundError, StoreError
from ledger import adjust_balance, payment_deltas, round_half_up, to_cents
from models import (
    Balance,
    Budget,
    BudgetPeriod,
    Expense,
    PaymentType,
    Profile,
    RecurringExpense,
    utcnow,
)
from periods import day_start, local_day, month_start, resolve_window, week_start
from recurrence import RecurringEngine, calculate_next_due
from schemas import (
    BalanceIn,
    BudgetIn,
    ExpenseIn,
    ExpenseUpdateIn,
    ProfileIn,
    RecurringIn,
)
from serializers import cents_to_amount

logger = logging.getLogger(__name__)

TREND_DAYS = 30
ALERT_THRESHOLD = Decimal("90")


class ProfileService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def get(self) -> Profile:
        profile = self.session.get(Profile, self.user_id)
        if not profile:
            raise NotFoundError("Profile not found")
        return profile

    def update(self, data: ProfileIn) -> Profile:
        profile = self.session.get(Profile, self.user_id)
        if not profile:
            profile = Profile(user_id=self.user_id)
            self.session.add(profile)
        if "name" in data.model_fields_set:
            profile.name = data.name
        if "email" in data.model_fields_set:
            profile.email = data.email
        self.session.commit()
        self.session.refresh(profile)
        return profile


class BalanceService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def get(self) -> Optional[Balance]:
        return self.session.get(Balance, self.user_id)

    def set(self, data: BalanceIn, now: Optional[datetime] = None) -> Balance:
        now = now or utcnow()
        balance = self.session.get(Balance, self.user_id)
        if not balance:
            balance = Balance(user_id=self.user_id, created_at=now)
            self.session.add(balance)
        balance.cash_cents = to_cents(data.cash_amount)
        balance.online_cents = to_cents(data.online_amount)
        balance.updated_at = now
        self.session.commit()
        self.session.refresh(balance)
        logger.info(
            f"balance_set: user={self.user_id} cash_cents={balance.cash_cents} "
            f"online_cents={balance.online_cents}"
        )
        return balance


@dataclass
class ExpenseFilters:
    category: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    search: Optional[str] = None


class ExpenseService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def create(self, data: ExpenseIn, now: Optional[datetime] = None) -> Expense:
        now = now or utcnow()
        expense = Expense(
            user_id=self.user_id,
            amount_cents=to_cents(data.amount),
            type=data.type,
            category=data.category,
            description=data.description or "",
            date=data.date or now,
            created_at=now,
            updated_at=now,
        )
        self.session.add(expense)
        self.session.flush()
        cash_delta, online_delta = payment_deltas(expense.type, -expense.amount_cents)
        adjust_balance(
            self.session,
            self.user_id,
            cash_delta=cash_delta,
            online_delta=online_delta,
            now=now,
        )
        self.session.commit()
        self.session.refresh(expense)
        logger.info(
            f"expense_added: user={self.user_id} id={expense.id} "
            f"type={expense.type.value} amount_cents={expense.amount_cents}"
        )
        return expense

    def get(self, expense_id: int) -> Expense:
        expense = self.session.scalar(
            select(Expense).where(
                Expense.user_id == self.user_id, Expense.id == expense_id
            )
        )
        if not expense:
            raise NotFoundError("Expense not found")
        return expense

    def list(self, filters: Optional[ExpenseFilters] = None) -> list[Expense]:
        filters = filters or ExpenseFilters()
        stmt = (
            select(Expense)
            .where(Expense.user_id == self.user_id)
            .order_by(Expense.date.desc(), Expense.id.desc())
        )
        if filters.category:
            stmt = stmt.where(Expense.category == filters.category)
        if filters.start:
            stmt = stmt.where(Expense.date >= filters.start)
        if filters.end:
            stmt = stmt.where(Expense.date <= filters.end)
        expenses = self.session.scalars(stmt).all()
        if filters.search:
            needle = filters.search.lower()
            expenses = [e for e in expenses if needle in (e.description or "").lower()]
        return list(expenses)

    def update(
        self, expense_id: int, data: ExpenseUpdateIn, now: Optional[datetime] = None
    ) -> Expense:
        now = now or utcnow()
        expense = self.get(expense_id)
        old_type = expense.type
        old_cents = expense.amount_cents

        expense.amount_cents = to_cents(data.amount)
        expense.type = data.type or old_type
        expense.category = data.category or expense.category
        expense.description = data.description or ""
        expense.date = data.date or expense.date
        expense.updated_at = now
        self.session.flush()

        refund_cash, refund_online = payment_deltas(old_type, old_cents)
        charge_cash, charge_online = payment_deltas(expense.type, -expense.amount_cents)
        adjust_balance(
            self.session,
            self.user_id,
            cash_delta=refund_cash + charge_cash,
            online_delta=refund_online + charge_online,
            now=now,
        )
        self.session.commit()
        self.session.refresh(expense)
        logger.info(
            f"expense_updated: user={self.user_id} id={expense.id} "
            f"old={old_type.value}:{old_cents} new={expense.type.value}:{expense.amount_cents}"
        )
        return expense

    def delete(self, expense_id: int, now: Optional[datetime] = None) -> None:
        expense = self.get(expense_id)
        cash_delta, online_delta = payment_deltas(expense.type, expense.amount_cents)
        adjust_balance(
            self.session,
            self.user_id,
            cash_delta=cash_delta,
            online_delta=online_delta,
            now=now,
        )
        self.session.delete(expense)
        self.session.commit()
        logger.info(f"expense_deleted: user={self.user_id} id={expense_id}")


class BudgetService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def list(self) -> list[Budget]:
        stmt = (
            select(Budget)
            .where(Budget.user_id == self.user_id)
            .order_by(Budget.category, Budget.period, Budget.id)
        )
        return self.session.scalars(stmt).all()

    def _insert(self):
        dialect = self.session.get_bind().dialect.name
        if dialect == "sqlite":
            return sqlite.insert
        if dialect == "postgresql":
            return postgresql.insert
        raise StoreError(f"Budget upsert is not supported on {dialect}")

    def _find(self, category: str, period: BudgetPeriod):
        return select(Budget).where(
            Budget.user_id == self.user_id,
            Budget.category == category,
            Budget.period == period,
        )

    def upsert(
        self, data: BudgetIn, now: Optional[datetime] = None
    ) -> tuple[Budget, bool]:
        """Create or overwrite the budget for ``(category, period)``.

        Returns the row and whether it was newly created. Uniqueness comes from
        the table constraint via ``INSERT ... ON CONFLICT DO UPDATE``.
        """
        now = now or utcnow()
        existed = (
            self.session.scalar(
                self._find(data.category, data.period).with_only_columns(Budget.id)
            )
            is not None
        )
        insert = self._insert()
        stmt = insert(Budget).values(
            user_id=self.user_id,
            category=data.category,
            period=data.period,
            limit_cents=to_cents(data.limit_amount),
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "category", "period"],
            set_={
                "limit_cents": stmt.excluded.limit_cents,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        self.session.execute(stmt)
        self.session.commit()
        budget = self.session.scalar(
            self._find(data.category, data.period).execution_options(
                populate_existing=True
            )
        )
        logger.info(
            f"budget_upserted: user={self.user_id} id={budget.id} "
            f"category={budget.category} period={budget.period.value} created={not existed}"
        )
        return budget, not existed

    def delete(self, budget_id: int) -> None:
        self.session.execute(
            delete(Budget).where(Budget.user_id == self.user_id, Budget.id == budget_id)
        )
        self.session.commit()


class RecurringService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def get(self, rule_id: int) -> RecurringExpense:
        rule = self.session.get(RecurringExpense, rule_id)
        if not rule or rule.user_id != self.user_id:
            raise NotFoundError("Recurring expense not found")
        return rule

    def list(self) -> list[RecurringExpense]:
        stmt = (
            select(RecurringExpense)
            .where(RecurringExpense.user_id == self.user_id)
            .order_by(RecurringExpense.next_due, RecurringExpense.id)
        )
        return self.session.scalars(stmt).all()

    def create(self, data: RecurringIn, now: Optional[datetime] = None) -> RecurringExpense:
        now = now or utcnow()
        rule = RecurringExpense(
            user_id=self.user_id,
            amount_cents=to_cents(data.amount),
            type=data.type,
            category=data.category,
            description=data.description or "",
            frequency=data.frequency,
            next_due=calculate_next_due(data.frequency, now),
            active=True,
            created_at=now,
            updated_at=now,
        )
        self.session.add(rule)
        self.session.commit()
        self.session.refresh(rule)
        logger.info(
            f"recurring_created: user={self.user_id} id={rule.id} "
            f"frequency={rule.frequency.value} next_due={rule.next_due.isoformat()}"
        )
        return rule

    def toggle(self, rule_id: int, active: bool) -> RecurringExpense:
        rule = self.get(rule_id)
        rule.active = active
        self.session.commit()
        self.session.refresh(rule)
        return rule

    def delete(self, rule_id: int) -> None:
        self.session.execute(
            delete(RecurringExpense).where(
                RecurringExpense.user_id == self.user_id,
                RecurringExpense.id == rule_id,
            )
        )
        self.session.commit()

    def apply_due(self, now: Optional[datetime] = None) -> list[dict[str, object]]:
        engine = RecurringEngine(self.session)
        applied = engine.apply_due(now, user_id=self.user_id)
        self.session.commit()
        return applied


class AnalyticsService:
    def __init__(self, session: Session, user_id: str, tz: ZoneInfo) -> None:
        self.session = session
        self.user_id = user_id
        self.tz = tz

    def _expenses(self) -> list[Expense]:
        stmt = (
            select(Expense)
            .where(Expense.user_id == self.user_id)
            .order_by(Expense.date.desc(), Expense.id.desc())
        )
        return self.session.scalars(stmt).all()

    def stats(self, now: Optional[datetime] = None) -> dict[str, object]:
        now = now or utcnow()
        expenses = self._expenses()

        def window(start: datetime) -> dict[str, object]:
            matching = [e for e in expenses if e.date >= start]
            return {
                "total": cents_to_amount(sum(e.amount_cents for e in matching)),
                "count": len(matching),
            }

        today = window(day_start(now, self.tz))
        week = window(week_start(now, self.tz))
        month_start_at = month_start(now, self.tz)
        month_cents = sum(e.amount_cents for e in expenses if e.date >= month_start_at)
        month = window(month_start_at)

        by_category: dict[str, int] = defaultdict(int)
        by_type: dict[str, int] = {t.value: 0 for t in PaymentType}
        for expense in expenses:
            by_category[expense.category] += expense.amount_cents
            by_type[expense.type.value] += expense.amount_cents

        trend_start = now - timedelta(days=TREND_DAYS)
        daily: dict[str, int] = defaultdict(int)
        for expense in expenses:
            if expense.date >= trend_start:
                daily[local_day(expense.date, self.tz).isoformat()] += expense.amount_cents
        trends = [
            {"date": day, "amount": cents_to_amount(cents)}
            for day, cents in sorted(daily.items())
        ]

        # Flat extrapolation of the month-to-date spend.
        avg_daily = Decimal(month_cents) / 100 / TREND_DAYS
        return {
            "today": today,
            "week": week,
            "month": month,
            "byCategory": {k: cents_to_amount(v) for k, v in by_category.items()},
            "byType": {k: cents_to_amount(v) for k, v in by_type.items()},
            "trends": trends,
            "prediction": {
                "nextMonth": round_half_up(avg_daily * TREND_DAYS),
                "avgDaily": round_half_up(avg_daily),
            },
        }

    def budget_alerts(self, now: Optional[datetime] = None) -> list[dict[str, object]]:
        now = now or utcnow()
        budgets = BudgetService(self.session, self.user_id).list()
        if not budgets:
            return []
        expenses = self._expenses()

        alerts: list[dict[str, object]] = []
        for budget in budgets:
            window = resolve_window(budget.period, now=now, tz=self.tz)
            spent = sum(
                e.amount_cents
                for e in expenses
                if e.category == budget.category and e.date >= window.start
            )
            percentage = Decimal(spent) * 100 / Decimal(budget.limit_cents)
            if percentage < ALERT_THRESHOLD:
                continue
            alerts.append(
                {
                    "budgetId": budget.id,
                    "category": budget.category,
                    "period": budget.period.value,
                    "limit": cents_to_amount(budget.limit_cents),
                    "spent": cents_to_amount(spent),
                    "percentage": round_half_up(percentage),
                    "severity": "danger" if percentage >= 100 else "warning",
                }
            )
        return alerts
