import logging
from datetime import date, datetime, timedelta
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ledger import adjust_balance, payment_deltas
from models import Expense, Frequency, RecurringExpense, utcnow
from serializers import recurring_payload

logger = logging.getLogger(__name__)

RECURRING_PREFIX = "[Recurring] "


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def _add_months(base: datetime, months: int) -> datetime:
    # Days past the end of the target month snap to its last day.
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    day = min(base.day, days_in_month(year, month))
    return base.replace(year=year, month=month, day=day)


def calculate_next_due(frequency: Frequency, from_due: datetime) -> datetime:
    if frequency == Frequency.daily:
        return from_due + timedelta(days=1)
    if frequency == Frequency.weekly:
        return from_due + timedelta(weeks=1)
    if frequency == Frequency.monthly:
        return _add_months(from_due, 1)
    return _add_months(from_due, 12)


class RecurringEngine:
    """Materializes due recurring templates into expenses.

    Each template fires at most one period per pass. A firing first claims the
    template by moving ``next_due`` forward with a compare-and-swap update, so
    concurrent passes (API trigger and scheduler) never book the same
    occurrence twice.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def due_templates(
        self, now: datetime, user_id: Optional[str] = None
    ) -> list[RecurringExpense]:
        stmt = (
            select(RecurringExpense)
            .where(
                RecurringExpense.active.is_(True),
                RecurringExpense.next_due <= now,
            )
            .order_by(RecurringExpense.next_due, RecurringExpense.id)
        )
        if user_id is not None:
            stmt = stmt.where(RecurringExpense.user_id == user_id)
        return self.session.scalars(stmt).all()

    def apply_due(
        self, now: Optional[datetime] = None, user_id: Optional[str] = None
    ) -> list[dict[str, object]]:
        now = now or utcnow()
        fired: list[dict[str, object]] = []
        for rule in self.due_templates(now, user_id):
            payload = self.fire(rule, now)
            if payload is not None:
                fired.append(payload)
        return fired

    def fire(self, rule: RecurringExpense, now: datetime) -> Optional[dict[str, object]]:
        seen_due = rule.next_due
        snapshot = recurring_payload(rule)
        next_due = calculate_next_due(rule.frequency, seen_due)

        claimed = self.session.execute(
            update(RecurringExpense)
            .where(
                RecurringExpense.id == rule.id,
                RecurringExpense.next_due == seen_due,
                RecurringExpense.active.is_(True),
            )
            .values(next_due=next_due, updated_at=now)
        ).rowcount
        if claimed != 1:
            logger.info(f"recurring_skipped: id={rule.id} reason=already_claimed")
            return None

        expense = Expense(
            user_id=rule.user_id,
            amount_cents=rule.amount_cents,
            type=rule.type,
            category=rule.category,
            description=f"{RECURRING_PREFIX}{rule.description or ''}",
            date=now,
            recurring_id=rule.id,
            occurrence_due=seen_due,
            created_at=now,
            updated_at=now,
        )
        self.session.add(expense)
        self.session.flush()
        cash_delta, online_delta = payment_deltas(rule.type, -rule.amount_cents)
        adjust_balance(
            self.session,
            rule.user_id,
            cash_delta=cash_delta,
            online_delta=online_delta,
            now=now,
        )
        logger.info(
            f"recurring_fired: user={rule.user_id} id={rule.id} "
            f"occurrence={seen_due.isoformat()} next_due={next_due.isoformat()}"
        )
        return snapshot
