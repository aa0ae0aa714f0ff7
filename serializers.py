from datetime import datetime
from typing import Optional

from models import Balance, Budget, Expense, Profile, RecurringExpense


def iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat(timespec="milliseconds") + "Z"


def cents_to_amount(cents: int) -> float:
    return cents / 100


def expense_payload(expense: Expense) -> dict[str, object]:
    return {
        "id": expense.id,
        "amount": cents_to_amount(expense.amount_cents),
        "type": expense.type.value,
        "category": expense.category,
        "description": expense.description or "",
        "date": iso(expense.date),
        "createdAt": iso(expense.created_at),
        "recurringId": expense.recurring_id,
    }


def balance_payload(balance: Optional[Balance]) -> dict[str, object]:
    if balance is None:
        return {"cashAmount": 0, "onlineAmount": 0}
    return {
        "cashAmount": cents_to_amount(balance.cash_cents),
        "onlineAmount": cents_to_amount(balance.online_cents),
        "updatedAt": iso(balance.updated_at),
    }


def budget_payload(budget: Budget) -> dict[str, object]:
    return {
        "id": budget.id,
        "category": budget.category,
        "limitAmount": cents_to_amount(budget.limit_cents),
        "period": budget.period.value,
        "updatedAt": iso(budget.updated_at),
    }


def recurring_payload(rule: RecurringExpense) -> dict[str, object]:
    return {
        "id": rule.id,
        "amount": cents_to_amount(rule.amount_cents),
        "type": rule.type.value,
        "category": rule.category,
        "description": rule.description or "",
        "frequency": rule.frequency.value,
        "nextDue": iso(rule.next_due),
        "active": rule.active,
        "createdAt": iso(rule.created_at),
    }


def profile_payload(profile: Profile) -> dict[str, object]:
    return {
        "name": profile.name,
        "email": profile.email,
        "updatedAt": iso(profile.updated_at),
    }
