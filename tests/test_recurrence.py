from datetime import datetime
from decimal import Decimal

import pytest
from pydantic import ValidationError as SchemaError
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker

from config import Settings
from database import Base
from errors import NotFoundError
from models import Expense, Frequency, PaymentType, RecurringExpense
from recurrence import RecurringEngine, calculate_next_due
from scheduler import SchedulerManager
from schemas import BalanceIn, RecurringIn
from services import BalanceService, RecurringService


def _rent(frequency: Frequency = Frequency.monthly, amount: str = "700") -> RecurringIn:
    return RecurringIn(
        amount=Decimal(amount),
        type=PaymentType.online,
        category="Housing",
        description="Rent",
        frequency=frequency,
    )


def test_calculate_next_due_per_frequency():
    start = datetime(2025, 1, 15, 9, 30)
    assert calculate_next_due(Frequency.daily, start) == datetime(2025, 1, 16, 9, 30)
    assert calculate_next_due(Frequency.weekly, start) == datetime(2025, 1, 22, 9, 30)
    assert calculate_next_due(Frequency.monthly, start) == datetime(2025, 2, 15, 9, 30)
    assert calculate_next_due(Frequency.yearly, start) == datetime(2026, 1, 15, 9, 30)


def test_calculate_next_due_snaps_to_month_end():
    assert calculate_next_due(Frequency.monthly, datetime(2024, 1, 31)) == datetime(
        2024, 2, 29
    )
    assert calculate_next_due(Frequency.monthly, datetime(2025, 1, 31)) == datetime(
        2025, 2, 28
    )
    assert calculate_next_due(Frequency.monthly, datetime(2025, 12, 31)) == datetime(
        2026, 1, 31
    )
    assert calculate_next_due(Frequency.yearly, datetime(2024, 2, 29)) == datetime(
        2025, 2, 28
    )


def test_recurring_input_validation():
    with pytest.raises(SchemaError, match="Invalid frequency"):
        RecurringIn.model_validate(
            {"amount": 5, "type": "cash", "category": "Gym", "frequency": "hourly"}
        )
    with pytest.raises(SchemaError, match="Amount, type, category, and frequency are required"):
        RecurringIn.model_validate({"amount": 5, "type": "cash", "category": "Gym"})


def test_create_schedules_one_period_ahead():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        rule = RecurringService(session, "u1").create(
            _rent(), now=datetime(2025, 1, 15, 9, 0)
        )
        assert rule.next_due == datetime(2025, 2, 15, 9, 0)
        assert rule.active is True


def test_apply_fires_once_and_advances_from_previous_due():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        BalanceService(session, "u1").set(
            BalanceIn(cash_amount=Decimal("100"), online_amount=Decimal("1000"))
        )
        service = RecurringService(session, "u1")
        rule = service.create(_rent(), now=datetime(2025, 1, 15, 9, 0))

        now = datetime(2025, 2, 20, 7, 0)
        applied = service.apply_due(now=now)

        assert len(applied) == 1
        assert applied[0]["id"] == rule.id
        assert applied[0]["nextDue"] == "2025-02-15T09:00:00.000Z"

        expenses = session.scalars(select(Expense)).all()
        assert len(expenses) == 1
        assert expenses[0].description == "[Recurring] Rent"
        assert expenses[0].date == now
        assert expenses[0].amount_cents == 70_000
        assert expenses[0].recurring_id == rule.id

        session.refresh(rule)
        assert rule.next_due == datetime(2025, 3, 15, 9, 0)

        balance = BalanceService(session, "u1").get()
        assert balance.online_cents == 100_000 - 70_000
        assert balance.cash_cents == 10_000


def test_apply_with_nothing_due_changes_nothing():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        service = RecurringService(session, "u1")
        rule = service.create(_rent(), now=datetime(2025, 1, 15, 9, 0))

        assert service.apply_due(now=datetime(2025, 2, 15, 8, 59)) == []

        session.refresh(rule)
        assert rule.next_due == datetime(2025, 2, 15, 9, 0)
        assert session.scalars(select(Expense)).all() == []


def test_dormant_template_catches_up_one_period_per_apply():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        service = RecurringService(session, "u1")
        rule = service.create(
            _rent(Frequency.daily, "3"), now=datetime(2025, 1, 1, 8, 0)
        )
        now = datetime(2025, 1, 10, 8, 0)

        service.apply_due(now=now)
        session.refresh(rule)
        assert rule.next_due == datetime(2025, 1, 3, 8, 0)

        service.apply_due(now=now)
        session.refresh(rule)
        assert rule.next_due == datetime(2025, 1, 4, 8, 0)
        assert len(session.scalars(select(Expense)).all()) == 2


def test_paused_template_does_not_fire():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        service = RecurringService(session, "u1")
        rule = service.create(_rent(Frequency.daily), now=datetime(2025, 1, 1))
        service.toggle(rule.id, False)

        assert service.apply_due(now=datetime(2025, 2, 1)) == []

        service.toggle(rule.id, True)
        assert len(service.apply_due(now=datetime(2025, 2, 1))) == 1

        with pytest.raises(NotFoundError):
            RecurringService(session, "u2").toggle(rule.id, False)


def test_stale_claim_does_not_fire_twice(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    with factory() as session:
        RecurringService(session, "u1").create(
            _rent(Frequency.weekly), now=datetime(2025, 1, 1, 12, 0)
        )

    now = datetime(2025, 1, 9, 12, 0)
    first = factory()
    second = factory()
    try:
        stale = second.scalars(select(RecurringExpense)).one()

        assert len(RecurringEngine(first).apply_due(now=now)) == 1
        first.commit()

        assert RecurringEngine(second).fire(stale, now) is None
        second.commit()
    finally:
        first.close()
        second.close()

    with factory() as session:
        assert len(session.scalars(select(Expense)).all()) == 1
        rule = session.scalars(select(RecurringExpense)).one()
        assert rule.next_due == datetime(2025, 1, 15, 12, 0)


def test_scheduler_job_fires_for_every_user():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    with factory() as session:
        RecurringService(session, "u1").create(_rent(Frequency.daily), now=datetime(2020, 1, 1))
        RecurringService(session, "u2").create(_rent(Frequency.yearly), now=datetime(2020, 1, 1))

    settings = Settings(
        database_url="sqlite://",
        timezone="UTC",
        token_secret="test",
        token_max_age_secs=60,
        scheduler_enabled=False,
    )
    manager = SchedulerManager(factory, settings)

    assert manager.run_job("test") == 2

    with factory() as session:
        owners = sorted(e.user_id for e in session.scalars(select(Expense)).all())
        assert owners == ["u1", "u2"]
