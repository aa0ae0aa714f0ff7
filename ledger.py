from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from models import Balance, PaymentType, utcnow

# Largest amount whose cents survive a float round trip in responses.
MAX_STORED_AMOUNT = Decimal("90071992547409.91")


def to_cents(amount: Decimal) -> int:
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def payment_deltas(payment_type: PaymentType, cents: int) -> tuple[int, int]:
    if payment_type == PaymentType.cash:
        return cents, 0
    return 0, cents


def adjust_balance(
    session: Session,
    user_id: str,
    *,
    cash_delta: int = 0,
    online_delta: int = 0,
    now: Optional[datetime] = None,
) -> bool:
    """Shift both balance fields in one UPDATE.

    The arithmetic runs inside the database, so concurrent adjustments do not
    overwrite each other. Returns False when the user has no balance yet.
    """
    result = session.execute(
        update(Balance)
        .where(Balance.user_id == user_id)
        .values(
            cash_cents=Balance.cash_cents + cash_delta,
            online_cents=Balance.online_cents + online_delta,
            updated_at=now or utcnow(),
        )
    )
    return result.rowcount > 0
