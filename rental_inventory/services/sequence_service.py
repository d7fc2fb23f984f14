from __future__ import annotations

import logging

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models.rental_models import Bill, Rental, SequenceCounter

LOGGER = logging.getLogger("rental_inventory.db")

RENTAL_SEQUENCE = "rental"
BILL_SEQUENCE = "bill"

_SEQUENCE_SOURCES = {
    RENTAL_SEQUENCE: (Rental, Rental.RentalNumber, Rental.RentalID, "RENT"),
    BILL_SEQUENCE: (Bill, Bill.BillNumber, Bill.BillID, "BILL"),
}


def format_sequence_number(prefix: str, value: int) -> str:
    return f"{prefix}-{value:06d}"


def parse_sequence_suffix(number: str | None) -> int | None:
    if not number or "-" not in number:
        return None
    raw = number.split("-", 1)[1]
    try:
        return int(raw)
    except ValueError:
        return None


def _last_issued_value(db: Session, sequence_name: str) -> int:
    source = _SEQUENCE_SOURCES.get(sequence_name)
    if source is None:
        return 0
    _, number_column, id_column, _ = source
    last = db.execute(select(number_column).order_by(id_column.desc())).scalars().first()
    return parse_sequence_suffix(last) or 0


def next_value(db: Session, sequence_name: str) -> int:
    """Increment a named counter and return the new value.

    The first call for a name seeds the counter from the most recently issued
    number, so existing data with gaps keeps counting upward.
    """
    result = db.execute(
        update(SequenceCounter)
        .where(SequenceCounter.Name == sequence_name)
        .values(CurrentValue=SequenceCounter.CurrentValue + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        value = db.execute(
            select(SequenceCounter.CurrentValue).where(SequenceCounter.Name == sequence_name)
        ).scalar_one()
        LOGGER.debug("Sequence allocated name=%s value=%s", sequence_name, value)
        return int(value)

    seed = _last_issued_value(db, sequence_name) + 1
    savepoint = db.begin_nested()
    try:
        db.add(SequenceCounter(Name=sequence_name, CurrentValue=seed))
        db.flush()
        savepoint.commit()
    except IntegrityError:
        savepoint.rollback()
        LOGGER.debug("Sequence counter race, retrying name=%s", sequence_name)
        return next_value(db, sequence_name)
    LOGGER.debug("Sequence seeded name=%s value=%s", sequence_name, seed)
    return seed


def next_number(db: Session, sequence_name: str) -> str:
    prefix = _SEQUENCE_SOURCES[sequence_name][3]
    return format_sequence_number(prefix, next_value(db, sequence_name))


def generate_rental_number(db: Session) -> str:
    return next_number(db, RENTAL_SEQUENCE)


def generate_bill_number(db: Session) -> str:
    return next_number(db, BILL_SEQUENCE)
