from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy.orm import Session

from services.errors import RentalServiceError

LOGGER = logging.getLogger("rental_inventory.db")


@contextmanager
def unit_of_work(db: Session, operation: str, **context) -> Iterator[Session]:
    """Commit everything written inside the block, or nothing.

    Domain errors roll back quietly and propagate to the caller. Anything else
    is logged with the operation name and ids before it propagates.
    """
    try:
        yield db
        db.commit()
    except RentalServiceError:
        db.rollback()
        raise
    except Exception:
        db.rollback()
        details = " ".join(f"{key}={value}" for key, value in sorted(context.items()))
        LOGGER.exception("Operation failed op=%s %s", operation, details)
        raise
