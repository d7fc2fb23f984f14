from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import date, datetime, timedelta

from sqlalchemy import delete, false, select, update
from sqlalchemy.orm import Session, selectinload
from sqlalchemy.orm.attributes import set_committed_value

from models.rental_models import Notification, Rental
from services.errors import NotFoundError
from services.rental_service import OPEN_STATES

LOGGER = logging.getLogger("rental_inventory.notifications")

RENTAL_DUE = "rental-due"
RENTAL_OVERDUE = "rental-overdue"
RENTAL_DUE_TOMORROW = "rental-due-tomorrow"
RENTAL_NOTIFICATION_TYPES = (RENTAL_DUE, RENTAL_OVERDUE, RENTAL_DUE_TOMORROW)


def upsert_rental_notification(db: Session, rental_id: int, notification_type: str, message: str) -> Notification:
    """Refresh the unread notification of this type, creating it if needed."""
    existing = db.execute(
        select(Notification)
        .where(Notification.RentalID == rental_id)
        .where(Notification.NotificationType == notification_type)
        .where(Notification.IsRead == false())
    ).scalars().first()
    now = datetime.now()
    if existing:
        existing.Message = message
        existing.CreatedAt = now
        return existing
    notification = Notification(
        RentalID=rental_id,
        NotificationType=notification_type,
        Message=message,
        IsRead=False,
        CreatedAt=now,
    )
    db.add(notification)
    return notification


def clear_rental_notifications(db: Session, rental_id: int, types) -> int:
    if isinstance(types, str):
        types = [types]
    result = db.execute(
        delete(Notification)
        .where(Notification.RentalID == rental_id)
        .where(Notification.NotificationType.in_(list(types)))
        .where(Notification.IsRead == false())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


def _customer_name(rental: Rental) -> str:
    return rental.Customer.Name if rental.Customer else "Unknown Customer"


def mark_rental_overdue(db: Session, rental: Rental, now: datetime) -> bool:
    """Move an open rental to overdue; False if it was closed in the meantime."""
    result = db.execute(
        update(Rental)
        .where(Rental.RentalID == rental.RentalID)
        .where(Rental.Status.in_(OPEN_STATES))
        .values(Status="overdue", UpdatedDate=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        LOGGER.info("Rental closed before overdue update rental=%s", rental.RentalNumber)
        return False
    set_committed_value(rental, "Status", "overdue")
    set_committed_value(rental, "UpdatedDate", now)
    return True


def check_rental_returns(db: Session, now: datetime | None = None) -> int:
    """Raise due, due-tomorrow and overdue alerts for open rentals.

    Dates are compared by calendar day. An overdue rental is also moved to the
    ``overdue`` status. Returns the number of rentals checked.
    """
    now = now or datetime.now()
    today: date = now.date()
    tomorrow = today + timedelta(days=1)

    rentals = db.execute(
        select(Rental)
        .options(selectinload(Rental.Customer))
        .where(Rental.Status.in_(OPEN_STATES))
        .where(Rental.ExpectedReturnTime.is_not(None))
    ).scalars().all()

    for rental in rentals:
        expected = rental.ExpectedReturnTime.date()
        if expected < today:
            if not mark_rental_overdue(db, rental, now):
                continue
            upsert_rental_notification(
                db,
                rental.RentalID,
                RENTAL_OVERDUE,
                f"Rental {rental.RentalNumber} is overdue! Customer: {_customer_name(rental)}",
            )
            clear_rental_notifications(db, rental.RentalID, RENTAL_DUE)
        elif expected == today:
            upsert_rental_notification(
                db,
                rental.RentalID,
                RENTAL_DUE,
                f"Rental {rental.RentalNumber} is due for return today! Customer: {_customer_name(rental)}",
            )
        elif expected == tomorrow:
            upsert_rental_notification(
                db,
                rental.RentalID,
                RENTAL_DUE_TOMORROW,
                f"Rental {rental.RentalNumber} is due for return tomorrow! Customer: {_customer_name(rental)}",
            )

    db.commit()
    LOGGER.info("Rental return check done rentals=%s at=%s", len(rentals), now.isoformat())
    return len(rentals)


def handle_rental_return(db: Session, rental_id: int) -> None:
    """Drop outstanding alerts for a rental once it has come back."""
    try:
        cleared = clear_rental_notifications(db, rental_id, RENTAL_NOTIFICATION_TYPES)
        db.commit()
    except Exception:
        db.rollback()
        LOGGER.warning("Clearing rental notifications failed rental_id=%s", rental_id, exc_info=True)
        return
    LOGGER.info("Cleared rental notifications rental_id=%s count=%s", rental_id, cleared)


def list_pending(db: Session) -> list[Notification]:
    return list(
        db.execute(
            select(Notification).where(Notification.IsRead == false()).order_by(Notification.CreatedAt.desc())
        ).scalars().all()
    )


def mark_read(db: Session, notification_id: int) -> Notification:
    notification = db.get(Notification, notification_id)
    if not notification:
        raise NotFoundError("Notification", notification_id)
    notification.IsRead = True
    notification.ReadAt = datetime.now()
    db.commit()
    return notification


def serialize_notification(notification: Notification) -> dict:
    return {
        "notificationID": notification.NotificationID,
        "rentalID": notification.RentalID,
        "type": notification.NotificationType,
        "message": notification.Message,
        "isRead": bool(notification.IsRead),
        "createdAt": notification.CreatedAt,
        "readAt": notification.ReadAt,
    }


class RentalReturnScheduler:
    """Runs the return check on a background thread at a fixed interval."""

    def __init__(self, session_factory: Callable[[], Session], interval_seconds: int = 3600):
        self._session_factory = session_factory
        self._interval = interval_seconds
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def tick(self) -> int:
        db = self._session_factory()
        try:
            return check_rental_returns(db)
        except Exception:
            db.rollback()
            LOGGER.exception("Rental return check failed")
            return 0
        finally:
            db.close()

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name="rental-return-check", daemon=True)
        self._thread.start()
        LOGGER.info("Rental return scheduler started interval=%ss", self._interval)

    def stop(self, timeout: float = 10.0) -> None:
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        LOGGER.info("Rental return scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            self.tick()
            self._stop_event.wait(timeout=self._interval)
