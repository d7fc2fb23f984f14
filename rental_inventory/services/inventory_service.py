from __future__ import annotations

import logging
import re
from datetime import datetime
from enum import Enum

from sqlalchemy import false, func, select, true, update
from sqlalchemy.orm import Session, selectinload
from sqlalchemy.orm.attributes import set_committed_value

from models.rental_models import Accessory, InventoryUnit, RentalProduct, UnitAccessory, UnitHistory
from services.errors import InputValidationError, InvalidTransitionError, NotFoundError

LOGGER = logging.getLogger("rental_inventory.inventory")

UNIT_STATUSES = {"available", "rented", "maintenance", "scrap", "missing", "damaged"}
UNIT_CONDITIONS = {"new", "good", "fair", "poor", "damaged"}


class UnitAction(str, Enum):
    ADDED = "added"
    RENTED = "rented"
    RETURNED = "returned"
    MAINTENANCE_START = "maintenance_start"
    MAINTENANCE_END = "maintenance_end"
    SCRAPPED = "scrapped"
    MARKED_MISSING = "marked_missing"
    MARKED_DAMAGED = "marked_damaged"
    ARCHIVED = "archived"
    RESTORED = "restored"
    NOTE = "note"


_ACTION_BY_TARGET = {
    "missing": UnitAction.MARKED_MISSING,
    "scrap": UnitAction.SCRAPPED,
    "maintenance": UnitAction.MAINTENANCE_START,
    "damaged": UnitAction.MARKED_DAMAGED,
    "rented": UnitAction.RENTED,
}


def resolve_transition_action(old_status: str | None, new_status: str) -> UnitAction:
    """Map a status change onto the history action recorded for it."""
    if new_status == "available":
        return UnitAction.RETURNED if old_status == "rented" else UnitAction.MAINTENANCE_END
    action = _ACTION_BY_TARGET.get(new_status)
    if action is None:
        raise InvalidTransitionError(f"Unknown unit status: {new_status}")
    return action


def append_history(
    db: Session,
    unit: InventoryUnit,
    action: UnitAction,
    details: str | None,
    actor_id: int | None = None,
    at: datetime | None = None,
) -> UnitHistory:
    entry = UnitHistory(
        Action=action.value,
        Details=details,
        PerformedBy=actor_id,
        CreatedAt=at or datetime.now(),
    )
    unit.History.append(entry)
    db.add(entry)
    return entry


def get_unit_or_404(db: Session, unit_id: int) -> InventoryUnit:
    unit = db.get(InventoryUnit, unit_id)
    if not unit:
        raise NotFoundError("Inventory unit", unit_id)
    return unit


def find_available_unit(
    db: Session,
    product_id: int,
    exclude_ids: list[int] | set[int] | None = None,
) -> InventoryUnit | None:
    stmt = (
        select(InventoryUnit)
        .where(InventoryUnit.RentalProductID == product_id)
        .where(InventoryUnit.Status == "available")
        .where(InventoryUnit.IsArchived == false())
        .order_by(InventoryUnit.UnitID)
    )
    exclude = set(exclude_ids or [])
    if exclude:
        stmt = stmt.where(InventoryUnit.UnitID.notin_(exclude))
    return db.execute(stmt).scalars().first()


def find_specific_available_unit(
    db: Session,
    unit_id: int | None = None,
    identifier: str | None = None,
    product_id: int | None = None,
    exclude_ids: list[int] | set[int] | None = None,
) -> InventoryUnit | None:
    """Look up one named unit; with product_id it must also belong to that product."""
    if unit_id is None and not (identifier or "").strip():
        return None
    exclude = set(exclude_ids or [])
    stmt = select(InventoryUnit).where(InventoryUnit.Status == "available").where(InventoryUnit.IsArchived == false())
    if unit_id is not None:
        stmt = stmt.where(InventoryUnit.UnitID == unit_id)
    else:
        stmt = stmt.where(InventoryUnit.UniqueIdentifier == identifier.strip())
    if product_id is not None:
        stmt = stmt.where(InventoryUnit.RentalProductID == product_id)
    unit = db.execute(stmt).scalars().first()
    if unit is None or unit.UnitID in exclude:
        return None
    return unit


def claim_unit(db: Session, unit: InventoryUnit, details: str, actor_id: int | None = None) -> bool:
    """Move an available unit to rented in one conditional UPDATE.

    Returns False when another writer got there first; nothing is written then.
    """
    now = datetime.now()
    result = db.execute(
        update(InventoryUnit)
        .where(InventoryUnit.UnitID == unit.UnitID)
        .where(InventoryUnit.Status == "available")
        .where(InventoryUnit.IsArchived == false())
        .values(Status="rented", UpdatedDate=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        LOGGER.warning("Unit claim lost unit_id=%s identifier=%s", unit.UnitID, unit.UniqueIdentifier)
        return False
    set_committed_value(unit, "Status", "rented")
    set_committed_value(unit, "UpdatedDate", now)
    append_history(db, unit, UnitAction.RENTED, details, actor_id, at=now)
    return True


def transition_unit(
    db: Session,
    unit: InventoryUnit,
    new_status: str,
    details: str | None,
    actor_id: int | None = None,
    condition: str | None = None,
    action: UnitAction | None = None,
) -> UnitHistory:
    if new_status not in UNIT_STATUSES:
        raise InputValidationError(f"Invalid unit status: {new_status}")
    old_status = unit.Status
    entry_action = action or resolve_transition_action(old_status, new_status)
    now = datetime.now()
    unit.Status = new_status
    if condition:
        unit.Condition = condition
    unit.UpdatedDate = now
    LOGGER.info(
        "Unit transition unit_id=%s %s -> %s action=%s",
        unit.UnitID,
        old_status,
        new_status,
        entry_action.value,
    )
    return append_history(db, unit, entry_action, details or f"Status changed from {old_status} to {new_status}", actor_id, at=now)


def recount_product_quantities(db: Session, product_id: int) -> None:
    db.flush()
    base = select(func.count(InventoryUnit.UnitID)).where(InventoryUnit.RentalProductID == product_id).where(
        InventoryUnit.IsArchived == false()
    )
    total = db.execute(base).scalar() or 0
    available = db.execute(base.where(InventoryUnit.Status == "available")).scalar() or 0
    product = db.get(RentalProduct, product_id)
    if product:
        product.TotalQuantity = int(total)
        product.AvailableQuantity = int(available)


def _identifier_prefix(product: RentalProduct) -> str:
    name = re.sub(r"\s+", "-", (product.Name or "RENTAL").strip())[:20]
    return f"RI-{name}-"


def generate_unique_identifier(db: Session, product: RentalProduct) -> str:
    prefix = _identifier_prefix(product)
    existing = db.execute(
        select(InventoryUnit.UniqueIdentifier).where(InventoryUnit.UniqueIdentifier.startswith(prefix))
    ).scalars().all()
    max_seq = 0
    for identifier in existing:
        suffix = (identifier or "")[len(prefix):]
        if suffix.isdigit() and int(suffix) > max_seq:
            max_seq = int(suffix)
    return f"{prefix}{max_seq + 1:04d}"


def replace_unit_accessories(db: Session, unit: InventoryUnit, accessories: list) -> None:
    unit.Accessories.clear()
    for entry in accessories:
        definition = db.get(Accessory, entry.accessoryId)
        if not definition:
            raise NotFoundError("Accessory", entry.accessoryId)
        unit.Accessories.append(
            UnitAccessory(
                AccessoryID=definition.AccessoryID,
                Name=entry.name or definition.Name,
                SerialNumber=entry.serialNumber,
                Condition=entry.condition,
                IsIncluded=entry.isIncluded,
                Status=entry.status,
            )
        )


def add_unit(db: Session, product_id: int, payload, actor_id: int | None = None) -> InventoryUnit:
    product = db.get(RentalProduct, product_id)
    if not product:
        raise NotFoundError("Rental product", product_id)

    identifier = (payload.uniqueIdentifier or "").strip()
    if identifier:
        exists = db.execute(
            select(InventoryUnit.UnitID).where(InventoryUnit.UniqueIdentifier == identifier)
        ).first()
        if exists:
            raise InputValidationError("Item with this identifier already exists")
    else:
        identifier = generate_unique_identifier(db, product)

    now = datetime.now()
    unit = InventoryUnit(
        RentalProductID=product_id,
        UniqueIdentifier=identifier,
        SerialNumber=payload.serialNumber,
        Status="available",
        Condition=payload.condition or "good",
        IsArchived=False,
        HourlyRent=payload.hourlyRent,
        DailyRent=payload.dailyRent,
        MonthlyRent=payload.monthlyRent,
        PurchaseCost=payload.purchaseCost,
        PurchaseDate=payload.purchaseDate or now,
        BatchNumber=payload.batchNumber,
        Notes=payload.notes,
        CreatedDate=now,
        UpdatedDate=now,
    )
    db.add(unit)
    replace_unit_accessories(db, unit, payload.accessories)
    append_history(db, unit, UnitAction.ADDED, "Manually added to inventory", actor_id, at=now)
    recount_product_quantities(db, product_id)
    return unit


def update_unit(db: Session, unit_id: int, payload, actor_id: int | None = None) -> InventoryUnit:
    unit = get_unit_or_404(db, unit_id)
    old_status = unit.Status
    status_changed = bool(payload.status and payload.status != old_status)

    if status_changed:
        if payload.status == "rented" or old_status == "rented":
            raise InvalidTransitionError(
                f"Cannot change status {old_status} -> {payload.status} outside of a rental booking or return"
            )
        transition_unit(
            db,
            unit,
            payload.status,
            payload.notes or payload.damageReason,
            actor_id,
        )

    if payload.condition:
        unit.Condition = payload.condition
    if payload.damageReason:
        unit.DamageReason = payload.damageReason
    if payload.serialNumber is not None:
        unit.SerialNumber = payload.serialNumber
    if old_status == "damaged" and status_changed and payload.status != "damaged":
        unit.DamageReason = None
    if payload.notes and not payload.status:
        append_history(db, unit, UnitAction.NOTE, payload.notes, actor_id)
    unit.UpdatedDate = datetime.now()

    if status_changed:
        recount_product_quantities(db, unit.RentalProductID)
    return unit


def toggle_archive(db: Session, unit_id: int, actor_id: int | None = None) -> InventoryUnit:
    unit = get_unit_or_404(db, unit_id)
    if not unit.IsArchived and unit.Status == "rented":
        raise InvalidTransitionError("Cannot archive item that is currently rented")

    unit.IsArchived = not unit.IsArchived
    unit.UpdatedDate = datetime.now()
    if unit.IsArchived:
        append_history(db, unit, UnitAction.ARCHIVED, "Item Archived", actor_id)
    else:
        append_history(db, unit, UnitAction.RESTORED, "Item Restored from Archive", actor_id)
    recount_product_quantities(db, unit.RentalProductID)
    return unit


def delete_unit(db: Session, unit_id: int) -> int:
    unit = get_unit_or_404(db, unit_id)
    if unit.Status == "rented":
        raise InvalidTransitionError("Cannot delete item that is currently rented")
    if unit.RentalLines:
        raise InvalidTransitionError("Cannot delete item that is referenced by rental history; archive it instead")
    product_id = unit.RentalProductID
    db.delete(unit)
    recount_product_quantities(db, product_id)
    return product_id


def list_units(db: Session, product_id: int, archived: bool = False) -> list[InventoryUnit]:
    stmt = (
        select(InventoryUnit)
        .options(selectinload(InventoryUnit.Accessories))
        .where(InventoryUnit.RentalProductID == product_id)
    )
    if archived:
        stmt = stmt.where(InventoryUnit.IsArchived == true()).order_by(InventoryUnit.UpdatedDate.desc())
    else:
        stmt = stmt.where(InventoryUnit.IsArchived == false()).order_by(InventoryUnit.CreatedDate.desc())
    return list(db.execute(stmt).scalars().all())


def serialize_history(entry: UnitHistory) -> dict:
    return {
        "historyID": entry.HistoryID,
        "action": entry.Action,
        "details": entry.Details,
        "performedBy": entry.PerformedBy,
        "date": entry.CreatedAt,
    }


def serialize_unit(unit: InventoryUnit) -> dict:
    return {
        "unitID": unit.UnitID,
        "rentalProductID": unit.RentalProductID,
        "productName": unit.Product.Name if unit.Product else None,
        "uniqueIdentifier": unit.UniqueIdentifier,
        "serialNumber": unit.SerialNumber,
        "status": unit.Status,
        "condition": unit.Condition,
        "damageReason": unit.DamageReason,
        "isArchived": bool(unit.IsArchived),
        "hourlyRent": unit.HourlyRent,
        "dailyRent": unit.DailyRent,
        "monthlyRent": unit.MonthlyRent,
        "purchaseCost": unit.PurchaseCost,
        "purchaseDate": unit.PurchaseDate,
        "batchNumber": unit.BatchNumber,
        "notes": unit.Notes,
        "accessories": [
            {
                "unitAccessoryID": acc.UnitAccessoryID,
                "accessoryId": acc.AccessoryID,
                "name": acc.Name,
                "serialNumber": acc.SerialNumber,
                "condition": acc.Condition,
                "isIncluded": bool(acc.IsIncluded),
                "status": acc.Status,
            }
            for acc in unit.Accessories
        ],
        "createdDate": unit.CreatedDate,
        "updatedDate": unit.UpdatedDate,
    }
