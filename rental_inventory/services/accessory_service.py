from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.orm import Session

from models.rental_models import Accessory, RentalLineAccessory, RentalLineItem
from services.errors import NotFoundError
from services.pricing import accessory_charge


@dataclass(frozen=True)
class AccessoryCharge:
    accessory_id: int
    name: str
    amount: float


def snapshot_line_accessories(db: Session, accessories: list) -> list[RentalLineAccessory]:
    """Per-booking accessory copies, taken from the request as-is."""
    snapshot = []
    for entry in accessories or []:
        name = entry.name
        if entry.accessoryId is not None:
            definition = db.get(Accessory, entry.accessoryId)
            if not definition:
                raise NotFoundError("Accessory", entry.accessoryId)
            name = name or definition.Name
        snapshot.append(
            RentalLineAccessory(
                AccessoryID=entry.accessoryId,
                Name=name,
                SerialNumber=entry.serialNumber,
                CheckedOutCondition=entry.checkedOutCondition,
                Status=entry.status or "with_item",
            )
        )
    return snapshot


def reconcile_line_accessories(db: Session, line: RentalLineItem, reports: list) -> list[AccessoryCharge]:
    charges: list[AccessoryCharge] = []
    if not reports or not line.Accessories:
        return charges

    for report in reports:
        if report.accessoryId is None:
            continue
        attached = next(
            (acc for acc in line.Accessories if acc.AccessoryID is not None and acc.AccessoryID == report.accessoryId),
            None,
        )
        if attached is None:
            continue
        attached.Status = report.status

        definition = db.get(Accessory, report.accessoryId)
        amount = accessory_charge(
            report.status,
            report.damageCost,
            definition.ReplacementCost if definition else 0,
        )
        if amount is None:
            continue
        charges.append(
            AccessoryCharge(
                accessory_id=report.accessoryId,
                name=definition.Name if definition else "Accessory",
                amount=amount,
            )
        )
    return charges
