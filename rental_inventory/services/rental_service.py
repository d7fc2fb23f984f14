from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.orm import Session, selectinload
from sqlalchemy.orm.attributes import set_committed_value

from db.unit_of_work import unit_of_work
from models.rental_models import (
    InventoryUnit,
    Product,
    Rental,
    RentalCustomer,
    RentalLineItem,
    RentalProduct,
    RentalSoldItem,
)
from services.accessory_service import snapshot_line_accessories
from services.audit_service import log_audit
from services.errors import ForbiddenError, InputValidationError, NoStockError, NotFoundError
from services.inventory_service import (
    claim_unit,
    find_available_unit,
    find_specific_available_unit,
    recount_product_quantities,
)
from services.sequence_service import generate_rental_number

LOGGER = logging.getLogger("rental_inventory.rentals")

OPEN_STATES = ("active", "overdue")
_RATE_FIELDS = {
    "hourly": ("HourlyRent", "HourlyRate"),
    "daily": ("DailyRent", "DailyRate"),
    "monthly": ("MonthlyRent", "MonthlyRate"),
}


@dataclass
class _ResolvedLine:
    unit: InventoryUnit
    rent_type: str
    rent_at_time: float
    accessories: list = field(default_factory=list)


@dataclass
class _ResolvedSale:
    product: Product
    quantity: int
    price: float


def _to_local_naive(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


def _require_bookable_customer(db: Session, customer_id: int) -> RentalCustomer:
    customer = db.get(RentalCustomer, customer_id)
    if not customer:
        raise NotFoundError("Customer", customer_id)
    if customer.Status == "blocked":
        raise ForbiddenError("This customer is blocked and cannot create new rentals")
    return customer


def _resolve_sold_lines(db: Session, sold_lines: list) -> list[_ResolvedSale]:
    resolved: list[_ResolvedSale] = []
    requested_by_product: dict[int, int] = {}
    for line in sold_lines:
        product = db.get(Product, line.productId)
        if not product:
            raise NotFoundError("Selling product", line.productId)
        quantity = int(line.quantity or 0)
        if quantity < 1:
            raise InputValidationError(f"Quantity must be at least 1 for selling item: {product.Name}")
        if line.price is None or float(line.price) < 0:
            raise InputValidationError(f"Price cannot be negative for selling item: {product.Name}")
        requested_by_product[product.ProductID] = requested_by_product.get(product.ProductID, 0) + quantity
        if int(product.Quantity or 0) < requested_by_product[product.ProductID]:
            raise NoStockError(f"Insufficient stock for selling item: {product.Name}")
        resolved.append(_ResolvedSale(product=product, quantity=quantity, price=float(line.price)))
    return resolved


def _snapshot_rate(unit: InventoryUnit, rent_type: str, requested: float | None) -> float:
    if requested is not None:
        return float(requested)
    unit_field, product_field = _RATE_FIELDS.get(rent_type, _RATE_FIELDS["daily"])
    unit_rate = float(getattr(unit, unit_field) or 0)
    if unit_rate > 0:
        return unit_rate
    product = unit.Product
    return float(getattr(product, product_field) or 0) if product else 0.0


def _line_refs(line) -> tuple[int | None, str | None, int | None]:
    """Split a line into (unit id, unit identifier, rental product id)."""
    product_id = line.item if isinstance(line.item, int) else None
    identifier = line.item.strip() if isinstance(line.item, str) else None
    if line.unitId is None and product_id is None and not identifier:
        raise InputValidationError("Each rental item needs an item or unitId")
    return line.unitId, identifier, product_id


def _no_stock_for(db: Session, unit_id: int | None, identifier: str | None, product_id: int | None) -> NoStockError:
    product = db.get(RentalProduct, product_id) if product_id is not None else None
    if product is None:
        unit = None
        if unit_id is not None:
            unit = db.get(InventoryUnit, unit_id)
        elif identifier:
            unit = db.execute(
                select(InventoryUnit).where(InventoryUnit.UniqueIdentifier == identifier)
            ).scalars().first()
        product = unit.Product if unit is not None else None
    item_name = product.Name if product else "Unknown Item"
    return NoStockError(f"No available stock for item: {item_name}")


def _resolve_rental_lines(db: Session, lines: list) -> list[_ResolvedLine]:
    resolved: list[_ResolvedLine] = []
    claimed_ids: set[int] = set()
    for line in lines:
        unit_id, identifier, product_id = _line_refs(line)
        unit = find_specific_available_unit(db, unit_id, identifier, product_id, claimed_ids)
        if unit is None and product_id is not None:
            unit = find_available_unit(db, product_id, claimed_ids)
        if unit is None:
            raise _no_stock_for(db, unit_id, identifier, product_id)
        claimed_ids.add(unit.UnitID)
        resolved.append(
            _ResolvedLine(
                unit=unit,
                rent_type=line.rentType,
                rent_at_time=_snapshot_rate(unit, line.rentType, line.rentAtTime),
                accessories=snapshot_line_accessories(db, line.accessories),
            )
        )
    return resolved


def _decrement_stock(db: Session, sale: _ResolvedSale) -> None:
    result = db.execute(
        update(Product)
        .where(Product.ProductID == sale.product.ProductID)
        .where(Product.Quantity >= sale.quantity)
        .values(Quantity=Product.Quantity - sale.quantity)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise NoStockError(f"Insufficient stock for selling item: {sale.product.Name}")
    set_committed_value(sale.product, "Quantity", int(sale.product.Quantity or 0) - sale.quantity)


def create_rental(db: Session, payload, actor_id: int | None = None) -> Rental:
    """Book units and sold goods for a customer, all or nothing.

    Every line is resolved before anything is written. The writes (stock,
    unit claims, rental row, history) share one transaction, so a unit lost to
    a concurrent booking rolls the whole request back.
    """
    _require_bookable_customer(db, payload.customerId)

    now = datetime.now()
    out_time = _to_local_naive(payload.outTime)
    if out_time and out_time > now:
        raise InputValidationError("Rental start time cannot be in the future")
    if not payload.items and not payload.soldItems:
        raise InputValidationError("A rental must include at least one item to rent or sell")

    sales = _resolve_sold_lines(db, payload.soldItems)
    lines = _resolve_rental_lines(db, payload.items)

    with unit_of_work(db, "create_rental", customer_id=payload.customerId):
        for sale in sales:
            _decrement_stock(db, sale)

        rental = Rental(
            RentalNumber=generate_rental_number(db),
            CustomerID=payload.customerId,
            Status="active",
            OutTime=out_time or now,
            ExpectedReturnTime=_to_local_naive(payload.expectedReturnTime),
            AdvancePayment=float(payload.advancePayment or 0),
            AccessoriesPayment=float(payload.accessoriesPayment or 0),
            TotalAmount=0,
            Notes=payload.notes,
            CreatedBy=actor_id,
            CreatedDate=now,
            UpdatedDate=now,
        )
        for line in lines:
            rental.Items.append(
                RentalLineItem(
                    UnitID=line.unit.UnitID,
                    RentAtTime=line.rent_at_time,
                    RentType=line.rent_type,
                    DamageCost=0,
                    Accessories=line.accessories,
                )
            )
        for sale in sales:
            rental.SoldItems.append(
                RentalSoldItem(
                    ProductID=sale.product.ProductID,
                    Quantity=sale.quantity,
                    Price=sale.price,
                    Total=sale.price * sale.quantity,
                )
            )
        db.add(rental)
        db.flush()

        for line in lines:
            if not claim_unit(db, line.unit, f"Rented in Rental ID: {rental.RentalNumber}", actor_id):
                product_name = line.unit.Product.Name if line.unit.Product else "Unknown Item"
                raise NoStockError(f"No available stock for item: {product_name}")

        for product_id in sorted({line.unit.RentalProductID for line in lines}):
            recount_product_quantities(db, product_id)

        log_audit(
            db,
            "Rental",
            rental.RentalID,
            "CreateRental",
            f"{rental.RentalNumber} units={len(lines)} sold={len(sales)}",
            user_id=actor_id,
        )

    LOGGER.info(
        "Rental created rental=%s customer_id=%s units=%s sold=%s",
        rental.RentalNumber,
        rental.CustomerID,
        [line.unit.UnitID for line in lines],
        len(sales),
    )
    return rental


def _rental_query():
    return (
        select(Rental)
        .options(selectinload(Rental.Customer))
        .options(selectinload(Rental.Items).selectinload(RentalLineItem.Unit).selectinload(InventoryUnit.Product))
        .options(selectinload(Rental.Items).selectinload(RentalLineItem.Accessories))
        .options(selectinload(Rental.SoldItems).selectinload(RentalSoldItem.Product))
    )


def get_rental_or_404(db: Session, rental_id: int) -> Rental:
    rental = db.execute(_rental_query().where(Rental.RentalID == rental_id)).scalars().first()
    if not rental:
        raise NotFoundError("Rental", rental_id)
    return rental


def list_rentals(db: Session, status: str | None = None, customer_id: int | None = None) -> list[Rental]:
    stmt = _rental_query().order_by(Rental.RentalID.desc())
    if status:
        stmt = stmt.where(Rental.Status == status)
    if customer_id:
        stmt = stmt.where(Rental.CustomerID == customer_id)
    return list(db.execute(stmt).scalars().all())


def serialize_rental(rental: Rental) -> dict:
    items = []
    for line in rental.Items:
        unit = line.Unit
        items.append(
            {
                "lineID": line.LineID,
                "unitID": line.UnitID,
                "uniqueIdentifier": unit.UniqueIdentifier if unit else None,
                "productName": unit.Product.Name if unit and unit.Product else None,
                "rentAtTime": line.RentAtTime,
                "rentType": line.RentType,
                "returnCondition": line.ReturnCondition,
                "damageCost": line.DamageCost,
                "itemCost": line.ItemCost,
                "accessories": [
                    {
                        "accessoryId": acc.AccessoryID,
                        "name": acc.Name,
                        "serialNumber": acc.SerialNumber,
                        "checkedOutCondition": acc.CheckedOutCondition,
                        "status": acc.Status,
                    }
                    for acc in line.Accessories
                ],
            }
        )

    sold_items = [
        {
            "soldItemID": sold.SoldItemID,
            "productID": sold.ProductID,
            "productName": sold.Product.Name if sold.Product else None,
            "quantity": sold.Quantity,
            "price": sold.Price,
            "total": sold.Total,
        }
        for sold in rental.SoldItems
    ]

    customer = rental.Customer
    return {
        "rentalID": rental.RentalID,
        "rentalNumber": rental.RentalNumber,
        "customerID": rental.CustomerID,
        "customer": {
            "customerID": customer.CustomerID,
            "name": customer.Name,
            "email": customer.Email,
            "phone": customer.Phone,
        } if customer else None,
        "status": rental.Status,
        "outTime": rental.OutTime,
        "expectedReturnTime": rental.ExpectedReturnTime,
        "returnTime": rental.ReturnTime,
        "advancePayment": rental.AdvancePayment,
        "accessoriesPayment": rental.AccessoriesPayment,
        "totalAmount": rental.TotalAmount,
        "finalBillID": rental.BillID,
        "notes": rental.Notes,
        "createdBy": rental.CreatedBy,
        "createdDate": rental.CreatedDate,
        "updatedDate": rental.UpdatedDate,
        "items": items,
        "soldItems": sold_items,
    }
