from __future__ import annotations

import logging
import math
import os
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.orm import Session, selectinload
from sqlalchemy.orm.attributes import set_committed_value

from db.unit_of_work import unit_of_work
from models.rental_models import Bill, BillItem, BillPayment, PaymentAccount, Rental
from services.accessory_service import reconcile_line_accessories
from services.audit_service import log_audit
from services.errors import InputValidationError, NotFoundError
from services.inventory_service import UnitAction, recount_product_quantities, transition_unit
from services.notification_service import handle_rental_return
from services.pricing import (
    MS_PER_HOUR,
    coerce_amount,
    compute_bill_totals,
    line_cost,
    rental_duration,
    settle_payment,
)
from services.rental_service import get_rental_or_404
from services.sequence_service import generate_bill_number

LOGGER = logging.getLogger("rental_inventory.billing")

_UNIT_CONDITION_BY_RETURN = {"good": "good", "damaged": "damaged"}


def default_tax_percent() -> float:
    raw = os.getenv("DEFAULT_TAX_PERCENT", "18")
    try:
        return float(raw)
    except ValueError:
        LOGGER.warning("Ignoring invalid DEFAULT_TAX_PERCENT=%r", raw)
        return 18.0


def _bill_item(item_type: str, reference_id, name: str, quantity, price, total) -> BillItem:
    return BillItem(
        ItemType=item_type,
        ReferenceID=reference_id,
        Name=name,
        Quantity=quantity,
        Price=price,
        Total=total,
    )


def _credit_return_payment(db: Session, bill: Bill, rental: Rental, account_id: int, amount: float, method: str, actor_id) -> bool:
    account = db.get(PaymentAccount, account_id)
    if not account:
        LOGGER.warning(
            "Return payment not credited, account missing rental=%s account_id=%s amount=%s",
            rental.RentalNumber,
            account_id,
            amount,
        )
        return False
    if account.Status != "active":
        LOGGER.warning(
            "Return payment not credited, account inactive rental=%s account_id=%s amount=%s",
            rental.RentalNumber,
            account_id,
            amount,
        )
        return False

    account.CurrentBalance = coerce_amount(account.CurrentBalance) + amount
    account.UpdatedDate = datetime.now()
    bill.Payments.append(
        BillPayment(
            Amount=amount,
            PaymentMethod=method,
            AccountID=account.AccountID,
            Direction="credit",
            PaymentDate=datetime.now(),
            Notes=f"Payment during rental return - {rental.RentalNumber}",
            RecordedBy=actor_id if actor_id is not None else rental.CreatedBy,
        )
    )
    return True


def _claim_completion(db: Session, rental: Rental, now: datetime) -> None:
    result = db.execute(
        update(Rental)
        .where(Rental.RentalID == rental.RentalID)
        .where(Rental.Status != "completed")
        .values(Status="completed", UpdatedDate=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        LOGGER.warning("Rental completed concurrently rental=%s", rental.RentalNumber)
        raise InputValidationError("Rental already completed")
    set_committed_value(rental, "Status", "completed")
    set_committed_value(rental, "UpdatedDate", now)


def return_rental(db: Session, rental_id: int, payload, actor_id: int | None = None, now: datetime | None = None) -> tuple[Rental, Bill]:
    """Check units back in and produce the rental's bill.

    Sold items are always billed. Returned lines that do not belong to the
    rental are skipped. The payment-account credit is skipped, with a warning,
    when the account is missing or inactive; the bill still counts the payment.
    """
    rental = get_rental_or_404(db, rental_id)
    if rental.Status == "completed":
        raise InputValidationError("Rental already completed")

    now = now or datetime.now()
    tax_percent = payload.taxPercent if payload.taxPercent is not None else default_tax_percent()
    payment_method = payload.paymentMethod or "cash"
    duration = rental_duration(rental.OutTime, now)

    total_rental_cost = 0.0
    total_damage_cost = 0.0
    bill_items: list[BillItem] = []

    with unit_of_work(db, "return_rental", rental_id=rental_id, rental=rental.RentalNumber):
        _claim_completion(db, rental, now)

        for sold in rental.SoldItems:
            if not sold.Product:
                continue
            quantity = sold.Quantity or 0
            price = coerce_amount(sold.Price)
            item_total = quantity * price
            total_rental_cost += item_total
            bill_items.append(_bill_item("sold", sold.ProductID, f"{sold.Product.Name} (Sold)", quantity, price, item_total))

        touched_products: set[int] = set()
        for returned in payload.returnItems:
            line = next((item for item in rental.Items if item.UnitID == returned.itemId), None)
            if line is None:
                LOGGER.info("Skipping returned item not on rental rental=%s unit_id=%s", rental.RentalNumber, returned.itemId)
                continue

            item_cost = line_cost(line.RentType, line.RentAtTime, duration)
            total_rental_cost += item_cost

            item_damage = coerce_amount(returned.damageCost)
            total_damage_cost += item_damage

            return_condition = returned.returnCondition or "good"
            line.ReturnCondition = return_condition
            line.DamageCost = item_damage
            line.ItemCost = item_cost

            accessory_bill_items = []
            for charge in reconcile_line_accessories(db, line, returned.accessories):
                total_damage_cost += charge.amount
                accessory_bill_items.append(
                    _bill_item("accessory", charge.accessory_id, f"{charge.name} (Accessory)", 1, charge.amount, charge.amount)
                )

            unit = line.Unit
            transition_unit(
                db,
                unit,
                "available",
                f"Returned from Rental ID: {rental.RentalNumber}. Condition: {return_condition}",
                actor_id,
                condition=_UNIT_CONDITION_BY_RETURN.get(return_condition),
                action=UnitAction.RETURNED,
            )
            touched_products.add(unit.RentalProductID)

            product_name = unit.Product.Name if unit.Product else "Unknown Product"
            bill_items.extend(accessory_bill_items)
            bill_items.append(
                _bill_item(
                    "rental",
                    unit.UnitID,
                    f"{product_name} - {unit.UniqueIdentifier} (Rental)",
                    1,
                    item_cost,
                    item_cost,
                )
            )

        for product_id in sorted(touched_products):
            recount_product_quantities(db, product_id)

        totals = compute_bill_totals(
            total_rental_cost,
            total_damage_cost,
            discount_percent=payload.discountPercent,
            tax_percent=tax_percent,
            customized_total_amount=payload.customizedTotalAmount,
        )

        paid_due = coerce_amount(payload.paidDueAmount)
        previously_paid = coerce_amount(rental.AdvancePayment) + coerce_amount(rental.AccessoriesPayment)
        payment = settle_payment(totals.total_amount, previously_paid, paid_due)

        customer = rental.Customer
        bill = Bill(
            BillNumber=generate_bill_number(db),
            BillType="rental",
            RentalID=rental.RentalID,
            CustomerID=rental.CustomerID,
            CustomerName=(customer.Name if customer else None) or "Unknown Customer",
            CustomerEmail=(customer.Email if customer else None) or "no-email@provided.com",
            CustomerPhone=(customer.Phone if customer else None) or "0000000000",
            RentalDurationHours=math.ceil(duration.elapsed_ms / MS_PER_HOUR),
            DamageCost=total_damage_cost,
            Subtotal=totals.subtotal,
            DiscountPercent=totals.discount_percent,
            Discount=totals.discount_amount,
            TaxPercent=totals.tax_percent,
            TaxAmount=totals.tax_amount,
            SystemCalculatedAmount=totals.system_calculated_amount,
            CustomizedAmount=totals.total_amount,
            TotalAmount=totals.total_amount,
            PaidAmount=payment.paid_amount,
            DueAmount=payment.due_amount,
            ExcessAmount=payment.excess_amount,
            PaymentStatus=payment.payment_status,
            PaymentMethod=payment_method,
            CreatedBy=actor_id if actor_id is not None else rental.CreatedBy,
            CreatedDate=now,
            UpdatedDate=now,
            Items=bill_items,
        )
        db.add(bill)
        db.flush()

        if paid_due > 0 and payload.paymentAccountId:
            _credit_return_payment(db, bill, rental, payload.paymentAccountId, paid_due, payment_method, actor_id)

        rental.ReturnTime = now
        rental.TotalAmount = totals.total_amount
        rental.BillID = bill.BillID
        rental.UpdatedDate = now

        log_audit(
            db,
            "Rental",
            rental.RentalID,
            "ReturnRental",
            f"{rental.RentalNumber} bill={bill.BillNumber} total={totals.total_amount:.2f} status={payment.payment_status}",
            user_id=actor_id,
        )

    LOGGER.info(
        "Rental returned rental=%s bill=%s total=%.2f paid=%.2f due=%.2f status=%s",
        rental.RentalNumber,
        bill.BillNumber,
        totals.total_amount,
        payment.paid_amount,
        payment.due_amount,
        payment.payment_status,
    )
    handle_rental_return(db, rental.RentalID)
    return rental, bill


def get_bill_or_404(db: Session, bill_id: int) -> Bill:
    bill = db.execute(
        select(Bill)
        .options(selectinload(Bill.Items))
        .options(selectinload(Bill.Payments).selectinload(BillPayment.Account))
        .where(Bill.BillID == bill_id)
    ).scalars().first()
    if not bill:
        raise NotFoundError("Bill", bill_id)
    return bill


def serialize_payment(payment: BillPayment) -> dict:
    return {
        "paymentID": payment.PaymentID,
        "amount": payment.Amount,
        "paymentMethod": payment.PaymentMethod,
        "paymentAccountID": payment.AccountID,
        "paymentAccountName": payment.Account.Name if payment.Account else None,
        "direction": payment.Direction,
        "paymentDate": payment.PaymentDate,
        "notes": payment.Notes,
        "recordedBy": payment.RecordedBy,
    }


def serialize_bill(bill: Bill) -> dict:
    system_amount = coerce_amount(bill.SystemCalculatedAmount)
    customized = coerce_amount(bill.CustomizedAmount)
    return {
        "billID": bill.BillID,
        "billNumber": bill.BillNumber,
        "type": bill.BillType,
        "rentalID": bill.RentalID,
        "customerID": bill.CustomerID,
        "customerName": bill.CustomerName,
        "customerEmail": bill.CustomerEmail,
        "customerPhone": bill.CustomerPhone,
        "rentalDurationHours": bill.RentalDurationHours,
        "damageCost": bill.DamageCost,
        "items": [
            {
                "billItemID": item.BillItemID,
                "itemType": item.ItemType,
                "referenceID": item.ReferenceID,
                "name": item.Name,
                "quantity": item.Quantity,
                "price": item.Price,
                "total": item.Total,
            }
            for item in bill.Items
        ],
        "subtotal": bill.Subtotal,
        "discountPercent": bill.DiscountPercent,
        "discount": bill.Discount,
        "taxPercent": bill.TaxPercent,
        "taxAmount": bill.TaxAmount,
        "systemCalculatedAmount": bill.SystemCalculatedAmount,
        "customizedAmount": bill.CustomizedAmount,
        "missingProfit": round(system_amount - customized, 2),
        "totalAmount": bill.TotalAmount,
        "paidAmount": bill.PaidAmount,
        "dueAmount": bill.DueAmount,
        "excessAmount": bill.ExcessAmount,
        "paymentStatus": bill.PaymentStatus,
        "paymentMethod": bill.PaymentMethod,
        "paymentHistory": [serialize_payment(payment) for payment in bill.Payments],
        "createdBy": bill.CreatedBy,
        "createdDate": bill.CreatedDate,
    }
