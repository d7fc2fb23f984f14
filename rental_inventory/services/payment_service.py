from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from db.unit_of_work import unit_of_work
from models.rental_models import Bill, BillPayment, PaymentAccount
from services.audit_service import log_audit
from services.billing_service import get_bill_or_404
from services.errors import InputValidationError, NotFoundError
from services.pricing import PAID_TOLERANCE, coerce_amount, resolve_payment_status

LOGGER = logging.getLogger("rental_inventory.payments")

PAYMENT_DIRECTIONS = {"credit", "debit"}


def get_account_or_404(db: Session, account_id: int) -> PaymentAccount:
    account = db.get(PaymentAccount, account_id)
    if not account:
        raise NotFoundError("Payment account", account_id)
    return account


def apply_payment(
    db: Session,
    bill_id: int,
    amount,
    method: str | None,
    account_id: int | None,
    note: str | None,
    actor_id: int | None = None,
    direction: str = "credit",
) -> Bill:
    """Settle part of a bill's due amount against an optional account.

    Inbound (``credit``) payments raise the account balance, outbound
    (``debit``) ones lower it. Balances have no floor.
    """
    bill = get_bill_or_404(db, bill_id)
    if bill.PaymentStatus == "paid":
        raise InputValidationError("Bill is already fully paid")
    if direction not in PAYMENT_DIRECTIONS:
        raise InputValidationError(f"Invalid payment direction: {direction}")

    value = coerce_amount(amount)
    if value <= 0:
        raise InputValidationError("Payment amount must be greater than 0")
    due = coerce_amount(bill.DueAmount)
    if value > due + 1e-9:
        raise InputValidationError(f"Payment amount cannot exceed due amount: {due:.2f}")

    account = get_account_or_404(db, account_id) if account_id else None

    with unit_of_work(db, "apply_payment", bill_id=bill_id, account_id=account_id):
        now = datetime.now()
        if account is not None:
            delta = value if direction == "credit" else -value
            account.CurrentBalance = coerce_amount(account.CurrentBalance) + delta
            account.UpdatedDate = now

        bill.Payments.append(
            BillPayment(
                Amount=value,
                PaymentMethod=method or "cash",
                AccountID=account.AccountID if account is not None else None,
                Direction=direction,
                PaymentDate=now,
                Notes=note,
                RecordedBy=actor_id,
            )
        )

        paid = coerce_amount(bill.PaidAmount) + value
        new_due = max(0.0, coerce_amount(bill.TotalAmount) - paid)
        if new_due <= PAID_TOLERANCE:
            new_due = 0.0
        bill.PaidAmount = paid
        bill.DueAmount = new_due
        bill.PaymentStatus = resolve_payment_status(new_due, value)
        if method:
            bill.PaymentMethod = method
        bill.UpdatedDate = now

        log_audit(
            db,
            "Bill",
            bill.BillID,
            "RecordPayment",
            f"{bill.BillNumber} amount={value:.2f} direction={direction} account_id={account_id}",
            user_id=actor_id,
        )

    LOGGER.info(
        "Payment recorded bill=%s amount=%.2f direction=%s account_id=%s due=%.2f status=%s",
        bill.BillNumber,
        value,
        direction,
        account_id,
        bill.DueAmount,
        bill.PaymentStatus,
    )
    return bill


def _ensure_unique_name(db: Session, name: str, exclude_id: int | None = None) -> None:
    stmt = select(PaymentAccount.AccountID).where(PaymentAccount.Name == name)
    if exclude_id is not None:
        stmt = stmt.where(PaymentAccount.AccountID != exclude_id)
    if db.execute(stmt).first():
        raise InputValidationError("Payment account with this name already exists")


def create_account(db: Session, payload, actor_id: int | None = None) -> PaymentAccount:
    name = payload.name.strip()
    if not name:
        raise InputValidationError("Account name is required")
    _ensure_unique_name(db, name)

    now = datetime.now()
    with unit_of_work(db, "create_payment_account", name=name):
        account = PaymentAccount(
            Name=name,
            AccountType=payload.accountType,
            AccountNumber=payload.accountNumber,
            BankName=payload.bankName,
            IfscCode=payload.ifscCode,
            UpiId=payload.upiId,
            OpeningBalance=payload.openingBalance or 0,
            CurrentBalance=payload.openingBalance or 0,
            Status="active",
            Description=payload.description,
            CreatedBy=actor_id,
            CreatedDate=now,
            UpdatedDate=now,
        )
        db.add(account)
    LOGGER.info("Payment account created account_id=%s name=%s", account.AccountID, account.Name)
    return account


def list_accounts(db: Session, status: str | None = None, account_type: str | None = None) -> list[PaymentAccount]:
    stmt = select(PaymentAccount).order_by(PaymentAccount.Name)
    if status:
        stmt = stmt.where(PaymentAccount.Status == status)
    if account_type:
        stmt = stmt.where(PaymentAccount.AccountType == account_type)
    return list(db.execute(stmt).scalars().all())


def update_account(db: Session, account_id: int, payload) -> PaymentAccount:
    account = get_account_or_404(db, account_id)
    data = payload.model_dump(exclude_unset=True)
    if "name" in data and data["name"] is not None:
        name = data["name"].strip()
        if not name:
            raise InputValidationError("Account name is required")
        _ensure_unique_name(db, name, exclude_id=account_id)
        data["name"] = name

    field_map = {
        "name": "Name",
        "accountNumber": "AccountNumber",
        "bankName": "BankName",
        "ifscCode": "IfscCode",
        "upiId": "UpiId",
        "description": "Description",
        "status": "Status",
    }
    with unit_of_work(db, "update_payment_account", account_id=account_id):
        for key, column in field_map.items():
            if key in data and data[key] is not None:
                setattr(account, column, data[key])
        account.UpdatedDate = datetime.now()
    return account


def deactivate_account(db: Session, account_id: int) -> PaymentAccount:
    account = get_account_or_404(db, account_id)
    with unit_of_work(db, "deactivate_payment_account", account_id=account_id):
        account.Status = "inactive"
        account.UpdatedDate = datetime.now()
    LOGGER.info("Payment account deactivated account_id=%s", account_id)
    return account


def account_transactions(db: Session, account_id: int) -> list[dict]:
    get_account_or_404(db, account_id)
    payments = db.execute(
        select(BillPayment)
        .options(selectinload(BillPayment.Bill))
        .where(BillPayment.AccountID == account_id)
        .order_by(BillPayment.PaymentDate.desc(), BillPayment.PaymentID.desc())
    ).scalars().all()
    rows = []
    for payment in payments:
        bill = payment.Bill
        rows.append(
            {
                "paymentID": payment.PaymentID,
                "amount": payment.Amount,
                "direction": payment.Direction,
                "paymentMethod": payment.PaymentMethod,
                "paymentDate": payment.PaymentDate,
                "notes": payment.Notes,
                "billID": payment.BillID,
                "billNumber": bill.BillNumber if bill else None,
                "customerName": bill.CustomerName if bill else None,
                "billTotal": bill.TotalAmount if bill else None,
            }
        )
    return rows


def serialize_account(account: PaymentAccount) -> dict:
    return {
        "accountID": account.AccountID,
        "name": account.Name,
        "accountType": account.AccountType,
        "accountNumber": account.AccountNumber,
        "bankName": account.BankName,
        "ifscCode": account.IfscCode,
        "upiId": account.UpiId,
        "openingBalance": account.OpeningBalance,
        "currentBalance": account.CurrentBalance,
        "status": account.Status,
        "description": account.Description,
        "createdDate": account.CreatedDate,
        "updatedDate": account.UpdatedDate,
    }
