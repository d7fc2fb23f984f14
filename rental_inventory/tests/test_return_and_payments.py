import sys
import unittest
from datetime import datetime, timedelta
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent))

import support
from sqlalchemy import func, select

from models.rental_models import Bill, InventoryUnit, Notification, PaymentAccount, Rental, RentalProduct
from schemas.payments import PaymentAccountCreate, PaymentAccountUpdate
from schemas.rentals import CreateRentalDto, ReturnRentalDto
from services.billing_service import return_rental, serialize_bill
from services.errors import InputValidationError, NotFoundError
from services.payment_service import (
    account_transactions,
    apply_payment,
    create_account,
    deactivate_account,
    update_account,
)
from services.rental_service import create_rental, get_rental_or_404


class ReturnRentalTests(unittest.TestCase):
    def setUp(self):
        support.reset_schema()
        self.db = support.new_session()
        self.seed = support.seed_basic(self.db)
        self.out_time = datetime.now() - timedelta(hours=3)

    def tearDown(self):
        self.db.close()
        support.drop_schema()

    def _book(self, accessories=None, advance=0):
        return create_rental(
            self.db,
            CreateRentalDto(
                customerId=self.seed.customer.CustomerID,
                items=[
                    {
                        "unitId": self.seed.units[0].UnitID,
                        "rentType": "hourly",
                        "accessories": accessories or [],
                    }
                ],
                outTime=self.out_time,
                advancePayment=advance,
            ),
        )

    def _return(self, rental, minutes=90, **fields):
        returned_line = {"itemId": self.seed.units[0].UnitID}
        returned_line.update(fields.pop("line", {}))
        payload = ReturnRentalDto(returnItems=[returned_line], taxPercent=fields.pop("taxPercent", 18), **fields)
        return return_rental(self.db, rental.RentalID, payload, actor_id=3, now=self.out_time + timedelta(minutes=minutes))

    def test_simple_hourly_rental_bill(self):
        rental = self._book()
        rental, bill = self._return(rental)

        self.assertEqual(rental.Status, "completed")
        self.assertEqual(rental.BillID, bill.BillID)
        self.assertAlmostEqual(rental.TotalAmount, 118)
        self.assertEqual(bill.BillNumber, "BILL-000001")
        self.assertEqual(bill.RentalDurationHours, 2)
        self.assertAlmostEqual(bill.Subtotal, 100)
        self.assertAlmostEqual(bill.TaxAmount, 18)
        self.assertAlmostEqual(bill.SystemCalculatedAmount, 118)
        self.assertAlmostEqual(bill.TotalAmount, 118)
        self.assertAlmostEqual(bill.DueAmount, 118)
        self.assertEqual(bill.PaymentStatus, "pending")
        self.assertEqual(bill.PaymentMethod, "cash")
        self.assertEqual([item.Name for item in bill.Items], ["Camera - CAM-001 (Rental)"])

        unit = self.db.get(InventoryUnit, self.seed.units[0].UnitID)
        self.assertEqual(unit.Status, "available")
        self.assertEqual(unit.History[-1].Action, "returned")
        self.assertEqual(unit.History[-1].Details, f"Returned from Rental ID: {rental.RentalNumber}. Condition: good")
        self.assertEqual(self.db.get(RentalProduct, self.seed.product.RentalProductID).AvailableQuantity, 1)

    def test_override_keeps_system_amount(self):
        rental = self._book()
        _, bill = self._return(rental, customizedTotalAmount=80)

        self.assertAlmostEqual(bill.SystemCalculatedAmount, 118)
        self.assertAlmostEqual(bill.TaxAmount, 14.4)
        self.assertAlmostEqual(bill.TotalAmount, 94.4)
        self.assertAlmostEqual(bill.CustomizedAmount, 94.4)
        self.assertAlmostEqual(serialize_bill(bill)["missingProfit"], 23.6)

    def test_damaged_accessory_charges_replacement_cost(self):
        rental = self._book(accessories=[{"accessoryId": self.seed.charger.AccessoryID}])
        _, bill = self._return(
            rental,
            line={"accessories": [{"accessoryId": self.seed.charger.AccessoryID, "status": "damaged"}]},
        )

        accessory_lines = [item for item in bill.Items if item.Name == "Charger (Accessory)"]
        self.assertEqual(len(accessory_lines), 1)
        self.assertAlmostEqual(accessory_lines[0].Total, 200)
        self.assertAlmostEqual(bill.DamageCost, 200)
        self.assertAlmostEqual(bill.Subtotal, 300)
        self.assertEqual(rental.Items[0].Accessories[0].Status, "damaged")

    def test_line_damage_cost_and_condition(self):
        rental = self._book()
        rental, bill = self._return(rental, line={"returnCondition": "damaged", "damageCost": 40})

        self.assertAlmostEqual(bill.DamageCost, 40)
        self.assertAlmostEqual(bill.Subtotal, 140)
        self.assertEqual(rental.Items[0].ReturnCondition, "damaged")
        unit = self.db.get(InventoryUnit, self.seed.units[0].UnitID)
        self.assertEqual(unit.Status, "available")
        self.assertEqual(unit.Condition, "damaged")

    def test_unknown_returned_line_is_skipped(self):
        rental = self._book()
        payload = ReturnRentalDto(returnItems=[{"itemId": 999}], taxPercent=18)
        rental, bill = return_rental(self.db, rental.RentalID, payload, now=self.out_time + timedelta(minutes=90))
        self.assertEqual(rental.Status, "completed")
        self.assertEqual(len(bill.Items), 0)
        self.assertAlmostEqual(bill.TotalAmount, 0)
        self.assertEqual(bill.PaymentStatus, "paid")

    def test_sold_items_are_always_billed(self):
        tape = support.add_stock_product(self.db, quantity=5)
        self.db.commit()
        rental = create_rental(
            self.db,
            CreateRentalDto(
                customerId=self.seed.customer.CustomerID,
                items=[{"unitId": self.seed.units[0].UnitID, "rentType": "hourly"}],
                soldItems=[{"productId": tape.ProductID, "quantity": 2, "price": 20}],
                outTime=self.out_time,
            ),
        )
        _, bill = self._return(rental, taxPercent=0)
        names = [item.Name for item in bill.Items]
        self.assertIn("Tape (Sold)", names)
        self.assertAlmostEqual(bill.Subtotal, 140)

    def test_second_return_is_rejected(self):
        rental = self._book()
        self._return(rental)
        with self.assertRaises(InputValidationError) as ctx:
            self._return(rental)
        self.assertEqual(str(ctx.exception), "Rental already completed")
        self.assertEqual(self.db.execute(select(func.count(Bill.BillID))).scalar(), 1)

    def test_return_from_stale_session_cannot_bill_twice(self):
        rental = self._book()
        other = support.new_session()
        try:
            stale = get_rental_or_404(other, rental.RentalID)
            self.assertEqual(stale.Status, "active")

            self._return(rental)

            payload = ReturnRentalDto(returnItems=[{"itemId": self.seed.units[0].UnitID}], taxPercent=18)
            with self.assertRaises(InputValidationError) as ctx:
                return_rental(other, stale.RentalID, payload, now=self.out_time + timedelta(hours=4))
            self.assertEqual(str(ctx.exception), "Rental already completed")
        finally:
            other.close()

        check = support.new_session()
        try:
            self.assertEqual(check.execute(select(func.count(Bill.BillID))).scalar(), 1)
            self.assertEqual(check.get(Rental, rental.RentalID).Status, "completed")
        finally:
            check.close()

    def test_missing_rental_is_not_found(self):
        with self.assertRaises(NotFoundError):
            return_rental(self.db, 404, ReturnRentalDto())

    def test_advance_larger_than_total_keeps_identity(self):
        rental = self._book(advance=200)
        _, bill = self._return(rental)
        self.assertAlmostEqual(bill.PaidAmount + bill.DueAmount, bill.TotalAmount)
        self.assertAlmostEqual(bill.ExcessAmount, 82)
        self.assertEqual(bill.PaymentStatus, "paid")

    def test_payment_on_return_credits_active_account(self):
        account = support.add_account(self.db, opening=1000)
        self.db.commit()
        rental = self._book()
        _, bill = self._return(rental, paidDueAmount=50, paymentAccountId=account.AccountID, paymentMethod="upi")

        self.assertEqual(bill.PaymentStatus, "partial")
        self.assertAlmostEqual(bill.PaidAmount, 50)
        self.assertAlmostEqual(bill.DueAmount, 68)
        self.assertEqual(len(bill.Payments), 1)
        self.assertEqual(bill.Payments[0].Notes, f"Payment during rental return - {rental.RentalNumber}")
        self.assertAlmostEqual(self.db.get(PaymentAccount, account.AccountID).CurrentBalance, 1050)

    def test_inactive_account_is_skipped_but_bill_counts_payment(self):
        account = support.add_account(self.db, status="inactive", opening=1000)
        self.db.commit()
        rental = self._book()
        _, bill = self._return(rental, paidDueAmount=50, paymentAccountId=account.AccountID)

        self.assertEqual(bill.PaymentStatus, "partial")
        self.assertAlmostEqual(bill.PaidAmount, 50)
        self.assertEqual(len(bill.Payments), 0)
        self.assertAlmostEqual(self.db.get(PaymentAccount, account.AccountID).CurrentBalance, 1000)

    def test_return_clears_rental_notifications(self):
        rental = self._book()
        self.db.add(Notification(RentalID=rental.RentalID, NotificationType="rental-overdue", Message="late", IsRead=False))
        self.db.commit()
        self._return(rental)
        remaining = self.db.execute(
            select(func.count(Notification.NotificationID)).where(Notification.RentalID == rental.RentalID)
        ).scalar()
        self.assertEqual(remaining, 0)


class PaymentReconcilerTests(unittest.TestCase):
    def setUp(self):
        support.reset_schema()
        self.db = support.new_session()
        seed = support.seed_basic(self.db)
        out_time = datetime.now() - timedelta(hours=3)
        rental = create_rental(
            self.db,
            CreateRentalDto(
                customerId=seed.customer.CustomerID,
                items=[{"unitId": seed.units[0].UnitID, "rentType": "hourly"}],
                outTime=out_time,
            ),
        )
        _, self.bill = return_rental(
            self.db,
            rental.RentalID,
            ReturnRentalDto(returnItems=[{"itemId": seed.units[0].UnitID}], taxPercent=18),
            now=out_time + timedelta(minutes=90),
        )
        self.account = support.add_account(self.db, opening=100)
        self.db.commit()

    def tearDown(self):
        self.db.close()
        support.drop_schema()

    def test_partial_then_full_payment(self):
        bill = apply_payment(self.db, self.bill.BillID, 18, "cash", self.account.AccountID, "first", actor_id=2)
        self.assertEqual(bill.PaymentStatus, "partial")
        self.assertAlmostEqual(bill.DueAmount, 100)

        bill = apply_payment(self.db, self.bill.BillID, 100, "cash", self.account.AccountID, "rest")
        self.assertEqual(bill.PaymentStatus, "paid")
        self.assertAlmostEqual(bill.DueAmount, 0)
        self.assertAlmostEqual(bill.PaidAmount + bill.DueAmount, bill.TotalAmount)
        self.assertEqual(len(bill.Payments), 2)
        self.assertAlmostEqual(self.db.get(PaymentAccount, self.account.AccountID).CurrentBalance, 218)

    def test_amount_must_be_positive(self):
        with self.assertRaises(InputValidationError):
            apply_payment(self.db, self.bill.BillID, 0, "cash", None, None)
        with self.assertRaises(InputValidationError):
            apply_payment(self.db, self.bill.BillID, -5, "cash", None, None)

    def test_amount_cannot_exceed_due(self):
        with self.assertRaises(InputValidationError) as ctx:
            apply_payment(self.db, self.bill.BillID, 500, "cash", None, None)
        self.assertEqual(str(ctx.exception), "Payment amount cannot exceed due amount: 118.00")
        self.assertEqual(len(self.db.get(Bill, self.bill.BillID).Payments), 0)

    def test_paid_bill_rejects_more_payments(self):
        apply_payment(self.db, self.bill.BillID, 118, "cash", None, None)
        with self.assertRaises(InputValidationError):
            apply_payment(self.db, self.bill.BillID, 1, "cash", None, None)

    def test_unknown_account_is_not_found(self):
        with self.assertRaises(NotFoundError):
            apply_payment(self.db, self.bill.BillID, 10, "cash", 999, None)

    def test_debit_can_take_balance_negative(self):
        apply_payment(self.db, self.bill.BillID, 118, "bank", self.account.AccountID, "refund", direction="debit")
        self.assertAlmostEqual(self.db.get(PaymentAccount, self.account.AccountID).CurrentBalance, -18)

    def test_account_transactions_list_payments(self):
        apply_payment(self.db, self.bill.BillID, 18, "cash", self.account.AccountID, "first")
        rows = account_transactions(self.db, self.account.AccountID)
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0]["billNumber"], self.bill.BillNumber)
        self.assertAlmostEqual(rows[0]["amount"], 18)


class PaymentAccountTests(unittest.TestCase):
    def setUp(self):
        support.reset_schema()
        self.db = support.new_session()

    def tearDown(self):
        self.db.close()
        support.drop_schema()

    def test_create_update_and_deactivate(self):
        account = create_account(
            self.db,
            PaymentAccountCreate(name="Counter Cash", accountType="cash", openingBalance=250),
            actor_id=1,
        )
        self.assertAlmostEqual(account.CurrentBalance, 250)
        self.assertEqual(account.Status, "active")

        account = update_account(self.db, account.AccountID, PaymentAccountUpdate(description="Front desk"))
        self.assertEqual(account.Description, "Front desk")
        self.assertAlmostEqual(account.OpeningBalance, 250)

        account = deactivate_account(self.db, account.AccountID)
        self.assertEqual(account.Status, "inactive")

    def test_duplicate_name_is_rejected(self):
        create_account(self.db, PaymentAccountCreate(name="Main", accountType="bank"))
        with self.assertRaises(InputValidationError):
            create_account(self.db, PaymentAccountCreate(name="Main", accountType="upi"))


if __name__ == "__main__":
    unittest.main()
