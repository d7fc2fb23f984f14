import sys
import unittest
from datetime import datetime, timedelta
from pathlib import Path

APP_DIR = Path(__file__).resolve().parents[1]
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from services.pricing import (
    accessory_charge,
    coerce_amount,
    compute_bill_totals,
    line_cost,
    rental_duration,
    resolve_payment_status,
    settle_payment,
)


class DurationAndLineCostTests(unittest.TestCase):
    def setUp(self):
        self.out_time = datetime(2026, 3, 1, 10, 0, 0)

    def test_ninety_minutes_bills_two_hours_and_one_day(self):
        duration = rental_duration(self.out_time, self.out_time + timedelta(minutes=90))
        self.assertEqual(duration.hours, 2)
        self.assertEqual(duration.days, 1)
        self.assertEqual(line_cost("hourly", 50, duration), 100)

    def test_one_millisecond_costs_one_hour_or_one_day(self):
        duration = rental_duration(self.out_time, self.out_time + timedelta(milliseconds=1))
        self.assertEqual(line_cost("hourly", 50, duration), 50)
        self.assertEqual(line_cost("daily", 400, duration), 400)
        self.assertEqual(line_cost("monthly", 6000, duration), 6000)

    def test_return_before_out_time_is_clamped(self):
        duration = rental_duration(self.out_time, self.out_time - timedelta(hours=3))
        self.assertEqual(duration.elapsed_ms, 0)
        self.assertEqual(duration.hours, 1)
        self.assertEqual(duration.days, 1)

    def test_days_are_rounded_up_from_hours(self):
        duration = rental_duration(self.out_time, self.out_time + timedelta(hours=25))
        self.assertEqual(duration.hours, 25)
        self.assertEqual(duration.days, 2)
        self.assertEqual(line_cost("daily", 400, duration), 800)

    def test_invalid_rate_costs_nothing(self):
        duration = rental_duration(self.out_time, self.out_time + timedelta(hours=2))
        self.assertEqual(line_cost("hourly", float("nan"), duration), 0)
        self.assertEqual(line_cost("hourly", "abc", duration), 0)
        self.assertEqual(line_cost("daily", None, duration), 0)


class AmountCoercionTests(unittest.TestCase):
    def test_non_numbers_become_zero(self):
        for value in (None, "", "abc", float("nan"), float("inf"), True, [1]):
            self.assertEqual(coerce_amount(value), 0.0, value)

    def test_numeric_strings_are_parsed(self):
        self.assertEqual(coerce_amount("12.5"), 12.5)
        self.assertEqual(coerce_amount(7), 7.0)


class AccessoryChargeTests(unittest.TestCase):
    def test_damaged_without_cost_charges_replacement(self):
        self.assertEqual(accessory_charge("damaged", None, 200), 200)

    def test_missing_with_explicit_cost_uses_it(self):
        self.assertEqual(accessory_charge("missing", 75, 200), 75)

    def test_explicit_cost_is_charged_even_when_returned(self):
        self.assertEqual(accessory_charge("returned", 30, 200), 30)

    def test_returned_or_with_item_owes_nothing(self):
        self.assertIsNone(accessory_charge("returned", None, 200))
        self.assertIsNone(accessory_charge("with_item", 0, 200))


class BillTotalsTests(unittest.TestCase):
    def test_simple_hourly_rental_with_tax(self):
        totals = compute_bill_totals(100, 0, discount_percent=0, tax_percent=18)
        self.assertAlmostEqual(totals.subtotal, 100)
        self.assertAlmostEqual(totals.tax_amount, 18)
        self.assertAlmostEqual(totals.system_calculated_amount, 118)
        self.assertAlmostEqual(totals.total_amount, 118)
        self.assertFalse(totals.has_override)

    def test_discount_applies_before_tax(self):
        totals = compute_bill_totals(150, 50, discount_percent=10, tax_percent=18)
        self.assertAlmostEqual(totals.subtotal, 200)
        self.assertAlmostEqual(totals.discount_amount, 20)
        self.assertAlmostEqual(totals.tax_amount, 32.4)
        self.assertAlmostEqual(totals.total_amount, 212.4)

    def test_customized_amount_is_a_tax_exclusive_base(self):
        totals = compute_bill_totals(100, 0, discount_percent=0, tax_percent=18, customized_total_amount=80)
        self.assertTrue(totals.has_override)
        self.assertAlmostEqual(totals.tax_amount, 14.4)
        self.assertAlmostEqual(totals.total_amount, 94.4)
        self.assertAlmostEqual(totals.system_calculated_amount, 118)
        self.assertAlmostEqual(totals.system_tax_amount, 18)

    def test_zero_override_is_still_an_override(self):
        totals = compute_bill_totals(100, 0, tax_percent=18, customized_total_amount=0)
        self.assertTrue(totals.has_override)
        self.assertAlmostEqual(totals.total_amount, 0)

    def test_non_numeric_override_is_ignored(self):
        totals = compute_bill_totals(100, 0, tax_percent=18, customized_total_amount="n/a")
        self.assertFalse(totals.has_override)
        self.assertAlmostEqual(totals.total_amount, 118)


class PaymentStateTests(unittest.TestCase):
    def test_status_rules(self):
        self.assertEqual(resolve_payment_status(0.005, 0), "paid")
        self.assertEqual(resolve_payment_status(10, 5), "partial")
        self.assertEqual(resolve_payment_status(10, 0), "pending")

    def test_advance_only_leaves_bill_pending(self):
        state = settle_payment(118, 50, 0)
        self.assertAlmostEqual(state.paid_amount, 50)
        self.assertAlmostEqual(state.due_amount, 68)
        self.assertEqual(state.payment_status, "pending")

    def test_overpayment_keeps_total_identity(self):
        state = settle_payment(118, 200, 0)
        self.assertAlmostEqual(state.paid_amount + state.due_amount, 118)
        self.assertAlmostEqual(state.excess_amount, 82)
        self.assertEqual(state.payment_status, "paid")


if __name__ == "__main__":
    unittest.main()
