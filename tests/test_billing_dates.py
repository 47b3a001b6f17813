import unittest
from datetime import date, datetime, timezone

from freezegun import freeze_time

from cashflow.billing.dates import (
    calculate_next_payment_date,
    days_until_payment,
    format_next_payment_date,
    update_all_next_payment_dates,
)
from cashflow.repositories.billing import CustomerRepository

from ledger_fixtures import add_customer, add_plan, memory_db

NOW = datetime(2024, 3, 20, 9, 0, tzinfo=timezone.utc)


class NextPaymentDateTests(unittest.TestCase):
    def test_monthly_lands_after_now(self):
        self.assertEqual(calculate_next_payment_date(date(2024, 1, 15), "monthly", now=NOW), date(2024, 4, 15))

    def test_same_day_is_not_in_the_future(self):
        self.assertEqual(calculate_next_payment_date(date(2024, 1, 20), "monthly", now=NOW), date(2024, 4, 20))

    def test_annual_and_yearly(self):
        self.assertEqual(calculate_next_payment_date(date(2022, 6, 1), "annual", now=NOW), date(2024, 6, 1))
        self.assertEqual(calculate_next_payment_date(date(2022, 6, 1), "Yearly", now=NOW), date(2024, 6, 1))

    def test_unknown_cycle_is_monthly(self):
        self.assertEqual(calculate_next_payment_date(date(2024, 1, 15), "fortnightly", now=NOW), date(2024, 4, 15))

    def test_month_end_does_not_drift(self):
        # 31 Jan -> 29 Feb -> 31 Mar, not 29 Mar
        self.assertEqual(calculate_next_payment_date(date(2024, 1, 31), "monthly", now=NOW), date(2024, 3, 31))
        later = datetime(2024, 5, 1, tzinfo=timezone.utc)
        self.assertEqual(calculate_next_payment_date(date(2024, 1, 31), "monthly", now=later), date(2024, 5, 31))

    def test_future_start_is_returned(self):
        self.assertEqual(calculate_next_payment_date(date(2024, 5, 2), "monthly", now=NOW), date(2024, 5, 2))

    def test_missing_start(self):
        self.assertIsNone(calculate_next_payment_date(None, "monthly", now=NOW))

    def test_current_future_date_kept(self):
        self.assertEqual(
            calculate_next_payment_date(date(2024, 1, 15), "monthly", date(2024, 3, 25), now=NOW),
            date(2024, 3, 25),
        )

    def test_stale_current_date_recomputed(self):
        self.assertEqual(
            calculate_next_payment_date(date(2024, 1, 15), "monthly", date(2024, 3, 15), now=NOW),
            date(2024, 4, 15),
        )

    def test_datetime_input_keeps_type(self):
        start = datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)
        result = calculate_next_payment_date(start, "monthly", now=NOW)
        self.assertEqual(result, datetime(2024, 4, 15, 10, 0, tzinfo=timezone.utc))
        self.assertGreater(result, NOW)

    def test_deterministic(self):
        results = {calculate_next_payment_date(date(2023, 8, 31), "monthly", now=NOW) for _ in range(5)}
        self.assertEqual(results, {date(2024, 3, 31)})

    @freeze_time("2024-03-20 09:00:00")
    def test_default_clock(self):
        self.assertEqual(calculate_next_payment_date(date(2024, 1, 15), "monthly"), date(2024, 4, 15))


class PaymentDisplayTests(unittest.TestCase):
    def test_days_until(self):
        self.assertEqual(days_until_payment(date(2024, 3, 25), now=NOW), 5)
        self.assertEqual(days_until_payment(date(2024, 3, 19), now=NOW), -1)
        self.assertIsNone(days_until_payment(None, now=NOW))

    def test_labels(self):
        self.assertEqual(format_next_payment_date(date(2024, 3, 19), now=NOW), "Mar 19, 2024 (Overdue)")
        self.assertEqual(format_next_payment_date(date(2024, 3, 20), now=NOW), "Mar 20, 2024 (Today)")
        self.assertEqual(format_next_payment_date(date(2024, 3, 21), now=NOW), "Mar 21, 2024 (Tomorrow)")
        self.assertEqual(format_next_payment_date(date(2024, 3, 27), now=NOW), "Mar 27, 2024 (7 days)")
        self.assertEqual(format_next_payment_date(date(2024, 4, 15), now=NOW), "Apr 15, 2024")
        self.assertEqual(format_next_payment_date(None, now=NOW), "N/A")


class UpdateAllNextPaymentDatesTests(unittest.TestCase):
    def setUp(self):
        self.conn = memory_db()
        add_plan(self.conn, "basic")
        self.customers = CustomerRepository(self.conn)

    def tearDown(self):
        self.conn.close()

    def test_refreshes_billable_customers_only(self):
        add_customer(self.conn, "C1", subscription_start_date=date(2024, 1, 15))
        add_customer(self.conn, "C2", status="trial", subscription_start_date=date(2023, 3, 1), billing_cycle="annual")
        add_customer(self.conn, "C3", status="cancelled", subscription_start_date=date(2024, 1, 15))
        add_customer(self.conn, "C4")
        summary = update_all_next_payment_dates(self.customers, now=NOW)
        self.assertEqual(summary.success_count, 2)
        self.assertEqual(summary.detail["total"], 2)
        self.assertEqual(self.customers.get("C1").next_payment_date, date(2024, 4, 15))
        self.assertEqual(self.customers.get("C2").next_payment_date, date(2025, 3, 1))
        self.assertIsNone(self.customers.get("C3").next_payment_date)

    def test_second_pass_writes_nothing(self):
        add_customer(self.conn, "C1", subscription_start_date=date(2024, 1, 15))
        update_all_next_payment_dates(self.customers, now=NOW)
        again = update_all_next_payment_dates(self.customers, now=NOW)
        self.assertEqual(again.success_count, 0)
        self.assertEqual(again.skipped_count, 1)


if __name__ == "__main__":
    unittest.main()
