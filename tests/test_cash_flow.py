import unittest
from datetime import date, datetime, timezone
from decimal import Decimal
from unittest import mock

from cashflow.errors import NotFoundError, ValidationError
from cashflow.models import ExpenseRecord, FundingRecord
from cashflow.pipeline.cash_flow import (
    CashFlowCalculator,
    calculate_cumulative_cash_flow,
    calculate_project_cash_flow,
    expense_bucket,
    funding_bucket,
)
from cashflow.pipeline.periods import generate_periods

from ledger_fixtures import add_expense, add_funding, add_project, memory_db


class CashFlowCalculatorTests(unittest.TestCase):
    def setUp(self):
        self.conn = memory_db()
        add_project(self.conn, "P1")
        self.calc = CashFlowCalculator.from_conn(
            self.conn, local_tz="Africa/Lagos", include_partial=False, expense_policy="payment_status"
        )

    def tearDown(self):
        self.conn.close()

    def test_worked_example_march(self):
        add_funding(self.conn, "P1", "3000000", date(2024, 3, 5))
        add_funding(self.conn, "P1", "2000000", date(2024, 3, 28), funding_type="bank_loan")
        add_expense(self.conn, "P1", "2000000", date(2024, 3, 10), tax_amount="200000", category="Labor")
        # neither of these is realized
        add_funding(self.conn, "P1", "999", date(2024, 3, 6), status="pending")
        add_expense(self.conn, "P1", "777", date(2024, 3, 6), payment_status="unpaid")

        buckets = self.calc.calculate_project_cash_flow("P1", date(2024, 3, 1), date(2024, 3, 31), "monthly")
        self.assertEqual(len(buckets), 1)
        march = buckets[0]
        self.assertEqual(march.inflow, Decimal("5000000"))
        self.assertEqual(march.outflow, Decimal("2200000"))
        self.assertEqual(march.net, Decimal("2800000"))
        self.assertEqual(march.inflow_by_type["client_payments"], Decimal("3000000"))
        self.assertEqual(march.inflow_by_type["loans"], Decimal("2000000"))
        self.assertEqual(march.outflow_by_category["labor"], Decimal("2200000"))

    def test_expense_row_with_bad_total_is_skipped(self):
        add_expense(self.conn, "P1", "500", date(2024, 3, 10))
        self.conn.execute(
            """
            INSERT INTO project_expenses(id, project_id, amount, tax_amount, total_amount, currency,
                                         category, status, payment_status, paid_date)
            VALUES('EBAD', 'P1', '100', '10', '999', 'NGN', 'materials', 'approved', 'paid', '2024-03-12')
            """
        )
        buckets = self.calc.calculate_project_cash_flow("P1", date(2024, 3, 1), date(2024, 3, 31), "monthly")
        self.assertEqual(buckets[0].outflow, Decimal("500"))

    def test_dense_buckets_with_gaps(self):
        add_funding(self.conn, "P1", "100", date(2024, 1, 10))
        add_funding(self.conn, "P1", "50", date(2024, 4, 10))
        buckets = self.calc.calculate_project_cash_flow("P1", date(2024, 1, 1), date(2024, 4, 30), "monthly")
        self.assertEqual([b.key for b in buckets], ["2024-01", "2024-02", "2024-03", "2024-04"])
        self.assertEqual([b.inflow for b in buckets], [Decimal("100"), 0, 0, Decimal("50")])
        for bucket in buckets:
            self.assertEqual(bucket.net, bucket.inflow - bucket.outflow)

    def test_records_outside_window_are_clipped(self):
        add_funding(self.conn, "P1", "100", date(2024, 1, 10))
        add_funding(self.conn, "P1", "40", date(2024, 1, 20))
        buckets = self.calc.calculate_project_cash_flow("P1", date(2024, 1, 15), date(2024, 1, 31), "monthly")
        self.assertEqual(buckets[0].start, date(2024, 1, 1))
        self.assertEqual(buckets[0].inflow, Decimal("40"))

    def test_received_without_date_is_not_realized(self):
        add_funding(self.conn, "P1", "100", None)
        buckets = self.calc.calculate_project_cash_flow("P1", date(2024, 1, 1), date(2024, 12, 31), "quarterly")
        self.assertTrue(all(b.inflow == 0 for b in buckets))

    def test_partial_funding_policy(self):
        add_funding(self.conn, "P1", "100", date(2024, 2, 1), status="partial")
        add_funding(self.conn, "P1", "10", date(2024, 2, 2))
        default = self.calc.calculate_project_cash_flow("P1", date(2024, 2, 1), date(2024, 2, 29))
        widened = self.calc.calculate_project_cash_flow(
            "P1", date(2024, 2, 1), date(2024, 2, 29), include_partial=True
        )
        self.assertEqual(default[0].inflow, Decimal("10"))
        self.assertEqual(widened[0].inflow, Decimal("110"))

    def test_expense_status_policy_and_date_fallback(self):
        add_expense(
            self.conn, "P1", "300", None, payment_status="unpaid", status="approved",
            expense_date=date(2024, 5, 3),
        )
        by_status = CashFlowCalculator.from_conn(self.conn, local_tz="Africa/Lagos", expense_policy="status")
        buckets = by_status.calculate_project_cash_flow("P1", date(2024, 5, 1), date(2024, 5, 31))
        self.assertEqual(buckets[0].outflow, Decimal("300"))
        buckets = self.calc.calculate_project_cash_flow("P1", date(2024, 5, 1), date(2024, 5, 31))
        self.assertEqual(buckets[0].outflow, 0)

    def test_aware_datetime_uses_local_day(self):
        # 23:30 UTC on 31 March is already 1 April in Lagos
        add_funding(self.conn, "P1", "70", datetime(2024, 3, 31, 23, 30, tzinfo=timezone.utc))
        buckets = self.calc.calculate_project_cash_flow("P1", date(2024, 3, 1), date(2024, 4, 30))
        self.assertEqual(buckets[0].inflow, 0)
        self.assertEqual(buckets[1].inflow, Decimal("70"))

    def test_decimal_sums_do_not_drift(self):
        for _ in range(10):
            add_funding(self.conn, "P1", "0.1", date(2024, 6, 1))
        buckets = self.calc.calculate_project_cash_flow("P1", date(2024, 6, 1), date(2024, 6, 30))
        self.assertEqual(buckets[0].inflow, Decimal("1.0"))

    def test_unknown_project(self):
        with self.assertRaises(NotFoundError):
            self.calc.calculate_project_cash_flow("nope", date(2024, 1, 1), date(2024, 1, 31))

    def test_validation_happens_before_storage(self):
        projects = mock.Mock()
        calc = CashFlowCalculator(projects, mock.Mock(), mock.Mock(), local_tz="UTC")
        with self.assertRaises(ValidationError):
            calc.calculate_project_cash_flow("P1", date(2024, 2, 1), date(2024, 1, 1))
        with self.assertRaises(ValidationError):
            calc.calculate_project_cash_flow("P1", date(2024, 1, 1), date(2024, 2, 1), "yearly")
        with self.assertRaises(ValidationError):
            calc.calculate_project_cash_flow("P1", None, date(2024, 2, 1))
        projects.get.assert_not_called()

    def test_module_level_helper(self):
        add_funding(self.conn, "P1", "5", date(2024, 7, 1))
        buckets = calculate_project_cash_flow(self.conn, "P1", "2024-07-01", "2024-07-31")
        self.assertEqual(buckets[0].inflow, Decimal("5"))


class RecordRulesTests(unittest.TestCase):
    def test_negative_funding_rejected(self):
        with self.assertRaises(ValidationError):
            FundingRecord(id="F", project_id="P", amount=Decimal("-1"), currency="NGN",
                          funding_type="grant", status="received")

    def test_expense_total_must_match(self):
        with self.assertRaises(ValidationError):
            ExpenseRecord(id="E", project_id="P", amount=Decimal("10"), currency="NGN",
                          tax_amount=Decimal("1"), total_amount=Decimal("12"))
        ok = ExpenseRecord(id="E", project_id="P", amount=Decimal("10"), currency="NGN", tax_amount=Decimal("1"))
        self.assertEqual(ok.total_amount, Decimal("11"))

    def test_breakdown_keywords(self):
        self.assertEqual(funding_bucket("advance_payment"), "client_payments")
        self.assertEqual(funding_bucket("equity_investment"), "equity")
        self.assertEqual(funding_bucket("grant"), "grants")
        self.assertEqual(funding_bucket("internal_budget"), "other")
        self.assertEqual(expense_bucket("Building Materials"), "materials")
        self.assertEqual(expense_bucket("Permit fees"), "permits")
        self.assertEqual(expense_bucket("consultant"), "professional_fees")
        self.assertEqual(expense_bucket(None), "other")


class CumulativeTests(unittest.TestCase):
    def _buckets(self, nets):
        buckets = generate_periods(date(2024, 1, 1), date(2024, len(nets), 1), "monthly")
        for bucket, (inflow, outflow) in zip(buckets, nets):
            bucket.inflow = Decimal(inflow)
            bucket.outflow = Decimal(outflow)
        return buckets

    def test_running_totals(self):
        buckets = self._buckets([("100", "30"), ("0", "50"), ("20", "0")])
        out = calculate_cumulative_cash_flow(buckets)
        self.assertEqual([b.cumulative_net for b in out], [Decimal("70"), Decimal("20"), Decimal("40")])
        self.assertEqual(out[0].cumulative_net, out[0].net)
        self.assertEqual(out[-1].cumulative_inflow, Decimal("120"))
        self.assertEqual(out[-1].cumulative_outflow, Decimal("80"))

    def test_opening_balance(self):
        out = calculate_cumulative_cash_flow(self._buckets([("10", "0"), ("0", "5")]), opening_balance="1000")
        self.assertEqual([b.cumulative_net for b in out], [Decimal("1010"), Decimal("1005")])

    def test_input_not_mutated(self):
        buckets = self._buckets([("10", "0")])
        out = calculate_cumulative_cash_flow(buckets)
        self.assertIsNone(buckets[0].cumulative_net)
        out[0].inflow_by_type["other"] = Decimal("1")
        self.assertEqual(buckets[0].inflow_by_type["other"], 0)

    def test_empty(self):
        self.assertEqual(calculate_cumulative_cash_flow([]), [])


if __name__ == "__main__":
    unittest.main()
