import unittest
from datetime import date

from cashflow.errors import ValidationError
from cashflow.pipeline.periods import generate_periods, month_bounds, period_bounds, previous_month


class GeneratePeriodsTests(unittest.TestCase):
    def test_monthly_covers_partial_edge_months(self):
        buckets = generate_periods(date(2024, 1, 15), date(2024, 4, 2), "monthly")
        self.assertEqual([b.key for b in buckets], ["2024-01", "2024-02", "2024-03", "2024-04"])
        self.assertEqual(buckets[0].start, date(2024, 1, 1))
        self.assertEqual(buckets[1].end, date(2024, 3, 1))
        self.assertEqual(buckets[2].label, "Mar 2024")

    def test_weekly_starts_on_monday(self):
        # 2024-03-06 is a Wednesday
        buckets = generate_periods(date(2024, 3, 6), date(2024, 3, 18), "weekly")
        self.assertEqual([b.start for b in buckets], [date(2024, 3, 4), date(2024, 3, 11), date(2024, 3, 18)])
        self.assertTrue(all(b.start.weekday() == 0 for b in buckets))
        self.assertEqual(buckets[0].key, "2024-W10")

    def test_quarterly_crosses_year(self):
        buckets = generate_periods(date(2023, 11, 30), date(2024, 2, 1), "quarterly")
        self.assertEqual([b.key for b in buckets], ["2023-Q4", "2024-Q1"])
        self.assertEqual(buckets[1].end, date(2024, 4, 1))

    def test_single_day_window(self):
        buckets = generate_periods(date(2024, 2, 29), date(2024, 2, 29), "monthly")
        self.assertEqual(len(buckets), 1)
        self.assertTrue(buckets[0].contains(date(2024, 2, 29)))
        self.assertFalse(buckets[0].contains(date(2024, 3, 1)))

    def test_zero_filled(self):
        for b in generate_periods(date(2024, 1, 1), date(2024, 6, 30), "monthly"):
            self.assertEqual(b.inflow, 0)
            self.assertEqual(b.outflow, 0)
            self.assertEqual(b.net, 0)

    def test_rejects_bad_input(self):
        with self.assertRaises(ValidationError):
            generate_periods(date(2024, 3, 1), date(2024, 2, 1), "monthly")
        with self.assertRaises(ValidationError):
            generate_periods(date(2024, 1, 1), date(2024, 2, 1), "daily")

    def test_period_type_is_case_insensitive(self):
        self.assertEqual(generate_periods(date(2024, 1, 1), date(2024, 1, 31), "Monthly")[0].period_type, "monthly")


class MonthHelpersTests(unittest.TestCase):
    def test_month_bounds(self):
        self.assertEqual(month_bounds(2024, 12), (date(2024, 12, 1), date(2025, 1, 1)))
        with self.assertRaises(ValidationError):
            month_bounds(2024, 13)
        with self.assertRaises(ValidationError):
            month_bounds(2024, 0)

    def test_previous_month(self):
        self.assertEqual(previous_month(date(2024, 1, 20)), date(2023, 12, 1))
        self.assertEqual(previous_month(date(2024, 3, 31)), date(2024, 2, 1))

    def test_period_bounds_half_open(self):
        start, end = period_bounds("monthly", date(2024, 2, 10))
        self.assertEqual((start, end), (date(2024, 2, 1), date(2024, 3, 1)))


if __name__ == "__main__":
    unittest.main()
