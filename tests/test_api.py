import os
import shutil
import tempfile
import unittest
from datetime import date
from decimal import Decimal

from fastapi.testclient import TestClient

from cashflow.config import settings
from cashflow.db import get_conn, migrate
from cashflow.main import app

from ledger_fixtures import add_customer, add_expense, add_funding, add_plan, add_project


class ApiTests(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.mkdtemp()
        self._db_path = settings.db_path
        settings.db_path = os.path.join(self.tmp, "cashflow.db")
        conn = get_conn(settings.db_path)
        migrate(conn)
        add_project(conn, "P1")
        add_funding(conn, "P1", "5000000", date(2024, 3, 4))
        add_expense(conn, "P1", "2200000", date(2024, 3, 12), category="equipment")
        add_funding(conn, "P1", "100", date(2024, 5, 2))
        add_plan(conn, "basic", monthly="100")
        add_customer(
            conn, "C1", plan_id="basic", mrr="100",
            subscription_start_date=date(2024, 1, 1), next_payment_date=date(2999, 1, 1),
        )
        conn.close()
        self.client = TestClient(app)

    def tearDown(self):
        settings.db_path = self._db_path
        shutil.rmtree(self.tmp, ignore_errors=True)

    def test_health(self):
        res = self.client.get("/health")
        self.assertEqual(res.status_code, 200)
        self.assertTrue(res.json()["ok"])

    def test_live_cash_flow(self):
        res = self.client.get(
            "/projects/P1/cash-flow",
            params={"start_date": "2024-03-01", "end_date": "2024-05-31"},
        )
        self.assertEqual(res.status_code, 200)
        body = res.json()
        self.assertEqual([p["key"] for p in body["periods"]], ["2024-03", "2024-04", "2024-05"])
        march = body["periods"][0]
        self.assertEqual(Decimal(march["net_cash_flow"]), Decimal("2800000"))
        self.assertEqual(Decimal(march["outflow_by_category"]["equipment"]), Decimal("2200000"))
        self.assertEqual(Decimal(body["periods"][1]["net_cash_flow"]), 0)
        self.assertEqual(Decimal(body["totals"]["inflow"]), Decimal("5000100"))
        self.assertIsNone(march["cumulative_net"])

    def test_cumulative_with_opening_balance(self):
        res = self.client.get(
            "/projects/P1/cash-flow",
            params={
                "start_date": "2024-03-01",
                "end_date": "2024-05-31",
                "cumulative": "true",
                "opening_balance": "1000",
            },
        )
        nets = [Decimal(p["cumulative_net"]) for p in res.json()["periods"]]
        self.assertEqual(nets, [Decimal("2801000"), Decimal("2801000"), Decimal("2801100")])

    def test_cash_flow_errors(self):
        bad_range = self.client.get(
            "/projects/P1/cash-flow", params={"start_date": "2024-05-01", "end_date": "2024-03-01"}
        )
        self.assertEqual(bad_range.status_code, 400)
        bad_period = self.client.get(
            "/projects/P1/cash-flow",
            params={"start_date": "2024-03-01", "end_date": "2024-03-31", "period_type": "daily"},
        )
        self.assertEqual(bad_period.status_code, 400)
        bad_date = self.client.get("/projects/P1/cash-flow", params={"start_date": "March", "end_date": "2024-03-31"})
        self.assertEqual(bad_date.status_code, 400)
        missing = self.client.get(
            "/projects/NOPE/cash-flow", params={"start_date": "2024-03-01", "end_date": "2024-03-31"}
        )
        self.assertEqual(missing.status_code, 404)

    def test_snapshot_roundtrip(self):
        saved = self.client.post("/projects/P1/snapshots/monthly/2024/3")
        self.assertEqual(saved.status_code, 200)
        self.assertEqual(Decimal(saved.json()["net_cash_flow"]), Decimal("2800000"))
        again = self.client.post("/projects/P1/snapshots/monthly/2024/3")
        self.assertEqual(again.json()["id"], saved.json()["id"])

        listed = self.client.get("/projects/P1/snapshots", params={"period_type": "monthly"})
        self.assertEqual(len(listed.json()), 1)

        res = self.client.get(
            "/projects/P1/cash-flow",
            params={"start_date": "2024-01-01", "end_date": "2024-12-31", "source": "snapshots"},
        )
        self.assertEqual(res.status_code, 200)
        self.assertEqual([p["key"] for p in res.json()["periods"]], ["2024-03"])

    def test_snapshot_bad_month(self):
        self.assertEqual(self.client.post("/projects/P1/snapshots/monthly/2024/13").status_code, 400)
        self.assertEqual(self.client.post("/projects/NOPE/snapshots/monthly/2024/3").status_code, 404)

    def test_trigger_job_and_read_run(self):
        res = self.client.post("/jobs/mrr_snapshots")
        self.assertEqual(res.status_code, 202)
        run_id = res.json()["run_id"]
        # background tasks finish before the test client returns
        run = self.client.get(f"/jobs/runs/{run_id}")
        self.assertEqual(run.status_code, 200)
        self.assertEqual(run.json()["status"], "succeeded")
        self.assertEqual(run.json()["success_count"], 1)

    def test_unknown_job_and_run(self):
        self.assertEqual(self.client.post("/jobs/nope").status_code, 404)
        self.assertEqual(self.client.get("/jobs/runs/nope").status_code, 404)

    def test_billing_endpoints(self):
        nxt = self.client.get("/billing/customers/C1/next-payment")
        self.assertEqual(nxt.status_code, 200)
        self.assertEqual(nxt.json()["next_payment_date"], "2999-01-01")
        self.assertEqual(nxt.json()["display"], "Jan 1, 2999")
        self.assertEqual(self.client.get("/billing/customers/NOPE/next-payment").status_code, 404)

        trend = self.client.get("/billing/mrr/trend", params={"months": 3})
        self.assertEqual(len(trend.json()), 3)
        self.assertEqual(self.client.get("/billing/mrr/growth", params={"month": "2024-13"}).status_code, 400)
        growth = self.client.get("/billing/mrr/growth", params={"month": "2024-03"})
        self.assertEqual(Decimal(growth.json()["growth_percent"]), 0)


if __name__ == "__main__":
    unittest.main()
