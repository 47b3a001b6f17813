import asyncio
import unittest
from unittest import mock
from zoneinfo import ZoneInfo

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from cashflow.jobs.scheduler import job_crons, run_scheduled, schedule_jobs
from cashflow.jobs.tasks import JOBS


class SchedulerTests(unittest.TestCase):
    def test_every_job_has_a_cron_entry(self):
        self.assertEqual(set(job_crons()), set(JOBS))

    def test_jobs_registered_without_overlap(self):
        sched = AsyncIOScheduler(timezone=ZoneInfo("Africa/Lagos"))
        schedule_jobs(sched, start=False)
        jobs = {job.id: job for job in sched.get_jobs()}
        self.assertEqual(set(jobs), set(JOBS))
        for job in jobs.values():
            self.assertEqual(job.max_instances, 1)
            self.assertTrue(job.coalesce)
        fields = {f.name: str(f) for f in jobs["snapshot_cleanup"].trigger.fields}
        self.assertEqual(fields["day_of_week"], "sun")
        self.assertEqual(fields["hour"], "3")

    def test_scheduled_run_goes_through_worker_thread(self):
        with mock.patch("cashflow.jobs.scheduler.run_job_standalone") as runner:
            asyncio.run(run_scheduled("daily_snapshots"))
        runner.assert_called_once_with("daily_snapshots")

    def test_scheduled_failure_is_logged_not_raised(self):
        with mock.patch("cashflow.jobs.scheduler.run_job_standalone", side_effect=RuntimeError("db gone")):
            asyncio.run(run_scheduled("daily_snapshots"))


if __name__ == "__main__":
    unittest.main()
