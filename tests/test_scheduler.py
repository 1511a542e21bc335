# tests/test_scheduler.py
"""
Tests for the in-process daily trigger.
"""
import asyncio
from datetime import datetime, timezone

from apscheduler.triggers.cron import CronTrigger

from services import scheduler as billing_scheduler
from services.scheduler import (
    DAILY_JOB_ID,
    build_billing_scheduler,
    run_daily_jobs,
    run_scheduled_billing_jobs,
    start_billing_scheduler,
)


class TestDailyTrigger:

    def test_single_cron_job_at_fixed_utc_time(self):
        scheduler = build_billing_scheduler(hour=6, minute=30)

        jobs = scheduler.get_jobs()
        assert [job.id for job in jobs] == [DAILY_JOB_ID]
        trigger = jobs[0].trigger
        assert isinstance(trigger, CronTrigger)
        fields = {field.name: str(field) for field in trigger.fields}
        assert fields["hour"] == "6"
        assert fields["minute"] == "30"

    def test_restart_waits_for_next_daily_slot(self):
        trigger = build_billing_scheduler(hour=6, minute=0).get_job(DAILY_JOB_ID).trigger

        started_at = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)
        next_run = trigger.get_next_fire_time(None, started_at)

        assert next_run == datetime(2025, 1, 2, 6, 0, tzinfo=timezone.utc)

    def test_disabled_scheduler_is_not_started(self):
        assert start_billing_scheduler() is None


class TestScheduledRun:

    def test_runs_reminders_then_sweep(self, engine, plans, email_sender, monkeypatch):
        monkeypatch.setattr(billing_scheduler, "engine", engine)

        result = run_daily_jobs(email_sender)

        assert result["reminders"]["success"] is True
        assert result["expiry"]["success"] is True

    def test_failure_is_logged_not_raised(self, monkeypatch, caplog):
        def broken(*args, **kwargs):
            raise RuntimeError("db down")

        monkeypatch.setattr(billing_scheduler, "run_daily_jobs", broken)

        asyncio.run(run_scheduled_billing_jobs())

        assert "Daily billing jobs failed: db down" in caplog.text
