from datetime import datetime, timedelta, timezone
from unittest import mock
from zoneinfo import ZoneInfo

import pytest

from service.scheduler import SchedulerController, _add_job, _build_trigger, _make_job_spec, _preview_trigger

AMS = ZoneInfo("Europe/Amsterdam")


def _spec(**overrides):
    raw = {
        "id": "pararius-test",
        "module": "modules.pararius_contact.main",
        "trigger": {"interval": {"minutes": 30}},
        "kwargs": {"skip_network": True},
    }
    raw.update(overrides)
    return _make_job_spec(raw, default_job_defaults={"coalesce": True, "max_instances": 1}, tz="UTC")


# Triggers ---------------------------------------------------------------------


def test_interval_fires_every_thirty_minutes():
    trig = _build_trigger({"interval": {"minutes": 30}}, "Europe/Amsterdam")
    assert trig.interval == timedelta(minutes=30)

    start = datetime(2099, 3, 2, 9, 0, tzinfo=AMS)
    times = _preview_trigger(trig, AMS, count=3, start=start)
    assert [t - start for t in times] == [timedelta(minutes=30), timedelta(minutes=60), timedelta(minutes=90)]


def test_interval_combines_units():
    trig = _build_trigger({"interval": {"hours": 1, "minutes": 15}}, "UTC")
    assert trig.interval.total_seconds() == 4500


def test_cron_object_defaults_unset_fields_to_zero():
    trig = _build_trigger({"cron": {"hour": "8-20", "day_of_week": "mon-fri"}}, "UTC")

    # 2099-01-05 is a Monday
    start = datetime(2099, 1, 5, 7, 59, tzinfo=timezone.utc)
    times = _preview_trigger(trig, timezone.utc, count=2, start=start)
    assert times == [
        datetime(2099, 1, 5, 8, 0, tzinfo=timezone.utc),
        datetime(2099, 1, 5, 9, 0, tzinfo=timezone.utc),
    ]


def test_cron_string_uses_scheduler_zone():
    trig = _build_trigger({"cron": "*/30 8-22 * * *"}, "Europe/Amsterdam")

    start = datetime(2099, 1, 5, 7, 59, tzinfo=AMS)
    first = _preview_trigger(trig, AMS, count=1, start=start)[0]
    assert (first.hour, first.minute) == (8, 0)
    assert first.utcoffset() == timedelta(hours=1)


def test_date_accepts_iso_and_epoch():
    iso = _build_trigger({"date": "2099-01-01T06:00:00Z"}, "UTC")
    assert iso.run_date == datetime(2099, 1, 1, 6, 0, tzinfo=timezone.utc)

    ts = int(datetime(2099, 1, 1, tzinfo=timezone.utc).timestamp())
    epoch = _build_trigger({"date": {"run_at": ts}}, "UTC")
    assert epoch.run_date.year == 2099


def test_naive_date_is_read_in_scheduler_zone():
    trig = _build_trigger({"date": {"run_at": "2099-07-01T09:00:00"}}, "Europe/Amsterdam")
    assert trig.run_date.utcoffset() == timedelta(hours=2)


def test_daily_time_multiple_times_are_exact_pairs():
    from apscheduler.triggers.combining import OrTrigger

    trig = _build_trigger({"daily_time": {"time": ["08:00", "12:30", "18:00"]}}, "Europe/Amsterdam")
    assert isinstance(trig, OrTrigger)

    start = datetime(2099, 1, 5, 7, 0, tzinfo=AMS)
    hm = [(t.hour, t.minute) for t in _preview_trigger(trig, AMS, count=3, start=start)]
    assert hm == [(8, 0), (12, 30), (18, 0)]


def test_daily_time_dedups_and_supports_seconds():
    trig = _build_trigger({"daily_time": {"time": ["06:00:30", "06:00:30"]}}, "UTC")

    start = datetime(2099, 1, 5, 6, 0, tzinfo=timezone.utc)
    times = _preview_trigger(trig, timezone.utc, count=2, start=start)
    assert times[0] == datetime(2099, 1, 5, 6, 0, 30, tzinfo=timezone.utc)
    assert times[1] == datetime(2099, 1, 6, 6, 0, 30, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "payload",
    [
        {},
        {"interval": {"minutes": 0}},
        {"interval": {"minutes": -5}},
        {"interval": {"fortnights": 1}},
        {"interval": {"minutes": 5}, "cron": "* * * * *"},
        {"cron": "*/15 * *"},
        {"cron": {"minute": 0, "every": "day"}},
        {"date": {}},
        {"date": "next tuesday"},
        {"daily_time": {}},
        {"daily_time": {"time": "24:00"}},
        {"interval": {"minutes": 5, "timezone": "Mars/Olympus"}},
    ],
)
def test_invalid_triggers_raise(payload):
    with pytest.raises(ValueError):
        _build_trigger(payload, "UTC")


# Job specs / registration -------------------------------------------------------


def test_make_job_spec_defaults():
    spec = _spec()
    assert spec.run_immediately is False
    assert spec.max_instances == 1
    assert spec.coalesce is True
    assert spec.trigger.interval.total_seconds() == 1800


def test_make_job_spec_requires_trigger():
    with pytest.raises(ValueError):
        _make_job_spec({"module": "modules.pararius_contact.main"}, default_job_defaults={}, tz="UTC")


def test_run_immediately_schedules_first_tick_now():
    import pytz
    from apscheduler.schedulers.background import BackgroundScheduler

    sched = BackgroundScheduler(timezone=pytz.UTC)
    sched.start(paused=True)
    try:
        now = datetime.now(timezone.utc)
        _add_job(sched, _spec(id="now", run_immediately=True))
        _add_job(sched, _spec(id="later"))

        assert sched.get_job("now").next_run_time <= now + timedelta(seconds=5)
        assert sched.get_job("later").next_run_time >= now + timedelta(minutes=29)
        assert sched.get_job("now").max_instances == 1
    finally:
        sched.shutdown(wait=False)


def test_controller_stop_signals_in_flight_runs():
    fake = mock.Mock()
    fake.running = True
    with mock.patch("service.scheduler.runner.request_shutdown", return_value=1) as req:
        ctl = SchedulerController(fake)
        ctl.stop()

    req.assert_called_once_with()
    fake.shutdown.assert_called_once_with(wait=False)
    assert ctl.join(timeout=0)


def test_tick_is_skipped_while_previous_run_is_active():
    import pytz
    from apscheduler.schedulers.background import BackgroundScheduler

    from service import runner

    sched = BackgroundScheduler(timezone=pytz.UTC)
    sched.start(paused=True)
    try:
        _add_job(sched, _spec(id="busy"))
        job_func = sched.get_job("busy").func
        with mock.patch("service.scheduler.runner.run_module_once", side_effect=runner.PreviousRunActive("busy")), \
                mock.patch("service.scheduler.write_activity_log") as write:
            job_func()
    finally:
        sched.shutdown(wait=False)

    record = write.call_args.args[0]
    assert record["event"] == "job_run"
    assert record["fields"]["status"] == "skipped"
