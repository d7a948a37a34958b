import json

import pytest


def test_load_and_validate_min_config(write_min_config):
    from service import config_schema

    cfg = config_schema.load_config()  # CONFIG_PATH set by fixture
    jobs = cfg.get("jobs", [])
    assert isinstance(jobs, list) and jobs, "expected at least one job"
    assert jobs[0]["run_immediately"] is True
    config_schema.validate(cfg)


def test_example_config_is_valid():
    import pathlib

    from service import config_schema

    path = pathlib.Path(__file__).resolve().parent.parent / "config.example.json"
    cfg = config_schema.load_config(str(path))
    config_schema.validate(cfg)
    assert cfg["jobs"][0]["module"] == "modules.pararius_contact.main"


def test_yaml_config_loads(tmp_path):
    from service import config_schema

    p = tmp_path / "config.yaml"
    p.write_text(
        "timezone: Europe/Amsterdam\n"
        "jobs:\n"
        "  - module: modules.pararius_contact.main\n"
        "    trigger:\n"
        "      interval: {minutes: 30}\n"
        "    run_immediately: 'yes'\n",
        encoding="utf-8",
    )
    cfg = config_schema.load_config(str(p))
    config_schema.validate(cfg)
    assert cfg["jobs"][0]["id"] == "modules.pararius_contact.main"
    assert cfg["jobs"][0]["run_immediately"] is True


def test_missing_config_file_raises(tmp_path):
    from service import config_schema

    with pytest.raises(config_schema.ConfigError):
        config_schema.load_config(str(tmp_path / "nope.json"))


def _job(**overrides):
    job = {"module": "modules.pararius_contact.main", "trigger": {"interval": {"minutes": 30}}}
    job.update(overrides)
    return job


@pytest.mark.parametrize(
    "jobs",
    [
        [_job(module="")],
        [_job(id="x"), _job(id="x")],
        [_job(trigger={})],
        [_job(trigger={"interval": {"minutes": 30}, "cron": "*/5 * * * *"})],
        [_job(trigger={"interval": {"minutes": 0}})],
        [_job(trigger={"interval": {"fortnights": 1}})],
        [_job(trigger={"daily_time": {"time": "25:00"}})],
        [_job(run_immediately="sometimes")],
        [_job(max_instances=0)],
        [_job(kwargs=["not", "a", "dict"])],
        [{**_job(), "interval": {"minutes": 5}}],
    ],
)
def test_validate_rejects_bad_jobs(jobs):
    from service import config_schema

    with pytest.raises(config_schema.ConfigError):
        config_schema.validate({"jobs": json.loads(json.dumps(jobs))})
