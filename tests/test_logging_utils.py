import json
import os

from service import logging_utils as L


def _lines(path):
    with open(path, encoding="utf-8") as f:
        return [json.loads(line) for line in f if line.strip()]


def test_activity_record_is_redacted_and_enriched(log_dir):
    record = {
        "op": "start",
        "settings": {"contact_email": "applicant@example.org", "search_url": "https://example.org"},
        "auth": [{"api_key": "abc"}],
    }
    L.write_activity_log(record)

    (written,) = _lines(L.get_activity_log_path())
    assert written["settings"]["contact_email"] == "***REDACTED***"
    assert written["settings"]["search_url"] == "https://example.org"
    assert written["auth"][0]["api_key"] == "***REDACTED***"
    assert {"ts", "host", "pid"} <= set(written["_meta"])

    # Input untouched
    assert record["settings"]["contact_email"] == "applicant@example.org"
    assert L.get_activity_log_path().startswith(log_dir)


def test_error_log_goes_to_its_own_file():
    L.write_error_log({"where": "test", "error": "boom"})
    assert os.path.basename(L.get_error_log_path()).startswith("error-test-")
    assert _lines(L.get_error_log_path())[0]["error"] == "boom"


def test_log_disable_switch(monkeypatch):
    monkeypatch.setenv("LOG_DISABLE", "1")
    L.write_activity_log({"op": "ignored"})
    assert not os.path.exists(L.get_activity_log_path())


def test_non_json_values_are_stringified():
    from datetime import date

    L.write_activity_log({"offered_since": date(2025, 6, 10)})
    assert _lines(L.get_activity_log_path())[0]["offered_since"] == "2025-06-10"


def test_iter_activity_records_skips_torn_lines(log_dir):
    L.write_activity_log({"op": "first"})
    with open(L.get_activity_log_path(), "a", encoding="utf-8") as f:
        f.write('{"op": "torn"')
    L.write_activity_log({"op": "second"})

    ops = [r.get("op") for r in L.iter_activity_records(log_dir)]
    assert ops == ["first"]


def test_iter_activity_records_missing_dir(tmp_path):
    assert list(L.iter_activity_records(str(tmp_path / "nope"))) == []


def test_daily_file_and_meta_timestamp(frozen_utc, log_dir):
    L.write_activity_log({"op": "tick"})

    assert L.get_activity_log_path() == os.path.join(log_dir, "activity-test-2025-07-01.jsonl")
    (rec,) = _lines(L.get_activity_log_path())
    assert rec["_meta"]["ts"] == "2025-07-01T00:00:00+00:00"
