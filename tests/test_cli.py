"""Tests for the command-line entrypoint."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

import pytest

from letterintel.__main__ import _parse_signal_args, main
from letterintel.db import get_publisher, insert_briefing, upsert_publisher_seen
from letterintel.models import Briefing, BriefingContent


@pytest.fixture
def cli_env(sample_config, tmp_path, monkeypatch):
    """Point the CLI at the test config and undo its logging setup afterwards."""
    monkeypatch.setenv("CONFIG_PATH", str(tmp_path / "config.yaml"))
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield sample_config
    for handler in root.handlers[:]:
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)


def test_init_db(cli_env, capsys):
    main(["init-db"])
    out = capsys.readouterr().out
    assert out.startswith("Database initialized at")
    assert cli_env["database"]["path"] in out


def test_stats_on_empty_archive(cli_env, capsys):
    main(["stats"])
    out = capsys.readouterr().out
    assert "messages: 0" in out
    assert "No ingestion runs yet." in out


def test_show_missing_briefing_exits_nonzero(cli_env, capsys):
    with pytest.raises(SystemExit) as excinfo:
        main(["show", "no-such-id"])
    assert excinfo.value.code == 1
    assert "Briefing not found: no-such-id" in capsys.readouterr().err


def _store_briefing(conn, briefing_id, generated_at, bullet):
    insert_briefing(conn, Briefing(
        briefing_id=briefing_id,
        generated_at=generated_at,
        window_start=generated_at - timedelta(days=1),
        window_end=generated_at,
        email_count=3,
        content=BriefingContent(executive_summary=[bullet]),
    ))


def test_show_latest_and_archive(cli_env, db_conn, capsys):
    _store_briefing(db_conn, "b-old", datetime(2025, 1, 5, 12, 0), "Older summary")
    _store_briefing(db_conn, "b-new", datetime(2025, 1, 6, 12, 0), "Rates held steady")

    main(["show", "latest"])
    assert "ID: b-new" in capsys.readouterr().out

    main(["archive", "--limit", "5"])
    lines = capsys.readouterr().out.splitlines()
    assert "b-new" in lines[2] and "Rates held steady" in lines[2]
    assert "b-old" in lines[3]


def test_override_sets_score(cli_env, db_conn, capsys):
    upsert_publisher_seen(db_conn, "editor@signal.example", "Editor", datetime(2025, 1, 5))

    main([
        "override", "editor@signal.example",
        "--score", "80", "--reason", "trusted desk", "--author", "kim",
    ])

    assert "quality score now 80.0" in capsys.readouterr().out
    publisher = get_publisher(db_conn, "editor@signal.example")
    assert publisher.override_author == "kim"
    assert publisher.quality_score == 80.0


def test_override_rejects_bad_score(cli_env, db_conn):
    upsert_publisher_seen(db_conn, "editor@signal.example", "Editor", None)
    with pytest.raises(SystemExit):
        main(["override", "editor@signal.example", "--score", "140",
              "--reason", "r", "--author", "kim"])


def test_publisher_set_updates_attributes(cli_env, db_conn):
    upsert_publisher_seen(db_conn, "editor@signal.example", "Editor", None)
    main(["publisher-set", "editor@signal.example", "--platform", "substack",
          "--subscriber-estimate", "12000"])
    publisher = get_publisher(db_conn, "editor@signal.example")
    assert publisher.platform == "substack"
    assert publisher.subscriber_estimate == 12000


def test_parse_signal_args():
    assert _parse_signal_args(["citation=0.8", " freshness = 1"]) == {
        "citation": 0.8, "freshness": 1.0,
    }
    assert _parse_signal_args(None) == {}
    with pytest.raises(ValueError):
        _parse_signal_args(["citation"])
