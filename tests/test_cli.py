"""
Tests for the command line interface.

Each test runs ``main`` with ``build_service`` patched to return the shared
in-memory service fixture.
"""

from __future__ import annotations

import argparse
import json
from unittest.mock import patch

import pytest

from geofora.cli import _build_cli_parser, _parse_ref, main
from geofora.config import Settings
from tests.helpers import FORUM_ID, q


@pytest.fixture
def run_cli(service, capsys):
    def _run(*argv):
        with patch("geofora.cli.build_service", return_value=service):
            main(list(argv))
        return capsys.readouterr().out

    return _run


class TestParser:
    def test_parse_ref(self):
        assert _parse_ref("question:12") == q(12)

    @pytest.mark.parametrize("value", ["12", "blog:1", "question:x"])
    def test_parse_ref_invalid(self, value):
        with pytest.raises(argparse.ArgumentTypeError):
            _parse_ref(value)

    def test_strategy_requires_forum(self):
        with pytest.raises(SystemExit):
            _build_cli_parser().parse_args(["strategy"])

    def test_no_command_exits(self):
        with pytest.raises(SystemExit) as exc_info:
            main([])
        assert exc_info.value.code == 1


class TestCommands:
    """Commands against the in-memory service."""

    def test_content_json(self, run_cli):
        out = run_cli("--json", "content", "--source", "main_site")
        assert [row["title"] for row in json.loads(out)][:2] == ["SEO Guide", "Pricing"]

    def test_suggest(self, run_cli):
        out = run_cli("suggest", "--forum", "question:1", "--page", "1", "--page", "2", "--max", "1")
        assert "1 suggestions" in out
        assert "question:1 <-> main_page:" in out

    def test_strategy_preview(self, run_cli, registry):
        out = run_cli("strategy", "--forum-id", str(FORUM_ID), "--preview")
        assert f"Preview for forum {FORUM_ID}" in out
        assert len(registry) == 0

    def test_strategy_commit(self, run_cli, registry):
        out = run_cli("strategy", "--forum-id", str(FORUM_ID), "--cap", "1")
        assert "Interlinking Strategy" in out
        assert len(registry) == 10

    def test_strategy_gated_by_plan(self, service, capsys):
        service.plans("abc").set_selected_plan("starter")
        with patch("geofora.cli.build_service", return_value=service):
            with pytest.raises(SystemExit) as exc_info:
                main(["strategy", "--forum-id", str(FORUM_ID), "--session", "abc"])
        assert exc_info.value.code == 1
        assert "does not include" in capsys.readouterr().out

    def test_links_and_stats(self, run_cli):
        run_cli("strategy", "--forum-id", str(FORUM_ID), "--cap", "1")
        out = run_cli("--json", "links", "--type", "question", "--id", "1")
        assert json.loads(out)[0]["source_id"] == 1
        stats = json.loads(run_cli("--json", "stats", "--forum-id", str(FORUM_ID)))
        assert stats["total"] == 10

    def test_relevant(self, run_cli):
        out = run_cli("relevant", "--type", "question", "--id", "1")
        assert "SEO Guide" in out

    def test_plan(self, run_cli):
        assert "professional" in run_cli("plan", "--session", "s1", "--set", "professional")
        assert "no plan selected" in run_cli("plan", "--session", "s1", "--clear")


class TestServe:
    def test_serve_uses_settings_port(self):
        with patch("geofora.cli.Settings.from_env", return_value=Settings(data_dir=None, api_port=9911)):
            with patch("uvicorn.run") as run:
                main(["serve"])
        assert run.call_args.kwargs["port"] == 9911

    def test_serve_port_flag_overrides(self):
        with patch("geofora.cli.Settings.from_env", return_value=Settings(data_dir=None, api_port=9911)):
            with patch("uvicorn.run") as run:
                main(["serve", "--port", "9000"])
        assert run.call_args.kwargs["port"] == 9000
