"""Tests for the CLI module."""

import json
import os
import subprocess
import sys
from pathlib import Path

import pytest
from click.testing import CliRunner

from teamwork.cli import main

from conftest import PROJECT, TEAM

REPO_ROOT = Path(__file__).resolve().parents[1]


@pytest.fixture
def runner():
    """Create CLI test runner."""
    return CliRunner()


@pytest.fixture
def invoke(runner, base_dir):
    """Run a teamwork command against the test storage root."""

    def _invoke(*args):
        return runner.invoke(main, ["--base-dir", str(base_dir), *args])

    return _invoke


@pytest.fixture
def cli_project(invoke, tmp_path):
    """Create the demo/core project through the CLI."""
    result = invoke(
        "project-create", "-p", PROJECT, "-t", TEAM, "-g", "Ship the login flow",
        "-d", str(tmp_path),
    )
    assert result.exit_code == 0, result.output
    return json.loads(result.output)


def _scoped(*args):
    return [*args[:1], "-p", PROJECT, "-t", TEAM, *args[1:]]


class TestCLI:
    """Test top-level CLI behavior."""

    def test_main_help(self, runner):
        """Main command shows help."""
        result = runner.invoke(main, ["--help"])
        assert result.exit_code == 0
        assert "task-claim" in result.output
        assert "mailbox-poll" in result.output

    def test_version(self, runner):
        """Version flag works."""
        result = runner.invoke(main, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output

    def test_missing_required_option(self, invoke):
        result = invoke("task-claim", "-p", PROJECT, "-t", TEAM, "-i", "1")
        assert result.exit_code != 0
        assert "--owner" in result.output


class TestProjectCommands:
    """Test project-create, project-get and project-status."""

    def test_create(self, cli_project, tmp_path):
        assert cli_project["project"] == PROJECT
        assert cli_project["team"] == TEAM
        assert cli_project["goal"] == "Ship the login flow"
        assert cli_project["dir"] == str(tmp_path.resolve())

    def test_duplicate_exit_code(self, invoke, cli_project, tmp_path):
        result = invoke(*_scoped("project-create", "-g", "Again", "-d", str(tmp_path)))
        assert result.exit_code == 5
        assert "Error:" in result.output

    def test_get(self, invoke, cli_project):
        result = invoke(*_scoped("project-get"))
        assert result.exit_code == 0
        assert json.loads(result.output) == cli_project

    def test_get_missing(self, invoke):
        result = invoke("project-get", "-p", "ghost", "-t", TEAM)
        assert result.exit_code == 4

    def test_status_json(self, invoke, cli_project):
        invoke(*_scoped("task-create", "-i", "1", "--title", "API", "-r", "backend"))
        invoke(*_scoped("task-create", "-i", "2", "--title", "UI", "-r", "frontend"))
        invoke(*_scoped("task-claim", "-i", "1", "-o", "w1"))
        invoke(*_scoped("task-update", "-i", "1", "-o", "w1", "-s", "resolved"))
        invoke(*_scoped("task-claim", "-i", "2", "-o", "w2"))

        result = invoke(*_scoped("project-status", "--format", "json"))
        assert result.exit_code == 0
        status = json.loads(result.output)
        assert status["total"] == 2
        assert status["resolved"] == 1
        assert status["in_progress"] == 1
        assert status["progress"] == 50
        assert status["by_role"]["backend"] == {"total": 1, "resolved": 1}
        assert [w["owner"] for w in status["active_workers"]] == ["w2"]

    def test_status_table(self, invoke, cli_project):
        invoke(*_scoped("task-create", "-i", "1", "--title", "API"))

        result = invoke(*_scoped("project-status"))
        assert result.exit_code == 0
        assert "Progress: 0% (0/1 resolved)" in result.output
        assert "general: 0/1" in result.output


class TestTaskCommands:
    """Test the task commands end to end."""

    def test_create_and_get(self, invoke, cli_project):
        result = invoke(*_scoped(
            "task-create", "-i", "1", "--title", "Add login API", "-r", "backend",
        ))
        assert result.exit_code == 0, result.output
        created = json.loads(result.output)
        assert created["status"] == "open"
        assert created["owner"] is None

        result = invoke(*_scoped("task-get", "-i", "1"))
        assert json.loads(result.output)["title"] == "Add login API"

    def test_invalid_role_rejected_by_cli(self, invoke, cli_project):
        result = invoke(*_scoped("task-create", "-i", "1", "--title", "X", "-r", "wizard"))
        assert result.exit_code == 2

    def test_cycle_exit_code(self, invoke, cli_project):
        invoke(*_scoped("task-create", "-i", "1", "--title", "A", "-b", "2"))
        result = invoke(*_scoped("task-create", "-i", "2", "--title", "B", "-b", "1"))
        assert result.exit_code == 2
        assert "cycle" in result.output

    def test_duplicate_exit_code(self, invoke, cli_project):
        invoke(*_scoped("task-create", "-i", "1", "--title", "A"))
        result = invoke(*_scoped("task-create", "-i", "1", "--title", "A again"))
        assert result.exit_code == 5

    def test_list_table(self, invoke, cli_project):
        invoke(*_scoped("task-create", "-i", "10", "--title", "Ten"))
        invoke(*_scoped("task-create", "-i", "2", "--title", "Two", "-r", "docs"))
        invoke(*_scoped("task-claim", "-i", "2", "-o", "w1"))

        result = invoke(*_scoped("task-list"))
        assert result.exit_code == 0
        assert result.output.splitlines() == [
            "ID|STATUS|ROLE|TITLE|OWNER",
            "2|in_progress|docs|Two|w1",
            "10|open|general|Ten|",
        ]

    def test_dependency_scenario(self, invoke, cli_project):
        """Orchestrator/worker flow from creation to idle notification."""
        invoke(*_scoped("task-create", "-i", "1", "--title", "Build API", "-r", "backend"))
        invoke(*_scoped("task-create", "-i", "2", "--title", "Test API", "-r", "test", "-b", "1"))

        result = invoke(*_scoped("task-list", "--available", "-f", "json"))
        assert [t["id"] for t in json.loads(result.output)] == ["1"]

        result = invoke(*_scoped("task-claim", "-i", "2", "-o", "B"))
        assert result.exit_code == 3

        result = invoke(*_scoped("task-claim", "-i", "1", "-o", "A"))
        assert result.exit_code == 0
        assert json.loads(result.output)["owner"] == "A"

        result = invoke(*_scoped("task-claim", "-i", "1", "-o", "B"))
        assert result.exit_code == 3

        result = invoke(*_scoped(
            "task-update", "-i", "1", "-o", "A",
            "-e", "pytest: 12 passed", "-e", "ruff: clean",
            "-s", "resolved", "-w", "A",
        ))
        assert result.exit_code == 0
        updated = json.loads(result.output)
        assert updated["status"] == "resolved"
        assert updated["evidence"] == ["pytest: 12 passed", "ruff: clean"]

        result = invoke(*_scoped("task-list", "-a", "-f", "json"))
        assert [t["id"] for t in json.loads(result.output)] == ["2"]

        result = invoke(*_scoped("task-claim", "-i", "2", "-o", "B"))
        assert result.exit_code == 0

        result = invoke(*_scoped(
            "mailbox-poll", "-i", "orchestrator", "--timeout", "0", "--type", "idle_notification",
        ))
        [message] = json.loads(result.output)
        assert message["from"] == "A"
        assert message["payload"]["completed_task_id"] == "1"

    def test_update_by_non_owner(self, invoke, cli_project):
        invoke(*_scoped("task-create", "-i", "1", "--title", "A"))
        invoke(*_scoped("task-claim", "-i", "1", "-o", "w1"))

        result = invoke(*_scoped("task-update", "-i", "1", "-o", "w2", "--release"))
        assert result.exit_code == 6

    def test_release(self, invoke, cli_project):
        invoke(*_scoped("task-create", "-i", "1", "--title", "A"))
        invoke(*_scoped("task-claim", "-i", "1", "-o", "w1"))

        result = invoke(*_scoped("task-update", "-i", "1", "-o", "w1", "--release"))
        assert result.exit_code == 0
        task = json.loads(result.output)
        assert task["owner"] is None
        assert task["status"] == "open"

    def test_claim_missing_task(self, invoke, cli_project):
        result = invoke(*_scoped("task-claim", "-i", "404", "-o", "w1"))
        assert result.exit_code == 4
        assert "not found" in result.output

    def test_delete(self, invoke, cli_project):
        invoke(*_scoped("task-create", "-i", "1", "--title", "A"))
        invoke(*_scoped("task-create", "-i", "2", "--title", "B", "-b", "1"))

        result = invoke(*_scoped("task-delete", "-i", "1"))
        assert result.exit_code == 2

        result = invoke(*_scoped("task-delete", "-i", "1", "--force"))
        assert result.exit_code == 0
        assert json.loads(result.output) == {
            "status": "deleted",
            "id": "1",
            "orphaned_dependencies": ["2"],
        }


class TestWaveCommands:
    """Test wave-status and project-clean."""

    @pytest.fixture
    def diamond(self, invoke, cli_project):
        invoke(*_scoped("task-create", "-i", "1", "--title", "Schema"))
        invoke(*_scoped("task-create", "-i", "2", "--title", "API", "-b", "1"))
        invoke(*_scoped("task-create", "-i", "3", "--title", "UI", "-b", "1"))
        invoke(*_scoped("task-create", "-i", "4", "--title", "E2E", "-b", "2,3"))

    def test_wave_status_json(self, invoke, diamond):
        invoke(*_scoped("task-claim", "-i", "1", "-o", "w1"))
        invoke(*_scoped("task-update", "-i", "1", "-o", "w1", "-s", "resolved"))

        result = invoke(*_scoped("wave-status", "--format", "json"))
        assert result.exit_code == 0, result.output
        plan = json.loads(result.output)
        assert plan["total_waves"] == 3
        assert plan["current_wave"] == 2
        assert [w["status"] for w in plan["waves"]] == ["completed", "planning", "planning"]
        assert [[t["id"] for t in w["tasks"]] for w in plan["waves"]] == [["1"], ["2", "3"], ["4"]]

    def test_wave_status_table(self, invoke, diamond):
        result = invoke(*_scoped("wave-status"))
        assert result.exit_code == 0
        assert "Waves: 3 (current: 1)" in result.output
        assert "Wave 2: planning" in result.output
        assert "  3|open|general|UI|" in result.output
        assert "Summary: 0 completed | 0 in progress | 3 remaining | 0 failed" in result.output

    def test_wave_status_warns_on_missing_dependency(self, invoke, cli_project):
        invoke(*_scoped("task-create", "-i", "1", "--title", "A", "-b", "later"))

        result = invoke(*_scoped("wave-status"))
        assert result.exit_code == 0
        assert "Warning: task 1 depends on missing task(s) later" in result.output

    def test_project_clean(self, invoke, diamond):
        result = invoke(*_scoped("project-clean"))
        assert result.exit_code == 0
        assert json.loads(result.output)["cleaned_at"] is not None

        result = invoke(*_scoped("task-list", "-f", "json"))
        assert json.loads(result.output) == []

    def test_project_clean_missing(self, invoke):
        result = invoke("project-clean", "-p", "ghost", "-t", TEAM)
        assert result.exit_code == 4


class TestClaimAcrossProcesses:
    """Race separate teamwork processes for one task."""

    def test_single_winner(self, invoke, cli_project, base_dir):
        """Exactly one process exits 0; every other claimer exits 3."""
        invoke(*_scoped("task-create", "-i", "1", "--title", "Contested"))
        env = {
            **os.environ,
            "TEAMWORK_BASE_DIR": str(base_dir),
            "PYTHONPATH": os.pathsep.join(
                filter(None, [str(REPO_ROOT), os.environ.get("PYTHONPATH")])
            ),
        }

        procs = [
            subprocess.Popen(
                [
                    sys.executable, "-m", "teamwork.cli",
                    *_scoped("task-claim", "-i", "1", "-o", f"w{i}"),
                ],
                env=env,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
            )
            for i in range(8)
        ]
        outputs = [proc.communicate(timeout=120) for proc in procs]
        codes = [proc.returncode for proc in procs]

        assert sorted(codes) == [0] + [3] * 7, outputs
        winner = codes.index(0)
        assert json.loads(outputs[winner][0])["owner"] == f"w{winner}"

        result = invoke(*_scoped("task-get", "-i", "1"))
        task = json.loads(result.output)
        assert task["owner"] == f"w{winner}"
        assert task["version"] == 1


class TestMailboxCommands:
    """Test mailbox-send, mailbox-read and mailbox-poll."""

    def test_send_json_payload(self, invoke, cli_project):
        result = invoke(*_scoped(
            "mailbox-send", "--from", "lead", "--to", "w1", "--type", "text",
            "--payload", '{"hint": "start with task 1"}',
        ))
        assert result.exit_code == 0
        assert json.loads(result.output)["payload"] == {"hint": "start with task 1"}

    def test_send_plain_text_payload(self, invoke, cli_project):
        result = invoke(*_scoped(
            "mailbox-send", "--from", "lead", "--to", "w1", "--type", "text",
            "--payload", "start with task 1",
        ))
        assert json.loads(result.output)["payload"] == "start with task 1"

    def test_read_then_poll(self, invoke, cli_project):
        invoke(*_scoped("mailbox-send", "--from", "lead", "--to", "w1", "--type", "shutdown_request"))

        result = invoke(*_scoped("mailbox-read", "-i", "w1", "--unread"))
        assert len(json.loads(result.output)) == 1

        result = invoke(*_scoped("mailbox-poll", "-i", "w1", "--timeout", "0"))
        [message] = json.loads(result.output)
        assert message["read"] is True

        result = invoke(*_scoped("mailbox-poll", "-i", "w1", "--timeout", "0"))
        assert json.loads(result.output) == []

    def test_negative_timeout_rejected(self, invoke, cli_project):
        result = invoke(*_scoped("mailbox-poll", "-i", "w1", "--timeout", "-5"))
        assert result.exit_code == 2
