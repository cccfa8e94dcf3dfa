"""Command-line tests, driven through click's CliRunner.

Run: pytest test_cli.py
"""

import pytest
from click.testing import CliRunner

from checkpoint import __version__
from checkpoint.cli import main
from checkpoint.manager import CheckpointManager

# Wide enough that rich never wraps checkpoint names in tables.
ENV = {"COLUMNS": "200"}


def write(path, content=""):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)


@pytest.fixture
def run(tmp_path):
    runner = CliRunner()

    def invoke(*args, input=None):
        return runner.invoke(main, ["--root", str(tmp_path), *args], input=input, env=ENV)

    return invoke


@pytest.fixture
def project(tmp_path):
    write(tmp_path / "app.js", "v1")
    return tmp_path


def test_version():
    result = CliRunner().invoke(main, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_setup(run, project):
    result = run("setup")

    assert result.exit_code == 0, result.output
    assert "Checkpoint setup complete" in result.output
    assert "Initial checkpoint" in result.output
    assert (project / ".checkpoints" / "config.json").is_file()


def test_create_and_list(run, project):
    result = run("create", "-n", "first", "-d", "First pass")
    assert result.exit_code == 0, result.output
    assert "Checkpoint created" in result.output

    result = run("list")
    assert result.exit_code == 0, result.output
    assert "Checkpoints (1)" in result.output
    assert "First pass" in result.output


def test_list_empty(run, project):
    result = run("list")
    assert result.exit_code == 0
    assert "No checkpoints found" in result.output


def test_create_without_files_fails(run, tmp_path):
    write(tmp_path / ".gitignore", "*\n")

    result = run("create")

    assert result.exit_code == 1
    assert "No files found to checkpoint" in result.output


def test_restore_with_yes(run, project):
    name = CheckpointManager(project).create("base")["name"]
    write(project / "app.js", "v2")
    write(project / "extra.js", "new")

    result = run("restore", name, "-y")

    assert result.exit_code == 0, result.output
    assert "Restored" in result.output
    assert "Emergency backup" in result.output
    assert (project / "app.js").read_text() == "v1"
    assert not (project / "extra.js").exists()


def test_restore_prompt_declined(run, project):
    name = CheckpointManager(project).create("base")["name"]
    write(project / "app.js", "v2")

    result = run("restore", name, input="n\n")

    assert result.exit_code == 0, result.output
    assert "Cancelled" in result.output
    assert (project / "app.js").read_text() == "v2"


def test_restore_prompt_accepted(run, project):
    name = CheckpointManager(project).create("base")["name"]
    write(project / "app.js", "v2")

    result = run("restore", "base", input="y\n")

    assert result.exit_code == 0, result.output
    assert name in result.output
    assert (project / "app.js").read_text() == "v1"


def test_restore_dry_run(run, project):
    CheckpointManager(project).create("base")
    write(project / "extra.js", "new")

    result = run("restore", "base", "--dry-run")

    assert result.exit_code == 0, result.output
    assert "DRY RUN" in result.output
    assert "extra.js" in result.output
    assert (project / "extra.js").exists()


def test_restore_unknown(run, project):
    name = CheckpointManager(project).create("base")["name"]

    result = run("restore", "nope", "-y")

    assert result.exit_code == 1
    assert "Checkpoint not found: nope" in result.output
    assert name in result.output


def test_log_and_changelog(run, project):
    result = run("log", "Refactored auth", "--action", "REFACTOR", "--details", "split module")
    assert result.exit_code == 0, result.output
    assert "Logged REFACTOR: Refactored auth" in result.output

    result = run("changelog")
    assert result.exit_code == 0, result.output
    assert "REFACTOR" in result.output
    assert "Refactored auth" in result.output


def test_changelog_empty(run, project):
    result = run("changelog")
    assert result.exit_code == 0
    assert "No history yet" in result.output
