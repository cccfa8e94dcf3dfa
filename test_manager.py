"""CheckpointManager tests: naming, create, list, retention, cleanup, changelog, setup.

Run: pytest test_manager.py
"""

import json
import os
import re
import tarfile
from datetime import datetime, timezone
from pathlib import Path

import pytest

from checkpoint.config import Config
from checkpoint.errors import FileSystemError
from checkpoint.manager import CheckpointManager, format_size, slugify_description
from checkpoint.snapshot import create_snapshot_store

STAMP = r"\d{4}-\d{2}-\d{2}T\d{2}-\d{2}-\d{2}"


def write(path, content=""):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)


def write_config(manager, **overrides):
    manager.ensure_directories()
    config = Config().to_dict()
    config.update(overrides)
    manager.config_file.write_text(json.dumps(config, indent=2))


@pytest.fixture
def project(tmp_path):
    write(tmp_path / "file1.js", 'console.log("file1");')
    write(tmp_path / "file2.js", 'console.log("file2");')
    write(tmp_path / "README.md", "# Test Project")
    return tmp_path


# ── Naming ────────────────────────────────────────────────────────────────────

def test_custom_name_gets_timestamp(tmp_path):
    manager = CheckpointManager(tmp_path)
    name = manager.generate_checkpoint_name("my-checkpoint", "Some description")
    assert re.fullmatch(rf"my-checkpoint_{STAMP}", name)


def test_name_from_description(tmp_path):
    manager = CheckpointManager(tmp_path)
    name = manager.generate_checkpoint_name(None, "Feature: Add user authentication system")
    assert re.fullmatch(rf"feature_add_user_authenticatio_{STAMP}", name)


def test_default_name_uses_template(tmp_path):
    manager = CheckpointManager(tmp_path)
    assert re.fullmatch(rf"checkpoint_{STAMP}", manager.generate_checkpoint_name())


def test_special_characters_are_slugged(tmp_path):
    manager = CheckpointManager(tmp_path)
    name = manager.generate_checkpoint_name(None, "Test!@#$%^&*()_+{}|:<>?[]\\;'\",./")
    assert re.fullmatch(rf"test_{STAMP}", name)

    name = manager.generate_checkpoint_name("before refactor!")
    assert re.fullmatch(rf"before_refactor__{STAMP}", name)


def test_auto_name_off_ignores_description(tmp_path):
    manager = CheckpointManager(tmp_path)
    config = Config(auto_name=False)
    name = manager.generate_checkpoint_name(None, "Add login", config=config)
    assert re.fullmatch(rf"checkpoint_{STAMP}", name)


def test_custom_name_template(tmp_path):
    manager = CheckpointManager(tmp_path)
    now = datetime(2024, 1, 15, 10, 30, 0, tzinfo=timezone.utc)

    config = Config(name_template="snap-{timestamp}-auto")
    assert manager.generate_checkpoint_name(config=config, now=now) == "snap-2024-01-15T10-30-00-auto"

    config = Config(name_template="nightly")
    assert manager.generate_checkpoint_name(config=config, now=now) == "nightly_2024-01-15T10-30-00"


def test_description_slug_is_truncated_without_trailing_separator():
    assert slugify_description("Feature: Add user authentication system") == "feature_add_user_authenticatio"
    assert slugify_description("a" * 29 + " b") == "a" * 29
    assert slugify_description("!!!") == ""


# ── Sizes ─────────────────────────────────────────────────────────────────────

def test_format_size():
    assert format_size(0) == "0.0B"
    assert format_size(512) == "512.0B"
    assert format_size(1024) == "1.0KB"
    assert format_size(1536) == "1.5KB"
    assert format_size(1048576) == "1.0MB"
    assert format_size(1073741824) == "1.0GB"
    assert format_size(1099511627776) == "1024.0GB"


# ── Create ────────────────────────────────────────────────────────────────────

def test_create_checkpoint(project):
    manager = CheckpointManager(project)

    result = manager.create("test-checkpoint", "Test description")

    assert result["success"] is True
    assert result["name"].startswith("test-checkpoint_")
    assert result["file_count"] == 3
    assert re.fullmatch(r"\d+\.\d[KMG]?B", result["size"])
    assert result["description"] == "Test description"

    snapshot = manager.snapshots_dir / result["name"]
    manifest = json.loads((snapshot / "manifest.json").read_text())
    assert manifest["name"] == result["name"]
    assert manifest["description"] == "Test description"
    assert manifest["fileCount"] == 3
    assert manifest["files"] == ["README.md", "file1.js", "file2.js"]
    assert manifest["totalSize"] == sum(
        (project / f).stat().st_size for f in manifest["files"]
    )

    with tarfile.open(snapshot / "files.tar.gz", "r:gz") as tar:
        assert sorted(tar.getnames()) == ["README.md", "file1.js", "file2.js"]


def test_create_respects_ignore_rules(project):
    write(project / ".gitignore", "*.log\nnode_modules/\n")
    write(project / "debug.log", "noise")
    write(project / "node_modules" / "lib" / "index.js", "dep")
    write(project / "src" / "app.js", "app")
    manager = CheckpointManager(project)

    result = manager.create("filtered")

    manifest = manager.store.get(result["name"])
    assert manifest.files == (".gitignore", "README.md", "file1.js", "file2.js", "src/app.js")


def test_checkpoint_dir_never_snapshotted(project):
    manager = CheckpointManager(project)
    manager.create("first")

    second = manager.store.get(manager.create("second")["name"])

    assert not any(f.startswith(".checkpoints") for f in second.files)


def test_create_with_no_files(tmp_path):
    write(tmp_path / ".gitignore", "*\n")
    manager = CheckpointManager(tmp_path)

    result = manager.create()

    assert result["success"] is False
    assert result["error"] == "No files found to checkpoint"
    assert result["code"] == "NO_FILES_FOUND"
    assert list(manager.snapshots_dir.iterdir()) == []


def test_create_in_missing_project(tmp_path):
    manager = CheckpointManager(tmp_path / "does-not-exist")

    result = manager.create("x")

    assert result["success"] is False
    assert result["code"] == "FILE_SYSTEM_ERROR"


def test_duplicate_name_fails_without_touching_existing(project):
    manager = CheckpointManager(project)
    now = datetime(2024, 1, 15, 10, 30, 0, tzinfo=timezone.utc)
    name = manager.generate_checkpoint_name("dup", now=now)
    manager.store.create(name, project, ["README.md"], timestamp=now)

    with pytest.raises(FileSystemError):
        manager.store.create(name, project, ["file1.js"], timestamp=now)

    assert manager.store.get(name).files == ("README.md",)


def test_create_logs_to_changelog(project):
    manager = CheckpointManager(project)
    result = manager.create("logged", "Before refactor")

    entry = manager.get_changelog()[0]
    assert entry["action"] == "CREATE_CHECKPOINT"
    assert entry["description"] == f"Created checkpoint: {result['name']}"
    assert entry["details"] == "Before refactor"


def test_dangling_symlink_is_skipped(project):
    os.symlink(project / "gone.txt", project / "dangling.txt")
    manager = CheckpointManager(project)

    result = manager.create("links")

    assert result["success"] is True
    assert "dangling.txt" not in manager.store.get(result["name"]).files


def test_file_symlink_is_archived_as_its_target(project):
    os.symlink(project / "README.md", project / "README-link.md")
    manager = CheckpointManager(project)

    result = manager.create("links")

    with tarfile.open(manager.snapshots_dir / result["name"] / "files.tar.gz", "r:gz") as tar:
        member = tar.getmember("README-link.md")
        assert member.isfile()
        assert tar.extractfile(member).read() == b"# Test Project"


def test_unreadable_snapshots_dir_does_not_break_create(project, monkeypatch):
    manager = CheckpointManager(project)
    real_iterdir = Path.iterdir

    def iterdir(self):
        if self == manager.snapshots_dir:
            raise PermissionError("denied")
        return real_iterdir(self)

    monkeypatch.setattr(Path, "iterdir", iterdir)

    result = manager.create("blocked")

    assert result["success"] is True
    assert manager.get_checkpoints() == []


# ── List and retention ────────────────────────────────────────────────────────

def test_list_newest_first(project):
    manager = CheckpointManager(project)
    manager.create("first", "First checkpoint")
    manager.create("second", "Second checkpoint")
    manager.create("third", "Third checkpoint")

    checkpoints = manager.get_checkpoints()

    assert len(checkpoints) == 3
    assert [cp.description for cp in checkpoints] == [
        "Third checkpoint", "Second checkpoint", "First checkpoint",
    ]


def test_list_empty_when_no_snapshots(tmp_path):
    assert CheckpointManager(tmp_path).get_checkpoints() == []


def test_list_skips_invalid_snapshots(project):
    manager = CheckpointManager(project)
    manager.create("valid", "Valid checkpoint")

    (manager.snapshots_dir / "no-manifest").mkdir()
    write(manager.snapshots_dir / "bad-json" / "manifest.json", "{ nope")
    write(manager.snapshots_dir / "missing-fields" / "manifest.json", json.dumps({"name": "x"}))
    write(manager.snapshots_dir / "bad-time" / "manifest.json",
          json.dumps({"name": "bad-time", "timestamp": "yesterday", "files": []}))
    write(manager.snapshots_dir / "stray-file.txt", "not a snapshot")

    checkpoints = manager.get_checkpoints()

    assert [cp.description for cp in checkpoints] == ["Valid checkpoint"]


def test_retention_keeps_newest(project):
    manager = CheckpointManager(project)
    write_config(manager, maxCheckpoints=2)

    manager.create("first", "First")
    manager.create("second", "Second")
    manager.create("third", "Third")

    checkpoints = manager.get_checkpoints()
    assert [cp.description for cp in checkpoints] == ["Third", "Second"]
    assert len(list(manager.snapshots_dir.iterdir())) == 2


def test_retention_honours_keep(project):
    manager = CheckpointManager(project)
    write_config(manager, maxCheckpoints=2)
    oldest = manager.create("oldest")["name"]
    middle = manager.create("middle")["name"]

    manager.create("newest", keep=(oldest,))

    names = [cp.name for cp in manager.get_checkpoints()]
    assert oldest in names
    assert middle not in names


# ── Store factory ─────────────────────────────────────────────────────────────

def test_unknown_backend_rejected(tmp_path):
    with pytest.raises(ValueError):
        create_snapshot_store(tmp_path, backend="s3")


# ── Empty directory cleanup ───────────────────────────────────────────────────

def test_cleanup_removes_empty_directories(tmp_path):
    (tmp_path / "deep" / "nested" / "empty").mkdir(parents=True)
    (tmp_path / "another" / "path").mkdir(parents=True)
    write(tmp_path / "another" / "file.txt", "content")
    manager = CheckpointManager(tmp_path)
    manager.ensure_directories()

    removed = manager.cleanup_empty_directories()

    assert not (tmp_path / "deep").exists()
    assert not (tmp_path / "another" / "path").exists()
    assert (tmp_path / "another" / "file.txt").exists()
    assert set(removed) == {"deep", "deep/nested", "deep/nested/empty", "another/path"}
    # the checkpoint root is never touched, even when empty
    assert manager.snapshots_dir.is_dir()


def test_cleanup_leaves_ignored_directories(tmp_path):
    write(tmp_path / ".gitignore", "build/\n")
    (tmp_path / "build").mkdir()
    manager = CheckpointManager(tmp_path)

    manager.cleanup_empty_directories()

    assert (tmp_path / "build").is_dir()


# ── Changelog ─────────────────────────────────────────────────────────────────

def test_changelog_newest_first(tmp_path):
    manager = CheckpointManager(tmp_path)
    manager.log_to_changelog("TEST_ACTION", "First entry")
    manager.log_to_changelog("TEST_ACTION", "Second entry", "with details")

    entries = manager.get_changelog()

    assert [e["description"] for e in entries] == ["Second entry", "First entry"]
    assert entries[0]["details"] == "with details"
    assert "details" not in entries[1]
    datetime.fromisoformat(entries[0]["timestamp"])


def test_changelog_capped_at_fifty(tmp_path):
    manager = CheckpointManager(tmp_path)
    for i in range(52):
        manager.log_to_changelog("TEST", f"Entry {i}")

    entries = manager.get_changelog()

    assert len(entries) == 50
    assert entries[0]["description"] == "Entry 51"
    assert entries[-1]["description"] == "Entry 2"


def test_malformed_changelog_reads_empty(tmp_path):
    manager = CheckpointManager(tmp_path)
    manager.ensure_directories()
    manager.changelog_file.write_text("invalid json")

    assert manager.get_changelog() == []
    assert manager.log_to_changelog("TEST", "Recovered") is not None
    assert len(manager.get_changelog()) == 1


def test_unwritable_changelog_is_swallowed(tmp_path):
    manager = CheckpointManager(tmp_path)
    manager.ensure_directories()
    manager.changelog_file.mkdir()

    assert manager.log_to_changelog("TEST", "Should not crash") is None
    assert manager.get_changelog() == []


# ── Setup ─────────────────────────────────────────────────────────────────────

def test_setup_creates_everything(tmp_path):
    write(tmp_path / "app.js", 'console.log("hello");')
    manager = CheckpointManager(tmp_path)

    result = manager.setup()

    assert result["success"] is True
    assert result["gitignore_updated"] is True
    assert result["initial_checkpoint"].startswith("initial_")
    assert manager.config_file.is_file()
    gitignore = (tmp_path / ".gitignore").read_text()
    assert "# checkpoint snapshots" in gitignore
    assert ".checkpoints/" in gitignore
    assert len(manager.get_checkpoints()) == 1
    assert manager.get_changelog()[0]["action"] == "SETUP"


def test_setup_appends_to_existing_gitignore_once(tmp_path):
    write(tmp_path / ".gitignore", "node_modules/\n*.log")
    write(tmp_path / "app.js", "code")
    manager = CheckpointManager(tmp_path)

    manager.setup()
    second = manager.setup()

    gitignore = (tmp_path / ".gitignore").read_text()
    assert gitignore.startswith("node_modules/\n*.log\n")
    assert gitignore.count(".checkpoints/") == 1
    assert second["gitignore_updated"] is False
    assert second["initial_checkpoint"] is None
    assert len(manager.get_checkpoints()) == 1


def test_setup_without_files(tmp_path):
    write(tmp_path / ".gitignore", "*\n")
    manager = CheckpointManager(tmp_path)

    result = manager.setup()

    assert result["success"] is True
    assert result["initial_checkpoint"] is None


def test_setup_when_gitignore_is_a_directory(tmp_path):
    (tmp_path / ".gitignore").mkdir()
    write(tmp_path / "app.js", "code")
    manager = CheckpointManager(tmp_path)

    result = manager.setup()

    assert result["success"] is True
    assert result["gitignore_updated"] is False
    assert result["initial_checkpoint"] is not None


def test_setup_on_missing_directory(tmp_path):
    manager = CheckpointManager(tmp_path / "does-not-exist")

    result = manager.setup()

    assert result["success"] is False
    assert result["code"] == "FILE_SYSTEM_ERROR"
    assert result["error"]
