"""Checkpoint session: create, list, restore, and retention for one project.

A CheckpointManager owns everything under <project>/.checkpoints/:

    config.json       retention limit, naming, extra ignore rules
    changelog.json    audit log, newest first
    snapshots/<name>  one snapshot (manifest.json + files.tar.gz)

Every public operation returns a plain result dict. Failures come back as
{"success": False, "error": ..., "code": ...} instead of raising, so the CLI
and the MCP server can render them directly.
"""

import logging
import re
from datetime import datetime, timezone
from pathlib import Path

from checkpoint import changelog
from checkpoint.config import CHECKPOINT_DIR, CONFIG_FILE, load_config
from checkpoint.errors import (
    CheckpointError,
    CheckpointNotFound,
    FileSystemError,
    NoFilesFound,
)
from checkpoint.files import cleanup_empty_directories, get_project_files
from checkpoint.ignore import GITIGNORE, IgnoreMatcher, build_rules
from checkpoint.snapshot import create_snapshot_store
from checkpoint.snapshot.models import parse_timestamp

logger = logging.getLogger(__name__)

SNAPSHOTS_DIR = "snapshots"

EMERGENCY_PREFIX = "emergency_backup"
INITIAL_PREFIX = "initial"
GITIGNORE_HEADER = "# checkpoint snapshots"

DESCRIPTION_SLUG_LENGTH = 30
CANDIDATES_SHOWN = 5

_NAME_UNSAFE = re.compile(r"[^A-Za-z0-9_-]")
_DESCRIPTION_UNSAFE = re.compile(r"[^a-z0-9]+")


def format_size(num_bytes):
    """Human-readable binary size, one decimal. GB is the largest unit."""
    size = float(num_bytes)
    for unit in ("B", "KB", "MB"):
        if size < 1024:
            return f"{size:.1f}{unit}"
        size /= 1024
    return f"{size:.1f}GB"


def format_timestamp(timestamp, fmt="%Y-%m-%d %H:%M:%S"):
    """Render a stored ISO-8601 timestamp in local time. Unparseable values pass through."""
    try:
        return parse_timestamp(timestamp).astimezone().strftime(fmt)
    except (AttributeError, TypeError, ValueError):
        return timestamp or ""


def slugify_name(name):
    return _NAME_UNSAFE.sub("_", name)


def slugify_description(description):
    slug = _DESCRIPTION_UNSAFE.sub("_", description.lower()).strip("_")
    return slug[:DESCRIPTION_SLUG_LENGTH].rstrip("_")


def _failure(error):
    return {"success": False, "error": str(error), "code": error.code}


class CheckpointManager:

    def __init__(self, project_path=None):
        self.project_path = Path(project_path).resolve() if project_path else Path.cwd()
        self.checkpoint_dir = self.project_path / CHECKPOINT_DIR
        self.snapshots_dir = self.checkpoint_dir / SNAPSHOTS_DIR
        self.config_file = self.checkpoint_dir / CONFIG_FILE
        self.changelog_file = self.checkpoint_dir / changelog.CHANGELOG_FILE
        self.store = create_snapshot_store(self.snapshots_dir)
        self._ignore_matcher = None

    # ------------------------------------------------------------------
    # Directories, config, ignore rules
    # ------------------------------------------------------------------

    def ensure_directories(self):
        """Create .checkpoints/ and .checkpoints/snapshots/. Safe to repeat."""
        if not self.project_path.is_dir():
            raise FileSystemError(f"Project directory does not exist: {self.project_path}")
        try:
            self.checkpoint_dir.mkdir(exist_ok=True)
            self.snapshots_dir.mkdir(exist_ok=True)
        except OSError as e:
            raise FileSystemError(f"Could not create {self.checkpoint_dir}: {e}") from e

    def load_config(self):
        try:
            self.ensure_directories()
        except FileSystemError as e:
            logger.warning("%s", e)
        return load_config(self.config_file)

    def get_ignore_matcher(self):
        """Compile the ignore rules on first use and reuse them afterwards.

        Call invalidate_ignore_matcher() after editing .gitignore or the
        config's additionalIgnores mid-session.
        """
        if self._ignore_matcher is None:
            config = self.load_config()
            rules = build_rules(self.project_path, config.additional_ignores, CHECKPOINT_DIR)
            self._ignore_matcher = IgnoreMatcher(rules)
            logger.debug("Compiled %d ignore rules", len(rules))
        return self._ignore_matcher

    def invalidate_ignore_matcher(self):
        self._ignore_matcher = None

    def should_ignore(self, path):
        """Check an absolute or project-relative path against the ignore rules."""
        path = Path(path)
        if path.is_absolute():
            try:
                path = path.resolve().relative_to(self.project_path)
            except ValueError:
                return True
        is_dir = (self.project_path / path).is_dir()
        return self.get_ignore_matcher().is_ignored(path.as_posix(), is_dir=is_dir)

    def get_project_files(self):
        return get_project_files(self.project_path, self.get_ignore_matcher())

    def cleanup_empty_directories(self):
        return cleanup_empty_directories(
            self.project_path, self.get_ignore_matcher(), protected=(CHECKPOINT_DIR,)
        )

    # ------------------------------------------------------------------
    # Create, list, retention
    # ------------------------------------------------------------------

    def generate_checkpoint_name(self, name=None, description=None, config=None, now=None):
        """Slug from name, else from description, else the name template, plus a timestamp."""
        config = config or self.load_config()
        stamp = (now or datetime.now(timezone.utc)).strftime("%Y-%m-%dT%H-%M-%S")

        base = ""
        if name:
            base = slugify_name(name)
        elif description and config.auto_name:
            base = slugify_description(description)
        if base:
            return f"{base}_{stamp}"

        parts = config.name_template.split("{timestamp}")
        if len(parts) == 1:
            return f"{slugify_name(parts[0])}_{stamp}"
        return stamp.join(slugify_name(p) for p in parts)

    def create(self, name=None, description=None, keep=(), unique=False):
        """Snapshot the current project files.

        keep: snapshot names retention must not delete (a restore's target).
        unique: add a numeric suffix instead of failing when the name is taken.
        """
        try:
            self.ensure_directories()
            config = self.load_config()
            files = self.get_project_files()
            if not files:
                raise NoFilesFound()

            now = datetime.now(timezone.utc)
            checkpoint_name = self.generate_checkpoint_name(name, description, config=config, now=now)
            if unique:
                checkpoint_name = self._free_name(checkpoint_name)
            manifest = self.store.create(
                checkpoint_name, self.project_path, files, description, timestamp=now
            )
        except CheckpointError as e:
            return _failure(e)
        except OSError as e:
            return _failure(FileSystemError(str(e)))

        logger.info("Created checkpoint %s (%d files)", manifest.name, manifest.file_count)
        self.enforce_retention(config, keep=keep)
        self.log_to_changelog("CREATE_CHECKPOINT", f"Created checkpoint: {manifest.name}", description)

        return {
            "success": True,
            "name": manifest.name,
            "file_count": manifest.file_count,
            "size": format_size(manifest.total_size),
            "description": description,
        }

    def _free_name(self, name):
        candidate, n = name, 1
        while self.store.exists(candidate):
            n += 1
            candidate = f"{name}_{n}"
        return candidate

    def get_checkpoints(self):
        """Valid snapshot manifests, newest first."""
        return self.store.list()

    def enforce_retention(self, config=None, keep=()):
        """Delete the oldest snapshots beyond max_checkpoints. Returns deleted names."""
        config = config or self.load_config()
        manifests = self.get_checkpoints()
        excess = len(manifests) - config.max_checkpoints
        deleted = []
        if excess <= 0:
            return deleted

        for manifest in reversed(manifests):
            if len(deleted) >= excess:
                break
            if manifest.name in keep:
                continue
            try:
                self.store.delete(manifest.name)
            except OSError as e:
                logger.warning("Could not delete old checkpoint %s: %s", manifest.name, e)
                continue
            deleted.append(manifest.name)

        if deleted:
            logger.info("Retention removed %d checkpoint(s): %s", len(deleted), ", ".join(deleted))
        return deleted

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    def find_checkpoint(self, identifier, manifests=None):
        """Exact name match first, then the newest name containing identifier."""
        manifests = self.get_checkpoints() if manifests is None else manifests
        if identifier:
            for manifest in manifests:
                if manifest.name == identifier:
                    return manifest
            for manifest in manifests:
                if identifier in manifest.name:
                    return manifest
        raise CheckpointNotFound(identifier, [m.name for m in manifests[:CANDIDATES_SHOWN]])

    def restore(self, identifier, dry_run=False):
        try:
            target = self.find_checkpoint(identifier)
        except CheckpointNotFound as e:
            return {**_failure(e), "available": e.available}

        if dry_run:
            return self._preview_restore(target)

        # Nothing below may run unless the current state is safely captured.
        backup = self.create(
            EMERGENCY_PREFIX,
            f"Auto backup before restoring {target.name}",
            keep=(target.name,),
            unique=True,
        )
        if backup["success"]:
            emergency_backup = backup["name"]
        elif backup["code"] == NoFilesFound.code:
            emergency_backup = None
            logger.info("Project has no files to back up; restoring into an empty tree")
        else:
            return {
                "success": False,
                "error": f"Emergency backup failed, nothing was changed: {backup['error']}",
                "code": backup["code"],
            }

        try:
            self.store.extract(target.name, self.project_path, expected_files=target.files)
            # Same rules as the emergency backup, so every deleted file is in it.
            wanted = set(target.files)
            deleted = 0
            for rel in self.get_project_files():
                if rel not in wanted:
                    (self.project_path / rel).unlink()
                    deleted += 1
            self.cleanup_empty_directories()
        except CheckpointError as e:
            return {**_failure(e), "emergency_backup": emergency_backup}
        except OSError as e:
            return {**_failure(FileSystemError(str(e))), "emergency_backup": emergency_backup}
        finally:
            # The restored .gitignore may differ from the one compiled earlier.
            self.invalidate_ignore_matcher()

        logger.info("Restored checkpoint %s (emergency backup: %s)", target.name, emergency_backup)
        self.log_to_changelog(
            "RESTORE_CHECKPOINT",
            f"Restored checkpoint: {target.name}",
            f"Emergency backup: {emergency_backup}" if emergency_backup else None,
        )
        return {
            "success": True,
            "emergency_backup": emergency_backup,
            "restored": target.name,
            "file_count": target.file_count,
            "deleted": deleted,
        }

    def _preview_restore(self, target):
        try:
            current = self.get_project_files()
        except OSError as e:
            return _failure(FileSystemError(str(e)))
        wanted = set(target.files)
        to_delete = [f for f in current if f not in wanted]
        return {
            "success": True,
            "dry_run": True,
            "checkpoint": target.to_dict(),
            "files_to_delete": to_delete,
            "would_delete": len(to_delete),
        }

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def setup(self):
        """Prepare the project: directories, config, .gitignore entry, first checkpoint."""
        try:
            self.ensure_directories()
            self.load_config()
        except CheckpointError as e:
            return _failure(e)

        gitignore_updated = self._update_gitignore()
        self.invalidate_ignore_matcher()

        initial_checkpoint = None
        if not self.get_checkpoints():
            result = self.create(INITIAL_PREFIX, "Initial checkpoint")
            if result["success"]:
                initial_checkpoint = result["name"]
            elif result["code"] != NoFilesFound.code:
                logger.warning("Initial checkpoint failed: %s", result["error"])

        self.log_to_changelog("SETUP", "Checkpoint system set up", f"Project: {self.project_path}")
        return {
            "success": True,
            "initial_checkpoint": initial_checkpoint,
            "gitignore_updated": gitignore_updated,
        }

    def _update_gitignore(self):
        """Append the checkpoint root to .gitignore once. Returns True if it was added."""
        gitignore = self.project_path / GITIGNORE
        entry = f"{CHECKPOINT_DIR}/"
        try:
            existing = gitignore.read_text() if gitignore.exists() else ""
            lines = {line.strip() for line in existing.splitlines()}
            if lines & {entry, CHECKPOINT_DIR, f"/{entry}", f"/{CHECKPOINT_DIR}"}:
                return False
            block = f"{GITIGNORE_HEADER}\n{entry}\n"
            if existing:
                block = ("\n" if existing.endswith("\n") else "\n\n") + block
            with open(gitignore, "a") as f:
                f.write(block)
        except OSError as e:
            logger.warning("Could not update %s: %s", gitignore, e)
            return False
        return True

    # ------------------------------------------------------------------
    # Changelog
    # ------------------------------------------------------------------

    def log_to_changelog(self, action, description, details=None):
        """Record an audit entry. Never raises."""
        try:
            self.ensure_directories()
        except FileSystemError as e:
            logger.debug("Skipping changelog entry: %s", e)
            return None
        return changelog.log_to_changelog(self.changelog_file, action, description, details)

    def get_changelog(self):
        return changelog.get_changelog(self.changelog_file)
