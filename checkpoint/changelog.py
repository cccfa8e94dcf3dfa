"""Checkpoint audit log.

Keeps a JSON array in .checkpoints/changelog.json, newest entry first,
capped at MAX_ENTRIES. Each entry records an action (CREATE_CHECKPOINT,
RESTORE_CHECKPOINT, SETUP, or a caller-supplied type) with timestamp,
description, and optional details.

A broken changelog must never get in the way of a checkpoint operation:
reads fall back to an empty log and write failures are swallowed.
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path

from checkpoint.errors import ChangelogParseError

logger = logging.getLogger(__name__)

CHANGELOG_FILE = "changelog.json"
MAX_ENTRIES = 50


def _read_entries(changelog_file):
    try:
        data = json.loads(Path(changelog_file).read_text())
    except FileNotFoundError:
        return []
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ChangelogParseError(f"Unreadable changelog {changelog_file}: {e}") from e
    if not isinstance(data, list):
        raise ChangelogParseError(f"{changelog_file} must contain a JSON array")
    return [e for e in data if isinstance(e, dict)]


def get_changelog(changelog_file):
    """Return changelog entries, newest first. Empty when missing or invalid."""
    try:
        return _read_entries(changelog_file)
    except ChangelogParseError as e:
        logger.debug("%s; treating as empty", e)
        return []


def log_to_changelog(changelog_file, action, description, details=None):
    """Prepend an entry and trim to the most recent MAX_ENTRIES."""
    entry = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "action": action,
        "description": description,
    }
    if details:
        entry["details"] = details

    entries = [entry] + get_changelog(changelog_file)
    try:
        Path(changelog_file).write_text(json.dumps(entries[:MAX_ENTRIES], indent=2) + "\n")
    except OSError as e:
        logger.debug("Could not write changelog %s: %s", changelog_file, e)
        return None
    return entry
