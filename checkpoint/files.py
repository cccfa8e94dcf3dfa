"""Walking the project tree.

Everything here works on project-relative, forward-slash paths so the same
list can go straight into a manifest and an archive.
"""

import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)


def _relative(root, path):
    return Path(os.path.relpath(path, root)).as_posix()


def get_project_files(project_path, matcher):
    """Return every non-ignored file under project_path, sorted.

    Ignored directories are pruned in place so os.walk never descends into
    them (node_modules, .git, the checkpoint root).
    """
    root = Path(project_path)
    files = []
    for dirpath, dirnames, filenames in os.walk(root):
        kept = []
        for d in sorted(dirnames):
            full = os.path.join(dirpath, d)
            if os.path.islink(full):
                continue
            if matcher.is_ignored(_relative(root, full), is_dir=True):
                continue
            kept.append(d)
        dirnames[:] = kept

        for f in filenames:
            full = os.path.join(dirpath, f)
            rel = _relative(root, full)
            if matcher.is_ignored(rel):
                continue
            # File symlinks are archived as their target; a dangling one has nothing to archive.
            if os.path.islink(full) and not os.path.exists(full):
                logger.debug("Skipping dangling symlink %s", rel)
                continue
            files.append(rel)

    files.sort()
    return files


def file_sizes(project_path, files):
    """Sum of sizes for the given relative paths, following file symlinks."""
    root = Path(project_path)
    return sum((root / f).stat().st_size for f in files)


def _is_empty(path):
    with os.scandir(path) as entries:
        return next(entries, None) is None


def cleanup_empty_directories(project_path, matcher=None, protected=()):
    """Remove directories left empty, deepest first.

    Never touches the project root, anything under a protected top-level
    directory (the checkpoint root), or directories the matcher ignores.
    Returns the removed relative paths.
    """
    root = Path(project_path)
    protected = set(protected)
    candidates = []

    for dirpath, dirnames, _ in os.walk(root):
        kept = []
        for d in dirnames:
            full = os.path.join(dirpath, d)
            rel = _relative(root, full)
            if rel.split("/", 1)[0] in protected or os.path.islink(full):
                continue
            if matcher is not None and matcher.is_ignored(rel, is_dir=True):
                continue
            kept.append(d)
            candidates.append(full)
        dirnames[:] = kept

    removed = []
    # Walk order reversed puts children before their parents, so a parent
    # emptied by its children goes in the same pass.
    for full in reversed(candidates):
        try:
            if _is_empty(full):
                os.rmdir(full)
                removed.append(_relative(root, full))
        except OSError as e:
            logger.debug("Could not remove %s: %s", full, e)

    if removed:
        logger.debug("Removed %d empty directories", len(removed))
    return removed
