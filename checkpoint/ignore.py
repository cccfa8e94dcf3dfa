import logging
from dataclasses import dataclass
from pathlib import Path

import pathspec

logger = logging.getLogger(__name__)

GITIGNORE = ".gitignore"

SOURCE_GITIGNORE = "gitignore"
SOURCE_CONFIG = "config"
SOURCE_BUILTIN = "builtin"


@dataclass(frozen=True)
class IgnoreRule:
    """One gitignore-style pattern, without its `!` prefix or trailing `/`."""

    pattern: str
    is_negation: bool = False
    is_directory_only: bool = False
    source_order: int = 0
    source: str = SOURCE_GITIGNORE

    @property
    def line(self):
        """The rule written back out in ignore-file syntax."""
        prefix = "!" if self.is_negation else ""
        suffix = "/" if self.is_directory_only else ""
        return f"{prefix}{self.pattern}{suffix}"


def parse_ignore_lines(lines, source=SOURCE_GITIGNORE, start=0):
    """Turn ignore-file lines into rules, skipping blanks and `#` comments."""
    rules = []
    for line in lines:
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        negation = line.startswith("!")
        if negation:
            line = line[1:]
        directory_only = line.endswith("/")
        if directory_only:
            line = line.rstrip("/")
        if not line:
            continue
        rules.append(IgnoreRule(
            pattern=line,
            is_negation=negation,
            is_directory_only=directory_only,
            source_order=start + len(rules),
            source=source,
        ))
    return rules


def load_gitignore(project_path):
    """Read the project's .gitignore lines. Missing or unreadable means none."""
    ignore_file = Path(project_path) / GITIGNORE
    if not ignore_file.is_file():
        return []
    try:
        return ignore_file.read_text(errors="replace").splitlines()
    except OSError as e:
        logger.warning("Could not read %s: %s", ignore_file, e)
        return []


def build_rules(project_path, additional_ignores=(), checkpoint_dir_name=".checkpoints"):
    """Compose the ordered rule list: .gitignore, then config, then builtin."""
    rules = parse_ignore_lines(load_gitignore(project_path), SOURCE_GITIGNORE)
    rules += parse_ignore_lines(additional_ignores, SOURCE_CONFIG, start=len(rules))
    # The checkpoint root is never part of a snapshot, whatever the rules above say.
    rules += parse_ignore_lines([f"/{checkpoint_dir_name}/"], SOURCE_BUILTIN, start=len(rules))
    return rules


class IgnoreMatcher:
    """Compiled rule set. Later rules override earlier ones for the same path."""

    def __init__(self, rules):
        self.rules = tuple(rules)
        self._spec = pathspec.GitIgnoreSpec.from_lines([r.line for r in self.rules])

    def __len__(self):
        return len(self.rules)

    def is_ignored(self, rel_path, is_dir=False):
        """Check a project-relative path against the compiled rules.

        Directory candidates are matched with a trailing slash so that
        directory-only rules (`build/`) apply to the directory itself, not
        just to what lies under it.
        """
        path = str(rel_path).replace("\\", "/").strip("/")
        if not path or path == ".":
            return False
        if is_dir:
            path += "/"
        return self._spec.match_file(path)
