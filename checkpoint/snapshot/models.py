import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from checkpoint.errors import ManifestParseError

MANIFEST_FILE = "manifest.json"
ARCHIVE_FILE = "files.tar.gz"


def parse_timestamp(value):
    """ISO-8601 to an aware datetime. A bare or Z-suffixed value is taken as UTC."""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class Manifest:
    """What a snapshot holds. Written once at creation, never rewritten."""

    name: str
    timestamp: str
    files: tuple = field(default_factory=tuple)
    file_count: int = 0
    total_size: int = 0
    description: str = None

    @property
    def created_at(self):
        return parse_timestamp(self.timestamp)

    def to_dict(self):
        return {
            "name": self.name,
            "description": self.description,
            "timestamp": self.timestamp,
            "files": list(self.files),
            "fileCount": self.file_count,
            "totalSize": self.total_size,
        }

    @classmethod
    def from_dict(cls, data):
        if not isinstance(data, dict):
            raise ManifestParseError("Manifest must be a JSON object")
        try:
            name = data["name"]
            timestamp = data["timestamp"]
            files = data["files"]
        except KeyError as e:
            raise ManifestParseError(f"Manifest is missing {e.args[0]!r}") from e
        if not isinstance(name, str) or not isinstance(timestamp, str) or not isinstance(files, list):
            raise ManifestParseError("Manifest has fields of the wrong type")
        try:
            parse_timestamp(timestamp)
        except ValueError as e:
            raise ManifestParseError(f"Manifest has a bad timestamp: {timestamp!r}") from e
        return cls(
            name=name,
            timestamp=timestamp,
            files=tuple(files),
            file_count=int(data.get("fileCount", len(files))),
            total_size=int(data.get("totalSize", 0)),
            description=data.get("description"),
        )

    @classmethod
    def load(cls, path):
        """Parse a manifest.json. Raises ManifestParseError for anything unusable."""
        path = Path(path)
        try:
            data = json.loads(path.read_text())
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ManifestParseError(f"Unreadable manifest {path}: {e}") from e
        try:
            return cls.from_dict(data)
        except (TypeError, ValueError) as e:
            raise ManifestParseError(f"Invalid manifest {path}: {e}") from e

    def write(self, path):
        Path(path).write_text(json.dumps(self.to_dict(), indent=2) + "\n")
