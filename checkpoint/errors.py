"""Error taxonomy for checkpoint operations.

Manager operations never let these escape: they are converted into
``{"success": False, "error": ..., "code": ...}`` results so callers can
render failures without special-casing.
"""


class CheckpointError(Exception):
    code = "CHECKPOINT_ERROR"


class NoFilesFound(CheckpointError):
    code = "NO_FILES_FOUND"

    def __init__(self, message="No files found to checkpoint"):
        super().__init__(message)


class CheckpointNotFound(CheckpointError):
    code = "CHECKPOINT_NOT_FOUND"

    def __init__(self, identifier, available=None):
        super().__init__(f"Checkpoint not found: {identifier}")
        self.identifier = identifier
        self.available = list(available or [])


class ArchiveCorruption(CheckpointError):
    code = "ARCHIVE_CORRUPTION"


class FileSystemError(CheckpointError):
    code = "FILE_SYSTEM_ERROR"


# Recovered locally by falling back to defaults / empty values.

class ConfigParseError(CheckpointError):
    code = "CONFIG_PARSE_ERROR"


class ManifestParseError(CheckpointError):
    code = "MANIFEST_PARSE_ERROR"


class ChangelogParseError(CheckpointError):
    code = "CHANGELOG_PARSE_ERROR"
