"""checkpoint: snapshot, list, and restore a project's working tree."""

__version__ = "0.1.0"
