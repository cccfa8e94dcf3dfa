from abc import ABC, abstractmethod


class SnapshotStore(ABC):
    """Base interface for snapshot backends.

    Implementations: LocalSnapshotStore (manifest + tar.gz per directory).
    """

    @abstractmethod
    def create(self, name, project_path, files, description=None):
        """Archive files (relative to project_path) as snapshot name. Returns its Manifest."""
        pass

    @abstractmethod
    def list(self):
        """Return valid snapshot manifests, newest first."""
        pass

    @abstractmethod
    def get(self, name):
        """Return the Manifest for name, or None."""
        pass

    @abstractmethod
    def extract(self, name, target_path, expected_files=None):
        """Write the snapshot's files into target_path, overwriting."""
        pass

    @abstractmethod
    def exists(self, name):
        """True if anything, valid or not, already occupies name."""
        pass

    @abstractmethod
    def delete(self, name):
        """Delete a snapshot by name."""
        pass
