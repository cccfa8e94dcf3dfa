from checkpoint.snapshot.local import LocalSnapshotStore
from checkpoint.snapshot.models import Manifest


def create_snapshot_store(snapshots_dir, backend="local"):
    """Create a snapshot store rooted at snapshots_dir.

    backend: "local" (the only one; snapshots never leave the machine).
    """
    if backend == "local":
        return LocalSnapshotStore(snapshots_dir)

    raise ValueError(f"Unknown snapshot backend: {backend!r}. Use 'local'.")


__all__ = ["LocalSnapshotStore", "Manifest", "create_snapshot_store"]
