"""Local snapshot store.

Each snapshot is a directory under the snapshots root:

    snapshots/<name>/files.tar.gz    every file at its project-relative path
    snapshots/<name>/manifest.json   written last, so a half-written
                                     snapshot never lists as valid
"""

import logging
import shutil
import tarfile
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath

from checkpoint.errors import ArchiveCorruption, FileSystemError, ManifestParseError
from checkpoint.files import file_sizes
from checkpoint.snapshot.base import SnapshotStore
from checkpoint.snapshot.models import ARCHIVE_FILE, MANIFEST_FILE, Manifest

logger = logging.getLogger(__name__)


class LocalSnapshotStore(SnapshotStore):

    def __init__(self, snapshots_dir):
        self.snapshots_dir = Path(snapshots_dir)

    def path(self, name):
        return self.snapshots_dir / name

    def create(self, name, project_path, files, description=None, timestamp=None):
        project_path = Path(project_path)
        snapshot_path = self.path(name)
        timestamp = timestamp or datetime.now(timezone.utc)

        try:
            snapshot_path.mkdir(parents=True)
        except FileExistsError:
            raise FileSystemError(f"Snapshot {name} already exists")
        except OSError as e:
            raise FileSystemError(f"Could not create snapshot directory: {e}") from e

        try:
            self._make_tarball(project_path, files, snapshot_path / ARCHIVE_FILE)
            manifest = Manifest(
                name=name,
                timestamp=timestamp.isoformat(),
                files=tuple(files),
                file_count=len(files),
                total_size=file_sizes(project_path, files),
                description=description,
            )
            manifest.write(snapshot_path / MANIFEST_FILE)
        except (OSError, tarfile.TarError) as e:
            # Roll back so no orphaned directory is left behind.
            shutil.rmtree(snapshot_path, ignore_errors=True)
            raise FileSystemError(f"Could not write snapshot {name}: {e}") from e

        logger.debug("Created snapshot %s (%d files)", name, manifest.file_count)
        return manifest

    def list(self):
        if not self.snapshots_dir.is_dir():
            return []

        try:
            entries = list(self.snapshots_dir.iterdir())
        except OSError as e:
            logger.warning("Could not read %s: %s", self.snapshots_dir, e)
            return []

        manifests = []
        for entry in entries:
            if not entry.is_dir():
                continue
            try:
                manifests.append(Manifest.load(entry / MANIFEST_FILE))
            except ManifestParseError as e:
                logger.debug("Skipping %s: %s", entry.name, e)

        return sorted(manifests, key=lambda m: m.created_at, reverse=True)

    def get(self, name):
        try:
            return Manifest.load(self.path(name) / MANIFEST_FILE)
        except ManifestParseError:
            return None

    def extract(self, name, target_path, expected_files=None):
        archive = self.path(name) / ARCHIVE_FILE
        if not archive.is_file():
            raise ArchiveCorruption(f"Archive for {name} is missing")

        target = Path(target_path).resolve()
        try:
            with tarfile.open(archive, mode="r:gz") as tar:
                members = tar.getmembers()
                self._check_members(members, target, expected_files)
                self._unlink_symlinks(members, target)
                if hasattr(tarfile, "data_filter"):
                    tar.extractall(target, members=members, filter="data")
                else:
                    tar.extractall(target, members=members)
        except (tarfile.TarError, EOFError) as e:
            raise ArchiveCorruption(f"Archive for {name} is unreadable: {e}") from e

        return target

    def exists(self, name):
        return self.path(name).exists()

    def delete(self, name):
        snapshot_path = self.path(name)
        if snapshot_path.exists():
            shutil.rmtree(snapshot_path)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _make_tarball(self, project_path, files, archive):
        """Write a gzipped tarball holding each relative path in files.

        File symlinks are stored as the file they point to, so every member
        is a regular file that extracts anywhere.
        """
        with tarfile.open(archive, mode="w:gz", dereference=True) as tar:
            for rel in files:
                tar.add(project_path / rel, arcname=rel, recursive=False)

    def _check_members(self, members, target, expected_files):
        """Validate the archive before anything touches the target.

        Rejects path traversal (e.g. ../../../etc/passwd), links and other
        non-file entries, and archives missing files the manifest promises.
        """
        names = set()
        for member in members:
            if member.name.startswith("/") or ".." in PurePosixPath(member.name).parts:
                raise ArchiveCorruption(f"Unsafe path in archive: {member.name!r}")
            # Only the parent is resolved: the entry itself may currently be a symlink.
            parent = (target / member.name).parent.resolve()
            if parent != target and not str(parent).startswith(str(target) + "/"):
                raise ArchiveCorruption(f"Unsafe path in archive: {member.name!r}")
            if not member.isfile():
                raise ArchiveCorruption(f"Unexpected non-file entry in archive: {member.name!r}")
            names.add(member.name)

        if expected_files is not None:
            missing = [f for f in expected_files if f not in names]
            if missing:
                raise ArchiveCorruption(
                    f"Archive is missing {len(missing)} file(s), e.g. {missing[0]}"
                )

    def _unlink_symlinks(self, members, target):
        """Replace symlinks in the tree rather than write through them."""
        for member in members:
            path = target / member.name
            if path.is_symlink():
                try:
                    path.unlink()
                except OSError as e:
                    raise FileSystemError(f"Could not replace symlink {member.name}: {e}") from e
