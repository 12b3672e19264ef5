"""Artifact packager: wraps a build directory into a content-addressed zip.

The archive identity is a SHA-256 over the directory's files, so
redeploying unchanged code yields the same file name (and therefore the
same S3 key), while any byte change yields a new one.

Zip output is deterministic: entries are sorted and every entry gets a
fixed timestamp and permission bits, so identical contents produce an
identical archive file.
"""

import hashlib
import logging
import os
import zipfile
from pathlib import Path
from typing import Protocol

from deployer.packaging.types import ArchiveDescriptor, AssetType, MissingArtifactError

logger = logging.getLogger(__name__)

# Earliest timestamp the zip format can store
_ZIP_EPOCH = (1980, 1, 1, 0, 0, 0)
_FILE_MODE = 0o644
_CHUNK_SIZE = 64 * 1024


class Packager(Protocol):
    """Anything that can turn an artifact directory into an ArchiveDescriptor."""

    def package_directory(self, artifact_dir: Path) -> ArchiveDescriptor: ...


def _collect_files(directory: Path) -> list[tuple[str, Path]]:
    """Return (relative posix path, absolute path) pairs sorted by relative path."""
    pairs = [
        (path.relative_to(directory).as_posix(), path)
        for path in directory.rglob("*")
        if path.is_file()
    ]
    pairs.sort(key=lambda pair: pair[0])
    return pairs


def _require_artifact_dir(directory: Path) -> list[tuple[str, Path]]:
    if not directory.exists():
        raise MissingArtifactError(f"Artifact directory does not exist: {directory}")
    if not directory.is_dir():
        raise MissingArtifactError(f"Artifact path is not a directory: {directory}")
    files = _collect_files(directory)
    if not files:
        raise MissingArtifactError(f"Artifact directory is empty: {directory}")
    return files


def hash_directory(directory: Path) -> str:
    """Compute the content identity of a directory.

    Covers relative file names as well as bytes, so renaming a file
    changes the identity.

    Raises:
        MissingArtifactError: If the directory is absent or has no files.
    """
    files = _require_artifact_dir(Path(directory))
    digest = hashlib.sha256()
    for rel_path, abs_path in files:
        digest.update(rel_path.encode("utf-8"))
        digest.update(b"\x00")
        with abs_path.open("rb") as fh:
            for chunk in iter(lambda: fh.read(_CHUNK_SIZE), b""):
                digest.update(chunk)
        digest.update(b"\x00")
    return digest.hexdigest()


def write_archive(directory: Path, destination: Path) -> Path:
    """Write a deterministic zip of `directory` to `destination`.

    Written to a temporary sibling first and renamed into place so an
    interrupted run never leaves a truncated archive under the final name.
    """
    files = _require_artifact_dir(Path(directory))
    destination.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = destination.with_name(destination.name + ".tmp")

    try:
        with zipfile.ZipFile(tmp_path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            for rel_path, abs_path in files:
                info = zipfile.ZipInfo(rel_path, date_time=_ZIP_EPOCH)
                info.compress_type = zipfile.ZIP_DEFLATED
                info.external_attr = _FILE_MODE << 16
                zf.writestr(info, abs_path.read_bytes())
        os.replace(tmp_path, destination)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise
    return destination


class DirectoryPackager:
    """Packages artifact directories into `<out_dir>/assets/<hash>.zip`."""

    def __init__(self, out_dir: Path):
        self.out_dir = Path(out_dir).resolve()

    @property
    def assets_dir(self) -> Path:
        return self.out_dir / "assets"

    def package_directory(self, artifact_dir: Path) -> ArchiveDescriptor:
        artifact_dir = Path(artifact_dir).resolve()
        asset_hash = hash_directory(artifact_dir)
        file_name = f"{asset_hash}.zip"
        content_path = self.assets_dir / file_name

        if content_path.is_file():
            logger.info("Reusing archive %s", content_path)
        else:
            write_archive(artifact_dir, content_path)
            logger.info(
                "Packaged %s -> %s (%d bytes)",
                artifact_dir, content_path, content_path.stat().st_size,
            )

        return ArchiveDescriptor(
            content_path=content_path,
            file_name=file_name,
            asset_hash=asset_hash,
            source_directory=artifact_dir,
            type=AssetType.ARCHIVE,
        )


def package(directory_path: Path, out_dir: Path) -> ArchiveDescriptor:
    """Package a build directory into a content-addressed archive."""
    return DirectoryPackager(out_dir).package_directory(directory_path)
