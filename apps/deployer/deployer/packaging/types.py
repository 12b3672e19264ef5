"""Types for the packaging module."""

from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path


class AssetType(StrEnum):
    """How a packaged asset is represented on disk. Only zip archives are produced."""

    ARCHIVE = "archive"


@dataclass(frozen=True)
class ArchiveDescriptor:
    """A content-addressed archive of a build directory.

    asset_hash identifies the directory contents; file_name is derived
    from it, so two descriptors with the same contents share a name.
    The remote object key follows the convention:
        <file_name>/<version>
    """

    content_path: Path
    file_name: str
    asset_hash: str
    source_directory: Path
    type: AssetType = AssetType.ARCHIVE

    def object_key(self, version: str) -> str:
        if not version:
            raise ValueError("version label must not be empty")
        return f"{self.file_name}/{version}"

    def to_dict(self) -> dict:
        return {
            "content_path": str(self.content_path),
            "file_name": self.file_name,
            "asset_hash": self.asset_hash,
            "source_directory": str(self.source_directory),
            "type": self.type.value,
        }


class MissingArtifactError(Exception):
    """Raised when the directory to package is absent or empty."""
