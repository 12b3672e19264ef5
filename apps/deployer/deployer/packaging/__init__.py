"""Packaging module for build artifacts.

Public API:
    package(directory_path, out_dir) -> ArchiveDescriptor
    hash_directory(directory) -> str
"""

from deployer.packaging.archive import DirectoryPackager, Packager, hash_directory, package
from deployer.packaging.types import ArchiveDescriptor, AssetType, MissingArtifactError

__all__ = [
    "package",
    "hash_directory",
    "DirectoryPackager",
    "Packager",
    "ArchiveDescriptor",
    "AssetType",
    "MissingArtifactError",
]
