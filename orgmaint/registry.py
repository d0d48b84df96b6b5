"""
Read-only access to a locally cloned Julia package registry.

Registries lay packages out as `<registry>/<Initial>/<Name>/Versions.toml`
where Versions.toml has one table per released version.
"""
import logging
import tomllib
from pathlib import Path
from typing import List, Optional

from packaging.version import InvalidVersion, Version

logger = logging.getLogger(__name__)


def parse_version(text: str) -> Optional[Version]:
    """Parse a version string, returning None when it is not a valid version."""
    try:
        return Version(str(text).strip())
    except InvalidVersion:
        return None


def package_dir(package_name: str, registry_path) -> Optional[Path]:
    """Directory holding a package's registry metadata, if registered."""
    registry = Path(registry_path)
    initial = package_name[0]
    for letter in (initial.upper(), initial.lower()):
        candidate = registry / letter / package_name
        if candidate.is_dir():
            return candidate
    return None


def registered_versions(package_name: str, registry_path) -> List[Version]:
    """All released versions of a package, ascending."""
    pkg_dir = package_dir(package_name, registry_path)
    if pkg_dir is None:
        logger.debug(f"Package {package_name} not found in registry {registry_path}")
        return []

    versions_file = pkg_dir / "Versions.toml"
    if not versions_file.is_file():
        logger.debug(f"Versions.toml not found for {package_name}")
        return []

    with open(versions_file, "rb") as f:
        data = tomllib.load(f)

    versions = [v for v in (parse_version(key) for key in data) if v is not None]
    return sorted(versions)


def get_latest_package_version(package_name: str, registry_path) -> Optional[str]:
    """Highest registered version of a package as a string, or None."""
    versions = registered_versions(package_name, registry_path)
    if not versions:
        return None
    return str(versions[-1])
