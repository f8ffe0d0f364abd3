"""
version.py - Version management utilities

This module provides version handling for ghpin, including its own version
information and the semantic-version ordering used to pick the latest
published tag of an action.
"""

import re
from typing import Any, Dict, Iterable, NamedTuple, Optional, Tuple, Union

# Version information
__version__ = "0.3.0"
__release_date__ = "2026-10-16"

SHA_PATTERN = re.compile(r"^[0-9a-f]{40}$")

SEMVER_PATTERN = re.compile(
    r"^v?(?P<major>0|[1-9]\d*)"
    r"(?:\.(?P<minor>0|[1-9]\d*)"
    r"(?:\.(?P<patch>0|[1-9]\d*))?)?"
    r"(?:-(?P<prerelease>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r"(?:\+(?P<build>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?$"
)


def get_version() -> str:
    """
    Get ghpin version

    Returns:
        Version string
    """
    return __version__


def get_version_info() -> Dict[str, Any]:
    """
    Get detailed version information

    Returns:
        Dictionary with version, release date, etc.
    """
    return {
        "version": __version__,
        "release_date": __release_date__,
        "release_year": int(__release_date__.split("-")[0]),
    }


class SemVer(NamedTuple):
    """A parsed tag such as ``v4``, ``v4.1`` or ``1.2.3-rc.1``"""

    major: int
    minor: int
    patch: int
    prerelease: Tuple[str, ...] = ()
    components: int = 3

    @property
    def is_prerelease(self) -> bool:
        return bool(self.prerelease)

    def sort_key(self) -> Tuple[Any, ...]:
        """
        Ordering key following semver precedence

        Final releases rank above pre-releases of the same numeric triple.
        Pre-release identifiers compare numerically when numeric, numeric
        identifiers rank below alphanumeric ones, and a shorter identifier
        list ranks below a longer one with the same prefix.
        """
        identifiers = tuple(
            (0, int(part), "") if part.isdigit() else (1, 0, part) for part in self.prerelease
        )
        return (self.major, self.minor, self.patch, 0 if self.prerelease else 1, identifiers)


def parse_version(version_str: str) -> SemVer:
    """
    Parse a semantic version string

    Args:
        version_str: Version string such as "v4", "1.2" or "v1.2.3-beta.1"

    Returns:
        Parsed SemVer; missing minor/patch components default to 0

    Raises:
        ValueError: If the version string is not a semantic version
    """
    match = SEMVER_PATTERN.match(version_str.strip())
    if not match:
        raise ValueError(f"Invalid version format: {version_str}")

    prerelease = match.group("prerelease")
    components = 1 + (match.group("minor") is not None) + (match.group("patch") is not None)

    return SemVer(
        major=int(match.group("major")),
        minor=int(match.group("minor") or 0),
        patch=int(match.group("patch") or 0),
        prerelease=tuple(prerelease.split(".")) if prerelease else (),
        components=components,
    )


def try_parse_version(version_str: str) -> Optional[SemVer]:
    """Parse a version string, returning None for non-semver tags"""
    try:
        return parse_version(version_str)
    except ValueError:
        return None


def compare_versions(version1: str, version2: str) -> int:
    """
    Compare two semantic version strings

    Args:
        version1: First version string
        version2: Second version string

    Returns:
        -1 if version1 < version2, 0 if equal, 1 if version1 > version2

    Raises:
        ValueError: If either version string is invalid
    """
    v1 = parse_version(version1).sort_key()
    v2 = parse_version(version2).sort_key()

    if v1 < v2:
        return -1
    elif v1 > v2:
        return 1
    else:
        return 0


def is_version_newer(version: str, reference: str) -> bool:
    """
    Check if a version is newer than a reference version

    Args:
        version: Version to check
        reference: Reference version

    Returns:
        True if version is newer, False otherwise

    Raises:
        ValueError: If either version string is invalid
    """
    return compare_versions(version, reference) > 0


def select_latest_version(
    tags: Iterable[str], allow_prereleases: bool = True
) -> Optional[str]:
    """
    Pick the highest semantic version from a list of tag names

    Non-semver tags are never selected. When two tags share the same
    precedence (``v4`` and ``v4.0.0``) the more specific one wins, then the
    lexically smaller name so the choice is deterministic.

    Args:
        tags: Tag names as published by the repository
        allow_prereleases: Whether pre-release tags may be selected

    Returns:
        The selected tag name, or None if no tag qualifies
    """
    best: Optional[Tuple[Tuple[Any, ...], str]] = None

    for tag in tags:
        parsed = try_parse_version(tag)
        if parsed is None:
            continue
        if parsed.is_prerelease and not allow_prereleases:
            continue

        key = (parsed.sort_key(), parsed.components)
        if best is None or key > best[0] or (key == best[0] and tag < best[1]):
            best = (key, tag)

    return best[1] if best else None


def is_commit_sha(value: str) -> bool:
    """Check if a value is a full 40 character commit id"""
    return bool(SHA_PATTERN.match(value))


def looks_like_version(value: str) -> bool:
    """Check if a comment word is a version label such as v4 or 1.2.3"""
    return try_parse_version(value) is not None


def parse_github_ref(ref: str) -> Dict[str, Any]:
    """
    Parse a GitHub reference string

    Args:
        ref: GitHub reference string (e.g., "owner/repo@v1.2.3", "owner/repo/path@main")

    Returns:
        Dictionary with parsed components
    """
    if "@" not in ref:
        return {"valid": False}

    path, version = ref.rsplit("@", 1)
    parts = path.split("/")
    if len(parts) < 2 or not all(parts) or not version:
        return {"valid": False}

    owner = parts[0]
    name = "/".join(parts[1:])

    result: Dict[str, Union[str, bool]] = {
        "valid": True,
        "owner": owner,
        "name": name,
        "repo": parts[1],
        "version": version,
    }

    if is_commit_sha(version):
        result.update({"version_type": "sha", "is_pinned": True})
    elif looks_like_version(version):
        result.update({"version_type": "semver", "is_pinned": False})
    else:
        result.update({"version_type": "branch", "is_pinned": False})

    return result


def short_sha(sha: str, length: int = 12) -> str:
    return sha[:length]

