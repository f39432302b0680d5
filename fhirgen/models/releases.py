"""FHIR release (sequence) detection from package version strings."""

from enum import Enum
from typing import Iterable, Optional


class FhirRelease(str, Enum):
    DSTU2 = "DSTU2"
    STU3 = "STU3"
    R4 = "R4"
    R4B = "R4B"
    R5 = "R5"


# major.minor prefix -> release
_VERSION_PREFIXES = [
    ("1.0", FhirRelease.DSTU2),
    ("1.4", FhirRelease.STU3),
    ("1.6", FhirRelease.STU3),
    ("1.8", FhirRelease.STU3),
    ("3.0", FhirRelease.STU3),
    ("3.3", FhirRelease.R4),
    ("3.5", FhirRelease.R4),
    ("4.0", FhirRelease.R4),
    ("4.1", FhirRelease.R4B),
    ("4.3", FhirRelease.R4B),
    ("4.2", FhirRelease.R5),
    ("4.4", FhirRelease.R5),
    ("4.5", FhirRelease.R5),
    ("4.6", FhirRelease.R5),
    ("5.0", FhirRelease.R5),
]


def release_for_version(version: str) -> Optional[FhirRelease]:
    """Map a FHIR version string ("4.0.1", "R4B", "5.0.0-snapshot1") to its release."""
    if not version:
        return None
    text = version.strip()
    upper = text.upper()
    for release in FhirRelease:
        if upper == release.value:
            return release
    for prefix, release in _VERSION_PREFIXES:
        if text == prefix or text.startswith(prefix + "."):
            return release
    return None


def parse_release(value) -> FhirRelease:
    """Like ``release_for_version`` but raises ``ValueError`` for unknown input."""
    if isinstance(value, FhirRelease):
        return value
    release = release_for_version(str(value))
    if release is None:
        raise ValueError(f"Unknown FHIR release: {value}")
    return release


def detect_release(fhir_versions: Iterable[str]) -> Optional[FhirRelease]:
    """Return the release of the first recognised entry in a manifest's ``fhirVersions``."""
    for version in fhir_versions or []:
        release = release_for_version(version)
        if release is not None:
            return release
    return None
