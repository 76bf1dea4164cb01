"""Rendition profile catalog.

The catalog is an ordered, read-only sequence. Its order is the order in which
renditions appear in the master manifest (highest quality first by default).
"""

from typing import Iterable, Optional, Sequence, Tuple

from .errors import ProfileConfigError
from .models import DEFAULT_PROFILES, RenditionProfile


class ProfileCatalog:
    """Fixed ordered set of rendition profiles."""

    def __init__(self, profiles: Optional[Iterable[RenditionProfile]] = None):
        self._profiles: Tuple[RenditionProfile, ...] = (
            tuple(profiles) if profiles is not None else DEFAULT_PROFILES
        )

    def list(self) -> Tuple[RenditionProfile, ...]:
        return self._profiles

    def __len__(self) -> int:
        return len(self._profiles)

    def __iter__(self):
        return iter(self._profiles)

    @classmethod
    def from_specs(cls, specs: Iterable[str]) -> "ProfileCatalog":
        """Build a catalog from ``WIDTHxHEIGHT@KBPS`` strings, keeping their order."""
        return cls(RenditionProfile.parse(spec) for spec in specs)


def variant_dir_name(profile: RenditionProfile) -> str:
    return profile.label


def validate_profiles(profiles: Sequence[RenditionProfile]) -> None:
    """Reject profile sets that cannot be laid out on disk.

    Raises:
        ProfileConfigError: If the set is empty or two profiles share a height
            (they would write into the same variant directory)
    """
    if not profiles:
        raise ProfileConfigError("At least one rendition profile is required")

    seen = {}
    for profile in profiles:
        name = variant_dir_name(profile)
        if name in seen:
            raise ProfileConfigError(
                f"Profiles {seen[name]} and {profile} both map to output directory '{name}'"
            )
        seen[name] = profile
