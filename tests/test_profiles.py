"""Tests for the rendition profile catalog."""

import pytest

from abr_packager.errors import ProfileConfigError
from abr_packager.models import DEFAULT_PROFILES, RenditionProfile
from abr_packager.profiles import ProfileCatalog, validate_profiles, variant_dir_name


class TestProfileCatalog:
    """Test catalog ordering and immutability."""

    def test_default_catalog(self):
        catalog = ProfileCatalog()
        assert catalog.list() == DEFAULT_PROFILES
        assert len(catalog) == 5

    def test_list_is_read_only(self):
        """The catalog exposes a tuple, so callers cannot reorder or append."""
        catalog = ProfileCatalog()
        assert isinstance(catalog.list(), tuple)
        with pytest.raises(AttributeError):
            catalog.list().append(DEFAULT_PROFILES[0])

    def test_custom_profiles_keep_caller_order(self):
        profiles = [
            RenditionProfile(width=640, height=360, bit_rate_kbps=400),
            RenditionProfile(width=1920, height=1080, bit_rate_kbps=2000),
        ]
        catalog = ProfileCatalog(profiles)
        assert [p.height for p in catalog] == [360, 1080]

    def test_catalog_detached_from_source_list(self):
        profiles = [RenditionProfile(width=640, height=360, bit_rate_kbps=400)]
        catalog = ProfileCatalog(profiles)
        profiles.append(RenditionProfile(width=256, height=144, bit_rate_kbps=200))
        assert len(catalog) == 1

    def test_from_specs(self):
        catalog = ProfileCatalog.from_specs(["1280x720@1000", "640x360@400"])
        assert [p.label for p in catalog] == ["720p", "360p"]

    def test_from_specs_invalid(self):
        with pytest.raises(ProfileConfigError):
            ProfileCatalog.from_specs(["1280x720"])


class TestValidateProfiles:
    """Test rejection of profile sets that cannot be laid out on disk."""

    def test_defaults_are_valid(self):
        validate_profiles(DEFAULT_PROFILES)

    def test_empty_rejected(self):
        with pytest.raises(ProfileConfigError):
            validate_profiles([])

    def test_equal_heights_rejected(self):
        """Two profiles sharing a height would share a directory."""
        profiles = [
            RenditionProfile(width=1280, height=720, bit_rate_kbps=1000),
            RenditionProfile(width=960, height=720, bit_rate_kbps=800),
        ]
        with pytest.raises(ProfileConfigError) as exc_info:
            validate_profiles(profiles)
        assert "720p" in str(exc_info.value)

    def test_variant_dir_name(self):
        assert variant_dir_name(DEFAULT_PROFILES[-1]) == "144p"
