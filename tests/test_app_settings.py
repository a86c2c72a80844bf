import pytest

from listings_api.api.deps import get_normalizer_config, get_photo_store
from listings_api.core.config import Settings
from listings_api.services.listing_normalizer import NormalizerConfig


def test_app_builds_its_dependencies_on_import():
    import listings_api.main  # noqa: F401

    assert get_normalizer_config.cache_info().currsize == 1
    assert get_photo_store.cache_info().currsize == 1


def test_bad_status_alias_setting_is_a_configuration_error():
    with pytest.raises(ValueError):
        NormalizerConfig.from_settings(Settings(listing_status_aliases={"vendido": "Sold"}))
