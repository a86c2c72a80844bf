from functools import lru_cache

from listings_api.core.config import settings
from listings_api.services.listing_normalizer import NormalizerConfig
from listings_api.services.storage import PhotoStore, build_photo_store


@lru_cache
def get_photo_store() -> PhotoStore:
    return build_photo_store(settings)


@lru_cache
def get_normalizer_config() -> NormalizerConfig:
    return NormalizerConfig.from_settings(settings)
