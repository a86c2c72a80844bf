from listings_api.models.base import Base  # noqa: F401

from listings_api.models.listing import Listing  # noqa: F401
