from decimal import Decimal

import pytest_asyncio

from listings_api.models.listing import Listing

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64
JPEG_BYTES = b"\xff\xd8\xff\xe0" + b"\x00" * 64


def listing_fields(**overrides) -> dict:
    """Form-style listing fields, every value a string."""
    fields = {
        "title": "Casa na praia",
        "description": "Casa ampla com vista para o mar",
        "shortDescription": "Casa com vista",
        "status": "Disponível",
        "bedrooms": "3",
        "bathrooms": "2",
        "garageSpaces": "0",
        "price": "350000.50",
        "location": "Ilhabela",
        "propertyType": "Casa",
        "houseArea": "180",
        "lotArea": "450",
    }
    fields.update(overrides)
    return {k: v for k, v in fields.items() if v is not None}


@pytest_asyncio.fixture
async def seed_listing(db_session, photo_store):
    """A stored listing whose slots 1 and 5 point at real files in the photo store."""
    first = await photo_store.save(key="img_seed_1.png", data=PNG_BYTES, content_type="image/png")
    fifth = await photo_store.save(key="img_seed_5.png", data=PNG_BYTES, content_type="image/png")

    photos = [None] * 10
    photos[0] = first
    photos[4] = fifth

    listing = Listing(
        title="Apartamento centro",
        description="Apartamento reformado",
        short_description="Reformado",
        status="Available",
        bedrooms=2,
        bathrooms=1,
        garage_spaces=1,
        price=Decimal("250000.00"),
        location="Centro",
        property_type="Apartamento",
        house_area=70,
        lot_area=None,
        notes=None,
        photos=photos,
    )
    db_session.add(listing)
    await db_session.commit()
    await db_session.refresh(listing)
    return listing
