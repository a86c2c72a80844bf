from __future__ import annotations

from typing import Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from listings_api.models.listing import Listing
from listings_api.schemas.listing import ListingCandidate


async def create_listing(db: AsyncSession, candidate: ListingCandidate) -> Listing:
    listing = Listing(**candidate.model_dump())
    db.add(listing)
    await db.flush()
    # pull server defaults (created_at/updated_at)
    await db.refresh(listing)
    return listing


async def list_listings(db: AsyncSession) -> Sequence[Listing]:
    stmt = select(Listing).order_by(Listing.created_at.desc(), Listing.id.desc())
    return (await db.execute(stmt)).scalars().all()


async def get_listing(db: AsyncSession, listing_id: int) -> Listing | None:
    return await db.get(Listing, listing_id)


async def update_listing(db: AsyncSession, listing_id: int, candidate: ListingCandidate) -> Listing | None:
    """
    Replace every field of an existing listing with the candidate's values.
    Photo retention is decided by the normalizer before this call.
    """
    listing = await db.get(Listing, listing_id)
    if listing is None:
        return None

    for name, value in candidate.model_dump().items():
        setattr(listing, name, value)

    await db.flush()
    await db.refresh(listing)
    return listing


async def delete_listing(db: AsyncSession, listing_id: int) -> Listing | None:
    """Delete the row; returns the deleted listing so its photos can be cleaned up."""
    listing = await db.get(Listing, listing_id)
    if listing is None:
        return None

    await db.delete(listing)
    await db.flush()
    return listing


def replaced_photos(before: Sequence[str | None], after: Sequence[str | None]) -> list[str]:
    """References present before an update and gone after it."""
    kept = {p for p in after if p}
    return [p for p in before if p and p not in kept]
