import logging
from typing import Any, Sequence

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.datastructures import UploadFile

from listings_api.api.deps import get_normalizer_config, get_photo_store
from listings_api.core.config import settings
from listings_api.core.db import get_db
from listings_api.schemas.common import DeletedResponse, ErrorResponse
from listings_api.schemas.listing import FieldError, ListingCandidate, ListingOut
from listings_api.services.listing_normalizer import NormalizerConfig, normalize_listing
from listings_api.services.listings import (
    create_listing,
    delete_listing,
    get_listing,
    list_listings,
    replaced_photos,
    update_listing,
)
from listings_api.services.photo_slots import ARRAY_KEY
from listings_api.services.storage import PhotoStore, StorageError, delete_quietly
from listings_api.services.uploads import StoredUploads, read_uploads, store_uploads


log = logging.getLogger(__name__)
router = APIRouter()


def _invalid(errors: Sequence[FieldError]) -> HTTPException:
    body = ErrorResponse(code="invalid_input", message="Invalid input", details=[e.model_dump() for e in errors])
    return HTTPException(status_code=422, detail=body.model_dump())


def _internal(category: str, message: str) -> HTTPException:
    body = ErrorResponse(code="internal_error", message=message, details=[{"category": category}])
    return HTTPException(status_code=500, detail=body.model_dump())


def _not_found() -> HTTPException:
    return HTTPException(status_code=404, detail="Listing not found")


async def _read_request(request: Request) -> tuple[dict[str, Any], list[tuple[str, UploadFile]]]:
    """Split a JSON or form request into plain fields and uploaded files."""
    content_type = (request.headers.get("content-type") or "").lower()

    if content_type.startswith("application/json"):
        try:
            body = await request.json()
        except ValueError:
            raise HTTPException(status_code=400, detail="Malformed JSON body")
        if not isinstance(body, dict):
            raise HTTPException(status_code=400, detail="JSON body must be an object")
        return body, []

    form = await request.form()
    fields: dict[str, Any] = {}
    files: list[tuple[str, UploadFile]] = []
    for key, value in form.multi_items():
        if isinstance(value, UploadFile):
            files.append((key, value))
        elif key == ARRAY_KEY:
            # repeated "photos" text fields carry photo URLs
            fields.setdefault(key, []).append(value)
        else:
            fields[key] = value
    return fields, files


async def _validated(
    *,
    raw: dict[str, Any],
    files: list[tuple[str, UploadFile]],
    previous_photos: Sequence[str | None] | None,
    store: PhotoStore,
    config: NormalizerConfig,
) -> tuple[ListingCandidate, StoredUploads]:
    """
    Check uploads, store them, and normalize the request.
    Raises 422 with every field error, or 500 when the photo store fails.
    """
    pending, upload_errors = await read_uploads(
        files,
        mode=config.photo_mode,
        max_slots=config.max_photo_slots,
        max_bytes=settings.max_upload_bytes,
        allowed_types=settings.allowed_image_type_set,
    )
    if upload_errors:
        # report field problems too, without storing anything
        res = normalize_listing(raw, previous_photos=previous_photos, config=config)
        seen = {e.field for e in upload_errors}
        raise _invalid(upload_errors + [e for e in res.errors if e.field not in seen])

    try:
        stored = await store_uploads(pending, store=store)
    except StorageError:
        log.exception("photo upload failed")
        raise _internal("storage", "Could not store photos")

    res = normalize_listing(
        raw,
        uploads=stored.for_mode(config.photo_mode),
        previous_photos=previous_photos,
        config=config,
    )
    if res.ok:
        return res.candidate, stored

    await delete_quietly(store, stored.refs)
    raise _invalid(res.errors)


@router.post("/listings", response_model=ListingOut, status_code=201)
async def create_listing_endpoint(
    request: Request,
    db: AsyncSession = Depends(get_db),
    store: PhotoStore = Depends(get_photo_store),
    config: NormalizerConfig = Depends(get_normalizer_config),
) -> ListingOut:
    raw, files = await _read_request(request)
    candidate, stored = await _validated(raw=raw, files=files, previous_photos=None, store=store, config=config)

    try:
        listing = await create_listing(db, candidate)
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        # stored photos are left for the orphan sweep
        log.exception("create listing failed; orphaned photos: %s", stored.refs)
        raise _internal("persistence", "Could not save listing")

    log.info("listing %s created", listing.id)
    return ListingOut.model_validate(listing)


@router.get("/listings", response_model=list[ListingOut])
async def list_listings_endpoint(db: AsyncSession = Depends(get_db)) -> list[ListingOut]:
    try:
        rows = await list_listings(db)
    except SQLAlchemyError:
        log.exception("list listings failed")
        raise _internal("persistence", "Could not list listings")
    return [ListingOut.model_validate(r) for r in rows]


@router.get("/listings/{listing_id}", response_model=ListingOut)
async def get_listing_endpoint(listing_id: int, db: AsyncSession = Depends(get_db)) -> ListingOut:
    try:
        listing = await get_listing(db, listing_id)
    except SQLAlchemyError:
        log.exception("get listing %s failed", listing_id)
        raise _internal("persistence", "Could not load listing")
    if listing is None:
        raise _not_found()
    return ListingOut.model_validate(listing)


@router.put("/listings/{listing_id}", response_model=ListingOut)
async def update_listing_endpoint(
    listing_id: int,
    request: Request,
    db: AsyncSession = Depends(get_db),
    store: PhotoStore = Depends(get_photo_store),
    config: NormalizerConfig = Depends(get_normalizer_config),
) -> ListingOut:
    try:
        existing = await get_listing(db, listing_id)
    except SQLAlchemyError:
        log.exception("load listing %s for update failed", listing_id)
        raise _internal("persistence", "Could not load listing")
    if existing is None:
        raise _not_found()
    previous = list(existing.photos or [])

    raw, files = await _read_request(request)
    candidate, stored = await _validated(raw=raw, files=files, previous_photos=previous, store=store, config=config)

    try:
        listing = await update_listing(db, listing_id, candidate)
        if listing is None:
            raise _not_found()
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        log.exception("update listing %s failed; orphaned photos: %s", listing_id, stored.refs)
        raise _internal("persistence", "Could not save listing")

    await delete_quietly(store, replaced_photos(previous, candidate.photos))
    log.info("listing %s updated", listing_id)
    return ListingOut.model_validate(listing)


@router.delete("/listings/{listing_id}", response_model=DeletedResponse)
async def delete_listing_endpoint(
    listing_id: int,
    db: AsyncSession = Depends(get_db),
    store: PhotoStore = Depends(get_photo_store),
) -> DeletedResponse:
    try:
        listing = await delete_listing(db, listing_id)
        if listing is None:
            raise _not_found()
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        log.exception("delete listing %s failed", listing_id)
        raise _internal("persistence", "Could not delete listing")

    failed = await delete_quietly(store, [p for p in listing.photos or [] if p])
    if failed:
        log.warning("listing %s deleted; %d photo(s) left behind", listing_id, len(failed))
    return DeletedResponse(listing_id=listing_id)
