from __future__ import annotations

import logging
import mimetypes
from dataclasses import dataclass, field
from typing import Sequence

from starlette.datastructures import UploadFile

from listings_api.core.ids import gen_id
from listings_api.schemas.listing import FieldError
from listings_api.services.photo_slots import ARRAY_KEY, PhotoMode, parse_slot_key, slot_key
from listings_api.services.storage import PhotoStore, delete_quietly


log = logging.getLogger(__name__)

_EXTENSIONS = {"image/jpeg": ".jpg", "image/png": ".png", "image/webp": ".webp", "image/gif": ".gif"}


@dataclass
class PendingUpload:
    field: str
    slot: int | None
    filename: str
    content_type: str
    data: bytes


@dataclass
class StoredUploads:
    by_slot: dict[int, str] = field(default_factory=dict)
    ordered: list[str] = field(default_factory=list)

    @property
    def refs(self) -> list[str]:
        return list(self.ordered)

    def for_mode(self, mode: PhotoMode) -> dict[int, str] | list[str]:
        return dict(self.by_slot) if mode == "slots" else list(self.ordered)


def storage_key(content_type: str) -> str:
    # suffix follows the checked content type, not the client's filename
    ext = _EXTENSIONS.get(content_type) or mimetypes.guess_extension(content_type) or ""
    return gen_id("img") + ext


async def read_uploads(
    files: Sequence[tuple[str, UploadFile]],
    *,
    mode: PhotoMode,
    max_slots: int,
    max_bytes: int,
    allowed_types: frozenset[str],
) -> tuple[list[PendingUpload], list[FieldError]]:
    """
    Read and check uploaded photo files without storing them.
    Returns the accepted uploads and one error per rejected file field.
    """
    pending: list[PendingUpload] = []
    errors: list[FieldError] = []
    position = 0
    seen_slots: set[int] = set()

    for name, upload in files:
        # browsers send an empty part for an untouched file input
        if not upload.filename:
            continue

        if mode == "slots":
            slot = parse_slot_key(name)
            if slot is None or not 1 <= slot <= max_slots:
                errors.append(FieldError(field=name, reason="not a photo slot"))
                continue
            label = slot_key(slot)
            # photo01 and foto01 name the same slot
            if slot in seen_slots:
                errors.append(FieldError(field=label, reason="more than one file for this slot"))
                continue
            seen_slots.add(slot)
        else:
            slot = None
            if position >= max_slots:
                log.info("ignoring uploaded photo %r beyond slot %d", upload.filename, max_slots)
                continue
            label = f"{ARRAY_KEY}[{position}]"
            position += 1

        content_type = (upload.content_type or "").split(";")[0].strip().lower()
        if content_type not in allowed_types:
            errors.append(FieldError(field=label, reason=f"unsupported file type {content_type or 'unknown'}"))
            continue

        data = await upload.read()
        if not data:
            errors.append(FieldError(field=label, reason="file is empty"))
            continue
        if len(data) > max_bytes:
            errors.append(FieldError(field=label, reason=f"file exceeds {max_bytes} bytes"))
            continue

        pending.append(PendingUpload(field=label, slot=slot, filename=upload.filename, content_type=content_type, data=data))

    return pending, errors


async def store_uploads(pending: Sequence[PendingUpload], *, store: PhotoStore) -> StoredUploads:
    """
    Write checked uploads to the photo store.
    If one write fails, the ones already written are removed and the error re-raised.
    """
    stored = StoredUploads()
    try:
        for item in pending:
            ref = await store.save(
                key=storage_key(item.content_type),
                data=item.data,
                content_type=item.content_type,
            )
            stored.ordered.append(ref)
            if item.slot is not None:
                stored.by_slot[item.slot] = ref
    except Exception:
        await delete_quietly(store, stored.refs)
        raise
    return stored
