from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Literal, Mapping, Sequence

from listings_api.schemas.listing import FieldError


log = logging.getLogger(__name__)

PhotoMode = Literal["slots", "array"]

SLOT_PREFIX = "photo"
ARRAY_KEY = "photos"

# slot names carry at most two digits
MAX_SLOT_INDEX = 99

# photo01..photo10, plus the legacy foto01..foto10 (and "foto010" for slot 10)
_SLOT_KEY_RE = re.compile(r"^(?:photo|foto)0*(\d{1,2})$")


def slot_key(index: int) -> str:
    """Canonical form field name for a 1-based slot index."""
    return f"{SLOT_PREFIX}{index:02d}"


def parse_slot_key(key: str) -> int | None:
    """
    Return the 1-based slot index named by `key`, or None when `key`
    is not a photo slot field at all. Range is not checked here.
    """
    m = _SLOT_KEY_RE.match(key.strip().lower())
    if not m:
        return None
    return int(m.group(1))


@dataclass(frozen=True)
class PhotoResolution:
    slots: tuple[str | None, ...]
    errors: tuple[FieldError, ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return not self.errors

    @property
    def has_any(self) -> bool:
        return any(s is not None for s in self.slots)

    def compact(self) -> list[str]:
        return [s for s in self.slots if s is not None]


def _fit(values: Sequence[str | None] | None, size: int) -> list[str | None]:
    out = list(values or [])[:size]
    return out + [None] * (size - len(out))


def _url_value(value: Any) -> tuple[bool, str | None]:
    """
    Interpret a body value given for a photo.
    Returns (valid, reference); reference None means "explicitly empty".
    """
    if value is None:
        return True, None
    if isinstance(value, str):
        v = value.strip()
        return True, (v or None)
    return False, None


def _resolve_slots(
    raw: Mapping[str, Any],
    uploads: Mapping[int, str],
    previous: list[str | None],
    max_slots: int,
    errors: list[FieldError],
) -> list[str | None]:
    # URLs supplied in the body. `photos` as a list maps positionally to slots
    # (the shape returned by the API); explicit slot keys win over it.
    supplied: dict[int, str | None] = {}

    listed = raw.get(ARRAY_KEY)
    if isinstance(listed, (list, tuple)):
        for pos, value in enumerate(listed[:max_slots]):
            valid, ref = _url_value(value)
            if not valid:
                errors.append(FieldError(field=f"{ARRAY_KEY}[{pos}]", reason="must be a URL string"))
                continue
            supplied[pos + 1] = ref

    for key, value in raw.items():
        idx = parse_slot_key(key)
        if idx is None:
            continue
        if not 1 <= idx <= max_slots:
            errors.append(FieldError(field=key, reason=f"unknown photo slot (max {max_slots})"))
            continue
        valid, ref = _url_value(value)
        if not valid:
            errors.append(FieldError(field=slot_key(idx), reason="must be a URL string"))
            continue
        supplied[idx] = ref

    slots: list[str | None] = []
    for idx in range(1, max_slots + 1):
        if uploads.get(idx):
            slots.append(uploads[idx])
        elif idx in supplied:
            # present in the request: a value, or an explicit clear
            slots.append(supplied[idx])
        else:
            slots.append(previous[idx - 1])
    return slots


def _resolve_array(
    raw: Mapping[str, Any],
    uploads: Sequence[str],
    previous: list[str | None],
    max_slots: int,
    errors: list[FieldError],
) -> list[str | None]:
    if not uploads and ARRAY_KEY not in raw:
        return previous

    incoming: list[str] = [u for u in uploads if u]

    listed = raw.get(ARRAY_KEY)
    if isinstance(listed, str):
        listed = listed.split(",")
    if listed is not None and not isinstance(listed, (list, tuple)):
        errors.append(FieldError(field=ARRAY_KEY, reason="must be a list of URL strings"))
        listed = []

    for pos, value in enumerate(listed or []):
        valid, ref = _url_value(value)
        if not valid:
            errors.append(FieldError(field=f"{ARRAY_KEY}[{pos}]", reason="must be a URL string"))
        elif ref is not None:
            incoming.append(ref)

    if len(incoming) > max_slots:
        log.info("dropping %d photo(s) beyond slot %d", len(incoming) - max_slots, max_slots)

    return _fit(incoming, max_slots)


def resolve_photos(
    raw: Mapping[str, Any],
    *,
    uploads: Mapping[int, str] | Sequence[str] | None = None,
    previous: Sequence[str | None] | None = None,
    mode: PhotoMode = "slots",
    max_slots: int = 10,
    require_any: bool = False,
) -> PhotoResolution:
    """
    Build the final ordered photo slots for a listing.

    Slot mode precedence, per slot: uploaded file, URL given in the body,
    previous value (updates only), empty. A slot key sent with an empty value
    clears the slot.

    Array mode: uploads in submission order, then URLs from `photos`, capped at
    `max_slots`. Extra photos are dropped, not rejected. Any photo input
    replaces the previous list; no photo input keeps it.
    """
    errors: list[FieldError] = []
    prev = _fit(previous, max_slots)

    if mode == "slots":
        if uploads is not None and not isinstance(uploads, Mapping):
            raise TypeError("slot mode expects uploads keyed by slot index")
        slots = _resolve_slots(raw, uploads or {}, prev, max_slots, errors)
    elif mode == "array":
        if isinstance(uploads, Mapping):
            uploads = [uploads[k] for k in sorted(uploads)]
        slots = _resolve_array(raw, uploads or [], prev, max_slots, errors)
    else:
        raise ValueError(f"Unknown photo mode: {mode}")

    resolution = PhotoResolution(slots=tuple(slots), errors=tuple(errors))
    if require_any and not resolution.has_any:
        errors.append(FieldError(field=ARRAY_KEY, reason="at least one photo is required"))
        resolution = PhotoResolution(slots=tuple(slots), errors=tuple(errors))
    return resolution
