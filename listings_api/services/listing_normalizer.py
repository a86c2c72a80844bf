from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Sequence

from pydantic import ValidationError

from listings_api.core.config import DEFAULT_STATUS_ALIASES, Settings
from listings_api.schemas.listing import INT_MAX, STATUS_VALUES, FieldError, ListingCandidate
from listings_api.services.photo_slots import MAX_SLOT_INDEX, PhotoMode, PhotoResolution, resolve_photos


log = logging.getLogger(__name__)


# canonical field -> accepted input keys, first match wins
FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "title": ("title", "titulo"),
    "description": ("description", "descricao"),
    "short_description": ("short_description", "shortDescription", "descricaoPrevia", "descricao_previa"),
    "status": ("status",),
    "bedrooms": ("bedrooms", "quartos"),
    "bathrooms": ("bathrooms", "banheiros"),
    "garage_spaces": ("garage_spaces", "garageSpaces", "garagem"),
    "price": ("price", "preco"),
    "location": ("location", "localizacao"),
    "property_type": ("property_type", "propertyType", "tipo"),
    "house_area": ("house_area", "houseArea", "metragemCasa"),
    "lot_area": ("lot_area", "lotArea", "metragemTerreno"),
    "notes": ("notes", "observacao"),
}

INT_FIELDS = ("bedrooms", "bathrooms", "garage_spaces", "house_area", "lot_area")
TEXT_FIELDS = ("title", "description", "short_description", "location", "property_type", "notes")
OPTIONAL_FIELDS = {"lot_area", "notes"}

_INT_RE = re.compile(r"^[+-]?\d+$")


@dataclass(frozen=True)
class NormalizerConfig:
    require_at_least_one_photo: bool = False
    max_photo_slots: int = 10
    photo_mode: PhotoMode = "slots"
    require_short_description: bool = True
    status_aliases: Mapping[str, str] = field(default_factory=lambda: dict(DEFAULT_STATUS_ALIASES))

    def __post_init__(self) -> None:
        if not 1 <= self.max_photo_slots <= MAX_SLOT_INDEX:
            raise ValueError(f"max_photo_slots must be between 1 and {MAX_SLOT_INDEX}")
        bad = {v for v in self.status_aliases.values() if v not in STATUS_VALUES}
        if bad:
            raise ValueError(f"status aliases map to unknown values: {sorted(bad)}")

    @classmethod
    def from_settings(cls, s: Settings) -> "NormalizerConfig":
        return cls(
            require_at_least_one_photo=s.listing_require_photo,
            max_photo_slots=s.listing_max_photo_slots,
            photo_mode=s.listing_photo_mode,
            require_short_description=s.listing_require_short_description,
            status_aliases=dict(s.listing_status_aliases),
        )

    def canonical_status(self, value: str) -> str | None:
        key = value.strip().casefold()
        for alias, canonical in self.status_aliases.items():
            if alias.strip().casefold() == key:
                return canonical
        return None


@dataclass(frozen=True)
class NormalizationResult:
    ok: bool
    candidate: ListingCandidate | None
    photos: PhotoResolution | None
    errors: list[FieldError]

    def error_dicts(self) -> list[dict[str, str]]:
        return [e.model_dump() for e in self.errors]


class _FieldProblem(Exception):
    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


def _pick(raw: Mapping[str, Any], name: str) -> Any:
    for key in FIELD_ALIASES[name]:
        if key in raw:
            value = raw[key]
            if isinstance(value, str):
                value = value.strip()
            if value is None or value == "":
                continue
            return value
    return None


def parse_int(value: Any) -> int:
    # bool is an int subclass; "true" is not a bedroom count
    if isinstance(value, bool):
        raise _FieldProblem("must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if math.isfinite(value) and value.is_integer():
            return int(value)
        raise _FieldProblem("must be an integer")
    if isinstance(value, str) and _INT_RE.match(value):
        # keep huge digit strings away from int(); the bound is checked again by the schema
        if len(value.lstrip("+-").lstrip("0")) > len(str(INT_MAX)):
            if value.startswith("-"):
                raise _FieldProblem("must be greater than or equal to 0")
            raise _FieldProblem(f"must be less than or equal to {INT_MAX}")
        return int(value)
    raise _FieldProblem("must be an integer")


def parse_decimal(value: Any) -> Decimal:
    if isinstance(value, bool):
        raise _FieldProblem("must be a number")
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            raise _FieldProblem("must be a finite number")
        return Decimal(str(value))
    if isinstance(value, str):
        text = value.replace(" ", "")
        # "1234,56" -> "1234.56"; "1.234,56" is ambiguous and rejected
        if "," in text and "." not in text and text.count(",") == 1:
            text = text.replace(",", ".")
        try:
            number = Decimal(text)
        except InvalidOperation:
            raise _FieldProblem("must be a number")
        if not number.is_finite():
            raise _FieldProblem("must be a finite number")
        return number
    raise _FieldProblem("must be a number")


def _reason_from_pydantic(err: dict[str, Any]) -> str:
    kind = err.get("type")
    ctx = err.get("ctx") or {}
    if kind == "missing":
        return "field required"
    if kind == "greater_than_equal":
        return f"must be greater than or equal to {ctx.get('ge')}"
    if kind == "less_than_equal":
        return f"must be less than or equal to {ctx.get('le')}"
    if kind == "string_too_short":
        return "must not be empty"
    if kind == "string_too_long":
        return f"must be at most {ctx.get('max_length')} characters"
    if kind == "decimal_max_places":
        return f"must have at most {ctx.get('decimal_places')} decimal places"
    if kind == "decimal_max_digits":
        return "is too large"
    return err.get("msg", "invalid value")


def normalize_listing(
    raw: Mapping[str, Any],
    *,
    uploads: Mapping[int, str] | Sequence[str] | None = None,
    previous_photos: Sequence[str | None] | None = None,
    config: NormalizerConfig | None = None,
) -> NormalizationResult:
    """
    Turn a loosely typed request body into a validated ListingCandidate.

    `uploads` holds references of files already stored for this request
    (slot index -> reference in slot mode, submission order in array mode).
    `previous_photos` is the stored slot list when updating.

    Every violated field is reported once. Nothing is defaulted: a required
    field that is missing or does not parse is an error, never 0.
    """
    cfg = config or NormalizerConfig()
    errors: dict[str, FieldError] = {}
    values: dict[str, Any] = {}

    def fail(name: str, reason: str) -> None:
        errors.setdefault(name, FieldError(field=name, reason=reason))

    required = {name for name in FIELD_ALIASES if name not in OPTIONAL_FIELDS}
    if not cfg.require_short_description:
        required.discard("short_description")

    for name in FIELD_ALIASES:
        value = _pick(raw, name)
        if value is None:
            if name in required:
                fail(name, "field required")
            else:
                values[name] = None
            continue

        try:
            if name in INT_FIELDS:
                values[name] = parse_int(value)
            elif name == "price":
                values[name] = parse_decimal(value)
            elif name == "status":
                if not isinstance(value, str):
                    raise _FieldProblem("must be a string")
                status = cfg.canonical_status(value)
                if status is None:
                    raise _FieldProblem(f"must be one of: {', '.join(STATUS_VALUES)}")
                values[name] = status
            else:
                if not isinstance(value, str):
                    raise _FieldProblem("must be a string")
                values[name] = value
        except _FieldProblem as e:
            fail(name, e.reason)

    photos = resolve_photos(
        raw,
        uploads=uploads,
        previous=previous_photos,
        mode=cfg.photo_mode,
        max_slots=cfg.max_photo_slots,
        require_any=cfg.require_at_least_one_photo,
    )
    for err in photos.errors:
        errors.setdefault(err.field, err)
    values["photos"] = list(photos.slots)

    try:
        candidate = ListingCandidate.model_validate(values)
    except ValidationError as e:
        for err in e.errors():
            name = str(err["loc"][0]) if err.get("loc") else "__root__"
            # a field that failed to parse is already reported
            if name in errors:
                continue
            fail(name, _reason_from_pydantic(err))
    else:
        if not errors:
            return NormalizationResult(ok=True, candidate=candidate, photos=photos, errors=[])

    log.info("listing rejected: %s", ", ".join(sorted(errors)))
    return NormalizationResult(ok=False, candidate=None, photos=photos, errors=list(errors.values()))
