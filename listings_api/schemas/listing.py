from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


ListingStatus = Literal["Available", "Unavailable"]
STATUS_VALUES: tuple[str, ...] = ("Available", "Unavailable")

# integer columns are 32-bit
INT_MAX = 2_147_483_647


class FieldError(BaseModel):
    model_config = ConfigDict(frozen=True)

    field: str
    reason: str


class ListingCandidate(BaseModel):
    """
    A validated listing, ready for persistence.
    id/created_at/updated_at are assigned by the database.
    """
    title: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1)
    short_description: str | None = None
    status: ListingStatus

    bedrooms: int = Field(ge=0, le=INT_MAX)
    bathrooms: int = Field(ge=0, le=INT_MAX)
    garage_spaces: int = Field(ge=0, le=INT_MAX)
    price: Decimal = Field(ge=0, max_digits=14, decimal_places=2)

    location: str = Field(min_length=1, max_length=300)
    property_type: str = Field(min_length=1, max_length=100)

    house_area: int = Field(ge=0, le=INT_MAX)
    lot_area: int | None = Field(default=None, ge=0, le=INT_MAX)

    notes: str | None = None

    # One entry per slot; None marks an empty slot
    photos: list[str | None] = Field(default_factory=list)


class ListingOut(ListingCandidate):
    model_config = ConfigDict(from_attributes=True)

    id: int
    price: float
    created_at: datetime
    updated_at: datetime
