from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    code: str
    message: str
    details: list[dict] = Field(default_factory=list)


class DeletedResponse(BaseModel):
    status: str = "deleted"
    listing_id: int
