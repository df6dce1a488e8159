"""
Book model for the Circulation Engine.

Only the catalog fields that circulation depends on are modelled: the copy
counters that issuance and returns move, and the MRP that fines and
replacement costs are derived from.
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Book(BaseModel):
    """A catalog title with its circulating copy counters."""

    model_config = ConfigDict(
        from_attributes=True,
        json_schema_extra={
            "example": {
                "id": "book_3f2a9c01b7de",
                "title": "Clean Architecture",
                "author": "Robert C. Martin",
                "publisher": "Prentice Hall",
                "genre": "Software",
                "mrp": "500.00",
                "total_copies": 3,
                "available_copies": 1,
            }
        },
    )

    id: str = Field(..., description="Unique identifier for the book")

    title: str = Field(..., min_length=1, max_length=500)

    author: str | None = Field(None, max_length=200)

    publisher: str | None = Field(None, max_length=200)

    edition: str | None = Field(None, max_length=50)

    genre: str | None = Field(None, max_length=100)

    mrp: Decimal | None = Field(
        None,
        description="Maximum retail price; drives late fees and replacement costs",
        ge=0,
        decimal_places=2,
    )

    total_copies: int = Field(..., ge=0)

    available_copies: int = Field(..., ge=0)

    created_at: datetime | None = None

    @model_validator(mode="after")
    def validate_copies(self) -> "Book":
        if self.available_copies > self.total_copies:
            raise ValueError("Available copies cannot exceed total copies")
        return self

    @property
    def is_available(self) -> bool:
        return self.available_copies > 0

    @property
    def checked_out_copies(self) -> int:
        return self.total_copies - self.available_copies
