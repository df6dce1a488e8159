"""
Book repository for the Circulation Engine.

Catalog maintenance is out of scope for the engine; this repository covers
what circulation needs: seeding titles, reading copy counters, and finding
an existing title when an acquisition request is approved.
"""

from decimal import Decimal
from uuid import uuid4

from pydantic import BaseModel, Field, model_validator
from sqlalchemy import func, select

from ..models.book import Book as BookModel
from .repository import BaseRepository
from .schema import Book as BookDB
from .session import safe_query


def generate_book_id() -> str:
    return f"book_{uuid4().hex[:12]}"


class BookCreateSchema(BaseModel):
    """Schema for adding a title to the catalog."""

    id: str = Field(default_factory=generate_book_id)
    title: str = Field(..., min_length=1, max_length=500)
    author: str | None = None
    publisher: str | None = None
    edition: str | None = None
    genre: str | None = None
    mrp: Decimal | None = Field(None, ge=0)
    total_copies: int = Field(default=1, ge=0)
    available_copies: int | None = Field(None, ge=0)

    @model_validator(mode="after")
    def default_available_copies(self) -> "BookCreateSchema":
        if self.available_copies is None:
            self.available_copies = self.total_copies
        if self.available_copies > self.total_copies:
            raise ValueError("Available copies cannot exceed total copies")
        return self


class BookUpdateSchema(BaseModel):
    """Metadata fields that may be edited; copy counters are not among them."""

    title: str | None = None
    author: str | None = None
    publisher: str | None = None
    edition: str | None = None
    genre: str | None = None
    mrp: Decimal | None = Field(None, ge=0)


class BookRepository(BaseRepository[BookDB, BookCreateSchema, BookUpdateSchema, BookModel]):
    """Repository for catalog titles."""

    @property
    def model_class(self) -> type[BookDB]:
        return BookDB

    @property
    def response_schema(self) -> type[BookModel]:
        return BookModel

    def find_by_identity(self, title: str, author: str, publisher: str | None) -> BookModel | None:
        """Find a title by case-insensitive title, author and publisher."""
        query = select(BookDB).where(
            func.lower(BookDB.title) == title.strip().lower(),
            func.lower(BookDB.author) == author.strip().lower(),
        )
        if publisher:
            query = query.where(func.lower(BookDB.publisher) == publisher.strip().lower())
        else:
            query = query.where(BookDB.publisher.is_(None))

        db_obj = safe_query(
            self.session,
            lambda s: s.execute(query.limit(1)).scalar_one_or_none(),
            "Failed to look up book by title/author/publisher",
        )
        return self._to_response_model(db_obj) if db_obj else None
