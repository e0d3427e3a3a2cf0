"""Records mirrored from the remote store.

The cache treats these as opaque values and stores them as plain dicts
(``model_dump(mode="json")``); services validate rows through these models
on the way in.
"""

from typing import Any, Generic, Literal, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")

NotificationType = Literal[
    "new_follower",
    "like_review",
    "comment_review",
    "reply_comment",
    "like_list",
    "comment_list",
]


def with_like_flag(row: dict[str, Any]) -> dict[str, Any]:
    """Turn an embedded ``current_user_likes`` join into ``current_user_has_liked``."""
    row = dict(row)
    likes = row.pop("current_user_likes", None)
    if isinstance(likes, list):
        row["current_user_has_liked"] = len(likes) > 0
    return row


class UserProfile(BaseModel):
    """Public profile of a user."""

    id: str
    username: str
    name: str | None = None
    avatar_url: str | None = None
    bio: str | None = None
    created_at: str | None = None
    follower_count: int = 0
    following_count: int = 0
    is_current_user_following: bool = False

    model_config = {"extra": "allow"}


class Book(BaseModel):
    """A catalog book, optionally enriched with the signed-in user's interaction."""

    id: str
    google_book_id: str | None = None
    open_library_id: str | None = None
    title: str
    author: str = "Unknown Author"
    cover_image_url: str | None = None
    summary: str | None = None
    average_rating: float | None = None
    genres: list[str] = Field(default_factory=list)
    publication_year: int | None = None
    isbn: str | None = None

    current_user_rating: float | None = None
    current_user_is_read: bool = False
    current_user_is_currently_reading: bool = False
    current_user_read_date: str | None = None
    current_user_is_on_watchlist: bool = False
    current_user_is_liked: bool = False
    current_user_is_owned: bool = False

    model_config = {"extra": "allow"}

    @classmethod
    def from_row(cls, row: dict[str, Any], interaction: dict[str, Any] | None = None) -> "Book":
        """Convert a ``books`` table row (plus optional interaction row)."""
        authors = row.get("authors")
        if isinstance(authors, list) and authors:
            author = ", ".join(authors)
        else:
            author = row.get("author") or "Unknown Author"

        interaction = interaction or {}
        return cls(
            id=str(row.get("id") or row.get("google_book_id")),
            google_book_id=row.get("google_book_id"),
            open_library_id=row.get("open_library_id"),
            title=row.get("title") or "No title",
            author=author,
            cover_image_url=row.get("cover_image_url"),
            summary=row.get("summary"),
            average_rating=row.get("average_rating"),
            genres=row.get("genres") or [],
            publication_year=row.get("publication_year"),
            isbn=row.get("isbn13") or row.get("isbn"),
            current_user_rating=interaction.get("rating"),
            current_user_is_read=bool(interaction.get("is_read")),
            current_user_is_currently_reading=bool(interaction.get("is_currently_reading")),
            current_user_read_date=interaction.get("read_date"),
            current_user_is_on_watchlist=bool(interaction.get("is_on_watchlist")),
            current_user_is_liked=bool(interaction.get("is_liked")),
            current_user_is_owned=bool(interaction.get("is_owned")),
        )

    def to_row(self) -> dict[str, Any]:
        """Shape used when upserting catalog results into ``books``."""
        return {
            "google_book_id": self.google_book_id,
            "title": self.title,
            "authors": self.author.split(", ") if self.author else ["Unknown Author"],
            "cover_image_url": self.cover_image_url,
            "summary": self.summary,
            "publication_year": self.publication_year,
            "isbn13": self.isbn,
            "genres": self.genres,
        }


class Review(BaseModel):
    id: str
    user_id: str
    book_id: str
    rating: float
    review_text: str = ""
    created_at: str | None = None
    updated_at: str | None = None
    like_count: int = 0
    comment_count: int = 0
    current_user_has_liked: bool = False
    user: UserProfile | None = None
    book: dict[str, Any] | None = None

    model_config = {"extra": "allow"}


class Comment(BaseModel):
    id: str
    user_id: str
    text: str
    review_id: str | None = None
    list_collection_id: str | None = None
    parent_comment_id: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    like_count: int = 0
    current_user_has_liked: bool = False
    user: UserProfile | None = None
    replies: list["Comment"] = Field(default_factory=list)

    model_config = {"extra": "allow"}


class ListCollection(BaseModel):
    id: str
    user_id: str
    name: str
    description: str | None = None
    is_public: bool = True
    created_at: str | None = None
    updated_at: str | None = None
    item_count: int = 0
    like_count: int = 0
    current_user_has_liked: bool = False
    books: list[Book] = Field(default_factory=list)
    cover_images: list[str] = Field(default_factory=list)

    model_config = {"extra": "allow"}


class ListItem(BaseModel):
    id: str
    list_collection_id: str
    book_id: str
    added_at: str | None = None
    sort_order: int | None = None
    book: Book | None = None


class UserBookInteraction(BaseModel):
    """One user's reading log entry for one book."""

    user_id: str
    book_id: str
    is_read: bool = False
    is_currently_reading: bool = False
    read_date: str | None = None
    rating: float | None = None
    is_owned: bool = False
    is_on_watchlist: bool = False
    is_liked: bool = False
    log_notes: str | None = None
    review_id: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    model_config = {"extra": "allow"}


class Follow(BaseModel):
    follower_id: str
    following_id: str
    created_at: str | None = None


class Notification(BaseModel):
    id: str
    user_id: str
    actor_id: str
    type: NotificationType
    entity_id: str | None = None
    entity_type: Literal["review", "list_collection", "comment", "user"] | None = None
    entity_parent_id: str | None = None
    entity_parent_title: str | None = None
    read: bool = False
    created_at: str | None = None
    actor: UserProfile | None = None

    model_config = {"extra": "allow"}


class PaginatedResponse(BaseModel, Generic[T]):
    """One page of a list query."""

    items: list[T]
    total: int
    page: int
    page_size: int
    total_pages: int

    @classmethod
    def build(cls, items: list[Any], total: int, page: int, page_size: int) -> dict[str, Any]:
        """Assemble a page as the plain dict shape stored in the query cache."""
        total_pages = -(-total // page_size) if page_size else 0
        return {
            "items": items,
            "total": total,
            "page": page,
            "page_size": page_size,
            "total_pages": total_pages,
        }
