"""SQLAlchemy database models for the catalog store."""

import uuid
from datetime import datetime, timezone
from typing import List

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _new_id() -> str:
    return uuid.uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class Author(Base):
    """Book author."""

    __tablename__ = "authors"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(Text, nullable=False)

    books: Mapped[List["Book"]] = relationship(back_populates="author")

    def __repr__(self) -> str:
        return f"<Author(id='{self.id}', name='{self.name}')>"


class Book(Base):
    """Catalog book with denormalized rating aggregates.

    average_rating and ratings_count are maintained by the review flow of the
    surrounding service; the recommender only reads them.
    """

    __tablename__ = "books"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    author_id: Mapped[str] = mapped_column(
        ForeignKey("authors.id"), nullable=False, index=True
    )
    average_rating: Mapped[float] = mapped_column(Float, nullable=False, default=0.0, index=True)
    ratings_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    bestseller: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    new_release: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    author: Mapped[Author] = relationship(back_populates="books")
    genre_links: Mapped[List["BookGenre"]] = relationship(
        cascade="all, delete-orphan",
        order_by="BookGenre.position",
    )

    @property
    def genres(self) -> list[str]:
        return [link.genre for link in self.genre_links]

    def __repr__(self) -> str:
        return f"<Book(id='{self.id}', title='{self.title}')>"


class BookGenre(Base):
    """Genre tag of a book. position keeps the catalog's display order."""

    __tablename__ = "book_genres"

    book_id: Mapped[str] = mapped_column(ForeignKey("books.id"), primary_key=True)
    genre: Mapped[str] = mapped_column(String(64), primary_key=True, index=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class User(Base):
    """Reader account (profile fields only; credentials live elsewhere)."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(Text, nullable=False)

    favorite_genre_links: Mapped[List["FavoriteGenre"]] = relationship(
        cascade="all, delete-orphan",
        order_by="FavoriteGenre.genre",
    )
    follows: Mapped[List["AuthorFollow"]] = relationship(cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"<User(id='{self.id}', name='{self.name}')>"


class FavoriteGenre(Base):
    __tablename__ = "user_favorite_genres"

    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), primary_key=True)
    genre: Mapped[str] = mapped_column(String(64), primary_key=True)


class AuthorFollow(Base):
    __tablename__ = "author_follows"

    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), primary_key=True)
    author_id: Mapped[str] = mapped_column(ForeignKey("authors.id"), primary_key=True)
    followed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )


class Review(Base):
    """One rating (1-5) per user per book."""

    __tablename__ = "reviews"
    __table_args__ = (UniqueConstraint("user_id", "book_id", name="uq_review_user_book"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    book_id: Mapped[str] = mapped_column(ForeignKey("books.id"), nullable=False, index=True)
    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )


class Purchase(Base):
    """Checkout order. Only payment_status == "completed" counts as owned."""

    __tablename__ = "purchases"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    payment_status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, index=True
    )

    items: Mapped[List["PurchaseItem"]] = relationship(cascade="all, delete-orphan")


class PurchaseItem(Base):
    __tablename__ = "purchase_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    purchase_id: Mapped[str] = mapped_column(ForeignKey("purchases.id"), nullable=False, index=True)
    book_id: Mapped[str] = mapped_column(ForeignKey("books.id"), nullable=False, index=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
