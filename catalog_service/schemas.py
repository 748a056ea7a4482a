"""Pydantic schemas for request validation and response serialization."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _ids(value) -> List[int]:
    return [getattr(item, "id", item) for item in value or []]


def _names(value) -> List[str]:
    return [getattr(item, "name", item) for item in value or []]


def _strip_required(value: Optional[str], label: str) -> Optional[str]:
    if value is None:
        return value
    value = value.strip()
    if not value:
        raise ValueError(f"{label} must not be blank")
    return value


# --- User Schemas ---

class UserCredentials(BaseModel):
    """Body for registration and login."""
    username: str = Field(..., min_length=1, max_length=100)
    password: str = Field(..., min_length=1)

    @field_validator("username")
    @classmethod
    def strip_username(cls, value: str) -> str:
        return _strip_required(value, "Username")


class UserUpdate(BaseModel):
    username: Optional[str] = Field(None, min_length=1, max_length=100)
    password: Optional[str] = Field(None, min_length=1)

    @field_validator("username")
    @classmethod
    def strip_username(cls, value: Optional[str]) -> Optional[str]:
        return _strip_required(value, "Username")


class UserResponse(BaseModel):
    """Public view of a user (no password hash, no token)."""
    id: int
    username: str
    created_at: Optional[datetime] = None
    reviews: List[int] = Field(default_factory=list)
    favorite_games: List[int] = Field(default_factory=list)
    played_games: List[int] = Field(default_factory=list)
    wanted_games: List[int] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)

    @field_validator("reviews", "favorite_games", "played_games", "wanted_games", mode="before")
    @classmethod
    def collect_ids(cls, value):
        return _ids(value)


class UserAuthResponse(UserResponse):
    """Returned by register and login; carries the access token."""
    access_token: str


class UserSummary(BaseModel):
    id: int
    username: str

    model_config = ConfigDict(from_attributes=True)


# --- Game Schemas ---

class GameResponse(BaseModel):
    id: int
    igdb_id: Optional[int] = None
    name: Optional[str] = None
    cover_url: Optional[str] = None
    first_release_date: Optional[int] = None
    genres: List[str] = Field(default_factory=list)
    platforms: List[str] = Field(default_factory=list)
    summary: Optional[str] = None
    slug: Optional[str] = None
    involved_companies: List[str] = Field(default_factory=list)
    rating: float = 0
    screenshots: List[str] = Field(default_factory=list)
    saved_favorite_by: List[int] = Field(default_factory=list, validation_alias="favorited_by")

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    @field_validator("genres", "platforms", mode="before")
    @classmethod
    def collect_names(cls, value):
        return _names(value)

    @field_validator("saved_favorite_by", mode="before")
    @classmethod
    def collect_user_ids(cls, value):
        return _ids(value)

    @field_validator("involved_companies", "screenshots", mode="before")
    @classmethod
    def default_list(cls, value):
        return value or []


class GamePage(BaseModel):
    games: List[GameResponse]
    total: int


# --- Review Schemas ---

class ReviewCreate(BaseModel):
    message: str = Field(..., min_length=1)

    @field_validator("message")
    @classmethod
    def strip_message(cls, value: str) -> str:
        return _strip_required(value, "Message")


class ReviewUpdate(ReviewCreate):
    pass


class ReviewResponse(BaseModel):
    id: int
    message: str
    created_at: Optional[datetime] = None
    user: UserSummary
    game_id: int
    game_name: str

    model_config = ConfigDict(from_attributes=True)


# --- Image Generation ---

class ImagePrompt(BaseModel):
    prompt: str = Field(..., min_length=1, max_length=1000)


class ImageResponse(BaseModel):
    url: str


# --- Ingestion ---

class IngestionStatus(BaseModel):
    running: bool
    total_games: int
    batch_size: int
