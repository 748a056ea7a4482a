"""SQLAlchemy ORM models for users, games, reviews and the per-user game collections."""

from sqlalchemy import Column, Integer, String, Text, Float, DateTime, ForeignKey, Table, JSON, func
from sqlalchemy.orm import relationship
from db import Base


def _user_game_table(name: str) -> Table:
    return Table(
        name,
        Base.metadata,
        Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
        Column("game_id", Integer, ForeignKey("games.id", ondelete="CASCADE"), primary_key=True),
    )


# One table per collection; the three sets are independent of each other
favorite_games = _user_game_table("user_favorite_games")
played_games = _user_game_table("user_played_games")
wanted_games = _user_game_table("user_wanted_games")

game_genres = Table(
    "game_genres",
    Base.metadata,
    Column("game_id", Integer, ForeignKey("games.id", ondelete="CASCADE"), primary_key=True),
    Column("genre_id", Integer, ForeignKey("genres.id", ondelete="CASCADE"), primary_key=True),
)

game_platforms = Table(
    "game_platforms",
    Base.metadata,
    Column("game_id", Integer, ForeignKey("games.id", ondelete="CASCADE"), primary_key=True),
    Column("platform_id", Integer, ForeignKey("platforms.id", ondelete="CASCADE"), primary_key=True),
)


class User(Base):
    """
    A registered user.
    The access token is generated at registration and is the only credential checked on requests.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(100), unique=True, index=True, nullable=False)
    hashed_password = Column(String(255), nullable=False)
    access_token = Column(String(256), unique=True, index=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Derived from Review.user_id; there is no denormalized list on the user row
    reviews = relationship("Review", back_populates="user", cascade="all, delete-orphan", order_by="Review.id")

    favorite_games = relationship("Game", secondary=favorite_games, back_populates="favorited_by", order_by="Game.id")
    played_games = relationship("Game", secondary=played_games, order_by="Game.id")
    wanted_games = relationship("Game", secondary=wanted_games, order_by="Game.id")


class Genre(Base):
    __tablename__ = "genres"

    id = Column(Integer, primary_key=True)
    name = Column(String(100), unique=True, nullable=False, index=True)


class Platform(Base):
    __tablename__ = "platforms"

    id = Column(Integer, primary_key=True)
    name = Column(String(100), unique=True, nullable=False, index=True)


class Game(Base):
    """A catalog entry. Rows are only created by the ingestion loop."""
    __tablename__ = "games"

    id = Column(Integer, primary_key=True, index=True)
    # Provider id, used to upsert on re-ingestion
    igdb_id = Column(Integer, unique=True, index=True, nullable=True)
    name = Column(String(255), index=True)
    cover_url = Column(String(512), nullable=True)
    # Unix timestamp, as delivered by the provider
    first_release_date = Column(Integer, nullable=True, index=True)
    summary = Column(Text, nullable=True)
    slug = Column(String(255), nullable=True)
    involved_companies = Column(JSON, nullable=False, default=list)
    rating = Column(Float, nullable=False, default=0)
    screenshots = Column(JSON, nullable=False, default=list)

    genres = relationship("Genre", secondary=game_genres, order_by="Genre.name")
    platforms = relationship("Platform", secondary=game_platforms, order_by="Platform.name")
    favorited_by = relationship("User", secondary=favorite_games, back_populates="favorite_games", order_by="User.id")
    reviews = relationship("Review", back_populates="game", cascade="all, delete-orphan")


class Review(Base):
    __tablename__ = "reviews"

    id = Column(Integer, primary_key=True, index=True)
    message = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    game_id = Column(Integer, ForeignKey("games.id", ondelete="CASCADE"), nullable=False, index=True)
    # Copy of the game's name at the time the review was posted
    game_name = Column(String(255), nullable=False)

    user = relationship("User", back_populates="reviews")
    game = relationship("Game", back_populates="reviews")
