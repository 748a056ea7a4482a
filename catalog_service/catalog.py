"""Query building for the game catalog: filtering, searching, sorting and paging."""

from typing import List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.orm import Query, Session, selectinload

from errors import ValidationFailed
from models import Game, Genre, Platform, game_genres, game_platforms
from utils import Pagination

SORT_BY_NAME = "name"
SORT_RELEASED_DESC = "releasedDesc"
SORT_RELEASED_ASC = "releasedAsce"
SORT_OPTIONS = (SORT_BY_NAME, SORT_RELEASED_DESC, SORT_RELEASED_ASC)

RELEASE_ORDERS = {
    "desc": SORT_RELEASED_DESC,
    "asc": SORT_RELEASED_ASC,
}


def escape_like(value: str) -> str:
    """Escapes LIKE wildcards so the search term matches literally."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def game_query(
    db: Session,
    genre: Optional[str] = None,
    platform: Optional[str] = None,
    search: Optional[str] = None,
    sort: Optional[str] = None,
) -> Query:
    """
    Builds the catalog query.

    Genre and platform match names case-insensitively, search is a
    case-insensitive substring match on the game name. Sorting by release
    date drops games without one. Every order ends on the id so pages are stable.
    """
    sort = sort or SORT_BY_NAME
    if sort not in SORT_OPTIONS:
        raise ValidationFailed(f"Unknown sort '{sort}'. Use one of: {', '.join(SORT_OPTIONS)}.")

    query = db.query(Game).options(
        selectinload(Game.genres),
        selectinload(Game.platforms),
        selectinload(Game.favorited_by),
    )

    if genre:
        query = query.filter(Game.genres.any(func.lower(Genre.name) == genre.strip().lower()))
    if platform:
        query = query.filter(Game.platforms.any(func.lower(Platform.name) == platform.strip().lower()))
    if search:
        query = query.filter(Game.name.ilike(f"%{escape_like(search.strip())}%", escape="\\"))

    if sort == SORT_RELEASED_DESC:
        query = query.filter(Game.first_release_date.isnot(None)).order_by(Game.first_release_date.desc(), Game.id)
    elif sort == SORT_RELEASED_ASC:
        query = query.filter(Game.first_release_date.isnot(None)).order_by(Game.first_release_date.asc(), Game.id)
    else:
        query = query.order_by(Game.name.asc(), Game.id)
    return query


def release_year_sort(order: Optional[str]) -> str:
    """Maps the ?order= value of /games/sort (asc|desc, default desc) to a sort key."""
    order = (order or "desc").lower()
    if order not in RELEASE_ORDERS:
        raise ValidationFailed("Query parameter 'order' must be 'asc' or 'desc'.")
    return RELEASE_ORDERS[order]


def paginate(query: Query, pagination: Pagination) -> Tuple[List[Game], int]:
    """Returns one page of results and the total count of the unpaged query."""
    total = query.order_by(None).count()
    items = query.offset(pagination.start_index).limit(pagination.page_hits).all()
    return items, total


def distinct_genres(db: Session) -> List[str]:
    """Names of genres attached to at least one game."""
    rows = db.query(Genre.name).filter(Genre.id.in_(
        select(game_genres.c.genre_id)
    )).order_by(Genre.name).all()
    return [name for (name,) in rows]


def distinct_platforms(db: Session) -> List[str]:
    """Names of platforms attached to at least one game."""
    rows = db.query(Platform.name).filter(Platform.id.in_(
        select(game_platforms.c.platform_id)
    )).order_by(Platform.name).all()
    return [name for (name,) in rows]
