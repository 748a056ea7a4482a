"""Game review catalog API: users, games, reviews, per-user game collections and catalog ingestion."""

import os
import time
import logging
from typing import Callable, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Depends, Request, Header, Query, BackgroundTasks, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

# Local imports
from db import SessionLocal, get_db, init_db
from errors import (
    ServiceError,
    Conflict,
    Forbidden,
    NotFound,
    ServiceUnavailable,
    ValidationFailed,
    Unauthorized,
    envelope,
    error_body,
    kind_for_status,
)
from models import User, Game, Review
import schemas
import catalog
from igdb_client import build_igdb_client
from image_client import generate_image
from ingestion import (
    INGEST_BATCH_SIZE,
    INGEST_TOTAL_GAMES,
    is_running,
    run_locked_ingestion,
)
from utils import (
    Pagination,
    get_current_user,
    get_pagination,
    get_password_hash,
    verify_password,
    generate_access_token,
)

load_dotenv()

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

INGEST_API_KEY = os.getenv("INGEST_API_KEY")
CORS_ORIGINS = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()]

# Create tables if they do not exist
init_db()

app = FastAPI(
    title="Game Review Catalog API",
    description="User accounts, a game catalog fed from IGDB, reviews and per-user game collections.",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=CORS_ORIGINS != ["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Prometheus Metrics ---
REQUEST_COUNT = Counter(
    "catalog_requests_total",
    "Total requests processed by the catalog service",
    ["method", "endpoint", "status_code"]
)
REQUEST_LATENCY = Histogram(
    "catalog_request_latency_seconds",
    "Request latency in seconds for the catalog service",
    ["endpoint"]
)
USERS_REGISTERED_COUNT = Counter("catalog_users_registered_total", "Users registered")
REVIEWS_CREATED_COUNT = Counter("catalog_reviews_created_total", "Reviews posted")

UNMATCHED_ENDPOINT = "unmatched"


# --- Metrics Middleware ---
@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    start_time = time.time()
    response = None
    status_code = 500

    try:
        response = await call_next(request)
        status_code = response.status_code
    except Exception as exc:
        logger.error(f"Unhandled exception during request processing: {exc}", exc_info=True)
        response = JSONResponse(status_code=500, content=error_body(ServiceError.default_message, ServiceError.kind))
    finally:
        latency = time.time() - start_time
        # Label by route template; unrouted paths share one label
        route = request.scope.get("route")
        endpoint = getattr(route, "path", UNMATCHED_ENDPOINT)
        final_status_code = getattr(response, 'status_code', status_code)
        REQUEST_LATENCY.labels(endpoint=endpoint).observe(latency)
        REQUEST_COUNT.labels(
            method=request.method,
            endpoint=endpoint,
            status_code=final_status_code
        ).inc()

    return response


# --- Exception Handlers ---
@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=error_body(exc.message, exc.kind))


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(str(exc.detail), kind_for_status(exc.status_code)),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        problems.append(f"{location}: {error.get('msg')}" if location else error.get("msg"))
    message = "; ".join(problems) or ValidationFailed.default_message
    return JSONResponse(status_code=400, content=error_body(message, ValidationFailed.kind))


# --- Helpers ---

def get_user_or_404(db: Session, user_id: int) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        logger.warning(f"User {user_id} not found.")
        raise NotFound("User not found")
    return user


def get_game_or_404(db: Session, game_id: int) -> Game:
    game = db.query(Game).filter(Game.id == game_id).first()
    if game is None:
        logger.warning(f"Game {game_id} not found.")
        raise NotFound("Game not found")
    return game


def get_review_or_404(db: Session, review_id: int) -> Review:
    review = db.query(Review).filter(Review.id == review_id).first()
    if review is None:
        logger.warning(f"Review {review_id} not found.")
        raise NotFound("Review not found")
    return review


def game_page(games, total: int, empty_message: str) -> dict:
    page = schemas.GamePage(games=[schemas.GameResponse.model_validate(g) for g in games], total=total)
    return envelope(page, message=None if games else empty_message)


def list_envelope(items, schema, empty_message: str) -> dict:
    response = [schema.model_validate(item) for item in items]
    return envelope(response, message=None if response else empty_message)


def commit_or_conflict(db: Session, conflict_message: str):
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise Conflict(conflict_message)


# --- Monitoring Endpoints ---
@app.get("/metrics", tags=["Monitoring"])
def metrics():
    """Exposes application metrics for Prometheus."""
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.get("/health", tags=["Monitoring"])
def health_check():
    """Checks that the database answers."""
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error(f"Health check failed - database error: {e}", exc_info=True)
        raise ServiceUnavailable("Database connection error")
    finally:
        db.close()
    return {"status": "ok", "service": "catalog_service", "database": "ok", "ingestion_running": is_running()}


@app.get("/", tags=["Monitoring"])
def root():
    return envelope({"service": "Game Review Catalog API", "version": app.version})


# --- Users ---

@app.post("/users/register", status_code=status.HTTP_201_CREATED, tags=["Users"])
def register(credentials: schemas.UserCredentials, db: Session = Depends(get_db)):
    """
    Creates a user with a bcrypt-hashed password and a freshly issued access token.
    The token is the only credential the other endpoints accept.
    """
    logger.info(f"Registration attempt for username: {credentials.username}")
    if db.query(User).filter(User.username == credentials.username).first():
        logger.warning(f"Registration failed: username {credentials.username} already exists.")
        raise Conflict("Username already exists")

    user = User(
        username=credentials.username,
        hashed_password=get_password_hash(credentials.password),
        access_token=generate_access_token(),
    )
    db.add(user)
    commit_or_conflict(db, "Username already exists")
    db.refresh(user)

    USERS_REGISTERED_COUNT.inc()
    logger.info(f"User created with ID: {user.id}")
    return envelope(schemas.UserAuthResponse.model_validate(user))


@app.post("/users/login", tags=["Users"])
def login(credentials: schemas.UserCredentials, db: Session = Depends(get_db)):
    """Returns the user's access token when the password matches."""
    user = db.query(User).filter(User.username == credentials.username).first()
    if not user or not verify_password(credentials.password, user.hashed_password):
        logger.warning(f"Login failed for username: {credentials.username}")
        raise Unauthorized("Credentials do not match")

    logger.info(f"Login successful for user_id: {user.id}")
    return envelope(schemas.UserAuthResponse.model_validate(user))


@app.get("/users", tags=["Users"])
def list_users(db: Session = Depends(get_db)):
    users = db.query(User).order_by(User.id).all()
    return list_envelope(users, schemas.UserResponse, "There are no users")


@app.get("/users/{user_id}", tags=["Users"])
def get_user(user_id: int, db: Session = Depends(get_db)):
    return envelope(schemas.UserResponse.model_validate(get_user_or_404(db, user_id)))


@app.patch("/users/{user_id}", tags=["Users"])
def update_user(
    user_id: int,
    updates: schemas.UserUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Changes username and/or password. Any authenticated user may call it."""
    user = get_user_or_404(db, user_id)
    if updates.username is None and updates.password is None:
        raise ValidationFailed("Nothing to update")

    if updates.username is not None and updates.username != user.username:
        if db.query(User).filter(User.username == updates.username).first():
            raise Conflict("Username already exists")
        user.username = updates.username
    if updates.password is not None:
        user.hashed_password = get_password_hash(updates.password)

    commit_or_conflict(db, "Username already exists")
    db.refresh(user)
    logger.info(f"User {user.id} updated by user {current_user.id}")
    return envelope(schemas.UserResponse.model_validate(user))


@app.delete("/users/{user_id}", tags=["Users"])
def delete_user(
    user_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Hard-deletes a user together with their reviews and collection entries."""
    user = get_user_or_404(db, user_id)
    deleted = schemas.UserResponse.model_validate(user)
    # Read before commit; the caller may be deleting their own account
    actor_id = current_user.id
    db.delete(user)
    db.commit()
    logger.info(f"User {user_id} deleted by user {actor_id}")
    return envelope(deleted, message="User deleted")


@app.get("/users/{user_id}/reviews", tags=["Reviews"])
def list_user_reviews(user_id: int, db: Session = Depends(get_db)):
    get_user_or_404(db, user_id)
    reviews = db.query(Review).filter(Review.user_id == user_id).order_by(Review.id).all()
    return list_envelope(reviews, schemas.ReviewResponse, "This user has not posted any reviews")


# --- Games ---

@app.get("/games", tags=["Games"])
def list_games(
    genre: Optional[str] = None,
    platform: Optional[str] = None,
    search: Optional[str] = None,
    sort: Optional[str] = Query(None, description="name | releasedDesc | releasedAsce"),
    pagination: Pagination = Depends(get_pagination),
    db: Session = Depends(get_db),
):
    """
    Paginated catalog. Example: /games?genre=Shooter&sort=releasedDesc&page=2&size=10

    The total counts every game matching the filters, regardless of page and size.
    """
    query = catalog.game_query(db, genre=genre, platform=platform, search=search, sort=sort)
    games, total = catalog.paginate(query, pagination)
    return game_page(games, total, "No games found")


@app.get("/games/genres", tags=["Games"])
def list_genres(db: Session = Depends(get_db)):
    genres = catalog.distinct_genres(db)
    return envelope(genres, message=None if genres else "No genres found")


@app.get("/games/genres/{genre}", tags=["Games"])
def list_games_by_genre(
    genre: str,
    pagination: Pagination = Depends(get_pagination),
    db: Session = Depends(get_db),
):
    games, total = catalog.paginate(catalog.game_query(db, genre=genre), pagination)
    return game_page(games, total, "No games found for this genre")


@app.get("/games/platforms", tags=["Games"])
def list_platforms(db: Session = Depends(get_db)):
    platforms = catalog.distinct_platforms(db)
    return envelope(platforms, message=None if platforms else "No platforms found")


@app.get("/games/platforms/{platform}", tags=["Games"])
def list_games_by_platform(
    platform: str,
    pagination: Pagination = Depends(get_pagination),
    db: Session = Depends(get_db),
):
    games, total = catalog.paginate(catalog.game_query(db, platform=platform), pagination)
    return game_page(games, total, "No games found for this platform")


@app.get("/games/sort", tags=["Games"])
def list_games_by_release(
    order: Optional[str] = Query(None, description="asc | desc (default desc)"),
    pagination: Pagination = Depends(get_pagination),
    db: Session = Depends(get_db),
):
    """Games with a release date, newest first unless order=asc."""
    query = catalog.game_query(db, sort=catalog.release_year_sort(order))
    games, total = catalog.paginate(query, pagination)
    return game_page(games, total, "No games with a release date")


@app.get("/games/{game_id}", tags=["Games"])
def get_game(game_id: int, db: Session = Depends(get_db)):
    return envelope(schemas.GameResponse.model_validate(get_game_or_404(db, game_id)))


@app.get("/games/{game_id}/genres", tags=["Games"])
def get_game_genres(game_id: int, db: Session = Depends(get_db)):
    genres = [genre.name for genre in get_game_or_404(db, game_id).genres]
    return envelope(genres, message=None if genres else "No genres found for this game")


# --- Reviews ---

@app.get("/games/{game_id}/reviews", tags=["Reviews"])
def list_game_reviews(game_id: int, db: Session = Depends(get_db)):
    get_game_or_404(db, game_id)
    reviews = db.query(Review).filter(Review.game_id == game_id).order_by(Review.id).all()
    return list_envelope(reviews, schemas.ReviewResponse, "This game has no reviews")


@app.post("/games/{game_id}/reviews", status_code=status.HTTP_201_CREATED, tags=["Reviews"])
def create_review(
    game_id: int,
    review_in: schemas.ReviewCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Posts a review by the authenticated user. The game's current name is copied onto the review."""
    game = get_game_or_404(db, game_id)
    review = Review(message=review_in.message, user=current_user, game=game, game_name=game.name or "")
    db.add(review)
    db.commit()
    db.refresh(review)

    REVIEWS_CREATED_COUNT.inc()
    logger.info(f"Review {review.id} posted by user {current_user.id} on game {game.id}")
    return envelope(schemas.ReviewResponse.model_validate(review))


@app.get("/reviews", tags=["Reviews"])
def list_reviews(db: Session = Depends(get_db)):
    reviews = db.query(Review).order_by(Review.id).all()
    return list_envelope(reviews, schemas.ReviewResponse, "There are no reviews")


@app.get("/reviews/{review_id}", tags=["Reviews"])
def get_review(review_id: int, db: Session = Depends(get_db)):
    return envelope(schemas.ReviewResponse.model_validate(get_review_or_404(db, review_id)))


@app.patch("/reviews/{review_id}", tags=["Reviews"])
def update_review(
    review_id: int,
    review_in: schemas.ReviewUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    review = get_review_or_404(db, review_id)
    review.message = review_in.message
    db.commit()
    db.refresh(review)
    logger.info(f"Review {review_id} updated by user {current_user.id}")
    return envelope(schemas.ReviewResponse.model_validate(review))


@app.delete("/reviews/{review_id}", tags=["Reviews"])
def delete_review(
    review_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    review = get_review_or_404(db, review_id)
    deleted = schemas.ReviewResponse.model_validate(review)
    db.delete(review)
    db.commit()
    logger.info(f"Review {review_id} deleted by user {current_user.id}")
    return envelope(deleted, message="Review deleted")


# --- Game Collections ---
# Favorite, played and wanted are independent sets; toggling one never touches the others.

COLLECTION_LABELS = {
    "favorite_games": "favorites",
    "played_games": "played games",
    "wanted_games": "wanted games",
}


def toggle_collection(db: Session, user: User, game_id: int, attribute: str) -> dict:
    """Removes the game from the user's set if present, adds it otherwise."""
    game = get_game_or_404(db, game_id)
    collection = getattr(user, attribute)
    label = COLLECTION_LABELS[attribute]
    if game in collection:
        collection.remove(game)
        message = f"Removed from {label}"
    else:
        collection.append(game)
        message = f"Added to {label}"
    db.commit()
    db.refresh(game)
    logger.info(f"User {user.id}: game {game.id} {message.lower()}")
    return envelope(schemas.GameResponse.model_validate(game), message=message)


def list_collection(user: User, attribute: str) -> dict:
    return list_envelope(getattr(user, attribute), schemas.GameResponse, f"No {COLLECTION_LABELS[attribute]} found")


@app.patch("/games/{game_id}/addfavorite", tags=["Collections"])
def toggle_favorite(game_id: int, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return toggle_collection(db, current_user, game_id, "favorite_games")


@app.patch("/games/{game_id}/addplayed", tags=["Collections"])
def toggle_played(game_id: int, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return toggle_collection(db, current_user, game_id, "played_games")


@app.patch("/games/{game_id}/addwanted", tags=["Collections"])
def toggle_wanted(game_id: int, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return toggle_collection(db, current_user, game_id, "wanted_games")


@app.get("/favoritegames", tags=["Collections"])
def list_favorite_games(current_user: User = Depends(get_current_user)):
    return list_collection(current_user, "favorite_games")


@app.get("/playedgames", tags=["Collections"])
def list_played_games(current_user: User = Depends(get_current_user)):
    return list_collection(current_user, "played_games")


@app.get("/wantedgames", tags=["Collections"])
def list_wanted_games(current_user: User = Depends(get_current_user)):
    return list_collection(current_user, "wanted_games")


# --- Image Generation ---

@app.post("/create", tags=["Images"])
async def create_image(body: schemas.ImagePrompt):
    """Proxies a prompt to the image-generation provider and returns the image URL."""
    url = await generate_image(body.prompt)
    return envelope(schemas.ImageResponse(url=url))


# --- Catalog Ingestion ---

def get_igdb_client_factory() -> Callable:
    """Dependency returning the provider client factory (replaced in tests)."""
    return build_igdb_client


@app.get("/fetch-games", status_code=status.HTTP_202_ACCEPTED, tags=["Ingestion"])
def trigger_ingestion(
    background_tasks: BackgroundTasks,
    x_ingest_key: Optional[str] = Header(None, alias="X-Ingest-Key"),
    client_factory: Callable = Depends(get_igdb_client_factory),
):
    """
    Starts the catalog ingestion loop in the background.
    A trigger while a run is active gets 409.
    """
    if INGEST_API_KEY and x_ingest_key != INGEST_API_KEY:
        logger.warning("Ingestion trigger rejected: invalid X-Ingest-Key.")
        raise Forbidden("Invalid ingestion key")

    if is_running():
        raise Conflict("Catalog ingestion is already running")
    client = client_factory()

    # run_locked_ingestion takes INGESTION_LOCK for the run
    background_tasks.add_task(run_locked_ingestion, SessionLocal, client)
    logger.info("Catalog ingestion scheduled.")
    return envelope(
        schemas.IngestionStatus(running=True, total_games=INGEST_TOTAL_GAMES, batch_size=INGEST_BATCH_SIZE),
        message="Catalog ingestion started",
    )


@app.get("/fetch-games/status", tags=["Ingestion"])
def ingestion_status():
    return envelope(schemas.IngestionStatus(
        running=is_running(), total_games=INGEST_TOTAL_GAMES, batch_size=INGEST_BATCH_SIZE
    ))


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", 8080)))
