"""
Catalog ingestion loop.

Pulls games from the metadata provider in fixed-size batches, enriches each
record with its best rating and stores it. Batches are requested strictly
one after another with a fixed delay in between. Runnable on its own:

    python ingestion.py
"""

import os
import time
import logging
import threading
from typing import Callable, Dict, NamedTuple, Optional

from dotenv import load_dotenv
from prometheus_client import Counter
from sqlalchemy.orm import Session

from igdb_client import IgdbClient, build_igdb_client, normalize_game
from models import Game, Genre, Platform

load_dotenv()

logger = logging.getLogger(__name__)

INGEST_BATCH_SIZE = int(os.getenv("INGEST_BATCH_SIZE", 1))
INGEST_TOTAL_GAMES = int(os.getenv("INGEST_TOTAL_GAMES", 10000))
INGEST_DELAY_SECONDS = float(os.getenv("INGEST_DELAY_SECONDS", 0.25))
INGEST_MAX_RETRIES = int(os.getenv("INGEST_MAX_RETRIES", 5))

GAMES_INGESTED_COUNT = Counter("catalog_games_ingested_total", "Games stored by the ingestion loop")
INGESTION_FAILURE_COUNT = Counter("catalog_ingestion_failures_total", "Ingestion batches that failed")

# Held for the whole duration of a run; one run per process at a time
INGESTION_LOCK = threading.Lock()

STATUS_COMPLETED = "completed"
STATUS_EXHAUSTED = "exhausted"
STATUS_ABORTED = "aborted"


class IngestionResult(NamedTuple):
    total_saved: int
    batches: int
    failures: int
    last_offset: int
    status: str


class _NameCache:
    """Get-or-create for genre/platform rows within one session (autoflush is off)."""

    def __init__(self, db: Session, model):
        self.db = db
        self.model = model
        self.rows: Dict[str, object] = {}

    def get(self, name: str):
        row = self.rows.get(name)
        if row is None:
            row = self.db.query(self.model).filter(self.model.name == name).first()
            if row is None:
                row = self.model(name=name)
                self.db.add(row)
            self.rows[name] = row
        return row


def upsert_game(db: Session, data: Dict, genres: _NameCache, platforms: _NameCache) -> Game:
    """Inserts a game, or updates the existing row with the same provider id."""
    game = None
    if data.get("igdb_id") is not None:
        game = db.query(Game).filter(Game.igdb_id == data["igdb_id"]).first()
    if game is None:
        game = Game()
        db.add(game)

    for field in ("igdb_id", "name", "cover_url", "first_release_date", "summary", "slug",
                  "involved_companies", "rating", "screenshots"):
        setattr(game, field, data.get(field))
    game.genres = [genres.get(name) for name in dict.fromkeys(data.get("genres") or [])]
    game.platforms = [platforms.get(name) for name in dict.fromkeys(data.get("platforms") or [])]
    return game


def fetch_and_save_games(db: Session, client: IgdbClient, offset: int, batch_size: int) -> int:
    """
    Fetches one batch at offset, merges each game's best rating and stores the batch.

    The batch is committed as one unit. On any error it is rolled back and the
    error propagates to the caller.

    Returns:
        Number of records the provider returned for this batch.
    """
    try:
        records = client.fetch_games(offset, batch_size)
        genres = _NameCache(db, Genre)
        platforms = _NameCache(db, Platform)
        for record in records:
            data = normalize_game(record)
            if data["igdb_id"] is not None:
                data["rating"] = client.fetch_best_rating(data["igdb_id"])
            upsert_game(db, data, genres, platforms)
            # Flush per record so a repeated provider id in the batch finds the earlier row
            db.flush()
        db.commit()
    except Exception:
        db.rollback()
        raise

    if records:
        GAMES_INGESTED_COUNT.inc(len(records))
        logger.info(f"Stored {len(records)} game(s) from offset {offset}.")
    return len(records)


def fetch_all_games(
    session_factory: Callable[[], Session],
    client: IgdbClient,
    total_games: int = INGEST_TOTAL_GAMES,
    batch_size: int = INGEST_BATCH_SIZE,
    delay: float = INGEST_DELAY_SECONDS,
    max_retries: int = INGEST_MAX_RETRIES,
    sleep: Callable[[float], None] = time.sleep,
) -> IngestionResult:
    """
    Runs batches until total_games records are stored.

    A failed batch is retried at the same offset after the fixed delay; after
    max_retries consecutive failures the run stops with status "aborted".
    An empty batch means the provider has nothing more and ends the run
    with status "exhausted".
    """
    offset = 0
    total_count = 0
    batches = 0
    failures = 0
    consecutive_failures = 0
    status = STATUS_COMPLETED

    logger.info(f"Starting catalog ingestion: target={total_games}, batch_size={batch_size}, delay={delay}s")

    while total_count < total_games:
        db = session_factory()
        try:
            fetched_count = fetch_and_save_games(db, client, offset, batch_size)
        except Exception as e:
            failures += 1
            consecutive_failures += 1
            INGESTION_FAILURE_COUNT.inc()
            logger.error(
                f"Ingestion batch at offset {offset} failed ({consecutive_failures}/{max_retries}): {e}",
                exc_info=True,
            )
            if consecutive_failures >= max_retries:
                logger.error(f"Giving up on offset {offset} after {consecutive_failures} consecutive failures.")
                status = STATUS_ABORTED
                break
            sleep(delay)
            continue
        finally:
            db.close()

        batches += 1
        consecutive_failures = 0
        if fetched_count == 0:
            logger.info(f"Provider returned no games at offset {offset}; catalog exhausted.")
            status = STATUS_EXHAUSTED
            break

        total_count += fetched_count
        offset += batch_size

        if total_count < total_games:
            sleep(delay)

    logger.info(f"Ingestion finished with status '{status}': {total_count} game(s) saved in {batches} batch(es), {failures} failure(s).")
    return IngestionResult(total_count, batches, failures, offset, status)


def run_locked_ingestion(session_factory: Callable[[], Session], client: IgdbClient, **options) -> Optional[IngestionResult]:
    """
    Background entry point. Takes INGESTION_LOCK for the duration of the run
    and returns None without touching the provider when another run holds it.
    The provider client is closed either way.
    """
    if not INGESTION_LOCK.acquire(blocking=False):
        client.close()
        logger.warning("Catalog ingestion already running; skipping this run.")
        return None
    try:
        return fetch_all_games(session_factory, client, **options)
    finally:
        client.close()
        INGESTION_LOCK.release()


def is_running() -> bool:
    return INGESTION_LOCK.locked()


if __name__ == "__main__":
    from db import SessionLocal, init_db

    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    init_db()
    with build_igdb_client() as igdb:
        result = fetch_all_games(SessionLocal, igdb)
    logger.info(f"Result: {result._asdict()}")
