"""HTTP client for the IGDB game-metadata API used to populate the catalog."""

import os
import logging
from typing import Dict, List, Optional

import httpx
from dotenv import load_dotenv

from errors import ServiceUnavailable, UpstreamError

load_dotenv()

logger = logging.getLogger(__name__)

IGDB_BASE_URL = os.getenv("IGDB_BASE_URL", "https://api.igdb.com/v4")
IGDB_CLIENT_ID = os.getenv("IGDB_CLIENT_ID")
IGDB_ACCESS_TOKEN = os.getenv("IGDB_ACCESS_TOKEN")
IGDB_PLATFORM_ID = int(os.getenv("IGDB_PLATFORM_ID", 52))
IGDB_TIMEOUT = float(os.getenv("IGDB_TIMEOUT", 15.0))

if not IGDB_CLIENT_ID or not IGDB_ACCESS_TOKEN:
    logger.error("IGDB_CLIENT_ID / IGDB_ACCESS_TOKEN are not set. Catalog ingestion will be unavailable.")

GAME_FIELDS = (
    "name, cover.url, first_release_date, platforms.name, genres.name, summary, slug, "
    "involved_companies.company.name, rating, screenshots.url"
)


class IgdbClient:
    """
    Thin wrapper over the IGDB v4 endpoints.
    Queries are Apicalypse text bodies; every failure is raised as UpstreamError.
    """

    def __init__(
        self,
        client_id: str,
        access_token: str,
        base_url: str = IGDB_BASE_URL,
        platform_id: Optional[int] = IGDB_PLATFORM_ID,
        transport: Optional[httpx.BaseTransport] = None,
        timeout: float = IGDB_TIMEOUT,
    ):
        self.platform_id = platform_id
        self._client = httpx.Client(
            base_url=base_url,
            headers={
                "Client-ID": client_id,
                "Authorization": f"Bearer {access_token}",
                "Accept": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    def close(self):
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def _post(self, endpoint: str, body: str) -> List[Dict]:
        try:
            response = self._client.post(endpoint, content=body)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as exc:
            logger.error(f"IGDB {endpoint} returned {exc.response.status_code}: {exc.response.text[:200]}")
            raise UpstreamError(f"IGDB {endpoint} returned status {exc.response.status_code}.")
        except httpx.RequestError as exc:
            logger.error(f"IGDB {endpoint} request failed: {exc}")
            raise UpstreamError(f"IGDB {endpoint} is unreachable.")
        except ValueError as exc:
            logger.error(f"IGDB {endpoint} returned invalid JSON: {exc}")
            raise UpstreamError(f"IGDB {endpoint} returned an invalid response.")

    def fetch_games(self, offset: int, limit: int) -> List[Dict]:
        """One page of raw game records starting at offset."""
        where = f" where platforms = {self.platform_id};" if self.platform_id is not None else ""
        body = f"fields {GAME_FIELDS};{where} limit {limit}; offset {offset};"
        return self._post("/games", body)

    def fetch_best_rating(self, game_id: int) -> float:
        """Highest rating recorded for a game, or 0 when there is none."""
        body = f"fields rating; where game = {game_id}; limit 1; sort rating desc;"
        ratings = self._post("/game_ratings", body)
        if ratings and ratings[0].get("rating") is not None:
            return float(ratings[0]["rating"])
        return 0.0


def build_igdb_client() -> IgdbClient:
    """Builds a client from the environment; raises ServiceUnavailable when credentials are missing."""
    if not IGDB_CLIENT_ID or not IGDB_ACCESS_TOKEN:
        raise ServiceUnavailable("Game metadata provider is not configured.")
    return IgdbClient(IGDB_CLIENT_ID, IGDB_ACCESS_TOKEN)


def normalize_game(record: Dict) -> Dict:
    """
    Flattens a raw IGDB record into the column shape of the games table.

    Nested objects ({"name": ...}, {"url": ...}, {"company": {"name": ...}})
    become plain lists of strings; missing fields become None or [].
    """
    cover = record.get("cover") or {}
    return {
        "igdb_id": record.get("id"),
        "name": record.get("name"),
        "cover_url": cover.get("url") if isinstance(cover, dict) else None,
        "first_release_date": record.get("first_release_date"),
        "genres": [g["name"] for g in record.get("genres") or [] if isinstance(g, dict) and g.get("name")],
        "platforms": [p["name"] for p in record.get("platforms") or [] if isinstance(p, dict) and p.get("name")],
        "summary": record.get("summary"),
        "slug": record.get("slug"),
        "involved_companies": [
            c["company"]["name"]
            for c in record.get("involved_companies") or []
            if isinstance(c, dict) and isinstance(c.get("company"), dict) and c["company"].get("name")
        ],
        "rating": float(record.get("rating") or 0),
        "screenshots": [s["url"] for s in record.get("screenshots") or [] if isinstance(s, dict) and s.get("url")],
    }
