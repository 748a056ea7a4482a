# tests/conftest.py
import os

# Configure the service before any of its modules are imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["INGEST_DELAY_SECONDS"] = "0"
os.environ["INGEST_BATCH_SIZE"] = "2"
for var in ("INGEST_API_KEY", "IGDB_CLIENT_ID", "IGDB_ACCESS_TOKEN", "OPENAI_API_KEY"):
    os.environ.pop(var, None)

import itertools
import json
import re

import httpx
import pytest
from fastapi.testclient import TestClient

import main
from db import Base, SessionLocal, engine
from models import Game, Genre, Platform

_counter = itertools.count(1)


@pytest.fixture(autouse=True)
def clean_database():
    """Fresh schema for every test."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    main.app.dependency_overrides.clear()


@pytest.fixture
def client():
    return TestClient(main.app)


@pytest.fixture
def db_session():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def register_user(client):
    """Registers a user and returns the response payload plus ready-made auth headers."""
    def _register(username=None, password="password123"):
        username = username or f"player_{next(_counter)}"
        r = client.post("/users/register", json={"username": username, "password": password})
        assert r.status_code == 201, r.text
        user = r.json()["response"]
        user["password"] = password
        user["headers"] = {"Authorization": user["access_token"]}
        return user
    return _register


@pytest.fixture
def test_user(register_user):
    return register_user("tester")


@pytest.fixture
def make_game(db_session):
    """Inserts a game directly, the way the ingestion loop would store it."""
    def _make(name, genres=(), platforms=(), release=None, rating=0.0, igdb_id=None):
        game = Game(
            igdb_id=igdb_id,
            name=name,
            first_release_date=release,
            rating=rating,
            involved_companies=[],
            screenshots=[],
        )
        for genre_name in genres:
            genre = db_session.query(Genre).filter(Genre.name == genre_name).first() or Genre(name=genre_name)
            game.genres.append(genre)
        for platform_name in platforms:
            platform = db_session.query(Platform).filter(Platform.name == platform_name).first() or Platform(name=platform_name)
            game.platforms.append(platform)
        db_session.add(game)
        db_session.commit()
        db_session.refresh(game)
        return game
    return _make


# --- Simulated IGDB provider ---

def igdb_record(igdb_id, name, genres=("Arcade",), platforms=("Arcade",)):
    return {
        "id": igdb_id,
        "name": name,
        "slug": name.lower().replace(" ", "-"),
        "summary": f"{name} summary",
        "first_release_date": 300000000 + igdb_id,
        "cover": {"id": igdb_id, "url": f"//images.igdb.com/cover/{igdb_id}.jpg"},
        "genres": [{"id": i, "name": g} for i, g in enumerate(genres)],
        "platforms": [{"id": i, "name": p} for i, p in enumerate(platforms)],
        "involved_companies": [{"id": 1, "company": {"id": 7, "name": "Namco"}}],
        "screenshots": [{"id": 1, "url": f"//images.igdb.com/shot/{igdb_id}.jpg"}],
        "rating": 10.0,
    }


class FakeIgdb:
    """
    In-memory provider behind an httpx.MockTransport.
    fail_offsets maps an offset to how many times its /games request should fail.
    """

    def __init__(self, records, ratings=None, fail_offsets=None):
        self.records = records
        self.ratings = ratings or {}
        self.fail_offsets = dict(fail_offsets or {})
        self.game_requests = []
        self.rating_requests = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = request.content.decode()
        if request.url.path.endswith("/games"):
            offset = int(re.search(r"offset (\d+);", body).group(1))
            limit = int(re.search(r"limit (\d+);", body).group(1))
            self.game_requests.append(offset)
            if self.fail_offsets.get(offset, 0) > 0:
                self.fail_offsets[offset] -= 1
                return httpx.Response(500, text="provider error")
            return httpx.Response(200, content=json.dumps(self.records[offset:offset + limit]))
        if request.url.path.endswith("/game_ratings"):
            game_id = int(re.search(r"where game = (\d+);", body).group(1))
            self.rating_requests.append(game_id)
            rating = self.ratings.get(game_id)
            return httpx.Response(200, json=[] if rating is None else [{"id": 1, "rating": rating}])
        return httpx.Response(404, json={"message": "unknown endpoint"})

    def transport(self):
        return httpx.MockTransport(self.handler)
