"""Utility functions for the catalog service: password hashing, access tokens, pagination and the auth check."""

import os
import logging
import secrets
from typing import NamedTuple, Optional

from dotenv import load_dotenv
from fastapi import Depends, Header, Query
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from db import get_db
from errors import Unauthorized, ValidationFailed
from models import User

load_dotenv()

logger = logging.getLogger(__name__)

# --- Security Settings ---
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", 12))
ACCESS_TOKEN_BYTES = 128

pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=BCRYPT_ROUNDS,
)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Checks a plain password against a stored hash."""
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    """Hashes a plain password with bcrypt."""
    return pwd_context.hash(password)


def generate_access_token() -> str:
    """Opaque random token issued once at registration (hex, 256 chars)."""
    return secrets.token_hex(ACCESS_TOKEN_BYTES)


# --- Pagination ---
DEFAULT_PAGE_SIZE = int(os.getenv("DEFAULT_PAGE_SIZE", 20))
MAX_PAGE_SIZE = int(os.getenv("MAX_PAGE_SIZE", 100))


class Pagination(NamedTuple):
    page_hits: int
    page_number: int
    start_index: int
    end_index: int


def make_pagination(page: Optional[int] = None, size: Optional[int] = None) -> Pagination:
    """
    Derives skip/limit offsets from page and size.

    Args:
        page: 1-based page number, defaults to 1.
        size: Records per page, defaults to DEFAULT_PAGE_SIZE.

    Returns:
        Pagination with page_hits, page_number, start_index and end_index.

    Raises:
        ValidationFailed: If page or size is below 1, or size exceeds MAX_PAGE_SIZE.
    """
    page_hits = size if size is not None else DEFAULT_PAGE_SIZE
    page_number = page if page is not None else 1
    if page_number < 1:
        raise ValidationFailed("Query parameter 'page' must be 1 or greater.")
    if page_hits < 1 or page_hits > MAX_PAGE_SIZE:
        raise ValidationFailed(f"Query parameter 'size' must be between 1 and {MAX_PAGE_SIZE}.")
    start_index = (page_number - 1) * page_hits
    return Pagination(page_hits, page_number, start_index, start_index + page_hits)


def get_pagination(
    page: Optional[int] = Query(None, description="1-based page number"),
    size: Optional[int] = Query(None, description="Records per page"),
) -> Pagination:
    """FastAPI dependency wrapper around make_pagination."""
    return make_pagination(page, size)


# --- Authentication ---

def extract_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    token = authorization.strip()
    # The header carries the raw token; a "Bearer " prefix is tolerated
    if token.lower().startswith("bearer "):
        token = token[7:].strip()
    return token or None


def get_current_user(
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_db),
) -> User:
    """
    Resolves the user whose stored access token equals the Authorization header.
    Raises Unauthorized when the header is missing or matches no user.
    """
    token = extract_token(authorization)
    if token is None:
        raise Unauthorized("Please log in")

    user = db.query(User).filter(User.access_token == token).first()
    if user is None:
        logger.warning("Authentication failed: unknown access token.")
        raise Unauthorized("Please log in")
    return user
