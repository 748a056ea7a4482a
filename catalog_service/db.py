"""Database connection setup for the catalog service using SQLAlchemy."""

import os
import logging
from sqlalchemy import create_engine, exc
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool
from dotenv import load_dotenv

from errors import ServiceError, ServiceUnavailable

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

load_dotenv()


def build_database_url() -> str:
    """
    Resolves the SQLAlchemy URL.
    DATABASE_URL wins; otherwise a MariaDB URL is built from DB_USER/DB_PASS/DB_HOST/DB_NAME;
    otherwise a local SQLite file is used for development.
    """
    url = os.getenv("DATABASE_URL")
    if url:
        return url

    db_vars = {"DB_USER", "DB_PASS", "DB_HOST", "DB_NAME"}
    missing_vars = db_vars - set(os.environ)
    if not missing_vars:
        return f"mysql+pymysql://{os.getenv('DB_USER')}:{os.getenv('DB_PASS')}@{os.getenv('DB_HOST')}/{os.getenv('DB_NAME')}"
    if len(missing_vars) < len(db_vars):
        logger.warning(f"Incomplete database settings, missing: {', '.join(sorted(missing_vars))}. Falling back to SQLite.")
    return "sqlite:///./catalog.db"


SQLALCHEMY_DATABASE_URL = build_database_url()


def create_db_engine(url: str):
    if url.startswith("sqlite"):
        # In-memory databases must share one connection across threads
        if url in ("sqlite://", "sqlite:///:memory:"):
            return create_engine(url, connect_args={"check_same_thread": False}, poolclass=StaticPool)
        return create_engine(url, connect_args={"check_same_thread": False})
    # pool_pre_ping drops connections the server closed while idle
    return create_engine(url, pool_pre_ping=True)


engine = create_db_engine(SQLALCHEMY_DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def init_db():
    """Creates missing tables. Models must be imported before this runs."""
    import models  # noqa: F401
    try:
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables verified/created.")
    except exc.SQLAlchemyError as e:
        logger.error(f"Error initializing database: {e}", exc_info=True)


def get_db():
    """
    FastAPI dependency that yields a database session.
    Rolls back on database errors and always closes the session.
    """
    db = SessionLocal()
    try:
        yield db
    except exc.OperationalError as e:
        logger.error(f"Database unavailable during request: {e}", exc_info=True)
        db.rollback()
        raise ServiceUnavailable("Database service unavailable.")
    except exc.SQLAlchemyError as e:
        logger.error(f"Database error during request: {e}", exc_info=True)
        db.rollback()
        raise ServiceError("Internal database error.")
    finally:
        db.close()
