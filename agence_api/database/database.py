from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import NullPool
from agence_api.core.config import settings
import logging

logger = logging.getLogger(__name__)

_engine_options = {"pool_pre_ping": True, "echo": settings.DEBUG}
if settings.ENVIRONMENT == "test":
    _engine_options["poolclass"] = NullPool
else:
    _engine_options.update(pool_size=10, max_overflow=20)

engine = create_engine(settings.database_url, **_engine_options)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Ouvre une session de base de données par requête."""
    db = SessionLocal()
    try:
        yield db
    except Exception as e:
        logger.error(f"Database error: {e}")
        db.rollback()
        raise
    finally:
        db.close()

