# ingest/db.py
import datetime
from typing import List, Optional

from pydantic import ValidationError
from sqlalchemy import create_engine, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from ingest.config import Settings
from ingest.monitoring import logger
from ingest.schemas import RequestMeta, StoredRequestOut

Base = declarative_base()


class StorageError(Exception):
    """Connection or query failure in the storage layer."""


def _detail(exc: SQLAlchemyError) -> str:
    # prefer the raw driver message over SQLAlchemy's decorated one
    orig = getattr(exc, "orig", None)
    return str(orig) if orig is not None else str(exc)


def make_engine(settings: Settings) -> Engine:
    return create_engine(
        settings.sqlalchemy_url(),
        connect_args=settings.connect_args(),
        pool_pre_ping=True,
    )


class Storage:
    """Pooled access to the ``requests`` table."""

    def __init__(self, engine: Engine):
        self.engine = engine
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    @classmethod
    def from_settings(cls, settings: Settings) -> "Storage":
        return cls(make_engine(settings))

    def ensure_schema(self) -> None:
        """Create the table if it does not exist; a no-op otherwise."""
        import ingest.models  # noqa: F401  registers the table on Base.metadata
        try:
            Base.metadata.create_all(bind=self.engine)
        except SQLAlchemyError as e:
            raise StorageError(_detail(e)) from e

    def insert(self, backend_name: str, meta: RequestMeta, image: Optional[bytes]) -> None:
        from ingest.models import StoredRequest

        row = StoredRequest(backend_name=backend_name, meta=meta.model_dump(), image=image)
        db: Session = self.SessionLocal()
        try:
            db.add(row)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise StorageError(_detail(e)) from e
        finally:
            db.close()

    def list_recent(self, limit: int) -> List[StoredRequestOut]:
        """Return the ``limit`` newest rows, newest first, without image bytes."""
        from ingest.models import StoredRequest

        stmt = (
            select(StoredRequest.id, StoredRequest.backend_name, StoredRequest.ts, StoredRequest.meta)
            .order_by(StoredRequest.ts.desc(), StoredRequest.id.desc())
            .limit(limit)
        )
        db: Session = self.SessionLocal()
        try:
            rows = db.execute(stmt).all()
        except SQLAlchemyError as e:
            raise StorageError(_detail(e)) from e
        finally:
            db.close()
        try:
            return [StoredRequestOut.model_validate(r._asdict()) for r in rows]
        except ValidationError as e:
            # rows written by other instances must still fit RequestMeta
            raise StorageError(f"Unreadable row in requests: {e}") from e

    def ping(self) -> datetime.datetime:
        """Return the storage server's current time."""
        try:
            with self.engine.connect() as conn:
                return conn.execute(select(func.now())).scalar_one()
        except SQLAlchemyError as e:
            raise StorageError(_detail(e)) from e

    def dispose(self) -> None:
        self.engine.dispose()
        logger.info("Storage pool disposed")
