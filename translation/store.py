"""
Durable translation store (SQLAlchemy)

One row per Sefaria reference. Saving a reference that already exists
overwrites it - that only happens on an explicit re-translate.
"""

import logging
import threading
from contextlib import contextmanager, nullcontext
from datetime import datetime, timezone
from typing import Dict, Iterable, Optional

from sqlalchemy import JSON, DateTime, Float, Integer, String, Text, create_engine, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from ingestion.schema import TranslationRecord
from utils.errors import PersistenceError

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class Translation(Base):
    """Cached translation of one reference"""

    __tablename__ = "translations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    sefaria_ref: Mapped[str] = mapped_column(String(512), unique=True, nullable=False, index=True)
    hebrew_text: Mapped[str] = mapped_column(Text, nullable=False)
    english_translation: Mapped[str] = mapped_column(Text, nullable=False)
    model_used: Mapped[str] = mapped_column(String(256), nullable=False)
    request_cost: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    # "metadata" is reserved on declarative classes
    meta: Mapped[Optional[dict]] = mapped_column("metadata", JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def to_record(self) -> TranslationRecord:
        return TranslationRecord(
            reference=self.sefaria_ref,
            source_text=self.hebrew_text,
            translated_text=self.english_translation,
            model_identifier=self.model_used,
            cost=self.request_cost or 0.0,
            created_at=self.created_at,
            metadata=self.meta,
        )


class TranslationStore:
    """Reads and writes translation records"""

    def __init__(self, database_url: str = "sqlite:///translations.db"):
        """
        Args:
            database_url: SQLAlchemy URL; "sqlite://" gives an in-memory store
        """
        kwargs = {}
        self._lock = nullcontext()
        if database_url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            if database_url in ("sqlite://", "sqlite:///:memory:"):
                # keep a single connection so the in-memory database survives
                kwargs["poolclass"] = StaticPool
                # that connection is shared by the worker threads running store calls
                self._lock = threading.Lock()
        self.engine = create_engine(database_url, **kwargs)
        self._sessions = sessionmaker(bind=self.engine, expire_on_commit=False)
        Base.metadata.create_all(self.engine)

    @contextmanager
    def _session(self):
        with self._lock:
            with self._sessions() as session:
                yield session

    def get(self, reference: str) -> Optional[TranslationRecord]:
        """
        Stored translation of a reference, or None

        Raises:
            PersistenceError: If the database cannot be read
        """
        try:
            with self._session() as session:
                row = session.scalars(
                    select(Translation).where(Translation.sefaria_ref == reference)
                ).first()
                return row.to_record() if row else None
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not read translation for {reference}") from e

    def get_many(self, references: Iterable[str]) -> Dict[str, TranslationRecord]:
        """Stored translations of several references, keyed by reference"""
        references = list(references)
        if not references:
            return {}
        try:
            with self._session() as session:
                rows = session.scalars(
                    select(Translation).where(Translation.sefaria_ref.in_(references))
                ).all()
                return {row.sefaria_ref: row.to_record() for row in rows}
        except SQLAlchemyError as e:
            raise PersistenceError("Could not read translations") from e

    def save(self, record: TranslationRecord) -> TranslationRecord:
        """
        Inserts the record, or overwrites the existing row for its reference

        Raises:
            PersistenceError: If the database write fails
        """
        try:
            with self._session() as session:
                row = session.scalars(
                    select(Translation).where(Translation.sefaria_ref == record.reference)
                ).first()
                if row is None:
                    row = Translation(sefaria_ref=record.reference)
                    session.add(row)
                else:
                    row.updated_at = datetime.now(timezone.utc)
                row.hebrew_text = record.source_text
                row.english_translation = record.translated_text
                row.model_used = record.model_identifier
                row.request_cost = record.cost
                row.meta = record.metadata
                session.commit()
                return row.to_record()
        except SQLAlchemyError as e:
            logger.warning("Error storing translation for %s: %s", record.reference, e)
            raise PersistenceError(f"Could not store translation for {record.reference}") from e

    def count(self) -> int:
        with self._session() as session:
            return session.scalar(select(func.count()).select_from(Translation)) or 0

    def ping(self) -> bool:
        """True when the database answers"""
        try:
            self.count()
            return True
        except SQLAlchemyError:
            return False
