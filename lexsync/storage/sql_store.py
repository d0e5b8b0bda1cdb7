"""SQLAlchemy 2.x implementation of the `legal_documents` metadata store.

Works against any SQLAlchemy URL; SQLite is the local default and what the
test suite runs on. Production deployments on Supabase use
`supabase_store.SupabaseMetadataStore` instead.
"""

import logging
import os
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, DateTime, String, Text, create_engine, make_url, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker

from lexsync.core.errors import PersistenceFailure
from lexsync.models.document import DocumentRecord, DocumentStatus, PiiStatus, check_transition, utc_now
from lexsync.storage.base import MetadataStore

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class LegalDocumentRow(Base):
    __tablename__ = "legal_documents"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str | None] = mapped_column(String(36), index=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    file_path: Mapped[str] = mapped_column(String(1024), nullable=False, unique=True)
    file_type: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=DocumentStatus.processing.value, index=True)
    pii_status: Mapped[str] = mapped_column(String(32), nullable=False, default=PiiStatus.pending.value)
    extracted_text: Mapped[str | None] = mapped_column(Text)
    summary: Mapped[str | None] = mapped_column(Text)
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utc_now)


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _to_record(row: LegalDocumentRow) -> DocumentRecord:
    return DocumentRecord(
        id=row.id,
        user_id=row.user_id,
        title=row.title,
        file_name=row.file_name,
        file_path=row.file_path,
        file_type=row.file_type,
        status=DocumentStatus(row.status),
        pii_status=PiiStatus(row.pii_status),
        extracted_text=row.extracted_text,
        summary=row.summary,
        metadata=dict(row.metadata_ or {}),
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


_UPDATABLE = {"title", "status", "pii_status", "extracted_text", "summary", "metadata", "file_type"}


class SqlMetadataStore(MetadataStore):
    def __init__(self, database_url: str, owner_id: Optional[str] = None, echo: bool = False):
        url = make_url(database_url)
        if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
            os.makedirs(os.path.dirname(os.path.abspath(url.database)), exist_ok=True)
        connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
        self.engine = create_engine(database_url, echo=echo, future=True, connect_args=connect_args)
        self.session_factory = sessionmaker(bind=self.engine, expire_on_commit=False, class_=Session)
        self.owner_id = owner_id
        Base.metadata.create_all(self.engine)

    def insert(self, record: DocumentRecord) -> DocumentRecord:
        row = LegalDocumentRow(
            id=record.id or str(uuid.uuid4()),
            user_id=record.user_id or self.owner_id,
            title=record.title,
            file_name=record.file_name,
            file_path=record.file_path,
            file_type=record.file_type,
            status=DocumentStatus(record.status).value,
            pii_status=PiiStatus(record.pii_status).value,
            extracted_text=record.extracted_text,
            summary=record.summary,
            metadata_=record.metadata,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )
        try:
            with self.session_factory.begin() as session:
                session.add(row)
        except IntegrityError as e:
            raise PersistenceFailure(f"Insert rejected for {record.file_path}: {e.orig}") from e
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"Metadata store unavailable: {e}") from e
        return _to_record(row)

    def get(self, doc_id: str) -> Optional[DocumentRecord]:
        try:
            with self.session_factory() as session:
                row = session.get(LegalDocumentRow, doc_id)
                return _to_record(row) if row else None
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"Metadata store unavailable: {e}") from e

    def find_by_file_name(self, file_name: str) -> Optional[DocumentRecord]:
        stmt = select(LegalDocumentRow).where(LegalDocumentRow.file_name == file_name).limit(1)
        try:
            with self.session_factory() as session:
                row = session.scalars(stmt).first()
                return _to_record(row) if row else None
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"Metadata store unavailable: {e}") from e

    def list_records(self, status: Optional[DocumentStatus] = None) -> List[DocumentRecord]:
        stmt = select(LegalDocumentRow).order_by(LegalDocumentRow.created_at)
        if status is not None:
            stmt = stmt.where(LegalDocumentRow.status == DocumentStatus(status).value)
        try:
            with self.session_factory() as session:
                return [_to_record(row) for row in session.scalars(stmt)]
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"Metadata store unavailable: {e}") from e

    def update(self, doc_id: str, fields: Dict[str, Any]) -> DocumentRecord:
        unknown = set(fields) - _UPDATABLE
        if unknown:
            raise ValueError(f"Cannot update column(s): {', '.join(sorted(unknown))}")
        try:
            with self.session_factory.begin() as session:
                row = session.get(LegalDocumentRow, doc_id, with_for_update=True)
                if row is None:
                    raise PersistenceFailure(f"Document {doc_id} not found")
                for name, value in fields.items():
                    if name == "status":
                        check_transition(DocumentStatus(row.status), DocumentStatus(value))
                        row.status = DocumentStatus(value).value
                    elif name == "pii_status":
                        row.pii_status = PiiStatus(value).value
                    elif name == "metadata":
                        row.metadata_ = dict(value)
                    else:
                        setattr(row, name, value)
                row.updated_at = utc_now()
                return _to_record(row)
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"Metadata store unavailable: {e}") from e
