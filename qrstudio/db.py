"""Relational store: projects, append-only usage events, print-pack manifests.

Rules:
  • Every query helper takes the caller's Session; the caller owns the
    transaction, so a project and its usage event commit together.
  • Timestamps are written in UTC and read back as aware UTC datetimes
    (SQLite drops tzinfo on the way in).
  • qr_usage_events is append-only: no helper updates or deletes it.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    func,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

EVENT_CREATE = "create"
EVENT_EDIT = "edit"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Shared declarative base for all qrstudio tables."""


class ProjectRow(Base):
    __tablename__ = "qr_projects"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    business_name: Mapped[str] = mapped_column(Text, nullable=False)
    tagline: Mapped[str | None] = mapped_column(Text, nullable=True)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    template_id: Mapped[str] = mapped_column(String(8), nullable=False)
    template_version: Mapped[int] = mapped_column(Integer, nullable=False)
    logo_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<ProjectRow id={self.id:.8} template={self.template_id}v{self.template_version}>"


class UsageEventRow(Base):
    __tablename__ = "qr_usage_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    project_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    event: Mapped[str] = mapped_column(String(16), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("event IN ('create', 'edit')", name="ck_usage_event_kind"),
        Index("ix_usage_events_user_event_created", "user_id", "event", "created_at"),
        Index("ix_usage_events_project_event", "project_id", "event"),
    )


class PrintPackAssetRow(Base):
    __tablename__ = "qr_print_pack_assets"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    project_id: Mapped[str] = mapped_column(String(36), nullable=False)
    generation_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    spec: Mapped[dict] = mapped_column(JSON, nullable=False)
    files: Mapped[dict] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "project_id", "generation_hash", name="uq_print_pack_generation"),
    )


# ---------------------------------------------------------------------------
# Engine & sessions
# ---------------------------------------------------------------------------

def make_engine(database_url: str, echo: bool = False) -> Engine:
    """Engine for any SQLAlchemy URL; in-memory SQLite shares one connection."""
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        return create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(database_url, echo=echo, pool_pre_ping=True)


def make_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, expire_on_commit=False)


def init_schema(engine: Engine) -> None:
    Base.metadata.create_all(engine)


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------

def get_project(session: Session, project_id: str) -> ProjectRow | None:
    return session.get(ProjectRow, project_id)


def list_projects(session: Session, user_id: str) -> list[ProjectRow]:
    stmt = select(ProjectRow).where(ProjectRow.user_id == user_id).order_by(ProjectRow.created_at.desc())
    return list(session.scalars(stmt))


# ---------------------------------------------------------------------------
# Usage events (append-only)
# ---------------------------------------------------------------------------

def append_event(session: Session, user_id: str, event: str, project_id: str | None,
                 at: datetime | None = None) -> UsageEventRow:
    row = UsageEventRow(
        user_id=user_id,
        project_id=project_id,
        event=event,
        created_at=as_utc(at or utcnow()),
    )
    session.add(row)
    return row


def count_events(session: Session, user_id: str, event: str, project_id: str | None = None,
                 since: datetime | None = None) -> int:
    stmt = select(func.count()).select_from(UsageEventRow).where(
        UsageEventRow.user_id == user_id, UsageEventRow.event == event,
    )
    if project_id is not None:
        stmt = stmt.where(UsageEventRow.project_id == project_id)
    if since is not None:
        stmt = stmt.where(UsageEventRow.created_at >= as_utc(since))
    return int(session.scalar(stmt) or 0)


def event_times(session: Session, user_id: str, event: str, since: datetime | None = None,
                project_id: str | None = None) -> list[datetime]:
    """Ascending timestamps of matching events."""
    stmt = select(UsageEventRow.created_at).where(
        UsageEventRow.user_id == user_id, UsageEventRow.event == event,
    )
    if project_id is not None:
        stmt = stmt.where(UsageEventRow.project_id == project_id)
    if since is not None:
        stmt = stmt.where(UsageEventRow.created_at >= as_utc(since))
    stmt = stmt.order_by(UsageEventRow.created_at.asc())
    return [as_utc(t) for t in session.scalars(stmt)]


# ---------------------------------------------------------------------------
# Print-pack manifests
# ---------------------------------------------------------------------------

def find_asset(session: Session, user_id: str, project_id: str, generation_hash: str) -> PrintPackAssetRow | None:
    stmt = select(PrintPackAssetRow).where(
        PrintPackAssetRow.user_id == user_id,
        PrintPackAssetRow.project_id == project_id,
        PrintPackAssetRow.generation_hash == generation_hash,
    ).limit(1)
    return session.scalars(stmt).first()


def get_asset(session: Session, asset_id: str, user_id: str) -> PrintPackAssetRow | None:
    row = session.get(PrintPackAssetRow, asset_id)
    if row is None or row.user_id != user_id:
        return None
    return row


def latest_asset(session: Session, user_id: str, project_id: str) -> PrintPackAssetRow | None:
    stmt = (
        select(PrintPackAssetRow)
        .where(PrintPackAssetRow.user_id == user_id, PrintPackAssetRow.project_id == project_id)
        .order_by(PrintPackAssetRow.updated_at.desc())
        .limit(1)
    )
    return session.scalars(stmt).first()


def update_asset_files(session: Session, user_id: str, project_id: str, generation_hash: str,
                       spec: dict, files: dict) -> str | None:
    """Idempotent update of the row keyed by (user, project, hash); returns its id."""
    row = find_asset(session, user_id, project_id, generation_hash)
    if row is None:
        return None
    row.spec = dict(spec)
    row.files = dict(files)
    row.updated_at = utcnow()
    return row.id
