"""Project create/edit actions, gated by the quota and edit-lock tracker.

Each action runs in one database transaction: the quota check, the project
write and the usage event that pays for it commit together or not at all.
"""

import hashlib
import uuid
from collections.abc import Mapping
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from qrstudio import db
from qrstudio.encoder import normalize_url
from qrstudio.errors import (
    AccessDenied,
    DbWriteError,
    EditLockActive,
    QuotaExceeded,
    StorageWriteError,
    UpstreamFetchError,
    ValidationError,
)
from qrstudio.logging import audit, get_logger, trace, warn
from qrstudio.logo import ALLOWED_LOGO_TYPES, load_logo
from qrstudio.models import Project
from qrstudio.quota import Decision, Plan, QuotaTracker
from qrstudio.settings import StudioSettings
from qrstudio.storage import ObjectStore
from qrstudio.templates import TEMPLATE_VERSION, TemplateDefinition, lookup

log = get_logger("projects")

EDITABLE_FIELDS = ("business_name", "tagline", "url", "template_id")


def logo_path_for(owner_id: str, project_id: str, logo: bytes, ext: str) -> str:
    """Content-addressed: a replaced logo gets a new path."""
    digest = hashlib.sha256(logo).hexdigest()[:12]
    return f"logos/{owner_id}/{project_id}-{digest}.{ext}"


def _required_text(value, name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{name} is required")
    return value.strip()


def _optional_text(value) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError("tagline must be text")
    return value.strip() or None


class ProjectService:
    def __init__(self, settings: StudioSettings, sessions: sessionmaker[Session],
                 store: ObjectStore, quota: QuotaTracker):
        self.settings = settings
        self.sessions = sessions
        self.store = store
        self.quota = quota

    # -- logo -------------------------------------------------------------

    def _check_logo(self, template: TemplateDefinition, logo: bytes, content_type: str | None) -> str:
        """Validate an uploaded logo; returns its file extension."""
        if not template.allow_logo:
            raise ValidationError(f"template {template.id} does not allow a logo")
        ext = ALLOWED_LOGO_TYPES.get((content_type or "").lower())
        if ext is None:
            raise ValidationError(f"unsupported logo type {content_type!r}")
        if len(logo) > self.settings.max_logo_bytes:
            raise ValidationError(f"logo exceeds {self.settings.max_logo_bytes} bytes")
        try:
            load_logo(logo)
        except UpstreamFetchError as e:
            raise ValidationError("logo is not a readable image") from e
        return ext

    def _store_logo(self, owner_id: str, project_id: str, logo: bytes, content_type: str, ext: str) -> str | None:
        path = logo_path_for(owner_id, project_id, logo, ext)
        try:
            self.store.upload(self.settings.logo_bucket, path, logo, content_type)
        except StorageWriteError as e:
            warn("logo.upload_failed", logger=log, owner=owner_id, project=project_id, reason=e.message)
            return None
        return path

    # -- reads ------------------------------------------------------------

    def _owned_row(self, session: Session, owner_id: str, project_id: str) -> db.ProjectRow:
        row = db.get_project(session, project_id)
        if row is None or row.user_id != owner_id:
            raise AccessDenied(f"project {project_id} not found")
        return row

    def get(self, owner_id: str, project_id: str) -> Project:
        with self.sessions() as session:
            return Project.from_row(self._owned_row(session, owner_id, project_id))

    def list_owned(self, owner_id: str) -> list[Project]:
        with self.sessions() as session:
            return [Project.from_row(row) for row in db.list_projects(session, owner_id)]

    def edit_status(self, owner_id: str, project_id: str) -> Decision:
        with self.sessions() as session:
            self._owned_row(session, owner_id, project_id)
            return self.quota.edit_decision(session, owner_id, project_id)

    # -- actions ----------------------------------------------------------

    @trace
    def create(self, owner_id: str, plan: Plan, business_name: str, url: str, template_id: str,
               tagline: str | None = None, logo: bytes | None = None,
               logo_content_type: str | None = None, now: datetime | None = None) -> Project:
        """Validate, authorize against the plan, then persist project + create event."""
        template = lookup(template_id, TEMPLATE_VERSION)
        name = _required_text(business_name, "business_name")
        target = normalize_url(url)
        tag = _optional_text(tagline)
        ext = self._check_logo(template, logo, logo_content_type) if logo else None

        project_id = str(uuid.uuid4())
        at = db.as_utc(now or self.quota.clock())
        try:
            with self.sessions.begin() as session:
                decision = self.quota.create_decision(session, owner_id, plan, at)
                if not decision.allowed:
                    raise QuotaExceeded(decision)
                logo_path = self._store_logo(owner_id, project_id, logo, logo_content_type, ext) if ext else None
                session.add(db.ProjectRow(
                    id=project_id, user_id=owner_id, business_name=name, tagline=tag, url=target,
                    template_id=template.id, template_version=template.version,
                    logo_path=logo_path, created_at=at, updated_at=at,
                ))
                self.quota.record(session, owner_id, db.EVENT_CREATE, project_id, at=at)
        except SQLAlchemyError as e:
            raise DbWriteError(f"project insert failed: {e}") from e

        audit("project.created", logger=log, owner=owner_id, project=project_id,
              template=template.id, plan=plan.value, has_logo=bool(ext))
        return self.get(owner_id, project_id)

    @trace
    def edit(self, owner_id: str, project_id: str, changes: Mapping, logo: bytes | None = None,
             logo_content_type: str | None = None, now: datetime | None = None) -> Project:
        """Apply the one permitted edit; a second edit raises EditLockActive."""
        unknown = sorted(set(changes) - set(EDITABLE_FIELDS))
        if unknown:
            raise ValidationError(f"fields not editable: {', '.join(unknown)}")
        if not changes and not logo:
            raise ValidationError("nothing to edit")

        at = db.as_utc(now or self.quota.clock())
        try:
            with self.sessions.begin() as session:
                row = self._owned_row(session, owner_id, project_id)
                decision = self.quota.edit_decision(session, owner_id, project_id)
                if not decision.allowed:
                    raise EditLockActive(project_id, decision)

                template = lookup(changes.get("template_id", row.template_id), TEMPLATE_VERSION)
                if "business_name" in changes:
                    row.business_name = _required_text(changes["business_name"], "business_name")
                if "tagline" in changes:
                    row.tagline = _optional_text(changes["tagline"])
                if "url" in changes:
                    row.url = normalize_url(changes["url"])
                row.template_id = template.id
                row.template_version = template.version
                if logo:
                    ext = self._check_logo(template, logo, logo_content_type)
                    row.logo_path = self._store_logo(owner_id, project_id, logo, logo_content_type, ext) or row.logo_path
                row.updated_at = at
                self.quota.record(session, owner_id, db.EVENT_EDIT, project_id, at=at)
        except SQLAlchemyError as e:
            raise DbWriteError(f"project update failed: {e}") from e

        audit("project.edited", logger=log, owner=owner_id, project=project_id, fields=sorted(changes))
        return self.get(owner_id, project_id)
