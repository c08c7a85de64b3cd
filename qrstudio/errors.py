"""Error taxonomy for the QR Studio rendering engine.

User-facing errors (validation, quota, edit lock) carry a message that is
safe to show verbatim. Upstream, storage and database errors carry internal
detail for the logs only; the HTTP layer replaces them with a generic
``generation_failed`` response.
"""

from datetime import datetime


class StudioError(Exception):
    """Base class for every error raised by qrstudio."""

    code = "studio_error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)
        self.message = message or self.code


class ValidationError(StudioError):
    """Rejected input: nothing has been rendered or written."""

    code = "validation_error"


class TemplateNotFound(ValidationError):
    code = "invalid_template"

    def __init__(self, template_id: str, version: int):
        super().__init__(f"unsupported template {template_id!r} version {version!r}")
        self.template_id = template_id
        self.version = version


class AccessDenied(StudioError):
    """Project missing or owned by someone else (indistinguishable to callers)."""

    code = "not_found"


class UpstreamFetchError(StudioError):
    """Signed URL creation, download, timeout, or undecodable bytes."""

    code = "upstream_fetch_failed"


class StorageWriteError(StudioError):
    code = "storage_upload_failed"


class DbWriteError(StudioError):
    code = "db_write_failed"


class FormatRenderError(StudioError):
    """One print format failed; sibling formats are unaffected."""

    code = "format_render_failed"

    def __init__(self, format_key: str, message: str = ""):
        super().__init__(message or f"rendering {format_key} failed")
        self.format_key = format_key


class GenerationFailed(StudioError):
    code = "generation_failed"


class QuotaExceeded(StudioError):
    """Creation blocked by the caller's plan; carries the quota decision."""

    code = "quota_exceeded"

    def __init__(self, decision):
        reasons = ", ".join(r.value for r in decision.reasons)
        super().__init__(f"creation limit reached ({reasons})")
        self.decision = decision

    @property
    def unlock_at(self) -> datetime | None:
        return self.decision.unlock_at


class EditLockActive(StudioError):
    code = "edit_locked"

    def __init__(self, project_id: str, decision=None):
        super().__init__(f"project {project_id} has already been edited")
        self.project_id = project_id
        self.decision = decision
