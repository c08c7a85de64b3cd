"""Domain records passed between components (detached from ORM sessions)."""

from dataclasses import dataclass, field
from datetime import datetime

from qrstudio.db import PrintPackAssetRow, ProjectRow, as_utc


@dataclass(frozen=True)
class Project:
    id: str
    owner_id: str
    business_name: str
    url: str
    template_id: str
    template_version: int
    tagline: str | None = None
    logo_path: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_row(cls, row: ProjectRow) -> "Project":
        return cls(
            id=row.id,
            owner_id=row.user_id,
            business_name=row.business_name,
            url=row.url,
            template_id=row.template_id,
            template_version=row.template_version,
            tagline=row.tagline,
            logo_path=row.logo_path,
            created_at=as_utc(row.created_at) if row.created_at else None,
            updated_at=as_utc(row.updated_at) if row.updated_at else None,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_name": self.business_name,
            "tagline": self.tagline,
            "url": self.url,
            "template_id": self.template_id,
            "template_version": self.template_version,
            "has_logo": bool(self.logo_path),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass(frozen=True)
class ManifestFile:
    filename: str
    path: str
    bytes: int

    def to_dict(self) -> dict:
        return {"filename": self.filename, "path": self.path, "bytes": self.bytes}


@dataclass(frozen=True)
class GenerationManifest:
    asset_id: str
    owner_id: str
    project_id: str
    generation_hash: str
    spec: dict
    files: dict[str, ManifestFile] = field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_row(cls, row: PrintPackAssetRow) -> "GenerationManifest":
        files = row.files if isinstance(row.files, dict) else {}
        return cls(
            asset_id=row.id,
            owner_id=row.user_id,
            project_id=row.project_id,
            generation_hash=row.generation_hash,
            spec=dict(row.spec or {}),
            files={key: ManifestFile(**entry) for key, entry in files.items()},
            created_at=as_utc(row.created_at) if row.created_at else None,
            updated_at=as_utc(row.updated_at) if row.updated_at else None,
        )

    def files_dict(self) -> dict:
        return {key: f.to_dict() for key, f in self.files.items()}
