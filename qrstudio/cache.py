"""Content-Addressed Asset Cache for print packs.

    normalize spec -> hash(rendered project fields, spec)
        -> manifest row complete?  return it (no render, no upload)
        -> otherwise render the missing formats, upload, persist

A manifest is keyed by (owner, project, hash). The same hash always maps to
the same bytes, so a partially written manifest is repaired by rendering
only what is missing and updating the existing row.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from qrstudio import db
from qrstudio.errors import DbWriteError, GenerationFailed, StorageWriteError
from qrstudio.fetch import LogoFetcher
from qrstudio.layout import render
from qrstudio.logging import audit, get_logger, trace
from qrstudio.models import GenerationManifest, ManifestFile, Project
from qrstudio.printpack import PrintPackSpec, generation_hash, normalize_spec
from qrstudio.settings import StudioSettings
from qrstudio.storage import ObjectStore
from qrstudio.templates import lookup

log = get_logger("cache")


def storage_path(owner_id: str, project_id: str, gen_hash: str, filename: str) -> str:
    return f"print-pack/{owner_id}/{project_id}/{gen_hash}/{filename}"


@dataclass(frozen=True)
class GenerationResult:
    asset_id: str
    generation_hash: str
    manifest: GenerationManifest
    cache_hit: bool = False
    failed_formats: dict[str, str] = field(default_factory=dict)


class AssetCache:
    def __init__(self, settings: StudioSettings, store: ObjectStore,
                 sessions: sessionmaker[Session], logos: LogoFetcher):
        self.settings = settings
        self.store = store
        self.sessions = sessions
        self.logos = logos

    @property
    def bucket(self) -> str:
        return self.settings.print_pack_bucket

    def _load(self, owner_id: str, project_id: str, gen_hash: str) -> GenerationManifest | None:
        with self.sessions() as session:
            row = db.find_asset(session, owner_id, project_id, gen_hash)
            return GenerationManifest.from_row(row) if row is not None else None

    def _persist(self, owner_id: str, project_id: str, gen_hash: str, spec: PrintPackSpec,
                 files: dict[str, dict]) -> GenerationManifest:
        """Insert the manifest; on a uniqueness conflict update the existing row instead."""
        spec_dict = spec.to_dict()
        try:
            with self.sessions.begin() as session:
                session.add(db.PrintPackAssetRow(
                    user_id=owner_id, project_id=project_id, generation_hash=gen_hash,
                    spec=spec_dict, files=files,
                ))
        except IntegrityError:
            log.info("manifest %s already exists, updating", gen_hash)
            try:
                with self.sessions.begin() as session:
                    asset_id = db.update_asset_files(session, owner_id, project_id, gen_hash, spec_dict, files)
            except SQLAlchemyError as e:
                raise DbWriteError(f"manifest update failed: {e}") from e
            if asset_id is None:
                raise DbWriteError("manifest conflict but no row to update")
        except SQLAlchemyError as e:
            raise DbWriteError(f"manifest insert failed: {e}") from e

        manifest = self._load(owner_id, project_id, gen_hash)
        if manifest is None:
            raise DbWriteError("manifest vanished after write")
        return manifest

    @trace
    def ensure_generated(self, owner_id: str, project: Project, raw_spec: Mapping | None) -> GenerationResult:
        lookup(project.template_id, project.template_version)
        spec = normalize_spec(raw_spec, project)
        gen_hash = generation_hash(project, spec)

        existing = self._load(owner_id, project.id, gen_hash)
        have = dict(existing.files_dict()) if existing is not None else {}
        missing = [fmt for fmt in spec.formats if fmt.value not in have]

        if existing is not None and not missing:
            audit("printpack.cache_hit", logger=log, owner=owner_id, project=project.id, hash=gen_hash)
            return GenerationResult(existing.asset_id, gen_hash, existing, cache_hit=True)

        logo_bytes = self.logos.fetch_or_none(project.logo_path)
        batch = render(project, spec, logo_bytes, formats=missing)
        failures: dict[str, str] = {key: e.message for key, e in batch.failures.items()}

        files = dict(have)
        for key, rendered in batch.files.items():
            path = storage_path(owner_id, project.id, gen_hash, rendered.filename)
            try:
                self.store.upload(self.bucket, path, rendered.data, rendered.content_type)
            except StorageWriteError as e:
                log.error("upload of %s failed: %s", key, e.message)
                failures[key] = e.message
                continue
            files[key] = ManifestFile(rendered.filename, path, len(rendered.data)).to_dict()

        if len(files) == len(have):
            raise GenerationFailed(f"no print format could be produced for project {project.id}")

        manifest = self._persist(owner_id, project.id, gen_hash, spec, files)
        audit("printpack.generated", logger=log, owner=owner_id, project=project.id, hash=gen_hash,
              rendered=sorted(batch.files), failed=sorted(failures), repaired=existing is not None)
        return GenerationResult(manifest.asset_id, gen_hash, manifest, failed_formats=failures)

    def signed_files(self, manifest: GenerationManifest) -> dict[str, dict]:
        """Manifest files with a short-lived download URL each."""
        out = {}
        for key, f in manifest.files.items():
            entry = f.to_dict()
            entry["url"] = self.store.create_signed_url(self.bucket, f.path, self.settings.signed_url_ttl_s)
            out[key] = entry
        return out

    def latest(self, owner_id: str, project: Project) -> dict | None:
        """Most recent print pack for the project, flagged stale once the project has moved on."""
        with self.sessions() as session:
            row = db.latest_asset(session, owner_id, project.id)
            if row is None:
                return None
            manifest = GenerationManifest.from_row(row)
        spec = PrintPackSpec.from_dict(manifest.spec)
        return {
            "asset_id": manifest.asset_id,
            "generation_hash": manifest.generation_hash,
            "formats": [fmt.value for fmt in spec.formats if fmt.value in manifest.files],
            "stale": generation_hash(project, spec) != manifest.generation_hash,
            "updated_at": manifest.updated_at.isoformat() if manifest.updated_at else None,
        }
