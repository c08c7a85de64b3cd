"""HTTP surface: project actions, QR downloads, print packs, signed storage.

Caller identity and plan arrive as ``X-User-Id`` / ``X-Plan`` headers set by
the auth gateway in front of this service. Error bodies never carry
internal detail: upstream, storage and database failures all surface as
``generation_failed``.
"""

import mimetypes

from flask import Flask, Response, abort, jsonify, redirect, request

from qrstudio import db
from qrstudio.errors import (
    AccessDenied,
    EditLockActive,
    QuotaExceeded,
    StudioError,
    UpstreamFetchError,
    ValidationError,
)
from qrstudio.logging import audit, bind_context, get_logger, reset_context, trace
from qrstudio.models import GenerationManifest
from qrstudio.printpack import PrintFormat
from qrstudio.quota import Plan
from qrstudio.settings import StudioSettings
from qrstudio.studio import Studio, build_studio

log = get_logger("app")

OWNER_HEADER = "X-User-Id"
PLAN_HEADER = "X-Plan"


def _owner() -> str:
    owner = (request.headers.get(OWNER_HEADER) or "").strip()
    if not owner:
        abort(401)
    return owner


def _plan() -> Plan:
    raw = (request.headers.get(PLAN_HEADER) or Plan.LIFETIME_ONE.value).strip().lower()
    try:
        return Plan(raw)
    except ValueError:
        raise ValidationError(f"unknown plan {raw!r}") from None


def _payload() -> tuple[dict, bytes | None, str | None]:
    """Fields plus optional logo upload, from JSON or multipart bodies."""
    upload = request.files.get("logo")
    if upload is not None:
        return request.form.to_dict(), upload.read(), upload.mimetype
    body = request.get_json(silent=True)
    if body is not None and not isinstance(body, dict):
        raise ValidationError("request body must be a JSON object")
    return body or {}, None, None


def _arg(name: str) -> str:
    value = (request.args.get(name) or "").strip()
    if not value:
        raise ValidationError(f"missing query parameter {name!r}")
    return value


@trace
def create_app(settings: StudioSettings | None = None, studio: Studio | None = None) -> Flask:
    studio = studio or build_studio(settings or StudioSettings())
    app = Flask(__name__)
    app.config["MAX_CONTENT_LENGTH"] = studio.settings.max_logo_bytes + 64 * 1024
    app.extensions["qrstudio"] = studio

    @app.before_request
    def bind_request_context():
        request.environ["qrstudio.log_token"] = bind_context(
            owner=request.headers.get(OWNER_HEADER), route=request.endpoint)

    @app.teardown_request
    def unbind_request_context(exc):
        token = request.environ.pop("qrstudio.log_token", None)
        if token is not None:
            reset_context(token)

    # -- errors -----------------------------------------------------------

    @app.errorhandler(ValidationError)
    def on_validation(e: ValidationError):
        return jsonify({"error": e.code, "message": e.message}), 400

    @app.errorhandler(AccessDenied)
    def on_access_denied(e: AccessDenied):
        return jsonify({"error": "not_found"}), 404

    @app.errorhandler(QuotaExceeded)
    def on_quota(e: QuotaExceeded):
        body = {"error": e.code, **e.decision.to_dict()}
        return jsonify(body), 429

    @app.errorhandler(EditLockActive)
    def on_edit_lock(e: EditLockActive):
        return jsonify({"error": e.code, "message": e.message}), 409

    @app.errorhandler(StudioError)
    def on_failure(e: StudioError):
        log.error("request failed: %s (%s)", e.message, e.code)
        return jsonify({"error": "generation_failed"}), 500

    @app.errorhandler(401)
    def on_unauthenticated(e):
        return jsonify({"error": "unauthenticated"}), 401

    # -- projects ---------------------------------------------------------

    @app.route("/api/qr/projects", methods=["POST"])
    def create_project():
        owner, plan = _owner(), _plan()
        fields, logo, content_type = _payload()
        project = studio.projects.create(
            owner, plan,
            business_name=fields.get("business_name"),
            url=fields.get("url"),
            template_id=fields.get("template_id", ""),
            tagline=fields.get("tagline"),
            logo=logo,
            logo_content_type=content_type,
        )
        return jsonify(project.to_dict()), 201

    @app.route("/api/qr/projects/<project_id>", methods=["PATCH"])
    def edit_project(project_id):
        owner = _owner()
        fields, logo, content_type = _payload()
        project = studio.projects.edit(owner, project_id, fields, logo=logo, logo_content_type=content_type)
        return jsonify(project.to_dict())

    @app.route("/api/qr/projects/<project_id>", methods=["GET"])
    def get_project(project_id):
        owner = _owner()
        project = studio.projects.get(owner, project_id)
        lock = studio.projects.edit_status(owner, project_id)
        return jsonify({
            **project.to_dict(),
            "edit_locked": not lock.allowed,
            "print_pack": studio.cache.latest(owner, project),
        })

    @app.route("/api/qr/projects", methods=["GET"])
    def list_projects():
        owner = _owner()
        return jsonify([p.to_dict() for p in studio.projects.list_owned(owner)])

    # -- QR output --------------------------------------------------------

    @app.route("/api/qr/download")
    def download_qr():
        owner = _owner()
        project = studio.projects.get(owner, _arg("project_id"))
        fmt = (request.args.get("format") or "png").lower()
        if fmt == "png":
            data, mimetype = studio.renderer.png(project), "image/png"
        elif fmt == "svg":
            data, mimetype = studio.renderer.svg(project).encode("utf-8"), "image/svg+xml"
        else:
            raise ValidationError(f"unsupported format {fmt!r}")
        audit("download.served", logger=log, owner=owner, project=project.id, fmt=fmt)
        return Response(data, mimetype=mimetype, headers={
            "Content-Disposition": f'attachment; filename="qr-{project.id}.{fmt}"',
        })

    @app.route("/api/qr/preview")
    def preview_qr():
        owner = _owner()
        project = studio.projects.get(owner, _arg("project_id"))
        return Response(studio.renderer.preview(project), mimetype="image/png",
                        headers={"Cache-Control": "no-store"})

    @app.route("/api/qr/quota")
    def quota_status():
        owner, plan = _owner(), _plan()
        decision = studio.quota.authorize_create(owner, plan)
        return jsonify({"plan": plan.value, **decision.to_dict()})

    # -- print packs ------------------------------------------------------

    @app.route("/api/qr/print-pack/generate", methods=["POST"])
    def generate_print_pack():
        owner = _owner()
        body, _, _ = _payload()
        project_id = str(body.get("project_id") or "").strip()
        if not project_id:
            raise ValidationError("project_id is required")
        project = studio.projects.get(owner, project_id)
        result = studio.cache.ensure_generated(owner, project, body)
        return jsonify({
            "asset_id": result.asset_id,
            "generation_hash": result.generation_hash,
            "cache_hit": result.cache_hit,
            "spec": result.manifest.spec,
            "files": studio.cache.signed_files(result.manifest),
            "failed_formats": sorted(result.failed_formats),
        })

    @app.route("/api/qr/print-pack/download")
    def download_print_pack():
        owner = _owner()
        asset_id = _arg("asset_id")
        fmt = (request.args.get("format") or PrintFormat.BUSINESS_CARD.value).strip()
        with studio.sessions() as session:
            row = db.get_asset(session, asset_id, owner)
            manifest = GenerationManifest.from_row(row) if row is not None else None
        if manifest is None or fmt not in manifest.files:
            raise AccessDenied(f"asset {asset_id} has no {fmt}")
        url = studio.store.create_signed_url(
            studio.settings.print_pack_bucket, manifest.files[fmt].path, studio.settings.signed_url_ttl_s,
        )
        return redirect(url, code=302)

    # -- signed storage ---------------------------------------------------

    @app.route("/storage/<bucket>/<path:path>")
    def serve_object(bucket, path):
        try:
            expires = int(request.args.get("expires", ""))
        except ValueError:
            abort(403)
        token = request.args.get("token", "")
        verify = getattr(studio.store, "verify_signature", None)
        if verify is None or not verify(bucket, path, expires, token):
            abort(403)
        try:
            data = studio.store.download(bucket, path)
        except UpstreamFetchError:
            abort(404)
        mimetype = mimetypes.guess_type(path)[0] or "application/octet-stream"
        return Response(data, mimetype=mimetype)

    return app
