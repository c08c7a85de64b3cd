"""QR Studio CLI: local rendering, print packs, scan checks and the HTTP server."""

import argparse
import sys
from pathlib import Path

from PIL import Image

from qrstudio.logging import audit, get_logger, setup_logging

log = get_logger("cli")


def _read_logo(path: str | None) -> bytes | None:
    return Path(path).read_bytes() if path else None


def _local_project(args):
    from qrstudio.models import Project
    from qrstudio.templates import TEMPLATE_VERSION

    return Project(
        id=args.project_id,
        owner_id="local",
        business_name=args.name or "",
        url=args.url,
        template_id=args.template,
        template_version=TEMPLATE_VERSION,
        tagline=args.tagline,
    )


def cmd_render(args):
    """Render one project QR to PNG or SVG without touching the database."""
    from qrstudio.render import project_png, project_svg

    project = _local_project(args)
    output = Path(args.output or f"output/qr-{args.template.lower()}.{args.format}")
    output.parent.mkdir(parents=True, exist_ok=True)

    if args.format == "svg":
        output.write_text(project_svg(project), encoding="utf-8")
    else:
        output.write_bytes(project_png(project, args.width, _read_logo(args.logo)))
    print(f"Rendered: {output}")


def cmd_print_pack(args):
    """Render print-ready PDFs into a directory."""
    from qrstudio.layout import render
    from qrstudio.printpack import generation_hash, normalize_spec

    project = _local_project(args)
    spec = normalize_spec({
        "formats": args.formats,
        "brand_name": args.name,
        "person_name": args.person,
        "title": args.title,
        "phone": args.phone,
        "email": args.email,
        "website": args.website,
        "address": args.address,
        "theme": args.theme,
    }, project)
    out_dir = Path(args.out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    batch = render(project, spec, _read_logo(args.logo))
    print(f"Generation hash: {generation_hash(project, spec)}")
    for key, rendered in batch.files.items():
        path = out_dir / rendered.filename
        path.write_bytes(rendered.data)
        print(f"  {key:18s}: {path} ({len(rendered.data)} bytes)")
    for key, err in batch.failures.items():
        print(f"  {key:18s}: FAILED {err.message}")
    sys.exit(0 if not batch.failures else 1)


def cmd_verify(args):
    """Decode a QR image, optionally under simulated print conditions."""
    from qrstudio.encoder import normalize_url
    from qrstudio.verify import check_print_conditions, verify

    img = Image.open(args.image).convert("RGB")
    expected = normalize_url(args.expected) if args.expected else None
    if args.print_check:
        report = check_print_conditions(img, expected)
        print(report.summary())
        sys.exit(0 if report.ok else 1)

    result = verify(img, expected)
    status = "PASS" if result.success else "FAIL"
    print(f"  {status} | {result.time_ms:6.1f}ms | {result.decoded or result.error}")
    sys.exit(0 if result.success else 1)


def cmd_init_db(args):
    """Create the database schema."""
    from qrstudio import db
    from qrstudio.settings import StudioSettings

    settings = StudioSettings()
    engine = db.make_engine(args.database_url or settings.database_url)
    db.init_schema(engine)
    print(f"Schema ready: {engine.url.render_as_string(hide_password=True)}")


def cmd_serve(args):
    """Start the HTTP service."""
    from qrstudio.app import create_app
    from qrstudio.settings import StudioSettings

    app = create_app(StudioSettings())
    print(f"Starting QR Studio on http://{args.host}:{args.port}")
    app.run(host=args.host, port=args.port, debug=args.debug)


def _add_project_args(p):
    p.add_argument("url", help="Target URL (https:// is added when no scheme is given)")
    p.add_argument("-t", "--template", default="T1", choices=["T1", "T2", "T3"], help="Template id")
    p.add_argument("--name", default=None, help="Business name")
    p.add_argument("--tagline", default=None, help="Tagline (label template only)")
    p.add_argument("--logo", default=None, help="Path to a PNG/JPEG/WebP logo")
    p.add_argument("--project-id", default="local", help="Project id used in file names")


def main():
    parser = argparse.ArgumentParser(prog="qrstudio", description="QR Studio: branded QR codes and print packs")

    # Global logging flags
    parser.add_argument("-V", "--verbose", action="store_true", help="Enable DEBUG-level logging")
    parser.add_argument("--log-file", default=None, help="Write JSON logs to file")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # --- render ---
    p_render = subparsers.add_parser("render", help="Render a project QR code")
    _add_project_args(p_render)
    p_render.add_argument("-o", "--output", default=None, help="Output file path")
    p_render.add_argument("-f", "--format", default="png", choices=["png", "svg"])
    p_render.add_argument("-w", "--width", type=int, default=1024, help="PNG width in pixels")

    # --- print-pack ---
    p_pack = subparsers.add_parser("print-pack", help="Render print-ready PDFs")
    _add_project_args(p_pack)
    p_pack.add_argument("--formats", nargs="+", default=["business_card"],
                        choices=["business_card", "flyer_a5", "flyer_a4", "poster_a3", "sticker_sheet_a4"])
    p_pack.add_argument("--person", default=None)
    p_pack.add_argument("--title", default=None)
    p_pack.add_argument("--phone", default=None)
    p_pack.add_argument("--email", default=None)
    p_pack.add_argument("--website", default=None)
    p_pack.add_argument("--address", default=None)
    p_pack.add_argument("--theme", default="dark", choices=["dark", "light"])
    p_pack.add_argument("-o", "--out-dir", default="output/print-pack", help="Output directory")

    # --- verify ---
    p_ver = subparsers.add_parser("verify", help="Verify a QR code image")
    p_ver.add_argument("image", help="Path to QR code image")
    p_ver.add_argument("--expected", default=None, help="Expected URL (fails if mismatch)")
    p_ver.add_argument("--print-check", action="store_true", help="Also scan blurred, relit and downscaled copies")

    # --- init-db ---
    p_db = subparsers.add_parser("init-db", help="Create database tables")
    p_db.add_argument("--database-url", default=None, help="Override QRSTUDIO_DATABASE_URL")

    # --- serve ---
    p_serve = subparsers.add_parser("serve", help="Start the HTTP service")
    p_serve.add_argument("--host", default="127.0.0.1")
    p_serve.add_argument("--port", type=int, default=8080, help="Port to listen on")
    p_serve.add_argument("--debug", action="store_true", help="Enable debug mode")

    args = parser.parse_args()

    # Setup logging before any command runs
    level = "DEBUG" if args.verbose else "INFO"
    setup_logging(level=level, log_file=args.log_file)
    audit("cli.start", logger=log, command=args.command, verbose=args.verbose)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    commands = {
        "render": cmd_render,
        "print-pack": cmd_print_pack,
        "verify": cmd_verify,
        "init-db": cmd_init_db,
        "serve": cmd_serve,
    }
    commands[args.command](args)
    audit("cli.done", logger=log, command=args.command)


if __name__ == "__main__":
    main()
