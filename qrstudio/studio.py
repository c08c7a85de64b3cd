"""Component wiring shared by the HTTP app and the CLI."""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

import requests
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from qrstudio import db
from qrstudio.cache import AssetCache
from qrstudio.fetch import LogoFetcher
from qrstudio.logging import get_logger
from qrstudio.projects import ProjectService
from qrstudio.quota import QuotaTracker
from qrstudio.render import QrRenderer
from qrstudio.settings import StudioSettings
from qrstudio.storage import LocalObjectStore, ObjectStore

log = get_logger("studio")


@dataclass
class Studio:
    settings: StudioSettings
    engine: Engine
    sessions: sessionmaker[Session]
    store: ObjectStore
    logos: LogoFetcher
    quota: QuotaTracker
    projects: ProjectService
    renderer: QrRenderer
    cache: AssetCache


def build_studio(settings: StudioSettings, store: ObjectStore | None = None,
                 http: requests.Session | None = None,
                 clock: Callable[[], datetime] = db.utcnow) -> Studio:
    engine = db.make_engine(settings.database_url)
    db.init_schema(engine)
    sessions = db.make_session_factory(engine)
    if store is None:
        store = LocalObjectStore(settings.storage_root, settings.public_base_url, settings.signing_secret)
    logos = LogoFetcher(settings, store, session=http)
    quota = QuotaTracker(sessions, clock=clock)
    log.info("studio ready: db=%s storage=%s", engine.url.render_as_string(hide_password=True),
             settings.storage_root)
    return Studio(
        settings=settings,
        engine=engine,
        sessions=sessions,
        store=store,
        logos=logos,
        quota=quota,
        projects=ProjectService(settings, sessions, store, quota),
        renderer=QrRenderer(settings, logos),
        cache=AssetCache(settings, store, sessions, logos),
    )
