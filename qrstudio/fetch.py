"""Logo fetch through a short-lived signed URL with a bounded timeout.

A logo is decoration: ``fetch_or_none`` turns every failure into "no logo"
with a warning, so a broken upload never blocks a QR or print render.
"""

import requests

from qrstudio.errors import UpstreamFetchError
from qrstudio.logging import get_logger, trace, warn
from qrstudio.settings import StudioSettings
from qrstudio.storage import ObjectStore

log = get_logger("fetch")


class LogoFetcher:
    def __init__(self, settings: StudioSettings, store: ObjectStore, session: requests.Session | None = None):
        self.settings = settings
        self.store = store
        self.session = session or requests.Session()

    @trace
    def fetch(self, logo_path: str) -> bytes:
        """Sign, download and size-check a logo. Raises UpstreamFetchError."""
        try:
            url = self.store.create_signed_url(
                self.settings.logo_bucket, logo_path, self.settings.signed_url_ttl_s,
            )
        except UpstreamFetchError:
            raise
        except Exception as e:
            raise UpstreamFetchError(f"signing logo URL failed: {e}") from e

        try:
            resp = self.session.get(url, timeout=self.settings.fetch_timeout_s)
            resp.raise_for_status()
        except requests.RequestException as e:
            raise UpstreamFetchError(f"logo download failed: {e}") from e

        data = resp.content
        if not data:
            raise UpstreamFetchError("logo download returned no bytes")
        if len(data) > self.settings.max_logo_bytes:
            raise UpstreamFetchError(f"logo is {len(data)} bytes, limit {self.settings.max_logo_bytes}")
        return data

    def fetch_or_none(self, logo_path: str | None) -> bytes | None:
        """Logo bytes, or None when there is no logo or it cannot be fetched."""
        if not logo_path:
            return None
        try:
            return self.fetch(logo_path)
        except UpstreamFetchError as e:
            warn("logo.omitted", logger=log, path=logo_path, reason=e.message)
            return None
