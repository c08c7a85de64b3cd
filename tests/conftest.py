import pytest

from qrstudio import db
from qrstudio.models import Project
from qrstudio.settings import StudioSettings
from tests.support import MemoryStore, make_png


@pytest.fixture
def settings(tmp_path):
    return StudioSettings(
        database_url="sqlite://",
        storage_root=tmp_path / "storage",
        public_base_url="http://localhost",
        signing_secret="test-secret",
        _env_file=None,
    )


@pytest.fixture
def engine():
    eng = db.make_engine("sqlite://")
    db.init_schema(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def sessions(engine):
    return db.make_session_factory(engine)


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def logo_png():
    return make_png()


@pytest.fixture
def project():
    return Project(
        id="p-1",
        owner_id="u-1",
        business_name="Acme Bakery",
        url="https://acme.example/menu",
        template_id="T2",
        template_version=1,
        tagline="Fresh bread daily",
        logo_path="logos/u-1/p-1.png",
    )
