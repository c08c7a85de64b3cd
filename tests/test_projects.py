from datetime import datetime, timedelta, timezone

import pytest

from qrstudio import db
from qrstudio.errors import AccessDenied, EditLockActive, QuotaExceeded, TemplateNotFound, ValidationError
from qrstudio.projects import ProjectService, logo_path_for
from qrstudio.quota import Plan, QuotaTracker

NOW = datetime(2026, 5, 4, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def service(settings, sessions, store):
    return ProjectService(settings, sessions, store, QuotaTracker(sessions, clock=lambda: NOW))


def _events(sessions, owner, kind):
    with sessions() as session:
        return db.count_events(session, owner, kind)


def test_create_persists_project_and_usage_event(service, sessions):
    project = service.create("u-1", Plan.ROLLING, " Acme ", "acme.example", "t2", tagline="  Fresh  ")
    assert project.business_name == "Acme"
    assert project.url == "https://acme.example"
    assert project.template_id == "T2" and project.template_version == 1
    assert project.tagline == "Fresh"
    assert project.created_at == NOW
    assert _events(sessions, "u-1", db.EVENT_CREATE) == 1


def test_lifetime_plan_blocks_second_create(service, sessions):
    service.create("u-1", Plan.LIFETIME_ONE, "Acme", "acme.example", "T1")
    with pytest.raises(QuotaExceeded) as exc:
        service.create("u-1", Plan.LIFETIME_ONE, "Second", "second.example", "T1")
    assert exc.value.unlock_at is None
    assert len(service.list_owned("u-1")) == 1
    assert _events(sessions, "u-1", db.EVENT_CREATE) == 1


def test_rolling_plan_reports_unlock_time(service):
    for i in range(5):
        service.create("u-1", Plan.ROLLING, f"Shop {i}", "shop.example", "T1", now=NOW - timedelta(days=4 - i))
    with pytest.raises(QuotaExceeded) as exc:
        service.create("u-1", Plan.ROLLING, "Sixth", "shop.example", "T1")
    assert exc.value.unlock_at == NOW - timedelta(days=4) + timedelta(days=7)


def test_invalid_input_writes_nothing(service, sessions):
    with pytest.raises(ValidationError):
        service.create("u-1", Plan.ROLLING, "Acme", "   ", "T1")
    with pytest.raises(ValidationError):
        service.create("u-1", Plan.ROLLING, "  ", "acme.example", "T1")
    with pytest.raises(TemplateNotFound):
        service.create("u-1", Plan.ROLLING, "Acme", "acme.example", "T9")
    assert _events(sessions, "u-1", db.EVENT_CREATE) == 0


def test_logo_is_stored_under_owner_and_project(service, store, logo_png):
    project = service.create("u-1", Plan.ROLLING, "Acme", "acme.example", "T1",
                             logo=logo_png, logo_content_type="image/png")
    assert project.logo_path == logo_path_for("u-1", project.id, logo_png, "png")
    assert store.objects[("qr-logos", project.logo_path)] == logo_png


def test_logo_rejected_for_scan_max_template(service, logo_png):
    with pytest.raises(ValidationError):
        service.create("u-1", Plan.ROLLING, "Acme", "acme.example", "T3",
                       logo=logo_png, logo_content_type="image/png")


def test_logo_type_and_content_are_checked(service, logo_png):
    with pytest.raises(ValidationError):
        service.create("u-1", Plan.ROLLING, "Acme", "acme.example", "T1",
                       logo=logo_png, logo_content_type="image/svg+xml")
    with pytest.raises(ValidationError):
        service.create("u-1", Plan.ROLLING, "Acme", "acme.example", "T1",
                       logo=b"garbage", logo_content_type="image/png")


def test_logo_upload_failure_is_not_fatal(service, store, logo_png):
    store.fail_paths.add("logos/")
    project = service.create("u-1", Plan.ROLLING, "Acme", "acme.example", "T1",
                             logo=logo_png, logo_content_type="image/png")
    assert project.logo_path is None


def test_single_edit_then_lock(service, sessions):
    project = service.create("u-1", Plan.ROLLING, "Acme", "acme.example", "T1")
    edited = service.edit("u-1", project.id, {"business_name": "Acme Co", "template_id": "T2"})
    assert edited.business_name == "Acme Co"
    assert edited.template_id == "T2"
    assert not service.edit_status("u-1", project.id).allowed

    with pytest.raises(EditLockActive):
        service.edit("u-1", project.id, {"business_name": "Again"})
    assert service.get("u-1", project.id).business_name == "Acme Co"
    assert _events(sessions, "u-1", db.EVENT_EDIT) == 1


def test_failed_edit_does_not_consume_the_edit(service):
    project = service.create("u-1", Plan.ROLLING, "Acme", "acme.example", "T1")
    with pytest.raises(ValidationError):
        service.edit("u-1", project.id, {"url": ""})
    assert service.edit_status("u-1", project.id).allowed


def test_edit_rejects_unknown_fields_and_empty_changes(service):
    project = service.create("u-1", Plan.ROLLING, "Acme", "acme.example", "T1")
    with pytest.raises(ValidationError):
        service.edit("u-1", project.id, {"owner": "u-2"})
    with pytest.raises(ValidationError):
        service.edit("u-1", project.id, {})


def test_other_owners_see_not_found(service):
    project = service.create("u-1", Plan.ROLLING, "Acme", "acme.example", "T1")
    with pytest.raises(AccessDenied):
        service.get("u-2", project.id)
    with pytest.raises(AccessDenied):
        service.edit("u-2", project.id, {"business_name": "Mine"})
    with pytest.raises(AccessDenied):
        service.get("u-1", "missing")
