import json
from contextlib import contextmanager
from types import SimpleNamespace

from backend.app import main
from backend.app.errors import ComputationError, ConstraintViolation, ReferentialError


def _body(resp):
    return json.loads(resp.body)


def _req(rid="req-1"):
    return SimpleNamespace(state=SimpleNamespace(request_id=rid), headers={}, method="POST", url=SimpleNamespace(path="/x"))


def test_referential_error_maps_to_its_status():
    resp = main._derivation_error(_req(), ReferentialError("Delivery not found", status_code=404))
    assert resp.status_code == 404
    assert _body(resp) == {"detail": "Delivery not found"}


def test_computation_error_carries_counts():
    resp = main._computation_error(_req(), ComputationError("no lines", items_processed=3, items_skipped=3))
    assert resp.status_code == 422
    assert _body(resp) == {"detail": "no lines", "items_processed": 3, "items_skipped": 3}


def test_constraint_violation_status_depends_on_kind(monkeypatch):
    monkeypatch.setattr(main.settings, "env", "prod")
    resp = main._constraint_violation(_req(), ConstraintViolation("dup", kind="unique", column="lpo_number"))
    assert resp.status_code == 409
    assert _body(resp) == {"detail": "dup"}

    monkeypatch.setattr(main.settings, "env", "dev")
    resp = main._constraint_violation(_req(), ConstraintViolation("bad ref", kind="foreign_key", column="supplier_id"))
    assert resp.status_code == 400
    assert _body(resp)["column"] == "supplier_id"


def test_unhandled_errors_hide_details_outside_dev(monkeypatch):
    monkeypatch.setattr(main.settings, "env", "prod")
    resp = main._unhandled_exception(_req("abc"), RuntimeError("secret"))
    assert resp.status_code == 500
    assert _body(resp) == {"detail": "internal error", "request_id": "abc"}


def test_health_reports_degraded_db(monkeypatch):
    @contextmanager
    def _down():
        raise RuntimeError("connection refused")
        yield

    monkeypatch.setattr(main, "get_conn", _down)
    resp = main.health(_req())
    assert resp.status_code == 503
    assert _body(resp)["db"] == "down"
