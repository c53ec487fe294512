"""Tests for normalized error responses."""

from fastapi import FastAPI, HTTPException
from fastapi.testclient import TestClient

from tenantpay.core.errors import (
    AppError,
    StaleSnapshot,
    app_error_handler,
    http_error_handler,
    unhandled_exception_handler,
)
from tenantpay.core.middleware.request_id import RequestIdMiddleware


def _app():
    app = FastAPI()
    app.add_middleware(RequestIdMiddleware)
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(HTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    @app.get("/stale")
    def stale():
        raise StaleSnapshot("subscriptions/a1", 3, 4)

    @app.get("/missing")
    def missing():
        raise HTTPException(status_code=404, detail="nothing here")

    @app.get("/boom")
    def boom():
        raise RuntimeError("kaboom")

    return app


def test_stale_snapshot_is_409():
    resp = TestClient(_app()).get("/stale")
    assert resp.status_code == 409
    body = resp.json()
    assert body["error"]["code"] == "stale_snapshot"
    assert body["error"]["request_id"] == resp.headers["x-request-id"]
    assert body["detail"] == body["error"]["message"]


def test_http_exception_normalized():
    resp = TestClient(_app()).get("/missing")
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "not_found"
    assert resp.json()["detail"] == "nothing here"


def test_unhandled_exception_hides_details():
    resp = TestClient(_app(), raise_server_exceptions=False).get("/boom")
    assert resp.status_code == 500
    body = resp.json()
    assert body["error"]["code"] == "internal_error"
    assert "kaboom" not in resp.text
