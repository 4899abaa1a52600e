import asyncio
import time
from types import SimpleNamespace

from fastapi import FastAPI
from fastapi.testclient import TestClient
from starlette.requests import Request
from starlette.responses import PlainTextResponse

from app.core import middleware
from app.core.middleware import RateLimitMiddleware, RequestContextMiddleware


def _build_app(generate_limit=2):
    app = FastAPI()
    app.add_middleware(
        RateLimitMiddleware,
        calls=100,
        period=60,
        path_limits={"/generate": (generate_limit, 60)},
    )
    app.add_middleware(RequestContextMiddleware)

    @app.post("/generate")
    def generate():
        return {"ok": True}

    @app.get("/other")
    def other():
        return {"ok": True}

    return app


def test_path_limit_applies_per_client():
    client = TestClient(_build_app(generate_limit=2))

    assert client.post("/generate").status_code == 200
    assert client.post("/generate").status_code == 200
    blocked = client.post("/generate")

    assert blocked.status_code == 429
    assert blocked.json()["error"] == "rate_limit_exceeded"
    assert int(blocked.headers["Retry-After"]) >= 1
    assert client.get("/other").status_code == 200


def test_forwarded_clients_are_limited_separately():
    client = TestClient(_build_app(generate_limit=1))

    assert client.post("/generate", headers={"X-Forwarded-For": "10.0.0.1"}).status_code == 200
    assert client.post("/generate", headers={"X-Forwarded-For": "10.0.0.2"}).status_code == 200
    assert client.post("/generate", headers={"X-Forwarded-For": "10.0.0.1"}).status_code == 429


def test_request_id_header():
    client = TestClient(_build_app())

    generated = client.get("/other")
    echoed = client.get("/other", headers={"Request-Id": "req-123"})

    assert generated.headers["Request-Id"]
    assert "X-Process-Time" in generated.headers
    assert echoed.headers["Request-Id"] == "req-123"


def _scope(ip, path):
    return {
        "type": "http",
        "method": "GET",
        "path": path,
        "query_string": b"",
        "headers": [],
        "client": (ip, 50000),
        "server": ("testserver", 80),
    }


def test_idle_client_keys_are_dropped(monkeypatch):
    clock = {"now": 1000.0}
    monkeypatch.setattr(middleware, "time", SimpleNamespace(monotonic=lambda: clock["now"], time=time.time))
    limiter = RateLimitMiddleware(None, calls=100, period=60, path_limits={"/generate": (2, 60)})

    async def call_next(request):
        return PlainTextResponse("ok")

    def send(ip, path="/other"):
        return asyncio.run(limiter.dispatch(Request(_scope(ip, path)), call_next))

    send("10.0.0.1")
    send("10.0.0.1", "/generate")
    assert set(limiter.requests) == {("10.0.0.1", "*"), ("10.0.0.1", "/generate")}

    # 유휴 클라이언트의 윈도우가 지난 뒤 다른 클라이언트 요청이 정리를 유발
    clock["now"] += 61
    assert send("10.0.0.2").status_code == 200

    assert set(limiter.requests) == {("10.0.0.2", "*")}


def test_expired_window_is_replaced_not_kept(monkeypatch):
    clock = {"now": 1000.0}
    monkeypatch.setattr(middleware, "time", SimpleNamespace(monotonic=lambda: clock["now"], time=time.time))
    limiter = RateLimitMiddleware(None, calls=1, period=60)

    async def call_next(request):
        return PlainTextResponse("ok")

    def send():
        return asyncio.run(limiter.dispatch(Request(_scope("10.0.0.1", "/other")), call_next))

    assert send().status_code == 200
    assert send().status_code == 429
    clock["now"] += 60

    assert send().status_code == 200
    assert list(limiter.requests[("10.0.0.1", "*")]) == [1060.0]
