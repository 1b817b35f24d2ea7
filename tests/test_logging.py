import json
import logging
from logging.handlers import TimedRotatingFileHandler

from fastapi import FastAPI, Request
from starlette.testclient import TestClient

from brokerhub.app_logging import (
    WebSocketHandshakeFilter,
    _install_access_logging,
    init_logging,
)


def _clear_handlers(name: str) -> logging.Logger:
    logger = logging.getLogger(name)
    logger.handlers.clear()
    return logger


def _echo_app() -> FastAPI:
    app = FastAPI()

    @app.post("/echo")
    async def echo(request: Request):
        return {"rid": request.state.request_id, "body": await request.json()}

    @app.get("/api/health")
    async def health():  # pragma: no cover - simple
        return {"status": "ok"}

    return app


def test_timed_rotating_handler_configuration(monkeypatch, tmp_path):
    monkeypatch.setenv("LOG_DIR", str(tmp_path))
    monkeypatch.setenv("LOG_RETENTION_DAYS", "5")
    app_logger = _clear_handlers("brokerhub")
    access_logger = _clear_handlers("uvicorn.access")

    init_logging()

    for logger in (app_logger, access_logger):
        handler = next(
            h for h in logger.handlers if isinstance(h, TimedRotatingFileHandler)
        )
        assert handler.when == "MIDNIGHT"
        assert handler.backupCount == 5

    app_logger.handlers.clear()
    access_logger.handlers.clear()


def test_init_logging_replaces_existing_access_handlers(monkeypatch, tmp_path):
    monkeypatch.setenv("LOG_DIR", str(tmp_path))
    access_logger = _clear_handlers("uvicorn.access")
    stream_handler = logging.StreamHandler()
    access_logger.addHandler(stream_handler)

    init_logging()

    assert stream_handler not in access_logger.handlers
    assert any(isinstance(h, TimedRotatingFileHandler) for h in access_logger.handlers)
    access_logger.handlers.clear()


def test_access_logging_request_id_and_scrubbing(caplog, monkeypatch):
    monkeypatch.setenv("LOG_REQUEST_BODIES", "true")
    app = _echo_app()
    _install_access_logging(app)

    with (
        TestClient(app) as client,
        caplog.at_level(logging.INFO, logger="uvicorn.access"),
    ):
        resp = client.post(
            "/echo",
            json={"token": "secret", "content": "hello"},
            headers={"X-Request-Id": "abc", "Authorization": "Bearer secret"},
        )

        assert resp.status_code == 200
        assert resp.headers["X-Request-Id"] == "abc"
        assert resp.json()["rid"] == "abc"

        data = json.loads(caplog.records[0].getMessage())
        assert data["request_id"] == "abc"
        assert data["headers"]["authorization"] == "***"
        assert data["body"] == {"token": "***", "content": "hello"}

        caplog.clear()
        client.get("/api/health")
        assert len(caplog.records) == 0


def test_log_files_are_written(monkeypatch, tmp_path):
    monkeypatch.setenv("LOG_DIR", str(tmp_path))
    app_logger = _clear_handlers("brokerhub")
    access_logger = _clear_handlers("uvicorn.access")
    app = _echo_app()
    init_logging(app)

    logging.getLogger("brokerhub.messaging.service").info("hello brokerhub")
    with TestClient(app) as client:
        assert client.post("/echo", json={"content": "hi"}).status_code == 200

    for logger in (app_logger, access_logger):
        for handler in logger.handlers:
            handler.flush()

    assert "hello brokerhub" in (tmp_path / "app.log").read_text()
    access_line = (tmp_path / "access.log").read_text().splitlines()[-1]
    data = json.loads(access_line.split(": ", 1)[1])
    assert data["path"] == "/echo"
    assert data["status"] == 200

    app_logger.handlers.clear()
    access_logger.handlers.clear()


def _server_record(msg: str, *args: object) -> logging.LogRecord:
    return logging.LogRecord("uvicorn.error", logging.INFO, __file__, 1, msg, args, None)


def test_websocket_handshake_lines_are_dropped():
    handshake = WebSocketHandshakeFilter()

    assert not handshake.filter(
        _server_record('%s - "WebSocket %s" [accepted]', "127.0.0.1:5000", "/ws")
    )
    assert not handshake.filter(_server_record("connection open"))
    assert not handshake.filter(_server_record("connection closed"))
    assert handshake.filter(_server_record("Application startup complete."))


def test_init_logging_installs_a_single_handshake_filter(monkeypatch, tmp_path):
    monkeypatch.setenv("LOG_DIR", str(tmp_path))
    app_logger = _clear_handlers("brokerhub")
    access_logger = _clear_handlers("uvicorn.access")
    server_logger = logging.getLogger("uvicorn.error")

    init_logging()
    init_logging()
    installed = [f for f in server_logger.filters if isinstance(f, WebSocketHandshakeFilter)]
    assert len(installed) == 1

    monkeypatch.setenv("LOG_WS_HANDSHAKES", "true")
    init_logging()
    assert not any(isinstance(f, WebSocketHandshakeFilter) for f in server_logger.filters)

    app_logger.handlers.clear()
    access_logger.handlers.clear()
