"""HTTP introspection endpoint exposing the pool state, settings and metrics."""

from __future__ import annotations

import json
import logging
import random
import time
from collections.abc import Callable
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any
from urllib.parse import urlsplit

from eniipam.config import get_config_for_debug
from eniipam.ipamd import IPAMContext
from eniipam.metrics import REGISTRY

log = logging.getLogger(__name__)

INTROSPECTION_PORT = 61678

_JSON = "application/json"
_TEXT = "text/plain; charset=utf-8"
_METRICS = "text/plain; version=0.0.4; charset=utf-8"

_REQUEST_TIMEOUT = 5.0
_BACKOFF_MIN = 1.0
_BACKOFF_MAX = 60.0
_BACKOFF_JITTER = 0.2
_BACKOFF_MULTIPLE = 2.0

NetworkEnv = Callable[[], Any]


def _jsonable(value: Any) -> Any:
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    raise TypeError(f"cannot encode {type(value).__name__}")


def _encode(value: Any) -> bytes:
    return json.dumps(value, separators=(",", ":"), default=_jsonable).encode("utf-8")


def _enis(context: IPAMContext, network_env: NetworkEnv | None) -> Any:
    return context.data_store.get_eni_infos()


def _pods(context: IPAMContext, network_env: NetworkEnv | None) -> Any:
    return context.data_store.get_pod_infos()


def _network_env(context: IPAMContext, network_env: NetworkEnv | None) -> Any:
    return network_env() if network_env is not None else {}


def _ipamd_env(context: IPAMContext, network_env: NetworkEnv | None) -> Any:
    return get_config_for_debug(context.env)


def _eni_configs(context: IPAMContext, network_env: NetworkEnv | None) -> Any:
    if context.eni_config is None:
        return None
    return context.eni_config.getter()


_HANDLERS: dict[str, Callable[[IPAMContext, NetworkEnv | None], Any]] = {
    "/v1/enis": _enis,
    "/v1/pods": _pods,
    "/v1/networkutils-env-settings": _network_env,
    "/v1/ipamd-env-settings": _ipamd_env,
    "/v1/eni-configs": _eni_configs,
}

_ROOT_RESPONSE = _encode({"AvailableCommands": list(_HANDLERS)})


def route(
    context: IPAMContext, path: str, network_env: NetworkEnv | None = None
) -> tuple[int, str, bytes]:
    """Answer a request for ``path``; return (status, content type, body)."""
    if path == "/metrics":
        return 200, _METRICS, REGISTRY.render().encode("utf-8")
    handler = _HANDLERS.get(path)
    if handler is None:
        return 200, _JSON, _ROOT_RESPONSE
    try:
        body = _encode(handler(context, network_env))
    except Exception as err:
        log.error("Failed to marshal data for %s: %s", path, err)
        return 500, _TEXT, b"Internal Server Error\n"
    return 200, _JSON, body


class IntrospectionHandler(BaseHTTPRequestHandler):
    """Logs each request and answers it from the server's pool manager."""

    timeout = _REQUEST_TIMEOUT

    def _respond(self, with_body: bool = True) -> None:
        log.info(
            "Handling http request method=%s from=%s uri=%s",
            self.command, self.client_address[0], self.path,
        )
        path = urlsplit(self.path).path
        status, content_type, body = route(
            self.server.ipam_context, path, self.server.network_env
        )
        self.send_response(status)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        if with_body:
            self.wfile.write(body)

    def do_GET(self) -> None:
        self._respond()

    def do_POST(self) -> None:
        self._respond()

    def do_PUT(self) -> None:
        self._respond()

    def do_DELETE(self) -> None:
        self._respond()

    def do_HEAD(self) -> None:
        self._respond(with_body=False)

    def log_message(self, format: str, *args: Any) -> None:
        log.debug(format, *args)


def make_server(
    context: IPAMContext,
    host: str = "",
    port: int = INTROSPECTION_PORT,
    network_env: NetworkEnv | None = None,
) -> ThreadingHTTPServer:
    """Create, but do not start, the introspection HTTP server."""
    server = ThreadingHTTPServer((host, port), IntrospectionHandler)
    server.ipam_context = context
    server.network_env = network_env
    return server


def serve_forever(
    context: IPAMContext,
    host: str = "",
    port: int = INTROSPECTION_PORT,
    network_env: NetworkEnv | None = None,
) -> None:
    """Run the introspection server, restarting it with backoff whenever it fails."""
    delay = _BACKOFF_MIN
    reported = False
    while True:
        try:
            with make_server(context, host, port, network_env) as server:
                delay = _BACKOFF_MIN
                server.serve_forever()
        except OSError as err:
            if not reported:
                log.error("Error running http api: %s", err)
                reported = True
        jitter = random.uniform(-_BACKOFF_JITTER, _BACKOFF_JITTER)
        time.sleep(delay * (1.0 + jitter))
        delay = min(delay * _BACKOFF_MULTIPLE, _BACKOFF_MAX)