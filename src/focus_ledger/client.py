"""Ledger backends for the CLI.

A command either runs on an engine this process owns (``LocalLedger``) or
is forwarded over HTTP to the server that owns the database
(``LedgerClient``). Both return the same shape as the API: the transition
result plus the exported ``state``.
"""

from __future__ import annotations

import logging

import requests as http_requests

from .engine import FocusEngine

logger = logging.getLogger(__name__)

# command name -> (HTTP method, API path)
COMMAND_ROUTES = {
    "start": ("POST", "/api/timer/start"),
    "pause": ("POST", "/api/timer/pause"),
    "resume": ("POST", "/api/timer/resume"),
    "tick": ("POST", "/api/timer/tick"),
    "reset-elapsed": ("POST", "/api/timer/reset-elapsed"),
    "add-cycle": ("POST", "/api/cycles/add"),
    "remove-cycle": ("POST", "/api/cycles/remove"),
    "reset-cycles": ("POST", "/api/cycles/reset"),
    "use-rest": ("POST", "/api/rest/use"),
    "end-rest": ("POST", "/api/rest/end"),
    "add-rest": ("POST", "/api/rest/add"),
    "remove-rest": ("POST", "/api/rest/remove"),
    "reset-rest": ("POST", "/api/rest/reset"),
    "settings": ("PUT", "/api/settings"),
    "reboot": ("POST", "/api/reboot"),
}

# command name -> FocusEngine method
ENGINE_METHODS = {
    "start": "start",
    "pause": "pause",
    "resume": "resume_from_background",
    "tick": "tick",
    "reset-elapsed": "reset_elapsed",
    "add-cycle": "add_cycle",
    "remove-cycle": "remove_cycle",
    "reset-cycles": "reset_cycles",
    "use-rest": "use_rest",
    "end-rest": "end_rest",
    "add-rest": "add_rest_minutes",
    "remove-rest": "remove_rest_minutes",
    "reset-rest": "reset_rest_minutes",
    "settings": "update_settings",
    "reboot": "reboot",
}


class LedgerClientError(Exception):
    """The server could not be reached or answered with an unexpected status."""


class LocalLedger:
    def __init__(self, engine: FocusEngine):
        self.engine = engine

    def command(self, name: str, **body) -> dict:
        result = getattr(self.engine, ENGINE_METHODS[name])(**body)
        return {**result.to_dict(), "state": self.engine.to_export_dict()}

    def state(self) -> dict:
        return self.engine.to_export_dict()

    def settings(self) -> dict:
        return self.engine.settings.to_dict()


class LedgerClient:
    """Talks to a running focus-ledger server."""

    def __init__(self, base_url: str, session=None, timeout: float = 5.0):
        self.base_url = base_url.rstrip("/")
        self.session = session if session is not None else http_requests.Session()
        self.timeout = timeout

    def command(self, name: str, **body) -> dict:
        method, path = COMMAND_ROUTES[name]
        response = self._send(method, path, body)
        if response.status_code == 400:
            return {"accepted": False, "reason": response.json().get("detail"), "events": []}
        return self._json(response)

    def state(self) -> dict:
        return self._json(self._send("GET", "/api/timer"))

    def settings(self) -> dict:
        return self._json(self._send("GET", "/api/settings"))

    def _send(self, method: str, path: str, body: dict | None = None):
        url = f"{self.base_url}{path}"
        try:
            if method == "GET":
                return self.session.get(url, timeout=self.timeout)
            if method == "PUT":
                return self.session.put(url, json=body or {}, timeout=self.timeout)
            return self.session.post(url, json=body or None, timeout=self.timeout)
        except http_requests.RequestException as e:
            logger.error(f"Ledger server at {self.base_url} unreachable: {e}")
            raise LedgerClientError(f"ledger server at {self.base_url} is not reachable") from e

    def _json(self, response) -> dict:
        if response.status_code != 200:
            raise LedgerClientError(f"ledger server answered {response.status_code}: {response.text}")
        return response.json()
