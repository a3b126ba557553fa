import base64
import copy
import hashlib
import hmac
import http
import json
import os

import gidgethub

from ciless.exceptions import (
    ResourceAlreadyExistsError,
    ResourceConflictError,
    ResourceNotFoundError,
)


def load_sample_data(filename):
    with open(os.path.join("tests/samples", filename)) as f:
        return json.load(f)


def sign(body: bytes, secret: str) -> str:
    digest = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def webhook_headers(event: str, body: bytes, secret: str | None) -> dict[str, str]:
    headers = {
        "Content-Type": "application/json",
        "X-GitHub-Event": event,
        "X-GitHub-Delivery": "72d3162e-cc78-11e3-81ab-4c9367dc0958",
    }
    if secret is not None:
        headers["X-Hub-Signature-256"] = sign(body, secret)
    return headers


class FakeGitHub:
    """Serves files from memory through the GitHub contents API shape."""

    def __init__(self, files: dict[tuple[str, str, str], bytes] | None = None):
        self.files = files or {}
        self.errors: list[Exception] = []
        self.calls = []

    async def getitem(self, url, url_vars=None, **kwargs):
        self.calls.append((url, url_vars))
        if self.errors:
            raise self.errors.pop(0)

        key = (url_vars["owner"], url_vars["repo"], url_vars["ref"])
        if key not in self.files:
            raise gidgethub.BadRequest(http.HTTPStatus.NOT_FOUND)

        return {
            "type": "file",
            "encoding": "base64",
            "path": url_vars["path"],
            "content": base64.b64encode(self.files[key]).decode(),
        }


class FakeTemplateStore:
    """In-memory stand-in for the cluster BuildTemplate API.

    Tracks resource versions like the API server does. ``concurrent_writes``
    makes that many upcoming updates race against another writer, which bumps
    the stored version just before the update is checked.
    """

    def __init__(self):
        self.objects: dict[str, dict] = {}
        self.calls: list[tuple[str, str]] = []
        self.create_errors: list[Exception] = []
        self.update_errors: list[Exception] = []
        self.concurrent_writes = 0
        self._version = 0

    def _next_version(self) -> str:
        self._version += 1
        return str(self._version)

    def _store(self, body: dict) -> dict:
        stored = copy.deepcopy(body)
        stored["metadata"]["resourceVersion"] = self._next_version()
        self.objects[stored["metadata"]["name"]] = stored
        return copy.deepcopy(stored)

    async def get(self, name: str) -> dict:
        self.calls.append(("get", name))
        if name not in self.objects:
            raise ResourceNotFoundError(name)
        return copy.deepcopy(self.objects[name])

    async def create(self, body: dict) -> dict:
        name = body["metadata"]["name"]
        self.calls.append(("create", name))
        if self.create_errors:
            raise self.create_errors.pop(0)
        if name in self.objects:
            raise ResourceAlreadyExistsError(name)
        return self._store(body)

    async def update(self, body: dict) -> dict:
        name = body["metadata"]["name"]
        self.calls.append(("update", name))
        if self.update_errors:
            raise self.update_errors.pop(0)
        if name not in self.objects:
            raise ResourceNotFoundError(name)
        if self.concurrent_writes:
            self.concurrent_writes -= 1
            self.objects[name]["metadata"]["resourceVersion"] = self._next_version()
        current = self.objects[name]["metadata"]["resourceVersion"]
        if body["metadata"].get("resourceVersion") != current:
            raise ResourceConflictError(name)
        return self._store(body)

    def count(self, verb: str) -> int:
        return sum(1 for call, _ in self.calls if call == verb)
