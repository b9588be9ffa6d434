"""Shared pytest fixtures for Vapi GitOps tests."""

import io
import json
from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any
from uuid import uuid4

import httpx
import pytest
from loguru import logger

from vapi_gitops.config.models import ApiConfig, Config
from vapi_gitops.models.resources import ResourceDocument, ResourceType
from vapi_gitops.services.api_client import VapiClient
from vapi_gitops.storage.state_store import IdentifierStore

BASE_URL = "https://api.test.vapi"


class FakePlatform:
    """In-memory stand-in for the Vapi API behind httpx.MockTransport.

    POST returns a fresh UUID, PATCH and DELETE succeed. Responses can
    be scripted per ``(method, path)`` to simulate failures.
    """

    def __init__(self) -> None:
        self.requests: list[tuple[str, str, Any]] = []
        self.scripted: dict[tuple[str, str], list[httpx.Response]] = {}

    def script(self, method: str, path: str, *responses: httpx.Response) -> None:
        self.scripted.setdefault((method, path), []).extend(responses)

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.raw_path.decode()
        body = json.loads(request.content) if request.content else None
        self.requests.append((request.method, path, body))

        queue = self.scripted.get((request.method, path))
        if queue:
            return queue.pop(0)

        if request.method == "POST":
            return httpx.Response(201, json={**(body or {}), "id": str(uuid4())})
        if request.method == "PATCH":
            return httpx.Response(200, json={**(body or {}), "id": path.split("?")[0].rsplit("/", 1)[-1]})
        return httpx.Response(200)

    def calls(self, method: str | None = None) -> list[tuple[str, str, Any]]:
        return [r for r in self.requests if method is None or r[0] == method]


class StaticLoader:
    """Loader returning fixed documents per type."""

    def __init__(self, documents: dict[ResourceType, list[ResourceDocument]] | None = None) -> None:
        self.documents = documents or {}

    def load_resources(self, resource_type: ResourceType) -> list[ResourceDocument]:
        return list(self.documents.get(resource_type, []))


def make_doc(local_id: str, payload: dict[str, Any] | None = None, folder: str = "") -> ResourceDocument:
    """Build a document as the file system loader would."""
    prefix = f"resources/{folder}/" if folder else "resources/"
    return ResourceDocument(local_id=local_id, file_path=f"{prefix}{local_id}.yml", payload=payload or {})


@pytest.fixture
def log_capture() -> Generator[io.StringIO, None, None]:
    """Capture loguru output to a string buffer."""
    string_io = io.StringIO()
    handler_id = logger.add(string_io, format="{level} {message}")
    yield string_io
    logger.remove(handler_id)


@pytest.fixture
def platform() -> FakePlatform:
    return FakePlatform()


@pytest.fixture
def api_config() -> ApiConfig:
    """Fast transport settings: no throttle, tiny backoff."""
    return ApiConfig(request_delay_seconds=0.0, max_retries=3, initial_backoff_seconds=0.01)


@pytest.fixture
def config(api_config: ApiConfig) -> Config:
    return Config(token="test-token", base_url=BASE_URL, api=api_config)


@pytest.fixture
def client(platform: FakePlatform, api_config: ApiConfig) -> VapiClient:
    return VapiClient(BASE_URL, "test-token", api_config, transport=httpx.MockTransport(platform.handler))


@pytest.fixture
def store_factory(tmp_path: Path) -> Callable[[dict[str, Any] | None], IdentifierStore]:
    """Create an identifier store backed by a temp file."""

    def factory(data: dict[str, Any] | None = None) -> IdentifierStore:
        path = tmp_path / ".vapi-state.dev.json"
        if data is not None:
            path.write_text(json.dumps(data))
        return IdentifierStore.load(path)

    return factory


@pytest.fixture
def unique_id() -> str:
    """Generate a platform-shaped identifier."""
    return str(uuid4())


@pytest.fixture(name="make_doc")
def make_doc_fixture() -> Callable[..., ResourceDocument]:
    return make_doc


@pytest.fixture
def loader_factory() -> Callable[..., StaticLoader]:
    return StaticLoader
