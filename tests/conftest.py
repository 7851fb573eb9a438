"""
Shared fixtures: a scripted command runner, a mock HTTP transport and a
scratch host root, so stages run without touching the real machine.
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

import httpx
import pytest

from labhost_installer.config import LabConfig
from labhost_installer.context import HostCtx
from labhost_installer.errors import CommandError
from labhost_installer.lib.command import CmdResult

Response = Tuple[int, str]
Responder = Union[Response, Callable[[List[str]], Response]]


class FakeRunner:
    """Records every command; answers from rules registered with `on()` (default: rc 0, no output)."""

    def __init__(self) -> None:
        self.calls: List[List[str]] = []
        self.cwds: List[Optional[str]] = []
        self._rules: List[Tuple[Tuple[str, ...], List[Responder]]] = []

    def on(self, *prefix: str, returncode: int = 0, stdout: str = "", sequence: Sequence[Responder] = ()) -> None:
        """Answer commands starting with `prefix`; a `sequence` is consumed in order, the last entry repeats."""
        responses = list(sequence) or [(returncode, stdout)]
        self._rules.append((tuple(prefix), responses))

    def on_call(self, *prefix: str, action: Callable[[List[str]], Response]) -> None:
        self._rules.append((tuple(prefix), [action]))

    def _respond(self, argv: List[str]) -> Response:
        for prefix, responses in reversed(self._rules):
            if tuple(argv[: len(prefix)]) == prefix:
                responder = responses.pop(0) if len(responses) > 1 else responses[0]
                return responder(argv) if callable(responder) else responder
        return 0, ""

    def run(self, argv, *, check=True, env=None, cwd=None, input_text=None) -> CmdResult:
        argv = [str(a) for a in argv]
        self.calls.append(argv)
        self.cwds.append(cwd)
        rc, out = self._respond(argv)
        if check and rc != 0:
            raise CommandError(argv, rc, "")
        return CmdResult(argv=argv, returncode=rc, stdout=out, stderr="")

    def ran(self, *prefix: str) -> bool:
        return any(tuple(c[: len(prefix)]) == prefix for c in self.calls)

    def count(self, *prefix: str) -> int:
        return sum(1 for c in self.calls if tuple(c[: len(prefix)]) == prefix)


def not_cloud(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("metadata service unreachable", request=request)


class Routes:
    """URL -> response table behind an httpx.MockTransport. Unknown URLs get a 404."""

    def __init__(self) -> None:
        self.table: Dict[str, Callable[[httpx.Request], httpx.Response]] = {}
        self.requested: List[str] = []
        self.handle("http://169.254.169.254", not_cloud)

    def handle(self, url: str, handler: Callable[[httpx.Request], httpx.Response]) -> None:
        self.table[url] = handler

    def add(self, url: str, status_code: int = 200, **kwargs) -> None:
        self.table[url] = lambda _request: httpx.Response(status_code, **kwargs)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url).rstrip("/")
        self.requested.append(url)
        for key, handler in self.table.items():
            if key.rstrip("/") == url:
                return handler(request)
        return httpx.Response(404, text="not found")


@pytest.fixture
def host_root(tmp_path: Path) -> Path:
    root = tmp_path / "host"
    root.mkdir()
    return root


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def routes() -> Routes:
    return Routes()


@pytest.fixture
def make_ctx(host_root: Path, runner: FakeRunner, routes: Routes):
    clients: List[httpx.Client] = []

    def _make(raw: Optional[dict] = None, secrets: Optional[dict] = None) -> HostCtx:
        settings = {
            "root": str(host_root),
            "readiness": {"interval": 0, "dns_deadline": 0, "http_deadline": 0, "service_deadline": 0},
        }
        settings.update(raw or {})
        cfg = LabConfig(raw=settings, secrets=dict(secrets or {}))
        client = httpx.Client(transport=httpx.MockTransport(routes))
        clients.append(client)
        return HostCtx(cfg=cfg, runner=runner, http=client, root=host_root)

    yield _make

    for c in clients:
        c.close()


def write(root: Path, host_path: str, content: str = "") -> Path:
    p = root / host_path.lstrip("/")
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(content, encoding="utf-8")
    return p


def read(root: Path, host_path: str) -> str:
    return (root / host_path.lstrip("/")).read_text(encoding="utf-8")
