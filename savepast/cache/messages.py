from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from urllib.parse import urljoin, urlsplit

import httpx


@dataclass(frozen=True)
class FetchRequest:
    """An intercepted request. Identity for caching is (method, url)."""

    url: str
    method: str = "GET"
    headers: dict[str, str] = field(default_factory=dict)
    mode: str = "cors"  # "navigate" for page loads
    body: bytes = b""

    @property
    def path(self) -> str:
        return urlsplit(self.url).path or "/"

    @property
    def scheme(self) -> str:
        return urlsplit(self.url).scheme

    def header(self, name: str) -> str | None:
        name = name.lower()
        for k, v in self.headers.items():
            if k.lower() == name:
                return v
        return None

    def sibling(self, path: str) -> "FetchRequest":
        """GET request for another path on the same origin (used for shell lookups)."""
        return FetchRequest(url=urljoin(self.url, path))


@dataclass(frozen=True)
class FetchResponse:
    status: int
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    status_text: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def clone(self) -> "FetchResponse":
        return replace(self, headers=dict(self.headers))

    def json(self):
        return json.loads(self.body.decode("utf-8"))

    @classmethod
    def from_httpx(cls, resp: httpx.Response) -> "FetchResponse":
        # Body is already decoded by httpx; drop headers describing the wire encoding.
        headers = {
            k: v
            for k, v in resp.headers.items()
            if k.lower() not in {"content-encoding", "content-length", "transfer-encoding", "connection"}
        }
        return cls(status=resp.status_code, headers=headers, body=resp.content, status_text=resp.reason_phrase)


def offline_json_response() -> FetchResponse:
    body = json.dumps({"error": "Offline", "message": "No cached data available"}).encode("utf-8")
    return FetchResponse(status=503, headers={"content-type": "application/json"}, body=body)


def service_unavailable(text: str = "Network error") -> FetchResponse:
    return FetchResponse(
        status=503,
        headers={"content-type": "text/plain; charset=utf-8"},
        body=text.encode("utf-8"),
        status_text="Service Unavailable",
    )
