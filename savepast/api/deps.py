from __future__ import annotations

from fastapi import Header, Request

from savepast.core.runtime import Runtime


def get_runtime(request: Request) -> Runtime:
    return request.app.state.runtime


def get_client_id(x_client_id: str | None = Header(default=None, alias="X-Client-Id")) -> str | None:
    return x_client_id or None
