from __future__ import annotations

import httpx

# Queued operation type -> remote function name.
FUNCTION_NAMES: dict[str, str] = {
    "reconstruct3d": "reconstruct-3d",
    "generateInfoCard": "generate-info-card",
    "colorize": "colorize",
}


class APIError(Exception):
    def __init__(self, message: str, status_code: int, details: dict | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.details = details


class UnknownOperationError(Exception):
    pass


class FunctionsClient:
    """Calls the remote AI functions (3D reconstruction, info cards, colorization).

    Transport failures surface as httpx.TransportError; a non-2xx answer raises APIError.
    """

    def __init__(self, *, base_url: str, client: httpx.AsyncClient) -> None:
        self.base_url = base_url.rstrip("/")
        self.client = client

    async def call(self, function_name: str, payload: dict) -> dict:
        r = await self.client.post(f"{self.base_url}/{function_name}", json=payload)

        if r.status_code < 200 or r.status_code >= 300:
            try:
                data = r.json()
                if not isinstance(data, dict):
                    data = {"error": str(data)}
            except ValueError:
                data = {"error": r.text or "API request failed"}
            raise APIError(data.get("error") or "API request failed", r.status_code, data)

        return r.json()

    async def invoke(self, op_type: str, payload: dict) -> dict:
        name = FUNCTION_NAMES.get(op_type)
        if not name:
            raise UnknownOperationError(f"No remote function for operation type={op_type}")
        return await self.call(name, payload)
