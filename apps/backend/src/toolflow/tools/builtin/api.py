"""API tools: generic HTTP requests, auth header helpers and GraphQL queries.

Unlike ``web_fetch``, ``api_request`` reports non-2xx responses as data
instead of failing, so an agent can inspect the status and body.
"""

from __future__ import annotations

import base64
import json
import time
from typing import Any, Literal, Optional

import httpx
from pydantic import BaseModel, Field, HttpUrl

from . import ToolContext, builtin_tool

DEFAULT_TIMEOUT_MS = 10_000
MIN_TIMEOUT_MS = 1_000
MAX_TIMEOUT_MS = 30_000


class ApiRequestParams(BaseModel):
    url: HttpUrl = Field(..., description="The URL to send the request to")
    method: Literal["GET", "POST", "PUT", "DELETE", "PATCH"] = Field("GET", description="HTTP method")
    headers: Optional[dict[str, str]] = Field(None, description="HTTP headers to include in the request")
    body: Optional[str] = Field(None, description="Request body (ignored for GET)")
    timeout_ms: int = Field(DEFAULT_TIMEOUT_MS, ge=MIN_TIMEOUT_MS, le=MAX_TIMEOUT_MS, description="Request timeout in milliseconds")
    query_params: Optional[dict[str, str]] = Field(None, description="Query parameters to append to the URL")


class ApiAuthParams(BaseModel):
    type: Literal["basic", "bearer", "api-key"] = Field(..., description="Authentication type")
    username: Optional[str] = Field(None, description="Username for Basic auth")
    password: Optional[str] = Field(None, description="Password for Basic auth")
    token: Optional[str] = Field(None, description="Token for Bearer auth")
    api_key: Optional[str] = Field(None, description="API key value")
    api_key_name: Optional[str] = Field(None, description="API key header or query parameter name")
    api_key_in: Optional[Literal["header", "query"]] = Field(None, description="Where to include the API key")


class ApiGraphQLParams(BaseModel):
    url: HttpUrl = Field(..., description="GraphQL endpoint URL")
    query: str = Field(..., description="GraphQL query or mutation")
    variables: Optional[dict[str, Any]] = Field(None, description="Variables for the query")
    operation_name: Optional[str] = Field(None, description="Operation to run when the document holds several")
    headers: Optional[dict[str, str]] = Field(None, description="HTTP headers to include in the request")
    timeout_ms: int = Field(DEFAULT_TIMEOUT_MS, ge=MIN_TIMEOUT_MS, le=MAX_TIMEOUT_MS, description="Request timeout in milliseconds")


async def _read_capped(resp: httpx.Response, limit: int) -> bytes:
    declared = resp.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > limit:
        raise ValueError(f"Response size exceeds maximum allowed size ({limit} bytes)")

    body = bytearray()
    async for chunk in resp.aiter_bytes():
        body.extend(chunk)
        if len(body) > limit:
            raise ValueError(f"Response size exceeds maximum allowed size ({limit} bytes)")
    return bytes(body)


def _decode(resp: httpx.Response, raw: bytes) -> Any:
    if "application/json" in resp.headers.get("content-type", ""):
        return json.loads(raw) if raw else None
    return raw.decode(resp.charset_encoding or "utf-8", errors="replace")


@builtin_tool(
    "api_request",
    category="api",
    description="Send an HTTP request to an API endpoint and return status, headers and body",
    parameters=ApiRequestParams,
)
async def api_request(params: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
    method = params["method"]
    body = params["body"] if method != "GET" else None
    started = time.perf_counter()

    async with ctx.http.stream(
        method,
        str(params["url"]),
        headers=params["headers"] or {},
        params=params["query_params"] or None,
        content=body.encode() if body is not None else None,
        timeout=params["timeout_ms"] / 1000,
    ) as resp:
        raw = await _read_capped(resp, ctx.settings.api_max_response_bytes)

    return {
        "status": resp.status_code,
        "status_text": resp.reason_phrase,
        "headers": dict(resp.headers),
        "data": _decode(resp, raw),
        "url": str(resp.url),
        "method": method,
        "response_time_ms": round((time.perf_counter() - started) * 1000, 2),
    }


@builtin_tool(
    "api_auth",
    category="api",
    description="Build authentication headers or query parameters (basic, bearer, api-key)",
    parameters=ApiAuthParams,
)
async def api_auth(params: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
    auth_type = params["type"]

    if auth_type == "basic":
        if not params["username"] or not params["password"]:
            raise ValueError("Username and password are required for Basic authentication")
        token = base64.b64encode(f"{params['username']}:{params['password']}".encode()).decode()
        return {"type": auth_type, "headers": {"Authorization": f"Basic {token}"}}

    if auth_type == "bearer":
        if not params["token"]:
            raise ValueError("Token is required for Bearer authentication")
        return {"type": auth_type, "headers": {"Authorization": f"Bearer {params['token']}"}}

    if not params["api_key"] or not params["api_key_name"]:
        raise ValueError("API key and key name are required for API key authentication")
    if params["api_key_in"] == "header":
        return {"type": auth_type, "headers": {params["api_key_name"]: params["api_key"]}}
    if params["api_key_in"] == "query":
        return {"type": auth_type, "query_params": {params["api_key_name"]: params["api_key"]}}
    raise ValueError("API key location (api_key_in) must be 'header' or 'query'")


@builtin_tool(
    "api_graphql",
    category="api",
    description="Execute a GraphQL query or mutation",
    parameters=ApiGraphQLParams,
)
async def api_graphql(params: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
    payload: dict[str, Any] = {"query": params["query"]}
    if params["variables"] is not None:
        payload["variables"] = params["variables"]
    if params["operation_name"]:
        payload["operationName"] = params["operation_name"]

    started = time.perf_counter()
    resp = await ctx.http.post(
        str(params["url"]),
        json=payload,
        headers=params["headers"] or {},
        timeout=params["timeout_ms"] / 1000,
    )
    resp.raise_for_status()
    result = resp.json()
    return {
        "data": result.get("data"),
        "errors": result.get("errors"),
        "extensions": result.get("extensions"),
        "url": str(resp.url),
        "response_time_ms": round((time.perf_counter() - started) * 1000, 2),
    }
