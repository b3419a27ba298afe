"""Web tools: fetch a page, extract its readable text."""

from __future__ import annotations

from typing import Any, Optional

from bs4 import BeautifulSoup
from pydantic import BaseModel, Field, HttpUrl

from . import ToolContext, builtin_tool

DEFAULT_UA = "Mozilla/5.0 (compatible; ToolFlow/0.1; +https://github.com/toolflow)"


class WebFetchParams(BaseModel):
    url: HttpUrl = Field(..., description="URL to fetch")


class WebExtractParams(BaseModel):
    url: HttpUrl = Field(..., description="URL to fetch & extract")
    selector: Optional[str] = Field(None, description="CSS selector (optional)")


def _truncate(text: str, limit: int) -> tuple[str, bool]:
    if len(text) <= limit:
        return text, False
    return text[:limit], True


async def _get(ctx: ToolContext, url: str):
    resp = await ctx.http.get(
        url,
        headers={"user-agent": DEFAULT_UA},
        timeout=ctx.settings.http_timeout_seconds,
        follow_redirects=True,
    )
    resp.raise_for_status()
    return resp


@builtin_tool(
    "web_fetch",
    category="web",
    description="Fetch a URL and return its status, content type and body text",
    parameters=WebFetchParams,
)
async def web_fetch(params: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
    resp = await _get(ctx, str(params["url"]))
    body, truncated = _truncate(resp.text, ctx.settings.web_max_content_chars)
    return {
        "url": str(resp.url),
        "status": resp.status_code,
        "content_type": resp.headers.get("content-type", ""),
        "content": body,
        "truncated": truncated,
    }


@builtin_tool(
    "web_extract",
    category="web",
    description="Extract text from a web page (whole body or selector)",
    parameters=WebExtractParams,
)
async def web_extract(params: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
    resp = await _get(ctx, str(params["url"]))
    soup = BeautifulSoup(resp.text, "html.parser")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()

    selector = params.get("selector")
    if selector:
        nodes = soup.select(selector)
        text = "\n".join(node.get_text(" ", strip=True) for node in nodes)
    else:
        root = soup.body or soup
        text = root.get_text(" ", strip=True)

    text, truncated = _truncate(text, ctx.settings.web_max_content_chars)
    title = soup.title.get_text(strip=True) if soup.title else ""
    return {"url": str(resp.url), "title": title, "text": text, "truncated": truncated}
