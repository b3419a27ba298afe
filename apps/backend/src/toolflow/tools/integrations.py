"""Tools contributed by external integrations (the ``agentic`` category)."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol
from urllib.parse import quote

import httpx
from pydantic import BaseModel, Field

from .sandbox import compile_expression
from .schema import ToolDescriptor

if TYPE_CHECKING:
    from ..config import Settings

AGENTIC_CATEGORY = "agentic"


class Integration(Protocol):
    """Something that contributes a batch of tools to the catalog."""

    name: str

    async def tools(self) -> list[ToolDescriptor]: ...


class CalculatorParams(BaseModel):
    expression: str = Field(..., description="Arithmetic expression, e.g. (2 + 3) * 4")


class CalculatorIntegration:
    name = "calculator"

    async def tools(self) -> list[ToolDescriptor]:
        async def calculate(params: dict[str, Any]) -> dict[str, Any]:
            expression = params["expression"]
            result = compile_expression(expression, allowed_names=()).evaluate({})
            if isinstance(result, bool) or not isinstance(result, (int, float)):
                raise ValueError(f"Expression did not evaluate to a number: {expression}")
            return {"expression": expression, "result": result}

        return [
            ToolDescriptor(
                name="calculator",
                description="Evaluate an arithmetic expression",
                parameter_schema=CalculatorParams,
                category=AGENTIC_CATEGORY,
                executor=calculate,
                origin="integration",
            )
        ]


class WikipediaSearchParams(BaseModel):
    query: str = Field(..., description="Search query")
    limit: int = Field(5, ge=1, le=20, description="Number of results to return")


class WikipediaSummaryParams(BaseModel):
    title: str = Field(..., description="Exact article title")


class WikipediaIntegration:
    name = "wikipedia"

    def __init__(self, http_client: httpx.AsyncClient, base_url: str = "https://en.wikipedia.org"):
        self.http = http_client
        self.base_url = base_url.rstrip("/")

    async def search(self, params: dict[str, Any]) -> dict[str, Any]:
        resp = await self.http.get(
            f"{self.base_url}/w/rest.php/v1/search/page",
            params={"q": params["query"], "limit": params["limit"]},
        )
        resp.raise_for_status()
        pages = resp.json().get("pages", [])
        return {
            "query": params["query"],
            "results": [
                {
                    "title": page.get("title"),
                    "description": page.get("description"),
                    "url": f"{self.base_url}/wiki/{page.get('key')}",
                }
                for page in pages
            ],
        }

    async def summary(self, params: dict[str, Any]) -> dict[str, Any]:
        title = params["title"].replace(" ", "_")
        resp = await self.http.get(f"{self.base_url}/api/rest_v1/page/summary/{quote(title, safe='')}")
        resp.raise_for_status()
        data = resp.json()
        return {
            "title": data.get("title"),
            "extract": data.get("extract", ""),
            "url": data.get("content_urls", {}).get("desktop", {}).get("page"),
        }

    async def tools(self) -> list[ToolDescriptor]:
        return [
            ToolDescriptor(
                name="wikipedia_search",
                description="Search Wikipedia articles",
                parameter_schema=WikipediaSearchParams,
                category=AGENTIC_CATEGORY,
                executor=self.search,
                origin="integration",
            ),
            ToolDescriptor(
                name="wikipedia_summary",
                description="Get the summary of a Wikipedia article",
                parameter_schema=WikipediaSummaryParams,
                category=AGENTIC_CATEGORY,
                executor=self.summary,
                origin="integration",
            ),
        ]


def default_integrations(settings: Settings, http_client: httpx.AsyncClient) -> list[Integration]:
    return [
        CalculatorIntegration(),
        WikipediaIntegration(http_client, settings.wikipedia_base_url),
    ]
