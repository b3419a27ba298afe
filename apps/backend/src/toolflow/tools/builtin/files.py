"""Read-only file tools confined to ``settings.file_root``.

Every user-supplied path is resolved (symlinks included) and must stay inside
the root; results report paths relative to it.
"""

from __future__ import annotations

import asyncio
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

from . import ToolContext, builtin_tool


class FileReadParams(BaseModel):
    file_path: str = Field(..., description="Path of the file to read, relative to the file root")
    encoding: Literal["utf-8", "ascii", "latin-1", "utf-16"] = Field("utf-8", description="File encoding")


class FileListParams(BaseModel):
    directory_path: str = Field(".", description="Directory to list, relative to the file root")
    recursive: bool = False
    pattern: Optional[str] = Field(None, description="Optional regex matched against relative paths")


class FileInfoParams(BaseModel):
    file_path: str = Field(..., description="Path to inspect, relative to the file root")


def _root(ctx: ToolContext) -> Path:
    return Path(ctx.settings.file_root).resolve()


def _resolve(root: Path, user_path: str) -> Path:
    target = (root / user_path).resolve()
    if target != root and not target.is_relative_to(root):
        raise ValueError("Access outside permitted file root")
    return target


def _relative(root: Path, path: Path) -> str:
    return path.relative_to(root).as_posix()


def _timestamp(seconds: float) -> str:
    return datetime.fromtimestamp(seconds, tz=timezone.utc).isoformat()


@builtin_tool(
    "file_read",
    category="file",
    description="Read a text file under the configured file root",
    parameters=FileReadParams,
)
async def file_read(params: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
    root = _root(ctx)
    path = _resolve(root, params["file_path"])
    limit = ctx.settings.file_max_bytes

    def read() -> str:
        if not path.is_file():
            raise FileNotFoundError(f"No such file: {params['file_path']}")
        if path.stat().st_size > limit:
            raise ValueError(f"File exceeds maximum readable size ({limit} bytes)")
        return path.read_text(encoding=params["encoding"])

    content = await asyncio.to_thread(read)
    return {"file_path": _relative(root, path), "content": content, "encoding": params["encoding"]}


@builtin_tool(
    "file_list",
    category="file",
    description="List files in a directory under the configured file root",
    parameters=FileListParams,
)
async def file_list(params: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
    root = _root(ctx)
    directory = _resolve(root, params["directory_path"])
    try:
        matcher = re.compile(params["pattern"]) if params["pattern"] else None
    except re.error as exc:
        raise ValueError(f"Invalid pattern: {exc}") from exc

    def walk() -> list[Path]:
        if not directory.is_dir():
            raise FileNotFoundError(f"Directory does not exist: {params['directory_path']}")
        entries = directory.rglob("*") if params["recursive"] else directory.iterdir()
        return sorted(p for p in entries if p.is_file())

    files = []
    for path in await asyncio.to_thread(walk):
        relative = _relative(root, path)
        if matcher is None or matcher.search(relative):
            files.append({"path": relative, "name": path.name, "extension": path.suffix})

    return {"directory_path": _relative(root, directory), "files": files, "count": len(files)}


@builtin_tool(
    "file_info",
    category="file",
    description="Get size, type and timestamps of a path under the configured file root",
    parameters=FileInfoParams,
)
async def file_info(params: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
    root = _root(ctx)
    path = _resolve(root, params["file_path"])
    stats = await asyncio.to_thread(path.stat)
    return {
        "file_path": _relative(root, path),
        "name": path.name,
        "directory": _relative(root, path.parent) if path != root else ".",
        "extension": path.suffix,
        "size": stats.st_size,
        "is_file": path.is_file(),
        "is_directory": path.is_dir(),
        "created": _timestamp(stats.st_ctime),
        "modified": _timestamp(stats.st_mtime),
        "accessed": _timestamp(stats.st_atime),
    }
