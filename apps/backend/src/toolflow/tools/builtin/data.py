"""Data tools: CSV, JSON, YAML, XML and Markdown-table conversion, filtering and grouping."""

from __future__ import annotations

import csv
import io
import json
import math
import xml.etree.ElementTree as ET
from typing import Any, Literal, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field

from . import ToolContext, builtin_tool


class CsvToJsonParams(BaseModel):
    csv: str = Field(..., description="CSV content to convert")
    delimiter: Literal[",", ";", "\t", "|"] = Field(",", description="CSV delimiter")
    has_header: bool = Field(True, description="Whether the CSV has a header row")


class JsonToCsvParams(BaseModel):
    json_data: str = Field(..., description="JSON array to convert")
    delimiter: Literal[",", ";", "\t", "|"] = Field(",", description="CSV delimiter")
    include_header: bool = Field(True, description="Include header row")


class DataFilterParams(BaseModel):
    data: str = Field(..., description="JSON array to filter")
    filters: dict[str, Any] = Field(..., description="Key-value filter criteria (dot-notation keys)")
    operator: Literal["AND", "OR"] = "AND"


class YamlToJsonParams(BaseModel):
    yaml_text: str = Field(..., description="YAML text to convert")


class JsonToYamlParams(BaseModel):
    json_data: str = Field(..., description="JSON text to convert")
    indent: int = Field(2, ge=2, le=8, description="Indent size")


class Aggregation(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    field: str = Field(..., description="Field to aggregate (dot-notation)")
    function: Literal["sum", "avg", "min", "max", "count"]
    output_name: Optional[str] = Field(None, alias="as", description="Result key; defaults to <function>_<field>")


class DataAggregationParams(BaseModel):
    data: str = Field(..., description="JSON array to aggregate")
    group_by: str = Field(..., description="Field to group by (dot-notation)")
    aggregations: list[Aggregation] = Field(..., min_length=1)


class XmlToJsonParams(BaseModel):
    xml: str = Field(..., description="XML string to convert")


class JsonToXmlParams(BaseModel):
    json_data: str = Field(..., description="JSON string to convert")
    root_name: str = Field("root", description="Name of the root element")


class MdTableToJsonParams(BaseModel):
    markdown: str = Field(..., description="Markdown table")


class JsonToMdTableParams(BaseModel):
    json_data: str = Field(..., description="JSON array of objects to convert")


def _load_json(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValueError("Invalid JSON supplied") from exc


def _lookup(item: Any, dotted: str) -> Any:
    value = item
    for part in dotted.split("."):
        if not isinstance(value, dict) or part not in value:
            return None
        value = value[part]
    return value


@builtin_tool(
    "csv_to_json",
    category="data",
    description="Convert CSV data to JSON format",
    parameters=CsvToJsonParams,
)
async def csv_to_json(params: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
    lines = [line for line in params["csv"].splitlines() if line.strip()]
    if not lines:
        raise ValueError("Empty CSV")

    reader = csv.reader(lines, delimiter=params["delimiter"])
    rows = [[cell.strip() for cell in row] for row in reader]
    if params["has_header"]:
        headers, body = rows[0], rows[1:]
    else:
        headers, body = [f"field{i + 1}" for i in range(len(rows[0]))], rows

    data = [dict(zip(headers, row)) for row in body]
    return {"data": data, "row_count": len(data), "column_count": len(headers)}


@builtin_tool(
    "json_to_csv",
    category="data",
    description="Convert a JSON array of objects to CSV",
    parameters=JsonToCsvParams,
)
async def json_to_csv(params: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
    data = _load_json(params["json_data"])
    if not isinstance(data, list) or not data or not all(isinstance(o, dict) for o in data):
        raise ValueError("Input must be a non-empty array of objects")

    keys: list[str] = []
    for obj in data:
        for key in obj:
            if key not in keys:
                keys.append(key)

    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=keys, delimiter=params["delimiter"], lineterminator="\n")
    if params["include_header"]:
        writer.writeheader()
    writer.writerows(data)
    return {"csv": buf.getvalue().rstrip("\n"), "row_count": len(data), "column_count": len(keys)}


@builtin_tool(
    "data_filter",
    category="data",
    description="Filter a JSON array by simple equality criteria",
    parameters=DataFilterParams,
)
async def data_filter(params: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
    data = _load_json(params["data"])
    if not isinstance(data, list):
        raise ValueError("Input must be a JSON array")

    filters: dict[str, Any] = params["filters"]
    combine = all if params["operator"] == "AND" else any
    filtered = [
        item for item in data
        if combine(_lookup(item, key) == expected for key, expected in filters.items())
    ]
    return {"data": filtered, "original_count": len(data), "filtered_count": len(filtered)}


@builtin_tool(
    "yaml_to_json",
    category="data",
    description="Convert YAML to JSON",
    parameters=YamlToJsonParams,
)
async def yaml_to_json(params: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
    try:
        data = yaml.safe_load(params["yaml_text"])
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid YAML: {exc}") from exc
    return {"json": json.dumps(data, default=str), "data": data}


@builtin_tool(
    "json_to_yaml",
    category="data",
    description="Convert JSON to YAML",
    parameters=JsonToYamlParams,
)
async def json_to_yaml(params: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
    data = _load_json(params["json_data"])
    text = yaml.safe_dump(data, indent=params["indent"], sort_keys=False, allow_unicode=True)
    return {"yaml": text}


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return None if math.isnan(number) else number


def _key_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True)
    return str(value)


_AGGREGATES = {
    "sum": sum,
    "avg": lambda nums: sum(nums) / len(nums) if nums else None,
    "min": lambda nums: min(nums) if nums else None,
    "max": lambda nums: max(nums) if nums else None,
    "count": len,
}


@builtin_tool(
    "data_aggregation",
    category="data",
    description="Group a JSON array by a field and aggregate numeric fields (sum, avg, min, max, count)",
    parameters=DataAggregationParams,
)
async def data_aggregation(params: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
    data = _load_json(params["data"])
    if not isinstance(data, list):
        raise ValueError("Input must be a JSON array")

    group_by = params["group_by"]
    groups: dict[str, list[Any]] = {}
    for item in data:
        key = _lookup(item, group_by)
        if key is None:
            continue
        groups.setdefault(_key_text(key), []).append(item)

    result = []
    for key, items in groups.items():
        row: dict[str, Any] = {group_by: key}
        for agg in params["aggregations"]:
            numbers = [n for n in (_number(_lookup(i, agg["field"])) for i in items) if n is not None]
            name = agg["output_name"] or f"{agg['function']}_{agg['field']}"
            row[name] = _AGGREGATES[agg["function"]](numbers)
        result.append(row)

    return {"data": result, "group_count": len(result)}


def _element_to_data(elem: ET.Element) -> Any:
    # explicit-array-off shape: leaf text, "$" for attributes, "_" for mixed text
    children = list(elem)
    text = (elem.text or "").strip()
    if not children and not elem.attrib:
        return text

    out: dict[str, Any] = {}
    if elem.attrib:
        out["$"] = dict(elem.attrib)
    for child in children:
        value = _element_to_data(child)
        if child.tag not in out:
            out[child.tag] = value
        elif isinstance(out[child.tag], list):
            out[child.tag].append(value)
        else:
            out[child.tag] = [out[child.tag], value]
    if text:
        out["_"] = text
    return out


@builtin_tool(
    "xml_to_json",
    category="data",
    description="Convert XML to JSON",
    parameters=XmlToJsonParams,
)
async def xml_to_json(params: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
    try:
        root = ET.fromstring(params["xml"])
    except ET.ParseError as exc:
        raise ValueError(f"Invalid XML: {exc}") from exc
    data = {root.tag: _element_to_data(root)}
    return {"json": json.dumps(data), "data": data}


def _check_tag(name: str) -> str:
    if not name or not (name[0].isalpha() or name[0] == "_") or any(c.isspace() or c in "<>&\"'/=" for c in name):
        raise ValueError(f"Invalid XML element name: {name!r}")
    return name


def _scalar_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _fill_element(elem: ET.Element, value: Any) -> None:
    if isinstance(value, dict):
        for key, child in value.items():
            if key == "$" and isinstance(child, dict):
                for attr, attr_value in child.items():
                    elem.set(_check_tag(attr), _scalar_text(attr_value))
            elif key == "_":
                elem.text = _scalar_text(child)
            else:
                for item in child if isinstance(child, list) else [child]:
                    _fill_element(ET.SubElement(elem, _check_tag(key)), item)
    elif isinstance(value, list):
        for item in value:
            _fill_element(ET.SubElement(elem, "item"), item)
    else:
        elem.text = _scalar_text(value)


@builtin_tool(
    "json_to_xml",
    category="data",
    description="Convert JSON to XML under a named root element",
    parameters=JsonToXmlParams,
)
async def json_to_xml(params: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
    data = _load_json(params["json_data"])
    root = ET.Element(_check_tag(params["root_name"]))
    _fill_element(root, data)
    ET.indent(root, space="  ")
    return {"xml": ET.tostring(root, encoding="unicode")}


def _split_row(line: str) -> list[str]:
    line = line.strip()
    if line.startswith("|"):
        line = line[1:]
    if line.endswith("|") and not line.endswith("\\|"):
        line = line[:-1]
    cells, current, escaped = [], [], False
    for ch in line:
        if escaped:
            current.append(ch)
            escaped = False
        elif ch == "\\":
            escaped = True
        elif ch == "|":
            cells.append("".join(current).strip())
            current = []
        else:
            current.append(ch)
    cells.append("".join(current).strip())
    return cells


def _is_delimiter_row(cells: list[str]) -> bool:
    return all(cell.strip(":") and set(cell.strip(":")) == {"-"} for cell in cells)


@builtin_tool(
    "md_table_to_json",
    category="data",
    description="Parse a Markdown table into a JSON array of row objects",
    parameters=MdTableToJsonParams,
)
async def md_table_to_json(params: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
    lines = [line for line in params["markdown"].splitlines() if line.strip()]
    if len(lines) < 2 or not _is_delimiter_row(_split_row(lines[1])):
        raise ValueError("Invalid markdown table")

    headers = _split_row(lines[0])
    rows = []
    for line in lines[2:]:
        cells = _split_row(line)
        rows.append({h: cells[i] if i < len(cells) else "" for i, h in enumerate(headers)})
    return {"rows": rows, "row_count": len(rows)}


def _cell_text(value: Any) -> str:
    if isinstance(value, (dict, list)):
        value = json.dumps(value)
    return _scalar_text(value).replace("|", "\\|").replace("\n", " ")


@builtin_tool(
    "json_to_md_table",
    category="data",
    description="Render a JSON array of objects as a Markdown table",
    parameters=JsonToMdTableParams,
)
async def json_to_md_table(params: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
    data = _load_json(params["json_data"])
    if not isinstance(data, list) or not data or not all(isinstance(o, dict) for o in data):
        raise ValueError("Input must be a non-empty array of objects")

    headers: list[str] = []
    for obj in data:
        for key in obj:
            if key not in headers:
                headers.append(key)

    table = [[_cell_text(h) for h in headers]]
    table += [[_cell_text(obj.get(h)) for h in headers] for obj in data]
    widths = [max(3, *(len(row[i]) for row in table)) for i in range(len(headers))]

    def render(cells: list[str]) -> str:
        return "| " + " | ".join(cell.ljust(w) for cell, w in zip(cells, widths)) + " |"

    lines = [render(table[0]), render(["-" * w for w in widths])]
    lines += [render(row) for row in table[1:]]
    return {"markdown": "\n".join(lines), "row_count": len(data), "column_count": len(headers)}
