"""Source map loading, tracing and chain collapsing.

Every pipeline stage reads a file that already has a source map and
writes a new file with a map pointing at its input. This module walks
such chains back to the original sources and rewrites the newest map so
that it references the originals directly.

Only version 3 source maps are supported. Generated lines and columns
are zero-based, as in the encoded ``mappings`` field.
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
import os
import re
from bisect import bisect_right
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import unquote

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

BASE64_CHARS = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789+/"
BASE64_VALUES = {char: index for index, char in enumerate(BASE64_CHARS)}

VLQ_SHIFT = 5
VLQ_CONTINUATION = 1 << VLQ_SHIFT
VLQ_MASK = VLQ_CONTINUATION - 1

SOURCE_MAPPING_URL_RE = re.compile(
    r"^[ \t]*//[#@] sourceMappingURL=(\S+)[ \t]*$", re.M
)

# A decoded segment: (column,) or (column, source, line, col[, name])
Segment = tuple[int, ...]


class SourceMapError(Exception):
    """Raised when a source map cannot be decoded."""

    def __init__(self, message: str, code: str = "sourcemap_error") -> None:
        super().__init__(message)
        self.code = code


def encode_vlq(value: int) -> str:
    """Encode a signed integer as a base64 VLQ string."""
    vlq = (-value << 1) | 1 if value < 0 else value << 1
    out = []
    while True:
        digit = vlq & VLQ_MASK
        vlq >>= VLQ_SHIFT
        if vlq:
            digit |= VLQ_CONTINUATION
        out.append(BASE64_CHARS[digit])
        if not vlq:
            return "".join(out)


def decode_vlq(text: str) -> list[int]:
    """Decode a base64 VLQ string into its signed integers.

    Raises:
        SourceMapError: On invalid characters or a truncated value.
    """
    values: list[int] = []
    shift = 0
    value = 0
    for char in text:
        try:
            digit = BASE64_VALUES[char]
        except KeyError:
            raise SourceMapError(f"Invalid VLQ character: {char!r}") from None
        value += (digit & VLQ_MASK) << shift
        if digit & VLQ_CONTINUATION:
            shift += VLQ_SHIFT
            continue
        negative = value & 1
        value >>= 1
        values.append(-value if negative else value)
        shift = 0
        value = 0
    if shift:
        raise SourceMapError(f"Truncated VLQ value in {text!r}")
    return values


def decode_mappings(mappings: str) -> list[list[Segment]]:
    """Decode a ``mappings`` string into absolute segments per line."""
    lines: list[list[Segment]] = []
    source = src_line = src_col = name = 0

    for line_text in mappings.split(";"):
        column = 0
        segments: list[Segment] = []
        for chunk in line_text.split(","):
            if not chunk:
                continue
            fields = decode_vlq(chunk)
            if len(fields) not in (1, 4, 5):
                raise SourceMapError(f"Invalid segment length {len(fields)}")
            column += fields[0]
            if len(fields) == 1:
                segments.append((column,))
                continue
            source += fields[1]
            src_line += fields[2]
            src_col += fields[3]
            if len(fields) == 5:
                name += fields[4]
                segments.append((column, source, src_line, src_col, name))
            else:
                segments.append((column, source, src_line, src_col))
        lines.append(segments)

    return lines


def encode_mappings(lines: list[list[Segment]]) -> str:
    """Encode absolute segments per line into a ``mappings`` string."""
    out: list[str] = []
    source = src_line = src_col = name = 0

    for segments in lines:
        column = 0
        chunks: list[str] = []
        for segment in segments:
            parts = [encode_vlq(segment[0] - column)]
            column = segment[0]
            if len(segment) >= 4:
                parts.append(encode_vlq(segment[1] - source))
                parts.append(encode_vlq(segment[2] - src_line))
                parts.append(encode_vlq(segment[3] - src_col))
                source, src_line, src_col = segment[1], segment[2], segment[3]
            if len(segment) == 5:
                parts.append(encode_vlq(segment[4] - name))
                name = segment[4]
            chunks.append("".join(parts))
        out.append(",".join(chunks))

    return ";".join(out)


class SourceMap(BaseModel):
    """A version 3 source map document."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    version: int = 3
    file: str | None = None
    source_root: str | None = Field(default=None, alias="sourceRoot")
    sources: list[str | None] = Field(default_factory=list)
    sources_content: list[str | None] | None = Field(
        default=None, alias="sourcesContent"
    )
    names: list[str] = Field(default_factory=list)
    mappings: str = ""

    @classmethod
    def from_json(cls, text: str) -> SourceMap:
        data = json.loads(text)
        if data.get("version") != 3:
            raise SourceMapError(
                f"Unsupported source map version: {data.get('version')}"
            )
        return cls.model_validate(data)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)

    def decoded(self) -> list[list[Segment]]:
        return decode_mappings(self.mappings)


def find_sourcemap_url(text: str) -> str | None:
    """Return the last ``sourceMappingURL`` of a generated file, if any."""
    matches = SOURCE_MAPPING_URL_RE.findall(text)
    return matches[-1] if matches else None


def set_sourcemap_url(text: str, url: str) -> str:
    """Point the ``sourceMappingURL`` comment of a file at ``url``."""
    body = SOURCE_MAPPING_URL_RE.sub("", text).rstrip("\n")
    return body + "\n//# sourceMappingURL=" + url + "\n"


def _decode_data_uri(url: str) -> str:
    header, _, payload = url.partition(",")
    if header.endswith(";base64"):
        return base64.b64decode(payload).decode("utf-8")
    return unquote(payload)


def load_sourcemap(path: Path) -> tuple[SourceMap, Path | None] | None:
    """Load the source map of a generated file.

    The map is located through the file's ``sourceMappingURL`` comment
    (external file or inline data URI), falling back to a ``.map``
    sibling.

    Args:
        path: Generated file.

    Returns:
        ``(map, map_path)`` with ``map_path`` None for inline maps, or
        None when the file has no map.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return None

    url = find_sourcemap_url(text)
    if url is not None and url.startswith("data:"):
        return SourceMap.from_json(_decode_data_uri(url)), None

    map_path = path.parent / url if url is not None else Path(f"{path}.map")
    if not map_path.is_file():
        return None
    return SourceMap.from_json(map_path.read_text(encoding="utf-8")), map_path


@dataclass(eq=False)
class _Node:
    """A file in a source map chain. Nodes without a map are originals."""

    path: Path
    content: str | None = None
    sourcemap: SourceMap | None = None
    lines: list[list[Segment]] = field(default_factory=list)
    sources: list[_Node | None] = field(default_factory=list)
    columns: list[list[int]] = field(default_factory=list)

    def trace(
        self, line: int, column: int, name: str | None
    ) -> tuple[_Node, int, int, str | None] | None:
        """Trace a position in this file back to its original source."""
        if self.sourcemap is None:
            return self, line, column, name
        if line >= len(self.lines):
            return None

        segments = self.lines[line]
        index = bisect_right(self.columns[line], column) - 1
        if index < 0:
            return None
        segment = segments[index]
        if len(segment) == 1:
            return None

        source = self.sources[segment[1]]
        if source is None:
            return None
        if len(segment) == 5:
            name = self.sourcemap.names[segment[4]]
        return source.trace(segment[2], segment[3], name)


def _resolve_source(map_dir: Path, source_root: str | None, source: str) -> Path:
    if source_root:
        source = f"{source_root.rstrip('/')}/{source}"
    return Path(os.path.normpath(map_dir / source))


class _ChainLoader:
    """Loads the map chain below a file, sharing nodes between branches."""

    def __init__(self) -> None:
        self.nodes: dict[Path, _Node] = {}
        self.loading: set[Path] = set()

    def load(self, path: Path, content: str | None = None) -> _Node:
        path = Path(os.path.normpath(path))
        if path in self.nodes:
            node = self.nodes[path]
            if node.content is None:
                node.content = content
            return node

        node = _Node(path=path, content=content)
        if path in self.loading:
            return node
        self.loading.add(path)

        loaded = load_sourcemap(path) if path.is_file() else None
        if loaded is not None:
            sourcemap, map_path = loaded
            map_dir = map_path.parent if map_path is not None else path.parent
            self._attach(node, sourcemap, map_dir)

        self.loading.discard(path)
        self.nodes[path] = node
        return node

    def _attach(self, node: _Node, sourcemap: SourceMap, map_dir: Path) -> None:
        node.sourcemap = sourcemap
        node.lines = sourcemap.decoded()
        node.columns = [[segment[0] for segment in line] for line in node.lines]
        contents = sourcemap.sources_content or []
        for index, source in enumerate(sourcemap.sources):
            if source is None:
                node.sources.append(None)
                continue
            content = contents[index] if index < len(contents) else None
            node.sources.append(
                self.load(
                    _resolve_source(map_dir, sourcemap.source_root, source),
                    content,
                )
            )


def collapse_sourcemap(path: Path) -> bool:
    """Rewrite the source map of ``path`` to point at original sources.

    Walks back through the maps of the file's sources (any depth) and
    writes a single combined map over the file's map. Running it on an
    already collapsed map rewrites an identical map.

    Args:
        path: Generated file with an adjacent or inline source map.

    Returns:
        True if a map was written, False if the file has no map.
    """
    loaded = load_sourcemap(path)
    if loaded is None:
        logger.debug("No source map for %s, skipping", path)
        return False

    _, existing_map_path = loaded
    map_path = existing_map_path or Path(f"{path}.map")
    map_dir = map_path.parent

    node = _ChainLoader().load(path)
    if node.sourcemap is None:
        return False

    sources: dict[Path, int] = {}
    source_nodes: list[_Node] = []
    names: dict[str, int] = {}
    lines: list[list[Segment]] = []

    for line_segments in node.lines:
        out: list[Segment] = []
        for segment in line_segments:
            if len(segment) == 1:
                continue
            source = node.sources[segment[1]]
            if source is None:
                continue
            name = node.sourcemap.names[segment[4]] if len(segment) == 5 else None
            traced = source.trace(segment[2], segment[3], name)
            if traced is None:
                continue
            origin, line, column, traced_name = traced
            if origin.path not in sources:
                sources[origin.path] = len(source_nodes)
                source_nodes.append(origin)
            mapped: Segment = (segment[0], sources[origin.path], line, column)
            if traced_name is not None:
                if traced_name not in names:
                    names[traced_name] = len(names)
                mapped += (names[traced_name],)
            out.append(mapped)
        lines.append(out)

    contents = [_read_content(origin) for origin in source_nodes]
    collapsed = SourceMap(
        file=path.name,
        sources=[
            Path(os.path.relpath(origin.path, map_dir)).as_posix()
            for origin in source_nodes
        ],
        sources_content=contents if any(c is not None for c in contents) else None,
        names=list(names),
        mappings=encode_mappings(lines),
    )

    map_path.write_text(collapsed.to_json(), encoding="utf-8")
    text = path.read_text(encoding="utf-8")
    url = os.path.relpath(map_path, path.parent).replace(os.sep, "/")
    if find_sourcemap_url(text) != url:
        path.write_text(set_sourcemap_url(text, url), encoding="utf-8")

    logger.debug(
        "Collapsed source map of %s onto %d original source(s)",
        path,
        len(source_nodes),
    )
    return True


def _read_content(node: _Node) -> str | None:
    if node.content is not None:
        return node.content
    try:
        return node.path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return None


async def remap_sourcemap(path: Path) -> bool:
    """Collapse the source map chain of ``path`` without blocking the loop."""
    return await asyncio.to_thread(collapse_sourcemap, path)


def shift_generated_columns(
    sourcemap: SourceMap,
    insertions: dict[int, list[tuple[int, int]]],
) -> SourceMap:
    """Shift generated columns after text was inserted into lines.

    Args:
        sourcemap: Map of the file before insertion.
        insertions: Generated line -> list of ``(column, length)`` inserts,
            columns relative to the original line text.

    Returns:
        A new map with the same sources and shifted columns.
    """
    lines = sourcemap.decoded()
    for line, inserts in insertions.items():
        if line >= len(lines):
            continue
        ordered = sorted(inserts)
        shifted: list[Segment] = []
        for segment in lines[line]:
            delta = sum(length for column, length in ordered if column <= segment[0])
            shifted.append((segment[0] + delta, *segment[1:]))
        lines[line] = shifted

    return sourcemap.model_copy(update={"mappings": encode_mappings(lines)})


__all__ = [
    "Segment",
    "SourceMap",
    "SourceMapError",
    "collapse_sourcemap",
    "decode_mappings",
    "decode_vlq",
    "encode_mappings",
    "encode_vlq",
    "find_sourcemap_url",
    "load_sourcemap",
    "remap_sourcemap",
    "set_sourcemap_url",
    "shift_generated_columns",
]
