"""Pure-call annotation of downleveled ES5 bundles.

Marks side-effect free class IIFEs and framework factory calls with a
``/*@__PURE__*/`` comment so minifiers can drop them when unused.
Annotations are inserted within a line, so the file keeps its line
structure; the file's source map columns are shifted to match.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

from libpackager.builds.sourcemaps import (
    load_sourcemap,
    set_sourcemap_url,
    shift_generated_columns,
)

logger = logging.getLogger(__name__)

PURE_ANNOTATION = "/*@__PURE__*/"

# ES5 class: `var Foo = (function () {` followed by `function Foo(`
# (possibly after comment lines).
CLASS_IIFE_RE = re.compile(
    r"^(?P<prefix>[ \t]*var (?P<name>[\w$]+) = )(?=\(function \(\) \{\s*"
    r"(?:(?:/\*\*|\*|\*/|//)[^\n]*\n\s*)*function (?P=name)\()",
    re.M,
)

# ES5 subclass: `var Foo = (function (_super) {` followed by the
# `__extends(Foo, _super)` helper call.
SUBCLASS_IIFE_RE = re.compile(
    r"^(?P<prefix>[ \t]*var (?P<name>[\w$]+) = )(?=\(function \(_super\) \{\s*"
    r"(?:[\w$]+\.)?__extends\((?P=name), _super\);)",
    re.M,
)

# Framework factories known to be side-effect free.
PURE_FACTORIES = ("InjectionToken", "OpaqueToken")
FACTORY_CALL_RE = re.compile(
    r"(?P<prefix>(?<![=!<>])=[ \t]*)(?=new (?:[\w$]+\.)?(?:"
    + "|".join(PURE_FACTORIES)
    + r")\()"
)

ANNOTATION_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (CLASS_IIFE_RE, PURE_ANNOTATION),
    (SUBCLASS_IIFE_RE, PURE_ANNOTATION),
    (FACTORY_CALL_RE, PURE_ANNOTATION + " "),
)


def _line_starts(text: str) -> list[int]:
    starts = [0]
    starts.extend(match.end() for match in re.finditer(r"\n", text))
    return starts


def add_pure_annotations(text: str) -> tuple[str, list[tuple[int, int, int]]]:
    """Insert pure annotations into ES5 source text.

    Args:
        text: ES5 source.

    Returns:
        ``(annotated_text, insertions)`` where each insertion is
        ``(line, column, length)`` relative to the input text.
    """
    inserts: dict[int, str] = {}
    for pattern, annotation in ANNOTATION_PATTERNS:
        for match in pattern.finditer(text):
            inserts.setdefault(match.end("prefix"), annotation)

    if not inserts:
        return text, []

    starts = _line_starts(text)
    insertions: list[tuple[int, int, int]] = []
    pieces: list[str] = []
    last = 0
    line = 0
    for offset in sorted(inserts):
        while line + 1 < len(starts) and starts[line + 1] <= offset:
            line += 1
        annotation = inserts[offset]
        pieces.append(text[last:offset])
        pieces.append(annotation)
        insertions.append((line, offset - starts[line], len(annotation)))
        last = offset
    pieces.append(text[last:])

    return "".join(pieces), insertions


def add_pure_annotations_to_file(path: Path) -> int:
    """Annotate an ES5 file in place and keep its source map aligned.

    Args:
        path: ES5 bundle file.

    Returns:
        Number of annotations inserted.
    """
    original = path.read_text(encoding="utf-8")
    annotated, insertions = add_pure_annotations(original)
    if not insertions:
        logger.debug("No pure annotations for %s", path)
        return 0

    loaded = load_sourcemap(path)
    if loaded is not None:
        sourcemap, map_path = loaded
        shifts: dict[int, list[tuple[int, int]]] = {}
        for line, column, length in insertions:
            shifts.setdefault(line, []).append((column, length))
        shifted = shift_generated_columns(sourcemap, shifts)
        if map_path is None:
            map_path = Path(f"{path}.map")
            annotated = set_sourcemap_url(annotated, map_path.name)
        map_path.write_text(shifted.to_json(), encoding="utf-8")

    path.write_text(annotated, encoding="utf-8")
    logger.info("Added %d pure annotation(s) to %s", len(insertions), path.name)
    return len(insertions)


__all__ = [
    "ANNOTATION_PATTERNS",
    "PURE_ANNOTATION",
    "PURE_FACTORIES",
    "add_pure_annotations",
    "add_pure_annotations_to_file",
]
