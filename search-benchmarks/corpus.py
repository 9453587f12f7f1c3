"""
Load cached corpus files into in-memory documents.

Corpora are loaded eagerly: the benchmarks measure steady-state ingestion,
not streaming.
"""

import csv
import json
import logging
import sys
from pathlib import Path
from typing import Dict, List, Tuple

from errors import ParseError

logger = logging.getLogger(__name__)

NUMBER = "number"
STRING = "string"

# Article bodies exceed the csv module's default 128 KiB field limit.
# The limit is a C long, which is 32 bits on some platforms.
csv.field_size_limit(min(sys.maxsize, 2 ** 31 - 1))

_json_decoder = json.JSONDecoder()


def parse_header(path: str, header: List[str]) -> List[Tuple[str, str]]:
    """Split `name:type` header cells into (name, type) pairs."""
    fields = []
    for cell in header:
        name, sep, kind = cell.rpartition(":")
        if sep and kind in (NUMBER, STRING):
            fields.append((name, kind))
        else:
            fields.append((cell, STRING))

    names = [name for name, _ in fields]
    if len(set(names)) != len(names):
        raise ParseError(path, f"duplicate field names in header: {names}", line=1)
    return fields


def _convert(path: str, line: int, name: str, kind: str, value: str):
    if kind != NUMBER:
        return value
    if not value.strip():
        return None
    try:
        return float(value)
    except ValueError:
        raise ParseError(path, f"field {name!r} is not a number: {value!r}", line=line)


def load_csv(path) -> List[Dict]:
    """
    Parse a CSV corpus: header row gives the field names, every other row is
    one document. A row with the wrong column count fails the whole load.
    """
    path = str(path)
    documents = []

    try:
        with open(path, "r", encoding="utf-8", newline="") as f:
            reader = csv.reader(f)
            header = next(reader, None)
            if not header:
                raise ParseError(path, "missing header row", line=1)
            fields = parse_header(path, header)

            for row in reader:
                if not row:
                    continue
                if len(row) != len(fields):
                    raise ParseError(
                        path,
                        f"expected {len(fields)} columns, found {len(row)}",
                        line=reader.line_num
                    )
                documents.append({
                    name: _convert(path, reader.line_num, name, kind, value)
                    for (name, kind), value in zip(fields, row)
                })
    except csv.Error as e:
        raise ParseError(path, f"malformed CSV: {e}") from e
    except UnicodeDecodeError as e:
        raise ParseError(path, f"invalid UTF-8: {e}") from e

    return documents


def _line_of(text: str, pos: int) -> int:
    return text.count("\n", 0, pos) + 1


def load_json(path) -> List[Dict]:
    """
    Parse a JSON corpus. Accepts a top-level array of objects, JSON lines, or
    a stream of concatenated objects. Field order is preserved.
    """
    path = str(path)
    try:
        text = Path(path).read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise ParseError(path, f"invalid UTF-8: {e}") from e

    stripped = text.lstrip()
    if stripped.startswith("["):
        try:
            records = json.loads(text)
        except json.JSONDecodeError as e:
            raise ParseError(path, f"invalid JSON: {e.msg}", line=e.lineno) from e
        for i, record in enumerate(records):
            if not isinstance(record, dict):
                raise ParseError(path, f"record {i} is not an object")
        return records

    documents = []
    pos = 0
    end = len(text)
    while True:
        while pos < end and text[pos].isspace():
            pos += 1
        if pos >= end:
            break
        try:
            record, pos_after = _json_decoder.raw_decode(text, pos)
        except json.JSONDecodeError as e:
            raise ParseError(path, f"invalid JSON: {e.msg}", line=e.lineno) from e
        if not isinstance(record, dict):
            raise ParseError(path, "record is not an object", line=_line_of(text, pos))
        documents.append(record)
        pos = pos_after

    return documents


LOADERS = {
    "csv": load_csv,
    "json": load_json,
}


def load_documents(path, fmt: str) -> List[Dict]:
    """Load every document of a corpus file in its declared format."""
    if fmt not in LOADERS:
        raise ValueError(f"Unsupported corpus format: {fmt}")

    documents = LOADERS[fmt](path)
    logger.info(f"Loaded {len(documents):,} documents from {path}")
    return documents


def load_corpus(descriptor, path) -> List[Dict]:
    return load_documents(path, descriptor.format)
