"""CSV parsing for user-uploaded repository layers.

A repository is a CSV of points with at least latitude, longitude and name
columns. Headers are matched case-insensitively against Spanish and English
aliases, the separator is ``;`` when the header holds more semicolons than
commas and ``,`` otherwise. Rows with unparsable or out-of-range coordinates
or an empty name are skipped and counted.

Example:
    >>> parsed = parse_csv("lat;lon;nombre\\n40.1;-0.1;Fuente\\n")
    >>> len(parsed.rows), parsed.skipped
    (1, 0)
"""

from __future__ import annotations

import csv
import dataclasses
import io
import math

from app.db import models as db_models

LAT_ALIASES = ("lat", "latitude", "latitud")
LON_ALIASES = ("lon", "lng", "longitude", "longitud")
NAME_ALIASES = ("name", "nombre", "title", "titulo", "nom")
OPTIONAL_ALIASES = {
    "type": ("type", "tipo", "categoria", "categoría"),
    "description": ("description", "descripcion", "descripción", "desc"),
    "url": ("url", "web", "website", "enlace"),
    "image": ("image", "imagen", "foto", "photo", "img"),
    "notes": ("notes", "notas", "comentarios", "comments"),
}


class CsvFormatError(ValueError):
    """Raised when the CSV has no data rows or lacks a required column."""


@dataclasses.dataclass(frozen=True)
class CsvRow:
    lat: float
    lon: float
    name: str
    type: str = ""
    description: str = ""
    url: str = ""
    image: str = ""
    notes: str = ""


@dataclasses.dataclass(frozen=True)
class ParseResult:
    rows: tuple[CsvRow, ...]
    skipped: int


def detect_separator(header: str) -> str:
    return ";" if header.count(";") > header.count(",") else ","


def _clean(value: str) -> str:
    return value.strip().strip("\"'").strip()


def _column(headers: list[str], aliases: tuple[str, ...]) -> int | None:
    for index, header in enumerate(headers):
        if header in aliases:
            return index
    return None


def _coordinate(raw: str, limit: float) -> float | None:
    try:
        value = float(raw)
    except ValueError:
        return None
    if math.isnan(value) or not -limit <= value <= limit:
        return None
    return value


def parse_csv(text: str) -> ParseResult:
    """Parse CSV text into valid rows and a count of skipped rows.

    Raises:
        CsvFormatError: If there is no data row or a required column is
            missing.
    """
    lines = [
        line.strip() for line in text.lstrip("\ufeff").splitlines() if line.strip()
    ]
    if len(lines) < 2:
        raise CsvFormatError("CSV vacío o sin filas de datos")

    separator = detect_separator(lines[0])
    records = list(csv.reader(io.StringIO("\n".join(lines)), delimiter=separator))
    headers = [_clean(h).lower() for h in records[0]]

    required = {"lat": LAT_ALIASES, "lon": LON_ALIASES, "name": NAME_ALIASES}
    indexes = {key: _column(headers, aliases) for key, aliases in required.items()}
    missing = [key for key, index in indexes.items() if index is None]
    if missing:
        raise CsvFormatError(
            ". ".join(f"Columna '{key}' no encontrada" for key in missing)
        )
    optional = {
        key: _column(headers, aliases) for key, aliases in OPTIONAL_ALIASES.items()
    }

    def cell(record: list[str], index: int | None) -> str:
        if index is None or index >= len(record):
            return ""
        return _clean(record[index])

    rows = []
    skipped = 0
    for record in records[1:]:
        lat = _coordinate(cell(record, indexes["lat"]), 90.0)
        lon = _coordinate(cell(record, indexes["lon"]), 180.0)
        name = cell(record, indexes["name"])
        if lat is None or lon is None or not name:
            skipped += 1
            continue
        rows.append(
            CsvRow(
                lat=lat,
                lon=lon,
                name=name,
                **{key: cell(record, index) for key, index in optional.items()},
            )
        )
    return ParseResult(rows=tuple(rows), skipped=skipped)


def rows_to_collection(
    rows: tuple[CsvRow, ...] | list[CsvRow], repo_id: str
) -> db_models.FeatureCollection:
    """Turn parsed rows into Point features of the repository layer."""
    layer_id = f"{db_models.REPO_LAYER_PREFIX}{repo_id}"
    return db_models.FeatureCollection(
        tuple(
            db_models.Feature(
                id=f"{layer_id}/{index}",
                geometry=db_models.Point((row.lon, row.lat)),
                layer_id=layer_id,
                source_id=str(index),
                attributes=db_models.RepoAttributes(
                    name=row.name,
                    repo_id=repo_id,
                    type=row.type,
                    description=row.description,
                    url=row.url,
                    image=row.image,
                    notes=row.notes,
                ),
            )
            for index, row in enumerate(rows)
        )
    )
