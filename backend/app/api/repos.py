"""Repository layer upload and management API endpoints.

Users share their own points as CSV "repositories". The upload endpoint
accepts a multipart form (``file``, ``name``, ``description``,
``author``), parses the CSV into a FeatureCollection and stores it with
its metadata. Stored repositories can be listed, fetched as GeoJSON and
deleted.

Example:
    Upload a CSV of water points:
        >>> response = client.post(
        ...     "/api/repos/upload",
        ...     files={"file": ("fuentes.csv", open("fuentes.csv", "rb"))},
        ...     data={"name": "Fuentes", "author": "Ana"},
        ... )
        >>> response.json()
        >>> # Returns: {"id": "uuid-here", "count": 12, "skipped": 1}

    Fetch the stored layer:
        >>> client.get(f"/api/repos/{repo_id}").json()["type"]
        'FeatureCollection'
"""

from __future__ import annotations

import uuid
from typing import Any, TypedDict

import fastapi

from app.core import config
from app.db import database
from app.db import models as db_models
from app.services import csv_repos

router = fastapi.APIRouter(prefix="/api/repos", tags=["repos"])

DEFAULT_REPO_NAME = "Sin nombre"
DEFAULT_AUTHOR = "Anónimo"


class UploadResponse(TypedDict):
    id: str
    count: int
    skipped: int


def _get_repo_store(
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
) -> database.RepoStoreProtocol:
    """Resolve the repository store dependency.

    Args:
        settings: Application settings (injected via FastAPI Depends).

    Returns:
        RepoStoreProtocol implementation (FileRepoStore in production).
    """
    return database.get_repo_store(settings)


def _read_upload(file: fastapi.UploadFile, max_size: int) -> bytes:
    """Read an uploaded file into memory with size validation.

    Args:
        file: FastAPI UploadFile object containing the file data.
        max_size: Maximum allowed file size in bytes.

    Returns:
        The file contents.

    Raises:
        HTTPException: If the file exceeds the maximum size limit.
    """
    chunks = []
    size = 0
    for chunk in iter(lambda: file.file.read(1024 * 1024), b""):
        size += len(chunk)
        if size > max_size:
            raise fastapi.HTTPException(
                status_code=413,
                detail="El archivo supera el límite de 5 MB",
            )

        chunks.append(chunk)

    return b"".join(chunks)


@router.post("/upload")
async def upload_repo(
    file: fastapi.UploadFile | None = None,
    name: str = fastapi.Form(""),
    description: str = fastapi.Form(""),
    author: str = fastapi.Form(""),
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
    store: database.RepoStoreProtocol = fastapi.Depends(_get_repo_store),  # noqa: B008
) -> UploadResponse:
    """Parse an uploaded CSV and store it as a repository layer.

    Args:
        file: CSV file from multipart form data.
        name: Repository name; defaults to "Sin nombre".
        description: Free-text description.
        author: Author name; defaults to "Anónimo".
        settings: Application settings (injected via FastAPI Depends).
        store: Repository store (injected via FastAPI Depends).

    Returns:
        Dictionary with the new repository id, the number of stored points
        and the number of skipped rows.

    Raises:
        HTTPException: 400 when no file is sent or it is not UTF-8, 413 when
            it exceeds the upload limit, 422 when required columns are
            missing or no row is valid.
    """
    if file is None:
        raise fastapi.HTTPException(
            status_code=400,
            detail="No se recibió ningún archivo",
        )

    raw = _read_upload(file, settings.max_upload_size_bytes)
    try:
        text = raw.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise fastapi.HTTPException(
            status_code=400,
            detail="El archivo no está codificado en UTF-8",
        ) from exc

    try:
        parsed = csv_repos.parse_csv(text)
    except csv_repos.CsvFormatError as exc:
        raise fastapi.HTTPException(status_code=422, detail=str(exc)) from exc

    if not parsed.rows:
        raise fastapi.HTTPException(
            status_code=422,
            detail=(
                "No se encontraron filas válidas. "
                "Revisa que lat/lon/name estén correctos."
            ),
        )

    repo_id = str(uuid.uuid4())
    meta = db_models.RepoMetadata(
        id=repo_id,
        name=name.strip() or DEFAULT_REPO_NAME,
        description=description.strip(),
        author=author.strip() or DEFAULT_AUTHOR,
        count=len(parsed.rows),
        skipped=parsed.skipped,
    )
    store.add(meta, csv_repos.rows_to_collection(parsed.rows, repo_id))

    return UploadResponse(id=repo_id, count=meta.count, skipped=meta.skipped)


@router.get("/list")
async def list_repos(
    store: database.RepoStoreProtocol = fastapi.Depends(_get_repo_store),  # noqa: B008
) -> list[dict[str, Any]]:
    """List stored repositories, newest first."""
    return [meta.to_json() for meta in store.all()]


@router.get("/{repo_id}")
async def get_repo(
    repo_id: str,
    store: database.RepoStoreProtocol = fastapi.Depends(_get_repo_store),  # noqa: B008
) -> dict[str, Any]:
    """Return a stored repository as a GeoJSON FeatureCollection.

    Raises:
        HTTPException: If the repository is not found (404 status code).
    """
    collection = store.get(repo_id)
    if collection is None:
        raise fastapi.HTTPException(status_code=404, detail="No encontrado")

    return collection.to_geojson()


@router.delete("/{repo_id}")
async def delete_repo(
    repo_id: str,
    store: database.RepoStoreProtocol = fastapi.Depends(_get_repo_store),  # noqa: B008
) -> dict[str, bool]:
    """Delete a stored repository.

    Raises:
        HTTPException: If the repository is not found (404 status code).
    """
    if not store.delete(repo_id):
        raise fastapi.HTTPException(status_code=404, detail="No encontrado")

    return {"ok": True}
