from __future__ import annotations

from typing import Any, Dict, List

from fastapi import APIRouter, Body, Depends, HTTPException, Request, Response, status

from livepoll.api.deps import get_backend
from livepoll.core.errors import BackendError, ConflictError, NotFoundError
from livepoll.services.backends.base import TABLES, RealtimeBackend

router = APIRouter()

_RESERVED_PARAMS = {"order_by", "desc", "limit"}


def _check_table(table: str) -> str:
    if table not in TABLES:
        raise HTTPException(status_code=404, detail=f"Unknown table: {table}")
    return table


@router.post("/tables/{table}", status_code=status.HTTP_201_CREATED)
async def insert_row(
    table: str,
    row: Dict[str, Any] = Body(...),
    backend: RealtimeBackend = Depends(get_backend),
) -> Dict[str, Any]:
    _check_table(table)
    try:
        return await backend.insert(table, row)
    except ConflictError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except BackendError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.get("/tables/{table}")
async def select_rows(
    table: str,
    request: Request,
    backend: RealtimeBackend = Depends(get_backend),
) -> List[Dict[str, Any]]:
    _check_table(table)
    params = request.query_params
    filters = {k: v for k, v in params.items() if k not in _RESERVED_PARAMS}
    limit = params.get("limit")
    try:
        return await backend.select(
            table,
            filters,
            order_by=params.get("order_by") or "created_at",
            descending=(params.get("desc") or "").lower() in {"1", "true", "yes"},
            limit=int(limit) if limit else None,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"invalid limit: {limit}") from exc
    except BackendError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.patch("/tables/{table}/{row_id}")
async def update_row(
    table: str,
    row_id: str,
    fields: Dict[str, Any] = Body(...),
    backend: RealtimeBackend = Depends(get_backend),
) -> Dict[str, Any]:
    _check_table(table)
    try:
        return await backend.update(table, row_id, fields)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ConflictError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except BackendError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.delete("/tables/{table}/{row_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_row(
    table: str,
    row_id: str,
    backend: RealtimeBackend = Depends(get_backend),
) -> Response:
    _check_table(table)
    try:
        await backend.delete(table, row_id)
    except BackendError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)
