from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from livepoll.core.errors import BackendError, ConflictError, NotFoundError
from livepoll.db.session import get_session_factory
from livepoll.models import TABLE_MODELS, Base
from livepoll.services.backends.base import BusBackedBackend, coerce_filter_value, ensure_table
from livepoll.services.realtime_bus import SessionBus

logger = logging.getLogger(__name__)


def _parse_datetime(value: Any) -> Any:
    if isinstance(value, str):
        raw = value.strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            value = datetime.fromisoformat(raw)
        except ValueError:
            return value
    if isinstance(value, datetime) and value.tzinfo is not None:
        # sqlite drops the offset, so store UTC wall time everywhere
        return value.astimezone(timezone.utc)
    return value


def _to_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


class SqlBackend(BusBackedBackend):
    """SQLAlchemy tables; change events fan out through the in-process bus."""

    def __init__(
        self,
        session_factory: Optional[sessionmaker] = None,
        bus: Optional[SessionBus] = None,
        *,
        create_schema: bool = False,
        duplicate_delivery: bool = False,
    ) -> None:
        super().__init__(bus, duplicate_delivery=duplicate_delivery)
        self._session_factory = session_factory or get_session_factory()
        if create_schema:
            Base.metadata.create_all(bind=self._session_factory.kw.get("bind"))

    @staticmethod
    def _model(table: str):
        return TABLE_MODELS[ensure_table(table)]

    @staticmethod
    def _row_to_dict(obj: Any) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for column in obj.__table__.columns:
            value = getattr(obj, column.name)
            if isinstance(value, datetime):
                value = _to_iso(value)
            out[column.name] = value
        return out

    @staticmethod
    def _coerce_values(model: Any, row: Dict[str, Any]) -> Dict[str, Any]:
        columns = {c.name for c in model.__table__.columns}
        values: Dict[str, Any] = {}
        for key, value in row.items():
            if key not in columns:
                logger.debug("sql_backend_unknown_column table=%s column=%s", model.__tablename__, key)
                continue
            if key == "created_at":
                value = _parse_datetime(value)
            values[key] = value
        return values

    async def insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        model = self._model(table)
        values = self._coerce_values(model, row)
        values.setdefault("id", str(uuid4()))
        db = self._session_factory()
        try:
            obj = model(**values)
            db.add(obj)
            db.commit()
            stored = self._row_to_dict(obj)
        except IntegrityError as exc:
            db.rollback()
            raise ConflictError(f"{table} insert rejected: {exc.orig}") from exc
        except SQLAlchemyError as exc:
            db.rollback()
            logger.warning("sql_insert_failed table=%s", table, exc_info=True)
            raise BackendError(f"{table} insert failed: {exc}") from exc
        finally:
            db.close()
        await self._publish(table, "INSERT", stored)
        return stored

    async def update(self, table: str, row_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        model = self._model(table)
        values = self._coerce_values(model, fields)
        values.pop("id", None)
        db = self._session_factory()
        try:
            obj = db.get(model, row_id)
            if obj is None:
                raise NotFoundError(f"{table} row {row_id} not found")
            old = self._row_to_dict(obj)
            for key, value in values.items():
                setattr(obj, key, value)
            db.commit()
            stored = self._row_to_dict(obj)
        except IntegrityError as exc:
            db.rollback()
            raise ConflictError(f"{table} update rejected: {exc.orig}") from exc
        except SQLAlchemyError as exc:
            db.rollback()
            logger.warning("sql_update_failed table=%s row_id=%s", table, row_id, exc_info=True)
            raise BackendError(f"{table} update failed: {exc}") from exc
        finally:
            db.close()
        await self._publish(table, "UPDATE", stored, old)
        return stored

    async def delete(self, table: str, row_id: str) -> None:
        model = self._model(table)
        db = self._session_factory()
        try:
            obj = db.get(model, row_id)
            if obj is None:
                return
            old = self._row_to_dict(obj)
            db.delete(obj)
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.warning("sql_delete_failed table=%s row_id=%s", table, row_id, exc_info=True)
            raise BackendError(f"{table} delete failed: {exc}") from exc
        finally:
            db.close()
        await self._publish(table, "DELETE", {}, old)

    async def select(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        *,
        order_by: Optional[str] = "created_at",
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        model = self._model(table)
        db = self._session_factory()
        try:
            query = db.query(model)
            for column, value in (filters or {}).items():
                attr = getattr(model, column, None)
                if attr is None:
                    raise BackendError(f"Unknown column {table}.{column}")
                query = query.filter(attr == coerce_filter_value(column, value))
            if order_by:
                order_col = getattr(model, order_by, None)
                if order_col is None:
                    raise BackendError(f"Unknown column {table}.{order_by}")
                query = query.order_by(order_col.desc() if descending else order_col.asc())
            if limit is not None:
                query = query.limit(int(limit))
            return [self._row_to_dict(obj) for obj in query.all()]
        except SQLAlchemyError as exc:
            logger.warning("sql_select_failed table=%s", table, exc_info=True)
            raise BackendError(f"{table} select failed: {exc}") from exc
        finally:
            db.close()
