"""
Data-store client used by the request handlers.
Wraps a SQLAlchemy session: table reads/writes, batch upserts with a declared
conflict policy, and named procedure calls. Database errors leave this module
as ConflictError / NotFoundError / StoreError.
"""
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from errors import StoreError, ConflictError, NotFoundError
from models import SessionLocal
from procedures import PROCEDURES

logger = logging.getLogger(__name__)


class ConflictPolicy(str, Enum):
    UPDATE = "update"  # idempotent upsert, incoming values win
    SKIP = "skip"      # keep the existing row
    FAIL = "fail"      # strict insert, any duplicate aborts the batch


@dataclass
class WriteCounts:
    written: int = 0
    skipped: int = 0


class SchoolStore:
    def __init__(self, db):
        self.db = db

    @contextmanager
    def _translate(self, action: str):
        try:
            yield
        except StoreError:
            self.db.rollback()
            raise
        except IntegrityError as e:
            self.db.rollback()
            logger.warning(f"{action}: unique constraint violated: {e.orig}")
            raise ConflictError(f"{action} failed: record already exists") from e
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"{action} failed: {e}")
            raise StoreError(f"{action} failed: {e.__class__.__name__}") from e

    # ---------- Reads ----------

    def find(self, model, **filters):
        with self._translate(f"select {model.__tablename__}"):
            return self.db.query(model).filter_by(**filters).first()

    def get(self, model, **filters):
        row = self.find(model, **filters)
        if row is None:
            raise NotFoundError(f"{model.__name__} not found")
        return row

    def list(self, model, order_by=(), **filters) -> list:
        with self._translate(f"select {model.__tablename__}"):
            return self.db.query(model).filter_by(**filters).order_by(*order_by).all()

    def list_in(self, model, column, values, order_by=()) -> list:
        if not values:
            return []
        with self._translate(f"select {model.__tablename__}"):
            return self.db.query(model).filter(column.in_(values)).order_by(*order_by).all()

    # ---------- Writes ----------

    def insert(self, model, values: dict):
        with self._translate(f"insert {model.__tablename__}"):
            row = model(**values)
            self.db.add(row)
            self.db.commit()
            self.db.refresh(row)
            return row

    def upsert_many(self, model, rows: list, key: tuple,
                    policy: ConflictPolicy = ConflictPolicy.UPDATE) -> WriteCounts:
        """Write a batch in one commit, resolving natural-key clashes by policy."""
        counts = WriteCounts()
        if not rows:
            return counts
        with self._translate(f"upsert {model.__tablename__}"):
            if policy == ConflictPolicy.FAIL:
                self.db.add_all(model(**r) for r in rows)
                counts.written = len(rows)
            else:
                pending = {}
                written = set()
                for r in rows:
                    natural_key = tuple(r[k] for k in key)
                    existing = pending.get(natural_key)
                    if existing is None:
                        existing = self.db.query(model).filter_by(
                            **dict(zip(key, natural_key))
                        ).first()
                    if existing is None:
                        obj = model(**r)
                        self.db.add(obj)
                        pending[natural_key] = obj
                        written.add(natural_key)
                    elif policy == ConflictPolicy.UPDATE:
                        for attr, value in r.items():
                            setattr(existing, attr, value)
                        pending[natural_key] = existing
                        written.add(natural_key)
                    else:
                        counts.skipped += 1
                # a key repeated in the batch is one row
                counts.written = len(written)
            self.db.commit()
        logger.info(f"Upserted {model.__tablename__}: {counts.written} written, "
                    f"{counts.skipped} skipped ({policy.value})")
        return counts

    def delete_where(self, model, **filters) -> int:
        with self._translate(f"delete {model.__tablename__}"):
            deleted = self.db.query(model).filter_by(**filters).delete(synchronize_session=False)
            self.db.commit()
            return deleted

    def delete_in(self, model, column, values) -> int:
        if not values:
            return 0
        with self._translate(f"delete {model.__tablename__}"):
            deleted = self.db.query(model).filter(column.in_(values)).delete(synchronize_session=False)
            self.db.commit()
            return deleted

    # ---------- Procedures ----------

    def rpc(self, name: str, /, **params):
        """Run a named procedure in its own transaction."""
        procedure = PROCEDURES.get(name)
        if procedure is None:
            raise StoreError(f"Unknown procedure: {name}")
        with self._translate(name):
            result = procedure(self.db, **params)
            self.db.commit()
            return result


def get_store():
    """FastAPI dependency: one store session per request."""
    db = SessionLocal()
    try:
        yield SchoolStore(db)
    finally:
        db.close()
