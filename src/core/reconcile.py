"""Bulk reconciliation of provider records into the catalog store."""

import math
from collections.abc import Callable, Iterable
from dataclasses import asdict, dataclass, field
from itertools import batched
from typing import Any

from sqlalchemy import insert, select, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src import log
from src.config.database import db
from src.models.db.base import Base, utcnow

__all__ = [
    "BulkReconciler",
    "KnownIdentifiers",
    "ReconcileResult",
    "catalog_natural_key",
    "clamp_rating",
]

MAX_RATING = 999.99
SQLITE_SAFE_VARIABLES = 900

NaturalKeyFn = Callable[[dict[str, Any]], str | None]


def clamp_rating(value: Any) -> float | None:
    """Coerce a rating to a float within ``[0, 999.99]``.

    Non-numeric, NaN and infinite values become ``None``.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        rating = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(rating):
        return None
    return min(max(rating, 0.0), MAX_RATING)


def catalog_natural_key(title: str | None, year: int | None) -> str | None:
    """Fallback identity of a catalog entity: ``"<lowercase title>|<year>"``.

    Returns None unless both the title and the year are known.
    """
    if not title or not year:
        return None
    return f"{title.lower()}|{year}"


def row_natural_key(row: dict[str, Any]) -> str | None:
    """Natural key of a prepared catalog row."""
    return catalog_natural_key(row.get("title"), row.get("year"))


@dataclass
class KnownIdentifiers:
    """In-memory index of rows already present in the store.

    Maps provider item ids and natural keys onto local primary keys. It is loaded
    once per run and extended after every successful batch commit so later
    batches see rows inserted by earlier ones.
    """

    by_provider_id: dict[str, int] = field(default_factory=dict)
    by_natural_key: dict[str, int] = field(default_factory=dict)

    @classmethod
    def load(
        cls,
        session: Session,
        model: type[Base],
        natural_key: NaturalKeyFn | None = row_natural_key,
    ) -> "KnownIdentifiers":
        """Build the index from every row of `model`."""
        known = cls()
        columns = [model.id, model.provider_item_id]
        if natural_key is not None:
            columns += [model.title, model.year]

        for row in session.execute(select(*columns)).mappings():
            known.register(
                row["provider_item_id"],
                row["id"],
                natural_key(dict(row)) if natural_key is not None else None,
            )
        return known

    def register(
        self, provider_id: str, local_id: int, natural_key: str | None = None
    ) -> None:
        """Remember a committed row."""
        self.by_provider_id[provider_id] = local_id
        if natural_key:
            self.by_natural_key[natural_key] = local_id

    def repoint(
        self, old_provider_id: str | None, new_provider_id: str, local_id: int
    ) -> None:
        """Move a row from its old provider id onto a new one."""
        if old_provider_id is not None:
            self.by_provider_id.pop(old_provider_id, None)
        self.by_provider_id[new_provider_id] = local_id

    def __contains__(self, provider_id: object) -> bool:
        return provider_id in self.by_provider_id

    def __len__(self) -> int:
        return len(self.by_provider_id)


@dataclass
class ReconcileResult:
    """Counters for rows written by one or more reconciled batches."""

    added: int = 0
    updated: int = 0
    repointed: int = 0
    failed: int = 0

    def __iadd__(self, other: "ReconcileResult") -> "ReconcileResult":
        self.added += other.added
        self.updated += other.updated
        self.repointed += other.repointed
        self.failed += other.failed
        return self

    def as_dict(self) -> dict[str, int]:
        """Counters as a plain dictionary."""
        return asdict(self)


@dataclass
class _Plan:
    """Partition of one batch into set-based operations."""

    updates: dict[int, dict[str, Any]] = field(default_factory=dict)
    repoints: dict[int, str] = field(default_factory=dict)
    inserts: dict[Any, dict[str, Any]] = field(default_factory=dict)


class BulkReconciler:
    """Writes batches of prepared rows with one statement per operation.

    Each record of a batch ends up in exactly one group:

    - update: its provider id is already known, the row is updated by its
      primary key
    - repoint: its provider id is unknown but its natural key matches an
      existing row, that row takes over the new provider id and fresh metadata
    - insert: anything else

    When `conflict_columns` is set, inserts become an upsert on that unique
    index instead, and records are deduplicated on those columns within the
    batch (last one wins). Catalog entities deduplicate on their natural key.

    A failing batch is rolled back and counted as failed as a whole; the known
    identifiers are only extended after a successful commit.
    """

    def __init__(
        self,
        model: type[Base],
        known: KnownIdentifiers,
        *,
        natural_key: NaturalKeyFn | None = row_natural_key,
        conflict_columns: tuple[str, ...] | None = None,
        label: str | None = None,
    ) -> None:
        self.model = model
        self.known = known
        self.natural_key = natural_key
        self.conflict_columns = conflict_columns
        self.label = label or model.__tablename__

    def _insert_key(self, row: dict[str, Any]) -> Any:
        if self.conflict_columns:
            values = tuple(row.get(c) for c in self.conflict_columns)
            # NULLs never collide on a unique index
            if all(v is not None for v in values):
                return values
        elif self.natural_key is not None:
            key = self.natural_key(row)
            if key:
                return key
        return ("provider_item_id", row["provider_item_id"])

    def plan(self, rows: Iterable[dict[str, Any]]) -> _Plan:
        """Partition rows into update, repoint and insert groups."""
        plan = _Plan()
        inserted_pids: dict[str, Any] = {}

        for raw in rows:
            row = self.model.filter_columns(raw)
            pid = row["provider_item_id"]

            local_id = self.known.by_provider_id.get(pid)
            if local_id is not None:
                plan.updates[local_id] = {**row, "id": local_id}
                plan.repoints.pop(local_id, None)
                continue

            key = self.natural_key(row) if self.natural_key is not None else None
            local_id = self.known.by_natural_key.get(key) if key else None
            if local_id is not None:
                plan.updates[local_id] = {**row, "id": local_id}
                plan.repoints[local_id] = pid
                continue

            insert_key = self._insert_key(row)
            # A provider id seen twice in the same batch keeps its last record
            previous_key = inserted_pids.pop(pid, None)
            if previous_key is not None:
                plan.inserts.pop(previous_key, None)
            replaced = plan.inserts.pop(insert_key, None)
            if replaced is not None:
                inserted_pids.pop(replaced["provider_item_id"], None)
            plan.inserts[insert_key] = row
            inserted_pids[pid] = insert_key

        return plan

    def _old_provider_ids(
        self, session: Session, local_ids: list[int]
    ) -> dict[int, str]:
        old: dict[int, str] = {}
        for chunk in batched(local_ids, SQLITE_SAFE_VARIABLES, strict=False):
            for local_id, provider_id in session.execute(
                select(self.model.id, self.model.provider_item_id).where(
                    self.model.id.in_(chunk)
                )
            ).tuples():
                old[local_id] = provider_id
        return old

    def _execute_inserts(self, session: Session, rows: list[dict[str, Any]]) -> None:
        if not self.conflict_columns:
            session.execute(insert(self.model), rows)
            return

        stmt = sqlite_insert(self.model)
        skipped = {"id", "created_at", *self.conflict_columns}
        set_ = {
            name: stmt.excluded[name]
            for name in self.model.column_names()
            if name not in skipped and name in rows[0]
        }
        if "updated_at" in self.model.column_names():
            set_["updated_at"] = utcnow()
        session.execute(
            stmt.on_conflict_do_update(
                index_elements=list(self.conflict_columns), set_=set_
            ),
            rows,
        )

    def reconcile(self, rows: list[dict[str, Any]]) -> ReconcileResult:
        """Write one batch of prepared rows and return what changed."""
        result = ReconcileResult()
        if not rows:
            return result

        plan = self.plan(rows)
        updates = list(plan.updates.values())
        inserts = list(plan.inserts.values())

        with db() as ctx:
            try:
                old_pids = (
                    self._old_provider_ids(ctx.session, list(plan.repoints))
                    if plan.repoints
                    else {}
                )
                if updates:
                    ctx.session.execute(update(self.model), updates)
                if inserts:
                    self._execute_inserts(ctx.session, inserts)
                ctx.session.commit()
            except SQLAlchemyError:
                ctx.session.rollback()
                log.error(
                    f"Failed to write a batch of {len(rows)} $$'{self.label}'$$ rows "
                    f"$${{updates: {len(updates)}, inserts: {len(inserts)}}}$$",
                    exc_info=True,
                )
                result.failed = len(rows)
                return result

            # Refresh identifier map after inserts
            inserted_pids = [row["provider_item_id"] for row in inserts]
            for chunk in batched(inserted_pids, SQLITE_SAFE_VARIABLES, strict=False):
                for pid, local_id in ctx.session.execute(
                    select(self.model.provider_item_id, self.model.id).where(
                        self.model.provider_item_id.in_(chunk)
                    )
                ).tuples():
                    self.known.register(pid, local_id)

        for row in updates + inserts:
            local_id = row.get("id") or self.known.by_provider_id.get(
                row["provider_item_id"]
            )
            if local_id is None:
                continue
            if local_id in plan.repoints:
                self.known.repoint(
                    old_pids.get(local_id), plan.repoints[local_id], local_id
                )
            key = self.natural_key(row) if self.natural_key is not None else None
            if key:
                self.known.by_natural_key[key] = local_id

        result.repointed = len(plan.repoints)
        result.updated = len(updates) - result.repointed
        result.added = len(inserts)
        if result.repointed:
            log.debug(
                f"Repointed {result.repointed} $$'{self.label}'$$ rows onto new "
                "provider ids by title and year"
            )
        return result
