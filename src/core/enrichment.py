"""MDBList metadata enrichment of the catalog."""

from dataclasses import asdict, dataclass
from time import monotonic
from typing import Any, Literal
from uuid import uuid4

from sqlalchemy import bindparam, func, select, update

from src import log
from src.config.database import db
from src.config.settings import EnrichmentConfig, FailedBatchPolicy
from src.core.jobs import JobProgressStore, get_job_store
from src.core.mdblist import MDBListClient, MDBListMediaType
from src.exceptions import EnrichmentNotConfiguredError
from src.models.db.base import utcnow
from src.models.db.catalog import Movie, Series
from src.models.schemas.mdblist import EnrichmentData

__all__ = ["EnrichmentResult", "MDBListEnricher"]

ENRICHMENT_COLUMNS = tuple(EnrichmentData.model_fields)

CatalogModel = type[Movie] | type[Series]


@dataclass
class EnrichmentResult:
    """Counters of an enrichment run."""

    movies_processed: int = 0
    movies_enriched: int = 0
    movies_not_found: int = 0
    movies_failed: int = 0
    series_processed: int = 0
    series_enriched: int = 0
    series_not_found: int = 0
    series_failed: int = 0
    cancelled: bool = False

    def as_dict(self) -> dict[str, Any]:
        """Counters as a plain dictionary."""
        return asdict(self)


@dataclass
class _BatchOutcome:
    enriched: int = 0
    not_found: int = 0
    failed: int = 0


class MDBListEnricher:
    """Fills the MDBList columns of movies and series that were never enriched.

    Rows are visited in primary key order (keyset pagination), so a run touches
    every pending row at most once even when failed batches are left pending.
    Items MDBList does not know are stamped as enriched and never retried.
    """

    def __init__(
        self,
        client: MDBListClient,
        config: EnrichmentConfig,
        *,
        job_store: JobProgressStore | None = None,
    ) -> None:
        self.client = client
        self.config = config
        self.job_store = job_store or get_job_store()

    @staticmethod
    def _pending_filter(model: CatalogModel) -> list:
        return [model.mdblist_enriched_at.is_(None), model.imdb_id.is_not(None)]

    def _count_pending(self, model: CatalogModel) -> int:
        with db() as ctx:
            return ctx.session.execute(
                select(func.count(model.id)).where(*self._pending_filter(model))
            ).scalar_one()

    def _next_batch(
        self, model: CatalogModel, after_id: int
    ) -> list[tuple[int, str]]:
        with db() as ctx:
            rows = ctx.session.execute(
                select(model.id, model.imdb_id)
                .where(*self._pending_filter(model), model.id > after_id)
                .order_by(model.id)
                .limit(self.config.batch_size)
            ).tuples()
            return list(rows)

    @staticmethod
    def _write_enrichment(
        model: CatalogModel, values: dict[int, EnrichmentData]
    ) -> None:
        """Store enrichment data, keeping existing values where a field is unknown."""
        if not values:
            return
        table = model.__table__
        assignments: dict[str, Any] = {
            name: func.coalesce(
                bindparam(f"b_{name}", type_=table.c[name].type), table.c[name]
            )
            for name in ENRICHMENT_COLUMNS
        }
        assignments["mdblist_enriched_at"] = bindparam(
            "b_enriched_at", type_=table.c.mdblist_enriched_at.type
        )
        stmt = (
            update(table).where(table.c.id == bindparam("b_id")).values(assignments)
        )
        now = utcnow()
        rows = []
        for local_id, data in values.items():
            row: dict[str, Any] = {f"b_{k}": v for k, v in data.model_dump().items()}
            if not data.keywords:
                row["b_keywords"] = None
            row["b_id"] = local_id
            row["b_enriched_at"] = now
            rows.append(row)

        with db() as ctx:
            ctx.session.execute(stmt, rows)
            ctx.session.commit()

    @staticmethod
    def _mark_processed(model: CatalogModel, ids: list[int]) -> None:
        if not ids:
            return
        with db() as ctx:
            ctx.session.execute(
                update(model)
                .where(model.id.in_(ids))
                .values(mdblist_enriched_at=utcnow())
            )
            ctx.session.commit()

    async def _process_batch(
        self,
        model: CatalogModel,
        media_type: MDBListMediaType,
        batch: list[tuple[int, str]],
        job_id: str,
    ) -> _BatchOutcome:
        outcome = _BatchOutcome()
        imdb_ids = [imdb_id for _, imdb_id in batch]
        lookup = await self.client.batch_get_by_imdb(imdb_ids, media_type, job_id)

        found = {
            item.imdbid: self.client.extract_enrichment_data(item)
            for item in lookup.items
            if item.imdbid
        }
        errored_ids = set(lookup.failed_ids)
        values: dict[int, EnrichmentData] = {}
        missing: list[int] = []
        errored: list[int] = []
        for local_id, imdb_id in batch:
            data = found.get(imdb_id)
            if data is not None:
                values[local_id] = data
            elif imdb_id in errored_ids:
                errored.append(local_id)
            else:
                missing.append(local_id)

        if errored:
            policy = self.config.failed_batch_policy
            self.job_store.add_log(
                job_id,
                "error",
                f"MDBList lookup of {len(errored)} {model.__tablename__} failed",
                {"count": len(errored), "policy": str(policy)},
            )
            if policy == FailedBatchPolicy.MARK_PROCESSED:
                self._mark_processed(model, errored)

        self._write_enrichment(model, values)
        self._mark_processed(model, missing)
        outcome.enriched = len(values)
        outcome.not_found = len(missing)
        outcome.failed = len(errored)
        return outcome

    async def _enrich_model(
        self,
        model: CatalogModel,
        media_type: MDBListMediaType,
        job_id: str,
        result: EnrichmentResult,
        done_before: int,
        total_items: int,
    ) -> None:
        prefix = "movies" if model is Movie else "series"
        last_id = 0
        started = monotonic()

        while not self.job_store.is_cancelled(job_id):
            batch = self._next_batch(model, last_id)
            if not batch:
                break
            last_id = batch[-1][0]

            outcome = await self._process_batch(model, media_type, batch, job_id)
            processed = getattr(result, f"{prefix}_processed") + len(batch)
            setattr(result, f"{prefix}_processed", processed)
            for name in ("enriched", "not_found", "failed"):
                attr = f"{prefix}_{name}"
                setattr(result, attr, getattr(result, attr) + getattr(outcome, name))

            self.job_store.update_progress(job_id, done_before + processed, total_items)
            self.job_store.add_log(
                job_id,
                "info",
                f"{prefix.capitalize()}: {processed} processed "
                f"({getattr(result, f'{prefix}_enriched')} enriched, "
                f"{monotonic() - started:.1f}s elapsed)",
            )

    async def run(self, job_id: str | None = None) -> EnrichmentResult:
        """Enrich every pending movie, then every pending series.

        Args:
            job_id (str | None): Job id to report progress under

        Returns:
            EnrichmentResult: Counters of the run
        """
        result = EnrichmentResult()
        if not self.client.is_configured():
            log.warning("MDBList is not configured, skipping enrichment")
            return result

        job_id = job_id or str(uuid4())
        self.job_store.create(job_id, "enrich-mdblist", 2)

        try:
            total_movies = self._count_pending(Movie)
            total_series = self._count_pending(Series)
            total_items = total_movies + total_series
            if total_items == 0:
                self.job_store.add_log(job_id, "info", "No items need MDBList enrichment")
                self.job_store.complete(job_id, result.as_dict())
                return result

            tier = "supporter" if self.client.rate_limiter.is_supporter() else "free"
            self.job_store.add_log(job_id, "info", f"MDBList tier: {tier}")
            self.job_store.add_log(
                job_id,
                "info",
                f"Found {total_movies} movies and {total_series} series to enrich",
            )

            if total_movies:
                self.job_store.set_step(
                    job_id, 0, "Enriching movies from MDBList", total_items
                )
                await self._enrich_model(
                    Movie, "movie", job_id, result, 0, total_items
                )

            if total_series and not self.job_store.is_cancelled(job_id):
                self.job_store.set_step(
                    job_id, 1, "Enriching series from MDBList", total_items
                )
                await self._enrich_model(
                    Series,
                    "show",
                    job_id,
                    result,
                    result.movies_processed,
                    total_items,
                )

            if self.job_store.is_cancelled(job_id):
                result.cancelled = True
                self.job_store.cancelled(job_id, result.as_dict())
                return result

            self.job_store.complete(job_id, result.as_dict())
            log.success(
                f"Enriched {result.movies_enriched} movies and "
                f"{result.series_enriched} series from MDBList"
            )
            return result
        except Exception as e:
            log.error("MDBList metadata enrichment failed", exc_info=True)
            self.job_store.fail(job_id, str(e))
            raise

    def get_enrichment_stats(self) -> dict[str, dict[str, int]]:
        """Report total, enriched and pending counts per media type."""
        stats: dict[str, dict[str, int]] = {}
        with db() as ctx:
            for name, model in (("movies", Movie), ("series", Series)):
                total, enriched = ctx.session.execute(
                    select(
                        func.count(model.id),
                        func.count(model.mdblist_enriched_at),
                    ).where(model.imdb_id.is_not(None))
                ).one()
                stats[name] = {
                    "total": total,
                    "enriched": enriched,
                    "pending": total - enriched,
                }
        return stats

    def clear_enrichment_data(self) -> None:
        """Reset every enrichment column so the next run starts over."""
        cleared = dict.fromkeys((*ENRICHMENT_COLUMNS, "mdblist_enriched_at"))
        with db() as ctx:
            for model in (Movie, Series):
                ctx.session.execute(update(model).values(cleared))
            ctx.session.commit()
        log.info("MDBList enrichment data cleared")

    async def enrich_single_item(
        self, imdb_id: str, media_type: Literal["movie", "series"]
    ) -> EnrichmentData | None:
        """Enrich one title right away.

        Returns:
            EnrichmentData | None: The stored data, or None if MDBList has no match

        Raises:
            EnrichmentNotConfiguredError: If MDBList is not configured
        """
        if not self.client.is_configured():
            raise EnrichmentNotConfiguredError("MDBList is not configured")

        item = await self.client.get_by_imdb(imdb_id)
        if item is None:
            return None

        data = self.client.extract_enrichment_data(item)
        model: CatalogModel = Movie if media_type == "movie" else Series
        with db() as ctx:
            ids = list(
                ctx.session.execute(
                    select(model.id).where(model.imdb_id == imdb_id)
                ).scalars()
            )
        self._write_enrichment(model, dict.fromkeys(ids, data))
        log.info(f"Enriched $$'{imdb_id}'$$ from MDBList ({len(ids)} rows)")
        return data
