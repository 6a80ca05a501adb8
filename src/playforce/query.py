"""SOQL execution with ``SELECT *`` expansion, paging and cancellation.

Usage:
    engine = QueryEngine(executor)

    # stream progress events
    stream = engine.iter_query("SELECT * FROM Account", query_id="q1")
    for event in stream:
        print(event.fetched, "/", event.total)

    # or just get the result
    result = engine.execute("SELECT Id FROM Contact", on_progress=print)

    # from another thread, between pages
    engine.abort("q1")
"""

from __future__ import annotations

import logging
import re
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Generator, List, Optional

from .api import RequestExecutor
from .exceptions import ApiError, NetworkError, UsageError

_logger = logging.getLogger(__name__)

_SELECT_STAR_RE = re.compile(r"^(\s*SELECT\s+)\*(\s+FROM\s+)", re.IGNORECASE)
_FROM_OBJECT_RE = re.compile(r"\bFROM\s+([A-Za-z][A-Za-z0-9_]*)", re.IGNORECASE)


class CancellationToken:
    """Cooperative cancellation flag checked between page fetches."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass(frozen=True)
class QueryProgress:
    fetched: int
    total: int
    page: int
    done: bool


@dataclass
class InFlightQuery:
    query_id: str
    cancel: CancellationToken
    last_progress: Optional[QueryProgress] = None


@dataclass
class QueryResult:
    """Assembled result of a SOQL execution.

    ``aborted`` results carry only the counts of the last progress snapshot.
    ``complete`` is False when a continuation page failed and the records are
    the ones fetched before the failure.
    """

    total_size: int
    records: List[Dict[str, Any]] = field(default_factory=list)
    aborted: bool = False
    fetched_count: int = 0
    complete: bool = True
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        if self.aborted:
            return {
                "aborted": True,
                "totalSize": self.total_size,
                "fetchedCount": self.fetched_count,
            }
        out: Dict[str, Any] = {
            "totalSize": self.total_size,
            "done": self.complete,
            "records": self.records,
        }
        if self.error:
            out["error"] = self.error
        return out


def expand_select_star(query: str, fields: List[str]) -> str:
    return _SELECT_STAR_RE.sub(lambda m: f"{m.group(1)}{', '.join(fields)}{m.group(2)}", query, count=1)


def select_star_object(query: str) -> Optional[str]:
    """Return the FROM object of a ``SELECT *`` query, or None if not applicable."""
    if not _SELECT_STAR_RE.match(query):
        return None
    m = _FROM_OBJECT_RE.search(query)
    return m.group(1) if m else None


class QueryEngine:
    def __init__(self, executor: RequestExecutor) -> None:
        self.executor = executor
        self._in_flight: Dict[str, InFlightQuery] = {}
        self._lock = threading.Lock()

    # --------------------------- Schema helpers ----------------------

    def field_names(self, object_name: str) -> List[str]:
        desc = self.executor.describe_object(object_name)
        return [f["name"] for f in desc.get("fields", []) if f.get("name")]

    def expand(self, query: str) -> str:
        """Rewrite ``SELECT *`` to the object's field list; best effort."""
        object_name = select_star_object(query)
        if object_name is None:
            if _SELECT_STAR_RE.match(query):
                _logger.warning("SELECT * without a parsable FROM object; sending as-is")
            return query

        try:
            fields = self.field_names(object_name)
        except Exception as e:  # expansion must never fail the query
            _logger.warning("Could not describe %s for SELECT * expansion: %s", object_name, e)
            return query

        if not fields:
            _logger.warning("Describe of %s returned no fields; sending query as-is", object_name)
            return query

        _logger.info("Expanded SELECT * on %s to %d fields", object_name, len(fields))
        return expand_select_star(query, fields)

    # --------------------------- Tracking ----------------------------

    def _track(self, query_id: str, cancel: CancellationToken) -> InFlightQuery:
        with self._lock:
            if query_id in self._in_flight:
                raise UsageError(f"Query id {query_id!r} is already running")
            entry = InFlightQuery(query_id, cancel)
            self._in_flight[query_id] = entry
            return entry

    def _untrack(self, query_id: str) -> None:
        with self._lock:
            self._in_flight.pop(query_id, None)

    def abort(self, query_id: str) -> bool:
        """Cancel a tracked query; False if the id is unknown or already finished."""
        with self._lock:
            entry = self._in_flight.pop(query_id, None)
        if entry is None:
            _logger.debug("abort(%r): no such query in flight", query_id)
            return False
        entry.cancel.cancel()
        _logger.info("Abort requested for query %r", query_id)
        return True

    def is_running(self, query_id: str) -> bool:
        with self._lock:
            return query_id in self._in_flight

    # --------------------------- Execution ---------------------------

    def iter_query(
        self,
        query: str,
        *,
        query_id: Optional[str] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> Generator[QueryProgress, None, QueryResult]:
        """Yield one :class:`QueryProgress` per page; return the :class:`QueryResult`.

        The last event yielded has ``done=True`` unless the query was aborted.
        """
        cancel = cancel or CancellationToken()
        entry = self._track(query_id, cancel) if query_id is not None else InFlightQuery("", cancel)
        try:
            return (yield from self._run(self.expand(query), entry))
        finally:
            if query_id is not None:
                self._untrack(query_id)

    def _run(self, query: str, entry: InFlightQuery) -> Generator[QueryProgress, None, QueryResult]:
        res = self.executor.query(query)
        records: List[Dict[str, Any]] = list(res.get("records", []))
        total = int(res.get("totalSize", len(records)))
        next_url = res.get("nextRecordsUrl")
        page = 1

        progress = QueryProgress(fetched=len(records), total=total, page=page, done=not next_url)
        entry.last_progress = progress
        yield progress

        while next_url:
            if entry.cancel.cancelled:
                return self._aborted(entry)

            try:
                res = self.executor.query_more(next_url)
            except (ApiError, NetworkError) as e:
                _logger.warning(
                    "Page %d failed after %d/%d records; returning partial result: %s",
                    page + 1,
                    len(records),
                    total,
                    e,
                )
                return QueryResult(
                    total_size=total,
                    records=records,
                    fetched_count=len(records),
                    complete=False,
                    error=str(e),
                )

            if entry.cancel.cancelled:
                return self._aborted(entry)

            records.extend(res.get("records", []))
            next_url = res.get("nextRecordsUrl")
            page += 1
            progress = QueryProgress(fetched=len(records), total=total, page=page, done=not next_url)
            entry.last_progress = progress
            yield progress

        _logger.info("SOQL success, returned %d records in %d page(s)", len(records), page)
        return QueryResult(total_size=total, records=records, fetched_count=len(records))

    @staticmethod
    def _aborted(entry: InFlightQuery) -> QueryResult:
        snap = entry.last_progress
        _logger.info("Query %r aborted after %s records", entry.query_id, snap.fetched if snap else 0)
        return QueryResult(
            total_size=snap.total if snap else 0,
            fetched_count=snap.fetched if snap else 0,
            aborted=True,
            complete=False,
        )

    def execute(
        self,
        query: str,
        *,
        on_progress: Optional[Callable[[QueryProgress], None]] = None,
        query_id: Optional[str] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> QueryResult:
        stream = self.iter_query(query, query_id=query_id, cancel=cancel)
        while True:
            try:
                event = next(stream)
            except StopIteration as stop:
                return stop.value
            if on_progress is not None:
                on_progress(event)
