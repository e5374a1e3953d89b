"""Article store access.

The physical table differs between deployments (which column holds the URL,
which timestamp orders rows, whether optional columns exist), so every
operation goes through a SchemaProbe-resolved column set. Table adapters
return `StoreResult` values instead of raising; the gateway decides what is
fatal.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence, Tuple

from .exceptions import StoreUnavailableError
from .models import PersistedArticle, parse_timestamp

logger = logging.getLogger(__name__)

UNDEFINED_COLUMN = "42703"
UNIQUE_VIOLATION = "23505"

URL_COLUMN_CANDIDATES = ["url", "source_url", "article_url", "link"]
ORDER_CANDIDATES = ["published_at", "created_at", "inserted_at", "date", "id"]
OPTIONAL_COLUMNS = ["image_attribution", "created_at", "updated_at"]

DELETE_BATCH = 50


@dataclass(frozen=True)
class StoreError:
    code: str
    message: str = ""

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}" if self.message else f"[{self.code}]"


@dataclass(frozen=True)
class StoreResult:
    data: Optional[List[Dict[str, Any]]] = None
    error: Optional[StoreError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def rows(self) -> List[Dict[str, Any]]:
        return list(self.data or [])


InFilter = Tuple[str, Sequence[Any]]


class ArticleTable(Protocol):
    """Minimal query surface of a PostgREST-style table."""

    def select(
        self,
        columns: str = "*",
        *,
        eq: Optional[Mapping[str, Any]] = None,
        in_: Optional[InFilter] = None,
        order: Optional[str] = None,
        desc: bool = True,
        limit: Optional[int] = None,
    ) -> StoreResult:  # pragma: no cover - interface
        ...

    def insert(self, row: Mapping[str, Any]) -> StoreResult:  # pragma: no cover - interface
        ...

    def update(self, values: Mapping[str, Any], *, eq: Mapping[str, Any]) -> StoreResult:  # pragma: no cover
        ...

    def delete(
        self,
        *,
        in_: Optional[InFilter] = None,
        not_in: Optional[InFilter] = None,
        eq: Optional[Mapping[str, Any]] = None,
    ) -> StoreResult:  # pragma: no cover - interface
        ...


class SupabaseTable:
    """ArticleTable backed by supabase-py."""

    def __init__(self, client: Any, name: str) -> None:
        self._client = client
        self.name = name

    @classmethod
    def connect(cls, url: str, key: str, name: str) -> "SupabaseTable":
        from supabase import create_client

        return cls(create_client(url, key), name)

    def _run(self, query: Any) -> StoreResult:
        from postgrest.exceptions import APIError

        try:
            resp = query.execute()
        except APIError as e:
            return StoreResult(error=StoreError(code=str(e.code or "api"), message=e.message or str(e)))
        except Exception as e:  # noqa: BLE001 - transport errors become error values
            return StoreResult(error=StoreError(code="network", message=str(e)))
        return StoreResult(data=list(resp.data or []))

    @staticmethod
    def _filter(q: Any, eq: Optional[Mapping[str, Any]], in_: Optional[InFilter]) -> Any:
        for col, val in (eq or {}).items():
            q = q.eq(col, val)
        if in_:
            q = q.in_(in_[0], list(in_[1]))
        return q

    def select(self, columns="*", *, eq=None, in_=None, order=None, desc=True, limit=None) -> StoreResult:
        q = self._filter(self._client.table(self.name).select(columns), eq, in_)
        if order:
            q = q.order(order, desc=desc)
        if limit:
            q = q.limit(limit)
        return self._run(q)

    def insert(self, row) -> StoreResult:
        return self._run(self._client.table(self.name).insert(dict(row)))

    def update(self, values, *, eq) -> StoreResult:
        return self._run(self._filter(self._client.table(self.name).update(dict(values)), eq, None))

    def delete(self, *, in_=None, not_in=None, eq=None) -> StoreResult:
        q = self._filter(self._client.table(self.name).delete(), eq, in_)
        if not_in:
            q = q.not_.in_(not_in[0], list(not_in[1]))
        return self._run(q)


class SchemaProbe:
    """
    Discovers which columns exist by selecting them.

    Only "undefined column" (42703) means absent; any other error is treated as
    present so a flaky connection never rewrites the schema picture. Answers
    are memoized for the life of the probe.
    """

    def __init__(self, table: ArticleTable) -> None:
        self._table = table
        self._present: Dict[str, bool] = {}
        self._lock = threading.Lock()
        self.fallbacks = 0

    def has(self, column: str) -> bool:
        with self._lock:
            if column in self._present:
                return self._present[column]
        columns = "id" if column == "id" else f"id,{column}"
        res = self._table.select(columns, limit=1)
        present = not (res.error is not None and res.error.code == UNDEFINED_COLUMN)
        if res.error is not None and present:
            logger.warning("Schema probe for %r failed (%s); assuming present", column, res.error)
        with self._lock:
            self._present[column] = present
        return present

    def pick(self, candidates: Iterable[str], default: str) -> str:
        for col in candidates:
            if self.has(col):
                return col
        logger.warning("None of %s exist; falling back to %r", list(candidates), default)
        with self._lock:
            self.fallbacks += 1
        return default


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


class StoreGateway:
    """Idempotent writes keyed by canonical URL, plus dedupe and retention."""

    def __init__(self, table: ArticleTable, probe: Optional[SchemaProbe] = None) -> None:
        self.table = table
        self.probe = probe or SchemaProbe(table)
        self.errors = 0
        self._lock = threading.Lock()
        self._url_column: Optional[str] = None
        self._order_column: Optional[str] = None

    @property
    def url_column(self) -> str:
        if self._url_column is None:
            self._url_column = self.probe.pick(URL_COLUMN_CANDIDATES, "source_url")
        return self._url_column

    @property
    def order_column(self) -> str:
        if self._order_column is None:
            self._order_column = self.probe.pick(ORDER_CANDIDATES, "id")
        return self._order_column

    def _failed(self, what: str, err: StoreError) -> None:
        with self._lock:
            self.errors += 1
        logger.warning("Store %s failed: %s", what, err)

    def ping(self) -> None:
        """Fatal reachability check; resolves the column layout as a side effect."""
        res = self.table.select("id", limit=1)
        if res.error is not None:
            raise StoreUnavailableError(f"Article store unreachable: {res.error}")
        logger.info("Store reachable (url column %r, order column %r)", self.url_column, self.order_column)

    def _row_for(self, article: PersistedArticle) -> Dict[str, Any]:
        row = article.to_row(self.url_column)
        for col in OPTIONAL_COLUMNS:
            if col in row and not self.probe.has(col):
                row.pop(col)
        return row

    def existing(self, urls: Iterable[str]) -> Dict[str, Dict[str, Any]]:
        """Stored rows for the given canonical URLs, keyed by URL (newest id wins)."""
        wanted = sorted({u for u in urls if u})
        if not wanted:
            return {}
        res = self.table.select("*", in_=(self.url_column, wanted))
        if res.error is not None:
            self._failed("lookup", res.error)
            return {}
        out: Dict[str, Dict[str, Any]] = {}
        for row in res.rows:
            url = row.get(self.url_column)
            prev = out.get(url)
            if prev is None or (row.get("id") or 0) > (prev.get("id") or 0):
                out[url] = row
        return out

    def upsert_by_canonical_url(self, article: PersistedArticle) -> str:
        """Insert a new row or update the one(s) sharing its canonical URL.

        Returns "inserted", "updated" or "failed".
        """
        url_col = self.url_column
        row = self._row_for(article)
        found = self.table.select("id", eq={url_col: article.canonical_url}, limit=1)
        if found.error is not None:
            self._failed("lookup", found.error)
            return "failed"

        if found.rows:
            return self._update(row, article.canonical_url)

        if self.probe.has("created_at"):
            row.setdefault("created_at", _utcnow())
        if self.probe.has("updated_at"):
            row["updated_at"] = _utcnow()
        res = self.table.insert(row)
        if res.error is None:
            return "inserted"
        if res.error.code == UNIQUE_VIOLATION:
            # another writer inserted the same URL since our lookup
            row.pop("created_at", None)
            return self._update(row, article.canonical_url)
        self._failed("insert", res.error)
        return "failed"

    def _update(self, row: Dict[str, Any], url: str) -> str:
        values = {k: v for k, v in row.items() if k not in ("id", "created_at")}
        if self.probe.has("updated_at"):
            values["updated_at"] = _utcnow()
        res = self.table.update(values, eq={self.url_column: url})
        if res.error is not None:
            self._failed("update", res.error)
            return "failed"
        return "updated"

    def _delete_ids(self, ids: List[Any]) -> int:
        deleted = 0
        for i in range(0, len(ids), DELETE_BATCH):
            batch = ids[i:i + DELETE_BATCH]
            res = self.table.delete(in_=("id", batch))
            if res.error is not None:
                self._failed("delete", res.error)
                continue
            deleted += len(batch)
        return deleted

    def _sort_key(self, row: Mapping[str, Any]):
        order_col = self.order_column
        ts = parse_timestamp(row.get(order_col)) if order_col != "id" else None
        return (ts.timestamp() if ts else float("-inf"), row.get("id") or 0)

    def dedupe_by_canonical_url(self, window: int = 400) -> int:
        """
        Within the newest `window` rows, keep one row per canonical URL (the
        latest by ordering column, then id) and delete the rest.
        """
        url_col, order_col = self.url_column, self.order_column
        columns = ",".join(dict.fromkeys(["id", url_col, order_col]))
        res = self.table.select(columns, order=order_col, desc=True, limit=window)
        if res.error is not None:
            self._failed("dedupe scan", res.error)
            return 0

        keep: Dict[str, Mapping[str, Any]] = {}
        losers: List[Any] = []
        for row in res.rows:
            url = row.get(url_col)
            if not url:
                continue
            prev = keep.get(url)
            if prev is None:
                keep[url] = row
            elif self._sort_key(row) > self._sort_key(prev):
                losers.append(prev.get("id"))
                keep[url] = row
            else:
                losers.append(row.get("id"))
        losers = [i for i in losers if i is not None]
        if not losers:
            return 0
        deleted = self._delete_ids(losers)
        logger.info("Removed %d duplicate row(s)", deleted)
        return deleted

    def prune_to_newest(self, n: int) -> int:
        """Delete everything except the newest `n` rows by ordering column."""
        if n <= 0:
            raise ValueError("retention size must be positive")
        res = self.table.select("id", order=self.order_column, desc=True, limit=n)
        if res.error is not None:
            self._failed("prune scan", res.error)
            return 0
        keep_ids = [r.get("id") for r in res.rows if r.get("id") is not None]
        if not keep_ids:
            return 0
        deleted = self.table.delete(not_in=("id", keep_ids))
        if deleted.error is not None:
            self._failed("prune", deleted.error)
            return 0
        count = len(deleted.rows)
        if count:
            logger.info("Pruned %d row(s) beyond the newest %d", count, n)
        return count
