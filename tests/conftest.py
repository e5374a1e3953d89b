from __future__ import annotations

import copy
from typing import Any, Dict, Iterable, List, Optional

import pytest

from medai_news.store import StoreError, StoreResult

DEFAULT_COLUMNS = (
    "id", "title", "summary", "content", "category", "source_url", "source",
    "published_at", "image_url", "image_attribution", "created_at", "updated_at",
)


class InMemoryTable:
    """ArticleTable that behaves like a PostgREST table, including its error codes."""

    def __init__(self, columns: Iterable[str] = DEFAULT_COLUMNS, unique: Optional[str] = None) -> None:
        self.columns = set(columns)
        self.unique = unique
        self.rows: List[Dict[str, Any]] = []
        self.down = False
        self.calls: List[str] = []
        self._next_id = 1

    def _unknown(self, names: Iterable[str]) -> Optional[StoreResult]:
        if self.down:
            return StoreResult(error=StoreError("network", "connection refused"))
        for n in names:
            if n not in self.columns:
                return StoreResult(error=StoreError("42703", f"column {n} does not exist"))
        return None

    def _matches(self, row, eq=None, in_=None, not_in=None) -> bool:
        for k, v in (eq or {}).items():
            if row.get(k) != v:
                return False
        if in_ and row.get(in_[0]) not in list(in_[1]):
            return False
        if not_in and row.get(not_in[0]) in list(not_in[1]):
            return False
        return True

    def select(self, columns="*", *, eq=None, in_=None, order=None, desc=True, limit=None) -> StoreResult:
        self.calls.append("select")
        names = [] if columns == "*" else [c.strip() for c in columns.split(",")]
        referenced = names + list(eq or {}) + ([in_[0]] if in_ else []) + ([order] if order else [])
        err = self._unknown(referenced)
        if err:
            return err
        out = [r for r in self.rows if self._matches(r, eq, in_)]
        if order:
            out.sort(key=lambda r: (r.get(order) is not None, r.get(order) if r.get(order) is not None else 0),
                     reverse=desc)
        if limit:
            out = out[:limit]
        if names:
            out = [{k: r.get(k) for k in names} for r in out]
        return StoreResult(data=copy.deepcopy(out))

    def insert(self, row) -> StoreResult:
        self.calls.append("insert")
        err = self._unknown(row)
        if err:
            return err
        if self.unique and any(r.get(self.unique) == row.get(self.unique) for r in self.rows):
            return StoreResult(error=StoreError("23505", "duplicate key value"))
        stored = dict(row)
        stored["id"] = self._next_id
        self._next_id += 1
        self.rows.append(stored)
        return StoreResult(data=[dict(stored)])

    def update(self, values, *, eq) -> StoreResult:
        self.calls.append("update")
        err = self._unknown(list(values) + list(eq))
        if err:
            return err
        hit = [r for r in self.rows if self._matches(r, eq)]
        for r in hit:
            r.update(values)
        return StoreResult(data=copy.deepcopy(hit))

    def delete(self, *, in_=None, not_in=None, eq=None) -> StoreResult:
        self.calls.append("delete")
        err = self._unknown(list(eq or {}) + ([in_[0]] if in_ else []) + ([not_in[0]] if not_in else []))
        if err:
            return err
        gone = [r for r in self.rows if self._matches(r, eq, in_, not_in)]
        self.rows = [r for r in self.rows if r not in gone]
        return StoreResult(data=gone)

    def seed(self, **row) -> Dict[str, Any]:
        row = {k: v for k, v in row.items()}
        row["id"] = self._next_id
        self._next_id += 1
        self.rows.append(row)
        return row


class DummyResponse:
    def __init__(self, text: str = "", status_code: int = 200, url: Optional[str] = None,
                 json_data: Any = None, encoding: str = "utf-8",
                 headers: Optional[Dict[str, str]] = None) -> None:
        self.text = text
        self.status_code = status_code
        self.url = url
        self.encoding = encoding
        self.headers = dict(headers or {})
        self.closed = False
        self._json = json_data

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def close(self) -> None:
        self.closed = True

    def json(self):
        if self._json is None:
            raise ValueError("no json")
        return self._json

    def iter_content(self, chunk_size: int = 1024):
        data = self.text.encode(self.encoding)
        for i in range(0, len(data), chunk_size):
            yield data[i:i + chunk_size]


class FakeSession:
    """Routes GET/HEAD by URL; unknown URLs answer 404."""

    def __init__(self, routes: Optional[Dict[str, Any]] = None, heads: Optional[Dict[str, Any]] = None) -> None:
        self.routes = dict(routes or {})
        self.heads = dict(heads or {})
        self.requested: List[str] = []
        self.headers: Dict[str, str] = {}

    def _answer(self, table, url):
        self.requested.append(url)
        resp = table.get(url)
        if isinstance(resp, Exception):
            raise resp
        if callable(resp):
            return resp()
        return resp if resp is not None else DummyResponse("", status_code=404, url=url)

    def get(self, url, **kwargs):
        return self._answer(self.routes, url)

    def head(self, url, **kwargs):
        return self._answer(self.heads, url)


class StubProvider:
    def __init__(self, name: str = "stub", replies: Optional[List[Any]] = None, requests_per_minute: int = 60) -> None:
        self.name = name
        self.requests_per_minute = requests_per_minute
        self.replies = list(replies or [])
        self.prompts: List[str] = []

    def generate(self, prompt: str, *, max_tokens: int = 400) -> str:
        self.prompts.append(prompt)
        reply = self.replies.pop(0) if self.replies else ""
        if isinstance(reply, Exception):
            raise reply
        return reply


@pytest.fixture
def table() -> InMemoryTable:
    return InMemoryTable()


@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession()
