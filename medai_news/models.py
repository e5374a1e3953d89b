from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import datetime, timezone
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class CandidateItem:
    """
    A parsed feed entry prior to ranking/selection.

    `canonical_url` is the identity key: two candidates sharing it are the same
    logical item. Stages return new instances via `dataclasses.replace`.
    """
    title: str
    raw_url: str
    canonical_url: str
    reported_source: str
    published_at: datetime
    description: str = ""
    relevance_score: float = 0.0
    feed_url: Optional[str] = None
    feed_image_url: str = ""


@dataclass
class EnrichedItem:
    """Candidate plus body excerpt, image, category and generated text."""
    title: str
    raw_url: str
    canonical_url: str
    reported_source: str
    published_at: datetime
    description: str = ""
    relevance_score: float = 0.0
    feed_url: Optional[str] = None
    feed_image_url: str = ""
    body_excerpt: str = ""
    image_url: str = ""
    image_attribution: str = ""
    category: str = ""
    summary: str = ""
    content: str = ""

    @classmethod
    def from_candidate(cls, item: CandidateItem, **extra: Any) -> "EnrichedItem":
        base = {f.name: getattr(item, f.name) for f in fields(CandidateItem)}
        base.update(extra)
        return cls(**base)


def _iso(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Best-effort conversion of a store timestamp (ISO string or datetime) to aware UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        s = str(value).strip()
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(s)
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


@dataclass
class PersistedArticle:
    """
    Durable, document-shaped article row.

    `canonical_url` is the business key. The physical column holding it varies
    between deployments, hence `url_column` on the row converters.
    """
    title: str
    summary: str
    content: str
    category: str
    canonical_url: str
    source: str
    published_at: Optional[datetime]
    image_url: str
    image_attribution: str = ""
    id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_enriched(cls, item: EnrichedItem) -> "PersistedArticle":
        return cls(
            title=item.title,
            summary=item.summary,
            content=item.content,
            category=item.category,
            canonical_url=item.canonical_url,
            source=item.reported_source,
            published_at=item.published_at,
            image_url=item.image_url,
            image_attribution=item.image_attribution,
        )

    def to_row(self, url_column: str = "source_url") -> Dict[str, Any]:
        row: Dict[str, Any] = {
            "title": self.title,
            "summary": self.summary,
            "content": self.content,
            "category": self.category,
            url_column: self.canonical_url,
            "source": self.source,
            "published_at": _iso(self.published_at),
            "image_url": self.image_url,
            "image_attribution": self.image_attribution,
        }
        if self.created_at is not None:
            row["created_at"] = _iso(self.created_at)
        if self.updated_at is not None:
            row["updated_at"] = _iso(self.updated_at)
        return row

    @classmethod
    def from_row(cls, row: Dict[str, Any], url_column: str = "source_url") -> "PersistedArticle":
        return cls(
            id=row.get("id"),
            title=row.get("title") or "",
            summary=row.get("summary") or "",
            content=row.get("content") or "",
            category=row.get("category") or "",
            canonical_url=row.get(url_column) or "",
            source=row.get("source") or "",
            published_at=parse_timestamp(row.get("published_at")),
            image_url=row.get("image_url") or "",
            image_attribution=row.get("image_attribution") or "",
            created_at=parse_timestamp(row.get("created_at")),
            updated_at=parse_timestamp(row.get("updated_at")),
        )
