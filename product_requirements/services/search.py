"""
Ranked full-text search across epics, user stories, acceptance criteria,
requirements, comments and steering documents.

Query model
    The query is split into word terms (``\\w+``). A row matches when every
    term is a prefix of some word in its title, body or reference ID.

Ranking
    score = sum over terms of TITLE_WEIGHT * title hits + BODY_WEIGHT * body
    hits, plus REFERENCE_BOOST when the whole query equals the row's reference
    ID. Ties break on ``updated_at`` desc, then ``id`` asc. An empty query
    disables relevance and orders by ``updated_at`` desc.

    On PostgreSQL matching and ranking run in the database against the GIN
    full-text indexes: prefix ``tsquery`` terms, ``ts_rank`` over a vector with
    the title weighted above the body, and ``LIMIT offset + limit``.

    Elsewhere candidates are narrowed with case-insensitive substring filters
    and read in batches, ordered by an SQL upper bound of the score. The exact
    word-prefix score is computed here and the scan stops once no unread row
    can enter the window.

Merge
    Each kind is ranked independently and cut to ``offset + limit`` rows; the
    streams are merged with the same ordering and sliced. ``total`` is the sum
    of per-kind match counts.
"""

import json
import re
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

import structlog
from sqlalchemy import (
    Float,
    and_,
    asc,
    case,
    desc,
    func,
    literal,
    literal_column,
    or_,
    type_coerce,
)
from sqlalchemy.orm import Session

from ..db.models import (
    AcceptanceCriteriaModel,
    CommentModel,
    EpicModel,
    RequirementModel,
    StatusModel,
    SteeringDocumentModel,
    UserStoryModel,
)
from ..deadline import check_deadline
from ..errors import InputValidationError
from ..schemas.common import MAX_LIMIT
from ..schemas.enums import SearchKind, SortBy, SortOrder
from ..schemas.search import SearchParams
from ._base import validate_priority
from .cache import SearchCache, get_search_cache, make_cache_key
from .reference_ids import SEARCHABLE_REFERENCE_PATTERN

logger = structlog.get_logger()

TITLE_WEIGHT = 1.0
BODY_WEIGHT = 0.4
REFERENCE_BOOST = 10.0
MIN_SUGGEST_PREFIX = 2

# Extra candidate rows fetched per batch beyond the requested window
SCAN_BATCH = 10
SCORE_EPSILON = 1e-9
FTS_CONFIG = literal_column("'english'")

TERM_PATTERN = re.compile(r"\w+", re.UNICODE)


def tokenize(text: Optional[str]) -> List[str]:
    return [term.lower() for term in TERM_PATTERN.findall(text or "")]


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


@dataclass(frozen=True)
class KindSpec:
    """How one searchable kind maps onto its table."""

    kind: SearchKind
    model: Any
    title_column: str
    body_column: Optional[str]
    creator_column: str
    has_workflow: bool

    def column(self, name: Optional[str]):
        return getattr(self.model, name) if name else None


KIND_SPECS: Dict[SearchKind, KindSpec] = {
    SearchKind.EPIC: KindSpec(
        SearchKind.EPIC, EpicModel, "title", "description", "creator_id", True
    ),
    SearchKind.USER_STORY: KindSpec(
        SearchKind.USER_STORY, UserStoryModel, "title", "description", "creator_id", True
    ),
    SearchKind.ACCEPTANCE_CRITERIA: KindSpec(
        SearchKind.ACCEPTANCE_CRITERIA,
        AcceptanceCriteriaModel,
        "description",
        None,
        "author_id",
        False,
    ),
    SearchKind.REQUIREMENT: KindSpec(
        SearchKind.REQUIREMENT, RequirementModel, "title", "description", "creator_id", True
    ),
    SearchKind.COMMENT: KindSpec(
        SearchKind.COMMENT, CommentModel, "content", None, "author_id", False
    ),
    SearchKind.STEERING_DOCUMENT: KindSpec(
        SearchKind.STEERING_DOCUMENT,
        SteeringDocumentModel,
        "title",
        "description",
        "creator_id",
        False,
    ),
}


@dataclass
class SearchHit:
    kind: SearchKind
    row: Any
    score: float
    bound: Optional[float] = None

    @property
    def id(self) -> str:
        return self.row.id

    @property
    def updated_at(self) -> datetime:
        return self.row.updated_at

    def sort_value(self, field: SortBy):
        spec = KIND_SPECS[self.kind]
        if field == SortBy.TITLE:
            return getattr(self.row, spec.title_column)
        if field == SortBy.PRIORITY:
            return getattr(self.row, "priority", None)
        return getattr(self.row, field.value)

    def to_dict(self) -> Dict[str, Any]:
        row = self.row
        result = {
            "entity_type": self.kind.value,
            "id": row.id,
            "reference_id": getattr(row, "reference_id", None),
            "title": getattr(row, "title", None),
            "description": None,
            "status": getattr(row, "status", None),
            "priority": getattr(row, "priority", None),
            "score": round(self.score, 4),
            "created_at": row.created_at.isoformat(),
            "updated_at": row.updated_at.isoformat(),
        }
        if self.kind == SearchKind.COMMENT:
            result["title"] = row.content[:120]
            result["description"] = row.content
            result["parent_entity_type"] = row.entity_type
            result["parent_entity_id"] = row.entity_id
        else:
            result["description"] = row.description
        return result


def score_row(
    terms: List[str], title: Optional[str], body: Optional[str], reference_id: Optional[str]
) -> Optional[float]:
    """Relevance of one row, or None when some term does not match."""
    title_words = tokenize(title)
    body_words = tokenize(body)
    reference_words = tokenize(reference_id)
    score = 0.0
    for term in terms:
        title_hits = sum(1 for word in title_words if word.startswith(term))
        body_hits = sum(1 for word in body_words if word.startswith(term))
        reference_hit = any(word.startswith(term) for word in reference_words)
        if not (title_hits or body_hits or reference_hit):
            return None
        score += TITLE_WEIGHT * title_hits + BODY_WEIGHT * body_hits
    return score


class SearchService:
    """Cached, ranked search over every entity kind and comments."""

    def __init__(self, db: Session, cache: Optional[SearchCache] = None):
        self.db = db
        self.cache = cache or get_search_cache()

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def search(self, params: SearchParams) -> Dict[str, Any]:
        """Search and return the decoded response."""
        payload, _ = self.search_json(params)
        return json.loads(payload)

    def search_json(self, params: SearchParams) -> Tuple[str, bool]:
        """Search and return (serialized response, served from cache).

        Cache hits return the stored string unchanged.
        """
        self._validate(params)
        key = make_cache_key(params.cache_payload())
        kinds = [kind.value for kind in params.kinds()]

        cached = self.cache.get(key)
        if cached is not None:
            logger.debug("search_cache_hit", key=key)
            return cached, True

        started = time.perf_counter()
        response = self._execute(params)
        payload = json.dumps(response, separators=(",", ":"))
        self.cache.set(key, payload, kinds)
        logger.info(
            "search_executed",
            query=params.query,
            kinds=kinds,
            total=response["total"],
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        return payload, False

    def suggest(self, prefix: str, limit: int = 10) -> Dict[str, List[str]]:
        """Prefix completions for titles, reference IDs and status names."""
        prefix = (prefix or "").strip()
        if len(prefix) < MIN_SUGGEST_PREFIX:
            raise InputValidationError(
                f"prefix must be at least {MIN_SUGGEST_PREFIX} characters"
            )
        if not 1 <= limit <= MAX_LIMIT:
            raise InputValidationError(f"limit must be between 1 and {MAX_LIMIT}, got {limit}")
        pattern = _escape_like(prefix) + "%"

        titles: List[str] = []
        reference_ids: List[Tuple[str, int, str]] = []
        for model in (EpicModel, UserStoryModel, RequirementModel, SteeringDocumentModel):
            titles.extend(
                title
                for (title,) in self.db.query(model.title)
                .filter(model.title.ilike(pattern, escape="\\"))
                .distinct()
                .order_by(model.title)
                .limit(limit)
                .all()
            )
        for model in (
            EpicModel,
            UserStoryModel,
            AcceptanceCriteriaModel,
            RequirementModel,
            SteeringDocumentModel,
        ):
            reference_ids.extend(
                (ref.split("-")[0], number, ref)
                for ref, number in self.db.query(model.reference_id, model.reference_number)
                .filter(model.reference_id.ilike(pattern, escape="\\"))
                .order_by(model.reference_number)
                .limit(limit)
                .all()
            )
        statuses = [
            name
            for (name,) in self.db.query(StatusModel.name)
            .filter(StatusModel.name.ilike(pattern, escape="\\"))
            .distinct()
            .order_by(StatusModel.name)
            .limit(limit)
            .all()
        ]

        return {
            "titles": sorted(set(titles), key=lambda t: (t.lower(), t))[:limit],
            "reference_ids": [ref for _, _, ref in sorted(reference_ids)][:limit],
            "statuses": statuses,
        }

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    def _validate(self, params: SearchParams) -> None:
        if not 1 <= params.limit <= MAX_LIMIT:
            raise InputValidationError(
                f"limit must be between 1 and {MAX_LIMIT}, got {params.limit}"
            )
        if params.offset < 0:
            raise InputValidationError(f"offset must be >= 0, got {params.offset}")
        if params.priority is not None:
            validate_priority(params.priority)

    def _execute(self, params: SearchParams) -> Dict[str, Any]:
        terms = tokenize(params.query)
        window = params.offset + params.limit
        relevance = bool(terms) and params.sort_by == SortBy.RELEVANCE
        sort_key = self._sort_key(params, relevance)
        full_text = self.db.get_bind().dialect.name == "postgresql"
        stripped = (params.query or "").strip()
        exact_reference = (
            stripped.upper() if SEARCHABLE_REFERENCE_PATTERN.match(stripped) else None
        )

        hits: List[SearchHit] = []
        total = 0
        for kind in params.kinds():
            check_deadline(f"search of {kind.value}")
            spec = KIND_SPECS[kind]
            query = self._filtered_query(spec, params)
            if query is None:
                continue
            if not terms:
                total += query.count()
                rows = self._ordered(spec, query, params).limit(window).all()
                hits.extend(SearchHit(kind, row, 0.0) for row in rows)
                continue
            if full_text:
                kind_total, kind_hits = self._rank_full_text(
                    spec, query, terms, exact_reference, params, window, relevance
                )
            else:
                kind_total, kind_hits = self._rank_bounded(
                    spec, query, terms, exact_reference, params, window, relevance, sort_key
                )
            total += kind_total
            hits.extend(kind_hits)

        hits.sort(key=sort_key)
        page = hits[params.offset:window]
        return {
            "query": params.query,
            "results": [hit.to_dict() for hit in page],
            "total": total,
            "limit": params.limit,
            "offset": params.offset,
            "sort_by": params.sort_by.value,
            "sort_order": params.sort_order.value,
        }

    def _filtered_query(self, spec: KindSpec, params: SearchParams):
        """Base query for a kind with filters applied; None excludes the kind."""
        model = spec.model
        if not spec.has_workflow and (
            params.status is not None
            or params.priority is not None
            or params.assignee_id is not None
        ):
            return None

        query = self.db.query(model)
        if params.status is not None:
            query = query.filter(func.lower(model.status) == params.status.strip().lower())
        if params.priority is not None:
            query = query.filter(model.priority == params.priority)
        if params.assignee_id is not None:
            query = query.filter(model.assignee_id == params.assignee_id)
        if params.creator_id is not None:
            query = query.filter(spec.column(spec.creator_column) == params.creator_id)
        if params.created_after is not None:
            query = query.filter(model.created_at >= params.created_after)
        if params.created_before is not None:
            query = query.filter(model.created_at <= params.created_before)
        if params.updated_after is not None:
            query = query.filter(model.updated_at >= params.updated_after)
        if params.updated_before is not None:
            query = query.filter(model.updated_at <= params.updated_before)
        return query

    # -------------------------------------------------------------------------
    # Ranking: PostgreSQL full-text
    # -------------------------------------------------------------------------

    @staticmethod
    def _document(spec: KindSpec):
        """The indexed document expression; must match the migration's GIN indexes."""
        title = spec.column(spec.title_column)
        if spec.body_column is None:
            return title
        return (
            func.coalesce(title, literal_column("''"))
            .op("||")(literal_column("' '"))
            .op("||")(func.coalesce(spec.column(spec.body_column), literal_column("''")))
        )

    def _rank_full_text(
        self,
        spec: KindSpec,
        query,
        terms: List[str],
        exact_reference: Optional[str],
        params: SearchParams,
        window: int,
        relevance: bool,
    ) -> Tuple[int, List[SearchHit]]:
        model = spec.model
        tsquery = func.to_tsquery(FTS_CONFIG, " & ".join(f"{term}:*" for term in terms))
        match = func.to_tsvector(FTS_CONFIG, self._document(spec)).op("@@")(tsquery)
        if exact_reference is not None and hasattr(model, "reference_id"):
            match = or_(match, model.reference_id == exact_reference)

        weighted = func.setweight(
            func.to_tsvector(FTS_CONFIG, func.coalesce(spec.column(spec.title_column), "")),
            literal_column("'A'"),
        )
        if spec.body_column is not None:
            weighted = weighted.op("||")(
                func.setweight(
                    func.to_tsvector(FTS_CONFIG, func.coalesce(spec.column(spec.body_column), "")),
                    literal_column("'B'"),
                )
            )
        score = func.ts_rank(weighted, tsquery) + self._reference_boost(spec, exact_reference)

        matched = query.filter(match)
        total = matched.count()
        ranked = matched.add_columns(score.label("search_score"))
        if relevance:
            ranked = ranked.order_by(
                desc("search_score"), desc(model.updated_at), asc(model.id)
            )
        else:
            ranked = self._ordered(spec, ranked, params)
        rows = ranked.limit(window).all()
        return total, [SearchHit(spec.kind, row, float(value or 0.0)) for row, value in rows]

    # -------------------------------------------------------------------------
    # Ranking: portable word-prefix scoring
    # -------------------------------------------------------------------------

    @staticmethod
    def _reference_boost(spec: KindSpec, exact_reference: Optional[str]):
        if exact_reference is None or not hasattr(spec.model, "reference_id"):
            return literal(0.0)
        return case((spec.model.reference_id == exact_reference, REFERENCE_BOOST), else_=0.0)

    def _score_bound(self, spec: KindSpec, terms: List[str], exact_reference: Optional[str]):
        """SQL upper bound of ``score_row``: weighted substring occurrence counts.

        Every word starting with a term is also a substring occurrence of it,
        so the bound never undercuts the exact score.
        """

        def occurrences(column, term: str):
            text = func.lower(func.coalesce(column, ""))
            return (func.length(text) - func.length(func.replace(text, term, ""))) / len(term)

        bound = self._reference_boost(spec, exact_reference)
        for term in terms:
            bound = bound + TITLE_WEIGHT * occurrences(spec.column(spec.title_column), term)
            if spec.body_column is not None:
                bound = bound + BODY_WEIGHT * occurrences(spec.column(spec.body_column), term)
        return type_coerce(bound, Float)

    def _rank_bounded(
        self,
        spec: KindSpec,
        query,
        terms: List[str],
        exact_reference: Optional[str],
        params: SearchParams,
        window: int,
        relevance: bool,
        sort_key: Callable[[SearchHit], Tuple],
    ) -> Tuple[int, List[SearchHit]]:
        """Top ``window`` hits of one kind, scanning candidates in batches.

        Candidates come from the database pre-ordered so the scan can stop as
        soon as no remaining row can enter the window: by score bound for
        relevance, by the requested column otherwise. ``total`` counts the
        substring candidates and so may include rows the word-prefix test
        later drops.
        """
        model = spec.model
        searchable = [spec.column(spec.title_column)]
        if spec.body_column:
            searchable.append(spec.column(spec.body_column))
        if hasattr(model, "reference_id"):
            searchable.append(model.reference_id)

        conditions = []
        for term in terms:
            pattern = "%" + _escape_like(term) + "%"
            conditions.append(or_(*[col.ilike(pattern, escape="\\") for col in searchable]))
        candidates = query.filter(and_(*conditions))
        total = candidates.count()

        bound = self._score_bound(spec, terms, exact_reference)
        ordered = candidates.add_columns(bound.label("search_bound"))
        # SQLite lower() folds ASCII only, so the bound is exact for ASCII terms alone
        bounded = not relevance or all(term.isascii() for term in terms)
        if relevance:
            ordered = ordered.order_by(desc("search_bound"), desc(model.updated_at), asc(model.id))
        else:
            ordered = self._ordered(spec, ordered, params)

        hits: List[SearchHit] = []
        batch_size = window + SCAN_BATCH
        scanned = 0
        while True:
            batch = ordered.offset(scanned).limit(batch_size).all()
            scanned += len(batch)
            for row, row_bound in batch:
                reference_id = getattr(row, "reference_id", None)
                score = score_row(
                    terms,
                    getattr(row, spec.title_column),
                    getattr(row, spec.body_column) if spec.body_column else None,
                    reference_id,
                )
                if score is None:
                    continue
                if exact_reference is not None and reference_id == exact_reference:
                    score += REFERENCE_BOOST
                hits.append(SearchHit(spec.kind, row, score, bound=float(row_bound)))

            hits.sort(key=sort_key)
            del hits[window:]
            if len(batch) < batch_size:
                break
            settled = bounded and len(hits) == window
            if settled and self._window_settled(hits[-1], batch[-1][1], relevance):
                break
            check_deadline(f"search of {spec.kind.value}")
        return total, hits

    @staticmethod
    def _window_settled(last_hit: SearchHit, next_bound, relevance: bool) -> bool:
        """Whether no unscanned row can displace ``last_hit`` from a full window.

        Unscanned rows follow in the final order (column sorts) or have a
        score bound of at most ``next_bound`` (relevance). A row whose bound
        equals the last hit's score can only tie it, and when the last hit
        carries that same bound the shared tiebreak already places the row
        after it.
        """
        if not relevance:
            return True
        next_bound = float(next_bound)
        if next_bound < last_hit.score - SCORE_EPSILON:
            return True
        return (
            abs(next_bound - last_hit.score) <= SCORE_EPSILON
            and abs(last_hit.bound - next_bound) <= SCORE_EPSILON
        )

    def _ordered(self, spec: KindSpec, query, params: SearchParams):
        """SQL ordering matching ``_sort_key`` for empty-query searches."""
        model = spec.model
        if params.sort_by == SortBy.RELEVANCE:
            return query.order_by(desc(model.updated_at), asc(model.id))
        if params.sort_by == SortBy.PRIORITY and not spec.has_workflow:
            return query.order_by(asc(model.id))
        column = (
            spec.column(spec.title_column)
            if params.sort_by == SortBy.TITLE
            else getattr(model, params.sort_by.value)
        )
        direction = desc if params.sort_order == SortOrder.DESC else asc
        return query.order_by(direction(column), asc(model.id))

    @staticmethod
    def _sort_key(params: SearchParams, relevance: bool) -> Callable[[SearchHit], Tuple]:
        if relevance:
            return lambda hit: (-hit.score, -hit.updated_at.timestamp(), hit.id)
        if params.sort_by == SortBy.RELEVANCE:
            return lambda hit: (-hit.updated_at.timestamp(), hit.id)

        field = params.sort_by
        descending = params.sort_order == SortOrder.DESC

        def key(hit: SearchHit) -> Tuple:
            value = hit.sort_value(field)
            if value is None:
                return (1, 0, hit.id)
            if isinstance(value, datetime):
                value = value.timestamp()
            if descending:
                return (0, _Reversed(value), hit.id)
            return (0, value, hit.id)

        return key


class _Reversed:
    """Inverts comparison so mixed-type values can sort descending."""

    __slots__ = ("value",)

    def __init__(self, value):
        self.value = value

    def __eq__(self, other):
        return self.value == other.value

    def __lt__(self, other):
        return other.value < self.value
