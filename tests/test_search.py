"""Tests for ranked search and its response cache."""

from datetime import timedelta

import pytest

from product_requirements.db.models import utc_now
from product_requirements.errors import InputValidationError
from product_requirements.schemas.entities import EpicUpdate
from product_requirements.schemas.enums import SearchKind, SortBy, SortOrder
from product_requirements.schemas.search import SearchParams
from product_requirements.services.comments import CommentService
from product_requirements.services.epics import EpicService
from product_requirements.services import search as search_module
from product_requirements.services.search import SearchService, score_row, tokenize


def age(db, entity, hours):
    entity.updated_at = utc_now() - timedelta(hours=hours)
    db.commit()


@pytest.fixture
def auth_epics(db_session, make):
    """Three matching epics: one with a double title hit, two tied on score."""
    double = make.epic(title="Authentication and re-authentication")
    older = make.epic(title="User authentication")
    newer = make.epic(title="Authentication logs")
    make.epic(title="Billing")
    age(db_session, double, 5)
    age(db_session, older, 3)
    age(db_session, newer, 1)
    return double, older, newer


class TestScoring:
    def test_tokenize_lowercases_words(self):
        assert tokenize("OAuth 2.0, re-auth!") == ["oauth", "2", "0", "re", "auth"]

    def test_every_term_must_match(self):
        assert score_row(["auth", "login"], "Authentication", "Login form", None) == pytest.approx(1.4)
        assert score_row(["auth", "billing"], "Authentication", "Login form", None) is None

    def test_terms_match_word_prefixes_only(self):
        assert score_row(["thentic"], "Authentication", None, None) is None


class TestSearch:
    def test_ranking_by_title_weight_then_recency(self, db_session, auth_epics):
        double, older, newer = auth_epics

        response = SearchService(db_session).search(SearchParams(query="authentication"))

        assert response["total"] == 3
        assert [r["id"] for r in response["results"]] == [double.id, newer.id, older.id]
        assert response["results"][0]["score"] > response["results"][1]["score"]
        assert response["results"][1]["score"] == response["results"][2]["score"]

    def test_second_call_is_served_from_cache(self, db_session, auth_epics):
        service = SearchService(db_session)
        params = SearchParams(query="authentication")

        first, first_cached = service.search_json(params)
        second, second_cached = service.search_json(params)

        assert (first_cached, second_cached) == (False, True)
        assert second == first

    def test_update_invalidates_cached_results(self, db_session, auth_epics, search_cache):
        service = SearchService(db_session)
        params = SearchParams(query="authentication")
        service.search_json(params)

        EpicService(db_session).update("EP-003", EpicUpdate(title="Audit logs"))

        payload, cached = service.search_json(params)
        assert cached is False
        assert service.search(params)["total"] == 2

    def test_kind_filter_limits_cache_tags(self, db_session, auth_epics, search_cache):
        service = SearchService(db_session)
        params = SearchParams(query="authentication", entity_types=[SearchKind.EPIC])
        service.search_json(params)

        search_cache.invalidate("requirement")

        assert service.search_json(params)[1] is True

    def test_empty_query_orders_by_recency(self, db_session, auth_epics):
        double, older, newer = auth_epics

        response = SearchService(db_session).search(SearchParams(entity_types=[SearchKind.EPIC]))

        assert response["total"] == 4
        assert [r["id"] for r in response["results"]][1:] == [newer.id, older.id, double.id]

    def test_sort_by_title(self, db_session, auth_epics):
        response = SearchService(db_session).search(
            SearchParams(query="authentication", sort_by=SortBy.TITLE, sort_order=SortOrder.ASC)
        )
        assert [r["title"] for r in response["results"]] == [
            "Authentication and re-authentication",
            "Authentication logs",
            "User authentication",
        ]

    def test_exact_reference_ranks_first(self, db_session, make):
        make.epic(title="Mentions EP-002 in passing", description="See EP-002")
        target = make.epic(title="Quiet epic")

        response = SearchService(db_session).search(SearchParams(query="ep-002"))

        assert response["results"][0]["id"] == target.id

    def test_status_filter_excludes_kinds_without_workflow(self, db_session, make):
        story = make.story(make.epic(title="Login", status="Draft"))
        make.criterion(story, description="WHEN login fails THE SYSTEM SHALL explain why")

        response = SearchService(db_session).search(SearchParams(query="login", status="draft"))

        assert [r["entity_type"] for r in response["results"]] == ["epic"]

    def test_comments_are_searchable(self, db_session, make, users):
        make.epic(title="Checkout")
        comment = CommentService(db_session).create_comment(
            "epic", "EP-001", users["user"].id, "Consider Apple Pay support"
        )

        response = SearchService(db_session).search(SearchParams(query="apple pay"))

        assert response["total"] == 1
        hit = response["results"][0]
        assert hit["entity_type"] == "comment"
        assert hit["id"] == comment.id
        assert hit["parent_entity_type"] == "epic"

    def test_pagination(self, db_session, auth_epics):
        service = SearchService(db_session)

        page = service.search(SearchParams(query="authentication", limit=1, offset=1))
        assert page["total"] == 3
        assert len(page["results"]) == 1

        past_end = service.search(SearchParams(query="authentication", offset=10))
        assert past_end["results"] == []
        assert past_end["total"] == 3

    @pytest.mark.parametrize("limit,offset", [(0, 0), (101, 0), (10, -1)])
    def test_bounds_rejected(self, db_session, limit, offset):
        with pytest.raises(InputValidationError):
            SearchService(db_session).search(SearchParams(limit=limit, offset=offset))


class TestSuggest:
    def test_suggestions(self, db_session, make):
        make.epic(title="Authentication")
        make.epic(title="Authorization")
        make.epic(title="Billing")

        suggestions = SearchService(db_session).suggest("auth")

        assert suggestions["titles"] == ["Authentication", "Authorization"]
        assert SearchService(db_session).suggest("ep-")["reference_ids"] == [
            "EP-001",
            "EP-002",
            "EP-003",
        ]
        assert SearchService(db_session).suggest("in")["statuses"] == ["In Progress"]

    def test_short_prefix_rejected(self, db_session):
        with pytest.raises(InputValidationError):
            SearchService(db_session).suggest("a")


class TestBoundedRanking:
    @pytest.fixture
    def scored_rows(self, monkeypatch):
        """Counts rows handed to the exact scorer."""
        calls = []

        def counting_score_row(*args):
            calls.append(args)
            return score_row(*args)

        monkeypatch.setattr(search_module, "score_row", counting_score_row)
        return calls

    def test_small_page_reads_a_bounded_number_of_rows(self, db_session, make, scored_rows):
        for n in range(40):
            make.epic(title=f"authentication flow {n}")
        service = SearchService(db_session)

        page = service.search(SearchParams(query="authentication flow", limit=1))

        assert page["total"] == 40
        assert len(scored_rows) <= 1 + search_module.SCAN_BATCH
        full = service.search(SearchParams(query="authentication flow", limit=40))
        assert page["results"][0]["id"] == full["results"][0]["id"]

    def test_scan_continues_past_overestimated_rows(self, db_session, make):
        for _ in range(15):
            make.epic(title="Preauthentication preauthentication preauthentication")
        target = make.epic(title="Authentication")
        age(db_session, target, 48)

        page = SearchService(db_session).search(SearchParams(query="authentication", limit=1))

        assert [r["id"] for r in page["results"]] == [target.id]

    def test_stronger_match_wins_regardless_of_position(self, db_session, make):
        for n in range(25):
            make.epic(title=f"Authentication step {n}")
        strongest = make.epic(
            title="Authentication", description="authentication authentication authentication"
        )
        age(db_session, strongest, 72)

        page = SearchService(db_session).search(SearchParams(query="authentication", limit=2))

        assert page["results"][0]["id"] == strongest.id
        assert page["results"][0]["score"] == pytest.approx(2.2)
