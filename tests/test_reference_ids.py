"""Tests for reference ID parsing and allocation."""

import re
import threading

import pytest
from sqlalchemy.orm import sessionmaker

from product_requirements.db.base import create_db_engine, create_schema
from product_requirements.db.models import ReferenceCounterModel
from product_requirements.db.seed import seed_reference_data
from product_requirements.errors import InputValidationError, NotFoundError
from product_requirements.schemas.entities import EpicCreate
from product_requirements.schemas.enums import EntityType, Role
from product_requirements.schemas.users import UserCreate
from product_requirements.services.cache import InMemorySearchCache
from product_requirements.services.epics import EpicService
from product_requirements.services.reference_ids import (
    ReferenceIdAllocator,
    find_entity,
    format_reference_id,
    get_entity,
    is_reference_id,
    parse_reference_id,
)
from product_requirements.services.users import UserService


class TestParsing:
    def test_parse_reference_id(self):
        assert parse_reference_id("EP-007") == (EntityType.EPIC, 7)
        assert parse_reference_id("req-1234") == (EntityType.REQUIREMENT, 1234)
        assert parse_reference_id(" AC-001 ") == (EntityType.ACCEPTANCE_CRITERIA, 1)

    def test_rejects_non_reference_values(self):
        assert parse_reference_id("EP-1") is None
        assert parse_reference_id("XX-001") is None
        assert not is_reference_id("4b0c1a6e-0000-0000-0000-000000000000")

    def test_format_pads_to_three_digits(self):
        assert format_reference_id("US", 4) == "US-004"
        assert format_reference_id("REQ", 1000) == "REQ-1000"


class TestAllocation:
    def test_sequential_per_type(self, make):
        epics = [make.epic(title=f"Epic {i}") for i in range(3)]
        story = make.story(epics[0])

        assert [e.reference_id for e in epics] == ["EP-001", "EP-002", "EP-003"]
        assert story.reference_id == "US-001"
        for epic in epics:
            assert re.match(r"^EP-\d{3,}$", epic.reference_id)

    def test_failed_create_does_not_consume_a_number(self, make):
        with pytest.raises(InputValidationError):
            make.epic(title="   ")
        assert make.epic(title="Valid").reference_id == "EP-001"

    def test_missing_counter_resumes_after_highest(self, db_session, make):
        make.epic()
        make.epic()
        db_session.query(ReferenceCounterModel).filter(
            ReferenceCounterModel.entity_type == "epic"
        ).delete()
        db_session.commit()

        reference_id, number = ReferenceIdAllocator(db_session).allocate(EntityType.EPIC)
        db_session.commit()

        assert (reference_id, number) == ("EP-003", 3)

    def test_lookup_by_reference_is_case_insensitive(self, db_session, make):
        epic = make.epic()
        assert find_entity(db_session, EntityType.EPIC, "ep-001").id == epic.id
        assert find_entity(db_session, EntityType.EPIC, epic.id).id == epic.id
        assert find_entity(db_session, EntityType.EPIC, "EP-999") is None

    def test_get_entity_raises_not_found(self, db_session):
        with pytest.raises(NotFoundError) as exc_info:
            get_entity(db_session, EntityType.REQUIREMENT, "REQ-042")
        assert exc_info.value.code == "NOT_FOUND"
        assert "REQ-042" in exc_info.value.message


class TestConcurrentAllocation:
    def test_parallel_epic_creation_yields_unique_ids(self, tmp_path):
        engine = create_db_engine(f"sqlite:///{tmp_path / 'references.db'}")
        create_schema(engine)
        factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)

        setup = factory()
        seed_reference_data(setup)
        creator_id = UserService(setup).create(
            UserCreate(username="writer", email="writer@example.com", role=Role.USER)
        ).id
        setup.close()

        results = []
        errors = []
        lock = threading.Lock()
        barrier = threading.Barrier(10)

        def create(index: int) -> None:
            session = factory()
            try:
                barrier.wait()
                epic = EpicService(session, cache=InMemorySearchCache()).create(
                    EpicCreate(title=f"Parallel epic {index}", priority=3),
                    creator_id=creator_id,
                )
                with lock:
                    results.append(epic.reference_id)
            except Exception as exc:  # collected and asserted below
                with lock:
                    errors.append(exc)
            finally:
                session.close()

        threads = [threading.Thread(target=create, args=(i,)) for i in range(10)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        engine.dispose()

        assert errors == []
        assert sorted(results) == [f"EP-{n:03d}" for n in range(1, 11)]
