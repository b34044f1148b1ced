# tests/test_overrides.py
import threading

import pytest
from qdrant_client import QdrantClient

from conftest import similar_to, unit
from policy_qa.errors import IndexUnavailable, NotFoundError, ValidationError
from policy_qa.models import OverrideRecord
from policy_qa.overrides.index import OverrideIndex
from policy_qa.overrides.matcher import override_applies
from policy_qa.overrides.store import OverrideRepository
from policy_qa.services import build_services


QUESTION = "What is my collision deductible?"


def record(**kwargs):
    fields = {
        "id": "ov-1",
        "original_question": QUESTION,
        "original_answer": "$1000",
        "corrected_answer": "$500",
        "expert_id": "underwriter-7",
    }
    fields.update(kwargs)
    return OverrideRecord(**fields)


class TestApplicability:

    def test_global_override_applies_everywhere(self):
        override = record(applies_to_all_documents=True, document_ids=["doc-9"])

        assert override_applies(override, None)
        assert override_applies(override, [])
        assert override_applies(override, ["doc-1"])

    def test_unbound_override_applies_only_to_unscoped_questions(self):
        override = record(document_ids=[])

        assert override_applies(override, None)
        assert not override_applies(override, ["doc-1"])
        assert not override_applies(override, [])

    def test_bound_override_needs_overlap(self):
        override = record(document_ids=["doc-1", "doc-2"])

        assert override_applies(override, ["doc-2", "doc-3"])
        assert not override_applies(override, ["doc-3"])
        assert not override_applies(override, None)


class TestOverrideCreation:

    def test_create_writes_record_and_first_version(self, services, add_override):
        created = add_override(QUESTION, unit(0), expert_explanation="Endorsement 4 lowers it")

        assert created.is_active
        assert created.usage_count == 0
        assert created.confidence_threshold == 0.85

        versions = services.overrides.versions(created.id)
        assert len(versions) == 1
        assert versions[0].version_number == 1
        assert versions[0].change_reason == "Initial creation"
        assert versions[0].changed_by == "underwriter-7"
        assert versions[0].corrected_answer == created.corrected_answer

    @pytest.mark.parametrize("missing", ["original_answer", "corrected_answer", "expert_id"])
    def test_required_fields(self, services, add_override, missing):
        with pytest.raises(ValidationError) as exc_info:
            add_override(QUESTION, unit(0), **{missing: "  "})

        assert exc_info.value.field == missing
        assert services.overrides.list(active=None) == []

    def test_threshold_out_of_range(self, services, add_override):
        with pytest.raises(ValidationError):
            add_override(QUESTION, unit(0), confidence_threshold=1.5)

        assert services.overrides.list(active=None) == []

    def test_index_failure_leaves_no_record(self, services, add_override, monkeypatch):
        def broken_upsert(self, record, vector):
            raise IndexUnavailable("Override index unavailable: down")

        monkeypatch.setattr(OverrideIndex, "upsert", broken_upsert)

        with pytest.raises(IndexUnavailable):
            add_override(QUESTION, unit(0))

        assert services.overrides.list(active=None) == []


class TestOverrideUpdates:

    def test_changed_answer_appends_version(self, services, add_override):
        created = add_override(QUESTION, unit(0), expert_explanation="Endorsement 4")

        services.overrides.update(created.id, corrected_answer="$250 after endorsement")

        versions = services.overrides.versions(created.id)
        assert [v.version_number for v in versions] == [1, 2]
        assert versions[1].corrected_answer == "$250 after endorsement"
        assert versions[1].changed_by == "Unknown"
        assert versions[1].change_reason == "Updated"
        # explanation carried over when not supplied
        assert versions[1].expert_explanation == "Endorsement 4"

    def test_version_numbers_increase(self, services, add_override):
        created = add_override(QUESTION, unit(0))

        for i in range(3):
            services.overrides.update(
                created.id,
                corrected_answer=f"answer {i}",
                changed_by="senior-underwriter",
                change_reason="Rate filing",
            )

        versions = services.overrides.versions(created.id)
        assert [v.version_number for v in versions] == [1, 2, 3, 4]
        assert versions[-1].changed_by == "senior-underwriter"
        assert versions[-1].change_reason == "Rate filing"

    def test_deactivation_creates_no_version(self, services, add_override):
        created = add_override(QUESTION, unit(0))

        updated = services.overrides.update(created.id, is_active=False)

        assert updated.is_active is False
        assert len(services.overrides.versions(created.id)) == 1
        assert services.overrides.list() == []
        assert [o.id for o in services.overrides.list(active=False)] == [created.id]

    def test_same_answer_creates_no_version(self, services, add_override):
        created = add_override(QUESTION, unit(0))

        services.overrides.update(created.id, corrected_answer=created.corrected_answer)

        assert len(services.overrides.versions(created.id)) == 1

    def test_unknown_override(self, services):
        with pytest.raises(NotFoundError):
            services.overrides.update("missing", is_active=False)

    def test_unknown_field(self, services, add_override):
        created = add_override(QUESTION, unit(0))

        with pytest.raises(ValidationError):
            services.overrides.update(created.id, usage_count=99)

    def test_invalid_threshold_on_update(self, services, add_override):
        created = add_override(QUESTION, unit(0))

        with pytest.raises(ValidationError):
            services.overrides.update(created.id, confidence_threshold=2)

        assert services.overrides.get(created.id).confidence_threshold == 0.85

    def test_index_failure_rolls_back_update(self, services, add_override, tmp_path, monkeypatch):
        created = add_override(QUESTION, unit(0))

        def broken_sync(self, record):
            raise IndexUnavailable("Override index unavailable: down")

        monkeypatch.setattr(OverrideIndex, "sync_payload", broken_sync)

        with pytest.raises(IndexUnavailable):
            services.overrides.update(created.id, corrected_answer="$250", is_active=False)

        stored = services.overrides.get(created.id)
        assert stored.corrected_answer == created.corrected_answer
        assert stored.is_active is True
        assert [v.version_number for v in services.overrides.versions(created.id)] == [1]

        reloaded = OverrideRepository(str(tmp_path))
        assert reloaded.get(created.id).corrected_answer == created.corrected_answer
        assert len(reloaded.versions(created.id)) == 1

    def test_reactivated_override_matches_again(self, services, add_override, embedding_api):
        created = add_override(QUESTION, unit(0))
        embedding_api.vectors["incoming question"] = unit(0)

        services.overrides.update(created.id, is_active=False)
        assert services.overrides.search("incoming question") is None

        services.overrides.update(created.id, is_active=True)
        assert services.overrides.search("incoming question").override.id == created.id


class TestOverrideMatching:

    def test_below_override_threshold_does_not_match(self, services, add_override, embedding_api):
        created = add_override(QUESTION, similar_to(0.80))
        embedding_api.vectors["incoming question"] = unit(0)

        match = services.overrides.search("incoming question", similarity_threshold=0.5)

        assert match is None
        assert services.overrides.get(created.id).usage_count == 0
        assert services.overrides.usage(created.id) == []

    def test_match_records_usage_once(self, services, add_override, embedding_api):
        created = add_override(QUESTION, similar_to(0.9))
        embedding_api.vectors["incoming question"] = unit(0)

        match = services.overrides.search("incoming question", similarity_threshold=0.5, user_id="user-1")

        assert match is not None
        assert match.override.id == created.id
        assert match.similarity == pytest.approx(0.9, abs=1e-4)
        assert match.override.usage_count == 1
        assert match.override.last_used_at is not None

        usage = services.overrides.usage(created.id)
        assert len(usage) == 1
        assert usage[0].question_asked == "incoming question"
        assert usage[0].user_id == "user-1"
        assert usage[0].similarity_score == pytest.approx(0.9, abs=1e-4)

    def test_caller_threshold_above_similarity(self, services, add_override, embedding_api):
        add_override(QUESTION, similar_to(0.9), confidence_threshold=0.5)
        embedding_api.vectors["incoming question"] = unit(0)

        assert services.overrides.search("incoming question", similarity_threshold=0.95) is None
        assert services.overrides.search("incoming question", similarity_threshold=0.6) is not None

    def test_inactive_override_never_matches(self, services, add_override, embedding_api):
        created = add_override(QUESTION, unit(0))
        services.overrides.update(created.id, is_active=False)
        embedding_api.vectors["incoming question"] = unit(0)

        assert services.overrides.search("incoming question", similarity_threshold=0.5) is None

    def test_best_candidate_wins(self, services, add_override, embedding_api):
        add_override("close question", similar_to(0.9, noise_axis=1))
        best = add_override("closer question", similar_to(0.97, noise_axis=2))
        embedding_api.vectors["incoming question"] = unit(0)

        match = services.overrides.search("incoming question", similarity_threshold=0.5)

        assert match.override.id == best.id

    def test_document_scope(self, services, add_override, embedding_api):
        bound = add_override(QUESTION, unit(0), document_ids=["doc-1"])
        embedding_api.vectors["incoming question"] = unit(0)

        assert services.overrides.search("incoming question", document_ids=["doc-2"]) is None
        assert services.overrides.search("incoming question") is None
        match = services.overrides.search("incoming question", document_ids=["doc-1"])
        assert match.override.id == bound.id

    def test_overrides_for_other_documents_do_not_crowd_out_a_match(self, services, add_override, embedding_api):
        for i in range(12):
            add_override(f"homeowner question {i}", similar_to(0.99), document_ids=["doc-b"])
        bound = add_override(QUESTION, similar_to(0.95, noise_axis=2), document_ids=["doc-a"])
        embedding_api.vectors["incoming question"] = unit(0)

        match = services.overrides.search("incoming question", document_ids=["doc-a"])

        assert match.override.id == bound.id
        assert match.similarity == pytest.approx(0.95, abs=1e-4)

    def test_stricter_overrides_do_not_crowd_out_a_match(self, services, add_override, embedding_api):
        for i in range(12):
            add_override(f"narrow question {i}", similar_to(0.99), confidence_threshold=0.995)
        qualifying = add_override(QUESTION, similar_to(0.9, noise_axis=2))
        embedding_api.vectors["incoming question"] = unit(0)

        match = services.overrides.search("incoming question", similarity_threshold=0.5)

        assert match.override.id == qualifying.id
        assert services.overrides.get(qualifying.id).usage_count == 1

    def test_concurrent_usage_is_not_lost(self, services, add_override):
        created = add_override(QUESTION, unit(0))
        repository = services.override_repository

        threads = [
            threading.Thread(
                target=repository.record_usage,
                args=(created.id, "incoming question", 0.9),
            )
            for _ in range(25)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert repository.get(created.id).usage_count == 25
        assert len(repository.usage(created.id)) == 25


class TestOverridePersistence:

    def test_reloaded_service_still_matches(self, tmp_path, embedder, llm_client, add_override, embedding_api):
        created = add_override(QUESTION, unit(0))

        # fresh index, same storage: overrides are re-indexed from stored embeddings
        reloaded = build_services(
            embedder,
            llm_client,
            qdrant=QdrantClient(location=":memory:"),
            storage_dir=str(tmp_path),
        )
        embedding_api.vectors["incoming question"] = unit(0)

        match = reloaded.overrides.search("incoming question")

        assert match.override.id == created.id
        assert [v.version_number for v in reloaded.overrides.versions(created.id)] == [1]

    def test_versions_of_unknown_override(self, services):
        with pytest.raises(NotFoundError):
            services.overrides.versions("missing")
