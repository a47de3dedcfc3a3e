"""Tests for state store."""

import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from deal_intel.errors import (
    CodeNotFoundError,
    DuplicateCodeError,
    ExtractionNotFoundError,
    JobNotFoundError,
)
from deal_intel.schemas.codification import (
    AliasSource,
    CodifiedItem,
    DataType,
    MappingStatus,
)
from deal_intel.schemas.intelligence import EntityType, IntelligenceField
from deal_intel.state_store import ALIAS_VERSION_KEY, JobStatus, StateStore
from deal_intel.state_store.migrations.runner import MigrationRunner, get_all_migrations


def _create(store: StateStore, document_id: str = "doc-1", **kwargs) -> int:
    return store.create_job(
        document_id=document_id,
        client_id=kwargs.pop("client_id", "client-1"),
        file_ref=kwargs.pop("file_ref", f"files/{document_id}"),
        document_name=kwargs.pop("document_name", f"{document_id}.md"),
        **kwargs,
    )


class TestStateStore:
    """Tests for SQLite state store."""

    def test_init_creates_db(self, temp_db):
        """Initializing creates database file."""
        StateStore(temp_db)
        assert temp_db.exists()

    def test_init_creates_tables(self, store):
        """All required tables are created."""
        conn = store._get_connection()
        try:
            tables = conn.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
            table_names = [t[0] for t in tables]

            assert "extraction_jobs" in table_names
            assert "canonical_codes" in table_names
            assert "item_code_aliases" in table_names
            assert "codified_extractions" in table_names
            assert "codified_items" in table_names
            assert "intelligence_fields" in table_names
            assert "store_versions" in table_names
        finally:
            conn.close()

    def test_reopen_keeps_data(self, temp_db):
        """Migrations are not re-applied on an existing database."""
        first = StateStore(temp_db)
        job_id = _create(first)

        second = StateStore(temp_db)
        assert second.get_job(job_id) is not None

    def test_migrations_recorded_once(self, temp_db):
        """Every numbered migration is recorded and nothing is left pending."""
        StateStore(temp_db)
        StateStore(temp_db)

        conn = sqlite3.connect(temp_db)
        try:
            runner = MigrationRunner(conn)
            assert runner.get_applied_versions() == {m.version for m in get_all_migrations()}
            assert runner.get_pending() == []
            assert runner.run_pending() == []
        finally:
            conn.close()


class TestJobLifecycle:
    """Tests for the extraction job state machine."""

    def test_create_job_defaults(self, store):
        job_id = _create(store, project_id="proj-9")
        job = store.get_job(job_id)

        assert job.status == JobStatus.PENDING
        assert job.attempts == 0
        assert job.max_attempts == 3
        assert job.project_id == "proj-9"
        assert job.last_error is None

    def test_create_job_is_idempotent(self, store):
        """A duplicate create returns the existing id and leaves the job alone."""
        job_id = _create(store)
        store.start_processing(job_id)

        again = _create(store, file_ref="files/other")

        assert again == job_id
        job = store.get_job(job_id)
        assert job.status == JobStatus.PROCESSING
        assert job.file_ref == "files/doc-1"

    def test_create_duplicate_of_failed_job_does_not_reset(self, store):
        job_id = _create(store, max_attempts=1)
        store.start_processing(job_id)
        store.fail_job(job_id, "boom")

        assert _create(store) == job_id
        assert store.get_job(job_id).status == JobStatus.FAILED

    def test_unique_document_constraint(self, store):
        _create(store)
        conn = store._get_connection()
        try:
            with pytest.raises(sqlite3.IntegrityError):
                conn.execute(
                    """
                    INSERT INTO extraction_jobs
                    (document_id, client_id, file_ref, document_name, created_at, updated_at)
                    VALUES ('doc-1', 'c', 'f', 'n', 'now', 'now')
                """
                )
        finally:
            conn.close()

    def test_retry_exhaustion(self, store):
        """Three failed attempts with max_attempts=3 end failed with attempts=3."""
        job_id = _create(store, max_attempts=3)

        assert store.start_processing(job_id) is True
        assert store.fail_job(job_id, "timeout 1") == JobStatus.PENDING
        assert store.get_job(job_id).attempts == 1

        assert store.start_processing(job_id) is True
        assert store.fail_job(job_id, "timeout 2") == JobStatus.PENDING
        assert store.get_job(job_id).attempts == 2

        assert store.start_processing(job_id) is True
        assert store.fail_job(job_id, "timeout 3") == JobStatus.FAILED

        job = store.get_job(job_id)
        assert job.status == JobStatus.FAILED
        assert job.attempts == 3
        assert job.last_error == "timeout 3"

    def test_fail_without_retry_is_terminal(self, store):
        job_id = _create(store)
        store.start_processing(job_id)

        assert store.fail_job(job_id, "empty document", can_retry=False) == JobStatus.FAILED
        assert store.get_job(job_id).attempts == 1

    def test_start_processing_requires_pending(self, store):
        job_id = _create(store)
        assert store.start_processing(job_id) is True
        assert store.start_processing(job_id) is False
        assert store.get_job(job_id).attempts == 1

    def test_start_processing_unknown_job(self, store):
        with pytest.raises(JobNotFoundError):
            store.start_processing(999)

    def test_complete_job_stores_result(self, store):
        job_id = _create(store)
        store.start_processing(job_id)

        store.complete_job(job_id, result_ref=7, result={"costs": 4})

        job = store.get_job(job_id)
        assert job.status == JobStatus.COMPLETED
        assert job.result_ref == 7
        assert job.result == {"costs": 4}
        assert job.completed_at is not None

    def test_complete_job_overwrites(self, store):
        job_id = _create(store)
        store.complete_job(job_id, result_ref=1, result={"run": 1})
        store.complete_job(job_id, result_ref=2, result={"run": 2})

        job = store.get_job(job_id)
        assert job.result_ref == 2
        assert job.result == {"run": 2}

    def test_complete_unknown_job(self, store):
        with pytest.raises(JobNotFoundError):
            store.complete_job(42)

    def test_skip_job(self, store):
        job_id = _create(store)
        store.start_processing(job_id)
        store.skip_job(job_id, "Unsupported document format '.pdf'")

        job = store.get_job(job_id)
        assert job.status == JobStatus.SKIPPED
        assert job.status.is_terminal
        assert "pdf" in job.last_error

    def test_retry_job_resets_failed(self, store):
        job_id = _create(store, max_attempts=1)
        store.start_processing(job_id)
        store.fail_job(job_id, "boom")

        assert store.retry_job(job_id) is True
        job = store.get_job(job_id)
        assert job.status == JobStatus.PENDING
        assert job.attempts == 0

    def test_retry_job_ignores_non_failed(self, store):
        job_id = _create(store)
        assert store.retry_job(job_id) is False


class TestJobClaiming:
    """Tests for claiming and listing jobs."""

    def test_claim_is_fifo(self, store):
        first = _create(store, "doc-a")
        second = _create(store, "doc-b")
        third = _create(store, "doc-c")

        claimed = store.claim_next_jobs(2)

        assert [j.id for j in claimed] == [first, second]
        assert all(j.status == JobStatus.PROCESSING for j in claimed)
        assert all(j.attempts == 1 for j in claimed)
        assert store.get_job(third).status == JobStatus.PENDING

    def test_claim_never_returns_a_job_twice(self, temp_db):
        """Two drivers on the same database never claim the same job."""
        driver_a = StateStore(temp_db)
        driver_b = StateStore(temp_db)
        for n in range(3):
            _create(driver_a, f"doc-{n}")

        claimed_a = driver_a.claim_next_jobs(2)
        claimed_b = driver_b.claim_next_jobs(5)

        ids_a = {j.id for j in claimed_a}
        ids_b = {j.id for j in claimed_b}
        assert len(ids_a) == 2
        assert len(ids_b) == 1
        assert ids_a.isdisjoint(ids_b)
        assert driver_a.claim_next_jobs(5) == []

    def test_claim_zero(self, store):
        _create(store)
        assert store.claim_next_jobs(0) == []

    def test_get_pending_does_not_claim(self, store):
        job_id = _create(store)
        pending = store.get_pending_jobs(10)

        assert [j.id for j in pending] == [job_id]
        assert store.get_job(job_id).status == JobStatus.PENDING

    def test_list_jobs_by_status(self, store):
        _create(store, "doc-a")
        done = _create(store, "doc-b")
        store.complete_job(done)

        completed = store.list_jobs(status="completed")
        assert [j.id for j in completed] == [done]
        assert len(store.list_jobs()) == 2

    def test_queue_stats(self, store):
        _create(store, "doc-a")
        skipped = _create(store, "doc-b")
        store.skip_job(skipped, "unsupported")

        stats = store.get_queue_stats()

        assert stats["pending"] == 1
        assert stats["skipped"] == 1
        assert stats["processing"] == 0
        assert stats["total"] == 2


class TestStaleJobs:
    """Tests for recovering abandoned processing jobs."""

    def test_requeue_stale_returns_job_to_pending(self, store):
        job_id = _create(store)
        store.start_processing(job_id)
        later = datetime.now(timezone.utc) + timedelta(minutes=31)

        recovered = store.requeue_stale_jobs(30, now=later)

        assert [j.id for j in recovered] == [job_id]
        job = store.get_job(job_id)
        assert job.status == JobStatus.PENDING
        assert "stale processing lease expired" in job.last_error

    def test_requeue_stale_fails_exhausted_job(self, store):
        job_id = _create(store, max_attempts=1)
        store.start_processing(job_id)
        later = datetime.now(timezone.utc) + timedelta(hours=2)

        store.requeue_stale_jobs(30, now=later)

        assert store.get_job(job_id).status == JobStatus.FAILED

    def test_fresh_processing_job_is_left_alone(self, store):
        job_id = _create(store)
        store.start_processing(job_id)

        assert store.requeue_stale_jobs(30) == []
        assert store.get_job(job_id).status == JobStatus.PROCESSING


class TestCleanupOldJobs:
    """Tests for pruning finished jobs."""

    OLD = "2020-01-01T00:00:00.000000Z"

    def _age(self, store, job_id):
        with store._transaction() as conn:
            conn.execute(
                "UPDATE extraction_jobs SET updated_at = ? WHERE id = ?", (self.OLD, job_id)
            )

    def test_only_old_terminal_jobs_deleted(self, store):
        completed = _create(store, "doc-completed")
        store.complete_job(completed, result={"costs": 1})
        failed = _create(store, "doc-failed")
        store.start_processing(failed)
        store.fail_job(failed, "boom", can_retry=False)
        skipped = _create(store, "doc-skipped")
        store.skip_job(skipped, "unsupported")
        pending = _create(store, "doc-pending")
        processing = _create(store, "doc-processing")
        store.start_processing(processing)
        recent = _create(store, "doc-recent")
        store.complete_job(recent)
        for job_id in (completed, failed, skipped, pending, processing):
            self._age(store, job_id)

        assert store.cleanup_old_jobs(days=30) == 3

        remaining = {job.id for job in store.list_jobs()}
        assert remaining == {pending, processing, recent}
        assert store.get_job(processing).status == JobStatus.PROCESSING

    def test_nothing_to_delete(self, store):
        job_id = _create(store)
        store.complete_job(job_id)

        assert store.cleanup_old_jobs(days=30) == 0
        assert store.get_job(job_id) is not None


class TestCanonicalCodes:
    """Tests for the code catalog."""

    def test_create_and_get(self, store):
        code = store.create_code("<stamp.duty>", "Stamp Duty", "Site Costs")

        assert code.id > 0
        assert store.get_code(code.id).code == "<stamp.duty>"
        assert store.get_code_by_code("<stamp.duty>").display_name == "Stamp Duty"
        assert code.data_type == DataType.CURRENCY
        assert code.is_active is True

    def test_duplicate_code_rejected(self, store):
        store.create_code("<stamp.duty>", "Stamp Duty", "Site Costs")
        with pytest.raises(DuplicateCodeError):
            store.create_code("<stamp.duty>", "Stamp Duty Again", "Site Costs")

    def test_list_codes_hides_inactive(self, store):
        kept = store.create_code("<engineers>", "Engineers", "Professional Fees")
        retired = store.create_code("<old.fee>", "Old Fee", "Professional Fees")
        store.set_code_active(retired.id, False)

        assert [c.id for c in store.list_codes()] == [kept.id]
        assert len(store.list_codes(active_only=False)) == 2


class TestAliasUpsert:
    """Tests for alias priority rules."""

    @pytest.fixture
    def codes(self, store):
        return (
            store.create_code("<build.cost>", "Build Cost", "Net Construction Costs"),
            store.create_code("<contingency>", "Contingency", "Net Construction Costs"),
        )

    def test_insert_normalizes(self, store, codes):
        result = store.upsert_alias("  Net   Construction COST ", codes[0].id, 0.9, "llm_suggested")

        assert result.action == "created"
        assert result.alias.alias_normalized == "net construction cost"
        assert result.alias.canonical_code == "<build.cost>"
        assert result.alias.usage_count == 1

    def test_manual_source_wins_regardless_of_confidence(self, store, codes):
        store.upsert_alias("Build Costs", codes[0].id, 0.9, AliasSource.LLM_SUGGESTED)

        result = store.upsert_alias("Build Costs", codes[1].id, 0.6, AliasSource.MANUAL)

        assert result.action == "updated"
        alias = store.get_alias("build costs")
        assert alias.canonical_code_id == codes[1].id
        assert alias.confidence == 0.6
        assert alias.source == AliasSource.MANUAL

    def test_lower_confidence_suggestion_is_ignored(self, store, codes):
        store.upsert_alias("Build Costs", codes[0].id, 0.9, AliasSource.LLM_SUGGESTED)

        result = store.upsert_alias("Build Costs", codes[1].id, 0.5, AliasSource.LLM_SUGGESTED)

        assert result.action == "kept"
        alias = store.get_alias("Build Costs")
        assert alias.canonical_code_id == codes[0].id
        assert alias.confidence == 0.9
        assert alias.usage_count == 2

    def test_higher_confidence_suggestion_replaces(self, store, codes):
        store.upsert_alias("Build Costs", codes[0].id, 0.7, AliasSource.LLM_SUGGESTED)
        result = store.upsert_alias("Build Costs", codes[1].id, 0.8, AliasSource.LLM_SUGGESTED)

        assert result.action == "updated"
        assert store.get_alias("Build Costs").canonical_code_id == codes[1].id

    def test_unknown_code_rejected(self, store):
        with pytest.raises(CodeNotFoundError):
            store.upsert_alias("Anything", 999, 1.0, AliasSource.MANUAL)

    def test_blank_alias_rejected(self, store, codes):
        with pytest.raises(ValueError):
            store.upsert_alias("   ", codes[0].id, 1.0, AliasSource.MANUAL)

    def test_version_bumped_on_writes_only(self, store, codes):
        v0 = store.get_version(ALIAS_VERSION_KEY)
        store.upsert_alias("Build Costs", codes[0].id, 0.9, AliasSource.LLM_SUGGESTED)
        v1 = store.get_version(ALIAS_VERSION_KEY)
        store.upsert_alias("Build Costs", codes[0].id, 0.1, AliasSource.LLM_SUGGESTED)
        v2 = store.get_version(ALIAS_VERSION_KEY)

        assert v1 == v0 + 1
        assert v2 == v1

    def test_bulk_upsert_counts(self, store, codes):
        counts = store.bulk_upsert_aliases(
            [
                {"alias": "Build", "canonical_code_id": codes[0].id, "confidence": 0.9,
                 "source": "llm_suggested"},
                {"alias": "build", "canonical_code_id": codes[1].id, "confidence": 0.2,
                 "source": "llm_suggested"},
                {"alias": "Contingency", "canonical_code_id": codes[1].id},
            ]
        )
        assert counts == {"created": 2, "updated": 0, "skipped": 1}

    def test_list_delete_and_samples(self, store, codes):
        store.upsert_alias("Build Cost", codes[0].id, 1.0, AliasSource.SYSTEM_SEED)
        store.upsert_alias("Construction Cost", codes[0].id, 0.8, AliasSource.LLM_SUGGESTED)
        extra = store.upsert_alias("Contingency", codes[1].id, 1.0, AliasSource.SYSTEM_SEED)

        assert len(store.list_aliases(canonical_code_id=codes[0].id)) == 2
        assert len(store.list_aliases(source="system_seed")) == 2

        samples = store.get_alias_samples(per_code=1)
        assert samples == {"<build.cost>": ["Build Cost"], "<contingency>": ["Contingency"]}

        assert store.delete_alias(extra.alias.id) is True
        assert store.get_alias("Contingency") is None

    def test_increment_usage(self, store, codes):
        created = store.upsert_alias("Build Cost", codes[0].id, 1.0, AliasSource.SYSTEM_SEED)
        store.increment_alias_usage([created.alias.id, created.alias.id])

        assert store.get_alias("Build Cost").usage_count == 3


class TestCodifiedExtractions:
    """Tests for codified item persistence."""

    def _items(self):
        return [
            CodifiedItem(
                item_id="item_0",
                original_name="Net Construction Cost",
                value=1250000.0,
                category="Net Construction Costs",
                currency="GBP",
                item_code="<build.cost>",
                confidence=1.0,
                mapping_status=MappingStatus.MATCHED,
            ),
            CodifiedItem(
                item_id="item_1",
                original_name="Planning Consultant Retainer",
                value=4200.0,
                category="Professional Fees",
            ),
        ]

    def test_save_and_load(self, store):
        extraction_id = store.save_codified_extraction("doc-1", self._items(), client_id="c-1")
        extraction = store.get_codified_extraction("doc-1")

        assert extraction.id == extraction_id
        assert [i.item_id for i in extraction.items] == ["item_0", "item_1"]
        assert extraction.items[0].mapping_status == MappingStatus.MATCHED
        assert extraction.items[1].document_id == "doc-1"
        assert extraction.stats.matched == 1
        assert extraction.stats.pending_review == 1
        assert extraction.is_fully_confirmed is False
        assert extraction.smart_pass_completed is False

    def test_save_replaces_items(self, store):
        first = store.save_codified_extraction("doc-1", self._items())
        second = store.save_codified_extraction("doc-1", self._items()[:1])

        assert first == second
        assert len(store.get_codified_extraction("doc-1").items) == 1

    def test_update_items(self, store):
        store.save_codified_extraction("doc-1", self._items())
        item = store.get_codified_extraction("doc-1").get_item("item_1")
        item.mapping_status = MappingStatus.UNMATCHED

        store.update_codified_items("doc-1", [item], smart_pass_completed=True)

        extraction = store.get_codified_extraction("doc-1")
        assert extraction.get_item("item_1").mapping_status == MappingStatus.UNMATCHED
        assert extraction.smart_pass_completed is True
        assert extraction.is_fully_confirmed is True

    def test_update_unknown_document(self, store):
        with pytest.raises(ExtractionNotFoundError):
            store.update_codified_items("missing", [])


class TestIntelligenceFields:
    """Tests for intelligence field persistence."""

    def test_save_and_load(self, store):
        store.save_intelligence_fields(
            EntityType.PROJECT,
            "proj-1",
            [
                IntelligenceField("financials.grossDevelopmentValue", 8500000, 0.95),
                IntelligenceField("planning.status", "approved", 0.8, source_document_id="d-2"),
            ],
        )

        fields = store.get_intelligence_fields("project", "proj-1")

        assert fields["financials.grossDevelopmentValue"].value == 8500000
        assert fields["planning.status"].source_document_id == "d-2"
        assert fields["planning.status"].updated_at is not None
        assert store.get_intelligence_fields("client", "proj-1") == {}

    def test_save_overwrites_path(self, store):
        store.save_intelligence_fields("client", "c-1", [IntelligenceField("kyc.nationality", "GB", 0.5)])
        store.save_intelligence_fields("client", "c-1", [IntelligenceField("kyc.nationality", "IE", 0.9)])

        fields = store.get_intelligence_fields("client", "c-1")
        assert len(fields) == 1
        assert fields["kyc.nationality"].value == "IE"

    def test_stats(self, store):
        _create(store)
        store.create_code("<engineers>", "Engineers", "Professional Fees")
        store.save_intelligence_fields("client", "c-1", [IntelligenceField("kyc.nationality", "GB", 0.5)])

        stats = store.get_stats()

        assert stats["jobs"]["total"] == 1
        assert stats["canonical_codes"] == 1
        assert stats["intelligence_entities"] == 1
