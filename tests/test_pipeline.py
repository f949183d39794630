"""Tests for the evidence engine's submission pipeline."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from tests.conftest import FakeInference, FakeStorage, two_findings
from video_evidence_mcp.errors import (
    InferenceFailure,
    MissingEvidence,
    PersistenceFailure,
    ReadError,
    SessionBusy,
    SessionNotFound,
)
from video_evidence_mcp.pipeline import EvidenceEngine, file_signature

FP = "video_evidence_mcp.pipeline.fingerprint_file"


class TestFirstSubmission:
    @pytest.mark.asyncio
    async def test_upload_then_analyze(self, engine, fake_storage, fake_inference, video_file):
        """GIVEN a new file WHEN a prompt is submitted THEN hash → upload → analyze → ready."""
        with patch(FP, new_callable=AsyncMock, return_value="abc123"):
            result = await engine.submit("Find vehicles", str(video_file))

        assert fake_storage.status_seen == ["uploading"]
        assert fake_storage.calls[0][0] == "abc123.mp4"
        assert fake_inference.status_seen == ["analyzing"]
        assert fake_inference.requests[0].evidence_reference == "https://files.example/abc123.mp4"

        s = result.session
        assert s.status == "ready"
        assert s.fingerprint == "abc123"
        assert s.storage_key == "abc123.mp4"
        assert len(s.events) == 2
        assert [t.role for t in s.conversation] == ["user", "assistant"]
        assert result.turn.state == "resolved"
        assert len(result.turn.findings.events) == 2
        assert result.turn.text == "Two vehicles pass the gate."
        assert result.new_events[1].summary == "Blue van exits"

    @pytest.mark.asyncio
    async def test_real_fingerprint_reports_progress(self, db, video_file):
        fractions: list[float] = []
        eng = EvidenceEngine(
            storage=FakeStorage(), inference=FakeInference(two_findings()),
            db=db, owner_id="investigator-1", on_progress=fractions.append,
        )
        result = await eng.submit("Find vehicles", str(video_file))
        assert len(result.session.fingerprint) == 64
        assert fractions[-1] == 1.0
        assert eng.fingerprint_progress == 1.0

    @pytest.mark.asyncio
    async def test_answer_defaults_to_event_count(self, engine, fake_inference, video_file):
        fake_inference.responses = [{"timestamps": [{"from": 1}]}]
        result = await engine.submit("Find vehicles", str(video_file))
        assert result.turn.text == "Found 1 event(s)."

    @pytest.mark.asyncio
    async def test_session_persisted_with_prompt_title(self, engine, db, video_file):
        result = await engine.submit("Find vehicles", str(video_file))
        assert result.session.persisted
        record = db.load_session_sync("investigator-1", result.session.id)
        assert record.title == "Find vehicles"
        assert record.storage_key == result.session.storage_key
        turns = db.list_turns_sync("investigator-1", result.session.id)
        assert [t.role for t in turns] == ["user", "assistant"]

    @pytest.mark.asyncio
    async def test_title_follows_latest_prompt(self, engine, db, video_file):
        await engine.submit("Find vehicles", str(video_file))
        result = await engine.submit("Who opened the gate?")
        record = db.load_session_sync("investigator-1", result.session.id)
        assert record.title == "Who opened the gate?"
        assert len(db.list_turns_sync("investigator-1", result.session.id)) == 4


class TestFollowUps:
    @pytest.mark.asyncio
    async def test_follow_up_skips_hash_and_upload(self, engine, fake_storage, fake_inference, video_file):
        fake_inference.responses.append({"timestamps": [{"from": 90, "summary": "Gate closes"}]})
        with patch(FP, new_callable=AsyncMock, return_value="abc123") as fp:
            await engine.submit("Find vehicles", str(video_file))
            result = await engine.submit("Anything else?")

        assert fp.await_count == 1
        assert len(fake_storage.calls) == 1
        assert fake_inference.status_seen == ["analyzing", "analyzing"]
        assert len(result.session.events) == 3
        assert len(result.session.conversation) == 4

    @pytest.mark.asyncio
    async def test_same_file_reselected_skips_hash(self, engine, fake_storage, video_file):
        with patch(FP, new_callable=AsyncMock, return_value="abc123") as fp:
            await engine.submit("Find vehicles", str(video_file))
            await engine.submit("Again", str(video_file))
        assert fp.await_count == 1
        assert len(fake_storage.calls) == 1

    @pytest.mark.asyncio
    async def test_identical_content_different_file_not_reuploaded(
        self, engine, fake_storage, video_file, tmp_path,
    ):
        copy = tmp_path / "renamed.mp4"
        copy.write_bytes(video_file.read_bytes())
        await engine.submit("Find vehicles", str(video_file))
        result = await engine.submit("Again", str(copy))
        assert len(fake_storage.calls) == 1
        assert result.session.status == "ready"

    @pytest.mark.asyncio
    async def test_new_file_replaces_fingerprint_keeps_events(self, engine, fake_storage, video_file):
        with patch(FP, new_callable=AsyncMock, side_effect=["abc123", "def456"]):
            await engine.submit("Find vehicles", str(video_file))
            video_file.write_bytes(b"different content entirely")
            result = await engine.submit("And this one?", str(video_file))

        assert [c[0] for c in fake_storage.calls] == ["abc123.mp4", "def456.mp4"]
        assert result.session.fingerprint == "def456"
        assert len(result.session.events) == 2


class TestValidation:
    @pytest.mark.asyncio
    async def test_no_file_and_no_evidence(self, engine):
        with pytest.raises(MissingEvidence):
            await engine.submit("What happened?")
        assert engine.session.conversation == ()
        assert engine.session.status == "idle"

    @pytest.mark.asyncio
    async def test_empty_prompt(self, engine, video_file):
        with pytest.raises(MissingEvidence):
            await engine.submit("   ", str(video_file))

    @pytest.mark.asyncio
    async def test_missing_file(self, engine, tmp_path):
        with pytest.raises(FileNotFoundError):
            await engine.submit("What happened?", str(tmp_path / "nope.mp4"))
        assert engine.session.conversation == ()

    @pytest.mark.asyncio
    async def test_unsupported_model(self, engine, video_file):
        with pytest.raises(ValueError, match="not supported"):
            await engine.submit("What happened?", str(video_file), model_id="gpt-4")

    @pytest.mark.asyncio
    async def test_second_prompt_while_pending_is_busy(self, engine, fake_inference, video_file):
        """GIVEN a turn awaiting inference WHEN another prompt arrives THEN SessionBusy."""
        fake_inference.gate = asyncio.Event()
        first = asyncio.create_task(engine.submit("Find vehicles", str(video_file)))
        while not fake_inference.requests:
            await asyncio.sleep(0)

        with pytest.raises(SessionBusy):
            await engine.submit("Second question")
        assert len(engine.session.conversation) == 2

        fake_inference.gate.set()
        result = await first
        assert result.turn.state == "resolved"

    def test_persistence_requires_owner(self, db):
        with pytest.raises(ValueError):
            EvidenceEngine(storage=FakeStorage(), inference=FakeInference(), db=db)


class TestFailureAndRetry:
    @pytest.mark.asyncio
    async def test_upload_failure_then_retry_without_rehash(self, db, video_file):
        storage = FakeStorage(fail_times=1)
        inference = FakeInference(two_findings())
        eng = EvidenceEngine(storage=storage, inference=inference, db=db, owner_id="investigator-1")

        with patch(FP, new_callable=AsyncMock, return_value="abc123") as fp:
            failed = await eng.submit("Find vehicles", str(video_file))
            assert failed.turn.state == "failed"
            assert "503" in failed.turn.text
            assert failed.session.status == "error"
            assert failed.session.fingerprint == "abc123"
            assert inference.requests == []

            retried = await eng.submit("Find vehicles")

        assert fp.await_count == 1
        assert [c[0] for c in storage.calls] == ["abc123.mp4", "abc123.mp4"]
        assert retried.session.status == "ready"
        assert retried.turn.state == "resolved"

    @pytest.mark.asyncio
    async def test_inference_failure_then_retry_without_reupload(self, engine, fake_storage, fake_inference, video_file):
        fake_inference.responses = [InferenceFailure("bad json"), two_findings()]
        failed = await engine.submit("Find vehicles", str(video_file))
        assert failed.turn.state == "failed"
        assert failed.session.status == "error"
        assert failed.session.has_durable_video

        retried = await engine.submit("Find vehicles")
        assert len(fake_storage.calls) == 1
        assert retried.session.status == "ready"
        assert len(retried.session.events) == 2

    @pytest.mark.asyncio
    async def test_expired_reference_is_uploaded_again(self, engine, fake_storage, fake_inference, video_file):
        """GIVEN a stored video the API has dropped WHEN analysis fails THEN the next prompt re-uploads."""
        await engine.submit("Find vehicles", str(video_file))
        fake_inference.responses = [RuntimeError("404 NOT_FOUND: files/abc"), two_findings()]

        failed = await engine.submit("Again")
        assert failed.turn.state == "failed"
        assert failed.session.status == "error"
        assert not failed.session.has_durable_video

        retried = await engine.submit("Again")
        assert len(fake_storage.calls) == 2
        assert retried.session.status == "ready"
        assert retried.session.has_durable_video
        assert len(retried.session.events) == 4

    @pytest.mark.asyncio
    async def test_restored_session_with_expired_reference_needs_the_file(self, engine, db, video_file):
        first = await engine.submit("Find vehicles", str(video_file))
        storage = FakeStorage()
        inference = FakeInference(RuntimeError("404 NOT_FOUND: files/abc"), two_findings())
        other = EvidenceEngine(storage=storage, inference=inference, db=db, owner_id="investigator-1")
        await other.activate(first.session.id)

        failed = await other.submit("Again")
        assert failed.session.status == "error"
        assert db.load_session_sync("investigator-1", first.session.id).video_reference is None
        with pytest.raises(MissingEvidence):
            await other.submit("Again")

        retried = await other.submit("Again", str(video_file))
        assert [c[0] for c in storage.calls] == [first.session.storage_key]
        assert retried.session.status == "ready"

    @pytest.mark.asyncio
    async def test_unparseable_response_fails_turn(self, engine, fake_inference, video_file):
        fake_inference.responses = ["definitely not json"]
        result = await engine.submit("Find vehicles", str(video_file))
        assert result.turn.state == "failed"
        assert result.session.status == "error"
        assert result.session.events == ()

    @pytest.mark.asyncio
    async def test_read_error_leaves_status_unchanged(self, engine, fake_storage, video_file):
        with patch(FP, new_callable=AsyncMock, side_effect=ReadError("disk gone")):
            result = await engine.submit("Find vehicles", str(video_file))
        assert result.turn.state == "failed"
        assert result.session.status == "idle"
        assert fake_storage.calls == []

    @pytest.mark.asyncio
    async def test_persistence_failure_becomes_notice(self, engine, db, video_file):
        with patch.object(db, "create_session", AsyncMock(side_effect=PersistenceFailure("disk full"))):
            result = await engine.submit("Find vehicles", str(video_file))
        assert result.turn.state == "resolved"
        assert result.session.status == "ready"
        assert not result.session.persisted
        assert any("disk full" in n for n in result.notices)


class TestResetAndActivate:
    @pytest.mark.asyncio
    async def test_result_after_reset_is_discarded(self, engine, fake_inference, video_file):
        fake_inference.gate = asyncio.Event()
        task = asyncio.create_task(engine.submit("Find vehicles", str(video_file)))
        while not fake_inference.requests:
            await asyncio.sleep(0)

        engine.reset()
        fake_inference.gate.set()
        result = await task

        assert result.stale
        assert engine.session.status == "idle"
        assert engine.session.events == ()
        assert engine.session.conversation == ()
        assert engine.generation == 1

    @pytest.mark.asyncio
    async def test_activate_restores_conversation_and_events(self, engine, db, video_file):
        first = await engine.submit("Find vehicles", str(video_file))
        sid = first.session.id

        other = EvidenceEngine(
            storage=FakeStorage(), inference=FakeInference(), db=db, owner_id="investigator-1",
        )
        restored = await other.activate(sid)
        assert restored.id == sid
        assert restored.status == "ready"
        assert len(restored.events) == 2
        assert len(restored.conversation) == 2
        assert restored.has_durable_video

    @pytest.mark.asyncio
    async def test_activate_unknown_session(self, engine):
        with pytest.raises(SessionNotFound):
            await engine.activate("missing")

    @pytest.mark.asyncio
    async def test_activate_scoped_to_owner(self, engine, db, video_file):
        first = await engine.submit("Find vehicles", str(video_file))
        stranger = EvidenceEngine(
            storage=FakeStorage(), inference=FakeInference(), db=db, owner_id="someone-else",
        )
        with pytest.raises(SessionNotFound):
            await stranger.activate(first.session.id)


class TestFileSignature:
    def test_changes_when_content_changes(self, video_file):
        before = file_signature(video_file)
        video_file.write_bytes(b"x")
        assert file_signature(video_file) != before

    def test_missing_file(self, tmp_path):
        with pytest.raises(ReadError):
            file_signature(tmp_path / "gone.mp4")
