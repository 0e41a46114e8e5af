"""Tests for transcription, summaries and summary parsing."""

import asyncio

import pytest

from standup_sync.domain.sessions import ParticipantStatus, SessionStatus
from standup_sync.domain.summaries import Transcription
from standup_sync.errors import ErrorCode, StandupError
from standup_sync.services.summaries import (
    SummaryService,
    format_summary_email,
    parse_summary,
)
from standup_sync.services.transcription import TranscriptionService
from tests.conftest import (
    NO_DELAYS,
    SUMMARY_TEXT,
    FakeAIClient,
    FakeEmailClient,
    SessionHarness,
)


def _start(harness: SessionHarness) -> tuple[str, str, str]:
    created = asyncio.run(
        harness.admission.create_session(
            leader_name="Alice", password=None, identity_proof="token:alice@x.io"
        )
    )
    joined = asyncio.run(
        harness.admission.join_session(
            session_id=created.session_id,
            participant_name="Bob",
            password=None,
            identity_proof="token:bob@x.io",
        )
    )
    return created.session_id, created.leader_id, joined.participant_id


def _record(harness: SessionHarness, session_id: str, participant_id: str) -> None:
    asyncio.run(
        harness.sessions.update_participant_status(
            session_id, participant_id, ParticipantStatus.RECORDING
        )
    )


def _transcription(harness: SessionHarness, client: FakeAIClient):
    return TranscriptionService(
        client=client,
        sessions=harness.sessions,
        model="whisper-1",
        retry_delays=NO_DELAYS,
    )


def test_transcribe_participant_walks_the_ladder(harness: SessionHarness) -> None:
    session_id, leader_id, _ = _start(harness)
    _record(harness, session_id, leader_id)
    client = FakeAIClient(transcript=Transcription(text="Hola equipo", language="es"))
    harness.broadcaster.published.clear()

    session = asyncio.run(
        _transcription(harness, client).transcribe_participant(
            session_id, leader_id, b"audio-bytes", filename="recording.ogg"
        )
    )

    participant = session.participant(leader_id)
    assert participant.status == ParticipantStatus.DONE
    assert participant.transcript == "Hola equipo"
    assert participant.transcript_language == "es"
    assert client.transcribe_calls == [("whisper-1", 11, "recording.ogg")]
    assert [payload["status"] for _, _, payload in harness.broadcaster.published] == [
        "transcribing",
        "done",
    ]


def test_transcribe_requires_a_recording(harness: SessionHarness) -> None:
    session_id, leader_id, _ = _start(harness)
    service = _transcription(harness, FakeAIClient())

    with pytest.raises(StandupError) as empty:
        asyncio.run(service.transcribe_participant(session_id, leader_id, b""))
    with pytest.raises(StandupError) as waiting:
        asyncio.run(service.transcribe_participant(session_id, leader_id, b"audio"))

    assert empty.value.code == ErrorCode.VALIDATION
    assert waiting.value.code == ErrorCode.INVALID_TRANSITION


def test_transcription_outage_surfaces_as_transient(harness: SessionHarness) -> None:
    session_id, leader_id, _ = _start(harness)
    _record(harness, session_id, leader_id)
    service = _transcription(harness, FakeAIClient(failures=4))

    with pytest.raises(StandupError) as excinfo:
        asyncio.run(service.transcribe_participant(session_id, leader_id, b"audio"))

    assert excinfo.value.code == ErrorCode.TRANSIENT_UPSTREAM
    stored = harness.store.sessions[session_id].participant(leader_id)
    assert stored.status == ParticipantStatus.TRANSCRIBING


def test_finish_session_summarizes_and_emails(harness: SessionHarness) -> None:
    session_id, leader_id, bob_id = _start(harness)
    client = FakeAIClient()
    email_client = FakeEmailClient()
    transcription = _transcription(harness, client)
    for participant_id in (leader_id, bob_id):
        _record(harness, session_id, participant_id)
        asyncio.run(
            transcription.transcribe_participant(session_id, participant_id, b"a")
        )
    service = SummaryService(
        client=client,
        sessions=harness.sessions,
        model="gpt-test",
        email_client=email_client,
        retry_delays=NO_DELAYS,
    )

    summary = asyncio.run(service.finish_session(session_id, leader_id))

    stored = harness.store.sessions[session_id]
    assert stored.status == SessionStatus.COMPLETED
    assert stored.summary == SUMMARY_TEXT
    assert stored.finished_at == harness.clock()
    assert summary.participants[0].name == "Alice"
    call = client.summarize_calls[0]
    assert call["model"] == "gpt-test"
    assert "Alice:\nYesterday I finished" in call["prompt"]
    assert "Bob:\n" in call["prompt"]
    assert "format it clearly in en" in call["instructions"]
    assert sorted(to for to, _, _ in email_client.sent) == [
        "alice@x.io",
        "bob@x.io",
    ]


def test_finish_session_needs_leader_and_transcripts(
    harness: SessionHarness,
) -> None:
    session_id, leader_id, bob_id = _start(harness)
    service = SummaryService(
        client=FakeAIClient(),
        sessions=harness.sessions,
        model="gpt-test",
        retry_delays=NO_DELAYS,
    )

    with pytest.raises(StandupError) as forbidden:
        asyncio.run(service.finish_session(session_id, bob_id))
    with pytest.raises(StandupError) as empty:
        asyncio.run(service.finish_session(session_id, leader_id))

    assert forbidden.value.code == ErrorCode.FORBIDDEN
    assert empty.value.code == ErrorCode.VALIDATION


def test_email_failure_does_not_fail_finish(harness: SessionHarness) -> None:
    session_id, leader_id, _ = _start(harness)
    client = FakeAIClient()
    _record(harness, session_id, leader_id)
    asyncio.run(
        _transcription(harness, client).transcribe_participant(
            session_id, leader_id, b"a"
        )
    )
    service = SummaryService(
        client=client,
        sessions=harness.sessions,
        model="gpt-test",
        email_client=FakeEmailClient(fail=True),
        retry_delays=NO_DELAYS,
    )

    summary = asyncio.run(service.finish_session(session_id, leader_id))

    assert summary.raw_text == SUMMARY_TEXT


def test_parse_summary_sections() -> None:
    text = (
        "## Alice\n"
        "✅ Yesterday: Finished the login page\n"
        "and fixed two bugs\n"
        "\U0001f3af Today: Settings screen\n"
        "\n"
        "**Bob**:\n"
        "\U0001f6ab Blockers: Waiting on API keys\n"
        "\U0001f4cc Team Action Items: Someone review PR 42\n"
        "\U0001f4dd Other: Out on Friday\n"
    )

    summary = parse_summary(text)

    alice, bob = summary.participants
    assert alice.name == "Alice"
    assert alice.sections.yesterday == "Finished the login page\nand fixed two bugs"
    assert alice.sections.today == "Settings screen"
    assert alice.sections.blockers is None
    assert bob.name == "Bob"
    assert bob.sections.blockers == "Waiting on API keys"
    assert bob.sections.action_items == "Someone review PR 42"
    assert bob.sections.other == "Out on Friday"


def test_parse_summary_without_structure_keeps_raw_text() -> None:
    summary = parse_summary("Everyone is on track.")

    assert summary.participants == []
    assert format_summary_email(summary) == "Everyone is on track."
    dumped = summary.model_dump(by_alias=True)
    assert dumped["rawText"] == "Everyone is on track."


def _summaries(harness: SessionHarness, client: FakeAIClient, email_client=None):
    return SummaryService(
        client=client,
        sessions=harness.sessions,
        model="gpt-test",
        email_client=email_client,
        retry_delays=NO_DELAYS,
    )


def _transcribe(harness: SessionHarness, client: FakeAIClient, session_id, pid):
    _record(harness, session_id, pid)
    asyncio.run(
        _transcription(harness, client).transcribe_participant(session_id, pid, b"a")
    )


def test_finish_session_twice_keeps_first_summary(harness: SessionHarness) -> None:
    session_id, leader_id, _ = _start(harness)
    client = FakeAIClient()
    email_client = FakeEmailClient()
    _transcribe(harness, client, session_id, leader_id)
    service = _summaries(harness, client, email_client)

    first = asyncio.run(service.finish_session(session_id, leader_id))
    client.summary = "A different summary"
    second = asyncio.run(service.finish_session(session_id, leader_id))

    assert second == first
    assert len(client.summarize_calls) == 1
    assert len(email_client.sent) == 1
    assert harness.store.sessions[session_id].summary == SUMMARY_TEXT


def test_finish_session_rejects_other_identity(harness: SessionHarness) -> None:
    session_id, leader_id, _ = _start(harness)
    client = FakeAIClient()
    _transcribe(harness, client, session_id, leader_id)

    with pytest.raises(StandupError) as excinfo:
        asyncio.run(
            _summaries(harness, client).finish_session(
                session_id, leader_id, actor="bob@x.io"
            )
        )

    assert excinfo.value.code == ErrorCode.FORBIDDEN
    assert client.summarize_calls == []


def test_summarize_participant_returns_sections(harness: SessionHarness) -> None:
    session_id, _, bob_id = _start(harness)
    client = FakeAIClient(
        summary='```json\n{"yesterday": "Login page", "actionItems": "Review PR"}\n```'
    )
    _transcribe(harness, client, session_id, bob_id)

    sections = asyncio.run(
        _summaries(harness, client).summarize_participant(
            session_id, bob_id, actor="bob@x.io"
        )
    )

    assert sections.yesterday == "Login page"
    assert sections.action_items == "Review PR"
    assert sections.blockers is None
    assert client.summarize_calls[0]["prompt"] == "Yesterday I finished the login page."
    assert harness.store.sessions[session_id].summary is None


def test_summarize_participant_failures(harness: SessionHarness) -> None:
    session_id, leader_id, bob_id = _start(harness)
    client = FakeAIClient(summary="Sorry, I cannot do that.")
    _transcribe(harness, client, session_id, bob_id)
    service = _summaries(harness, client)

    with pytest.raises(StandupError) as missing:
        asyncio.run(service.summarize_participant(session_id, leader_id))
    with pytest.raises(StandupError) as peer:
        asyncio.run(
            service.summarize_participant(session_id, bob_id, actor="alice@x.io")
        )
    with pytest.raises(StandupError) as garbled:
        asyncio.run(service.summarize_participant(session_id, bob_id))

    assert missing.value.code == ErrorCode.VALIDATION
    assert peer.value.code == ErrorCode.FORBIDDEN
    assert garbled.value.code == ErrorCode.TRANSIENT_UPSTREAM
