"""Shared test fixtures."""

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

import pytest

from standup_sync.client.reconciler import ClientStorage, ReconcilerState, SessionSource
from standup_sync.config import Settings
from standup_sync.containers import AppContainer
from standup_sync.domain.credentials import VerificationCodeRecord
from standup_sync.domain.sessions import Session, SessionSnapshot
from standup_sync.domain.summaries import Transcription
from standup_sync.errors import ErrorCode, StandupError, UpstreamError
from standup_sync.services.admission import AdmissionService
from standup_sync.services.broadcaster import (
    Broadcaster,
    BroadcastService,
    EventHandler,
    RealtimeChannel,
)
from standup_sync.services.credentials import (
    CredentialService,
    CredentialStore,
    EmailClient,
)
from standup_sync.services.rate_limit import RateCounter, RateLimiter
from standup_sync.services.sessions import SessionService, SessionStore
from standup_sync.services.summaries import SummaryClient, SummaryService
from standup_sync.services.transcription import (
    TranscriptionClient,
    TranscriptionService,
)

NO_DELAYS = (0.0, 0.0, 0.0)
START = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)
SUMMARY_TEXT = """**Alice**:
✅ Yesterday: Finished the login page
\U0001f3af Today: Start on the settings screen
\U0001f6ab Blockers: None
\U0001f4cc Team Action Items: Review PR 42
\U0001f4dd Other: Out on Friday
"""


@dataclass
class FakeClock:
    """Manually advanced clock."""

    now: datetime = START

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


@dataclass
class InMemorySessionStore(SessionStore):
    """In-memory session store with version compare-and-set."""

    sessions: dict[str, Session] = field(default_factory=dict)
    before_replace: list[Callable[["InMemorySessionStore"], None]] = field(
        default_factory=list
    )
    read_failures: int = 0
    writes: int = 0

    async def create(self, session: Session) -> bool:
        if session.id in self.sessions:
            return False
        self.sessions[session.id] = session
        return True

    async def get(self, session_id: str) -> Session | None:
        if self.read_failures:
            self.read_failures -= 1
            raise UpstreamError("connection reset")
        return self.sessions.get(session_id)

    async def replace(self, session: Session, expected_version: int) -> bool:
        if self.before_replace:
            self.before_replace.pop(0)(self)
        current = self.sessions.get(session.id)
        if current is None or current.version != expected_version:
            return False
        self.sessions[session.id] = session
        self.writes += 1
        return True

    async def delete(self, session_id: str) -> bool:
        return self.sessions.pop(session_id, None) is not None


@dataclass
class InMemoryChannel(RealtimeChannel):
    """Subscription handle registered with an in-memory broadcaster."""

    broadcaster: "InMemoryBroadcaster"
    subscriptions: dict[str, dict[str, EventHandler]] = field(default_factory=dict)
    subscribe_calls: int = 0
    closed: bool = False

    async def subscribe(
        self, channel_name: str, handlers: Mapping[str, EventHandler]
    ) -> None:
        self.subscribe_calls += 1
        if channel_name not in self.subscriptions:
            self.subscriptions[channel_name] = dict(handlers)

    async def unsubscribe(self, channel_name: str) -> None:
        self.subscriptions.pop(channel_name, None)

    async def close(self) -> None:
        self.subscriptions.clear()
        self.closed = True


@dataclass
class InMemoryBroadcaster(Broadcaster):
    """Broadcaster that records events and delivers them synchronously."""

    published: list[tuple[str, str, dict[str, object]]] = field(default_factory=list)
    channels: list[InMemoryChannel] = field(default_factory=list)
    failures: int = 0

    async def publish(
        self, channel_name: str, event_name: str, payload: dict[str, object]
    ) -> None:
        if self.failures:
            self.failures -= 1
            raise UpstreamError("broadcast unavailable")
        self.published.append((channel_name, event_name, payload))
        for channel in list(self.channels):
            handler = channel.subscriptions.get(channel_name, {}).get(event_name)
            if handler is not None:
                handler(payload)

    def subscriber(self) -> InMemoryChannel:
        channel = InMemoryChannel(self)
        self.channels.append(channel)
        return channel

    def event_names(self) -> list[str]:
        return [event_name for _, event_name, _ in self.published]


@dataclass
class InMemoryCredentialStore(CredentialStore):
    """In-memory verification code storage."""

    codes: dict[str, VerificationCodeRecord] = field(default_factory=dict)
    ttls: dict[str, int] = field(default_factory=dict)

    async def save_code(
        self, code_hash: str, record: VerificationCodeRecord, ttl_seconds: int
    ) -> None:
        self.codes[code_hash] = record
        self.ttls[code_hash] = ttl_seconds

    async def get_code(self, code_hash: str) -> VerificationCodeRecord | None:
        return self.codes.get(code_hash)

    async def delete_code(self, code_hash: str) -> None:
        self.codes.pop(code_hash, None)


@dataclass
class InMemoryRateCounter(RateCounter):
    """In-memory counters; windows are recorded but never expire."""

    counts: dict[str, int] = field(default_factory=dict)
    windows: dict[str, int] = field(default_factory=dict)

    async def increment(self, key: str, window_seconds: int) -> int:
        self.counts[key] = self.counts.get(key, 0) + 1
        self.windows.setdefault(key, window_seconds)
        return self.counts[key]

    async def count(self, key: str) -> int:
        return self.counts.get(key, 0)


@dataclass
class FakeEmailClient(EmailClient):
    """Email client that records messages."""

    sent: list[tuple[str, str, str]] = field(default_factory=list)
    fail: bool = False

    async def send_email(self, to: str, subject: str, body: str) -> None:
        if self.fail:
            raise UpstreamError("smtp down")
        self.sent.append((to, subject, body))

    def last_code(self) -> str:
        body = self.sent[-1][2]
        return body.split("code is ")[1][:6]


@dataclass
class FakeAIClient(TranscriptionClient, SummaryClient):
    """AI client returning canned transcripts and summaries."""

    transcript: Transcription = field(
        default_factory=lambda: Transcription(
            text="Yesterday I finished the login page.", language="en"
        )
    )
    summary: str = SUMMARY_TEXT
    transcribe_calls: list[tuple[str, int, str]] = field(default_factory=list)
    summarize_calls: list[dict[str, str]] = field(default_factory=list)
    failures: int = 0

    async def transcribe(
        self, *, model: str, audio: bytes, filename: str
    ) -> Transcription:
        if self.failures:
            self.failures -= 1
            raise UpstreamError("model overloaded")
        self.transcribe_calls.append((model, len(audio), filename))
        return self.transcript

    async def summarize(self, *, model: str, instructions: str, prompt: str) -> str:
        if self.failures:
            self.failures -= 1
            raise UpstreamError("model overloaded")
        self.summarize_calls.append(
            {"model": model, "instructions": instructions, "prompt": prompt}
        )
        return self.summary


@dataclass
class StaticIdentityVerifier:
    """Accepts ``token:<identity>`` proofs."""

    def verify_token(self, token: str) -> str:
        if not token or not token.startswith("token:"):
            raise StandupError(ErrorCode.UNAUTHENTICATED)
        return token.removeprefix("token:")


@dataclass
class FakeSessionSource(SessionSource):
    """Session source serving snapshots from a dict."""

    snapshots: dict[str, SessionSnapshot] = field(default_factory=dict)
    fetches: list[str] = field(default_factory=list)

    async def fetch_session(self, session_id: str) -> SessionSnapshot | None:
        self.fetches.append(session_id)
        return self.snapshots.get(session_id)


@dataclass
class InMemoryClientStorage(ClientStorage):
    """Client storage kept in memory."""

    saved: ReconcilerState | None = None
    saves: int = 0

    def load(self) -> ReconcilerState | None:
        return self.saved

    def save(self, state: ReconcilerState) -> None:
        self.saved = state
        self.saves += 1

    def clear(self) -> None:
        self.saved = None


@dataclass
class SessionHarness:
    """Session services wired to in-memory collaborators."""

    clock: FakeClock
    store: InMemorySessionStore
    broadcaster: InMemoryBroadcaster
    sessions: SessionService
    admission: AdmissionService


def build_harness(
    clock: FakeClock | None = None,
    max_participants: int = 20,
) -> SessionHarness:
    resolved_clock = clock or FakeClock()
    store = InMemorySessionStore()
    broadcaster = InMemoryBroadcaster()
    sessions = SessionService(
        store=store,
        broadcasts=BroadcastService(broadcaster, retry_delays=NO_DELAYS),
        clock=resolved_clock,
        retry_delays=NO_DELAYS,
    )
    admission = AdmissionService(
        store=store,
        sessions=sessions,
        identity_verifier=StaticIdentityVerifier(),
        clock=resolved_clock,
        max_participants=max_participants,
        retry_delays=NO_DELAYS,
    )
    return SessionHarness(resolved_clock, store, broadcaster, sessions, admission)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        session_secret="test-secret",
        openai_api_key="openai-key",
    )


@pytest.fixture
def harness() -> SessionHarness:
    return build_harness()


@pytest.fixture
def email_client() -> FakeEmailClient:
    return FakeEmailClient()


@pytest.fixture
def ai_client() -> FakeAIClient:
    return FakeAIClient()


@pytest.fixture
def container(
    settings: Settings,
    harness: SessionHarness,
    email_client: FakeEmailClient,
    ai_client: FakeAIClient,
) -> AppContainer:
    rate_limiter = RateLimiter(InMemoryRateCounter(), retry_delays=NO_DELAYS)
    credential_service = CredentialService(
        store=InMemoryCredentialStore(),
        rate_limiter=rate_limiter,
        email_client=email_client,
        secret=settings.session_secret,
        clock=harness.clock,
        retry_delays=NO_DELAYS,
    )
    admission_service = AdmissionService(
        store=harness.store,
        sessions=harness.sessions,
        identity_verifier=credential_service,
        clock=harness.clock,
        retry_delays=NO_DELAYS,
    )
    transcription_service = TranscriptionService(
        client=ai_client,
        sessions=harness.sessions,
        model=settings.openai_transcription_model,
        retry_delays=NO_DELAYS,
    )
    summary_service = SummaryService(
        client=ai_client,
        sessions=harness.sessions,
        model=settings.openai_summary_model,
        email_client=email_client,
        retry_delays=NO_DELAYS,
    )

    async def close_resources() -> None:
        return None

    return AppContainer(
        settings=settings,
        broadcaster=harness.broadcaster,
        session_service=harness.sessions,
        admission_service=admission_service,
        credential_service=credential_service,
        rate_limiter=rate_limiter,
        transcription_service=transcription_service,
        summary_service=summary_service,
        close_resources=close_resources,
    )
