"""Dependency container wiring for the application."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import timedelta

from standup_sync.adapters.openai_ai_client import OpenAIAIClient
from standup_sync.adapters.redis_broadcaster import RedisBroadcaster
from standup_sync.adapters.redis_credential_store import RedisCredentialStore
from standup_sync.adapters.redis_rate_counter import RedisRateCounter
from standup_sync.adapters.redis_session_store import RedisSessionStore
from standup_sync.adapters.redis_support import create_redis
from standup_sync.adapters.sendgrid_client import (
    HttpxSendGridClient,
    LoggingEmailClient,
)
from standup_sync.config import Settings
from standup_sync.services.admission import AdmissionService
from standup_sync.services.broadcaster import Broadcaster, BroadcastService
from standup_sync.services.credentials import CredentialService
from standup_sync.services.rate_limit import RateLimiter
from standup_sync.services.sessions import SessionService
from standup_sync.services.summaries import SummaryService
from standup_sync.services.transcription import TranscriptionService


@dataclass
class AppContainer:
    """Holds application-wide dependencies."""

    settings: Settings
    broadcaster: Broadcaster
    session_service: SessionService
    admission_service: AdmissionService
    credential_service: CredentialService
    rate_limiter: RateLimiter
    transcription_service: TranscriptionService
    summary_service: SummaryService
    close_resources: Callable[[], Awaitable[None]]


def build_container(settings: Settings | None = None) -> AppContainer:
    """Create the default dependency container."""
    resolved_settings = settings or Settings()
    redis = create_redis(
        resolved_settings.redis_url,
        socket_timeout=resolved_settings.redis_socket_timeout_seconds,
    )
    session_store = RedisSessionStore(redis)
    broadcaster = RedisBroadcaster(redis)
    rate_limiter = RateLimiter(RedisRateCounter(redis))
    session_service = SessionService(
        store=session_store,
        broadcasts=BroadcastService(broadcaster),
    )
    if resolved_settings.sendgrid_api_key:
        email_client = HttpxSendGridClient.create(
            api_key=resolved_settings.sendgrid_api_key,
            from_email=resolved_settings.email_from,
        )
    else:
        email_client = LoggingEmailClient()
    credential_service = CredentialService(
        store=RedisCredentialStore(redis),
        rate_limiter=rate_limiter,
        email_client=email_client,
        secret=resolved_settings.session_secret,
        code_ttl_seconds=resolved_settings.code_ttl_seconds,
        max_codes_per_hour=resolved_settings.max_codes_per_hour,
        max_verify_attempts=resolved_settings.max_verify_attempts,
        verify_window_seconds=resolved_settings.verify_window_seconds,
        token_ttl=timedelta(days=resolved_settings.token_ttl_days),
    )
    admission_service = AdmissionService(
        store=session_store,
        sessions=session_service,
        identity_verifier=credential_service,
        session_ttl=timedelta(seconds=resolved_settings.session_ttl_seconds),
        max_participants=resolved_settings.max_participants,
    )
    ai_client = OpenAIAIClient.create(resolved_settings.openai_api_key)
    transcription_service = TranscriptionService(
        client=ai_client,
        sessions=session_service,
        model=resolved_settings.openai_transcription_model,
    )
    summary_service = SummaryService(
        client=ai_client,
        sessions=session_service,
        model=resolved_settings.openai_summary_model,
        email_client=email_client,
    )

    async def close_resources() -> None:
        await ai_client.close()
        await email_client.close()
        await redis.aclose()

    return AppContainer(
        settings=resolved_settings,
        broadcaster=broadcaster,
        session_service=session_service,
        admission_service=admission_service,
        credential_service=credential_service,
        rate_limiter=rate_limiter,
        transcription_service=transcription_service,
        summary_service=summary_service,
        close_resources=close_resources,
    )
