"""Session endpoints and the real-time event relay."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING

from fastapi import (
    APIRouter,
    Depends,
    Header,
    Query,
    Request,
    Response,
    WebSocket,
    WebSocketDisconnect,
    status,
)

from standup_sync.api.session_models import (
    CreateSessionRequest,
    CreateSessionResponse,
    JoinSessionRequest,
    JoinSessionResponse,
    LeaderRequest,
    TranscriptRequest,
    UpdateStatusRequest,
)
from standup_sync.domain.events import EVENT_TYPES, channel_name, encode_message
from standup_sync.domain.sessions import SessionSnapshot
from standup_sync.domain.summaries import ParsedSummary, SummarySections
from standup_sync.errors import ErrorCode, StandupError
from standup_sync.services import state_machine
from standup_sync.services.retry import call_with_retry

if TYPE_CHECKING:
    from standup_sync.containers import AppContainer
    from standup_sync.domain.sessions import Session
    from standup_sync.services.broadcaster import EventHandler

router = APIRouter(prefix="/api/sessions", tags=["sessions"])

_HOUR_SECONDS = 3600
_AUDIO_EXTENSIONS = {
    "audio/webm": "webm",
    "audio/ogg": "ogg",
    "audio/mpeg": "mp3",
    "audio/mp4": "m4a",
    "audio/wav": "wav",
    "audio/x-wav": "wav",
}
_CLOSE_CODES = {ErrorCode.NOT_FOUND: 4404, ErrorCode.EXPIRED: 4410}

_logger = logging.getLogger(__name__)


def client_ip(request: Request) -> str:
    """Return the caller's address, preferring proxy headers."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    connecting = request.headers.get("cf-connecting-ip")
    if connecting:
        return connecting.strip()
    if request.client is not None:
        return request.client.host
    return "unknown"


def bearer_token(authorization: str | None = Header(default=None)) -> str:
    """Return the identity token from an ``Authorization: Bearer`` header."""
    if not authorization:
        return ""
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer":
        return ""
    return token.strip()


async def caller_identity(
    request: Request, token: str = Depends(bearer_token)
) -> str:
    """Return the verified identity behind the caller's bearer token."""
    container: AppContainer = request.app.state.container
    return container.credential_service.verify_token(token)


async def limit_creates(request: Request) -> None:
    """Allow a bounded number of session creations per client per hour."""
    container: AppContainer = request.app.state.container
    await container.rate_limiter.hit(
        f"create:{client_ip(request)}",
        limit=container.settings.create_limit_per_hour,
        window_seconds=_HOUR_SECONDS,
    )


async def limit_joins(request: Request) -> None:
    """Allow a bounded number of join attempts per client per hour."""
    container: AppContainer = request.app.state.container
    await container.rate_limiter.hit(
        f"join:{client_ip(request)}",
        limit=container.settings.join_limit_per_hour,
        window_seconds=_HOUR_SECONDS,
    )


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(limit_creates)],
)
async def create_session(
    body: CreateSessionRequest,
    request: Request,
    token: str = Depends(bearer_token),
) -> CreateSessionResponse:
    """Create a session led by the caller."""
    container: AppContainer = request.app.state.container
    result = await container.admission_service.create_session(
        leader_name=body.leader_name,
        password=body.password,
        identity_proof=token,
    )
    return CreateSessionResponse(
        session_id=result.session_id,
        leader_id=result.leader_id,
        expires_at=result.expires_at,
        session=_snapshot(container, result.session),
    )


@router.post("/{session_id}/participants", dependencies=[Depends(limit_joins)])
async def join_session(
    session_id: str,
    body: JoinSessionRequest,
    request: Request,
    response: Response,
    token: str = Depends(bearer_token),
) -> JoinSessionResponse:
    """Join a session, or rejoin under an existing name."""
    container: AppContainer = request.app.state.container
    result = await container.admission_service.join_session(
        session_id=session_id,
        participant_name=body.participant_name,
        password=body.password,
        identity_proof=token,
    )
    if result.created:
        response.status_code = status.HTTP_201_CREATED
    return JoinSessionResponse(
        session_id=result.session_id,
        participant_id=result.participant_id,
        created=result.created,
        session=_snapshot(container, result.session),
    )


@router.get("/{session_id}")
async def get_session(session_id: str, request: Request) -> SessionSnapshot:
    """Return the authoritative session snapshot."""
    container: AppContainer = request.app.state.container
    return await container.session_service.get_snapshot(session_id)


@router.put("/{session_id}/participants/{participant_id}/status")
async def update_status(
    session_id: str,
    participant_id: str,
    body: UpdateStatusRequest,
    request: Request,
    actor: str = Depends(caller_identity),
) -> SessionSnapshot:
    """Advance a participant along the recording pipeline."""
    container: AppContainer = request.app.state.container
    session = await container.session_service.update_participant_status(
        session_id, participant_id, body.status, actor=actor
    )
    return _snapshot(container, session)


@router.put("/{session_id}/participants/{participant_id}/transcript")
async def save_transcript(
    session_id: str,
    participant_id: str,
    body: TranscriptRequest,
    request: Request,
    actor: str = Depends(caller_identity),
) -> SessionSnapshot:
    """Store a transcript produced on the client."""
    container: AppContainer = request.app.state.container
    session = await container.session_service.attach_transcript(
        session_id, participant_id, body.text, body.language, actor=actor
    )
    return _snapshot(container, session)


@router.post("/{session_id}/participants/{participant_id}/recording")
async def upload_recording(
    session_id: str,
    participant_id: str,
    request: Request,
    actor: str = Depends(caller_identity),
) -> SessionSnapshot:
    """Transcribe an uploaded recording sent as the raw request body."""
    container: AppContainer = request.app.state.container
    audio = await request.body()
    content_type = request.headers.get("content-type", "").split(";")[0].strip()
    extension = _AUDIO_EXTENSIONS.get(content_type, "webm")
    session = await container.transcription_service.transcribe_participant(
        session_id,
        participant_id,
        audio,
        filename=f"recording.{extension}",
        actor=actor,
    )
    return _snapshot(container, session)


@router.post("/{session_id}/participants/{participant_id}/summary")
async def summarize_participant(
    session_id: str,
    participant_id: str,
    request: Request,
    actor: str = Depends(caller_identity),
) -> SummarySections:
    """Extract standup sections from one participant's transcript."""
    container: AppContainer = request.app.state.container
    return await container.summary_service.summarize_participant(
        session_id, participant_id, actor=actor
    )


@router.post("/{session_id}/timer/start")
async def start_timer(
    session_id: str,
    body: LeaderRequest,
    request: Request,
    actor: str = Depends(caller_identity),
) -> SessionSnapshot:
    """Start the shared timer."""
    container: AppContainer = request.app.state.container
    session = await container.session_service.start_timer(
        session_id, body.leader_id, actor=actor
    )
    return _snapshot(container, session)


@router.post("/{session_id}/timer/stop")
async def stop_timer(
    session_id: str,
    body: LeaderRequest,
    request: Request,
    actor: str = Depends(caller_identity),
) -> SessionSnapshot:
    """Stop the shared timer."""
    container: AppContainer = request.app.state.container
    session = await container.session_service.stop_timer(
        session_id, body.leader_id, actor=actor
    )
    return _snapshot(container, session)


@router.post("/{session_id}/finish")
async def finish_session(
    session_id: str,
    body: LeaderRequest,
    request: Request,
    actor: str = Depends(caller_identity),
) -> ParsedSummary:
    """Summarize the standup and complete the session."""
    container: AppContainer = request.app.state.container
    return await container.summary_service.finish_session(
        session_id, body.leader_id, actor=actor
    )


@router.delete("/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_session(
    session_id: str,
    request: Request,
    leader_id: str = Query(alias="leaderId"),
    actor: str = Depends(caller_identity),
) -> None:
    """End a session early."""
    container: AppContainer = request.app.state.container
    await container.session_service.delete_session(
        session_id, leader_id, actor=actor
    )


@router.websocket("/{session_id}/events")
async def session_events(websocket: WebSocket, session_id: str) -> None:
    """Relay a session's broadcast channel to one browser."""
    container: AppContainer = websocket.app.state.container
    await websocket.accept()
    try:
        await container.session_service.get_snapshot(session_id)
    except StandupError as exc:
        code = _CLOSE_CODES.get(exc.code, 1008)
        await websocket.close(code=code, reason=exc.message)
        return

    name = channel_name(session_id)
    queue: asyncio.Queue[str] = asyncio.Queue()
    handlers: dict[str, EventHandler] = {}
    for event_name in EVENT_TYPES:
        handlers[event_name] = lambda payload, event=event_name: queue.put_nowait(
            encode_message(event, payload)
        )
    channel = container.broadcaster.subscriber()
    try:
        try:
            await call_with_retry(
                lambda: channel.subscribe(name, handlers),
                action="subscribe relay",
            )
        except StandupError:
            await websocket.close(code=1011)
            return
        await websocket.send_text(encode_message("subscribed", {"channel": name}))
        await _pump(websocket, queue)
    finally:
        await channel.close()


async def _pump(websocket: WebSocket, queue: asyncio.Queue[str]) -> None:
    async def forward() -> None:
        while True:
            await websocket.send_text(await queue.get())

    async def drain() -> None:
        with contextlib.suppress(WebSocketDisconnect):
            while True:
                await websocket.receive_text()

    tasks = {asyncio.create_task(forward()), asyncio.create_task(drain())}
    try:
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
    for task in done:
        if task.cancelled():
            continue
        exc = task.exception()
        if exc is not None and not isinstance(exc, WebSocketDisconnect):
            _logger.warning("Event relay stopped: %s", exc)


def _snapshot(container: AppContainer, session: Session) -> SessionSnapshot:
    return state_machine.to_snapshot(session, container.session_service.clock())
