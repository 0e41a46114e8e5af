"""ASGI entrypoint for the standup API."""

from standup_sync.api.app import create_app
from standup_sync.containers import build_container

app = create_app(build_container())
