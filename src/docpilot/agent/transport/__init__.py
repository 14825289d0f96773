"""Agent task transports."""

from __future__ import annotations

from docpilot.agent.transport.base import (
    Transport,
    TransportError,
    TransportHandle,
    TransportListener,
    TransportRequest,
)
from docpilot.agent.transport.mailbox import MailboxTransport
from docpilot.agent.transport.process import DirectProcessTransport
from docpilot.config import Settings


def build_transport(settings: Settings) -> Transport:
    """Build the configured transport once at startup."""

    if settings.agent.transport == "mailbox":
        return MailboxTransport(
            directory=settings.mailbox.directory,
            poll_interval_seconds=settings.mailbox.poll_interval_seconds,
        )
    if settings.agent.transport == "process":
        return DirectProcessTransport(
            command_template=settings.agent.command_template,
            kill_grace_seconds=settings.agent.kill_grace_seconds,
            stream_dir=settings.mailbox.directory,
        )
    raise ValueError(f"Unsupported transport: {settings.agent.transport!r}")


__all__ = [
    "DirectProcessTransport",
    "MailboxTransport",
    "Transport",
    "TransportError",
    "TransportHandle",
    "TransportListener",
    "TransportRequest",
    "build_transport",
]
