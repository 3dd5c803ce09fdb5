"""Relay — drains supervisor events and posts them to a Discord channel.

Chat lines can arrive much faster than Discord lets us send, so events that
queue up while a send is rate limited are batched into one message, split
at the Discord length limit.
"""

from __future__ import annotations

import asyncio
import logging
import time

import discord

from .formatter import Formatter
from .models import ServerEvent

log = logging.getLogger(__name__)

DISCORD_CHAR_LIMIT = 1900
MIN_SEND_INTERVAL = 1.0  # seconds between messages


def _split_messages(lines: list[str], limit: int = DISCORD_CHAR_LIMIT) -> list[str]:
    """Pack rendered lines into as few messages as fit under ``limit``."""
    messages: list[str] = []
    buffer = ""
    for line in lines:
        # A single oversized line is cut rather than dropped
        while len(line) > limit:
            if buffer:
                messages.append(buffer)
                buffer = ""
            messages.append(line[:limit])
            line = line[limit:]
        candidate = f"{buffer}\n{line}" if buffer else line
        if len(candidate) > limit:
            messages.append(buffer)
            buffer = line
        else:
            buffer = candidate
    if buffer:
        messages.append(buffer)
    return messages


async def relay_to_discord(
    events: asyncio.Queue[ServerEvent],
    channel: discord.abc.Messageable,
    formatter: Formatter,
) -> None:
    """Post events from ``events`` to ``channel`` until cancelled."""
    last_send = 0.0
    while True:
        pending = [await events.get()]

        # Respect the send interval, collecting whatever arrives meanwhile
        wait = MIN_SEND_INTERVAL - (time.monotonic() - last_send)
        if wait > 0:
            await asyncio.sleep(wait)
        while not events.empty():
            pending.append(events.get_nowait())

        rendered = [text for text in map(formatter.format_event, pending) if text]
        for message in _split_messages(rendered):
            try:
                await channel.send(message)
            except discord.HTTPException:
                log.warning("Failed to relay %d event(s) to Discord", len(pending), exc_info=True)
        last_send = time.monotonic()
