from __future__ import annotations

import asyncio
from typing import List, Optional, Protocol, Tuple

from loguru import logger


class OutputChannel(Protocol):
    """Where a persona's lines go. Transport specifics live behind this interface.

    Implementations own the settling delay between an identity change and the
    following speech so messages render under the right name.
    """

    async def change_identity(self, name: str) -> None: ...

    async def send_message(self, text: str, pose_id: Optional[int], preset_id: Optional[int]) -> None: ...

    async def send_plain_message(self, text: str) -> None: ...


class ConsoleChannel:
    """Prints courtroom lines to the log; used by the CLI in place of a live room."""

    def __init__(self, settle_delay: float = 0.3) -> None:
        self.settle_delay = settle_delay
        self.identity: Optional[str] = None
        self.sent: List[Tuple[str, str]] = []

    async def change_identity(self, name: str) -> None:
        self.identity = name
        logger.debug(f"channel_identity | name={name}")
        if self.settle_delay > 0:
            await asyncio.sleep(self.settle_delay)

    async def send_message(self, text: str, pose_id: Optional[int], preset_id: Optional[int]) -> None:
        speaker = self.identity or "?"
        self.sent.append((speaker, text))
        logger.info(f"court | {speaker} [preset={preset_id} pose={pose_id}]: {text}")

    async def send_plain_message(self, text: str) -> None:
        self.sent.append(("", text))
        logger.info(f"court | {text}")
