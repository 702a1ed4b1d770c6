from __future__ import annotations

import asyncio
from typing import List, Optional

from loguru import logger

from .channel import OutputChannel
from .manager import BeatRequest, BeatResult, CaseManager
from .states import Role, SpeakerCandidate


MASTER_PREFIX = "[master]"


class TrialSession:
    """Sequential beat loop around a CaseManager.

    Human input opens an AI window; beats run one after another until the
    window closes, the message ceiling is hit, or a beat comes back empty.
    Input that arrives while a window is running is ignored.
    """

    def __init__(
        self,
        manager: CaseManager,
        max_ai_messages: int = 4,
        player_name: str = "Defense",
        master_channel: Optional[OutputChannel] = None,
        reading_delay: float = 0.0,
        per_char_delay: float = 0.0,
    ) -> None:
        self.manager = manager
        self.max_ai_messages = max(0, int(max_ai_messages))
        self.player_name = player_name
        self.master_channel = master_channel
        self.reading_delay = reading_delay
        self.per_char_delay = per_char_delay
        self.window_running = False
        self.last_speaker_id: Optional[int] = None
        self.last_speaker_name: Optional[str] = None

    async def handle_human_message(self, text: str) -> List[BeatResult]:
        if text.startswith(MASTER_PREFIX):
            logger.debug(f"session_ignored | master message: {text!r}")
            return []
        if self.window_running:
            logger.info("session_ignored | AI window is already running")
            return []

        self.window_running = True
        try:
            self.last_speaker_id = None
            self.last_speaker_name = None
            self.manager.transcript.append(None, self.player_name, text)
            self.manager.governor.begin_human_input(self.max_ai_messages)
            return await self.run_ai_window(text)
        finally:
            self.window_running = False

    async def run_ai_window(self, latest_message: str) -> List[BeatResult]:
        results: List[BeatResult] = []
        wants_continue = False
        steps = 0
        governor = self.manager.governor

        while governor.has_ai_turn_available() and steps < self.max_ai_messages:
            state = None
            if self.last_speaker_id is not None:
                speaker = self.manager.get_persona(self.last_speaker_id)
                state = speaker.get_state() if speaker else None
            result = await self.manager.next_beat(
                BeatRequest(
                    last_message=latest_message,
                    last_speaker_id=self.last_speaker_id,
                    last_speaker_name=self.last_speaker_name,
                    last_speaker_state=state,
                    last_speaker_wants_continue=wants_continue,
                    message_index=steps + 1,
                    message_limit=self.max_ai_messages,
                )
            )
            if not result.text:
                break

            results.append(result)
            persona = self.manager.get_persona(result.speaker_id) if result.speaker_id is not None else None
            self.last_speaker_id = result.speaker_id
            self.last_speaker_name = persona.name if persona else None
            wants_continue = result.wants_continue
            logger.info(
                f"ai_delivered | {self.last_speaker_name or result.speaker_id}: {result.text}"
                f"{' (wants to continue)' if wants_continue else ''}"
            )

            # Give humans a moment to read before the next line lands
            pause = self.reading_delay + len(result.text) * self.per_char_delay
            if pause > 0:
                await asyncio.sleep(pause)
            steps += 1

        return results

    async def open_session(self) -> Optional[BeatResult]:
        state = self.manager.get_case_state()
        if self.master_channel is not None:
            await self.master_channel.send_plain_message(f"Storyline: {state.premise}")
            for i, item in enumerate(state.evidence, start=1):
                await self.master_channel.send_plain_message(f"Evidence #{i}: {item.name} - {item.description}")

        judge = next((p for p in state.personas if p.role is Role.JUDGE), None)
        if judge is None:
            logger.info("session_open | no judge in case; waiting for player")
            return None

        self.manager.governor.open_window(1)
        blocks = [
            "Give a one-line opening to start the trial.",
            f"Story prompt: {state.premise}",
            f"Key points: {' | '.join(state.key_points)}" if state.key_points else "",
            "Tone: Judge declaring the session open briefly describing the case. <= 50 words.",
        ]
        result = await self.manager.next_beat(
            BeatRequest(
                candidates=[SpeakerCandidate(id=judge.id, name=judge.name, is_human=judge.is_human)],
                prompt="\n".join(b for b in blocks if b),
                last_speaker_id=judge.id,
                last_speaker_name=judge.name,
                # The opening always belongs to the judge
                last_speaker_wants_continue=True,
            )
        )
        if result.text:
            self.last_speaker_id = judge.id
            self.last_speaker_name = judge.name
        return result
