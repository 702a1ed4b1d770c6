"""
Speaker selection for AI beats.

Priority, first match wins:
1. Human's turn per the governor -> nobody.
   Humans and candidates that are typing are never eligible.
2. Last speaker asked to continue and is still eligible -> that speaker.
3. Generative pick (when a service and context are available) -> that speaker,
   or nobody if the pick is "none", unknown, or the call fails.
4. Otherwise least-recently-spoken, never-spoken first, ties by candidate order.
"""

from __future__ import annotations

import itertools
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from loguru import logger

from .governor import TurnGovernor
from .states import SpeakerCandidate, SpeakerPick


SPEAKER_CONTRACT: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "speakerId": {
            "type": ["number", "null"],
            "description": "The id of the character who should speak next, or null to let the player (Defense) answer",
        },
        "reason": {"type": "string", "description": "Brief reason for this choice"},
    },
    "required": ["speakerId"],
    "additionalProperties": False,
}


@dataclass
class SelectionContext:
    story_prompt: str = ""
    last_message: str = ""
    last_speaker_id: Optional[int] = None
    last_speaker_name: Optional[str] = None
    last_speaker_wants_continue: bool = False
    evidence_names: List[str] = field(default_factory=list)
    memories: Dict[int, List[str]] = field(default_factory=dict)
    transcript: str = ""


_NEVER = (float("-inf"), -1)


class SpeakerSelector:
    def __init__(
        self,
        governor: TurnGovernor,
        service: Any = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.governor = governor
        self.service = service
        self.clock = clock
        self._last_spoken: Dict[int, Tuple[float, int]] = {}
        self._sequence = itertools.count()

    def record_speech(self, speaker_id: int, now: Optional[float] = None) -> None:
        stamp = self.clock() if now is None else now
        self._last_spoken[speaker_id] = (stamp, next(self._sequence))

    def last_spoken_at(self, speaker_id: int) -> Optional[float]:
        rec = self._last_spoken.get(speaker_id)
        return rec[0] if rec else None

    async def choose_speaker(
        self,
        candidates: Sequence[SpeakerCandidate],
        context: Optional[SelectionContext] = None,
    ) -> Optional[SpeakerCandidate]:
        if self.governor.is_human_turn():
            return None

        # a persona still composing a line elsewhere is not asked to speak again
        eligible = [c for c in candidates if not c.is_human and not c.is_typing]
        if not eligible:
            return None

        if context and context.last_speaker_wants_continue and context.last_speaker_id is not None:
            for c in eligible:
                if c.id == context.last_speaker_id:
                    logger.info(f"speaker_choice | {c.name} continues speaking (requested continuation)")
                    return self._select(c)

        if self.service is None or context is None:
            return self._select(self.pick_least_recent(eligible))

        pick = await self._ai_choose(eligible, context)
        if pick is None:
            logger.info("speaker_choice | yielding to player")
            return None
        return self._select(pick)

    def pick_least_recent(self, candidates: Sequence[SpeakerCandidate]) -> Optional[SpeakerCandidate]:
        if not candidates:
            return None
        # sorted() is stable, so equal stamps keep the original candidate order
        return sorted(candidates, key=lambda c: self._last_spoken.get(c.id, _NEVER))[0]

    def _select(self, candidate: Optional[SpeakerCandidate]) -> Optional[SpeakerCandidate]:
        if candidate is not None:
            self.record_speech(candidate.id)
        return candidate

    def build_prompt(self, candidates: Sequence[SpeakerCandidate], context: SelectionContext) -> str:
        details = []
        for i, c in enumerate(candidates, start=1):
            mems = context.memories.get(c.id) or []
            mem_str = f" (remembers: {'; '.join(mems[-2:])})" if mems else ""
            details.append(f"{i}. {c.name} (id: {c.id}){mem_str}")
        blocks = [
            f"Story: {context.story_prompt or 'Ace Attorney trial'}",
            f"Evidence: {', '.join(context.evidence_names)}" if context.evidence_names else "",
            f"Recent transcript:\n{context.transcript}" if context.transcript else "",
            f"Last speaker: {context.last_speaker_name}" if context.last_speaker_name else "Last speaker: player",
            f'Last message: "{context.last_message}"',
            "\nWho should speak next to continue the trial naturally?",
            "Consider: continuation needs, natural flow, courtroom dynamics, character memories.",
            "Answer null if the player (Defense) should reply now.",
            "\nAvailable characters:\n" + "\n".join(details),
        ]
        return "\n".join(b for b in blocks if b)

    async def _ai_choose(
        self,
        candidates: Sequence[SpeakerCandidate],
        context: SelectionContext,
    ) -> Optional[SpeakerCandidate]:
        prompt = self.build_prompt(candidates, context)
        try:
            raw = await self.service.generate_json(prompt, SPEAKER_CONTRACT)
        except Exception as e:
            logger.warning(f"speaker_choice_failed | treating as no pick | {e}")
            return None
        pick = SpeakerPick.from_payload(raw)
        logger.info(f"speaker_choice | ai picked {pick.speaker_id} - {pick.reason or 'no reason'}")
        if pick.speaker_id is None:
            return None
        for c in candidates:
            if c.id == pick.speaker_id:
                return c
        logger.warning(f"speaker_choice_invalid | id={pick.speaker_id} not among candidates")
        return None
