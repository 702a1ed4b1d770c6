from __future__ import annotations

import time
from typing import Any, Dict, List, Optional, Sequence

from loguru import logger

from .channel import OutputChannel
from .errors import ConfigurationError, PersonaNotBoundError
from .presets import PresetCatalog
from .states import (
    MAX_MEMORY_ITEMS,
    MemoryEntry,
    Mood,
    PersonaProfile,
    PersonaSnapshot,
    PersonaState,
    Role,
    SpeechDraft,
    SpeechEntry,
)


_REPLY_INSTRUCTIONS = (
    "Return JSON only (no markdown) with: text (character speech), scene (object with optional "
    "action, emotion, poseId), memory (array of short strings to remember), playerTurn, "
    "continueSpeech (boolean - set true if YOU want to speak again immediately after this message; "
    "if a witness is being cross-examined, set it to true so it can explain in detail). "
    "If you pick a poseId, use one from the available list. Keep memory entries concise "
    "(<=12 words) and only add them when needed."
)


def build_speech_contract(pose_ids: Sequence[int]) -> Dict[str, Any]:
    return {
        "type": "object",
        "required": ["text", "playerTurn", "scene"],
        "properties": {
            "text": {"type": "string", "description": "The dialogue line that the character will speak"},
            "playerTurn": {
                "type": "boolean",
                "description": "Set to true if you need the player (Defense) to answer after this message.",
            },
            "continueSpeech": {
                "type": "boolean",
                "description": "Set to true if you (this character) want to speak again immediately in the next message.",
            },
            "scene": {
                "type": "object",
                "required": ["poseId"],
                "properties": {
                    "action": {"type": "string"},
                    "emotion": {"type": "string", "enum": [m.value for m in Mood]},
                    "poseId": {"type": "string", "enum": [str(p) for p in pose_ids]},
                },
            },
            "memory": {
                "type": "array",
                "description": (
                    "Short strings the character wants to remember, for example an insult from the player, "
                    "an important clue or a contradiction they just said. Keep entries concise (<=12 words)."
                ),
                "items": {"type": "string"},
                "maxItems": MAX_MEMORY_ITEMS,
            },
        },
    }


class PersonaAgent:
    def __init__(self, profile: PersonaProfile, catalog: PresetCatalog) -> None:
        if profile.preset_id is None and not profile.is_human:
            raise ConfigurationError(f"Missing preset id for persona {profile.id}")
        self.profile = profile
        self.catalog = catalog
        self.id = profile.id
        self.name = profile.name
        self.description = profile.description or ""
        self.is_human = profile.is_human
        self.role: Role = profile.role
        self.preset_id = profile.preset_id
        self.disguised = profile.disguised
        self.pose_id: Optional[int] = profile.initial_pose_id
        self.mood = Mood.NEUTRAL
        self.memory: List[MemoryEntry] = []
        self.speeches: List[SpeechEntry] = []
        self.channel: Optional[OutputChannel] = None

    # --- lifecycle -------------------------------------------------------

    @property
    def is_bound(self) -> bool:
        return self.channel is not None

    def bind_channel(self, channel: Optional[OutputChannel]) -> None:
        self.channel = channel
        if channel is not None and self.pose_id is None:
            self.pose_id = self.default_pose_id()
        logger.debug(f"persona_bound | id={self.id} name={self.name} bound={channel is not None}")

    def _ensure_channel(self) -> OutputChannel:
        if self.channel is None:
            raise PersonaNotBoundError(self.id)
        return self.channel

    # --- state -----------------------------------------------------------

    def pose_ids(self) -> List[int]:
        return self.catalog.pose_ids(self.preset_id)

    def default_pose_id(self) -> int:
        if self.pose_id is not None:
            return self.pose_id
        first = self.catalog.first_pose_id(self.preset_id)
        return first if first is not None else 0

    def set_pose(self, pose_id: Optional[int] = None) -> None:
        self._ensure_channel()
        self.pose_id = pose_id if pose_id is not None else self.default_pose_id()

    def set_mood(self, mood: Any) -> bool:
        self._ensure_channel()
        parsed = Mood.parse(mood)
        if parsed is None:
            return False
        self.mood = parsed
        return True

    def get_state(self) -> PersonaState:
        return PersonaState(pose_id=self.default_pose_id(), preset_id=self.preset_id, mood=self.mood)

    def snapshot(self) -> PersonaSnapshot:
        return PersonaSnapshot(
            id=self.id,
            name=self.name,
            description=self.description,
            is_human=self.is_human,
            role=self.role,
            preset_id=self.preset_id,
            pose_id=self.pose_id,
            mood=self.mood,
            disguised=self.disguised,
        )

    def add_memory(self, entry: str, timestamp: Optional[float] = None) -> None:
        self.memory.append(MemoryEntry(entry, time.time() if timestamp is None else timestamp))

    def get_memory(self, limit: int = 10) -> List[MemoryEntry]:
        return self.memory[-limit:] if limit > 0 else []

    def record_speech(self, text: str, timestamp: Optional[float] = None) -> None:
        self.speeches.append(SpeechEntry(text, time.time() if timestamp is None else timestamp))

    def get_recent_speech(self, limit: int = 5) -> List[SpeechEntry]:
        return self.speeches[-limit:] if limit > 0 else []

    # --- prompting -------------------------------------------------------

    def build_context(self, limit: int = 5) -> str:
        recent_speech = "\n".join(f"- {s.text}" for s in self.get_recent_speech(limit))
        recent_memory = "\n".join(f"- {m.entry}" for m in self.get_memory(limit))
        poses = ", ".join(f"{p.id}:{p.name}" for p in self.catalog.poses(self.preset_id)[:6])
        blocks = [
            f"Name: {self.name}",
            f"Description: {self.description}" if self.description else "",
            f"PresetId: {self.preset_id}",
            f"Current mood: {self.mood.value}",
            f"PoseId: {self.pose_id if self.pose_id is not None else 'unknown'}",
            f"Available poses (id:name): {poses}" if poses else "",
            f"Recent memory:\n{recent_memory}" if recent_memory else "",
            f"Recent speech:\n{recent_speech}" if recent_speech else "",
        ]
        return "\n".join(b for b in blocks if b)

    async def generate_speech(self, prompt: str, service: Any) -> SpeechDraft:
        if service is None or not self.is_bound:
            return SpeechDraft()

        full_prompt = f"{self.build_context()}\n\nPrompt:\n{prompt}\n\n{_REPLY_INSTRUCTIONS}"
        pose_ids = self.pose_ids()
        t0 = time.perf_counter()
        try:
            raw = await service.generate_json(full_prompt, build_speech_contract(pose_ids))
        except Exception as e:
            logger.warning(f"speech_failed | id={self.id} name={self.name} | {e}")
            return SpeechDraft()
        dt = time.perf_counter() - t0
        draft = SpeechDraft.from_payload(raw, pose_ids, self.default_pose_id())
        logger.info(f"speech_drafted | id={self.id} name={self.name} dt={dt:.2f}s chars={len(draft.text)}")
        return draft

    async def apply_response(self, draft: SpeechDraft) -> None:
        channel = self._ensure_channel()
        scene = draft.scene
        pose_id = scene.pose_id if scene is not None and scene.pose_id is not None else self.default_pose_id()

        # Nothing is committed unless the line actually went out
        await channel.change_identity(self.name)
        await channel.send_message(draft.text, pose_id, self.preset_id)

        self.set_pose(pose_id)
        if scene is not None and scene.emotion:
            if not self.set_mood(scene.emotion):
                logger.debug(f"mood_ignored | id={self.id} value={scene.emotion!r}")
        for entry in draft.memory:
            self.add_memory(entry)
        self.record_speech(draft.text)
        logger.debug(f"persona_spoke | id={self.id} pose={pose_id} mood={self.mood.value}")
