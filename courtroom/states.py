from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional


MAX_MEMORY_ITEMS = 4
MAX_MEMORY_WORDS = 12


class TurnPhase(Enum):
    HUMAN_TURN = "human_turn"
    AI_WINDOW = "ai_window"


class Mood(Enum):
    NEUTRAL = "neutral"
    HAPPY = "happy"
    SAD = "sad"
    ANGRY = "angry"
    SURPRISED = "surprised"
    NERVOUS = "nervous"

    @classmethod
    def parse(cls, value: Any) -> Optional["Mood"]:
        if isinstance(value, Mood):
            return value
        if not isinstance(value, str):
            return None
        lowered = value.strip().lower()
        for mood in cls:
            if mood.value == lowered:
                return mood
        return None


class Role(Enum):
    PROSECUTOR = "prosecutor"
    JUDGE = "judge"
    WITNESS = "witness"
    DEFENDANT = "defendant"
    UNASSIGNED = "unassigned"

    @classmethod
    def parse(cls, value: Any) -> "Role":
        if isinstance(value, Role):
            return value
        if isinstance(value, str):
            lowered = value.strip().lower()
            for role in cls:
                if role.value == lowered:
                    return role
        return cls.UNASSIGNED

    @property
    def preset_side(self) -> Optional[str]:
        # Catalog presets are tagged with the courtroom side they stand on.
        return {
            Role.WITNESS: "witness",
            Role.JUDGE: "judge",
            Role.PROSECUTOR: "prosecution",
            Role.DEFENDANT: "defense",
        }.get(self)

    @property
    def label(self) -> str:
        return self.value.capitalize() if self is not Role.UNASSIGNED else "Character"


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return False


def _as_str(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, str):
        s = value.strip()
        try:
            return int(s)
        except ValueError:
            try:
                f = float(s)
            except ValueError:
                return None
            return int(f) if f.is_integer() else None
    return None


def coerce_pose_id(value: Any, valid_pose_ids: Iterable[int] = (), fallback: Optional[int] = None) -> Optional[int]:
    """Parse an untrusted pose id; anything unparsable or not in the valid set becomes ``fallback``."""
    pose_id = _as_int(value)
    if pose_id is None:
        return fallback
    valid = list(valid_pose_ids)
    if valid and pose_id not in valid:
        return fallback
    return pose_id


def _coerce_memory(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    out: List[str] = []
    for item in value:
        text = _as_str(item)
        if not text:
            continue
        words = text.split()
        out.append(" ".join(words[:MAX_MEMORY_WORDS]))
        if len(out) >= MAX_MEMORY_ITEMS:
            break
    return out


@dataclass
class MemoryEntry:
    entry: str
    timestamp: float


@dataclass
class SpeechEntry:
    text: str
    timestamp: float


@dataclass
class PersonaState:
    pose_id: Optional[int]
    preset_id: Optional[int]
    mood: Mood = Mood.NEUTRAL


@dataclass
class SceneSuggestion:
    action: Optional[str] = None
    emotion: Optional[str] = None
    pose_id: Optional[int] = None


@dataclass
class SpeechDraft:
    text: str = ""
    scene: Optional[SceneSuggestion] = None
    player_turn: bool = False
    memory: List[str] = field(default_factory=list)
    continue_speech: bool = False

    @classmethod
    def from_payload(
        cls,
        payload: Any,
        valid_pose_ids: Iterable[int] = (),
        fallback_pose_id: Optional[int] = None,
    ) -> "SpeechDraft":
        if not isinstance(payload, dict):
            return cls()
        scene_raw = payload.get("scene")
        if not isinstance(scene_raw, dict):
            scene_raw = {}
        scene = SceneSuggestion(
            action=_as_str(scene_raw.get("action")) or None,
            emotion=_as_str(scene_raw.get("emotion")) or None,
            pose_id=coerce_pose_id(scene_raw.get("poseId"), valid_pose_ids, fallback_pose_id),
        )
        return cls(
            text=_as_str(payload.get("text")),
            scene=scene,
            player_turn=_as_bool(payload.get("playerTurn")),
            memory=_coerce_memory(payload.get("memory")),
            continue_speech=_as_bool(payload.get("continueSpeech")),
        )


@dataclass
class SpeakerCandidate:
    id: int
    name: str
    is_human: bool = False
    is_typing: bool = False


@dataclass
class SpeakerPick:
    speaker_id: Optional[int]
    reason: str = ""

    @classmethod
    def from_payload(cls, payload: Any) -> "SpeakerPick":
        if not isinstance(payload, dict):
            return cls(None, "")
        raw = payload.get("speakerId", payload.get("speaker_id"))
        if isinstance(raw, str) and raw.strip().lower() in ("", "none", "null", "player", "human"):
            raw = None
        return cls(_as_int(raw), _as_str(payload.get("reason")))


def _slug(text: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")


@dataclass
class EvidenceItem:
    id: str
    name: str
    description: str = ""
    type: str = "image"
    url: str = ""

    @classmethod
    def from_payload(cls, payload: Any) -> Optional["EvidenceItem"]:
        if not isinstance(payload, dict):
            return None
        name = _as_str(payload.get("name"))
        if not name:
            return None
        ev_type = _as_str(payload.get("type")).lower()
        return cls(
            id=_as_str(str(payload.get("id") or "")) or _slug(name),
            name=name,
            description=_as_str(payload.get("description")),
            type=ev_type if ev_type in ("image", "video") else "image",
            url=_as_str(payload.get("url")),
        )


@dataclass
class PersonaProfile:
    id: int
    name: str
    description: str = ""
    is_human: bool = False
    role: Role = Role.UNASSIGNED
    preset_id: Optional[int] = None
    initial_pose_id: Optional[int] = None
    disguised: bool = False

    @classmethod
    def from_payload(cls, payload: Any) -> Optional["PersonaProfile"]:
        if not isinstance(payload, dict):
            return None
        pid = _as_int(payload.get("id"))
        name = _as_str(payload.get("name"))
        if pid is None or not name:
            return None
        return cls(
            id=pid,
            name=name,
            description=_as_str(payload.get("description")),
            is_human=_as_bool(payload.get("isHuman")),
            role=Role.parse(payload.get("role")),
            preset_id=_as_int(payload.get("characterId", payload.get("presetId"))),
            initial_pose_id=_as_int(payload.get("initialPoseId")),
            disguised=_as_bool(payload.get("disguised")),
        )


@dataclass
class TranscriptEntry:
    sequence: int
    speaker_id: Optional[int]
    speaker_name: str
    text: str
    state: Optional[PersonaState] = None

    @property
    def is_human(self) -> bool:
        return self.speaker_id is None


@dataclass
class PersonaSnapshot:
    id: int
    name: str
    description: str
    is_human: bool
    role: Role
    preset_id: Optional[int]
    pose_id: Optional[int]
    mood: Mood
    disguised: bool = False


@dataclass
class CaseState:
    premise: str
    key_points: List[str]
    key_point_index: int
    evidence: List[EvidenceItem]
    personas: List[PersonaSnapshot]

    @property
    def current_key_point(self) -> Optional[str]:
        if 0 <= self.key_point_index < len(self.key_points):
            return self.key_points[self.key_point_index]
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "premise": self.premise,
            "key_points": list(self.key_points),
            "key_point_index": self.key_point_index,
            "evidence": [e.__dict__.copy() for e in self.evidence],
            "personas": [
                {**p.__dict__, "role": p.role.value, "mood": p.mood.value} for p in self.personas
            ],
        }
