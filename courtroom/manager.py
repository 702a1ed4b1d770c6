from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set

from loguru import logger

from .agents import PersonaAgent
from .channel import OutputChannel
from .errors import ConfigurationError
from .governor import TurnGovernor
from .presets import PresetCatalog
from .selector import SelectionContext, SpeakerSelector
from .states import (
    CaseState,
    EvidenceItem,
    PersonaProfile,
    PersonaState,
    Role,
    SpeakerCandidate,
    SpeechDraft,
)
from .transcript import TranscriptLog


# Phoenix Wright: the human player's own preset
RESERVED_PRESET_IDS = frozenset({1})

_STYLE_LINE = "Reply in <=25 words, courtroom tone. Keep dialogue flowing - other characters will continue the exchange."


@dataclass
class BeatRequest:
    candidates: Optional[List[SpeakerCandidate]] = None
    last_message: str = ""
    last_speaker_id: Optional[int] = None
    last_speaker_name: Optional[str] = None
    last_speaker_state: Optional[PersonaState] = None
    last_speaker_wants_continue: bool = False
    message_index: Optional[int] = None
    message_limit: Optional[int] = None
    prompt: Optional[str] = None
    evidence: Optional[List[EvidenceItem]] = None


@dataclass
class BeatResult:
    speaker_id: Optional[int] = None
    text: str = ""
    wants_continue: bool = False


class CaseManager:
    """Owns one courtroom case and drives it one beat at a time.

    All orchestration state (governor, selector, transcript, claimed presets)
    lives on the instance; build one manager per session.
    """

    def __init__(
        self,
        catalog: PresetCatalog,
        service: Any = None,
        governor: Optional[TurnGovernor] = None,
        selector: Optional[SpeakerSelector] = None,
        transcript: Optional[TranscriptLog] = None,
        reserved_preset_ids: Iterable[int] = RESERVED_PRESET_IDS,
    ) -> None:
        self.catalog = catalog
        self.service = service
        self.governor = governor or TurnGovernor()
        self.selector = selector or SpeakerSelector(self.governor, service)
        self.transcript = transcript or TranscriptLog()
        self.reserved_preset_ids: Set[int] = set(reserved_preset_ids)
        self.premise = ""
        self.key_points: List[str] = []
        self.key_point_index = 0
        self.evidence: List[EvidenceItem] = []
        self.personas: Dict[int, PersonaAgent] = {}
        self._used_preset_ids: Set[int] = set()

    # --- case assembly ---------------------------------------------------

    def create_case(
        self,
        premise: str,
        personas: Iterable[PersonaProfile] = (),
        evidence: Iterable[EvidenceItem] = (),
        key_points: Iterable[str] = (),
    ) -> CaseState:
        self.premise = premise
        self.key_points = list(key_points)
        self.key_point_index = 0
        self.evidence = []
        self.personas.clear()
        self._used_preset_ids.clear()
        for item in evidence:
            self.add_evidence(item)
        for profile in personas:
            self.add_persona(profile)
        logger.info(
            f"case_created | personas={len(self.personas)} evidence={len(self.evidence)} key_points={len(self.key_points)}"
        )
        return self.get_case_state()

    def add_evidence(self, item: EvidenceItem) -> None:
        if any(e.id == item.id for e in self.evidence):
            raise ConfigurationError(f"Duplicate evidence id {item.id!r}")
        self.evidence.append(item)

    def add_persona(self, profile: PersonaProfile) -> PersonaAgent:
        if profile.id in self.personas:
            raise ConfigurationError(f"Duplicate persona id {profile.id}")
        hydrated = self._ensure_preset(profile)
        agent = PersonaAgent(hydrated, self.catalog)
        self.personas[hydrated.id] = agent
        logger.debug(f"persona_added | id={agent.id} name={agent.name} role={agent.role.value} preset={agent.preset_id}")
        return agent

    def get_persona(self, persona_id: int) -> Optional[PersonaAgent]:
        return self.personas.get(persona_id)

    def bind_persona_channel(self, persona_id: int, channel: Optional[OutputChannel]) -> None:
        persona = self.personas.get(persona_id)
        if persona is None:
            raise ConfigurationError(f"Unknown persona id {persona_id}")
        persona.bind_channel(channel)

    def add_key_point(self, point: str) -> None:
        self.key_points.append(point)

    def current_key_point(self) -> Optional[str]:
        if self.key_point_index < len(self.key_points):
            return self.key_points[self.key_point_index]
        return None

    def advance_key_point(self) -> Optional[str]:
        if self.key_point_index < len(self.key_points) - 1:
            self.key_point_index += 1
        return self.current_key_point()

    def get_case_state(self) -> CaseState:
        return CaseState(
            premise=self.premise,
            key_points=list(self.key_points),
            key_point_index=self.key_point_index,
            evidence=list(self.evidence),
            personas=[p.snapshot() for p in self.personas.values()],
        )

    def candidates(self) -> List[SpeakerCandidate]:
        return [SpeakerCandidate(id=p.id, name=p.name, is_human=p.is_human) for p in self.personas.values()]

    # --- presets ---------------------------------------------------------

    def _ensure_preset(self, profile: PersonaProfile) -> PersonaProfile:
        if profile.is_human and profile.preset_id is None:
            return profile
        side = profile.role.preset_side
        preset_id = profile.preset_id

        # reserved presets belong to the player, so only AI personas are moved off them
        if preset_id is None or (preset_id in self.reserved_preset_ids and not profile.is_human):
            if preset_id is not None:
                logger.info(f"preset_reassigned | persona={profile.id} reserved={preset_id}")
            preset_id = self._pick_unused_preset(side)
        else:
            self.catalog.require(preset_id)
            if preset_id in self._used_preset_ids:
                raise ConfigurationError(f"Preset {preset_id} already claimed by another persona")
            self._used_preset_ids.add(preset_id)

        initial_pose = profile.initial_pose_id
        if initial_pose is None:
            initial_pose = self.catalog.first_pose_id(preset_id)
        return PersonaProfile(
            id=profile.id,
            name=profile.name,
            description=profile.description,
            is_human=profile.is_human,
            role=profile.role,
            preset_id=preset_id,
            initial_pose_id=initial_pose,
            disguised=profile.disguised,
        )

    def _pick_unused_preset(self, side: Optional[str]) -> int:
        if not len(self.catalog):
            raise ConfigurationError("Preset catalog is empty; load it before creating a case")
        for preset in self.catalog.by_side(side):
            if preset.id not in self._used_preset_ids and preset.id not in self.reserved_preset_ids:
                self._used_preset_ids.add(preset.id)
                return preset.id
        raise ConfigurationError(
            f"No unused presets available for side {side}" if side else "No unused presets available"
        )

    # --- beats -----------------------------------------------------------

    async def next_beat(self, request: BeatRequest) -> BeatResult:
        memories = {pid: [m.entry for m in p.get_memory(5)] for pid, p in self.personas.items()}
        evidence = request.evidence if request.evidence is not None else self.evidence
        candidates = request.candidates if request.candidates is not None else self.candidates()

        context = SelectionContext(
            story_prompt=self.premise,
            last_message=request.last_message,
            last_speaker_id=request.last_speaker_id,
            last_speaker_name=request.last_speaker_name,
            last_speaker_wants_continue=request.last_speaker_wants_continue,
            evidence_names=[e.name for e in evidence],
            memories=memories,
            transcript=self.transcript.render(self._role_lookup()),
        )
        speaker = await self.selector.choose_speaker(candidates, context)
        if speaker is None:
            self.governor.force_human_turn()
            return BeatResult()

        persona = self.personas.get(speaker.id)
        if persona is None:
            logger.warning(f"beat_unknown_speaker | id={speaker.id}")
            self.governor.complete_ai_turn()
            return BeatResult(speaker_id=speaker.id)

        logger.info(f"beat_start | speaker={persona.name} id={persona.id} remaining={self.governor.remaining}")
        prompt = request.prompt or self.build_prompt(request, persona, evidence)
        draft = await persona.generate_speech(prompt, self.service)

        if draft.text:
            try:
                await persona.apply_response(draft)
            except Exception as e:
                logger.warning(f"beat_delivery_failed | speaker={persona.name} id={persona.id} | {e}")
                draft = SpeechDraft()
            else:
                self.transcript.append(persona.id, persona.name, draft.text, persona.get_state())
                self._log_turn(persona, draft.text)
        else:
            logger.warning(f"beat_empty | speaker={persona.name} id={persona.id}")

        self.governor.complete_ai_turn()
        if draft.player_turn:
            logger.info("turn_management | AI requested player turn")
            self.governor.force_human_turn()

        return BeatResult(speaker_id=persona.id, text=draft.text, wants_continue=draft.continue_speech)

    def _role_lookup(self) -> Dict[str, str]:
        return {p.name: p.role.label for p in self.personas.values()}

    def build_prompt(
        self,
        request: BeatRequest,
        speaker: PersonaAgent,
        evidence: Optional[List[EvidenceItem]] = None,
    ) -> str:
        evidence = self.evidence if evidence is None else evidence
        # Only the prosecution narratively holds the evidence
        evidence_line = ""
        if speaker.role is Role.PROSECUTOR and evidence:
            evidence_line = f"Available evidence: {', '.join(e.name for e in evidence)}"

        digest = []
        for p in self.personas.values():
            mems = p.get_memory(3)
            if mems:
                digest.append(f"{p.name}: {'; '.join(m.entry for m in mems)}")

        transcript = self.transcript.render(self._role_lookup())
        current = self.current_key_point()

        if request.last_speaker_id is not None:
            last_speaker = f"Last speaker: {request.last_speaker_name or 'unknown'} (id {request.last_speaker_id})"
        else:
            last_speaker = "Last speaker: player"
        state = request.last_speaker_state
        count_line = ""
        if request.message_index and request.message_limit:
            count_line = f"AI message {request.message_index} of {request.message_limit}"

        blocks = [
            f"Story: {self.premise}",
            f"Key points: {' | '.join(self.key_points)}" if self.key_points else "",
            f"Current key point: {current}" if current else "",
            evidence_line,
            "Character memories:\n" + "\n".join(digest) if digest else "",
            f"Recent transcript:\n{transcript}" if transcript else "",
            last_speaker,
            f"Last speaker pose: {state.pose_id}, mood: {state.mood.value}" if state else "",
            f'Last message: "{request.last_message}"',
            count_line,
            _STYLE_LINE,
        ]
        return "\n".join(b for b in blocks if b)

    def _log_turn(self, persona: PersonaAgent, text: str) -> None:
        raw = text or ""
        snippet = raw if len(raw) <= 400 else raw[:400] + "..."
        one_line = " ".join(snippet.split())
        logger.info(
            f"ai_court_turn | spk={persona.name} id={persona.id} n={len(self.transcript)} "
            f"remaining={self.governor.remaining} | msg='{one_line}'"
        )
