from __future__ import annotations

import re
from typing import Any, Dict, List, Optional

from loguru import logger

from .presets import PresetCatalog
from .states import EvidenceItem, PersonaProfile, Role


FALLBACK_PREMISE = (
    "You are orchestrating an Ace Attorney style trial. Keep dialogue concise and paced for live chat."
)

FALLBACK_EVIDENCE = [
    EvidenceItem(
        id="ev1",
        name="Autopsy Report",
        description="Time of death approx. 2 AM; single stab wound.",
    ),
    EvidenceItem(
        id="ev2",
        name="Security Photo",
        description="Blurry photo of a figure entering the lobby at 1:45 AM.",
    ),
]


def fallback_personas() -> List[PersonaProfile]:
    return [
        PersonaProfile(id=2, name="Miles Edgeworth", description="Sharply analytical prosecutor AI.", role=Role.PROSECUTOR),
        PersonaProfile(id=10, name="Judge", description="Even-handed AI judge.", role=Role.JUDGE),
        PersonaProfile(id=4, name="Witness", description="AI witness with a shaky memory.", role=Role.WITNESS),
        PersonaProfile(id=5, name="Defendant", description="Nervous AI defendant.", role=Role.DEFENDANT),
    ]


_PREMISE_CONTRACT: Dict[str, Any] = {
    "type": "object",
    "required": ["prompt"],
    "properties": {"prompt": {"type": "string"}},
}

_EVIDENCE_CONTRACT: Dict[str, Any] = {
    "type": "array",
    "items": {
        "type": "object",
        "required": ["id", "name", "description", "type", "url"],
        "properties": {
            "id": {"type": "string"},
            "name": {"type": "string"},
            "description": {
                "type": "string",
                "description": (
                    "Describe the piece of evidence. What is it? Where was it found? Do not post advice, "
                    "storylines or instructions for the player. Max 2 short paragraphs."
                ),
            },
            "type": {"type": "string", "enum": ["image", "video"]},
            "url": {"type": "string"},
        },
    },
    "minItems": 4,
    "maxItems": 8,
}

_PERSONA_CONTRACT: Dict[str, Any] = {
    "type": "array",
    "items": {
        "type": "object",
        "required": ["id", "name", "description", "role"],
        "properties": {
            "id": {"type": "number"},
            "name": {"type": "string"},
            "description": {"type": "string", "maxLength": 314},
            "role": {"type": "string", "enum": ["Prosecutor", "Judge", "Witness", "Defendant"]},
            "disguised": {
                "type": "boolean",
                "description": "True for the disguised character. Cannot be true for Prosecutor nor Judge.",
            },
        },
    },
    "minItems": 5,
    "maxItems": 8,
}


def _append_extra(base: str, extra: str) -> str:
    if not extra:
        return base.strip()
    return f"{base.strip()} {extra.strip()}".strip()


def _sanitize_premise(text: Any) -> str:
    if not isinstance(text, str):
        return ""
    trimmed = text.strip().strip("`").strip()
    if not trimmed:
        return ""
    return re.split(r"\n+", trimmed)[0].strip()


async def generate_case_premise(service: Any, extra_text: str = "") -> str:
    fallback = _append_extra(FALLBACK_PREMISE, extra_text)
    if service is None:
        return fallback
    prompt = "\n".join(
        line
        for line in [
            "Create a trial premise for an Ace Attorney style scene. Max 2 long paragraphs describing the case, "
            "the crime (what did the defendant do?), and the crime scene. Do NOT write plot, previous trials, "
            "court dialogue, or previous story events.",
            "Must include: Prosecutor Miles Edgeworth, a Judge, one or more Witnesses, and a Defendant. "
            "The player is the Defense (Phoenix Wright). Add an extra character disguised as witness or "
            "defendant to create intrigue or conflict.",
            "Plain text only, no markdown.",
            f"Also include: {extra_text}" if extra_text else "",
        ]
        if line
    )
    try:
        raw = await service.generate_json(prompt, _PREMISE_CONTRACT)
    except Exception as e:
        logger.error(f"generate_case_premise failed, using fallback: {e}")
        return fallback
    clean = _sanitize_premise(raw.get("prompt") if isinstance(raw, dict) else raw)
    return _append_extra(clean, extra_text) if clean else fallback


async def generate_evidence(service: Any, extra_text: str = "") -> List[EvidenceItem]:
    if service is None:
        return list(FALLBACK_EVIDENCE)
    prompt = "\n".join(
        line
        for line in [
            "Return a JSON array of evidence items for an Ace Attorney style trial. "
            "Must include something like an autopsy report describing the victim.",
            "Each item fields: id (slug), name, description, type ('image' or 'video'), url (may be empty).",
            "Keep it concise; no markdown.",
            f"Also include: {extra_text}" if extra_text else "",
        ]
        if line
    )
    try:
        raw = await service.generate_json(prompt, _EVIDENCE_CONTRACT)
    except Exception as e:
        logger.error(f"generate_evidence failed, using fallback: {e}")
        return list(FALLBACK_EVIDENCE)
    if not isinstance(raw, list):
        return list(FALLBACK_EVIDENCE)

    items: List[EvidenceItem] = []
    seen = set()
    for entry in raw:
        item = EvidenceItem.from_payload(entry)
        if item is None:
            continue
        base, n = item.id, 2
        while item.id in seen:
            item.id = f"{base}-{n}"
            n += 1
        seen.add(item.id)
        items.append(item)
    return items or list(FALLBACK_EVIDENCE)


def _persona_prompt(storyline: str, catalog: Optional[PresetCatalog]) -> str:
    witness_ids = catalog.possible_witness_ids() if catalog is not None else []
    lines = [
        "Roles required: Prosecutor (name MUST be 'Miles Edgeworth'), Judge, Witness (generate a name and "
        "append ' - Wt'), Defendant/Accused (generate a name and append ' - Df'). An extra character "
        "disguised as witness or defendant must be generated to add mystery to the case. Do not generate a "
        "character for the player (Defense, Phoenix Wright).",
        "Tone: Ace Attorney-inspired.",
    ]
    if witness_ids:
        lines.append(
            "Possible witness preset ids: " + ", ".join(witness_ids)
            + ". Put one in characterId for each witness or defendant (must not repeat)."
        )
    lines.append(f"Storyline: {storyline}")
    return "\n".join(lines)


async def generate_personas(
    service: Any,
    storyline: str,
    catalog: Optional[PresetCatalog] = None,
) -> List[PersonaProfile]:
    if service is None:
        return fallback_personas()
    try:
        raw = await service.generate_json(_persona_prompt(storyline, catalog), _PERSONA_CONTRACT)
    except Exception as e:
        logger.error(f"generate_personas failed, using fallback: {e}")
        return fallback_personas()
    if not isinstance(raw, list) or not raw:
        return fallback_personas()

    profiles: List[PersonaProfile] = []
    seen_ids = set()
    seen_presets = set()
    for entry in raw:
        profile = PersonaProfile.from_payload(entry)
        if profile is None or profile.id in seen_ids:
            continue
        profile.is_human = False
        # Drop model-suggested presets that are unknown or repeated; the case assigns a fresh one
        if profile.preset_id is not None and (
            catalog is None or profile.preset_id not in catalog or profile.preset_id in seen_presets
        ):
            profile.preset_id = None
        if profile.preset_id is not None:
            seen_presets.add(profile.preset_id)
        if profile.disguised and profile.role in (Role.PROSECUTOR, Role.JUDGE):
            profile.disguised = False
        seen_ids.add(profile.id)
        profiles.append(profile)
    logger.info(f"personas_generated | count={len(profiles)}")
    return profiles or fallback_personas()
