from __future__ import annotations

from typing import Dict, List, Optional

from .states import PersonaState, TranscriptEntry


PROMPT_WINDOW = 20


class TranscriptLog:
    """Append-only record of every line spoken in the session.

    The whole log is kept; prompts only ever see the last ``window`` entries.
    """

    def __init__(self, window: int = PROMPT_WINDOW, human_label: str = "Defense (player)") -> None:
        self.window = max(1, window)
        self.human_label = human_label
        self._entries: List[TranscriptEntry] = []

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def entries(self) -> List[TranscriptEntry]:
        return list(self._entries)

    def append(
        self,
        speaker_id: Optional[int],
        speaker_name: str,
        text: str,
        state: Optional[PersonaState] = None,
    ) -> TranscriptEntry:
        entry = TranscriptEntry(
            sequence=len(self._entries) + 1,
            speaker_id=speaker_id,
            speaker_name=speaker_name,
            text=text,
            state=state,
        )
        self._entries.append(entry)
        return entry

    def recent(self, limit: Optional[int] = None) -> List[TranscriptEntry]:
        n = self.window if limit is None else max(0, min(limit, self.window))
        if n == 0:
            return []
        return self._entries[-n:]

    def render(self, role_lookup: Optional[Dict[str, str]] = None, limit: Optional[int] = None) -> str:
        lookup = role_lookup or {}
        lines = []
        for e in self.recent(limit):
            if e.is_human:
                who = self.human_label
            else:
                who = f"{e.speaker_name} ({lookup.get(e.speaker_name, 'Character')})"
            lines.append(f"{who}: {e.text}")
        return "\n".join(lines)
