"""
Courtroom dialogue engine: one human Defense player, several AI personas.

Modules:
- governor: TurnGovernor human-turn / AI-window state machine
- selector: SpeakerSelector continuation -> AI pick -> least-recently-spoken
- agents: PersonaAgent context building + structured reply handling
- transcript: TranscriptLog bounded prompt window over the full log
- manager: CaseManager case state + one-beat orchestration
- session: TrialSession AI window loop and session opening
- generator: premise / evidence / persona generation with fallbacks
- presets: PresetCatalog read-only preset lookup
- channel: OutputChannel interface + console adapter
- llm: ContentService over a LangChain OpenAI chat client
"""

from .errors import ConfigurationError, ContentServiceError, PersonaNotBoundError
from .governor import TurnGovernor
from .manager import BeatRequest, BeatResult, CaseManager
from .selector import SelectionContext, SpeakerSelector
from .session import TrialSession
from .transcript import TranscriptLog

__all__ = [
    "BeatRequest",
    "BeatResult",
    "CaseManager",
    "ConfigurationError",
    "ContentServiceError",
    "PersonaNotBoundError",
    "SelectionContext",
    "SpeakerSelector",
    "TranscriptLog",
    "TrialSession",
    "TurnGovernor",
]
