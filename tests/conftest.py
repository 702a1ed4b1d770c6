import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from courtroom.presets import PresetCatalog  # noqa: E402


PRESETS = [
    {"id": 1, "name": "Phoenix Wright", "side": "defense", "poses": [{"id": 1, "name": "Normal"}, {"id": 2, "name": "Point"}]},
    {"id": 2, "name": "Miles Edgeworth", "side": "prosecution", "poses": [{"id": 20, "name": "Normal"}, {"id": 21, "name": "Smirk"}, {"id": 22, "name": "Slam"}]},
    {"id": 3, "name": "Franziska", "side": "prosecution", "poses": [{"id": 30, "name": "Whip"}]},
    {"id": 10, "name": "Judge", "side": "judge", "poses": [{"id": 100, "name": "Normal"}, {"id": 101, "name": "Surprised"}]},
    {"id": 4, "name": "Larry", "side": "witness", "poses": [{"id": 40, "name": "Normal"}, {"id": 41, "name": "Sweat"}]},
    {"id": 5, "name": "Oldbag", "side": "witness", "poses": [{"id": 50, "name": "Normal"}]},
    {"id": 6, "name": "Maya", "side": "defense", "poses": [{"id": 60, "name": "Normal"}]},
    {"id": 7, "name": "Gumshoe", "side": "defense", "poses": [{"id": 70, "name": "Normal"}]},
]


def is_speaker_contract(contract: Dict[str, Any]) -> bool:
    return "speakerId" in contract.get("properties", {})


class FakeService:
    """Stands in for the generative service; answers through ``responder``."""

    def __init__(self, responder: Optional[Callable[[str, Dict[str, Any]], Any]] = None, fail: bool = False):
        self.responder = responder
        self.fail = fail
        self.calls: List[Tuple[str, Dict[str, Any]]] = []

    async def generate_json(self, prompt: str, contract: Dict[str, Any]) -> Any:
        self.calls.append((prompt, contract))
        if self.fail:
            raise RuntimeError("service unavailable")
        if self.responder is None:
            return {}
        return self.responder(prompt, contract)

    def speech_prompts(self) -> List[str]:
        return [p for p, c in self.calls if not is_speaker_contract(c)]


class RecordingChannel:
    def __init__(self):
        self.events: List[Tuple[str, Any]] = []

    async def change_identity(self, name):
        self.events.append(("identity", name))

    async def send_message(self, text, pose_id, preset_id):
        self.events.append(("speak", (text, pose_id, preset_id)))

    async def send_plain_message(self, text):
        self.events.append(("plain", text))

    def spoken(self) -> List[str]:
        return [payload[0] for kind, payload in self.events if kind == "speak"]


@pytest.fixture()
def catalog() -> PresetCatalog:
    return PresetCatalog.from_dicts(PRESETS)


@pytest.fixture()
def fake_service():
    return FakeService


@pytest.fixture()
def recording_channel():
    return RecordingChannel
