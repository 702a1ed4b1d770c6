import asyncio
import itertools

import pytest

from courtroom.errors import ConfigurationError
from courtroom.manager import BeatRequest, CaseManager
from courtroom.presets import PresetCatalog
from courtroom.states import EvidenceItem, Mood, PersonaProfile, PersonaState, Role


EVIDENCE = [
    EvidenceItem(id="ev1", name="Autopsy Report", description="Single stab wound."),
    EvidenceItem(id="ev2", name="Bloody Umbrella", description="Found in the lobby."),
]


def _profiles():
    return [
        PersonaProfile(id=10, name="Judge", role=Role.JUDGE),
        PersonaProfile(id=4, name="Witness", role=Role.WITNESS),
    ]


def _scripted(fake_service, speakers, player_turn_on=None):
    picks = itertools.cycle(speakers)
    lines = itertools.count(1)

    def responder(prompt, contract):
        if "speakerId" in contract["properties"]:
            return {"speakerId": next(picks)}
        n = next(lines)
        return {
            "text": f"line {n}",
            "scene": {"poseId": "not-a-number", "emotion": "angry"},
            "playerTurn": n == player_turn_on,
            "memory": [f"memo {n}"],
        }

    return fake_service(responder)


def _bound_manager(catalog, service, channel_cls, profiles=None, evidence=()):
    manager = CaseManager(catalog, service=service)
    manager.create_case("A bank heist gone wrong", profiles or _profiles(), evidence)
    channels = {}
    for pid in manager.personas:
        channels[pid] = channel_cls()
        manager.bind_persona_channel(pid, channels[pid])
    return manager, channels


def test_create_case_assigns_presets_by_role(catalog):
    manager = CaseManager(catalog)
    state = manager.create_case("premise", _profiles(), EVIDENCE, key_points=["motive", "alibi"])
    by_id = {p.id: p for p in state.personas}
    assert by_id[10].preset_id == 10
    assert by_id[10].pose_id == 100
    assert by_id[4].preset_id == 4
    assert [e.id for e in state.evidence] == ["ev1", "ev2"]
    assert state.current_key_point == "motive"


def test_reserved_preset_is_reassigned(catalog):
    manager = CaseManager(catalog)
    manager.create_case("p", [PersonaProfile(id=6, name="Df", role=Role.DEFENDANT, preset_id=1)])
    assert manager.get_persona(6).preset_id == 6


def test_presets_are_not_shared(catalog):
    manager = CaseManager(catalog)
    manager.create_case("p", [
        PersonaProfile(id=1, name="W1", role=Role.WITNESS),
        PersonaProfile(id=2, name="W2", role=Role.WITNESS),
    ])
    assert {manager.get_persona(1).preset_id, manager.get_persona(2).preset_id} == {4, 5}


def test_duplicate_preset_claim_fails(catalog):
    manager = CaseManager(catalog)
    with pytest.raises(ConfigurationError):
        manager.create_case("p", [
            PersonaProfile(id=1, name="A", role=Role.WITNESS, preset_id=5),
            PersonaProfile(id=2, name="B", role=Role.WITNESS, preset_id=5),
        ])


def test_unknown_preset_and_exhausted_pool_fail(catalog):
    manager = CaseManager(catalog)
    with pytest.raises(ConfigurationError):
        manager.create_case("p", [PersonaProfile(id=1, name="A", preset_id=999)])
    with pytest.raises(ConfigurationError):
        manager.create_case("p", [
            PersonaProfile(id=1, name="J1", role=Role.JUDGE),
            PersonaProfile(id=2, name="J2", role=Role.JUDGE),
        ])


def test_empty_catalog_fails():
    manager = CaseManager(PresetCatalog([]))
    with pytest.raises(ConfigurationError):
        manager.create_case("p", [PersonaProfile(id=1, name="A", role=Role.JUDGE)])


def test_duplicate_ids_rejected(catalog):
    manager = CaseManager(catalog)
    with pytest.raises(ConfigurationError):
        manager.create_case("p", [PersonaProfile(id=1, name="A"), PersonaProfile(id=1, name="B")])
    with pytest.raises(ConfigurationError):
        manager.create_case("p", [], [EVIDENCE[0], EVIDENCE[0]])


def test_bind_unknown_persona_fails(catalog):
    manager = CaseManager(catalog)
    manager.create_case("p", _profiles())
    with pytest.raises(ConfigurationError):
        manager.bind_persona_channel(77, object())


def test_key_point_cursor_is_monotonic(catalog):
    manager = CaseManager(catalog)
    manager.create_case("p", [], key_points=["a", "b", "c"])
    assert manager.current_key_point() == "a"
    assert manager.advance_key_point() == "b"
    assert manager.advance_key_point() == "c"
    assert manager.advance_key_point() == "c"
    assert manager.get_case_state().key_point_index == 2


def test_evidence_visible_only_to_prosecutor(catalog):
    manager = CaseManager(catalog)
    manager.create_case("p", [
        PersonaProfile(id=2, name="Edgeworth", role=Role.PROSECUTOR),
        PersonaProfile(id=4, name="Witness", role=Role.WITNESS),
    ], EVIDENCE)
    request = BeatRequest(last_message="Where were you?")
    prosecutor_prompt = manager.build_prompt(request, manager.get_persona(2))
    witness_prompt = manager.build_prompt(request, manager.get_persona(4))
    assert "Autopsy Report" in prosecutor_prompt and "Bloody Umbrella" in prosecutor_prompt
    assert "Autopsy Report" not in witness_prompt
    assert "Bloody Umbrella" not in witness_prompt


def test_prompt_sections(catalog):
    manager = CaseManager(catalog)
    manager.create_case("Heist", _profiles(), key_points=["motive", "alibi"])
    manager.get_persona(4).add_memory("the vault was open")
    manager.transcript.append(None, "Phoenix", "Hold it!")
    request = BeatRequest(
        last_message="Hold it!",
        last_speaker_id=4,
        last_speaker_name="Witness",
        last_speaker_state=PersonaState(pose_id=41, preset_id=4, mood=Mood.NERVOUS),
        message_index=2,
        message_limit=4,
    )
    prompt = manager.build_prompt(request, manager.get_persona(10))
    assert "Story: Heist" in prompt
    assert "Key points: motive | alibi" in prompt
    assert "Current key point: motive" in prompt
    assert "Character memories:\nWitness: the vault was open" in prompt
    assert "Recent transcript:\nDefense (player): Hold it!" in prompt
    assert "Last speaker: Witness (id 4)" in prompt
    assert "Last speaker pose: 41, mood: nervous" in prompt
    assert 'Last message: "Hold it!"' in prompt
    assert "AI message 2 of 4" in prompt

    human_prompt = manager.build_prompt(BeatRequest(last_message="x"), manager.get_persona(10))
    assert "Last speaker: player" in human_prompt
    assert "AI message" not in human_prompt


def test_three_beats_close_window(catalog, fake_service, recording_channel):
    service = _scripted(fake_service, [10, 4])
    manager, channels = _bound_manager(catalog, service, recording_channel)
    manager.governor.begin_human_input(3)

    results = [asyncio.run(manager.next_beat(BeatRequest(last_message="I object!"))) for _ in range(3)]

    assert [r.speaker_id for r in results] == [10, 4, 10]
    assert [r.text for r in results] == ["line 1", "line 2", "line 3"]
    assert manager.governor.remaining == 0
    assert manager.governor.is_human_turn()
    assert [(e.speaker_id, e.text) for e in manager.transcript.entries] == [
        (10, "line 1"), (4, "line 2"), (10, "line 3"),
    ]
    assert channels[10].spoken() == ["line 1", "line 3"]
    # bad pose fell back to the persona's current pose
    assert manager.transcript.entries[0].state.pose_id == 100
    assert manager.get_persona(4).mood is Mood.ANGRY
    assert [m.entry for m in manager.get_persona(4).get_memory()] == ["memo 2"]


def test_player_turn_request_forces_human_turn(catalog, fake_service, recording_channel):
    service = _scripted(fake_service, [4], player_turn_on=1)
    manager, _ = _bound_manager(catalog, service, recording_channel)
    manager.governor.begin_human_input(4)
    result = asyncio.run(manager.next_beat(BeatRequest(last_message="Well?")))
    assert result.text == "line 1"
    assert manager.governor.is_human_turn()


def test_service_failure_never_raises(catalog, fake_service, recording_channel):
    manager, channels = _bound_manager(catalog, fake_service(fail=True), recording_channel)
    manager.governor.begin_human_input(3)
    result = asyncio.run(manager.next_beat(BeatRequest(last_message="Hello?")))
    assert result.text == ""
    assert manager.governor.is_human_turn()
    assert len(manager.transcript) == 0
    assert all(not c.events for c in channels.values())


def test_speech_failure_after_selection_still_advances(catalog, fake_service, recording_channel):
    def responder(prompt, contract):
        if "speakerId" in contract["properties"]:
            return {"speakerId": 4}
        raise RuntimeError("speech generation down")

    manager, _ = _bound_manager(catalog, fake_service(responder), recording_channel)
    manager.governor.begin_human_input(3)
    result = asyncio.run(manager.next_beat(BeatRequest(last_message="Hello?")))
    assert result.speaker_id == 4
    assert result.text == ""
    assert manager.governor.remaining == 2
    assert len(manager.transcript) == 0


def test_no_service_uses_fallback_and_yields_empty_text(catalog, recording_channel):
    manager, _ = _bound_manager(catalog, None, recording_channel)
    manager.governor.begin_human_input(2)
    result = asyncio.run(manager.next_beat(BeatRequest(last_message="Hi")))
    assert result.speaker_id == 10
    assert result.text == ""
    assert manager.governor.remaining == 1


def test_human_turn_returns_empty_result(catalog, fake_service, recording_channel):
    service = _scripted(fake_service, [10])
    manager, _ = _bound_manager(catalog, service, recording_channel)
    result = asyncio.run(manager.next_beat(BeatRequest(last_message="Hi")))
    assert result.speaker_id is None and result.text == ""
    assert service.calls == []


def test_continuation_request_keeps_speaker(catalog, fake_service, recording_channel):
    service = _scripted(fake_service, [10])
    manager, _ = _bound_manager(catalog, service, recording_channel)
    manager.governor.begin_human_input(2)
    result = asyncio.run(manager.next_beat(BeatRequest(
        last_message="Explain!", last_speaker_id=4, last_speaker_name="Witness", last_speaker_wants_continue=True,
    )))
    assert result.speaker_id == 4


def test_explicit_prompt_is_used(catalog, fake_service, recording_channel):
    service = _scripted(fake_service, [10])
    manager, _ = _bound_manager(catalog, service, recording_channel)
    manager.governor.open_window(1)
    asyncio.run(manager.next_beat(BeatRequest(prompt="Open the session.")))
    speech_prompt = service.speech_prompts()[0]
    assert "Prompt:\nOpen the session." in speech_prompt
    assert "Story: A bank heist" not in speech_prompt


def test_case_state_to_dict(catalog):
    manager = CaseManager(catalog)
    manager.create_case("p", _profiles(), EVIDENCE)
    data = manager.get_case_state().to_dict()
    assert data["personas"][0]["role"] == "judge"
    assert data["personas"][0]["mood"] == "neutral"
    assert data["evidence"][1]["name"] == "Bloody Umbrella"


class BrokenChannel:
    def __init__(self):
        self.identities = []

    async def change_identity(self, name):
        self.identities.append(name)

    async def send_message(self, text, pose_id, preset_id):
        raise ConnectionError("socket closed")

    async def send_plain_message(self, text):
        raise ConnectionError("socket closed")


def test_channel_failure_is_an_empty_beat(catalog, fake_service):
    def responder(prompt, contract):
        if "speakerId" in contract["properties"]:
            return {"speakerId": 4}
        return {"text": "I saw nothing", "memory": ["lied about alibi"], "playerTurn": True}

    manager = CaseManager(catalog, service=fake_service(responder))
    manager.create_case("A bank heist gone wrong", _profiles())
    for pid in manager.personas:
        manager.bind_persona_channel(pid, BrokenChannel())
    manager.governor.begin_human_input(3)

    result = asyncio.run(manager.next_beat(BeatRequest(last_message="Where were you?")))

    assert result.speaker_id == 4
    assert result.text == ""
    assert manager.governor.remaining == 2
    assert not manager.governor.is_human_turn()
    assert len(manager.transcript) == 0
    witness = manager.get_persona(4)
    assert witness.get_recent_speech() == []
    assert witness.get_memory() == []


def test_human_keeps_reserved_preset(catalog):
    manager = CaseManager(catalog)
    manager.create_case("p", [
        PersonaProfile(id=99, name="Phoenix", is_human=True, preset_id=1),
        PersonaProfile(id=6, name="Df", role=Role.DEFENDANT, preset_id=1),
    ])
    assert manager.get_persona(99).preset_id == 1
    assert manager.get_persona(99).pose_id == 1
    assert manager.get_persona(6).preset_id == 6
