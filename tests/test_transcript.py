from courtroom.states import Mood, PersonaState
from courtroom.transcript import PROMPT_WINDOW, TranscriptLog


def test_append_keeps_order_and_full_history():
    log = TranscriptLog()
    for i in range(30):
        log.append(4, "Witness", f"line {i}")
    assert len(log) == 30
    assert [e.sequence for e in log.entries][:3] == [1, 2, 3]
    recent = log.recent()
    assert len(recent) == PROMPT_WINDOW
    assert recent[0].text == "line 10"
    assert recent[-1].text == "line 29"


def test_recent_limit_never_exceeds_window():
    log = TranscriptLog(window=3)
    for i in range(5):
        log.append(None, "Phoenix", f"p{i}")
    assert [e.text for e in log.recent(10)] == ["p2", "p3", "p4"]
    assert log.recent(0) == []


def test_render_labels_roles_and_human():
    log = TranscriptLog()
    log.append(None, "Phoenix", "Objection!")
    log.append(2, "Edgeworth", "Overruled, surely.", PersonaState(pose_id=20, preset_id=2, mood=Mood.HAPPY))
    log.append(7, "Stranger", "...")
    text = log.render({"Edgeworth": "Prosecutor"})
    assert text.splitlines() == [
        "Defense (player): Objection!",
        "Edgeworth (Prosecutor): Overruled, surely.",
        "Stranger (Character): ...",
    ]
    assert log.entries[0].is_human
    assert log.entries[1].state.mood is Mood.HAPPY
