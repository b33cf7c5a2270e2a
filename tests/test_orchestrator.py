import asyncio
import json

import pytest

from errors import ModelEmptyResponse, SessionNotFound, TimeoutFailure
from forms.schema import DocumentType
from graph.llm import ModelReply
from services.eligibility import EligibilityResult
from conftest import tool_call

D1919 = DocumentType.SBA_1919
D413 = DocumentType.SBA_413


@pytest.fixture
async def linked_session(sessions, applications):
    session = await sessions.create("tester")
    draft = await applications.create_draft({"businessName": "Acme"}, EligibilityResult(score=80, chance="high"))
    await sessions.link_application(session.session_id, draft.application_id)
    return session.session_id, draft.application_id


async def test_plain_reply_uses_one_model_call(make_orchestrator, sessions):
    orchestrator, model = make_orchestrator([ModelReply(text="Hi! How can I help?")])
    session = await orchestrator.create_session()

    result = await orchestrator.handle_message(session.session_id, "hello")

    assert result.reply == "Hi! How can I help?"
    assert result.model_calls == 1
    assert result.tool_results == []
    assert result.fields is None
    assert len(model.calls) == 1

    stored = await sessions.get(session.session_id)
    assert [m.role for m in stored.messages] == ["user", "assistant"]
    assert stored.messages[0].content == "hello"


async def test_tool_turn_makes_two_model_calls_and_second_sees_all_results(make_orchestrator, sessions, linked_session):
    session_id, application_id = linked_session
    orchestrator, model = make_orchestrator([
        ModelReply(tool_calls=[
            tool_call("captureUnifiedField", {"unifiedName": "applicantName", "value": "Ada"}, "c1"),
            tool_call("captureUnifiedField", {"unifiedName": "businessPhone", "value": "555-0100"}, "c2"),
        ]),
        ModelReply(text="Got your name and phone."),
    ])

    result = await orchestrator.handle_message(session_id, "I'm Ada, phone 555-0100")

    assert result.model_calls == 2
    assert [r["id"] for r in result.tool_results] == ["c1", "c2"]
    assert all(r["success"] for r in result.tool_results)
    assert result.application_id == application_id
    assert result.fields["SBA_1919"]["fields"]["applicantname"] == "Ada"

    second_messages = model.calls[1]["messages"]
    tool_messages = [m for m in second_messages if m.role == "tool"]
    assert [m.tool_call_id for m in tool_messages] == ["c1", "c2"]
    assert json.loads(tool_messages[0].content)["success"] is True

    stored = await sessions.get(session_id)
    assert [m.role for m in stored.messages] == ["user", "assistant", "tool", "tool", "assistant"]
    assert [c.id for c in stored.messages[1].tool_calls] == ["c1", "c2"]


async def test_second_pass_context_reflects_tool_effects(make_orchestrator, linked_session):
    session_id, _ = linked_session
    orchestrator, model = make_orchestrator([
        ModelReply(tool_calls=[tool_call("captureUnifiedField", {"unifiedName": "applicantName", "value": "Ada"})]),
        ModelReply(text="Thanks."),
    ])
    await orchestrator.handle_message(session_id, "Ada")

    before, after = model.calls[0]["context"], model.calls[1]["context"]
    assert "## CURRENT STATE" in before
    assert before != after


async def test_invalid_tool_call_is_reported_back_to_the_model(make_orchestrator, sessions):
    orchestrator, model = make_orchestrator([
        ModelReply(tool_calls=[tool_call("launchRocket", {"target": "moon"})]),
        ModelReply(text="Sorry, I can't do that."),
    ])
    session = await orchestrator.create_session()

    result = await orchestrator.handle_message(session.session_id, "launch")

    assert result.reply == "Sorry, I can't do that."
    assert not result.tool_results[0]["success"]
    assert result.tool_results[0]["message"] == "Unknown tool: launchRocket"


async def test_tool_turn_persists_form_and_publishes_snapshot(make_orchestrator, field_store, broadcaster, linked_session):
    session_id, application_id = linked_session
    orchestrator, _ = make_orchestrator([
        ModelReply(tool_calls=[tool_call("captureCheckboxSelection", {"group": "entity", "value": "S-Corp"})]),
        ModelReply(text="Noted, S-Corp."),
    ])

    await orchestrator.handle_message(session_id, "We're an S corp")

    assert field_store.data[(application_id, D1919)]["scorp"] is True
    assert field_store.data[(application_id, D413)]["businessTypeSCorp"] is True
    event, payload, rooms = broadcaster.named("pdf-fields-update")[-1]
    assert payload["applicationId"] == application_id
    assert payload["forms"]["SBA_413"]["fields"]["businessTypeSCorp"] is True
    assert rooms == ["global", session_id]


async def test_application_id_on_request_links_session(make_orchestrator, sessions, applications, forms):
    draft = await applications.create_draft({}, EligibilityResult(score=50, chance="medium"))
    orchestrator, _ = make_orchestrator([ModelReply(text="Welcome back.")])
    session = await orchestrator.create_session()

    result = await orchestrator.handle_message(session.session_id, "continue", application_id=draft.application_id)

    assert result.application_id == draft.application_id
    assert forms.has(draft.application_id)
    assert (await sessions.get(session.session_id)).application_id == draft.application_id


async def test_empty_first_pass_fails_turn(make_orchestrator, sessions):
    orchestrator, _ = make_orchestrator([ModelReply(text="")])
    session = await orchestrator.create_session()

    with pytest.raises(ModelEmptyResponse):
        await orchestrator.handle_message(session.session_id, "hello?")

    stored = await sessions.get(session.session_id)
    assert [m.role for m in stored.messages] == ["user"]


async def test_empty_second_pass_fails_turn_but_keeps_tool_effects(make_orchestrator, sessions, forms, linked_session):
    session_id, application_id = linked_session
    orchestrator, _ = make_orchestrator([
        ModelReply(tool_calls=[tool_call("captureUnifiedField", {"unifiedName": "applicantName", "value": "Ada"})]),
        ModelReply(text=""),
    ])

    with pytest.raises(ModelEmptyResponse):
        await orchestrator.handle_message(session_id, "Ada")

    stored = await sessions.get(session_id)
    assert [m.role for m in stored.messages] == ["user"]
    state = forms.get(application_id)
    assert state.entry(D1919).all_fields["applicantname"] == "Ada"
    assert state.dirty


async def test_model_timeout_fails_turn(make_orchestrator, sessions):
    orchestrator, model = make_orchestrator([], timeout=0.01)

    async def slow(messages, context):
        await asyncio.sleep(1)

    model.generate = slow
    session = await orchestrator.create_session()

    with pytest.raises(TimeoutFailure):
        await orchestrator.handle_message(session.session_id, "hello")


async def test_unknown_session(make_orchestrator):
    orchestrator, _ = make_orchestrator([])
    with pytest.raises(SessionNotFound):
        await orchestrator.handle_message("nope", "hello")
    with pytest.raises(SessionNotFound):
        await orchestrator.get_session("nope")


async def test_turns_on_one_session_are_serialized(make_orchestrator):
    orchestrator, model = make_orchestrator([])
    active = 0
    peak = 0

    async def generate(messages, context):
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0.01)
        active -= 1
        return ModelReply(text="ok")

    model.generate = generate
    session = await orchestrator.create_session()

    await asyncio.gather(*(orchestrator.handle_message(session.session_id, f"m{i}") for i in range(3)))
    assert peak == 1


async def test_inactivity_timer_saves_and_regenerates(make_orchestrator, scheduler, renderer, broadcaster, linked_session):
    session_id, application_id = linked_session
    orchestrator, _ = make_orchestrator([ModelReply(text="Hello again.")])

    await orchestrator.handle_message(session_id, "hi")
    assert orchestrator.timers.pending(session_id)

    await scheduler.advance(29)
    assert renderer.calls == []

    await scheduler.advance(1)
    assert renderer.calls == [application_id]
    assert broadcaster.named("preview-regenerated")
    assert not orchestrator.timers.pending(session_id)


async def test_new_turn_resets_inactivity_timer(make_orchestrator, scheduler, renderer, linked_session):
    session_id, _ = linked_session
    orchestrator, _ = make_orchestrator([ModelReply(text="one"), ModelReply(text="two")])

    await orchestrator.handle_message(session_id, "first")
    await scheduler.advance(20)
    await orchestrator.handle_message(session_id, "second")
    await scheduler.advance(20)
    assert renderer.calls == []

    await scheduler.advance(10)
    assert len(renderer.calls) == 1


async def test_delete_session_cancels_timer_and_flushes_form(make_orchestrator, scheduler, renderer, field_store,
                                                             forms, sessions, linked_session):
    session_id, application_id = linked_session
    orchestrator, _ = make_orchestrator([
        ModelReply(tool_calls=[tool_call("captureUnifiedField", {"unifiedName": "applicantName", "value": "Ada"})]),
        ModelReply(text="Thanks"),
    ])
    await orchestrator.handle_message(session_id, "Ada")

    await orchestrator.delete_session(session_id)

    assert not forms.has(application_id)
    assert await sessions.get(session_id) is None
    await scheduler.advance(60)
    assert renderer.calls == []
    assert field_store.data[(application_id, D1919)]["applicantname"] == "Ada"


async def test_timer_job_after_form_session_ended_is_a_no_op(make_orchestrator, scheduler, renderer, forms, linked_session):
    session_id, application_id = linked_session
    orchestrator, _ = make_orchestrator([ModelReply(text="hi")])
    await orchestrator.handle_message(session_id, "hi")

    # Ending the form session directly (not via the orchestrator) leaves the timer armed.
    await forms.end(application_id)
    await scheduler.advance(30)
    assert renderer.calls == []


async def test_finalize(make_orchestrator, renderer, broadcaster, linked_session):
    session_id, application_id = linked_session
    orchestrator, _ = make_orchestrator([])

    result = await orchestrator.finalize(session_id)

    assert result["saved"]
    assert result["applicationId"] == application_id
    assert renderer.calls == [application_id]
    assert broadcaster.named("preview-regenerated")


async def test_finalize_without_application(make_orchestrator):
    orchestrator, _ = make_orchestrator([])
    session = await orchestrator.create_session()
    result = await orchestrator.finalize(session.session_id)
    assert not result["saved"]
    assert result["artifacts"] == []


async def test_field_snapshot(make_orchestrator, linked_session):
    session_id, application_id = linked_session
    orchestrator, _ = make_orchestrator([])
    snapshot = await orchestrator.field_snapshot(session_id)
    assert snapshot["applicationId"] == application_id
    assert snapshot["progress"] == {"SBA_1919": 0, "SBA_413": 0}


async def test_shutdown_flushes_every_form_session(make_orchestrator, forms, field_store, linked_session):
    session_id, application_id = linked_session
    orchestrator, _ = make_orchestrator([
        ModelReply(tool_calls=[tool_call("captureHighlightField", {"field": "dba", "text": "Acme Co"})]),
        ModelReply(text="ok"),
    ])
    await orchestrator.handle_message(session_id, "dba Acme Co")
    forms.update_field(application_id, D413, "homePhone", "555-0199")

    await orchestrator.shutdown()

    assert forms.active_ids() == []
    assert field_store.data[(application_id, D413)]["homePhone"] == "555-0199"


async def test_end_form_session_stops_pending_timer(make_orchestrator, scheduler, renderer, forms, linked_session):
    session_id, application_id = linked_session
    orchestrator, _ = make_orchestrator([ModelReply(text="hi")])
    await orchestrator.handle_message(session_id, "hi")
    assert orchestrator.timers.pending(session_id)

    assert await orchestrator.end_form_session(session_id)

    assert not forms.has(application_id)
    assert not orchestrator.timers.pending(session_id)
    await scheduler.advance(120)
    assert renderer.calls == []


async def test_turn_waits_for_inactivity_save_in_flight(make_orchestrator, scheduler, forms, field_store, linked_session):
    session_id, application_id = linked_session
    orchestrator, model = make_orchestrator([
        ModelReply(text="hi"),
        ModelReply(tool_calls=[tool_call("captureUnifiedField", {"unifiedName": "businessPhone", "value": "555-0100"})]),
        ModelReply(text="Saved your phone."),
    ])
    await orchestrator.handle_message(session_id, "hi")
    forms.update_field(application_id, D1919, "applicantname", "Ada")

    gate, entered = asyncio.Event(), asyncio.Event()
    save_fields = field_store.save_fields

    async def gated(*args):
        entered.set()
        await gate.wait()
        await save_fields(*args)

    field_store.save_fields = gated
    timer = asyncio.create_task(scheduler.advance(30))
    await entered.wait()
    turn = asyncio.create_task(orchestrator.handle_message(session_id, "phone 555-0100"))
    await asyncio.sleep(0.01)
    assert len(model.calls) == 1

    gate.set()
    await timer
    await turn

    assert not forms.get(application_id).dirty
    assert field_store.data[(application_id, D1919)]["applicantname"] == "Ada"
    assert field_store.data[(application_id, D1919)]["busphone"] == "555-0100"


async def test_relinking_ends_previous_form_session(make_orchestrator, forms, applications, linked_session):
    session_id, first = linked_session
    orchestrator, _ = make_orchestrator([ModelReply(text="one"), ModelReply(text="two")])
    await orchestrator.handle_message(session_id, "hi")
    assert forms.active_ids() == [first]
    second = await applications.create_draft({}, EligibilityResult(score=50, chance="medium"))

    await orchestrator.handle_message(session_id, "switch", application_id=second.application_id)
    assert forms.active_ids() == [second.application_id]

    await orchestrator.delete_session(session_id)
    assert forms.active_ids() == []


async def test_field_snapshot_does_not_open_a_form_session(make_orchestrator, forms, field_store, linked_session):
    session_id, application_id = linked_session
    field_store.data[(application_id, D1919)] = {"applicantname": "Ada"}
    orchestrator, _ = make_orchestrator([])

    snapshot = await orchestrator.field_snapshot(session_id)

    assert snapshot["forms"]["SBA_1919"]["fields"]["applicantname"] == "Ada"
    assert not forms.has(application_id)


async def test_unknown_session_leaves_no_lock_behind(make_orchestrator):
    orchestrator, _ = make_orchestrator([])
    for call in (
        orchestrator.handle_message("ghost", "hi"),
        orchestrator.finalize("ghost"),
        orchestrator.end_form_session("ghost"),
        orchestrator.delete_session("ghost"),
    ):
        with pytest.raises(SessionNotFound):
            await call
    assert orchestrator._locks == {}
