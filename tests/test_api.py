import pytest
from fastapi.testclient import TestClient

from forms.schema import DocumentType
from graph.llm import ModelReply
from main import create_app
from conftest import tool_call


@pytest.fixture
def client_for(make_orchestrator):
    def _client(replies, **kwargs):
        orchestrator, model = make_orchestrator(replies, **kwargs)
        return TestClient(create_app(orchestrator)), model
    return _client


def _create_session(client) -> str:
    response = client.post("/api/chat/sessions", json={"ownerRef": "web"})
    assert response.status_code == 201
    body = response.json()
    assert body["success"]
    assert body["session"]["owner_ref"] == "web"
    return body["session"]["session_id"]


def test_chat_round_trip(client_for):
    client, _ = client_for([ModelReply(text="Hello! Are you buying or do you own a business?")])
    session_id = _create_session(client)

    response = client.post(f"/api/chat/sessions/{session_id}/messages", json={"message": "hi"})

    assert response.status_code == 200
    body = response.json()
    assert body["reply"].startswith("Hello!")
    assert body["sessionId"] == session_id
    assert body["toolResults"] == []
    assert body["fields"] is None
    assert body["conversationEnded"] is False

    messages = client.get(f"/api/chat/sessions/{session_id}/messages").json()["messages"]
    assert [m["role"] for m in messages] == ["user", "assistant"]


def test_tool_turn_over_http(client_for):
    client, _ = client_for([
        ModelReply(tool_calls=[tool_call("detectConversationFlow", {"flow": "new_application"})]),
        ModelReply(text="Great, let's start a new application."),
    ])
    session_id = _create_session(client)

    body = client.post(f"/api/chat/sessions/{session_id}/messages", json={"message": "new loan please"}).json()

    assert body["toolResults"][0]["name"] == "detectConversationFlow"
    user_data = client.get(f"/api/chat/sessions/{session_id}/userData").json()
    assert user_data["userData"]["conversationFlow"] == "new_application"
    assert user_data["applicationId"] is None


def test_unknown_session_is_404(client_for):
    client, _ = client_for([])
    for response in (
        client.get("/api/chat/sessions/ghost"),
        client.post("/api/chat/sessions/ghost/messages", json={"message": "hi"}),
        client.delete("/api/chat/sessions/ghost"),
    ):
        assert response.status_code == 404
        assert response.json() == {"success": False, "error": "Session not found: ghost"}


def test_empty_message_is_rejected(client_for):
    client, _ = client_for([])
    session_id = _create_session(client)
    response = client.post(f"/api/chat/sessions/{session_id}/messages", json={"message": ""})
    assert response.status_code == 422


def test_empty_model_reply_is_502(client_for):
    client, _ = client_for([ModelReply(text="")])
    session_id = _create_session(client)
    response = client.post(f"/api/chat/sessions/{session_id}/messages", json={"message": "hi"})
    assert response.status_code == 502
    assert response.json()["success"] is False


def test_fields_and_finalize_without_application(client_for):
    client, _ = client_for([])
    session_id = _create_session(client)

    assert client.get(f"/api/chat/sessions/{session_id}/fields").json() == {"success": True, "fields": None}
    body = client.post(f"/api/chat/sessions/{session_id}/finalize").json()
    assert body["success"]
    assert body["saved"] is False


def test_delete_session(client_for):
    client, _ = client_for([])
    session_id = _create_session(client)
    assert client.delete(f"/api/chat/sessions/{session_id}").json() == {"success": True}
    assert client.get(f"/api/chat/sessions/{session_id}").status_code == 404


async def test_get_fields_does_not_open_a_form_session(client_for, sessions, forms, field_store):
    client, _ = client_for([])
    session = await sessions.create("web")
    await sessions.link_application(session.session_id, "app-9")
    field_store.data[("app-9", DocumentType.SBA_1919)] = {"applicantname": "Ada"}

    fields = client.get(f"/api/chat/sessions/{session.session_id}/fields").json()["fields"]
    client.get(f"/api/chat/sessions/{session.session_id}")

    assert fields["applicationId"] == "app-9"
    assert fields["forms"]["SBA_1919"]["fields"]["applicantname"] == "Ada"
    assert not forms.has("app-9")
