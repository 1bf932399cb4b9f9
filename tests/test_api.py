"""Tests for the HTTP API."""

import json

import pytest


def _ask(client, question="Issue count by status as a chart", project_id="proj-1", **extra):
    return client.post("/chat", json={"question": question, "project_id": project_id, **extra})


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["data_db_exists"] is True


class TestChat:
    def test_chart_answer(self, client):
        response = _ask(client)
        assert response.status_code == 200

        body = response.json()
        assistant = body["assistant_turn"]
        assert assistant["role"] == "assistant"
        assert assistant["chart_type"] == "bar"
        assert assistant["chart_data"] == [{"name": "OPEN", "value": 5.0}, {"name": "CLOSED", "value": 3.0}]
        assert assistant["mindmap_data"] is None
        assert body["user_turn"]["content"] == "Issue count by status as a chart"
        assert body["stages"][-1] == "persisted"

    def test_rejected_sql_still_returns_a_turn(self, client, sql_reply):
        sql_reply("DROP TABLE tasks;")
        response = _ask(client, "Delete all tasks")

        assert response.status_code == 200
        assistant = response.json()["assistant_turn"]
        assert assistant["error_message"].startswith("Query rejected by safety policy")
        assert assistant["sql_query"] == "DROP TABLE tasks;"
        assert "sql_rejected" in response.json()["stages"]

    @pytest.mark.parametrize("question", ["", "   "])
    def test_blank_question(self, client, question):
        assert _ask(client, question).status_code in (400, 422)

    def test_unknown_persona(self, client):
        response = _ask(client, persona_id="nope")
        assert response.status_code == 404
        assert client.get("/chat").json()["turns"] == []

    def test_history_and_clear(self, client):
        _ask(client)
        _ask(client, "Cross-project question", project_id=None)

        turns = client.get("/chat", params={"project_id": "proj-1"}).json()["turns"]
        assert [t["role"] for t in turns] == ["user", "assistant"]
        assert len(client.get("/chat").json()["turns"]) == 4
        assert len(client.get("/chat", params={"limit": 1}).json()["turns"]) == 1

        assert client.delete("/chat", params={"project_id": "proj-1"}).json() == {"deleted": 2}
        assert len(client.get("/chat").json()["turns"]) == 2
        assert client.delete("/chat").json() == {"deleted": 2}


class TestFeedback:
    def test_submit_list_and_stats(self, client):
        turn_id = _ask(client).json()["assistant_turn"]["id"]

        response = client.post(
            "/chat/feedback",
            json={"turn_id": turn_id, "rating": "NEGATIVE", "comment": "wrong chart", "tags": ["chart", "chart"]},
        )
        assert response.status_code == 201
        assert response.json()["rating"] == "negative"
        assert response.json()["tags"] == ["chart"]

        listing = client.get("/chat/feedback", params={"project_id": "proj-1"}).json()
        assert listing["total"] == 1
        assert listing["feedback"][0]["turn_id"] == turn_id
        assert listing["feedback"][0]["user_query"] == "Issue count by status as a chart"
        assert listing["stats"]["negative"] == 1

        stats = client.get("/chat/stats").json()
        assert stats["total"] == 1
        assert stats["positive_rate"] == 0.0

    def test_unknown_turn(self, client):
        response = client.post("/chat/feedback", json={"turn_id": "ghost", "rating": "positive"})
        assert response.status_code == 404
        assert client.get("/chat/stats").json()["total"] == 0

    def test_invalid_rating(self, client):
        turn_id = _ask(client).json()["assistant_turn"]["id"]
        response = client.post("/chat/feedback", json={"turn_id": turn_id, "rating": "great"})
        assert response.status_code == 422

    def test_stats_filters_are_validated(self, client):
        assert client.get("/chat/stats", params={"rating": "great"}).status_code == 422
        response = client.get("/chat/stats", params={"start_date": "2026-03-05", "end_date": "2026-03-01"})
        assert response.status_code == 422
        assert client.get("/chat/stats", params={"rating": "Positive"}).status_code == 200


class TestSuggestions:
    def test_defaults_without_model_reply(self, client):
        body = client.post("/chat/suggestions", json={"project_id": "proj-1"}).json()
        assert body["source"] == "default"
        assert len(body["suggestions"]) == 5

    def test_ai_suggestions(self, client, stub_generator):
        groups = [
            {"title": f"G{i}", "icon": "help", "color": "text-blue-500", "questions": ["a?", "b?", "c?", "d?"]}
            for i in range(5)
        ]
        stub_generator.replies["suggest"] = json.dumps(groups)
        body = client.post("/chat/suggestions", json={}).json()
        assert body["source"] == "ai"


class TestPersonas:
    def test_list_has_one_default_first(self, client):
        personas = client.get("/personas").json()["personas"]
        assert len(personas) == 3
        assert personas[0]["is_default"] is True
        assert sum(p["is_default"] for p in personas) == 1

    def test_create_update_default_delete(self, client):
        response = client.post("/personas", json={"name": "Auditor", "system_prompt": "Be strict."})
        assert response.status_code == 201
        persona_id = response.json()["id"]

        updated = client.patch(f"/personas/{persona_id}", json={"description": "Strict reviewer"}).json()
        assert updated["description"] == "Strict reviewer"
        assert updated["name"] == "Auditor"

        assert client.post(f"/personas/{persona_id}/default").json()["is_default"] is True
        assert client.delete(f"/personas/{persona_id}").status_code == 400

        old_default = next(p for p in client.get("/personas").json()["personas"] if not p["is_default"])
        client.post(f"/personas/{old_default['id']}/default")
        assert client.delete(f"/personas/{persona_id}").json() == {"deleted": persona_id}

    def test_persona_errors(self, client):
        assert client.post("/personas", json={"name": "x", "system_prompt": "  "}).status_code == 400
        assert client.patch("/personas/nope", json={"name": "x"}).status_code == 404
        assert client.delete("/personas/nope").status_code == 404
        assert client.post("/personas/nope/default").status_code == 404

        default_id = client.get("/personas").json()["personas"][0]["id"]
        assert client.patch(f"/personas/{default_id}", json={"is_default": False}).status_code == 400

    def test_chat_with_explicit_persona(self, client, stub_generator):
        persona_id = client.post("/personas", json={"name": "Auditor", "system_prompt": "Be strict."}).json()["id"]
        assert _ask(client, persona_id=persona_id).status_code == 200
        assert stub_generator.calls[0][2]["system_prompt"].startswith("Be strict.")
