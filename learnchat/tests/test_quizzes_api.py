import json

from fastapi.testclient import TestClient

from learnchat.features.conversations.service import create_conversation
from learnchat.features.llm.client import set_text_generator
from learnchat.features.quizzes.service import create_artifact
from learnchat.main import app
from learnchat.tests.mocks import ScriptedGenerator

CODE = """
function total(items) {
  let sum = 0;
  for (const item of items) {
    sum += item.price * item.qty;
  }
  return sum;
}
"""

REPLY = json.dumps([
    {
        "question": f"Why does line {i} matter?",
        "options": [
            {"label": "A", "text": "because", "explanation": "right"},
            {"label": "B", "text": "no reason", "explanation": "wrong"},
            {"label": "C", "text": "style", "explanation": "wrong"},
        ],
        "correctLabel": "A",
    }
    for i in range(2)
])


def _setup(account):
    set_text_generator(ScriptedGenerator(replies={"quiz": REPLY}))
    conversation = create_conversation(account.user_id, "generation")
    artifact = create_artifact(conversation.conversation_id, account.user_id, CODE, language="javascript")
    return TestClient(app), artifact.artifact_id, {"X-User-Id": account.user_id}


def test_quiz_flow(individual):
    client, artifact_id, headers = _setup(individual)

    empty = client.get(f"/v1/artifacts/{artifact_id}/quizzes", headers=headers).json()
    assert empty["total"] == 0
    assert empty["isUnlocked"] is True

    generated = client.post(f"/v1/artifacts/{artifact_id}/quizzes", headers=headers).json()
    assert generated["generated"] is True
    assert generated["total"] == 2
    assert generated["currentLevel"] == 1
    assert generated["isUnlocked"] is False
    assert all(item["correctLabel"] is None for item in generated["items"])

    quiz = generated["items"][0]
    wrong = next(opt["label"] for opt in quiz["options"] if opt["explanation"] == "wrong")
    answered = client.patch(f"/v1/artifacts/{artifact_id}/quizzes/{quiz['id']}", headers=headers, json={"answer": wrong.lower()})
    assert answered.status_code == 200
    body = answered.json()
    assert body["isCorrect"] is False
    assert body["currentLevel"] == 0
    assert body["quiz"]["userAnswer"] == wrong
    assert body["quiz"]["correctLabel"] is not None
    assert body["nextQuiz"]["id"] == generated["items"][1]["id"]

    again = client.patch(f"/v1/artifacts/{artifact_id}/quizzes/{quiz['id']}", headers=headers, json={"answer": "A"})
    assert again.status_code == 400
    assert again.json()["error"]["code"] == "ALREADY_ANSWERED"

    reset = client.delete(f"/v1/artifacts/{artifact_id}/quizzes", headers=headers)
    assert reset.json() == {"reset": True}
    assert client.get(f"/v1/artifacts/{artifact_id}/quizzes", headers=headers).json()["total"] == 0


def test_quizzes_of_other_users_are_hidden(individual, free_individual):
    client, artifact_id, _ = _setup(individual)
    resp = client.post(f"/v1/artifacts/{artifact_id}/quizzes", headers={"X-User-Id": free_individual.user_id})
    assert resp.status_code == 404
