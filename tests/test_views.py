import json
from datetime import timedelta

import pytest
from django.utils import timezone

from chat import message_store
from chat.models import Membership, MessageType
from quiz.models import SubmissionStatus


def post(client, url, payload, headers):
    return client.post(url, data=json.dumps(payload), content_type="application/json", **headers)


def put(client, url, payload, headers):
    return client.put(url, data=json.dumps(payload), content_type="application/json", **headers)


@pytest.mark.django_db
def test_obtain_token_and_me(client, student):
    response = post(client, "/api/auth/token/", {"username": student.username, "password": "secret-pass"}, {})
    assert response.status_code == 200
    token = response.json()["data"]["token"]

    me = client.get("/api/auth/me/", HTTP_AUTHORIZATION=f"Bearer {token}")
    assert me.json()["data"]["id"] == student.pk


@pytest.mark.django_db
def test_bad_credentials_are_rejected(client, student):
    response = post(client, "/api/auth/token/", {"username": student.username, "password": "nope"}, {})
    assert response.status_code == 401
    assert response.json()["success"] is False


def test_requests_without_a_token_are_unauthenticated(client, group):
    response = client.get(f"/api/messages/groups/{group.pk}/")
    assert response.status_code == 401


def test_deactivated_accounts_are_unauthenticated(client, group, student, auth):
    headers = auth(student)
    student.is_active = False
    student.save()
    assert client.get(f"/api/messages/groups/{group.pk}/", **headers).status_code == 401


def test_create_group_and_join(client, teacher, outsider, auth):
    response = post(client, "/api/groups/", {"name": "Biology", "settings": {"allowFileUploads": False}}, auth(teacher))
    assert response.status_code == 201
    data = response.json()["data"]
    assert data["settings"]["allowFileUploads"] is False
    assert data["members"][0]["role"] == "admin"

    joined = post(client, f"/api/groups/{data['id']}/join/", {}, auth(outsider))
    assert joined.status_code == 200
    assert joined.json()["data"]["memberCount"] == 2


def test_duplicate_join_is_conflict(client, group, student, auth):
    response = post(client, f"/api/groups/{group.pk}/join/", {}, auth(student))
    assert response.status_code == 409


def test_send_and_page_messages(client, group, student, auth):
    sent = post(client, f"/api/messages/groups/{group.pk}/", {"content": {"text": "hello"}}, auth(student))
    assert sent.status_code == 201
    assert sent.json()["data"]["sender"]["id"] == student.pk

    page = client.get(f"/api/messages/groups/{group.pk}/?limit=1", **auth(student))
    body = page.json()
    assert body["count"] == 1
    assert body["data"][0]["content"] == {"text": "hello"}


def test_invalid_page_parameters(client, group, student, auth):
    response = client.get(f"/api/messages/groups/{group.pk}/?page=abc", **auth(student))
    assert response.status_code == 400


def test_outsiders_cannot_read_history(client, group, outsider, auth):
    response = client.get(f"/api/messages/groups/{group.pk}/", **auth(outsider))
    assert response.status_code == 403


def test_malformed_body_is_validation_error(client, group, student, auth):
    response = client.post(
        f"/api/messages/groups/{group.pk}/", data="{not json", content_type="application/json", **auth(student)
    )
    assert response.status_code == 400


def test_unknown_method_is_405(client, group, student, auth):
    response = client.patch(f"/api/messages/groups/{group.pk}/", **auth(student))
    assert response.status_code == 405


def test_mark_read_unread_and_read_all(client, group, teacher, student, auth):
    first = message_store.send(group.pk, teacher, MessageType.TEXT, {"text": "one"})
    message_store.send(group.pk, teacher, MessageType.TEXT, {"text": "two"})

    response = post(client, f"/api/messages/{first.pk}/read/", {}, auth(student))
    assert response.json()["data"] == {"marked": True}
    response = post(client, f"/api/messages/{first.pk}/read/", {}, auth(student))
    assert response.json()["data"] == {"marked": False}

    unread = client.get(f"/api/messages/groups/{group.pk}/unread/", **auth(student))
    # group_created notice and "two"
    assert unread.json()["data"]["unreadCount"] == 2

    post(client, f"/api/messages/groups/{group.pk}/read-all/", {}, auth(student))
    unread = client.get(f"/api/messages/groups/{group.pk}/unread/", **auth(student))
    assert unread.json()["data"]["unreadCount"] == 0


def test_edit_and_delete_message(client, group, student, auth):
    message = message_store.send(group.pk, student, MessageType.TEXT, {"text": "draft"})
    edited = put(client, f"/api/messages/{message.pk}/", {"content": "final"}, auth(student))
    assert edited.json()["data"]["edited"]["isEdited"] is True

    deleted = client.delete(f"/api/messages/{message.pk}/", **auth(student))
    assert deleted.status_code == 200
    fetched = client.get(f"/api/messages/{message.pk}/", **auth(student))
    assert fetched.json()["data"]["content"] == {"text": "This message was deleted"}


def test_search_requires_a_term(client, group, student, auth):
    response = client.get(f"/api/messages/groups/{group.pk}/search/", **auth(student))
    assert response.status_code == 400


def test_member_management(client, group, teacher, student, outsider, auth):
    added = post(client, f"/api/groups/{group.pk}/members/", {"userId": outsider.pk}, auth(teacher))
    assert added.status_code == 200

    promoted = put(client, f"/api/groups/{group.pk}/members/{student.pk}/role/", {"role": "admin"}, auth(teacher))
    assert promoted.json()["data"]["role"] == "admin"

    removed = client.delete(f"/api/groups/{group.pk}/members/{outsider.pk}/", **auth(teacher))
    assert removed.status_code == 200
    assert not Membership.objects.filter(group=group, user=outsider).exists()


def quiz_payload(group):
    return {
        "groupId": group.pk,
        "title": "REST quiz",
        "questions": [
            {"question": "Pick B", "type": "multiple-choice", "options": ["A", "B"], "correctAnswer": "B"},
            {"question": "True?", "type": "true-false", "correctAnswer": True, "marks": 2},
        ],
        "settings": {"maxAttempts": 1},
        "deadline": (timezone.now() + timedelta(days=1)).isoformat(),
    }


def test_quiz_flow_over_rest(client, group, teacher, student, auth):
    created = post(client, "/api/quizzes/", quiz_payload(group), auth(teacher))
    assert created.status_code == 201
    quiz_id = created.json()["data"]["id"]
    assert created.json()["data"]["totalMarks"] == 3

    detail = client.get(f"/api/quizzes/{quiz_id}/", **auth(student)).json()["data"]
    assert "correctAnswer" not in detail["questions"][0]

    started = post(client, f"/api/quizzes/{quiz_id}/start/", {}, auth(student)).json()["data"]
    assert started["resumed"] is False
    assert "correctAnswer" not in started["quiz"]["questions"][0]

    submitted = post(client, f"/api/quizzes/{quiz_id}/submit/", {
        "attemptId": started["attemptId"],
        "answers": [{"questionIndex": 0, "answer": "B"}, {"questionIndex": 1, "answer": True}],
        "timeSpent": 30,
    }, auth(student))
    body = submitted.json()["data"]
    assert body["score"] == 3
    assert body["percentage"] == 100
    assert body["status"] == SubmissionStatus.GRADED

    again = post(client, f"/api/quizzes/{quiz_id}/start/", {}, auth(student))
    assert again.status_code == 409

    results = client.get(f"/api/quizzes/{quiz_id}/results/", **auth(student)).json()["data"]
    assert results["submission"]["score"] == 3
    assert "allSubmissions" not in results

    listed = client.get(f"/api/quizzes/groups/{group.pk}/", **auth(student)).json()
    assert [q["id"] for q in listed["data"]] == [quiz_id]

    mine = client.get("/api/quizzes/user/submissions/", **auth(student)).json()
    assert mine["data"][0]["quiz"]["id"] == quiz_id


def test_quiz_validation_errors(client, group, teacher, auth):
    payload = quiz_payload(group)
    payload["questions"][0]["options"] = ["only one"]
    response = post(client, "/api/quizzes/", payload, auth(teacher))
    assert response.status_code == 400

    payload = quiz_payload(group)
    payload["deadline"] = (timezone.now() - timedelta(days=1)).isoformat()
    response = post(client, "/api/quizzes/", payload, auth(teacher))
    assert response.status_code == 400
