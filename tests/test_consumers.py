import pytest
from channels.db import database_sync_to_async
from channels.testing import WebsocketCommunicator

from accounts.tokens import issue_token
from chat import membership, message_store
from chat.models import MessageType
from config.asgi import application
from quiz import engine

from .conftest import CORRECT_ANSWERS

TIMEOUT = 3

pytestmark = [pytest.mark.django_db(transaction=True), pytest.mark.asyncio]


async def connect(user):
    communicator = WebsocketCommunicator(application, f"/ws/chat/?token={issue_token(user)}")
    connected, _ = await communicator.connect(timeout=TIMEOUT)
    assert connected
    return communicator


async def join(communicator, *group_ids):
    await communicator.send_json_to({"event": "join-groups", "data": {"groupIds": list(group_ids)}})
    return await communicator.receive_json_from(timeout=TIMEOUT)


@pytest.fixture
def other_group(teacher, make_user):
    bystander = make_user(name="Bystander")
    group = membership.create_group(teacher, "Other room")
    membership.join_group(group.pk, bystander)
    return group, bystander


async def test_missing_token_is_rejected():
    communicator = WebsocketCommunicator(application, "/ws/chat/")
    connected, code = await communicator.connect(timeout=TIMEOUT)
    assert not connected
    assert code == 4401


async def test_invalid_token_is_rejected():
    communicator = WebsocketCommunicator(application, "/ws/chat/?token=not-a-jwt")
    connected, code = await communicator.connect(timeout=TIMEOUT)
    assert not connected
    assert code == 4401


async def test_authorization_header_is_accepted(student):
    communicator = WebsocketCommunicator(
        application, "/ws/chat/", headers=[(b"authorization", f"Bearer {issue_token(student)}".encode())]
    )
    connected, _ = await communicator.connect(timeout=TIMEOUT)
    assert connected
    await communicator.disconnect()


async def test_join_acknowledges_only_member_groups(group, other_group, student):
    communicator = await connect(student)
    ack = await join(communicator, group.pk, other_group[0].pk)
    assert ack == {"event": "joined-groups", "data": {"groupIds": [group.pk]}}
    error = await communicator.receive_json_from(timeout=TIMEOUT)
    assert error["event"] == "error"
    assert str(other_group[0].pk) in error["data"]["message"]
    await communicator.disconnect()


async def test_typing_reaches_only_the_target_room(group, other_group, teacher, student):
    room_b, bystander = other_group
    typist = await connect(student)
    listener = await connect(teacher)
    elsewhere = await connect(bystander)
    await join(typist, group.pk)
    await join(listener, group.pk)
    await join(elsewhere, room_b.pk)

    await typist.send_json_to({"event": "typing-start", "data": {"groupId": group.pk}})
    event = await listener.receive_json_from(timeout=TIMEOUT)
    assert event == {
        "event": "user-typing",
        "data": {"userId": student.pk, "userName": student.display_name, "groupId": group.pk},
    }
    assert await elsewhere.receive_nothing()
    assert await typist.receive_nothing()

    for communicator in (typist, listener, elsewhere):
        await communicator.disconnect()


async def test_typing_without_joining_is_an_error(group, student):
    communicator = await connect(student)
    await communicator.send_json_to({"event": "typing-stop", "data": {"groupId": group.pk}})
    event = await communicator.receive_json_from(timeout=TIMEOUT)
    assert event["event"] == "error"
    await communicator.disconnect()


async def test_new_message_is_broadcast_to_the_room(group, teacher, student):
    sender = await connect(student)
    listener = await connect(teacher)
    await join(sender, group.pk)
    await join(listener, group.pk)

    await sender.send_json_to({
        "event": "send-message",
        "data": {"groupId": group.pk, "content": {"text": "hello room"}},
    })
    for communicator in (sender, listener):
        event = await communicator.receive_json_from(timeout=TIMEOUT)
        assert event["event"] == "new-message"
        assert event["data"]["success"] is True
        assert event["data"]["data"]["content"] == {"text": "hello room"}
        assert event["data"]["data"]["sender"]["id"] == student.pk

    await sender.disconnect()
    await listener.disconnect()


async def test_messages_from_one_connection_arrive_in_order(group, teacher, student):
    sender = await connect(student)
    listener = await connect(teacher)
    await join(sender, group.pk)
    await join(listener, group.pk)

    for text in ("first", "second", "third"):
        await sender.send_json_to({"event": "send-message", "data": {"groupId": group.pk, "content": text}})
    received = [
        (await listener.receive_json_from(timeout=TIMEOUT))["data"]["data"]["content"]["text"]
        for _ in range(3)
    ]
    assert received == ["first", "second", "third"]

    await sender.disconnect()
    await listener.disconnect()


async def test_students_blocked_by_group_setting(group, teacher, student):
    await database_sync_to_async(membership.update_group)(
        group.pk, teacher, settings={"allowStudentMessages": False}
    )
    sender = await connect(student)
    await join(sender, group.pk)
    await sender.send_json_to({"event": "send-message", "data": {"groupId": group.pk, "content": "hi"}})
    event = await sender.receive_json_from(timeout=TIMEOUT)
    assert event == {
        "event": "error",
        "data": {"message": "Students are not allowed to send messages in this group"},
    }
    await sender.disconnect()


async def test_read_receipt_goes_to_the_sender_only(group, teacher, student):
    message = await database_sync_to_async(message_store.send)(
        group.pk, teacher, MessageType.TEXT, {"text": "please read"}
    )
    author = await connect(teacher)
    reader = await connect(student)

    await reader.send_json_to({"event": "mark-message-read", "data": {"messageId": message.pk}})
    event = await author.receive_json_from(timeout=TIMEOUT)
    assert event["event"] == "message-read"
    assert event["data"]["messageId"] == message.pk
    assert event["data"]["readBy"] == student.pk

    # marking again is a no-op and notifies nobody
    await reader.send_json_to({"event": "mark-message-read", "data": {"messageId": message.pk}})
    assert await author.receive_nothing()
    assert await reader.receive_nothing()

    await author.disconnect()
    await reader.disconnect()


async def test_quiz_submission_update_uses_the_connected_user(group, quiz, teacher, student):
    submission, _ = await database_sync_to_async(engine.start_attempt)(quiz.pk, student)
    await database_sync_to_async(engine.submit_attempt)(quiz.pk, student, submission.pk, CORRECT_ANSWERS)

    submitter = await connect(student)
    listener = await connect(teacher)
    await join(submitter, group.pk)
    await join(listener, group.pk)

    await submitter.send_json_to({
        "event": "quiz-submitted",
        "data": {"groupId": group.pk, "quizId": quiz.pk, "userId": teacher.pk},
    })
    event = await listener.receive_json_from(timeout=TIMEOUT)
    assert event["event"] == "quiz-submission-update"
    assert event["data"]["userId"] == student.pk
    assert event["data"]["quizId"] == quiz.pk

    await submitter.disconnect()
    await listener.disconnect()


async def test_malformed_frames_get_an_error_and_keep_the_session(group, student):
    communicator = await connect(student)
    await communicator.send_to(text_data="{not json")
    event = await communicator.receive_json_from(timeout=TIMEOUT)
    assert event == {"event": "error", "data": {"message": "Malformed JSON payload"}}

    await communicator.send_json_to({"event": "no-such-event", "data": {}})
    event = await communicator.receive_json_from(timeout=TIMEOUT)
    assert event["event"] == "error"

    ack = await join(communicator, group.pk)
    assert ack["event"] == "joined-groups"
    await communicator.disconnect()


async def test_user_online_is_broadcast_to_others(teacher, student):
    announcer = await connect(student)
    watcher = await connect(teacher)
    await announcer.send_json_to({"event": "user-online", "data": {}})
    event = await watcher.receive_json_from(timeout=TIMEOUT)
    assert event["event"] == "user-status-change"
    assert event["data"]["userId"] == student.pk
    assert event["data"]["status"] == "online"
    assert await announcer.receive_nothing()

    await announcer.disconnect()
    await watcher.disconnect()


async def test_disconnect_broadcasts_offline(teacher, student):
    leaving = await connect(student)
    watcher = await connect(teacher)
    await leaving.disconnect()
    event = await watcher.receive_json_from(timeout=TIMEOUT)
    assert event["event"] == "user-status-change"
    assert event["data"]["userId"] == student.pk
    assert event["data"]["status"] == "offline"
    assert event["data"]["lastSeen"]
    await watcher.disconnect()


async def test_left_room_receives_no_more_messages(group, teacher, student):
    sender = await connect(teacher)
    leaver = await connect(student)
    await join(sender, group.pk)
    await join(leaver, group.pk)

    await leaver.send_json_to({"event": "leave-group", "data": {"groupId": group.pk}})
    ack = await leaver.receive_json_from(timeout=TIMEOUT)
    assert ack == {"event": "left-group", "data": {"groupId": group.pk}}

    await sender.send_json_to({"event": "send-message", "data": {"groupId": group.pk, "content": "after"}})
    event = await sender.receive_json_from(timeout=TIMEOUT)
    assert event["event"] == "new-message"
    assert await leaver.receive_nothing()

    await sender.disconnect()
    await leaver.disconnect()
