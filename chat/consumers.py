import asyncio
import json
import logging

from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncJsonWebsocketConsumer
from django.conf import settings
from django.utils import timezone

from core.exceptions import Conflict, NotFound, ServiceError, Unauthorized, ValidationFailed
from quiz.models import Quiz, SubmissionStatus

from . import membership, message_store
from .forms import GroupEventForm, MessageEventForm, QuizSubmittedForm, SendMessageForm
from .permissions import require_member
from .serializers import iso, message_to_dict
from .utils import PRESENCE_GROUP, chat_event, group_room, user_channel

logger = logging.getLogger(__name__)

CLOSE_UNAUTHENTICATED = 4401


class EventSequencer:
    """
    Runs each inbound event as its own task. Events that share a key (the
    group they target) still complete in the order they arrived: every key has
    a lock, tasks are created in arrival order and asyncio.Lock hands itself to
    waiters first-come first-served.
    """

    def __init__(self):
        self._locks = {}
        self._tasks = set()

    def submit(self, key, coro):
        lock = self._locks.setdefault(key, asyncio.Lock())
        task = asyncio.ensure_future(self._run(lock, coro))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @staticmethod
    async def _run(lock, coro):
        async with lock:
            await coro

    async def drain(self):
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class ChatConsumer(AsyncJsonWebsocketConsumer):
    """
    One authenticated real-time session.

    Frames are {"event": name, "data": payload} both ways. Room joins and
    leaves are handled in place; everything else goes through the sequencer so
    a slow store call for one group does not hold up another. Failures are
    reported to this connection only, as an "error" event.
    """

    inline_events = {
        "join-groups": "on_join_groups",
        "leave-group": "on_leave_group",
    }
    sequenced_events = {
        "send-message": "on_send_message",
        "typing-start": "on_typing_start",
        "typing-stop": "on_typing_stop",
        "mark-message-read": "on_mark_message_read",
        "quiz-submitted": "on_quiz_submitted",
        "user-online": "on_user_online",
    }
    failure_messages = {
        "send-message": "Error sending message",
        "mark-message-read": "Error marking message as read",
        "join-groups": "Error joining groups",
    }

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------
    async def connect(self):
        user = self.scope.get("user")
        if user is None or not user.is_authenticated:
            logger.warning("Rejected websocket: %s", self.scope.get("auth_error") or "not authenticated")
            await self.close(code=CLOSE_UNAUTHENTICATED)
            return

        self.user = user
        self.rooms = set()
        self.sequencer = EventSequencer()
        await self.channel_layer.group_add(user_channel(user.pk), self.channel_name)
        await self.channel_layer.group_add(PRESENCE_GROUP, self.channel_name)
        await self.accept()
        logger.info("User %s (%s) connected", user.display_name, user.pk)

    async def disconnect(self, code):
        sequencer = getattr(self, "sequencer", None)
        if sequencer is None:
            return
        await sequencer.drain()

        for group_id in list(self.rooms):
            await self.channel_layer.group_discard(group_room(group_id), self.channel_name)
        self.rooms.clear()
        await self.channel_layer.group_discard(user_channel(self.user.pk), self.channel_name)
        await self.channel_layer.group_discard(PRESENCE_GROUP, self.channel_name)

        last_seen = await database_sync_to_async(self._touch_last_seen)()
        await self.channel_layer.group_send(
            PRESENCE_GROUP,
            chat_event("user-status-change", {
                "userId": self.user.pk,
                "status": "offline",
                "lastSeen": iso(last_seen),
            }),
        )
        logger.info("User %s (%s) disconnected: %s", self.user.display_name, self.user.pk, code)

    # ------------------------------------------------------------------
    # Inbound frames
    # ------------------------------------------------------------------
    async def receive(self, text_data=None, bytes_data=None, **kwargs):
        if text_data is None:
            await self.send_error("Only JSON text frames are supported")
            return
        try:
            content = json.loads(text_data)
        except ValueError:
            await self.send_error("Malformed JSON payload")
            return
        await self.receive_json(content, **kwargs)

    async def receive_json(self, content, **kwargs):
        if not isinstance(content, dict) or not isinstance(content.get("event"), str):
            await self.send_error('Frames must look like {"event": <name>, "data": <payload>}')
            return
        event, data = content["event"], content.get("data")

        if event in self.inline_events:
            await self._guarded(event, getattr(self, self.inline_events[event]), data)
            return
        if event not in self.sequenced_events:
            await self.send_error(f"Unknown event {event!r}")
            return

        handler = getattr(self, self.sequenced_events[event])
        self.sequencer.submit(self._ordering_key(data), self._guarded(event, handler, data))

    @staticmethod
    def _ordering_key(data):
        if isinstance(data, dict) and data.get("groupId") is not None:
            return f"group:{data['groupId']}"
        return "session"

    async def _guarded(self, event, handler, data):
        try:
            await handler(data)
        except ServiceError as exc:
            await self.send_error(exc.message)
        except Exception:
            logger.exception("Error handling %s for user %s", event, self.user.pk)
            await self.send_error(self.failure_messages.get(event, "Error processing event"))

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------
    async def on_join_groups(self, data):
        group_ids = data.get("groupIds") if isinstance(data, dict) else data
        if not isinstance(group_ids, list):
            raise ValidationFailed("groupIds must be a list")

        requested, invalid = [], []
        for value in group_ids:
            try:
                pk = int(value)
            except (TypeError, ValueError):
                invalid.append(str(value))
                continue
            if pk not in requested:
                requested.append(pk)

        if settings.REALTIME_VALIDATE_JOINS:
            allowed = await database_sync_to_async(membership.member_group_ids)(self.user, requested)
        else:
            allowed = set(requested)

        joined = []
        for group_id in requested:
            if group_id in allowed:
                await self.channel_layer.group_add(group_room(group_id), self.channel_name)
                self.rooms.add(group_id)
                joined.append(group_id)
                logger.debug("User %s joined room %s", self.user.pk, group_id)

        await self.send_event("joined-groups", {"groupIds": joined})
        rejected = [str(g) for g in requested if g not in allowed] + invalid
        if rejected:
            await self.send_error(f"Not authorized to join groups: {', '.join(rejected)}")

    async def on_leave_group(self, data):
        group_id = data.get("groupId") if isinstance(data, dict) else data
        try:
            group_id = int(group_id)
        except (TypeError, ValueError):
            raise ValidationFailed("groupId is required")
        await self.channel_layer.group_discard(group_room(group_id), self.channel_name)
        self.rooms.discard(group_id)
        await self.send_event("left-group", {"groupId": group_id})

    async def on_send_message(self, data):
        payload = SendMessageForm.validated(data)
        group_id = payload["groupId"]
        if group_id is None:
            raise ValidationFailed("groupId is required")

        message = await database_sync_to_async(self._send_message)(group_id, payload)
        # the message is committed before anyone hears about it
        await self.channel_layer.group_send(
            group_room(group_id), chat_event("new-message", {"success": True, "data": message})
        )

    async def on_typing_start(self, data):
        await self._typing(data, "user-typing")

    async def on_typing_stop(self, data):
        await self._typing(data, "user-stop-typing")

    async def _typing(self, data, event):
        group_id = GroupEventForm.validated(data)["groupId"]
        if group_id not in self.rooms:
            raise Unauthorized("Join the group before sending typing events")
        await self.channel_layer.group_send(
            group_room(group_id),
            chat_event(event, {
                "userId": self.user.pk,
                "userName": self.user.display_name,
                "groupId": group_id,
            }, exclude=self.channel_name),
        )

    async def on_mark_message_read(self, data):
        message_id = MessageEventForm.validated(data)["messageId"]
        receipt = await database_sync_to_async(self._mark_read)(message_id)
        if receipt is None:
            return
        sender_id, read_at = receipt
        await self.channel_layer.group_send(
            user_channel(sender_id),
            chat_event("message-read", {
                "messageId": message_id,
                "readBy": self.user.pk,
                "readAt": iso(read_at),
            }),
        )

    async def on_quiz_submitted(self, data):
        payload = QuizSubmittedForm.validated(data)
        submitted_at = await database_sync_to_async(self._latest_submission)(
            payload["groupId"], payload["quizId"]
        )
        await self.channel_layer.group_send(
            group_room(payload["groupId"]),
            chat_event("quiz-submission-update", {
                "quizId": payload["quizId"],
                "userId": self.user.pk,
                "submittedAt": iso(submitted_at),
            }, exclude=self.channel_name),
        )

    async def on_user_online(self, data):
        last_seen = await database_sync_to_async(self._touch_last_seen)()
        await self.channel_layer.group_send(
            PRESENCE_GROUP,
            chat_event("user-status-change", {
                "userId": self.user.pk,
                "status": "online",
                "lastSeen": iso(last_seen),
            }, exclude=self.channel_name),
        )

    # ------------------------------------------------------------------
    # Channel-layer delivery
    # ------------------------------------------------------------------
    async def chat_event(self, event):
        if event.get("exclude") == self.channel_name:
            return
        await self.send_event(event["event"], event["payload"])

    async def send_event(self, name, data):
        await self.send_json({"event": name, "data": data})

    async def send_error(self, message):
        await self.send_event("error", {"message": message})

    # ------------------------------------------------------------------
    # Store calls (run in the sync thread)
    # ------------------------------------------------------------------
    def _send_message(self, group_id, payload):
        message = message_store.send(
            group_id,
            self.user,
            payload["type"],
            payload["content"],
            payload.get("replyTo"),
        )
        return message_to_dict(message)

    def _mark_read(self, message_id):
        message, receipt = message_store.read_message(message_id, self.user)
        if receipt is None:
            return None
        return message.sender_id, receipt.read_at

    def _latest_submission(self, group_id, quiz_id):
        quiz = Quiz.objects.select_related("group").filter(pk=quiz_id, group_id=group_id).first()
        if quiz is None:
            raise NotFound("Quiz not found in this group")
        require_member(quiz.group, self.user)
        submission = (
            quiz.submissions.filter(user=self.user)
            .exclude(status=SubmissionStatus.IN_PROGRESS)
            .order_by("-submitted_at")
            .first()
        )
        if submission is None:
            raise Conflict("No submitted attempt for this quiz")
        return submission.submitted_at

    def _touch_last_seen(self):
        now = timezone.now()
        type(self.user).objects.filter(pk=self.user.pk).update(last_seen=now)
        return now
