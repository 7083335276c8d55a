"""
Message persistence for group chat.

Every message gets a per-group `position` handed out under a row lock on its
group (a write transaction on SQLite), so positions within a group are
strictly increasing in append order.
Read paths never mutate content: soft-deleted messages keep their text and are
redacted by the serializers.
"""
import logging

from django.conf import settings
from django.db import transaction
from django.db.models import F, Q
from django.utils import timezone

from core.exceptions import Conflict, NotFound, Unauthorized, ValidationFailed

from .models import MAX_TEXT_LENGTH, Group, Message, MessageType, ReadReceipt
from .permissions import Capability, require, require_member

logger = logging.getLogger(__name__)

QUIZ_MESSAGE_TYPES = ("multiple-choice", "short-answer", "true-false")

EXTRA_SEND_CAPABILITIES = {
    MessageType.FILE: Capability.SHARE_FILE,
    MessageType.QUIZ: Capability.CREATE_QUIZ,
}


def as_pk(value, label="Resource"):
    try:
        pk = int(value)
    except (TypeError, ValueError):
        raise NotFound(f"{label} not found")
    if pk <= 0:
        raise NotFound(f"{label} not found")
    return pk


def get_group(group_id, for_update=False) -> Group:
    qs = Group.objects.select_for_update() if for_update else Group.objects
    group = qs.filter(pk=as_pk(group_id, "Group")).first()
    if group is None:
        raise NotFound("Group not found")
    return group


def with_relations(qs):
    return qs.select_related("sender", "reply_to", "reply_to__sender").prefetch_related(
        "read_receipts"
    )


def get_message(message_id) -> Message:
    message = with_relations(Message.objects).filter(pk=as_pk(message_id, "Message")).first()
    if message is None:
        raise NotFound("Message not found")
    return message


# ----------------------------------------------------------------------------
# Content
# ----------------------------------------------------------------------------

def _clean_text(value, required=True):
    if value is None and not required:
        return ""
    if not isinstance(value, str) or (required and not value.strip()):
        raise ValidationFailed("Message text is required")
    value = value.strip()
    if len(value) > MAX_TEXT_LENGTH:
        raise ValidationFailed(f"Message cannot exceed {MAX_TEXT_LENGTH} characters")
    return value


def _clean_file(descriptor):
    if not isinstance(descriptor, dict):
        raise ValidationFailed("File descriptor is required")
    missing = [k for k in ("filename", "originalName", "url") if not descriptor.get(k)]
    if missing:
        raise ValidationFailed(f"File descriptor is missing: {', '.join(missing)}")
    size = descriptor.get("fileSize")
    if size is not None and (not isinstance(size, int) or isinstance(size, bool) or size < 0):
        raise ValidationFailed("fileSize must be a non-negative integer")
    return {
        "filename": str(descriptor["filename"]),
        "originalName": str(descriptor["originalName"]),
        "fileType": str(descriptor.get("fileType") or ""),
        "fileSize": size,
        "url": str(descriptor["url"]),
        "thumbnail": descriptor.get("thumbnail") or None,
    }


def _clean_quiz(descriptor):
    if not isinstance(descriptor, dict):
        raise ValidationFailed("Quiz descriptor is required")
    question = descriptor.get("question")
    if not isinstance(question, str) or not question.strip():
        raise ValidationFailed("Quiz question is required")
    kind = descriptor.get("type")
    if kind not in QUIZ_MESSAGE_TYPES:
        raise ValidationFailed(f"Quiz type must be one of: {', '.join(QUIZ_MESSAGE_TYPES)}")
    options = descriptor.get("options") or []
    if not isinstance(options, list) or not all(isinstance(o, str) for o in options):
        raise ValidationFailed("Quiz options must be a list of strings")
    if kind == "multiple-choice" and len(options) < 2:
        raise ValidationFailed("Multiple-choice quizzes need at least two options")
    max_marks = descriptor.get("maxMarks", 1)
    if not isinstance(max_marks, (int, float)) or isinstance(max_marks, bool) or max_marks < 0:
        raise ValidationFailed("maxMarks must be a non-negative number")
    return {
        "question": question.strip(),
        "type": kind,
        "options": options,
        "correctAnswer": descriptor.get("correctAnswer"),
        "deadline": descriptor.get("deadline"),
        "maxMarks": max_marks,
    }


def normalize_content(message_type, content) -> dict:
    """Map a wire `content` payload to model field values for `message_type`."""
    if message_type not in MessageType.values:
        raise ValidationFailed(f"Unknown message type {message_type!r}")
    if isinstance(content, str) and message_type in (MessageType.TEXT, MessageType.SYSTEM):
        content = {"text": content}
    if not isinstance(content, dict):
        raise ValidationFailed("Message content must be an object")

    if message_type == MessageType.FILE:
        return {"text": _clean_text(content.get("text"), required=False), "file": _clean_file(content.get("file"))}
    if message_type == MessageType.QUIZ:
        return {"text": _clean_text(content.get("text"), required=False), "quiz": _clean_quiz(content.get("quiz"))}
    return {"text": _clean_text(content.get("text"))}


# ----------------------------------------------------------------------------
# Writes
# ----------------------------------------------------------------------------

def append(group_id, sender, message_type=MessageType.TEXT, content=None, reply_to=None,
           system_action="") -> Message:
    """Persist a message and give it the next position in its group."""
    fields = normalize_content(message_type, content)
    with transaction.atomic():
        group = get_group(group_id, for_update=True)

        reply = None
        if reply_to:
            reply = Message.objects.filter(pk=as_pk(reply_to, "Replied message"), group=group).first()
            if reply is None:
                raise NotFound("Replied message not found in this group")

        Group.objects.filter(pk=group.pk).update(message_seq=F("message_seq") + 1)
        group.refresh_from_db(fields=["message_seq"])

        message = Message.objects.create(
            group=group,
            sender=sender,
            type=message_type,
            reply_to=reply,
            position=group.message_seq,
            system_action=system_action,
            **fields,
        )
    logger.debug("Appended message %s at position %s in group %s", message.pk, message.position, group.pk)
    return message


def send(group_id, sender, message_type=MessageType.TEXT, content=None, reply_to=None) -> Message:
    """Authorize `sender` against the group, then append. Used by REST and websocket."""
    if message_type == MessageType.SYSTEM:
        raise ValidationFailed("System messages cannot be sent directly")
    group = get_group(group_id)
    capabilities = [Capability.SEND_MESSAGE]
    if message_type in EXTRA_SEND_CAPABILITIES:
        capabilities.append(EXTRA_SEND_CAPABILITIES[message_type])
    require(group, sender, *capabilities)

    message = append(group.pk, sender, message_type, content, reply_to)
    return get_message(message.pk)


def post_system_message(group_id, actor, action, text) -> Message:
    return append(group_id, actor, MessageType.SYSTEM, {"text": text}, system_action=action)


def mark_read(message, user):
    """Record that `user` read `message`. Returns the new receipt, or None for a no-op."""
    if message.sender_id == user.pk:
        return None
    receipt, created = ReadReceipt.objects.get_or_create(
        message=message, user=user, defaults={"read_at": timezone.now()}
    )
    return receipt if created else None


def read_message(message_id, user):
    message = get_message(message_id)
    require_member(message.group, user)
    return message, mark_read(message, user)


def unread_messages(group, user):
    return (
        Message.objects.filter(group=group, is_deleted=False)
        .exclude(sender_id=user.pk)
        .exclude(read_receipts__user_id=user.pk)
    )


def mark_all_read(group_id, user) -> int:
    """
    Mark every message currently unread by `user` in the group. Messages that
    arrive after the snapshot of ids is taken are left for the next call.
    """
    group = get_group(group_id)
    require_member(group, user)
    now = timezone.now()
    ids = list(unread_messages(group, user).values_list("pk", flat=True))
    ReadReceipt.objects.bulk_create(
        [ReadReceipt(message_id=pk, user=user, read_at=now) for pk in ids],
        ignore_conflicts=True,
    )
    return len(ids)


def unread_count(group_id, user) -> int:
    group = get_group(group_id)
    require_member(group, user)
    return unread_messages(group, user).count()


def edit(message_id, user, new_text) -> Message:
    text = _clean_text(new_text)
    with transaction.atomic():
        message = Message.objects.select_for_update().filter(pk=as_pk(message_id, "Message")).first()
        if message is None:
            raise NotFound("Message not found")
        if message.sender_id != user.pk:
            raise Unauthorized("Not authorized to edit this message")
        if message.type == MessageType.SYSTEM:
            raise Conflict("Cannot edit system messages")
        if message.is_deleted:
            raise Conflict("Cannot edit deleted message")

        now = timezone.now()
        # only the pre-first-edit text is kept
        if not message.is_edited:
            message.previous_content = {"text": message.text, "editedAt": now.isoformat()}
        message.text = text
        message.is_edited = True
        message.edited_at = now
        message.save(update_fields=["text", "is_edited", "edited_at", "previous_content", "updated_at"])
    return get_message(message.pk)


def _moderated_message(message_id, user, action):
    message = Message.objects.select_for_update().select_related("group").filter(
        pk=as_pk(message_id, "Message")
    ).first()
    if message is None:
        raise NotFound("Message not found")
    is_sender = message.sender_id is not None and message.sender_id == user.pk
    if not is_sender and not message.group.is_admin(user):
        raise Unauthorized(f"Not authorized to {action} this message")
    if message.type == MessageType.SYSTEM:
        raise Conflict(f"Cannot {action} system messages")
    return message


def soft_delete(message_id, user) -> Message:
    with transaction.atomic():
        message = _moderated_message(message_id, user, "delete")
        if not message.is_deleted:
            message.is_deleted = True
            message.deleted_at = timezone.now()
            message.save(update_fields=["is_deleted", "deleted_at", "updated_at"])
    return message


def restore(message_id, user) -> Message:
    with transaction.atomic():
        message = _moderated_message(message_id, user, "restore")
        if not message.group.is_admin(user):
            raise Unauthorized("Admin access required for this action")
        message.is_deleted = False
        message.deleted_at = None
        message.save(update_fields=["is_deleted", "deleted_at", "updated_at"])
    return get_message(message.pk)


# ----------------------------------------------------------------------------
# Reads
# ----------------------------------------------------------------------------

def page(group_id, page=1, limit=None) -> list:
    """
    One page of history, oldest first. Pages count back from the newest
    message: page 1 holds the `limit` most recent messages.
    """
    limit = settings.MESSAGE_PAGE_SIZE if limit is None else limit
    if page < 1 or limit < 1:
        raise ValidationFailed("page and limit must be positive")
    limit = min(limit, settings.MESSAGE_MAX_PAGE_SIZE)
    skip = (page - 1) * limit

    newest_first = with_relations(
        Message.objects.filter(group_id=as_pk(group_id, "Group"))
    ).order_by("-created_at", "-position")[skip:skip + limit]
    messages = list(newest_first)
    messages.reverse()
    return messages


def search(group_id, term) -> list:
    term = (term or "").strip()
    if not term:
        raise ValidationFailed("Search term is required")
    matches = Message.objects.filter(group_id=as_pk(group_id, "Group"), is_deleted=False).filter(
        Q(text__icontains=term)
        | Q(quiz__question__icontains=term)
        | Q(file__originalName__icontains=term)
    )
    return list(with_relations(matches).order_by("-created_at", "-position"))
