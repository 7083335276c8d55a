"""Wire representations (camelCase, JSON-safe) for groups and messages."""
from .models import DELETED_PLACEHOLDER, MessageType


def iso(value):
    return value.isoformat() if value else None


def user_summary(user):
    if user is None:
        return None
    return {
        "id": user.pk,
        "name": user.display_name,
        "email": user.email,
        "avatar": user.avatar,
        "role": user.role,
    }


def _content(message):
    if message.type == MessageType.FILE:
        return {"text": message.text, "file": message.file}
    if message.type == MessageType.QUIZ:
        return {"text": message.text, "quiz": message.quiz}
    return {"text": message.text}


def _reply_summary(reply):
    if reply is None:
        return None
    if reply.is_deleted:
        return {"id": reply.pk, "content": {"text": DELETED_PLACEHOLDER}, "sender": None}
    return {"id": reply.pk, "content": {"text": reply.text}, "sender": user_summary(reply.sender)}


def message_to_dict(message):
    """Soft-deleted messages are redacted here; storage keeps the original."""
    deleted = message.is_deleted
    return {
        "id": message.pk,
        "groupId": message.group_id,
        "position": message.position,
        "sender": None if deleted else user_summary(message.sender),
        "type": message.type,
        "content": {"text": DELETED_PLACEHOLDER} if deleted else _content(message),
        "replyTo": _reply_summary(message.reply_to),
        "readBy": [
            {"userId": r.user_id, "readAt": iso(r.read_at)} for r in message.read_receipts.all()
        ],
        "edited": {
            "isEdited": message.is_edited,
            "editedAt": iso(message.edited_at),
            "previousContent": None if deleted else message.previous_content,
        },
        "isDeleted": deleted,
        "deletedAt": iso(message.deleted_at),
        "systemAction": message.system_action or None,
        "createdAt": iso(message.created_at),
        "updatedAt": iso(message.updated_at),
    }


def membership_to_dict(membership):
    return {
        "user": user_summary(membership.user),
        "role": membership.role,
        "joinedAt": iso(membership.joined_at),
    }


def group_to_dict(group, include_members=True):
    data = {
        "id": group.pk,
        "name": group.name,
        "description": group.description,
        "createdBy": group.created_by_id,
        "maxMembers": group.max_members,
        "isActive": group.is_active,
        "settings": group.group_settings,
        "memberCount": group.member_count(),
        "createdAt": iso(group.created_at),
        "updatedAt": iso(group.updated_at),
    }
    if include_members:
        data["members"] = [
            membership_to_dict(m) for m in group.memberships.select_related("user")
        ]
    return data
