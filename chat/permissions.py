"""
Capability checks against group membership and settings.

Every authorization decision for groups, messages and quizzes goes through
`require`, so the rules live in one table instead of being spread across
string comparisons in views and consumers.
"""
import enum

from accounts.models import Role
from core.exceptions import Unauthorized

from .models import MemberRole


class Capability(enum.Enum):
    VIEW = "view"
    SEND_MESSAGE = "send_message"
    SHARE_FILE = "share_file"
    CREATE_QUIZ = "create_quiz"
    MODERATE = "moderate"


DENIED_MESSAGES = {
    Capability.VIEW: "Not a member of this group",
    Capability.SEND_MESSAGE: "Students are not allowed to send messages in this group",
    Capability.SHARE_FILE: "File uploads are not allowed in this group",
    Capability.CREATE_QUIZ: "Quiz creation is not allowed in this group",
    Capability.MODERATE: "Admin access required for this action",
}


def allows(group, user, capability: Capability, membership=None) -> bool:
    membership = membership or group.membership_for(user)
    if membership is None:
        return False
    group_admin = membership.role == MemberRole.ADMIN

    if capability is Capability.VIEW:
        return True
    if capability is Capability.MODERATE:
        return group_admin
    if capability is Capability.SEND_MESSAGE:
        return user.role != Role.STUDENT or group.allow_student_messages
    if capability is Capability.SHARE_FILE:
        return group.allow_file_uploads
    if capability is Capability.CREATE_QUIZ:
        return group.allow_quiz_creation or group_admin or user.role == Role.ADMIN
    raise ValueError(f"Unknown capability {capability!r}")


def require(group, user, *capabilities: Capability):
    """Return the user's membership, raising Unauthorized if any capability is missing."""
    membership = group.membership_for(user)
    if membership is None:
        raise Unauthorized(DENIED_MESSAGES[Capability.VIEW])
    for capability in capabilities:
        if not allows(group, user, capability, membership):
            raise Unauthorized(DENIED_MESSAGES[capability])
    return membership


def require_member(group, user):
    return require(group, user, Capability.VIEW)


def require_admin(group, user):
    return require(group, user, Capability.MODERATE)
