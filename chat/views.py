from core.exceptions import ValidationFailed
from core.http import api_view, json_ok, read_json

from . import membership, message_store
from .forms import EditMessageForm, GroupForm, MemberForm, RoleForm, SendMessageForm
from .models import MAX_GROUP_MEMBERS, MemberRole
from .permissions import require_member
from .serializers import group_to_dict, membership_to_dict, message_to_dict
from .utils import broadcast_to_group, notify_user


def _positive_int(request, name, default):
    raw = request.GET.get(name)
    if raw in (None, ""):
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValidationFailed(f"{name} must be an integer")
    if value < 1:
        raise ValidationFailed(f"{name} must be positive")
    return value


# ----------------------------------------------------------------------------
# Groups
# ----------------------------------------------------------------------------

@api_view("POST")
def create_group(request):
    data = GroupForm.validated(read_json(request))
    group = membership.create_group(
        request.user,
        data["name"],
        description=data["description"],
        max_members=data["maxMembers"] or MAX_GROUP_MEMBERS,
        settings=data["settings"],
    )
    return json_ok(group_to_dict(group), status=201, message="Group created successfully")


@api_view("GET", "PUT", "DELETE")
def group_detail(request, group_id):
    if request.method == "DELETE":
        membership.delete_group(group_id, request.user)
        return json_ok(message="Group deleted successfully")

    if request.method == "PUT":
        payload = read_json(request)
        data = GroupForm.validated(payload)
        group = membership.update_group(
            group_id,
            request.user,
            name=data["name"] if "name" in payload else None,
            description=data["description"] if "description" in payload else None,
            max_members=data["maxMembers"],
            settings=data["settings"],
        )
        return json_ok(group_to_dict(group), message="Group updated successfully")

    group = message_store.get_group(group_id)
    require_member(group, request.user)
    return json_ok(group_to_dict(group))


@api_view("POST")
def join_group(request, group_id):
    membership.join_group(group_id, request.user)
    return json_ok(group_to_dict(message_store.get_group(group_id)), message="Joined group successfully")


@api_view("POST")
def leave_group(request, group_id):
    membership.leave_group(group_id, request.user)
    return json_ok(message="Left group successfully")


@api_view("GET", "POST")
def group_members(request, group_id):
    if request.method == "POST":
        data = MemberForm.validated(read_json(request))
        member = membership.add_member(
            group_id, request.user, data["userId"], data["role"] or MemberRole.MEMBER
        )
        return json_ok(membership_to_dict(member), message="Member added successfully")

    group = message_store.get_group(group_id)
    require_member(group, request.user)
    return json_ok([membership_to_dict(m) for m in group.memberships.select_related("user")])


@api_view("DELETE")
def remove_member(request, group_id, user_id):
    membership.remove_member(group_id, request.user, user_id)
    return json_ok(message="Member removed successfully")


@api_view("PUT")
def member_role(request, group_id, user_id):
    data = RoleForm.validated(read_json(request))
    member = membership.change_member_role(group_id, request.user, user_id, data["role"])
    return json_ok(membership_to_dict(member), message="Member role updated successfully")


# ----------------------------------------------------------------------------
# Messages
# ----------------------------------------------------------------------------

@api_view("GET", "POST")
def group_messages(request, group_id):
    if request.method == "POST":
        data = SendMessageForm.validated(read_json(request))
        message = message_store.send(
            group_id, request.user, data["type"], data["content"], data.get("replyTo")
        )
        payload = message_to_dict(message)
        broadcast_to_group(message.group_id, "new-message", {"success": True, "data": payload})
        return json_ok(payload, status=201, message="Message sent successfully")

    group = message_store.get_group(group_id)
    require_member(group, request.user)
    messages = message_store.page(
        group.pk,
        page=_positive_int(request, "page", 1),
        limit=_positive_int(request, "limit", None),
    )
    return json_ok([message_to_dict(m) for m in messages], count=len(messages))


@api_view("POST")
def mark_all_read(request, group_id):
    marked = message_store.mark_all_read(group_id, request.user)
    return json_ok({"marked": marked}, message="All messages marked as read")


@api_view("GET")
def unread_count(request, group_id):
    return json_ok({"unreadCount": message_store.unread_count(group_id, request.user)})


@api_view("GET")
def search_messages(request, group_id):
    group = message_store.get_group(group_id)
    require_member(group, request.user)
    messages = message_store.search(group.pk, request.GET.get("q"))
    return json_ok([message_to_dict(m) for m in messages], count=len(messages))


@api_view("GET", "PUT", "DELETE")
def message_detail(request, message_id):
    if request.method == "PUT":
        data = EditMessageForm.validated(read_json(request))
        message = message_store.edit(message_id, request.user, data["content"])
        return json_ok(message_to_dict(message), message="Message updated successfully")

    if request.method == "DELETE":
        message_store.soft_delete(message_id, request.user)
        return json_ok(message="Message deleted successfully")

    message = message_store.get_message(message_id)
    require_member(message.group, request.user)
    return json_ok(message_to_dict(message))


@api_view("POST")
def restore_message(request, message_id):
    message = message_store.restore(message_id, request.user)
    return json_ok(message_to_dict(message), message="Message restored successfully")


@api_view("POST")
def mark_read(request, message_id):
    message, receipt = message_store.read_message(message_id, request.user)
    if receipt is not None and message.sender_id:
        notify_user(message.sender_id, "message-read", {
            "messageId": message.pk,
            "readBy": request.user.pk,
            "readAt": receipt.read_at.isoformat(),
        })
    return json_ok(
        {"marked": receipt is not None},
        message="Message marked as read" if receipt is not None else "Message already read",
    )
