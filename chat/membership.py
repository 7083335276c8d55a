"""
Group lifecycle and membership.

Memberships are rows keyed by (group, user) with a unique constraint, and every
change takes a row lock on the group first, so concurrent joins cannot push a
group past `max_members` and the creator's admin row is never removed or
demoted.
"""
import logging

from django.contrib.auth import get_user_model
from django.db import IntegrityError, transaction

from core.exceptions import Conflict, NotFound, ValidationFailed

from .message_store import as_pk, get_group, post_system_message
from .models import MAX_GROUP_MEMBERS, Group, MemberRole, Membership, SystemAction
from .permissions import require_admin

logger = logging.getLogger(__name__)

SETTING_FIELDS = {
    "allowStudentMessages": "allow_student_messages",
    "allowFileUploads": "allow_file_uploads",
    "allowQuizCreation": "allow_quiz_creation",
}


def _get_user(user_id):
    user = get_user_model().objects.filter(pk=as_pk(user_id, "User")).first()
    if user is None:
        raise NotFound("User not found")
    return user


def _apply_settings(group, settings):
    for key, value in (settings or {}).items():
        field = SETTING_FIELDS.get(key)
        if field is None:
            raise ValidationFailed(f"Unknown group setting {key!r}")
        if not isinstance(value, bool):
            raise ValidationFailed(f"Setting {key} must be true or false")
        setattr(group, field, value)


def _check_max_members(max_members):
    if isinstance(max_members, bool) or not isinstance(max_members, int):
        raise ValidationFailed("maxMembers must be an integer")
    if not 1 <= max_members <= MAX_GROUP_MEMBERS:
        raise ValidationFailed(f"maxMembers must be between 1 and {MAX_GROUP_MEMBERS}")


def create_group(creator, name, description="", max_members=MAX_GROUP_MEMBERS, settings=None) -> Group:
    name = (name or "").strip()
    if not name:
        raise ValidationFailed("Group name is required")
    _check_max_members(max_members)

    with transaction.atomic():
        if Group.objects.filter(name__iexact=name).exists():
            raise Conflict("Group name already exists")
        group = Group(
            name=name,
            description=(description or "").strip(),
            created_by=creator,
            max_members=max_members,
        )
        _apply_settings(group, settings)
        group.save()
        Membership.objects.create(group=group, user=creator, role=MemberRole.ADMIN)
        post_system_message(
            group.pk, creator, SystemAction.GROUP_CREATED, f"{creator.display_name} created the group"
        )
    logger.info("Group %s created by user %s", group.pk, creator.pk)
    return group


def update_group(group_id, actor, name=None, description=None, max_members=None, settings=None) -> Group:
    with transaction.atomic():
        group = get_group(group_id, for_update=True)
        require_admin(group, actor)
        update_fields = ["updated_at"]

        if name is not None:
            name = name.strip()
            if not name:
                raise ValidationFailed("Group name cannot be empty")
            if Group.objects.filter(name__iexact=name).exclude(pk=group.pk).exists():
                raise Conflict("Group name already exists")
            group.name = name
            update_fields.append("name")
        if description is not None:
            group.description = description.strip()
            update_fields.append("description")
        if max_members is not None:
            _check_max_members(max_members)
            if max_members < group.member_count():
                raise Conflict("maxMembers cannot be lower than the current member count")
            group.max_members = max_members
            update_fields.append("max_members")
        if settings:
            _apply_settings(group, settings)
            update_fields.extend(SETTING_FIELDS[k] for k in settings)

        group.save(update_fields=update_fields)
    return group


def delete_group(group_id, actor) -> None:
    """Hard delete; messages, memberships and quizzes cascade with the group."""
    with transaction.atomic():
        group = get_group(group_id, for_update=True)
        require_admin(group, actor)
        group.delete()
    logger.info("Group %s deleted by user %s", group_id, actor.pk)


def _add(group, user, role):
    if group.is_member(user):
        raise Conflict("User is already a member of this group")
    if group.is_full():
        raise Conflict("Group is full")
    try:
        with transaction.atomic():
            return Membership.objects.create(group=group, user=user, role=role)
    except IntegrityError:
        raise Conflict("User is already a member of this group")


def join_group(group_id, user) -> Membership:
    with transaction.atomic():
        group = get_group(group_id, for_update=True)
        membership = _add(group, user, MemberRole.MEMBER)
        post_system_message(group.pk, user, SystemAction.USER_JOINED, f"{user.display_name} joined the group")
    return membership


def leave_group(group_id, user) -> None:
    with transaction.atomic():
        group = get_group(group_id, for_update=True)
        if group.created_by_id == user.pk:
            raise Conflict(
                "Group creator cannot leave the group. Transfer ownership or delete the group instead."
            )
        deleted, _ = Membership.objects.filter(group=group, user=user).delete()
        if not deleted:
            raise Conflict("You are not a member of this group")
        post_system_message(group.pk, user, SystemAction.USER_LEFT, f"{user.display_name} left the group")


def add_member(group_id, actor, user_id, role=MemberRole.MEMBER) -> Membership:
    if role not in MemberRole.values:
        raise ValidationFailed("Role must be either admin or member")
    with transaction.atomic():
        group = get_group(group_id, for_update=True)
        require_admin(group, actor)
        return _add(group, _get_user(user_id), role)


def remove_member(group_id, actor, user_id) -> None:
    user_pk = as_pk(user_id, "User")
    with transaction.atomic():
        group = get_group(group_id, for_update=True)
        require_admin(group, actor)
        if group.created_by_id == user_pk:
            raise Conflict("Cannot remove group creator")
        deleted, _ = Membership.objects.filter(group=group, user_id=user_pk).delete()
        if not deleted:
            raise Conflict("User is not a member of this group")


def change_member_role(group_id, actor, user_id, role) -> Membership:
    if role not in MemberRole.values:
        raise ValidationFailed("Role must be either admin or member")
    user_pk = as_pk(user_id, "User")
    with transaction.atomic():
        group = get_group(group_id, for_update=True)
        require_admin(group, actor)
        if group.created_by_id == user_pk:
            raise Conflict("Cannot change group creator role")
        membership = Membership.objects.filter(group=group, user_id=user_pk).first()
        if membership is None:
            raise Conflict("User is not a member of this group")
        if membership.role == role:
            raise Conflict("Member already has this role")
        membership.role = role
        membership.save(update_fields=["role"])
    return membership


def member_group_ids(user, group_ids) -> set:
    """Subset of `group_ids` (as ints) that `user` belongs to; unparseable ids are dropped."""
    pks = set()
    for value in group_ids:
        try:
            pks.add(int(value))
        except (TypeError, ValueError):
            continue
    return set(
        Membership.objects.filter(user_id=user.pk, group_id__in=pks).values_list("group_id", flat=True)
    )
