from django.contrib import admin, messages
from django.utils import timezone

from .models import Group, Membership, Message, MessageType, ReadReceipt


@admin.action(description="Soft-delete selected messages")
def soft_delete_messages(modeladmin, request, queryset):
    """Hides content on every read path; the stored text is kept."""
    updated = (
        queryset.exclude(type=MessageType.SYSTEM)
        .filter(is_deleted=False)
        .update(is_deleted=True, deleted_at=timezone.now())
    )
    if updated:
        messages.success(request, f"Deleted {updated} message(s).")
    else:
        messages.info(request, "No messages were deleted.")


@admin.action(description="Restore selected messages")
def restore_messages(modeladmin, request, queryset):
    restored = queryset.filter(is_deleted=True).update(is_deleted=False, deleted_at=None)
    if restored:
        messages.success(request, f"Restored {restored} message(s).")
    else:
        messages.info(request, "No messages were restored.")


class MembershipInline(admin.TabularInline):
    model = Membership
    extra = 0
    fields = ("user", "role", "joined_at")
    readonly_fields = ("joined_at",)


@admin.register(Group)
class GroupAdmin(admin.ModelAdmin):
    list_display = ("name", "created_by", "max_members", "is_active", "created_at")
    list_filter = ("is_active",)
    search_fields = ("name", "description")
    readonly_fields = ("message_seq", "created_at", "updated_at")
    inlines = [MembershipInline]


class ReadReceiptInline(admin.TabularInline):
    model = ReadReceipt
    extra = 0
    readonly_fields = ("user", "read_at")


@admin.register(Message)
class MessageAdmin(admin.ModelAdmin):
    list_display = ("id", "group", "position", "sender", "type", "is_deleted", "created_at")
    list_filter = ("type", "is_deleted", "group")
    search_fields = ("text",)
    readonly_fields = ("position", "previous_content", "created_at", "updated_at")
    inlines = [ReadReceiptInline]
    actions = [soft_delete_messages, restore_messages]
