from django.conf import settings
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models

MAX_GROUP_MEMBERS = 500
MAX_TEXT_LENGTH = 5000
DELETED_PLACEHOLDER = "This message was deleted"


class MemberRole(models.TextChoices):
    ADMIN = "admin", "Admin"
    MEMBER = "member", "Member"


class MessageType(models.TextChoices):
    TEXT = "text", "Text"
    FILE = "file", "File"
    QUIZ = "quiz", "Quiz"
    SYSTEM = "system", "System"


class SystemAction(models.TextChoices):
    USER_JOINED = "user_joined", "User joined"
    USER_LEFT = "user_left", "User left"
    GROUP_CREATED = "group_created", "Group created"
    QUIZ_POSTED = "quiz_posted", "Quiz posted"
    FILE_SHARED = "file_shared", "File shared"
    SYSTEM_MESSAGE = "system_message", "System message"


class Group(models.Model):
    name = models.CharField(max_length=100)
    description = models.CharField(max_length=500, blank=True)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="created_groups"
    )
    max_members = models.PositiveIntegerField(
        default=MAX_GROUP_MEMBERS,
        validators=[MinValueValidator(1), MaxValueValidator(MAX_GROUP_MEMBERS)],
    )
    is_active = models.BooleanField(default=True)

    # settings
    allow_student_messages = models.BooleanField(default=True)
    allow_file_uploads = models.BooleanField(default=True)
    allow_quiz_creation = models.BooleanField(default=True)

    # last position handed out to a message in this group
    message_seq = models.PositiveBigIntegerField(default=0, editable=False)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at", "id"]
        indexes = [models.Index(fields=["is_active"], name="chat_group_is_acti_4b1c2d_idx")]

    def membership_for(self, user):
        if user is None or not getattr(user, "pk", None):
            return None
        return self.memberships.filter(user_id=user.pk).first()

    def is_member(self, user) -> bool:
        return self.membership_for(user) is not None

    def is_admin(self, user) -> bool:
        membership = self.membership_for(user)
        return membership is not None and membership.role == MemberRole.ADMIN

    def member_count(self) -> int:
        return self.memberships.count()

    def is_full(self) -> bool:
        return self.member_count() >= self.max_members

    @property
    def group_settings(self):
        return {
            "allowStudentMessages": self.allow_student_messages,
            "allowFileUploads": self.allow_file_uploads,
            "allowQuizCreation": self.allow_quiz_creation,
        }

    def __str__(self):
        return self.name


class Membership(models.Model):
    group = models.ForeignKey(Group, on_delete=models.CASCADE, related_name="memberships")
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="memberships"
    )
    role = models.CharField(max_length=10, choices=MemberRole.choices, default=MemberRole.MEMBER)
    joined_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["joined_at", "id"]
        constraints = [
            models.UniqueConstraint(fields=["group", "user"], name="uniq_membership_per_user")
        ]

    def __str__(self):
        return f"{self.user} in {self.group} ({self.role})"


class Message(models.Model):
    group = models.ForeignKey(Group, on_delete=models.CASCADE, related_name="messages")
    sender = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, related_name="messages"
    )
    type = models.CharField(max_length=10, choices=MessageType.choices, default=MessageType.TEXT)

    # content variants; which one is populated follows `type`
    text = models.TextField(blank=True, max_length=MAX_TEXT_LENGTH)
    file = models.JSONField(null=True, blank=True)
    quiz = models.JSONField(null=True, blank=True)

    reply_to = models.ForeignKey(
        "self", on_delete=models.SET_NULL, null=True, blank=True, related_name="replies"
    )
    position = models.PositiveBigIntegerField()

    is_edited = models.BooleanField(default=False)
    edited_at = models.DateTimeField(null=True, blank=True)
    previous_content = models.JSONField(null=True, blank=True)

    is_deleted = models.BooleanField(default=False)
    deleted_at = models.DateTimeField(null=True, blank=True)

    system_action = models.CharField(max_length=20, choices=SystemAction.choices, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["created_at", "position"]
        indexes = [
            models.Index(fields=["group", "-created_at"], name="chat_messag_group_i_7e2f1a_idx"),
            models.Index(fields=["is_deleted"], name="chat_messag_is_dele_3c9d0b_idx"),
        ]
        constraints = [
            models.UniqueConstraint(fields=["group", "position"], name="uniq_message_position")
        ]

    def save(self, *args, **kwargs):
        if self.type == MessageType.SYSTEM and not self.system_action:
            self.system_action = SystemAction.SYSTEM_MESSAGE
        return super().save(*args, **kwargs)

    @property
    def preview(self):
        if self.type == MessageType.FILE and self.file:
            return f"File: {self.file.get('originalName', '')}"
        if self.type == MessageType.QUIZ and self.quiz:
            return f"Quiz: {self.quiz.get('question', '')[:100]}"
        if self.type == MessageType.SYSTEM:
            return f"System: {self.system_action}"
        if len(self.text) > 100:
            return self.text[:100] + "..."
        return self.text

    def __str__(self):
        return f"#{self.position} in {self.group_id}: {self.preview}"


class ReadReceipt(models.Model):
    message = models.ForeignKey(Message, on_delete=models.CASCADE, related_name="read_receipts")
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="read_receipts"
    )
    read_at = models.DateTimeField()

    class Meta:
        ordering = ["read_at", "id"]
        constraints = [
            models.UniqueConstraint(fields=["message", "user"], name="uniq_read_per_user")
        ]

    def __str__(self):
        return f"{self.user_id} read {self.message_id}"
