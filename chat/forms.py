from django import forms

from core.exceptions import ValidationFailed

from .models import MAX_GROUP_MEMBERS, MessageType


class PayloadForm(forms.Form):
    """Form over a decoded JSON payload; `validated` raises ValidationFailed."""

    @classmethod
    def validated(cls, payload):
        if not isinstance(payload, dict):
            raise ValidationFailed("Payload must be an object")
        form = cls(data=payload)
        if not form.is_valid():
            raise ValidationFailed.from_form(form)
        return form.cleaned_data


class AnyJSONField(forms.JSONField):
    """JSONField for already-decoded payloads (strings stay strings)."""

    def to_python(self, value):
        return value

    def bound_data(self, data, initial):
        return data


class SendMessageForm(PayloadForm):
    groupId = forms.IntegerField(min_value=1, required=False)
    type = forms.ChoiceField(
        choices=[(t, t) for t in (MessageType.TEXT, MessageType.FILE, MessageType.QUIZ)],
        required=False,
    )
    content = AnyJSONField()
    replyTo = forms.IntegerField(min_value=1, required=False)

    def clean_type(self):
        return self.cleaned_data.get("type") or MessageType.TEXT


class GroupEventForm(PayloadForm):
    groupId = forms.IntegerField(min_value=1)


class MessageEventForm(PayloadForm):
    messageId = forms.IntegerField(min_value=1)


class QuizSubmittedForm(PayloadForm):
    groupId = forms.IntegerField(min_value=1)
    quizId = forms.IntegerField(min_value=1)


class EditMessageForm(PayloadForm):
    content = AnyJSONField()

    def clean_content(self):
        content = self.cleaned_data["content"]
        if isinstance(content, dict):
            content = content.get("text")
        if not isinstance(content, str):
            raise forms.ValidationError("Message text is required")
        return content


class GroupForm(PayloadForm):
    name = forms.CharField(max_length=100, required=False)
    description = forms.CharField(max_length=500, required=False, strip=True)
    maxMembers = forms.IntegerField(min_value=1, max_value=MAX_GROUP_MEMBERS, required=False)
    settings = AnyJSONField(required=False)

    def clean_settings(self):
        settings = self.cleaned_data.get("settings")
        if settings is not None and not isinstance(settings, dict):
            raise forms.ValidationError("settings must be an object")
        return settings or {}


class MemberForm(PayloadForm):
    userId = forms.IntegerField(min_value=1)
    role = forms.CharField(required=False)


class RoleForm(PayloadForm):
    role = forms.CharField()
