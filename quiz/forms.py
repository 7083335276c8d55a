from django import forms

from chat.forms import AnyJSONField, PayloadForm

from .models import QuestionType

MAX_OPTIONS = 6


def _nested(form_class, payload, label):
    """Validate one item of a JSON list with `form_class`; errors name the item."""
    if not isinstance(payload, dict):
        raise forms.ValidationError(f"{label} must be an object")
    form = form_class(data=payload)
    if not form.is_valid():
        errors = form.errors.get("__all__") or next(iter(form.errors.values()))
        raise forms.ValidationError(f"{label}: {errors[0]}")
    return form.cleaned_data


def _scalar(value):
    return isinstance(value, (str, int, float, bool))


class QuestionForm(PayloadForm):
    question = forms.CharField(max_length=2000)
    type = forms.ChoiceField(choices=QuestionType.choices)
    options = AnyJSONField(required=False)
    correctAnswer = AnyJSONField(required=False)
    explanation = forms.CharField(required=False)
    marks = forms.FloatField(min_value=0, required=False)
    timeLimit = forms.IntegerField(min_value=0, required=False)

    def clean_options(self):
        options = self.cleaned_data.get("options") or []
        if not isinstance(options, list):
            raise forms.ValidationError("options must be a list")
        cleaned = []
        for option in options:
            # {"text": ..., "isCorrect": ...} objects are accepted for their text
            if isinstance(option, dict):
                option = option.get("text")
            if not isinstance(option, str) or not option.strip():
                raise forms.ValidationError("Every option needs text")
            cleaned.append(option.strip())
        return cleaned

    def clean(self):
        data = super().clean()
        kind = data.get("type")
        options = data.get("options") or []
        answer = data.get("correctAnswer")

        if kind == QuestionType.MULTIPLE_CHOICE and not 2 <= len(options) <= MAX_OPTIONS:
            raise forms.ValidationError(f"Multiple-choice questions need 2 to {MAX_OPTIONS} options")
        if kind == QuestionType.ESSAY:
            answer = None
        elif answer is None or not _scalar(answer):
            raise forms.ValidationError("correctAnswer is required")
        if kind == QuestionType.TRUE_FALSE and not isinstance(answer, bool):
            raise forms.ValidationError("True/false questions need a true or false correctAnswer")
        if kind == QuestionType.SHORT_ANSWER and not str(answer).strip():
            raise forms.ValidationError("Short-answer questions need a text correctAnswer")

        return {
            "text": data.get("question", ""),
            "type": kind,
            "options": options if kind == QuestionType.MULTIPLE_CHOICE else [],
            "correct_answer": answer,
            "explanation": data.get("explanation") or "",
            "marks": 1.0 if data.get("marks") is None else data["marks"],
            "time_limit": data.get("timeLimit"),
        }


class QuizUpdateForm(PayloadForm):
    title = forms.CharField(max_length=200, required=False)
    description = forms.CharField(max_length=1000, required=False)
    questions = AnyJSONField(required=False)
    settings = AnyJSONField(required=False)
    deadline = forms.DateTimeField(required=False)
    isActive = forms.NullBooleanField(required=False)

    def clean_questions(self):
        questions = self.cleaned_data.get("questions")
        if questions is None:
            return None
        if not isinstance(questions, list):
            raise forms.ValidationError("questions must be a list")
        return [_nested(QuestionForm, q, f"Question {i}") for i, q in enumerate(questions)]

    def clean_settings(self):
        settings = self.cleaned_data.get("settings")
        if settings is not None and not isinstance(settings, dict):
            raise forms.ValidationError("settings must be an object")
        return settings or {}


class QuizCreateForm(QuizUpdateForm):
    groupId = forms.IntegerField(min_value=1)
    title = forms.CharField(max_length=200)
    questions = AnyJSONField()
    deadline = forms.DateTimeField()


class AnswerForm(PayloadForm):
    questionIndex = forms.IntegerField(min_value=0)
    answer = AnyJSONField(required=False)
    timeSpent = forms.FloatField(min_value=0, required=False)

    def clean_answer(self):
        answer = self.cleaned_data.get("answer")
        if answer is not None and not _scalar(answer):
            raise forms.ValidationError("answer must be a string, number or boolean")
        return answer


class SubmitForm(PayloadForm):
    attemptId = forms.IntegerField(min_value=1)
    answers = AnyJSONField(required=False)
    timeSpent = forms.IntegerField(min_value=0, required=False)

    def clean_answers(self):
        answers = self.cleaned_data.get("answers")
        if answers in (None, ""):
            return []
        if not isinstance(answers, list):
            raise forms.ValidationError("answers must be a list")
        return [_nested(AnswerForm, a, f"Answer {i}") for i, a in enumerate(answers)]
