from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator
from django.db import models
from django.db.models import Q, Sum
from django.utils import timezone


class QuestionType(models.TextChoices):
    MULTIPLE_CHOICE = "multiple-choice", "Multiple choice"
    SHORT_ANSWER = "short-answer", "Short answer"
    TRUE_FALSE = "true-false", "True / false"
    ESSAY = "essay", "Essay"


class SubmissionStatus(models.TextChoices):
    IN_PROGRESS = "in-progress", "In progress"
    SUBMITTED = "submitted", "Submitted"
    GRADED = "graded", "Graded"


class Quiz(models.Model):
    group = models.ForeignKey("chat.Group", on_delete=models.CASCADE, related_name="quizzes")
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="quizzes"
    )
    title = models.CharField(max_length=200)
    description = models.CharField(max_length=1000, blank=True)

    # settings
    shuffle_questions = models.BooleanField(default=False)
    shuffle_options = models.BooleanField(default=False)
    show_results = models.BooleanField(default=True)
    allow_retakes = models.BooleanField(default=False)
    time_limit = models.PositiveIntegerField(null=True, blank=True, help_text="Minutes for the whole quiz")
    max_attempts = models.PositiveIntegerField(default=1, validators=[MinValueValidator(1)])

    deadline = models.DateTimeField()
    is_active = models.BooleanField(default=True)
    total_marks = models.FloatField(default=0, editable=False)

    # analytics, recomputed from graded submissions after every grading
    total_submissions = models.PositiveIntegerField(default=0)
    average_score = models.FloatField(default=0)
    highest_score = models.FloatField(default=0)
    lowest_score = models.FloatField(default=0)
    question_stats = models.JSONField(default=list, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at", "id"]
        indexes = [
            models.Index(fields=["group", "-created_at"], name="quiz_quiz_group_i_5a8e3f_idx"),
            models.Index(fields=["deadline"], name="quiz_quiz_deadlin_9d4c6b_idx"),
        ]

    def recompute_total_marks(self):
        total = self.questions.aggregate(total=Sum("marks"))["total"] or 0
        Quiz.objects.filter(pk=self.pk).update(total_marks=total)
        self.total_marks = total
        return total

    def is_expired(self, now=None) -> bool:
        return self.deadline <= (now or timezone.now())

    @property
    def status(self):
        if self.is_expired():
            return "expired"
        if not self.is_active:
            return "inactive"
        return "active"

    def time_remaining(self):
        """Whole minutes until the deadline, never negative."""
        seconds = (self.deadline - timezone.now()).total_seconds()
        return max(0, int(-(-seconds // 60)))

    @property
    def quiz_settings(self):
        return {
            "shuffleQuestions": self.shuffle_questions,
            "shuffleOptions": self.shuffle_options,
            "showResults": self.show_results,
            "allowRetakes": self.allow_retakes,
            "timeLimit": self.time_limit,
            "maxAttempts": self.max_attempts,
        }

    @property
    def analytics(self):
        return {
            "totalSubmissions": self.total_submissions,
            "averageScore": self.average_score,
            "highestScore": self.highest_score,
            "lowestScore": self.lowest_score,
            "questionStats": self.question_stats,
        }

    def __str__(self):
        return f"{self.title} ({self.group})"


class Question(models.Model):
    quiz = models.ForeignKey(Quiz, on_delete=models.CASCADE, related_name="questions")
    order = models.PositiveIntegerField(default=0, help_text="Display order")
    text = models.TextField()
    type = models.CharField(max_length=20, choices=QuestionType.choices)
    options = models.JSONField(default=list, blank=True)
    correct_answer = models.JSONField(null=True, blank=True)
    explanation = models.TextField(blank=True)
    marks = models.FloatField(default=1, validators=[MinValueValidator(0)])
    time_limit = models.PositiveIntegerField(null=True, blank=True, help_text="Seconds")

    class Meta:
        ordering = ["order", "id"]

    def clean(self):
        if not self.text or not self.text.strip():
            raise ValidationError("Question text is required.")
        if self.type == QuestionType.MULTIPLE_CHOICE:
            if not isinstance(self.options, list) or len(self.options) < 2:
                raise ValidationError("Multiple-choice questions need at least two options.")
            if self.correct_answer is None:
                raise ValidationError("Multiple-choice questions need a correct answer.")
        elif self.type == QuestionType.TRUE_FALSE:
            if not isinstance(self.correct_answer, bool):
                raise ValidationError("True/false questions need a true or false answer.")
        elif self.type == QuestionType.SHORT_ANSWER:
            if not isinstance(self.correct_answer, str) or not self.correct_answer.strip():
                raise ValidationError("Short-answer questions need a text answer.")
        elif self.type == QuestionType.ESSAY:
            self.correct_answer = None

    def save(self, *args, **kwargs):
        super().save(*args, **kwargs)
        self.quiz.recompute_total_marks()

    def delete(self, *args, **kwargs):
        quiz = self.quiz
        result = super().delete(*args, **kwargs)
        quiz.recompute_total_marks()
        return result

    def public(self, index):
        """What a quiz taker may see: never the answer or explanation."""
        return {
            "index": index,
            "question": self.text,
            "type": self.type,
            "options": self.options,
            "marks": self.marks,
            "timeLimit": self.time_limit,
        }

    def __str__(self):
        return f"Q{self.order} in {self.quiz}"


class Submission(models.Model):
    quiz = models.ForeignKey(Quiz, on_delete=models.CASCADE, related_name="submissions")
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="quiz_submissions"
    )
    attempt_number = models.PositiveIntegerField()
    status = models.CharField(
        max_length=12, choices=SubmissionStatus.choices, default=SubmissionStatus.IN_PROGRESS
    )
    started_at = models.DateTimeField(default=timezone.now)
    submitted_at = models.DateTimeField(null=True, blank=True)
    total_score = models.FloatField(null=True, blank=True)
    percentage = models.FloatField(null=True, blank=True)
    time_spent = models.PositiveIntegerField(null=True, blank=True, help_text="Seconds")

    class Meta:
        ordering = ["started_at", "id"]
        constraints = [
            models.UniqueConstraint(
                fields=["quiz", "user", "attempt_number"], name="uniq_attempt_number"
            ),
            models.UniqueConstraint(
                fields=["quiz", "user"],
                condition=Q(status="in-progress"),
                name="one_open_attempt_per_user",
            ),
        ]

    def __str__(self):
        return f"Attempt {self.attempt_number} by {self.user_id} on {self.quiz_id} ({self.status})"


class Answer(models.Model):
    submission = models.ForeignKey(Submission, on_delete=models.CASCADE, related_name="answers")
    question_index = models.PositiveIntegerField()
    answer = models.JSONField(null=True, blank=True)
    time_spent = models.FloatField(null=True, blank=True)
    is_correct = models.BooleanField(null=True)
    marks_obtained = models.FloatField(default=0)

    class Meta:
        ordering = ["question_index"]
        constraints = [
            models.UniqueConstraint(
                fields=["submission", "question_index"], name="uniq_answer_per_question"
            )
        ]

    def __str__(self):
        return f"Answer to Q{self.question_index} in submission {self.submission_id}"
