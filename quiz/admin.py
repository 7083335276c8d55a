from django.contrib import admin, messages

from . import engine
from .models import Answer, Question, Quiz, Submission


@admin.action(description="Grade pending submissions")
def grade_pending_submissions(modeladmin, request, queryset):
    """
    Re-runs grading for every attempt of the selected quizzes that is stuck in
    `submitted`. Already graded attempts are left alone.
    """
    graded = 0
    failed = []

    for quiz in queryset:
        done, broken = engine.grade_pending(quiz)
        graded += len(done)
        failed.extend(broken)

    if graded:
        messages.success(request, f"Graded {graded} submission(s).")
    if failed:
        messages.error(request, f"Could not grade submission(s): {', '.join(map(str, failed))}")
    if not graded and not failed:
        messages.info(request, "No submissions were waiting to be graded.")


@admin.action(description="Recompute analytics")
def recompute_analytics(modeladmin, request, queryset):
    count = 0
    for quiz in queryset:
        engine.recompute_analytics(quiz)
        count += 1
    messages.success(request, f"Recomputed analytics for {count} quiz(zes).")


class QuestionInline(admin.StackedInline):
    model = Question
    extra = 0
    fields = ("order", "text", "type", "options", "correct_answer", "explanation", "marks", "time_limit")

    def get_queryset(self, request):
        # keep them listed in order
        return super().get_queryset(request).order_by("order", "id")


@admin.register(Quiz)
class QuizAdmin(admin.ModelAdmin):
    list_display = ("title", "group", "created_by", "is_active", "deadline", "total_marks", "total_submissions")
    list_filter = ("is_active", "group")
    search_fields = ("title", "description")
    readonly_fields = (
        "total_marks", "total_submissions", "average_score", "highest_score",
        "lowest_score", "question_stats", "created_at", "updated_at",
    )
    inlines = [QuestionInline]
    actions = [grade_pending_submissions, recompute_analytics]


class AnswerInline(admin.TabularInline):
    model = Answer
    extra = 0
    readonly_fields = ("question_index", "answer", "time_spent", "is_correct", "marks_obtained")


@admin.register(Submission)
class SubmissionAdmin(admin.ModelAdmin):
    list_display = ("id", "quiz", "user", "attempt_number", "status", "total_score", "percentage", "submitted_at")
    list_filter = ("status", "quiz")
    readonly_fields = ("started_at", "submitted_at", "total_score", "percentage", "time_spent")
    inlines = [AnswerInline]

    def get_queryset(self, request):
        return super().get_queryset(request).select_related("quiz", "user")

    def has_add_permission(self, request):
        return False
