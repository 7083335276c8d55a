import django.core.validators
import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("chat", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Quiz",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("title", models.CharField(max_length=200)),
                ("description", models.CharField(blank=True, max_length=1000)),
                ("shuffle_questions", models.BooleanField(default=False)),
                ("shuffle_options", models.BooleanField(default=False)),
                ("show_results", models.BooleanField(default=True)),
                ("allow_retakes", models.BooleanField(default=False)),
                (
                    "time_limit",
                    models.PositiveIntegerField(blank=True, help_text="Minutes for the whole quiz", null=True),
                ),
                (
                    "max_attempts",
                    models.PositiveIntegerField(
                        default=1, validators=[django.core.validators.MinValueValidator(1)]
                    ),
                ),
                ("deadline", models.DateTimeField()),
                ("is_active", models.BooleanField(default=True)),
                ("total_marks", models.FloatField(default=0, editable=False)),
                ("total_submissions", models.PositiveIntegerField(default=0)),
                ("average_score", models.FloatField(default=0)),
                ("highest_score", models.FloatField(default=0)),
                ("lowest_score", models.FloatField(default=0)),
                ("question_stats", models.JSONField(blank=True, default=list)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "created_by",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="quizzes",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "group",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE, related_name="quizzes", to="chat.group"
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at", "id"],
                "indexes": [
                    models.Index(fields=["group", "-created_at"], name="quiz_quiz_group_i_5a8e3f_idx"),
                    models.Index(fields=["deadline"], name="quiz_quiz_deadlin_9d4c6b_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Question",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("order", models.PositiveIntegerField(default=0, help_text="Display order")),
                ("text", models.TextField()),
                (
                    "type",
                    models.CharField(
                        choices=[
                            ("multiple-choice", "Multiple choice"),
                            ("short-answer", "Short answer"),
                            ("true-false", "True / false"),
                            ("essay", "Essay"),
                        ],
                        max_length=20,
                    ),
                ),
                ("options", models.JSONField(blank=True, default=list)),
                ("correct_answer", models.JSONField(blank=True, null=True)),
                ("explanation", models.TextField(blank=True)),
                (
                    "marks",
                    models.FloatField(default=1, validators=[django.core.validators.MinValueValidator(0)]),
                ),
                ("time_limit", models.PositiveIntegerField(blank=True, help_text="Seconds", null=True)),
                (
                    "quiz",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE, related_name="questions", to="quiz.quiz"
                    ),
                ),
            ],
            options={
                "ordering": ["order", "id"],
            },
        ),
        migrations.CreateModel(
            name="Submission",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("attempt_number", models.PositiveIntegerField()),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("in-progress", "In progress"),
                            ("submitted", "Submitted"),
                            ("graded", "Graded"),
                        ],
                        default="in-progress",
                        max_length=12,
                    ),
                ),
                ("started_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("submitted_at", models.DateTimeField(blank=True, null=True)),
                ("total_score", models.FloatField(blank=True, null=True)),
                ("percentage", models.FloatField(blank=True, null=True)),
                ("time_spent", models.PositiveIntegerField(blank=True, help_text="Seconds", null=True)),
                (
                    "quiz",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE, related_name="submissions", to="quiz.quiz"
                    ),
                ),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="quiz_submissions",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["started_at", "id"],
                "constraints": [
                    models.UniqueConstraint(fields=("quiz", "user", "attempt_number"), name="uniq_attempt_number"),
                    models.UniqueConstraint(
                        condition=models.Q(("status", "in-progress")),
                        fields=("quiz", "user"),
                        name="one_open_attempt_per_user",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Answer",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("question_index", models.PositiveIntegerField()),
                ("answer", models.JSONField(blank=True, null=True)),
                ("time_spent", models.FloatField(blank=True, null=True)),
                ("is_correct", models.BooleanField(null=True)),
                ("marks_obtained", models.FloatField(default=0)),
                (
                    "submission",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE, related_name="answers", to="quiz.submission"
                    ),
                ),
            ],
            options={
                "ordering": ["question_index"],
                "constraints": [
                    models.UniqueConstraint(fields=("submission", "question_index"), name="uniq_answer_per_question")
                ],
            },
        ),
    ]
