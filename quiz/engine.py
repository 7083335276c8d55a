"""
Quiz attempt lifecycle and scoring.

Per (quiz, user) an attempt moves NoAttempt -> in-progress -> submitted ->
graded. Every transition takes a row lock on the quiz first (on SQLite the
IMMEDIATE write transaction does the serializing), so attempt numbers are
assigned one at a time and a user never holds two open attempts.
Grading is a separate, idempotent step: a submission that fails to grade stays
`submitted` and can be graded again later (see `grade_pending`).
"""
import logging
import random

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from chat.message_store import as_pk, get_group, post_system_message
from chat.models import SystemAction
from chat.permissions import Capability, require, require_member
from core.exceptions import (
    AlreadySubmitted,
    AttemptsExhausted,
    Conflict,
    Expired,
    Inactive,
    NotFound,
    Unauthorized,
    ValidationFailed,
)

from .models import Answer, Question, QuestionType, Quiz, Submission, SubmissionStatus

logger = logging.getLogger(__name__)

SETTING_FIELDS = {
    "shuffleQuestions": "shuffle_questions",
    "shuffleOptions": "shuffle_options",
    "showResults": "show_results",
    "allowRetakes": "allow_retakes",
    "timeLimit": "time_limit",
    "maxAttempts": "max_attempts",
}
BOOLEAN_SETTINGS = {"shuffleQuestions", "shuffleOptions", "showResults", "allowRetakes"}

QUESTION_FIELDS = ("text", "type", "options", "correct_answer", "explanation", "marks", "time_limit")


# ----------------------------------------------------------------------------
# Scoring (pure)
# ----------------------------------------------------------------------------

def _same(expected, given) -> bool:
    # True == 1 in Python; an answer of 1 must not match a correct answer of true
    if isinstance(expected, bool) or isinstance(given, bool):
        return type(expected) is type(given) and expected == given
    return expected == given


def _normalized(value):
    if value is None or isinstance(value, (dict, list, bool)):
        return None
    return str(value).strip().lower()


def is_correct(question, answer) -> bool:
    if answer is None:
        return False
    if question.type in (QuestionType.MULTIPLE_CHOICE, QuestionType.TRUE_FALSE):
        return _same(question.correct_answer, answer)
    if question.type == QuestionType.SHORT_ANSWER:
        expected = _normalized(question.correct_answer)
        return expected is not None and expected == _normalized(answer)
    # essays wait for manual grading
    return False


def grade_answer(question, answer):
    """Return (is_correct, marks_obtained) for one answer."""
    correct = is_correct(question, answer)
    return correct, (question.marks if correct else 0)


def percentage(total_score, total_marks) -> float:
    if not total_marks:
        return 0.0
    return total_score / total_marks * 100


def score(questions, answers):
    """
    Grade `answers` ({question_index: answer}) against `questions`.

    Returns ({question_index: (is_correct, marks_obtained)}, total_score).
    Questions without an answer are simply absent from the result.
    """
    graded = {}
    for index, answer in answers.items():
        if 0 <= index < len(questions):
            graded[index] = grade_answer(questions[index], answer)
        else:
            graded[index] = (False, 0)
    return graded, sum(marks for _, marks in graded.values())


# ----------------------------------------------------------------------------
# Lookups and permissions
# ----------------------------------------------------------------------------

def fetch_quiz(quiz_id, for_update=False) -> Quiz:
    qs = Quiz.objects.select_for_update() if for_update else Quiz.objects
    quiz = qs.select_related("group").filter(pk=as_pk(quiz_id, "Quiz")).first()
    if quiz is None:
        raise NotFound("Quiz not found")
    return quiz


def can_manage(quiz, user) -> bool:
    return quiz.created_by_id == user.pk or quiz.group.is_admin(user)


def get_quiz(quiz_id, user):
    """Return (quiz, reveal_answers) for a group member."""
    quiz = fetch_quiz(quiz_id)
    require_member(quiz.group, user)
    return quiz, can_manage(quiz, user) or user.is_platform_admin


def list_quizzes(group_id, user, status="active"):
    group = get_group(group_id)
    require_member(group, user)
    quizzes = Quiz.objects.filter(group=group).select_related("created_by")
    now = timezone.now()
    if status == "active":
        quizzes = quizzes.filter(is_active=True, deadline__gt=now)
    elif status == "expired":
        quizzes = quizzes.filter(deadline__lte=now)
    elif status == "inactive":
        quizzes = quizzes.filter(is_active=False)
    elif status != "all":
        raise ValidationFailed("status must be one of: active, expired, inactive, all")
    return quizzes


def public_questions(quiz, submission, questions=None) -> list:
    """
    Questions as a quiz taker sees them. With shuffleQuestions the order is
    seeded by the attempt, so resuming an attempt shows the same order.
    """
    if questions is None:
        questions = list(quiz.questions.all())
    exposed = [q.public(index) for index, q in enumerate(questions)]
    if quiz.shuffle_questions:
        random.Random(f"{quiz.pk}:{submission.pk}").shuffle(exposed)
    return exposed


# ----------------------------------------------------------------------------
# Quiz definitions
# ----------------------------------------------------------------------------

def _apply_settings(quiz, quiz_settings):
    for key, value in (quiz_settings or {}).items():
        field = SETTING_FIELDS.get(key)
        if field is None:
            raise ValidationFailed(f"Unknown quiz setting {key!r}")
        if key in BOOLEAN_SETTINGS:
            if not isinstance(value, bool):
                raise ValidationFailed(f"Setting {key} must be true or false")
        elif key == "timeLimit":
            if value is not None and (isinstance(value, bool) or not isinstance(value, int) or value < 1):
                raise ValidationFailed("timeLimit must be a positive number of minutes")
        elif isinstance(value, bool) or not isinstance(value, int) or value < 1:
            raise ValidationFailed("maxAttempts must be at least 1")
        setattr(quiz, field, value)


def _definition(question) -> dict:
    return {field: getattr(question, field) for field in QUESTION_FIELDS}


def _replace_questions(quiz, questions):
    quiz.questions.all().delete()
    Question.objects.bulk_create(
        [Question(quiz=quiz, order=order, **fields) for order, fields in enumerate(questions)]
    )
    quiz.recompute_total_marks()


def create_quiz(creator, group_id, title, questions, deadline, description="", quiz_settings=None) -> Quiz:
    if not questions:
        raise ValidationFailed("Quiz must have at least one question")
    if deadline <= timezone.now():
        raise ValidationFailed("Deadline must be in the future")

    group = get_group(group_id)
    require(group, creator, Capability.CREATE_QUIZ)
    with transaction.atomic():
        quiz = Quiz(
            group=group,
            created_by=creator,
            title=title.strip(),
            description=(description or "").strip(),
            deadline=deadline,
        )
        _apply_settings(quiz, quiz_settings)
        quiz.save()
        _replace_questions(quiz, questions)
        post_system_message(
            group.pk,
            creator,
            SystemAction.QUIZ_POSTED,
            f'{creator.display_name} posted a new quiz: "{quiz.title}"',
        )
    logger.info("Quiz %s created in group %s by user %s", quiz.pk, group.pk, creator.pk)
    return quiz


def update_quiz(quiz_id, actor, title=None, description=None, questions=None, quiz_settings=None,
                deadline=None, is_active=None) -> Quiz:
    with transaction.atomic():
        quiz = fetch_quiz(quiz_id, for_update=True)
        if not can_manage(quiz, actor):
            raise Unauthorized("Not authorized to update this quiz")

        if questions is not None:
            current = [_definition(q) for q in quiz.questions.all()]
            if current != list(questions):
                if quiz.submissions.exists():
                    raise Conflict("Cannot change questions after submissions have been made")
                if not questions:
                    raise ValidationFailed("Quiz must have at least one question")
                _replace_questions(quiz, questions)

        if title is not None:
            quiz.title = title.strip()
        if description is not None:
            quiz.description = description.strip()
        if deadline is not None:
            quiz.deadline = deadline
        if is_active is not None:
            quiz.is_active = is_active
        _apply_settings(quiz, quiz_settings)
        quiz.save()
    return quiz


def delete_quiz(quiz_id, actor) -> None:
    with transaction.atomic():
        quiz = fetch_quiz(quiz_id, for_update=True)
        if not can_manage(quiz, actor):
            raise Unauthorized("Not authorized to delete this quiz")
        quiz.delete()
    logger.info("Quiz %s deleted by user %s", quiz_id, actor.pk)


# ----------------------------------------------------------------------------
# Attempts
# ----------------------------------------------------------------------------

def start_attempt(quiz_id, user):
    """Return (submission, resumed)."""
    with transaction.atomic():
        quiz = fetch_quiz(quiz_id, for_update=True)
        require_member(quiz.group, user)
        if not quiz.is_active:
            raise Inactive("Quiz is not active")
        if quiz.is_expired():
            raise Inactive("Quiz has expired")

        open_attempt = quiz.submissions.filter(user=user, status=SubmissionStatus.IN_PROGRESS).first()
        if open_attempt is not None:
            return open_attempt, True

        finished = quiz.submissions.filter(user=user).exclude(status=SubmissionStatus.IN_PROGRESS).count()
        if finished >= quiz.max_attempts:
            raise AttemptsExhausted("No more attempts remaining for this quiz")
        submission = Submission.objects.create(
            quiz=quiz, user=user, attempt_number=finished + 1, started_at=timezone.now()
        )
    logger.info("User %s started attempt %s on quiz %s", user.pk, submission.attempt_number, quiz.pk)
    return submission, False


def _past_time_limit(quiz, submission, now) -> bool:
    if not settings.QUIZ_ENFORCE_TIME_LIMIT or not quiz.time_limit:
        return False
    return (now - submission.started_at).total_seconds() > quiz.time_limit * 60


def _record_answers(submission, question_count, answers):
    rows, seen = [], set()
    for item in answers:
        index = item["questionIndex"]
        if index >= question_count:
            raise ValidationFailed(f"Question {index} does not exist in this quiz")
        if index in seen:
            raise ValidationFailed(f"Question {index} was answered more than once")
        seen.add(index)
        rows.append(Answer(
            submission=submission,
            question_index=index,
            answer=item.get("answer"),
            time_spent=item.get("timeSpent"),
        ))
    Answer.objects.bulk_create(rows)


def submit_attempt(quiz_id, user, attempt_id, answers, time_spent=None) -> Submission:
    """
    Record the answers of an in-progress attempt and grade it.

    The attempt is committed as `submitted` before grading starts; if grading
    fails it stays that way and `grade_submission` can be re-run.
    """
    with transaction.atomic():
        quiz = fetch_quiz(quiz_id, for_update=True)
        require_member(quiz.group, user)
        submission = (
            quiz.submissions.select_for_update()
            .filter(pk=as_pk(attempt_id, "Quiz attempt"), user=user)
            .first()
        )
        if submission is None:
            raise NotFound("Quiz attempt not found")
        if submission.status != SubmissionStatus.IN_PROGRESS:
            raise AlreadySubmitted("Quiz attempt already submitted")

        now = timezone.now()
        expired = _past_time_limit(quiz, submission, now)
        if not expired:
            _record_answers(submission, quiz.questions.count(), answers)
        submission.status = SubmissionStatus.SUBMITTED
        submission.submitted_at = now
        if time_spent is None or expired:
            time_spent = int((now - submission.started_at).total_seconds())
        submission.time_spent = time_spent
        submission.save(update_fields=["status", "submitted_at", "time_spent"])

    try:
        submission = grade_submission(submission.pk)
    except Exception:
        logger.exception("Grading submission %s failed; it stays submitted", submission.pk)
        raise

    if expired:
        logger.info("Attempt %s on quiz %s closed after its time limit", submission.pk, quiz.pk)
        raise Expired("Time limit for this attempt has passed; it was closed without answers")
    return submission


def grade_submission(submission_id) -> Submission:
    """Score a submitted attempt and refresh quiz analytics. Graded attempts are returned as-is."""
    quiz_pk = Submission.objects.filter(pk=submission_id).values_list("quiz_id", flat=True).first()
    if quiz_pk is None:
        raise NotFound("Quiz attempt not found")

    with transaction.atomic():
        quiz = Quiz.objects.select_for_update().get(pk=quiz_pk)
        submission = Submission.objects.select_for_update().get(pk=submission_id)
        if submission.status == SubmissionStatus.GRADED:
            return submission
        if submission.status != SubmissionStatus.SUBMITTED:
            raise Conflict("Only submitted attempts can be graded")

        questions = list(quiz.questions.all())
        answers = list(submission.answers.all())
        graded, total = score(questions, {a.question_index: a.answer for a in answers})
        for answer in answers:
            answer.is_correct, answer.marks_obtained = graded[answer.question_index]
        Answer.objects.bulk_update(answers, ["is_correct", "marks_obtained"])

        submission.total_score = total
        submission.percentage = percentage(total, quiz.total_marks)
        submission.status = SubmissionStatus.GRADED
        submission.save(update_fields=["total_score", "percentage", "status"])
        recompute_analytics(quiz, question_count=len(questions))

    logger.info("Graded submission %s: %s/%s", submission.pk, total, quiz.total_marks)
    return submission


def grade_pending(quiz=None):
    """Re-grade every attempt stuck in `submitted`. Returns (graded_ids, failed_ids)."""
    pending = Submission.objects.filter(status=SubmissionStatus.SUBMITTED)
    if quiz is not None:
        pending = pending.filter(quiz=quiz)
    graded, failed = [], []
    for pk in pending.values_list("pk", flat=True):
        try:
            grade_submission(pk)
        except Exception:
            logger.exception("Grading submission %s failed", pk)
            failed.append(pk)
        else:
            graded.append(pk)
    return graded, failed


def recompute_analytics(quiz, question_count=None) -> Quiz:
    """Rebuild analytics from scratch over graded submissions."""
    graded = list(
        quiz.submissions.filter(status=SubmissionStatus.GRADED).prefetch_related("answers")
    )
    if question_count is None:
        question_count = quiz.questions.count()

    stats = []
    if graded:
        scores = [s.percentage or 0 for s in graded]
        quiz.total_submissions = len(graded)
        quiz.average_score = sum(scores) / len(scores)
        quiz.highest_score = max(scores)
        quiz.lowest_score = min(scores)

        for index in range(question_count):
            answered = [a for s in graded for a in s.answers.all() if a.question_index == index]
            if not answered:
                continue
            stats.append({
                "questionIndex": index,
                "correctAnswers": sum(1 for a in answered if a.is_correct),
                "totalAttempts": len(answered),
                "averageTime": sum(a.time_spent or 0 for a in answered) / len(answered),
            })
    else:
        quiz.total_submissions = 0
        quiz.average_score = quiz.highest_score = quiz.lowest_score = 0
    quiz.question_stats = stats
    quiz.save(update_fields=[
        "total_submissions", "average_score", "highest_score", "lowest_score", "question_stats",
    ])
    return quiz


def results(quiz_id, user):
    """
    Return (quiz, latest_graded_submission, all_submissions). The last item is
    None unless `user` manages the quiz or is a platform admin.
    """
    quiz = fetch_quiz(quiz_id)
    require_member(quiz.group, user)
    privileged = can_manage(quiz, user) or user.is_platform_admin

    latest = (
        quiz.submissions.filter(user=user, status=SubmissionStatus.GRADED)
        .prefetch_related("answers")
        .order_by("-submitted_at", "-pk")
        .first()
    )
    if latest is None and not privileged:
        raise Unauthorized("No submission found or results not available yet")

    everyone = None
    if privileged:
        everyone = list(quiz.submissions.select_related("user").prefetch_related("answers"))
    return quiz, latest, everyone


def user_submissions(user):
    return (
        Submission.objects.filter(user=user)
        .exclude(status=SubmissionStatus.IN_PROGRESS)
        .select_related("quiz", "quiz__group")
        .order_by("-submitted_at", "-pk")
    )
