from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest
from django.db import connection
from django.utils import timezone

from chat import membership
from chat.models import Message, SystemAction
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
from quiz import engine
from quiz.models import Submission, SubmissionStatus

from .conftest import CORRECT_ANSWERS as CORRECT, QUIZ_QUESTIONS


def test_create_quiz_totals_marks_and_announces_it(quiz, group):
    assert quiz.total_marks == 3
    notice = Message.objects.filter(group=group).order_by("-position").first()
    assert notice.system_action == SystemAction.QUIZ_POSTED
    assert "Warm-up" in notice.text


def test_create_quiz_respects_group_setting(group, teacher, student):
    group.allow_quiz_creation = False
    group.save()
    with pytest.raises(Unauthorized):
        engine.create_quiz(
            student, group.pk, "Mine", [dict(QUIZ_QUESTIONS[0])], timezone.now() + timedelta(days=1)
        )


def test_full_attempt_scores_and_then_exhausts(quiz, student):
    submission, resumed = engine.start_attempt(quiz.pk, student)
    assert not resumed
    assert submission.attempt_number == 1

    graded = engine.submit_attempt(quiz.pk, student, submission.pk, CORRECT, time_spent=30)
    assert graded.status == SubmissionStatus.GRADED
    assert graded.total_score == 3
    assert graded.percentage == 100
    assert graded.time_spent == 30

    with pytest.raises(AttemptsExhausted):
        engine.start_attempt(quiz.pk, student)


def test_start_resumes_open_attempt(quiz, student):
    first, _ = engine.start_attempt(quiz.pk, student)
    again, resumed = engine.start_attempt(quiz.pk, student)
    assert resumed
    assert again.pk == first.pk
    assert Submission.objects.filter(quiz=quiz, user=student).count() == 1


def test_attempt_numbers_follow_finished_attempts(quiz, student):
    quiz.max_attempts = 2
    quiz.save()
    first, _ = engine.start_attempt(quiz.pk, student)
    engine.submit_attempt(quiz.pk, student, first.pk, [])
    second, _ = engine.start_attempt(quiz.pk, student)
    assert second.attempt_number == 2


def test_inactive_or_expired_quiz_cannot_start(quiz, student):
    quiz.is_active = False
    quiz.save()
    with pytest.raises(Inactive):
        engine.start_attempt(quiz.pk, student)

    quiz.is_active = True
    quiz.deadline = timezone.now() - timedelta(minutes=1)
    quiz.save()
    with pytest.raises(Inactive):
        engine.start_attempt(quiz.pk, student)


def test_non_members_cannot_start(quiz, outsider):
    with pytest.raises(Unauthorized):
        engine.start_attempt(quiz.pk, outsider)


def test_public_questions_hide_answers(quiz, student):
    submission, _ = engine.start_attempt(quiz.pk, student)
    for question in engine.public_questions(quiz, submission):
        assert "correctAnswer" not in question
        assert "explanation" not in question
        assert set(question) == {"index", "question", "type", "options", "marks", "timeLimit"}


def test_shuffled_order_is_stable_for_an_attempt(quiz, student):
    quiz.shuffle_questions = True
    quiz.save()
    submission, _ = engine.start_attempt(quiz.pk, student)
    resumed, _ = engine.start_attempt(quiz.pk, student)
    first = engine.public_questions(quiz, submission)
    assert first == engine.public_questions(quiz, resumed)
    assert sorted(q["index"] for q in first) == [0, 1]


def test_submit_twice_is_already_submitted(quiz, student):
    submission, _ = engine.start_attempt(quiz.pk, student)
    engine.submit_attempt(quiz.pk, student, submission.pk, CORRECT)
    with pytest.raises(AlreadySubmitted):
        engine.submit_attempt(quiz.pk, student, submission.pk, CORRECT)


def test_submit_someone_elses_attempt_is_not_found(quiz, teacher, student):
    submission, _ = engine.start_attempt(quiz.pk, student)
    with pytest.raises(NotFound):
        engine.submit_attempt(quiz.pk, teacher, submission.pk, CORRECT)


def test_answers_to_unknown_questions_are_rejected(quiz, student):
    submission, _ = engine.start_attempt(quiz.pk, student)
    with pytest.raises(ValidationFailed):
        engine.submit_attempt(quiz.pk, student, submission.pk, [{"questionIndex": 7, "answer": "B"}])
    submission.refresh_from_db()
    assert submission.status == SubmissionStatus.IN_PROGRESS


def test_grading_is_idempotent(quiz, student):
    submission, _ = engine.start_attempt(quiz.pk, student)
    graded = engine.submit_attempt(quiz.pk, student, submission.pk, CORRECT[:1])
    again = engine.grade_submission(graded.pk)
    assert again.total_score == graded.total_score == 1
    quiz.refresh_from_db()
    assert quiz.total_submissions == 1


def test_in_progress_attempts_cannot_be_graded(quiz, student):
    submission, _ = engine.start_attempt(quiz.pk, student)
    with pytest.raises(Conflict):
        engine.grade_submission(submission.pk)


def test_stuck_submissions_are_graded_later(quiz, student):
    submission, _ = engine.start_attempt(quiz.pk, student)
    Submission.objects.filter(pk=submission.pk).update(
        status=SubmissionStatus.SUBMITTED, submitted_at=timezone.now()
    )
    graded, failed = engine.grade_pending()
    assert graded == [submission.pk]
    assert failed == []
    submission.refresh_from_db()
    assert submission.status == SubmissionStatus.GRADED


def test_analytics_are_recomputed_from_graded_attempts(quiz, student, make_user, group):
    other = make_user()
    membership.join_group(group.pk, other)

    mine, _ = engine.start_attempt(quiz.pk, student)
    engine.submit_attempt(quiz.pk, student, mine.pk, CORRECT)
    theirs, _ = engine.start_attempt(quiz.pk, other)
    engine.submit_attempt(quiz.pk, other, theirs.pk, [{"questionIndex": 0, "answer": "A"}])

    quiz.refresh_from_db()
    assert quiz.total_submissions == 2
    assert quiz.highest_score == 100
    assert quiz.lowest_score == 0
    assert quiz.average_score == 50
    first_question = quiz.question_stats[0]
    assert first_question["questionIndex"] == 0
    assert first_question["correctAnswers"] == 1
    assert first_question["totalAttempts"] == 2


def test_time_limit_closes_late_attempts(quiz, student, settings):
    settings.QUIZ_ENFORCE_TIME_LIMIT = True
    quiz.time_limit = 5
    quiz.save()
    submission, _ = engine.start_attempt(quiz.pk, student)
    Submission.objects.filter(pk=submission.pk).update(started_at=timezone.now() - timedelta(minutes=6))

    with pytest.raises(Expired):
        engine.submit_attempt(quiz.pk, student, submission.pk, CORRECT)

    submission.refresh_from_db()
    assert submission.status == SubmissionStatus.GRADED
    assert submission.total_score == 0
    assert not submission.answers.exists()


def test_results_for_members_and_managers(quiz, teacher, student):
    with pytest.raises(Unauthorized):
        engine.results(quiz.pk, student)

    submission, _ = engine.start_attempt(quiz.pk, student)
    engine.submit_attempt(quiz.pk, student, submission.pk, CORRECT)

    _, latest, everyone = engine.results(quiz.pk, student)
    assert latest.pk == submission.pk
    assert everyone is None

    _, latest, everyone = engine.results(quiz.pk, teacher)
    assert latest is None
    assert [s.pk for s in everyone] == [submission.pk]


def test_questions_are_frozen_once_attempted(quiz, teacher, student):
    engine.start_attempt(quiz.pk, student)
    changed = [dict(q) for q in QUIZ_QUESTIONS]
    changed[0]["correct_answer"] = "C"
    with pytest.raises(Conflict):
        engine.update_quiz(quiz.pk, teacher, questions=changed)

    # resending the same definition is allowed
    updated = engine.update_quiz(quiz.pk, teacher, questions=[dict(q) for q in QUIZ_QUESTIONS], title="Renamed")
    assert updated.title == "Renamed"


def test_only_creator_or_group_admin_deletes(quiz, student):
    with pytest.raises(Unauthorized):
        engine.delete_quiz(quiz.pk, student)


@pytest.mark.django_db(transaction=True)
def test_concurrent_starts_share_one_attempt(quiz, student):
    def start(_):
        try:
            submission, resumed = engine.start_attempt(quiz.pk, student)
            return submission.pk, resumed
        finally:
            connection.close()

    with ThreadPoolExecutor(max_workers=8) as pool:
        outcomes = list(pool.map(start, range(8)))

    assert len({pk for pk, _ in outcomes}) == 1
    assert sorted(resumed for _, resumed in outcomes) == [False] + [True] * 7
    assert Submission.objects.filter(quiz=quiz, user=student).count() == 1
