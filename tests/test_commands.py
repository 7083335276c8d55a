import pytest
from django.core.management import CommandError, call_command
from django.utils import timezone

from quiz import engine
from quiz.models import Submission, SubmissionStatus


def test_grade_pending_submissions(quiz, student, capsys):
    submission, _ = engine.start_attempt(quiz.pk, student)
    Submission.objects.filter(pk=submission.pk).update(
        status=SubmissionStatus.SUBMITTED, submitted_at=timezone.now()
    )

    call_command("grade_pending_submissions", quiz=quiz.pk)

    assert "Graded 1 submission(s)." in capsys.readouterr().out
    submission.refresh_from_db()
    assert submission.status == SubmissionStatus.GRADED
    assert submission.total_score == 0


def test_unknown_quiz(db):
    with pytest.raises(CommandError):
        call_command("grade_pending_submissions", quiz=999)
