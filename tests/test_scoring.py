from types import SimpleNamespace

import pytest

from quiz.engine import is_correct, percentage, score


def question(kind, correct=None, marks=1):
    return SimpleNamespace(type=kind, correct_answer=correct, marks=marks)


@pytest.mark.parametrize("answer, expected", [("B", True), ("b", False), ("A", False), (None, False)])
def test_multiple_choice_is_exact(answer, expected):
    assert is_correct(question("multiple-choice", "B"), answer) is expected


def test_true_false_does_not_confuse_bools_and_ints():
    q = question("true-false", True)
    assert is_correct(q, True)
    assert not is_correct(q, 1)
    assert not is_correct(q, "true")
    assert not is_correct(question("multiple-choice", 1), True)


def test_short_answer_ignores_case_and_surrounding_space():
    q = question("short-answer", "Newton")
    assert is_correct(q, "  newton ")
    assert not is_correct(q, "Isaac Newton")
    assert is_correct(question("short-answer", "42"), 42)


def test_essay_is_never_auto_correct():
    assert not is_correct(question("essay"), "a thoughtful essay")


def test_score_sums_marks_of_correct_answers():
    questions = [question("multiple-choice", "B", 1), question("true-false", True, 2)]
    graded, total = score(questions, {0: "B", 1: True})
    assert total == 3
    assert graded == {0: (True, 1), 1: (True, 2)}
    assert percentage(total, 3) == 100


def test_unanswered_questions_are_absent_and_score_nothing():
    questions = [question("multiple-choice", "B", 1), question("true-false", True, 2)]
    graded, total = score(questions, {1: False})
    assert total == 0
    assert graded == {1: (False, 0)}


def test_score_is_deterministic():
    questions = [question("short-answer", "Ohm", 3), question("essay", None, 5)]
    answers = {0: "ohm", 1: "text"}
    assert score(questions, answers) == score(questions, answers)


def test_percentage_of_zero_total_marks_is_zero():
    result = percentage(0, 0)
    assert result == 0
    assert isinstance(result, float)
