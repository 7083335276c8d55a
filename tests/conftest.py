import itertools
from datetime import timedelta

import pytest
from django.utils import timezone

from accounts.models import Role, User
from accounts.tokens import issue_token
from chat import membership
from quiz import engine

_usernames = itertools.count(1)


@pytest.fixture
def make_user(db):
    def make(role=Role.STUDENT, **extra):
        n = next(_usernames)
        extra.setdefault("username", f"user{n}")
        extra.setdefault("name", f"User {n}")
        return User.objects.create_user(password="secret-pass", role=role, **extra)

    return make


@pytest.fixture
def teacher(make_user):
    return make_user(role=Role.ADMIN, name="Teacher")


@pytest.fixture
def student(make_user):
    return make_user(name="Student")


@pytest.fixture
def outsider(make_user):
    return make_user(name="Outsider")


@pytest.fixture
def group(teacher, student):
    group = membership.create_group(teacher, "Physics 101", description="Mechanics")
    membership.join_group(group.pk, student)
    return group


@pytest.fixture
def auth():
    def headers(user):
        return {"HTTP_AUTHORIZATION": f"Bearer {issue_token(user)}"}

    return headers


QUIZ_QUESTIONS = [
    {
        "text": "Pick B",
        "type": "multiple-choice",
        "options": ["A", "B", "C"],
        "correct_answer": "B",
        "explanation": "B is right",
        "marks": 1.0,
        "time_limit": None,
    },
    {
        "text": "The sky is blue",
        "type": "true-false",
        "options": [],
        "correct_answer": True,
        "explanation": "",
        "marks": 2.0,
        "time_limit": None,
    },
]


@pytest.fixture
def quiz(group, teacher):
    return engine.create_quiz(
        teacher,
        group.pk,
        "Warm-up",
        [dict(q) for q in QUIZ_QUESTIONS],
        timezone.now() + timedelta(days=1),
        quiz_settings={"maxAttempts": 1},
    )

CORRECT_ANSWERS = [{"questionIndex": 0, "answer": "B"}, {"questionIndex": 1, "answer": True}]
