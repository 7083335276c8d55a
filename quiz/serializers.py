from chat.serializers import iso, user_summary

from .engine import public_questions


def question_to_dict(question, index, reveal_answers=False):
    data = question.public(index)
    if reveal_answers:
        data["correctAnswer"] = question.correct_answer
        data["explanation"] = question.explanation
    return data


def quiz_to_dict(quiz, reveal_answers=False, include_questions=True):
    data = {
        "id": quiz.pk,
        "groupId": quiz.group_id,
        "createdBy": user_summary(quiz.created_by),
        "title": quiz.title,
        "description": quiz.description,
        "settings": quiz.quiz_settings,
        "deadline": iso(quiz.deadline),
        "isActive": quiz.is_active,
        "status": quiz.status,
        "timeRemaining": quiz.time_remaining(),
        "totalMarks": quiz.total_marks,
        "analytics": quiz.analytics,
        "createdAt": iso(quiz.created_at),
        "updatedAt": iso(quiz.updated_at),
    }
    if include_questions:
        data["questions"] = [
            question_to_dict(q, i, reveal_answers) for i, q in enumerate(quiz.questions.all())
        ]
    return data


def answer_to_dict(answer):
    return {
        "questionIndex": answer.question_index,
        "answer": answer.answer,
        "timeSpent": answer.time_spent,
        "isCorrect": answer.is_correct,
        "marksObtained": answer.marks_obtained,
    }


def submission_to_dict(submission, include_answers=True):
    data = {
        "id": submission.pk,
        "quizId": submission.quiz_id,
        "userId": submission.user_id,
        "attemptNumber": submission.attempt_number,
        "status": submission.status,
        "startedAt": iso(submission.started_at),
        "submittedAt": iso(submission.submitted_at),
        "score": submission.total_score,
        "percentage": submission.percentage,
        "timeSpent": submission.time_spent,
    }
    if include_answers:
        data["answers"] = [answer_to_dict(a) for a in submission.answers.all()]
    return data


def attempt_to_dict(submission, resumed):
    """What `start` hands the quiz taker: no answers, no explanations."""
    quiz = submission.quiz
    return {
        "attemptId": submission.pk,
        "attemptNumber": submission.attempt_number,
        "resumed": resumed,
        "quiz": {
            "id": quiz.pk,
            "title": quiz.title,
            "description": quiz.description,
            "questions": public_questions(quiz, submission),
            "settings": quiz.quiz_settings,
            "timeLimit": quiz.time_limit,
            "startedAt": iso(submission.started_at),
        },
    }
