from chat.serializers import iso
from chat.utils import broadcast_to_group
from core.http import api_view, json_ok, read_json

from . import engine
from .forms import QuizCreateForm, QuizUpdateForm, SubmitForm
from .serializers import attempt_to_dict, quiz_to_dict, submission_to_dict


@api_view("POST")
def create_quiz(request):
    data = QuizCreateForm.validated(read_json(request))
    quiz = engine.create_quiz(
        request.user,
        data["groupId"],
        data["title"],
        data["questions"],
        data["deadline"],
        description=data["description"],
        quiz_settings=data["settings"],
    )
    return json_ok(quiz_to_dict(quiz, reveal_answers=True), status=201, message="Quiz created successfully")


@api_view("GET")
def group_quizzes(request, group_id):
    quizzes = engine.list_quizzes(group_id, request.user, request.GET.get("status") or "active")
    data = [quiz_to_dict(q, include_questions=False) for q in quizzes]
    return json_ok(data, count=len(data))


@api_view("GET")
def my_submissions(request):
    data = []
    for submission in engine.user_submissions(request.user):
        item = submission_to_dict(submission, include_answers=False)
        item["quiz"] = {
            "id": submission.quiz_id,
            "title": submission.quiz.title,
            "groupId": submission.quiz.group_id,
            "totalMarks": submission.quiz.total_marks,
        }
        data.append(item)
    return json_ok(data, count=len(data))


@api_view("GET", "PUT", "DELETE")
def quiz_detail(request, quiz_id):
    if request.method == "DELETE":
        engine.delete_quiz(quiz_id, request.user)
        return json_ok(message="Quiz deleted successfully")

    if request.method == "PUT":
        payload = read_json(request)
        data = QuizUpdateForm.validated(payload)
        quiz = engine.update_quiz(
            quiz_id,
            request.user,
            title=data["title"] if "title" in payload else None,
            description=data["description"] if "description" in payload else None,
            questions=data["questions"],
            quiz_settings=data["settings"],
            deadline=data["deadline"],
            is_active=data["isActive"],
        )
        return json_ok(quiz_to_dict(quiz, reveal_answers=True), message="Quiz updated successfully")

    quiz, reveal = engine.get_quiz(quiz_id, request.user)
    return json_ok(quiz_to_dict(quiz, reveal_answers=reveal))


@api_view("POST")
def start_quiz(request, quiz_id):
    submission, resumed = engine.start_attempt(quiz_id, request.user)
    return json_ok(
        attempt_to_dict(submission, resumed),
        message="Resuming existing attempt" if resumed else "Quiz attempt started",
    )


@api_view("POST")
def submit_quiz(request, quiz_id):
    data = SubmitForm.validated(read_json(request))
    submission = engine.submit_attempt(
        quiz_id, request.user, data["attemptId"], data["answers"], data["timeSpent"]
    )
    quiz = submission.quiz
    broadcast_to_group(quiz.group_id, "quiz-submission-update", {
        "quizId": quiz.pk,
        "userId": request.user.pk,
        "submittedAt": iso(submission.submitted_at),
    })
    return json_ok({
        "attemptId": submission.pk,
        "score": submission.total_score,
        "percentage": submission.percentage,
        "totalMarks": quiz.total_marks,
        "timeSpent": submission.time_spent,
        "status": submission.status,
    }, message="Quiz submitted successfully")


@api_view("GET")
def quiz_results(request, quiz_id):
    quiz, latest, everyone = engine.results(quiz_id, request.user)
    data = {
        "quiz": {
            "id": quiz.pk,
            "title": quiz.title,
            "totalMarks": quiz.total_marks,
            "analytics": quiz.analytics,
        },
        "submission": None,
    }
    if latest is not None:
        data["submission"] = submission_to_dict(
            latest, include_answers=quiz.show_results or everyone is not None
        )
    if everyone is not None:
        data["allSubmissions"] = [submission_to_dict(s) for s in everyone]
    return json_ok(data)
