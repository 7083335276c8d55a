from django.urls import path

from . import views

app_name = "quiz"

urlpatterns = [
    path("", views.create_quiz, name="create"),
    path("user/submissions/", views.my_submissions, name="my_submissions"),
    path("groups/<int:group_id>/", views.group_quizzes, name="group_quizzes"),
    path("<int:quiz_id>/", views.quiz_detail, name="detail"),
    path("<int:quiz_id>/start/", views.start_quiz, name="start"),
    path("<int:quiz_id>/submit/", views.submit_quiz, name="submit"),
    path("<int:quiz_id>/results/", views.quiz_results, name="results"),
]
