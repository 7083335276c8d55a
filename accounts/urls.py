from django.urls import path
from . import views

app_name = "accounts"
urlpatterns = [
    path("token/", views.obtain_token, name="token"),
    path("me/", views.me, name="me"),
]
