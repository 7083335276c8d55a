from django.contrib.auth import authenticate

from core.exceptions import Unauthenticated, ValidationFailed
from core.http import api_view, json_ok, read_json

from .tokens import issue_token


def profile(user):
    return {
        "id": user.pk,
        "username": user.username,
        "name": user.display_name,
        "email": user.email,
        "role": user.role,
        "avatar": user.avatar,
        "isActive": user.is_active,
    }


@api_view("POST", authenticated=False)
def obtain_token(request):
    payload = read_json(request)
    username = (payload.get("username") or "").strip()
    password = payload.get("password") or ""
    if not username or not password:
        raise ValidationFailed("Username and password are required")
    user = authenticate(request, username=username, password=password)
    if user is None:
        raise Unauthenticated("Invalid credentials")
    return json_ok({"token": issue_token(user), "user": profile(user)})


@api_view("GET")
def me(request):
    return json_ok(profile(request.user))
