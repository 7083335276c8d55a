import functools
import json
import logging

from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt

from accounts.tokens import user_from_authorization

from .exceptions import ServiceError, ValidationFailed

logger = logging.getLogger(__name__)


def json_ok(data=None, status=200, **extra):
    body = {"success": True}
    body.update(extra)
    if data is not None:
        body["data"] = data
    return JsonResponse(body, status=status)


def json_error(message, status, **extra):
    body = {"success": False, "message": message}
    body.update(extra)
    return JsonResponse(body, status=status)


def read_json(request) -> dict:
    if not request.body:
        return {}
    try:
        payload = json.loads(request.body)
    except (ValueError, UnicodeDecodeError):
        raise ValidationFailed("Request body is not valid JSON")
    if not isinstance(payload, dict):
        raise ValidationFailed("Request body must be a JSON object")
    return payload


def api_view(*methods, authenticated=True):
    """
    JSON endpoint wrapper.
    - Rejects methods not listed (405).
    - Resolves the bearer token to request.user (401 on failure).
    - Turns ServiceError into {"success": false, "message"} with its status;
      anything else is logged and answered with a generic 500.
    """
    allowed = {m.upper() for m in methods}

    def decorator(view):
        @csrf_exempt
        @functools.wraps(view)
        def wrapper(request, *args, **kwargs):
            if request.method not in allowed:
                return json_error(f"Method {request.method} not allowed", 405)
            try:
                if authenticated:
                    request.user = user_from_authorization(request.headers.get("Authorization"))
                return view(request, *args, **kwargs)
            except ValidationFailed as exc:
                return json_error(exc.message, exc.status, errors=exc.errors)
            except ServiceError as exc:
                return json_error(exc.message, exc.status)
            except Exception:
                logger.exception("Unhandled error in %s %s", request.method, request.path)
                return json_error("Server error", 500)

        return wrapper

    return decorator
