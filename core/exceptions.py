"""Error kinds shared by the REST views and the websocket consumer.

Every kind is scoped: it is reported to the caller that triggered it and the
action it guarded has no side effects.
"""


class ServiceError(Exception):
    status = 400
    default_message = "Request failed"

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)


class Unauthenticated(ServiceError):
    status = 401
    default_message = "Not authenticated"


class Unauthorized(ServiceError):
    status = 403
    default_message = "Not authorized to perform this action"


class NotFound(ServiceError):
    status = 404
    default_message = "Not found"


class Conflict(ServiceError):
    status = 409
    default_message = "Conflicting state"


class ValidationFailed(ServiceError):
    status = 400
    default_message = "Invalid payload"

    def __init__(self, message=None, errors=None):
        super().__init__(message)
        self.errors = errors or {}

    @classmethod
    def from_form(cls, form):
        errors = {field: [str(e) for e in errs] for field, errs in form.errors.items()}
        first = next(iter(errors.values()), [cls.default_message])[0]
        return cls(first, errors)


class Inactive(ServiceError):
    status = 400
    default_message = "Quiz is not active or has expired"


class AttemptsExhausted(Conflict):
    default_message = "Maximum attempts reached"


class AlreadySubmitted(Conflict):
    default_message = "Quiz already submitted"


class Expired(Conflict):
    default_message = "Time limit for this attempt has passed"
