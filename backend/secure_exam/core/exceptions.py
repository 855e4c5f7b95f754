"""
Error taxonomy shared by the exam and attempt services.

Every error is terminal for the request that raised it; the API layer maps
``status_code`` onto the HTTP response and ``status`` onto the error
classification the UI shows.
"""


class ExamServiceError(Exception):
    status_code = 500
    status = "error"

    def __init__(self, message: str = "Internal server error"):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.message, "status": self.status}


class NotFound(ExamServiceError):
    status_code = 404
    status = "not_found"


class Forbidden(ExamServiceError):
    status_code = 403
    status = "forbidden"


class InvalidState(ExamServiceError):
    status_code = 400
    status = "invalid_state"


class Conflict(ExamServiceError):
    status_code = 409
    status = "conflict"


class ValidationError(ExamServiceError):
    status_code = 422
    status = "validation_error"
