# errors.py
# User-facing failure taxonomy. Every error carries one descriptive message.

class AssessError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"ok": False, "error": self.message}


class ValidationError(AssessError):
    """Missing or malformed input; rejected before any oracle call."""
    status_code = 400


class ConfirmationRequired(ValidationError):
    def __init__(self, answered: int, total: int):
        super().__init__(
            f"Only {answered}/{total} questions have a submission. "
            "Confirm to finalize the sprint with partial data."
        )
        self.answered = answered
        self.total = total

    def to_dict(self) -> dict:
        return {**super().to_dict(), "needsConfirmation": True, "answered": self.answered, "total": self.total}


class InvalidTransition(AssessError):
    status_code = 409


class GenerationError(AssessError):
    status_code = 502


class JudgeError(AssessError):
    status_code = 502


class EvaluationError(AssessError):
    status_code = 502


class PersistenceError(AssessError):
    status_code = 503
