# backend/errors.py
class CrewNotFoundError(Exception):
    """Raised when a referenced crew id has no identity or duty record."""

    def __init__(self, crew_id: str):
        super().__init__(f"Crew member {crew_id} not found")
        self.crew_id = crew_id


class InvalidInputError(Exception):
    """Raised when a request is malformed (time ordering, missing fields) before any evaluation runs."""

    pass


class InvalidTransitionError(InvalidInputError):
    """Raised when a swap names crew whose current state does not allow the transition."""

    pass


class RuleConfigurationError(Exception):
    """Raised when the rule folder yields no usable duty limits."""

    pass


# Mapping of custom exceptions to HTTP status codes
CUSTOM_ERRORS = {
    CrewNotFoundError: 404,
    InvalidTransitionError: 409,
    InvalidInputError: 422,
    RuleConfigurationError: 500,
}


def status_code_for(exc: Exception) -> int:
    for exc_type in type(exc).__mro__:
        if exc_type in CUSTOM_ERRORS:
            return CUSTOM_ERRORS[exc_type]
    return 500
