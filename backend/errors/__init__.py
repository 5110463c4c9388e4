"""
Rentals Intake — Domain Errors
Raised by the store, the orchestrator and the scorer; translated to HTTP
status codes in backend.server.
"""


class RentalsError(Exception):
    """Base error for rental intake failures."""


class ApplicationNotFound(RentalsError):
    def __init__(self, application_id: str):
        self.application_id = application_id
        super().__init__(f"Application {application_id} not found")


class InvalidTransition(RentalsError):
    """The application's current status does not allow the requested move."""

    def __init__(self, current, requested, reason: str = None):
        self.current = getattr(current, "value", current)
        self.requested = getattr(requested, "value", requested)
        super().__init__(reason or f"Cannot move application from {self.current} to {self.requested}")


class ScoringServiceError(RentalsError):
    """The remote scoring service could not be reached or answered with an error."""
