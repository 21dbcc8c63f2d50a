"""
Error taxonomy shared by the stores, the eligibility calculator and the API.

Every error carries a human readable message and the HTTP status the API
answers with.
"""


class AttendanceError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(AttendanceError):
    """Bad threshold, date range or subject value."""
    status_code = 400


class NotFoundError(AttendanceError):
    status_code = 404


class ConflictError(AttendanceError):
    """A duplicate key that could not be resolved by updating the existing document."""
    status_code = 409


class PartialBatchFailure(AttendanceError):
    status_code = 500

    def __init__(self, failures):
        self.failures = list(failures)
        super().__init__(f"{len(self.failures)} eligibility calculation(s) failed")
