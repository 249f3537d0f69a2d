"""
Error taxonomy for cluster-register.

Library code raises these; only the CLI driver logs them and exits.
"""


class RegisterError(Exception):
    """Base class for every registration failure."""


class NotFoundError(RegisterError):
    """An expected object is absent (HTTP 404, or an empty CSR list)."""


class StoreError(RegisterError):
    """Any other API or transport failure talking to the cluster."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class InvariantViolation(RegisterError):
    """Hub data is malformed or has an unexpected cardinality. Never retried."""


class DeadlineExceeded(RegisterError):
    """A bounded poll ran out of time."""

    def __init__(self, message: str, last_error: Exception | None = None):
        super().__init__(message)
        self.last_error = last_error


class Cancelled(RegisterError):
    """The caller's cancel event was set while a poll was waiting."""


class CSRDeniedError(RegisterError):
    """Raised only when the caller asks for denied CSRs to be fatal."""

    def __init__(self, cluster_name: str, csr_names: list[str]):
        super().__init__(f"CSR(s) {', '.join(csr_names)} for cluster={cluster_name} were denied")
        self.cluster_name = cluster_name
        self.csr_names = csr_names
