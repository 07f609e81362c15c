# Overview: Error taxonomy shared by the ledger, approval and membership services.

"""
Service errors and their HTTP mapping.

- NotFoundError: customer, role, business or member absent (404)
- ValidationError: bad amount, unknown type, empty name, negative threshold (400)
- UnauthorizedError: bad system code, missing or insufficient approval role (403)
- ConflictError: lost update detected through a version mismatch, duplicate
  membership, exhausted code generation (409). Version conflicts are retried
  by the services before they surface.
- BackendUnavailableError: the database is unreachable or out of capacity (503).
  Writes fail loudly; reads degrade to cached-or-empty data.
"""


class CreditDeskError(Exception):
    """Base class for service-layer failures."""
    status_code = 500


class NotFoundError(CreditDeskError):
    status_code = 404


class ValidationError(CreditDeskError, ValueError):
    """400-level input problem."""
    status_code = 400


class UnauthorizedError(CreditDeskError):
    status_code = 403


class ConflictError(CreditDeskError):
    """409-level conflict (version mismatch, duplicate record)."""
    status_code = 409


class BackendUnavailableError(CreditDeskError):
    status_code = 503
