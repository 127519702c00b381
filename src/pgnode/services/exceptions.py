# src/pgnode/services/exceptions.py

class ServiceException(Exception):
    """Base exception for all service layer errors."""
    code: int = 31800
    http_status: int = 500
    template: str = "%s"

    def __init__(self, *args):
        detail = ", ".join(str(arg) for arg in args)
        self.message = self.template % detail if "%s" in self.template else self.template
        super().__init__(self.message)

class ConnectionUnrecoverableError(ServiceException):
    """Raised when the administrative connection cannot be (re)established."""
    code = 31801
    http_status = 503
    template = "PostgreSQL connection unrecoverable: %s"

class InvalidPlanError(ServiceException):
    """Raised when a plan has no storage allotment."""
    code = 31802
    template = "Invalid plan: %s"

class ConfigNotFoundError(ServiceException):
    """Raised when a tenant database is not in the ledger."""
    code = 31803
    http_status = 404
    template = "Config not found: %s"

class CredentialNotFoundError(ServiceException):
    """Raised when a credential does not authenticate against the live role."""
    code = 31804
    http_status = 404
    template = "Credential not found: %s"

class LocalDbError(ServiceException):
    """Raised when the local ledger cannot be written."""
    code = 31805
    template = "Error in local database: %s"

class DiskFullError(ServiceException):
    """Raised when the node has no storage left for another tenant."""
    code = 31806
    http_status = 507
    template = "Node disk is full"

class OperationFailedError(ServiceException):
    """Raised when a create/delete primitive fails on the server."""
    code = 31807
    template = "PostgreSQL operation failed: %s"

class InvalidIdentifierError(ServiceException):
    """Raised when a caller-supplied name cannot be used in DDL."""
    code = 31808
    http_status = 400
    template = "Invalid identifier: %s"
