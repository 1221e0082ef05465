"""
Exceptions raised by the harvester.

Configuration and connection errors end the run. Query errors end an export,
but only the current table during an import.
"""


class HarvestError(Exception):
    """Base exception for all harvester errors."""
    pass


class ConfigurationError(HarvestError):
    """
    Harvest configuration could not be used.

    Raised when:
    - The configuration file is missing or is not valid JSON
    - A required field is missing or has the wrong type
    - A custom environment has no matching custom_db entry
    - The target environment label is unknown or not allowed for the operation
    """
    pass


class ConnectionResolutionError(HarvestError):
    """Database credentials could not be resolved or the handshake failed."""

    def __init__(self, message: str, environment: str = None):
        super().__init__(message)
        self.environment = environment


class QueryError(HarvestError):
    """A read or write against one table failed."""

    def __init__(self, message: str, table: str = None):
        super().__init__(message)
        self.table = table


class BundleCodecError(HarvestError):
    """
    A bundle could not be encoded or decoded.

    Raised when:
    - The bundle content is malformed or truncated
    - The content does not match the expected format
    - A value has no representation in the target format
    """
    pass
