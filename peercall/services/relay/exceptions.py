"""
Relay Service Exceptions
"""


class RelayError(Exception):
    """Base exception for relay errors"""
    pass


class InvalidCallTransitionError(RelayError):
    """Raised when a call record is moved to a status its current one does not allow"""
    pass
