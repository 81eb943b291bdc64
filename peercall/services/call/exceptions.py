"""
Call Service Exceptions

Custom exceptions for call-session errors.
"""


class CallServiceError(Exception):
    """Base exception for call service errors"""
    pass


class MediaAcquisitionError(CallServiceError):
    """Raised when camera, microphone or screen capture cannot be opened"""
    pass


class CallSetupError(CallServiceError):
    """Raised when SDP generation or application fails while setting up a call"""
    pass


class CallCancelledError(CallServiceError):
    """Raised when a call attempt is torn down or superseded mid-construction"""
    pass


class MalformedSignalError(CallServiceError):
    """Raised when a signal's data cannot be decoded"""
    pass
