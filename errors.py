# errors.py
class DetectionError(Exception):
    """Base for everything the color pipeline and its collaborators raise."""


class CaptureError(DetectionError):
    """Camera never produced a usable frame (closed, not ready in time, or zero-sized)."""


class SessionNotInitializedError(CaptureError):
    """detect_card() before initialize_detection() succeeded."""


class InvalidFrameError(DetectionError):
    pass


class ReaderError(DetectionError):
    """Card reader reported a non-success status or never answered."""


class ProcessingError(DetectionError):
    """Failure inside enhance / segment / filter."""
