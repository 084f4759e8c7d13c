"""Service-layer exceptions."""


class SaveLoadError(Exception):
    """Raised when save or load operations fail."""


class EditorError(Exception):
    """Raised when an authoring operation targets a missing chapter or node."""
