"""Import pipeline error types.

All derive from ValueError so the app-level handler turns anything not caught
by a route into a 400.
"""


class ImportStructureError(ValueError):
    """The upload cannot be processed at all (empty file, phone not mapped, missing bytes)."""


class ImportStateError(ValueError):
    """The requested operation is not allowed in the import's current status."""


class TemplateValidationError(ValueError):
    """A mapping template is incomplete or its name is already taken."""
