"""
Report errors

Every error carries a human-readable message for the UI layer.
Validation, cardinality and wizard-state errors are raised before any change
is made, so the caller can retry right away.
"""

from typing import List, Optional


class ReportError(Exception):
    """Base for all report composition / persistence errors"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationFailure(ReportError):
    """Required fields of a wizard step are missing or malformed"""

    def __init__(self, step: str, missing_fields: List[str], invalid_fields: Optional[List[str]] = None):
        self.step = step
        self.missing_fields = list(missing_fields)
        self.invalid_fields = list(invalid_fields or [])
        parts = []
        if self.missing_fields:
            parts.append(f"Missing required fields: {', '.join(self.missing_fields)}")
        if self.invalid_fields:
            parts.append(f"Invalid fields: {', '.join(self.invalid_fields)}")
        super().__init__("; ".join(parts))


class MinimumCardinalityViolation(ReportError):
    """Tried to remove the last mandatory item of a collection"""

    def __init__(self, collection: str):
        self.collection = collection
        super().__init__(f"A report needs at least one {collection}; the last one cannot be removed")


class UnknownFieldError(ReportError):
    """A patch names a field that does not exist or cannot be patched"""

    def __init__(self, entity: str, fields: List[str]):
        self.entity = entity
        self.fields = list(fields)
        super().__init__(f"Cannot update {entity} field(s): {', '.join(self.fields)}")


class WizardStateError(ReportError):
    """Operation not allowed in the current wizard state"""


class RepositoryWriteFailure(ReportError):
    """An insert/update/delete failed; the save stopped at `step`"""

    def __init__(self, step: str, cause: Optional[BaseException] = None):
        self.step = step
        self.cause = cause
        detail = f": {cause}" if cause else ""
        super().__init__(f"Save failed while {step}{detail}")


class RepositoryReadFailure(ReportError):
    """An existing report could not be loaded for editing"""

    def __init__(self, intervention_id, cause: Optional[BaseException] = None, reason: Optional[str] = None):
        self.intervention_id = intervention_id
        self.cause = cause
        detail = reason or (str(cause) if cause else "not found")
        super().__init__(f"Could not load intervention {intervention_id}: {detail}")


class BlobUploadFailure(ReportError):
    """A photo upload failed. Non-fatal: the photo is skipped."""

    def __init__(self, path_hint: str, cause: Optional[BaseException] = None):
        self.path_hint = path_hint
        self.cause = cause
        detail = f": {cause}" if cause else ""
        super().__init__(f"Photo upload failed for {path_hint}{detail}")
