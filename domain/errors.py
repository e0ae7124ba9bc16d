from __future__ import annotations

from dataclasses import dataclass


class DomainError(Exception):
    code = "E_DOMAIN"

    def __init__(self, message: str = "") -> None:
        super().__init__(message)


class InvalidInputError(DomainError):
    code = "E_INVALID_INPUT"


class StorageUnavailableError(DomainError):
    """Transient blob storage failure; the caller may retry while the temp object exists."""

    code = "E_STORAGE_UNAVAILABLE"


class ObjectNotFoundError(DomainError):
    code = "E_OBJECT_NOT_FOUND"

    def __init__(self, key: str) -> None:
        super().__init__(f"Object not found: {key}")
        self.key = key


@dataclass
class FieldError:
    field: str
    message: str
    code: str

    def as_dict(self) -> dict[str, str]:
        return {"field": self.field, "message": self.message, "code": self.code}


class MediaValidationError(InvalidInputError):
    code = "E_VALIDATION"

    def __init__(self, errors: list[FieldError]) -> None:
        super().__init__("; ".join(e.message for e in errors))
        self.errors = errors


class SecurityError(DomainError):
    code = "E_SECURITY"


class MimeMismatchError(SecurityError):
    code = "MIME_MISMATCH"


class NotFoundError(DomainError):
    code = "E_NOT_FOUND"


class UploadNotFoundError(NotFoundError):
    code = "UPLOAD_NOT_FOUND"


class AssetNotFoundError(NotFoundError):
    code = "ASSET_NOT_FOUND"


class ConflictError(DomainError):
    code = "E_CONFLICT"


class AssetInUseError(ConflictError):
    code = "ASSET_IN_USE"

    def __init__(self, usage: dict[str, int]) -> None:
        total = sum(usage.values())
        super().__init__(f"Asset is referenced in {total} places")
        self.usage = usage
        self.total = total


class UploadInProgressError(ConflictError):
    code = "UPLOAD_IN_PROGRESS"


class UnrecoverableError(DomainError):
    code = "E_UNRECOVERABLE"


class InvalidUploadIdError(UnrecoverableError):
    code = "INVALID_UPLOAD_ID"


class UnreadableImageError(UnrecoverableError):
    code = "UNREADABLE_IMAGE"


class CompleteTimeoutError(UnrecoverableError):
    code = "COMPLETE_TIMEOUT"


class AssetPersistenceError(UnrecoverableError):
    code = "ASSET_PERSISTENCE_FAILED"
