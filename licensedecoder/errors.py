"""
Exceptions raised by the decode pipeline.

Every stage raises a subclass of DecodeError. The caller can catch DecodeError
for "this payload could not be decoded", or a narrower class to tell the
stages apart:

    DecodeError
    ├── CryptoError            (stage "cipher")
    │   ├── InvalidLengthError
    │   ├── PaddingError
    │   └── MissingKeyError
    ├── FormatError            (stage "version")
    │   ├── UnknownVersionError
    │   └── WrongDocumentTypeError
    └── FieldError             (stage "extract" / "build")
        ├── OutOfBoundsError
        ├── MandatoryFieldInvalidError
        └── CrossCheckError
"""


class DecodeError(Exception):
    """
    Base exception for everything the decoder raises.

    Attributes:
        message: Human-readable description of the problem
        stage: Pipeline stage that failed ("cipher", "version", "extract", "build")
        field: Name of the field involved, if any
        details: Extra context (lengths, markers, raw values)
    """

    stage = "decode"

    def __init__(self, message: str, field: str | None = None, details: dict | None = None):
        self.message = message
        self.field = field
        self.details = details or {}
        super().__init__(message)

    @property
    def is_internal(self) -> bool:
        """True when the error points at the layout tables or key configuration, not at the scan."""
        return False


class CryptoError(DecodeError):
    """The payload could not be decrypted."""
    stage = "cipher"


class InvalidLengthError(CryptoError):
    """Payload length does not match the document type's fixed size."""
    pass


class PaddingError(CryptoError):
    """Decrypted blocks do not carry the expected framing."""
    pass


class MissingKeyError(CryptoError):
    """The configured keyring has no keys for the payload's version."""

    @property
    def is_internal(self) -> bool:
        return True


class FormatError(DecodeError):
    """The payload does not classify to the requested document layout."""
    stage = "version"


class UnknownVersionError(FormatError):
    """No known version marker was found."""
    pass


class WrongDocumentTypeError(FormatError):
    """The markers belong to the other document kind."""
    pass


class FieldError(DecodeError):
    """A field could not be extracted or validated."""
    stage = "extract"


class OutOfBoundsError(FieldError):
    """A field reads past the end of the buffer, or a layout table is inconsistent."""

    def __init__(self, message: str, field: str | None = None, details: dict | None = None,
                 internal: bool = False):
        super().__init__(message, field=field, details=details)
        self.internal = internal

    @property
    def is_internal(self) -> bool:
        return self.internal


class MandatoryFieldInvalidError(FieldError):
    """A field the record cannot do without is missing or malformed."""

    def __init__(self, field: str, raw: str = "", reason: str = "invalid value"):
        super().__init__(
            f"Mandatory field '{field}' is invalid: {reason}",
            field=field,
            details={"raw": raw, "reason": reason},
        )


class CrossCheckError(FieldError):
    """A cross-field check failed and the decoder runs in strict mode."""
    stage = "build"
