"""
Data structures used across all decoder modules.

These dataclasses define the values that flow through the pipeline
(DecodedField), the warnings attached to a record (Flag), and the two
record shapes returned to the caller.
"""

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Literal


# Severity levels for flags, from least to most concerning
SeverityLevel = Literal["low", "medium", "high", "critical"]


class DocumentKind(str, Enum):
    """Which entry point a payload belongs to."""
    DRIVERS = "drivers"
    VEHICLE = "vehicle"


class LayoutVersion(str, Enum):
    """
    Structural format of a payload.

    Each version selects one layout table. The two drivers versions share
    the plaintext layout but use different header markers and RSA keys.
    """
    DRIVERS_V1 = "drivers_v1"
    DRIVERS_V2 = "drivers_v2"
    VEHICLE = "vehicle"

    @property
    def kind(self) -> DocumentKind:
        if self is LayoutVersion.VEHICLE:
            return DocumentKind.VEHICLE
        return DocumentKind.DRIVERS


@dataclass
class Flag:
    """
    A non-fatal finding attached to a decoded record.

    Attributes:
        severity: How serious is this finding?
            - "low": Cosmetic or forward-compatibility issue (e.g., unmapped code)
            - "medium": Fields disagree with each other (e.g., ID vs birthdate)
            - "high": Structural check failed (e.g., ID number check digit)
            - "critical": Record should not be trusted at all
        code: A unique identifier for this type of flag.
            Format: AREA_SPECIFIC_ISSUE (e.g., "ID_CHECKSUM_INVALID")
        message: Human-readable description of the issue.
        details: Optional dict with additional context.
            Example: {"field": "gender", "raw": "07"}

    Example:
        >>> flag = Flag(
        ...     severity="high",
        ...     code="ID_CHECKSUM_INVALID",
        ...     message="ID number check digit does not match",
        ...     details={"id_number": "8001015009088"}
        ... )
    """
    severity: SeverityLevel
    code: str
    message: str
    details: dict | None = None


@dataclass
class DecodedField:
    """
    One field pulled out of a plaintext buffer.

    Attributes:
        name: Field name from the layout table
        value: Decoded value (str, date, int, list) or None when absent/invalid
        raw: The field as it appeared in the buffer, rendered as text
        valid: False when the bytes could not be decoded or the code is unmapped
    """
    name: str
    value: Any
    raw: str = ""
    valid: bool = True


@dataclass
class DriversLicenseRecord:
    """
    Decoded South African driver's license card.

    Dates are datetime.date objects. Lists are empty when the card holds no
    entries. Fields that failed to decode are None (or their raw text for
    unmapped codes) and are listed in `flags` with code "FIELD_INVALID".
    """
    version: LayoutVersion
    surname: str
    initials: str
    id_number: str
    license_number: str
    birthdate: date
    license_expiry_date: date

    vehicle_codes: list[str] = field(default_factory=list)
    prdp_code: str | None = None
    id_country_of_issue: str | None = None
    license_country_of_issue: str | None = None
    vehicle_restrictions: list[str] = field(default_factory=list)
    id_number_type: str | None = None
    license_code_issue_dates: list[date] = field(default_factory=list)
    driver_restriction_codes: str | None = None
    prdp_expiry_date: date | None = None
    license_issue_number: str | None = None
    license_issue_date: date | None = None
    gender: str | None = None
    image_width: int = 0
    image_height: int = 0

    flags: list[Flag] = field(default_factory=list)

    @property
    def has_photo(self) -> bool:
        """The card carries an encoded photo when both image dimensions are set."""
        return self.image_width > 0 and self.image_height > 0

    @property
    def invalid_fields(self) -> list[str]:
        return [f.details["field"] for f in self.flags if f.code == "FIELD_INVALID"]

    @property
    def is_valid(self) -> bool:
        """No high or critical flags."""
        return not any(f.severity in ("high", "critical") for f in self.flags)


@dataclass
class VehicleLicenseRecord:
    """Decoded South African vehicle license disc."""
    version: LayoutVersion
    license_number: str
    register_number: str
    vin: str
    expiry_date: date

    disc_format: str | None = None
    description: str | None = None
    make: str | None = None
    model: str | None = None
    colour: str | None = None
    engine_number: str | None = None

    flags: list[Flag] = field(default_factory=list)

    @property
    def make_and_model(self) -> str:
        return " ".join(part for part in (self.make, self.model) if part)

    @property
    def invalid_fields(self) -> list[str]:
        return [f.details["field"] for f in self.flags if f.code == "FIELD_INVALID"]

    @property
    def is_valid(self) -> bool:
        return not any(f.severity in ("high", "critical") for f in self.flags)


LicenseRecord = DriversLicenseRecord | VehicleLicenseRecord
