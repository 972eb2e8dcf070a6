"""
Record Builder: turns decoded fields into a typed record and cross-checks them.

Cross-field checks never change a value. A failed check becomes a Flag on
the record so the caller can decide what to do with it:

- RSA ID number check digit (Luhn)
- RSA ID number birth date and gender digits vs. the card's own fields
- License issue date before expiry date
- License codes known, and one issue date per code
- VIN format on vehicle discs
"""

from datetime import date
import logging
import re

from licensedecoder.errors import MandatoryFieldInvalidError
from licensedecoder.models import (
    DecodedField,
    DocumentKind,
    DriversLicenseRecord,
    Flag,
    LayoutVersion,
    LicenseRecord,
    VehicleLicenseRecord,
)
from licensedecoder.modules.layouts import LICENSE_CODES, get_layout

logger = logging.getLogger(__name__)


# ID type code for a 13-digit RSA identity number
RSA_ID_TYPE = "RSA ID number"

# Gender digits SSSS: 0000-4999 female, 5000-9999 male
ID_GENDER_THRESHOLD = 5000

# 17 characters, letters I, O and Q are never used
VIN_PATTERN = re.compile(r"^[A-HJ-NPR-Z0-9]{17}$")


# =============================================================================
# RSA ID NUMBER
# =============================================================================

def validate_sa_id_number(id_number: str) -> bool:
    """
    Validate a South African ID number using the Luhn algorithm.

    Format: YYMMDD SSSS C A Z
        YYMMDD: date of birth
        SSSS: gender sequence (< 5000 female, >= 5000 male)
        C: 0 = citizen, 1 = permanent resident
        A: formerly race, now always 8 or 9
        Z: check digit

    Args:
        id_number: 13-digit ID number (digits only)

    Returns:
        True if the check digit is valid, False otherwise

    Example:
        >>> validate_sa_id_number("8001015009087")
        True
    """
    if len(id_number) != 13 or not id_number.isdigit():
        return False

    total = 0
    for i, digit in enumerate(id_number):
        d = int(digit)
        # Double every other digit (positions 1, 3, ..., 11)
        if i % 2 == 1:
            d *= 2
            if d > 9:
                d -= 9
        total += d

    return total % 10 == 0


def parse_sa_id_number(id_number: str) -> dict | None:
    """
    Split an RSA ID number into its parts.

    Returns:
        Dict with "birth_yymmdd" (tuple), "gender" and "citizen",
        or None if the number is not 13 digits
    """
    if len(id_number) != 13 or not id_number.isdigit():
        return None

    return {
        "birth_yymmdd": (int(id_number[0:2]), int(id_number[2:4]), int(id_number[4:6])),
        "gender": "female" if int(id_number[6:10]) < ID_GENDER_THRESHOLD else "male",
        "citizen": id_number[10] == "0",
    }


def check_id_number(
    id_number: str,
    id_number_type: str | None,
    birthdate: date | None,
    gender: str | None,
) -> list[Flag]:
    """
    Cross-check an RSA ID number against the card's birth date and gender.

    Only applies when the ID type is an RSA ID number; traffic register and
    foreign numbers have no defined structure.
    """
    if id_number_type != RSA_ID_TYPE:
        return []

    flags = []

    if not validate_sa_id_number(id_number):
        flags.append(Flag(
            severity="high",
            code="ID_CHECKSUM_INVALID",
            message="ID number check digit does not match",
            details={"id_number": id_number},
        ))

    parts = parse_sa_id_number(id_number)
    if parts is None:
        return flags

    if birthdate is not None:
        card_yymmdd = (birthdate.year % 100, birthdate.month, birthdate.day)
        if card_yymmdd != parts["birth_yymmdd"]:
            flags.append(Flag(
                severity="medium",
                code="ID_BIRTHDATE_MISMATCH",
                message="Birth date encoded in the ID number differs from the card's birth date",
                details={"id_number": id_number, "birthdate": birthdate.isoformat()},
            ))

    if gender in ("male", "female") and gender != parts["gender"]:
        flags.append(Flag(
            severity="medium",
            code="ID_GENDER_MISMATCH",
            message="Gender encoded in the ID number differs from the card's gender",
            details={"id_number": id_number, "gender": gender},
        ))

    return flags


# =============================================================================
# LICENSE CHECKS
# =============================================================================

def check_license_dates(issue_date: date | None, expiry_date: date | None) -> list[Flag]:
    """Flag a license whose issue date is after its expiry date."""
    if issue_date is None or expiry_date is None:
        return []
    if issue_date > expiry_date:
        return [Flag(
            severity="high",
            code="LICENSE_DATES_INVERTED",
            message="License issue date is after its expiry date",
            details={"issue_date": issue_date.isoformat(), "expiry_date": expiry_date.isoformat()},
        )]
    return []


def check_license_codes(vehicle_codes: list[str], issue_dates: list[date]) -> list[Flag]:
    """
    Check license codes against the known categories.

    Each code on the card has its own first-issue date, so the two lists
    should be the same length.
    """
    flags = []

    unknown = [code for code in vehicle_codes if code not in LICENSE_CODES]
    if unknown:
        flags.append(Flag(
            severity="low",
            code="LICENSE_CODE_UNKNOWN",
            message=f"Unknown license code(s): {', '.join(unknown)}",
            details={"codes": unknown},
        ))

    if len(vehicle_codes) != len(issue_dates):
        flags.append(Flag(
            severity="low",
            code="LICENSE_CODE_DATES_MISMATCH",
            message=f"{len(vehicle_codes)} license code(s) but {len(issue_dates)} issue date(s)",
            details={"codes": len(vehicle_codes), "dates": len(issue_dates)},
        ))

    return flags


def check_vin(vin: str) -> list[Flag]:
    # Older vehicles carry shorter chassis numbers, so this is only a low flag
    if VIN_PATTERN.match(vin):
        return []
    return [Flag(
        severity="low",
        code="VIN_FORMAT",
        message="VIN is not a 17-character ISO 3779 number",
        details={"vin": vin},
    )]


# =============================================================================
# BUILD
# =============================================================================

def _invalid_field_flags(fields: list[DecodedField]) -> list[Flag]:
    return [
        Flag(
            severity="low",
            code="FIELD_INVALID",
            message=f"Field '{f.name}' could not be decoded",
            details={"field": f.name, "raw": f.raw},
        )
        for f in fields
        if not f.valid
    ]


def _collect_values(fields: list[DecodedField], version: LayoutVersion) -> dict:
    """Map fields by name and make sure every mandatory one is present."""
    values = {f.name: f.value for f in fields}

    for spec in get_layout(version).fields:
        if spec.mandatory and values.get(spec.name) in (None, ""):
            raise MandatoryFieldInvalidError(spec.name, reason="missing")

    return values


def build_drivers_record(fields: list[DecodedField], version: LayoutVersion) -> DriversLicenseRecord:
    values = _collect_values(fields, version)

    record = DriversLicenseRecord(version=version, **values)

    record.flags.extend(_invalid_field_flags(fields))
    record.flags.extend(check_id_number(
        record.id_number, record.id_number_type, record.birthdate, record.gender,
    ))
    record.flags.extend(check_license_dates(record.license_issue_date, record.license_expiry_date))
    record.flags.extend(check_license_codes(record.vehicle_codes, record.license_code_issue_dates))
    return record


def build_vehicle_record(fields: list[DecodedField], version: LayoutVersion) -> VehicleLicenseRecord:
    values = _collect_values(fields, version)

    record = VehicleLicenseRecord(version=version, **values)

    record.flags.extend(_invalid_field_flags(fields))
    record.flags.extend(check_vin(record.vin))
    return record


def build(fields: list[DecodedField], version: LayoutVersion) -> LicenseRecord:
    """
    Assemble decoded fields into the record matching the version's document kind.

    Args:
        fields: Output of extractor.extract()
        version: The classified LayoutVersion

    Returns:
        DriversLicenseRecord or VehicleLicenseRecord, with flags attached

    Raises:
        MandatoryFieldInvalidError: A mandatory field is missing
    """
    if version.kind == DocumentKind.DRIVERS:
        record = build_drivers_record(fields, version)
    else:
        record = build_vehicle_record(fields, version)

    if record.flags:
        logger.info(f"Built {version.value} record with {len(record.flags)} flag(s): "
                    f"{', '.join(f.code for f in record.flags)}")
    return record
