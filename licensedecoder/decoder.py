"""
License Decoder - Entry points for decoding scanned license barcodes.

This module chains the pipeline stages and returns the final record:

    payload ─► version ─► cipher ─► extractor ─► records ─► record

Usage:
    from licensedecoder.decoder import decode_drivers_license

    record = decode_drivers_license(payload)
    print(f"{record.surname} {record.initials}, ID {record.id_number}")

Every function raises a DecodeError subclass on failure (see errors.py).
"""

import logging

from licensedecoder.errors import CrossCheckError, InvalidLengthError, UnknownVersionError
from licensedecoder.models import (
    DocumentKind,
    DriversLicenseRecord,
    LayoutVersion,
    LicenseRecord,
    VehicleLicenseRecord,
)
from licensedecoder.modules import cipher
from licensedecoder.modules.cipher import PublicKey
from licensedecoder.modules.extractor import extract
from licensedecoder.modules.layouts import VEHICLE_LAYOUT, get_layout
from licensedecoder.modules.records import build
from licensedecoder.modules.version import classify, detect_document_kind, ensure_document_kind

logger = logging.getLogger(__name__)


class LicenseDecoder:
    """
    Decoder for South African driver's license and vehicle license disc barcodes.

    Attributes:
        keys: RSA keys per drivers version (defaults to the embedded keys)
        strict: Raise CrossCheckError on high/critical flags instead of
                returning a flagged record

    Example:
        >>> decoder = LicenseDecoder()
        >>> record = decoder.decode_drivers_license(payload)
        >>> print(f"{record.surname}, expires {record.license_expiry_date}")
    """

    def __init__(
        self,
        keys: dict[LayoutVersion, tuple[PublicKey, PublicKey]] | None = None,
        strict: bool = False,
    ):
        """
        Initialize the decoder.

        Args:
            keys: Replacement for cipher.KEYS
            strict: Escalate high/critical cross-field flags to errors
        """
        self.keys = keys
        self.strict = strict

    def decode_drivers_license(self, raw: bytes) -> DriversLicenseRecord:
        """
        Decode a driver's license card barcode.

        Args:
            raw: The 720-byte PDF417 payload

        Returns:
            DriversLicenseRecord

        Raises:
            WrongDocumentTypeError: The payload is a vehicle disc
            InvalidLengthError: The payload is not 720 bytes
            UnknownVersionError: The header marker is not V1 or V2
            PaddingError: Decryption produced no data section
            OutOfBoundsError: The data section is truncated
            MandatoryFieldInvalidError: A mandatory field is malformed
            CrossCheckError: (strict mode) a cross-field check failed
        """
        raw = bytes(raw)
        ensure_document_kind(raw, DocumentKind.DRIVERS)
        cipher.check_length(raw)

        version = classify(raw, DocumentKind.DRIVERS)

        logger.debug(f"Decrypting {version.value} payload...")
        plaintext = cipher.decrypt(raw, version, keys=self.keys)

        logger.debug("Extracting fields...")
        fields = extract(plaintext, get_layout(version))

        record = build(fields, version)
        self._enforce(record)

        logger.info(f"Decoded {version.value} license {record.license_number}")
        return record

    def decode_vehicle_license(self, raw: bytes) -> VehicleLicenseRecord:
        """
        Decode a vehicle license disc barcode.

        Args:
            raw: The disc's text payload ("%MVL1CC..." with "%" separators)

        Returns:
            VehicleLicenseRecord

        Raises:
            WrongDocumentTypeError: The payload is a driver's license card
            InvalidLengthError: Fewer than 16 "%"-separated parts
            UnknownVersionError: The payload does not start with "%MVL"
            MandatoryFieldInvalidError: A mandatory field is malformed
        """
        raw = bytes(raw)
        ensure_document_kind(raw, DocumentKind.VEHICLE)

        parts = raw.count(b"%") + 1
        if parts < VEHICLE_LAYOUT.min_parts:
            raise InvalidLengthError(
                f"Vehicle disc payload has {parts} parts, expected at least {VEHICLE_LAYOUT.min_parts}",
                details={"expected": VEHICLE_LAYOUT.min_parts, "actual": parts},
            )

        version = classify(raw, DocumentKind.VEHICLE)

        # Discs are not encrypted: the payload is the plaintext
        fields = extract(raw, get_layout(version))

        record = build(fields, version)
        self._enforce(record)

        logger.info(f"Decoded vehicle disc {record.license_number}")
        return record

    def decode(self, raw: bytes) -> LicenseRecord:
        """
        Decode either document kind, detected from the payload's markers.

        Raises:
            UnknownVersionError: Neither a driver's license nor a vehicle disc marker
        """
        kind = detect_document_kind(raw)
        if kind == DocumentKind.DRIVERS:
            return self.decode_drivers_license(raw)
        if kind == DocumentKind.VEHICLE:
            return self.decode_vehicle_license(raw)
        raise UnknownVersionError(
            "Payload is neither a driver's license nor a vehicle license disc",
            details={"marker": raw[:4].hex()},
        )

    def _enforce(self, record: LicenseRecord) -> None:
        if not self.strict:
            return
        serious = [f for f in record.flags if f.severity in ("high", "critical")]
        if serious:
            raise CrossCheckError(
                f"Cross-field check failed: {serious[0].message}",
                field=(serious[0].details or {}).get("field"),
                details={"flags": [f.code for f in serious]},
            )


def decode_drivers_license(
    raw: bytes,
    keys: dict[LayoutVersion, tuple[PublicKey, PublicKey]] | None = None,
) -> DriversLicenseRecord:
    """
    Decode a driver's license card barcode with the default settings.

    Example:
        >>> record = decode_drivers_license(payload)
        >>> record.birthdate
        datetime.date(1980, 1, 1)
    """
    return LicenseDecoder(keys=keys).decode_drivers_license(raw)


def decode_vehicle_license(raw: bytes) -> VehicleLicenseRecord:
    """Decode a vehicle license disc barcode with the default settings."""
    return LicenseDecoder().decode_vehicle_license(raw)


def decode_license(raw: bytes) -> LicenseRecord:
    """Decode a payload of either kind with the default settings."""
    return LicenseDecoder().decode(raw)
