"""
Version Detector: decides which layout a payload uses.

Driver's license cards carry a cleartext 4-byte marker at the start of the
barcode. The marker has to be read before decryption because the RSA keys
differ between versions:

    01 E1 02 45  ->  V1
    01 9B 09 45  ->  V2

Vehicle license discs are plain text and start with "%MVL".
"""

import logging

from licensedecoder.errors import UnknownVersionError, WrongDocumentTypeError
from licensedecoder.models import DocumentKind, LayoutVersion

logger = logging.getLogger(__name__)


DRIVERS_MARKERS: dict[bytes, LayoutVersion] = {
    bytes([0x01, 0xE1, 0x02, 0x45]): LayoutVersion.DRIVERS_V1,
    bytes([0x01, 0x9B, 0x09, 0x45]): LayoutVersion.DRIVERS_V2,
}

VEHICLE_MARKER = b"%MVL"


def detect_document_kind(raw: bytes) -> DocumentKind | None:
    """
    Guess the document kind from cleartext markers.

    Returns:
        DocumentKind, or None if no known marker is present
    """
    if bytes(raw[:4]) in DRIVERS_MARKERS:
        return DocumentKind.DRIVERS
    if raw.startswith(VEHICLE_MARKER):
        return DocumentKind.VEHICLE
    return None


def ensure_document_kind(raw: bytes, expected_kind: DocumentKind) -> None:
    """
    Cross-check that a payload is not the other kind of document.

    Raises:
        WrongDocumentTypeError: If the markers identify the other kind
    """
    kind = detect_document_kind(raw)
    if kind is not None and kind != expected_kind:
        raise WrongDocumentTypeError(
            f"Payload is a {kind.value} license, expected a {expected_kind.value} license",
            details={"detected": kind.value, "expected": expected_kind.value},
        )


def classify(raw: bytes, expected_kind: DocumentKind) -> LayoutVersion:
    """
    Classify a payload into a LayoutVersion.

    Args:
        raw: Payload bytes as produced by the scanner
        expected_kind: Fixed by the entry point that was called

    Returns:
        The matching LayoutVersion

    Raises:
        WrongDocumentTypeError: Markers belong to the other document kind
        UnknownVersionError: No known marker for the expected kind

    Example:
        >>> classify(bytes([1, 0x9B, 9, 0x45]) + bytes(716), DocumentKind.DRIVERS)
        <LayoutVersion.DRIVERS_V2: 'drivers_v2'>
    """
    ensure_document_kind(raw, expected_kind)

    if expected_kind == DocumentKind.DRIVERS:
        version = DRIVERS_MARKERS.get(bytes(raw[:4]))
        if version is None:
            raise UnknownVersionError(
                "Unrecognized license version",
                details={"marker": raw[:4].hex()},
            )
    else:
        if not raw.startswith(VEHICLE_MARKER):
            raise UnknownVersionError(
                "Unrecognized vehicle license disc format",
                details={"marker": raw[:4].hex()},
            )
        version = LayoutVersion.VEHICLE

    logger.debug(f"Classified payload as {version.value}")
    return version
