"""
Cipher Engine: reverses the RSA encryption on driver's license payloads.

The card's PDF417 barcode holds 720 bytes:

    ┌────────┬──────────┬──────────┬─────┬──────────┬─────────┐
    │ header │ block 1  │ block 2  │ ... │ block 5  │ block 6 │
    │ 6 B    │ 128 B    │ 128 B    │     │ 128 B    │ 74 B    │
    └────────┴──────────┴──────────┴─────┴──────────┴─────────┘

The header is cleartext and identifies the version (see version.py). Each
block is "decrypted" with the authority's published RSA public key:

    plaintext = ciphertext ^ e mod n

using one key for the 128-byte blocks and another for the final 74-byte
block. Keys differ between V1 and V2 cards.

Each plaintext block keeps only its significant bytes. The V1 block modulus
is 127 bytes wide, so every 128-byte V1 block carries 127 bytes of data
behind a leading zero byte, which drops out here.

After decryption, the data section starts right after the 0x82 section
marker (and the byte following it). Everything before it is fill.
"""

from dataclasses import dataclass
import logging

from licensedecoder.errors import InvalidLengthError, MissingKeyError, PaddingError
from licensedecoder.models import LayoutVersion

logger = logging.getLogger(__name__)


# =============================================================================
# PAYLOAD GEOMETRY
# =============================================================================

DRIVERS_PAYLOAD_SIZE = 720
HEADER_SIZE = 6

# 5 x 128 + 74 = 714 = DRIVERS_PAYLOAD_SIZE - HEADER_SIZE
BLOCK_SIZE = 128
BLOCK_COUNT = 5
FINAL_BLOCK_SIZE = 74

# Marks the start of the data section inside the decrypted stream
SECTION_MARKER = 0x82


# =============================================================================
# KEYS
# =============================================================================

@dataclass(frozen=True)
class PublicKey:
    """RSA public key (modulus n, exponent e)."""
    modulus: int
    exponent: int

    @classmethod
    def from_hex(cls, modulus_hex: str, exponent_hex: str) -> "PublicKey":
        return cls(int(modulus_hex, 16), int(exponent_hex, 16))


# (key for 128-byte blocks, key for the final 74-byte block) per version
KEYS: dict[LayoutVersion, tuple[PublicKey, PublicKey]] = {
    LayoutVersion.DRIVERS_V1: (
        PublicKey.from_hex(
            "00fed2e1c27e3363316e77317a7a52c54981395186be4974760c72518d63e054"
            "4a48d088b332c5b0c370c765d65d983c1f9de0a42b310ccc07ae770bd2b61d6a"
            "4dcceac757689bdcbf608478faf312f6087cc496c3762cf5c4651caecda3499f"
            "ae7edb7e0e3e18eb304170e91ed5b156aace6f432d6eca6cc35851de8c678f67",
            "00bb797ffdec7f9e42c9d6f79b137059db",
        ),
        PublicKey.from_hex(
            "00ff3cec6b5f40e3c3661451b9fcfaef3aeb06dc2329c0e6f4dccc9279726716"
            "ce15bbe05eed2c5711bcf8f5b6c8f7276db5c43bfaa3040dc01ab14b9c4d16f7"
            "1c0ce5ea953f0c754c6b17",
            "00db05ba822d9acc33fab7d8f427f9ce65",
        ),
    ),
    LayoutVersion.DRIVERS_V2: (
        PublicKey.from_hex(
            "00ca9f18ef6c3f3fa4c5a461fea54ab19406ba5ecd746d60a27492dca3d74e3b"
            "5c1d315f7b10383241809b029ebbd5de4d116030cc57f7d5a6c9a16f373bb14a"
            "508523f7e80a4c744d9085663a4a1472d7af2c56ae41b5065f7efa0293bd3278"
            "ad693546f9f16219b79ff471a3636824cffcdb63a8ed8059e6b9a4f0db895381cb",
            "187092da6454ceb1853e6915f8466a05",
        ),
        PublicKey.from_hex(
            "00b404a0df11d1cacf1a1a048d4d573f953a62c583d74925927561a6d7a1e2b1"
            "4042526af70b550547390ea6ec748d30fdb81adb490e0c36a1986b404b2f5f69"
            "ef5da1b663e59509130e7",
            "309cfed9719fe2a5e20c9bb44765382b",
        ),
    ),
}


# =============================================================================
# DECRYPTION
# =============================================================================

def check_length(raw: bytes) -> None:
    """
    Reject payloads that are not exactly one driver's license barcode.

    Raises:
        InvalidLengthError: If len(raw) != 720
    """
    if len(raw) != DRIVERS_PAYLOAD_SIZE:
        raise InvalidLengthError(
            f"Invalid license payload: expected {DRIVERS_PAYLOAD_SIZE} bytes, got {len(raw)}",
            details={"expected": DRIVERS_PAYLOAD_SIZE, "actual": len(raw)},
        )


def split_blocks(encrypted: bytes) -> list[bytes]:
    """
    Split the encrypted part of the payload into cipher blocks.

    Raises:
        InvalidLengthError: If the data does not fill 5 x 128 + 74 bytes exactly
    """
    expected = BLOCK_COUNT * BLOCK_SIZE + FINAL_BLOCK_SIZE
    if len(encrypted) != expected:
        raise InvalidLengthError(
            f"Encrypted section must be {expected} bytes, got {len(encrypted)}",
            details={"expected": expected, "actual": len(encrypted)},
        )

    blocks = [encrypted[i * BLOCK_SIZE:(i + 1) * BLOCK_SIZE] for i in range(BLOCK_COUNT)]
    blocks.append(encrypted[BLOCK_COUNT * BLOCK_SIZE:])
    return blocks


def decrypt_block(block: bytes, key: PublicKey) -> bytes:
    """
    Apply the RSA public operation to one block.

    Leading zero bytes of the result are dropped, so a block decrypted
    under a 127-byte modulus yields at most 127 bytes. A zero result is
    a single 0x00 byte.

    Args:
        block: Ciphertext block (big-endian integer)
        key: RSA public key

    Returns:
        Plaintext block without leading zero bytes

    Raises:
        PaddingError: If the block's value is not below the key modulus
            (it cannot be a ciphertext for this key)

    Example:
        >>> decrypt_block(bytes([0x00, 0x41]), PublicKey(3233, 17))
        b'\\n\\xe6'
    """
    value = int.from_bytes(block, "big")
    if value >= key.modulus:
        raise PaddingError(
            "Cipher block is out of range for the key modulus",
            details={"block_size": len(block)},
        )

    plain = pow(value, key.exponent, key.modulus)
    return plain.to_bytes((plain.bit_length() + 7) // 8 or 1, "big")


def strip_fill(plaintext: bytes) -> bytes:
    """
    Drop everything up to the data section.

    The data section begins two bytes after the first 0x82 marker
    (the marker itself and a length byte).

    Raises:
        PaddingError: If no section marker is present
    """
    index = plaintext.find(SECTION_MARKER)
    if index == -1:
        raise PaddingError("Section marker 0x82 not found in decrypted payload")
    return plaintext[index + 2:]


def decrypt(
    raw: bytes,
    version: LayoutVersion,
    keys: dict[LayoutVersion, tuple[PublicKey, PublicKey]] | None = None,
) -> bytes:
    """
    Decrypt a full driver's license payload.

    Args:
        raw: The 720-byte payload, header included
        version: DRIVERS_V1 or DRIVERS_V2 (from the version detector)
        keys: Optional replacement for the embedded KEYS table

    Returns:
        The plaintext data section (fill stripped)

    Raises:
        InvalidLengthError: Wrong payload size
        PaddingError: Block out of range, or no section marker after decryption
        MissingKeyError: (internal) the keyring has no keys for `version`
    """
    check_length(raw)

    keyring = keys if keys is not None else KEYS
    if version not in keyring:
        raise MissingKeyError(
            f"No keys for layout version {version.value}",
            details={"version": version.value, "available": [v.value for v in keyring]},
        )
    block_key, final_key = keyring[version]

    blocks = split_blocks(raw[HEADER_SIZE:])

    plaintext = bytearray()
    for i, block in enumerate(blocks):
        key = final_key if i == len(blocks) - 1 else block_key
        plaintext.extend(decrypt_block(block, key))

    logger.debug(f"Decrypted {len(blocks)} blocks ({len(plaintext)} bytes) with {version.value} keys")
    return strip_fill(bytes(plaintext))
