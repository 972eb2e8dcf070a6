"""
Tests for the Cipher Engine.

The engine applies the RSA public operation block by block:
- 6-byte cleartext header, then 5 x 128-byte blocks and 1 x 74-byte block
- plaintext = ciphertext ^ e mod n, packed back to the block width
- the data section starts two bytes after the 0x82 marker

Real payloads need the authority's private key to produce, so we check the
modpow with textbook RSA vectors and the framing with an identity keyring
whose moduli have the real keys' byte widths.
"""

import pytest

from licensedecoder.errors import CryptoError, InvalidLengthError, MissingKeyError, PaddingError
from licensedecoder.models import LayoutVersion
from licensedecoder.modules.cipher import (
    BLOCK_SIZE,
    FINAL_BLOCK_SIZE,
    HEADER_SIZE,
    KEYS,
    PublicKey,
    check_length,
    decrypt,
    decrypt_block,
    split_blocks,
    strip_fill,
)
from payload_factory import (
    GOLDEN_V1,
    LONG_SURNAME_V1,
    TEST_KEYS,
    build_data_section,
    build_drivers_payload,
    corrupt,
    identity_key,
    key_width,
)


# Textbook RSA: p = 61, q = 53, n = 3233, e = 17, d = 2753
TEXTBOOK_PUBLIC = PublicKey(modulus=3233, exponent=17)
TEXTBOOK_PRIVATE = PublicKey(modulus=3233, exponent=2753)


# =============================================================================
# TEST decrypt_block
# =============================================================================

class TestDecryptBlock:
    """RSA public operation on a single block."""

    def test_textbook_vector(self):
        """65 ^ 17 mod 3233 = 2790."""
        assert decrypt_block(bytes([0x00, 0x41]), TEXTBOOK_PUBLIC) == (2790).to_bytes(2, "big")

    def test_inverse_exponent_recovers_message(self):
        """2790 ^ 2753 mod 3233 = 65."""
        assert decrypt_block((2790).to_bytes(2, "big"), TEXTBOOK_PRIVATE) == bytes([0x41])

    def test_leading_zero_bytes_dropped(self):
        assert decrypt_block(bytes([0x00, 0x01]), TEXTBOOK_PUBLIC) == bytes([0x01])

    def test_zero_block_is_one_byte(self):
        assert decrypt_block(bytes(4), TEXTBOOK_PUBLIC) == b"\x00"

    def test_block_above_modulus_rejected(self):
        with pytest.raises(PaddingError):
            decrypt_block(bytes([0x0F, 0xFF]), TEXTBOOK_PUBLIC)

    def test_127_byte_modulus_yields_127_bytes(self):
        """A 128-byte block under a 127-byte modulus: the zero byte in front is not data."""
        data = bytes(range(1, 128))
        assert decrypt_block(b"\x00" + data, identity_key(127)) == data

    def test_full_width_modulus_keeps_all_bytes(self):
        block = bytes(range(1, 129))
        assert decrypt_block(block, identity_key(128)) == block

    @pytest.mark.parametrize("version", [LayoutVersion.DRIVERS_V1, LayoutVersion.DRIVERS_V2])
    def test_embedded_keys_fix_zero_and_one(self, version):
        """0 and 1 are fixed points of x ^ e mod n for every real key."""
        block_key, final_key = KEYS[version]
        assert decrypt_block(bytes(BLOCK_SIZE - 1) + b"\x01", block_key) == b"\x01"
        assert decrypt_block(bytes(FINAL_BLOCK_SIZE), final_key) == b"\x00"


# =============================================================================
# TEST embedded keys
# =============================================================================

class TestEmbeddedKeys:

    @pytest.mark.parametrize("version", [LayoutVersion.DRIVERS_V1, LayoutVersion.DRIVERS_V2])
    def test_moduli_fit_their_blocks(self, version):
        block_key, final_key = KEYS[version]
        assert block_key.modulus.bit_length() <= BLOCK_SIZE * 8
        assert final_key.modulus.bit_length() <= FINAL_BLOCK_SIZE * 8

    def test_v1_block_modulus_is_127_bytes(self):
        assert key_width(KEYS[LayoutVersion.DRIVERS_V1][0]) == 127

    @pytest.mark.parametrize("version", [LayoutVersion.DRIVERS_V1, LayoutVersion.DRIVERS_V2])
    def test_test_keys_match_real_widths(self, version):
        """The identity keyring must frame blocks exactly as the real keys do."""
        assert [key_width(k) for k in TEST_KEYS[version]] == [key_width(k) for k in KEYS[version]]

    def test_versions_use_different_keys(self):
        assert KEYS[LayoutVersion.DRIVERS_V1] != KEYS[LayoutVersion.DRIVERS_V2]

    def test_no_vehicle_keys(self):
        """Vehicle discs are not encrypted."""
        assert LayoutVersion.VEHICLE not in KEYS


# =============================================================================
# TEST framing
# =============================================================================

class TestFraming:

    @pytest.mark.parametrize("size", [0, 6, 719, 721, 1440])
    def test_check_length_rejects(self, size):
        with pytest.raises(InvalidLengthError) as exc:
            check_length(bytes(size))
        assert exc.value.details == {"expected": 720, "actual": size}

    def test_check_length_accepts_720(self):
        check_length(bytes(720))

    def test_split_blocks(self):
        blocks = split_blocks(bytes(714))
        assert [len(b) for b in blocks] == [128, 128, 128, 128, 128, 74]

    def test_split_blocks_wrong_size(self):
        with pytest.raises(InvalidLengthError):
            split_blocks(bytes(713))

    def test_strip_fill(self):
        assert strip_fill(b"\x00\x00\x82\x10DATA") == b"DATA"

    def test_strip_fill_uses_first_marker(self):
        assert strip_fill(b"\x82\x00A\x82B") == b"A\x82B"

    def test_strip_fill_without_marker(self):
        with pytest.raises(PaddingError):
            strip_fill(bytes(20))

    def test_errors_are_crypto_stage(self):
        with pytest.raises(CryptoError) as exc:
            strip_fill(b"")
        assert exc.value.stage == "cipher"


# =============================================================================
# TEST decrypt
# =============================================================================

class TestDecrypt:

    def test_returns_data_section(self):
        payload = build_drivers_payload()
        plaintext = decrypt(payload, LayoutVersion.DRIVERS_V1, keys=TEST_KEYS)
        assert plaintext.startswith(build_data_section(GOLDEN_V1))

    def test_deterministic(self):
        payload = build_drivers_payload()
        assert decrypt(payload, LayoutVersion.DRIVERS_V1, keys=TEST_KEYS) == \
            decrypt(payload, LayoutVersion.DRIVERS_V1, keys=TEST_KEYS)

    def test_wrong_length(self):
        with pytest.raises(InvalidLengthError):
            decrypt(bytes(700), LayoutVersion.DRIVERS_V1, keys=TEST_KEYS)

    def test_missing_section_marker(self):
        payload = bytes([0x01, 0xE1, 0x02, 0x45]) + bytes(716)
        with pytest.raises(PaddingError):
            decrypt(payload, LayoutVersion.DRIVERS_V1, keys=TEST_KEYS)

    def test_v1_section_spanning_blocks(self):
        """127 data bytes per V1 block: the zero byte in front of each block must not reach the data."""
        payload = build_drivers_payload(LONG_SURNAME_V1)
        plaintext = decrypt(payload, LayoutVersion.DRIVERS_V1, keys=TEST_KEYS)
        assert plaintext.startswith(build_data_section(LONG_SURNAME_V1))

    def test_v2_section_spanning_blocks(self):
        payload = build_drivers_payload(LONG_SURNAME_V1, version=LayoutVersion.DRIVERS_V2)
        plaintext = decrypt(payload, LayoutVersion.DRIVERS_V2, keys=TEST_KEYS)
        assert plaintext.startswith(build_data_section(LONG_SURNAME_V1))

    def test_v2_block_with_leading_zero(self):
        """Under the 128-byte V2 modulus a block whose plaintext starts with 0x00 loses that byte."""
        payload = build_drivers_payload(LONG_SURNAME_V1, version=LayoutVersion.DRIVERS_V2, data_width=127)
        assert payload[HEADER_SIZE + BLOCK_SIZE] == 0x00
        plaintext = decrypt(payload, LayoutVersion.DRIVERS_V2, keys=TEST_KEYS)
        assert plaintext.startswith(build_data_section(LONG_SURNAME_V1))

    def test_keyring_without_version(self):
        payload = build_drivers_payload()
        keys = {LayoutVersion.DRIVERS_V2: TEST_KEYS[LayoutVersion.DRIVERS_V2]}
        with pytest.raises(MissingKeyError) as exc:
            decrypt(payload, LayoutVersion.DRIVERS_V1, keys=keys)
        assert exc.value.is_internal
        assert exc.value.stage == "cipher"
        assert exc.value.details["available"] == ["drivers_v2"]

    def test_final_block_uses_final_key(self):
        """A final-block key that rejects any non-zero block proves the last block is routed to it."""
        keys = {
            LayoutVersion.DRIVERS_V1: (TEST_KEYS[LayoutVersion.DRIVERS_V1][0], PublicKey(modulus=1, exponent=1)),
        }
        payload = corrupt(build_drivers_payload(), 719, 0x01)
        with pytest.raises(PaddingError):
            decrypt(payload, LayoutVersion.DRIVERS_V1, keys=keys)
