"""
End-to-end tests for LicenseDecoder and the module-level entry points.

Driver's license payloads are built for the identity keyring in
payload_factory, and passed in through the `keys` argument.
"""

from datetime import date
import logging

import pytest

from licensedecoder.decoder import LicenseDecoder, decode_drivers_license, decode_license, decode_vehicle_license
from licensedecoder.errors import (
    CrossCheckError,
    DecodeError,
    InvalidLengthError,
    MandatoryFieldInvalidError,
    MissingKeyError,
    PaddingError,
    UnknownVersionError,
    WrongDocumentTypeError,
)
from licensedecoder.models import DriversLicenseRecord, LayoutVersion, VehicleLicenseRecord
from licensedecoder.modules.cipher import PublicKey
from licensedecoder.modules.layouts import NIBBLE_SECTION_END
from payload_factory import (
    GOLDEN_V1,
    GOLDEN_V2,
    GOLDEN_VEHICLE,
    LONG_SURNAME_V1,
    TEST_KEYS,
    build_drivers_payload,
    build_plaintext,
    corrupt,
    payload_index,
    record_values,
)


@pytest.fixture
def decoder():
    return LicenseDecoder(keys=TEST_KEYS)


# =============================================================================
# TEST driver's license
# =============================================================================

class TestDecodeDriversLicense:

    def test_golden_v1(self, decoder):
        record = decoder.decode_drivers_license(build_drivers_payload())
        assert record.version == LayoutVersion.DRIVERS_V1
        assert record_values(record) == GOLDEN_V1
        assert record.flags == []

    def test_golden_v2(self, decoder):
        payload = build_drivers_payload(GOLDEN_V2, version=LayoutVersion.DRIVERS_V2)
        record = decoder.decode_drivers_license(payload)
        assert record.version == LayoutVersion.DRIVERS_V2
        assert record_values(record) == GOLDEN_V2
        assert record.prdp_code == "PG"
        assert record.prdp_expiry_date == date(2025, 1, 31)

    def test_v2_uses_v2_keys(self):
        """V1 keys that reject every non-zero block must not be touched for a V2 payload."""
        broken = PublicKey(modulus=1, exponent=1)
        keys = {
            LayoutVersion.DRIVERS_V1: (broken, broken),
            LayoutVersion.DRIVERS_V2: TEST_KEYS[LayoutVersion.DRIVERS_V2],
        }
        decoder = LicenseDecoder(keys=keys)

        record = decoder.decode_drivers_license(build_drivers_payload(version=LayoutVersion.DRIVERS_V2))
        assert record.surname == "SMITH"

        with pytest.raises(PaddingError):
            decoder.decode_drivers_license(build_drivers_payload())

    def test_decodes_again_identically(self, decoder):
        payload = build_drivers_payload(GOLDEN_V2)
        assert decoder.decode_drivers_license(payload) == decoder.decode_drivers_license(payload)

    def test_module_function(self):
        record = decode_drivers_license(build_drivers_payload(), keys=TEST_KEYS)
        assert isinstance(record, DriversLicenseRecord)
        assert record.license_number == "40450001ABCD"

    def test_reencoded_record_decodes_to_same_values(self, decoder):
        record = decoder.decode_drivers_license(build_drivers_payload(GOLDEN_V2))
        again = decoder.decode_drivers_license(build_drivers_payload(record_values(record)))
        assert record_values(again) == record_values(record)

    @pytest.mark.parametrize("version", [LayoutVersion.DRIVERS_V1, LayoutVersion.DRIVERS_V2])
    def test_data_spanning_blocks(self, decoder, version):
        record = decoder.decode_drivers_license(build_drivers_payload(LONG_SURNAME_V1, version=version))
        assert record_values(record) == LONG_SURNAME_V1

    def test_bytearray_payload(self, decoder):
        record = decoder.decode_drivers_license(bytearray(build_drivers_payload()))
        assert record.surname == "SMITH"


class TestDriversErrors:

    @pytest.mark.parametrize("size", [0, 4, 719, 721])
    def test_wrong_length(self, decoder, size):
        payload = build_drivers_payload()
        payload = (payload + bytes(10))[:size]
        with pytest.raises(InvalidLengthError):
            decoder.decode_drivers_license(payload)

    def test_unknown_version(self, decoder):
        payload = bytes([0x01, 0x02, 0x03, 0x04]) + build_drivers_payload()[4:]
        with pytest.raises(UnknownVersionError):
            decoder.decode_drivers_license(payload)

    def test_vehicle_disc_rejected(self, decoder):
        with pytest.raises(WrongDocumentTypeError):
            decoder.decode_drivers_license(GOLDEN_VEHICLE)

    def test_bad_mandatory_field(self, decoder):
        index = payload_index(build_plaintext(GOLDEN_V1).find(b"8001015009087"))
        payload = corrupt(build_drivers_payload(), index, ord("X"))
        with pytest.raises(MandatoryFieldInvalidError) as exc:
            decoder.decode_drivers_license(payload)
        assert exc.value.field == "id_number"
        assert exc.value.stage == "extract"

    def test_bad_optional_field(self, decoder, caplog):
        plaintext = build_plaintext(GOLDEN_V1)
        gender_index = plaintext.index(NIBBLE_SECTION_END, plaintext.find(b"8001015009087")) - 1
        payload = corrupt(build_drivers_payload(), payload_index(gender_index), 0x07)

        with caplog.at_level(logging.WARNING):
            record = decoder.decode_drivers_license(payload)

        assert record.gender == "07"
        assert "gender" in record.invalid_fields
        assert record.is_valid
        assert "gender" in caplog.text

    def test_all_errors_are_decode_errors(self, decoder):
        with pytest.raises(DecodeError):
            decoder.decode_drivers_license(b"")

    def test_keyring_without_payload_version(self):
        decoder = LicenseDecoder(keys={LayoutVersion.DRIVERS_V1: TEST_KEYS[LayoutVersion.DRIVERS_V1]})
        with pytest.raises(DecodeError) as exc:
            decoder.decode_drivers_license(build_drivers_payload(version=LayoutVersion.DRIVERS_V2))
        assert isinstance(exc.value, MissingKeyError)
        assert exc.value.is_internal


# =============================================================================
# TEST strict mode
# =============================================================================

class TestStrictMode:

    def test_flagged_record_returned_by_default(self, decoder):
        record = decoder.decode_drivers_license(build_drivers_payload(id_number="8001015009088"))
        assert not record.is_valid

    def test_strict_raises(self):
        decoder = LicenseDecoder(keys=TEST_KEYS, strict=True)
        with pytest.raises(CrossCheckError) as exc:
            decoder.decode_drivers_license(build_drivers_payload(id_number="8001015009088"))
        assert exc.value.details["flags"] == ["ID_CHECKSUM_INVALID"]
        assert exc.value.stage == "build"

    def test_strict_ignores_medium_flags(self):
        decoder = LicenseDecoder(keys=TEST_KEYS, strict=True)
        record = decoder.decode_drivers_license(build_drivers_payload(id_number="8001014009088"))
        assert [f.code for f in record.flags] == ["ID_GENDER_MISMATCH"]


# =============================================================================
# TEST vehicle disc
# =============================================================================

class TestDecodeVehicleLicense:

    def test_golden(self, decoder):
        record = decoder.decode_vehicle_license(GOLDEN_VEHICLE)
        assert isinstance(record, VehicleLicenseRecord)
        assert record.vin == "MRHGE68X80J101234"
        assert record.expiry_date == date(2019, 7, 31)
        assert record.flags == []

    def test_module_function(self):
        assert decode_vehicle_license(GOLDEN_VEHICLE).register_number == "JHM253W"

    def test_too_few_parts(self, decoder):
        with pytest.raises(InvalidLengthError) as exc:
            decoder.decode_vehicle_license(b"%MVL1CC39%0154%4025T0AZ")
        assert exc.value.details == {"expected": 16, "actual": 4}

    def test_drivers_payload_rejected(self, decoder):
        with pytest.raises(WrongDocumentTypeError):
            decoder.decode_vehicle_license(build_drivers_payload())

    def test_not_a_disc(self, decoder):
        with pytest.raises(UnknownVersionError):
            decoder.decode_vehicle_license(b"X" + b"%" * 20)

    def test_bytearray_payload(self, decoder):
        assert decoder.decode_vehicle_license(bytearray(GOLDEN_VEHICLE)).make == "HONDA"


# =============================================================================
# TEST auto-detect
# =============================================================================

class TestDecode:

    def test_detects_drivers(self, decoder):
        assert isinstance(decoder.decode(build_drivers_payload()), DriversLicenseRecord)

    def test_detects_vehicle(self, decoder):
        assert isinstance(decoder.decode(GOLDEN_VEHICLE), VehicleLicenseRecord)

    def test_unknown_payload(self, decoder):
        with pytest.raises(UnknownVersionError):
            decoder.decode(b"hello world")

    def test_module_function(self):
        assert decode_license(GOLDEN_VEHICLE).make == "HONDA"
