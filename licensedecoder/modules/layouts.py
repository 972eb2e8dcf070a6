"""
Layout tables: where each field lives in a plaintext buffer and how to decode it.

Driver's license data section (after decryption and fill stripping):

    ┌───────────────────────────── text section ─────────────────────────────┐
    │ codes… │ surname │ initials │ [PrDP] │ ID cty │ lic cty │ restr… │ lic no │
    └────────────────────────────────────────────────────────────────────────┘
      strings end with 0xE0 or 0xE1. After "initials", 0xE0 means a PrDP code
      follows, 0xE1 means it does not.

    ┌──────────────┬──────────┬──────────────── nibble section ───────┬──────┬─────────┐
    │ ID number 13 │ ID type 1│ BCD dates and codes, one per nibble … │ 0x57 │ trailer │
    └──────────────┴──────────┴───────────────────────────────────────┴──────┴─────────┘
      A date is 8 nibbles (YYYYMMDD). A leading 0xA nibble means "no date"
      and takes up one nibble only.

      The trailer holds the photo dimensions: width at +3, height at +5
      from the byte after 0x57.

Vehicle license disc: one text record split on "%". Fields are addressed by
part index.
"""

from dataclasses import dataclass
from typing import Literal

from licensedecoder.errors import OutOfBoundsError
from licensedecoder.models import DocumentKind, LayoutVersion


# How the bytes of a field are located
FieldRule = Literal[
    "string",             # scan to the next 0xE0/0xE1 delimiter
    "string_group",       # `length` delimited slots, empty slots dropped
    "fixed",              # exactly `length` bytes
    "byte",               # one byte, rendered as a 2-digit decimal code
    "nibble_date",        # one BCD date from the nibble section
    "nibble_date_group",  # `length` BCD dates, absent ones dropped
    "nibble_digits",      # `length` BCD digits
    "trailer_byte",       # byte at `offset` past the nibble section
    "part",               # `offset`-th "%"-separated part (vehicle discs)
]

# How the located bytes are turned into a value
DecodeKind = Literal["text", "padded_text", "digits", "date", "integer", "code", "enum"]


# =============================================================================
# FIELD DESCRIPTORS
# =============================================================================

@dataclass(frozen=True)
class FieldSpec:
    """
    Declarative descriptor of one field.

    Attributes:
        name: Field name, also the attribute name on the record
        rule: How the field's bytes are located (see FieldRule)
        kind: How the bytes are decoded (see DecodeKind)
        length: Byte count ("fixed"), slot count ("*_group"), digit count ("nibble_digits")
        offset: Byte offset ("trailer_byte") or part index ("part")
        mandatory: An invalid value aborts the whole decode
        codes: Code table for "code"/"enum" kinds
        date_format: strptime format for "date" kinds
        requires_delimiter: Only present when the previous string ended with this byte
    """
    name: str
    rule: FieldRule
    kind: DecodeKind
    length: int = 0
    offset: int = 0
    mandatory: bool = False
    codes: dict[str, str] | None = None
    date_format: str = "%Y%m%d"
    requires_delimiter: int | None = None


@dataclass(frozen=True)
class FieldLayout:
    """
    Ordered field table for one LayoutVersion.

    Attributes:
        version: The LayoutVersion this table belongs to
        fields: Field descriptors, in buffer order
        encoding: Text encoding of string fields
        min_parts: Minimum number of "%" parts (vehicle discs only)
    """
    version: LayoutVersion
    fields: tuple[FieldSpec, ...]
    encoding: str = "latin-1"
    min_parts: int = 0

    def get_field(self, name: str) -> FieldSpec | None:
        """Get a field descriptor by name, or None if not present."""
        for spec in self.fields:
            if spec.name == name:
                return spec
        return None


# =============================================================================
# CODE TABLES
# =============================================================================

STRING_DELIMITERS = (0xE0, 0xE1)
# After "initials": 0xE0 = a PrDP code follows, 0xE1 = no PrDP
PRDP_FOLLOWS = 0xE0

NIBBLE_SECTION_END = 0x57
# A date starting with this nibble is absent
NO_DATE_NIBBLE = 0xA

ID_NUMBER_TYPES = {
    "01": "Traffic register number",
    "02": "RSA ID number",
    "03": "Foreign ID number",
    "04": "Business registration number",
}

GENDERS = {
    "01": "male",
    "02": "female",
}

# One digit per restriction slot
DRIVER_RESTRICTIONS = {
    "0": "None",
    "1": "Corrective lenses",
    "2": "Artificial limb",
}

VEHICLE_RESTRICTIONS = {
    "0": "None",
    "1": "Automatic transmission",
    "2": "Electrically powered",
    "3": "Physically disabled",
    "4": "Bus above 16000 kg GVM permitted",
}

LICENSE_CODES = {
    "A1": "Motorcycle up to 125 cm³",
    "A": "Motorcycle above 125 cm³",
    "B": "Light motor vehicle up to 3500 kg",
    "C1": "Goods vehicle 3500 kg to 16000 kg",
    "C": "Goods vehicle above 16000 kg",
    "EB": "Articulated light motor vehicle",
    "EC1": "Articulated goods vehicle up to 16000 kg",
    "EC": "Articulated goods vehicle above 16000 kg",
}

PRDP_CATEGORIES = {
    "G": "Goods",
    "P": "Passengers",
    "D": "Dangerous goods",
}


# =============================================================================
# LAYOUT TABLES
# =============================================================================

_DRIVERS_FIELDS = (
    FieldSpec("vehicle_codes", "string_group", "code", length=3),
    FieldSpec("surname", "string", "text", mandatory=True),
    FieldSpec("initials", "string", "text", mandatory=True),
    FieldSpec("prdp_code", "string", "code", codes=PRDP_CATEGORIES, requires_delimiter=PRDP_FOLLOWS),
    FieldSpec("id_country_of_issue", "string", "text"),
    FieldSpec("license_country_of_issue", "string", "text"),
    FieldSpec("vehicle_restrictions", "string_group", "code", length=3, codes=VEHICLE_RESTRICTIONS),
    FieldSpec("license_number", "string", "text", mandatory=True),
    FieldSpec("id_number", "fixed", "digits", length=13, mandatory=True),
    FieldSpec("id_number_type", "byte", "enum", codes=ID_NUMBER_TYPES),
    FieldSpec("license_code_issue_dates", "nibble_date_group", "date", length=4),
    FieldSpec("driver_restriction_codes", "nibble_digits", "code", length=2, codes=DRIVER_RESTRICTIONS),
    FieldSpec("prdp_expiry_date", "nibble_date", "date"),
    FieldSpec("license_issue_number", "nibble_digits", "code", length=2),
    FieldSpec("birthdate", "nibble_date", "date", mandatory=True),
    FieldSpec("license_issue_date", "nibble_date", "date"),
    FieldSpec("license_expiry_date", "nibble_date", "date", mandatory=True),
    FieldSpec("gender", "nibble_digits", "enum", length=2, codes=GENDERS),
    FieldSpec("image_width", "trailer_byte", "integer", offset=3),
    FieldSpec("image_height", "trailer_byte", "integer", offset=5),
)

DRIVERS_V1_LAYOUT = FieldLayout(LayoutVersion.DRIVERS_V1, _DRIVERS_FIELDS)
DRIVERS_V2_LAYOUT = FieldLayout(LayoutVersion.DRIVERS_V2, _DRIVERS_FIELDS)

VEHICLE_LAYOUT = FieldLayout(
    LayoutVersion.VEHICLE,
    (
        FieldSpec("disc_format", "part", "code", offset=1),
        FieldSpec("license_number", "part", "padded_text", offset=6, mandatory=True),
        FieldSpec("register_number", "part", "padded_text", offset=7, mandatory=True),
        FieldSpec("description", "part", "padded_text", offset=8),
        FieldSpec("make", "part", "padded_text", offset=9),
        FieldSpec("model", "part", "padded_text", offset=10),
        FieldSpec("colour", "part", "padded_text", offset=11),
        FieldSpec("vin", "part", "padded_text", offset=12, mandatory=True),
        FieldSpec("engine_number", "part", "padded_text", offset=13),
        FieldSpec("expiry_date", "part", "date", offset=14, mandatory=True, date_format="%Y-%m-%d"),
    ),
    encoding="utf-8",
    min_parts=16,
)

LAYOUTS: dict[LayoutVersion, FieldLayout] = {
    LayoutVersion.DRIVERS_V1: DRIVERS_V1_LAYOUT,
    LayoutVersion.DRIVERS_V2: DRIVERS_V2_LAYOUT,
    LayoutVersion.VEHICLE: VEHICLE_LAYOUT,
}


def get_layout(version: LayoutVersion) -> FieldLayout:
    """Get the layout table for a version."""
    return LAYOUTS[version]


# =============================================================================
# SELF-TEST
# =============================================================================

# Rules whose position is counted, not scanned
_COUNTED_RULES = ("string_group", "fixed", "nibble_date_group", "nibble_digits")
_NIBBLE_RULES = ("nibble_date", "nibble_date_group", "nibble_digits")


def validate_layout(layout: FieldLayout) -> None:
    """
    Check that a layout table is internally consistent.

    This guards the tables themselves, not the payloads: every range must be
    non-empty, part indexes must fall inside the minimum part count, nibble
    fields must be contiguous, and the trailer must come last.

    Raises:
        OutOfBoundsError: (internal) naming the first offending field
    """
    def fail(spec: FieldSpec, reason: str) -> None:
        raise OutOfBoundsError(
            f"Layout {layout.version.value}: field '{spec.name}' {reason}",
            field=spec.name,
            internal=True,
        )

    names = [spec.name for spec in layout.fields]
    if len(names) != len(set(names)):
        raise OutOfBoundsError(f"Layout {layout.version.value}: duplicate field names", internal=True)

    seen_nibbles = False
    left_nibbles = False
    seen_trailer = False

    for spec in layout.fields:
        if spec.rule in _COUNTED_RULES and spec.length <= 0:
            fail(spec, "has no length")

        if spec.rule == "part":
            if layout.version.kind != DocumentKind.VEHICLE:
                fail(spec, "uses part addressing in a binary layout")
            if not 0 <= spec.offset < layout.min_parts:
                fail(spec, f"reads part {spec.offset} of at least {layout.min_parts}")
            continue

        if layout.version.kind == DocumentKind.VEHICLE:
            fail(spec, f"uses rule '{spec.rule}' in a text layout")

        if seen_trailer and spec.rule != "trailer_byte":
            fail(spec, "comes after the trailer")

        if spec.rule in _NIBBLE_RULES:
            if left_nibbles:
                fail(spec, "reopens the nibble section")
            seen_nibbles = True
        elif seen_nibbles:
            left_nibbles = True

        if spec.rule == "trailer_byte":
            if not seen_nibbles:
                fail(spec, "has a trailer offset but no nibble section precedes it")
            if spec.offset < 0:
                fail(spec, "has a negative trailer offset")
            seen_trailer = True

        if spec.kind == "enum" and not spec.codes:
            fail(spec, "is an enum without a code table")
