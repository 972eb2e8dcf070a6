"""
Field Extractor: walks a layout table over a plaintext buffer.

The buffer is read front to back with a cursor. Each FieldSpec says how its
bytes are located (rule) and how they are decoded (kind), see layouts.py.

Outcomes per field:
- valid value                  -> DecodedField(valid=True)
- bad optional field           -> DecodedField(valid=False), extraction continues
- bad mandatory field          -> MandatoryFieldInvalidError
- data ends before the field   -> OutOfBoundsError
"""

from dataclasses import dataclass, field as dataclass_field
from datetime import date, datetime
import logging

import numpy as np

from licensedecoder.errors import MandatoryFieldInvalidError, OutOfBoundsError
from licensedecoder.models import DecodedField
from licensedecoder.modules.layouts import (
    FieldLayout,
    FieldSpec,
    NIBBLE_SECTION_END,
    NO_DATE_NIBBLE,
    STRING_DELIMITERS,
)

logger = logging.getLogger(__name__)

# Characters stripped from the end of padded fixed-width text
PAD_CHARACTERS = " \x00"


# =============================================================================
# CURSOR
# =============================================================================

@dataclass
class _Cursor:
    """Read position shared by all fields of one extract() call."""
    buf: bytes
    encoding: str
    pos: int = 0
    last_delimiter: int | None = None
    nibbles: list[int] | None = None
    nibble_pos: int = 0
    section_end: int | None = None
    parts: list[bytes] | None = dataclass_field(default=None, repr=False)


def _out_of_bounds(spec: FieldSpec, reason: str) -> OutOfBoundsError:
    return OutOfBoundsError(f"Field '{spec.name}': {reason}", field=spec.name)


# =============================================================================
# BYTE SECTION
# =============================================================================

def _read_string(cursor: _Cursor, spec: FieldSpec) -> bytes:
    """Read up to the next 0xE0/0xE1 delimiter and remember which one ended it."""
    for i in range(cursor.pos, len(cursor.buf)):
        if cursor.buf[i] in STRING_DELIMITERS:
            value = cursor.buf[cursor.pos:i]
            cursor.last_delimiter = cursor.buf[i]
            cursor.pos = i + 1
            return value
    raise _out_of_bounds(spec, "data ended before the string delimiter")


def _read_string_group(cursor: _Cursor, spec: FieldSpec) -> list[bytes]:
    """
    Read `spec.length` delimited slots.

    Empty slots are dropped. Running out of data ends the group early
    without an error, like a scan that stops after the last code.
    """
    values = []
    for _ in range(spec.length):
        end = cursor.pos
        while end < len(cursor.buf) and cursor.buf[end] not in STRING_DELIMITERS:
            end += 1

        value = cursor.buf[cursor.pos:end]
        if value:
            values.append(value)

        if end >= len(cursor.buf):
            cursor.pos = end
            break

        cursor.last_delimiter = cursor.buf[end]
        cursor.pos = end + 1

    return values


def _read_fixed(cursor: _Cursor, spec: FieldSpec) -> bytes:
    end = cursor.pos + spec.length
    if end > len(cursor.buf):
        raise _out_of_bounds(spec, f"needs {spec.length} bytes, {len(cursor.buf) - cursor.pos} left")
    value = cursor.buf[cursor.pos:end]
    cursor.pos = end
    return value


def _read_byte(cursor: _Cursor, spec: FieldSpec) -> int:
    if cursor.pos >= len(cursor.buf):
        raise _out_of_bounds(spec, "data ended")
    value = cursor.buf[cursor.pos]
    cursor.pos += 1
    return value


# =============================================================================
# NIBBLE SECTION
# =============================================================================

def unpack_nibbles(data: bytes) -> list[int]:
    """
    Split bytes into 4-bit values, high nibble first.

    Example:
        >>> unpack_nibbles(bytes([0x19, 0x80]))
        [1, 9, 8, 0]
    """
    arr = np.frombuffer(data, dtype=np.uint8)
    return np.column_stack((arr >> 4, arr & 0x0F)).ravel().tolist()


def _open_nibble_section(cursor: _Cursor, spec: FieldSpec) -> None:
    """Unpack everything up to the 0x57 terminator on first use."""
    if cursor.nibbles is not None:
        return

    end = cursor.buf.find(NIBBLE_SECTION_END, cursor.pos)
    if end == -1:
        raise _out_of_bounds(spec, "nibble section terminator 0x57 not found")

    cursor.nibbles = unpack_nibbles(cursor.buf[cursor.pos:end])
    cursor.nibble_pos = 0
    cursor.section_end = end + 1
    cursor.pos = end + 1


def _take_nibbles(cursor: _Cursor, spec: FieldSpec, count: int) -> list[int]:
    _open_nibble_section(cursor, spec)
    end = cursor.nibble_pos + count
    if end > len(cursor.nibbles):
        raise _out_of_bounds(spec, "nibble section ended")
    values = cursor.nibbles[cursor.nibble_pos:end]
    cursor.nibble_pos = end
    return values


def _read_nibble_date(cursor: _Cursor, spec: FieldSpec) -> list[int] | None:
    """
    Read one BCD date (8 nibbles), or None when the date is absent.

    An absent date is a single 0xA nibble.
    """
    first = _take_nibbles(cursor, spec, 1)
    if first[0] == NO_DATE_NIBBLE:
        return None
    return first + _take_nibbles(cursor, spec, 7)


def _nibbles_to_text(nibbles: list[int]) -> str:
    return "".join(f"{n:X}" for n in nibbles)


def _read_trailer_byte(cursor: _Cursor, spec: FieldSpec) -> int:
    if cursor.section_end is None:
        raise _out_of_bounds(spec, "trailer read before the nibble section")
    index = cursor.section_end + spec.offset
    if index >= len(cursor.buf):
        raise _out_of_bounds(spec, f"trailer offset {spec.offset} past end of data")
    return cursor.buf[index]


# =============================================================================
# TEXT PARTS (vehicle discs)
# =============================================================================

def _read_part(cursor: _Cursor, spec: FieldSpec) -> bytes:
    if cursor.parts is None:
        cursor.parts = cursor.buf.split(b"%")
    if spec.offset >= len(cursor.parts):
        raise _out_of_bounds(spec, f"record has {len(cursor.parts)} parts, needs part {spec.offset}")
    return cursor.parts[spec.offset]


# =============================================================================
# DECODING
# =============================================================================

def _decode_text(raw: bytes, spec: FieldSpec, encoding: str) -> DecodedField:
    try:
        text = raw.decode(encoding)
    except UnicodeDecodeError:
        return DecodedField(spec.name, None, raw.hex(), valid=False)

    if spec.kind == "padded_text":
        text = text.rstrip(PAD_CHARACTERS)

    if spec.kind == "digits":
        return DecodedField(spec.name, text if text.isdigit() else None, text, valid=text.isdigit())

    if spec.kind == "code":
        valid = text.isprintable() and _codes_valid([text], spec)
        return DecodedField(spec.name, text, text, valid=valid)

    valid = text.isprintable() and (bool(text) or not spec.mandatory)
    return DecodedField(spec.name, text if valid else None, text, valid=valid)


def _codes_valid(values: list[str], spec: FieldSpec) -> bool:
    """Every character of every value must be in the code table (if the field has one)."""
    if not spec.codes:
        return True
    return all(ch in spec.codes for value in values for ch in value)


def _decode_date_text(text: str, spec: FieldSpec) -> date | None:
    try:
        return datetime.strptime(text, spec.date_format).date()
    except ValueError:
        return None


def _decode_nibble_date(nibbles: list[int] | None, spec: FieldSpec) -> DecodedField:
    if nibbles is None:
        # Absent: fine for optional dates, fatal for mandatory ones
        return DecodedField(spec.name, None, "", valid=not spec.mandatory)

    raw = _nibbles_to_text(nibbles)
    if any(n > 9 for n in nibbles):
        return DecodedField(spec.name, None, raw, valid=False)

    value = _decode_date_text(raw, spec)
    return DecodedField(spec.name, value, raw, valid=value is not None)


def _decode_code(raw: str, spec: FieldSpec) -> DecodedField:
    """Map a code through its table; unknown codes are kept as raw text."""
    if spec.kind == "enum":
        if spec.codes and raw in spec.codes:
            return DecodedField(spec.name, spec.codes[raw], raw)
        return DecodedField(spec.name, raw, raw, valid=False)
    return DecodedField(spec.name, raw, raw, valid=_codes_valid([raw], spec))


def _read_field(cursor: _Cursor, spec: FieldSpec) -> DecodedField:
    rule = spec.rule

    if spec.requires_delimiter is not None and cursor.last_delimiter != spec.requires_delimiter:
        return DecodedField(spec.name, None, "")

    if rule in ("string", "fixed", "part"):
        if rule == "string":
            raw = _read_string(cursor, spec)
        elif rule == "fixed":
            raw = _read_fixed(cursor, spec)
        else:
            raw = _read_part(cursor, spec)

        if spec.kind == "date":
            text = raw.decode(cursor.encoding, errors="replace").strip()
            value = _decode_date_text(text, spec)
            return DecodedField(spec.name, value, text, valid=value is not None)
        return _decode_text(raw, spec, cursor.encoding)

    if rule == "string_group":
        values = [v.decode(cursor.encoding) for v in _read_string_group(cursor, spec)]
        valid = all(v.isprintable() for v in values) and _codes_valid(values, spec)
        return DecodedField(spec.name, values, ",".join(values), valid=valid)

    if rule == "byte":
        return _decode_code(f"{_read_byte(cursor, spec):02d}", spec)

    if rule == "nibble_date":
        return _decode_nibble_date(_read_nibble_date(cursor, spec), spec)

    if rule == "nibble_date_group":
        decoded = [
            _decode_nibble_date(_read_nibble_date(cursor, spec), spec)
            for _ in range(spec.length)
        ]
        present = [d for d in decoded if d.raw]
        valid = all(d.valid for d in present)
        values = [d.value for d in present if d.valid]
        return DecodedField(spec.name, values, ",".join(d.raw for d in present), valid=valid)

    if rule == "nibble_digits":
        nibbles = _take_nibbles(cursor, spec, spec.length)
        raw = _nibbles_to_text(nibbles)
        if any(n > 9 for n in nibbles):
            return DecodedField(spec.name, raw, raw, valid=False)
        return _decode_code(raw, spec)

    if rule == "trailer_byte":
        value = _read_trailer_byte(cursor, spec)
        return DecodedField(spec.name, value, str(value))

    raise ValueError(f"Unknown field rule: {rule}")


def extract(buf: bytes, layout: FieldLayout) -> list[DecodedField]:
    """
    Decode every field of a layout from a plaintext buffer.

    Args:
        buf: Plaintext data section (drivers) or disc text (vehicle)
        layout: Layout table for the classified version

    Returns:
        One DecodedField per FieldSpec, in layout order

    Raises:
        OutOfBoundsError: A field reads past the end of `buf`
        MandatoryFieldInvalidError: A mandatory field is missing or malformed
    """
    cursor = _Cursor(buf=buf, encoding=layout.encoding)
    fields = []

    for spec in layout.fields:
        decoded = _read_field(cursor, spec)

        if not decoded.valid:
            if spec.mandatory:
                raise MandatoryFieldInvalidError(spec.name, raw=decoded.raw)
            logger.warning(f"Optional field '{spec.name}' could not be decoded (raw={decoded.raw!r})")

        fields.append(decoded)

    logger.debug(f"Extracted {len(fields)} fields for {layout.version.value}")
    return fields
