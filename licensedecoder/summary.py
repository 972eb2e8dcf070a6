"""
Output shaping - turns decoded records into plain data and display text.

record_to_dict() produces JSON-ready values (ISO dates, enum values, flags
as dicts). format_record() produces the text block shown in the app.
"""

from dataclasses import asdict, fields as dataclass_fields
from datetime import date
from enum import Enum

from licensedecoder.models import DriversLicenseRecord, Flag, LicenseRecord, VehicleLicenseRecord
from licensedecoder.modules.layouts import DRIVER_RESTRICTIONS, VEHICLE_RESTRICTIONS


def _plain(value):
    """Convert dates and enums (also inside lists) into JSON-friendly values."""
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, list):
        return [_plain(v) for v in value]
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    return value


def record_to_dict(record: LicenseRecord) -> dict:
    """
    Convert a record into a dict of plain values.

    Example:
        >>> record_to_dict(record)["birthdate"]
        '1980-01-01'
    """
    data = {f.name: _plain(getattr(record, f.name)) for f in dataclass_fields(record) if f.name != "flags"}
    data["document_kind"] = record.version.kind.value
    data["flags"] = [asdict(flag) for flag in record.flags]
    return data


def _fmt_date(value: date | None) -> str:
    return value.strftime("%Y/%m/%d") if value else "-"


def _describe_restrictions(codes: str | None) -> str:
    if not codes:
        return "-"
    # "0" marks an empty restriction slot
    restrictions = [DRIVER_RESTRICTIONS.get(ch, ch) for ch in codes if ch != "0"]
    return ", ".join(dict.fromkeys(restrictions)) or DRIVER_RESTRICTIONS["0"]


def _format_flags(flags: list[Flag]) -> list[str]:
    if not flags:
        return ["No issues found."]
    icons = {"low": "🟢", "medium": "🟡", "high": "🟠", "critical": "🔴"}
    return [f"{icons.get(f.severity, '•')} [{f.code}] {f.message}" for f in flags]


def format_drivers_license(record: DriversLicenseRecord) -> str:
    lines = []
    lines.append("=" * 50)
    lines.append("DRIVER'S LICENSE")
    lines.append("=" * 50)
    lines.append(f"Name:            {record.initials} {record.surname}")
    lines.append(f"ID number:       {record.id_number} ({record.id_number_type or '-'})")
    lines.append(f"Date of birth:   {_fmt_date(record.birthdate)}")
    lines.append(f"Gender:          {record.gender or '-'}")
    lines.append("")
    lines.append(f"License number:  {record.license_number}")
    lines.append(f"Issue number:    {record.license_issue_number or '-'}")
    lines.append(f"Valid:           {_fmt_date(record.license_issue_date)} - {_fmt_date(record.license_expiry_date)}")
    lines.append(f"Country:         {record.license_country_of_issue or '-'}")

    if record.vehicle_codes:
        lines.append("")
        lines.append("Codes:")
        for i, code in enumerate(record.vehicle_codes):
            issued = record.license_code_issue_dates[i] if i < len(record.license_code_issue_dates) else None
            lines.append(f"   {code:<4} first issued {_fmt_date(issued)}")

    restrictions = [VEHICLE_RESTRICTIONS.get(code, code) for code in record.vehicle_restrictions]
    lines.append(f"Vehicle restr.:  {', '.join(restrictions) or '-'}")
    lines.append(f"Driver restr.:   {_describe_restrictions(record.driver_restriction_codes)}")

    if record.prdp_code:
        lines.append(f"PrDP:            {record.prdp_code}, expires {_fmt_date(record.prdp_expiry_date)}")

    lines.append(f"Photo:           {f'{record.image_width}x{record.image_height}' if record.has_photo else 'none'}")
    lines.append("")
    lines.extend(_format_flags(record.flags))
    return "\n".join(lines)


def format_vehicle_license(record: VehicleLicenseRecord) -> str:
    lines = []
    lines.append("=" * 50)
    lines.append("VEHICLE LICENSE DISC")
    lines.append("=" * 50)
    lines.append(f"License number:  {record.license_number}")
    lines.append(f"Register number: {record.register_number}")
    lines.append(f"Vehicle:         {record.make_and_model or '-'} ({record.description or '-'})")
    lines.append(f"Colour:          {record.colour or '-'}")
    lines.append(f"VIN:             {record.vin}")
    lines.append(f"Engine number:   {record.engine_number or '-'}")
    lines.append(f"Expires:         {_fmt_date(record.expiry_date)}")
    lines.append("")
    lines.extend(_format_flags(record.flags))
    return "\n".join(lines)


def format_record(record: LicenseRecord) -> str:
    """Format either record kind for display."""
    if isinstance(record, DriversLicenseRecord):
        return format_drivers_license(record)
    return format_vehicle_license(record)

