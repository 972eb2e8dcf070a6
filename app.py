"""
LicenseDecoder - South African license barcode viewer

A Streamlit web application that decodes the raw bytes of a scanned
driver's license card or vehicle license disc barcode and shows the record.

The barcode itself must already be read by a scanner; upload the raw
payload file it produced, or paste the payload as hex.

Run with: streamlit run app.py
"""

import binascii
import json

import streamlit as st

from licensedecoder.decoder import LicenseDecoder
from licensedecoder.errors import DecodeError
from licensedecoder.models import DriversLicenseRecord
from licensedecoder.summary import format_record, record_to_dict


# =============================================================================
# INPUT HELPERS
# =============================================================================

def parse_hex_payload(text: str) -> bytes:
    """
    Turn pasted hex (spaces, newlines and "0x" prefixes allowed) into bytes.

    Raises:
        ValueError: If the text is not valid hex
    """
    cleaned = text.replace("0x", "").replace(",", " ")
    cleaned = "".join(cleaned.split())
    try:
        return binascii.unhexlify(cleaned)
    except binascii.Error as e:
        raise ValueError(f"Not a valid hex payload: {e}")


def read_payload(uploaded_file, hex_text: str) -> bytes | None:
    """Uploaded file wins over pasted hex; None when neither is given."""
    if uploaded_file is not None:
        return uploaded_file.getvalue()
    if hex_text.strip():
        return parse_hex_payload(hex_text)
    return None


# =============================================================================
# PAGE CONFIG
# =============================================================================

st.set_page_config(
    page_title="LicenseDecoder - SA License Barcodes",
    layout="wide",
    initial_sidebar_state="expanded",
)

st.markdown("""
<style>
    .flag-critical { color: #721c24; font-weight: bold; }
    .flag-high { color: #dc3545; }
    .flag-medium { color: #fd7e14; }
    .flag-low { color: #6c757d; }
</style>
""", unsafe_allow_html=True)

st.title("LicenseDecoder")
st.caption("Decode South African driver's license and vehicle license disc barcodes.")


# =============================================================================
# SIDEBAR: options
# =============================================================================

with st.sidebar:
    document_type = st.radio(
        "Document type",
        options=["Auto-detect", "Driver's license", "Vehicle license disc"],
    )
    strict = st.checkbox(
        "Strict cross-checks",
        value=False,
        help="Reject the record when the ID number or license dates fail their checks.",
    )


# =============================================================================
# INPUT
# =============================================================================

upload_col, paste_col = st.columns(2)
with upload_col:
    uploaded_file = st.file_uploader("Raw payload file", type=["bin", "dat", "raw", "txt"])
with paste_col:
    hex_text = st.text_area("...or paste the payload as hex", height=120)

try:
    payload = read_payload(uploaded_file, hex_text)
except ValueError as e:
    st.error(str(e))
    payload = None


# =============================================================================
# DECODE
# =============================================================================

if payload is not None:
    decoder = LicenseDecoder(strict=strict)

    try:
        if document_type == "Driver's license":
            record = decoder.decode_drivers_license(payload)
        elif document_type == "Vehicle license disc":
            record = decoder.decode_vehicle_license(payload)
        else:
            record = decoder.decode(payload)
    except DecodeError as e:
        where = f" (field: {e.field})" if e.field else ""
        kind = "Configuration error" if e.is_internal else "Not a valid scan"
        st.error(f"{kind}: {e.stage} stage{where}: {e.message}")
        if e.details:
            st.json(e.details)
        st.stop()

    data = record_to_dict(record)

    st.markdown("---")
    text_col, data_col = st.columns([3, 2])

    with text_col:
        st.code(format_record(record), language=None)

    with data_col:
        if isinstance(record, DriversLicenseRecord):
            st.metric("Surname", record.surname)
            st.metric("Expires", record.license_expiry_date.isoformat())
        else:
            st.metric("Register number", record.register_number)
            st.metric("Expires", record.expiry_date.isoformat())

        for flag in record.flags:
            st.markdown(
                f'<span class="flag-{flag.severity}">[{flag.code}] {flag.message}</span>',
                unsafe_allow_html=True,
            )

        with st.expander("Raw record"):
            st.json(data)

        st.download_button(
            "Download JSON",
            data=json.dumps(data, indent=2, ensure_ascii=False),
            file_name=f"{data['document_kind']}_license.json",
            mime="application/json",
        )

# Footer
st.markdown("""
<div style="text-align:center; padding:0.8rem; color:#555; font-size:0.75rem;">
    LicenseDecoder · payloads are decoded locally · Made with Streamlit
</div>
""", unsafe_allow_html=True)
