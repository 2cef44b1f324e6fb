# Disclosure PDF rendering with reportlab; the signature certificate page is
# rendered separately and appended with pypdf.

from reportlab.pdfgen import canvas
from reportlab.lib.pagesizes import letter
from io import BytesIO
from pypdf import PdfReader, PdfWriter
import hashlib

TOP = 750
BOTTOM = 72
LEFT = 72
LINE = 14
MAX_CHARS = 95


class _Writer:
    def __init__(self, c):
        self.c = c
        self.y = TOP

    def line(self, text, font="Helvetica", size=10, indent=0):
        if self.y < BOTTOM:
            self.c.showPage()
            self.y = TOP
        self.c.setFont(font, size)
        self.c.drawString(LEFT + indent, self.y, str(text)[:MAX_CHARS])
        self.y -= LINE

    def gap(self, lines=1):
        self.y -= LINE * lines


def _format_value(value):
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if value is None or value == "":
        return "-"
    return value


def _write_payload(w: _Writer, payload, indent=12):
    if isinstance(payload, dict):
        for key, value in payload.items():
            label = str(key).replace("_", " ")
            if isinstance(value, (dict, list)) and value:
                w.line(f"{label}:", indent=indent)
                _write_payload(w, value, indent + 12)
            else:
                w.line(f"{label}: {_format_value(value)}", indent=indent)
    elif isinstance(payload, list):
        for idx, item in enumerate(payload, start=1):
            if isinstance(item, (dict, list)):
                w.line(f"#{idx}", indent=indent)
                _write_payload(w, item, indent + 12)
            else:
                w.line(f"- {_format_value(item)}", indent=indent)
    else:
        w.line(_format_value(payload), indent=indent)


def _render_form(snapshot: dict) -> bytes:
    buf = BytesIO()
    c = canvas.Canvas(buf, pagesize=letter)
    c.setTitle("Seller's Disclosure Notice")
    w = _Writer(c)
    w.line("SELLER'S DISCLOSURE NOTICE", font="Helvetica-Bold", size=14)
    w.gap()
    header = snapshot.get("header") or {}
    seller = snapshot.get("seller") or {}
    seller_name = " ".join(p for p in (seller.get("first_name"), seller.get("last_name")) if p)
    w.line(f"Property: {header.get('property_address') or '-'}")
    w.line(f"Seller: {seller_name or '-'}")
    w.line(f"Status: {snapshot.get('status')}   Completion: {snapshot.get('completion_percentage')}%")
    for section in snapshot.get("sections", []):
        w.gap()
        w.line(f"{section['number']}. {section['title']}", font="Helvetica-Bold", size=11)
        if section.get("data"):
            _write_payload(w, section["data"])
        else:
            w.line("Not answered", indent=12)
    utilities = snapshot.get("utilities") or {}
    if utilities:
        w.gap()
        w.line("Utility Providers", font="Helvetica-Bold", size=11)
        _write_payload(w, utilities)
    attachments = snapshot.get("attachments") or []
    if attachments:
        w.gap()
        w.line("Attachments", font="Helvetica-Bold", size=11)
        for att in attachments:
            w.line(f"{att.get('name')} ({att.get('type')})", indent=12)
    c.showPage()
    c.save()
    return buf.getvalue()


def _append_certificate(writer: PdfWriter, signatures: dict):
    buf = BytesIO()
    c = canvas.Canvas(buf, pagesize=letter)
    w = _Writer(c)
    w.line("Signatures", font="Helvetica-Bold", size=14)
    w.gap()
    for slot in ("seller1", "seller2", "buyer1", "buyer2"):
        sig = signatures.get(slot)
        if sig:
            w.line(f"{slot}: {sig.get('printed_name')} signed {sig.get('signed_at')}")
        else:
            w.line(f"{slot}: not signed")
    c.showPage(); c.save()
    buf.seek(0)
    for page in PdfReader(buf).pages:
        writer.add_page(page)


def render_disclosure_pdf(snapshot: dict):
    """Return ``(pdf_bytes, sha256)`` for a disclosure snapshot."""
    reader = PdfReader(BytesIO(_render_form(snapshot)))
    writer = PdfWriter()
    for page in reader.pages:
        writer.add_page(page)
    _append_certificate(writer, snapshot.get("signatures") or {})
    out = BytesIO()
    writer.write(out)
    final_bytes = out.getvalue()
    return final_bytes, hashlib.sha256(final_bytes).hexdigest()
