from io import BytesIO

import qrcode
from reportlab.lib.pagesizes import A4
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from .notifier import verify_url


def qr_png(base_url, fingerprint) -> BytesIO:
    """PNG QR code pointing at the public verification page."""
    img = qrcode.make(verify_url(base_url, fingerprint))
    buf = BytesIO()
    img.save(buf)
    buf.seek(0)
    return buf


def certificate_pdf(record, issuer_name, status, base_url) -> BytesIO:
    buffer = BytesIO()
    pdf = canvas.Canvas(buffer, pagesize=A4)

    pdf.setFont("Helvetica-Bold", 22)
    pdf.drawCentredString(300, 800, "Certificate of Achievement")

    pdf.setFont("Helvetica", 14)
    pdf.drawString(80, 750, f"Holder Name: {record.holder_name}")
    pdf.drawString(80, 720, f"Enrollment: {record.enrollment_id}")
    pdf.drawString(80, 690, f"Program: {record.program}")
    pdf.drawString(80, 660, f"Institution: {record.institution}")
    pdf.drawString(80, 630, f"Issue Year: {record.issue_year}")
    pdf.drawString(80, 600, f"Issued At: {record.issued_at:%Y-%m-%d %H:%M} UTC")
    pdf.drawString(80, 570, f"Issuer: {issuer_name}")
    pdf.drawString(80, 540, f"Status: {status}")

    pdf.setFont("Courier", 8)
    pdf.drawString(80, 500, f"Certificate hash: {record.fingerprint}")
    pdf.drawString(80, 488, f"Transaction: {record.tx_ref}")

    pdf.drawImage(ImageReader(qr_png(base_url, record.fingerprint)), 80, 300, width=160, height=160)

    pdf.showPage()
    pdf.save()

    buffer.seek(0)
    return buffer
