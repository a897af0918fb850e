"""
PDF snapshots of rendered report panels.

A panel is captured to an image with its interactive controls hidden, then
laid onto A4 pages under the shop letterhead. Content taller than one page
is sliced across pages and numbered.
"""

import logging
import os
import tempfile
import textwrap
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime
from io import BytesIO
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional

from PIL import Image, ImageDraw, ImageFont
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

import config
from metrics import format_currency

logger = logging.getLogger(__name__)

REPORT_TITLES = {
    "overview": "Overview",
    "financial": "Financial",
    "inventory": "Inventory",
    "performance": "Performance",
    "customer": "Customer",
}

DATED_REPORTS = ("financial", "performance")

MONEY_FIELDS = {
    "monthly_revenue", "average_invoice", "previous_month_revenue",
    "total_revenue", "total_expenses", "profit", "inventory", "salaries",
    "total_inventory_value", "avg_unit_cost", "total_cost",
    "revenue_generated", "avg_revenue_per_job", "avg_revenue_per_employee",
    "total_spent",
}


# ---------- Panel ----------
class PanelElement:
    """One node of a rendered report panel."""

    def __init__(self, tag: str, text: str = "", classes=(), attrs=None, children=None, display: str = ""):
        self.tag = tag
        self.text = text
        self.classes = set(classes)
        self.attrs = dict(attrs or {})
        self.children: List["PanelElement"] = list(children or [])
        self.display = display

    def add(self, *children: "PanelElement") -> "PanelElement":
        self.children.extend(children)
        return self

    def iter(self) -> Iterator["PanelElement"]:
        yield self
        for child in self.children:
            yield from child.iter()

    def is_control(self) -> bool:
        if self.tag == "button" or "print-hide" in self.classes:
            return True
        return self.tag == "input" and self.attrs.get("type") == "date"

    @property
    def hidden(self) -> bool:
        return self.display == "none"

    def __repr__(self):
        return f"<PanelElement {self.tag} {self.text[:20]!r}>"


def _label(key: str) -> str:
    return key.replace("_", " ").title()


def _value(key: str, value) -> str:
    if key in MONEY_FIELDS and isinstance(value, (int, float)):
        return format_currency(value)
    return "" if value is None else str(value)


def _section(key: str, value) -> Optional[PanelElement]:
    if isinstance(value, Mapping):
        section = PanelElement("section", children=[PanelElement("h3", _label(key))])
        for k, v in value.items():
            section.add(PanelElement("p", f"{_label(k)}: {_value(k, v)}"))
        return section
    if isinstance(value, list):
        section = PanelElement("section", children=[PanelElement("h3", _label(key))])
        if not value:
            section.add(PanelElement("p", "No data available."))
            return section
        columns = list(value[0].keys())
        table = PanelElement("table", children=[PanelElement("th", " | ".join(_label(c) for c in columns))])
        for row in value:
            table.add(PanelElement("tr", " | ".join(_value(c, row.get(c)) for c in columns)))
        return section.add(table)
    return None


def render_panel(kind: str, payload: Mapping[str, Any]) -> PanelElement:
    """Lay out a report payload the way the report view shows it."""
    title = REPORT_TITLES.get(kind, kind.title())
    controls = PanelElement("div", classes=["controls"])
    if kind in DATED_REPORTS:
        period = payload.get("report_period", {})
        controls.add(
            PanelElement("input", period.get("start_date", ""), attrs={"type": "date", "name": "startDate"}),
            PanelElement("input", period.get("end_date", ""), attrs={"type": "date", "name": "endDate"}),
        )
    controls.add(
        PanelElement("button", "Refresh"),
        PanelElement("button", "Export PDF", classes=["print-hide"]),
    )

    panel = PanelElement("div", classes=["report-panel"], attrs={"id": f"{kind}-report"})
    panel.add(PanelElement("h2", f"{title} Report"), controls)
    for key, value in payload.items():
        section = _section(key, value)
        if section is not None:
            panel.add(section)
    return panel


@contextmanager
def hidden_controls(panel: PanelElement):
    """Hide buttons, date pickers and print-hide elements for the capture."""
    saved = [(el, el.display) for el in panel.iter() if el.is_control()]
    for el, _ in saved:
        el.display = "none"
    try:
        yield [el for el, _ in saved]
    finally:
        for el, display in saved:
            el.display = display


# ---------- Capture ----------
LINE_HEIGHTS = {"h2": 30, "h3": 24, "th": 18}
FONT_SIZES = {"h2": 20, "h3": 15, "th": 11}


def _visible_lines(el: PanelElement, wrap: int):
    if el.hidden:
        return
    if el.text:
        for line in textwrap.wrap(el.text, width=wrap) or [""]:
            yield el.tag, line
    for child in el.children:
        yield from _visible_lines(child, wrap)


def rasterize(panel: PanelElement, width: int = 800, scale: int = 2) -> Image.Image:
    padding = 16
    lines = list(_visible_lines(panel, wrap=(width - 2 * padding) // 7))
    height = 2 * padding + sum(LINE_HEIGHTS.get(tag, 16) for tag, _ in lines)

    image = Image.new("RGB", (width * scale, max(height, 1) * scale), "white")
    draw = ImageDraw.Draw(image)
    fonts = {}
    y = padding
    for tag, line in lines:
        size = FONT_SIZES.get(tag, 11) * scale
        if size not in fonts:
            fonts[size] = ImageFont.load_default(size=size)
        font = fonts[size]
        draw.text((padding * scale, y * scale), line, fill="black", font=font)
        y += LINE_HEIGHTS.get(tag, 16)
    return image


# ---------- Document ----------
MARGIN = 10 * mm
FOOTER_SPACE = 12 * mm
CONTINUATION_TOP = 15 * mm


def _draw_header(pdf, page_w: float, page_h: float, report_type: str, generated_at: datetime) -> float:
    y = page_h - 20 * mm
    pdf.setFont("Helvetica-Bold", 18)
    pdf.drawCentredString(page_w / 2, y, config.COMPANY_NAME)

    y -= 8 * mm
    pdf.setFont("Helvetica", 10)
    pdf.drawCentredString(page_w / 2, y, config.COMPANY_ADDRESS)
    y -= 5 * mm
    pdf.drawCentredString(page_w / 2, y, config.COMPANY_PHONE)

    y -= 10 * mm
    pdf.setFont("Helvetica-Bold", 14)
    pdf.drawCentredString(page_w / 2, y, f"{report_type} Report")

    y -= 5 * mm
    pdf.setFont("Helvetica-Oblique", 10)
    pdf.drawCentredString(page_w / 2, y, "Generated on: " + generated_at.strftime("%Y-%m-%d %H:%M:%S"))

    y -= 10 * mm
    pdf.setLineWidth(0.5)
    pdf.line(MARGIN, y, page_w - MARGIN, y)
    return y - 10 * mm


def _draw_footer(pdf, page_w: float, page_no: int, total_pages: int):
    pdf.setFont("Helvetica", 8)
    if total_pages > 1:
        pdf.drawCentredString(page_w / 2, 5 * mm, f"Page {page_no} of {total_pages}")
    pdf.drawString(MARGIN, 5 * mm, f"{config.COMPANY_NAME} Management System")
    pdf.drawRightString(page_w - MARGIN, 5 * mm, config.COMPANY_WEBSITE)


def _slices(image_height: int, first_rows: int, rows_per_page: int) -> List[tuple]:
    slices = []
    top, rows = 0, first_rows
    while top < image_height:
        bottom = min(top + rows, image_height)
        slices.append((top, bottom))
        top, rows = bottom, rows_per_page
    return slices or [(0, 0)]


def build_report_pdf(image: Image.Image, report_type: str, generated_at: Optional[datetime] = None) -> bytes:
    """Lay ``image`` out at page width under the letterhead; returns PDF bytes."""
    if not image.width or not image.height:
        raise ExportError("Captured panel is empty")
    generated_at = generated_at or datetime.now()

    page_w, page_h = A4
    img_w = page_w - 2 * MARGIN
    pts_per_px = img_w / image.width

    # header height is fixed, so measure it on a throwaway canvas
    first_top = _draw_header(canvas.Canvas(BytesIO(), pagesize=A4), page_w, page_h, report_type, generated_at)
    first_rows = max(int((first_top - FOOTER_SPACE) / pts_per_px), 1)
    rows_per_page = max(int((page_h - CONTINUATION_TOP - FOOTER_SPACE) / pts_per_px), 1)
    slices = _slices(image.height, first_rows, rows_per_page)

    buf = BytesIO()
    pdf = canvas.Canvas(buf, pagesize=A4)
    pdf.setTitle(f"{report_type} Report")
    for page_no, (top, bottom) in enumerate(slices, start=1):
        if page_no == 1:
            y = _draw_header(pdf, page_w, page_h, report_type, generated_at)
        else:
            y = page_h - CONTINUATION_TOP
        if bottom > top:
            part = image.crop((0, top, image.width, bottom))
            part_h = (bottom - top) * pts_per_px
            pdf.drawImage(ImageReader(part), MARGIN, y - part_h, width=img_w, height=part_h)
        _draw_footer(pdf, page_w, page_no, len(slices))
        pdf.showPage()
    pdf.save()
    return buf.getvalue()


def report_filename(report_type: str, on: Optional[date] = None) -> str:
    on = on or date.today()
    slug = "_".join(report_type.lower().split())
    return f"{slug}_report_{on.isoformat()}.pdf"


# ---------- Exporter ----------
class ExportError(Exception):
    pass


@dataclass
class ExportResult:
    filename: str
    content: bytes

    def save(self, directory) -> str:
        """Write the file atomically; a failed write leaves nothing behind."""
        os.makedirs(directory, exist_ok=True)
        target = os.path.join(directory, self.filename)
        fd, tmp = tempfile.mkstemp(dir=directory, suffix=".part")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(self.content)
            os.replace(tmp, target)
        except BaseException:
            if os.path.exists(tmp):
                os.remove(tmp)
            raise
        return target


IDLE = "idle"
GENERATING = "generating"


class SnapshotExporter:
    """
    Exports one report panel at a time.

    ``export`` moves the exporter from idle to generating and back. A call
    made while another export of the same panel is generating is ignored and
    returns None. Failures are logged, kept as a one-shot alert for the
    caller and also return None.
    """

    FAILURE_ALERT = "Failed to generate PDF. Please try again."

    def __init__(self, capture: Callable[[PanelElement], Image.Image] = rasterize,
                 clock: Callable[[], datetime] = datetime.now):
        self._capture = capture
        self._clock = clock
        self._lock = threading.Lock()
        self._alert: Optional[str] = None
        self.state = IDLE

    @property
    def generating(self) -> bool:
        return self.state == GENERATING

    def export(self, panel: PanelElement, report_type: str) -> Optional[ExportResult]:
        if not self._lock.acquire(blocking=False):
            logger.info(f"{report_type} export already in progress; ignoring request")
            return None
        self.state = GENERATING
        try:
            now = self._clock()
            with hidden_controls(panel):
                image = self._capture(panel)
            content = build_report_pdf(image, report_type, now)
            result = ExportResult(report_filename(report_type, now.date()), content)
            logger.info(f"Exported {result.filename} ({len(content)} bytes)")
            return result
        except Exception as e:
            logger.exception(f"Error exporting {report_type} report to PDF: {e}")
            self._alert = self.FAILURE_ALERT
            return None
        finally:
            self.state = IDLE
            self._lock.release()

    def take_alert(self) -> Optional[str]:
        alert, self._alert = self._alert, None
        return alert


def export_report(kind: str, payload: Mapping[str, Any], exporter: SnapshotExporter) -> Optional[ExportResult]:
    return exporter.export(render_panel(kind, payload), REPORT_TITLES.get(kind, kind.title()))


def exporters_by_panel() -> Dict[str, SnapshotExporter]:
    return {kind: SnapshotExporter() for kind in REPORT_TITLES}
