import re
import threading
from datetime import date, datetime

import pytest
from PIL import Image

import pdf
from pdf import (
    PanelElement,
    SnapshotExporter,
    build_report_pdf,
    hidden_controls,
    rasterize,
    render_panel,
    report_filename,
)

FIXED_NOW = datetime(2026, 10, 18, 14, 30)


def sample_panel():
    return PanelElement("div", children=[
        PanelElement("h2", "Financial Report"),
        PanelElement("div", children=[
            PanelElement("input", "2026-10-01", attrs={"type": "date"}, display="inline-block"),
            PanelElement("input", "search", attrs={"type": "text"}),
            PanelElement("button", "Refresh", display="flex"),
            PanelElement("span", "Filters", classes=["print-hide"]),
        ]),
        PanelElement("p", "Total Revenue: LKR 4,500.00"),
    ])


def page_count(content: bytes) -> int:
    return int(re.search(rb"/Count (\d+)", content).group(1))


# ---------- Panels ----------
def test_hidden_controls_hides_and_restores():
    panel = sample_panel()
    before = [(el.tag, el.display) for el in panel.iter()]

    with hidden_controls(panel) as hidden:
        assert {el.tag for el in hidden} == {"input", "button", "span"}
        assert len(hidden) == 3
        assert all(el.display == "none" for el in hidden)
        text_input = [el for el in panel.iter() if el.attrs.get("type") == "text"][0]
        assert not text_input.hidden

    assert [(el.tag, el.display) for el in panel.iter()] == before


def test_hidden_controls_restores_on_failure():
    panel = sample_panel()
    before = [el.display for el in panel.iter()]
    with pytest.raises(RuntimeError):
        with hidden_controls(panel):
            raise RuntimeError("capture failed")
    assert [el.display for el in panel.iter()] == before


def test_render_panel_includes_controls_and_sections():
    payload = {
        "report_period": {"period": "month", "start_date": "2026-10-01", "end_date": "2026-10-31"},
        "summary": {"total_revenue": 4500.0, "profit_margin": "22.22%"},
        "revenue_by_service": [],
    }
    panel = render_panel("financial", payload)
    texts = [el.text for el in panel.iter()]
    assert "Financial Report" in texts
    assert "Total Revenue: LKR 4,500.00" in texts
    assert "Profit Margin: 22.22%" in texts
    assert "No data available." in texts
    dates = [el for el in panel.iter() if el.tag == "input" and el.attrs.get("type") == "date"]
    assert [el.text for el in dates] == ["2026-10-01", "2026-10-31"]


def test_rasterize_skips_hidden_elements():
    panel = sample_panel()
    full = rasterize(panel)
    with hidden_controls(panel):
        captured = rasterize(panel)
    assert captured.width == full.width == 1600
    assert captured.height < full.height


# ---------- Document ----------
def test_filename():
    assert report_filename("Financial", date(2026, 10, 18)) == "financial_report_2026-10-18.pdf"
    assert report_filename("Customer  Retention", date(2026, 1, 2)) == "customer_retention_report_2026-01-02.pdf"


def test_single_page_document():
    content = build_report_pdf(Image.new("RGB", (1600, 400), "white"), "Overview", FIXED_NOW)
    assert content.startswith(b"%PDF")
    assert page_count(content) == 1


def test_tall_capture_is_paginated():
    content = build_report_pdf(Image.new("RGB", (1600, 9000), "white"), "Inventory", FIXED_NOW)
    assert page_count(content) > 1


def test_page_numbers_only_on_multi_page(monkeypatch):
    drawn = []
    original = pdf.canvas.Canvas

    class RecordingCanvas(original):
        def drawCentredString(self, x, y, text, *args, **kwargs):
            drawn.append(text)
            return super().drawCentredString(x, y, text, *args, **kwargs)

        def drawString(self, x, y, text, *args, **kwargs):
            drawn.append(text)
            return super().drawString(x, y, text, *args, **kwargs)

    monkeypatch.setattr(pdf.canvas, "Canvas", RecordingCanvas)

    build_report_pdf(Image.new("RGB", (1600, 300), "white"), "Overview", FIXED_NOW)
    assert not any(t.startswith("Page ") for t in drawn)
    assert "Overview Report" in drawn
    assert "Generated on: 2026-10-18 14:30:00" in drawn
    assert f"{pdf.config.COMPANY_NAME} Management System" in drawn

    drawn.clear()
    build_report_pdf(Image.new("RGB", (1600, 9000), "white"), "Overview", FIXED_NOW)
    numbers = [t for t in drawn if t.startswith("Page ")]
    assert numbers[0] == f"Page 1 of {len(numbers)}"
    assert numbers[-1] == f"Page {len(numbers)} of {len(numbers)}"


def test_slices_cover_image_without_overlap():
    slices = pdf._slices(1000, 300, 400)
    assert slices == [(0, 300), (300, 700), (700, 1000)]


def test_empty_capture_rejected():
    with pytest.raises(pdf.ExportError):
        build_report_pdf(Image.new("RGB", (0, 0)), "Overview", FIXED_NOW)


# ---------- Exporter ----------
def test_export_produces_named_file(tmp_path):
    exporter = SnapshotExporter(clock=lambda: FIXED_NOW)
    result = exporter.export(sample_panel(), "Financial")

    assert result.filename == "financial_report_2026-10-18.pdf"
    assert result.content.startswith(b"%PDF")
    path = result.save(tmp_path)
    assert [p.name for p in tmp_path.iterdir()] == ["financial_report_2026-10-18.pdf"]
    assert open(path, "rb").read() == result.content
    assert exporter.state == "idle"


def test_export_captures_with_controls_hidden():
    seen = []

    def capture(panel):
        seen.extend(el.display for el in panel.iter() if el.is_control())
        return Image.new("RGB", (100, 100), "white")

    panel = sample_panel()
    SnapshotExporter(capture=capture, clock=lambda: FIXED_NOW).export(panel, "Overview")
    assert seen == ["none", "none", "none"]
    assert [el.display for el in panel.iter() if el.is_control()] == ["inline-block", "flex", ""]


def test_export_failure_returns_to_idle_with_one_shot_alert():
    def capture(panel):
        raise RuntimeError("canvas exploded")

    panel = sample_panel()
    exporter = SnapshotExporter(capture=capture)
    assert exporter.export(panel, "Overview") is None
    assert exporter.state == "idle"
    assert not any(el.hidden for el in panel.iter())
    assert exporter.take_alert() == SnapshotExporter.FAILURE_ALERT
    assert exporter.take_alert() is None


def test_concurrent_export_is_ignored():
    started = threading.Event()
    release = threading.Event()

    def slow_capture(panel):
        started.set()
        release.wait(5)
        return Image.new("RGB", (200, 200), "white")

    exporter = SnapshotExporter(capture=slow_capture, clock=lambda: FIXED_NOW)
    results = []
    first = threading.Thread(target=lambda: results.append(exporter.export(sample_panel(), "Overview")))
    first.start()
    assert started.wait(5)

    assert exporter.generating
    assert exporter.export(sample_panel(), "Overview") is None
    assert exporter.take_alert() is None

    release.set()
    first.join(5)
    produced = [r for r in results if r is not None]
    assert len(produced) == 1
    assert exporter.state == "idle"


def test_save_leaves_no_partial_file(tmp_path, monkeypatch):
    result = pdf.ExportResult("overview_report_2026-10-18.pdf", b"%PDF-1.4")

    def broken_replace(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr(pdf.os, "replace", broken_replace)
    with pytest.raises(OSError):
        result.save(tmp_path)
    assert list(tmp_path.iterdir()) == []
