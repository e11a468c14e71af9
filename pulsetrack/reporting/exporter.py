"""Report exporter for PulseTrack.

Generates Word (.docx) documents from range reports using python-docx.
"""

import logging
import os

from docx import Document
from docx.enum.text import WD_ALIGN_PARAGRAPH
from docx.shared import Pt

from pulsetrack.core.models import AppBreakdownEntry, BrandSummary, RangeReport
from pulsetrack.reporting.formatter import TextFormatter

logger = logging.getLogger(__name__)


class ReportExporter:
    """Exports range reports (week, month, custom) to a Word document."""

    def export_range(
        self, report: RangeReport, output_path: str, title: str = "PulseTrack Report"
    ) -> str:
        """Generate a .docx file from *report*.

        Args:
            report: The range report to export.
            output_path: File path for the generated .docx file.
            title: Heading shown on the title page.

        Returns:
            The path to the generated file.
        """
        parent_dir = os.path.dirname(output_path)
        if parent_dir:
            os.makedirs(parent_dir, exist_ok=True)

        doc = Document()

        # --- Title page ---
        self._add_title_page(doc, report, title)

        # --- Totals ---
        doc.add_heading("Summary", level=1)
        doc.add_paragraph(
            f"Total tracked: {TextFormatter.format_duration(report.total_seconds)}"
        )
        doc.add_paragraph(
            f"Daily average: {TextFormatter.format_duration(report.daily_average_seconds)} "
            f"over {len(report.days)} active days"
        )

        # --- Top apps ---
        doc.add_heading("Applications", level=1)
        if report.apps:
            self._add_app_table(doc, report.apps, report.total_seconds)
        else:
            doc.add_paragraph("No activity recorded.")

        # --- Brands and projects ---
        doc.add_heading("Brands & Projects", level=1)
        if report.brands:
            self._add_brand_table(doc, report.brands)
        else:
            doc.add_paragraph("No classified activity.")

        # --- Day-by-day breakdown ---
        doc.add_heading("Daily Breakdown", level=1)
        for day in report.days:
            doc.add_heading(day.date, level=2)
            self._add_app_table(
                doc,
                [AppBreakdownEntry(app_name=a.app_name, seconds=a.total_seconds) for a in day.apps],
                day.total_seconds,
            )

        doc.save(output_path)
        logger.info("Exported report to %s", output_path)
        return output_path

    def _add_title_page(self, doc, report: RangeReport, title: str) -> None:
        """Add a title page with report title and date range."""
        title_para = doc.add_paragraph()
        title_para.alignment = WD_ALIGN_PARAGRAPH.CENTER
        run = title_para.add_run(title)
        run.bold = True
        run.font.size = Pt(24)

        start_str = report.start_date.strftime("%B %d, %Y")
        end_str = report.end_date.strftime("%B %d, %Y")
        date_para = doc.add_paragraph()
        date_para.alignment = WD_ALIGN_PARAGRAPH.CENTER
        run = date_para.add_run(f"{start_str} - {end_str}")
        run.font.size = Pt(14)

        doc.add_page_break()

    def _add_app_table(self, doc, apps: list[AppBreakdownEntry], total_seconds: int) -> None:
        """Add an app/time table with a total row."""
        table = doc.add_table(rows=1 + len(apps) + 1, cols=3)
        table.style = "Light Grid Accent 1"

        header_cells = table.rows[0].cells
        header_cells[0].text = "Application"
        header_cells[1].text = "Time"
        header_cells[2].text = "Share"

        for i, entry in enumerate(apps, start=1):
            row_cells = table.rows[i].cells
            row_cells[0].text = entry.app_name
            row_cells[1].text = TextFormatter.format_duration(entry.seconds)
            share = entry.seconds / total_seconds * 100 if total_seconds else 0.0
            row_cells[2].text = f"{share:.1f}%"

        total_row = table.rows[-1].cells
        total_row[0].text = "Total"
        total_row[1].text = TextFormatter.format_duration(total_seconds)
        total_row[2].text = ""

        self._bold_row(table.rows[0])
        self._bold_row(table.rows[-1])
        doc.add_paragraph()  # spacing after table

    def _add_brand_table(self, doc, brands: list[BrandSummary]) -> None:
        """Add one row per brand followed by its projects."""
        rows = sum(1 + len(b.projects) for b in brands)
        table = doc.add_table(rows=1 + rows, cols=2)
        table.style = "Light Grid Accent 1"

        header_cells = table.rows[0].cells
        header_cells[0].text = "Brand / Project"
        header_cells[1].text = "Time"
        self._bold_row(table.rows[0])

        index = 1
        for brand in brands:
            brand_row = table.rows[index]
            brand_row.cells[0].text = brand.brand_name
            brand_row.cells[1].text = TextFormatter.format_duration(brand.total_seconds)
            self._bold_row(brand_row)
            index += 1
            for project in brand.projects:
                cells = table.rows[index].cells
                cells[0].text = f"    {project.project_name}"
                cells[1].text = TextFormatter.format_duration(project.total_seconds)
                index += 1

        doc.add_paragraph()

    @staticmethod
    def _bold_row(row) -> None:
        for cell in row.cells:
            for paragraph in cell.paragraphs:
                for run in paragraph.runs:
                    run.bold = True
