"""
Export formatters for compiled results: the class result sheet (Excel) and the
student report card (PDF).
"""
import io

import openpyxl
from openpyxl.styles import Alignment, Font, PatternFill
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from django.http import HttpResponse
from django.utils.html import escape
from django.utils.text import slugify

HEADER_FILL = PatternFill(start_color="366092", end_color="366092", fill_type="solid")


def _display(value):
    return '-' if value is None else value


class ExcelExporter:
    """Single-sheet workbook with a styled header row"""

    def __init__(self, title="Results", headers=None):
        self.wb = openpyxl.Workbook()
        self.ws = self.wb.active
        self.ws.title = title[:31]
        self.headers = headers or []
        self.current_row = 1
        self._write_headers()

    def _write_headers(self):
        for col_num, header in enumerate(self.headers, 1):
            cell = self.ws.cell(row=1, column=col_num, value=header)
            cell.font = Font(bold=True, color="FFFFFF")
            cell.fill = HEADER_FILL
            cell.alignment = Alignment(horizontal='center', vertical='center', wrap_text=True)

    def add_row(self, data):
        self.current_row += 1
        for col_num, value in enumerate(data, 1):
            self.ws.cell(row=self.current_row, column=col_num, value=value)

    def auto_adjust_columns(self):
        for column in self.ws.columns:
            max_length = max((len(str(cell.value)) for cell in column if cell.value is not None), default=0)
            self.ws.column_dimensions[column[0].column_letter].width = min(max_length + 2, 50)

    def get_response(self, filename):
        self.auto_adjust_columns()
        response = HttpResponse(
            content_type='application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'
        )
        response['Content-Disposition'] = f'attachment; filename="{filename}.xlsx"'
        self.wb.save(response)
        return response


class PDFExporter:
    """Flowable-based PDF document using ReportLab"""

    def __init__(self, title="Report"):
        self.buffer = io.BytesIO()
        self.doc = SimpleDocTemplate(
            self.buffer,
            pagesize=A4,
            topMargin=0.5*inch,
            bottomMargin=0.5*inch,
            title=title,
        )
        self.styles = getSampleStyleSheet()
        self.story = []

    def add_title(self, text):
        self.story.append(Paragraph(f"<b>{text}</b>", self.styles['Title']))
        self.story.append(Spacer(1, 12))

    def add_heading(self, text):
        self.story.append(Paragraph(f"<b>{text}</b>", self.styles['Heading2']))
        self.story.append(Spacer(1, 8))

    def add_paragraph(self, text):
        self.story.append(Paragraph(text, self.styles['Normal']))

    def add_table(self, data):
        table = Table(data, repeatRows=1)
        table.setStyle(TableStyle([
            ('BACKGROUND', (0, 0), (-1, 0), colors.HexColor('#366092')),
            ('TEXTCOLOR', (0, 0), (-1, 0), colors.whitesmoke),
            ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
            ('FONTSIZE', (0, 0), (-1, -1), 8),
            ('ALIGN', (1, 0), (-1, -1), 'CENTER'),
            ('GRID', (0, 0), (-1, -1), 0.5, colors.black),
        ]))
        self.story.append(table)

    def add_spacer(self, height=12):
        self.story.append(Spacer(1, height))

    def render(self):
        self.doc.build(self.story)
        return self.buffer.getvalue()

    def get_response(self, filename):
        response = HttpResponse(self.render(), content_type='application/pdf')
        response['Content-Disposition'] = f'attachment; filename="{filename}.pdf"'
        return response


def class_results_export(class_info, results, subjects):
    """Excel sheet: one row per student, one column per subject, then totals and position."""
    headers = ['Position', 'Admission No', 'Student']
    headers += [subject.name for subject in subjects]
    headers += ['Total', 'Average', 'Grade', 'Remark']

    exporter = ExcelExporter(title=class_info['class_name'], headers=headers)
    for row in results:
        data = [row['position'] or '-', row['admission_no'], row['student_name']]
        for subject in subjects:
            entry = row['subjects'][subject.id]
            if entry['is_absent']:
                data.append('ABS')
            elif entry['is_exempt']:
                data.append('EXM')
            else:
                data.append(_display(entry['score']))
        data += [
            _display(row['total_score']),
            _display(row['average_score']),
            _display(row['grade']),
            _display(row['remark']),
        ]
        exporter.add_row(data)

    filename = slugify(f"{class_info['class_name']} {class_info['term_name']} results")
    return exporter.get_response(filename)


def student_report_pdf(report):
    """Plain tabular report card built from ``get_student_report`` data."""
    student = report['student']
    class_info = report['class_info']

    exporter = PDFExporter(title=f"Report card - {student['name']}")
    exporter.add_title("Student Report Card")
    exporter.add_paragraph(f"<b>Name:</b> {escape(student['name'])}")
    exporter.add_paragraph(f"<b>Admission No:</b> {escape(student['admission_no'] or '-')}")
    exporter.add_paragraph(
        f"<b>Class:</b> {escape(class_info['class_name'])} | <b>Term:</b> {escape(class_info['term_name'])} "
        f"{escape(class_info['academic_year'])}"
    )
    exporter.add_spacer()

    rows = [['Subject', 'CA1', 'CA2', 'CA3', 'Exam', 'Total', 'Grade', 'Remark', 'Pos.', 'Highest', 'Lowest', 'Avg']]
    for subject in report['subjects']:
        rows.append([
            subject['subject_name'],
            _display(subject['ca1']),
            _display(subject['ca2']),
            _display(subject['ca3']),
            _display(subject['exam']),
            _display(subject['score']),
            _display(subject['grade']),
            subject['remark'] or '',
            subject['position'] or '-',
            _display(subject['highest']),
            _display(subject['lowest']),
            _display(subject['average']),
        ])
    exporter.add_table(rows)
    exporter.add_spacer()

    exporter.add_heading("Summary")
    exporter.add_paragraph(f"<b>Total score:</b> {_display(report['total_score'])}")
    exporter.add_paragraph(f"<b>Average:</b> {_display(report['average_score'])}")
    exporter.add_paragraph(f"<b>Grade:</b> {escape(_display(report['grade']))} ({escape(report['remark'] or '-')})")
    position = report['position'] or '-'
    exporter.add_paragraph(f"<b>Position:</b> {position} of {report['out_of']}")
    if report['passed'] is not None:
        outcome = 'Passed' if report['passed'] else 'Not passed'
        exporter.add_paragraph(f"<b>Result:</b> {outcome} (pass mark {report['pass_mark']:g})")
    exporter.add_spacer()

    exporter.add_heading("Grading key")
    key = [['Grade', 'Range', 'Remark']]
    for level in report['grading_levels']:
        key.append([level['grade'], f"{level['min_score']:g} - {level['max_score']:g}", level['remark']])
    exporter.add_table(key)

    filename = slugify(f"{student['name']} {class_info['term_name']} report")
    return exporter.get_response(filename)
