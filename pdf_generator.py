"""
Roadmap PDF export.
Renders prioritized roadmap suggestions with ReportLab so teams can share them outside the app.
"""


from io import BytesIO
from datetime import datetime
from reportlab.lib.pagesizes import letter
from reportlab.lib.units import inch
from reportlab.lib import colors
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.enums import TA_LEFT, TA_JUSTIFY
from reportlab.platypus import (
    SimpleDocTemplate, Paragraph, Spacer, Table, TableStyle, PageBreak
)
from reportlab.graphics.shapes import Drawing
from reportlab.graphics.charts.barcharts import HorizontalBarChart
from reportlab.pdfgen import canvas
from xml.sax.saxutils import escape


# ===== COLOR SCHEME =====
COLORS = {
    'primary':    colors.HexColor('#4338ca'),   # Indigo 700 - headers
    'secondary':  colors.HexColor('#1e1b4b'),   # Indigo 950 - title band
    'accent':     colors.HexColor('#0d9488'),   # Teal 600 - rules
    'row_alt':    colors.HexColor('#eef2ff'),
    'text_dark':  colors.HexColor('#0f172a'),
    'text_light': colors.HexColor('#64748b'),
    'border':     colors.HexColor('#e2e8f0'),
    'white':      colors.HexColor('#ffffff'),
}

LEVEL_COLORS = {
    'critical': colors.HexColor('#dc2626'),
    'high':     colors.HexColor('#ea580c'),
    'medium':   colors.HexColor('#ca8a04'),
    'low':      colors.HexColor('#64748b'),
}

LEVEL_ORDER = ('critical', 'high', 'medium', 'low')


def get_custom_styles():
    styles = getSampleStyleSheet()

    styles.add(ParagraphStyle(
        name='RoadmapTitle',
        parent=styles['Heading1'],
        fontName='Helvetica-Bold',
        fontSize=24,
        textColor=COLORS['secondary'],
        alignment=TA_LEFT,
        spaceAfter=6,
        leading=30
    ))

    styles.add(ParagraphStyle(
        name='RoadmapSubtitle',
        parent=styles['Normal'],
        fontName='Helvetica',
        fontSize=11,
        textColor=COLORS['text_light'],
        alignment=TA_LEFT,
        spaceAfter=18,
        leading=14
    ))

    styles.add(ParagraphStyle(
        name='SectionHeading',
        parent=styles['Heading2'],
        fontName='Helvetica-Bold',
        fontSize=15,
        textColor=COLORS['primary'],
        spaceBefore=12,
        spaceAfter=10,
        leading=19
    ))

    styles.add(ParagraphStyle(
        name='RoadmapBody',
        parent=styles['Normal'],
        fontName='Helvetica',
        fontSize=10,
        textColor=COLORS['text_dark'],
        alignment=TA_JUSTIFY,
        leading=14,
        spaceAfter=10
    ))

    styles.add(ParagraphStyle(
        name='TableCell',
        parent=styles['Normal'],
        fontName='Helvetica',
        fontSize=8,
        textColor=COLORS['text_dark'],
        leading=10,
        alignment=TA_LEFT,
    ))

    return styles


class RoadmapCanvas(canvas.Canvas):
    """Draws the footer with page numbers once the total page count is known."""

    def __init__(self, *args, **kwargs):
        self.project_name = kwargs.pop('project_name', '')
        self.report_date = kwargs.pop('report_date', '')
        canvas.Canvas.__init__(self, *args, **kwargs)
        self._saved_page_states = []

    def showPage(self):
        self._saved_page_states.append(dict(self.__dict__))
        self._startPage()

    def save(self):
        num_pages = len(self._saved_page_states)
        for state in self._saved_page_states:
            self.__dict__.update(state)
            self.draw_footer(num_pages)
            canvas.Canvas.showPage(self)
        canvas.Canvas.save(self)

    def draw_footer(self, num_pages):
        page_width, _ = letter
        self.setStrokeColor(COLORS['accent'])
        self.setLineWidth(1)
        self.line(0.75*inch, 0.7*inch, page_width - 0.75*inch, 0.7*inch)

        self.setFont('Helvetica', 7.5)
        self.setFillColor(COLORS['text_light'])
        self.drawString(0.75*inch, 0.52*inch, f"{self.project_name} roadmap · {self.report_date}")

        page_text = f"Page {self._pageNumber} of {num_pages}"
        pw = self.stringWidth(page_text, 'Helvetica', 7.5)
        self.drawString(page_width - 0.75*inch - pw, 0.52*inch, page_text)


def _table_style(header_color):
    return TableStyle([
        ('BACKGROUND', (0, 0), (-1, 0), header_color),
        ('TEXTCOLOR', (0, 0), (-1, 0), colors.white),
        ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
        ('FONTSIZE', (0, 0), (-1, 0), 9),
        ('TOPPADDING', (0, 0), (-1, 0), 8),
        ('BOTTOMPADDING', (0, 0), (-1, 0), 8),
        ('FONTNAME', (0, 1), (-1, -1), 'Helvetica'),
        ('FONTSIZE', (0, 1), (-1, -1), 8),
        ('ROWBACKGROUNDS', (0, 1), (-1, -1), [colors.white, COLORS['row_alt']]),
        ('GRID', (0, 0), (-1, -1), 0.5, COLORS['border']),
        ('TOPPADDING', (0, 1), (-1, -1), 5),
        ('BOTTOMPADDING', (0, 1), (-1, -1), 5),
        ('VALIGN', (0, 0), (-1, -1), 'TOP'),
    ])


def _build_overview(story, styles, project_name, report_date, suggestions):
    story.append(Paragraph(f"{escape(project_name)} Product Roadmap", styles['RoadmapTitle']))
    story.append(Paragraph(
        f"Generated {report_date} from {len(suggestions)} feedback themes",
        styles['RoadmapSubtitle']
    ))

    counts = {level: 0 for level in LEVEL_ORDER}
    for suggestion in suggestions:
        level = suggestion.get('priority_level')
        if level in counts:
            counts[level] += 1

    summary_data = [['Priority', 'Themes']]
    for level in LEVEL_ORDER:
        summary_data.append([level.title(), str(counts[level])])

    summary_table = Table(summary_data, colWidths=[2.5*inch, 1.5*inch], hAlign='LEFT')
    style = _table_style(COLORS['primary'])
    for row, level in enumerate(LEVEL_ORDER, start=1):
        style.add('TEXTCOLOR', (0, row), (0, row), LEVEL_COLORS[level])
        style.add('FONTNAME', (0, row), (0, row), 'Helvetica-Bold')
    summary_table.setStyle(style)
    story.append(summary_table)
    story.append(Spacer(1, 0.3*inch))

    top = suggestions[:8]
    if top:
        story.append(Paragraph("Top Themes by Priority Score", styles['SectionHeading']))
        drawing = Drawing(440, 40 + 22 * len(top))
        chart = HorizontalBarChart()
        chart.x = 140
        chart.y = 20
        chart.height = 22 * len(top)
        chart.width = 280
        # bars are drawn bottom-up, so reverse to keep the highest first
        chart.data = [[round(s['priority_score'], 1) for s in reversed(top)]]
        chart.categoryAxis.categoryNames = [s['theme_name'][:28] for s in reversed(top)]
        chart.bars[0].fillColor = COLORS['primary']
        chart.valueAxis.valueMin = 0
        chart.valueAxis.valueMax = 100
        chart.categoryAxis.labels.fontSize = 8
        chart.valueAxis.labels.fontSize = 7
        drawing.add(chart)
        story.append(drawing)


def _build_suggestion_table(story, styles, level, suggestions):
    story.append(Paragraph(f"{level.title()} Priority", styles['SectionHeading']))

    data = [[
        Paragraph('<b>Theme</b>', styles['TableCell']),
        Paragraph('<b>Score</b>', styles['TableCell']),
        Paragraph('<b>Frequency</b>', styles['TableCell']),
        Paragraph('<b>Sentiment</b>', styles['TableCell']),
        Paragraph('<b>Impact</b>', styles['TableCell']),
        Paragraph('<b>Effort</b>', styles['TableCell']),
        Paragraph('<b>Competitive</b>', styles['TableCell']),
    ]]
    for s in suggestions:
        data.append([
            Paragraph(escape(s['theme_name']), styles['TableCell']),
            f"{s['priority_score']:.1f}",
            f"{s['frequency_score']:.2f}",
            f"{s['sentiment_score']:.2f}",
            f"{s['business_impact_score']:.2f}",
            (s.get('estimated_effort') or 'medium').replace('_', ' '),
            f"{s['competitive_score']:.2f}",
        ])

    table = Table(
        data,
        colWidths=[2.3*inch, 0.6*inch, 0.75*inch, 0.75*inch, 0.65*inch, 0.7*inch, 0.85*inch],
        repeatRows=1
    )
    table.setStyle(_table_style(LEVEL_COLORS[level]))
    story.append(table)
    story.append(Spacer(1, 0.25*inch))


def generate_roadmap_pdf(project_name, suggestions):
    """
    Build the roadmap PDF and return a BytesIO positioned at the start.

    Args:
        project_name: Display name printed in the title and footer
        suggestions: Rows from services.roadmap.list_suggestions, highest score first
    """
    buffer = BytesIO()

    doc = SimpleDocTemplate(
        buffer,
        pagesize=letter,
        topMargin=0.75 * inch,
        bottomMargin=0.9 * inch,
        leftMargin=0.75 * inch,
        rightMargin=0.75 * inch,
        title=f"{project_name} roadmap",
    )

    styles = get_custom_styles()
    story = []
    report_date = datetime.now().strftime("%B %d, %Y")

    _build_overview(story, styles, project_name, report_date, suggestions)

    if not suggestions:
        story.append(Paragraph(
            "No roadmap suggestions yet. Run theme detection and generate the roadmap first.",
            styles['RoadmapBody']
        ))
    else:
        story.append(PageBreak())
        for level in LEVEL_ORDER:
            grouped = [s for s in suggestions if s.get('priority_level') == level]
            if grouped:
                _build_suggestion_table(story, styles, level, grouped)

    doc.build(
        story,
        canvasmaker=lambda *args, **kwargs: RoadmapCanvas(
            *args,
            project_name=project_name,
            report_date=report_date,
            **kwargs
        )
    )

    buffer.seek(0)
    return buffer
