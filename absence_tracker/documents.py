import logging
from uuid import uuid4

from fpdf import FPDF

from absence_tracker.business_days import Clock, utc_now
from absence_tracker.database import Database
from absence_tracker.models import ArchivedDocument, CaseView

logger = logging.getLogger(__name__)

SUBSTITUTION_APPROVAL = "Substitution Approval"
VACANCY_NOTICE = "Vacancy Notice"


def render_pdf(title: str, lines: list[str]) -> bytes:
    pdf = FPDF()
    pdf.add_page()
    pdf.set_font("Helvetica", size=18)
    pdf.cell(0, 12, title, new_x="LMARGIN", new_y="NEXT")
    pdf.ln(6)
    pdf.set_font("Helvetica", size=12)
    for line in lines:
        pdf.cell(0, 8, line, new_x="LMARGIN", new_y="NEXT")
    return bytes(pdf.output())


def finalization_lines(case: CaseView) -> list[str]:
    lines = [
        f"Case ID: {case.id}",
        f"Team: {case.team_name or case.team_id}",
        f"Worker: {case.worker_name or case.worker_id}",
        f"Reason: {case.reason.value}",
        f"Reported: {case.reported_at.date().isoformat()}",
    ]
    if case.sla_deadline_at:
        lines.append(f"SLA deadline: {case.sla_deadline_at.isoformat()}")
    if case.replacement_worker_name:
        lines.append(f"Replacement: {case.replacement_worker_name}")
    if case.replacement_start_date:
        lines.append(f"Replacement starts: {case.replacement_start_date.isoformat()}")
    lines.append(f"Final status: {case.final_status.value}")
    return lines


class DocumentArchive:
    """Renders case PDFs and keeps them in the document store."""

    def __init__(self, db: Database, clock: Clock = utc_now) -> None:
        self._db = db
        self._clock = clock

    def archive(self, case_id: str, doc_type: str, lines: list[str]) -> ArchivedDocument:
        content = render_pdf(doc_type, lines)
        slug = doc_type.lower().replace(" ", "_")
        document = ArchivedDocument(
            id=str(uuid4()),
            case_id=case_id,
            doc_type=doc_type,
            storage_path=f"{case_id}/{slug}.pdf",
            content=content,
            created_at=self._clock(),
        )
        self._db.documents.put(document.id, document)
        logger.info("Archived %s for case %s", doc_type, case_id)
        return document

    def archive_finalization(self, case: CaseView) -> ArchivedDocument | None:
        """Archive the swap or vacancy PDF. Failures are logged, never raised."""
        doc_type = (
            SUBSTITUTION_APPROVAL if case.final_status == "swapped" else VACANCY_NOTICE
        )
        try:
            return self.archive(case.id, doc_type, finalization_lines(case))
        except Exception:
            logger.exception("Failed to archive %s for case %s", doc_type, case.id)
            return None
