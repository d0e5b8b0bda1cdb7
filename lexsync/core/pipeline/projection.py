from typing import List, Optional
from lexsync.core.chunk.chunker import Chunker
from lexsync.models.document import CaseCitation, DocumentAnalysis, DocumentRecord, DocumentStatus, IndexDocument

def record_analysis(record: DocumentRecord) -> Optional[DocumentAnalysis]:
    raw = record.metadata.get("analysis")
    if not raw:
        return None
    return DocumentAnalysis.model_validate(raw)

def _own_citations(record: DocumentRecord) -> List[CaseCitation]:
    # Catalog documents know their own reporter citations and court
    court = record.metadata.get("court") or None
    date_filed = record.metadata.get("date_filed") or None
    return [CaseCitation(citation=c, court=court, date=date_filed) for c in record.metadata.get("citation") or []]

def project_record(record: DocumentRecord, chunker: Chunker, status: Optional[DocumentStatus] = None) -> IndexDocument:
    """
    Pure projection of a metadata row into its search document.
    Everything comes from the row, so the index can be rebuilt from the metadata store at any time.
    """
    analysis = record_analysis(record)
    citations = _own_citations(record)
    if analysis:
        known = {c.citation for c in citations}
        citations.extend(c for c in analysis.case_citations if c.citation not in known)

    content = record.extracted_text or ""
    return IndexDocument(
        id=record.id,
        user_id=record.user_id,
        title=record.title,
        file_name=record.file_name,
        file_type=record.file_type,
        status=DocumentStatus(status or record.status).value,
        content=content,
        summary=record.summary or "",
        created_at=record.created_at,
        updated_at=record.updated_at,
        metadata=record.metadata,
        chunks=chunker.chunk_text(content),
        legal_entities=analysis.legal_entities if analysis else [],
        case_citations=citations,
        legal_concepts=analysis.legal_concepts if analysis else []
    )
