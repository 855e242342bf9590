"""
Document sources for ingestion.

Two backends produce the same SourceDocument shape:

  sample_documents()   the four bundled research excerpts (demo / bootstrap)
  load_document(path)  a real file: PDF pages via PyMuPDF, or a .txt/.md file

Each PDF page becomes its own SourceDocument with a 1-based page number, so
chunk citations point at real pages.
"""
from __future__ import annotations

from pathlib import Path

import fitz  # PyMuPDF
from loguru import logger

from askresearch.errors import IngestionError
from askresearch.schemas import ChunkMetadata, SourceDocument
from askresearch.utils.helpers import clean_text

TEXT_SUFFIXES = {".txt", ".md"}


# --- Sample records -----------------------------------------------------------

SAMPLE_RECORDS: list[dict] = [
    {
        "content": """The State of AI 2025: Key AI Trends
1. AI Agents are becoming more autonomous and capable
2. Generative AI adoption is accelerating across enterprises
3. Multi-modal AI systems are emerging as the new standard
4. AI governance and ethics are top priorities
5. Edge AI and on-device processing are gaining traction

Challenges in AI Implementation:
- Data quality and availability
- Integration with existing systems
- Skills gap and talent shortage
- Regulatory compliance
- Cost management""",
        "metadata": {"source": "the-state-of-ai-2025-agents-innovation_cmyk-v1.pdf", "page": 1},
    },
    {
        "content": """Executive Perspectives: CEO's Roadmap on Generative AI

CEO Priorities for AI in 2025:
1. Driving operational efficiency through automation
2. Enhancing customer experience with AI-powered solutions
3. Accelerating product innovation cycles
4. Building competitive advantage through data insights
5. Managing AI risks and ensuring responsible use

Top CEO Concerns:
- Return on investment (ROI) measurement
- Change management and workforce adaptation
- Data privacy and security
- Vendor lock-in and technology dependencies""",
        "metadata": {"source": "executive-perspectives-ceos-roadmap-on-generative-ai.pdf", "page": 3},
    },
    {
        "content": """Tech Trends 2025: Digital Transformation Imperatives

Key Technology Trends:
1. Cloud-native architectures becoming standard
2. Zero-trust security frameworks
3. Low-code/no-code platforms democratizing development
4. Quantum computing moving from research to early adoption
5. Sustainable technology practices gaining importance

Digital Transformation Focus Areas:
- Customer experience platforms
- Data modernization and analytics
- Process automation and optimization
- Legacy system migration
- Cybersecurity enhancement""",
        "metadata": {"source": "DI_Tech-trends-2025.pdf", "page": 5},
    },
    {
        "content": """AI Implementation Best Practices

Success Factors:
- Start with clear business objectives
- Build cross-functional teams
- Invest in data infrastructure
- Establish governance frameworks
- Measure and iterate continuously

Common Pitfalls to Avoid:
- Technology-first approach without business alignment
- Underestimating change management needs
- Insufficient data quality checks
- Lack of executive sponsorship
- Ignoring ethical considerations""",
        "metadata": {"source": "the-state-of-ai-2025-agents-innovation_cmyk-v1.pdf", "page": 15},
    },
]


def sample_documents() -> list[SourceDocument]:
    return [SourceDocument(**record) for record in SAMPLE_RECORDS]


# --- Files --------------------------------------------------------------------

def load_document(path: str | Path) -> list[SourceDocument]:
    """
    Load one file into SourceDocuments.

    Raises:
        IngestionError: the file is missing, unsupported, unreadable, or
            contains no extractable text.
    """
    path = Path(path)
    if not path.is_file():
        raise IngestionError(f"File not found: {path}", path=str(path))

    suffix = path.suffix.lower()
    if suffix == ".pdf":
        docs = _load_pdf(path)
    elif suffix in TEXT_SUFFIXES:
        docs = _load_text(path)
    else:
        raise IngestionError(f"Unsupported file type '{suffix}': {path}", path=str(path))

    if not docs:
        raise IngestionError(f"No extractable text in {path}", path=str(path))
    return docs


def _load_pdf(path: Path) -> list[SourceDocument]:
    try:
        pdf = fitz.open(str(path))
    except Exception as exc:
        raise IngestionError(f"Cannot open PDF {path}: {exc}", path=str(path)) from exc

    docs: list[SourceDocument] = []
    with pdf:
        for page_number, page in enumerate(pdf, start=1):
            text = clean_text(page.get_text("text"))
            if not text:
                continue
            docs.append(
                SourceDocument(
                    content=text,
                    metadata=ChunkMetadata(source=path.name, page=page_number),
                )
            )
        logger.debug(f"[Sources] {path.name}: {len(docs)}/{pdf.page_count} pages with text")
    return docs


def _load_text(path: Path) -> list[SourceDocument]:
    try:
        text = clean_text(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError) as exc:
        raise IngestionError(f"Cannot read {path}: {exc}", path=str(path)) from exc
    if not text:
        return []
    return [SourceDocument(content=text, metadata=ChunkMetadata(source=path.name))]
