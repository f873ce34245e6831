# passage_rag/infrastructure/document_loader.py

import logging
import re
import uuid
from pathlib import Path
from typing import List, Optional

import pdfplumber

from passage_rag.domain.models import Document

logger = logging.getLogger(__name__)


SUPPORTED_SUFFIXES = {".txt", ".md", ".pdf"}

# Document ids are derived from the path relative to the data directory, so
# re-ingesting a file replaces its previous passages and same-named files in
# different folders stay apart.
DOCUMENT_ID_NAMESPACE = uuid.UUID("6f1c3b52-7d0e-4c39-9a57-1d2f4b8e0a61")


def document_id_for(relative_path: str) -> str:
    return str(uuid.uuid5(DOCUMENT_ID_NAMESPACE, relative_path))


class DocumentLoader:
    """
    Loads plain text out of a directory of documents.

    Each file becomes one Document whose content is cleaned plain text;
    paragraph breaks (blank lines) are preserved, since the segmenter
    splits on them first.
    """

    def load_directory(self, directory_path: str) -> List[Document]:
        data_dir = Path(directory_path)
        if not data_dir.is_dir():
            raise FileNotFoundError(f"Data directory not found: {directory_path}")

        documents: List[Document] = []

        for file_path in sorted(data_dir.rglob("*")):
            if not file_path.is_file():
                continue
            document = self.load_file(file_path, root=data_dir)
            if document is not None:
                documents.append(document)
                logger.info(
                    "loader.file path=%s chars=%d",
                    _relative_name(file_path, data_dir), len(document.content),
                )

        logger.info("loader.done documents=%d", len(documents))
        return documents

    def load_file(self, file_path: Path, root: Optional[Path] = None) -> Optional[Document]:
        """
        Load a single file (PDF, TXT, MD). Returns None when the file type is
        unsupported or no text could be extracted. The id comes from the path
        relative to `root`, or from the bare file name without one.
        """
        suffix = file_path.suffix.lower()
        if suffix not in SUPPORTED_SUFFIXES:
            return None

        if suffix == ".pdf":
            text = self._extract_pdf_text(file_path)
        else:
            text = file_path.read_text(encoding="utf-8", errors="ignore")

        cleaned = self._clean_text(text)
        if not cleaned:
            logger.warning("loader.empty name=%s", file_path.name)
            return None

        return Document(
            document_id=document_id_for(_relative_name(file_path, root)),
            title=file_path.stem,
            content=cleaned,
        )

    # ─── Private ──────────────────────────────────────────────────────────────

    @staticmethod
    def _extract_pdf_text(file_path: Path) -> str:
        """Page texts joined by blank lines, so a page break is also a paragraph break."""
        pages = []
        with pdfplumber.open(str(file_path)) as pdf:
            for page in pdf.pages:
                text = page.extract_text(x_tolerance=2, y_tolerance=2)
                if text:
                    pages.append(text)
        return "\n\n".join(pages)

    @staticmethod
    def _clean_text(text: str) -> str:
        """Normalize whitespace and control characters, keep paragraph breaks."""
        text = text.replace("\r\n", "\n").replace("\r", "\n")
        text = re.sub(r"[^\S\n]{2,}", " ", text)
        text = re.sub(r"\n{3,}", "\n\n", text)
        text = re.sub(r"[\x00-\x08\x0b-\x1f\x7f]", " ", text)
        return text.strip()


def _relative_name(file_path: Path, root: Optional[Path]) -> str:
    if root is None:
        return file_path.name
    return file_path.relative_to(root).as_posix()
