# passage_rag/domain/models.py

from dataclasses import dataclass, field
from typing import List, Literal, Optional


@dataclass
class Document:
    """
    A source document as handed over by the document store: already cleaned
    to plain text, identified by a stable id.
    """
    document_id: str
    title: str
    content: str


@dataclass(frozen=True)
class Passage:
    """
    A segmented unit of document text. `index` is 0-based and contiguous
    within its document; it defines reconstruction order.
    """
    passage_id: str
    document_id: str
    index: int
    text: str


@dataclass
class IndexedPoint:
    """The unit stored in and retrieved from the vector collection."""
    point_id: str
    vector: List[float] = field(repr=False)
    document_id: str = ""
    title: str = ""
    passage_index: int = 0
    passage_text: str = ""


@dataclass
class SearchHit:
    """
    A single passage-level match. `score` is cosine similarity in [-1, 1].
    """
    document_id: str
    title: str
    passage_text: str
    passage_index: int
    score: float
    passage_id: Optional[str] = None

    def __repr__(self) -> str:
        preview = self.passage_text[:80].replace("\n", " ")
        return (
            f"SearchHit(score={self.score:.4f}, "
            f"document='{self.document_id}', "
            f"preview='{preview}...')"
        )


@dataclass
class DocumentSearchResult:
    """
    Passage hits aggregated per document. `best_score` is the maximum score
    among the document's hits; `relevant_passages` holds up to three passage
    texts ordered by descending score.
    """
    document_id: str
    title: str
    content: str
    best_score: float
    relevant_passages: List[str] = field(default_factory=list)


AnswerEventType = Literal["fragment", "no_results", "error", "done"]


@dataclass(frozen=True)
class AnswerEvent:
    type: AnswerEventType
    text: str = ""
