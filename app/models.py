from enum import Enum
from typing import Optional, Dict, List, Union

from pydantic import BaseModel, ConfigDict, Field

AnswerValue = Union[str, List[str]]


class SeedKind(str, Enum):
    REFERENCE = "reference"
    DESCRIPTION = "description"


class SeedInput(BaseModel):
    """Startpunkt einer Session: Dateipfad oder Freitext. Nach Erfassung unveränderlich."""
    model_config = ConfigDict(frozen=True)

    kind: SeedKind
    payload: str

    @classmethod
    def reference(cls, path: str) -> "SeedInput":
        return cls(kind=SeedKind.REFERENCE, payload=path)

    @classmethod
    def description(cls, text: str) -> "SeedInput":
        return cls(kind=SeedKind.DESCRIPTION, payload=text)


class QuestionOption(BaseModel):
    model_config = ConfigDict(frozen=True)

    label: str
    description: str = ""
    is_recommended: bool = False


class Question(BaseModel):
    id: str
    field_id: str
    section: str = Field(default="", description="Titel des Dokumentabschnitts (Themengruppe)")
    text: str
    options: List[QuestionOption] = Field(default_factory=list)
    allow_multiple: bool = False
    allow_custom: bool = Field(default=False, description="Freitext zusätzlich zu den Optionen erlaubt")
    free_text: bool = Field(default=False, description="Optionen sind nur Vorschläge für eine Freitextantwort")
    hint: str = ""

    def recommended(self) -> List[str]:
        return [o.label for o in self.options if o.is_recommended]

    def option_labels(self) -> List[str]:
        return [o.label for o in self.options]


class InterviewRound(BaseModel):
    number: int
    questions: List[Question]

    def batches(self) -> Dict[str, List[Question]]:
        """Gruppiert die Fragen einer Runde nach Abschnitt (Reihenfolge bleibt erhalten)."""
        grouped: Dict[str, List[Question]] = {}
        for q in self.questions:
            grouped.setdefault(q.section, []).append(q)
        return grouped

    def by_id(self) -> Dict[str, Question]:
        return {q.id: q for q in self.questions}

    def __len__(self) -> int:
        return len(self.questions)


class AnswerRecord(BaseModel):
    answers: Dict[str, AnswerValue] = Field(default_factory=dict)


# --- API-Requests ---

class StartRequest(BaseModel):
    kind: SeedKind = SeedKind.DESCRIPTION
    payload: str = Field(description="Dateipfad oder Freitext-Beschreibung")
    target_root: Optional[str] = Field(default=None, description="Optionales Codebase-Verzeichnis für Kontext")


class AnswerRequest(BaseModel):
    session_id: str
    answers: Dict[str, AnswerValue]


class DocRequest(BaseModel):
    session_id: str
    write: bool = False
