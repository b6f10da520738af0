"""
DecisionState - kumulativer, nur wachsender Entscheidungsstand einer Session.

Jede Änderung erzeugt einen neuen Stand; bestehende Fakten werden nie
überschrieben oder entfernt.
"""
import logging
from enum import Enum
from typing import Dict, Any, Optional, List, Iterable

from pydantic import BaseModel, ConfigDict, Field

from app.models import SeedInput, AnswerValue

logger = logging.getLogger(__name__)


class FactSource(str, Enum):
    SEED = "seed"
    CONTEXT = "context"
    INFERRED = "inferred"
    ANSWER = "answer"


class Fact(BaseModel):
    model_config = ConfigDict(frozen=True)

    field_id: str
    value: AnswerValue
    source: FactSource = FactSource.ANSWER
    question_id: Optional[str] = None


def is_filled(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, tuple)):
        return any(is_filled(v) for v in value)
    return True


class DecisionState(BaseModel):
    model_config = ConfigDict(frozen=True)

    seed: SeedInput
    seed_text: str = ""
    facts: Dict[str, Fact] = Field(default_factory=dict)
    # Zusätzliche Entscheidungsthemen, die für diesen Seed vorgeschlagen wurden
    extra_fields: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    recommendations: Dict[str, List[str]] = Field(default_factory=dict)
    context: Dict[str, Any] = Field(default_factory=dict)
    classification: Dict[str, Any] = Field(default_factory=dict)
    round_number: int = 0
    asked: List[str] = Field(default_factory=list)

    def is_resolved(self, field_id: str) -> bool:
        fact = self.facts.get(field_id)
        return fact is not None and is_filled(fact.value)

    def value(self, field_id: str, default: Any = None) -> Any:
        fact = self.facts.get(field_id)
        return fact.value if fact is not None else default

    def values(self) -> Dict[str, AnswerValue]:
        return {fid: fact.value for fid, fact in self.facts.items()}

    def with_facts(self, new_facts: Iterable[Fact]) -> "DecisionState":
        """
        Gibt einen neuen Stand mit den zusätzlichen Fakten zurück.
        Bereits bekannte Felder behalten ihren Wert.
        """
        merged = dict(self.facts)
        for fact in new_facts:
            if not is_filled(fact.value):
                continue
            existing = merged.get(fact.field_id)
            if existing is not None and is_filled(existing.value):
                if existing.value != fact.value:
                    logger.warning(
                        f"⚠️  Feld '{fact.field_id}' bereits festgelegt ({existing.value!r}), "
                        f"ignoriere {fact.value!r}"
                    )
                continue
            merged[fact.field_id] = fact
        return self.model_copy(update={"facts": merged})

    def with_extra_fields(self, fields: Dict[str, Dict[str, Any]]) -> "DecisionState":
        merged = dict(self.extra_fields)
        for field_id, field_def in fields.items():
            merged.setdefault(field_id, field_def)
        return self.model_copy(update={"extra_fields": merged})

    def with_recommendations(self, recommendations: Dict[str, List[str]]) -> "DecisionState":
        merged = dict(self.recommendations)
        merged.update({k: list(v) for k, v in recommendations.items() if v})
        return self.model_copy(update={"recommendations": merged})

    def with_round(self, number: int, question_ids: Iterable[str]) -> "DecisionState":
        return self.model_copy(update={
            "round_number": number,
            "asked": self.asked + [qid for qid in question_ids if qid not in self.asked],
        })

    def covers(self, other: "DecisionState") -> bool:
        """True, wenn dieser Stand alle Fakten von `other` unverändert enthält."""
        return all(
            fid in self.facts and self.facts[fid].value == fact.value
            for fid, fact in other.facts.items()
        )
