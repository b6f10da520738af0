"""
Interview-Modul für den Spezifikations-Assistenten.
Enthält Engine, Entscheidungsstand, Fragengenerierung und Vorlagen-Verwaltung.
"""

from interview.engine import InterviewEngine, create_engine, normalize_answer
from interview.decision_state import DecisionState, Fact, FactSource
from interview.repo import TemplateRepo
from interview.activity_classifier import ActivityClassifier
from interview.question_generator import QuestionGenerator
from interview.template_schema import DocumentTemplate

__all__ = [
    "InterviewEngine",
    "create_engine",
    "normalize_answer",
    "DecisionState",
    "Fact",
    "FactSource",
    "TemplateRepo",
    "ActivityClassifier",
    "QuestionGenerator",
    "DocumentTemplate"
]
