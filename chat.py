"""
Spezifikations-Assistent - erzeugt aus einer Feature-Beschreibung oder einem
bestehenden Dokument per Interview eine vollständige Spezifikation.
Chat-Interface für interaktive Befragung
"""
import argparse
import logging
import sys
from typing import Dict, Optional

from dotenv import load_dotenv

from app.config import get_settings
from app.llm.mistral_client import MistralClient
from app.models import SeedInput, Question, InterviewRound, AnswerValue
from doc.generator import write_document
from interview.decision_state import DecisionState
from interview.engine import InterviewEngine, create_engine, normalize_answer
from interview.errors import (
    AbandonedSessionError,
    InvalidAnswerError,
    RoundLimitExceededError,
    UnresolvableSeedError,
    TemplateError,
)

load_dotenv()

logger = logging.getLogger(__name__)


class AbortInterview(Exception):
    pass


def print_header():
    """Zeigt den Willkommens-Header"""
    print("\n" + "=" * 70)
    print("🤖 Spezifikations-Assistent")
    print("   Vom Feature-Wunsch zur fertigen Spezifikation")
    print("=" * 70)
    print("\nTipps:")
    print("  • Enter übernimmt die Empfehlung (⭐)")
    print("  • Mehrfachauswahl mit Komma trennen, z.B. 1,3")
    print("  • Geben Sie 'status' ein, um den aktuellen Stand zu sehen")
    print("  • Geben Sie 'exit' ein, um abzubrechen (es wird nichts geschrieben)")
    print("=" * 70 + "\n")


def print_question(question: Question, number: int):
    """Formatiert und zeigt eine Frage an"""
    print(f"\n📋 Frage {number}: {question.text}")
    if question.hint:
        print(f"   💡 {question.hint}")
    for i, option in enumerate(question.options, 1):
        marker = " ⭐" if option.is_recommended else ""
        description = f" - {option.description}" if option.description else ""
        print(f"  {i}. {option.label}{marker}{description}")
    if question.allow_custom:
        print("  (eigene Antwort möglich)")


def parse_input(question: Question, raw: str) -> AnswerValue:
    """Übersetzt Eingaben (Nummern, Labels, Freitext) in eine Antwort."""
    labels = question.option_labels()
    if not raw:
        if question.recommended():
            return question.recommended() if question.allow_multiple else question.recommended()[0]
        raise InvalidAnswerError(question.id, "keine Eingabe")

    parts = [p.strip() for p in raw.split(",")] if question.allow_multiple else [raw]
    resolved = []
    for part in parts:
        # Nummern nur bei echten Auswahlfragen, Freitext bleibt wörtlich
        if part.isdigit() and labels and not question.free_text and 1 <= int(part) <= len(labels):
            resolved.append(labels[int(part) - 1])
        else:
            resolved.append(part)
    value = resolved if question.allow_multiple else resolved[0]
    return normalize_answer(question, value)


def show_status(engine: InterviewEngine, state: DecisionState):
    """Zeigt den aktuellen Status des Interviews"""
    print(engine.template.get_progress_display(state))
    classification = state.classification
    if classification.get("candidates"):
        print("Aktivitäts-Kandidaten:")
        for candidate in classification["candidates"][:3]:
            print(f"  • {candidate['activity']}: {candidate['score']:.0%}")
        print(f"  ({classification.get('source')}: {classification.get('explain', '')})")


def make_answerer(engine: InterviewEngine):
    """Erzeugt den interaktiven answerer für InterviewEngine.run_session."""

    def ask_round(interview_round: InterviewRound, state: DecisionState) -> Optional[Dict[str, AnswerValue]]:
        print("\n" + "=" * 70)
        print(f"🗂️  Runde {interview_round.number} ({len(interview_round)} Fragen)")
        print("=" * 70)

        answers: Dict[str, AnswerValue] = {}
        number = 0
        for section, questions in interview_round.batches().items():
            print(f"\n## {section}")
            for question in questions:
                number += 1
                print_question(question, number)
                try:
                    answers[question.id] = read_answer(engine, question, state)
                except AbortInterview:
                    return None
        return answers

    return ask_round


def read_answer(engine: InterviewEngine, question: Question, state: DecisionState) -> AnswerValue:
    while True:
        raw = input("\n💬 Ihre Antwort: ").strip()
        if raw.lower() in ("exit", "quit", "beenden"):
            raise AbortInterview()
        if raw.lower() == "status":
            show_status(engine, state)
            continue
        try:
            value = parse_input(question, raw)
        except InvalidAnswerError as e:
            print(f"❌ {e.reason}")
            continue
        print("✓ Antwort gespeichert")
        return value


def positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"keine Zahl: {value}")
    if number < 1:
        raise argparse.ArgumentTypeError(f"muss mindestens 1 sein: {value}")
    return number


def build_seed(args: argparse.Namespace) -> SeedInput:
    if args.file:
        return SeedInput.reference(args.file)
    if args.describe:
        return SeedInput.description(args.describe)
    text = input("📝 Beschreiben Sie das Feature: ").strip()
    return SeedInput.description(text)


def main(argv=None) -> int:
    """Hauptfunktion für das Chat-Interface"""
    parser = argparse.ArgumentParser(description="Interview-gestützte Feature-Spezifikation")
    seed_group = parser.add_mutually_exclusive_group()
    seed_group.add_argument("--file", help="Bestehendes Dokument als Ausgangspunkt (wird überschrieben)")
    seed_group.add_argument("--describe", help="Kurzbeschreibung des Features")
    parser.add_argument("--root", help="Codebase-Verzeichnis für Kontext")
    parser.add_argument("--max-rounds", type=positive_int, help="Maximale Anzahl Fragerunden (mindestens 1)")
    args = parser.parse_args(argv)

    settings = get_settings()
    if args.max_rounds is not None:
        settings = settings.model_copy(update={"max_rounds": args.max_rounds})
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    llm = MistralClient.from_settings(settings)
    if llm is not None and not llm.is_available():
        print(f"⚠️  LLM unter {settings.llm_url} nicht erreichbar, arbeite ohne KI-Unterstützung")
        llm = None

    try:
        engine = create_engine(settings, llm=llm)
    except TemplateError as e:
        print(f"❌ {e}")
        return 1

    print_header()
    seed = build_seed(args)

    try:
        rendered = engine.run_session(seed, make_answerer(engine), target_root=args.root, write=False)
    except UnresolvableSeedError as e:
        print(f"❌ {e}")
        return 1
    except RoundLimitExceededError as e:
        print(f"\n⚠️  {e}")
        print("Es wurde kein Dokument geschrieben.")
        return 2
    except AbandonedSessionError:
        print("\n👋 Interview abgebrochen. Es wurde kein Dokument geschrieben.")
        return 0

    print("\n" + "=" * 70)
    print("✅ Interview abgeschlossen!")
    print("=" * 70)
    print(rendered.text)
    path = write_document(rendered)
    print(f"✅ Spezifikation gespeichert in: {path}")
    return 0


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\n\n👋 Interview durch Benutzer unterbrochen. Es wurde kein Dokument geschrieben.")
        sys.exit(0)
