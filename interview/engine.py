import logging
from typing import Dict, Any, Optional, List, Callable, Union

from app.config import Settings, get_settings
from app.llm.mistral_client import MistralClient
from app.models import SeedInput, Question, InterviewRound, AnswerRecord, AnswerValue
from doc.generator import DocGenerator, RenderedDocument, write_document
from interview.activity_classifier import ActivityClassifier
from interview.context_scanner import scan_codebase
from interview.decision_state import DecisionState, Fact, FactSource
from interview.errors import (
    AbandonedSessionError,
    InvalidAnswerError,
    RoundLimitExceededError,
)
from interview.question_generator import QuestionGenerator
from interview.repo import TemplateRepo
from interview.seed import load_seed_text, seed_facts
from interview.template_schema import DocumentTemplate

logger = logging.getLogger(__name__)

Answerer = Callable[[InterviewRound, DecisionState], Optional[Union[AnswerRecord, Dict[str, AnswerValue]]]]


class InterviewEngine:
    """
    Führt ein Interview vom Seed bis zum fertigen Dokument.

    Ablauf: begin_session -> (next_round -> Antworten -> apply_answers)* -> render.
    Jeder Schritt liefert einen neuen DecisionState; bestehende Fakten bleiben erhalten.
    """

    def __init__(
        self,
        template: DocumentTemplate,
        question_generator: Optional[QuestionGenerator] = None,
        classifier: Optional[ActivityClassifier] = None,
        doc_generator: Optional[DocGenerator] = None,
        max_rounds: int = 8
    ):
        self.template = template
        self.question_generator = question_generator or QuestionGenerator(template)
        self.classifier = classifier or build_classifier(template)
        self.doc_generator = doc_generator or DocGenerator()
        self.max_rounds = max_rounds

    def begin_session(self, seed: SeedInput, target_root: Optional[str] = None) -> DecisionState:
        """
        Liest den Seed und sammelt alle ableitbaren Fakten.

        Raises:
            UnresolvableSeedError: wenn die referenzierte Datei nicht lesbar ist
        """
        text = load_seed_text(seed)
        state = DecisionState(seed=seed, seed_text=text)

        seeded = seed_facts(seed, text, self.template)
        state = state.with_facts(seeded["facts"]).with_extra_fields(seeded["extra_fields"])

        activity_field = self.template.activity_field
        if not state.is_resolved(activity_field):
            result = self.classifier.classify(text)
            state = state.model_copy(update={"classification": result})
            activity = self.classifier.decide(result)
            top = result["candidates"][0] if result.get("candidates") else None
            if activity:
                logger.info(f"✅ Aktivität erkannt: {activity} (Konfidenz: {top['score']:.0%}, Quelle: {result['source']})")
                state = state.with_facts([Fact(field_id=activity_field, value=activity, source=FactSource.INFERRED)])
            elif top and top["score"] > 0:
                logger.info(f"🤔 Aktivität unsicher: {top['activity']} ({top['score']:.0%}) wird empfohlen")
                state = state.with_recommendations({activity_field: [top["activity"]]})

        scan = scan_codebase(target_root)
        if scan["evidence"]:
            state = state.with_facts(
                Fact(field_id=fid, value=value, source=FactSource.CONTEXT)
                for fid, value in scan["facts"].items()
            ).with_recommendations(scan["recommendations"])
            context = {k: v for k, v in scan.items() if k not in ("facts", "recommendations")}
            state = state.model_copy(update={"context": context})

        if not seeded["from_record"]:
            topics = self.question_generator.propose_topics(text, state)
            state = state.with_extra_fields(topics)
            extracted = self.question_generator.extract_fields(
                text, self.template.open_fields(state), source=FactSource.SEED
            )
            state = state.with_facts(extracted)

        logger.info(
            f"🚀 Session gestartet ({seed.kind.value}): {len(state.facts)} Fakten, "
            f"{len(self.template.open_fields(state))} offene Felder"
        )
        return state

    def next_round(self, state: DecisionState) -> Optional[InterviewRound]:
        """
        Erzeugt die nächste Fragerunde oder None, wenn nichts mehr offen ist.

        Raises:
            RoundLimitExceededError: wenn nach max_rounds Runden noch Felder offen sind
        """
        open_fields = self.template.open_fields(state)
        if not open_fields:
            logger.info("✅ Keine offenen Fragen mehr")
            return None

        if state.round_number >= self.max_rounds:
            raise RoundLimitExceededError(self.max_rounds, [fid for fid, _ in open_fields])

        questions = self.question_generator.build_round(open_fields, state)
        logger.info(f"🤖 Runde {state.round_number + 1}: {len(questions)} Fragen")
        return InterviewRound(number=state.round_number + 1, questions=questions)

    def apply_answers(
        self,
        state: DecisionState,
        answers: Union[AnswerRecord, Dict[str, AnswerValue]],
        interview_round: Optional[InterviewRound] = None
    ) -> DecisionState:
        """
        Übernimmt die Antworten einer Runde in einen neuen Stand.

        Raises:
            InvalidAnswerError: bei unbekannter Frage oder unpassender Antwort
        """
        if isinstance(answers, AnswerRecord):
            answers = answers.answers

        if interview_round is not None:
            questions = interview_round.by_id()
        else:
            questions = {
                q.id: q for q in (
                    self.question_generator.build_question(fid, fdef, state)
                    for fid, fdef in self.template.open_fields(state)
                )
            }

        all_fields = self.template.get_all_fields(state)
        facts: List[Fact] = []
        for question_id, value in answers.items():
            question = questions.get(question_id)
            if question is None:
                field_id = question_id[2:] if question_id.startswith("q_") else question_id
                if field_id in all_fields and state.is_resolved(field_id):
                    logger.warning(f"⚠️  '{question_id}' ist bereits beantwortet, Antwort ignoriert")
                    continue
                raise InvalidAnswerError(question_id, "Frage ist in dieser Runde nicht offen")
            facts.append(Fact(
                field_id=question.field_id,
                value=normalize_answer(question, value),
                source=FactSource.ANSWER,
                question_id=question_id
            ))

        new_state = state.with_facts(facts)

        for fact in facts:
            if self.question_generator.should_extract_from_answer(fact.value):
                extracted = self.question_generator.extract_fields(
                    fact.value, self.template.open_fields(new_state),
                    source=FactSource.ANSWER, question_id=fact.question_id
                )
                new_state = new_state.with_facts(extracted)

        number = interview_round.number if interview_round is not None else state.round_number + 1
        return new_state.with_round(number, answers.keys())

    def render(self, state: DecisionState) -> RenderedDocument:
        """
        Raises:
            IncompleteStateError: wenn noch offene Pflichtfelder existieren
        """
        return self.doc_generator.render(state, self.template)

    def get_progress(self, state: DecisionState) -> Dict[str, Any]:
        return self.template.calculate_progress(state)

    def run_session(
        self,
        seed: SeedInput,
        answerer: Answerer,
        target_root: Optional[str] = None,
        write: bool = True
    ) -> RenderedDocument:
        """
        Kompletter Interview-Ablauf. Der answerer blockiert, bis eine Runde
        beantwortet ist; gibt er None zurück, gilt die Session als abgebrochen.

        Raises:
            UnresolvableSeedError, AbandonedSessionError, RoundLimitExceededError
        """
        state = self.begin_session(seed, target_root=target_root)

        while True:
            interview_round = self.next_round(state)
            if interview_round is None:
                break
            answers = answerer(interview_round, state)
            if answers is None:
                logger.info(f"👋 Session in Runde {interview_round.number} abgebrochen, kein Dokument")
                raise AbandonedSessionError(f"Interview in Runde {interview_round.number} abgebrochen")
            state = self.apply_answers(state, answers, interview_round)

        rendered = self.render(state)
        if write:
            write_document(rendered)
        return rendered


def normalize_answer(question: Question, value: Any) -> AnswerValue:
    """
    Prüft eine Antwort gegen die Frage und bringt sie in die kanonische Form
    (Optionslabels in Originalschreibweise, Mehrfachauswahl als Liste).
    """
    canonical = {label.lower(): label for label in question.option_labels()}

    def resolve(item: Any) -> str:
        if not isinstance(item, str) or not item.strip():
            raise InvalidAnswerError(question.id, "leere Antwort")
        item = item.strip()
        if item.lower() in canonical:
            return canonical[item.lower()]
        if canonical and not question.allow_custom:
            raise InvalidAnswerError(
                question.id, f"'{item}' ist keine Option ({', '.join(question.option_labels())})"
            )
        return item

    if question.allow_multiple:
        items = value if isinstance(value, list) else str(value).split(",")
        items = [i for i in items if not isinstance(i, str) or i.strip()]
        if not items:
            raise InvalidAnswerError(question.id, "leere Auswahl")
        result: List[str] = []
        for item in items:
            label = resolve(item)
            if label not in result:
                result.append(label)
        return result

    if isinstance(value, list):
        if len(value) != 1:
            raise InvalidAnswerError(question.id, "nur eine Option erlaubt")
        value = value[0]
    return resolve(value)


def build_classifier(
    template: DocumentTemplate,
    llm: Optional[MistralClient] = None,
    threshold: float = 0.7
) -> ActivityClassifier:
    field_def = template.get_all_fields().get(template.activity_field, {})
    activities = [o["label"] for o in field_def.get("options", [])]
    return ActivityClassifier(activities, field_def.get("keywords", {}), llm=llm, threshold=threshold)


def create_engine(settings: Optional[Settings] = None, llm: Optional[MistralClient] = None) -> InterviewEngine:
    """Baut die Engine aus der Konfiguration (Vorlage, optionales LLM, Rundenlimit)."""
    settings = settings or get_settings()
    if llm is None:
        llm = MistralClient.from_settings(settings)
    template = DocumentTemplate(TemplateRepo(settings.template_path))
    return InterviewEngine(
        template=template,
        question_generator=QuestionGenerator(template, llm=llm),
        classifier=build_classifier(template, llm=llm, threshold=settings.activity_threshold),
        max_rounds=settings.max_rounds
    )
