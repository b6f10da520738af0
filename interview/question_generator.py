"""
Fragengenerierung für die Interview-Runden.

Fragen entstehen deterministisch aus den offenen Feldern der Dokumentvorlage.
Ist ein LLM konfiguriert, wird es zusätzlich genutzt für
- natürlichere Formulierung der Fragen,
- Vorschläge zusätzlicher Entscheidungsthemen passend zum Seed,
- Extraktion von Feldwerten aus Freitext (Seed oder lange Antworten).
Jeder LLM-Fehler führt zurück auf das deterministische Verhalten.
"""
import re
import json
import logging
from typing import Dict, List, Any, Optional, Tuple

from app.llm.mistral_client import MistralClient
from app.models import Question, QuestionOption
from interview.decision_state import DecisionState, Fact, FactSource
from interview.template_schema import DocumentTemplate, slugify

logger = logging.getLogger(__name__)

MIN_EXTRACTION_LENGTH = 100


class QuestionGenerator:

    def __init__(
        self,
        template: DocumentTemplate,
        llm: Optional[MistralClient] = None,
        max_topics: int = 3,
        rephrase: bool = True
    ):
        self.template = template
        self.llm = llm
        self.max_topics = max_topics
        self.rephrase = rephrase

    def build_question(self, field_id: str, field_def: Dict[str, Any], state: DecisionState) -> Question:
        """Erzeugt die Frage zu einem offenen Feld inkl. markierter Empfehlung."""
        field_type = field_def.get("type", "text")
        recommended = self.template.recommended_labels(field_def, state)

        options: List[QuestionOption] = []
        if field_type in ("choice", "multiple_choice"):
            labels = [o["label"] for o in field_def.get("options", [])]
            if not any(r in labels for r in recommended):
                # Jede Auswahlfrage braucht eine Empfehlung
                recommended = labels[:1]
            for opt in field_def.get("options", []):
                options.append(QuestionOption(
                    label=opt["label"],
                    description=opt.get("description", ""),
                    is_recommended=opt["label"] in recommended
                ))
        elif recommended:
            options = [
                QuestionOption(label=r, description="Vorschlag", is_recommended=True)
                for r in recommended
            ]

        hint = field_def.get("hint", "")
        if field_id == "components" and state.context.get("existing_components"):
            existing = ", ".join(state.context["existing_components"])
            hint = f"Already in the codebase: {existing}"

        return Question(
            id=f"q_{field_id}",
            field_id=field_id,
            section=field_def.get("section_title", ""),
            text=field_def.get("question", f"Please decide: {field_def.get('label', field_id)}"),
            options=options,
            allow_multiple=field_type == "multiple_choice",
            allow_custom=field_type == "text" or bool(field_def.get("allow_custom")),
            free_text=field_type == "text",
            hint=hint,
        )

    def build_round(
        self,
        open_fields: List[Tuple[str, Dict[str, Any]]],
        state: DecisionState
    ) -> List[Question]:
        questions = []
        for field_id, field_def in open_fields:
            question = self.build_question(field_id, field_def, state)
            questions.append(self.phrase_question(question, state))
        return questions

    def phrase_question(self, question: Question, state: DecisionState) -> Question:
        """
        Lässt das LLM die Frage passend zum Seed formulieren.
        Optionen und Empfehlung bleiben unverändert.
        """
        if self.llm is None or not self.rephrase:
            return question

        system_prompt = {
            "role": "system",
            "content": f"""You are interviewing a developer to complete a feature specification.

**SECTION:** {question.section}
**ORIGINAL QUESTION:** {question.text}

Rephrase the question so it refers to the feature described below.
Keep the information it asks for unchanged. Do not add options.

Answer ONLY in JSON:
{{"text": "the rephrased question"}}"""
        }
        user_prompt = {
            "role": "user",
            "content": f"Feature: {state.value('feature_summary', '') or state.seed_text[:500]}"
        }

        try:
            response = self.llm.complete(
                messages=[system_prompt, user_prompt],
                json_mode={"type": "json_object"},
                temperature=0.5
            )
            result = self._parse_response(response.content)
            text = str(result.get("text", "")).strip()
            if text:
                return question.model_copy(update={"text": text})
        except (RuntimeError, ValueError) as e:
            logger.warning(f"⚠️  Fehler bei Frageformulierung für '{question.field_id}': {e}")
        return question

    def propose_topics(self, seed_text: str, state: DecisionState) -> Dict[str, Dict[str, Any]]:
        """
        Schlägt zusätzliche Entscheidungsthemen für den Seed vor
        (z.B. Algorithmus eines Rate Limiters).

        Returns:
            Dict mit field_id -> Felddefinition (leer ohne LLM oder bei Fehlern)
        """
        if self.llm is None or self.max_topics <= 0:
            return {}

        known = ", ".join(
            f"{fid} ({fdef.get('label', fid)})"
            for fid, fdef in self.template.get_all_fields(state).items()
        )
        system_prompt = {
            "role": "system",
            "content": f"""You help write a feature specification for a Laravel application.
List at most {self.max_topics} technical decisions that are specific to the feature
and NOT covered by these existing fields: {known}

Every decision is a choice question with 2-5 options and exactly one recommended option.

Answer ONLY in JSON:
{{
  "topics": [
    {{
      "id": "short_snake_case_id",
      "label": "Short label",
      "question": "The question",
      "options": [{{"label": "Option", "description": "One sentence"}}],
      "recommended": "Option",
      "multiple": false
    }}
  ]
}}"""
        }
        user_prompt = {"role": "user", "content": f"Feature description:\n{seed_text[:3000]}"}

        try:
            response = self.llm.complete(
                messages=[system_prompt, user_prompt],
                json_mode={"type": "json_object"},
                temperature=0.3
            )
            result = self._parse_response(response.content)
            proposed = result.get("topics") or []
            if not isinstance(proposed, list):
                raise ValueError(f"topics ist keine Liste: {proposed!r}")
        except (RuntimeError, ValueError) as e:
            logger.warning(f"⚠️  Fehler bei Themenvorschlägen: {e}")
            return {}

        existing = set(self.template.get_all_fields(state))
        topics: Dict[str, Dict[str, Any]] = {}
        for topic in proposed:
            field_def = self._validate_topic(topic)
            if field_def is None:
                continue
            raw_id = topic.get("id") if isinstance(topic.get("id"), str) else ""
            field_id = "topic_" + slugify(raw_id or field_def["label"], max_words=4).replace("-", "_")
            if field_id in existing or field_id in topics:
                continue
            topics[field_id] = field_def
            if len(topics) >= self.max_topics:
                break

        if topics:
            logger.info(f"💡 {len(topics)} zusätzliche Entscheidungsthemen: {', '.join(topics)}")
        return topics

    def _validate_topic(self, topic: Any) -> Optional[Dict[str, Any]]:
        if not isinstance(topic, dict):
            return None
        question = str(topic.get("question", "")).strip()
        label = str(topic.get("label", "")).strip()
        raw_options = topic.get("options") or []
        if not isinstance(raw_options, list):
            return None
        options = []
        for opt in raw_options:
            if isinstance(opt, dict) and str(opt.get("label", "")).strip():
                options.append({
                    "label": str(opt["label"]).strip(),
                    "description": str(opt.get("description", "")).strip()
                })
            elif isinstance(opt, str) and opt.strip():
                options.append({"label": opt.strip(), "description": ""})
        if not question or not label or len(options) < 2:
            return None

        labels = [o["label"] for o in options]
        recommended = topic.get("recommended")
        if recommended not in labels:
            recommended = labels[0]

        return {
            "label": label,
            "question": question,
            "type": "multiple_choice" if topic.get("multiple") else "choice",
            "required": True,
            "allow_custom": True,
            "options": options,
            "recommended": [recommended] if topic.get("multiple") else recommended,
        }

    def extract_fields(
        self,
        text: str,
        open_fields: List[Tuple[str, Dict[str, Any]]],
        source: FactSource = FactSource.SEED,
        question_id: Optional[str] = None
    ) -> List[Fact]:
        """
        Extrahiert Feldwerte aus einem Freitext.
        Nur eindeutig erkennbare und zur Felddefinition passende Werte werden übernommen.
        """
        if self.llm is None or not open_fields or not text.strip():
            return []

        fields_by_id = dict(open_fields)
        fields_info = "\n".join(
            f"- {fid}: {fdef.get('question', '')}"
            + (f" (options: {', '.join(o['label'] for o in fdef.get('options', []))})" if fdef.get("options") else "")
            for fid, fdef in list(fields_by_id.items())[:12]
        )

        system_prompt = {
            "role": "system",
            "content": f"""Analyse the text and check whether it already answers any of these open fields.

**OPEN FIELDS:**
{fields_info}

Extract ONLY information that is clearly stated. Do not guess.
For fields with options use the exact option label.

Answer ONLY in JSON:
{{
    "extracted_fields": {{"field_id": "value"}},
    "confidence": "high|medium|low"
}}

If unsure, return an empty extracted_fields object."""
        }

        try:
            response = self.llm.complete(
                messages=[system_prompt, {"role": "user", "content": text[:4000]}],
                json_mode={"type": "json_object"},
                temperature=0.1
            )
            result = self._parse_response(response.content)
        except (RuntimeError, ValueError) as e:
            logger.warning(f"⚠️  Fehler bei Feldextraktion: {e}")
            return []

        if result.get("confidence") not in ("high", "medium"):
            return []

        facts = []
        extracted = result.get("extracted_fields") or {}
        if not isinstance(extracted, dict):
            return []
        for field_id, value in extracted.items():
            field_def = fields_by_id.get(field_id)
            if field_def is None:
                continue
            value = self._coerce_value(field_def, value)
            if value is None:
                continue
            facts.append(Fact(field_id=field_id, value=value, source=source, question_id=question_id))
            logger.info(f"📝 Feld aus Freitext extrahiert: {field_id}")
        return facts

    @staticmethod
    def _coerce_value(field_def: Dict[str, Any], value: Any) -> Any:
        field_type = field_def.get("type", "text")
        labels = [o["label"] for o in field_def.get("options", [])]
        custom = bool(field_def.get("allow_custom"))

        if field_type == "multiple_choice":
            items = value if isinstance(value, list) else [value]
            items = [str(v).strip() for v in items if str(v).strip()]
            if not items or (not custom and any(i not in labels for i in items)):
                return None
            return items
        if isinstance(value, (list, dict)) or value is None:
            return None
        value = str(value).strip()
        if not value:
            return None
        if field_type == "choice" and not custom and value not in labels:
            return None
        return value

    def should_extract_from_answer(self, answer: Any) -> bool:
        return self.llm is not None and isinstance(answer, str) and len(answer) >= MIN_EXTRACTION_LENGTH

    def _parse_response(self, payload: str) -> Dict[str, Any]:
        try:
            result = json.loads(payload)
        except json.JSONDecodeError:
            m = re.search(r"\{.*\}", payload, re.DOTALL)
            if not m:
                raise ValueError(f"Konnte JSON nicht parsen: {payload[:200]}")
            result = json.loads(m.group(0))
        if not isinstance(result, dict):
            raise ValueError(f"Unerwartetes JSON: {payload[:200]}")
        return result
