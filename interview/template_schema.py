"""
Document Template - Verwaltet die Abschnitte und Felder der Dokumentvorlage
und berechnet, welche Felder für einen Entscheidungsstand noch offen sind.
"""
import re
from typing import Dict, Any, Optional, List, Tuple

from interview.decision_state import DecisionState, is_filled
from interview.repo import TemplateRepo

EXTRA_FIELDS_SECTION = "decisions"


def slugify(text: str, max_words: int = 6) -> str:
    words = re.findall(r"[a-z0-9]+", text.lower())
    return "-".join(words[:max_words]) or "feature"


class DocumentTemplate:
    """
    Kapselt die Dokumentvorlage: welche Abschnitte gibt es, welche gelten für
    die aktuelle Aktivität und welche Pflichtfelder sind noch offen.
    """

    def __init__(self, repo: TemplateRepo):
        self.repo = repo
        self.name = repo.name()
        self.activity_field = repo.activity_field()
        self._sections = repo.sections()

    def sections(self) -> Dict[str, Dict[str, Any]]:
        return self._sections

    def section_title(self, section_id: str) -> str:
        return self._sections.get(section_id, {}).get("title", section_id)

    def section_fields(
        self,
        section_id: str,
        state: Optional[DecisionState] = None
    ) -> Dict[str, Dict[str, Any]]:
        """Felder eines Abschnitts inkl. Kontext, zusätzliche Themen am Ende."""
        section = self._sections.get(section_id, {})
        fields = dict(section.get("fields", {}))
        if state is not None and section_id == EXTRA_FIELDS_SECTION:
            for field_id, field_def in sorted(state.extra_fields.items()):
                fields.setdefault(field_id, field_def)

        result = {}
        for field_id, field_def in fields.items():
            field_copy = dict(field_def)
            field_copy["field_id"] = field_id
            field_copy["section_id"] = section_id
            field_copy["section_title"] = section.get("title", section_id)
            result[field_id] = field_copy
        return result

    def get_all_fields(self, state: Optional[DecisionState] = None) -> Dict[str, Dict[str, Any]]:
        all_fields = {}
        for section_id in self._sections:
            all_fields.update(self.section_fields(section_id, state))
        return all_fields

    def is_rendered(self, section_id: str) -> bool:
        return self._sections.get(section_id, {}).get("render", True)

    def is_section_applicable(self, section_id: str, values: Dict[str, Any]) -> bool:
        """
        Prüft, ob ein Abschnitt für die aktuelle Aktivität gilt.
        Abschnitte mit `applies_to` gelten erst, wenn die Aktivität feststeht.
        """
        section = self._sections.get(section_id, {})
        applies_to = section.get("applies_to")
        if applies_to:
            activity = values.get(self.activity_field)
            if not is_filled(activity) or activity not in applies_to:
                return False
        condition = section.get("condition")
        if condition and not self._evaluate_condition(condition, values):
            return False
        return True

    def is_field_active(self, field_def: Dict[str, Any], values: Dict[str, Any]) -> bool:
        if not self.is_section_applicable(field_def["section_id"], values):
            return False
        condition = field_def.get("conditional")
        if condition and not self._evaluate_condition(condition, values):
            return False
        return True

    def open_fields(self, state: DecisionState) -> List[Tuple[str, Dict[str, Any]]]:
        """
        Gibt alle offenen Pflichtfelder in Vorlagen-Reihenfolge zurück.

        Ein Feld ist offen, wenn es erforderlich ist, sein Abschnitt gilt,
        seine Bedingung erfüllt ist und der Stand noch keinen Wert enthält.
        """
        values = state.values()
        result = []
        for field_id, field_def in self.get_all_fields(state).items():
            if state.is_resolved(field_id):
                continue
            if not field_def.get("required", False):
                continue
            if not self.is_field_active(field_def, values):
                continue
            result.append((field_id, field_def))
        return result

    def recommended_labels(self, field_def: Dict[str, Any], state: DecisionState) -> List[str]:
        """
        Ermittelt die empfohlene(n) Option(en) für ein Feld.

        Reihenfolge: Empfehlungen aus dem Stand (Klassifikation, Codebase-Kontext),
        dann aktivitätsabhängige Empfehlung, dann Standard der Vorlage.
        """
        field_id = field_def.get("field_id")
        labels = [o["label"] for o in field_def.get("options", [])]

        candidates: List[str] = list(state.recommendations.get(field_id, []))
        if labels:
            candidates = [c for c in candidates if c in labels]

        if not candidates:
            activity = state.value(self.activity_field)
            by_activity = field_def.get("recommended_by_activity", {})
            if isinstance(activity, str) and activity in by_activity:
                candidates = self._as_list(by_activity[activity])

        if not candidates:
            candidates = self._as_list(field_def.get("recommended"))

        if not field_def.get("type", "text").startswith("multiple"):
            candidates = candidates[:1]

        slug = slugify(str(state.value("feature_summary", "") or state.seed_text))
        return [c.replace("{slug}", slug) for c in candidates]

    def calculate_progress(self, state: DecisionState) -> Dict[str, Any]:
        """
        Berechnet den Fortschritt über alle aktuell gültigen Pflichtfelder.

        Returns:
            Dictionary mit total_required, filled_required, progress_percent,
            missing_required, sections_progress und is_complete
        """
        values = state.values()
        sections_progress = {}
        total_required = 0
        filled_required = 0
        missing = []

        for section_id in self._sections:
            applicable = self.is_section_applicable(section_id, values)
            section_total = 0
            section_filled = 0
            for field_id, field_def in self.section_fields(section_id, state).items():
                if not field_def.get("required", False):
                    continue
                if not self.is_field_active(field_def, values):
                    continue
                section_total += 1
                if state.is_resolved(field_id):
                    section_filled += 1
                else:
                    missing.append(field_id)

            total_required += section_total
            filled_required += section_filled
            sections_progress[section_id] = {
                "title": self.section_title(section_id),
                "applicable": applicable,
                "required": section_total,
                "filled": section_filled,
            }

        progress_percent = (
            round(filled_required / total_required * 100, 1)
            if total_required > 0 else 100
        )
        return {
            "total_required": total_required,
            "filled_required": filled_required,
            "progress_percent": progress_percent,
            "missing_required": missing,
            "sections_progress": sections_progress,
            "is_complete": not missing,
        }

    def get_progress_display(self, state: DecisionState) -> str:
        """Erzeugt eine lesbare Fortschrittsanzeige."""
        progress = self.calculate_progress(state)

        bar_length = 20
        filled_bars = int(progress["progress_percent"] / 100 * bar_length)
        progress_bar = "█" * filled_bars + "░" * (bar_length - filled_bars)

        lines = [
            f"\n{'='*50}",
            f"📊 Fortschritt: {self.name}",
            f"{'='*50}",
            f"[{progress_bar}] {progress['progress_percent']}%",
            f"✅ Pflichtfelder: {progress['filled_required']}/{progress['total_required']}",
            "",
            "Abschnitte:",
        ]
        for section in progress["sections_progress"].values():
            if not section["applicable"]:
                lines.append(f"  ➖ {section['title']}: entfällt")
                continue
            status = "✅" if section["filled"] == section["required"] else "⏳"
            lines.append(f"  {status} {section['title']}: {section['filled']}/{section['required']}")

        if progress["is_complete"]:
            lines.append("\n🎉 Alle Entscheidungen getroffen!")
        else:
            lines.append(f"\n⏳ Noch {len(progress['missing_required'])} Pflichtfelder offen")
        lines.append(f"{'='*50}\n")
        return "\n".join(lines)

    @staticmethod
    def _as_list(value: Any) -> List[str]:
        if value is None:
            return []
        if isinstance(value, list):
            return [str(v) for v in value]
        return [str(value)]

    def _evaluate_condition(self, condition: str, values: Dict[str, Any]) -> bool:
        """
        Evaluiert eine Bedingung für einen Abschnitt oder ein Feld.

        Unterstützte Formate:
        - "field_id == 'value'"
        - "field_id != 'value'"
        - "field_id contains 'value'"
        - "field_id >= 3"
        - "field_id < 3"
        """
        if not condition:
            return False

        if " contains " in condition:
            field_id, value = [p.strip() for p in condition.split(" contains ", 1)]
            value = value.strip("'\"")
            field_value = values.get(field_id, "")
            if isinstance(field_value, list):
                return value in field_value
            return value in str(field_value)

        elif " != " in condition:
            field_id, expected = [p.strip() for p in condition.split(" != ", 1)]
            if field_id not in values:
                return False
            return str(values[field_id]) != expected.strip("'\"")

        elif " >= " in condition:
            field_id, threshold = [p.strip() for p in condition.split(" >= ", 1)]
            try:
                return int(values.get(field_id, 0)) >= int(threshold)
            except (ValueError, TypeError):
                return False

        elif " == " in condition:
            field_id, expected = [p.strip() for p in condition.split(" == ", 1)]
            return str(values.get(field_id, "")) == expected.strip("'\"")

        elif " < " in condition:
            field_id, threshold = [p.strip() for p in condition.split(" < ", 1)]
            try:
                return int(values.get(field_id, 0)) < int(threshold)
            except (ValueError, TypeError):
                return False

        return False
