"""
Dokumentgenerierung: rendert einen vollständigen Entscheidungsstand
deterministisch in die Markdown-Vorlage.
"""
import logging
import os
from typing import Dict, List, Any, Optional

from pydantic import BaseModel, Field

from interview.decision_state import DecisionState
from interview.errors import IncompleteStateError
from interview.seed import encode_decision_record, format_value
from interview.template_schema import DocumentTemplate

logger = logging.getLogger(__name__)

# Einordnung der Komponenten für die abgeleitete Aufgabenliste
DATA_COMPONENTS = {"Model"}
ENTRY_COMPONENTS = {"Controller", "Console command", "Blade/Livewire component", "Middleware"}
TOP_DOWN = "Top-down (entry point first)"


class RenderedDocument(BaseModel):
    text: str
    sections: List[str] = Field(default_factory=list)
    target_path: Optional[str] = None


class DocGenerator:

    def render(self, state: DecisionState, template: DocumentTemplate) -> RenderedDocument:
        """
        Rendert das Dokument. Gleicher Stand ergibt byte-identischen Text.

        Raises:
            IncompleteStateError: wenn ein gültiger Abschnitt noch offene Pflichtfelder hat
        """
        progress = template.calculate_progress(state)
        if progress["missing_required"]:
            logger.error(f"❌ Render mit offenen Feldern aufgerufen: {progress['missing_required']}")
            raise IncompleteStateError(progress["missing_required"])

        values = state.values()
        lines = [f"# {template.name}", ""]
        summary = state.value("feature_summary")
        if summary:
            lines.extend([f"> {' '.join(str(summary).split())}", ""])
        sections = []
        record_facts: Dict[str, Any] = {}

        for section_id, section in template.sections().items():
            fields = template.section_fields(section_id, state)
            if not template.is_rendered(section_id):
                continue
            for field_id in fields:
                if state.is_resolved(field_id):
                    record_facts[field_id] = state.value(field_id)
            if not template.is_section_applicable(section_id, values):
                continue

            title = section.get("title", section_id)
            sections.append(title)
            lines.extend([f"## {title}", ""])
            for field_id, field_def in fields.items():
                if not state.is_resolved(field_id):
                    continue
                if not template.is_field_active(field_def, values):
                    continue
                label = field_def.get("label", field_id)
                lines.append(f"- **{label}:** {format_value(state.value(field_id))}")

            if section.get("derived") == "tasks":
                lines.append("")
                for i, task in enumerate(self.derive_tasks(values, template), 1):
                    lines.append(f"{i}. {task}")
            lines.append("")

        record = {
            "template": template.name,
            "facts": record_facts,
            "extra_fields": state.extra_fields,
        }
        lines.append(encode_decision_record(record))
        lines.append("")

        return RenderedDocument(
            text="\n".join(lines),
            sections=sections,
            target_path=state.value("output_path")
        )

    def derive_tasks(self, values: Dict[str, Any], template: DocumentTemplate) -> List[str]:
        """Leitet die Implementierungsaufgaben aus den übrigen Entscheidungen ab."""
        components = values.get("components") or []
        if isinstance(components, str):
            components = [components]

        data_tasks = []
        if values.get("schema_changes") == "Yes" and values.get("tables"):
            data_tasks.append(f"Write migration: {format_value(values['tables'])}")
        data_tasks.extend(f"Create or update {c}" for c in components if c in DATA_COMPONENTS)

        core_tasks = [
            f"Implement {c}" for c in components
            if c not in DATA_COMPONENTS and c not in ENTRY_COMPONENTS
        ]

        entry_tasks = [f"Implement {c}" for c in components if c in ENTRY_COMPONENTS]
        if template.is_section_applicable("endpoints", values) and values.get("route_path"):
            route = " ".join(p for p in (values.get("http_method"), values["route_path"]) if p)
            entry_tasks.append(f"Register route {route}")

        test_tasks = []
        if values.get("test_levels"):
            test_tasks.append(
                f"Write {format_value(values['test_levels'])} ({values.get('test_framework', 'tests')})"
                f" covering: {format_value(values.get('edge_cases', 'main flow'))}"
            )

        if values.get("task_order") == TOP_DOWN:
            ordered = entry_tasks + core_tasks + data_tasks
        else:
            ordered = data_tasks + core_tasks + entry_tasks
        return ordered + test_tasks


def write_document(rendered: RenderedDocument, path: Optional[str] = None) -> str:
    """Schreibt das Dokument an den Zielpfad und gibt den Pfad zurück."""
    target = path or rendered.target_path
    if not target:
        raise ValueError("Kein Zielpfad für das Dokument angegeben")
    target = os.path.expanduser(target)
    directory = os.path.dirname(target)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(target, "w", encoding="utf-8") as f:
        f.write(rendered.text)
    logger.info(f"💾 Dokument geschrieben: {target}")
    return target
