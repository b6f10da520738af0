import re
import json
import logging
from typing import Dict, Any, List, Optional

from app.llm.mistral_client import MistralClient

logger = logging.getLogger(__name__)


class ActivityClassifier:
    """
    Klassifiziert den Seed in eine Aktivitätsart der Vorlage
    (z.B. HTTP endpoint, Background job, Utility script).

    Mit LLM: JSON-Klassifikation mit Scores.
    Ohne LLM oder bei Fehlern: Schlüsselwort-Zählung aus der Vorlage.
    """

    def __init__(
        self,
        activities: List[str],
        keywords: Dict[str, List[str]],
        llm: Optional[MistralClient] = None,
        threshold: float = 0.7
    ):
        self.activities = list(activities)
        self.keywords = keywords
        self.llm = llm
        self.threshold = threshold

    def classify(self, text: str) -> Dict[str, Any]:
        """
        Returns:
            Dictionary mit candidates (Liste von {activity, score}, absteigend),
            explain und source ("llm" | "keywords")
        """
        if self.llm is not None:
            try:
                result = self._classify_with_llm(text)
                if result["candidates"]:
                    return result
                logger.warning("⚠️  LLM lieferte keine gültigen Kandidaten, nutze Schlüsselwörter")
            except (RuntimeError, ValueError) as e:
                logger.warning(f"⚠️  LLM-Klassifikation fehlgeschlagen: {e}")
        return self._classify_with_keywords(text)

    def decide(self, result: Dict[str, Any]) -> Optional[str]:
        """Gibt die Aktivität zurück, wenn der Top-Kandidat sicher genug ist."""
        candidates = result.get("candidates", [])
        if candidates and candidates[0]["score"] >= self.threshold:
            return candidates[0]["activity"]
        return None

    def _classify_with_keywords(self, text: str) -> Dict[str, Any]:
        lowered = text.lower()
        hits: Dict[str, List[str]] = {}
        for activity in self.activities:
            matched = [
                kw for kw in self.keywords.get(activity, [])
                if re.search(r"\b" + re.escape(kw.lower()), lowered)
            ]
            if matched:
                hits[activity] = matched

        total = sum(len(v) for v in hits.values())
        candidates = []
        for activity in self.activities:
            count = len(hits.get(activity, []))
            score = round(count / total, 2) if total else 0.0
            candidates.append({"activity": activity, "score": score})
        # Stabile Sortierung: bei Gleichstand bleibt die Reihenfolge der Vorlage
        candidates.sort(key=lambda c: c["score"], reverse=True)

        explain = ", ".join(f"{a}: {', '.join(k)}" for a, k in hits.items()) or "Keine Schlüsselwörter gefunden"
        return {"candidates": candidates, "explain": explain, "source": "keywords"}

    def _classify_with_llm(self, text: str) -> Dict[str, Any]:
        options = "\n".join(f"- {a}" for a in self.activities)
        system = {
            "role": "system",
            "content": f"""Du klassifizierst Feature-Beschreibungen für eine Laravel-Anwendung.

Mögliche Aktivitätsarten:
{options}

Antworte AUSSCHLIESSLICH im folgenden JSON-Format:
{{
  "candidates": [{{"activity": "<Aktivitätsart>", "score": 0.0-1.0}}],
  "explain": "Kurze Begründung (1-2 Sätze)"
}}

Sortiere die candidates nach Score absteigend und verwende nur die genannten Aktivitätsarten."""
        }
        user = {"role": "user", "content": f"Beschreibung:\n{text[:3000]}"}

        res = self.llm.complete(messages=[system, user], json_mode={"type": "json_object"})
        payload = res.content
        result = self._parse_llm_response(payload)
        result["source"] = "llm"
        return self._validate_and_normalize(result)

    def _parse_llm_response(self, payload: str) -> Dict[str, Any]:
        try:
            result = json.loads(payload)
        except json.JSONDecodeError:
            m = re.search(r"\{.*\}", payload, re.DOTALL)
            if not m:
                raise ValueError(f"Konnte kein gültiges JSON in der Antwort finden: {payload[:200]}")
            result = json.loads(m.group(0))
        if not isinstance(result, dict):
            raise ValueError(f"Unerwartetes JSON statt Objekt: {payload[:200]}")
        return result

    def _validate_and_normalize(self, result: Dict[str, Any]) -> Dict[str, Any]:
        by_lower = {a.lower(): a for a in self.activities}
        candidates = result.get("candidates") or []
        if not isinstance(candidates, list):
            raise ValueError(f"candidates ist keine Liste: {candidates!r}")
        validated = []
        seen = set()
        for candidate in candidates:
            if not isinstance(candidate, dict):
                continue
            activity = by_lower.get(str(candidate.get("activity", "")).strip().lower())
            if activity is None or activity in seen:
                continue
            try:
                score = max(0.0, min(1.0, float(candidate.get("score", 0))))
            except (TypeError, ValueError):
                continue
            seen.add(activity)
            validated.append({"activity": activity, "score": round(score, 2)})

        validated.sort(key=lambda x: x["score"], reverse=True)
        result["candidates"] = validated
        result.setdefault("explain", "")
        return result
