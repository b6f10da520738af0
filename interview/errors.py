"""
Fehlerklassen des Interview-Ablaufs. Alle Fehler beenden die aktuelle Session.
"""


class InterviewError(Exception):
    """Basisklasse für alle Fehler einer Interview-Session."""


class UnresolvableSeedError(InterviewError):
    """Der Seed (Datei oder Beschreibung) kann nicht gelesen werden."""

    def __init__(self, payload: str, reason: str = ""):
        self.payload = payload
        self.reason = reason
        message = f"Seed nicht auflösbar: {payload}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class IncompleteStateError(InterviewError):
    """Render wurde aufgerufen, obwohl noch Felder offen sind."""

    def __init__(self, missing):
        self.missing = list(missing)
        super().__init__(f"Offene Pflichtfelder: {', '.join(self.missing)}")


class AbandonedSessionError(InterviewError):
    """Der Befragte hat das Interview abgebrochen; es wird kein Dokument geschrieben."""


class RoundLimitExceededError(AbandonedSessionError):
    """Maximale Rundenzahl erreicht, ohne dass alle Fragen geklärt wurden."""

    def __init__(self, max_rounds: int, open_fields):
        self.max_rounds = max_rounds
        self.open_fields = list(open_fields)
        super().__init__(
            f"Nach {max_rounds} Runden noch offen: {', '.join(self.open_fields)}"
        )


class InvalidAnswerError(InterviewError):
    """Eine Antwort passt nicht zur gestellten Frage."""

    def __init__(self, question_id: str, reason: str):
        self.question_id = question_id
        self.reason = reason
        super().__init__(f"Ungültige Antwort für '{question_id}': {reason}")


class TemplateError(InterviewError):
    """Die Dokumentvorlage fehlt oder ist fehlerhaft."""
