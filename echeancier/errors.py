from __future__ import annotations


class ScheduleError(Exception):
    """Erreur de base de l'échéancier."""


class RegenerationNotConfirmed(ScheduleError):
    """Régénération demandée sans confirmation explicite de l'utilisateur."""

    def __init__(self, strategy: str):
        super().__init__(f"Regeneration '{strategy}' replaces the whole schedule and must be confirmed")
        self.strategy = strategy


class DocumentNotFound(ScheduleError, KeyError):
    def __init__(self, document_id: str):
        super().__init__(f"quote with id={document_id} not found")
        self.document_id = document_id

    def __str__(self) -> str:
        return self.args[0]


class StaleDocumentError(ScheduleError, ValueError):
    """Le document a été modifié entre le chargement et l'enregistrement."""

    def __init__(self, document_id: str, expected: int, current: int):
        super().__init__(
            f"quote {document_id} is at version {current}, expected {expected}"
        )
        self.document_id = document_id
        self.expected = expected
        self.current = current
