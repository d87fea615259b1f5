from __future__ import annotations


class ImportPipelineError(ValueError):
    """Base class for structural import failures that stop the wizard."""


class MalformedFileError(ImportPipelineError):
    pass


class MappingError(ImportPipelineError):
    def __init__(self, messages: list[str]) -> None:
        self.messages = list(messages)
        super().__init__("; ".join(self.messages) or "Invalid mapping.")


class StepTransitionError(ImportPipelineError):
    pass


class LedgerError(ImportPipelineError):
    """Transport or storage failure reported by a ledger backend."""
