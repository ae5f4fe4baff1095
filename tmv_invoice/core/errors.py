# tmv_invoice/core/errors.py

from typing import List


class FinalizationError(ValueError):
    """
    Raised when a draft cannot become an invoice. `problems` lists every
    blocking issue so the form can show them all at once.
    """
    def __init__(self, problems: List[str]):
        self.problems = list(problems)
        super().__init__("; ".join(self.problems) or "Draft is not ready to be finalized.")


class ParserError(RuntimeError):
    """The order parser failed or returned something unusable."""


class ParserBusyError(ParserError):
    """A parse request is already in flight."""


class ParserUnavailableError(ParserError):
    """The parser model is not loaded."""


class ExportError(RuntimeError):
    """Rendering or delivering an invoice export failed."""


class StorageWriteError(RuntimeError):
    """The invoice collection could not be persisted."""
