"""Error taxonomy shared by the form cache, the tool layer and the turn orchestrator."""


class LoanFormsError(Exception):
    """Base class for every error raised by this service."""


class SessionNotFound(LoanFormsError, LookupError):
    """No chat session (or form session) exists for the given id."""

    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class UnknownField(LoanFormsError, KeyError):
    """Field name is not part of the document's schema."""

    def __init__(self, document: str, field_name: str):
        super().__init__(f"Unknown field: {field_name}")
        self.document = document
        self.field_name = field_name

    def __str__(self):
        return self.args[0]


class ToolExecutionFailure(LoanFormsError):
    """A tool handler could not complete. Captured as data, never raised out of a turn."""


class PersistenceFailure(LoanFormsError):
    """The persistent store rejected a read or write."""


class TurnFailed(LoanFormsError):
    """Fatal for the current turn; surfaced to the caller."""


class ModelEmptyResponse(TurnFailed):
    """The model returned no text on the pass that must produce the reply."""


class TimeoutFailure(TurnFailed):
    """A model call exceeded its deadline."""
