from __future__ import annotations


class ResearchChatError(Exception):
    """Base class for research chat client errors."""


class ValidationError(ResearchChatError):
    """Input rejected before reaching the session state machine."""


class TransportError(ResearchChatError):
    """A call to the research chat API failed."""

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ChatLimitReached(TransportError):
    """The daily chat quota does not allow creating another chat."""


class PollError(ResearchChatError):
    """A poll fetch failed. Retried on the next tick, never terminal."""


class AuthenticationRequired(ResearchChatError):
    """The caller's credential is missing or no longer valid."""

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class SessionClosed(ResearchChatError):
    """The session is completed or errored and accepts no more submissions."""


class SubmissionInFlight(ResearchChatError):
    """Another mutating call for the same session has not finished yet."""


class SessionNotCompleted(ResearchChatError):
    """The operation needs a completed research report."""
