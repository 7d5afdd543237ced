from __future__ import annotations


class ResearchError(Exception):
    """Base class for research pipeline errors."""


class CapabilityError(ResearchError):
    """A single external capability call failed (timeout, 5xx, bad payload).

    The iteration controller drops the call and continues the round.
    """

    def __init__(self, capability: str, message: str):
        super().__init__(f"{capability}: {message}")
        self.capability = capability
        self.reason = message


class InvalidURLError(CapabilityError):
    def __init__(self, url: str):
        super().__init__("scrape", f"Invalid URL format: {url}")
        self.url = url


class ProviderConfigurationError(ResearchError):
    """No generation provider has a usable credential."""


class InputValidationError(ResearchError):
    def __init__(self, message: str, *, security_event: bool = False):
        super().__init__(message)
        self.message = message
        self.security_event = security_event


class InsufficientCreditsError(ResearchError):
    def __init__(self, current_balance: int, required: int):
        super().__init__(
            "You're out of credits for this research. Add credits to continue searching "
            "and researching. All features remain available once credits are added."
        )
        self.current_balance = current_balance
        self.required = required


class PlanningError(ResearchError):
    """The LLM plan could not be decoded; the planner falls back to a template."""


class SynthesisError(ResearchError):
    """Both streaming and non-streaming generation failed."""


class ResearchCancelled(ResearchError):
    def __init__(self, message: str = "Research cancelled"):
        super().__init__(message)


class EventOrderError(ResearchError):
    """An event was emitted outside the allowed phase sequence."""


class PersistenceError(ResearchError):
    def __init__(self, operation: str, table: str, message: str):
        super().__init__(f"{operation} on {table} failed: {message}")
        self.operation = operation
        self.table = table
