from typing import List


class TopologyError(Exception):
    """Base class for everything the topology compiler raises."""


class MisconfigurationError(TopologyError):
    """Inputs are missing or malformed. Raised before any resource is declared."""

    def __init__(self, problems: List[str]):
        self.problems = list(problems)
        super().__init__("Invalid topology inputs: " + "; ".join(self.problems))


class NamingCollision(TopologyError):
    def __init__(self, logical_id: str):
        self.logical_id = logical_id
        super().__init__(f"Resource '{logical_id}' is already declared")


class ProvisioningStepError(TopologyError):
    """A resource-graph mutation failed.

    ``step`` names the orchestrator step that was running; the original
    exception is kept on ``cause`` and chained as ``__cause__``.
    """

    def __init__(self, step: str, cause: BaseException):
        self.step = step
        self.cause = cause
        super().__init__(f"Step '{step}' failed: {cause}")
