"""Exception hierarchy for BlockFlow.

Two tiers:
- `StructuralError`: raised by the graph extractor before anything runs. Always
  fatal for the run. Each carries a list of remediation hints for the editor.
- `FlowExecutionError`: raised by a single node while the flow executes. The
  executor catches these at sequence boundaries and attaches them to the
  failing node's result instead of aborting the run.
"""

from __future__ import annotations

from typing import Iterable, List, Optional, Sequence


class FlowError(Exception):
    """Base class for every error raised by BlockFlow."""


class StructuralError(FlowError):
    """The visual graph cannot be turned into a runnable flow."""

    def __init__(
        self,
        message: str,
        *,
        hint: Optional[Iterable[str]] = None,
        node_ids: Optional[Sequence[str]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.hint: List[str] = list(hint or [])
        self.node_ids: List[str] = list(node_ids or [])

    def __str__(self) -> str:
        if not self.hint:
            return self.message
        steps = "\n".join(f"- {h}" for h in self.hint)
        return f"{self.message}\n\nTo fix this:\n{steps}"


class EmptyFlowError(StructuralError):
    pass


class StartBlockError(StructuralError):
    pass


class DisconnectedBlockError(StructuralError):
    pass


class CycleError(StructuralError):
    pass


class FlowTooLongError(StructuralError):
    pass


class UnknownBlockError(StructuralError):
    pass


class InvalidEdgeError(StructuralError):
    pass


class InvalidBlockError(StructuralError):
    pass


class FlowLayoutError(StructuralError):
    """The flow does not start/end with the right blocks."""


class FlowExecutionError(FlowError):
    """A node failed while the flow was running."""


class ValidationError(FlowExecutionError):
    """A node is missing required configuration at run time."""


class MissingVariableError(FlowExecutionError):
    def __init__(self, name: str):
        super().__init__(
            f'Variable "{name}" not found. Set the variable before reading it and check the spelling.'
        )
        self.name = name


class OperatorError(FlowExecutionError):
    pass


class ConditionError(FlowExecutionError):
    pass


class ModelCallError(FlowExecutionError):
    """Base class for Model Caller failures."""


class ProviderConfigError(ModelCallError):
    pass


class ProviderAPIError(ModelCallError):
    def __init__(self, message: str, *, status_code: Optional[int] = None, provider: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.provider = provider


class TransportError(ModelCallError):
    pass
