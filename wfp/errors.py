"""Error taxonomy for the workflow planner."""


class PlannerError(Exception):
    """Base class for all planner errors."""


class TransportError(PlannerError):
    """Provider or network unreachable, or a non-success status."""


class EmptyResponseError(PlannerError):
    """The provider answered but produced no usable text."""


class SchemaError(PlannerError):
    """A candidate document does not have the required workflow shape."""


class ParseError(SchemaError):
    """The candidate document is not well-formed JSON."""


class ShapeError(SchemaError):
    """The candidate parsed but is missing required fields or has wrong types."""


class DiagramSyntaxError(PlannerError):
    """The rendering engine rejected the diagram text."""


class ToolExecutionError(PlannerError):
    """A single tool call failed. Absorbed into the tool result record."""


class SnapshotStaleError(PlannerError):
    """A snapshot exists but was captured outside the freshness window."""


class OperationInFlightError(PlannerError):
    """Another operation is already running for this session."""
