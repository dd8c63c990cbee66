"""Exception hierarchy for workflow execution."""


class WorkflowError(Exception):
    """Base class for all workflow engine errors."""

    pass


class GraphValidationError(WorkflowError):
    """Raised when a definition is malformed. No node runs."""

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__("Invalid workflow definition: " + "; ".join(errors))


class NodeExecutionError(WorkflowError):
    """Raised when a node fails after its retries are exhausted."""

    def __init__(self, node_id: str, message: str):
        self.node_id = node_id
        super().__init__(message)


class NodeTimeoutError(WorkflowError):
    """Raised when a single node attempt exceeds its timeout."""

    def __init__(self, timeout_ms: int):
        self.timeout_ms = timeout_ms
        super().__init__(f"Node execution timed out after {timeout_ms}ms")


class HttpStatusError(WorkflowError):
    """Non-2xx response from an http_request node."""

    def __init__(self, status: int, body: str):
        self.status = status
        self.body = body
        super().__init__(f"HTTP {status}: {body}")


class CodeExecutionError(WorkflowError):
    """User code raised, exited non-zero, or produced unparseable output."""

    def __init__(self, message: str, stderr: str = ""):
        self.stderr = stderr
        super().__init__(message)


class CodeTimeoutError(CodeExecutionError):
    def __init__(self, timeout_ms: int, language: str):
        self.timeout_ms = timeout_ms
        super().__init__(f"{language} execution timed out after {timeout_ms}ms")


class IterationError(WorkflowError):
    """A sub-run inside an iteration or loop failed under a terminating policy."""

    def __init__(self, message: str, index: int | None = None):
        self.index = index
        super().__init__(message)


class WorkflowCancelledError(WorkflowError):
    def __init__(self, message: str = "Workflow execution cancelled"):
        super().__init__(message)
