"""Error taxonomy for the conversion pipeline.

Strategy-level failures never escape the render chain on their own; they are
folded into ``ChainExhausted``. Cleanup failures are logged and swallowed by
their callers.
"""
import asyncio


class FailureCategory:
    UNAVAILABLE = "unavailable"
    TIMEOUT = "timeout"
    INVALID_OUTPUT = "invalid_output"
    RESOURCE = "resource"
    RENDER_ERROR = "render_error"
    INTERRUPTED = "interrupted"


_USER_MESSAGES = {
    FailureCategory.UNAVAILABLE: (
        "PDF rendering backends are unavailable in this environment. "
        "Please try again later or contact support."
    ),
    FailureCategory.TIMEOUT: (
        "Rendering took too long. Please try again with a smaller file."
    ),
    FailureCategory.INVALID_OUTPUT: (
        "The renderer produced an unreadable document. "
        "Please check the HTML file and try again."
    ),
    FailureCategory.RESOURCE: (
        "The server ran out of resources while rendering. "
        "Please try again with a smaller file."
    ),
    FailureCategory.RENDER_ERROR: (
        "The document could not be rendered. "
        "Please check the HTML file is well formed and try again."
    ),
}

# Most actionable category first when several strategies failed differently.
_CATEGORY_PRIORITY = (
    FailureCategory.RESOURCE,
    FailureCategory.TIMEOUT,
    FailureCategory.INVALID_OUTPUT,
    FailureCategory.RENDER_ERROR,
    FailureCategory.UNAVAILABLE,
)

TIMEOUT_MESSAGE = (
    "Job timed out - processing took too long. "
    "Please try with a smaller file or contact support."
)
INTERRUPTED_MESSAGE = "Job was interrupted - please try again"


def user_message(category: str) -> str:
    return _USER_MESSAGES.get(category, _USER_MESSAGES[FailureCategory.RENDER_ERROR])


class ConversionError(Exception):
    """Base class for fatal pipeline errors."""

    category = FailureCategory.RENDER_ERROR

    def user_message(self) -> str:
        return user_message(self.category)


class ValidationWarning(UserWarning):
    """Suspect input. Collected by the preprocessor, never raised."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ValidationWarning):
            return NotImplemented
        return (self.code, self.message) == (other.code, other.message)

    def __hash__(self) -> int:
        return hash((self.code, self.message))


class StrategyFailure(ConversionError):
    """One rendering backend failed; the chain moves on to the next one."""

    def __init__(self, strategy: str, category: str, detail: str) -> None:
        super().__init__(f"{strategy}: [{category}] {detail}")
        self.strategy = strategy
        self.category = category
        self.detail = detail


class ChainExhausted(ConversionError):
    def __init__(self, failures: list[StrategyFailure]) -> None:
        summary = "; ".join(str(f) for f in failures) or "no strategies configured"
        super().__init__(f"all rendering strategies failed: {summary}")
        self.failures = list(failures)
        self.category = self._dominant_category()

    def _dominant_category(self) -> str:
        seen = {f.category for f in self.failures}
        for category in _CATEGORY_PRIORITY:
            if category in seen:
                return category
        return FailureCategory.UNAVAILABLE


class TimeoutExceeded(ConversionError):
    category = FailureCategory.TIMEOUT

    def __init__(self, job_id: str, seconds: float) -> None:
        super().__init__(f"job {job_id} exceeded {seconds:g}s")
        self.job_id = job_id
        self.seconds = seconds

    def user_message(self) -> str:
        return TIMEOUT_MESSAGE


class ResourceCleanupFailure(ConversionError):
    """Best-effort cleanup failed. Logged only."""

    def __init__(self, path: str, cause: BaseException) -> None:
        super().__init__(f"could not remove {path}: {cause}")
        self.path = path
        self.cause = cause


def classify_exception(exc: BaseException) -> str:
    if isinstance(exc, StrategyFailure):
        return exc.category
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)) or "timeout" in type(exc).__name__.lower():
        return FailureCategory.TIMEOUT
    if isinstance(exc, MemoryError):
        return FailureCategory.RESOURCE
    if isinstance(exc, (ImportError, FileNotFoundError, PermissionError)):
        return FailureCategory.UNAVAILABLE
    text = str(exc).lower()
    if "timeout" in text or "timed out" in text:
        return FailureCategory.TIMEOUT
    if any(k in text for k in ("executable", "failed to launch", "no such file", "not installed", "browsertype.launch")):
        return FailureCategory.UNAVAILABLE
    if any(k in text for k in ("out of memory", "cannot allocate", "resource temporarily unavailable")):
        return FailureCategory.RESOURCE
    return FailureCategory.RENDER_ERROR
