"""
Enumerations for tests, attempts, integrity events and grading.
"""
import enum


class TestStatus(str, enum.Enum):
    """Publication status of a test."""

    DRAFT = "DRAFT"
    PUBLISHED = "PUBLISHED"
    CLOSED = "CLOSED"


class QuestionType(str, enum.Enum):
    """Question type enumeration."""

    MCQ_SINGLE = "MCQ_SINGLE"
    MCQ_MULTI = "MCQ_MULTI"
    NUMERIC = "NUMERIC"
    SHORT_TEXT = "SHORT_TEXT"
    LONG_TEXT = "LONG_TEXT"


class AttemptStatus(str, enum.Enum):
    """Attempt status enumeration.

    Moves forward only. The paused sub-state of IN_PROGRESS is not a status.
    """

    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    SUBMITTED = "SUBMITTED"
    GRADED = "GRADED"
    INVALIDATED = "INVALIDATED"

    @property
    def is_terminal(self) -> bool:
        return self in (
            AttemptStatus.SUBMITTED,
            AttemptStatus.GRADED,
            AttemptStatus.INVALIDATED,
        )


class ProctorEventKind(str, enum.Enum):
    """Kinds of suspicious client behavior recorded during an attempt."""

    TAB_SWITCH = "TAB_SWITCH"
    BLUR = "BLUR"
    EXIT_FULLSCREEN = "EXIT_FULLSCREEN"
    DEVTOOLS_OPEN = "DEVTOOLS_OPEN"
    COPY = "COPY"
    PASTE = "PASTE"
    CONTEXT_MENU = "CONTEXT_MENU"
    RESIZE = "RESIZE"
    VISIBILITY_HIDDEN = "VISIBILITY_HIDDEN"
    NETWORK_OFFLINE = "NETWORK_OFFLINE"
    MULTI_MONITOR_HINT = "MULTI_MONITOR_HINT"


class RiskBand(str, enum.Enum):
    """Display band for a proctoring risk score."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class SubmitTrigger(str, enum.Enum):
    """The three paths that may move an attempt to SUBMITTED."""

    MANUAL = "manual"
    TIMEOUT = "timeout"
    FORCED_NAVIGATION = "forced_navigation"


class GradingStatus(str, enum.Enum):
    """How much of an attempt has a grade timestamp."""

    UNGRADED = "UNGRADED"
    PARTIALLY_GRADED = "PARTIALLY_GRADED"
    FULLY_GRADED = "FULLY_GRADED"


class SuggestionMode(str, enum.Enum):
    """Scope of an AI grading suggestion request."""

    SINGLE = "single"
    ALL = "all"
