from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone


class JobStatus:
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    ALL = frozenset({PENDING, PROCESSING, COMPLETED, FAILED})
    TERMINAL = frozenset({COMPLETED, FAILED})


# Forward-only moves. Anything out of a terminal state is a no-op, not an error.
_ALLOWED = {
    JobStatus.PENDING: {JobStatus.PROCESSING, JobStatus.COMPLETED, JobStatus.FAILED},
    JobStatus.PROCESSING: {JobStatus.COMPLETED, JobStatus.FAILED},
}


def can_transition(current: str, new: str) -> bool:
    return new in _ALLOWED.get(current, set())


def utcnow() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


PAGE_SIZES = ("A4", "Letter", "Legal")
ORIENTATIONS = ("portrait", "landscape")


@dataclass(frozen=True)
class RenderConfig:
    page_size: str = "A4"
    orientation: str = "portrait"
    margin_top: float = 5
    margin_side: float = 5
    repeat_headers: bool = True
    keep_groups_together: bool = True
    alternate_row_colors: bool = True
    auto_fit_text: bool = False
    content_scale: int = 85

    def __post_init__(self) -> None:
        if self.page_size not in PAGE_SIZES:
            raise ValueError(f"page_size must be one of {', '.join(PAGE_SIZES)}")
        if self.orientation not in ORIENTATIONS:
            raise ValueError(f"orientation must be one of {', '.join(ORIENTATIONS)}")
        for name in ("margin_top", "margin_side"):
            value = getattr(self, name)
            if not 2 <= value <= 25:
                raise ValueError(f"{name} must be between 2 and 25 mm")
        if not 70 <= self.content_scale <= 100:
            raise ValueError("content_scale must be between 70 and 100")

    @property
    def landscape(self) -> bool:
        return self.orientation == "landscape"

    @classmethod
    def from_dict(cls, data: dict[str, object] | None) -> "RenderConfig":
        """Build from either snake_case or the camelCase keys sent by browsers."""
        data = dict(data or {})
        aliases = {
            "pageSize": "page_size",
            "marginTop": "margin_top",
            "marginSide": "margin_side",
            "repeatHeaders": "repeat_headers",
            "keepGroupsTogether": "keep_groups_together",
            "alternateRowColors": "alternate_row_colors",
            "autoFitText": "auto_fit_text",
            "contentScale": "content_scale",
        }
        known = set(cls.__dataclass_fields__)
        kwargs: dict[str, object] = {}
        for key, value in data.items():
            name = aliases.get(key, key)
            if name in known:
                kwargs[name] = value
        return cls(**kwargs)  # type: ignore[arg-type]

    def to_dict(self) -> dict[str, object]:
        return asdict(self)


@dataclass(frozen=True)
class ConversionJob:
    id: str
    filename: str
    document: str
    config: RenderConfig
    status: str = JobStatus.PENDING
    artifact_path: str | None = None
    error: str | None = None
    error_category: str | None = None
    strategy: str | None = None
    warnings: tuple[str, ...] = ()
    created_at: str = field(default_factory=utcnow)
    updated_at: str | None = None
    completed_at: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in JobStatus.TERMINAL

    def evolve(self, **changes: object) -> "ConversionJob":
        return replace(self, **changes)  # type: ignore[arg-type]

    def to_dict(self) -> dict[str, object]:
        data = asdict(self)
        data["config"] = self.config.to_dict()
        data["warnings"] = list(self.warnings)
        return data

    def public_dict(self) -> dict[str, object]:
        """Record without the document body, for status endpoints and logs."""
        data = self.to_dict()
        data.pop("document")
        return data

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "ConversionJob":
        values = dict(data)
        values["config"] = RenderConfig.from_dict(values.get("config"))  # type: ignore[arg-type]
        values["warnings"] = tuple(values.get("warnings") or ())  # type: ignore[arg-type]
        known = set(cls.__dataclass_fields__)
        return cls(**{k: v for k, v in values.items() if k in known})  # type: ignore[arg-type]


@dataclass(frozen=True)
class RenderAttempt:
    strategy: str
    ok: bool
    artifact_path: str | None = None
    error: Exception | None = None
    elapsed: float = 0.0
