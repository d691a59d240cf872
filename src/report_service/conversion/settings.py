import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_STRATEGIES = ("browser", "library", "structural", "plaintext")


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


@dataclass(frozen=True)
class TimeoutPolicy:
    """Per-strategy time slices, grown with document size.

    A slice is ``base + per_mb * size_mb`` capped at ``ceiling`` and at the
    remaining job budget minus the floors of the strategies still to run.
    """

    base: dict[str, float] = field(default_factory=lambda: {
        "browser": 45.0,
        "library": 30.0,
        "structural": 15.0,
        "plaintext": 5.0,
    })
    floor: dict[str, float] = field(default_factory=lambda: {
        "browser": 5.0,
        "library": 5.0,
        "structural": 3.0,
        "plaintext": 1.0,
    })
    per_mb: float = 15.0
    ceiling: float = 90.0

    def slice_for(self, strategy: str, size_bytes: int, remaining: float, later: list[str]) -> float:
        size_mb = size_bytes / (1024 * 1024)
        wanted = min(self.base.get(strategy, 15.0) + self.per_mb * size_mb, self.ceiling)
        reserve = sum(self.floor.get(name, 1.0) for name in later)
        available = remaining - reserve
        # Never hand out less than this strategy's own floor, even if that eats the reserve.
        own_floor = min(self.floor.get(strategy, 1.0), max(remaining, 0.0))
        return max(min(wanted, available), own_floor)


@dataclass(frozen=True)
class Settings:
    data_dir: Path = Path("./data").resolve()
    output_dir: Path = Path("./data/generated-pdfs").resolve()
    workers: int = 2
    max_job_duration: float = 120.0
    large_document_bytes: int = 500 * 1024
    max_upload_mb: int = 10
    browser_executable: str | None = None
    strategies: tuple[str, ...] = DEFAULT_STRATEGIES
    timeouts: TimeoutPolicy = field(default_factory=TimeoutPolicy)

    @classmethod
    def from_env(cls) -> "Settings":
        data_dir = Path(os.getenv("DATA_DIR", "./data")).resolve()
        output_dir = Path(os.getenv("OUTPUT_DIR", str(data_dir / "generated-pdfs"))).resolve()
        raw_strategies = os.getenv("RENDER_STRATEGIES", ",".join(DEFAULT_STRATEGIES))
        strategies = tuple(s.strip().lower() for s in raw_strategies.split(",") if s.strip())
        unknown = set(strategies) - set(DEFAULT_STRATEGIES)
        if unknown:
            raise ValueError(f"unknown render strategies: {', '.join(sorted(unknown))}")
        return cls(
            data_dir=data_dir,
            output_dir=output_dir,
            workers=_env_int("WORKERS", 2),
            max_job_duration=float(os.getenv("MAX_JOB_DURATION_SEC", "120")),
            large_document_bytes=_env_int("LARGE_DOCUMENT_BYTES", 500 * 1024),
            max_upload_mb=_env_int("MAX_UPLOAD_MB", 10),
            browser_executable=os.getenv("CHROMIUM_EXECUTABLE_PATH") or None,
            strategies=strategies,
        )
