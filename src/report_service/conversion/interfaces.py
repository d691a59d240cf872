from dataclasses import dataclass
from typing import Protocol


class StorageGateway(Protocol):
    def save_job(self, job: dict[str, object]) -> None:
        ...

    def load_job(self, job_id: str) -> dict[str, object]:
        """Return the stored record or raise FileNotFoundError."""

    def list_jobs(self) -> list[dict[str, object]]:
        ...


@dataclass(frozen=True)
class BrowserHandle:
    """A browser the driver can try to launch.

    ``executable`` of None means the automation library's bundled build.
    """

    label: str
    executable: str | None = None


@dataclass(frozen=True)
class LaunchProfile:
    name: str
    args: tuple[str, ...]


@dataclass(frozen=True)
class PrintOptions:
    page_size: str
    landscape: bool
    margin_top_mm: float
    margin_side_mm: float


class BrowserLocator(Protocol):
    def candidates(self) -> list[BrowserHandle]:
        """Browsers worth trying, best first. Empty when none is usable."""


class BrowserDriver(Protocol):
    async def print_pdf(
        self,
        html: str,
        handle: BrowserHandle,
        profile: LaunchProfile,
        options: PrintOptions,
        *,
        timeout: float,
    ) -> bytes:
        """Paint ``html`` in a headless browser and return the PDF bytes.

        Implementations must release the browser process when cancelled.
        """
