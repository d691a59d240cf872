import importlib.util
import json
import logging
import os
import shutil
import threading
from pathlib import Path
from typing import Callable

from .interfaces import BrowserDriver, BrowserHandle, BrowserLocator, LaunchProfile, PrintOptions, StorageGateway

logger = logging.getLogger(__name__)


class LocalStorage(StorageGateway):
    def __init__(self, data_dir: str) -> None:
        self._base = Path(data_dir).resolve()

    def job_dir(self, job_id: str) -> str:
        return str(self._base / "jobs" / job_id)

    def save_job(self, job: dict[str, object]) -> None:
        job_id = str(job["id"])  # type: ignore[index]
        p = Path(self.job_dir(job_id)) / "job.json"
        p.parent.mkdir(parents=True, exist_ok=True)
        # Write-then-rename so a crash never leaves a half-written record behind.
        tmp = p.with_suffix(".json.tmp")
        with tmp.open("w", encoding="utf-8") as f:
            json.dump(job, f, ensure_ascii=False, indent=2)
        os.replace(tmp, p)

    def load_job(self, job_id: str) -> dict[str, object]:
        p = Path(self.job_dir(job_id)) / "job.json"
        if not p.exists():
            raise FileNotFoundError("job not found")
        with p.open("r", encoding="utf-8") as f:
            return json.load(f)

    def list_jobs(self) -> list[dict[str, object]]:
        jobs_dir = self._base / "jobs"
        if not jobs_dir.exists():
            return []
        records: list[dict[str, object]] = []
        for p in jobs_dir.glob("*/job.json"):
            try:
                with p.open("r", encoding="utf-8") as f:
                    records.append(json.load(f))
            except (OSError, ValueError) as e:
                logger.warning("skipping unreadable job record %s: %s", p, e)
        return records


class MemoryStorage(StorageGateway):
    """Process-local storage. Records do not survive a restart."""

    def __init__(self) -> None:
        self._jobs: dict[str, dict[str, object]] = {}
        self._lock = threading.Lock()

    def save_job(self, job: dict[str, object]) -> None:
        with self._lock:
            self._jobs[str(job["id"])] = json.loads(json.dumps(job))

    def load_job(self, job_id: str) -> dict[str, object]:
        with self._lock:
            if job_id not in self._jobs:
                raise FileNotFoundError("job not found")
            return json.loads(json.dumps(self._jobs[job_id]))

    def list_jobs(self) -> list[dict[str, object]]:
        with self._lock:
            return [json.loads(json.dumps(j)) for j in self._jobs.values()]


FULL_PROFILE = LaunchProfile("full", (
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--no-first-run",
    "--no-zygote",
    "--single-process",
    "--disable-gpu",
    "--disable-background-timer-throttling",
    "--disable-backgrounding-occluded-windows",
    "--disable-renderer-backgrounding",
    "--disable-features=TranslateUI,VizDisplayCompositor",
    "--disable-extensions",
    "--disable-plugins",
    "--font-render-hinting=none",
))
MINIMAL_PROFILE = LaunchProfile("minimal", (
    "--no-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
))
BARE_PROFILE = LaunchProfile("bare", ())
LAUNCH_PROFILES = (FULL_PROFILE, MINIMAL_PROFILE, BARE_PROFILE)

BROWSER_NAMES = ("chromium", "chromium-browser", "google-chrome", "google-chrome-stable", "chrome")
BROWSER_PATHS = (
    "/usr/bin/chromium",
    "/usr/bin/chromium-browser",
    "/usr/bin/google-chrome",
    "/snap/bin/chromium",
    "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
)


class SystemBrowserLocator(BrowserLocator):
    """Finds browsers the automation layer might be able to drive.

    Order: explicitly configured executable, the automation library's bundled
    build, then executables on PATH and well-known install locations.
    """

    def __init__(
        self,
        configured: str | None = None,
        *,
        which: Callable[[str], str | None] = shutil.which,
        exists: Callable[[str], bool] = os.path.exists,
        bundled_available: Callable[[], bool] | None = None,
    ) -> None:
        self._configured = configured
        self._which = which
        self._exists = exists
        self._bundled_available = bundled_available or self._playwright_installed

    @staticmethod
    def _playwright_installed() -> bool:
        return importlib.util.find_spec("playwright") is not None

    def candidates(self) -> list[BrowserHandle]:
        found: list[BrowserHandle] = []
        seen: set[str] = set()

        def add(label: str, path: str | None) -> None:
            key = path or "<bundled>"
            if key not in seen:
                seen.add(key)
                found.append(BrowserHandle(label, path))

        if self._configured:
            if self._exists(self._configured):
                add("configured", self._configured)
            else:
                logger.warning("configured browser executable %s does not exist", self._configured)
        if self._bundled_available():
            add("bundled", None)
        for name in BROWSER_NAMES:
            path = self._which(name)
            if path:
                add(f"path:{name}", path)
        for path in BROWSER_PATHS:
            if self._exists(path):
                add("system", path)
        return found


class PlaywrightDriver(BrowserDriver):
    async def print_pdf(
        self,
        html: str,
        handle: BrowserHandle,
        profile: LaunchProfile,
        options: PrintOptions,
        *,
        timeout: float,
    ) -> bytes:
        from playwright.async_api import async_playwright

        timeout_ms = max(int(timeout * 1000), 1000)
        # Leaving the context manager stops the driver, which kills the browser
        # process even when we are being cancelled.
        async with async_playwright() as p:
            browser = await p.chromium.launch(
                headless=True,
                executable_path=handle.executable,
                args=list(profile.args),
                timeout=timeout_ms,
                chromium_sandbox=False,
            )
            try:
                page = await browser.new_page()
                page.set_default_timeout(timeout_ms)
                await page.set_content(html, wait_until="load", timeout=timeout_ms)
                await page.emulate_media(media="print")
                return await page.pdf(
                    format=options.page_size,
                    landscape=options.landscape,
                    margin={
                        "top": f"{options.margin_top_mm}mm",
                        "right": f"{options.margin_side_mm}mm",
                        "bottom": f"{options.margin_top_mm}mm",
                        "left": f"{options.margin_side_mm}mm",
                    },
                    print_background=True,
                    prefer_css_page_size=True,
                )
            finally:
                await browser.close()
