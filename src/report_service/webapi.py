import json
import logging
import os
from pathlib import Path

from fastapi import FastAPI, File, Form, HTTPException, UploadFile, status
from fastapi.responses import FileResponse, JSONResponse

from report_service import __version__
from report_service.conversion import ConversionService, JobStatus, RenderConfig, Settings, build_service
from report_service.conversion.analysis import analyze
from report_service.conversion.isolation import run_isolated

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Report PDF Service",
    version=os.getenv("REPORT_SERVICE_VERSION", __version__),
    description=(
        "RESTful API for converting HTML account reports into paginated, "
        "print-ready PDFs."
    ),
)

SETTINGS = Settings.from_env()
SERVICE: ConversionService | None = None

HTML_SUFFIXES = (".html", ".htm")
HTML_MIME = {"text/html", "application/xhtml+xml"}
CHUNK = 1024 * 1024
RECENT_LIMIT = 5


@app.get("/health")
def health() -> dict[str, str]:
    """Basic health check endpoint."""
    return {"status": "ok"}


@app.on_event("startup")
async def _startup() -> None:
    global SERVICE
    SETTINGS.data_dir.mkdir(parents=True, exist_ok=True)
    SETTINGS.output_dir.mkdir(parents=True, exist_ok=True)
    SERVICE = build_service(SETTINGS)
    await SERVICE.start()
    logger.info("report service started with strategies %s", ", ".join(SETTINGS.strategies))


@app.on_event("shutdown")
async def _shutdown() -> None:
    global SERVICE
    if SERVICE is not None:
        await SERVICE.stop()


def _service() -> ConversionService:
    if SERVICE is None:
        raise HTTPException(status_code=503, detail={"code": "unavailable", "message": "service not started"})
    return SERVICE


def _is_html(file: UploadFile) -> bool:
    name = (file.filename or "").lower()
    return name.endswith(HTML_SUFFIXES) or (file.content_type or "").split(";")[0].strip() in HTML_MIME


async def _read_html(file: UploadFile | None) -> tuple[str, str]:
    """Return (filename, text) for an uploaded HTML file, enforcing type and size."""
    if file is None:
        raise HTTPException(status_code=400, detail={"code": "missing_file", "message": "No HTML file provided"})
    if not _is_html(file):
        raise HTTPException(
            status_code=415,
            detail={"code": "unsupported_media_type", "message": "Only HTML files (.html, .htm) are allowed"},
        )

    max_bytes = SETTINGS.max_upload_mb * 1024 * 1024
    chunks: list[bytes] = []
    size_bytes = 0
    while True:
        chunk = await file.read(CHUNK)
        if not chunk:
            break
        size_bytes += len(chunk)
        if size_bytes > max_bytes:
            raise HTTPException(
                status_code=413,
                detail={"code": "payload_too_large", "message": f"upload exceeds {SETTINGS.max_upload_mb} MB"},
            )
        chunks.append(chunk)
    if size_bytes == 0:
        raise HTTPException(status_code=400, detail={"code": "empty_file", "message": "The uploaded file is empty"})

    return file.filename or "report.html", b"".join(chunks).decode("utf-8", errors="replace")


def _parse_config(raw: str | None) -> RenderConfig:
    if not raw:
        return RenderConfig()
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise HTTPException(status_code=400, detail={"code": "invalid_config", "message": f"config is not valid JSON: {e.msg}"})
    if not isinstance(data, dict):
        raise HTTPException(status_code=400, detail={"code": "invalid_config", "message": "config must be a JSON object"})
    try:
        return RenderConfig.from_dict(data)
    except (TypeError, ValueError) as e:
        raise HTTPException(status_code=422, detail={"code": "invalid_config", "message": str(e)})


@app.post("/api/analyze")
async def analyze_document(htmlFile: UploadFile | None = File(None)) -> JSONResponse:
    """Summarise an uploaded report before conversion (tables, pages, size)."""
    _, html = await _read_html(htmlFile)
    summary = await run_isolated(analyze, html)
    return JSONResponse(content=summary.to_dict())


@app.post("/api/convert", status_code=status.HTTP_202_ACCEPTED)
async def convert(htmlFile: UploadFile | None = File(None), config: str | None = Form(None)) -> JSONResponse:
    """Queue a conversion job for an uploaded HTML report.

    Accepts multipart/form-data with a required ``htmlFile`` part and an
    optional ``config`` part holding the render settings as JSON.
    Returns 202 Accepted with the job id; poll ``/api/job/{id}`` for progress.
    """
    service = _service()
    filename, html = await _read_html(htmlFile)
    render_config = _parse_config(config)

    job = await service.submit(filename, html, render_config)
    body = {
        "jobId": job.id,
        "status": job.status,
        "links": {
            "self": f"/api/job/{job.id}",
            "download": f"/api/download/{job.id}",
        },
    }
    headers = {"Location": f"/api/job/{job.id}"}
    return JSONResponse(status_code=status.HTTP_202_ACCEPTED, content=body, headers=headers)


@app.get("/api/job/{job_id}")
async def get_job(job_id: str) -> JSONResponse:
    service = _service()
    try:
        job = service.load_job(job_id)
    except FileNotFoundError:
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "Job not found"})
    return JSONResponse(content=job.public_dict())


@app.get("/api/download/{job_id}")
async def download(job_id: str) -> FileResponse:
    service = _service()
    try:
        job = service.load_job(job_id)
    except FileNotFoundError:
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "Job not found"})
    if job.status != JobStatus.COMPLETED:
        raise HTTPException(status_code=423, detail={"code": "not_ready", "message": f"job is {job.status}"})

    artifact = Path(str(job.artifact_path))
    if not artifact.exists():
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "PDF file not found"})

    download_name = f"{Path(job.filename).stem or 'report'}{artifact.suffix}"
    media_type = "application/pdf" if artifact.suffix == ".pdf" else "text/plain"
    return FileResponse(artifact, media_type=media_type, filename=download_name)


@app.get("/api/recent")
async def recent() -> JSONResponse:
    service = _service()
    return JSONResponse(content=[job.public_dict() for job in service.recent_jobs(RECENT_LIMIT)])


def run() -> None:
    """Run a development ASGI server using uvicorn.

    Exposes the app at host:port (default 0.0.0.0:8080). Set PORT env var to override.
    """
    import uvicorn

    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8080"))
    # Enable reload in dev unless explicitly disabled
    reload = os.getenv("RELOAD", "true").lower() in {"1", "true", "yes", "on"}

    uvicorn.run("report_service.webapi:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    run()
