"""
HTTP API Tests
"""
import json
import time

import pytest
from fastapi.testclient import TestClient

from report_service import webapi
from report_service.conversion.adapters import MemoryStorage
from report_service.conversion.models import JobStatus, RenderConfig
from report_service.conversion.service import build_service
from report_service.conversion.settings import Settings

from conftest import FakeDriver, FakeLocator, report_html


@pytest.fixture
def client(tmp_path, monkeypatch):
    """Test client with a fake browser and in-memory job records"""
    settings = Settings(data_dir=tmp_path, output_dir=tmp_path / "out", workers=1, max_upload_mb=1)
    monkeypatch.setattr(webapi, "SETTINGS", settings)
    monkeypatch.setattr(
        webapi,
        "build_service",
        lambda s: build_service(s, storage=MemoryStorage(), locator=FakeLocator(), driver=FakeDriver()),
    )
    with TestClient(webapi.app) as c:
        yield c


def upload(html: str, name: str = "statement.html", mime: str = "text/html"):
    return {"htmlFile": (name, html.encode("utf-8"), mime)}


def wait_for(client, job_id: str, timeout: float = 10.0) -> dict:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        body = client.get(f"/api/job/{job_id}").json()
        if body["status"] in (JobStatus.COMPLETED, JobStatus.FAILED):
            return body
        time.sleep(0.05)
    raise AssertionError(f"job {job_id} did not finish")


class TestHealth:
    """Test service health"""

    def test_health(self, client):
        """Should report ok"""
        assert client.get("/health").json() == {"status": "ok"}


class TestAnalyze:
    """Test pre-conversion analysis endpoint"""

    def test_analyze(self, client):
        """Should summarise the uploaded report"""
        res = client.post("/api/analyze", files=upload(report_html(tables=3)))
        assert res.status_code == 200
        body = res.json()
        assert body["table_count"] == 3
        assert body["estimated_pages"] == "1"

    def test_rejects_non_html(self, client):
        """Should only accept HTML uploads"""
        res = client.post("/api/analyze", files=upload("hello", name="notes.txt", mime="text/plain"))
        assert res.status_code == 415
        assert res.json()["detail"]["code"] == "unsupported_media_type"


class TestConvert:
    """Test job submission, status and download"""

    def test_convert_and_download(self, client):
        """Should queue, complete and serve the PDF"""
        config = json.dumps({"pageSize": "Letter", "orientation": "landscape"})
        res = client.post("/api/convert", files=upload(report_html(tables=5)), data={"config": config})
        assert res.status_code == 202
        job_id = res.json()["jobId"]
        assert res.headers["Location"] == f"/api/job/{job_id}"

        job = wait_for(client, job_id)
        assert job["status"] == JobStatus.COMPLETED
        assert job["strategy"] == "browser"
        assert job["config"]["page_size"] == "Letter"
        assert "document" not in job

        pdf = client.get(f"/api/download/{job_id}")
        assert pdf.status_code == 200
        assert pdf.headers["content-type"] == "application/pdf"
        assert "statement.pdf" in pdf.headers["content-disposition"]
        assert pdf.content.startswith(b"%PDF-")

    def test_htm_extension_accepted(self, client):
        """Should accept .htm files sent with a generic content type"""
        res = client.post("/api/convert", files=upload(report_html(tables=1), name="old.htm", mime="application/octet-stream"))
        assert res.status_code == 202

    def test_missing_file(self, client):
        """Should refuse a request without an HTML file"""
        res = client.post("/api/convert", data={"config": "{}"})
        assert res.status_code == 400
        assert res.json()["detail"]["code"] == "missing_file"

    def test_empty_file(self, client):
        """Should refuse an empty upload"""
        res = client.post("/api/convert", files=upload(""))
        assert res.status_code == 400

    def test_too_large(self, client):
        """Should refuse uploads above the configured limit"""
        res = client.post("/api/convert", files=upload("<p>" + "x" * (2 * 1024 * 1024) + "</p>"))
        assert res.status_code == 413

    def test_bad_config(self, client):
        """Should reject malformed or out-of-range settings"""
        res = client.post("/api/convert", files=upload(report_html()), data={"config": "{not json"})
        assert res.status_code == 400
        res = client.post("/api/convert", files=upload(report_html()), data={"config": json.dumps({"marginTop": 50})})
        assert res.status_code == 422
        assert res.json()["detail"]["code"] == "invalid_config"

    def test_unknown_job(self, client):
        """Should return 404 for unknown jobs"""
        assert client.get("/api/job/nope").status_code == 404
        assert client.get("/api/download/nope").status_code == 404

    def test_download_before_completion(self, client):
        """Should refuse to serve a job that has not finished"""
        job = webapi.SERVICE.store.create("queued.html", "<p>x</p>", RenderConfig())
        res = client.get(f"/api/download/{job.id}")
        assert res.status_code == 423
        assert res.json()["detail"]["code"] == "not_ready"

    def test_recent(self, client):
        """Should list the five most recent jobs, newest first"""
        ids = []
        for i in range(6):
            res = client.post("/api/convert", files=upload(report_html(tables=1), name=f"{i}.html"))
            ids.append(res.json()["jobId"])
            time.sleep(0.002)
        recent = client.get("/api/recent").json()
        assert len(recent) == 5
        assert [j["id"] for j in recent] == list(reversed(ids))[:5]
