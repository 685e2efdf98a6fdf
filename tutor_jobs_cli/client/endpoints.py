"""API Endpoint Wrappers - Typed API calls"""

from typing import Any

import httpx

from .base import APIClient, TutorJobsError
from ..utils.config_manager import config

__all__ = ["TutorJobsClient", "TutorJobsError"]


class TutorJobsClient:
    """High-level client with typed endpoint methods"""

    def __init__(
        self,
        base_url: str | None = None,
        headers: dict[str, str] | None = None,
        cron_secret: str | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        # Use config values if not provided
        api_config = config.load_config().get("api", {})
        final_base_url = base_url or api_config.get("base_url", "http://localhost:8000")
        final_headers = headers or api_config.get("headers", {}) or {}
        self.cron_secret = cron_secret or api_config.get("cron_secret")

        self.api = APIClient(
            base_url=final_base_url,
            timeout=int(api_config.get("timeout", 30)),
            headers=final_headers,
            transport=transport,
        )

    def __enter__(self):
        self.api.__enter__()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.api.__exit__(exc_type, exc_val, exc_tb)

    # Health Check
    def health_check(self) -> dict[str, Any]:
        """Check API health status"""
        return self.api.get("/healthz")

    # Jobs Endpoints
    def enqueue_job(
        self,
        job_type: str,
        payload: dict[str, Any] | None = None,
        priority: int | None = None,
        delay_seconds: float = 0,
        max_attempts: int | None = None,
        run_now: bool = False,
    ) -> dict[str, Any]:
        """Enqueue a job"""
        body: dict[str, Any] = {
            "type": job_type,
            "payload": payload or {},
            "delay_seconds": delay_seconds,
            "run_now": run_now,
        }
        if priority is not None:
            body["priority"] = priority
        if max_attempts is not None:
            body["max_attempts"] = max_attempts
        return self.api.post("/jobs", json=body)

    def enqueue_batch(
        self, job_type: str, items: list[dict[str, Any]], priority: int | None = None
    ) -> dict[str, Any]:
        """Submit a batch job"""
        body: dict[str, Any] = {"type": job_type, "items": items}
        if priority is not None:
            body["priority"] = priority
        return self.api.post("/jobs/batch", json=body)

    def get_job(self, job_id: str) -> dict[str, Any]:
        """Get specific job by ID"""
        return self.api.get(f"/jobs/{job_id}")

    def cancel_job(self, job_id: str) -> dict[str, Any]:
        """Cancel a job that has not started"""
        return self.api.post(f"/jobs/{job_id}/cancel")

    def get_stats(self) -> dict[str, Any]:
        """Get job statistics"""
        return self.api.get("/jobs/stats/overview")

    def process_jobs(self, limit: int | None = None) -> dict[str, Any]:
        """Invoke the dispatch trigger"""
        params = {"limit": limit} if limit is not None else None
        headers = (
            {"Authorization": f"Bearer {self.cron_secret}"} if self.cron_secret else None
        )
        return self.api.post("/jobs/process", params=params, headers=headers)
