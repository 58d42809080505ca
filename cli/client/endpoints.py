"""API Endpoint Wrappers - Type-safe API calls"""

from typing import Any

from .base import APIClient, RelayError
from ..utils.config_manager import config

__all__ = ["RelayClient", "RelayError"]


class RelayClient:
    """High-level client with typed endpoint methods"""

    def __init__(
        self,
        base_url: str | None = None,
        headers: dict[str, str] | None = None,
    ):
        # Use config values if not provided
        api_config = config.load_config().get("api", {})
        final_base_url = base_url or api_config.get("base_url", "http://localhost:8000")
        final_headers = dict(headers or api_config.get("headers") or {})

        admin_token = api_config.get("admin_token")
        if admin_token and "X-Admin-Token" not in final_headers:
            final_headers["X-Admin-Token"] = str(admin_token)

        self.api = APIClient(
            base_url=final_base_url,
            timeout=int(api_config.get("timeout", 30)),
            headers=final_headers,
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

    # Queue Endpoints
    def get_queue_stats(self, recent_limit: int | None = None) -> dict[str, Any]:
        """Get queue counts, heartbeats and recent errors"""
        params = {"recent_limit": recent_limit} if recent_limit else None
        return self.api.get("/queue/stats", params)

    # Job Endpoints
    def list_jobs(
        self,
        status: list[str] | None = None,
        job_type: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> dict[str, Any]:
        """List jobs with filters"""
        params: dict[str, Any] = {"limit": limit, "offset": offset}
        if status:
            params["status"] = status
        if job_type:
            params["job_type"] = job_type
        return self.api.get("/jobs", params)

    def get_job(self, job_id: int) -> dict[str, Any]:
        """Get specific job by ID"""
        return self.api.get(f"/jobs/{job_id}")

    def replay_job(self, job_id: int) -> dict[str, Any]:
        """Replay a dead job as new pending work"""
        return self.api.post(f"/jobs/{job_id}/replay")
