"""
codemark/services/analysis_provider.py
HTTP client for the external static-analysis provider

Contract:
    POST {base}/api/analyses   multipart payload + project_key  -> {"job_id": "..."}
    GET  {base}/api/analyses/{job_id}                            -> {"status": ..., "metrics": {...},
                                                                     "files": {path: {...}}, "error": ...}
"""
import logging
import re
from dataclasses import dataclass, field
from enum import Enum as PyEnum
from pathlib import Path
from typing import Dict, Any, Optional

import httpx

from codemark.config import settings
from codemark.orm.submission import Submission

logger = logging.getLogger(__name__)


class AnalysisProviderError(Exception):
    """Raised when the provider cannot be reached or answers with an error."""
    pass


class ProviderJobStatus(str, PyEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    SUCCESS = "success"
    FAILED = "failed"


TERMINAL_JOB_STATUSES = frozenset({ProviderJobStatus.SUCCESS, ProviderJobStatus.FAILED})


@dataclass
class ProviderJob:
    """One status observation of a provider job."""
    job_id: str
    status: ProviderJobStatus
    metrics: Dict[str, Any] = field(default_factory=dict)
    files: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_JOB_STATUSES

    @property
    def succeeded(self) -> bool:
        return self.status == ProviderJobStatus.SUCCESS

    @classmethod
    def from_payload(cls, job_id: str, payload: Dict[str, Any]) -> "ProviderJob":
        try:
            status = ProviderJobStatus(str(payload.get("status", "")).lower())
        except ValueError:
            raise AnalysisProviderError(f"Unknown job status {payload.get('status')!r} for job {job_id}")
        return cls(
            job_id=job_id,
            status=status,
            metrics=payload.get("metrics") or {},
            files=payload.get("files") or {},
            error=payload.get("error"),
        )


def build_project_key(submission: Submission) -> str:
    """Provider-side project key; only [A-Za-z0-9_] survive."""
    raw = f"{submission.owner_id}_{submission.project_id}_{submission.id}"
    return re.sub(r"[^A-Za-z0-9]", "_", raw)


class AnalysisProvider:
    """Thin async client. One short-lived httpx.AsyncClient per call."""

    def __init__(
        self,
        base_url: str,
        token: str = "",
        source_name: str = "sonarqube",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.source_name = source_name
        self.timeout = timeout
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def submit(self, submission: Submission) -> str:
        """Upload the stored payload and return the provider job id."""
        payload_path = Path(submission.storage_path)
        project_key = build_project_key(submission)

        try:
            with open(payload_path, "rb") as payload:
                async with self._client() as client:
                    response = await client.post(
                        f"{self.base_url}/api/analyses",
                        headers=self._headers(),
                        data={
                            "project_key": project_key,
                            "language": submission.language or "",
                            "kind": submission.kind.value,
                        },
                        files={"file": (submission.file_name, payload, "application/octet-stream")},
                    )
                    response.raise_for_status()
                    body = response.json()
        except OSError as e:
            raise AnalysisProviderError(f"Stored payload unreadable: {e}")
        except httpx.HTTPError as e:
            logger.error(f"Provider submit failed for submission {submission.id}: {str(e)}")
            raise AnalysisProviderError(f"Provider request failed: {e}")
        except ValueError:
            raise AnalysisProviderError("Provider returned a non-JSON response")

        job_id = body.get("job_id") if isinstance(body, dict) else None
        if not job_id:
            raise AnalysisProviderError("Provider response did not include a job id")

        logger.info(f"Submission {submission.id} sent to {self.source_name} as job {job_id} ({project_key})")
        return str(job_id)

    async def get_status(self, job_id: str) -> ProviderJob:
        """Fetch the current state of a provider job."""
        try:
            async with self._client() as client:
                response = await client.get(
                    f"{self.base_url}/api/analyses/{job_id}",
                    headers=self._headers(),
                )
                response.raise_for_status()
                body = response.json()
        except httpx.HTTPError as e:
            logger.error(f"Provider status check failed for job {job_id}: {str(e)}")
            raise AnalysisProviderError(f"Provider request failed: {e}")
        except ValueError:
            raise AnalysisProviderError("Provider returned a non-JSON response")

        if not isinstance(body, dict):
            raise AnalysisProviderError("Provider returned an unexpected payload")

        return ProviderJob.from_payload(job_id, body)


_provider: Optional[AnalysisProvider] = None


def get_analysis_provider() -> AnalysisProvider:
    """FastAPI dependency returning the shared provider client."""
    global _provider
    if _provider is None:
        _provider = AnalysisProvider(
            base_url=settings.ANALYSIS_PROVIDER_URL,
            token=settings.ANALYSIS_PROVIDER_TOKEN,
            source_name=settings.ANALYSIS_PROVIDER_NAME,
            timeout=settings.ANALYSIS_REQUEST_TIMEOUT,
        )
    return _provider
