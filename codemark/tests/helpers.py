"""
Test doubles and identities shared across the suite.
"""
from typing import Dict, Optional

from codemark.rbac import Identity, UserRole, create_access_token
from codemark.services.analysis_provider import (
    AnalysisProvider, AnalysisProviderError, ProviderJob, ProviderJobStatus
)

STUDENT = Identity(user_id=101, role=UserRole.student, email="student@test.com")
OTHER_STUDENT = Identity(user_id=102, role=UserRole.student, email="other@test.com")
TUTOR = Identity(user_id=201, role=UserRole.tutor, email="tutor@test.com")
MANAGER = Identity(user_id=301, role=UserRole.manager, email="manager@test.com")

GOOD_METRICS = {
    "bugs": "0",
    "vulnerabilities": "0",
    "code_smells": "0",
    "duplicated_lines_density": "0.0",
    "reliability_rating": "1.0",
    "security_rating": "1.0",
    "sqale_rating": "1.0",
    "complexity": "0",
    "ncloc": "120",
    "comment_lines_density": "40.0",
}


class FakeProvider(AnalysisProvider):
    """Scripted provider: jobs stay pending until the test completes them."""

    def __init__(self):
        super().__init__(base_url="http://provider.test", source_name="fake-sonar")
        self.submitted = []
        self.jobs: Dict[str, ProviderJob] = {}
        self.status_calls = 0
        self.fail_submit = False
        self.fail_status = False

    async def submit(self, submission) -> str:
        if self.fail_submit:
            raise AnalysisProviderError("provider unavailable")
        job_id = f"job-{len(self.submitted) + 1}"
        self.submitted.append(submission.id)
        self.jobs[job_id] = ProviderJob(job_id=job_id, status=ProviderJobStatus.PENDING)
        return job_id

    async def get_status(self, job_id: str) -> ProviderJob:
        self.status_calls += 1
        if self.fail_status:
            raise AnalysisProviderError("status endpoint down")
        return self.jobs[job_id]

    def complete(self, job_id: str, metrics: Optional[dict] = None, files: Optional[dict] = None):
        self.jobs[job_id] = ProviderJob(
            job_id=job_id,
            status=ProviderJobStatus.SUCCESS,
            metrics=GOOD_METRICS if metrics is None else metrics,
            files=files or {},
        )

    def fail(self, job_id: str, error: str = "analysis crashed"):
        self.jobs[job_id] = ProviderJob(job_id=job_id, status=ProviderJobStatus.FAILED, error=error)


def auth_headers(identity: Identity) -> Dict[str, str]:
    token = create_access_token(identity.user_id, identity.role, email=identity.email)
    return {"Authorization": f"Bearer {token}"}
