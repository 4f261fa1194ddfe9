"""Audit queue API: submit audits, poll jobs, cancel, inspect the queue."""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from app.audit.validation import validate_audit_url
from app.config import settings
from app.jobs.errors import InvalidSubmissionError
from app.jobs.models import JobPriority, JobSnapshot, JobStatus

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"

router = APIRouter()

# Set by main.py during lifespan
_dispatcher = None


def set_dispatcher(dispatcher):
    global _dispatcher
    _dispatcher = dispatcher


def _require_dispatcher():
    if _dispatcher is None:
        raise HTTPException(status_code=503, detail="Audit queue not initialized")
    return _dispatcher


class QueueAuditRequest(BaseModel):
    url: Any = None
    priority: Any = JobPriority.NORMAL
    options: Any = None


class BatchQueueRequest(BaseModel):
    urls: Any = None
    priority: Any = JobPriority.NORMAL
    options: Any = None


class QueuedJob(BaseModel):
    job_id: str
    url: str
    status: str
    position: int
    estimated_wait: float
    duplicate: bool


class QueueAuditResponse(QueuedJob):
    message: str
    check_status_url: str


class BatchQueueResponse(BaseModel):
    message: str
    jobs: List[QueuedJob]
    batch_id: str
    check_status_url: str


def _job_url(job_id: str) -> str:
    return f"{API_PREFIX}/audit/job/{job_id}"


def _parse_priority(value: Any) -> JobPriority:
    try:
        return JobPriority.coerce(value)
    except ValueError:
        raise HTTPException(
            status_code=400,
            detail={
                "error": "Invalid priority",
                "valid_priorities": {p.label: p.value for p in JobPriority},
            },
        )


def _parse_options(value: Any) -> Dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise HTTPException(
            status_code=400,
            detail={"error": "Invalid options", "details": ["options must be an object"]},
        )
    return value


async def _submit(url: str, options: Optional[Dict[str, Any]], priority: JobPriority) -> QueuedJob:
    try:
        info = await _require_dispatcher().submit(url, options, priority)
    except InvalidSubmissionError as exc:
        raise HTTPException(status_code=400, detail=exc.to_detail())
    return QueuedJob(
        job_id=info.job_id,
        url=url,
        status=info.status.value,
        position=info.position,
        estimated_wait=info.estimated_wait,
        duplicate=info.duplicate,
    )


@router.post("/audit/queue", response_model=QueueAuditResponse, status_code=202)
async def queue_audit(request: QueueAuditRequest):
    """Queue a single audit. Returns immediately with the job id."""
    _require_dispatcher()
    if request.url is None or request.url == "":
        raise HTTPException(status_code=400, detail={"error": "URL is required"})

    validation = validate_audit_url(request.url)
    if not validation.is_valid:
        raise HTTPException(
            status_code=400,
            detail={"error": "Invalid URL", "details": validation.errors},
        )
    priority = _parse_priority(request.priority)
    options = _parse_options(request.options)

    job = await _submit(request.url, options, priority)
    return QueueAuditResponse(
        **job.model_dump(),
        message="Audit job queued successfully",
        check_status_url=_job_url(job.job_id),
    )


@router.get("/audit/queue/status")
async def queue_status():
    """Queue depth, capacity, statistics and per-priority backlog."""
    status = await _require_dispatcher().get_status()
    response = status.model_dump()
    response["timestamp"] = datetime.now(timezone.utc).isoformat()
    return response


@router.get("/audit/job/{job_id}")
async def get_audit_job(job_id: str):
    """Get the current status of a job, with fields relevant to that status."""
    job = await _require_dispatcher().get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return _job_response(job)


@router.delete("/audit/job/{job_id}")
async def cancel_audit_job(job_id: str):
    """Cancel a job that has not started yet."""
    cancelled = await _require_dispatcher().cancel(job_id)
    if not cancelled:
        raise HTTPException(
            status_code=404,
            detail={
                "error": "Job not found or cannot be cancelled",
                "details": "Job may have already started processing or completed",
            },
        )
    return {"message": "Job cancelled successfully", "job_id": job_id}


@router.post("/audit/batch/queue", response_model=BatchQueueResponse, status_code=202)
async def queue_batch(request: BatchQueueRequest):
    """Queue one audit per URL. Every URL is validated before any is queued."""
    _require_dispatcher()
    urls = request.urls
    if not urls or not isinstance(urls, list):
        raise HTTPException(status_code=400, detail={"error": "URLs array is required"})
    if len(urls) > settings.batch_max_urls:
        raise HTTPException(
            status_code=400,
            detail={"error": f"Maximum {settings.batch_max_urls} URLs allowed per batch"},
        )

    invalid = []
    for url in urls:
        validation = validate_audit_url(url)
        if not validation.is_valid:
            invalid.append({"url": url, "errors": validation.errors})
    if invalid:
        raise HTTPException(
            status_code=400,
            detail={"error": "Invalid URLs found", "invalid_urls": invalid},
        )
    priority = _parse_priority(request.priority)
    options = _parse_options(request.options)

    logger.info("Adding %d audit jobs to queue (priority: %s)", len(urls), priority.label)
    jobs = [await _submit(url, options, priority) for url in urls]
    return BatchQueueResponse(
        message=f"{len(jobs)} audit jobs queued successfully",
        jobs=jobs,
        batch_id=f"batch_{uuid.uuid4().hex[:12]}",
        check_status_url=f"{API_PREFIX}/audit/queue/status",
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _job_response(job: JobSnapshot) -> Dict[str, Any]:
    response = {
        "id": job.id,
        "url": job.url,
        "status": job.status.value,
        "priority": job.priority.label,
        "created_at": _isoformat(job.created_at),
        "updated_at": _isoformat(job.updated_at),
        "attempts": job.attempts,
        "max_attempts": job.max_attempts,
    }

    if job.status == JobStatus.PENDING:
        response["position"] = job.position
        response["estimated_wait"] = job.estimated_wait
    elif job.status == JobStatus.PROCESSING:
        response["started_at"] = _isoformat(job.started_at)
        response["estimated_duration"] = job.estimated_duration
    elif job.status == JobStatus.COMPLETED:
        response["result"] = job.result
        response["processing_time"] = job.processing_time
        response["completed_at"] = _isoformat(job.completed_at)
    else:
        response["error"] = job.error
        response["completed_at"] = _isoformat(job.completed_at)

    return response
