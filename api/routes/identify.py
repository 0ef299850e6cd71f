"""
Identification routes
Handles card image upload, identification and execution lookup
"""

import logging
import re
import shutil
import uuid
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile

from api.models import ExecutionInfo, QueueStatusResponse, StageSummary
from api.services.queue import get_queue_status, run_with_concurrency_control
from api.services.rate_limiter import limiter
from card_valuation.config import API_RATE_LIMIT, IMAGE_STORE_DIR
from card_valuation.errors import FatalPipelineError
from card_valuation.models import IdentificationResult, ReasoningHints, Stage
from card_valuation.workflow.coordinator import WorkflowCoordinator

logger = logging.getLogger(__name__)

router = APIRouter()

ALLOWED_EXTENSIONS = {'.jpg', '.jpeg', '.png', '.webp', '.gif', '.tif', '.tiff', '.bmp'}
EXECUTION_ID_PATTERN = re.compile(r"[A-Za-z0-9_-]{1,64}")


def get_coordinator(request: Request) -> WorkflowCoordinator:
    """Coordinator built once at startup (see api.main.lifespan)"""
    return request.app.state.coordinator


def get_upload_dir() -> Path:
    upload_dir = IMAGE_STORE_DIR / "uploads"
    upload_dir.mkdir(parents=True, exist_ok=True)
    return upload_dir


@router.post("/identify", response_model=IdentificationResult)
@limiter.limit(API_RATE_LIMIT)
async def identify_card(
    request: Request,  # Required for rate limiter
    file: UploadFile = File(...),
    expected_set: Optional[str] = Form(None),
    expected_rarity: Optional[str] = Form(None),
    execution_id: Optional[str] = Form(None),
    force_refresh: bool = Form(False),
    coordinator: WorkflowCoordinator = Depends(get_coordinator),
    upload_dir: Path = Depends(get_upload_dir)
):
    """
    Identify and value one card image

    Args:
        file: Card photo
        expected_set: Optional set hint passed to reasoning
        expected_rarity: Optional rarity hint passed to reasoning
        execution_id: Resume an earlier execution
        force_refresh: Bypass cached prices

    Returns:
        IdentificationResult with status SUCCEEDED, PARTIAL or FAILED
    """
    suffix = Path(file.filename or "").suffix.lower()
    if suffix not in ALLOWED_EXTENSIONS:
        raise HTTPException(status_code=400, detail=f"Unsupported file type: {suffix or 'none'}")

    execution_id = execution_id or uuid.uuid4().hex
    if not EXECUTION_ID_PATTERN.fullmatch(execution_id):
        raise HTTPException(status_code=400, detail="Invalid execution_id")

    image_path = upload_dir / f"{execution_id}{suffix}"
    if not image_path.resolve().is_relative_to(upload_dir.resolve()):
        raise HTTPException(status_code=400, detail="Invalid execution_id")
    with open(image_path, "wb") as buffer:
        shutil.copyfileobj(file.file, buffer)

    hints = None
    if expected_set or expected_rarity:
        hints = ReasoningHints(expected_set=expected_set, expected_rarity=expected_rarity)

    try:
        return await run_with_concurrency_control(
            execution_id,
            coordinator.identify,
            str(image_path.resolve()),
            hints=hints,
            execution_id=execution_id,
            force_refresh=force_refresh,
        )
    except FatalPipelineError as e:
        logger.warning(f"Identification {execution_id} rejected: {e}")
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/executions/{execution_id}", response_model=ExecutionInfo)
async def get_execution(execution_id: str, coordinator: WorkflowCoordinator = Depends(get_coordinator)):
    """Stored execution with per-stage status"""
    execution = coordinator.store.get(execution_id)
    if execution is None:
        raise HTTPException(status_code=404, detail="Execution not found")

    aggregated = execution.completed(Stage.AGGREGATING)
    return ExecutionInfo(
        execution_id=execution.id,
        image_ref=execution.input.image_ref,
        status=execution.status,
        created_at=execution.created_at,
        updated_at=execution.updated_at,
        stages=[
            StageSummary(
                stage=r.stage, status=r.status, attempts=r.attempts, error=r.error, completed_at=r.completed_at
            )
            for r in execution.stage_results.values()
        ],
        result=IdentificationResult.model_validate(aggregated.output) if aggregated else None,
    )


@router.get("/queue/status", response_model=QueueStatusResponse)
async def queue_status():
    """Identification queue occupancy for monitoring"""
    status = get_queue_status()
    return QueueStatusResponse(
        active=status.active,
        waiting=status.waiting,
        max_concurrent=status.max_concurrent,
        available_slots=status.available_slots,
    )
