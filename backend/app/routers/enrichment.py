"""Enrichment trigger, review, preview, and progress routes."""

from fastapi import APIRouter, Depends, HTTPException, Path
from sqlalchemy.orm import Session

from app.ai.llm_provider import ProviderConfigurationError
from app.ai.provider_interface import GenerationProvider
from app.db.dependencies import get_db
from app.schemas.common import ApiResponse
from app.schemas.enrichment import (
    CommitPreviewRequest,
    EnrichmentRunDetail,
    EnrichmentRunRead,
    EnrichmentTriggerRequest,
    EnrichmentTriggerResult,
    NoteClassificationRead,
    NoteRelationshipRead,
    PreviewRead,
    PreviewRequest,
    ProgressRead,
)
from app.schemas.review import (
    BulkApproveRequest,
    BulkApproveResult,
    ClassificationStatusUpdate,
    RelationshipStatusUpdate,
)
from app.services.background_jobs import EnrichmentJob, EnrichmentWorker, get_enrichment_worker
from app.services.enrichment import (
    EnrichmentConflictError,
    create_enrichment_run,
    get_default_provider,
    get_enrichment_run,
    get_enrichment_run_detail,
)
from app.services.enrichment_cache import EnrichmentCache
from app.services.ephemeral_store import EphemeralStore, ProgressTracker, get_progress_tracker
from app.services.preview import commit_preview, get_preview_store, run_preview
from app.services.review import (
    ReviewConflictError,
    ReviewValidationError,
    bulk_approve_classifications,
    bulk_approve_relationships,
    update_classification_status,
    update_relationship_status,
)

router = APIRouter()


def get_generation_provider() -> GenerationProvider:
    """Resolve the configured provider, reporting missing credentials as 503."""

    try:
        return get_default_provider()
    except ProviderConfigurationError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc


def get_enrichment_cache() -> EnrichmentCache:
    return EnrichmentCache()


@router.post(
    "/teams/{team_id}/imports/{import_run_id}/enrich",
    response_model=ApiResponse[EnrichmentTriggerResult],
    status_code=202,
)
def trigger_enrichment(
    payload: EnrichmentTriggerRequest,
    team_id: str = Path(..., min_length=1),
    import_run_id: str = Path(..., min_length=1),
    db: Session = Depends(get_db),
    worker: EnrichmentWorker = Depends(get_enrichment_worker),
) -> ApiResponse[EnrichmentTriggerResult]:
    """Create an enrichment run and queue it for the background worker."""

    try:
        run = create_enrichment_run(
            db,
            import_run_id,
            team_id,
            created_by_user_id=payload.created_by_user_id,
            override_existing=payload.override_existing,
            player_character_names=payload.player_character_names,
        )
    except EnrichmentConflictError as exc:
        raise HTTPException(
            status_code=409,
            detail={
                "message": "Enrichment already exists for this import",
                "enrichment_run_id": exc.run.id,
                "status": exc.run.status,
            },
        ) from exc
    worker.enqueue(EnrichmentJob.from_run(run))
    return ApiResponse(data=EnrichmentTriggerResult(enrichment_run_id=run.id, status=run.status))


@router.get("/teams/{team_id}/enrichments/{run_id}", response_model=ApiResponse[EnrichmentRunDetail])
def read_enrichment_run(
    team_id: str = Path(..., min_length=1),
    run_id: str = Path(..., min_length=1),
    db: Session = Depends(get_db),
) -> ApiResponse[EnrichmentRunDetail]:
    """Return run status, totals, and review records with note titles."""

    detail = get_enrichment_run_detail(db, run_id, team_id)
    if detail is None:
        raise HTTPException(status_code=404, detail="Enrichment run not found")
    return ApiResponse(data=detail)


@router.patch("/teams/{team_id}/classifications/{classification_id}", response_model=ApiResponse[NoteClassificationRead])
def patch_classification(
    payload: ClassificationStatusUpdate,
    team_id: str = Path(..., min_length=1),
    classification_id: str = Path(..., min_length=1),
    db: Session = Depends(get_db),
) -> ApiResponse[NoteClassificationRead]:
    try:
        updated = update_classification_status(
            db,
            classification_id,
            payload.status,
            payload.reviewer_id,
            override_type=payload.override_type,
            team_id=team_id,
        )
    except ReviewValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except ReviewConflictError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    if updated is None:
        raise HTTPException(status_code=404, detail="Classification not found")
    return ApiResponse(data=NoteClassificationRead.model_validate(updated))


@router.patch("/teams/{team_id}/relationships/{relationship_id}", response_model=ApiResponse[NoteRelationshipRead])
def patch_relationship(
    payload: RelationshipStatusUpdate,
    team_id: str = Path(..., min_length=1),
    relationship_id: str = Path(..., min_length=1),
    db: Session = Depends(get_db),
) -> ApiResponse[NoteRelationshipRead]:
    try:
        updated = update_relationship_status(db, relationship_id, payload.status, payload.reviewer_id, team_id=team_id)
    except ReviewValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except ReviewConflictError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    if updated is None:
        raise HTTPException(status_code=404, detail="Relationship not found")
    return ApiResponse(data=NoteRelationshipRead.model_validate(updated))


@router.post(
    "/teams/{team_id}/enrichments/{run_id}/classifications/bulk-approve",
    response_model=ApiResponse[BulkApproveResult],
)
def bulk_approve_run_classifications(
    payload: BulkApproveRequest,
    team_id: str = Path(..., min_length=1),
    run_id: str = Path(..., min_length=1),
    db: Session = Depends(get_db),
) -> ApiResponse[BulkApproveResult]:
    if get_enrichment_run(db, run_id, team_id) is None:
        raise HTTPException(status_code=404, detail="Enrichment run not found")
    try:
        approved = bulk_approve_classifications(
            db,
            run_id,
            payload.reviewer_id,
            classification_ids=payload.ids,
            approve_high_confidence=payload.approve_high_confidence,
            threshold=payload.threshold,
        )
    except ReviewValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return ApiResponse(data=BulkApproveResult(approved=approved))


@router.post(
    "/teams/{team_id}/enrichments/{run_id}/relationships/bulk-approve",
    response_model=ApiResponse[BulkApproveResult],
)
def bulk_approve_run_relationships(
    payload: BulkApproveRequest,
    team_id: str = Path(..., min_length=1),
    run_id: str = Path(..., min_length=1),
    db: Session = Depends(get_db),
) -> ApiResponse[BulkApproveResult]:
    if get_enrichment_run(db, run_id, team_id) is None:
        raise HTTPException(status_code=404, detail="Enrichment run not found")
    try:
        approved = bulk_approve_relationships(
            db,
            run_id,
            payload.reviewer_id,
            relationship_ids=payload.ids,
            approve_high_confidence=payload.approve_high_confidence,
            threshold=payload.threshold,
        )
    except ReviewValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return ApiResponse(data=BulkApproveResult(approved=approved))


@router.post("/teams/{team_id}/imports/{import_run_id}/enrichment-preview", response_model=ApiResponse[PreviewRead])
def preview_enrichment(
    payload: PreviewRequest,
    team_id: str = Path(..., min_length=1),
    import_run_id: str = Path(..., min_length=1),
    db: Session = Depends(get_db),
    provider: GenerationProvider = Depends(get_generation_provider),
    cache: EnrichmentCache = Depends(get_enrichment_cache),
    store: EphemeralStore[PreviewRead] = Depends(get_preview_store),
    progress: ProgressTracker = Depends(get_progress_tracker),
) -> ApiResponse[PreviewRead]:
    """Classify and relate an import synchronously; poll progress with ``operation_id``."""

    preview = run_preview(
        db,
        import_run_id,
        team_id,
        provider,
        cache=cache,
        store=store,
        progress=progress,
        player_character_names=payload.player_character_names,
        override_existing=payload.override_existing,
        operation_id=payload.operation_id,
    )
    return ApiResponse(data=preview)


@router.post("/teams/{team_id}/enrichment-previews/{preview_id}/commit", response_model=ApiResponse[EnrichmentRunRead])
def commit_enrichment_preview(
    payload: CommitPreviewRequest,
    team_id: str = Path(..., min_length=1),
    preview_id: str = Path(..., min_length=1),
    db: Session = Depends(get_db),
    store: EphemeralStore[PreviewRead] = Depends(get_preview_store),
) -> ApiResponse[EnrichmentRunRead]:
    try:
        run = commit_preview(db, preview_id, team_id, store=store, created_by_user_id=payload.created_by_user_id)
    except EnrichmentConflictError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    if run is None:
        raise HTTPException(status_code=404, detail="Preview not found or expired")
    return ApiResponse(data=EnrichmentRunRead.model_validate(run))


@router.get("/progress/{operation_id}", response_model=ApiResponse[ProgressRead])
def read_progress(
    operation_id: str = Path(..., min_length=1),
    progress: ProgressTracker = Depends(get_progress_tracker),
) -> ApiResponse[ProgressRead]:
    """Progress for a preview or enrichment run; 404 once the record has expired."""

    record = progress.get(operation_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Progress not found")
    return ApiResponse(data=ProgressRead.model_validate(record))
