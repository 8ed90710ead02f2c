"""
Routes: submissão de comprovantes e status de jobs.
"""

import logging
from dataclasses import asdict
from decimal import Decimal, InvalidOperation

from fastapi import APIRouter, File, Form, HTTPException, Request, UploadFile

from payproof.api.schemas.responses import (
    BatchItemResponse,
    BatchSubmissionResponse,
    BatchSummary,
    JobStatusResponse,
    ReprocessBody,
    ReprocessedJob,
    ReprocessResponse,
    SubmissionResponse,
)
from payproof.core.entities.job import Priority, SourcePlatform, SubmissionContext
from payproof.core.exceptions import DispatcherClosed, InvalidBatch, InvalidImage
from payproof.core.use_cases.submit_proof import BatchItem, summarize_batch

logger = logging.getLogger(__name__)

router = APIRouter()


def _parse_context(
    expected_amount: str | None,
    currency: str | None,
    reference: str | None,
    buyer_identity: str | None,
    candidate_id: str | None,
) -> SubmissionContext | None:
    if not any((expected_amount, currency, reference, buyer_identity, candidate_id)):
        return None
    amount = None
    if expected_amount:
        try:
            amount = Decimal(expected_amount.replace(",", ""))
        except InvalidOperation:
            raise HTTPException(status_code=400, detail=f"expected_amount '{expected_amount}' is not a number")
    return SubmissionContext(
        expected_amount=amount,
        currency=currency.upper() if currency else None,
        reference=reference or None,
        buyer_identity=buyer_identity or None,
        candidate_id=candidate_id or None,
    )


def _parse_enums(source_platform: str, priority: str) -> tuple[SourcePlatform, Priority]:
    try:
        return SourcePlatform(source_platform.lower()), Priority(priority.lower())
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/proofs", response_model=SubmissionResponse, status_code=202)
async def submit_proof(
    request: Request,
    file: UploadFile = File(...),
    source_platform: str = Form("web"),
    submitted_by: str = Form(""),
    priority: str = Form("normal"),
    expected_amount: str | None = Form(None),
    currency: str | None = Form(None),
    reference: str | None = Form(None),
    buyer_identity: str | None = Form(None),
    candidate_id: str | None = Form(None),
):
    """
    Envia um comprovante de pagamento.

    Upload de uma imagem (JPEG/PNG/WEBP) + contexto opcional. Retorna
    202 com job_id/extraction_id; o resultado sai em
    GET /extractions/{extraction_id} quando o job termina.
    """
    platform, prio = _parse_enums(source_platform, priority)
    context = _parse_context(expected_amount, currency, reference, buyer_identity, candidate_id)
    image_bytes = await file.read()

    container = request.app.state.container
    try:
        receipt = await container.submit.execute(
            image_bytes,
            source_platform=platform,
            submitted_by=submitted_by,
            priority=prio,
            submission_context=context,
        )
    except InvalidImage as e:
        logger.info(f"Rejected upload {file.filename!r}: {e}")
        raise HTTPException(status_code=400, detail={"reason": e.reason, "detail": e.detail})
    except DispatcherClosed as e:
        raise HTTPException(status_code=503, detail=str(e))

    return SubmissionResponse(
        job_id=receipt.job_id,
        extraction_id=receipt.extraction_id,
        duplicate=receipt.duplicate,
        status=receipt.status,
    )


@router.post("/proofs/batch", response_model=BatchSubmissionResponse, status_code=202)
async def submit_batch(
    request: Request,
    files: list[UploadFile] = File(...),
    source_platform: str = Form("web"),
    submitted_by: str = Form(""),
    priority: str = Form("normal"),
    currency: str | None = Form(None),
):
    """
    Envia vários comprovantes de uma vez (mesmo canal e remetente).

    Cada arquivo vira um job independente; arquivo inválido aparece
    no resultado com `error` e não afeta os outros.
    """
    platform, prio = _parse_enums(source_platform, priority)
    context = _parse_context(None, currency, None, None, None)
    items = [BatchItem(await f.read(), f.filename or "", context) for f in files]

    container = request.app.state.container
    try:
        results = await container.submit.execute_batch(
            items, source_platform=platform, submitted_by=submitted_by, priority=prio,
        )
    except InvalidBatch as e:
        raise HTTPException(status_code=400, detail=str(e))
    except DispatcherClosed as e:
        raise HTTPException(status_code=503, detail=str(e))

    return BatchSubmissionResponse(
        results=[
            BatchItemResponse(
                index=r.index,
                filename=r.filename,
                accepted=r.accepted,
                job_id=r.receipt.job_id if r.receipt else None,
                extraction_id=r.receipt.extraction_id if r.receipt else None,
                duplicate=r.receipt.duplicate if r.receipt else False,
                status=r.receipt.status if r.receipt else None,
                error=r.error,
                detail=r.detail or None,
            )
            for r in results
        ],
        summary=BatchSummary(**summarize_batch(results)),
    )


@router.get("/jobs/{job_id}", response_model=JobStatusResponse)
def get_job(request: Request, job_id: str):
    """Status de um job."""
    data = request.app.state.container.store.get_job(job_id)
    if data is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return JobStatusResponse(**{k: v for k, v in data.items() if k != "fingerprint"})


@router.post("/jobs/reprocess", response_model=ReprocessResponse, status_code=202)
async def reprocess_failed(request: Request, body: ReprocessBody | None = None):
    """Reenfileira jobs em dead letter (cada um com uma extração nova)."""
    body = body or ReprocessBody()
    try:
        receipts = await request.app.state.container.reprocess.execute(body.limit, body.submitted_by)
    except DispatcherClosed as e:
        raise HTTPException(status_code=503, detail=str(e))
    return ReprocessResponse(
        count=len(receipts),
        jobs=[ReprocessedJob(**asdict(r)) for r in receipts],
    )
