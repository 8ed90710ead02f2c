"""
Routes: leitura de extrações e revisão humana.
"""

from fastapi import APIRouter, HTTPException, Request

from payproof.api.schemas.responses import (
    DecisionResponse,
    ExtractionResponse,
    ReviewBody,
    decision_response,
    extraction_response,
)
from payproof.core.exceptions import ConcurrentClaimConflict, InvalidReviewRequest, StaleDecision
from payproof.core.use_cases.review_decision import ReviewAction, ReviewRequest

router = APIRouter()


@router.get("/extractions/{extraction_id}", response_model=ExtractionResponse)
def get_extraction(request: Request, extraction_id: str):
    """Extração fundida + histórico de decisões (mais antiga primeiro)."""
    store = request.app.state.container.store
    extraction = store.get_extraction(extraction_id)
    if extraction is None:
        raise HTTPException(status_code=404, detail="Extraction not found")
    return extraction_response(extraction, store.list_decisions(extraction_id))


@router.post("/extractions/{extraction_id}/review", response_model=DecisionResponse)
def review_extraction(request: Request, extraction_id: str, body: ReviewBody):
    """
    Decisão do revisor: approve | reject | modify.

    Cria uma nova decisão ligada à extração; a automatizada nunca muda.
    """
    try:
        action = ReviewAction(body.action.lower())
    except ValueError:
        raise HTTPException(status_code=400, detail=f"unknown action '{body.action}'")

    review = request.app.state.container.review
    try:
        decision = review.execute(ReviewRequest(
            extraction_id=extraction_id,
            action=action,
            approved_candidate_id=body.approved_candidate_id,
            corrections=body.corrections,
            notes=body.notes,
            reviewer_id=body.reviewer_id,
        ))
    except (ConcurrentClaimConflict, StaleDecision) as e:
        raise HTTPException(status_code=409, detail=str(e))
    except InvalidReviewRequest as e:
        raise HTTPException(status_code=404 if e.not_found else 400, detail=str(e))

    return decision_response(decision)
