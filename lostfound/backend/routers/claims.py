from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, HTTPException, Request

from lostfound.backend.response import success_response
from lostfound.backend.routers.items import user_id_from_request
from lostfound.backend.schemas import ApiEnvelope, ClaimReviewRequest, ClaimStatus
from lostfound.backend.services import item_service


router = APIRouter(prefix="/api/claims", tags=["claims"])


@router.get("", response_model=ApiEnvelope)
def list_claims(request: Request, status: Optional[ClaimStatus] = None):
	claims = item_service.list_claims(status=status)
	return success_response(request=request, data={"claims": claims})


@router.get("/mine", response_model=ApiEnvelope)
def list_my_claims(request: Request):
	claims = item_service.list_my_claims(user_id_from_request(request))
	return success_response(request=request, data={"claims": claims})


@router.patch("/{claim_id}", response_model=ApiEnvelope)
def review_claim(request: Request, claim_id: str, payload: ClaimReviewRequest):
	try:
		claim = item_service.review_claim(claim_id, payload.status)
	except LookupError as exc:
		raise HTTPException(status_code=404, detail=str(exc)) from exc
	except ValueError as exc:
		raise HTTPException(status_code=409, detail=str(exc)) from exc
	return success_response(request=request, data={"claim": claim})
