from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, HTTPException, Request

from lostfound.backend.response import success_response
from lostfound.backend.schemas import (
	ApiEnvelope,
	ClaimSubmitRequest,
	ItemCategory,
	ItemReportRequest,
	ItemType,
)
from lostfound.backend.services import item_service


router = APIRouter(prefix="/api/items", tags=["items"])


def user_id_from_request(request: Request) -> str:
	return request.headers.get("X-User-ID", "").strip() or "anonymous"


@router.get("", response_model=ApiEnvelope)
def list_items(
	request: Request,
	search: Optional[str] = None,
	category: Optional[ItemCategory] = None,
	type: Optional[ItemType] = None,
):
	items = item_service.list_items(search=search, category=category, item_type=type)
	return success_response(request=request, data={"items": items})


@router.post("", response_model=ApiEnvelope, status_code=201)
def report_item(request: Request, payload: ItemReportRequest):
	item = item_service.report_item(
		title=payload.title,
		item_type=payload.type,
		category=payload.category,
		location=payload.location,
		user_id=user_id_from_request(request),
		description=payload.description,
		date=payload.date,
		image_url=payload.image_url,
	)
	return success_response(
		request=request,
		data={"item": item, "message": "Item reported successfully!"},
	)


@router.get("/mine", response_model=ApiEnvelope)
def list_my_items(request: Request):
	items = item_service.list_my_items(user_id_from_request(request))
	return success_response(request=request, data={"items": items})


@router.get("/{item_id}", response_model=ApiEnvelope)
def get_item(request: Request, item_id: str):
	item = item_service.get_item(item_id)
	if item is None:
		raise HTTPException(status_code=404, detail="Item not found.")
	return success_response(request=request, data={"item": item})


@router.delete("/{item_id}", response_model=ApiEnvelope)
def delete_item(request: Request, item_id: str):
	try:
		item_service.delete_item(item_id)
	except LookupError as exc:
		raise HTTPException(status_code=404, detail=str(exc)) from exc
	return success_response(request=request, data={"item_id": item_id, "deleted": True})


@router.post("/{item_id}/claims", response_model=ApiEnvelope, status_code=201)
def submit_claim(request: Request, item_id: str, payload: ClaimSubmitRequest):
	try:
		claim = item_service.submit_claim(
			item_id=item_id,
			claimant_id=user_id_from_request(request),
			proof_description=payload.proof_description,
		)
	except item_service.ItemServiceError as exc:
		raise HTTPException(
			status_code=exc.status_code,
			detail={"code": exc.code, "message": exc.message},
		) from exc
	return success_response(
		request=request,
		data={"claim": claim, "message": "Claim submitted! The finder will be notified."},
	)
