from __future__ import annotations

from fastapi import APIRouter, Request

from lostfound.backend import constants
from lostfound.backend.adapters import sqlite_adapter
from lostfound.backend.response import success_response
from lostfound.backend.schemas import ApiEnvelope
from lostfound.backend.services import item_service


router = APIRouter(prefix="/api/health", tags=["health"])


@router.get("", response_model=ApiEnvelope)
def get_health(request: Request):
	return success_response(
		request=request,
		data={
			"app": constants.APP_NAME,
			"version": constants.APP_VERSION,
			"storage": sqlite_adapter.get_storage_meta(item_service.db_path()),
		},
	)
