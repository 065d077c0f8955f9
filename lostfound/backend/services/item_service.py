from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from lostfound.backend import constants
from lostfound.backend.adapters import sqlite_adapter


logger = logging.getLogger(__name__)

# Fields the assistant is allowed to see; owner ids and image urls stay out of the model context.
_SEARCH_PROJECTION = ("title", "description", "type", "category", "status", "location", "created_at")


class ItemServiceError(Exception):
	def __init__(self, *, status_code: int, code: str, message: str):
		super().__init__(message)
		self.status_code = status_code
		self.code = code
		self.message = message


def db_path() -> str:
	return os.getenv("ITEMS_DB_PATH", "").strip() or constants.DEFAULT_DB_PATH


def _iso(value: Optional[datetime]) -> str:
	stamp = value or datetime.now(timezone.utc)
	if stamp.tzinfo is None:
		stamp = stamp.replace(tzinfo=timezone.utc)
	return stamp.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def report_item(
	*,
	title: str,
	item_type: str,
	category: str,
	location: str,
	user_id: str,
	description: Optional[str] = None,
	date: Optional[datetime] = None,
	image_url: Optional[str] = None,
) -> Dict[str, Any]:
	item = sqlite_adapter.insert_item(
		title=title,
		item_type=item_type,
		category=category,
		user_id=user_id,
		description=description or None,
		location=location,
		image_url=image_url or None,
		date_incident=_iso(date),
		db_path=db_path(),
	)
	logger.info("Item %s reported as %s by %s", item["id"], item_type, user_id)
	return item


def list_items(
	search: Optional[str] = None,
	category: Optional[str] = None,
	item_type: Optional[str] = None,
) -> List[Dict[str, Any]]:
	return sqlite_adapter.list_items(
		search=(search or "").strip() or None,
		category=category,
		item_type=item_type,
		status="OPEN",
		db_path=db_path(),
	)


def get_item(item_id: str) -> Optional[Dict[str, Any]]:
	return sqlite_adapter.get_item(item_id, db_path=db_path())


def delete_item(item_id: str) -> None:
	if not sqlite_adapter.soft_delete_item(item_id, db_path=db_path()):
		raise LookupError("Item not found.")
	logger.info("Item %s soft-deleted", item_id)


def search_items(query: str, item_type: Optional[str] = None) -> List[Dict[str, Any]]:
	rows = sqlite_adapter.search_items(
		query.strip(),
		item_type=item_type,
		limit=constants.SEARCH_RESULT_LIMIT,
		db_path=db_path(),
	)
	return [{key: row.get(key) for key in _SEARCH_PROJECTION} for row in rows]


def submit_claim(*, item_id: str, claimant_id: str, proof_description: Optional[str]) -> Dict[str, Any]:
	path = db_path()
	if sqlite_adapter.get_item(item_id, db_path=path) is None:
		raise ItemServiceError(status_code=404, code="item_not_found", message="Item not found.")
	if sqlite_adapter.find_claim(item_id, claimant_id, db_path=path) is not None:
		raise ItemServiceError(
			status_code=409,
			code="claim_duplicate",
			message="You have already submitted a claim for this item.",
		)
	claim = sqlite_adapter.insert_claim(
		item_id=item_id,
		claimant_id=claimant_id,
		proof_description=proof_description or "Interested in claiming",
		db_path=path,
	)
	logger.info("Claim %s submitted on item %s", claim["id"], item_id)
	return claim


def list_claims(status: Optional[str] = None) -> List[Dict[str, Any]]:
	# Review queue: oldest claim first.
	return sqlite_adapter.list_claims(status=status, newest_first=False, db_path=db_path())


def list_my_items(user_id: str) -> List[Dict[str, Any]]:
	"""Every live listing the user reported, whatever its status."""
	return sqlite_adapter.list_items(status=None, user_id=user_id, db_path=db_path())


def list_my_claims(claimant_id: str) -> List[Dict[str, Any]]:
	return sqlite_adapter.list_claims(claimant_id=claimant_id, db_path=db_path())


def review_claim(claim_id: str, status: str) -> Dict[str, Any]:
	path = db_path()
	claim = sqlite_adapter.get_claim(claim_id, db_path=path)
	if claim is None:
		raise LookupError("Claim not found.")
	if claim["status"] != "PENDING":
		raise ValueError("Only pending claims can be reviewed.")
	updated = sqlite_adapter.update_claim_status(claim_id, status, db_path=path)
	if status == "APPROVED":
		sqlite_adapter.update_item_status(claim["item_id"], "CLAIMED", db_path=path)
	logger.info("Claim %s reviewed: %s", claim_id, status)
	return updated or claim
