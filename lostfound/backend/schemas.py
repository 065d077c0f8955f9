from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


ItemType = Literal["LOST", "FOUND"]
ItemCategory = Literal["ELECTRONICS", "CLOTHING", "ID_CARDS", "KEYS", "OTHER"]
ItemStatus = Literal["OPEN", "CLAIMED", "RESOLVED"]
ClaimStatus = Literal["PENDING", "APPROVED", "REJECTED"]


class ApiEnvelope(BaseModel):
	model_config = ConfigDict(extra="allow")

	ok: bool
	generated_at: str
	request_id: Optional[str] = None
	data: Optional[Dict[str, Any]] = None
	error: Optional[str] = None
	code: Optional[str] = None
	evidence: List[str] = Field(default_factory=list)


class ChatMessage(BaseModel):
	model_config = ConfigDict(extra="ignore")

	role: Literal["user", "assistant"]
	content: str = Field(..., min_length=1)

	@field_validator("content")
	@classmethod
	def _content_not_blank(cls, value: str) -> str:
		if not value.strip():
			raise ValueError("content must not be blank.")
		return value


class ChatRequest(BaseModel):
	model_config = ConfigDict(extra="ignore")

	messages: List[ChatMessage] = Field(..., min_length=1, description="Conversation so far, oldest first.")


class ItemReportRequest(BaseModel):
	model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

	title: str = Field(..., min_length=3)
	description: Optional[str] = None
	type: ItemType
	category: ItemCategory
	location: str = Field(..., min_length=2)
	date: Optional[datetime] = Field(default=None, description="When the item was lost or found.")
	image_url: Optional[str] = None


class ClaimSubmitRequest(BaseModel):
	model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

	proof_description: Optional[str] = Field(default=None, description="Why the item belongs to the claimant.")


class ClaimReviewRequest(BaseModel):
	model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

	status: Literal["APPROVED", "REJECTED"]
