from __future__ import annotations

import logging
import os
from typing import Any, Dict, List, Optional, Tuple

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.trustedhost import TrustedHostMiddleware

from lostfound.backend import constants
from lostfound.backend.middleware import RequestContextMiddleware
from lostfound.backend.response import error_response
from lostfound.backend.routers import chat, claims, health, items


logger = logging.getLogger(__name__)


def configure_logging() -> None:
	level_name = os.getenv("LOG_LEVEL", "INFO").upper()
	level = getattr(logging, level_name, logging.INFO)
	if not logging.getLogger().handlers:
		logging.basicConfig(
			level=level,
			format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
		)
	logging.getLogger("lostfound").setLevel(level)


def create_app() -> FastAPI:
	configure_logging()
	app = FastAPI(
		title=constants.APP_NAME,
		version=constants.APP_VERSION,
	)
	_register_middleware(app)
	_register_handlers(app)
	_register_routers(app)
	return app


def _register_middleware(app: FastAPI) -> None:
	app.add_middleware(RequestContextMiddleware)
	app.add_middleware(
		CORSMiddleware,
		allow_origins=constants.DEFAULT_CORS_ALLOW_ORIGINS,
		allow_credentials=True,
		allow_methods=["*"],
		allow_headers=["*"],
	)
	app.add_middleware(
		TrustedHostMiddleware,
		allowed_hosts=constants.DEFAULT_TRUSTED_HOSTS,
	)


def _register_routers(app: FastAPI) -> None:
	app.include_router(chat.router)
	app.include_router(items.router)
	app.include_router(claims.router)
	app.include_router(health.router)


def _register_handlers(app: FastAPI) -> None:
	# FastAPI's HTTPException subclasses Starlette's, so one handler covers both.
	@app.exception_handler(StarletteHTTPException)
	async def handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
		code, message, evidence = _http_error_parts(exc)
		if exc.status_code >= 500:
			logger.warning("%s %s failed with %s: %s", request.method, request.url.path, code, message)
		return JSONResponse(
			status_code=exc.status_code,
			content=error_response(code=code, message=message, request=request, evidence=evidence),
			headers=getattr(exc, "headers", None),
		)

	@app.exception_handler(RequestValidationError)
	async def handle_request_validation_error(
		request: Request,
		exc: RequestValidationError,
	) -> JSONResponse:
		evidence = [_validation_line(issue) for issue in exc.errors()]
		return JSONResponse(
			status_code=422,
			content=error_response(
				code="validation_error",
				message="Request validation failed.",
				request=request,
				evidence=evidence,
			),
		)

	@app.exception_handler(Exception)
	async def handle_unexpected_exception(request: Request, exc: Exception) -> JSONResponse:
		logger.exception("Unhandled error on %s %s", request.method, request.url.path)
		return JSONResponse(
			status_code=500,
			content=error_response(code="internal_error", message="Internal server error.", request=request),
		)


def _http_error_parts(exc: StarletteHTTPException) -> Tuple[str, str, Optional[List[str]]]:
	detail: Any = exc.detail
	code = f"http_{exc.status_code}"
	if not isinstance(detail, dict):
		return code, _exc_message(detail), None
	detail_code = detail.get("code")
	detail_message = detail.get("message")
	detail_evidence = detail.get("evidence")
	if isinstance(detail_code, str) and detail_code.strip():
		code = detail_code.strip()
	message = detail_message.strip() if isinstance(detail_message, str) and detail_message.strip() else "Request failed."
	evidence = [str(item) for item in detail_evidence] if isinstance(detail_evidence, list) else None
	return code, message, evidence


def _validation_line(issue: Dict[str, Any]) -> str:
	loc = ".".join(str(part) for part in issue.get("loc", []))
	msg = issue.get("msg", "Invalid request.")
	return f"{loc}: {msg}" if loc else msg


def _exc_message(detail: Any) -> str:
	if isinstance(detail, str):
		return detail
	if detail is None:
		return "Request failed."
	return str(detail)


app = create_app()
