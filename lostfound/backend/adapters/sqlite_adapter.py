from __future__ import annotations

import sqlite3
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from lostfound.backend import constants


_ITEM_COLUMNS = (
	"id, title, description, type, category, status, location, user_id, image_url, "
	"date_incident, is_deleted, created_at, updated_at"
)
_CLAIM_COLUMNS = "id, item_id, claimant_id, status, proof_description, created_at, updated_at"
_ITEM_FIELDS = tuple(name.strip() for name in _ITEM_COLUMNS.split(","))
_CLAIM_FIELDS = tuple(name.strip() for name in _CLAIM_COLUMNS.split(","))


def _now_iso() -> str:
	return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _get_db_path(db_path: Optional[str]) -> str:
	if db_path:
		return db_path
	return constants.DEFAULT_DB_PATH


def _connect(path: str) -> sqlite3.Connection:
	conn = sqlite3.connect(path, timeout=constants.SQLITE_BUSY_TIMEOUT_MS / 1000)
	conn.execute("PRAGMA journal_mode=WAL")
	conn.execute("PRAGMA synchronous=NORMAL")
	conn.execute(f"PRAGMA busy_timeout={constants.SQLITE_BUSY_TIMEOUT_MS}")
	conn.execute("PRAGMA foreign_keys=ON")
	conn.create_function("casefold", 1, _casefold, deterministic=True)
	return conn


def _casefold(value: Any) -> Optional[str]:
	if value is None:
		return None
	return str(value).casefold()


def _like_pattern(text: str) -> str:
	# Callers compare against casefold(column); SQLite LIKE only folds ASCII on its own.
	escaped = text.casefold().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
	return f"%{escaped}%"


def _item_row(row: sqlite3.Row) -> Dict[str, Any]:
	item = dict(row)
	item["is_deleted"] = bool(item.get("is_deleted"))
	return item


def init_db(db_path: Optional[str] = None) -> None:
	path = _get_db_path(db_path)
	Path(path).parent.mkdir(parents=True, exist_ok=True)
	conn = _connect(path)
	try:
		conn.execute(
			"""
			CREATE TABLE IF NOT EXISTS items (
				id TEXT PRIMARY KEY,
				title TEXT NOT NULL,
				description TEXT,
				type TEXT NOT NULL,
				category TEXT NOT NULL,
				status TEXT NOT NULL DEFAULT 'OPEN',
				location TEXT,
				user_id TEXT NOT NULL,
				image_url TEXT,
				date_incident TEXT,
				is_deleted INTEGER NOT NULL DEFAULT 0,
				created_at TEXT NOT NULL,
				updated_at TEXT NOT NULL
			)
			"""
		)
		conn.execute(
			"""
			CREATE TABLE IF NOT EXISTS claims (
				id TEXT PRIMARY KEY,
				item_id TEXT NOT NULL REFERENCES items(id),
				claimant_id TEXT NOT NULL,
				status TEXT NOT NULL DEFAULT 'PENDING',
				proof_description TEXT,
				created_at TEXT NOT NULL,
				updated_at TEXT NOT NULL
			)
			"""
		)
		conn.execute("CREATE INDEX IF NOT EXISTS idx_items_created_at ON items(created_at)")
		conn.execute("CREATE INDEX IF NOT EXISTS idx_claims_item ON claims(item_id, claimant_id)")
		conn.commit()
	finally:
		conn.close()


def insert_item(
	*,
	title: str,
	item_type: str,
	category: str,
	user_id: str,
	description: Optional[str] = None,
	location: Optional[str] = None,
	image_url: Optional[str] = None,
	date_incident: Optional[str] = None,
	status: str = "OPEN",
	created_at: Optional[str] = None,
	db_path: Optional[str] = None,
) -> Dict[str, Any]:
	init_db(db_path)
	path = _get_db_path(db_path)
	item_id = uuid.uuid4().hex
	stamp = created_at or _now_iso()
	conn = _connect(path)
	try:
		conn.execute(
			f"""
			INSERT INTO items ({_ITEM_COLUMNS})
			VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?)
			""",
			(
				item_id,
				title,
				description,
				item_type,
				category,
				status,
				location,
				user_id,
				image_url,
				date_incident,
				stamp,
				stamp,
			),
		)
		conn.commit()
	finally:
		conn.close()
	return {
		"id": item_id,
		"title": title,
		"description": description,
		"type": item_type,
		"category": category,
		"status": status,
		"location": location,
		"user_id": user_id,
		"image_url": image_url,
		"date_incident": date_incident,
		"is_deleted": False,
		"created_at": stamp,
		"updated_at": stamp,
	}


def get_item(
	item_id: str,
	include_deleted: bool = False,
	db_path: Optional[str] = None,
) -> Optional[Dict[str, Any]]:
	init_db(db_path)
	path = _get_db_path(db_path)
	conn = _connect(path)
	try:
		conn.row_factory = sqlite3.Row
		sql = f"SELECT {_ITEM_COLUMNS} FROM items WHERE id = ?"
		if not include_deleted:
			sql += " AND is_deleted = 0"
		row = conn.execute(sql, (item_id,)).fetchone()
		if row is None:
			return None
		return _item_row(row)
	finally:
		conn.close()


def search_items(
	query: str,
	item_type: Optional[str] = None,
	limit: int = constants.SEARCH_RESULT_LIMIT,
	db_path: Optional[str] = None,
) -> List[Dict[str, Any]]:
	"""Substring match on title or description, newest first, soft-deleted rows excluded."""
	init_db(db_path)
	path = _get_db_path(db_path)
	clauses = ["is_deleted = 0"]
	params: List[Any] = []
	if item_type:
		clauses.append("type = ?")
		params.append(item_type)
	if query:
		pattern = _like_pattern(query)
		clauses.append("(casefold(title) LIKE ? ESCAPE '\\' OR casefold(description) LIKE ? ESCAPE '\\')")
		params.extend([pattern, pattern])
	params.append(limit)
	where = " AND ".join(clauses)
	conn = _connect(path)
	try:
		conn.row_factory = sqlite3.Row
		rows = conn.execute(
			f"""
			SELECT {_ITEM_COLUMNS} FROM items
			WHERE {where}
			ORDER BY created_at DESC, rowid DESC
			LIMIT ?
			""",
			params,
		).fetchall()
		return [_item_row(row) for row in rows]
	finally:
		conn.close()


def list_items(
	search: Optional[str] = None,
	category: Optional[str] = None,
	item_type: Optional[str] = None,
	status: Optional[str] = "OPEN",
	user_id: Optional[str] = None,
	db_path: Optional[str] = None,
) -> List[Dict[str, Any]]:
	init_db(db_path)
	path = _get_db_path(db_path)
	clauses = ["is_deleted = 0"]
	params: List[Any] = []
	if status:
		clauses.append("status = ?")
		params.append(status)
	if search:
		clauses.append("casefold(title) LIKE ? ESCAPE '\\'")
		params.append(_like_pattern(search))
	if category:
		clauses.append("category = ?")
		params.append(category)
	if user_id:
		clauses.append("user_id = ?")
		params.append(user_id)
	if item_type:
		clauses.append("type = ?")
		params.append(item_type)
	where = " AND ".join(clauses)
	conn = _connect(path)
	try:
		conn.row_factory = sqlite3.Row
		rows = conn.execute(
			f"""
			SELECT {_ITEM_COLUMNS} FROM items
			WHERE {where}
			ORDER BY created_at DESC, rowid DESC
			""",
			params,
		).fetchall()
		return [_item_row(row) for row in rows]
	finally:
		conn.close()


def soft_delete_item(item_id: str, db_path: Optional[str] = None) -> bool:
	init_db(db_path)
	path = _get_db_path(db_path)
	conn = _connect(path)
	try:
		cursor = conn.execute(
			"UPDATE items SET is_deleted = 1, updated_at = ? WHERE id = ? AND is_deleted = 0",
			(_now_iso(), item_id),
		)
		conn.commit()
		return cursor.rowcount > 0
	finally:
		conn.close()


def update_item_status(item_id: str, status: str, db_path: Optional[str] = None) -> None:
	init_db(db_path)
	path = _get_db_path(db_path)
	conn = _connect(path)
	try:
		conn.execute(
			"UPDATE items SET status = ?, updated_at = ? WHERE id = ?",
			(status, _now_iso(), item_id),
		)
		conn.commit()
	finally:
		conn.close()


def insert_claim(
	*,
	item_id: str,
	claimant_id: str,
	proof_description: Optional[str],
	db_path: Optional[str] = None,
) -> Dict[str, Any]:
	init_db(db_path)
	path = _get_db_path(db_path)
	claim_id = uuid.uuid4().hex
	stamp = _now_iso()
	conn = _connect(path)
	try:
		conn.execute(
			f"""
			INSERT INTO claims ({_CLAIM_COLUMNS})
			VALUES (?, ?, ?, 'PENDING', ?, ?, ?)
			""",
			(claim_id, item_id, claimant_id, proof_description, stamp, stamp),
		)
		conn.commit()
	finally:
		conn.close()
	return {
		"id": claim_id,
		"item_id": item_id,
		"claimant_id": claimant_id,
		"status": "PENDING",
		"proof_description": proof_description,
		"created_at": stamp,
		"updated_at": stamp,
	}


def find_claim(item_id: str, claimant_id: str, db_path: Optional[str] = None) -> Optional[Dict[str, Any]]:
	init_db(db_path)
	path = _get_db_path(db_path)
	conn = _connect(path)
	try:
		conn.row_factory = sqlite3.Row
		row = conn.execute(
			f"SELECT {_CLAIM_COLUMNS} FROM claims WHERE item_id = ? AND claimant_id = ?",
			(item_id, claimant_id),
		).fetchone()
		return dict(row) if row is not None else None
	finally:
		conn.close()


def get_claim(claim_id: str, db_path: Optional[str] = None) -> Optional[Dict[str, Any]]:
	init_db(db_path)
	path = _get_db_path(db_path)
	conn = _connect(path)
	try:
		conn.row_factory = sqlite3.Row
		row = conn.execute(f"SELECT {_CLAIM_COLUMNS} FROM claims WHERE id = ?", (claim_id,)).fetchone()
		return dict(row) if row is not None else None
	finally:
		conn.close()


def list_claims(
	status: Optional[str] = None,
	claimant_id: Optional[str] = None,
	newest_first: bool = True,
	db_path: Optional[str] = None,
) -> List[Dict[str, Any]]:
	"""Claims with the claimed item embedded under ``item`` (None if the row is gone)."""
	init_db(db_path)
	path = _get_db_path(db_path)
	clauses: List[str] = []
	params: List[Any] = []
	if status:
		clauses.append("c.status = ?")
		params.append(status)
	if claimant_id:
		clauses.append("c.claimant_id = ?")
		params.append(claimant_id)
	where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
	order = "DESC" if newest_first else "ASC"
	claim_columns = ", ".join(f"c.{name} AS {name}" for name in _CLAIM_FIELDS)
	item_columns = ", ".join(f"i.{name} AS item__{name}" for name in _ITEM_FIELDS)
	conn = _connect(path)
	try:
		conn.row_factory = sqlite3.Row
		rows = conn.execute(
			f"""
			SELECT {claim_columns}, {item_columns}
			FROM claims c LEFT JOIN items i ON i.id = c.item_id
			{where}
			ORDER BY c.created_at {order}, c.rowid {order}
			""",
			params,
		).fetchall()
	finally:
		conn.close()
	claims: List[Dict[str, Any]] = []
	for row in rows:
		claim = {name: row[name] for name in _CLAIM_FIELDS}
		item = {name: row[f"item__{name}"] for name in _ITEM_FIELDS}
		if item["id"] is None:
			claim["item"] = None
		else:
			item["is_deleted"] = bool(item["is_deleted"])
			claim["item"] = item
		claims.append(claim)
	return claims


def update_claim_status(claim_id: str, status: str, db_path: Optional[str] = None) -> Optional[Dict[str, Any]]:
	init_db(db_path)
	path = _get_db_path(db_path)
	conn = _connect(path)
	try:
		conn.execute(
			"UPDATE claims SET status = ?, updated_at = ? WHERE id = ?",
			(status, _now_iso(), claim_id),
		)
		conn.commit()
	finally:
		conn.close()
	return get_claim(claim_id, db_path=db_path)


def get_storage_meta(db_path: Optional[str] = None) -> Dict[str, object]:
	init_db(db_path)
	path = _get_db_path(db_path)
	conn = _connect(path)
	try:
		conn.row_factory = sqlite3.Row
		quick_check = conn.execute("PRAGMA quick_check").fetchone()[0]
		journal_mode = conn.execute("PRAGMA journal_mode").fetchone()[0]
		return {
			"path": path,
			"journal_mode": journal_mode,
			"quick_check": quick_check,
		}
	finally:
		conn.close()
