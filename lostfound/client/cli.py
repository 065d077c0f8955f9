from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from lostfound.client.chat_session import AssistantSessionClient


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
	parser = argparse.ArgumentParser(description="Chat with the Lost & Found assistant from a terminal.")
	parser.add_argument("--base-url", default="http://127.0.0.1:8000", help="Portal server base URL.")
	parser.add_argument("--timeout", type=float, default=30.0, help="Per-request timeout in seconds.")
	parser.add_argument("--verbose", action="store_true", help="Log client activity to stderr.")
	return parser.parse_args(argv)


async def _run(args: argparse.Namespace) -> int:
	def navigate(path: str) -> None:
		print(f"\n[navigate] {path}")

	session = AssistantSessionClient(args.base_url, navigate=navigate, timeout_s=args.timeout)
	loop = asyncio.get_running_loop()
	try:
		while True:
			line = await loop.run_in_executor(None, sys.stdin.readline)
			if not line:
				break
			if not line.strip():
				continue
			before = len(session.turns)
			await session.send(line.rstrip("\n"))
			if len(session.turns) > before + 1:
				print(session.turns[-1].display_text)
			if session.error:
				print(f"[error] {session.error}", file=sys.stderr)
	finally:
		await session.aclose()
	return 0


def main(argv: Optional[List[str]] = None) -> int:
	args = _parse_args(argv)
	if args.verbose:
		logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
	return asyncio.run(_run(args))


if __name__ == "__main__":
	raise SystemExit(main())
