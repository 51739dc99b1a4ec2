"""Portal guard service package bootstrap.

Environment variables defined in the repository's `.env` files are loaded
before any module reads configuration, so `config.py` never captures defaults
just because the process was started without sourcing the dotenv files (for
example when running `uvicorn backend.portal.main:app` directly).
"""

from __future__ import annotations

from pathlib import Path

from dotenv import load_dotenv


def _load_dotenv_files() -> None:
	repo_root = Path(__file__).resolve().parents[2]
	candidates = (
		repo_root / "backend" / ".env",
		repo_root / "backend" / ".env.local",
		repo_root / ".env",
	)

	for candidate in candidates:
		if candidate.exists():
			load_dotenv(dotenv_path=candidate, override=False)


_load_dotenv_files()

__all__ = []
