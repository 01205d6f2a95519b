from __future__ import annotations

import os
from pathlib import Path
from typing import Iterable, MutableMapping, Optional


def parse_dotenv(text: str) -> dict[str, str]:
    """Parse ``.env`` text into a dict.

    - Supports lines: KEY=VALUE or export KEY=VALUE
    - Ignores blank lines and comments (# ...)
    - Strips one pair of matching quotes around the value
    """
    out: dict[str, str] = {}
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export ") :].strip()
        key, sep, value = line.partition("=")
        key = key.strip()
        if not sep or not key:
            continue
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
            value = value[1:-1]
        out[key] = value
    return out


def _allowed(key: str, allow_keys: Optional[set[str]], allow_prefixes: tuple[str, ...]) -> bool:
    if allow_keys is None and not allow_prefixes:
        return True
    if allow_keys is not None and key in allow_keys:
        return True
    return any(key.startswith(p) for p in allow_prefixes)


def load_dotenv(
    path: str | Path,
    *,
    override: bool = False,
    allow_keys: Optional[Iterable[str]] = None,
    allow_prefixes: Optional[Iterable[str]] = None,
    environ: Optional[MutableMapping[str, str]] = None,
) -> Optional[list[str]]:
    """Load a ``.env`` file into ``environ`` (``os.environ`` by default).

    Existing keys are kept unless ``override`` is set. When allow_keys /
    allow_prefixes is given, only matching keys are loaded.

    Returns the list of keys written, or None if the file does not exist.
    """
    p = Path(path)
    if not p.is_file():
        return None

    target = os.environ if environ is None else environ
    keys = set(allow_keys) if allow_keys is not None else None
    prefixes = tuple(allow_prefixes or ())

    written: list[str] = []
    for key, value in parse_dotenv(p.read_text(encoding="utf-8")).items():
        if not _allowed(key, keys, prefixes):
            continue
        if not override and key in target:
            continue
        target[key] = value
        written.append(key)
    return written


def load_dotenv_auto(
    *,
    env_file: Optional[str] = None,
    override: bool = False,
    allow_keys: Optional[Iterable[str]] = None,
    allow_prefixes: Optional[Iterable[str]] = None,
) -> Optional[Path]:
    """Try to load environment variables from the first ``.env`` found.

    Priority:
    1) BEACON_HUB_ENV_FILE (if set) or env_file parameter (if provided)
    2) ./ .env (current working dir)
    3) repo root's .env

    Returns the loaded path, else None.
    """
    candidates: list[Path] = []
    explicit = os.getenv("BEACON_HUB_ENV_FILE") or env_file
    if explicit:
        candidates.append(Path(explicit))
    candidates.append(Path.cwd() / ".env")
    # <repo>/beacon_hub/common/dotenv.py -> parents[2] is <repo>
    candidates.append(Path(__file__).resolve().parents[2] / ".env")

    allow_keys = list(allow_keys) if allow_keys is not None else None
    allow_prefixes = list(allow_prefixes) if allow_prefixes is not None else None
    for candidate in candidates:
        loaded = load_dotenv(
            candidate,
            override=override,
            allow_keys=allow_keys,
            allow_prefixes=allow_prefixes,
        )
        if loaded is not None:
            return candidate
    return None
