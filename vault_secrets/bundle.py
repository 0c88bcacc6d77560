"""
Unsigned request bundles.

A bundle parks a prepared request while a multisig approves its digest
on-chain. The request body is stored as raw JSON inside the bundle file and
is read back byte for byte, so the replayed request is exactly the one that
was fingerprinted.
"""

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional, Tuple, Union

from pydantic import BaseModel, ValidationError as PydanticValidationError, field_validator

from .digest import digest_hex
from .exceptions import BundleError

logger = logging.getLogger(__name__)

BUNDLE_SUFFIX = ".json"
REQUIRED_FIELDS = ("request_id", "method", "digest_hex", "request_body")
_FILE_MODE = 0o600


class UnsignedBundle(BaseModel):
    request_id: str
    method: str
    digest_hex: str
    request_body: bytes
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def _ensure_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @field_validator("request_body")
    @classmethod
    def _ensure_json(cls, value: bytes) -> bytes:
        try:
            json.loads(value)
        except ValueError as exc:
            raise ValueError(f"request_body is not valid JSON: {exc}") from exc
        return value

    @classmethod
    def new(cls, request_id: str, method: str, digest: bytes, request_body: bytes) -> "UnsignedBundle":
        return cls(
            request_id=request_id,
            method=method,
            digest_hex=digest_hex(digest),
            request_body=request_body,
            created_at=datetime.now(timezone.utc),
        )


def bundle_filename(digest: bytes) -> str:
    return digest.hex() + BUNDLE_SUFFIX


def _format_created_at(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def dump_bundle(bundle: UnsignedBundle) -> str:
    """Render a bundle as indented JSON with the request body embedded verbatim."""
    head = {
        "request_id": bundle.request_id,
        "method": bundle.method,
        "digest_hex": bundle.digest_hex,
        "created_at": _format_created_at(bundle.created_at),
    }
    text = json.dumps(head, indent=2)
    body = bundle.request_body.decode("utf-8")
    return text[: -len("\n}")] + ',\n  "request_body": ' + body + "\n}\n"


def save_bundle(path: Union[str, Path], bundle: UnsignedBundle) -> Path:
    """Write (or overwrite) a bundle file with owner-only permissions."""
    target = Path(path)
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(target, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, _FILE_MODE)
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(dump_bundle(bundle))
        os.chmod(target, _FILE_MODE)
    except OSError as exc:
        raise BundleError(f"failed to write bundle {target}: {exc}") from exc
    logger.info("Saved unsigned bundle %s", target)
    return target


def _skip_ws(text: str, idx: int) -> int:
    while idx < len(text) and text[idx] in " \t\r\n":
        idx += 1
    return idx


def _iter_top_level(text: str) -> Iterator[Tuple[str, int, int]]:
    """Yield ``(key, start, end)`` spans of each top-level member value."""
    decoder = json.JSONDecoder()
    idx = _skip_ws(text, 0)
    if text[idx : idx + 1] != "{":
        return
    idx = _skip_ws(text, idx + 1)
    while idx < len(text) and text[idx] != "}":
        key, idx = decoder.raw_decode(text, idx)
        idx = _skip_ws(text, idx)
        idx = _skip_ws(text, idx + 1)  # ':'
        start = idx
        _, end = decoder.raw_decode(text, start)
        yield key, start, end
        idx = _skip_ws(text, end)
        if text[idx : idx + 1] == ",":
            idx = _skip_ws(text, idx + 1)


def _raw_member(text: str, name: str) -> Optional[str]:
    for key, start, end in _iter_top_level(text):
        if key == name:
            return text[start:end]
    return None


def load_bundle(path: Union[str, Path]) -> UnsignedBundle:
    source = Path(path)
    try:
        text = source.read_text(encoding="utf-8")
    except OSError as exc:
        raise BundleError(f"failed to read bundle {source}: {exc}") from exc

    try:
        data = json.loads(text)
    except ValueError as exc:
        raise BundleError(f"invalid bundle: {exc}") from exc
    if not isinstance(data, dict):
        raise BundleError("invalid bundle: expected a JSON object")
    if any(data.get(name) in (None, "") for name in REQUIRED_FIELDS):
        raise BundleError("invalid bundle: missing required fields")

    raw_body = _raw_member(text, "request_body")
    try:
        return UnsignedBundle(
            request_id=data["request_id"],
            method=data["method"],
            digest_hex=data["digest_hex"],
            request_body=raw_body.encode("utf-8"),
            created_at=data.get("created_at") or datetime.now(timezone.utc),
        )
    except PydanticValidationError as exc:
        raise BundleError(f"invalid bundle: {exc}") from exc


def find_bundle_by_request_id(directory: Union[str, Path], request_id: str) -> Optional[Path]:
    """Return the bundle in ``directory`` saved for ``request_id``, if any."""
    folder = Path(directory)
    if not folder.is_dir():
        return None
    candidates: List[Path] = sorted(folder.glob("*" + BUNDLE_SUFFIX))
    for candidate in candidates:
        try:
            bundle = load_bundle(candidate)
        except BundleError as exc:
            logger.debug("Skipping %s while searching bundles: %s", candidate, exc)
            continue
        if bundle.request_id == request_id:
            return candidate
    return None
