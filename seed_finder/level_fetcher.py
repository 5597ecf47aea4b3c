#!/usr/bin/env python3
"""
Level Fetcher - remote level metadata
=====================================
Version: 1.0.0

Fetches raw level data from a list of fallback endpoints and tries to
decode it into level text. Used only to pick a SimulationModel; the seed
search itself does no I/O of this kind.

Decoding, in order:
    1. JSON wrapper with a levelString-like field (unwrapped recursively)
    2. URL-safe base64 -> raw deflate, then zlib
    3. base64-decoded plain text that looks like level data (has | , ; :)

Every response is capped at MAX_RAW_BYTES.
"""

import base64
import binascii
import json
import logging
import time
import zlib
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

import requests

from .config import MAX_RAW_BYTES

logger = logging.getLogger(__name__)

ENDPOINTS = [
    "https://gdbrowser.com/api/download/{level_id}",
    "https://gdbrowser.com/api/level/{level_id}",
    "https://gdbrowser.com/api/getGJLevelWithUserCredits.php?levelID={level_id}",
    "https://api.gdbrowser.com/download/{level_id}",
    "https://gdbrowser.com/api/search/{level_id}",
]

JSON_LEVEL_FIELDS = ("levelString", "levelstring", "level_string", "level", "data")

DEFAULT_TIMEOUT_SECONDS = 7.0
DEFAULT_RETRIES = 2
RETRY_BACKOFF_SECONDS = 0.3


class LevelFetchError(RuntimeError):
    """One endpoint could not deliver a usable response."""


@dataclass
class LevelInfo:
    level_id: str
    raw: str = ""
    decoded: Optional[str] = None
    source: Optional[str] = None

    @property
    def has_decoded(self) -> bool:
        return bool(self.decoded)


# =============================================================================
# DECODING
# =============================================================================

def try_decode_level_string(raw_text) -> Optional[str]:
    """Best-effort decode of a level payload. Returns None when nothing fits."""
    if not raw_text or not isinstance(raw_text, str):
        return None
    candidate = raw_text.strip()

    try:
        parsed = json.loads(candidate)
    except ValueError:
        parsed = None
    if isinstance(parsed, dict):
        for key in JSON_LEVEL_FIELDS:
            maybe = parsed.get(key)
            if isinstance(maybe, str) and len(maybe) > 10:
                return try_decode_level_string(maybe)

    if len(candidate) > MAX_RAW_BYTES:
        logger.warning(f"Level payload too large to decode ({len(candidate)} chars)")
        return None

    normalised = candidate.replace("-", "+").replace("_", "/")
    normalised += "=" * (-len(normalised) % 4)
    try:
        buf = base64.b64decode(normalised)
    except (binascii.Error, ValueError):
        return None
    if not buf or len(buf) > MAX_RAW_BYTES:
        return None

    for wbits in (-zlib.MAX_WBITS, zlib.MAX_WBITS):
        try:
            text = zlib.decompress(buf, wbits).decode("utf-8", errors="replace")
        except zlib.error:
            continue
        if text:
            return text

    text = buf.decode("utf-8", errors="replace")
    if text and any(sep in text for sep in "|,;:"):
        return text
    return None


# =============================================================================
# FETCHING
# =============================================================================

def _parse_content_length(value) -> Optional[int]:
    """Header value as int; None when absent or unparseable (the body cap still applies)."""
    if not value:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.debug(f"Ignoring malformed Content-Length: {value!r}")
        return None


def fetch_with_timeout(
    url: str,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    retries: int = DEFAULT_RETRIES,
    session: Optional[requests.Session] = None,
) -> str:
    """GET ``url`` with a per-attempt timeout and linear back-off between attempts."""
    http = session or requests
    last_error: Optional[Exception] = None

    for attempt in range(1, retries + 1):
        try:
            response = http.get(url, timeout=timeout)
            if not response.ok:
                raise LevelFetchError(
                    f"HTTP {response.status_code} ({url}), response len {len(response.text or '')}"
                )
            content_length = _parse_content_length(response.headers.get("content-length"))
            if content_length is not None and content_length > MAX_RAW_BYTES:
                raise LevelFetchError(f"Content-Length too large: {content_length}")
            text = response.text
            if len(text) > MAX_RAW_BYTES:
                raise LevelFetchError(f"Response too large ({len(text)} bytes)")
            return text
        except (requests.RequestException, LevelFetchError) as e:
            last_error = e
            logger.debug(f"Attempt {attempt}/{retries} for {url} failed: {e}")
            if attempt < retries:
                time.sleep(RETRY_BACKOFF_SECONDS * attempt)

    raise LevelFetchError(f"{url}: {last_error}")


def fetch_and_decode_level(
    level_id: str,
    endpoints=None,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    retries: int = DEFAULT_RETRIES,
    session: Optional[requests.Session] = None,
) -> LevelInfo:
    """
    Try each endpoint in turn. The first non-empty response wins, decoded
    or not, so the raw payload can still be saved for analysis.
    """
    level_id = str(level_id)
    last_raw = ""

    for template in endpoints or ENDPOINTS:
        url = template.format(level_id=level_id)
        logger.info(f"Trying endpoint: {url}")
        try:
            text = fetch_with_timeout(url, timeout=timeout, retries=retries, session=session)
        except LevelFetchError as e:
            logger.info(f"Endpoint {url} failed: {e}")
            continue

        if not text:
            logger.info(f"Endpoint {url} returned empty response")
            continue

        last_raw = text
        decoded = try_decode_level_string(text)
        if decoded:
            logger.info(f"Successfully decoded level data from {url}")
        else:
            logger.info(f"Could not decode payload from {url}, keeping raw response")
        return LevelInfo(level_id=level_id, raw=text, decoded=decoded, source=url)

    logger.warning(f"No endpoint returned data for level {level_id}")
    return LevelInfo(level_id=level_id, raw=last_raw)


def save_level_artifacts(info: LevelInfo, data_dir) -> Dict[str, Path]:
    """Write raw (and decoded, when present) payloads under ``data_dir``."""
    data_path = Path(data_dir)
    data_path.mkdir(parents=True, exist_ok=True)
    written = {}

    raw_path = data_path / f"level_{info.level_id}.raw.txt"
    raw_path.write_text(info.raw or "", encoding="utf-8")
    written["raw"] = raw_path
    logger.info(f"Saved raw level response to {raw_path}")

    if info.decoded:
        decoded_path = data_path / f"level_{info.level_id}.decoded.txt"
        decoded_path.write_text(info.decoded, encoding="utf-8")
        written["decoded"] = decoded_path
        logger.info(f"Saved decoded level data to {decoded_path}")
    else:
        logger.info("No decoded payload available for this level")

    return written
