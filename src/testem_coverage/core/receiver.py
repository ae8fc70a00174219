"""Coverage receiver endpoint.

Instrumented test pages upload their coverage data when a test file
finishes. The upload body is ``{"payload": "<JSON string>"}`` (sent as JSON or
as form data) where the JSON string holds the page's ``navigator``,
``document`` and ``coverage`` objects. Each upload is written to its own file
in the coverage directory; the file name identifies the browser and the test
file that produced it.
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
import re
from pathlib import Path
from typing import Final
from uuid import uuid4

from aiohttp import web

from testem_coverage.types import BrowserInfo

__all__ = [
    "COVERAGE_SAVED_MESSAGE",
    "CoverageReceiver",
    "build_coverage_filename",
    "extract_test_filename",
    "ua_match",
]

logger = logging.getLogger(__name__)

COVERAGE_SAVED_MESSAGE: Final[str] = "You have successfully saved your coverage report."

# First match wins; mozilla is only considered for non-"compatible" agents
_UA_PATTERNS: Final[tuple[re.Pattern[str], ...]] = (
    re.compile(r"(chrome)[ /]([\w.]+)"),
    re.compile(r"(webkit)[ /]([\w.]+)"),
    re.compile(r"(opera)(?:.*version|)[ /]([\w.]+)"),
    re.compile(r"(msie) ([\w.]+)"),
)
_MOZILLA_PATTERN: Final[re.Pattern[str]] = re.compile(r"(mozilla)(?:.*? rv:([\w.]+)|)")

_MAX_NAME_ATTEMPTS: Final[int] = 10


def ua_match(user_agent: str | None) -> BrowserInfo:
    """Classify a user agent string.

    Args:
        user_agent: Raw ``navigator.userAgent`` value

    Returns:
        Lowercase browser name and version, ``unknown``/``0`` if unrecognized

    Examples:
        >>> ua_match("Mozilla/5.0 (compatible; MSIE 9.0; Windows NT 6.1)")
        BrowserInfo(name='msie', version='9.0')
        >>> ua_match("SomeBot/1.0")
        BrowserInfo(name='unknown', version='0')
    """
    ua = (user_agent or "").lower()

    match: re.Match[str] | None = None
    for pattern in _UA_PATTERNS:
        match = pattern.search(ua)
        if match:
            break
    if match is None and "compatible" not in ua:
        match = _MOZILLA_PATTERN.search(ua)

    if match is None:
        return BrowserInfo(name="unknown", version="0")
    return BrowserInfo(name=match.group(1) or "unknown", version=match.group(2) or "0")


def extract_test_filename(url: object) -> str:
    """Return the last path segment of a test page URL, or ``unknown``."""
    if not isinstance(url, str) or not url:
        return "unknown"
    return url.split("/")[-1]


def build_coverage_filename(browser: BrowserInfo, test_filename: str, instance_id: str, suffix: int | str) -> str:
    """Build the coverage file name for one upload.

    Examples:
        >>> build_coverage_filename(BrowserInfo("chrome", "91.0"), "foo.html", "abc", 42)
        'coverage-chrome-91.0-foo.html-abc-42.json'
    """
    return f"coverage-{browser.name}-{browser.version}-{test_filename}-{instance_id}-{suffix}.json"


def _lookup(data: object, key: str) -> object:
    if isinstance(data, dict):
        return data.get(key)  # pyright: ignore[reportUnknownMemberType, reportUnknownVariableType]
    return None


class CoverageReceiver:
    """aiohttp handler that persists coverage uploads.

    The coverage directory is created on construction so that it exists
    before the server accepts traffic.

    Example:
        >>> receiver = CoverageReceiver(coverage_dir, instance_id="a1b2c3")
        >>> app.router.add_route("PUT", "/coverage", receiver.handle)
        >>> app.router.add_route("POST", "/coverage", receiver.handle)
    """

    def __init__(self, coverage_dir: Path, *, instance_id: str) -> None:
        self.coverage_dir: Path = coverage_dir
        self.instance_id: str = instance_id
        self.coverage_dir.mkdir(parents=True, exist_ok=True)

    async def handle(self, request: web.Request) -> web.Response:
        """Handle a ``PUT``/``POST`` upload."""
        try:
            upload = await self._read_upload(request)
            output_path = await self.save(upload)
        except Exception as exc:
            logger.warning(
                "Failed to save coverage upload: %s",
                exc,
                extra={"remote": request.remote, "error_type": type(exc).__name__},
            )
            return web.json_response({"isError": True, "message": str(exc)}, status=500)

        logger.debug("Saved coverage upload", extra={"path": str(output_path)})
        return web.json_response({"message": COVERAGE_SAVED_MESSAGE}, status=200)

    async def _read_upload(self, request: web.Request) -> dict[str, object]:
        if request.content_type == "application/json":
            body: object = await request.json()
        else:
            body = dict(await request.post())

        payload = _lookup(body, "payload")
        if payload is None:
            msg = "Request body has no 'payload' field"
            raise ValueError(msg)

        upload: object = json.loads(payload) if isinstance(payload, str) else payload
        if not isinstance(upload, dict):
            msg = "Coverage payload must be a JSON object"
            raise ValueError(msg)
        return upload  # pyright: ignore[reportUnknownVariableType]

    async def save(self, upload: dict[str, object]) -> Path:
        """Write the ``coverage`` field of an upload to a new file.

        Args:
            upload: Decoded upload with ``navigator``, ``document`` and ``coverage``

        Returns:
            Path of the written file
        """
        browser = ua_match(_as_str(_lookup(_lookup(upload, "navigator"), "userAgent")))
        test_filename = extract_test_filename(_lookup(_lookup(upload, "document"), "URL"))
        content = json.dumps(upload.get("coverage"), indent=2)

        return await asyncio.to_thread(self._write_exclusive, browser, test_filename, content)

    def _write_exclusive(self, browser: BrowserInfo, test_filename: str, content: str) -> Path:
        for _ in range(_MAX_NAME_ATTEMPTS):
            suffix = round(random.random() * 10000)
            path = self.coverage_dir / build_coverage_filename(browser, test_filename, self.instance_id, suffix)
            try:
                with path.open("x", encoding="utf-8") as f:
                    _ = f.write(content)
            except FileExistsError:
                logger.debug("Coverage file name collision, drawing a new suffix", extra={"path": str(path)})
                continue
            return path

        path = self.coverage_dir / build_coverage_filename(browser, test_filename, self.instance_id, uuid4().hex)
        with path.open("x", encoding="utf-8") as f:
            _ = f.write(content)
        return path


def _as_str(value: object) -> str | None:
    return value if isinstance(value, str) else None
