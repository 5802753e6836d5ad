"""
HTTP transport for sanitized sessions - the default upload collaborator.

Uploads go to POST {API_URL}/cli/sessions in chunks, each carrying a checksum
and batch position so the server can reassemble and deduplicate them.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
from collections.abc import Sequence
from typing import Any

import httpx

from vibelog.config.base import VibelogSettings
from vibelog.exceptions import AuthenticationError, NetworkError, UploadError
from vibelog.protocols import ProgressCallback
from vibelog.schemas.sessions import ApiSession, PointsEarned, UploadResult

__all__ = ['ApiClient']

logger = logging.getLogger(__name__)


def _checksum(sessions: list[dict[str, Any]]) -> str:
    encoded = json.dumps(sessions, separators=(',', ':')).encode('utf-8')
    return hashlib.sha256(encoded).hexdigest()


def _int(value: Any) -> int:
    return value if isinstance(value, int) and not isinstance(value, bool) else 0


class ApiClient:
    """
    vibe-log API client.

    Authenticates with a bearer token from settings (VIBE_LOG_API_TOKEN).
    """

    # One retry for transport failures and 5xx responses; 4xx are never retried
    MAX_RETRIES = 1

    def __init__(
        self,
        settings: VibelogSettings,
        transport: httpx.AsyncBaseTransport | None = None,
        retry_delay_seconds: float = 1.0,
    ) -> None:
        """
        Initialize the client.

        Args:
            settings: Settings providing API_URL, API_TOKEN, chunk size and timeout
            transport: Optional httpx transport (tests pass httpx.MockTransport)
            retry_delay_seconds: Base delay before a retry, multiplied by the attempt number
        """
        self.settings = settings
        self.transport = transport
        self.retry_delay_seconds = retry_delay_seconds
        self.base_url = settings.API_URL.rstrip('/')

    def is_authenticated(self) -> bool:
        return bool(self.settings.API_TOKEN)

    async def upload(
        self,
        sessions: Sequence[ApiSession],
        on_progress: ProgressCallback | None = None,
    ) -> UploadResult:
        """
        Upload sanitized sessions in chunks and merge the per-chunk results.

        Args:
            sessions: Sanitized payloads
            on_progress: Called after each chunk with (uploaded, total, cumulative KB)

        Returns:
            Aggregated created/duplicates counts, points and the latest streak

        Raises:
            AuthenticationError: If no token is configured or the server rejects it
            UploadError: If the server rejects a chunk (RATE_LIMITED for HTTP 429)
            NetworkError: For 502/503/504 responses
            httpx.TransportError: If the server cannot be reached after retrying
        """
        if not self.settings.API_TOKEN:
            raise AuthenticationError('Not authenticated. Set VIBE_LOG_API_TOKEN to upload sessions.')

        payloads = [session.model_dump(mode='json', by_alias=True, exclude_none=True) for session in sessions]
        chunk_size = self.settings.UPLOAD_CHUNK_SIZE
        chunks = [payloads[i : i + chunk_size] for i in range(0, len(payloads), chunk_size)]

        results: list[dict[str, Any]] = []
        uploaded = 0
        uploaded_kb = 0.0

        async with httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.settings.UPLOAD_TIMEOUT_SECONDS,
            transport=self.transport,
            headers={
                'Authorization': f'Bearer {self.settings.API_TOKEN}',
                'User-Agent': f'{self.settings.APP_NAME}/{self.settings.VERSION}',
            },
        ) as client:
            for batch_number, chunk in enumerate(chunks, 1):
                body = {
                    'sessions': chunk,
                    'checksum': _checksum(chunk),
                    'totalSessions': len(payloads),
                    'batchNumber': batch_number,
                    'totalBatches': len(chunks),
                }
                size_kb = len(json.dumps(body).encode('utf-8')) / 1024
                logger.debug(
                    'POST /cli/sessions batch %d/%d: %d sessions (%.2f KB)',
                    batch_number,
                    len(chunks),
                    len(chunk),
                    size_kb,
                )

                results.append(await self._post_chunk(client, body))

                uploaded += len(chunk)
                uploaded_kb += size_kb
                if on_progress is not None:
                    on_progress(uploaded, len(payloads), uploaded_kb)

        return self._merge_results(results)

    async def _post_chunk(self, client: httpx.AsyncClient, body: dict[str, Any]) -> dict[str, Any]:
        attempt = 0
        while True:
            try:
                response = await client.post('/cli/sessions', json=body)
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                if status >= 500 and attempt < self.MAX_RETRIES:
                    attempt += 1
                    logger.debug('Server error %d, retrying (%d/%d)', status, attempt, self.MAX_RETRIES)
                    await asyncio.sleep(self.retry_delay_seconds * attempt)
                    continue
                raise self._status_error(e) from e
            except httpx.TransportError as e:
                if attempt < self.MAX_RETRIES:
                    attempt += 1
                    logger.debug('Network error, retrying (%d/%d): %s', attempt, self.MAX_RETRIES, e)
                    await asyncio.sleep(self.retry_delay_seconds * attempt)
                    continue
                raise

            data = response.json() if response.content else {}
            return data if isinstance(data, dict) else {}

    @staticmethod
    def _status_error(error: httpx.HTTPStatusError) -> Exception:
        status = error.response.status_code
        if status == 401:
            return AuthenticationError('API token was rejected. Check VIBE_LOG_API_TOKEN.')
        if status == 429:
            return UploadError('Too many uploads. Please wait a moment and try again.', 'RATE_LIMITED', status)
        if status in (502, 503, 504):
            return NetworkError('SERVICE_UNAVAILABLE')
        return UploadError(f'Upload rejected by server (HTTP {status}).', 'SEND_FAILED', status)

    @staticmethod
    def _merge_results(results: list[dict[str, Any]]) -> UploadResult:
        points = [result['pointsEarned'] for result in results if isinstance(result.get('pointsEarned'), dict)]
        streaks = [_int(result['streak']) for result in results if isinstance(result.get('streak'), int)]
        return UploadResult(
            created=sum(_int(result.get('created')) for result in results),
            duplicates=sum(_int(result.get('duplicates')) for result in results),
            points_earned=PointsEarned(
                streak=sum(_int(p.get('streak')) for p in points),
                volume=sum(_int(p.get('volume')) for p in points),
                total=sum(_int(p.get('total')) for p in points),
            )
            if points
            else None,
            streak=streaks[-1] if streaks else None,
        )
