"""HTTP client for the prepare-upload endpoint and the CDN."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import httpx
from pydantic import ValidationError

from mediarelay.shared.exceptions import AuthenticationError, TransportError, UploadError
from mediarelay.shared.models import UploadParameters
from mediarelay.upload.multipart import MultipartBody, ReadCallback

logger = logging.getLogger(__name__)


class UploadClient:
    """Two-step upload: fetch signed parameters, then stream the file to the CDN."""

    def __init__(
        self,
        *,
        prepare_url: str,
        cdn_url: str,
        user_agent: str = "Mozilla/5.0",
        timeout: int = 3600,
        read_size: int = 256 * 1024,
        read_delay: float = 0.005,
    ) -> None:
        self._prepare_url = prepare_url
        self._cdn_url = cdn_url
        self._user_agent = user_agent
        self._timeout = timeout
        self._read_size = read_size
        self._read_delay = read_delay

    async def prepare(self, file_name: str, size: int, cookies: str) -> UploadParameters:
        """Request signed upload parameters for one file.

        Raises:
            AuthenticationError: If the endpoint answers with something other
                than JSON (typically the login page).
            UploadError: On transport errors or an incomplete JSON document.
        """
        headers = {
            "User-Agent": self._user_agent,
            "Cookie": cookies,
            "X-Requested-With": "XMLHttpRequest",
            "Accept": "application/json",
        }
        try:
            async with httpx.AsyncClient(timeout=30, follow_redirects=True) as client:
                resp = await client.post(
                    self._prepare_url,
                    data={"name": file_name, "size": str(size)},
                    headers=headers,
                )
                resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise UploadError(f"prepare request failed: {exc}") from exc

        try:
            data: Any = resp.json()
        except ValueError as exc:
            raise AuthenticationError("prepare endpoint did not return JSON, session is not authenticated") from exc
        if not isinstance(data, dict):
            raise AuthenticationError("prepare endpoint returned an unexpected JSON document")

        try:
            return UploadParameters.model_validate(data)
        except ValidationError as exc:
            raise UploadError(f"incomplete upload parameters: {exc}") from exc

    def build_body(
        self,
        params: UploadParameters,
        file_path: Path,
        on_read: ReadCallback | None = None,
    ) -> MultipartBody:
        return MultipartBody(
            params.form_fields(),
            file_path,
            read_size=self._read_size,
            read_delay=self._read_delay,
            on_read=on_read,
        )

    async def send(self, params: UploadParameters, body: MultipartBody) -> Any:
        """POST the multipart body to the CDN.

        Raises:
            UploadError: If the CDN rejects the upload.
            TransportError: On connection errors and timeouts.
        """
        url = params.upload_url or self._cdn_url
        headers = {
            "User-Agent": self._user_agent,
            "Content-Type": body.content_type,
            "Content-Length": str(body.content_length),
        }
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(url, content=body, headers=headers)
        except httpx.HTTPError as exc:
            raise TransportError(f"cdn upload failed: {exc}") from exc

        if resp.status_code >= 400:
            raise UploadError(f"cdn rejected upload: HTTP {resp.status_code} {resp.text[:200]}")
        try:
            return resp.json()
        except ValueError:
            return resp.text
