"""Async client for the cloud drive listing and download API."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

import httpx
import jwt

from ..exceptions import (
    ConfigurationError,
    DownloadFailedError,
    DriveAuthenticationError,
    TransientSourceError,
)
from ..utils.config import DriveSettings
from ..utils.logging import setup_logger
from ..utils.retry import execute_with_retry
from ..utils.timeutils import parse_rfc3339
from .token_cache import AccessToken, TokenCache, credential_fingerprint, get_default_token_cache

logger = setup_logger(__name__, context={"source_kind": "cloud_drive"})

JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"
FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
LIST_FIELDS = "nextPageToken,files(id,name,mimeType,modifiedTime,size,md5Checksum)"
ASSERTION_LIFETIME_SECONDS = 3600
MAX_PAGE_SIZE = 1000
DOWNLOAD_TIMEOUT_SECONDS = 120.0


@dataclass(frozen=True, slots=True)
class ServiceAccountCredentials:
    client_email: str
    private_key: str
    token_uri: str

    @property
    def fingerprint(self) -> str:
        return credential_fingerprint(self.client_email, self.private_key)

    @classmethod
    def from_mapping(cls, raw: Any, *, default_token_uri: str) -> ServiceAccountCredentials | None:
        if not isinstance(raw, dict):
            return None
        email = str(raw.get("client_email") or "").strip()
        key = str(raw.get("private_key") or "").replace("\\n", "\n").strip()
        if not email or not key:
            return None
        token_uri = str(raw.get("token_uri") or "").strip() or default_token_uri
        return cls(client_email=email, private_key=key, token_uri=token_uri)

    @classmethod
    def resolve(
        cls,
        settings: DriveSettings,
        *,
        override_json: str | None = None,
    ) -> ServiceAccountCredentials:
        """Resolve credentials from a per-source JSON blob, then global settings.

        Order: source override, settings JSON, settings key file, then a bare
        client email plus private key.
        """

        def _parse(text: str | None) -> ServiceAccountCredentials | None:
            if not text or not text.strip():
                return None
            try:
                payload = json.loads(text)
            except json.JSONDecodeError:
                return None
            return cls.from_mapping(payload, default_token_uri=settings.token_uri)

        for candidate in (override_json, settings.service_account_json):
            credentials = _parse(candidate)
            if credentials is not None:
                return credentials

        if settings.service_account_file is not None:
            try:
                text = Path(settings.service_account_file).expanduser().read_text(encoding="utf-8")
            except OSError as exc:
                raise ConfigurationError(
                    f"Unable to read drive service account file: {exc}"
                ) from exc
            credentials = _parse(text)
            if credentials is not None:
                return credentials

        if settings.client_email and settings.private_key:
            return cls(
                client_email=settings.client_email.strip(),
                private_key=settings.private_key.strip(),
                token_uri=settings.token_uri,
            )

        raise ConfigurationError(
            "Cloud drive credentials not configured. Set TABULAR_DRIVE__SERVICE_ACCOUNT_JSON "
            "(or a key file, or client email plus private key)."
        )


@dataclass(frozen=True, slots=True)
class DriveFile:
    id: str
    name: str
    mime_type: str = ""
    modified_time: str | None = None
    size: int = 0
    md5_checksum: str | None = None

    @property
    def modified_at(self) -> datetime | None:
        return parse_rfc3339(self.modified_time)

    @classmethod
    def from_api(cls, raw: dict[str, Any]) -> DriveFile:
        try:
            size = int(raw.get("size") or 0)
        except (TypeError, ValueError):
            size = 0
        return cls(
            id=str(raw.get("id") or "").strip(),
            name=str(raw.get("name") or "").strip() or "unnamed",
            mime_type=str(raw.get("mimeType") or "").strip(),
            modified_time=str(raw["modifiedTime"]) if raw.get("modifiedTime") else None,
            size=size,
            md5_checksum=str(raw["md5Checksum"]).strip() if raw.get("md5Checksum") else None,
        )


@dataclass(slots=True)
class DriveListing:
    files: list[DriveFile] = field(default_factory=list)
    truncated: bool = False


class GoogleDriveClient:
    """Service-account authenticated access to one drive folder."""

    def __init__(
        self,
        credentials: ServiceAccountCredentials,
        settings: DriveSettings,
        *,
        token_cache: TokenCache | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.credentials = credentials
        self.settings = settings
        self.token_cache = token_cache or get_default_token_cache()
        self._transport = transport

    def _client(self, timeout: float | None = None) -> httpx.AsyncClient:
        kwargs: dict[str, Any] = {"timeout": timeout or self.settings.timeout_seconds}
        if self._transport is not None:
            kwargs["transport"] = self._transport
        return httpx.AsyncClient(**kwargs)

    def _assertion(self, issued_at: int) -> str:
        payload = {
            "iss": self.credentials.client_email,
            "scope": self.settings.scope,
            "aud": self.credentials.token_uri,
            "iat": issued_at,
            "exp": issued_at + ASSERTION_LIFETIME_SECONDS,
        }
        try:
            return jwt.encode(payload, self.credentials.private_key, algorithm="RS256")
        except (ValueError, TypeError, jwt.PyJWTError) as exc:
            raise DriveAuthenticationError(
                f"Unable to sign service account assertion: {exc}"
            ) from exc

    async def access_token(self) -> str:
        """Return a cached bearer token, exchanging a fresh assertion when needed."""

        cache_key = self.credentials.fingerprint
        cached = self.token_cache.get(cache_key)
        if cached is not None:
            return cached.value

        issued_at = int(time.time())
        form = {"grant_type": JWT_BEARER_GRANT, "assertion": self._assertion(issued_at)}
        async with self._client() as client:
            try:
                response = await execute_with_retry(
                    lambda: client.post(self.credentials.token_uri, data=form),
                    method="POST",
                    retry_config=self.settings.retry,
                    log=logger,
                )
            except httpx.HTTPError as exc:
                raise DriveAuthenticationError(f"Token exchange failed: {exc}") from exc

        if response.status_code >= 400:
            raise DriveAuthenticationError(
                f"Token exchange failed with HTTP {response.status_code}"
            )
        payload = response.json()
        token = str(payload.get("access_token") or "").strip()
        if not token:
            raise DriveAuthenticationError("Failed to obtain cloud drive access token.")
        try:
            expires_in = int(payload.get("expires_in") or ASSERTION_LIFETIME_SECONDS)
        except (TypeError, ValueError):
            expires_in = ASSERTION_LIFETIME_SECONDS

        self.token_cache.put(
            cache_key, AccessToken(value=token, expires_at=issued_at + max(60, expires_in))
        )
        return token

    def _list_params(
        self,
        folder_id: str,
        *,
        page_size: int,
        shared_drive_id: str | None,
        include_shared_drives: bool,
        page_token: str | None,
    ) -> dict[str, Any]:
        query = " and ".join(
            [
                f"'{folder_id}' in parents",
                "trashed = false",
                f"mimeType != '{FOLDER_MIME_TYPE}'",
            ]
        )
        params: dict[str, Any] = {
            "q": query,
            "fields": LIST_FIELDS,
            "pageSize": page_size,
            "orderBy": "modifiedTime desc",
            "supportsAllDrives": "true",
            "includeItemsFromAllDrives": "true" if include_shared_drives else "false",
        }
        if page_token:
            params["pageToken"] = page_token
        if shared_drive_id:
            params["corpora"] = "drive"
            params["driveId"] = shared_drive_id
        else:
            params["corpora"] = "allDrives" if include_shared_drives else "user"
        return params

    async def list_files(
        self,
        folder_id: str,
        *,
        max_files: int,
        shared_drive_id: str | None = None,
        include_shared_drives: bool = True,
    ) -> DriveListing:
        """List non-folder files under ``folder_id``, newest first, up to ``max_files``."""

        if not folder_id:
            raise ConfigurationError("Cloud drive folderId is required.")

        token = await self.access_token()
        headers = {"Authorization": f"Bearer {token}"}
        listing = DriveListing()
        page_token: str | None = None
        limit = max(1, max_files)

        async with self._client() as client:
            while len(listing.files) < limit:
                params = self._list_params(
                    folder_id,
                    page_size=max(1, min(MAX_PAGE_SIZE, limit - len(listing.files))),
                    shared_drive_id=shared_drive_id,
                    include_shared_drives=include_shared_drives,
                    page_token=page_token,
                )
                try:
                    response = await execute_with_retry(
                        lambda: client.get(
                            f"{self.settings.api_base}/files", params=params, headers=headers
                        ),
                        method="GET",
                        retry_config=self.settings.retry,
                        log=logger,
                    )
                    response.raise_for_status()
                except httpx.HTTPError as exc:
                    raise TransientSourceError(f"Cloud drive listing failed: {exc}") from exc
                payload = response.json()

                for raw in payload.get("files") or []:
                    listing.files.append(DriveFile.from_api(raw))
                    if len(listing.files) >= limit:
                        break

                page_token = str(payload.get("nextPageToken") or "").strip() or None
                if not page_token:
                    break

        listing.truncated = page_token is not None and len(listing.files) >= limit
        return listing

    async def download(self, file_id: str, destination: Path) -> Path:
        """Stream a file's content to ``destination``."""

        clean_id = file_id.strip()
        if not clean_id:
            raise DownloadFailedError("Cloud drive fileId is required for download.")

        token = await self.access_token()
        destination.parent.mkdir(parents=True, exist_ok=True)
        url = f"{self.settings.api_base}/files/{clean_id}"
        params = {"alt": "media", "supportsAllDrives": "true"}
        try:
            async with self._client(DOWNLOAD_TIMEOUT_SECONDS) as client:
                async with client.stream(
                    "GET", url, params=params, headers={"Authorization": f"Bearer {token}"}
                ) as response:
                    if response.status_code >= 400:
                        raise DownloadFailedError(
                            f"Download of {clean_id} failed with HTTP {response.status_code}"
                        )
                    with open(destination, "wb") as handle:
                        async for chunk in response.aiter_bytes():
                            handle.write(chunk)
        except (httpx.HTTPError, OSError) as exc:
            destination.unlink(missing_ok=True)
            raise DownloadFailedError(f"Download of {clean_id} failed: {exc}") from exc
        except DownloadFailedError:
            destination.unlink(missing_ok=True)
            raise
        return destination
