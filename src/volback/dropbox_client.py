"""Dropbox storage backend built on the Dropbox HTTP API v2."""

import json
import logging
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import requests

from .exceptions import AuthenticationError, NetworkError, RemoteError, StorageError
from .storage_backend import ARCHIVE_SUFFIX, RemoteEntry, RemoteStorage, normalize_remote_path

logger = logging.getLogger(__name__)

TOKEN_URL = "https://api.dropbox.com/oauth2/token"
API_URL = "https://api.dropboxapi.com/2"
CONTENT_URL = "https://content.dropboxapi.com/2"


@dataclass(frozen=True)
class OAuthCredentials:
    """App credentials used for the refresh-token grant."""

    refresh_token: str
    client_id: str
    client_secret: str


@dataclass(frozen=True)
class TokenCache:
    """Bearer token together with its absolute expiry (epoch seconds).

    The value is immutable: ``refresh()`` returns a new cache instead of
    mutating this one.
    """

    access_token: str = ""
    expires_at: float = 0.0

    def is_valid(self, now: Optional[float] = None) -> bool:
        if now is None:
            now = time.time()
        return bool(self.access_token) and now < self.expires_at

    def refresh(
        self,
        session: requests.Session,
        credentials: OAuthCredentials,
        now: Optional[float] = None,
        timeout: Optional[float] = None,
    ) -> "TokenCache":
        """Run the refresh-token grant and return a fresh cache.

        Raises:
            AuthenticationError: If the grant fails for any reason
        """
        form = {
            "grant_type": "refresh_token",
            "refresh_token": credentials.refresh_token,
            "client_id": credentials.client_id,
            "client_secret": credentials.client_secret,
        }
        try:
            response = session.post(TOKEN_URL, data=form, timeout=timeout)
        except requests.exceptions.RequestException as e:
            raise AuthenticationError(f"Token refresh request failed: {e}") from e

        if response.status_code != 200:
            raise AuthenticationError(
                f"Token refresh failed with status {response.status_code}: {response.text}",
                status=response.status_code,
                body=response.text,
            )

        try:
            payload = response.json()
            access_token = payload["access_token"]
            expires_in = int(payload["expires_in"])
        except (ValueError, KeyError, TypeError) as e:
            raise AuthenticationError(f"Malformed token response: {e}") from e

        if now is None:
            now = time.time()
        return TokenCache(access_token=access_token, expires_at=now + expires_in)


class DropboxStorage(RemoteStorage):
    """Remote storage client for Dropbox.

    Owns the bearer token lifecycle: every call first makes sure a valid
    token is cached and otherwise refreshes it synchronously. Non-200
    responses raise RemoteError with the status and body; nothing is
    retried here.
    """

    def __init__(
        self,
        refresh_token: str,
        client_id: str,
        client_secret: str,
        session: Optional[requests.Session] = None,
        timeout: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize Dropbox client.

        Args:
            refresh_token: Long-lived OAuth refresh token
            client_id: Dropbox app key
            client_secret: Dropbox app secret
            session: Optional requests session (for testing)
            timeout: Optional per-request timeout in seconds (default: none)
            clock: Time source used for token expiry checks
        """
        self.credentials = OAuthCredentials(
            refresh_token=refresh_token, client_id=client_id, client_secret=client_secret
        )
        self.session = session if session is not None else requests.Session()
        self.timeout = timeout
        self._clock = clock
        self._token = TokenCache()
        self._token_lock = threading.Lock()

    @property
    def token(self) -> TokenCache:
        return self._token

    def _access_token(self) -> str:
        with self._token_lock:
            if not self._token.is_valid(self._clock()):
                logger.debug("Refreshing Dropbox access token")
                self._token = self._token.refresh(
                    self.session, self.credentials, now=self._clock(), timeout=self.timeout
                )
            return self._token.access_token

    def _post(
        self,
        url: str,
        operation: str,
        json_body: Optional[Dict[str, Any]] = None,
        data: Any = None,
        api_arg: Optional[Dict[str, Any]] = None,
    ) -> requests.Response:
        headers = {"Authorization": f"Bearer {self._access_token()}"}
        if json_body is not None:
            headers["Content-Type"] = "application/json"
            data = json.dumps(json_body)
        else:
            headers["Content-Type"] = "application/octet-stream"
        if api_arg is not None:
            headers["Dropbox-API-Arg"] = json.dumps(api_arg)

        try:
            response = self.session.post(url, data=data, headers=headers, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise NetworkError(f"Dropbox {operation} request failed: {e}") from e

        if response.status_code != 200:
            raise RemoteError(
                f"Dropbox {operation} failed with status {response.status_code}: {response.text}",
                status=response.status_code,
                body=response.text,
                operation=operation,
            )
        return response

    def list_entries(self, path: str) -> List[RemoteEntry]:
        path = normalize_remote_path(path)
        # Dropbox addresses the root folder as "" rather than "/"
        response = self._post(
            f"{API_URL}/files/list_folder",
            "list_folder",
            json_body={"path": "" if path == "/" else path, "recursive": False},
        )
        page = response.json()
        raw_entries = list(page.get("entries", []))

        while page.get("has_more"):
            response = self._post(
                f"{API_URL}/files/list_folder/continue",
                "list_folder/continue",
                json_body={"cursor": page["cursor"]},
            )
            page = response.json()
            raw_entries.extend(page.get("entries", []))

        entries = [
            RemoteEntry(path=entry["path_display"])
            for entry in raw_entries
            if entry.get("path_display", "").endswith(ARCHIVE_SUFFIX)
        ]
        logger.debug(f"Listed {len(entries)} archive(s) of {len(raw_entries)} entries in {path}")
        return entries

    def delete(self, path: str) -> None:
        path = normalize_remote_path(path)
        response = self._post(f"{API_URL}/files/delete_v2", "delete", json_body={"path": path})
        try:
            deleted = response.json()["metadata"]["path_display"]
        except (ValueError, KeyError, TypeError):
            deleted = path
        logger.info(f"Deleted file: {deleted}")

    def upload_small(self, local_path: Path, remote_path: str) -> None:
        api_arg = {
            "path": normalize_remote_path(remote_path),
            "mode": "add",
            "autorename": True,
            "mute": False,
            "strict_conflict": False,
        }
        try:
            f = open(local_path, "rb")
        except OSError as e:
            raise StorageError(f"Cannot read {local_path}: {e}", remote_path=remote_path) from e
        with f:
            self._post(f"{CONTENT_URL}/files/upload", "upload", data=f, api_arg=api_arg)

    def start_session(self, first_chunk: bytes) -> str:
        response = self._post(
            f"{CONTENT_URL}/files/upload_session/start",
            "upload_session/start",
            data=first_chunk,
            api_arg={"close": False},
        )
        try:
            return str(response.json()["session_id"])
        except (ValueError, KeyError) as e:
            raise RemoteError(
                f"Dropbox upload_session/start returned no session id: {response.text}",
                status=response.status_code,
                body=response.text,
            ) from e

    def append_session(self, session_id: str, offset: int, chunk: bytes) -> None:
        api_arg = {
            "cursor": {"session_id": session_id, "offset": offset},
            "close": False,
        }
        self._post(
            f"{CONTENT_URL}/files/upload_session/append_v2",
            "upload_session/append_v2",
            data=chunk,
            api_arg=api_arg,
        )

    def finish_session(self, session_id: str, offset: int, remote_path: str) -> None:
        api_arg = {
            "cursor": {"session_id": session_id, "offset": offset},
            "commit": {"path": normalize_remote_path(remote_path), "mode": "add"},
        }
        self._post(
            f"{CONTENT_URL}/files/upload_session/finish",
            "upload_session/finish",
            data=b"",
            api_arg=api_arg,
        )
