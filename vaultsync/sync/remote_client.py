"""HTTP client for the remote vault authority.

Wraps the JSON-over-HTTP protocol: the vault handshake, full-tree pull and
push, and the four per-file change notifications. Every call is a single
attempt; retrying is left to the caller.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable
from urllib.parse import quote

import httpx

from ..errors import NetworkError, ProtocolError

logger = logging.getLogger(__name__)

# Header carrying the vault identity on delete requests
VAULT_ID_HEADER = "Vault-Id"


class VaultStatus(Enum):
    """Whether the handshake created the vault or found an existing one."""

    NEW = "new"
    EXISTING = "existing"


@dataclass(frozen=True)
class FileRecord:
    """A file as sent over the wire: relative path plus full text."""

    path: str
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"path": self.path, "content": self.content}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FileRecord":
        try:
            return cls(path=data["path"], content=data.get("content") or "")
        except (KeyError, TypeError) as e:
            raise ProtocolError(f"Malformed file record: {data!r}") from e


@dataclass
class HandshakeResult:
    vault_id: str
    status: VaultStatus


class RemoteSyncClient:
    """Async client for the remote vault API."""

    def __init__(self, base_url: str = "http://localhost:3001", timeout: float = 30.0):
        """Initialize the client.

        Args:
            base_url: Base URL of the remote (e.g., "http://localhost:3001").
            timeout: Request timeout in seconds.
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "RemoteSyncClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def _request(
        self,
        method: str,
        path: str,
        json_data: Any = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Send one request and translate failures into sync errors.

        Raises:
            NetworkError: The remote could not be reached.
            ProtocolError: The remote returned a non-2xx status.
        """
        client = await self._get_client()
        try:
            response = await client.request(method, path, json=json_data, headers=headers)
        except httpx.TimeoutException as e:
            raise NetworkError(f"{method} {path} timed out") from e
        except httpx.TransportError as e:
            raise NetworkError(f"{method} {path} failed: {e}") from e

        if not 200 <= response.status_code < 300:
            raise ProtocolError(
                f"{method} {path} returned HTTP {response.status_code}",
                status_code=response.status_code,
                body=response.text,
            )

        logger.debug(f"{method} {path} -> {response.status_code}")
        return response

    @staticmethod
    def _json(response: httpx.Response) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError as e:
            raise ProtocolError("Remote returned invalid JSON", response.status_code) from e
        if not isinstance(data, dict):
            raise ProtocolError("Remote returned an unexpected JSON document", response.status_code)
        return data

    async def handshake(self, email: str) -> HandshakeResult:
        """Register or resolve the vault bound to an identity.

        Args:
            email: User identity.

        Returns:
            HandshakeResult with the vault id and whether it already existed.
        """
        response = await self._request("POST", "/vaults", {"email": email})
        data = self._json(response)

        vault_id = data.get("id")
        if not vault_id:
            raise ProtocolError("Handshake response has no vault id", response.status_code)
        try:
            status = VaultStatus(data.get("status"))
        except ValueError as e:
            raise ProtocolError(
                f"Unknown vault status {data.get('status')!r}", response.status_code
            ) from e

        return HandshakeResult(vault_id=str(vault_id), status=status)

    async def pull_all(self, vault_id: str) -> list[FileRecord]:
        """Fetch the complete authoritative file set of a vault."""
        response = await self._request("GET", f"/vaults/{vault_id}/files")
        files = self._json(response).get("files") or []
        return [FileRecord.from_dict(f) for f in files]

    async def push_all(self, vault_id: str, files: Iterable[FileRecord]) -> None:
        """Upload the full local file set as the vault's new baseline."""
        payload = {"files": [f.to_dict() for f in files]}
        await self._request("POST", f"/vaults/{vault_id}/files", payload)
        logger.info(f"Pushed {len(payload['files'])} files to vault {vault_id}")

    async def notify_create(self, vault_id: str, path: str) -> None:
        await self._request("POST", "/files", {"vaultId": vault_id, "path": path})

    async def notify_modify(self, vault_id: str, path: str, content: str) -> None:
        await self._request(
            "PATCH",
            f"/files/{vault_id}/modify-content",
            {"path": path, "content": content},
        )

    async def notify_rename(self, vault_id: str, old_path: str, new_path: str) -> None:
        await self._request(
            "PATCH",
            f"/files/{vault_id}/rename",
            {"path": old_path, "newPath": new_path},
        )

    async def notify_delete(self, vault_id: str, path: str) -> None:
        # The remote expects the vault id in a header here, not in the URL
        await self._request(
            "DELETE",
            f"/files/{quote(path, safe='')}",
            headers={VAULT_ID_HEADER: vault_id},
        )
