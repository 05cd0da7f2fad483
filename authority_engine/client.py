"""
Authority Engine — remote store client.

Provides a thin async wrapper over the system administration API that owns
authorities, their permission trees and the program catalog. The
synchronization controller only depends on the ``AuthorityStore`` protocol,
so tests can drive it with an in-memory store.

Every response is wrapped as ``{"success": bool, "message": str, "data": ...}``.
Transport errors, HTTP errors and ``success: false`` all raise
``RemoteRejectedError``.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx
from pydantic import ValidationError

from authority_engine.config import AuthoritySettings
from authority_engine.errors import RemoteRejectedError
from authority_engine.tree.schema import (
    ApiEnvelope,
    AuthorityCreateRequest,
    AuthorityDetail,
    AuthoritySummary,
    AuthorityUpdateRequest,
    Page,
    PermissionUpdate,
    ProgramNode,
)

logger = logging.getLogger(__name__)

AUTHORITIES_PATH = "/api/system/authorities"
PROGRAMS_PATH = "/api/system/programs"


class AuthorityStore(Protocol):
    """The remote operations the controller relies on."""

    async def fetch_authority_detail(self, authority_id: int) -> AuthorityDetail: ...

    async def update_node_permission(
        self, authority_id: int, program_id: int, update: PermissionUpdate
    ) -> AuthorityDetail: ...

    async def fetch_authority_list(
        self, owner_group: str, page: int = 1, size: int = 50, **filters: Any
    ) -> Page[AuthoritySummary]: ...

    async def fetch_program_catalog(self, kind: str) -> list[ProgramNode]: ...

    async def create_authority(self, request: AuthorityCreateRequest) -> AuthorityDetail: ...


class AuthorityClient:
    """
    Async REST client for authorities and programs.

    Uses httpx for async HTTP. The bearer token and affiliation header are
    attached to every request when configured.
    """

    def __init__(
        self,
        base_url: str,
        access_token: str = "",
        affiliation_id: str = "",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._headers = {"Content-Type": "application/json"}
        if access_token:
            self._headers["Authorization"] = f"Bearer {access_token}"
        if affiliation_id:
            self._headers["affiliation"] = affiliation_id
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_settings(cls, settings: AuthoritySettings) -> AuthorityClient:
        return cls(
            base_url=settings.api_base_url,
            access_token=settings.access_token,
            affiliation_id=settings.affiliation_id,
            timeout=settings.api_timeout_seconds,
        )

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self._headers,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def __aenter__(self) -> AuthorityClient:
        await self._ensure_client()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        """Send a request and return the ``data`` member of the envelope."""
        client = await self._ensure_client()
        try:
            resp = await client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("Request failed: %s %s (%s)", method, path, exc)
            raise RemoteRejectedError(f"{method} {path} failed: {exc}") from exc

        try:
            body = resp.json() if resp.content else {}
        except ValueError:
            body = {}

        if resp.is_error:
            message = body.get("message") if isinstance(body, dict) else None
            logger.warning(
                "Request rejected: %s %s status=%d message=%s",
                method, path, resp.status_code, message,
            )
            raise RemoteRejectedError(
                message or f"{method} {path} returned {resp.status_code}",
                status_code=resp.status_code,
                payload=body,
            )

        if not resp.content:
            return None

        envelope = self._parse(ApiEnvelope[Any], body)
        if not envelope.success:
            raise RemoteRejectedError(
                envelope.message or f"{method} {path} was not successful",
                status_code=resp.status_code,
                payload=body,
            )
        return envelope.data

    @staticmethod
    def _parse(model: Any, data: Any) -> Any:
        try:
            return model.model_validate(data)
        except ValidationError as exc:
            raise RemoteRejectedError(f"Malformed response: {exc}", payload=data) from exc

    # ── Authorities ────────────────────────────────────────────

    async def fetch_authority_list(
        self,
        owner_group: str,
        page: int = 1,
        size: int = 50,
        head_office_id: int | None = None,
        franchisee_id: int | None = None,
        name: str | None = None,
        is_used: bool | None = None,
    ) -> Page[AuthoritySummary]:
        """List authorities of an owner group, one page at a time."""
        params: dict[str, Any] = {"owner_group": owner_group, "page": page, "size": size}
        if head_office_id is not None:
            params["head_office_id"] = head_office_id
        if franchisee_id is not None:
            params["franchisee_id"] = franchisee_id
        if name:
            params["name"] = name
        if is_used is not None:
            params["is_used"] = str(is_used).lower()

        data = await self._request("GET", AUTHORITIES_PATH, params=params)
        return self._parse(Page[AuthoritySummary], data or {})

    async def fetch_authority_detail(self, authority_id: int) -> AuthorityDetail:
        """Get one authority with its permission tree."""
        data = await self._request("GET", f"{AUTHORITIES_PATH}/{authority_id}")
        return self._parse(AuthorityDetail, data)

    async def create_authority(self, request: AuthorityCreateRequest) -> AuthorityDetail:
        data = await self._request(
            "POST", AUTHORITIES_PATH, json=request.model_dump(mode="json")
        )
        detail = self._parse(AuthorityDetail, data)
        logger.info("Authority created: id=%d name=%s", detail.id, detail.name)
        return detail

    async def update_authority(
        self, authority_id: int, request: AuthorityUpdateRequest
    ) -> AuthorityDetail:
        """Update master data (name, usage, description) of an authority."""
        data = await self._request(
            "PUT", f"{AUTHORITIES_PATH}/{authority_id}", json=request.model_dump(mode="json")
        )
        return self._parse(AuthorityDetail, data)

    async def update_node_permission(
        self,
        authority_id: int,
        program_id: int,
        update: PermissionUpdate,
    ) -> AuthorityDetail:
        """
        Set the flags of one program. The server applies the same cascade
        and answers with the authoritative tree.
        """
        data = await self._request(
            "PATCH",
            f"{AUTHORITIES_PATH}/{authority_id}/programs/{program_id}",
            json=update.model_dump(mode="json"),
        )
        return self._parse(AuthorityDetail, data)

    async def delete_authority(self, authority_id: int) -> None:
        await self._request("DELETE", f"{AUTHORITIES_PATH}/{authority_id}")
        logger.info("Authority deleted: id=%d", authority_id)

    # ── Programs ───────────────────────────────────────────────

    async def fetch_program_catalog(self, kind: str) -> list[ProgramNode]:
        """Get the program tree of one menu kind."""
        data = await self._request("GET", PROGRAMS_PATH, params={"menu_kind": kind})
        return [self._parse(ProgramNode, item) for item in data or []]
