from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from cutroom.errors import RemoteError, extract_error_code
from cutroom.models import (
    AssetVersion,
    DeleteTakeResult,
    FrameVersion,
    JobStatus,
    ShotMetadata,
    SubmitResult,
    TakeDraft,
    Workspace,
)
from cutroom.settings import Settings

M = TypeVar("M", bound=BaseModel)


def _detail_text(r: httpx.Response) -> str:
    try:
        data = r.json()
    except ValueError:
        return (r.text or "").strip()[:500] or r.reason_phrase
    detail = data.get("detail") if isinstance(data, dict) else data
    if isinstance(detail, str):
        return detail
    if detail is None:
        return (r.text or "").strip()[:500]
    return json.dumps(detail, ensure_ascii=False)[:500]


def error_from_response(r: httpx.Response) -> RemoteError:
    detail = _detail_text(r)
    if not extract_error_code(detail):
        detail = f"[E_HTTP_{r.status_code}] {detail}".rstrip()
    return RemoteError(detail, status_code=r.status_code)


@dataclass(frozen=True)
class HttpStudioBackend:
    """
    Studio backend over JSON/HTTP.

    Notes:
    - Each call opens a short-lived AsyncClient; nothing is pooled across calls.
    - Non-2xx responses become RemoteError carrying the server's "[E_CODE] message"
      (or "[E_HTTP_<status>] ..." when the server sent no code).
    - Mockable in tests via `transport` (httpx.MockTransport / httpx.ASGITransport).
    """

    base_url: str
    token: Optional[str] = None
    timeout_s: float = 20.0
    transport: httpx.AsyncBaseTransport | None = None

    @classmethod
    def from_settings(cls, settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None) -> "HttpStudioBackend":
        return cls(
            base_url=settings.api_base_url,
            token=settings.api_token,
            timeout_s=float(settings.api_timeout_s),
            transport=transport,
        )

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url.rstrip("/"), timeout=self.timeout_s, transport=self.transport)

    async def _request(self, method: str, path: str, *, body: Optional[Dict[str, Any]] = None) -> Any:
        try:
            async with self._client() as c:
                r = await c.request(method, path, headers=self._headers(), json=body)
        except httpx.TimeoutException as e:
            raise RemoteError(f"[E_TIMEOUT] request timeout: {method} {path}: {e}") from e
        except httpx.RequestError as e:
            raise RemoteError(f"[E_NETWORK] network error: {method} {path}: {e}") from e
        if r.status_code >= 400:
            raise error_from_response(r)
        if not r.content:
            return {}
        try:
            return r.json()
        except ValueError as e:
            raise RemoteError(f"[E_BAD_RESPONSE] {method} {path} returned non-JSON body", status_code=r.status_code) from e

    @staticmethod
    def _parse(model: Type[M], data: Any, what: str) -> M:
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise RemoteError(f"[E_BAD_RESPONSE] unexpected {what} payload: {e.error_count()} validation error(s)") from e

    @staticmethod
    def _int_field(data: Any, key: str, what: str) -> int:
        try:
            return int((data or {})[key])
        except (KeyError, TypeError, ValueError) as e:
            raise RemoteError(f"[E_BAD_RESPONSE] {what} response is missing '{key}'") from e

    # -------- queries --------

    async def get_workspace(self, project_id: int) -> Workspace:
        data = await self._request("GET", f"/api/v1/projects/{int(project_id)}/workspace")
        return self._parse(Workspace, data, "workspace")

    async def get_job_status(self, take_id: int) -> JobStatus:
        data = await self._request("GET", f"/api/v1/takes/{int(take_id)}/status")
        return self._parse(JobStatus, data, "take status")

    async def has_required_credential(self) -> bool:
        data = await self._request("GET", "/api/v1/settings/credential")
        return bool((data or {}).get("configured"))

    # -------- takes --------

    async def submit_take(self, take_id: int) -> SubmitResult:
        data = await self._request("POST", f"/api/v1/takes/{int(take_id)}/generate")
        return self._parse(SubmitResult, data, "submit")

    async def save_take(self, params: TakeDraft) -> int:
        data = await self._request(
            "POST", f"/api/v1/shots/{int(params.storyboard_id)}/takes", body=params.model_dump(mode="json")
        )
        return self._int_field(data, "id", "save take")

    async def toggle_good_take(self, take_id: int) -> bool:
        data = await self._request("POST", f"/api/v1/takes/{int(take_id)}/good")
        return bool((data or {}).get("is_good"))

    async def delete_take(self, take_id: int) -> DeleteTakeResult:
        data = await self._request("DELETE", f"/api/v1/takes/{int(take_id)}")
        return self._parse(DeleteTakeResult, data, "delete take")

    # -------- shots --------

    async def create_shot(self, project_id: int, after_shot_id: int = 0) -> int:
        data = await self._request(
            "POST", f"/api/v1/projects/{int(project_id)}/shots", body={"after_shot_id": int(after_shot_id or 0)}
        )
        return self._int_field(data, "id", "create shot")

    async def update_shot(self, params: ShotMetadata) -> None:
        await self._request("PATCH", f"/api/v1/shots/{int(params.storyboard_id)}", body=params.model_dump(mode="json"))

    async def delete_shot(self, shot_id: int) -> None:
        await self._request("DELETE", f"/api/v1/shots/{int(shot_id)}")

    async def merge_shot_with_next(self, shot_id: int) -> None:
        await self._request("POST", f"/api/v1/shots/{int(shot_id)}/merge-next")

    async def split_shot(self, shot_id: int, first_content: str, second_content: str) -> int:
        data = await self._request(
            "POST",
            f"/api/v1/shots/{int(shot_id)}/split",
            body={"first_content": first_content, "second_content": second_content},
        )
        return self._int_field(data, "id", "split shot")

    # -------- frames --------

    async def generate_shot_frame(
        self, shot_id: int, frame_type: str, model_id: str, prompt: str, input_images: List[str]
    ) -> FrameVersion:
        data = await self._request(
            "POST",
            f"/api/v1/shots/{int(shot_id)}/frames/generate",
            body={"frame_type": frame_type, "model_id": model_id, "prompt": prompt, "input_images": list(input_images)},
        )
        return self._parse(FrameVersion, data, "frame version")

    async def upload_shot_frame(self, shot_id: int, frame_type: str, image_path: str) -> FrameVersion:
        data = await self._request(
            "POST",
            f"/api/v1/shots/{int(shot_id)}/frames/upload",
            body={"frame_type": frame_type, "image_path": image_path},
        )
        return self._parse(FrameVersion, data, "frame version")

    async def toggle_shot_frame_good(self, version_id: int) -> bool:
        data = await self._request("POST", f"/api/v1/frame-versions/{int(version_id)}/good")
        return bool((data or {}).get("is_good"))

    # -------- asset catalogs --------

    async def update_asset_catalog(self, catalog_id: int, name: str, prompt: str) -> None:
        await self._request("PATCH", f"/api/v1/asset-catalogs/{int(catalog_id)}", body={"name": name, "prompt": prompt})

    async def generate_asset_image(
        self, catalog_id: int, model_id: str, prompt: str, input_images: List[str]
    ) -> AssetVersion:
        data = await self._request(
            "POST",
            f"/api/v1/asset-catalogs/{int(catalog_id)}/generate",
            body={"model_id": model_id, "prompt": prompt, "input_images": list(input_images)},
        )
        return self._parse(AssetVersion, data, "asset version")

    async def upload_asset_image(self, catalog_id: int, image_path: str) -> AssetVersion:
        data = await self._request(
            "POST", f"/api/v1/asset-catalogs/{int(catalog_id)}/upload", body={"image_path": image_path}
        )
        return self._parse(AssetVersion, data, "asset version")

    async def toggle_asset_version_good(self, version_id: int) -> bool:
        data = await self._request("POST", f"/api/v1/asset-versions/{int(version_id)}/good")
        return bool((data or {}).get("is_good"))

    # -------- project-level --------

    async def decompose_storyboard(
        self,
        project_id: int,
        source_text: str,
        *,
        provider: str,
        llm_model: str,
        api_key: str,
        base_url: str,
        replace_existing: bool,
    ) -> None:
        await self._request(
            "POST",
            f"/api/v1/projects/{int(project_id)}/decompose",
            body={
                "source_text": source_text,
                "provider": provider,
                "llm_model_id": llm_model,
                "api_key": api_key,
                "base_url": base_url,
                "replace_existing": bool(replace_existing),
            },
        )

    async def export_project(self, project_id: int) -> Optional[str]:
        data = await self._request("POST", f"/api/v1/projects/{int(project_id)}/export")
        path = (data or {}).get("path")
        return str(path) if path else None
