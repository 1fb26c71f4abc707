from __future__ import annotations

import functools
import logging
from typing import Any, Awaitable, Callable, Optional, Sequence, TypeVar

from cutroom.errors import MissingCredentialError, PreconditionError
from cutroom.models import DeleteTakeResult, LlmConfig, ShotMetadata, SubmitResult, TakeDraft, Workspace
from cutroom.remote.base import StudioBackend
from cutroom.store.graph import EntityGraphStore
from cutroom.telemetry.audit import AuditLogger
from cutroom.telemetry.reporter import ErrorReporter

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Awaitable[Any]])

Refresh = Callable[[bool], Awaitable[Workspace]]

FRAME_TYPES = ("start", "end")


def command(prefix: str) -> Callable[[F], F]:
    """
    Mutation wrapper: any failure is reported right away (never deduplicated, it is the
    direct result of a user action) and then re-raised to the caller.
    """

    def deco(fn: F) -> F:
        @functools.wraps(fn)
        async def wrapper(self: "WorkspaceCommands", *args: Any, **kwargs: Any) -> Any:
            try:
                return await fn(self, *args, **kwargs)
            except Exception as e:  # noqa: BLE001
                self._failed(prefix, fn.__name__, e)
                raise

        return wrapper  # type: ignore[return-value]

    return deco


class WorkspaceCommands:
    """
    State-changing operations for one workspace. Each runs its local precondition checks,
    makes one remote call, then reloads the workspace through the single-flight loader.
    """

    def __init__(
        self,
        backend: StudioBackend,
        store: EntityGraphStore,
        refresh: Refresh,
        reporter: ErrorReporter,
        *,
        project_id: int,
        audit: Optional[AuditLogger] = None,
        session_id: str = "commands",
    ) -> None:
        self.backend = backend
        self.store = store
        self.reporter = reporter
        self.project_id = int(project_id)
        self._refresh = refresh
        self._audit = audit
        self._session_id = session_id

    def _failed(self, prefix: str, name: str, err: Exception) -> None:
        self.reporter.report(prefix, err)
        if self._audit is not None:
            payload = {"command": name, "error": f"{type(err).__name__}: {err}"}
            self._audit.write(self._session_id, "command.failed", payload, source="commands", project_id=self.project_id)

    async def ensure_credential(self) -> None:
        try:
            ok = await self.backend.has_required_credential()
        except Exception as e:  # noqa: BLE001
            # Let the real call fail with the backend's own explicit error instead.
            logger.debug("credential check unavailable, deferring to backend: %s", e)
            return
        if not ok:
            raise MissingCredentialError()

    def _workspace(self) -> Optional[Workspace]:
        return self.store.workspace

    # -------- selection (local only) --------

    def select_shot(self, shot_id: int) -> None:
        self.store.select_shot(int(shot_id))

    def select_take(self, shot_id: int, take_id: int) -> None:
        self.store.select_take(int(shot_id), int(take_id))

    # -------- storyboard --------

    @command("Storyboard breakdown failed")
    async def decompose_storyboard(self, source_text: str, llm: Optional[LlmConfig] = None) -> None:
        text = (source_text or "").strip()
        if not text:
            raise PreconditionError("[E_INPUT_EMPTY] enter storyboard text or import a file first")
        cfg = llm or LlmConfig()
        if cfg.provider == "ark_default":
            await self.ensure_credential()
        elif not cfg.api_key.strip():
            raise PreconditionError("[E_APIKEY_EMPTY] enter a dedicated API Key for this provider first")
        ws = self._workspace()
        await self.backend.decompose_storyboard(
            self.project_id,
            text,
            provider=cfg.provider,
            llm_model=cfg.llm_model or (ws.llm_model_default if ws else ""),
            api_key=cfg.api_key,
            base_url=cfg.base_url,
            replace_existing=cfg.replace_existing,
        )
        await self._refresh(False)

    @command("Create shot failed")
    async def create_shot(self, after_shot_id: int = 0) -> int:
        new_id = await self.backend.create_shot(self.project_id, int(after_shot_id or 0))
        ws = await self._refresh(True)
        if ws.find_shot(new_id) is not None:
            self.store.select_shot(new_id)
        return new_id

    @command("Save shot failed")
    async def save_shot_metadata(self, params: ShotMetadata) -> None:
        await self.backend.update_shot(params)
        await self._refresh(True)

    @command("Delete shot failed")
    async def delete_shot(self, shot_id: int) -> None:
        await self.backend.delete_shot(int(shot_id))
        await self._refresh(True)

    @command("Merge shots failed")
    async def merge_shot(self, shot_id: int) -> None:
        await self.backend.merge_shot_with_next(int(shot_id))
        await self._refresh(True)

    @command("Split shot failed")
    async def split_shot(self, shot_id: int, second_content: str) -> int:
        if not (second_content or "").strip():
            raise PreconditionError("[E_INPUT_EMPTY] the second half of the split needs content")
        new_id = await self.backend.split_shot(int(shot_id), "", second_content)
        await self._refresh(True)
        return new_id

    # -------- asset catalogs --------

    @command("Save asset failed")
    async def update_asset_catalog(self, catalog_id: int, name: str, prompt: str) -> None:
        await self.backend.update_asset_catalog(int(catalog_id), name or "", prompt or "")
        await self._refresh(True)

    @command("Upload asset image failed")
    async def upload_asset_image(self, catalog_id: int, image_path: str) -> None:
        if not (image_path or "").strip():
            raise PreconditionError("[E_INPUT_EMPTY] choose an image file first")
        await self.backend.upload_asset_image(int(catalog_id), image_path)
        await self._refresh(True)

    @command("Generate asset image failed")
    async def generate_asset_image(self, catalog_id: int, prompt: str, input_images: Sequence[str] = ()) -> None:
        await self.ensure_credential()
        ws = self._workspace()
        await self.backend.generate_asset_image(
            int(catalog_id), ws.image_model_default if ws else "", prompt or "", list(input_images)
        )
        await self._refresh(True)

    @command("Update asset version failed")
    async def toggle_asset_version_good(self, version_id: int) -> bool:
        is_good = await self.backend.toggle_asset_version_good(int(version_id))
        await self._refresh(True)
        return is_good

    # -------- shot keyframes --------

    @staticmethod
    def _check_frame_type(frame_type: str) -> str:
        ft = (frame_type or "").strip().lower()
        if ft not in FRAME_TYPES:
            raise PreconditionError(f"[E_FRAME_TYPE] frame type must be one of {FRAME_TYPES}, got {frame_type!r}")
        return ft

    @command("Upload frame failed")
    async def upload_shot_frame(self, shot_id: int, frame_type: str, image_path: str) -> None:
        ft = self._check_frame_type(frame_type)
        if not (image_path or "").strip():
            raise PreconditionError("[E_INPUT_EMPTY] choose an image file first")
        await self.backend.upload_shot_frame(int(shot_id), ft, image_path)
        await self._refresh(True)

    @command("Generate frame failed")
    async def generate_shot_frame(
        self, shot_id: int, frame_type: str, prompt: str, input_images: Sequence[str] = ()
    ) -> None:
        ft = self._check_frame_type(frame_type)
        await self.ensure_credential()
        ws = self._workspace()
        await self.backend.generate_shot_frame(
            int(shot_id), ft, ws.image_model_default if ws else "", prompt or "", list(input_images)
        )
        await self._refresh(True)

    @command("Update frame failed")
    async def toggle_shot_frame_good(self, version_id: int) -> bool:
        is_good = await self.backend.toggle_shot_frame_good(int(version_id))
        await self._refresh(True)
        return is_good

    # -------- takes --------

    @command("Save take failed")
    async def save_take_as_new(self, draft: TakeDraft) -> Optional[int]:
        ws = self._workspace()
        if not draft.ratio:
            draft = draft.model_copy(update={"ratio": ws.project.aspect_ratio if ws else "16:9"})
        await self.backend.save_take(draft)
        ws = await self._refresh(True)
        shot = ws.find_shot(draft.storyboard_id)
        latest = shot.latest_take_id if shot is not None else None
        if latest is not None:
            self.store.select_take(draft.storyboard_id, latest)
        return latest

    @command("Submit generation failed")
    async def generate_take(self, take_id: int) -> SubmitResult:
        ws = self._workspace()
        if ws is not None and ws.find_take(int(take_id)) is None:
            raise PreconditionError(f"[E_TAKE_NOT_FOUND] take {take_id} is not in the current workspace")
        await self.ensure_credential()
        res = await self.backend.submit_take(int(take_id))
        # The reload sees the take as outstanding and the post-load hook starts polling.
        await self._refresh(True)
        return res

    @command("Update good take failed")
    async def toggle_good_take(self, take_id: int) -> bool:
        is_good = await self.backend.toggle_good_take(int(take_id))
        await self._refresh(True)
        return is_good

    @command("Delete take failed")
    async def delete_take(self, take_id: int) -> DeleteTakeResult:
        res = await self.backend.delete_take(int(take_id))
        await self._refresh(True)
        return res

    @command("Export failed")
    async def export_project(self) -> Optional[str]:
        return await self.backend.export_project(self.project_id)
