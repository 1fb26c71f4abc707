from __future__ import annotations

from typing import List, Optional, Protocol

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


class StudioBackend(Protocol):
    """
    Remote collaborator contract. Every method may raise `RemoteError`.

    Only `get_workspace`, `get_job_status` and `has_required_credential` are interpreted by
    the engine; mutations are opaque and are always followed by a workspace reload.
    """

    async def get_workspace(self, project_id: int) -> Workspace: ...

    async def get_job_status(self, take_id: int) -> JobStatus: ...

    async def has_required_credential(self) -> bool: ...

    async def submit_take(self, take_id: int) -> SubmitResult: ...

    async def create_shot(self, project_id: int, after_shot_id: int = 0) -> int: ...

    async def update_shot(self, params: ShotMetadata) -> None: ...

    async def delete_shot(self, shot_id: int) -> None: ...

    async def merge_shot_with_next(self, shot_id: int) -> None: ...

    async def split_shot(self, shot_id: int, first_content: str, second_content: str) -> int: ...

    async def save_take(self, params: TakeDraft) -> int: ...

    async def toggle_good_take(self, take_id: int) -> bool: ...

    async def delete_take(self, take_id: int) -> DeleteTakeResult: ...

    async def update_asset_catalog(self, catalog_id: int, name: str, prompt: str) -> None: ...

    async def generate_asset_image(
        self, catalog_id: int, model_id: str, prompt: str, input_images: List[str]
    ) -> AssetVersion: ...

    async def upload_asset_image(self, catalog_id: int, image_path: str) -> AssetVersion: ...

    async def toggle_asset_version_good(self, version_id: int) -> bool: ...

    async def generate_shot_frame(
        self, shot_id: int, frame_type: str, model_id: str, prompt: str, input_images: List[str]
    ) -> FrameVersion: ...

    async def upload_shot_frame(self, shot_id: int, frame_type: str, image_path: str) -> FrameVersion: ...

    async def toggle_shot_frame_good(self, version_id: int) -> bool: ...

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
    ) -> None: ...

    async def export_project(self, project_id: int) -> Optional[str]: ...
