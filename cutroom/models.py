from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class _Snapshot(BaseModel):
    # Snapshot entities are never mutated in place; the store swaps copies.
    model_config = ConfigDict(frozen=True, extra="ignore", protected_namespaces=())


class TakeStatus(str, Enum):
    draft = "Draft"
    queued = "Queued"
    running = "Running"
    succeeded = "Succeeded"
    failed = "Failed"

    @classmethod
    def parse(cls, raw: str | None) -> Optional["TakeStatus"]:
        s = (raw or "").strip().lower()
        for member in cls:
            if member.value.lower() == s:
                return member
        return None


OUTSTANDING_STATUSES = frozenset({TakeStatus.queued, TakeStatus.running})
TERMINAL_STATUSES = frozenset({TakeStatus.succeeded, TakeStatus.failed})


def is_outstanding_status(raw: str | None) -> bool:
    return TakeStatus.parse(raw) in OUTSTANDING_STATUSES


def is_terminal_status(raw: str | None) -> bool:
    return TakeStatus.parse(raw) in TERMINAL_STATUSES


class ProjectInfo(_Snapshot):
    id: int
    name: str = ""
    model_version: str = "v1.x"
    aspect_ratio: str = "16:9"
    created_at: Optional[datetime] = None


class EntityRef(_Snapshot):
    id: str = ""
    name: str = ""
    prompt: str = ""


class Take(_Snapshot):
    """
    One generation attempt for a shot.

    `status` keeps the raw server string (server is authoritative); use `parsed_status`
    or `is_outstanding` for lifecycle decisions.
    """

    id: int
    storyboard_id: int = 0
    prompt: str = ""
    first_frame_path: str = ""
    last_frame_path: str = ""
    model_id: str = ""
    ratio: str = ""
    duration: int = 5
    generate_audio: bool = False
    task_id: str = ""
    status: str = ""
    video_url: str = ""
    last_frame_url: str = ""
    local_video_path: str = ""
    local_last_frame_path: str = ""
    download_status: str = ""
    service_tier: str = "standard"
    token_usage: int = 0
    expires_after: int = 0
    is_good: bool = False
    chain_from_prev: bool = False
    generation_mode: str = "standard"
    created_at: Optional[datetime] = None

    @property
    def parsed_status(self) -> Optional[TakeStatus]:
        return TakeStatus.parse(self.status)

    @property
    def is_outstanding(self) -> bool:
        return is_outstanding_status(self.status)

    @property
    def is_terminal(self) -> bool:
        return is_terminal_status(self.status)


class FrameVersion(_Snapshot):
    id: int
    storyboard_id: int = 0
    frame_type: str = "start"  # start|end
    version_no: int = 0
    image_path: str = ""
    source_type: str = ""
    model_id: str = ""
    prompt: str = ""
    status: str = ""
    is_good: bool = False
    created_at: Optional[datetime] = None


class Shot(_Snapshot):
    """
    A storyboard unit owning an insertion-ordered history of takes.

    `active_take` is designated by the server. It only counts when it resolves to a
    member of `takes`; otherwise `active_take_id` is None.
    """

    id: int
    project_id: int = 0
    shot_order: int = 0
    shot_no: str = ""
    shot_size: str = ""
    camera_movement: str = ""
    frame_content: str = ""
    characters: List[EntityRef] = Field(default_factory=list)
    scenes: List[EntityRef] = Field(default_factory=list)
    elements: List[EntityRef] = Field(default_factory=list)
    styles: List[EntityRef] = Field(default_factory=list)
    sound_design: str = ""
    estimated_duration: int = 5
    duration_fine: int = 0
    takes: List[Take] = Field(default_factory=list)
    active_take: Optional[Take] = None
    start_frames: List[FrameVersion] = Field(default_factory=list)
    end_frames: List[FrameVersion] = Field(default_factory=list)
    active_start_frame: Optional[FrameVersion] = None
    active_end_frame: Optional[FrameVersion] = None

    @property
    def take_ids(self) -> List[int]:
        return [t.id for t in self.takes]

    @property
    def active_take_id(self) -> Optional[int]:
        if self.active_take is None:
            return None
        return self.active_take.id if self.active_take.id in self.take_ids else None

    @property
    def latest_take_id(self) -> Optional[int]:
        return self.takes[-1].id if self.takes else None

    def find_take(self, take_id: int | None) -> Optional[Take]:
        if take_id is None:
            return None
        for t in self.takes:
            if t.id == take_id:
                return t
        return None


class AssetVersion(_Snapshot):
    id: int
    catalog_id: int = 0
    version_no: int = 0
    image_path: str = ""
    source_type: str = ""
    model_id: str = ""
    prompt: str = ""
    status: str = ""
    is_good: bool = False
    created_at: Optional[datetime] = None


class AssetCatalog(_Snapshot):
    id: int
    project_id: int = 0
    asset_type: str = ""  # character|scene|element|style
    asset_code: str = ""
    name: str = ""
    prompt: str = ""
    storyboard_id: Optional[int] = None
    versions: List[AssetVersion] = Field(default_factory=list)
    active: Optional[AssetVersion] = None
    updated_at: Optional[datetime] = None

    @property
    def active_version_id(self) -> Optional[int]:
        if self.active is None:
            return None
        return self.active.id if any(v.id == self.active.id for v in self.versions) else None


class Workspace(_Snapshot):
    """
    Full snapshot of one project as returned by the backend.
    """

    project: ProjectInfo
    storyboards: List[Shot] = Field(default_factory=list)
    asset_catalogs: List[AssetCatalog] = Field(default_factory=list)
    models: List[Dict[str, Any]] = Field(default_factory=list)
    audio_supported_models: List[str] = Field(default_factory=list)
    llm_model_default: str = ""
    image_model_default: str = ""

    @property
    def shot_ids(self) -> List[int]:
        return [s.id for s in self.storyboards]

    def find_shot(self, shot_id: int | None) -> Optional[Shot]:
        if shot_id is None:
            return None
        for s in self.storyboards:
            if s.id == shot_id:
                return s
        return None

    def find_take(self, take_id: int) -> Optional[Take]:
        for s in self.storyboards:
            t = s.find_take(take_id)
            if t is not None:
                return t
        return None

    def outstanding_take_ids(self) -> List[int]:
        out: List[int] = []
        for s in self.storyboards:
            for t in s.takes:
                if t.is_outstanding:
                    out.append(t.id)
        return out


class JobStatus(_Snapshot):
    status: str
    video_url: str = ""
    last_frame_url: str = ""
    poll_interval: int = 0  # milliseconds; 0 means the backend made no suggestion
    download_status: str = ""

    @property
    def is_terminal(self) -> bool:
        return is_terminal_status(self.status)

    @property
    def suggested_interval_s(self) -> Optional[float]:
        if self.poll_interval and self.poll_interval > 0:
            return self.poll_interval / 1000.0
        return None


class Selection(_Snapshot):
    """
    Process-local UI selection. Only non-null take choices are stored.
    """

    shot_id: Optional[int] = None
    take_by_shot: Dict[int, int] = Field(default_factory=dict)

    def take_for(self, shot_id: int) -> Optional[int]:
        return self.take_by_shot.get(shot_id)


class ClassifiedError(BaseModel):
    message: str
    code: str = ""
    hint: str = ""
    category: str = ""
    open_settings: bool = False


class ErrorReport(BaseModel):
    """
    What a presenter receives: a prefixed human message plus the derived hint.
    """

    title: str = ""
    message: str
    code: str = ""
    hint: str = ""
    open_settings: bool = False

    @property
    def text(self) -> str:
        return f"{self.message}\n\n{self.hint}" if self.hint else self.message


# -------- command params --------


class LlmConfig(BaseModel):
    provider: str = "ark_default"  # ark_default|ark_custom|openai_compatible
    base_url: str = "https://ark.cn-beijing.volces.com/api/v3"
    api_key: str = ""
    llm_model: str = ""
    replace_existing: bool = True


class ShotMetadata(BaseModel):
    storyboard_id: int
    shot_no: str = ""
    shot_size: str = ""
    camera_movement: str = ""
    frame_content: str = ""
    characters: List[EntityRef] = Field(default_factory=list)
    scenes: List[EntityRef] = Field(default_factory=list)
    elements: List[EntityRef] = Field(default_factory=list)
    styles: List[EntityRef] = Field(default_factory=list)
    sound_design: str = ""
    estimated_duration: int = 5
    duration_fine: int = 0


class TakeDraft(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    storyboard_id: int
    prompt: str = ""
    model_id: str = ""
    ratio: str = ""
    duration: int = 5
    generate_audio: bool = False
    service_tier: str = "standard"
    execution_expires_after: int = 0
    chain_from_prev: bool = False
    first_frame_path: str = ""
    last_frame_path: str = ""


class DeleteTakeResult(BaseModel):
    success: bool = True
    storyboard_deleted: bool = False
    remaining_takes: int = 0


class SubmitResult(BaseModel):
    status: str = "submitted"
    task_id: str = ""
