from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from cutroom.models import ShotMetadata, TakeDraft

IMAGE_MODEL_DEFAULT = "doubao-seedream-4-5-251128"
LLM_MODEL_DEFAULT = "doubao-seed-1-6-250615"
VIDEO_MODELS = [
    {"id": "doubao-seedance-1-5-pro-251215", "name": "Seedance 1.5 Pro", "supports_audio": True},
    {"id": "doubao-seedance-1-0-lite-i2v-250428", "name": "Seedance 1.0 Lite", "supports_audio": False},
]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class CreateShotBody(BaseModel):
    after_shot_id: int = 0


class SplitShotBody(BaseModel):
    first_content: str = ""
    second_content: str = ""


class CatalogBody(BaseModel):
    name: str = ""
    prompt: str = ""


class GenerateImageBody(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    model_id: str = ""
    prompt: str = ""
    input_images: List[str] = Field(default_factory=list)


class GenerateFrameBody(GenerateImageBody):
    frame_type: str = "start"


class UploadBody(BaseModel):
    image_path: str
    frame_type: str = "start"


class DecomposeBody(BaseModel):
    source_text: str
    provider: str = "ark_default"
    llm_model_id: str = ""
    api_key: str = ""
    base_url: str = ""
    replace_existing: bool = True


@dataclass
class MockStudio:
    """
    In-memory studio. Submitted takes go Queued -> Running -> Succeeded (or Failed for
    `fail_take_ids`) as their status is queried; `steps_to_finish` status queries finish a job.
    """

    credential_configured: bool = True
    steps_to_finish: int = 2
    # Suggested client poll delay returned with each status, by service tier.
    poll_interval_ms: int = 3000
    flex_poll_interval_ms: int = 10000
    fail_take_ids: Set[int] = field(default_factory=set)
    # take_id -> HTTP status to answer status queries with (simulated outages)
    status_errors: Dict[int, int] = field(default_factory=dict)

    projects: Dict[int, Dict[str, Any]] = field(default_factory=dict)
    shots: Dict[int, Dict[str, Any]] = field(default_factory=dict)
    takes: Dict[int, Dict[str, Any]] = field(default_factory=dict)
    catalogs: Dict[int, Dict[str, Any]] = field(default_factory=dict)
    asset_versions: Dict[int, Dict[str, Any]] = field(default_factory=dict)
    frames: Dict[int, Dict[str, Any]] = field(default_factory=dict)
    status_calls: Dict[int, int] = field(default_factory=dict)
    workspace_calls: int = 0

    _ids: Any = field(default_factory=lambda: itertools.count(1))

    def next_id(self) -> int:
        return next(self._ids)

    # -------- seeding --------

    def add_project(self, name: str = "Demo", *, aspect_ratio: str = "16:9") -> int:
        pid = self.next_id()
        self.projects[pid] = {
            "id": pid,
            "name": name,
            "model_version": "v1.x",
            "aspect_ratio": aspect_ratio,
            "created_at": _now(),
        }
        return pid

    def add_shot(self, project_id: int, **fields: Any) -> int:
        sid = self.next_id()
        order = 1 + max((s["shot_order"] for s in self.shots.values() if s["project_id"] == project_id), default=0)
        shot = {
            "id": sid,
            "project_id": project_id,
            "shot_order": order,
            "shot_no": str(order),
            "shot_size": "",
            "camera_movement": "",
            "frame_content": "",
            "characters": [],
            "scenes": [],
            "elements": [],
            "styles": [],
            "sound_design": "",
            "estimated_duration": 5,
            "duration_fine": 0,
        }
        shot.update(fields)
        self.shots[sid] = shot
        return sid

    def add_take(self, shot_id: int, **fields: Any) -> int:
        tid = self.next_id()
        take = {
            "id": tid,
            "storyboard_id": shot_id,
            "prompt": "",
            "model_id": VIDEO_MODELS[0]["id"],
            "ratio": "16:9",
            "duration": 5,
            "generate_audio": False,
            "task_id": "",
            "status": "Draft",
            "video_url": "",
            "last_frame_url": "",
            "download_status": "",
            "service_tier": "standard",
            "is_good": False,
            "created_at": _now(),
        }
        take.update(fields)
        self.takes[tid] = take
        return tid

    def add_catalog(self, project_id: int, asset_type: str, name: str, prompt: str = "") -> int:
        cid = self.next_id()
        code = f"{asset_type[:1].upper()}{sum(1 for c in self.catalogs.values() if c['asset_type'] == asset_type) + 1}"
        self.catalogs[cid] = {
            "id": cid,
            "project_id": project_id,
            "asset_type": asset_type,
            "asset_code": code,
            "name": name,
            "prompt": prompt,
            "updated_at": _now(),
        }
        return cid

    def seed_demo(self) -> int:
        pid = self.add_project("Demo short")
        s1 = self.add_shot(pid, frame_content="Opening wide shot of the harbor at dawn")
        self.add_take(s1, prompt="harbor at dawn, slow dolly in", status="Succeeded", video_url="https://cdn.example/1.mp4")
        s2 = self.add_shot(pid, frame_content="Close-up on the fisherman")
        self.add_take(s2, prompt="fisherman close-up", status="Draft")
        self.add_catalog(pid, "character", "Fisherman", "weathered face, yellow raincoat")
        return pid

    # -------- lookups --------

    def _get(self, table: Dict[int, Dict[str, Any]], key: int, what: str) -> Dict[str, Any]:
        row = table.get(int(key))
        if row is None:
            raise HTTPException(status_code=404, detail=f"[E_NOT_FOUND] {what} {key} not found")
        return row

    def _shot_takes(self, shot_id: int) -> List[Dict[str, Any]]:
        return [t for t in self.takes.values() if t["storyboard_id"] == shot_id]

    def _project_shots(self, project_id: int) -> List[Dict[str, Any]]:
        rows = [s for s in self.shots.values() if s["project_id"] == project_id]
        return sorted(rows, key=lambda s: (s["shot_order"], s["id"]))

    @staticmethod
    def _choose_active(rows: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        for row in reversed(rows):
            if row.get("is_good"):
                return row
        return rows[-1] if rows else None

    def _renumber(self, project_id: int) -> None:
        for i, s in enumerate(self._project_shots(project_id), start=1):
            s["shot_order"] = i

    # -------- queries --------

    def workspace(self, project_id: int) -> Dict[str, Any]:
        project = self._get(self.projects, project_id, "project")
        self.workspace_calls += 1
        storyboards = []
        for s in self._project_shots(project_id):
            takes = [dict(t) for t in self._shot_takes(s["id"])]
            frames = [f for f in self.frames.values() if f["storyboard_id"] == s["id"]]
            start = [dict(f) for f in frames if f["frame_type"] == "start"]
            end = [dict(f) for f in frames if f["frame_type"] == "end"]
            storyboards.append(
                {
                    **s,
                    "takes": takes,
                    "active_take": self._choose_active(takes),
                    "start_frames": start,
                    "end_frames": end,
                    "active_start_frame": self._choose_active(start),
                    "active_end_frame": self._choose_active(end),
                }
            )
        catalogs = []
        for c in sorted(self.catalogs.values(), key=lambda c: (c["asset_type"], c["asset_code"], c["id"])):
            if c["project_id"] != project_id:
                continue
            versions = [dict(v) for v in self.asset_versions.values() if v["catalog_id"] == c["id"]]
            catalogs.append({**c, "versions": versions, "active": self._choose_active(versions)})
        return {
            "project": dict(project),
            "storyboards": storyboards,
            "asset_catalogs": catalogs,
            "models": VIDEO_MODELS,
            "audio_supported_models": [m["id"] for m in VIDEO_MODELS if m["supports_audio"]],
            "llm_model_default": LLM_MODEL_DEFAULT,
            "image_model_default": IMAGE_MODEL_DEFAULT,
        }

    def take_status(self, take_id: int) -> Dict[str, Any]:
        take = self._get(self.takes, take_id, "take")
        if take_id in self.status_errors:
            code = self.status_errors[take_id]
            raise HTTPException(status_code=code, detail=f"status service unavailable (HTTP {code})")
        if not take["task_id"]:
            return {"status": take["status"]}
        if take["status"] in ("Queued", "Running"):
            n = self.status_calls.get(take_id, 0) + 1
            self.status_calls[take_id] = n
            if n >= self.steps_to_finish:
                if take_id in self.fail_take_ids:
                    take["status"] = "Failed"
                else:
                    take["status"] = "Succeeded"
                    take["video_url"] = f"https://cdn.example/{take['task_id']}.mp4"
                    take["last_frame_url"] = f"https://cdn.example/{take['task_id']}.png"
                    take["download_status"] = "pending"
            else:
                take["status"] = "Running"
        return {
            "status": take["status"],
            "video_url": take["video_url"],
            "last_frame_url": take["last_frame_url"],
            "poll_interval": self.flex_poll_interval_ms if take["service_tier"] == "flex" else self.poll_interval_ms,
            "download_status": take["download_status"],
        }

    # -------- mutations --------

    def require_credential(self) -> None:
        if not self.credential_configured:
            raise HTTPException(
                status_code=400,
                detail="[E_APIKEY_MISSING] API Key is not configured: open Settings and enter an API Key, then retry.",
            )

    def submit_take(self, take_id: int) -> Dict[str, Any]:
        self.require_credential()
        take = self._get(self.takes, take_id, "take")
        if not take["prompt"].strip():
            raise HTTPException(status_code=400, detail="[E_PROMPT_EMPTY] prompt is empty: fill in the video prompt first")
        take["task_id"] = f"cgt-{take_id}-{self.next_id()}"
        take["status"] = "Queued"
        take["video_url"] = ""
        self.status_calls[take_id] = 0
        return {"status": "submitted", "task_id": take["task_id"]}


def create_app(studio: MockStudio | None = None) -> FastAPI:
    """
    App factory used by uvicorn (`uvicorn mock_api.app:app --port 8765`) and tests.
    """
    st = studio or MockStudio()
    if studio is None:
        st.seed_demo()

    api = FastAPI(title="cutroom mock studio", version="0.1.0")
    api.state.studio = st

    @api.get("/health")
    def health() -> Dict[str, Any]:
        return {"ok": True}

    @api.get("/api/v1/projects/{project_id}/workspace")
    def get_workspace(project_id: int) -> Dict[str, Any]:
        return st.workspace(project_id)

    @api.get("/api/v1/takes/{take_id}/status")
    def get_take_status(take_id: int) -> Dict[str, Any]:
        return st.take_status(take_id)

    @api.get("/api/v1/settings/credential")
    def credential() -> Dict[str, Any]:
        return {"configured": st.credential_configured}

    @api.post("/api/v1/takes/{take_id}/generate")
    def generate_take(take_id: int) -> Dict[str, Any]:
        return st.submit_take(take_id)

    @api.post("/api/v1/takes/{take_id}/good")
    def toggle_good_take(take_id: int) -> Dict[str, Any]:
        take = st._get(st.takes, take_id, "take")
        new_state = not take["is_good"]
        if new_state:
            for other in st._shot_takes(take["storyboard_id"]):
                other["is_good"] = False
        take["is_good"] = new_state
        return {"is_good": new_state}

    @api.delete("/api/v1/takes/{take_id}")
    def delete_take(take_id: int) -> Dict[str, Any]:
        take = st._get(st.takes, take_id, "take")
        shot_id = take["storyboard_id"]
        del st.takes[take_id]
        remaining = len(st._shot_takes(shot_id))
        deleted = False
        if remaining == 0 and shot_id in st.shots:
            del st.shots[shot_id]
            deleted = True
        return {"success": True, "storyboard_deleted": deleted, "remaining_takes": remaining}

    @api.post("/api/v1/projects/{project_id}/shots")
    def create_shot(project_id: int, body: CreateShotBody) -> Dict[str, Any]:
        st._get(st.projects, project_id, "project")
        sid = st.add_shot(project_id)
        if body.after_shot_id:
            after = st._get(st.shots, body.after_shot_id, "shot")
            for s in st._project_shots(project_id):
                if s["id"] != sid and s["shot_order"] > after["shot_order"]:
                    s["shot_order"] += 1
            st.shots[sid]["shot_order"] = after["shot_order"] + 1
        st.add_take(sid)
        st._renumber(project_id)
        return {"id": sid}

    @api.patch("/api/v1/shots/{shot_id}")
    def update_shot(shot_id: int, body: ShotMetadata) -> Dict[str, Any]:
        shot = st._get(st.shots, shot_id, "shot")
        shot.update(body.model_dump(mode="json", exclude={"storyboard_id"}))
        return {"ok": True}

    @api.delete("/api/v1/shots/{shot_id}")
    def delete_shot(shot_id: int) -> Dict[str, Any]:
        shot = st._get(st.shots, shot_id, "shot")
        for t in st._shot_takes(shot_id):
            del st.takes[t["id"]]
        del st.shots[shot_id]
        st._renumber(shot["project_id"])
        return {"ok": True}

    @api.post("/api/v1/shots/{shot_id}/merge-next")
    def merge_next(shot_id: int) -> Dict[str, Any]:
        shot = st._get(st.shots, shot_id, "shot")
        ordered = st._project_shots(shot["project_id"])
        idx = [s["id"] for s in ordered].index(shot_id)
        if idx + 1 >= len(ordered):
            raise HTTPException(status_code=400, detail="[E_NO_NEXT_SHOT] this is the last shot; nothing to merge")
        nxt = ordered[idx + 1]
        shot["frame_content"] = "\n".join(p for p in (shot["frame_content"], nxt["frame_content"]) if p)
        for t in st._shot_takes(nxt["id"]):
            t["storyboard_id"] = shot_id
        del st.shots[nxt["id"]]
        st._renumber(shot["project_id"])
        return {"ok": True}

    @api.post("/api/v1/shots/{shot_id}/split")
    def split_shot(shot_id: int, body: SplitShotBody) -> Dict[str, Any]:
        shot = st._get(st.shots, shot_id, "shot")
        if body.first_content:
            shot["frame_content"] = body.first_content
        new_id = st.add_shot(shot["project_id"], frame_content=body.second_content)
        for s in st._project_shots(shot["project_id"]):
            if s["id"] != new_id and s["shot_order"] > shot["shot_order"]:
                s["shot_order"] += 1
        st.shots[new_id]["shot_order"] = shot["shot_order"] + 1
        st._renumber(shot["project_id"])
        return {"id": new_id}

    @api.post("/api/v1/shots/{shot_id}/takes")
    def save_take(shot_id: int, body: TakeDraft) -> Dict[str, Any]:
        st._get(st.shots, shot_id, "shot")
        tid = st.add_take(
            shot_id,
            prompt=body.prompt,
            model_id=body.model_id or VIDEO_MODELS[0]["id"],
            ratio=body.ratio or "16:9",
            duration=body.duration,
            generate_audio=body.generate_audio,
            service_tier=body.service_tier,
            first_frame_path=body.first_frame_path,
            last_frame_path=body.last_frame_path,
            chain_from_prev=body.chain_from_prev,
        )
        return {"id": tid}

    @api.post("/api/v1/shots/{shot_id}/frames/generate")
    def generate_frame(shot_id: int, body: GenerateFrameBody) -> Dict[str, Any]:
        st.require_credential()
        st._get(st.shots, shot_id, "shot")
        return _add_frame(st, shot_id, body.frame_type, source="generated", model_id=body.model_id, prompt=body.prompt)

    @api.post("/api/v1/shots/{shot_id}/frames/upload")
    def upload_frame(shot_id: int, body: UploadBody) -> Dict[str, Any]:
        st._get(st.shots, shot_id, "shot")
        return _add_frame(st, shot_id, body.frame_type, source="uploaded", image_path=body.image_path)

    @api.post("/api/v1/frame-versions/{version_id}/good")
    def toggle_frame_good(version_id: int) -> Dict[str, Any]:
        row = st._get(st.frames, version_id, "frame version")
        row["is_good"] = not row["is_good"]
        return {"is_good": row["is_good"]}

    @api.patch("/api/v1/asset-catalogs/{catalog_id}")
    def update_catalog(catalog_id: int, body: CatalogBody) -> Dict[str, Any]:
        row = st._get(st.catalogs, catalog_id, "asset catalog")
        row["name"] = body.name or row["name"]
        row["prompt"] = body.prompt
        row["updated_at"] = _now()
        return {"ok": True}

    @api.post("/api/v1/asset-catalogs/{catalog_id}/generate")
    def generate_asset(catalog_id: int, body: GenerateImageBody) -> Dict[str, Any]:
        st.require_credential()
        st._get(st.catalogs, catalog_id, "asset catalog")
        return _add_asset_version(st, catalog_id, source="generated", model_id=body.model_id, prompt=body.prompt)

    @api.post("/api/v1/asset-catalogs/{catalog_id}/upload")
    def upload_asset(catalog_id: int, body: UploadBody) -> Dict[str, Any]:
        st._get(st.catalogs, catalog_id, "asset catalog")
        return _add_asset_version(st, catalog_id, source="uploaded", image_path=body.image_path)

    @api.post("/api/v1/asset-versions/{version_id}/good")
    def toggle_asset_good(version_id: int) -> Dict[str, Any]:
        row = st._get(st.asset_versions, version_id, "asset version")
        row["is_good"] = not row["is_good"]
        return {"is_good": row["is_good"]}

    @api.post("/api/v1/projects/{project_id}/decompose")
    def decompose(project_id: int, body: DecomposeBody) -> Dict[str, Any]:
        st._get(st.projects, project_id, "project")
        if body.provider == "ark_default":
            st.require_credential()
        if body.replace_existing:
            for s in st._project_shots(project_id):
                for t in st._shot_takes(s["id"]):
                    del st.takes[t["id"]]
                del st.shots[s["id"]]
        for paragraph in [p.strip() for p in body.source_text.split("\n\n") if p.strip()]:
            sid = st.add_shot(project_id, frame_content=paragraph)
            st.add_take(sid, prompt=paragraph)
        return {"ok": True}

    @api.post("/api/v1/projects/{project_id}/export")
    def export(project_id: int) -> Dict[str, Any]:
        project = st._get(st.projects, project_id, "project")
        return {"path": f"exports/{project['name'].replace(' ', '_')}.zip"}

    return api


def _add_frame(st: MockStudio, shot_id: int, frame_type: str, *, source: str, **fields: Any) -> Dict[str, Any]:
    if frame_type not in ("start", "end"):
        raise HTTPException(status_code=400, detail=f"[E_FRAME_TYPE] invalid frame type {frame_type!r}")
    fid = st.next_id()
    version_no = 1 + sum(1 for f in st.frames.values() if f["storyboard_id"] == shot_id and f["frame_type"] == frame_type)
    row = {
        "id": fid,
        "storyboard_id": shot_id,
        "frame_type": frame_type,
        "version_no": version_no,
        "image_path": fields.get("image_path") or f"frames/{shot_id}_{frame_type}_{version_no}.png",
        "source_type": source,
        "model_id": fields.get("model_id", ""),
        "prompt": fields.get("prompt", ""),
        "status": "Succeeded",
        "is_good": False,
        "created_at": _now(),
    }
    st.frames[fid] = row
    return dict(row)


def _add_asset_version(st: MockStudio, catalog_id: int, *, source: str, **fields: Any) -> Dict[str, Any]:
    vid = st.next_id()
    version_no = 1 + sum(1 for v in st.asset_versions.values() if v["catalog_id"] == catalog_id)
    row = {
        "id": vid,
        "catalog_id": catalog_id,
        "version_no": version_no,
        "image_path": fields.get("image_path") or f"assets/{catalog_id}_{version_no}.png",
        "source_type": source,
        "model_id": fields.get("model_id", ""),
        "prompt": fields.get("prompt", ""),
        "status": "Succeeded",
        "is_good": False,
        "created_at": _now(),
    }
    st.asset_versions[vid] = row
    return dict(row)


app = create_app()
