"""Read-only catalog of persona presets (identity + appearance templates)."""

from __future__ import annotations

import json
import os
import random
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import httpx
from loguru import logger

from .errors import ConfigurationError


DEFAULT_PRESETS_URL = "https://objection.lol/api/assets/character/getPreset"


@dataclass
class Pose:
    id: int
    name: str


@dataclass
class Preset:
    id: int
    name: str
    side: str
    poses: List[Pose] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Preset":
        poses = [
            Pose(id=int(p["id"]), name=str(p.get("name", "")))
            for p in (data.get("poses") or [])
            if isinstance(p, dict) and "id" in p
        ]
        return cls(
            id=int(data["id"]),
            name=str(data.get("name", "")),
            side=str(data.get("side", "")).lower(),
            poses=poses,
        )


class PresetCatalog:
    def __init__(self, presets: Iterable[Preset]) -> None:
        self._presets: Dict[int, Preset] = {}
        for preset in presets:
            self._presets[preset.id] = preset

    @classmethod
    def from_dicts(cls, items: Iterable[Dict[str, Any]]) -> "PresetCatalog":
        presets = []
        for item in items:
            try:
                presets.append(Preset.from_dict(item))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"preset_skipped | malformed entry: {e}")
        return cls(presets)

    @classmethod
    def from_file(cls, path: Path) -> "PresetCatalog":
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        catalog = cls.from_dicts(data)
        logger.info(f"preset_catalog_loaded | source={path} count={len(catalog)}")
        return catalog

    @classmethod
    async def fetch(cls, url: Optional[str] = None, timeout: float = 15.0) -> "PresetCatalog":
        url = url or os.getenv("PRESETS_URL", DEFAULT_PRESETS_URL)
        async with httpx.AsyncClient(timeout=timeout) as client:
            resp = await client.get(url)
            resp.raise_for_status()
            data = resp.json()
        catalog = cls.from_dicts(data)
        logger.info(f"preset_catalog_loaded | source={url} count={len(catalog)}")
        return catalog

    def __len__(self) -> int:
        return len(self._presets)

    def __contains__(self, preset_id: object) -> bool:
        return preset_id in self._presets

    @property
    def presets(self) -> List[Preset]:
        return list(self._presets.values())

    def get(self, preset_id: Optional[int]) -> Optional[Preset]:
        if preset_id is None:
            return None
        return self._presets.get(preset_id)

    def require(self, preset_id: int) -> Preset:
        preset = self.get(preset_id)
        if preset is None:
            raise ConfigurationError(f"Preset {preset_id} not found in catalog")
        return preset

    def by_side(self, side: Optional[str]) -> List[Preset]:
        if not side:
            return self.presets
        return [p for p in self._presets.values() if p.side == side]

    def poses(self, preset_id: Optional[int]) -> List[Pose]:
        preset = self.get(preset_id)
        return list(preset.poses) if preset else []

    def pose_ids(self, preset_id: Optional[int]) -> List[int]:
        return [p.id for p in self.poses(preset_id)]

    def first_pose_id(self, preset_id: Optional[int]) -> Optional[int]:
        ids = self.pose_ids(preset_id)
        return ids[0] if ids else None

    def possible_witness_ids(self, rng: Optional[random.Random] = None) -> List[str]:
        """``id:name`` hints for witness presets, shuffled so prompts don't always favour the same faces."""
        hints = [f"{p.id}:{p.name}" for p in self.by_side("witness")]
        (rng or random).shuffle(hints)
        return hints
