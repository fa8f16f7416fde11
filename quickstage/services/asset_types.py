"""Asset-type classification by file extension."""

import logging
import os
import posixpath
import re
from enum import Enum
from typing import Dict, Optional

from .path_translator import PathTranslator, normalize_path

logger = logging.getLogger(__name__)


class AssetTypeFilter(str, Enum):
    """Asset type used to filter the change lists."""

    ALL = "All"
    ANIMATION_CLIP = "AnimationClip"
    AUDIO_CLIP = "AudioClip"
    AUDIO_MIXER = "AudioMixer"
    COMPUTE_SHADER = "ComputeShader"
    FONT = "Font"
    GUI_SKIN = "GUISkin"
    MATERIAL = "Material"
    MESH = "Mesh"
    MODEL = "Model"
    PHYSIC_MATERIAL = "PhysicMaterial"
    PREFAB = "Prefab"
    SCENE = "Scene"
    SCRIPT = "Script"
    SHADER = "Shader"
    SPRITE = "Sprite"
    TEXTURE = "Texture"
    VIDEO_CLIP = "VideoClip"
    VISUAL_EFFECT_ASSET = "VisualEffectAsset"
    UNKNOWN = "Unknown"


_EXTENSIONS = {
    AssetTypeFilter.ANIMATION_CLIP: (".anim",),
    AssetTypeFilter.AUDIO_CLIP: (".wav", ".mp3", ".ogg", ".aiff", ".aif", ".mod", ".it", ".s3m", ".xm"),
    AssetTypeFilter.AUDIO_MIXER: (".mixer",),
    AssetTypeFilter.COMPUTE_SHADER: (".compute",),
    AssetTypeFilter.FONT: (".ttf", ".otf", ".ttc", ".dfont", ".fnt"),
    AssetTypeFilter.GUI_SKIN: (".guiskin",),
    AssetTypeFilter.MATERIAL: (".mat",),
    AssetTypeFilter.MESH: (".mesh",),
    AssetTypeFilter.PREFAB: (".prefab",),
    AssetTypeFilter.SCENE: (".unity",),
    AssetTypeFilter.SCRIPT: (".cs", ".js", ".boo", ".asmdef", ".asmref"),
    AssetTypeFilter.SHADER: (".shader", ".cginc", ".hlsl", ".glslinc"),
    AssetTypeFilter.PHYSIC_MATERIAL: (".physicmaterial",),
    AssetTypeFilter.MODEL: (".fbx", ".obj", ".dae", ".3ds", ".dxf", ".blend", ".max", ".c4d", ".mb", ".ma"),
    AssetTypeFilter.VIDEO_CLIP: (".mp4", ".mov", ".avi", ".webm", ".m4v", ".ogv", ".wmv"),
    AssetTypeFilter.VISUAL_EFFECT_ASSET: (".vfx", ".vfxgraph"),
    AssetTypeFilter.SPRITE: (".spriteatlas",),
}
TYPE_BY_EXTENSION: Dict[str, AssetTypeFilter] = {
    ext: asset_type for asset_type, extensions in _EXTENSIONS.items() for ext in extensions
}
IMAGE_EXTENSIONS = frozenset(
    (".png", ".jpg", ".jpeg", ".tga", ".psd", ".exr", ".tif", ".tiff", ".bmp", ".gif", ".dds", ".hdr")
)

# Texture importer type 8 is a sprite.
SPRITE_IMPORT_PATTERN = re.compile(r"^\s*textureType:\s*8\s*$", re.MULTILINE)


class AssetTypeClassifier:
    """Classifies project paths, caching results until ``clear()``."""

    def __init__(self, translator: PathTranslator):
        self.translator = translator
        self._cache: Dict[str, AssetTypeFilter] = {}

    def clear(self) -> None:
        self._cache.clear()

    def classify(self, project_path: Optional[str]) -> AssetTypeFilter:
        if not project_path or not project_path.strip():
            return AssetTypeFilter.UNKNOWN
        path = self.translator.asset_path_for_sidecar(normalize_path(project_path))
        cached = self._cache.get(path)
        if cached is None:
            cached = self._detect(path)
            self._cache[path] = cached
        return cached

    def matches(self, project_path: Optional[str], asset_filter: AssetTypeFilter) -> bool:
        if asset_filter == AssetTypeFilter.ALL:
            return True
        return self.classify(project_path) == asset_filter

    def _detect(self, path: str) -> AssetTypeFilter:
        extension = posixpath.splitext(path)[1].lower()
        if extension in IMAGE_EXTENSIONS:
            return self._texture_or_sprite(path)
        return TYPE_BY_EXTENSION.get(extension, AssetTypeFilter.UNKNOWN)

    def _texture_or_sprite(self, path: str) -> AssetTypeFilter:
        sidecar = self.translator.absolute_project_path(self.translator.sidecar_path(path))
        if not os.path.isfile(sidecar):
            return AssetTypeFilter.TEXTURE
        try:
            with open(sidecar, encoding="utf-8", errors="replace") as f:
                if SPRITE_IMPORT_PATTERN.search(f.read()):
                    return AssetTypeFilter.SPRITE
        except OSError as e:
            logger.debug("Could not read %s: %s", sidecar, e)
        return AssetTypeFilter.TEXTURE
