# -*- coding: utf-8 -*-
"""
Resolução de binários do FFmpeg e de caminhos de mídia
"""

import os
import shutil
from pathlib import Path
from typing import Optional

from ..domain.errors import ConfigError
from ..domain.models.timeline import MediaSource, SourceKind
from .settings import CompositorSettings, get_settings


def _resolve_binary(configured: Optional[str], name: str) -> str:
    if configured:
        return configured
    exe_name = f"{name}.exe" if os.name == "nt" else name
    return shutil.which(exe_name) or exe_name


def ffmpeg_bin(settings: Optional[CompositorSettings] = None) -> str:
    """Resolve o caminho para o binário do FFmpeg"""
    settings = settings or get_settings()
    return _resolve_binary(settings.ffmpeg_path, "ffmpeg")


def ffprobe_bin(settings: Optional[CompositorSettings] = None) -> str:
    """Resolve o caminho para o binário do FFprobe"""
    settings = settings or get_settings()
    return _resolve_binary(settings.ffprobe_path, "ffprobe")


class LocalPathResolver:
    """Resolve fontes de mídia para caminhos locais.

    Assets são procurados em `assets_dir`; arquivos passam direto; URLs são
    repassadas ao FFmpeg, que sabe lê-las. O caminho de um asset resolvido é
    sempre absoluto.
    """

    def __init__(self, assets_dir: Optional[str] = None):
        self.assets_dir = Path(assets_dir or get_settings().assets_dir).resolve()

    def resolve(self, source: MediaSource) -> str:
        if source.kind is SourceKind.URL:
            return source.uri
        if source.kind is SourceKind.FILE:
            return source.uri

        relative = source.uri
        if relative.startswith("assets/"):
            relative = relative[len("assets/"):]
        path = self.assets_dir / relative
        if not path.exists():
            raise ConfigError(f"Asset não encontrado: {source.uri}", str(path))
        return str(path)
