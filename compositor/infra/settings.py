# -*- coding: utf-8 -*-
"""
Gerenciamento de configurações usando pydantic-settings
"""

import json
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class CompositorSettings(BaseSettings):
    """Configurações do compositor"""

    # Binários externos
    ffmpeg_path: Optional[str] = None
    ffprobe_path: Optional[str] = None
    assets_dir: str = "assets"

    # Cache de frames
    cache_max_frames: int = Field(90, gt=0)
    cache_max_memory_bytes: int = Field(500 * 1024 * 1024, gt=0)

    # Pré-carregamento de vídeos embutidos
    preload_frames: int = Field(30, gt=0)
    approach_lookahead_frames: int = Field(30, ge=0)
    initial_preload_frames: int = Field(10, ge=0)
    initial_preload_delay: float = 0.05  # segundos
    preload_debounce: float = 0.016  # segundos

    # Encoder
    pipeline_buffer_frames: int = Field(5, gt=0)
    composite_embedded_videos: bool = True
    encoder_shutdown_timeout: float = 5.0
    stderr_tail_lines: int = 1000  # linhas finais do stderr guardadas no EncodingError

    # Logging
    log_file: Optional[str] = "compositor.log"
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="COMPOSITOR_", env_file=".env", case_sensitive=False, extra="ignore"
    )


def load_settings() -> CompositorSettings:
    """Carrega as configurações do compositor"""
    # Primeiro tenta carregar do config.json (compatibilidade)
    config_path = Path("config.json")
    if config_path.exists():
        with open(config_path, "r", encoding="utf-8") as f:
            config_data = json.load(f)
        return CompositorSettings(**config_data)

    # Senão carrega das variáveis de ambiente ou padrões
    return CompositorSettings()


@lru_cache(maxsize=1)
def get_settings() -> CompositorSettings:
    """Instância global das configurações, carregada sob demanda"""
    return load_settings()
