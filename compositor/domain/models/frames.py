# -*- coding: utf-8 -*-
"""
Modelos de frames extraídos e metadados de vídeo
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


@dataclass(frozen=True)
class ExtractedFrame:
    """Frame decodificado em RGBA (4 bytes por pixel, linha a linha)"""

    frame_number: int
    rgba: bytes
    width: int
    height: int

    @property
    def size_in_bytes(self) -> int:
        return self.width * self.height * 4


class FitMode(str, Enum):
    """Modos de ajuste da imagem ao retângulo de destino (semântica object-fit)"""

    COVER = "cover"
    CONTAIN = "contain"
    FILL = "fill"
    FIT_WIDTH = "fit_width"
    FIT_HEIGHT = "fit_height"
    NONE = "none"
    SCALE_DOWN = "scale_down"


@dataclass(frozen=True)
class VideoMetadata:
    """Metadados de um vídeo obtidos via ffprobe"""

    width: int
    height: int
    fps: float
    duration: float  # segundos
    frame_count: int
    has_audio: bool
    video_codec: Optional[str] = None
    audio_codec: Optional[str] = None
    audio_channels: Optional[int] = None
    audio_sample_rate: Optional[int] = None
    bitrate: Optional[int] = None

    @property
    def aspect_ratio(self) -> float:
        if self.height == 0:
            return 0.0
        return self.width / self.height
