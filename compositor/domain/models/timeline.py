# -*- coding: utf-8 -*-
"""
Modelos de domínio para a composição: timeline, trilhas de áudio,
vídeos embutidos e configuração de encoding
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Mapping, Optional, Protocol


def frames_to_ms(frames: int, fps: int) -> int:
    """Converte uma contagem de frames em milissegundos"""
    return round(frames / fps * 1000)


def ms_to_frames(ms: float, fps: int) -> int:
    """Converte milissegundos em contagem de frames"""
    return round(ms * fps / 1000)


class SourceKind(str, Enum):
    """Origem de uma mídia referenciada pela composição"""

    ASSET = "asset"
    FILE = "file"
    URL = "url"


_ASSET_PREFIXES = ("assets/", "packages/")
_URL_PREFIXES = ("http://", "https://")


@dataclass(frozen=True)
class MediaSource:
    """Referência a uma mídia: tipo de origem + URI"""

    kind: SourceKind
    uri: str

    @classmethod
    def from_uri(cls, uri: str) -> MediaSource:
        """Infere o tipo de origem pelo prefixo do URI"""
        if uri.startswith(_URL_PREFIXES):
            return cls(SourceKind.URL, uri)
        if uri.startswith(_ASSET_PREFIXES):
            return cls(SourceKind.ASSET, uri)
        return cls(SourceKind.FILE, uri)

    @property
    def is_resolved(self) -> bool:
        """Fontes de asset precisam ser resolvidas antes de chegar ao encoder"""
        return self.kind is not SourceKind.ASSET

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "uri": self.uri}

    @classmethod
    def from_dict(cls, record: Mapping[str, Any] | str) -> MediaSource:
        if isinstance(record, str):
            return cls.from_uri(record)
        return cls(SourceKind(record["kind"]), str(record["uri"]))


class PathResolver(Protocol):
    """Converte uma fonte de mídia em um caminho utilizável pelo FFmpeg"""

    def resolve(self, source: MediaSource) -> str: ...


@dataclass(frozen=True)
class TimelineConfig:
    """Parâmetros globais da composição"""

    fps: int
    duration_in_frames: int
    width: int
    height: int

    @property
    def duration_seconds(self) -> float:
        return self.duration_in_frames / self.fps

    @property
    def frame_size_bytes(self) -> int:
        """Tamanho de um frame RGBA da composição"""
        return self.width * self.height * 4

    def to_dict(self) -> dict[str, Any]:
        return {
            "fps": self.fps,
            "duration_in_frames": self.duration_in_frames,
            "width": self.width,
            "height": self.height,
        }

    @classmethod
    def from_dict(cls, record: Mapping[str, Any]) -> TimelineConfig:
        return cls(
            fps=int(record["fps"]),
            duration_in_frames=int(record["duration_in_frames"]),
            width=int(record["width"]),
            height=int(record["height"]),
        )


@dataclass(frozen=True)
class AudioTrackConfig:
    """Trilha de áudio independente posicionada na timeline.

    Os valores de trim são relativos à fonte e medidos em frames da
    composição.
    """

    source: MediaSource
    start_frame: int
    duration_in_frames: int
    trim_start_frame: int = 0
    trim_end_frame: Optional[int] = None
    volume: float = 1.0
    fade_in_frames: int = 0
    fade_out_frames: int = 0
    loop: bool = False

    def trim_start_frame_to_ms(self, fps: int) -> int:
        return frames_to_ms(self.trim_start_frame, fps)

    def trim_end_frame_to_ms(self, fps: int) -> Optional[int]:
        if self.trim_end_frame is None:
            return None
        return frames_to_ms(self.trim_end_frame, fps)

    def copy_with(self, **changes: Any) -> AudioTrackConfig:
        return replace(self, **changes)

    def to_dict(self, fps: Optional[int] = None) -> dict[str, Any]:
        """Serializa a trilha; com `fps` inclui também os trims em ms"""
        record: dict[str, Any] = {
            "source": self.source.to_dict(),
            "start_frame": self.start_frame,
            "duration_in_frames": self.duration_in_frames,
            "trim_start_frame": self.trim_start_frame,
            "trim_end_frame": self.trim_end_frame,
            "volume": self.volume,
            "fade_in_frames": self.fade_in_frames,
            "fade_out_frames": self.fade_out_frames,
            "loop": self.loop,
        }
        if fps is not None:
            record["trim_start_ms"] = self.trim_start_frame_to_ms(fps)
            record["trim_end_ms"] = self.trim_end_frame_to_ms(fps)
        return record

    @classmethod
    def from_dict(cls, record: Mapping[str, Any]) -> AudioTrackConfig:
        # trim_start_ms / trim_end_ms são derivados e ignorados aqui
        trim_end = record.get("trim_end_frame")
        return cls(
            source=MediaSource.from_dict(record["source"]),
            start_frame=int(record["start_frame"]),
            duration_in_frames=int(record["duration_in_frames"]),
            trim_start_frame=int(record.get("trim_start_frame", 0)),
            trim_end_frame=int(trim_end) if trim_end is not None else None,
            volume=float(record.get("volume", 1.0)),
            fade_in_frames=int(record.get("fade_in_frames", 0)),
            fade_out_frames=int(record.get("fade_out_frames", 0)),
            loop=bool(record.get("loop", False)),
        )


@dataclass(frozen=True)
class EmbeddedVideoConfig:
    """Vídeo embutido sobreposto à composição"""

    video_path: str
    start_frame: int
    duration_in_frames: int
    width: int
    height: int
    trim_start_seconds: float = 0.0
    position_x: int = 0
    position_y: int = 0
    include_audio: bool = True
    audio_volume: float = 1.0
    audio_fade_in_frames: int = 0
    audio_fade_out_frames: int = 0
    id: str = ""

    @property
    def end_frame(self) -> int:
        """Primeiro frame da composição após o fim do clipe"""
        return self.start_frame + self.duration_in_frames

    def start_time_seconds(self, fps: int) -> float:
        return self.start_frame / fps

    def end_time_seconds(self, fps: int) -> float:
        return self.end_frame / fps

    def duration_seconds(self, fps: int) -> float:
        return self.duration_in_frames / fps

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "video_path": self.video_path,
            "start_frame": self.start_frame,
            "duration_in_frames": self.duration_in_frames,
            "trim_start_seconds": self.trim_start_seconds,
            "width": self.width,
            "height": self.height,
            "position_x": self.position_x,
            "position_y": self.position_y,
            "include_audio": self.include_audio,
            "audio_volume": self.audio_volume,
            "audio_fade_in_frames": self.audio_fade_in_frames,
            "audio_fade_out_frames": self.audio_fade_out_frames,
        }

    @classmethod
    def from_dict(cls, record: Mapping[str, Any]) -> EmbeddedVideoConfig:
        return cls(
            id=str(record.get("id", "")),
            video_path=str(record["video_path"]),
            start_frame=int(record["start_frame"]),
            duration_in_frames=int(record["duration_in_frames"]),
            trim_start_seconds=float(record.get("trim_start_seconds", 0.0)),
            width=int(record["width"]),
            height=int(record["height"]),
            position_x=int(record.get("position_x", 0)),
            position_y=int(record.get("position_y", 0)),
            include_audio=bool(record.get("include_audio", True)),
            audio_volume=float(record.get("audio_volume", 1.0)),
            audio_fade_in_frames=int(record.get("audio_fade_in_frames", 0)),
            audio_fade_out_frames=int(record.get("audio_fade_out_frames", 0)),
        )


class RenderQuality(str, Enum):
    """Níveis de qualidade com CRF e preset padrão"""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    LOSSLESS = "lossless"

    @property
    def default_crf(self) -> int:
        return _QUALITY_DEFAULTS[self][0]

    @property
    def default_preset(self) -> str:
        return _QUALITY_DEFAULTS[self][1]


_QUALITY_DEFAULTS = {
    RenderQuality.LOW: (30, "veryfast"),
    RenderQuality.MEDIUM: (23, "medium"),
    RenderQuality.HIGH: (18, "slow"),
    RenderQuality.LOSSLESS: (0, "veryslow"),
}


@dataclass(frozen=True)
class EncodingConfig:
    """Configurações de encoding"""

    quality: RenderQuality = RenderQuality.MEDIUM
    crf_override: Optional[int] = None
    preset_override: Optional[str] = None
    vcodec: str = "libx264"  # "libx264" | "h264_nvenc"
    acodec: str = "aac"
    audio_bitrate: str = "192k"
    pixel_format: str = "yuv420p"

    @property
    def resolved_crf(self) -> int:
        if self.crf_override is not None:
            return self.crf_override
        return self.quality.default_crf

    @property
    def resolved_preset(self) -> str:
        if self.preset_override is not None:
            return self.preset_override
        return self.quality.default_preset

    def to_dict(self) -> dict[str, Any]:
        return {
            "quality": self.quality.value,
            "crf_override": self.crf_override,
            "preset_override": self.preset_override,
            "vcodec": self.vcodec,
            "acodec": self.acodec,
            "audio_bitrate": self.audio_bitrate,
            "pixel_format": self.pixel_format,
        }

    @classmethod
    def from_dict(cls, record: Mapping[str, Any]) -> EncodingConfig:
        crf = record.get("crf_override")
        return cls(
            quality=RenderQuality(record.get("quality", RenderQuality.MEDIUM.value)),
            crf_override=int(crf) if crf is not None else None,
            preset_override=record.get("preset_override"),
            vcodec=record.get("vcodec", "libx264"),
            acodec=record.get("acodec", "aac"),
            audio_bitrate=record.get("audio_bitrate", "192k"),
            pixel_format=record.get("pixel_format", "yuv420p"),
        )


@dataclass(frozen=True)
class RenderConfig:
    """Tudo o que é necessário para uma renderização"""

    timeline: TimelineConfig
    sequences: tuple[Mapping[str, Any], ...] = ()
    audio_tracks: tuple[AudioTrackConfig, ...] = ()
    embedded_videos: tuple[EmbeddedVideoConfig, ...] = ()
    encoding: EncodingConfig = field(default_factory=EncodingConfig)

    def __post_init__(self):
        # Aceita listas na construção, mas guarda tuplas
        object.__setattr__(self, "sequences", tuple(self.sequences))
        object.__setattr__(self, "audio_tracks", tuple(self.audio_tracks))
        object.__setattr__(self, "embedded_videos", tuple(self.embedded_videos))

    def resolve_sources(self, resolver: PathResolver) -> RenderConfig:
        """Retorna uma cópia com todas as fontes convertidas em caminhos concretos"""
        tracks = []
        for track in self.audio_tracks:
            path = resolver.resolve(track.source)
            tracks.append(track.copy_with(source=_resolved_source(track.source, path)))

        videos = []
        for video in self.embedded_videos:
            path = resolver.resolve(MediaSource.from_uri(video.video_path))
            videos.append(replace(video, video_path=path))

        return replace(self, audio_tracks=tuple(tracks), embedded_videos=tuple(videos))

    def to_dict(self) -> dict[str, Any]:
        return {
            "timeline": self.timeline.to_dict(),
            "sequences": [dict(s) for s in self.sequences],
            "audio_tracks": [t.to_dict() for t in self.audio_tracks],
            "embedded_videos": [v.to_dict() for v in self.embedded_videos],
            "encoding": self.encoding.to_dict(),
        }

    @classmethod
    def from_dict(cls, record: Mapping[str, Any]) -> RenderConfig:
        return cls(
            timeline=TimelineConfig.from_dict(record["timeline"]),
            sequences=tuple(record.get("sequences", ())),
            audio_tracks=tuple(
                AudioTrackConfig.from_dict(t) for t in record.get("audio_tracks", ())
            ),
            embedded_videos=tuple(
                EmbeddedVideoConfig.from_dict(v)
                for v in record.get("embedded_videos", ())
            ),
            encoding=EncodingConfig.from_dict(record.get("encoding", {})),
        )


def _resolved_source(original: MediaSource, path: str) -> MediaSource:
    if original.kind is SourceKind.URL and path == original.uri:
        return original
    return MediaSource(SourceKind.FILE, path)
