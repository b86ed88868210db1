# -*- coding: utf-8 -*-
"""
Construção de filtergraph FFmpeg a partir da configuração de renderização
"""

import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

from ..domain.errors import ConfigError
from ..domain.models.timeline import (
    AudioTrackConfig,
    EmbeddedVideoConfig,
    MediaSource,
    RenderConfig,
)
from ..infra.logging import get_logger

VIDEO_OUTPUT_LABEL = "v_out"
AUDIO_OUTPUT_LABEL = "a_mix_out"

_STREAM_REF = re.compile(r"\[(\d+):[av]\]")


def format_number(value: float) -> str:
    """Formata números de forma determinística (sem zeros à direita)"""
    text = f"{value:.6f}".rstrip("0").rstrip(".")
    return "0" if text in ("", "-0") else text


@dataclass(frozen=True)
class InputSpec:
    """Input adicional do FFmpeg (os inputs 1..N), com opções próprias"""

    path: str
    options: Tuple[str, ...] = ()


class FilterGraph:
    """Representa um filtergraph FFmpeg"""

    def __init__(self):
        self.filters: List[str] = []
        self.inputs: List[InputSpec] = []
        self.video_output_label: str = VIDEO_OUTPUT_LABEL
        self.audio_output_label: Optional[str] = None
        self.embedded_video_count = 0

    def add_input(self, input_spec: InputSpec) -> int:
        """Adiciona um input e retorna seu índice de stream (0 é o stdin)"""
        self.inputs.append(input_spec)
        return len(self.inputs)

    def add_filter(self, filter_expr: str):
        """Adiciona um filtro ao graph"""
        self.filters.append(filter_expr)

    @property
    def has_audio(self) -> bool:
        return self.audio_output_label is not None

    def to_string(self) -> str:
        """Converte o filtergraph para string FFmpeg"""
        return ";".join(self.filters)


@dataclass(frozen=True)
class _AudioSource:
    input_index: int
    label: str
    start_frame: int
    trim_start: float  # segundos
    trim_end: float  # segundos
    volume: float
    fade_in_frames: int
    fade_out_frames: int


class GraphBuilder:
    """Constrói o filtergraph a partir de um RenderConfig"""

    def __init__(self, composite_embedded_videos: Optional[bool] = None):
        self.logger = get_logger("GraphBuilder")
        if composite_embedded_videos is None:
            from ..infra.settings import get_settings

            composite_embedded_videos = get_settings().composite_embedded_videos
        self.composite_embedded_videos = composite_embedded_videos

    def build(self, config: RenderConfig) -> FilterGraph:
        """Constrói o filtergraph; não altera a configuração recebida"""
        self._validate(config)
        fps = config.timeline.fps

        self.logger.info(
            "Construindo filtergraph: %d vídeos embutidos, %d trilhas de áudio",
            len(config.embedded_videos),
            len(config.audio_tracks),
        )

        graph = FilterGraph()
        overlays: List[Tuple[int, int, EmbeddedVideoConfig]] = []
        audio_sources: List[_AudioSource] = []

        # Inputs dos vídeos embutidos, na ordem declarada
        for i, video in enumerate(config.embedded_videos):
            if not self._needs_input(video):
                continue
            index = graph.add_input(InputSpec(video.video_path))
            if self.composite_embedded_videos:
                overlays.append((i, index, video))
            if video.include_audio:
                audio_sources.append(self._embedded_audio(i, index, video, fps))

        # Inputs das trilhas de áudio
        for i, track in enumerate(config.audio_tracks):
            options = ("-stream_loop", "-1") if track.loop else ()
            index = graph.add_input(InputSpec(track.source.uri, options))
            audio_sources.append(self._track_audio(i, index, track, fps))

        graph.embedded_video_count = len(overlays)
        self._build_video_filters(graph, config, overlays)
        self._build_audio_filters(graph, audio_sources, fps)
        self._check_stream_references(graph)

        self.logger.debug("Filtergraph construído: %s", graph.to_string())
        return graph

    def _needs_input(self, video: EmbeddedVideoConfig) -> bool:
        if video.duration_in_frames <= 0:
            return False
        return self.composite_embedded_videos or video.include_audio

    # Vídeo

    def _build_video_filters(
        self,
        graph: FilterGraph,
        config: RenderConfig,
        overlays: List[Tuple[int, int, EmbeddedVideoConfig]],
    ):
        fps = config.timeline.fps
        pix_fmt = config.encoding.pixel_format

        if not overlays:
            graph.add_filter(f"[0:v]fps={fps},format={pix_fmt}[{VIDEO_OUTPUT_LABEL}]")
            return

        graph.add_filter(f"[0:v]fps={fps}[v_base]")
        last_label = "v_base"
        for i, index, video in overlays:
            start = video.trim_start_seconds
            end = start + video.duration_seconds(fps)
            offset = video.start_time_seconds(fps)
            embedded_label = f"v_embedded_{i}"
            graph.add_filter(
                f"[{index}:v]trim=start={format_number(start)}:end={format_number(end)},"
                f"setpts=PTS-STARTPTS+{format_number(offset)}/TB,"
                f"scale={video.width}:{video.height}[{embedded_label}]"
            )
            out_label = f"v_overlay_{i}"
            graph.add_filter(
                f"[{last_label}][{embedded_label}]overlay="
                f"x={video.position_x}:y={video.position_y}:"
                f"enable='between(n,{video.start_frame},{video.end_frame - 1})'"
                f"[{out_label}]"
            )
            last_label = out_label

        graph.add_filter(f"[{last_label}]format={pix_fmt}[{VIDEO_OUTPUT_LABEL}]")

    # Áudio

    def _embedded_audio(
        self, i: int, index: int, video: EmbeddedVideoConfig, fps: int
    ) -> _AudioSource:
        start = video.trim_start_seconds
        return _AudioSource(
            input_index=index,
            label=f"a_embedded_{i}",
            start_frame=video.start_frame,
            trim_start=start,
            trim_end=start + video.duration_seconds(fps),
            volume=video.audio_volume,
            fade_in_frames=video.audio_fade_in_frames,
            fade_out_frames=video.audio_fade_out_frames,
        )

    def _track_audio(
        self, i: int, index: int, track: AudioTrackConfig, fps: int
    ) -> _AudioSource:
        start = track.trim_start_frame / fps
        end = start + track.duration_in_frames / fps
        if track.trim_end_frame is not None and not track.loop:
            end = min(end, track.trim_end_frame / fps)
        return _AudioSource(
            input_index=index,
            label=f"a_track_{i}",
            start_frame=track.start_frame,
            trim_start=start,
            trim_end=end,
            volume=track.volume,
            fade_in_frames=track.fade_in_frames,
            fade_out_frames=track.fade_out_frames,
        )

    def _build_audio_filters(
        self, graph: FilterGraph, sources: List[_AudioSource], fps: int
    ):
        if not sources:
            graph.audio_output_label = None
            return

        single = len(sources) == 1
        for source in sources:
            label = AUDIO_OUTPUT_LABEL if single else source.label
            graph.add_filter(self._audio_chain(source, fps, label))

        if not single:
            inputs = "".join(f"[{s.label}]" for s in sources)
            graph.add_filter(
                f"{inputs}amix=inputs={len(sources)}:duration=longest:"
                f"dropout_transition=0[{AUDIO_OUTPUT_LABEL}]"
            )
        graph.audio_output_label = AUDIO_OUTPUT_LABEL

    def _audio_chain(self, source: _AudioSource, fps: int, label: str) -> str:
        active = source.trim_end - source.trim_start
        chain = [
            f"atrim=start={format_number(source.trim_start)}"
            f":end={format_number(source.trim_end)}",
            "asetpts=PTS-STARTPTS",
            f"volume={format_number(source.volume)}",
        ]
        if source.fade_in_frames > 0:
            fade_in = source.fade_in_frames / fps
            chain.append(f"afade=t=in:start_time=0:duration={format_number(fade_in)}")
        if source.fade_out_frames > 0:
            fade_out = source.fade_out_frames / fps
            chain.append(
                f"afade=t=out:start_time={format_number(max(active - fade_out, 0))}"
                f":duration={format_number(fade_out)}"
            )
        # O atraso vem por último para que os fades fiquem relativos ao trecho ativo
        delay = round(source.start_frame / fps * 1000)
        chain.append(f"adelay={delay}|{delay}")
        return f"[{source.input_index}:a]" + ",".join(chain) + f"[{label}]"

    # Validação

    def _validate(self, config: RenderConfig):
        timeline = config.timeline
        if timeline.fps <= 0:
            raise ConfigError(f"FPS deve ser positivo: {timeline.fps}")
        if timeline.duration_in_frames <= 0:
            raise ConfigError(
                f"Duração deve ser positiva: {timeline.duration_in_frames}"
            )
        if timeline.width <= 0 or timeline.height <= 0:
            raise ConfigError(
                f"Resolução inválida: {timeline.width}x{timeline.height}"
            )

        seen_ids = set()
        for video in config.embedded_videos:
            if video.id:
                if video.id in seen_ids:
                    raise ConfigError(f"ID de vídeo embutido duplicado: {video.id}")
                seen_ids.add(video.id)
            if video.start_frame < 0 or video.duration_in_frames < 0:
                raise ConfigError(f"Frames negativos no vídeo embutido {video.id!r}")
            if video.trim_start_seconds < 0:
                raise ConfigError(f"Trim negativo no vídeo embutido {video.id!r}")
            if video.audio_volume < 0:
                raise ConfigError(f"Volume negativo no vídeo embutido {video.id!r}")
            if video.audio_fade_in_frames < 0 or video.audio_fade_out_frames < 0:
                raise ConfigError(f"Fade negativo no vídeo embutido {video.id!r}")
            if video.duration_in_frames > 0 and (video.width <= 0 or video.height <= 0):
                raise ConfigError(
                    f"Dimensões inválidas no vídeo embutido {video.id!r}: "
                    f"{video.width}x{video.height}"
                )
            if not MediaSource.from_uri(video.video_path).is_resolved:
                raise ConfigError(f"Fonte não resolvida: {video.video_path}")

        for i, track in enumerate(config.audio_tracks):
            if not track.source.is_resolved:
                raise ConfigError(f"Fonte não resolvida: {track.source.uri}")
            if track.start_frame < 0 or track.duration_in_frames < 0:
                raise ConfigError(f"Frames negativos na trilha de áudio {i}")
            if track.trim_start_frame < 0:
                raise ConfigError(f"Trim negativo na trilha de áudio {i}")
            if (
                track.trim_end_frame is not None
                and track.trim_end_frame <= track.trim_start_frame
            ):
                raise ConfigError(
                    f"Trim final deve ser maior que o inicial na trilha de áudio {i}"
                )
            if track.volume < 0:
                raise ConfigError(f"Volume negativo na trilha de áudio {i}")
            if track.fade_in_frames < 0 or track.fade_out_frames < 0:
                raise ConfigError(f"Fade negativo na trilha de áudio {i}")

    def _check_stream_references(self, graph: FilterGraph):
        """Garante que toda referência [k:a]/[k:v] aponta para um input declarado"""
        input_count = len(graph.inputs) + 1
        for match in _STREAM_REF.finditer(graph.to_string()):
            index = int(match.group(1))
            if index >= input_count:
                raise ConfigError(
                    f"Filtergraph referencia input inexistente {match.group(0)}"
                )


def compile_filter_graph(
    config: RenderConfig, composite_embedded_videos: Optional[bool] = None
) -> FilterGraph:
    """Atalho para GraphBuilder().build(config)"""
    return GraphBuilder(composite_embedded_videos).build(config)
