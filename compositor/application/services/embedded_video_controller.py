# -*- coding: utf-8 -*-
"""
Controlador de um vídeo embutido: mapeamento de tempo, estado e pré-carregamento
"""

import asyncio
import math
from enum import Enum
from typing import Callable, List, Optional, Set

from ...domain.errors import CompositorError, ExtractionError
from ...domain.models.frames import ExtractedFrame, FitMode, VideoMetadata
from ...domain.models.timeline import (
    AudioTrackConfig,
    EmbeddedVideoConfig,
    MediaSource,
    PathResolver,
    SourceKind,
)
from ...infra.frame_cache import FrameCache, FrameCacheManager
from ...infra.frame_extraction import FrameExtractionService
from ...infra.logging import get_logger
from ...infra.media_io import VideoProbeService
from ...infra.paths import LocalPathResolver
from ...infra.settings import CompositorSettings, get_settings


class ExtractionState(str, Enum):
    """Estados do controlador"""

    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


StateListener = Callable[[ExtractionState], None]


class EmbeddedVideoController:
    """Serve frames de um vídeo embutido a partir do frame da composição.

    O controlador resolve o caminho e sonda o vídeo em `initialize`, e depois
    pré-carrega frames no cache compartilhado por três gatilhos:

    - inicial: primeiros frames do clipe, logo após ficar pronto;
    - aproximação: a reprodução está a poucos frames do início do clipe;
    - contínuo: a cada pedido de frame que se afastou o bastante do último
      pré-carregamento, com debounce.
    """

    def __init__(
        self,
        video_source: str,
        start_frame: int = 0,
        duration_in_frames: Optional[int] = None,
        trim_start_seconds: float = 0.0,
        include_audio: bool = True,
        audio_volume: float = 1.0,
        audio_fade_in_frames: int = 0,
        audio_fade_out_frames: int = 0,
        fit: FitMode = FitMode.CONTAIN,
        width: int = 640,
        height: int = 360,
        cache: Optional[FrameCache] = None,
        probe_service: Optional[VideoProbeService] = None,
        extraction_service: Optional[FrameExtractionService] = None,
        resolver: Optional[PathResolver] = None,
        settings: Optional[CompositorSettings] = None,
    ):
        self.logger = get_logger("EmbeddedVideoController")
        self.settings = settings or get_settings()
        self.video_source = video_source
        self.start_frame = start_frame
        self.duration_in_frames = duration_in_frames
        self.trim_start_seconds = trim_start_seconds
        self.include_audio = include_audio
        self.audio_volume = audio_volume
        self.audio_fade_in_frames = audio_fade_in_frames
        self.audio_fade_out_frames = audio_fade_out_frames
        self.fit = fit
        self.width = width
        self.height = height
        self.preload_frames = self.settings.preload_frames

        self.cache = cache or FrameCacheManager.instance()
        self.probe_service = probe_service or VideoProbeService(self.settings)
        self.extraction_service = extraction_service or FrameExtractionService(
            self.settings
        )
        self.resolver = resolver or LocalPathResolver(self.settings.assets_dir)

        self.state = ExtractionState.UNINITIALIZED
        self.error: Optional[CompositorError] = None
        self.video_path: Optional[str] = None
        self.metadata: Optional[VideoMetadata] = None
        self.composition_fps: Optional[int] = None
        self.calculated_duration_in_frames = 0

        self._listeners: List[StateListener] = []
        self._last_preload_frame: Optional[int] = None
        self._initial_handle: Optional[asyncio.TimerHandle] = None
        self._debounce_handle: Optional[asyncio.TimerHandle] = None
        self._preload_tasks: Set[asyncio.Task] = set()
        self._disposed = False

    # Estado e ouvintes

    def add_listener(self, listener: StateListener):
        self._listeners.append(listener)

    def remove_listener(self, listener: StateListener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _set_state(self, state: ExtractionState):
        if state == self.state:
            return
        self.logger.debug("%s: %s -> %s", self.video_source, self.state.value, state.value)
        self.state = state
        for listener in list(self._listeners):
            listener(state)

    @property
    def is_ready(self) -> bool:
        return self.state is ExtractionState.READY

    @property
    def end_frame(self) -> int:
        return self.start_frame + self.calculated_duration_in_frames

    # Inicialização

    async def initialize(self, composition_fps: int):
        """Resolve o caminho, sonda o vídeo e agenda o pré-carregamento inicial"""
        if self.state is not ExtractionState.UNINITIALIZED:
            return

        self.composition_fps = composition_fps
        self._set_state(ExtractionState.LOADING)
        try:
            self.video_path = self.resolver.resolve(
                MediaSource.from_uri(self.video_source)
            )
            self.metadata = await self.probe_service.probe(self.video_path)
        except CompositorError as e:
            self.logger.error("Falha ao inicializar %s: %s", self.video_source, e)
            self.error = e
            self._set_state(ExtractionState.ERROR)
            raise

        if self.duration_in_frames is not None:
            duration = self.duration_in_frames
        else:
            remaining = self.metadata.duration - self.trim_start_seconds
            duration = math.floor(remaining * composition_fps)
        self.calculated_duration_in_frames = max(duration, 0)

        self._set_state(ExtractionState.READY)
        self.logger.info(
            "Vídeo embutido pronto: %s (%d frames a partir de %d)",
            self.video_path,
            self.calculated_duration_in_frames,
            self.start_frame,
        )
        self._schedule_initial_preload()

    def _schedule_initial_preload(self):
        count = self.settings.initial_preload_frames
        if count <= 0 or self.calculated_duration_in_frames <= 0:
            return
        first = self._clamp_source_frame(
            round(self.trim_start_seconds * self.metadata.fps)
        )
        last = self._clamp_source_frame(first + count - 1)
        loop = asyncio.get_running_loop()
        self._initial_handle = loop.call_later(
            self.settings.initial_preload_delay, self._start_preload, first, last
        )

    # Mapeamento de tempo

    def composition_frame_to_source_frame(self, composition_frame: int) -> int:
        """Frame de origem (sem clamp) ou -1 antes do início do clipe"""
        if self.metadata is None or self.composition_fps is None:
            return -1
        relative = composition_frame - self.start_frame
        if relative < 0:
            return -1
        source_time = self.trim_start_seconds + relative / self.composition_fps
        return round(source_time * self.metadata.fps)

    def composition_frame_to_source_timestamp(self, composition_frame: int) -> float:
        """Instante na fonte, em segundos, para o frame da composição"""
        if self.composition_fps is None:
            return self.trim_start_seconds
        relative = max(composition_frame - self.start_frame, 0)
        return self.trim_start_seconds + relative / self.composition_fps

    def is_frame_in_range(self, composition_frame: int) -> bool:
        return self.start_frame <= composition_frame < self.end_frame

    def _clamp_source_frame(self, source_frame: int) -> int:
        last = max(self.metadata.frame_count - 1, 0)
        return min(max(source_frame, 0), last)

    # Frames

    def set_display_size(self, width: int, height: int):
        """Altera o tamanho de saída dos frames; descarta os frames antigos"""
        if (width, height) == (self.width, self.height):
            return
        self.width, self.height = width, height
        self.clear_cache()

    async def get_frame(
        self,
        composition_frame: int,
        width: Optional[int] = None,
        height: Optional[int] = None,
    ) -> Optional[ExtractedFrame]:
        """Retorna o frame do vídeo para o frame da composição, ou None"""
        if not self.is_ready or not self.is_frame_in_range(composition_frame):
            return None
        if width is not None and height is not None:
            self.set_display_size(width, height)

        self._check_steady_state_preload(composition_frame)

        source_frame = self._clamp_source_frame(
            self.composition_frame_to_source_frame(composition_frame)
        )
        path = self.video_path
        width, height = self.width, self.height

        def extract():
            return self.extraction_service.extract_frame(
                path, source_frame, self.metadata.fps, width, height, self.fit
            )

        frame = await self.cache.get_or_extract(path, source_frame, extract)
        if (frame.width, frame.height) != (width, height):
            # Extração anterior à troca de tamanho (pendente ou já no cache)
            self.cache.remove(path, source_frame)
            frame = await self.cache.get_or_extract(path, source_frame, extract)
            if (frame.width, frame.height) != (width, height):
                raise ExtractionError(
                    f"Frame {source_frame} de {path} com tamanho inesperado",
                    f"{frame.width}x{frame.height}, esperado {width}x{height}",
                )
        return frame

    # Pré-carregamento

    def _check_steady_state_preload(self, composition_frame: int):
        last = self._last_preload_frame
        if last is not None and abs(composition_frame - last) < self.preload_frames // 2:
            return
        self._last_preload_frame = composition_frame

        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
        loop = asyncio.get_running_loop()
        self._debounce_handle = loop.call_later(
            self.settings.preload_debounce, self._perform_preload, composition_frame
        )

    def _perform_preload(self, composition_frame: int):
        self._debounce_handle = None
        first = max(composition_frame, self.start_frame)
        last = min(composition_frame + self.preload_frames, self.end_frame - 1)
        if last < first:
            return
        self._start_preload(
            self._clamp_source_frame(self.composition_frame_to_source_frame(first)),
            self._clamp_source_frame(self.composition_frame_to_source_frame(last)),
        )

    def on_approaching_start(
        self, current_frame: int, lookahead_frames: Optional[int] = None
    ):
        """Pré-carrega o início do clipe quando a reprodução se aproxima dele"""
        if not self.is_ready or self.calculated_duration_in_frames <= 0:
            return
        if lookahead_frames is None:
            lookahead_frames = self.settings.approach_lookahead_frames
        if not (self.start_frame - lookahead_frames <= current_frame < self.start_frame):
            return

        last = min(self.start_frame + self.preload_frames, self.end_frame) - 1
        self._start_preload(
            self._clamp_source_frame(
                self.composition_frame_to_source_frame(self.start_frame)
            ),
            self._clamp_source_frame(self.composition_frame_to_source_frame(last)),
        )

    def _start_preload(self, first_source: int, last_source: int):
        if self._disposed or not self.is_ready:
            return
        task = asyncio.ensure_future(self._preload(first_source, last_source))
        self._preload_tasks.add(task)
        task.add_done_callback(self._preload_tasks.discard)

    async def _preload(self, first_source: int, last_source: int):
        path = self.video_path
        fps = self.metadata.fps
        width, height, fit = self.width, self.height, self.fit

        def extract_range(start: int, end: int):
            return self.extraction_service.extract_frame_range(
                path, start, end, fps, width, height, fit
            )

        try:
            await self.cache.preload_range(path, first_source, last_source, extract_range)
        except CompositorError as e:
            # Pré-carregamento é oportunista; o pedido sob demanda reporta o erro
            self.logger.warning(
                "Pré-carregamento de %s [%d-%d] falhou: %s",
                path,
                first_source,
                last_source,
                e,
            )
        finally:
            if (self.width, self.height) != (width, height):
                removed = self.cache.remove_other_sizes(path, self.width, self.height)
                self.logger.debug(
                    "Descartados %d frames pré-carregados em %dx%d", removed, width, height
                )

    async def wait_for_preloads(self):
        """Aguarda os pré-carregamentos em andamento"""
        while self._preload_tasks:
            await asyncio.gather(*list(self._preload_tasks))

    # Exportação para o encoder

    def _resolved_source(self) -> MediaSource:
        source = MediaSource.from_uri(self.video_path)
        if source.kind is SourceKind.ASSET:
            return MediaSource(SourceKind.FILE, self.video_path)
        return source

    def to_audio_config(self) -> Optional[AudioTrackConfig]:
        """Trilha de áudio equivalente ao clipe, ou None se não houver áudio"""
        if not self.include_audio or not self.is_ready or not self.metadata.has_audio:
            return None
        return AudioTrackConfig(
            source=self._resolved_source(),
            start_frame=self.start_frame,
            duration_in_frames=self.calculated_duration_in_frames,
            trim_start_frame=round(self.trim_start_seconds * self.composition_fps),
            volume=self.audio_volume,
            fade_in_frames=self.audio_fade_in_frames,
            fade_out_frames=self.audio_fade_out_frames,
        )

    def to_embedded_video_config(
        self,
        id: str,
        width: Optional[int] = None,
        height: Optional[int] = None,
        position_x: int = 0,
        position_y: int = 0,
    ) -> EmbeddedVideoConfig:
        """Configuração do clipe para o filtergraph"""
        has_audio = bool(self.metadata and self.metadata.has_audio)
        return EmbeddedVideoConfig(
            id=id,
            video_path=self.video_path or self.video_source,
            start_frame=self.start_frame,
            duration_in_frames=self.calculated_duration_in_frames,
            trim_start_seconds=self.trim_start_seconds,
            width=width if width is not None else self.width,
            height=height if height is not None else self.height,
            position_x=position_x,
            position_y=position_y,
            include_audio=self.include_audio and has_audio,
            audio_volume=self.audio_volume,
            audio_fade_in_frames=self.audio_fade_in_frames,
            audio_fade_out_frames=self.audio_fade_out_frames,
        )

    # Ciclo de vida

    def clear_cache(self):
        if self.video_path:
            self.cache.clear_video(self.video_path)

    def dispose(self):
        """Cancela agendamentos e limpa o cache; extrações em andamento terminam"""
        self._disposed = True
        for handle in (self._initial_handle, self._debounce_handle):
            if handle is not None:
                handle.cancel()
        self._initial_handle = None
        self._debounce_handle = None
        self.clear_cache()
        self._listeners.clear()
