# -*- coding: utf-8 -*-
"""
Cache LRU de frames decodificados com limite de quantidade e de memória
"""

import asyncio
from collections import OrderedDict
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from ..domain.errors import ConfigError, ExtractionError
from ..domain.models.frames import ExtractedFrame
from .logging import get_logger
from .settings import get_settings

CacheKey = Tuple[str, int]


class FrameCache:
    """Armazena frames por (video_path, frame_number), despejando o menos usado.

    Nenhuma mutação aguarda (await), então cada operação é atômica em relação
    às demais tarefas do event loop.
    """

    def __init__(self, max_frames: int, max_memory_bytes: int):
        if max_frames <= 0 or max_memory_bytes <= 0:
            raise ConfigError(
                f"Limites de cache inválidos: {max_frames} frames, {max_memory_bytes} bytes"
            )
        self.logger = get_logger("FrameCache")
        self.max_frames = max_frames
        self.max_memory_bytes = max_memory_bytes
        self._entries: "OrderedDict[CacheKey, ExtractedFrame]" = OrderedDict()
        self._memory_usage = 0
        self._pending: Dict[CacheKey, asyncio.Future] = {}

    @property
    def frame_count(self) -> int:
        return len(self._entries)

    @property
    def memory_usage(self) -> int:
        return self._memory_usage

    @property
    def memory_usage_ratio(self) -> float:
        return self._memory_usage / self.max_memory_bytes

    def put(self, video_path: str, frame_number: int, frame: ExtractedFrame):
        key = (video_path, frame_number)
        previous = self._entries.pop(key, None)
        if previous is not None:
            self._memory_usage -= previous.size_in_bytes
        self._entries[key] = frame
        self._memory_usage += frame.size_in_bytes
        self._evict()

    def get(self, video_path: str, frame_number: int) -> Optional[ExtractedFrame]:
        key = (video_path, frame_number)
        frame = self._entries.get(key)
        if frame is not None:
            self._entries.move_to_end(key)
        return frame

    def has(self, video_path: str, frame_number: int) -> bool:
        return (video_path, frame_number) in self._entries

    def is_pending(self, video_path: str, frame_number: int) -> bool:
        return (video_path, frame_number) in self._pending

    def remove(self, video_path: str, frame_number: int) -> bool:
        frame = self._entries.pop((video_path, frame_number), None)
        if frame is None:
            return False
        self._memory_usage -= frame.size_in_bytes
        return True

    def remove_other_sizes(self, video_path: str, width: int, height: int) -> int:
        """Remove os frames de um vídeo cujo tamanho difere de width x height"""
        keys = [
            key
            for key, frame in self._entries.items()
            if key[0] == video_path and (frame.width, frame.height) != (width, height)
        ]
        for key in keys:
            self._memory_usage -= self._entries.pop(key).size_in_bytes
        return len(keys)

    def clear_video(self, video_path: str):
        """Remove todos os frames de um vídeo"""
        keys = [key for key in self._entries if key[0] == video_path]
        for key in keys:
            self._memory_usage -= self._entries.pop(key).size_in_bytes
        if keys:
            self.logger.debug("Removidos %d frames de %s", len(keys), video_path)

    def clear_all(self):
        self._entries.clear()
        self._memory_usage = 0

    def evict_outside_window(self, video_path: str, center_frame: int, window: int):
        """Remove frames do vídeo fora de [center - window, center + window]"""
        keys = [
            key
            for key in self._entries
            if key[0] == video_path and abs(key[1] - center_frame) > window
        ]
        for key in keys:
            self._memory_usage -= self._entries.pop(key).size_in_bytes

    def _evict(self):
        while self._entries and (
            len(self._entries) > self.max_frames
            or self._memory_usage > self.max_memory_bytes
        ):
            _key, frame = self._entries.popitem(last=False)
            self._memory_usage -= frame.size_in_bytes

    async def get_or_extract(
        self,
        video_path: str,
        frame_number: int,
        extract: Callable[[], Awaitable[ExtractedFrame]],
    ) -> ExtractedFrame:
        """Retorna o frame do cache ou extrai, com no máximo uma extração por chave"""
        cached = self.get(video_path, frame_number)
        if cached is not None:
            return cached

        key = (video_path, frame_number)
        pending = self._pending.get(key)
        if pending is None:
            pending = asyncio.ensure_future(self._extract_into_cache(key, extract))
            self._pending[key] = pending
            pending.add_done_callback(lambda f, k=key: self._release(k, f))
        return await asyncio.shield(pending)

    async def _extract_into_cache(
        self, key: CacheKey, extract: Callable[[], Awaitable[ExtractedFrame]]
    ) -> ExtractedFrame:
        frame = await extract()
        self.put(key[0], key[1], frame)
        return frame

    def _release(self, key: CacheKey, future: asyncio.Future):
        if self._pending.get(key) is future:
            del self._pending[key]
        if not future.cancelled():
            # Marca a exceção como consumida quando ninguém mais aguarda
            future.exception()

    async def preload_range(
        self,
        video_path: str,
        start_frame: int,
        end_frame: int,
        extract_range: Callable[[int, int], Awaitable[List[ExtractedFrame]]],
    ) -> int:
        """Pré-carrega [start_frame, end_frame], extraindo trechos contíguos.

        Frames já em cache ou em extração são ignorados. Pedidos sob demanda
        para frames do trecho aguardam esta extração. Retorna quantos frames
        foram inseridos.
        """
        missing = [
            n
            for n in range(start_frame, end_frame + 1)
            if not self.has(video_path, n) and not self.is_pending(video_path, n)
        ]
        if not missing:
            return 0

        loop = asyncio.get_running_loop()
        futures: Dict[int, asyncio.Future] = {}
        for n in missing:
            future = loop.create_future()
            key = (video_path, n)
            self._pending[key] = future
            future.add_done_callback(lambda f, k=key: self._release(k, f))
            futures[n] = future

        inserted = 0
        first_error: Optional[BaseException] = None
        try:
            for run_start, run_end in _contiguous_runs(missing):
                try:
                    frames = await extract_range(run_start, run_end)
                except ExtractionError as e:
                    first_error = first_error or e
                    for n in range(run_start, run_end + 1):
                        _fail(futures[n], e)
                    continue

                for frame in frames:
                    future = futures.get(frame.frame_number)
                    if future is None or future.done():
                        continue
                    self.put(video_path, frame.frame_number, frame)
                    future.set_result(frame)
                    inserted += 1

                for n in range(run_start, run_end + 1):
                    _fail(
                        futures[n],
                        ExtractionError(f"Frame {n} ausente na extração de {video_path}"),
                    )
        finally:
            for future in futures.values():
                if not future.done():
                    future.cancel()

        if first_error is not None:
            raise first_error
        return inserted


def _fail(future: asyncio.Future, error: BaseException):
    if not future.done():
        future.set_exception(error)


def _contiguous_runs(frames: List[int]) -> List[Tuple[int, int]]:
    """Agrupa números de frame ordenados em intervalos contíguos"""
    runs: List[Tuple[int, int]] = []
    for n in frames:
        if runs and runs[-1][1] == n - 1:
            runs[-1] = (runs[-1][0], n)
        else:
            runs.append((n, n))
    return runs


class FrameCacheManager:
    """Instância única e compartilhada do FrameCache"""

    _instance: Optional[FrameCache] = None
    _max_frames: Optional[int] = None
    _max_memory_bytes: Optional[int] = None

    @classmethod
    def configure(cls, max_frames: int, max_memory_bytes: int):
        """Define os limites; só pode ser chamado antes do primeiro uso"""
        if cls._instance is not None:
            raise ConfigError("FrameCacheManager já foi inicializado")
        cls._max_frames = max_frames
        cls._max_memory_bytes = max_memory_bytes

    @classmethod
    def instance(cls) -> FrameCache:
        if cls._instance is None:
            settings = get_settings()
            cls._instance = FrameCache(
                cls._max_frames or settings.cache_max_frames,
                cls._max_memory_bytes or settings.cache_max_memory_bytes,
            )
        return cls._instance

    @classmethod
    def dispose(cls):
        """Descarta a instância e a configuração (usado para isolar testes)"""
        if cls._instance is not None:
            cls._instance.clear_all()
        cls._instance = None
        cls._max_frames = None
        cls._max_memory_bytes = None
