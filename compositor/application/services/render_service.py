# -*- coding: utf-8 -*-
"""
Renderização completa: produtor de frames -> pipeline limitado -> encoder
"""

import asyncio
from pathlib import Path
from typing import Awaitable, Callable, Optional

from ...domain.models.timeline import RenderConfig
from ...infra.logging import get_logger
from ...rendering.runner import Progress
from .video_encoder_service import VideoEncoderService

FrameSource = Callable[[int], Awaitable[bytes]]

_END = object()


class FramePipeline:
    """Fila limitada entre o produtor de frames e o encoder"""

    def __init__(self, max_buffered: int = 5):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_buffered)

    async def put(self, frame: bytes):
        await self._queue.put(frame)

    async def close(self):
        await self._queue.put(_END)

    async def frames(self):
        while True:
            item = await self._queue.get()
            if item is _END:
                return
            yield item


class RenderService:
    """Orquestra uma renderização do primeiro ao último frame"""

    def __init__(self, encoder: Optional[VideoEncoderService] = None):
        self.logger = get_logger("RenderService")
        self.encoder = encoder or VideoEncoderService()

    async def render(
        self,
        config: RenderConfig,
        frame_source: FrameSource,
        output_path: Path,
        on_progress: Optional[Callable[[Progress], None]] = None,
    ) -> Path:
        """Renderiza `duration_in_frames` frames em ordem e retorna o arquivo"""
        total = config.timeline.duration_in_frames
        self.logger.info("Iniciando renderização de %d frames para %s", total, output_path)

        session = await self.encoder.start_encoding(config, output_path, on_progress)
        pipeline = FramePipeline(self.encoder.settings.pipeline_buffer_frames)

        async def produce():
            for index in range(total):
                await pipeline.put(await frame_source(index))
            await pipeline.close()

        async def consume():
            async for frame in pipeline.frames():
                await session.write_frame(frame)

        producer = asyncio.ensure_future(produce())
        consumer = asyncio.ensure_future(consume())
        try:
            await asyncio.gather(producer, consumer)
        except BaseException:
            self.logger.error("Renderização interrompida, cancelando encoder")
            producer.cancel()
            consumer.cancel()
            await session.cancel()
            # O erro original prevalece sobre o resultado do encoder
            await asyncio.gather(session.completed, return_exceptions=True)
            raise

        result = await session.finish()
        self.logger.info("Renderização concluída: %s", result)
        return result
