# -*- coding: utf-8 -*-
"""
Extração de frames decodificados (RGBA cru) via FFmpeg
"""

from typing import List, Optional

from ..domain.errors import ExtractionError
from ..domain.models.frames import ExtractedFrame, FitMode
from .logging import get_logger
from .paths import ffmpeg_bin
from .process import ProcessFactory, default_process_factory, run_process
from .settings import CompositorSettings


def build_scale_filter(width: int, height: int, fit: FitMode) -> str:
    """Filtro de escala que produz exatamente width x height em rgba"""
    w, h = width, height
    if fit is FitMode.CONTAIN:
        return (
            f"scale={w}:{h}:force_original_aspect_ratio=decrease,"
            f"pad={w}:{h}:(ow-iw)/2:(oh-ih)/2:color=black,format=rgba"
        )
    if fit is FitMode.COVER:
        return (
            f"scale={w}:{h}:force_original_aspect_ratio=increase,"
            f"crop={w}:{h},format=rgba"
        )
    if fit is FitMode.FILL:
        return f"scale={w}:{h}:flags=lanczos,format=rgba"
    if fit is FitMode.FIT_WIDTH:
        return (
            f"scale={w}:-2:flags=lanczos,"
            f"pad={w}:'max(ih,{h})':0:(oh-ih)/2:color=black,"
            f"crop={w}:{h},format=rgba"
        )
    if fit is FitMode.FIT_HEIGHT:
        return (
            f"scale=-2:{h}:flags=lanczos,"
            f"pad='max(iw,{w})':{h}:(ow-iw)/2:0:color=black,"
            f"crop={w}:{h},format=rgba"
        )
    if fit is FitMode.NONE:
        return (
            f"pad='max(iw,{w})':'max(ih,{h})':(ow-iw)/2:(oh-ih)/2:color=black,"
            f"crop={w}:{h},format=rgba"
        )
    if fit is FitMode.SCALE_DOWN:
        return (
            f"scale='min({w},iw)':'min({h},ih)':force_original_aspect_ratio=decrease,"
            f"pad={w}:{h}:(ow-iw)/2:(oh-ih)/2:color=black,format=rgba"
        )
    raise ValueError(f"Modo de ajuste desconhecido: {fit}")


class FrameExtractionService:
    """Extrai frames de vídeos como buffers RGBA"""

    def __init__(
        self,
        settings: Optional[CompositorSettings] = None,
        process_factory: ProcessFactory = default_process_factory,
    ):
        self.logger = get_logger("FrameExtractionService")
        self.settings = settings
        self.process_factory = process_factory

    def _make_command(
        self,
        path: str,
        timestamp: float,
        frame_count: int,
        width: int,
        height: int,
        fit: FitMode,
    ) -> List[str]:
        cmd = [
            ffmpeg_bin(self.settings),
            "-v",
            "error",
            "-ss",
            f"{timestamp:.6f}",
            "-i",
            path,
            "-vf",
            build_scale_filter(width, height, fit),
            "-frames:v",
            str(frame_count),
            "-f",
            "rawvideo",
            "-pix_fmt",
            "rgba",
        ]
        if frame_count > 1:
            cmd.extend(["-fps_mode", "passthrough"])
        cmd.append("-")
        return cmd

    async def _run(self, cmd: List[str], path: str) -> bytes:
        self.logger.debug("Extraindo frames: %s", " ".join(cmd))
        try:
            code, stdout, stderr = await run_process(cmd, self.process_factory)
        except OSError as e:
            self.logger.error("Falha ao iniciar ffmpeg: %s", e)
            raise ExtractionError("Falha ao iniciar ffmpeg", str(e)) from e

        if code != 0:
            details = stderr.decode("utf-8", errors="replace")
            self.logger.error("Extração falhou (%d) para %s: %s", code, path, details)
            raise ExtractionError(f"FFmpeg falhou ao extrair frame de {path}", details)
        return stdout

    async def extract_frame_at(
        self,
        path: str,
        timestamp_seconds: float,
        width: int,
        height: int,
        fit: FitMode = FitMode.CONTAIN,
        frame_number: int = 0,
    ) -> ExtractedFrame:
        """Extrai um único frame no instante informado"""
        if width <= 0 or height <= 0:
            raise ExtractionError(f"Dimensões inválidas: {width}x{height}")

        cmd = self._make_command(
            path, max(timestamp_seconds, 0.0), 1, width, height, fit
        )
        data = await self._run(cmd, path)

        expected = width * height * 4
        if len(data) != expected:
            raise ExtractionError(
                f"Tamanho de frame inesperado para {path}",
                f"esperado {expected} bytes, recebido {len(data)}",
            )
        return ExtractedFrame(frame_number, data, width, height)

    async def extract_frame(
        self,
        path: str,
        frame_number: int,
        source_fps: float,
        width: int,
        height: int,
        fit: FitMode = FitMode.CONTAIN,
    ) -> ExtractedFrame:
        """Extrai o frame `frame_number` do vídeo de origem"""
        if source_fps <= 0:
            raise ExtractionError(f"FPS de origem inválido: {source_fps}")
        return await self.extract_frame_at(
            path, frame_number / source_fps, width, height, fit, frame_number
        )

    async def extract_frame_range(
        self,
        path: str,
        start_frame: int,
        end_frame: int,
        source_fps: float,
        width: int,
        height: int,
        fit: FitMode = FitMode.CONTAIN,
    ) -> List[ExtractedFrame]:
        """Extrai os frames [start_frame, end_frame] numa única execução.

        Perto do fim do vídeo o FFmpeg pode entregar menos frames que o pedido;
        apenas frames completos são retornados.
        """
        if end_frame < start_frame:
            return []
        if source_fps <= 0:
            raise ExtractionError(f"FPS de origem inválido: {source_fps}")
        if width <= 0 or height <= 0:
            raise ExtractionError(f"Dimensões inválidas: {width}x{height}")

        count = end_frame - start_frame + 1
        cmd = self._make_command(
            path, start_frame / source_fps, count, width, height, fit
        )
        data = await self._run(cmd, path)

        frame_size = width * height * 4
        available = min(len(data) // frame_size, count)
        if len(data) % frame_size:
            self.logger.warning(
                "Frame parcial descartado em %s (%d bytes sobrando)",
                path,
                len(data) % frame_size,
            )

        frames = []
        for i in range(available):
            chunk = data[i * frame_size:(i + 1) * frame_size]
            frames.append(ExtractedFrame(start_frame + i, chunk, width, height))

        self.logger.debug(
            "Extraídos %d/%d frames de %s a partir de %d",
            available,
            count,
            path,
            start_frame,
        )
        return frames

    async def is_available(self) -> bool:
        """Verifica se o ffmpeg pode ser executado"""
        try:
            code, _, _ = await run_process(
                [ffmpeg_bin(self.settings), "-version"], self.process_factory
            )
        except OSError:
            return False
        return code == 0
