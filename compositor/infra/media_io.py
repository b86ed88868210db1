# -*- coding: utf-8 -*-
"""
Sondagem de metadados de vídeo via FFprobe
"""

import asyncio
import json
from fractions import Fraction
from pathlib import Path
from typing import Any, Dict, Optional

from ..domain.errors import ExtractionError
from ..domain.models.frames import VideoMetadata
from .logging import get_logger
from .paths import ffprobe_bin
from .process import ProcessFactory, default_process_factory, run_process
from .settings import CompositorSettings


def parse_frame_rate(value: Optional[str]) -> float:
    """Converte taxas no formato do ffprobe ("30000/1001") em float"""
    if not value:
        return 0.0
    try:
        rate = Fraction(value)
    except (ValueError, ZeroDivisionError):
        return 0.0
    return float(rate)


def _to_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _to_float(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def parse_probe_output(data: Dict[str, Any], path: str) -> VideoMetadata:
    """Monta VideoMetadata a partir do JSON do ffprobe"""
    streams = data.get("streams", [])
    fmt = data.get("format", {})

    video = next((s for s in streams if s.get("codec_type") == "video"), None)
    if video is None:
        raise ExtractionError(f"Nenhuma stream de vídeo em {path}")
    audio = next((s for s in streams if s.get("codec_type") == "audio"), None)

    fps = parse_frame_rate(video.get("r_frame_rate")) or parse_frame_rate(
        video.get("avg_frame_rate")
    )
    duration = _to_float(video.get("duration")) or _to_float(fmt.get("duration")) or 0.0

    frame_count = _to_int(video.get("nb_frames"))
    if not frame_count:
        frame_count = round(duration * fps)

    return VideoMetadata(
        width=_to_int(video.get("width")) or 0,
        height=_to_int(video.get("height")) or 0,
        fps=fps,
        duration=duration,
        frame_count=frame_count,
        has_audio=audio is not None,
        video_codec=video.get("codec_name"),
        audio_codec=audio.get("codec_name") if audio else None,
        audio_channels=_to_int(audio.get("channels")) if audio else None,
        audio_sample_rate=_to_int(audio.get("sample_rate")) if audio else None,
        bitrate=_to_int(fmt.get("bit_rate")),
    )


class VideoProbeService:
    """Lê metadados de vídeos, uma invocação do ffprobe por caminho"""

    def __init__(
        self,
        settings: Optional[CompositorSettings] = None,
        process_factory: ProcessFactory = default_process_factory,
    ):
        self.logger = get_logger("VideoProbeService")
        self.settings = settings
        self.process_factory = process_factory
        self._results: Dict[str, VideoMetadata] = {}
        self._pending: Dict[str, asyncio.Task] = {}

    async def probe(self, path: str) -> VideoMetadata:
        """Obtém metadados do vídeo; chamadas concorrentes compartilham a execução"""
        cached = self._results.get(path)
        if cached is not None:
            return cached

        task = self._pending.get(path)
        if task is None:
            task = asyncio.ensure_future(self._probe(path))
            self._pending[path] = task
            task.add_done_callback(lambda _t, p=path: self._pending.pop(p, None))
        return await asyncio.shield(task)

    async def _probe(self, path: str) -> VideoMetadata:
        if "://" not in path and not Path(path).exists():
            raise ExtractionError(f"Arquivo de vídeo não encontrado: {path}")

        cmd = [
            ffprobe_bin(self.settings),
            "-v",
            "quiet",
            "-print_format",
            "json",
            "-show_format",
            "-show_streams",
            path,
        ]
        self.logger.debug("Sondando vídeo: %s", " ".join(cmd))

        try:
            code, stdout, stderr = await run_process(cmd, self.process_factory)
        except OSError as e:
            self.logger.error("Falha ao iniciar ffprobe: %s", e)
            raise ExtractionError("Falha ao iniciar ffprobe", str(e)) from e

        if code != 0:
            details = stderr.decode("utf-8", errors="replace")
            self.logger.error("ffprobe falhou (%d) para %s: %s", code, path, details)
            raise ExtractionError(f"ffprobe falhou para {path}", details)

        try:
            data = json.loads(stdout.decode("utf-8", errors="replace"))
        except json.JSONDecodeError as e:
            raise ExtractionError(f"Saída inválida do ffprobe para {path}", str(e)) from e

        metadata = parse_probe_output(data, path)
        self._results[path] = metadata
        self.logger.info(
            "Vídeo %s: %dx%d @ %.3f fps, %.2fs, %d frames",
            path,
            metadata.width,
            metadata.height,
            metadata.fps,
            metadata.duration,
            metadata.frame_count,
        )
        return metadata

    async def is_available(self) -> bool:
        """Verifica se o ffprobe pode ser executado"""
        try:
            code, _, _ = await run_process(
                [ffprobe_bin(self.settings), "-version"], self.process_factory
            )
        except OSError:
            return False
        return code == 0

    def clear(self):
        """Descarta os metadados memorizados"""
        self._results.clear()
