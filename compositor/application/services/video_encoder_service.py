# -*- coding: utf-8 -*-
"""
Serviço de encoding: compila o filtergraph e inicia o FFmpeg
"""

import asyncio
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from ...domain.errors import ConfigError, EncodingError
from ...domain.models.timeline import PathResolver, RenderConfig
from ...infra.logging import get_logger
from ...infra.paths import LocalPathResolver
from ...infra.process import ProcessFactory, default_process_factory
from ...infra.settings import CompositorSettings, get_settings
from ...rendering.cli_builder import CliBuilder
from ...rendering.graph_builder import FilterGraph, GraphBuilder
from ...rendering.runner import EncodingSession, Progress


class VideoEncoderService:
    """Inicia sessões de encoding, uma por vez"""

    def __init__(
        self,
        settings: Optional[CompositorSettings] = None,
        resolver: Optional[PathResolver] = None,
        process_factory: ProcessFactory = default_process_factory,
    ):
        self.logger = get_logger("VideoEncoderService")
        self.settings = settings or get_settings()
        self.resolver = resolver or LocalPathResolver(self.settings.assets_dir)
        self.process_factory = process_factory
        self.graph_builder = GraphBuilder(self.settings.composite_embedded_videos)
        self.cli_builder = CliBuilder(self.settings)
        self._active: Optional[EncodingSession] = None

    @property
    def is_encoding(self) -> bool:
        return self._active is not None and not self._active.completed.done()

    def prepare(
        self, config: RenderConfig, output_path: Path
    ) -> Tuple[FilterGraph, List[str]]:
        """Resolve as fontes, compila o filtergraph e monta o comando"""
        resolved = config.resolve_sources(self.resolver)
        graph = self.graph_builder.build(resolved)
        cmd = self.cli_builder.make_command(graph, Path(output_path), resolved)
        return graph, cmd

    async def start_encoding(
        self,
        config: RenderConfig,
        output_path: Path,
        on_progress: Optional[Callable[[Progress], None]] = None,
    ) -> EncodingSession:
        """Inicia o FFmpeg e retorna a sessão que recebe os frames"""
        if self.is_encoding:
            raise ConfigError("Já existe um encoding em andamento")

        output_path = Path(output_path)
        _graph, cmd = self.prepare(config, output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        self.logger.info("Executando comando FFmpeg: %s", " ".join(cmd))
        try:
            process = await self.process_factory(
                *cmd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            self.logger.error("Falha ao iniciar FFmpeg: %s", e)
            raise EncodingError(None, str(e)) from e

        session = EncodingSession(
            process,
            output_path,
            frame_size=config.timeline.frame_size_bytes,
            total_frames=config.timeline.duration_in_frames,
            on_progress=on_progress,
            shutdown_timeout=self.settings.encoder_shutdown_timeout,
            stderr_tail_lines=self.settings.stderr_tail_lines,
        )
        self._active = session
        return session

    async def cancel(self):
        """Cancela a sessão ativa, se houver"""
        if self._active is not None:
            await self._active.cancel()
