# -*- coding: utf-8 -*-
"""
Construção de comandos FFmpeg a partir do filtergraph
"""

from pathlib import Path
from typing import List, Optional

from ..domain.models.timeline import RenderConfig
from ..infra.logging import get_logger
from ..infra.paths import ffmpeg_bin
from ..infra.settings import CompositorSettings
from .graph_builder import FilterGraph


class CliBuilder:
    """Constrói comandos FFmpeg que recebem frames RGBA pelo stdin"""

    def __init__(self, settings: Optional[CompositorSettings] = None):
        self.logger = get_logger("CliBuilder")
        self.settings = settings

    def make_command(
        self, graph: FilterGraph, out_path: Path, config: RenderConfig
    ) -> List[str]:
        """Gera o comando FFmpeg completo"""
        timeline = config.timeline
        encoding = config.encoding

        self.logger.info(
            "Construindo comando FFmpeg para %d inputs", len(graph.inputs) + 1
        )

        cmd = [ffmpeg_bin(self.settings), "-y"]

        # Input 0: frames renderizados vindos do stdin
        cmd.extend(
            [
                "-f",
                "rawvideo",
                "-pixel_format",
                "rgba",
                "-video_size",
                f"{timeline.width}x{timeline.height}",
                "-framerate",
                str(timeline.fps),
                "-i",
                "-",
            ]
        )

        # Inputs adicionais (vídeos embutidos e trilhas de áudio)
        for input_spec in graph.inputs:
            cmd.extend(input_spec.options)
            cmd.extend(["-i", input_spec.path])

        cmd.extend(["-filter_complex", graph.to_string()])

        # Mapear outputs do filtergraph
        cmd.extend(["-map", f"[{graph.video_output_label}]"])
        if graph.audio_output_label:
            cmd.extend(["-map", f"[{graph.audio_output_label}]"])

        # Configurações de codec de vídeo
        cmd.extend(["-c:v", encoding.vcodec])
        crf = encoding.resolved_crf
        if encoding.vcodec == "h264_nvenc":
            cmd.extend(["-preset", "p5", "-rc", "constqp", "-qp", str(crf)])
        else:
            cmd.extend(["-preset", encoding.resolved_preset, "-crf", str(crf)])

        cmd.extend(["-pix_fmt", encoding.pixel_format])

        # Codec de áudio
        if graph.audio_output_label:
            cmd.extend(["-c:a", encoding.acodec, "-b:a", encoding.audio_bitrate])
        else:
            cmd.append("-an")

        # Duração exata, otimizações e progresso legível por máquina
        cmd.extend(["-t", f"{timeline.duration_seconds:.6f}"])
        cmd.extend(["-movflags", "+faststart"])
        cmd.extend(["-progress", "pipe:1", "-nostats"])

        # Arquivo de saída
        cmd.append(str(out_path))

        self.logger.debug("Comando FFmpeg: %s", " ".join(map(str, cmd)))
        return cmd
