"""
main.py — CLI de desenvolvimento do compositor (sondagem e dry-run do encoder)
"""

import argparse
import asyncio
import json
import logging
from pathlib import Path

from compositor.application.services.video_encoder_service import VideoEncoderService
from compositor.domain.errors import CompositorError
from compositor.domain.models.timeline import RenderConfig
from compositor.infra.logging import setup_logging
from compositor.infra.media_io import VideoProbeService
from compositor.infra.settings import get_settings


def cmd_probe(args) -> int:
    """Imprime os metadados de um vídeo"""
    service = VideoProbeService(get_settings())
    metadata = asyncio.run(service.probe(args.video))
    print(f"Resolução: {metadata.width}x{metadata.height}")
    print(f"FPS: {metadata.fps:.3f}")
    print(f"Duração: {metadata.duration:.3f}s ({metadata.frame_count} frames)")
    print(f"Codec de vídeo: {metadata.video_codec}")
    print(f"Áudio: {metadata.audio_codec if metadata.has_audio else 'nenhum'}")
    return 0


def cmd_graph(args) -> int:
    """Compila a configuração e imprime filtergraph e comando, sem executar"""
    with open(args.config, "r", encoding="utf-8") as f:
        config = RenderConfig.from_dict(json.load(f))

    service = VideoEncoderService(get_settings())
    graph, cmd = service.prepare(config, Path(args.saida))
    print("Filtergraph:")
    print(graph.to_string())
    print()
    print("Comando:")
    print(" ".join(cmd))
    return 0


def main():
    parser = argparse.ArgumentParser(
        description="Ferramentas de desenvolvimento do compositor de vídeo."
    )
    parser.add_argument("--verbose", action="store_true", help="Log em nível DEBUG")
    subparsers = parser.add_subparsers(dest="comando", required=True)

    probe_parser = subparsers.add_parser("probe", help="Mostra metadados de um vídeo")
    probe_parser.add_argument("video", help="Caminho do vídeo")
    probe_parser.set_defaults(func=cmd_probe)

    graph_parser = subparsers.add_parser(
        "graph", help="Mostra o filtergraph e o comando FFmpeg de uma renderização"
    )
    graph_parser.add_argument("config", help="Arquivo JSON com o RenderConfig")
    graph_parser.add_argument("saida", help="Arquivo de saída do vídeo")
    graph_parser.set_defaults(func=cmd_graph)

    args = parser.parse_args()

    settings = get_settings()
    level = logging.DEBUG if args.verbose else getattr(logging, settings.log_level.upper())
    setup_logging(settings.log_file, level)

    try:
        return args.func(args)
    except CompositorError as e:
        print(f"❌ {e}")
        return 1


if __name__ == "__main__":
    exit(main())
