# -*- coding: utf-8 -*-
"""
Fixtures compartilhadas dos testes do compositor
"""

import asyncio
import sys
from typing import List

import pytest

from compositor.domain.models.frames import ExtractedFrame
from compositor.infra.frame_cache import FrameCacheManager
from compositor.infra.settings import CompositorSettings


class FakeProcessFactory:
    """Substitui o ffmpeg/ffprobe por um script Python com o comportamento desejado.

    O comando recebido é guardado em `calls` para inspeção.
    """

    def __init__(self, script: str):
        self.script = script
        self.calls: List[List[str]] = []

    async def __call__(self, *args, **kwargs):
        self.calls.append(list(args))
        return await asyncio.create_subprocess_exec(
            sys.executable, "-c", self.script, **kwargs
        )


def make_frame(frame_number: int, width: int = 2, height: int = 2) -> ExtractedFrame:
    """Frame RGBA preenchido com o número do frame"""
    value = frame_number % 256
    return ExtractedFrame(frame_number, bytes([value]) * (width * height * 4), width, height)


@pytest.fixture
def settings():
    """Configurações sem arquivo de log e sem atrasos de pré-carregamento"""
    return CompositorSettings(
        ffmpeg_path="ffmpeg",
        ffprobe_path="ffprobe",
        log_file=None,
        initial_preload_delay=0.0,
        preload_debounce=0.0,
    )


@pytest.fixture(autouse=True)
def reset_frame_cache_manager():
    """Isola o cache compartilhado entre testes"""
    FrameCacheManager.dispose()
    yield
    FrameCacheManager.dispose()


@pytest.fixture
def fake_process():
    """Fábrica de processos falsos: fake_process(script)"""
    return FakeProcessFactory


@pytest.fixture
def frame_factory():
    return make_frame
