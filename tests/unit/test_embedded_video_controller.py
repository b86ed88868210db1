# -*- coding: utf-8 -*-
"""
Testes unitários do EmbeddedVideoController
"""

import asyncio

import pytest

from compositor.application.services.embedded_video_controller import (
    EmbeddedVideoController,
    ExtractionState,
)
from compositor.domain.errors import ExtractionError
from compositor.domain.models.frames import ExtractedFrame, VideoMetadata
from compositor.domain.models.timeline import SourceKind
from compositor.infra.frame_cache import FrameCache


class FakeProbe:
    def __init__(self, metadata=None, error=None):
        self.metadata = metadata or VideoMetadata(
            width=1280, height=720, fps=30.0, duration=10.0, frame_count=300, has_audio=True
        )
        self.error = error
        self.calls = []

    async def probe(self, path):
        self.calls.append(path)
        if self.error:
            raise self.error
        return self.metadata


class FakeExtraction:
    def __init__(self, error=None):
        self.error = error
        self.frame_calls = []
        self.range_calls = []

    async def extract_frame(self, path, frame_number, source_fps, width, height, fit):
        self.frame_calls.append(frame_number)
        if self.error:
            raise self.error
        return ExtractedFrame(frame_number, bytes(width * height * 4), width, height)

    async def extract_frame_range(self, path, start, end, source_fps, width, height, fit):
        self.range_calls.append((start, end))
        return [
            ExtractedFrame(n, bytes(width * height * 4), width, height)
            for n in range(start, end + 1)
        ]


class GatedExtraction(FakeExtraction):
    """Extrações ficam suspensas até `release` ser sinalizado"""

    def __init__(self):
        super().__init__()
        self.release = asyncio.Event()

    async def extract_frame(self, *args):
        await self.release.wait()
        return await super().extract_frame(*args)

    async def extract_frame_range(self, *args):
        await self.release.wait()
        return await super().extract_frame_range(*args)


class PassthroughResolver:
    def resolve(self, source):
        return source.uri


def make_controller(settings, probe=None, extraction=None, cache=None, **kwargs):
    values = dict(
        video_source="/videos/clip.mp4",
        start_frame=100,
        width=2,
        height=2,
    )
    values.update(kwargs)
    return EmbeddedVideoController(
        cache=cache or FrameCache(max_frames=1000, max_memory_bytes=10**7),
        probe_service=probe or FakeProbe(),
        extraction_service=extraction or FakeExtraction(),
        resolver=PassthroughResolver(),
        settings=settings,
        **values,
    )


@pytest.fixture
def quiet_settings(settings):
    """Sem pré-carregamento inicial"""
    return settings.model_copy(update={"initial_preload_frames": 0})


async def settle(controller):
    await asyncio.sleep(0.01)
    await controller.wait_for_preloads()


class TestInitialization:
    """Testes da máquina de estados"""

    @pytest.mark.asyncio
    async def test_initialize_notifies_listeners(self, quiet_settings):
        """Inicialização passa por loading até ready"""
        controller = make_controller(quiet_settings, trim_start_seconds=1.0)
        states = []
        controller.add_listener(states.append)

        await controller.initialize(30)

        assert states == [ExtractionState.LOADING, ExtractionState.READY]
        assert controller.is_ready
        assert controller.calculated_duration_in_frames == 270
        assert controller.end_frame == 370

    @pytest.mark.asyncio
    async def test_explicit_duration_wins(self, quiet_settings):
        controller = make_controller(quiet_settings, duration_in_frames=45)
        await controller.initialize(30)
        assert controller.calculated_duration_in_frames == 45

    @pytest.mark.asyncio
    async def test_duration_clamped_to_zero(self, quiet_settings):
        controller = make_controller(quiet_settings, trim_start_seconds=20.0)
        await controller.initialize(30)
        assert controller.calculated_duration_in_frames == 0

    @pytest.mark.asyncio
    async def test_probe_failure_moves_to_error(self, quiet_settings):
        """Falha na sondagem leva ao estado de erro"""
        controller = make_controller(
            quiet_settings, probe=FakeProbe(error=ExtractionError("sem vídeo"))
        )

        with pytest.raises(ExtractionError):
            await controller.initialize(30)

        assert controller.state is ExtractionState.ERROR
        assert await controller.get_frame(120) is None

    @pytest.mark.asyncio
    async def test_initialize_twice_probes_once(self, quiet_settings):
        probe = FakeProbe()
        controller = make_controller(quiet_settings, probe=probe)
        await controller.initialize(30)
        await controller.initialize(30)
        assert len(probe.calls) == 1

    @pytest.mark.asyncio
    async def test_removed_listener_is_not_called(self, quiet_settings):
        controller = make_controller(quiet_settings)
        states = []
        controller.add_listener(states.append)
        controller.remove_listener(states.append)
        await controller.initialize(30)
        assert states == []


class TestTimeMapping:
    """Testes do mapeamento entre composição e fonte"""

    @pytest.mark.asyncio
    async def test_before_start_returns_sentinel(self, quiet_settings):
        """Antes do início o frame de origem é -1"""
        controller = make_controller(quiet_settings)
        await controller.initialize(30)

        assert controller.composition_frame_to_source_frame(99) == -1
        assert controller.composition_frame_to_source_frame(100) == 0
        assert controller.composition_frame_to_source_frame(130) == 30

    @pytest.mark.asyncio
    async def test_mapping_uses_trim_and_source_fps(self, quiet_settings):
        probe = FakeProbe(VideoMetadata(640, 360, 60.0, 10.0, 600, False))
        controller = make_controller(quiet_settings, probe=probe, trim_start_seconds=2.0)
        await controller.initialize(30)

        assert controller.composition_frame_to_source_frame(100) == 120
        assert controller.composition_frame_to_source_frame(115) == 150
        assert controller.composition_frame_to_source_timestamp(115) == 2.5

    @pytest.mark.asyncio
    async def test_mapping_is_not_clamped(self, quiet_settings):
        controller = make_controller(quiet_settings, duration_in_frames=600)
        await controller.initialize(30)
        assert controller.composition_frame_to_source_frame(600) == 500

    @pytest.mark.asyncio
    async def test_is_frame_in_range(self, quiet_settings):
        controller = make_controller(quiet_settings, duration_in_frames=50)
        await controller.initialize(30)

        assert not controller.is_frame_in_range(99)
        assert controller.is_frame_in_range(100)
        assert controller.is_frame_in_range(149)
        assert not controller.is_frame_in_range(150)


class TestFrames:
    """Testes de obtenção de frames"""

    @pytest.mark.asyncio
    async def test_get_frame_out_of_range(self, quiet_settings):
        controller = make_controller(quiet_settings, duration_in_frames=50)
        await controller.initialize(30)
        assert await controller.get_frame(99) is None
        assert await controller.get_frame(150) is None

    @pytest.mark.asyncio
    async def test_get_frame_before_initialize(self, quiet_settings):
        controller = make_controller(quiet_settings)
        assert await controller.get_frame(120) is None

    @pytest.mark.asyncio
    async def test_get_frame_clamps_source_frame(self, quiet_settings):
        """O frame de origem é limitado ao último frame do vídeo"""
        extraction = FakeExtraction()
        controller = make_controller(
            quiet_settings, extraction=extraction, duration_in_frames=600
        )
        await controller.initialize(30)

        frame = await controller.get_frame(550)

        assert frame.frame_number == 299
        assert 299 in extraction.frame_calls

    @pytest.mark.asyncio
    async def test_get_frame_uses_cache(self, quiet_settings):
        extraction = FakeExtraction()
        cache = FrameCache(max_frames=1000, max_memory_bytes=10**7)
        controller = make_controller(quiet_settings, extraction=extraction, cache=cache)
        await controller.initialize(30)

        first = await controller.get_frame(110)
        await settle(controller)
        second = await controller.get_frame(110)

        assert first.frame_number == second.frame_number == 10
        assert cache.has("/videos/clip.mp4", 10)
        assert extraction.frame_calls.count(10) <= 1

    @pytest.mark.asyncio
    async def test_get_frame_propagates_extraction_error(self, quiet_settings):
        controller = make_controller(
            quiet_settings, extraction=FakeExtraction(error=ExtractionError("falhou"))
        )
        await controller.initialize(30)

        with pytest.raises(ExtractionError):
            await controller.get_frame(100)

    @pytest.mark.asyncio
    async def test_display_size_change_clears_cache(self, quiet_settings):
        cache = FrameCache(max_frames=1000, max_memory_bytes=10**7)
        controller = make_controller(quiet_settings, cache=cache)
        await controller.initialize(30)
        await controller.get_frame(100)

        frame = await controller.get_frame(100, width=4, height=4)

        assert (frame.width, frame.height) == (4, 4)

    @pytest.mark.asyncio
    async def test_resize_during_extraction_returns_requested_size(self, quiet_settings):
        """Pedido com novo tamanho não reaproveita a extração pendente do tamanho antigo"""
        extraction = GatedExtraction()
        cache = FrameCache(max_frames=1000, max_memory_bytes=10**7)
        no_preload = quiet_settings.model_copy(update={"preload_debounce": 10.0})
        controller = make_controller(no_preload, extraction=extraction, cache=cache)
        await controller.initialize(30)

        first = asyncio.ensure_future(controller.get_frame(105, 4, 4))
        await asyncio.sleep(0)
        second = asyncio.ensure_future(controller.get_frame(105, 8, 8))
        await asyncio.sleep(0)
        extraction.release.set()
        small, large = await asyncio.gather(first, second)

        assert (small.width, small.height) == (4, 4)
        assert (large.width, large.height) == (8, 8)
        assert cache.get("/videos/clip.mp4", 5).width == 8
        assert extraction.frame_calls == [5, 5]
        controller.dispose()


class TestPreloading:
    """Testes dos três gatilhos de pré-carregamento"""

    @pytest.mark.asyncio
    async def test_initial_preload(self, settings):
        """Após ficar pronto, os primeiros frames são pré-carregados"""
        extraction = FakeExtraction()
        controller = make_controller(settings, extraction=extraction, trim_start_seconds=1.0)
        await controller.initialize(30)
        await settle(controller)

        assert extraction.range_calls == [(30, 39)]

    @pytest.mark.asyncio
    async def test_steady_state_preload_respects_half_window(self, quiet_settings):
        """Só pré-carrega de novo após andar metade da janela"""
        extraction = FakeExtraction()
        controller = make_controller(quiet_settings, extraction=extraction)
        await controller.initialize(30)

        await controller.get_frame(100)
        await settle(controller)
        # o frame 0 já veio sob demanda
        assert extraction.range_calls == [(1, 30)]

        await controller.get_frame(105)
        await settle(controller)
        assert len(extraction.range_calls) == 1

        await controller.get_frame(120)
        await settle(controller)
        # frames 20..30 já estavam em cache
        assert extraction.range_calls[1] == (31, 50)

    @pytest.mark.asyncio
    async def test_preload_clamped_to_clip_window(self, quiet_settings):
        extraction = FakeExtraction()
        controller = make_controller(
            quiet_settings, extraction=extraction, duration_in_frames=10
        )
        await controller.initialize(30)

        await controller.get_frame(100)
        await settle(controller)

        assert extraction.range_calls == [(1, 9)]

    @pytest.mark.asyncio
    async def test_approaching_start(self, quiet_settings):
        """Perto do início do clipe, a janela inicial é pré-carregada"""
        extraction = FakeExtraction()
        controller = make_controller(quiet_settings, extraction=extraction)
        await controller.initialize(30)

        controller.on_approaching_start(50)
        await settle(controller)
        assert extraction.range_calls == []

        controller.on_approaching_start(80)
        await settle(controller)
        assert extraction.range_calls == [(0, 29)]

        controller.on_approaching_start(100)
        await settle(controller)
        assert len(extraction.range_calls) == 1

    @pytest.mark.asyncio
    async def test_dispose_cancels_scheduled_preloads(self, settings):
        """Dispose cancela o agendamento e limpa o cache do vídeo"""
        extraction = FakeExtraction()
        cache = FrameCache(max_frames=1000, max_memory_bytes=10**7)
        slow = settings.model_copy(
            update={"initial_preload_delay": 10.0, "preload_debounce": 10.0}
        )
        controller = make_controller(slow, extraction=extraction, cache=cache)
        await controller.initialize(30)
        await controller.get_frame(100)
        await asyncio.sleep(0)

        controller.dispose()
        await settle(controller)

        assert extraction.range_calls == []
        assert cache.frame_count == 0

    @pytest.mark.asyncio
    async def test_resize_during_preload_discards_old_frames(self, quiet_settings):
        """Frames pré-carregados no tamanho antigo não ficam no cache"""
        extraction = GatedExtraction()
        cache = FrameCache(max_frames=1000, max_memory_bytes=10**7)
        controller = make_controller(quiet_settings, extraction=extraction, cache=cache)
        await controller.initialize(30)

        controller.on_approaching_start(80)
        await asyncio.sleep(0)
        controller.set_display_size(4, 4)
        extraction.release.set()
        await controller.wait_for_preloads()

        assert extraction.range_calls == [(0, 29)]
        assert cache.frame_count == 0
        frame = await controller.get_frame(100)
        assert (frame.width, frame.height) == (4, 4)
        controller.dispose()


class TestExport:
    """Testes de exportação para o encoder"""

    @pytest.mark.asyncio
    async def test_to_audio_config(self, quiet_settings):
        """A trilha de áudio usa início, duração e trim em frames"""
        controller = make_controller(
            quiet_settings, trim_start_seconds=1.0, audio_volume=0.7, audio_fade_in_frames=5
        )
        await controller.initialize(30)

        track = controller.to_audio_config()

        assert track.source.kind is SourceKind.FILE
        assert track.source.uri == "/videos/clip.mp4"
        assert track.start_frame == 100
        assert track.duration_in_frames == 270
        assert track.trim_start_frame == 30
        assert track.volume == 0.7
        assert track.fade_in_frames == 5

    @pytest.mark.asyncio
    async def test_no_audio_config_without_audio(self, quiet_settings):
        silent = FakeProbe(VideoMetadata(640, 360, 30.0, 10.0, 300, False))
        controller = make_controller(quiet_settings, probe=silent)
        await controller.initialize(30)
        assert controller.to_audio_config() is None

        muted = make_controller(quiet_settings, include_audio=False)
        await muted.initialize(30)
        assert muted.to_audio_config() is None

    @pytest.mark.asyncio
    async def test_to_embedded_video_config(self, quiet_settings):
        silent = FakeProbe(VideoMetadata(640, 360, 30.0, 10.0, 300, False))
        controller = make_controller(quiet_settings, probe=silent, duration_in_frames=60)
        await controller.initialize(30)

        config = controller.to_embedded_video_config(
            "clip", width=320, height=180, position_x=5, position_y=6
        )

        assert config.id == "clip"
        assert config.duration_in_frames == 60
        assert (config.width, config.height) == (320, 180)
        assert (config.position_x, config.position_y) == (5, 6)
        assert config.include_audio is False
