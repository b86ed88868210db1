# -*- coding: utf-8 -*-
"""
Testes unitários do CliBuilder
"""

from pathlib import Path

from compositor.domain.models.timeline import (
    AudioTrackConfig,
    EncodingConfig,
    MediaSource,
    RenderConfig,
    RenderQuality,
    TimelineConfig,
)
from compositor.rendering.cli_builder import CliBuilder
from compositor.rendering.graph_builder import GraphBuilder

TIMELINE = TimelineConfig(fps=30, duration_in_frames=90, width=640, height=360)


def make_command(settings, config):
    graph = GraphBuilder(composite_embedded_videos=True).build(config)
    return CliBuilder(settings).make_command(graph, Path("out/video.mp4"), config)


def value_after(cmd, flag):
    return cmd[cmd.index(flag) + 1]


def test_rawvideo_stdin_input(settings):
    """O input 0 é o stdin com frames RGBA"""
    cmd = make_command(settings, RenderConfig(timeline=TIMELINE))

    assert cmd[:2] == ["ffmpeg", "-y"]
    assert cmd[2:12] == [
        "-f",
        "rawvideo",
        "-pixel_format",
        "rgba",
        "-video_size",
        "640x360",
        "-framerate",
        "30",
        "-i",
        "-",
    ]
    assert cmd[-1] == str(Path("out/video.mp4"))


def test_default_quality_is_medium(settings):
    """Sem overrides usa CRF 23 e preset medium"""
    cmd = make_command(settings, RenderConfig(timeline=TIMELINE))

    assert value_after(cmd, "-c:v") == "libx264"
    assert value_after(cmd, "-crf") == "23"
    assert value_after(cmd, "-preset") == "medium"
    assert value_after(cmd, "-pix_fmt") == "yuv420p"


def test_overrides_win(settings):
    """Overrides têm precedência sobre o nível de qualidade"""
    config = RenderConfig(
        timeline=TIMELINE,
        encoding=EncodingConfig(
            quality=RenderQuality.HIGH, crf_override=28, preset_override="ultrafast"
        ),
    )
    cmd = make_command(settings, config)

    assert value_after(cmd, "-crf") == "28"
    assert value_after(cmd, "-preset") == "ultrafast"


def test_nvenc_uses_constqp(settings):
    config = RenderConfig(timeline=TIMELINE, encoding=EncodingConfig(vcodec="h264_nvenc"))
    cmd = make_command(settings, config)

    assert value_after(cmd, "-preset") == "p5"
    assert value_after(cmd, "-qp") == "23"
    assert "-crf" not in cmd


def test_without_audio_disables_audio(settings):
    """Sem áudio o comando usa -an e não mapeia áudio"""
    cmd = make_command(settings, RenderConfig(timeline=TIMELINE))

    assert "-an" in cmd
    assert "-c:a" not in cmd
    assert cmd.count("-map") == 1
    assert value_after(cmd, "-map") == "[v_out]"


def test_with_audio_maps_mix_and_aac(settings):
    """Com áudio mapeia o rótulo final e usa AAC 192k"""
    config = RenderConfig(
        timeline=TIMELINE,
        audio_tracks=[
            AudioTrackConfig(
                MediaSource.from_uri("/music.mp3"), 0, 90, loop=True
            )
        ],
    )
    cmd = make_command(settings, config)

    maps = [cmd[i + 1] for i, arg in enumerate(cmd) if arg == "-map"]
    assert maps == ["[v_out]", "[a_mix_out]"]
    assert value_after(cmd, "-c:a") == "aac"
    assert value_after(cmd, "-b:a") == "192k"
    assert "-an" not in cmd

    loop_index = cmd.index("-stream_loop")
    assert cmd[loop_index:loop_index + 4] == ["-stream_loop", "-1", "-i", "/music.mp3"]


def test_duration_and_progress_flags(settings):
    cmd = make_command(settings, RenderConfig(timeline=TIMELINE))

    assert value_after(cmd, "-t") == "3.000000"
    assert value_after(cmd, "-progress") == "pipe:1"
    assert "-nostats" in cmd
    assert value_after(cmd, "-filter_complex") == "[0:v]fps=30,format=yuv420p[v_out]"
