# -*- coding: utf-8 -*-
"""
Sessão de encoding: processo FFmpeg alimentado pelo stdin, com progresso
"""

import asyncio
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Optional

from ..domain.errors import CancellationError, EncodingError
from ..infra.logging import get_logger


@dataclass(frozen=True)
class Progress:
    """Representa o progresso de renderização"""

    out_time_ms: int
    speed: Optional[float]
    percent: Optional[float]
    frame: Optional[int] = None
    fps: Optional[float] = None
    bitrate: Optional[str] = None
    done: bool = False


class ProgressParser:
    """Parseia os blocos chave=valor emitidos por `-progress pipe:1`.

    Cada bloco termina com uma linha `progress=continue` ou `progress=end`.
    """

    def __init__(self, total_frames: Optional[int] = None):
        self.total_frames = total_frames
        self._block: Dict[str, str] = {}

    def feed(self, line: str) -> Optional[Progress]:
        """Consome uma linha; retorna um Progress quando o bloco fecha"""
        line = line.strip()
        if not line or "=" not in line:
            return None

        key, value = line.split("=", 1)
        key, value = key.strip(), value.strip()
        if key != "progress":
            self._block[key] = value
            return None

        block, self._block = self._block, {}
        return self._make_progress(block, done=value == "end")

    def _make_progress(self, data: Dict[str, str], done: bool) -> Progress:
        # out_time_ms do FFmpeg está, na prática, em microssegundos
        raw_time = data.get("out_time_us") or data.get("out_time_ms") or "0"
        try:
            out_time_ms = max(int(raw_time), 0) // 1000
        except ValueError:
            out_time_ms = 0

        frame = _parse_int(data.get("frame"))
        percent = None
        if done:
            percent = 100.0
        elif frame is not None and self.total_frames:
            percent = min(frame / self.total_frames * 100, 100.0)

        speed_text = data.get("speed", "").rstrip("x")
        return Progress(
            out_time_ms=out_time_ms,
            speed=_parse_float(speed_text),
            percent=percent,
            frame=frame,
            fps=_parse_float(data.get("fps")),
            bitrate=data.get("bitrate"),
            done=done,
        )


def _parse_int(value: Optional[str]) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _parse_float(value: Optional[str]) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _consume_exception(future: asyncio.Future):
    # Evita o aviso "exception was never retrieved" quando ninguém aguarda completed
    if not future.cancelled():
        future.exception()


class EncodingSession:
    """Processo FFmpeg ativo que recebe frames RGBA em ordem de composição"""

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        output_path: Path,
        frame_size: int,
        total_frames: int,
        on_progress: Optional[Callable[[Progress], None]] = None,
        shutdown_timeout: float = 5.0,
        stderr_tail_lines: int = 1000,
    ):
        self.logger = get_logger("EncodingSession")
        self.process = process
        self.output_path = Path(output_path)
        self.frame_size = frame_size
        self.total_frames = total_frames
        self.on_progress = on_progress
        self.shutdown_timeout = shutdown_timeout
        self.frames_written = 0
        self.last_progress: Optional[Progress] = None

        self._stderr_lines: deque = deque(maxlen=stderr_tail_lines)
        self._cancelled = False
        self._parser = ProgressParser(total_frames)
        self._stdout_task = asyncio.ensure_future(self._read_progress())
        self._stderr_task = asyncio.ensure_future(self._read_stderr())
        self._completed = asyncio.ensure_future(self._wait_for_exit())
        self._completed.add_done_callback(_consume_exception)

    @property
    def completed(self) -> "asyncio.Future[Path]":
        """Resolve com o caminho de saída, ou falha com EncodingError/CancellationError"""
        return self._completed

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    @property
    def stderr_text(self) -> str:
        return "".join(self._stderr_lines)

    async def write_frame(self, data: bytes):
        """Escreve um frame no stdin respeitando o backpressure do pipe"""
        if self._cancelled:
            raise CancellationError()
        if len(data) != self.frame_size:
            raise ValueError(
                f"Frame com {len(data)} bytes, esperado {self.frame_size}"
            )
        if self.frames_written >= self.total_frames:
            raise ValueError(f"Todos os {self.total_frames} frames já foram escritos")

        stdin = self.process.stdin
        try:
            stdin.write(data)
            await stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            self.logger.error("Pipe do FFmpeg fechado após %d frames", self.frames_written)
            await self._completed
            # Processo terminou com sucesso sem consumir o frame
            raise EncodingError(self.process.returncode, self.stderr_text) from e
        self.frames_written += 1

    async def finish(self) -> Path:
        """Fecha o stdin e aguarda o FFmpeg terminar"""
        if self.frames_written < self.total_frames and not self._cancelled:
            self.logger.warning(
                "Finalizando com %d de %d frames", self.frames_written, self.total_frames
            )
        await self._close_stdin()
        return await self._completed

    async def cancel(self):
        """Termina o processo; chamadas repetidas não têm efeito"""
        if self._cancelled:
            return
        self._cancelled = True
        if self.process.returncode is not None:
            return

        self.logger.info("Cancelando encoding de %s", self.output_path)
        self.process.terminate()
        try:
            await asyncio.wait_for(self.process.wait(), self.shutdown_timeout)
        except asyncio.TimeoutError:
            self.logger.error("Processo não terminou graciosamente, forçando...")
            self.process.kill()
            await self.process.wait()
        await self._close_stdin()

    async def _close_stdin(self):
        stdin = self.process.stdin
        if stdin is None or stdin.is_closing():
            return
        stdin.close()
        try:
            await stdin.wait_closed()
        except (BrokenPipeError, ConnectionResetError):
            pass  # processo já saiu; o código de retorno diz o resto

    async def _read_progress(self):
        stream = self.process.stdout
        if stream is None:
            return
        while True:
            line = await stream.readline()
            if not line:
                break
            progress = self._parser.feed(line.decode("utf-8", errors="replace"))
            if progress is None:
                continue
            self.last_progress = progress
            if self.on_progress:
                self.on_progress(progress)

    async def _read_stderr(self):
        stream = self.process.stderr
        if stream is None:
            return
        while True:
            line = await stream.readline()
            if not line:
                break
            self._stderr_lines.append(line.decode("utf-8", errors="replace"))

    async def _wait_for_exit(self) -> Path:
        return_code = await self.process.wait()
        await asyncio.gather(self._stdout_task, self._stderr_task)

        if self._cancelled:
            raise CancellationError()
        if return_code != 0:
            self.logger.error(
                "Comando FFmpeg retornou código %d. Stderr: %s",
                return_code,
                self.stderr_text,
            )
            raise EncodingError(return_code, self.stderr_text)

        self.logger.info("Comando FFmpeg finalizado com sucesso: %s", self.output_path)
        return self.output_path
