# -*- coding: utf-8 -*-
"""
Execução assíncrona de processos externos (ffmpeg/ffprobe)
"""

import asyncio
from typing import Awaitable, Callable, Sequence, Tuple

ProcessFactory = Callable[..., Awaitable[asyncio.subprocess.Process]]


async def default_process_factory(*args: str, **kwargs) -> asyncio.subprocess.Process:
    """Cria o subprocesso com asyncio.create_subprocess_exec"""
    return await asyncio.create_subprocess_exec(*args, **kwargs)


async def run_process(
    cmd: Sequence[str], process_factory: ProcessFactory = default_process_factory
) -> Tuple[int, bytes, bytes]:
    """Executa um comando até o fim e retorna (código, stdout, stderr)"""
    process = await process_factory(
        *cmd,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    stdout, stderr = await process.communicate()
    return process.returncode, stdout, stderr
