# -*- coding: utf-8 -*-
"""
Hierarquia de erros do compositor
"""

from typing import Optional


class CompositorError(Exception):
    """Erro base do compositor, com mensagem legível e detalhe opcional"""

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}\n{self.details}"
        return self.message


class ConfigError(CompositorError):
    """Configuração de renderização inválida, detectada antes de iniciar processos"""


class ExtractionError(CompositorError):
    """Falha ao sondar ou extrair frames de um vídeo"""


class EncodingError(CompositorError):
    """O encoder terminou com código diferente de zero.

    `stderr_output` traz o stderr do FFmpeg literalmente, limitado às últimas
    `stderr_tail_lines` linhas (1000 por padrão); a causa do erro costuma estar
    no final.
    """

    def __init__(self, exit_code: Optional[int], stderr_output: str = ""):
        message = f"FFmpeg falhou com código {exit_code}: {stderr_output}"
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr_output = stderr_output


class CancellationError(CompositorError):
    """A renderização foi cancelada pelo chamador"""

    def __init__(self, message: str = "Renderização cancelada"):
        super().__init__(message)
