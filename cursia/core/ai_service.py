"""Thin wrapper around the Anthropic Messages API used by the worker."""

import logging
from typing import Any, Dict, Optional

import anthropic

from cursia.core.config import settings
from cursia.core.errors import GenerationError
from cursia.utils.json_utils import safe_json_loads

logger = logging.getLogger(__name__)

_JSON_REPAIR = (
    "\n\n[FORMATO DE SALIDA]\n"
    "- Tu respuesta anterior no era un JSON válido.\n"
    "- Responde ÚNICAMENTE con un objeto JSON válido.\n"
    "- Sin backticks, sin comentarios, sin texto fuera del JSON."
)

_client: Optional[anthropic.Anthropic] = None


def _get_client() -> anthropic.Anthropic:
    global _client
    if _client is None:
        if not settings.ANTHROPIC_API_KEY:
            raise GenerationError("ANTHROPIC_API_KEY no está configurada")
        _client = anthropic.Anthropic(api_key=settings.ANTHROPIC_API_KEY)
    return _client


def generate_text(system_prompt: str, user_prompt: str, *, max_tokens: Optional[int] = None) -> str:
    client = _get_client()
    try:
        logger.info("Llamada a Anthropic con el modelo %s", settings.ANTHROPIC_MODEL)
        response = client.messages.create(
            model=settings.ANTHROPIC_MODEL,
            max_tokens=max_tokens or settings.ANTHROPIC_MAX_TOKENS,
            system=system_prompt,
            messages=[{"role": "user", "content": user_prompt}],
        )
    except anthropic.APIError as exc:
        logger.error("Error de la API de Anthropic: %s", exc)
        raise GenerationError(f"Anthropic API error: {exc}") from exc

    return "".join(block.text for block in response.content if getattr(block, "text", None))


def generate_json(system_prompt: str, user_prompt: str, *, max_retries: int = 2) -> Dict[str, Any]:
    """Ask the model for a JSON object, re-prompting when the output does not parse."""

    last_exc: Optional[Exception] = None
    for attempt in range(max_retries + 1):
        system = system_prompt if attempt == 0 else system_prompt + _JSON_REPAIR
        raw = generate_text(system, user_prompt)
        try:
            data = safe_json_loads(raw)
        except ValueError as exc:
            last_exc = exc
            logger.warning("Respuesta JSON inválida (intento %s/%s): %s", attempt + 1, max_retries + 1, exc)
            continue

        if isinstance(data, dict):
            return data
        last_exc = ValueError("La respuesta JSON no es un objeto")

    raise GenerationError(f"No se obtuvo un JSON válido: {last_exc}")
