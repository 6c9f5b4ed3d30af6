from __future__ import annotations
import json
from typing import Any, Optional


def _strip_code_fences(s: str) -> str:
    """Quita las fences ```...``` que el modelo suele añadir (```json ... ```)."""
    s = s.strip()
    if s.startswith("```"):
        nl = s.find("\n")
        inner = s[nl + 1 :] if nl != -1 else s
        end = inner.rfind("```")
        if end != -1:
            inner = inner[:end]
        return inner.strip()
    return s


def _extract_balanced_json(s: str) -> Optional[str]:
    """
    Extrae el primer objeto/array JSON balanceado, ignorando llaves dentro de cadenas.
    Devuelve None si no encuentra ninguno.
    """
    start = None
    opener = None
    for i, ch in enumerate(s):
        if ch in "{[":
            start = i
            opener = ch
            break
    if start is None:
        return None

    closer = "}" if opener == "{" else "]"
    depth = 0
    in_string = False
    escape = False

    for i in range(start, len(s)):
        c = s[i]
        if escape:
            escape = False
            continue
        if c == "\\" and in_string:
            escape = True
            continue
        if c == '"':
            in_string = not in_string
            continue
        if in_string:
            continue

        if c == opener:
            depth += 1
        elif c == closer:
            depth -= 1
            if depth == 0:
                return s[start : i + 1]
    return None


def _strip_trailing_commas(s: str) -> str:
    """Elimina comas colgantes antes de ``}`` o ``]`` fuera de las cadenas."""
    out = []
    in_string = False
    escape = False
    for i, c in enumerate(s):
        if escape:
            escape = False
        elif c == "\\" and in_string:
            escape = True
        elif c == '"':
            in_string = not in_string
        elif c == "," and not in_string:
            rest = s[i + 1 :].lstrip()
            if rest[:1] in ("}", "]"):
                continue
        out.append(c)
    return "".join(out)


def safe_json_loads(raw: str) -> Any:
    """
    Intenta json.loads; si falla:
      1) quita las fences ```
      2) extrae el primer bloque JSON balanceado
      3) elimina comas colgantes
    Relanza la excepción original si todo falla.
    """
    if raw is None:
        raise ValueError("safe_json_loads: input is None")

    text = _strip_code_fences(str(raw))
    try:
        return json.loads(text)
    except json.JSONDecodeError as first_exc:
        candidate = _extract_balanced_json(text)
        if not candidate:
            raise first_exc
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            return json.loads(_strip_trailing_commas(candidate))
