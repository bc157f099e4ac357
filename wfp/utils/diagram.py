"""Mermaid rendering: the Kroki adapter and the DiagramValidator around it."""

import sys
from typing import Protocol

import httpx

from wfp.config import get_config
from wfp.errors import DiagramSyntaxError


class DiagramRenderer(Protocol):
    async def render(self, diagram: str) -> str:
        """Return the rendered SVG or raise DiagramSyntaxError."""
        ...


class KrokiRenderer:
    """Render Mermaid text to SVG through a Kroki-compatible HTTP service.

    Kroki answers 400 with a plain-text diagnostic when the diagram does not
    parse; that is the only status mapped to DiagramSyntaxError. Anything
    else is an engine failure and is left to the caller.
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        config = get_config()
        self.base_url = (base_url or config["diagram_renderer_url"]).rstrip("/")
        self.timeout = timeout if timeout is not None else config.get("renderer_timeout", 15)
        self._transport = transport

    async def render(self, diagram: str) -> str:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(
                f"{self.base_url}/mermaid/svg",
                content=diagram.encode("utf-8"),
                headers={"Content-Type": "text/plain"},
            )
        if response.status_code == 400:
            raise DiagramSyntaxError(response.text.strip() or "Diagram syntax error")
        response.raise_for_status()
        return response.text


class DiagramValidator:
    """Classify a render attempt as success or syntax failure.

    Callers always get {"success": True, "svg": ...} or
    {"success": False, "diagnostic": ...}, whatever the engine raised.
    """

    def __init__(self, renderer: DiagramRenderer):
        self.renderer = renderer

    async def render(self, diagram: str) -> dict:
        try:
            svg = await self.renderer.render(diagram)
        except DiagramSyntaxError as exc:
            return {"success": False, "diagnostic": str(exc) or "Diagram syntax error"}
        except Exception as exc:
            print(f"[WFP] Diagram engine error: {exc!r}", file=sys.stderr)
            return {
                "success": False,
                "diagnostic": f"Diagram rendering failed: {type(exc).__name__}: {exc}",
            }
        return {"success": True, "svg": svg}
