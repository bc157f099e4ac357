"""Tool-execution backends and the registry that routes calls to them.

Backends are MCP servers spoken to over streamable HTTP (JSON-RPC 2.0).
Tools of the default backend are exposed under their own names; tools of
the other backends are qualified as "<backend>.<tool>" and routed by that
prefix.
"""

import json
import sys
from typing import Any, Protocol

import httpx

from wfp.config import get_config
from wfp.errors import ToolExecutionError

MCP_PROTOCOL_VERSION = "2025-03-26"
CLIENT_INFO = {"name": "workflow-planner-client", "version": "1.0.0"}


class ToolBackend(Protocol):
    name: str

    async def list_tools(self) -> list[dict]: ...

    async def call_tool(self, name: str, arguments: dict) -> Any: ...


def _decode_rpc_body(response: httpx.Response) -> dict:
    """Return the JSON-RPC response from a JSON or SSE-framed body."""
    content_type = response.headers.get("content-type", "")
    if not content_type.startswith("text/event-stream"):
        return response.json()

    message = {}
    for line in response.text.splitlines():
        if line.startswith("data:"):
            payload = json.loads(line[len("data:"):].strip())
            if "id" in payload:
                message = payload
    return message


class McpHttpBackend:
    """Minimal MCP client: initialize once, then tools/list and tools/call."""

    def __init__(
        self,
        name: str,
        url: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.name = name
        self.url = url
        self.timeout = timeout
        self._transport = transport
        self._session_id: str | None = None
        self._initialized = False
        self._next_id = 0

    async def _rpc(self, client: httpx.AsyncClient, method: str, params: dict | None = None,
                   notify: bool = False) -> dict:
        payload: dict = {"jsonrpc": "2.0", "method": method}
        if params is not None:
            payload["params"] = params
        if not notify:
            self._next_id += 1
            payload["id"] = self._next_id

        headers = {"Accept": "application/json, text/event-stream"}
        if self._session_id:
            headers["Mcp-Session-Id"] = self._session_id

        response = await client.post(self.url, json=payload, headers=headers)
        response.raise_for_status()
        session_id = response.headers.get("mcp-session-id")
        if session_id:
            self._session_id = session_id
        if notify:
            return {}

        body = _decode_rpc_body(response)
        if body.get("error"):
            raise ToolExecutionError(body["error"].get("message", "MCP error"))
        return body.get("result", {})

    async def _ensure_session(self, client: httpx.AsyncClient) -> None:
        if self._initialized:
            return
        await self._rpc(client, "initialize", {
            "protocolVersion": MCP_PROTOCOL_VERSION,
            "capabilities": {},
            "clientInfo": CLIENT_INFO,
        })
        await self._rpc(client, "notifications/initialized", notify=True)
        self._initialized = True

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def list_tools(self) -> list[dict]:
        async with self._client() as client:
            await self._ensure_session(client)
            result = await self._rpc(client, "tools/list")
        return result.get("tools", [])

    async def call_tool(self, name: str, arguments: dict) -> Any:
        async with self._client() as client:
            await self._ensure_session(client)
            result = await self._rpc(client, "tools/call", {"name": name, "arguments": arguments})
        if result.get("isError"):
            texts = [c.get("text", "") for c in result.get("content", []) if isinstance(c, dict)]
            raise ToolExecutionError(" ".join(t for t in texts if t) or f"{name} failed")
        return result


class ToolRegistry:
    """Route dot-qualified tool names to one of several backends."""

    def __init__(self, backends: list[ToolBackend], default: str | None = None):
        if not backends:
            raise ValueError("ToolRegistry needs at least one backend.")
        self.backends = {backend.name: backend for backend in backends}
        self.default = default or backends[0].name
        self._schemas: list[dict] | None = None

    def qualify(self, backend_name: str, tool_name: str) -> str:
        if backend_name == self.default:
            return tool_name
        return f"{backend_name}.{tool_name}"

    def route(self, qualified_name: str) -> tuple[ToolBackend, str]:
        """Return (backend, tool name on that backend) for a qualified name."""
        if "." in qualified_name:
            prefix, tool_name = qualified_name.split(".", 1)
            if prefix in self.backends:
                return self.backends[prefix], tool_name
        return self.backends[self.default], qualified_name

    async def tool_schemas(self) -> list[dict]:
        """Function-calling schemas for every reachable backend (cached).

        A backend that fails to list its tools is skipped as long as at
        least one other backend answers.
        """
        if self._schemas is not None:
            return self._schemas

        schemas = []
        failures = []
        for backend in self.backends.values():
            try:
                tools = await backend.list_tools()
            except Exception as exc:
                print(f"[WFP] Failed to list tools from {backend.name}: {exc!r}", file=sys.stderr)
                failures.append(exc)
                continue
            for tool in tools:
                schemas.append({
                    "type": "function",
                    "function": {
                        "name": self.qualify(backend.name, tool["name"]),
                        "description": tool.get("description", ""),
                        "parameters": tool.get("inputSchema")
                        or {"type": "object", "properties": {}, "required": []},
                    },
                })
            print(f"[WFP] Loaded {len(tools)} tool(s) from {backend.name}", file=sys.stderr)

        if not schemas and failures:
            raise ToolExecutionError("No tools available from any tool server")

        self._schemas = schemas
        return schemas

    async def call(self, qualified_name: str, arguments: dict) -> Any:
        backend, tool_name = self.route(qualified_name)
        return await backend.call_tool(tool_name, arguments)


def build_registry(servers: list[dict] | None = None) -> ToolRegistry | None:
    """Create the registry for the configured MCP servers, or None if there are none."""
    if servers is None:
        servers = get_config().get("tool_servers", [])
    if not servers:
        return None
    backends = [McpHttpBackend(s["name"], s["url"]) for s in servers]
    default = next((s["name"] for s in servers if s.get("default")), None)
    return ToolRegistry(backends, default=default)
