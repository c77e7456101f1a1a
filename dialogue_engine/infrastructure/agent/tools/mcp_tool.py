"""Remote MCP tools.

McpToolServerGateway reaches MCP servers over streamable HTTP with the MCP
client SDK and exposes each server tool as an McpRemoteTool.
Tool naming convention: mcp__{server_name}__{tool_name}
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx
from mcp import ClientSession
from mcp.client.streamable_http import streamable_http_client

from dialogue_engine.domain.exceptions import ToolExecutionError
from dialogue_engine.domain.model.agent import Agent
from dialogue_engine.domain.model.turn import TurnContext
from dialogue_engine.domain.ports.tool_gateway_port import ToolGatewayPort
from dialogue_engine.infrastructure.agent.tools.base import AgentTool

logger = logging.getLogger(__name__)


class McpRemoteTool(AgentTool):
    """Adapter that wraps one MCP server tool as an AgentTool."""

    MCP_PREFIX = "mcp"
    MCP_NAME_SEPARATOR = "__"

    def __init__(
        self,
        gateway: "McpToolServerGateway",
        server_name: str,
        tool_name: str,
        description: str = "",
        input_schema: Optional[Dict[str, Any]] = None,
        preset_params: Optional[Dict[str, str]] = None,
    ):
        clean_server = server_name.replace("-", "_")
        super().__init__(
            name=(
                f"{self.MCP_PREFIX}{self.MCP_NAME_SEPARATOR}"
                f"{clean_server}{self.MCP_NAME_SEPARATOR}{tool_name}"
            ),
            description=description or f"MCP tool {tool_name} from {server_name}",
        )
        self._gateway = gateway
        self.server_name = server_name
        self.original_tool_name = tool_name
        self._input_schema = input_schema or {}
        self._preset_params = preset_params or {}

    def get_parameters_schema(self) -> Dict[str, Any]:
        schema = dict(self._input_schema)
        schema.setdefault("type", "object")
        # preset parameters are filled in by the engine, not by the model
        schema["properties"] = {
            key: value
            for key, value in (schema.get("properties") or {}).items()
            if key not in self._preset_params
        }
        schema["required"] = [
            key for key in schema.get("required", []) if key not in self._preset_params
        ]
        return schema

    async def execute(self, turn: TurnContext, /, **kwargs: Any) -> str:
        arguments = {**kwargs, **self._preset_params}
        return await self._gateway.call_tool(
            self.server_name, self.original_tool_name, arguments, turn.user_id
        )


class McpToolServerGateway(ToolGatewayPort):
    """
    Remote tool collaborator backed by MCP servers.

    ``server_urls`` maps installed server names to endpoints; servers not in
    the map are reached at ``{base_url}/{server_name}``. When
    ``installed_servers`` is given, only those tool ids resolve.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        server_urls: Optional[Dict[str, str]] = None,
        installed_servers: Optional[List[str]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._server_urls = server_urls or {}
        self._installed = set(installed_servers) if installed_servers is not None else None
        self._headers = headers or {}

    async def resolve_servers(self, tool_ids: List[str], user_id: str) -> List[str]:
        servers = []
        for tool_id in dict.fromkeys(tool_ids or []):
            if self._installed is not None and tool_id not in self._installed:
                logger.debug(f"[MCP] Tool server {tool_id} not installed for user {user_id}")
                continue
            servers.append(tool_id)
        return servers

    async def load_tools(self, server_name: str, user_id: str, agent: Agent) -> List[AgentTool]:
        presets = agent.tool_preset_params.get(server_name, {})
        try:
            async with self._session(server_name, user_id) as session:
                listed = await session.list_tools()
        except Exception as e:
            logger.exception(f"[MCP] Failed to list tools of server {server_name}: {e}")
            return []

        tools: List[AgentTool] = []
        for tool in listed.tools:
            tools.append(
                McpRemoteTool(
                    gateway=self,
                    server_name=server_name,
                    tool_name=tool.name,
                    description=tool.description or "",
                    input_schema=tool.inputSchema,
                    preset_params=presets.get(tool.name, {}),
                )
            )
        logger.info(f"[MCP] Loaded {len(tools)} tools from server {server_name}")
        return tools

    async def call_tool(
        self, server_name: str, tool_name: str, arguments: Dict[str, Any], user_id: str
    ) -> str:
        async with self._session(server_name, user_id) as session:
            result = await session.call_tool(tool_name, arguments)

        text = self._flatten_content(result.content)
        if result.isError:
            raise ToolExecutionError(tool_name, text or "Tool execution failed")
        return text

    @asynccontextmanager
    async def _session(self, server_name: str, user_id: str) -> AsyncIterator[ClientSession]:
        url = self._server_urls.get(server_name, f"{self._base_url}/{server_name}")
        headers = {**self._headers, "X-User-Id": user_id}
        async with httpx.AsyncClient(headers=headers, timeout=httpx.Timeout(self._timeout)) as client:
            async with streamable_http_client(url, http_client=client) as streams:
                read_stream, write_stream, _ = streams
                async with ClientSession(read_stream, write_stream) as session:
                    await session.initialize()
                    yield session

    @staticmethod
    def _flatten_content(content: List[Any]) -> str:
        texts = []
        for item in content or []:
            if getattr(item, "type", None) == "text":
                texts.append(item.text)
            else:
                texts.append(str(item))
        return "\n".join(texts)
