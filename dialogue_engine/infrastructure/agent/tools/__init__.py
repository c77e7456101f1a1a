from dialogue_engine.infrastructure.agent.tools.base import AgentTool
from dialogue_engine.infrastructure.agent.tools.mcp_tool import McpRemoteTool, McpToolServerGateway
from dialogue_engine.infrastructure.agent.tools.provisioner import ToolProvisioner
from dialogue_engine.infrastructure.agent.tools.subagent_tool import (
    NO_OUTPUT,
    SubAgentTool,
    SubAgentToolFactory,
    subagent_tool_name,
)

__all__ = [
    "AgentTool",
    "McpRemoteTool",
    "McpToolServerGateway",
    "NO_OUTPUT",
    "SubAgentTool",
    "SubAgentToolFactory",
    "ToolProvisioner",
    "subagent_tool_name",
]
