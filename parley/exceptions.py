class ParleyError(Exception):
    pass


class ChatNotFoundError(ParleyError):
    def __init__(self, chat_id: str) -> None:
        super().__init__(f"Chat {chat_id} not found")
        self.chat_id = chat_id


class ToolNotFoundError(ParleyError):
    def __init__(self, tool_name: str) -> None:
        super().__init__(f"Tool '{tool_name}' is not provided by any connected MCP server")
        self.tool_name = tool_name


class ApprovalStateError(ParleyError):
    """A decision was submitted while nothing is awaiting approval."""
