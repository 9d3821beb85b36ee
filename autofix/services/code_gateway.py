"""
Code Access Gateway
===================
Uniform read-only tool interface over one repository on the source-control
host. Used by the analysis prompt's tool loop and by the orchestrator to
gather context.

Contract:
    connect() / close()
    list_tools() -> [ToolSpec]          cached after the first call
    call_tool(name, args) -> [ContentBlock]

"Not found" is data, not an exception: every tool answers a missing path
with a text block describing the absence, and get_file_info answers with a
structural {"exists": false} payload so that downstream reasoning can branch
on existence. Other host errors (403, 429, 5xx) are also returned as
"Error: ..." blocks. Only transport-level problems raise: calling before
connect(), an unknown tool, malformed arguments, or a network failure.
"""
import json
import logging
from typing import Callable, Dict, List, Optional

import httpx
from pydantic import BaseModel

from autofix.core.errors import GatewayError, GitHubAPIError, ToolArgumentError
from autofix.llm.tool_schemas import ParamType, ToolParam, ToolSpec
from autofix.services.github_client import GitHubClient, decode_content

logger = logging.getLogger(__name__)


class ContentBlock(BaseModel):
    type: str = "text"
    text: str


_TOOL_SPECS: List[ToolSpec] = [
    ToolSpec(
        name="read_file",
        description="Read a file from the GitHub repository",
        params=[ToolParam("path", ParamType.STRING, "File path relative to repository root")],
    ),
    ToolSpec(
        name="search_files",
        description="Search for files in the repository by name pattern",
        params=[ToolParam("pattern", ParamType.STRING, "File name pattern to search for")],
    ),
    ToolSpec(
        name="search_code",
        description="Search for code content in the repository",
        params=[ToolParam("query", ParamType.STRING, "Code search query")],
    ),
    ToolSpec(
        name="list_directory",
        description="List contents of a directory",
        params=[ToolParam("path", ParamType.STRING, "Directory path (empty string for root)")],
    ),
    ToolSpec(
        name="get_file_info",
        description="Get metadata about a file (size, type, existence)",
        params=[ToolParam("path", ParamType.STRING, "File path")],
    ),
]


def _text(text: str) -> List[ContentBlock]:
    return [ContentBlock(text=text)]


class CodeAccessGateway:
    """
    Read-only tool server for a single (owner, repo, ref).

    Usage:
        gateway = CodeAccessGateway("octo", "app", token="...", ref="main")
        await gateway.connect()
        blocks = await gateway.call_tool("read_file", {"path": "src/app.js"})
        await gateway.close()
    """

    def __init__(
        self,
        owner: str,
        repo: str,
        token: str = "",
        ref: Optional[str] = None,
        client: Optional[GitHubClient] = None,
        cache_tools_list: bool = True,
    ) -> None:
        self.owner = owner
        self.repo = repo
        self.ref = ref
        self._token = token
        self._client = client
        self._owns_client = client is None
        self._connected = False
        self._cache_tools_list = cache_tools_list
        self._tools_cache: Optional[List[ToolSpec]] = None
        self._handlers: Dict[str, Callable] = {
            "read_file": self._read_file,
            "search_files": self._search_files,
            "search_code": self._search_code,
            "list_directory": self._list_directory,
            "get_file_info": self._get_file_info,
        }

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        if self._client is None:
            self._client = GitHubClient(self._token)
        self._connected = True
        logger.info("Code gateway connected to %s/%s@%s", self.owner, self.repo, self.ref or "default")

    async def close(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.close()
            self._client = None
        self._connected = False
        logger.info("Code gateway disconnected from %s/%s", self.owner, self.repo)

    async def list_tools(self) -> List[ToolSpec]:
        if self._cache_tools_list and self._tools_cache is not None:
            return self._tools_cache
        tools = list(_TOOL_SPECS)
        if self._cache_tools_list:
            self._tools_cache = tools
        return tools

    def invalidate_tools_cache(self) -> None:
        self._tools_cache = None

    async def call_tool(self, name: str, args: Optional[dict] = None) -> List[ContentBlock]:
        """
        Execute one gateway tool.

        Raises
        ------
        GatewayError
            Not connected, or a network transport failure.
        ToolArgumentError
            Unknown tool name or malformed arguments.
        """
        if not self._connected or self._client is None:
            raise GatewayError("Code gateway is not connected")

        spec = next((t for t in await self.list_tools() if t.name == name), None)
        if spec is None:
            raise ToolArgumentError(f"Unknown tool: {name}")
        cleaned = spec.validate_args(args)

        logger.debug("Calling gateway tool %s with %s", name, cleaned)
        try:
            return await self._handlers[name](**cleaned)
        except GitHubAPIError as e:
            logger.warning("Gateway tool %s failed: %s", name, e)
            return _text(f"Error: {e.message or e}")
        except httpx.TransportError as e:
            raise GatewayError(f"Transport failure calling {name}: {e}") from e

    # -----------------------------------------------------------------------
    # Tool implementations
    # -----------------------------------------------------------------------
    async def _read_file(self, path: str) -> List[ContentBlock]:
        try:
            data = await self._client.get_contents(self.owner, self.repo, path, self.ref)
        except GitHubAPIError as e:
            if e.not_found:
                return _text(f"File not found: {path}")
            raise
        if not isinstance(data, dict) or data.get("type") != "file":
            return _text(f"{path} is not a file")
        try:
            return _text(decode_content(data.get("content", "")))
        except UnicodeDecodeError:
            return _text(f"{path} is not a UTF-8 text file")

    async def _search_files(self, pattern: str) -> List[ContentBlock]:
        items = await self._client.search_code(f"filename:{pattern} repo:{self.owner}/{self.repo}")
        results = [item.get("path", "") for item in items]
        return _text("\n".join(results) if results else "No files found")

    async def _search_code(self, query: str) -> List[ContentBlock]:
        items = await self._client.search_code(f"{query} repo:{self.owner}/{self.repo}")
        results = [f"{item.get('path', '')}:{item.get('name', '')}" for item in items]
        return _text("\n".join(results) if results else "No results found")

    async def _list_directory(self, path: str) -> List[ContentBlock]:
        try:
            data = await self._client.get_contents(self.owner, self.repo, path or "", self.ref)
        except GitHubAPIError as e:
            if e.not_found:
                return _text(f"Directory not found: {path}")
            raise
        if not isinstance(data, list):
            return _text(f"Not a directory: {path}")
        return _text("\n".join(f"{item.get('type')}: {item.get('path')}" for item in data))

    async def _get_file_info(self, path: str) -> List[ContentBlock]:
        try:
            data = await self._client.get_contents(self.owner, self.repo, path, self.ref)
        except GitHubAPIError as e:
            if e.not_found:
                return _text(json.dumps({"exists": False, "path": path}))
            raise
        if isinstance(data, list):
            info = {"exists": True, "type": "dir", "size": 0, "name": path.rstrip("/").split("/")[-1], "path": path}
        else:
            info = {
                "exists": True,
                "type": data.get("type"),
                "size": data.get("size"),
                "name": data.get("name"),
                "path": data.get("path"),
            }
        return _text(json.dumps(info, indent=2))
