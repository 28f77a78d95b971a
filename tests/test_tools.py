"""
Tests for tools module.
"""

import asyncio
import json

import httpx
import pytest

from relay_agent.config import Settings
from relay_agent.exceptions import ToolExecutionError, UnknownToolError
from relay_agent.tools import http_tool
from relay_agent.tools.base import Tool, ToolConcurrency, ToolParameter, ToolResult
from relay_agent.tools.browser import BrowserSession, BrowserTool
from relay_agent.tools.file_tool import FileManager, create_file_tools, format_diff
from relay_agent.tools.interactive import create_interactive_tool, parse_field_requests
from relay_agent.tools.registry import ToolRegistry, create_default_registry
from relay_agent.tools.shell_tool import ShellConfig, ShellExecutor, create_shell_tools


def make_tool(name: str, output: str = "ok", concurrency=ToolConcurrency.MUTATING, **kwargs) -> Tool:
    async def handler(**arguments) -> ToolResult:
        return ToolResult(success=True, output=output)

    return Tool(
        name=name,
        description=f"{name} tool",
        parameters=[],
        handler=handler,
        concurrency=concurrency,
        **kwargs,
    )


def test_tool_result_success():
    """Test successful tool result."""
    result = ToolResult(success=True, output="Test output", data={"key": "value"})

    assert result.success is True
    assert result.to_text() == "Test output"
    assert result.error is None


def test_tool_result_failure():
    """Test failed tool result."""
    result = ToolResult(success=False, output="", error="Something went wrong")

    assert result.success is False
    assert result.to_text() == "error: Something went wrong"


def test_parameters_schema():
    tool = Tool(
        name="t",
        description="d",
        parameters=[
            ToolParameter(name="path", param_type="string", description="p"),
            ToolParameter(name="depth", param_type="integer", description="d", required=False, default=3),
        ],
        handler=None,
    )

    schema = tool.get_parameters_schema()

    assert schema["required"] == ["path"]
    assert schema["properties"]["depth"] == {"type": "integer", "description": "d", "default": 3}


def test_tool_to_definition():
    """Test converting tools to LLM definitions."""
    definition = BrowserTool().to_definition()

    assert definition.name == "browse"
    assert definition.parameters["properties"]["action"]["enum"][0] == "navigate"
    assert make_tool("x").to_definition().parameters == {"type": "object", "properties": {}, "required": []}


def test_register_replaces_existing_tool():
    registry = ToolRegistry()
    registry.register(make_tool("a", output="first"))
    registry.register(make_tool("b"))
    registry.register(make_tool("a", output="second", concurrency=ToolConcurrency.READ_ONLY))

    assert registry.list_tools() == ["a", "b"]
    assert registry.is_read_only("a")
    assert not registry.is_read_only("b")
    assert not registry.is_read_only("missing")


def test_get_definitions_order():
    registry = ToolRegistry()
    for name in ("one", "two", "three"):
        registry.register(make_tool(name))

    assert [d.name for d in registry.get_definitions()] == ["one", "two", "three"]
    assert [d.name for d in registry.get_definitions(["three", "nope", "one"])] == ["three", "one"]


@pytest.mark.asyncio
async def test_execute_unknown_tool_raises():
    registry = ToolRegistry()

    with pytest.raises(UnknownToolError):
        await registry.execute("nope", {})


@pytest.mark.asyncio
async def test_execute_timeout_returns_timed_out_result():
    async def slow(**kwargs) -> ToolResult:
        await asyncio.sleep(5)
        return ToolResult(success=True, output="late")

    registry = ToolRegistry()
    registry.register(Tool(name="slow", description="", parameters=[], handler=slow, timeout=0.05))

    result = await registry.execute("slow", {})

    assert result.timed_out is True
    assert result.success is False
    assert result.to_text().startswith("error: slow timed out")


@pytest.mark.asyncio
async def test_execute_handler_exception_becomes_failed_result():
    async def broken(**kwargs) -> ToolResult:
        raise RuntimeError("disk on fire")

    registry = ToolRegistry()
    registry.register(Tool(name="broken", description="", parameters=[], handler=broken))

    result = await registry.execute("broken", {})

    assert result.success is False
    assert result.to_text() == "error: disk on fire"


def test_default_registry_respects_enabled_tools():
    settings = Settings(_env_file=None, enabled_tools="file_read,bash")

    registry = create_default_registry(settings)

    assert registry.list_tools() == ["file_read", "bash", "interactive"]


def test_default_registry_concurrency_classes():
    registry = create_default_registry(Settings(_env_file=None))

    for name in ("file_read", "file_list", "grep", "http"):
        assert registry.is_read_only(name), name
    for name in ("file_write", "file_edit", "file_patch", "bash", "browse", "interactive"):
        assert not registry.is_read_only(name), name


# File tools

def test_file_manager_write_read_and_diff(tmp_path):
    manager = FileManager(str(tmp_path))

    assert manager.write_file("sub/a.txt", "one\ntwo\nthree").startswith("created sub/a.txt")
    assert "[read sub/a.txt: 3 lines" in manager.read_file("sub/a.txt")

    result = manager.write_file("sub/a.txt", "one\nTWO\nthree")
    assert "- two" in result
    assert "+ TWO" in result


def test_file_manager_edit_lines(tmp_path):
    (tmp_path / "f.txt").write_text("a\nb\nc\nd")
    manager = FileManager(str(tmp_path))

    manager.edit_lines("f.txt", 2, 3, "X")

    assert (tmp_path / "f.txt").read_text() == "a\nX\nd"
    with pytest.raises(ToolExecutionError):
        manager.edit_lines("f.txt", 3, 1, "bad")


def test_file_manager_patch_requires_unique_match(tmp_path):
    (tmp_path / "f.txt").write_text("foo bar foo")
    manager = FileManager(str(tmp_path))

    with pytest.raises(ToolExecutionError, match="2 locations"):
        manager.patch("f.txt", "foo", "baz")

    manager.patch("f.txt", "bar", "qux")
    assert (tmp_path / "f.txt").read_text() == "foo qux foo"


def test_file_manager_list_and_grep(tmp_path):
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "main.py").write_text("print('Hello')\n")
    (tmp_path / "notes.md").write_text("hello notes\n")
    (tmp_path / "node_modules").mkdir()
    (tmp_path / "node_modules" / "x.js").write_text("hello")
    manager = FileManager(str(tmp_path))

    tree = manager.list_tree(".")
    assert "src/" in tree
    assert "  main.py" in tree
    assert "node_modules" not in tree

    matches = manager.grep("HELLO", ".")
    assert "main.py:1:" in matches
    assert "notes.md:1:" in matches
    assert "x.js" not in matches

    only_py = manager.grep("hello", ".", include="*.py")
    assert "notes.md" not in only_py


def test_format_diff_collapses_common_lines():
    diff = format_diff("a\nb\nc", "a\nB\nc")

    assert diff == " ... (1 unchanged lines)\n- b\n+ B\n ... (1 unchanged lines)"


@pytest.mark.asyncio
async def test_file_tool_errors_surface_through_registry(tmp_path):
    registry = ToolRegistry()
    for tool in create_file_tools(str(tmp_path)):
        registry.register(tool)

    result = await registry.execute("file_read", {"path": "missing.txt"})

    assert result.success is False
    assert "File not found" in result.to_text()


# Shell tool

def test_shell_refuses_interactive_commands():
    executor = ShellExecutor()

    assert "interactive command 'vim'" in executor.check_command("vim file.txt")
    assert "sudo requires password" in executor.check_command("sudo apt update")
    assert executor.check_command("echo $pw | sudo -S ls") is None
    assert executor.check_command("ls -la") is None


@pytest.mark.asyncio
async def test_shell_runs_command(tmp_path):
    executor = ShellExecutor(ShellConfig(workspace_dir=str(tmp_path)))

    return_code, output, timed_out = await executor.execute("echo hello && exit 3")

    assert return_code == 3
    assert output.strip() == "hello"
    assert timed_out is False


@pytest.mark.asyncio
async def test_bash_tool_times_out(tmp_path):
    bash = create_shell_tools(timeout_seconds=0.2, workspace_dir=str(tmp_path))[0]

    result = await bash.execute(command="sleep 5")

    assert result.timed_out is True
    assert "timed out" in result.to_text()


# Interactive tool

def test_parse_field_requests_defaults():
    requests = parse_field_requests({"fields": [
        {"name": "confirm", "options": ["yes", "no"]},
        {"name": "password", "interactive_type": "blank", "interactive_hint": "Password", "sensitive": True},
        "junk",
    ]})

    assert len(requests) == 2
    assert requests[0].interactive_type == "select"
    assert requests[0].interactive_hint == "confirm"
    assert requests[1].sensitive is True
    assert requests[1].interactive_hint == "Password"


def test_parse_field_requests_without_fields():
    assert parse_field_requests({}) is None
    assert parse_field_requests({"fields": "nope"}) is None


def test_interactive_tool_schema():
    tool = create_interactive_tool()

    schema = tool.get_parameters_schema()

    assert tool.name == "interactive"
    assert schema["required"] == ["fields"]
    assert "sensitive" in schema["properties"]["fields"]["items"]["properties"]


# Browser tool

PAGES = {
    "/": "<html><head><title>Home</title></head><body><main>Welcome<a href='/about'>About</a></main>"
         "<script>var x = 1;</script></body></html>",
    "/about": "<html><head><title>About</title></head><body><p>About us</p></body></html>",
}


def make_browser() -> BrowserTool:
    def handler(request: httpx.Request) -> httpx.Response:
        html = PAGES.get(request.url.path)
        if html is None:
            return httpx.Response(404, text="missing")
        return httpx.Response(200, text=html, headers={"content-type": "text/html"})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), follow_redirects=True)
    return BrowserTool(BrowserSession(client=client))


def test_browser_tool_properties():
    tool = BrowserTool()

    assert tool.name == "browse"
    assert tool.concurrency == ToolConcurrency.MUTATING
    assert "action" in tool.parameters["required"]


@pytest.mark.asyncio
async def test_browser_session_navigation():
    tool = make_browser()

    page = await tool.execute(action="navigate", url="http://site.test/")
    assert page.success
    assert "Title: Home" in page.output
    assert "Welcome" in page.output
    assert "var x" not in page.output

    links = await tool.execute(action="links")
    assert links.data["links"] == [{"text": "About", "url": "http://site.test/about"}]

    about = await tool.execute(action="navigate", url="/about")
    assert "About us" in about.output

    back = await tool.execute(action="back")
    assert "Title: Home" in back.output

    assert (await tool.execute(action="close")).output == "browser closed"
    assert tool.session.client is None


@pytest.mark.asyncio
async def test_browser_requires_page():
    tool = make_browser()

    result = await tool.execute(action="text")

    assert result.success is False
    assert "navigate first" in result.to_text()


# HTTP tool

@pytest.mark.asyncio
async def test_http_tool_reports_connection_errors():
    registry = create_default_registry(Settings(_env_file=None, enabled_tools="http"))

    result = await registry.execute("http", {"method": "GET", "url": "http://127.0.0.1:1/", "timeout": 2})

    payload = json.loads(result.output)
    assert payload["status"] == 0
    assert payload["error"]


@pytest.mark.asyncio
async def test_http_tool_stops_reading_at_size_limit(monkeypatch):
    monkeypatch.setattr(http_tool, "MAX_RESPONSE_SIZE", 10)

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"abcdefghij" * 50, headers={"content-type": "text/plain"})

    tool = http_tool.create_http_tools(transport=httpx.MockTransport(handler))[0]

    result = await tool.execute(method="GET", url="http://site.test/big")

    assert result.data["status"] == 200
    assert result.data["size"] == 10
    assert result.data["body"] == "abcdefghij"
    assert result.data["truncated"] is True


@pytest.mark.asyncio
async def test_http_tool_small_response_is_complete():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["q"] == "1"
        return httpx.Response(201, text="created")

    tool = http_tool.create_http_tools(transport=httpx.MockTransport(handler))[0]

    result = await tool.execute(method="post", url="site.test/items", query={"q": 1}, body="{}")

    payload = json.loads(result.output)
    assert payload["status"] == 201
    assert payload["body"] == "created"
    assert payload["size"] == 7
    assert payload["truncated"] is False


@pytest.mark.asyncio
async def test_tool_execution_error_becomes_failed_result(tmp_path):
    (tmp_path / "f.txt").write_text("same same")
    registry = ToolRegistry()
    for tool in create_file_tools(str(tmp_path)):
        registry.register(tool)

    result = await registry.execute("file_patch", {"path": "f.txt", "old_str": "same", "new_str": "x"})

    assert result.success is False
    assert result.to_text() == "error: old_str matches 2 locations in f.txt (must be unique)"
