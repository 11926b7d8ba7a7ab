"""Unified launcher tests."""

from unittest.mock import Mock

import main


def test_only_the_api_server_hosts_a_worker():
    scripts = [script for _, script, _ in main.SERVICES]

    assert scripts == ["api_server.py", "mcp_server.py"]


def test_children_inherit_the_console(monkeypatch):
    popen = Mock()
    monkeypatch.setattr(main.subprocess, "Popen", popen)
    monkeypatch.setattr(main, "processes", [])

    process = main.start_service("MCP server", "mcp_server.py", {"MCP_TRANSPORT": "sse"}, "/srv/bloom")

    args, kwargs = popen.call_args
    assert args[0][1] == "mcp_server.py"
    assert kwargs["cwd"] == "/srv/bloom"
    assert kwargs["env"]["MCP_TRANSPORT"] == "sse"
    assert "stdout" not in kwargs
    assert "stderr" not in kwargs
    assert main.processes == [process]
