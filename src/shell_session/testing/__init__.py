"""
Testing utilities for shell-session.

Provides MockSSHServer for integration testing against a real asyncssh
server running in-process.
"""
from shell_session.testing.mock_server import MockServerConfig, MockSSHServer

__all__ = ["MockSSHServer", "MockServerConfig"]
