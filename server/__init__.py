"""
MCP stdio server exposing the LSP bridge tools.

Import the application from server.app; this package stays import-light so
the bridge can use server.logging_config without a cycle.
"""
