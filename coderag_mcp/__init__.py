"""MCP tool server exposing the code RAG pipeline."""
