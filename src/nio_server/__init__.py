"""nio-server: expert routing, fan-out and synthesis over an OpenAI-compatible API."""

__version__ = "0.1.0"
