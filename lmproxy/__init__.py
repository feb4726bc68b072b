"""OpenAI / LM Studio compatible proxy for Claude Code."""
__version__ = "1.0.0"
