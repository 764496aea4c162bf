"""
ai-chat-agent - tool-augmented conversations with interchangeable LLM providers.
"""

__version__ = "0.1.0"
