"""
Command-line interface for ai-chat-agent.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

import structlog

from .config import get_settings
from .errors import AgentError

logger = structlog.get_logger()


def configure_logging(level: str = "INFO") -> None:
    """Route structlog through stdlib logging with a console renderer."""
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=level)
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=True),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def main() -> None:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        prog="ai-chat-agent",
        description="ai-chat-agent - Chat with LLM providers augmented by MCP tools",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    chat_parser = subparsers.add_parser("chat", help="Start an interactive chat")
    chat_parser.add_argument("--provider", help="Session to talk to (defaults to DEFAULT_PROVIDER)")

    subparsers.add_parser("tools", help="List tools of the configured MCP servers")

    summarize_parser = subparsers.add_parser("summarize", help="Compress a session's history")
    summarize_parser.add_argument("--provider", help="Session to summarize (defaults to DEFAULT_PROVIDER)")

    config_parser = subparsers.add_parser("config", help="Show configuration")
    config_parser.add_argument("--check", action="store_true", help="Check configuration validity")

    subparsers.add_parser("init", help="Initialize the agent (create .env, data directory)")

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    settings = get_settings()
    configure_logging("DEBUG" if settings.debug else settings.log_level)

    try:
        if args.command == "chat":
            asyncio.run(run_chat(args.provider or settings.default_provider))
        elif args.command == "tools":
            asyncio.run(list_tools())
        elif args.command == "summarize":
            asyncio.run(summarize_session(args.provider or settings.default_provider))
        elif args.command == "config":
            show_config(args.check)
        elif args.command == "init":
            init_agent()
        else:
            parser.print_help()
    except AgentError as e:
        logger.error("Command failed", command=args.command, error=str(e))
        sys.exit(1)


def print_reply(reply) -> None:
    print(f"\n{reply.answer}\n")
    print(
        f"[tokens: {reply.usage.prompt_tokens} in / {reply.usage.completion_tokens} out / "
        f"{reply.usage.total_tokens} total, cost: {reply.cost}, "
        f"rounds: {reply.rounds}, {reply.elapsed_ms} ms]"
    )
    if reply.summary:
        print_summary(reply.summary)


def print_summary(summary) -> None:
    print(
        f"[history summarized: {summary.old_messages_count} messages, "
        f"{summary.old_tokens_count} -> {summary.new_tokens_count} tokens "
        f"({summary.compression_percent}% saved)]"
    )


async def run_chat(session_id: str) -> None:
    """Interactive REPL against one session."""
    from .runtime import build_runtime

    runtime = await build_runtime(get_settings())
    try:
        session = runtime.sessions.get(session_id)
        print(f"Chatting with {session.provider}. Commands: /clear, /summarize, /tools, /config, /quit\n")

        while True:
            try:
                text = (await asyncio.to_thread(input, "> ")).strip()
            except EOFError:
                break

            if not text:
                continue
            if text in ("/quit", "/exit"):
                break
            if text == "/clear":
                await session.clear_history()
                print("History cleared.")
                continue
            if text == "/summarize":
                try:
                    print_summary(await runtime.sessions.summarize(session_id))
                except AgentError as e:
                    print(f"Summarization failed: {e}")
                continue
            if text == "/tools":
                await print_tools(runtime)
                continue
            if text == "/config":
                for key, value in session.config.to_dict().items():
                    print(f"  {key}: {value}")
                continue

            print_reply(await runtime.sessions.send_message(session_id, text))
    finally:
        await runtime.aclose()


async def print_tools(runtime) -> None:
    tools = await runtime.tool_registry.list_tools()
    if not tools:
        print("No tools available.")
    for tool in tools:
        print(f"  {tool.name:<30} [{tool.provider}] {tool.description}")

    stats = runtime.tool_registry.statistics()
    for provider, connected in stats.connectivity.items():
        status = "connected" if connected else "unavailable"
        print(f"  provider {provider}: {status}, {stats.tools_by_provider.get(provider, 0)} tools")


async def list_tools() -> None:
    """List tools of every configured MCP server."""
    from .runtime import build_runtime

    runtime = await build_runtime(get_settings())
    try:
        await print_tools(runtime)
    finally:
        await runtime.aclose()


async def summarize_session(session_id: str) -> None:
    """Compress one session's history into its system prompt."""
    from .runtime import build_runtime

    runtime = await build_runtime(get_settings())
    try:
        summary = await runtime.sessions.summarize(session_id)
        print_summary(summary)
        print(f"\nNew system prompt:\n{summary.new_system_prompt}")
    finally:
        await runtime.aclose()


def show_config(check: bool) -> None:
    """Show current configuration."""
    settings = get_settings()

    def mask(value: str) -> str:
        if not value:
            return "(not set)"
        return value[:4] + "..." + value[-4:] if len(value) > 10 else "****"

    print("\n=== ai-chat-agent Configuration ===\n")

    print("LLM Providers:")
    print(f"  Enabled: {', '.join(settings.enabled_providers)}")
    print(f"  Default: {settings.default_provider}")
    print(f"  GigaChat Auth Key: {mask(settings.gigachat_auth_key)} (scope {settings.gigachat_scope})")
    print(f"  Yandex API Key: {mask(settings.yandex_api_key)} (folder {settings.yandex_folder_id or '(not set)'})")
    print(f"  OpenAI Key: {mask(settings.openai_api_key)}")
    print(f"  Anthropic Key: {mask(settings.anthropic_api_key)}")

    print("\nConversation Defaults:")
    print(f"  Temperature: {settings.temperature}")
    print(f"  Max Tokens: {settings.max_tokens}")
    print(f"  Auto-summarize Threshold: {settings.auto_summarize_threshold or '(disabled)'}")
    print(f"  Max Tool Rounds: {settings.max_tool_rounds}")
    print(f"  Summarizer: {settings.summarizer_provider}")

    print("\nMCP Servers:")
    if not settings.mcp_servers:
        print("  (none)")
    for name, server in settings.mcp_servers.items():
        state = "" if server.enabled else " (disabled)"
        print(f"  {name}: {server.url} [{server.transport}]{state}")

    print("\nDatabase:")
    print(f"  URL: {settings.database_url}")

    if check:
        print("\n=== Configuration Check ===\n")
        errors = []
        warnings = []

        credentials = {
            "gigachat": bool(settings.gigachat_auth_key),
            "yandex": bool(settings.yandex_api_key and settings.yandex_folder_id),
            "openai": bool(settings.openai_api_key),
            "anthropic": bool(settings.anthropic_api_key),
        }
        configured = [p for p in settings.enabled_providers if credentials[p]]
        if not configured:
            errors.append("At least one enabled provider needs credentials")
        for provider in settings.enabled_providers:
            if not credentials[provider]:
                warnings.append(f"Provider '{provider}' is enabled but has no credentials")

        if not credentials[settings.summarizer_provider]:
            warnings.append("Summarizer provider has no credentials - summarization disabled")

        try:
            settings.conversation_defaults()
        except AgentError as e:
            errors.append(str(e))

        if errors:
            print("❌ Errors:")
            for e in errors:
                print(f"   - {e}")

        if warnings:
            print("⚠️  Warnings:")
            for w in warnings:
                print(f"   - {w}")

        if not errors and not warnings:
            print("✅ Configuration looks good!")
        elif not errors:
            print("\n✅ Configuration is valid (with warnings)")
        else:
            print("\n❌ Configuration has errors - fix them before starting")


def init_agent() -> None:
    """Initialize the agent with default configuration."""
    env_file = Path(".env")
    data_dir = Path("data")

    data_dir.mkdir(exist_ok=True)

    if not env_file.exists():
        env_content = """# ai-chat-agent Configuration

# === LLM PROVIDERS (set at least one) ===

ENABLED_PROVIDERS=["gigachat","yandex"]
DEFAULT_PROVIDER=gigachat

# GigaChat: base64 client credentials
GIGACHAT_AUTH_KEY=
GIGACHAT_SCOPE=GIGACHAT_API_PERS
# Path to a CA bundle with the Russian trusted root, or false
# GIGACHAT_VERIFY_SSL=true

# YandexGPT
YANDEX_API_KEY=
YANDEX_FOLDER_ID=

# OPENAI_API_KEY=
# ANTHROPIC_API_KEY=

# === TOOLS ===

# MCP servers as JSON: name -> {url, transport, timeout, enabled}
# MCP_SERVERS={"weather": {"url": "http://localhost:8081/sse"}}
MAX_TOOL_ROUNDS=10

# === CONVERSATION ===

TEMPERATURE=0.7
MAX_TOKENS=100
AUTO_SUMMARIZE_THRESHOLD=0
SUMMARIZER_PROVIDER=gigachat

# Database
DATABASE_URL=sqlite+aiosqlite:///./data/agent.db
"""
        env_file.write_text(env_content)
        print(f"✅ Created {env_file}")
    else:
        print(f"ℹ️  {env_file} already exists")

    print(f"✅ Created {data_dir}")
    print("\n=== Next Steps ===")
    print("1. Edit .env and add credentials for at least one provider")
    print("2. Optionally point MCP_SERVERS at your tool servers")
    print("3. Run: ai-chat-agent config --check")
    print("4. Run: ai-chat-agent chat")


if __name__ == "__main__":
    main()
