"""Command-line tool that registers this server's webhook with the voice agent."""

import argparse
import asyncio
import logging
import sys

import httpx

from tablecall.config import get_config, setup_logging
from tablecall.services.elevenlabs_service import ElevenLabsService

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> None:
    """Main entry point for agent registration."""
    parser = argparse.ArgumentParser(
        description="Register the agent-response webhook with the ElevenLabs agent."
    )
    parser.add_argument(
        "--callback-url",
        help="Public agent-response URL (default: SERVER_URL/api/agent-response)",
    )
    args = parser.parse_args(argv)

    try:
        config = get_config()
    except Exception as e:
        print(f"Configuration error: {e}")
        print("\nPlease set the required environment variables.")
        print("Create a .env file with at minimum:")
        print("  ELEVENLABS_API_KEY=your_key_here")
        print("  SERVER_URL=https://your-public-host")
        sys.exit(1)

    setup_logging(config)
    service = ElevenLabsService(config)

    print(f"Updating ElevenLabs agent {service.agent_id}...")
    try:
        asyncio.run(service.register_response_tool(args.callback_url))
    except ValueError as e:
        print(f"\n⚠ {e}. Set ELEVENLABS_API_KEY and try again.")
        sys.exit(1)
    except httpx.ConnectError:
        logger.exception("Cannot connect to ElevenLabs")
        print(f"\n⚠ Cannot connect to {config.elevenlabs_base_url}")
        sys.exit(1)
    except httpx.HTTPError as e:
        logger.exception("Error updating agent")
        print(f"\n⚠ Failed to update agent: {e}")
        sys.exit(1)

    print("\n✓ Agent updated successfully!")


if __name__ == "__main__":
    main()
