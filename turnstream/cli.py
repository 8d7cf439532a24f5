#!/usr/bin/env python3
"""
Main CLI application for turnstream.
"""

import argparse
import logging
import os
import sys
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Import after loading env vars to ensure proper configuration
from .application.chat_service import ChatService
from .domain.services.privacy_vault import PrivacyVault
from .infrastructure.config.settings import AppSettings, BackendSettings, PrivacySettings, get_settings
from .infrastructure.dify.client import DifyClient
from .presentation.cli import ChatCLI
from .utils import setup_logging, ConfigurationError, TurnstreamError


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Streaming chat client for Dify workflow backends",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --api-key app-xxx --api-url https://api.dify.ai/v1   # Interactive mode
  %(prog)s --message "Summarize the attached report" --file report.pdf
  %(prog)s --conversation 1c7e... --show-trace                  # Resume a conversation
        """
    )

    parser.add_argument('--api-key',
                       help='Backend API key (or set DIFY_API_KEY env var)')
    parser.add_argument('--api-url',
                       help='Backend base URL (or set DIFY_API_URL env var)')
    parser.add_argument('--user',
                       help='User identifier sent with each request (default: DIFY_USER_ID or cli-user)')
    parser.add_argument('--message',
                       help='Single message mode (non-interactive)')
    parser.add_argument('--conversation',
                       help='Resume an existing conversation by id')
    parser.add_argument('--file',
                       action='append',
                       default=[],
                       help='Upload a file and attach it to the first message (repeatable)')
    parser.add_argument('--show-trace',
                       action='store_true',
                       help='Show backend processing steps and model reasoning')
    parser.add_argument('--quiet',
                       action='store_true',
                       help='Reduce CLI output (print only answers)')
    parser.add_argument('--no-privacy',
                       action='store_true',
                       help='Send text without tokenizing sensitive values')
    parser.add_argument('--allow',
                       action='append',
                       default=[],
                       metavar='CATEGORY',
                       help='Do not tokenize this detection category, e.g. email (repeatable)')
    parser.add_argument('--log-level',
                       default=os.getenv('LOG_LEVEL', 'WARNING'),
                       choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                       help='Set logging level')
    parser.add_argument('--version',
                       action='version',
                       version='%(prog)s 1.0.0')
    return parser


def resolve_settings(args: argparse.Namespace) -> AppSettings:
    """Environment settings with command-line overrides applied."""
    base = get_settings()

    backend_overrides = {
        key: value for key, value in (
            ('api_key', args.api_key),
            ('api_url', args.api_url),
            ('user_id', args.user),
        ) if value
    }
    backend = BackendSettings(**backend_overrides) if backend_overrides else base.backend
    privacy = PrivacySettings(enabled=False) if args.no_privacy else base.privacy

    return AppSettings(
        backend=backend,
        stream=base.stream,
        privacy=privacy,
        quiet=args.quiet or base.quiet,
        show_trace=args.show_trace or base.show_trace,
        log_level=args.log_level,
        log_format=base.log_format,
    )


def main():
    """Main entry point for the turnstream CLI."""
    args = build_parser().parse_args()

    settings = resolve_settings(args)
    setup_logging(settings.log_level, settings.log_format)
    logger = logging.getLogger(__name__)

    missing = settings.validate_required_settings()
    if missing:
        print(f"❌ Error: {ConfigurationError(missing)}")
        print("   Set them in the environment, a .env file, or via --api-key / --api-url")
        sys.exit(1)

    backend = DifyClient(settings.backend)
    chat_service = ChatService(backend, settings, vault=PrivacyVault())
    cli = ChatCLI(chat_service, settings, exclude_categories=args.allow)

    try:
        if args.conversation:
            cli.load_conversation(args.conversation)
        if args.file:
            cli.attach_files(args.file)

        if args.message:
            record = cli.send_message(args.message)
            if record.failed:
                sys.exit(1)
        else:
            cli.interactive_mode()

    except KeyboardInterrupt:
        print("\n👋 Goodbye!")
    except TurnstreamError as e:
        logger.error(f"Application error: {e}")
        print(f"❌ Error: {e}")
        sys.exit(1)
    finally:
        cli.close(backend)


if __name__ == "__main__":
    main()
