"""Command line interface: run the server, manage the audit database, inspect config."""

import argparse
import sys
from typing import List, Optional

from .config import (
    AppConfig,
    LogLevel,
    load_config,
    get_development_config,
    get_testing_config,
    validate_config
)
from .core.exceptions import WorkflowEngineError
from .core.logging import setup_logging, get_logger


def create_argument_parser() -> argparse.ArgumentParser:
    """Create command line argument parser."""
    parser = argparse.ArgumentParser(
        description="Agent Cooperation Engine - owned multi-agent workflows over HTTP"
    )

    parser.add_argument("--host", help="Host to bind the server to")
    parser.add_argument("--port", type=int, help="Port to bind the server to")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload for development")
    parser.add_argument(
        "--env",
        choices=["development", "testing"],
        help="Environment configuration preset"
    )
    parser.add_argument("--config", help="Path to a .env configuration file")
    parser.add_argument("--database-url", help="Audit database connection URL")
    parser.add_argument(
        "--log-level",
        choices=[level.value for level in LogLevel],
        help="Logging level"
    )
    parser.add_argument("--log-file", help="Path to log file")
    parser.add_argument("--debug", action="store_true", help="Enable debug mode")
    parser.add_argument(
        "--max-traversal-steps",
        type=int,
        help="Maximum nodes along one path of a workflow execution"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("run", help="Run the API server")

    db_parser = subparsers.add_parser("db", help="Audit database commands")
    db_subparsers = db_parser.add_subparsers(dest="db_command", help="Database commands")
    db_subparsers.add_parser("init", help="Create database tables")
    db_subparsers.add_parser("reset", help="Drop and recreate database tables")

    config_parser = subparsers.add_parser("config", help="Configuration management")
    config_subparsers = config_parser.add_subparsers(dest="config_command", help="Config commands")
    config_subparsers.add_parser("show", help="Show current configuration")
    config_subparsers.add_parser("validate", help="Validate configuration")

    return parser


def load_configuration(args: argparse.Namespace) -> AppConfig:
    """Load configuration based on command line arguments."""
    if args.env == "development":
        config = get_development_config()
    elif args.env == "testing":
        config = get_testing_config()
    else:
        config = load_config(args.config)

    overrides = {}
    if args.host:
        overrides["host"] = args.host
    if args.port:
        overrides["port"] = args.port
    if args.reload:
        overrides["reload"] = True
    if args.database_url:
        overrides["database_url"] = args.database_url
    if args.log_level:
        overrides["log_level"] = LogLevel(args.log_level)
    if args.log_file:
        overrides["log_file"] = args.log_file
    if args.debug:
        overrides["debug"] = True
    if args.max_traversal_steps:
        overrides["max_traversal_steps"] = args.max_traversal_steps

    if not overrides:
        return config
    return AppConfig.model_validate({**config.model_dump(), **overrides})


def run_server(config: AppConfig):
    """Run the API server."""
    import uvicorn
    from .factory import create_app

    logger = get_logger(__name__)
    logger.info(f"Starting server on {config.host}:{config.port}")

    uvicorn_config = config.get_uvicorn_config()
    if uvicorn_config.pop("reload"):
        logger.warning("Auto-reload requires an import string; serving agent_cooperation.main:app")
        uvicorn.run("agent_cooperation.main:app", reload=True, **uvicorn_config)
    else:
        uvicorn.run(create_app(config), **uvicorn_config)


def run_database_command(command: str, config: AppConfig):
    """Run audit database management commands."""
    from .storage.database import Database

    logger = get_logger(__name__)
    database = Database(config.database_url, echo=config.database_echo)
    try:
        if command == "init":
            logger.info("Initializing database tables...")
            database.create_tables()
        elif command == "reset":
            logger.info("Resetting database...")
            database.drop_tables()
            database.create_tables()
        logger.info(f"Database command '{command}' completed successfully")
    finally:
        database.dispose()


def show_configuration(config: AppConfig):
    """Show current configuration."""
    print("Current Configuration:")
    print(f"  App Name: {config.app_name}")
    print(f"  Version: {config.app_version}")
    print(f"  Debug: {config.debug}")
    print(f"  Host: {config.host}")
    print(f"  Port: {config.port}")
    print(f"  Database URL: {config.database_url}")
    print(f"  Audit Enabled: {config.audit_enabled}")
    print(f"  Retry Backoff Base: {config.retry_backoff_base_ms}ms")
    print(f"  Max Traversal Steps: {config.max_traversal_steps}")
    print(f"  Log Level: {config.log_level.value}")


def main(argv: Optional[List[str]] = None):
    """Main entry point for the application."""
    parser = create_argument_parser()
    args = parser.parse_args(argv)

    try:
        config = load_configuration(args)
        validate_config(config)
        setup_logging(level=config.log_level.value, log_file=config.log_file,
                      structured=config.log_structured)

        if args.command == "run" or args.command is None:
            run_server(config)

        elif args.command == "db":
            if not args.db_command:
                print("Database command required. Use --help for options.")
                sys.exit(1)
            run_database_command(args.db_command, config)

        elif args.command == "config":
            if args.config_command == "show":
                show_configuration(config)
            elif args.config_command == "validate":
                print("Configuration validation: PASSED")
            else:
                print("Configuration command required. Use --help for options.")
                sys.exit(1)

    except (WorkflowEngineError, ValueError) as e:
        print(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
