"""Entry point for running the renewal service as a module."""

import argparse
import json
import os
import sys

import uvicorn


def _serve(args: argparse.Namespace) -> None:
    if args.log_format == "console":
        print("=" * 60)
        print("Graph Subscription Renewal v0.1.0")
        print("=" * 60)
        print(f"Host: {args.host}")
        print(f"Port: {args.port}")
        print(f"Log Level: {args.log_level}")
        print(f"Config: {args.config}")
        print("=" * 60)

    try:
        uvicorn.run(
            "graph_renewal.main:app",
            host=args.host,
            port=args.port,
            log_level=args.log_level.lower(),
            reload=args.reload,
            access_log=False,  # request logging middleware covers this
        )
    except KeyboardInterrupt:
        print("\nShutting down gracefully...")
        sys.exit(0)
    except Exception as e:
        print(f"Failed to start renewal service: {e}", file=sys.stderr)
        sys.exit(1)


def _run_once(args: argparse.Namespace) -> None:
    from graph_renewal.config import ConfigurationError
    from graph_renewal.logging_config import configure_logging
    from graph_renewal.services.renewal_orchestrator import build_renewal_orchestrator

    configure_logging(log_level=args.log_level, json_format=args.log_format == "json")
    try:
        orchestrator = build_renewal_orchestrator()
    except ConfigurationError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        sys.exit(2)

    try:
        summary = orchestrator.run_pass()
    finally:
        orchestrator.shutdown()
    print(json.dumps(summary.model_dump(mode="json"), indent=2))
    sys.exit(1 if summary.failures else 0)


def main() -> None:
    """Main entry point for the renewal service."""
    parser = argparse.ArgumentParser(
        description="Graph subscription renewal - keeps user credentials and subscriptions alive"
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=os.getenv("LOG_LEVEL", "INFO"),
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--log-format",
        choices=["json", "console"],
        default=os.getenv("LOG_FORMAT", "json"),
        help="Log output format (default: json)",
    )
    parser.add_argument(
        "--config",
        default=os.getenv("CONFIG_PATH", "config/renewal.yaml"),
        help="Path to renewal.yaml configuration file (default: config/renewal.yaml)",
    )

    subparsers = parser.add_subparsers(dest="command")

    serve = subparsers.add_parser("serve", help="Run the control API with the scheduler started")
    serve.add_argument(
        "--host",
        default=os.getenv("HOST", "0.0.0.0"),
        help="Host to bind to (default: 0.0.0.0)",
    )
    serve.add_argument(
        "--port",
        type=int,
        default=int(os.getenv("PORT", "8080")),
        help="Port to bind to (default: 8080)",
    )
    serve.add_argument(
        "--reload",
        action="store_true",
        default=os.getenv("RELOAD", "false").lower() == "true",
        help="Enable auto-reload for development (default: false)",
    )
    serve.set_defaults(handler=_serve)

    run_once = subparsers.add_parser("run-once", help="Run a single renewal pass and print its summary")
    run_once.set_defaults(handler=_run_once)

    args = parser.parse_args()
    if args.command is None:
        parser.print_help()
        sys.exit(2)

    # Set environment variables for application
    os.environ["LOG_LEVEL"] = args.log_level
    os.environ["LOG_FORMAT"] = args.log_format
    os.environ["CONFIG_PATH"] = args.config

    args.handler(args)


if __name__ == "__main__":
    main()
