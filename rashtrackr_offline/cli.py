"""Command-line interface for the RashTrackr offline cache controller."""

import argparse
import json
import os
import sys
import traceback
from pathlib import Path
from typing import Any, Dict

from rashtrackr_offline import __version__
from rashtrackr_offline.core.controller import OfflineCacheController


def load_config(config_path: Path) -> Dict[str, Any]:
    """Load configuration from JSON file."""
    try:
        with open(config_path, "r") as f:
            return json.load(f)
    except FileNotFoundError:
        print(f"Error: Configuration file not found: {config_path}")
        sys.exit(1)
    except json.JSONDecodeError as e:
        print(f"Error: Invalid JSON in configuration file: {e}")
        sys.exit(1)


def create_default_config() -> Dict[str, Any]:
    """Create a default configuration."""
    db_path = os.environ.get("RASHTRACKR_OFFLINE_DB_PATH", "rashtrackr_offline.db")
    log_level = os.environ.get("RASHTRACKR_OFFLINE_LOG_LEVEL", "INFO")

    return {
        "server": {"host": "127.0.0.1", "port": 8080},
        "origin": "http://127.0.0.1:3000",
        "cache": {"database_path": db_path, "version": "v1"},
        "precache": {"mode": "strict"},
        "sync": {"queue_backend": "sqlite", "min_interval_seconds": 300},
        "logging": {"level": log_level},
    }


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rashtrackr-offline",
        description="RashTrackr Offline - cache-first offline controller for the web client",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  rashtrackr-offline --config offline.json                 # Start with config file
  rashtrackr-offline --origin https://rashtrackr.example   # Front a different origin
  rashtrackr-offline --cache-version v2 --best-effort      # Roll to a new cache store
  rashtrackr-offline --generate-config                     # Write a default config file

Lifecycle endpoints (below server.admin_prefix, default /__offline__):
  POST install | activate | sync | push | notificationclick | queue
  GET  status | health
        """,
    )
    parser.add_argument("--config", "-c", type=Path, help="Path to configuration JSON file")
    parser.add_argument("--host", help="Host to bind to (default: 127.0.0.1)")
    parser.add_argument("--port", "-p", type=int, help="Port to bind to (default: 8080)")
    parser.add_argument("--origin", help="Origin of the client application")
    parser.add_argument("--cache-version", help="Version tag of the deployed client (names the cache store)")
    parser.add_argument(
        "--best-effort", action="store_true", help="Precache what is reachable instead of failing the install"
    )
    parser.add_argument("--generate-config", action="store_true", help="Generate a default configuration file and exit")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Set logging level (default: INFO)",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def apply_overrides(config: Dict[str, Any], args: argparse.Namespace) -> Dict[str, Any]:
    """Apply command line overrides on top of a loaded configuration."""
    if args.host:
        config.setdefault("server", {})["host"] = args.host
    if args.port:
        config.setdefault("server", {})["port"] = args.port
    if args.origin:
        config["origin"] = args.origin
    if args.cache_version:
        config.setdefault("cache", {})["version"] = args.cache_version
    if args.best_effort:
        config.setdefault("precache", {})["mode"] = "best_effort"
    if args.log_level:
        config.setdefault("logging", {})["level"] = args.log_level
    return config


def main(argv=None):
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)

    if args.generate_config:
        config_file = Path("rashtrackr_offline_config.json")
        with open(config_file, "w") as f:
            json.dump(create_default_config(), f, indent=2)
        print(f"Generated default configuration: {config_file}")
        return

    if args.config:
        config = load_config(args.config)
    else:
        config = create_default_config()
        print("Using default configuration. Use --generate-config to create a config file.")
    config = apply_overrides(config, args)

    host = config.get("server", {}).get("host", "127.0.0.1")
    port = config.get("server", {}).get("port", 8080)
    controller = None
    try:
        controller = OfflineCacheController(config)
        print(f"Starting RashTrackr Offline on {host}:{port} for {controller.origin}")
        print(f"Cache store: {controller.cache_name}")
        print("\nPress Ctrl+C to stop")
        sys.stdout.flush()
        controller.start(blocking=True)
    except KeyboardInterrupt:
        print("\nShutting down...")
        if controller is not None:
            controller.close()
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(1)
    except OSError as e:
        print(f"Error binding to {host}:{port}: {e}")
        if "Address already in use" in str(e):
            print(f"Port {port} is already in use. Try a different port with --port option.")
        elif "Permission denied" in str(e):
            print(f"Permission denied to bind to {host}:{port}. Try using a port above 1024.")
        sys.exit(1)
    except Exception as e:
        print(f"Error starting controller: {e}")
        print(f"Traceback: {traceback.format_exc()}")
        sys.exit(1)


if __name__ == "__main__":
    main()
