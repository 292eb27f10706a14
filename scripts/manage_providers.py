"""
Manage CloudSync providers and the git working tree.

Usage:
    python scripts/manage_providers.py list
    python scripts/manage_providers.py add s3 "Backup bucket" --set bucket=my-bucket --set region=us-east-1
    python scripts/manage_providers.py add github "Repo" --set token=ghp_xxx --set repo=me/data
    python scripts/manage_providers.py update <id> --name "New name" --set branch=dev --disable
    python scripts/manage_providers.py delete <id>
    python scripts/manage_providers.py activate <id>
    python scripts/manage_providers.py test <id>
    python scripts/manage_providers.py git init|gitignore|commit|push|pull|status [-m MESSAGE]
"""
import asyncio
import logging
import sys
import os
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))
os.chdir(Path(__file__).parent.parent)

from config import load_config
from storage.exceptions import CloudSyncError
from sync import CloudSyncService

logger = logging.getLogger(__name__)

SECRET_FIELDS = {"token", "password", "secret_access_key", "passphrase"}


def parse_settings(settings: list) -> dict:
    """Turn ["key=value", ...] into a dict."""
    result = {}
    for item in settings or []:
        if "=" not in item:
            raise SystemExit(f"Invalid --set value (expected KEY=VALUE): {item}")
        key, value = item.split("=", 1)
        result[key.strip()] = value
    return result


def print_provider(provider, active_id) -> None:
    marker = " [active]" if provider.id == active_id else ""
    state = "enabled" if provider.enabled else "disabled"
    print(f"{provider.id}  {provider.type.value:<7} {state:<9} {provider.name}{marker}")
    for key, value in provider.config.model_dump().items():
        if value in (None, ""):
            continue
        if key in SECRET_FIELDS:
            value = "***"
        print(f"    {key}: {value}")


async def run_git(service: CloudSyncService, action: str, message=None) -> bool:
    git = service.git
    if action == "init":
        result = await git.init()
    elif action == "gitignore":
        result = git.write_gitignore()
    elif action == "commit":
        result = await git.commit(message)
    elif action == "push":
        result = await git.push()
    elif action == "pull":
        result = await git.pull()
    else:
        result = await git.status()

    print(result.message)
    if result.output:
        print(result.output)
    return result.success


async def main():
    """Main entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="CloudSync provider management")
    parser.add_argument(
        "--config",
        type=str,
        help="Path to config file (default: config/config.yaml)"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("list", help="List registered providers")

    add = sub.add_parser("add", help="Register a provider")
    add.add_argument("type", choices=["s3", "webdav", "github", "sftp"])
    add.add_argument("name")
    add.add_argument("--set", action="append", default=[], metavar="KEY=VALUE",
                     help="Config field (repeatable)")
    add.add_argument("--disabled", action="store_true", help="Register as disabled")

    update = sub.add_parser("update", help="Update a provider")
    update.add_argument("id")
    update.add_argument("--name")
    update.add_argument("--set", action="append", default=[], metavar="KEY=VALUE",
                        help="Config field to change (repeatable)")
    toggle = update.add_mutually_exclusive_group()
    toggle.add_argument("--enable", action="store_true")
    toggle.add_argument("--disable", action="store_true")

    delete = sub.add_parser("delete", help="Delete a provider")
    delete.add_argument("id")

    activate = sub.add_parser("activate", help="Select the active github provider")
    activate.add_argument("id")

    test = sub.add_parser("test", help="Test a provider's connection")
    test.add_argument("id")

    git = sub.add_parser("git", help="Git working tree commands for the active github provider")
    git.add_argument("action", choices=["init", "gitignore", "commit", "push", "pull", "status"])
    git.add_argument("-m", "--message", help="Commit message")

    args = parser.parse_args()

    # Load config
    config = load_config(args.config)

    # Configure logging
    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format=config.log_format
    )

    service = CloudSyncService(config)
    await service.start()
    registry = service.registry

    try:
        if args.command == "list":
            providers = registry.list()
            if not providers:
                print("No providers registered.")
            for provider in providers:
                print_provider(provider, registry.active_id)

        elif args.command == "add":
            provider = registry.add(
                args.type,
                args.name,
                parse_settings(args.set),
                enabled=not args.disabled,
            )
            print(f"Saved provider {provider.id}")
            print_provider(provider, registry.active_id)

        elif args.command == "update":
            enabled = True if args.enable else False if args.disable else None
            provider = registry.update(
                args.id,
                name=args.name,
                enabled=enabled,
                config=parse_settings(args.set),
            )
            print(f"Updated provider {provider.id}")
            print_provider(provider, registry.active_id)

        elif args.command == "delete":
            if not registry.delete(args.id):
                print(f"Provider not found: {args.id}")
                sys.exit(1)
            print(f"Deleted provider {args.id}")

        elif args.command == "activate":
            if not registry.set_active(args.id):
                print(f"Not a registered github provider: {args.id}")
                sys.exit(1)
            print(f"Active github provider: {args.id}")

        elif args.command == "test":
            success, message = await service.test_provider(args.id)
            print(message)
            sys.exit(0 if success else 1)

        else:
            ok = await run_git(service, args.action, args.message)
            sys.exit(0 if ok else 1)

    except CloudSyncError as e:
        logger.error(str(e))
        sys.exit(2)


if __name__ == "__main__":
    asyncio.run(main())
