"""
grocy-sync CLI - Command Line Interface

Offline-capable Grocy shopping list client: one-shot sync, list and item
actions against the local cache, configuration and daemon management.
"""

import argparse
import getpass
import logging
import os
import sys
from pathlib import Path
from typing import Optional, Tuple

from dotenv import load_dotenv

from . import __version__
from .config import ConfigManager, GrocySyncConfig
from .filtering import FilterState, display_name
from .models import GroupHeader, ShoppingListItem

logger = logging.getLogger(__name__)

# How long one-shot commands wait for a sync cycle or action to settle
WAIT_TIMEOUT_SECONDS = 120


def setup_logging(level: str = "INFO") -> None:
    """Setup basic logging for CLI commands"""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format='%(asctime)s - %(levelname)s - %(message)s',
        datefmt='%H:%M:%S'
    )


def _open_sync(args, download: bool = True):
    """
    Load configuration and build a sync orchestrator from the local cache

    Returns:
        ShoppingListSync, or None when no configuration exists
    """
    from .sync_orchestrator import create_sync

    config_manager = ConfigManager(args.config_dir)
    if not config_manager.config_exists() and not _has_env_config():
        print("❌ No configuration found. Run 'grocy-sync config init' first.")
        return None

    config = config_manager.load_config()
    sync = create_sync(config, config_manager.config_dir)
    sync.add_message_listener(lambda message: print(f"ℹ️  {message}"))
    sync.load_from_database(download_after_loading=download)
    if download and not sync.wait_until_idle(WAIT_TIMEOUT_SECONDS):
        print(f"⚠️  Sync still running after {WAIT_TIMEOUT_SECONDS}s, using cached data")
    return sync


def _has_env_config() -> bool:
    load_dotenv()
    return bool(os.getenv("GROCY_SERVER_URL"))


def _wait(sync) -> None:
    if not sync.wait_until_idle(WAIT_TIMEOUT_SECONDS):
        print(f"⚠️  Action still running after {WAIT_TIMEOUT_SECONDS}s")


def _format_item(sync, item: ShoppingListItem) -> str:
    products_by_id = {product.id: product for product in sync.snapshot.products}
    name = display_name(item, products_by_id) or "(unnamed)"
    check = "x" if item.done else " "

    amount = f"{item.amount:g}"
    unit_id = item.qu_id
    if unit_id is None and item.product_id in products_by_id:
        unit_id = products_by_id[item.product_id].qu_id_purchase
    unit = sync.get_quantity_unit_from_id(unit_id) if unit_id is not None else None
    if unit is not None:
        unit_name = unit.name_plural if item.amount != 1 and unit.name_plural else unit.name
        amount = f"{amount} {unit_name}"

    pending = " (not synced)" if item.has_pending_mutation else ""
    return f"  [{check}] #{item.id:<5} {name} - {amount}{pending}"


def _print_view(sync) -> None:
    view = sync.view
    shopping_list = sync.get_selected_shopping_list()
    list_name = shopping_list.name if shopping_list else f"List {view.selected_list_id}"

    status = "📴 offline" if view.is_offline else "🟢 online"
    print(f"🛒 {list_name} ({status})")
    print(f"   {view.undone_count} undone, {view.missing_count} below minimum stock")
    if view.notes:
        print(f"   📝 {view.notes}")

    if not view.rows:
        print("   (no items)")
        return

    for row in view.rows:
        if isinstance(row, GroupHeader):
            print(f"\n{row.name}")
        else:
            print(_format_item(sync, row))


def cmd_sync(args) -> int:
    """One-time sync with the Grocy server"""
    sync = None
    try:
        print("🔄 Syncing with Grocy server...")
        sync = _open_sync(args)
        if sync is None:
            return 1

        view = sync.view
        if view.is_offline:
            print("❌ Sync failed: server not reachable, showing cached data")
            return 1

        stats = sync.repository.get_statistics()
        print(f"✅ Sync completed: {stats['shopping_list_items']} items on "
              f"{stats['shopping_lists']} list(s)")
        if stats["pending_mutations"]:
            print(f"⚠️  {stats['pending_mutations']} change(s) still waiting to be synced")
        failure = sync.last_push_failure
        if failure is not None:
            print(f"⚠️  {failure}: {failure.cause}")
        return 0

    except Exception as e:
        print(f"❌ Sync failed: {e}")
        return 1
    finally:
        if sync:
            sync.close()


def cmd_show(args) -> int:
    """Show the selected shopping list"""
    sync = None
    try:
        sync = _open_sync(args, download=not args.offline)
        if sync is None:
            return 1

        if args.filter:
            sync.on_filter_changed(FilterState(args.filter))
        if args.search:
            sync.update_search_input(args.search)

        _print_view(sync)
        return 0

    except Exception as e:
        print(f"❌ Failed to show shopping list: {e}")
        return 1
    finally:
        if sync:
            sync.close()


def cmd_lists(args) -> int:
    """Show available shopping lists"""
    sync = None
    try:
        sync = _open_sync(args, download=not args.offline)
        if sync is None:
            return 1

        lists = sync.shopping_lists
        if not lists:
            print("❌ No shopping lists cached yet. Run 'grocy-sync sync' first.")
            return 1

        if not sync.is_multiple_lists_enabled():
            print("ℹ️  Multiple shopping lists are disabled, only the default list is used")

        print("📋 Shopping lists:")
        for shopping_list in lists:
            marker = "👉" if shopping_list.id == sync.selected_shopping_list_id else "  "
            print(f"  {marker} {shopping_list.id}. {shopping_list.name}")
        return 0

    except Exception as e:
        print(f"❌ Failed to get shopping lists: {e}")
        return 1
    finally:
        if sync:
            sync.close()


def cmd_select(args) -> int:
    """Select the shopping list other commands work on"""
    sync = None
    try:
        sync = _open_sync(args, download=False)
        if sync is None:
            return 1

        if not sync.is_multiple_lists_enabled() and args.list_id != 1:
            print("❌ Multiple shopping lists are disabled")
            return 1
        if sync.get_shopping_list_from_id(args.list_id) is None:
            print(f"❌ Unknown shopping list: {args.list_id}")
            return 1

        sync.select_shopping_list(args.list_id)
        print(f"✅ Selected {sync.get_selected_shopping_list().name}")
        return 0

    except Exception as e:
        print(f"❌ Failed to select shopping list: {e}")
        return 1
    finally:
        if sync:
            sync.close()


def cmd_toggle(args) -> int:
    """Mark an item done or undone"""
    sync = None
    try:
        sync = _open_sync(args)
        if sync is None:
            return 1

        sync.toggle_item(args.item_id)
        _wait(sync)

        item = next((i for i in sync.snapshot.items if i.id == args.item_id), None)
        if item is None:
            print(f"❌ Unknown item: {args.item_id}")
            return 1
        state = "done" if item.done else "undone"
        if item.has_pending_mutation:
            print(f"📴 Item #{item.id} marked {state}, will sync when the server is reachable")
        else:
            print(f"✅ Item #{item.id} marked {state}")
        return 0

    except Exception as e:
        print(f"❌ Failed to toggle item: {e}")
        return 1
    finally:
        if sync:
            sync.close()


def cmd_delete(args) -> int:
    """Delete an item from its shopping list"""
    sync = None
    try:
        sync = _open_sync(args)
        if sync is None:
            return 1
        if sync.is_offline:
            print("❌ Server not reachable, items can only be deleted online")
            return 1

        sync.delete_item_by_id(args.item_id)
        _wait(sync)

        if any(item.id == args.item_id for item in sync.snapshot.items):
            print(f"❌ Item #{args.item_id} was not deleted")
            return 1
        print(f"✅ Deleted item #{args.item_id}")
        return 0

    except Exception as e:
        print(f"❌ Failed to delete item: {e}")
        return 1
    finally:
        if sync:
            sync.close()


def cmd_clear_done(args) -> int:
    """Delete all done items of the selected list"""
    sync = None
    try:
        sync = _open_sync(args)
        if sync is None:
            return 1
        if sync.is_offline:
            print("❌ Server not reachable, done items can only be cleared online")
            return 1

        sync.clear_done_items()
        _wait(sync)
        _print_view(sync)
        return 0

    except Exception as e:
        print(f"❌ Failed to clear done items: {e}")
        return 1
    finally:
        if sync:
            sync.close()


def cmd_add_missing(args) -> int:
    """Add all products below minimum stock to the selected list"""
    sync = None
    try:
        sync = _open_sync(args)
        if sync is None:
            return 1
        if sync.is_offline:
            print("❌ Server not reachable, missing products can only be added online")
            return 1

        sync.add_missing_items()
        _wait(sync)
        _print_view(sync)
        return 0

    except Exception as e:
        print(f"❌ Failed to add missing products: {e}")
        return 1
    finally:
        if sync:
            sync.close()


def cmd_start(args) -> int:
    """Start daemon for continuous sync"""
    from .daemon import DaemonManager

    try:
        config_manager = ConfigManager(args.config_dir)
        if not config_manager.config_exists():
            print("❌ No configuration found. Run 'grocy-sync config init' first.")
            return 1

        config = config_manager.load_config()
        print(f"🚀 Starting grocy-sync daemon for {config.server_url} "
              f"(every {config.sync_interval_seconds}s)...")

        daemon = DaemonManager(config, config_manager.config_dir)
        return daemon.start_daemon(foreground=args.foreground)

    except Exception as e:
        print(f"❌ Failed to start daemon: {e}")
        return 1


def cmd_stop(args) -> int:
    """Stop running daemon"""
    from .daemon import DaemonManager

    try:
        config_manager = ConfigManager(args.config_dir)
        config = None
        if config_manager.config_exists():
            config = config_manager.load_config()

        daemon = DaemonManager(config, config_manager.config_dir)
        return daemon.stop_daemon()

    except Exception as e:
        print(f"❌ Failed to stop daemon: {e}")
        return 1


def cmd_status(args) -> int:
    """Show daemon status"""
    from .daemon import DaemonManager

    try:
        config_manager = ConfigManager(args.config_dir)
        config = None
        if config_manager.config_exists():
            config = config_manager.load_config()

        daemon = DaemonManager(config, config_manager.config_dir)
        status = daemon.get_status()

        if status['running']:
            print("✅ grocy-sync daemon is running")
            print(f"   PID: {status.get('pid')}")
            print(f"   Started: {status.get('started')}")
            print(f"   Memory: {status.get('memory_mb')}MB")
            if config:
                print(f"   Server: {config.server_url}")
                print(f"   Interval: {config.sync_interval_seconds}s")
        else:
            print("⏹️ grocy-sync daemon is not running")
            if 'error' in status:
                print(f"   Error: {status['error']}")

        return 0

    except Exception as e:
        print(f"❌ Failed to get status: {e}")
        return 1


def _prompt_config(existing: Optional[GrocySyncConfig]) -> Tuple[GrocySyncConfig, bool]:
    """Ask for connection settings; returns the config and whether it was confirmed"""
    config = existing or GrocySyncConfig()

    default_url = f" [{config.server_url}]" if config.server_url else ""
    server_url = input(f"Grocy server URL{default_url}: ").strip() or config.server_url
    api_key = getpass.getpass("Grocy API key (leave empty to keep): ").strip() or config.api_key

    interval = input(f"Sync interval in seconds [{config.sync_interval_seconds}]: ").strip()
    if interval:
        try:
            config.sync_interval_seconds = max(30, int(interval))
        except ValueError:
            print("⚠️  Invalid interval, keeping the current value")

    multiple = input("Use multiple shopping lists? (y/n) "
                     f"[{'y' if config.multiple_shopping_lists else 'n'}]: ").strip().lower()
    if multiple:
        config.multiple_shopping_lists = multiple.startswith('y')

    config.server_url = server_url.rstrip('/')
    config.api_key = api_key
    return config, bool(server_url and api_key)


def cmd_config_init(config_manager: ConfigManager) -> int:
    from .exceptions import NetworkError
    from .grocy_client import GrocyClient

    existing = None
    if config_manager.config_exists():
        try:
            existing = config_manager.load_config()
        except ValueError as e:
            print(f"⚠️  Existing configuration is invalid, starting over: {e}")

    print("🔧 grocy-sync configuration")
    config, complete = _prompt_config(existing)
    if not complete:
        print("❌ Server URL and API key are required")
        return 1

    print("🔍 Testing connection...")
    client = GrocyClient(config.server_url, config.api_key,
                         timeout=config.request_timeout_seconds,
                         verify_ssl=config.verify_ssl)
    try:
        changed_time = client.get_db_changed_time()
        print(f"✅ Connected, server last changed at {changed_time}")
    except NetworkError as e:
        print(f"⚠️  Could not reach the server: {e}")
        retry = input("Save configuration anyway? (y/n): ").strip().lower()
        if retry != 'y':
            return 1

    config_manager.save_config(config)
    print(f"✅ Configuration saved to {config_manager.get_config_location()}")
    return 0


def cmd_config(args) -> int:
    """Configuration management"""
    try:
        config_manager = ConfigManager(args.config_dir)

        if args.action == "init":
            return cmd_config_init(config_manager)

        elif args.action == "show":
            if not config_manager.config_exists():
                print("❌ No configuration found. Run 'grocy-sync config init' first.")
                return 1

            config = config_manager.load_config()
            print("⚙️ Current grocy-sync Configuration:")
            print(f"  Server: {config.server_url}")
            print(f"  API key: {'*' * 8}{config.api_key[-4:]}")
            print(f"  Sync interval: {config.sync_interval_seconds} seconds")
            print(f"  Multiple shopping lists: {'enabled' if config.multiple_shopping_lists else 'disabled'}")
            print(f"  Request timeout: {config.request_timeout_seconds} seconds")
            print(f"  Cache: {config_manager.get_resource_path(config.database_path)}")
            return 0

        elif args.action == "check":
            if not config_manager.config_exists():
                print("❌ No configuration found. Run 'grocy-sync config init' first.")
                return 1

            print("🔍 Validating configuration...")
            try:
                config_manager.load_config()
                print("✅ Configuration is valid")
                return 0
            except Exception as e:
                print(f"❌ Configuration validation failed: {e}")
                return 1

        else:
            print(f"❌ Unknown config action: {args.action}")
            return 1

    except Exception as e:
        print(f"❌ Config command failed: {e}")
        return 1


def create_parser() -> argparse.ArgumentParser:
    """Create the main argument parser"""
    parser = argparse.ArgumentParser(
        prog="grocy-sync",
        description="Offline-capable shopping list sync for Grocy",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  grocy-sync config init           # Configure server URL and API key
  grocy-sync sync                  # One-time sync with the server
  grocy-sync show                  # Show the selected shopping list
  grocy-sync show --filter undone  # Only items not yet done
  grocy-sync show --search milk    # Search by product name or note
  grocy-sync lists                 # Show available shopping lists
  grocy-sync select 2              # Work on shopping list #2
  grocy-sync toggle 17             # Mark item #17 done/undone
  grocy-sync clear-done            # Delete done items of the selected list
  grocy-sync start                 # Start daemon mode

For detailed help on any command, use: grocy-sync <command> --help
        """
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"grocy-sync {__version__}"
    )

    # Global options
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging"
    )

    parser.add_argument(
        "--config-dir",
        type=Path,
        help="Directory containing configuration and cache (default: user config directory)"
    )

    # Subcommands
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Config command
    config_parser = subparsers.add_parser(
        "config",
        help="Configuration management",
        description="Create, view or validate configuration"
    )
    config_parser.add_argument(
        "action",
        choices=["init", "show", "check"],
        help="Configuration action to perform"
    )

    # Sync command
    subparsers.add_parser(
        "sync",
        help="One-time sync with the Grocy server",
        description="Download changed data and push offline changes"
    )

    # Show command
    show_parser = subparsers.add_parser(
        "show",
        help="Show the selected shopping list",
        description="Show items of the selected shopping list grouped by product group"
    )
    show_parser.add_argument(
        "--search",
        help="Only items whose product name, description or note contains the text"
    )
    show_parser.add_argument(
        "--filter",
        choices=[state.value for state in FilterState],
        help="Only missing or undone items"
    )
    show_parser.add_argument(
        "--offline",
        action="store_true",
        help="Use cached data without contacting the server"
    )

    # Lists command
    lists_parser = subparsers.add_parser(
        "lists",
        help="Show available shopping lists",
        description="Show shopping lists known to the local cache"
    )
    lists_parser.add_argument(
        "--offline",
        action="store_true",
        help="Use cached data without contacting the server"
    )

    # Select command
    select_parser = subparsers.add_parser(
        "select",
        help="Select a shopping list",
        description="Select the shopping list other commands work on"
    )
    select_parser.add_argument("list_id", type=int, help="Shopping list id (see 'grocy-sync lists')")

    # Item commands
    toggle_parser = subparsers.add_parser(
        "toggle",
        help="Mark an item done or undone",
        description="Toggle the done status of an item; works offline"
    )
    toggle_parser.add_argument("item_id", type=int, help="Item id (see 'grocy-sync show')")

    delete_parser = subparsers.add_parser(
        "delete",
        help="Delete an item",
        description="Delete an item from its shopping list"
    )
    delete_parser.add_argument("item_id", type=int, help="Item id (see 'grocy-sync show')")

    subparsers.add_parser(
        "clear-done",
        help="Delete done items of the selected list",
        description="Delete every item marked done on the selected shopping list"
    )

    subparsers.add_parser(
        "add-missing",
        help="Add products below minimum stock",
        description="Add all products below their minimum stock amount to the selected list"
    )

    # Start daemon
    start_parser = subparsers.add_parser(
        "start",
        help="Start daemon for continuous sync",
        description="Start background daemon to sync continuously at configured intervals"
    )
    start_parser.add_argument(
        "--foreground",
        action="store_true",
        help="Run in foreground instead of background"
    )

    # Stop daemon
    subparsers.add_parser(
        "stop",
        help="Stop running daemon",
        description="Stop background sync daemon"
    )

    # Status
    subparsers.add_parser(
        "status",
        help="Show daemon status",
        description="Display current daemon status"
    )

    return parser


def main() -> int:
    """Main CLI entry point"""
    parser = create_parser()
    args = parser.parse_args()

    # Setup logging
    log_level = "DEBUG" if args.verbose else "WARNING"
    setup_logging(log_level)

    # Handle no command
    if not args.command:
        parser.print_help()
        return 0

    # Route to command handlers
    command_handlers = {
        "config": cmd_config,
        "sync": cmd_sync,
        "show": cmd_show,
        "lists": cmd_lists,
        "select": cmd_select,
        "toggle": cmd_toggle,
        "delete": cmd_delete,
        "clear-done": cmd_clear_done,
        "add-missing": cmd_add_missing,
        "start": cmd_start,
        "stop": cmd_stop,
        "status": cmd_status,
    }

    handler = command_handlers.get(args.command)
    if handler:
        try:
            return handler(args)
        except KeyboardInterrupt:
            print("\n⏹️ Cancelled by user")
            return 130  # Standard exit code for Ctrl+C
        except Exception as e:
            logger.exception("Unexpected error in command handler")
            print(f"❌ Unexpected error: {e}")
            return 1
    else:
        print(f"❌ Unknown command: {args.command}")
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
