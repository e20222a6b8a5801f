"""CLI entry point for todoee."""

import argparse
import asyncio
import inspect
import json
import logging
import sys
import traceback
from datetime import datetime, timedelta
from pathlib import Path

from .config import load_config
from .context import AppContext
from .errors import (
    AiParsingError,
    AiServiceError,
    NotFoundError,
    PreconditionError,
    TodoeeError,
)
from .history import UndoStatus
from .models import Category, Entity, Operation, Priority, Todo, utcnow
from .service import BatchResult
from .sync import SyncStatus

logger = logging.getLogger(__name__)


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        # Add exception info if present
        if record.exc_info:
            log_data["exception"] = "".join(traceback.format_exception(*record.exc_info))

        try:
            return json.dumps(log_data)
        except (TypeError, ValueError):
            log_data["message"] = str(log_data["message"])
            return json.dumps(log_data)


def setup_logging(verbose: bool = False, log_level: str | None = None, json_output: bool = False) -> None:
    """Configure logging.

    Args:
        verbose: Enable debug logging (ignored if log_level is set).
        log_level: Explicit log level (warning, info, debug).
        json_output: Output logs as JSON lines for machine parsing.
    """
    if log_level:
        level_map = {
            "warning": logging.WARNING,
            "info": logging.INFO,
            "debug": logging.DEBUG,
        }
        level = level_map.get(log_level, logging.WARNING)
    else:
        level = logging.DEBUG if verbose else logging.WARNING

    handler = logging.StreamHandler()
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        formatter = logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(formatter)

    logging.basicConfig(
        level=level,
        handlers=[handler],
        force=True,
    )


# ==================== Helpers ====================


def _context(args: argparse.Namespace) -> AppContext:
    config = load_config(args.config)
    return AppContext(config, db_path=getattr(args, "db", None)).open()


def _parse_when(value: str | None) -> datetime | None:
    """Parse an ISO date or datetime; naive values are local time."""
    if value is None:
        return None
    try:
        parsed = datetime.fromisoformat(value.strip())
    except ValueError as e:
        raise PreconditionError(f"Invalid date '{value}', use YYYY-MM-DD[ HH:MM]") from e
    if parsed.tzinfo is None:
        parsed = parsed.astimezone()
    return parsed


def _local(value: datetime | None) -> str:
    return value.astimezone().strftime("%Y-%m-%d %H:%M") if value else "-"


def _priority_mark(priority: Priority) -> str:
    return {Priority.HIGH: "!!", Priority.MEDIUM: "! ", Priority.LOW: "  "}[priority]


def _format_todo_line(todo: Todo) -> str:
    box = "[x]" if todo.is_completed else "[ ]"
    due = f"  due {_local(todo.due_date)}" if todo.due_date else ""
    return f"{todo.id[:8]} {box} {_priority_mark(todo.priority)} {todo.title}{due}"


def _format_operation(op: Operation, oneline: bool) -> str:
    flag = " (undone)" if op.undone else ""
    line = (
        f"#{op.id} {op.operation_type.value:<10} {op.entity_type.value:<8} "
        f"{op.entity_id[:8]} '{op.label}'{flag}"
    )
    if oneline:
        return line
    details = [line, f"    date: {_local(op.created_at)}"]
    if op.message:
        details.append(f"    message: {op.message}")
    if op.previous_state and op.new_state:
        before, after = op.previous_state.data, op.new_state.data
        for key in sorted(after):
            if key in ("updated_at", "sync_status"):
                continue
            if before.get(key) != after.get(key):
                details.append(f"    {key}: {before.get(key)!r} -> {after.get(key)!r}")
    return "\n".join(details)


def _resolve_entity(ctx: AppContext, prefix: str) -> Entity:
    """Resolve an id prefix against todos, then categories."""
    try:
        return ctx.store.require_todo(ctx.store.resolve_todo_id(prefix))
    except NotFoundError:
        return ctx.store.require_category(ctx.store.resolve_category_id(prefix))


def _resolve_category(ctx: AppContext, name_or_id: str) -> Category:
    category = ctx.store.get_category_by_name(name_or_id)
    if category is not None:
        return category
    return ctx.store.require_category(ctx.store.resolve_category_id(name_or_id))


# ==================== Todo Commands ====================


async def cmd_add(args: argparse.Namespace) -> int:
    """Add a todo, optionally parsed from free text by the AI model."""
    ctx = _context(args)
    try:
        text = " ".join(args.title)
        fields = {
            "title": text,
            "description": args.description,
            "due_date": _parse_when(args.due),
            "reminder_at": _parse_when(args.reminder),
            "priority": Priority.parse(args.priority) if args.priority else Priority.MEDIUM,
        }
        category_name = args.category
        ai_metadata = None

        if args.ai:
            from .ai import TaskParser

            try:
                parsed = await TaskParser(ctx.config.ai).parse_task(text)
            except (AiServiceError, AiParsingError) as e:
                print(f"AI parsing unavailable ({e}); adding as plain text", file=sys.stderr)
            else:
                fields["title"] = parsed.title
                fields["description"] = fields["description"] or parsed.description
                fields["due_date"] = fields["due_date"] or parsed.due_date
                fields["reminder_at"] = fields["reminder_at"] or parsed.reminder_at
                if not args.priority:
                    fields["priority"] = parsed.todo_priority
                category_name = category_name or parsed.category
                ai_metadata = {"source_text": text, "model": ctx.config.ai.model}

        if category_name:
            category = ctx.service.get_or_create_category(
                category_name, is_ai_generated=ai_metadata is not None and not args.category
            )
            fields["category_id"] = category.id

        todo = ctx.service.add_todo(ai_metadata=ai_metadata, **fields)
        print(f"Added {_format_todo_line(todo)}")
        return 0
    finally:
        ctx.close()


def cmd_list(args: argparse.Namespace) -> int:
    """List todos."""
    ctx = _context(args)
    try:
        if args.overdue:
            todos = ctx.store.list_todos_overdue()
        elif args.upcoming:
            todos = ctx.store.list_todos_upcoming(limit=args.upcoming)
        elif args.category:
            todos = ctx.store.list_todos_by_category(_resolve_category(ctx, args.category).id)
        else:
            todos = ctx.store.list_todos(include_completed=args.all)

        if not todos:
            print("No todos.")
            return 0
        for todo in todos:
            print(_format_todo_line(todo))
        return 0
    finally:
        ctx.close()


def cmd_show(args: argparse.Namespace) -> int:
    """Show one todo in full."""
    ctx = _context(args)
    try:
        todo = ctx.store.require_todo(ctx.store.resolve_todo_id(args.id))
        category = ctx.store.get_category(todo.category_id) if todo.category_id else None
        print(f"id:          {todo.id}")
        print(f"title:       {todo.title}")
        print(f"description: {todo.description or '-'}")
        print(f"category:    {category.name if category else '-'}")
        print(f"priority:    {todo.priority.name.lower()}")
        print(f"due:         {_local(todo.due_date)}")
        print(f"reminder:    {_local(todo.reminder_at)}")
        print(f"completed:   {_local(todo.completed_at) if todo.is_completed else 'no'}")
        print(f"created:     {_local(todo.created_at)}")
        print(f"updated:     {_local(todo.updated_at)}")
        print(f"sync:        {todo.sync_status.value}")
        return 0
    finally:
        ctx.close()


def cmd_edit(args: argparse.Namespace) -> int:
    """Edit fields of an open todo."""
    ctx = _context(args)
    try:
        todo_id = ctx.store.resolve_todo_id(args.id)
        changes = {}
        if args.title is not None:
            changes["title"] = args.title
        if args.description is not None:
            changes["description"] = args.description or None
        if args.due is not None:
            changes["due_date"] = _parse_when(args.due) if args.due else None
        if args.reminder is not None:
            changes["reminder_at"] = _parse_when(args.reminder) if args.reminder else None
        if args.priority is not None:
            changes["priority"] = Priority.parse(args.priority)
        if args.category is not None:
            changes["category_id"] = (
                ctx.service.get_or_create_category(args.category).id if args.category else None
            )

        todo = ctx.service.edit_todo(todo_id, **changes)
        print(f"Updated {_format_todo_line(todo)}")
        return 0
    finally:
        ctx.close()


def cmd_done(args: argparse.Namespace) -> int:
    ctx = _context(args)
    try:
        todo = ctx.service.complete_todo(ctx.store.resolve_todo_id(args.id))
        print(f"Completed {_format_todo_line(todo)}")
        return 0
    finally:
        ctx.close()


def cmd_undone(args: argparse.Namespace) -> int:
    ctx = _context(args)
    try:
        todo = ctx.service.uncomplete_todo(ctx.store.resolve_todo_id(args.id))
        print(f"Reopened {_format_todo_line(todo)}")
        return 0
    finally:
        ctx.close()


def cmd_delete(args: argparse.Namespace) -> int:
    ctx = _context(args)
    try:
        todo = ctx.service.delete_todo(ctx.store.resolve_todo_id(args.id))
        print(f"Deleted '{todo.title}' (undo with: todoee undo)")
        return 0
    finally:
        ctx.close()


# ==================== Batch Commands ====================


def _report_batch(result: BatchResult, verb: str) -> int:
    for todo in result.changed:
        print(f"{verb} {_format_todo_line(todo)}")
    for ref, reason in result.failed.items():
        print(f"Skipped {ref}: {reason}", file=sys.stderr)
    print(f"{verb} {len(result.changed)} todo(s)")
    return 1 if result.failed else 0


def cmd_batch_done(args: argparse.Namespace) -> int:
    ctx = _context(args)
    try:
        return _report_batch(ctx.service.batch_complete(args.ids), "Completed")
    finally:
        ctx.close()


def cmd_batch_delete(args: argparse.Namespace) -> int:
    ctx = _context(args)
    try:
        return _report_batch(ctx.service.batch_delete(args.ids), "Deleted")
    finally:
        ctx.close()


def cmd_batch_priority(args: argparse.Namespace) -> int:
    ctx = _context(args)
    try:
        result = ctx.service.batch_set_priority(args.ids, args.priority)
        return _report_batch(result, "Updated")
    finally:
        ctx.close()


# ==================== Search / Export / Import ====================


def cmd_search(args: argparse.Namespace) -> int:
    """Fuzzy search on todo titles."""
    query = " ".join(args.query)
    ctx = _context(args)
    try:
        todos = ctx.store.search_todos(query, limit=args.limit)
        if not todos:
            print(f'No matches for "{query}"')
            return 0
        for todo in todos:
            print(_format_todo_line(todo))
        return 0
    finally:
        ctx.close()


def cmd_export(args: argparse.Namespace) -> int:
    ctx = _context(args)
    try:
        data = ctx.service.export_data(include_completed=not args.open_only)
    finally:
        ctx.close()

    output = args.output or f"todoee_export_{datetime.now().strftime('%Y%m%d_%H%M%S')}.json"
    Path(output).write_text(json.dumps(data, indent=2))
    print(f"Exported {len(data['todos'])} todos and {len(data['categories'])} categories to {output}")
    return 0


def cmd_import(args: argparse.Namespace) -> int:
    try:
        data = json.loads(Path(args.file).read_text())
    except OSError as e:
        raise PreconditionError(f"Cannot read {args.file}: {e}") from e
    except json.JSONDecodeError as e:
        raise PreconditionError(f"{args.file} is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise PreconditionError(f"{args.file} is not a todoee export")

    ctx = _context(args)
    try:
        todos, categories = ctx.service.import_data(data, replace_existing=args.replace)
        print(f"Imported {todos} todos and {categories} categories from {args.file}")
        return 0
    finally:
        ctx.close()


# ==================== Category Commands ====================


def cmd_category_add(args: argparse.Namespace) -> int:
    ctx = _context(args)
    try:
        category = ctx.service.add_category(args.name, color=args.color)
        print(f"Added category {category.id[:8]} {category.name}")
        return 0
    finally:
        ctx.close()


def cmd_category_list(args: argparse.Namespace) -> int:
    ctx = _context(args)
    try:
        categories = ctx.store.list_categories()
        if not categories:
            print("No categories.")
            return 0
        for category in categories:
            count = ctx.store.count_todos_in_category(category.id)
            ai = " (ai)" if category.is_ai_generated else ""
            print(f"{category.id[:8]} {category.name}{ai}  {count} todo(s)")
        return 0
    finally:
        ctx.close()


def cmd_category_rename(args: argparse.Namespace) -> int:
    ctx = _context(args)
    try:
        category = _resolve_category(ctx, args.category)
        renamed = ctx.service.rename_category(category.id, args.new_name, color=args.color)
        print(f"Renamed category {category.name} -> {renamed.name}")
        return 0
    finally:
        ctx.close()


def cmd_category_delete(args: argparse.Namespace) -> int:
    ctx = _context(args)
    try:
        category = ctx.service.delete_category(_resolve_category(ctx, args.category).id)
        print(f"Deleted category {category.name}")
        return 0
    finally:
        ctx.close()


# ==================== History Commands ====================


def cmd_undo(args: argparse.Namespace) -> int:
    ctx = _context(args)
    try:
        result = ctx.undo_engine.undo()
        print(result.message)
        return 1 if result.status == UndoStatus.UNAVAILABLE else 0
    finally:
        ctx.close()


def cmd_redo(args: argparse.Namespace) -> int:
    ctx = _context(args)
    try:
        result = ctx.undo_engine.redo()
        print(result.message)
        return 1 if result.status == UndoStatus.UNAVAILABLE else 0
    finally:
        ctx.close()


def cmd_log(args: argparse.Namespace) -> int:
    """Show recent operations, newest first."""
    ctx = _context(args)
    try:
        limit = args.limit or ctx.config.history.log_limit
        operations = ctx.oplog.list_recent(limit)
        if not operations:
            print("No history.")
            return 0
        for op in operations:
            print(_format_operation(op, args.oneline))
        return 0
    finally:
        ctx.close()


def cmd_diff(args: argparse.Namespace) -> int:
    """Summarize changes over the last N hours."""
    ctx = _context(args)
    try:
        since = utcnow() - timedelta(hours=args.hours)
        operations = [op for op in ctx.oplog.list_since(since) if not op.undone]
        if not operations:
            print(f"No changes in the last {args.hours}h.")
            return 0

        counts: dict[str, int] = {}
        for op in operations:
            key = f"{op.operation_type.value} {op.entity_type.value}"
            counts[key] = counts.get(key, 0) + 1

        print(f"Changes in the last {args.hours}h:")
        for key, count in sorted(counts.items()):
            print(f"  {key:<20} {count}")
        print()
        for op in operations:
            print(_format_operation(op, oneline=True))
        return 0
    finally:
        ctx.close()


def cmd_gc(args: argparse.Namespace) -> int:
    """Delete history entries older than the retention window."""
    ctx = _context(args)
    try:
        days = args.days if args.days is not None else ctx.config.history.retention_days
        if args.dry_run:
            count = ctx.oplog.count_older_than(days)
            print(f"Would remove {count} operation(s) older than {days} days")
            return 0
        removed = ctx.oplog.sweep(days)
        print(f"Removed {removed} operation(s) older than {days} days")
        return 0
    finally:
        ctx.close()


# ==================== Stash Commands ====================


def cmd_stash_push(args: argparse.Namespace) -> int:
    ctx = _context(args)
    try:
        entity = _resolve_entity(ctx, args.id)
        entry = ctx.stash.push(entity.id, message=args.message)
        print(f"Stashed {entry.entity_type.value} '{entity.label}'")
        return 0
    finally:
        ctx.close()


def cmd_stash_pop(args: argparse.Namespace) -> int:
    ctx = _context(args)
    try:
        entity = ctx.stash.pop()
        if entity is None:
            print("Stash is empty.")
            return 0
        print(f"Restored {entity.entity_type.value} '{entity.label}'")
        return 0
    finally:
        ctx.close()


def cmd_stash_list(args: argparse.Namespace) -> int:
    ctx = _context(args)
    try:
        entries = ctx.stash.list()
        if not entries:
            print("Stash is empty.")
            return 0
        for i, entry in enumerate(entries):
            message = f": {entry.message}" if entry.message else ""
            print(
                f"stash@{{{i}}} {entry.entity_type.value} '{entry.snapshot.label}' "
                f"({_local(entry.stashed_at)}){message}"
            )
        return 0
    finally:
        ctx.close()


def cmd_stash_clear(args: argparse.Namespace) -> int:
    ctx = _context(args)
    try:
        count = ctx.stash.clear()
        print(f"Dropped {count} stash entr{'y' if count == 1 else 'ies'}")
        return 0
    finally:
        ctx.close()


# ==================== Sync / Status ====================


async def cmd_sync(args: argparse.Namespace) -> int:
    """Run one sync pass against the configured remote."""
    ctx = _context(args)
    try:
        result = await ctx.reconciler.sync()
    finally:
        await ctx.aclose()

    if result.status == SyncStatus.NOT_CONFIGURED:
        print("Sync not configured. Set TODOEE_REMOTE_URL to enable it.")
        return 0
    if result.status == SyncStatus.OFFLINE:
        print(f"Offline: {result.error}. Changes stay pending until the next sync.")
        return 0
    if result.status == SyncStatus.FAILED:
        print(f"Sync failed: {result.error}", file=sys.stderr)
        return 1

    print(
        f"Synced: {result.uploaded} uploaded, {result.downloaded} downloaded, "
        f"{result.deleted} deletions sent, {result.conflicts} conflict(s)"
    )
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    """Show store and sync status."""
    ctx = _context(args)
    try:
        status_data = {
            "timestamp": utcnow().isoformat(),
            "database": str(ctx.store.db_path),
            "store": ctx.store.get_stats(),
            "history": ctx.oplog.get_stats(),
            "sync": ctx.reconciler.get_sync_status(),
        }
    finally:
        ctx.close()

    if args.json:
        print(json.dumps(status_data, indent=2))
        return 0

    store = status_data["store"]
    sync = status_data["sync"]
    print(f"Database: {status_data['database']}")
    print(f"  Todos: {store['todos_count']} ({store['todos_open']} open)")
    print(f"  Categories: {store['categories_count']}")
    print(f"  Stashed: {store['stash_count']}")
    print(f"  History entries: {status_data['history']['total_entries']}")
    print(f"Sync: {'configured' if sync['configured'] else 'not configured'}")
    print(f"  Pending rows: {sync['pending_rows']}")
    print(f"  Unsent deletions: {sync['tombstones']}")
    return 0


# ==================== Services ====================


async def cmd_daemon(args: argparse.Namespace) -> int:
    """Run reminders and periodic sync until interrupted."""
    from .daemon import ReminderDaemon

    ctx = _context(args)
    daemon = ReminderDaemon(
        ctx.store,
        ctx.config.notifications,
        reconciler=ctx.reconciler,
        sync_config=ctx.config.sync,
    )
    print("Starting todoee daemon (Ctrl+C to stop)")
    try:
        await daemon.run_forever()
    except (KeyboardInterrupt, asyncio.CancelledError):
        print("\nShutting down...")
    finally:
        await daemon.stop()
        await ctx.aclose()
    return 0


async def cmd_serve(args: argparse.Namespace) -> int:
    """Serve the sync protocol from a local SQLite database."""
    config = load_config(args.config)

    from .server import RemoteDB, create_app

    import uvicorn

    db = RemoteDB(args.db or config.server.db_path)
    db.connect()
    host = args.host or config.server.host
    port = args.port or config.server.port

    print("Starting todoee sync server")
    print(f"URL: http://{host}:{port}")

    app = create_app(db, token=config.server.token)
    try:
        verbose = getattr(args, "verbose", False)
        config_uvicorn = uvicorn.Config(
            app,
            host=host,
            port=port,
            log_level="info" if verbose else "warning",
        )
        server = uvicorn.Server(config_uvicorn)
        await server.serve()
    finally:
        db.close()

    return 0


# ==================== Parser ====================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="todoee",
        description="Todo manager with undo, stash and sync",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to config file (default: ~/.config/todoee/config.yaml)",
    )
    parser.add_argument(
        "--db",
        type=Path,
        default=None,
        help="Path to the database (overrides database.path, or server.db_path for serve)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["warning", "info", "debug"],
        default=None,
        help="Set log level explicitly (overrides -v/--verbose)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Output logs as JSON for machine parsing",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # add
    add_parser = subparsers.add_parser("add", help="Add a todo")
    add_parser.add_argument("title", nargs="+", help="Todo title (or free text with --ai)")
    add_parser.add_argument("-d", "--description", default=None)
    add_parser.add_argument("--due", default=None, help="Due date, YYYY-MM-DD[ HH:MM]")
    add_parser.add_argument("--reminder", default=None, help="Reminder time, YYYY-MM-DD HH:MM")
    add_parser.add_argument("-p", "--priority", default=None, help="low, medium or high")
    add_parser.add_argument("--category", default=None, help="Category name")
    add_parser.add_argument("--ai", action="store_true", help="Parse the text with the AI model")
    add_parser.set_defaults(func=cmd_add)

    # list
    list_parser = subparsers.add_parser("list", help="List todos")
    list_parser.add_argument("-a", "--all", action="store_true", help="Include completed todos")
    list_parser.add_argument("--category", default=None, help="Only this category")
    list_parser.add_argument("--overdue", action="store_true", help="Only overdue todos")
    list_parser.add_argument("--upcoming", type=int, default=None, metavar="N", help="Next N due todos")
    list_parser.set_defaults(func=cmd_list)

    # show
    show_parser = subparsers.add_parser("show", help="Show a todo")
    show_parser.add_argument("id", help="Todo id or prefix")
    show_parser.set_defaults(func=cmd_show)

    # edit
    edit_parser = subparsers.add_parser("edit", help="Edit an open todo")
    edit_parser.add_argument("id", help="Todo id or prefix")
    edit_parser.add_argument("--title", default=None)
    edit_parser.add_argument("-d", "--description", default=None, help="Empty string clears it")
    edit_parser.add_argument("--due", default=None, help="Empty string clears it")
    edit_parser.add_argument("--reminder", default=None, help="Empty string clears it")
    edit_parser.add_argument("-p", "--priority", default=None)
    edit_parser.add_argument("--category", default=None, help="Empty string clears it")
    edit_parser.set_defaults(func=cmd_edit)

    # done / undone / delete
    for name, func, help_text in (
        ("done", cmd_done, "Mark a todo completed"),
        ("undone", cmd_undone, "Reopen a completed todo"),
        ("delete", cmd_delete, "Delete a todo"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("id", help="Todo id or prefix")
        sub.set_defaults(func=func)

    # batch
    batch_parser = subparsers.add_parser("batch", help="Apply a command to several todos")
    batch_subparsers = batch_parser.add_subparsers(dest="batch_command", help="Batch commands")

    batch_done = batch_subparsers.add_parser("done", help="Complete several todos")
    batch_done.add_argument("ids", nargs="+", help="Todo ids or prefixes")
    batch_done.set_defaults(func=cmd_batch_done)

    batch_delete = batch_subparsers.add_parser("delete", help="Delete several todos")
    batch_delete.add_argument("ids", nargs="+", help="Todo ids or prefixes")
    batch_delete.set_defaults(func=cmd_batch_delete)

    batch_priority = batch_subparsers.add_parser("priority", help="Set the priority of several todos")
    batch_priority.add_argument("priority", help="low, medium, high or 1-3")
    batch_priority.add_argument("ids", nargs="+", help="Todo ids or prefixes")
    batch_priority.set_defaults(func=cmd_batch_priority)

    # search
    search_parser = subparsers.add_parser("search", help="Fuzzy search todo titles")
    search_parser.add_argument("query", nargs="+")
    search_parser.add_argument("-n", "--limit", type=int, default=20)
    search_parser.set_defaults(func=cmd_search)

    # export / import
    export_parser = subparsers.add_parser("export", help="Write todos and categories to JSON")
    export_parser.add_argument("-o", "--output", default=None, help="Output file")
    export_parser.add_argument("--open-only", action="store_true", help="Leave out completed todos")
    export_parser.set_defaults(func=cmd_export)

    import_parser = subparsers.add_parser("import", help="Load todos and categories from an export")
    import_parser.add_argument("file")
    import_parser.add_argument("--replace", action="store_true", help="Overwrite existing ids")
    import_parser.set_defaults(func=cmd_import)

    # category
    category_parser = subparsers.add_parser("category", help="Manage categories")
    category_subparsers = category_parser.add_subparsers(
        dest="category_command", help="Category commands"
    )

    category_add = category_subparsers.add_parser("add", help="Add a category")
    category_add.add_argument("name")
    category_add.add_argument("--color", default=None)
    category_add.set_defaults(func=cmd_category_add)

    category_list = category_subparsers.add_parser("list", help="List categories")
    category_list.set_defaults(func=cmd_category_list)

    category_rename = category_subparsers.add_parser("rename", help="Rename a category")
    category_rename.add_argument("category", help="Category name or id prefix")
    category_rename.add_argument("new_name")
    category_rename.add_argument("--color", default=None)
    category_rename.set_defaults(func=cmd_category_rename)

    category_delete = category_subparsers.add_parser("delete", help="Delete an unused category")
    category_delete.add_argument("category", help="Category name or id prefix")
    category_delete.set_defaults(func=cmd_category_delete)

    # undo / redo
    undo_parser = subparsers.add_parser("undo", help="Undo the last change")
    undo_parser.set_defaults(func=cmd_undo)
    redo_parser = subparsers.add_parser("redo", help="Redo the last undone change")
    redo_parser.set_defaults(func=cmd_redo)

    # log
    log_parser = subparsers.add_parser("log", help="Show history")
    log_parser.add_argument("-n", "--limit", type=int, default=None, help="Number of entries")
    log_parser.add_argument("--oneline", action="store_true", help="One line per entry")
    log_parser.set_defaults(func=cmd_log)

    # diff
    diff_parser = subparsers.add_parser("diff", help="Summarize recent changes")
    diff_parser.add_argument("--hours", type=int, default=24)
    diff_parser.set_defaults(func=cmd_diff)

    # stash
    stash_parser = subparsers.add_parser("stash", help="Park todos or categories")
    stash_subparsers = stash_parser.add_subparsers(dest="stash_command", help="Stash commands")

    stash_push = stash_subparsers.add_parser("push", help="Stash an entity")
    stash_push.add_argument("id", help="Todo or category id prefix")
    stash_push.add_argument("-m", "--message", default=None)
    stash_push.set_defaults(func=cmd_stash_push)

    stash_pop = stash_subparsers.add_parser("pop", help="Restore the newest stash entry")
    stash_pop.set_defaults(func=cmd_stash_pop)

    stash_list = stash_subparsers.add_parser("list", help="List stash entries")
    stash_list.set_defaults(func=cmd_stash_list)

    stash_clear = stash_subparsers.add_parser("clear", help="Drop all stash entries")
    stash_clear.set_defaults(func=cmd_stash_clear)

    # sync
    sync_parser = subparsers.add_parser("sync", help="Sync with the remote store")
    sync_parser.set_defaults(func=cmd_sync)

    # gc
    gc_parser = subparsers.add_parser("gc", help="Remove old history entries")
    gc_parser.add_argument("--days", type=int, default=None)
    gc_parser.add_argument("--dry-run", action="store_true")
    gc_parser.set_defaults(func=cmd_gc)

    # status
    status_parser = subparsers.add_parser("status", help="Show store and sync status")
    status_parser.add_argument(
        "--json",
        action="store_true",
        help="Output status as JSON",
    )
    status_parser.set_defaults(func=cmd_status)

    # daemon
    daemon_parser = subparsers.add_parser("daemon", help="Run reminders and periodic sync")
    daemon_parser.set_defaults(func=cmd_daemon)

    # serve
    serve_parser = subparsers.add_parser("serve", help="Run the sync server")
    serve_parser.add_argument("--host", type=str, default=None)
    serve_parser.add_argument("-p", "--port", type=int, default=None)
    serve_parser.set_defaults(func=cmd_serve)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(args.verbose, args.log_level, args.json_logs)

    if not args.command:
        parser.print_help()
        return 1

    # Group commands need their own subcommand
    for group in ("category", "stash", "batch"):
        if args.command == group and not getattr(args, f"{group}_command"):
            print(f"usage: todoee {group} <command>, see todoee {group} --help", file=sys.stderr)
            return 1

    func = args.func
    try:
        if inspect.iscoroutinefunction(func):
            return asyncio.run(func(args))
        return func(args)
    except TodoeeError as e:
        logger.debug("Command failed", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
