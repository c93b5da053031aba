# src/todu/cli/commands.py

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable
from typing import Any, cast

from ..core.state import AppState
from ..tasks.task_models import Task
from ..tasks.task_query import FilterCriteria
from .bootstrap import read_import, write_export

CommandEmitter = Callable[[str], None]
CommandHandler2 = Callable[[AppState, list[str]], str]
CommandHandler3 = Callable[[AppState, list[str], CommandEmitter | None], str]
CommandHandler = CommandHandler2 | CommandHandler3

logger = logging.getLogger(__name__)


class CommandRegistry:
    """Simple slash-command registry used by the console connector (/help, /add, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    def handle(
        self,
        state: AppState,
        line: str,
        emit: CommandEmitter | None = None,
    ) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            nparams = len(inspect.signature(handler).parameters)
        except (TypeError, ValueError):
            nparams = 3

        if nparams >= 3:
            h3 = cast(CommandHandler3, handler)
            return h3(state, args, emit)

        h2 = cast(CommandHandler2, handler)
        return h2(state, args)

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


# ---- helpers ----


def _parse_task_tokens(tokens: list[str]) -> dict[str, Any]:
    """
    Split "/add"-style tokens into fields:
      due:2024-05-01   p:high   #Work   everything else -> text
    Fields not mentioned are left out of the result.
    """
    out: dict[str, Any] = {}
    words: list[str] = []
    for tok in tokens:
        low = tok.lower()
        if low.startswith("due:"):
            out["due_date"] = tok[4:] or None
        elif low.startswith(("p:", "priority:")):
            out["priority"] = tok.split(":", 1)[1]
        elif tok.startswith("#") and len(tok) > 1:
            out["category"] = tok[1:]
        else:
            words.append(tok)
    if words:
        out["text"] = " ".join(words)
    return out


def _resolve(state: AppState, ref: str) -> str:
    """Row number from the last /list -> task id; anything else is taken as an id."""
    if ref.isdigit():
        n = int(ref)
        if 1 <= n <= len(state.last_listing):
            return state.last_listing[n - 1]
    return ref


def _format_task(n: int, task: Task) -> str:
    mark = "x" if task.completed else " "
    due = f", due {task.due_date.isoformat()}" if task.due_date else ""
    return f"{n:>3}. [{mark}] {task.text} ({task.priority.value}, {task.category}{due})  id={task.id}"


_LIST_KEYS = {
    "status": "status",
    "p": "priority",
    "priority": "priority",
    "cat": "category",
    "category": "category",
    "due": "due",
    "q": "search",
    "search": "search",
    "sort": "sort_key",
    "dir": "sort_direction",
}


# ---- commands ----


def cmd_help(state: AppState, args: list[str]) -> str:
    return registry.build_help()


def cmd_add(state: AppState, args: list[str]) -> str:
    fields = _parse_task_tokens(args)
    task = state.engine.add_task(
        fields.get("text", ""),
        due_date=fields.get("due_date"),
        priority=fields.get("priority"),
        category=fields.get("category"),
    )
    if task is None:
        return "Task not added: text is required (and due:/p: must be valid)."
    return f"Added: {task.text} (id={task.id})"


def cmd_list(state: AppState, args: list[str]) -> str:
    """
    /list                          -> repeat last filter (or stored sort preference)
    /list status=pending sort=priority dir=asc q=milk due=today cat=Work p=high
    /list all                      -> clear filters
    """
    if args == ["all"]:
        state.last_filters = {}
    elif args:
        filters: dict[str, str] = {}
        for arg in args:
            key, sep, value = arg.partition("=")
            name = _LIST_KEYS.get(key.lower())
            if not sep or name is None:
                return f"Unknown filter: {arg}. Keys: {', '.join(sorted(_LIST_KEYS))}."
            filters[name] = value
        state.last_filters = filters

    criteria_src: dict[str, Any] = {}
    if "sort_key" not in state.last_filters:
        prefs = state.store.load_settings()
        criteria_src = {"sortBy": prefs.get("sortBy"), "sortOrder": prefs.get("sortOrder")}
    criteria_src.update(state.last_filters)

    tasks = state.engine.query(FilterCriteria.from_mapping(criteria_src))
    state.last_listing = [t.id for t in tasks]
    if not tasks:
        return "No tasks."
    return "\n".join(_format_task(i, t) for i, t in enumerate(tasks, start=1))


def cmd_done(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /done <n|id> [more...]"
    if len(args) == 1:
        task = state.engine.toggle_completion(_resolve(state, args[0]))
        if task is None:
            return f"No task {args[0]}."
        return f"{'Completed' if task.completed else 'Reopened'}: {task.text}"
    done = state.engine.bulk_complete([_resolve(state, a) for a in args])
    return f"Completed {len(done)} task(s)."


def cmd_edit(state: AppState, args: list[str]) -> str:
    """
    /edit <n|id> new text words due:2024-05-01 p:low #Home
    due: with no value clears the due date.
    """
    if len(args) < 2:
        return "Usage: /edit <n|id> [text...] [due:YYYY-MM-DD] [p:low|medium|high] [#category]"
    task = state.engine.update_task(_resolve(state, args[0]), **_parse_task_tokens(args[1:]))
    if task is None:
        return "Task not updated: unknown task or invalid value."
    return f"Updated: {task.text}"


def cmd_rm(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /rm <n|id> [more...]"
    if len(args) == 1:
        task = state.engine.delete_task(_resolve(state, args[0]))
        return f"Deleted: {task.text}" if task else f"No task {args[0]}."
    removed = state.engine.bulk_delete([_resolve(state, a) for a in args])
    return f"Deleted {len(removed)} task(s)."


def cmd_move(state: AppState, args: list[str]) -> str:
    """Positions are 1-based in the stored order (/list sort=created_at keeps it close)."""
    if len(args) != 2 or not all(a.isdigit() for a in args):
        return "Usage: /move <from> <to>"
    ok = state.engine.reorder(int(args[0]) - 1, int(args[1]) - 1)
    return "Moved." if ok else f"Positions must be between 1 and {len(state.engine)}."


def cmd_cat(state: AppState, args: list[str]) -> str:
    if len(args) < 2:
        return "Usage: /cat <category> <n|id> [more...]"
    changed = state.engine.bulk_set_category([_resolve(state, a) for a in args[1:]], args[0])
    return f"Moved {len(changed)} task(s) to {args[0]}."


def cmd_cats(state: AppState, args: list[str]) -> str:
    in_use = state.engine.categories()
    known = state.store.load_categories()
    extra = [c for c in known if c not in in_use]
    lines = ["Categories in use: " + (", ".join(in_use) or "-")]
    if extra:
        lines.append("Other saved categories: " + ", ".join(extra))
    return "\n".join(lines)


def cmd_stats(state: AppState, args: list[str]) -> str:
    s = state.engine.statistics()
    cats = ", ".join(f"{c.name}={c.count}" for c in s.categories) or "-"
    return (
        "Statistics:\n"
        f"  Total: {s.total}  Completed: {s.completed}  Pending: {s.pending}  Rate: {s.completion_rate}%\n"
        f"  Priority: high={s.by_priority['high']} medium={s.by_priority['medium']} low={s.by_priority['low']}\n"
        f"  Today: completed={s.completed_today} due={s.due_today}  Overdue: {s.overdue}\n"
        f"  Categories: {cats}\n"
        f"  Last 7 days: created={s.this_week.created} completed={s.this_week.completed}\n"
        f"  Last 30 days: created={s.this_month.created} completed={s.this_month.completed}"
    )


def cmd_export(state: AppState, args: list[str]) -> str:
    if len(args) != 1:
        return "Usage: /export <path.json>"
    try:
        path = write_export(state, args[0])
    except OSError:
        logger.exception("Export failed path=%s", args[0])
        return f"Export failed: could not write {args[0]}."
    return f"Exported to {path}."


def cmd_import(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    if len(args) != 1:
        return "Usage: /import <path.json>"
    if emit:
        emit(f"Importing {args[0]}...")
    if not read_import(state, args[0]):
        return "Import failed: file is missing or not a JSON object."
    return f"Imported. {len(state.engine)} task(s) loaded."


def cmd_storage(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    if emit:
        emit("Probing storage capacity...")
    info = state.store.storage_info()
    if info is None:
        return "Storage info unavailable."
    return (
        "Storage:\n"
        f"  tasks={info.tasks_size}B settings={info.settings_size}B "
        f"theme={info.dark_mode_size}B categories={info.categories_size}B\n"
        f"  total={info.total_size}B available~{info.available_size}B used={info.usage_percentage:.1f}%"
    )


def cmd_purge(state: AppState, args: list[str]) -> str:
    if args and not args[0].isdigit():
        return "Usage: /purge [days]"
    days = int(args[0]) if args else int(state.store.load_settings().get("autoDeleteCompletedDays", 30))
    removed = state.engine.purge_completed(days)
    return f"Purged {len(removed)} completed task(s) older than {days} day(s)."


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("add", cmd_add, help_text="Add a task: /add text [due:YYYY-MM-DD] [p:high] [#category].")
registry.register("list", cmd_list, help_text="List tasks: /list [status=..] [p=..] [cat=..] [due=..] [q=..] [sort=..] [dir=..].", aliases=["ls"])
registry.register("done", cmd_done, help_text="Toggle one task, or complete several: /done 1 3.")
registry.register("edit", cmd_edit, help_text="Edit a task: /edit 2 new text due:2024-05-01 p:low #Home.")
registry.register("rm", cmd_rm, help_text="Delete tasks: /rm 1 [2 ...].", aliases=["del"])
registry.register("move", cmd_move, help_text="Reorder: /move <from> <to>.")
registry.register("cat", cmd_cat, help_text="Set category for tasks: /cat Work 1 2.")
registry.register("cats", cmd_cats, help_text="Show categories.")
registry.register("stats", cmd_stats, help_text="Show statistics.")
registry.register("export", cmd_export, help_text="Export everything to a JSON file.")
registry.register("import", cmd_import, help_text="Import a JSON export (partial documents are fine).")
registry.register("storage", cmd_storage, help_text="Storage usage diagnostics.")
registry.register("purge", cmd_purge, help_text="Delete completed tasks older than N days: /purge [days].")
