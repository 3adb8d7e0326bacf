# CLI interface for mcph
import argparse
import logging
import os
import sys
from pathlib import Path

from mcph import __version__
from mcph.advisor import (
    detect_project_tags,
    find_configuration_warnings,
    rank,
    recommend_for_project,
    score,
    suggest_optimizations,
)
from mcph.cards import RecordStore
from mcph.config import HelperContext, load_context
from mcph.merge import MERGE_STRATEGIES, materialize, merge_entry, reconcile, suggest_strategy
from mcph.models import DeploymentKind, NotFoundError, Scope, ServerCard, TodoState, TransitionError
from mcph.settings import SettingsStore
from mcph.status import StatusStore, render_report
from mcph.utils import (
    validate_card_data,
    validate_instance_reference,
    validate_minimum_servers,
    validate_variables,
)

# ABOUTME: Exit codes
# 0 = success, 1 = validation failure, 2 = unknown identifier, 3 = fatal
EXIT_SUCCESS = 0
EXIT_VALIDATION = 1
EXIT_NOT_FOUND = 2
EXIT_FATAL = 3

logger = logging.getLogger(__name__)


def parse_assignments(pairs: list[str] | None) -> dict[str, str]:
    """Parse repeated KEY=VALUE options.

    Raises:
        ValueError: If a pair has no '=' or an empty key
    """
    result: dict[str, str] = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise ValueError(f"Invalid variable '{pair}'. Use KEY=VALUE.")
        result[key.strip()] = value
    return result


def cmd_list(args: argparse.Namespace, context: HelperContext) -> int:
    """Execute list command.

    ABOUTME: Shows configured instances, or the card catalog with --available
    """
    if args.available:
        store = RecordStore.from_context(context)
        cards = store.active()
        if args.min_agent_rating is not None or args.min_human_rating is not None:
            qualifying = {card.id for card in store.by_min_rating(args.min_agent_rating, args.min_human_rating)}
            cards = [card for card in cards if card.id in qualifying]
        if not cards:
            print(f"No server cards found in {context.catalog_dir}")
            return EXIT_SUCCESS
        print(f"{len(cards)} server card(s) available:")
        for card in cards:
            marker = " [custom]" if card.custom else ""
            print(f"  {card.id} - {card.name} (score {score(card):.1f}){marker}")
        return EXIT_SUCCESS

    settings = SettingsStore(context)
    instances = settings.list_instances()
    if not instances:
        print(f"No MCP servers configured in {settings.settings_path}")
        return EXIT_SUCCESS

    print(f"{len(instances)} MCP server(s) configured:")
    for summary in instances:
        target = summary.entry.get("url") or summary.entry.get("command") or "?"
        print(f"  {summary.id} [{summary.scope.value}] {target}")
    return EXIT_SUCCESS


def cmd_search(args: argparse.Namespace, context: HelperContext) -> int:
    store = RecordStore.from_context(context)
    matches = store.search(args.keyword)
    if not matches:
        print(f"No server cards match '{args.keyword}'")
        return EXIT_SUCCESS

    for card in matches:
        print(f"  {card.id} - {card.name}: {card.description}")
    return EXIT_SUCCESS


def cmd_show(args: argparse.Namespace, context: HelperContext) -> int:
    """Execute show command.

    ABOUTME: Prints one card's deployment, ratings and declared variables
    """
    store = RecordStore.from_context(context)
    card = store.get(args.id)
    if card is None:
        print(f"Error: Unknown server card '{args.id}'")
        return EXIT_NOT_FOUND

    print(f"{card.name} ({card.id})")
    if card.description:
        print(f"  {card.description}")
    print(f"  Deployment: {card.deployment_kind.value}")
    print(f"  Status: {card.status.value}")
    print(f"  Ratings: agent={card.rating_a or '-'} human={card.rating_b or '-'} score={score(card):.1f}")
    if card.tags:
        print(f"  Tags: {', '.join(card.tags)}")
    if card.variables:
        print("  Variables:")
        for var in card.variables:
            flag = "required" if var.is_required else "optional"
            print(f"    {var.name} ({flag}) {var.description}".rstrip())
    return EXIT_SUCCESS


def cmd_add(args: argparse.Namespace, context: HelperContext) -> int:
    """Execute add command.

    ABOUTME: Values come from --var, then the project env file, then the process env
    ABOUTME: Missing required variables fail unless --allow-partial is given
    ABOUTME: Project scope stores values in the project env file, not in settings
    """
    store = RecordStore.from_context(context)
    card = store.get(args.id)
    if card is None:
        print(f"Error: Unknown server card '{args.id}'")
        return EXIT_NOT_FOUND

    settings = SettingsStore(context)
    provided = settings.resolve_variables(card.variable_names)
    provided.update(parse_assignments(args.var))

    check = validate_variables(card, provided)
    if not check.valid:
        print(f"Missing required variable(s) for '{card.id}':")
        for var in check.missing:
            print(f"  {var.name} {var.description}".rstrip())
        if not args.allow_partial:
            print("Provide them with --var KEY=VALUE or use --allow-partial.")
            return EXIT_VALIDATION

    document = settings.read()
    existing = document.instances.get(args.id)
    strategy = args.strategy or suggest_strategy(existing)
    if existing is not None and strategy == "preserve":
        print(f"Server '{args.id}' already exists and was not written by mcp-helper; left unchanged.")
        print("Use --strategy overwrite or --strategy merge to replace it.")
        return EXIT_SUCCESS

    scope = Scope(args.scope)
    if scope is Scope.PROJECT:
        values = {name: provided[name] for name in card.variable_names if provided.get(name)}
        if values:
            settings.write_project_variables(values)
            print(f"Stored {len(values)} variable(s) in {settings.env_path}")
        instance = materialize(card, {}, scope=scope)
    else:
        instance = materialize(card, provided, scope=scope)

    document.instances[args.id] = merge_entry(existing, instance.to_entry(), strategy)
    settings.write(document)

    print(f"Added '{args.id}' ({scope.value})")
    unresolved = instance.unresolved_placeholders()
    if unresolved and scope is Scope.GLOBAL:
        print(f"  Needs configuration: {', '.join(unresolved)}")
    return EXIT_SUCCESS


def cmd_remove(args: argparse.Namespace, context: HelperContext) -> int:
    settings = SettingsStore(context)
    if not settings.remove_instance(args.id):
        print(f"Error: Server '{args.id}' is not configured")
        return EXIT_NOT_FOUND

    print(f"Removed '{args.id}'")
    return EXIT_SUCCESS


def cmd_reconfigure(args: argparse.Namespace, context: HelperContext) -> int:
    """Execute reconfigure command.

    ABOUTME: Recomputes an instance from its latest card and prints the change list
    ABOUTME: --dry-run prints changes without writing
    """
    settings = SettingsStore(context)
    existing = settings.get_instance(args.id)
    if existing is None:
        print(f"Error: Server '{args.id}' is not configured")
        return EXIT_NOT_FOUND

    store = RecordStore.from_context(context)
    error = validate_instance_reference(args.id, existing.record_id, store)
    if error is not None:
        print(f"Error: {error.message}")
        return EXIT_VALIDATION

    result = reconcile(existing, store.get(existing.record_id))
    if not result.changed:
        print(f"'{args.id}' is up to date")
        return EXIT_SUCCESS

    print(f"Changes for '{args.id}':")
    for line in result.changes:
        print(f"  {line}")

    if args.dry_run:
        print("Dry run: nothing written.")
        return EXIT_SUCCESS

    settings.add_instance(args.id, result.instance)
    print(f"Reconfigured '{args.id}'")
    return EXIT_SUCCESS


def _custom_card_data(args: argparse.Namespace) -> dict:
    deploy: dict = {"kind": args.kind}
    for key in ("command", "image", "package", "url"):
        value = getattr(args, key)
        if value:
            deploy[key] = value
    if args.arg:
        deploy["args"] = list(args.arg)
    headers = parse_assignments(args.header)
    if headers:
        deploy["headers"] = headers

    env_schema = [{"name": name, "required": True} for name in args.var or []]
    env_schema.extend({"name": name, "required": False} for name in args.optional_var or [])

    data: dict = {
        "id": args.id,
        "name": args.name or args.id,
        "description": args.description or "",
        "deploy": deploy,
        "custom": True,
    }
    if env_schema:
        data["envSchema"] = env_schema
    if args.tag:
        data["tags"] = list(args.tag)
    return data


def cmd_add_custom(args: argparse.Namespace, context: HelperContext) -> int:
    """Execute add-custom command.

    ABOUTME: Saves a user card for a server missing from the catalog
    ABOUTME: Refuses until the foundation servers are configured, unless --force is given
    ABOUTME: The card is only saved; configure it afterwards with add
    """
    settings = SettingsStore(context)
    check = validate_minimum_servers(settings.read().instances)
    if not check.valid:
        print("Missing foundation servers for custom server support:")
        for server in check.missing_required:
            print(f"  {server.id} - {server.rationale}")
        if not args.force:
            print(f"Add them first: {', '.join(f'mcph add {server.id}' for server in check.missing_required)}")
            print("Or pass --force to save the card anyway.")
            return EXIT_VALIDATION
    if check.missing_recommended:
        print(f"Consider also adding: {', '.join(server.id for server in check.missing_recommended)}")

    data = _custom_card_data(args)
    errors = validate_card_data(data, source=args.id)
    if errors:
        print(f"Invalid custom server '{args.id}':")
        for error in errors:
            print(f"  {error.message}")
        return EXIT_VALIDATION

    store = RecordStore.from_context(context)
    replaced = store.get(args.id)
    if replaced is not None and not replaced.custom:
        print(f"Note: '{args.id}' overrides the built-in server card")

    path = store.save(ServerCard.from_dict(data, custom=True))
    print(f"Saved custom server card '{args.id}' to {path}")
    print(f"Configure it with: mcph add {args.id}")
    return EXIT_SUCCESS


def cmd_restore(args: argparse.Namespace, context: HelperContext) -> int:
    settings = SettingsStore(context)
    try:
        backup = settings.restore_latest()
    except FileNotFoundError as e:
        print(f"Error: {e}")
        return EXIT_NOT_FOUND

    print(f"Restored {settings.settings_path} from {backup.name}")
    return EXIT_SUCCESS


def cmd_recommend(args: argparse.Namespace, context: HelperContext) -> int:
    """Execute recommend command.

    ABOUTME: Default: cards matching detected project tags plus the baseline set
    ABOUTME: --all: every unconfigured active card ranked by score
    """
    store = RecordStore.from_context(context)
    settings = SettingsStore(context)
    document = settings.read()
    configured = set(document.instances)

    if args.all:
        cards = rank(store.active(), configured)
    else:
        tags = detect_project_tags(context.project_dir)
        if tags:
            print(f"Detected: {', '.join(sorted(tags))}")
        cards = [card for card in recommend_for_project(tags, store.active()) if card.id not in configured]

    if not cards:
        print("No recommendations: every matching server is already configured.")
    for card in cards:
        print(f"  {card.id} - {card.name} (score {score(card):.1f})")

    environment = {**os.environ, **settings.read_project_variables()}
    warnings = find_configuration_warnings(document, environment)
    if warnings:
        print()
        for warning in warnings:
            print(f"  Warning: {warning.message}")

    suggestions = suggest_optimizations(document)
    if suggestions:
        print()
        for suggestion in suggestions:
            print(f"  Suggestion: {suggestion.message}")
    return EXIT_SUCCESS


def cmd_status(args: argparse.Namespace, context: HelperContext) -> int:
    """Execute status subcommands.

    ABOUTME: show | feature | todo | note | render
    """
    status = StatusStore(context)

    if args.status_command == "feature":
        document = status.read()
        if args.key not in document.features and args.name:
            document = status.add_feature(args.key, name=args.name, completion=args.completion)
        else:
            document = status.set_feature_completion(args.key, args.completion)
        print(f"{args.key}: {args.completion}% (overall {document.overall_completion}%)")
        return EXIT_SUCCESS

    if args.status_command == "todo":
        if args.add:
            todo = status.add_todo(args.add)
        else:
            if not args.todo_id or not args.state:
                print("Error: Give either --add TEXT or ID STATE")
                return EXIT_VALIDATION
            todo = status.update_todo(args.todo_id, TodoState.parse(args.state))
        print(f"Todo {todo.id}: {todo.text} [{todo.state.value}]")
        return EXIT_SUCCESS

    if args.status_command == "note":
        status.add_note(args.text)
        print("Note added")
        return EXIT_SUCCESS

    if args.status_command == "render":
        target = Path(args.file) if args.file else context.project_dir / "CLAUDE.md"
        status.sync_markdown(target)
        print(f"Updated Project Status section in {target}")
        return EXIT_SUCCESS

    print(render_report(status.read()), end="")
    return EXIT_SUCCESS


_COMMANDS = {
    "list": cmd_list,
    "search": cmd_search,
    "show": cmd_show,
    "add": cmd_add,
    "remove": cmd_remove,
    "reconfigure": cmd_reconfigure,
    "add-custom": cmd_add_custom,
    "restore": cmd_restore,
    "recommend": cmd_recommend,
    "status": cmd_status,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mcph",
        description="Manage MCP server configuration for an AI coding assistant"
    )
    parser.add_argument(
        "--version", "-V",
        action="version",
        version=f"mcph v{__version__}"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging"
    )
    parser.add_argument(
        "--home",
        type=Path,
        help="Home directory holding .claude.json and .mcp-helper (default: ~)"
    )
    parser.add_argument(
        "--project-dir",
        type=Path,
        help="Project directory (default: current directory)"
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="TOML config file (default: ~/.mcp-helper/config.toml)"
    )

    subparsers = parser.add_subparsers(dest="subcommand", help="Available commands")

    # list command
    list_parser = subparsers.add_parser("list", help="List configured MCP servers")
    list_parser.add_argument(
        "--available",
        action="store_true",
        help="List server cards in the catalog instead"
    )
    list_parser.add_argument(
        "--min-agent-rating",
        type=int,
        metavar="N",
        help="With --available, only cards with an AI agent rating of at least N"
    )
    list_parser.add_argument(
        "--min-human-rating",
        type=int,
        metavar="N",
        help="With --available, only cards with a human verification rating of at least N"
    )

    # search command
    search_parser = subparsers.add_parser("search", help="Search server cards")
    search_parser.add_argument("keyword", help="Case-insensitive text to look for")

    # show command
    show_parser = subparsers.add_parser("show", help="Show one server card")
    show_parser.add_argument("id", help="Server card id")

    # add command
    add_parser = subparsers.add_parser("add", help="Configure a server from its card")
    add_parser.add_argument("id", help="Server card id")
    add_parser.add_argument(
        "--var",
        action="append",
        metavar="KEY=VALUE",
        help="Variable value (repeatable)"
    )
    add_parser.add_argument(
        "--scope",
        choices=[scope.value for scope in Scope],
        default=Scope.GLOBAL.value,
        help="Store values in settings (global) or the project env file (project)"
    )
    add_parser.add_argument(
        "--allow-partial",
        action="store_true",
        help="Write the server even if required variables are missing"
    )
    add_parser.add_argument(
        "--strategy",
        choices=MERGE_STRATEGIES,
        help="How to combine with an existing entry (default: suggested)"
    )

    # remove command
    remove_parser = subparsers.add_parser("remove", help="Remove a configured server")
    remove_parser.add_argument("id", help="Configured server id")

    # reconfigure command
    reconfigure_parser = subparsers.add_parser(
        "reconfigure",
        help="Update a configured server from its latest card"
    )
    reconfigure_parser.add_argument("id", help="Configured server id")
    reconfigure_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show changes without writing"
    )

    # add-custom command
    custom_parser = subparsers.add_parser("add-custom", help="Save a card for a server missing from the catalog")
    custom_parser.add_argument("id", help="New server card id")
    custom_parser.add_argument(
        "--kind",
        required=True,
        choices=[kind.value for kind in DeploymentKind if kind is not DeploymentKind.UNKNOWN],
        help="How the server is launched"
    )
    custom_parser.add_argument("--name", help="Display name (default: the id)")
    custom_parser.add_argument("--description", help="One-line description")
    custom_parser.add_argument("--command", help="Command to run (native-binary, or to override docker/npx)")
    custom_parser.add_argument("--arg", action="append", help="Command argument (repeatable)")
    custom_parser.add_argument("--image", help="Container image (container)")
    custom_parser.add_argument("--package", help="Package name (package-runner)")
    custom_parser.add_argument("--url", help="Endpoint URL (http-endpoint)")
    custom_parser.add_argument(
        "--header",
        action="append",
        metavar="KEY=VALUE",
        help="HTTP header, may contain ${VAR} (repeatable)"
    )
    custom_parser.add_argument("--var", action="append", metavar="NAME", help="Required variable (repeatable)")
    custom_parser.add_argument(
        "--optional-var",
        action="append",
        metavar="NAME",
        help="Optional variable (repeatable)"
    )
    custom_parser.add_argument("--tag", action="append", help="Tag used for recommendations (repeatable)")
    custom_parser.add_argument(
        "--force",
        action="store_true",
        help="Save even if foundation servers are missing"
    )

    # restore command
    subparsers.add_parser("restore", help="Restore the settings file from its latest backup")

    # recommend command
    recommend_parser = subparsers.add_parser("recommend", help="Recommend servers to add")
    recommend_parser.add_argument(
        "--all",
        action="store_true",
        help="Rank every unconfigured server instead of project matches"
    )

    # status command
    status_parser = subparsers.add_parser("status", help="Project status document")
    status_sub = status_parser.add_subparsers(dest="status_command", help="Status commands")

    status_sub.add_parser("show", help="Print the status report")

    feature_parser = status_sub.add_parser("feature", help="Set a feature's completion")
    feature_parser.add_argument("key", help="Feature key")
    feature_parser.add_argument("completion", type=int, help="Completion percentage (0-100)")
    feature_parser.add_argument("--name", help="Create the feature with this name if missing")

    todo_parser = status_sub.add_parser("todo", help="Add or move a todo")
    todo_parser.add_argument("todo_id", nargs="?", help="Todo id")
    todo_parser.add_argument("state", nargs="?", help="pending, active or done")
    todo_parser.add_argument("--add", metavar="TEXT", help="Add a new pending todo")

    note_parser = status_sub.add_parser("note", help="Add a critical note")
    note_parser.add_argument("text", help="Note text")

    render_parser = status_sub.add_parser("render", help="Update the Project Status section of a Markdown file")
    render_parser.add_argument("--file", help="Markdown file (default: <project>/CLAUDE.md)")

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point.

    ABOUTME: Parses args and dispatches to appropriate command
    ABOUTME: Maps errors to exit codes; no traceback reaches the user
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s: %(message)s",
    )

    handler = _COMMANDS.get(args.subcommand)
    if handler is None:
        # No command specified, show help
        parser.print_help()
        return EXIT_SUCCESS

    try:
        context = load_context(home=args.home, project_dir=args.project_dir, config_path=args.config)
        return handler(args, context)
    except NotFoundError as e:
        print(f"Error: {e}")
        return EXIT_NOT_FOUND
    except (TransitionError, ValueError) as e:
        print(f"Error: {e}")
        return EXIT_VALIDATION
    except OSError as e:
        print(f"Fatal error: {e}")
        return EXIT_FATAL
    except Exception as e:
        logger.debug("Unhandled error", exc_info=True)
        print(f"Fatal error: {e}")
        return EXIT_FATAL


if __name__ == "__main__":
    sys.exit(main())
