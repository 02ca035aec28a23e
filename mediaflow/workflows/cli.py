#!/usr/bin/env python3
"""
CLI interface for node-based workflows.

Provides command-line interface for validating, executing, and serving workflows.
"""
import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from mediaflow.engine.planner import RunScope
from mediaflow.engine.session import WorkflowSession
from mediaflow.errors import WorkflowError
from mediaflow.nodes.registry import get_registry
from mediaflow.utils.common import (
    format_duration,
    load_json,
    normalize_path,
    print_section,
    save_json,
    summarize_value,
)
from mediaflow.utils.config import get_config_manager


def list_nodes(args):
    """List all available node types"""
    registry = get_registry()
    node_types = registry.list_node_types()

    print("Available Node Types:")
    print("=" * 60)

    # Group by category
    categories = {}
    for node_type in node_types:
        metadata = registry.get_node_metadata(node_type)
        category = metadata.get("category", "other")
        if category not in categories:
            categories[category] = []
        categories[category].append((node_type, metadata))

    for category in sorted(categories.keys()):
        print(f"\n{category.upper()}:")
        for node_type, metadata in sorted(categories[category], key=lambda item: item[0]):
            description = metadata.get("description", "")
            print(f"  {node_type:20} - {description}")


def _load_session(workflow: str, max_concurrency: Optional[int] = None) -> WorkflowSession:
    workflow_path = normalize_path(workflow)
    if not workflow_path.exists():
        print(f"Error: Workflow file not found: {workflow_path}", file=sys.stderr)
        sys.exit(1)

    engine_config = get_config_manager().load().engine
    session = WorkflowSession(
        max_concurrency=max_concurrency or engine_config.max_concurrency,
        history_limit=engine_config.history_limit,
    )
    try:
        session.load(load_json(workflow_path))
    except (WorkflowError, ValueError) as e:
        print(f"Error loading workflow: {e}", file=sys.stderr)
        sys.exit(1)
    return session


def validate_workflow(args):
    """Validate a workflow file"""
    session = _load_session(args.workflow)
    result = session.validate()

    print(f"Validating workflow: {normalize_path(args.workflow).name}")
    print("-" * 60)

    if not result.valid:
        print("Validation Errors:")
        for error in result.errors:
            print(f"  - {error}")
        sys.exit(1)

    print("✓ Workflow is valid")
    print(f"  Nodes: {len(session.graph.nodes)}")
    print(f"  Connections: {len(session.graph.edges)}")


def execute_workflow(args):
    """Execute a workflow from JSON file"""
    session = _load_session(args.workflow, args.max_concurrency)

    if args.from_node:
        scope = RunScope.from_node(args.from_node)
    elif args.only_node:
        scope = RunScope.only_node(args.only_node)
    else:
        scope = RunScope.full()

    print(f"Executing workflow: {normalize_path(args.workflow).name}")
    print(f"Nodes: {len(session.graph.nodes)}, Connections: {len(session.graph.edges)}")
    print("-" * 60)

    try:
        result = asyncio.run(session.execute(scope))
    except WorkflowError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    print_section("Execution Results")
    print(f"State: {result.state.value}")
    print(f"Total Nodes: {result.total_nodes}")
    print(f"Completed: {len(result.completed)}")
    print(f"Failed: {len(result.failed)}")
    print(f"Blocked: {len(result.blocked)}")
    if result.skipped:
        print(f"Skipped: {len(result.skipped)}")
    if result.paused_at:
        print(f"Paused Before: {result.paused_at}")
    print(f"Execution Time: {format_duration(result.execution_time)}")

    if result.failed:
        print("\nErrors:")
        for node_id, error in result.failed.items():
            print(f"  {node_id}: {error}")

    outputs = [node for node in session.graph.nodes if node.type == "output"]
    if outputs:
        print("\nOutputs:")
        for node in outputs:
            for key in ("image", "video", "audio"):
                if node.data.get(key):
                    print(f"  {node.id}.{key}: {summarize_value(node.data[key])}")

    if args.output:
        output_path = normalize_path(args.output)
        payload = result.to_dict()
        payload["nodes"] = {node.id: node.data for node in session.graph.nodes}
        save_json(payload, output_path)
        print(f"\nResults saved to: {output_path}")

    if args.save:
        save_path = normalize_path(args.save)
        save_json(session.to_dict(), save_path)
        print(f"Workflow saved to: {save_path}")

    try:
        result.raise_for_state()
    except WorkflowError as e:
        print(f"\nRun did not complete: {e}", file=sys.stderr)
        sys.exit(1)


def configure(args):
    """Show or update stored configuration"""
    config_manager = get_config_manager()

    if args.clear:
        config_manager.clear_credentials()
        return

    config = config_manager.load()
    if args.service_url:
        config.service.service_url = args.service_url
        config_manager.save(config)

    if not args.show:
        config_manager.prompt_credentials()

    credentials = config_manager.get_credentials()
    print_section("mediaflow configuration")
    print(f"Config file: {config_manager.CONFIG_FILE}")
    print(f"Service URL: {config.service.service_url}")
    print(f"Max concurrency: {config.engine.max_concurrency}")
    for name in ("gemini", "openai", "elevenlabs", "replicate"):
        configured = bool(getattr(credentials, f"{name}_api_key"))
        print(f"  {name:12} {'configured' if configured else 'not set'}")


def serve(args):
    """Run the web server"""
    from mediaflow.web.server import run_server

    run_server(host=args.host, port=args.port, reload=args.reload)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mediaflow",
        description="Node-based media workflow engine",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument('--verbose', '-v', action='store_true', help='Verbose logging')

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    # List nodes command
    list_parser = subparsers.add_parser('list-nodes', help='List all available node types')
    list_parser.set_defaults(func=list_nodes)

    # Validate workflow command
    validate_parser = subparsers.add_parser('validate', help='Validate a workflow file')
    validate_parser.add_argument('workflow', help='Path to workflow JSON file')
    validate_parser.set_defaults(func=validate_workflow)

    # Execute workflow command
    execute_parser = subparsers.add_parser('execute', help='Execute a workflow')
    execute_parser.add_argument('workflow', help='Path to workflow JSON file')
    scope_group = execute_parser.add_mutually_exclusive_group()
    scope_group.add_argument('--from', dest='from_node', metavar='NODE',
                             help='Run NODE and everything downstream of it')
    scope_group.add_argument('--only', dest='only_node', metavar='NODE',
                             help='Run only NODE, reusing upstream results')
    execute_parser.add_argument('--max-concurrency', type=int, default=None,
                                help='Maximum parallel node executions')
    execute_parser.add_argument('--output', help='Save execution results to file')
    execute_parser.add_argument('--save', help='Save the workflow with its results to file')
    execute_parser.set_defaults(func=execute_workflow)

    # Config command
    config_parser = subparsers.add_parser('config', help='Configure service URL and API keys')
    config_parser.add_argument('--clear', action='store_true', help='Clear stored API keys')
    config_parser.add_argument('--show', action='store_true', help='Show configuration without prompting')
    config_parser.add_argument('--service-url', help='Generation service base URL')
    config_parser.set_defaults(func=configure)

    # Serve command
    serve_parser = subparsers.add_parser('serve', help='Run the web API')
    serve_parser.add_argument("--host", default="127.0.0.1", help="Host to bind to")
    serve_parser.add_argument("--port", type=int, default=8000, help="Port to bind to")
    serve_parser.add_argument("--reload", action="store_true", help="Enable auto-reload")
    serve_parser.set_defaults(func=serve)

    return parser


def main(argv: Optional[List[str]] = None):
    """Main CLI entry point"""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s | %(levelname)s | %(message)s"
    )

    if not args.command:
        parser.print_help()
        return

    args.func(args)


if __name__ == '__main__':
    main()
