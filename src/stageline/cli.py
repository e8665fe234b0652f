"""stageline CLI: describe, graph and extract pipelines, talk to the reasoning service."""

import argparse
import json
import logging
import sys
from importlib.metadata import version as get_version, PackageNotFoundError
from pathlib import Path


def _print_json(obj) -> None:
    from ._internal.io.pipeline import stable_dumps
    print(stable_dumps(obj))


def main():
    """Main CLI entry point for stageline commands."""
    try:
        stageline_version = get_version("stageline")
    except PackageNotFoundError:
        stageline_version = "dev"

    parser = argparse.ArgumentParser(
        prog="stageline",
        description="stageline: keep table pipelines, dependency graphs and SQL in sync"
    )
    parser.add_argument("--version", action="version", version=f"stageline {stageline_version}")
    parser.add_argument(
        "--log-level",
        default=None,
        help="Log level (defaults to STAGELINE_LOG_LEVEL or WARNING)"
    )
    # Common arguments
    parent_parser = argparse.ArgumentParser(add_help=False)
    parent_parser.add_argument(
        "--quiet",
        action="store_true",
        help="Suppress all non-error output."
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # describe command
    describe_parser = subparsers.add_parser(
        "describe",
        help="Print the natural-language instruction for a pipeline",
        parents=[parent_parser]
    )
    describe_parser.add_argument(
        "pipeline_path",
        type=Path,
        help="Path to pipeline JSON"
    )

    # graph command
    graph_parser = subparsers.add_parser(
        "graph",
        help="Build the dependency graph of a pipeline",
        parents=[parent_parser]
    )
    graph_parser.add_argument(
        "pipeline_path",
        type=Path,
        help="Path to pipeline JSON"
    )
    graph_parser.add_argument(
        "--out",
        type=Path,
        default=None,
        help="Output directory for graph.json (prints to stdout when omitted)"
    )

    # extract command
    extract_parser = subparsers.add_parser(
        "extract",
        help="Reconstruct stages from a SQL statement",
        parents=[parent_parser]
    )
    sql_source = extract_parser.add_mutually_exclusive_group(required=True)
    sql_source.add_argument(
        "--sql",
        default=None,
        help="SQL text"
    )
    sql_source.add_argument(
        "--sql-file",
        type=Path,
        default=None,
        help="Path to a file holding the SQL text"
    )
    extract_parser.add_argument(
        "--explanation",
        default="",
        help="Explanation used to describe a CUSTOM fallback stage"
    )

    # transform command
    transform_parser = subparsers.add_parser(
        "transform",
        help="Send a pipeline to the reasoning service and print the result",
        parents=[parent_parser]
    )
    transform_parser.add_argument(
        "pipeline_path",
        type=Path,
        help="Path to pipeline JSON"
    )
    transform_parser.add_argument(
        "--schema",
        type=Path,
        required=True,
        help="Path to table schema JSON (list of columns)"
    )
    transform_parser.add_argument(
        "--prompt",
        default=None,
        help="Free-text instruction (overrides the synthesized pipeline text)"
    )
    transform_parser.add_argument(
        "--api-key",
        default=None,
        help="API key (defaults to the stored key)"
    )
    transform_parser.add_argument(
        "--data-dir",
        type=Path,
        default=None,
        help="Key store directory (defaults to STAGELINE_DATA_DIR)"
    )
    transform_parser.add_argument(
        "--url",
        default=None,
        help="Reasoning-service endpoint (defaults to STAGELINE_SERVICE_URL)"
    )

    # key command group
    key_parser = subparsers.add_parser(
        "key",
        help="API-key store commands"
    )
    key_subparsers = key_parser.add_subparsers(dest="key_command", help="Available key commands")

    key_set_parser = key_subparsers.add_parser(
        "set",
        help="Encrypt and store the API key",
        parents=[parent_parser]
    )
    key_set_parser.add_argument(
        "api_key",
        help="API key to store"
    )
    key_set_parser.add_argument(
        "--data-dir",
        type=Path,
        default=None,
        help="Key store directory (defaults to STAGELINE_DATA_DIR)"
    )

    key_check_parser = key_subparsers.add_parser(
        "check",
        help="Check that a stored API key can be decrypted",
        parents=[parent_parser]
    )
    key_check_parser.add_argument(
        "--data-dir",
        type=Path,
        default=None,
        help="Key store directory (defaults to STAGELINE_DATA_DIR)"
    )

    args = parser.parse_args()

    from .config import settings
    logging.basicConfig(
        level=(args.log_level or settings.LOG_LEVEL).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "describe":
        try:
            from .api import describe, load_pipeline

            stages = load_pipeline(Path(args.pipeline_path).resolve())
            text = describe(stages)
            if not args.quiet:
                print(text if text else "(no complete stages)")
            sys.exit(0)
        except FileNotFoundError as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)
        except ValueError as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)
    elif args.command == "graph":
        try:
            from .api import graph_result, load_pipeline
            from ._internal.io.pipeline import stable_dumps

            stages = load_pipeline(Path(args.pipeline_path).resolve())
            result = graph_result(stages)
            payload = result.model_dump(mode="json")

            if args.out:
                output_dir = Path(args.out)
                output_dir.mkdir(parents=True, exist_ok=True)
                graph_path = output_dir / "graph.json"
                graph_path.write_text(stable_dumps(payload) + "\n", encoding="utf-8")
                if not args.quiet:
                    print("[OK] Graph built")
                    print(f"  Graph: {graph_path}")
                    print(f"  Stages: {len(result.nodes)}")
                    print(f"  Unresolved references: {sum(len(v) for v in result.unresolved_references.values())}")
            elif not args.quiet:
                _print_json(payload)
            sys.exit(0)
        except FileNotFoundError as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)
        except ValueError as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)
    elif args.command == "extract":
        try:
            from .api import extract
            from ._internal.io.pipeline import dump_stages

            if args.sql_file is not None:
                sql = Path(args.sql_file).read_text(encoding="utf-8")
            else:
                sql = args.sql
            stages = extract(sql, args.explanation)
            if not args.quiet:
                _print_json(dump_stages(stages))
            sys.exit(0)
        except FileNotFoundError as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)
    elif args.command == "transform":
        try:
            from .api import load_pipeline
            from ._internal.io.pipeline import dump_stages
            from .service.client import ReasoningClient
            from .service.controller import PipelineController
            from .service.keystore import ApiKeyStore

            stages = load_pipeline(Path(args.pipeline_path).resolve())
            with open(Path(args.schema).resolve(), "r", encoding="utf-8") as f:
                schema = json.load(f)

            controller = PipelineController(
                client=ReasoningClient(base_url=args.url),
                key_store=ApiKeyStore(args.data_dir),
                stages=stages,
                table_schema=schema,
            )
            outcome = controller.submit(user_prompt=args.prompt, api_key=args.api_key)
            if not outcome.applied:
                print(f"Error: {outcome.error or 'response discarded'}", file=sys.stderr)
                sys.exit(1)

            if not args.quiet:
                result = controller.last_result
                print("[OK] Transform complete")
                print(f"  SQL: {result.sql}")
                if result.explanation:
                    print(f"  Explanation: {result.explanation}")
                if result.chart.type:
                    print(f"  Chart: {result.chart.type} ({result.chart.x_axis} x {result.chart.y_axis})")
                _print_json({"stages": dump_stages(controller.stages)})
            sys.exit(0)
        except FileNotFoundError as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)
        except ValueError as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)
    elif args.command == "key" and args.key_command == "set":
        from .service.keystore import ApiKeyStore

        result = ApiKeyStore(args.data_dir).save(args.api_key)
        if not result.ok:
            print(f"Error: {result.error}", file=sys.stderr)
            sys.exit(1)
        if not args.quiet:
            print("[OK] API key stored")
        sys.exit(0)
    elif args.command == "key" and args.key_command == "check":
        from .service.keystore import ApiKeyStore

        stored = ApiKeyStore(args.data_dir).load()
        if not args.quiet:
            print(f"  Status: {'OK' if stored else 'NO KEY'}")
        sys.exit(0 if stored else 1)
    elif args.command == "key":
        key_parser.print_help()
        sys.exit(1)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
