#!/usr/bin/env python3
"""
Collection run / request send script

Usage:
  python scripts/run_collection.py run --workspace <file> --collection-id <id> [--environment-id <id>]
                                       [--team-id <id>] [--iterations <n>] [--delay-ms <ms>] [--data-file <path>]
  python scripts/run_collection.py send --workspace <file> --request-id <id> [--environment-id <id>] [--team-id <id>]
  python scripts/run_collection.py status --run-id <id> --api-base-url <url>
  python scripts/run_collection.py logs --run-id <id> --api-base-url <url>

Examples:
  python scripts/run_collection.py run --workspace workspace.yaml --collection-id users-api --iterations 3
  python scripts/run_collection.py run --workspace workspace.yaml --collection-id users-api --data-file users.csv
  python scripts/run_collection.py send --workspace workspace.yaml --request-id list-users
"""
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

import requests
from dotenv import load_dotenv

load_dotenv()

from infrastructure.logging.log_setup import setup_console_logging
setup_console_logging(level="INFO")

from application.executor.collection_runner import CollectionRunner
from application.executor.http_proxy_executor import HttpProxyExecutor
from application.ports.requests_client import RequestsSessionHttpClient
from application.sandbox.script_sandbox import ScriptSandbox
from application.services.auth_resolver import AuthResolver
from application.services.cancellation_registry import CancellationRegistry
from application.services.data_file_parser import DataFileParser
from application.services.engine_settings import EngineSettings
from application.services.variable_resolver import VariableResolver
from domain.exceptions import CourierError
from domain.run import RunSpec
from domain.run_record import RunResultDetail, RunStatus
from infrastructure.config.env_settings import load_settings
from infrastructure.history.in_memory_history_store import InMemoryHistoryStore
from infrastructure.logging.console_logger import ConsoleLogger
from infrastructure.run.in_memory_run_repository import InMemoryRunResultRepository
from infrastructure.workspace import InMemoryWorkspaceStore, WorkspaceLoadError, WorkspaceLoaderRegistry

DEFAULT_TEAM_ID = "default"
DEFAULT_API_TIMEOUT_SEC = 30


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Collection run helper")
    subparsers = parser.add_subparsers(dest="command")

    run_parser = subparsers.add_parser("run", help="Run a collection locally")
    run_parser.add_argument("--workspace", type=str, required=True)
    run_parser.add_argument("--collection-id", type=str, required=True)
    run_parser.add_argument("--environment-id", type=str)
    run_parser.add_argument("--team-id", type=str)
    run_parser.add_argument("--iterations", type=int, default=1)
    run_parser.add_argument("--delay-ms", type=int, default=0)
    run_parser.add_argument("--data-file", type=str)

    send_parser = subparsers.add_parser("send", help="Send one stored request locally")
    send_parser.add_argument("--workspace", type=str, required=True)
    send_parser.add_argument("--request-id", type=str, required=True)
    send_parser.add_argument("--environment-id", type=str)
    send_parser.add_argument("--team-id", type=str)

    status_parser = subparsers.add_parser("status", help="Fetch run status from the API")
    status_parser.add_argument("--run-id", type=str, required=True)
    status_parser.add_argument("--api-base-url", type=str, required=True)

    logs_parser = subparsers.add_parser("logs", help="Fetch run logs from the API")
    logs_parser.add_argument("--run-id", type=str, required=True)
    logs_parser.add_argument("--api-base-url", type=str, required=True)

    return parser


def _load_workspace(path_text: str) -> InMemoryWorkspaceStore:
    path = Path(path_text)
    try:
        loader = WorkspaceLoaderRegistry().get_loader(path)
        return loader.load_from_file(path)
    except WorkspaceLoadError as e:
        raise ValueError(f"Failed to load workspace: {e}") from e


def _build_executor(store: InMemoryWorkspaceStore, settings: EngineSettings, logger: ConsoleLogger) -> HttpProxyExecutor:
    variables = VariableResolver(store)
    return HttpProxyExecutor(
        http_client=RequestsSessionHttpClient(),
        variables=variables,
        auth=AuthResolver(variables, store, max_folder_depth=settings.max_folder_depth),
        workspace=store,
        settings=settings,
        logger=logger,
        history=InMemoryHistoryStore(),
    )


def _build_runner(store: InMemoryWorkspaceStore, settings: EngineSettings, logger: ConsoleLogger) -> CollectionRunner:
    return CollectionRunner(
        workspace=store,
        executor=_build_executor(store, settings, logger),
        sandbox=ScriptSandbox.with_process_runner(
            logger,
            timeout_sec=settings.script_timeout_sec,
            kill_grace_sec=settings.script_kill_grace_sec,
            memory_limit_bytes=settings.script_memory_limit_bytes,
        ),
        variables=VariableResolver(store),
        data_parser=DataFileParser(),
        repository=InMemoryRunResultRepository(),
        cancellations=CancellationRegistry(),
        settings=settings,
        logger=logger,
    )


def _team_for(store: InMemoryWorkspaceStore, args: argparse.Namespace) -> str:
    if args.team_id:
        return args.team_id
    collection_id = getattr(args, "collection_id", None)
    if collection_id:
        collection = store.get_collection(collection_id)
        if collection is not None:
            return collection.team_id
    request_id = getattr(args, "request_id", None)
    if request_id:
        request = store.get_request(request_id)
        folder = store.get_folder(request.folder_id) if request else None
        collection = store.get_collection(folder.collection_id) if folder else None
        if collection is not None:
            return collection.team_id
    return DEFAULT_TEAM_ID


def _print_detail(detail: RunResultDetail) -> None:
    r = detail.result
    c = r.counters
    print("\n=== Result ===")
    print(f"Run ID: {r.run_id}")
    print(f"Status: {r.status.value}")
    print(f"Iterations: {r.iteration_count}")
    print(f"Requests: {c.passed_requests}/{c.total_requests} passed ({c.failed_requests} failed)")
    print(f"Assertions: {c.passed_assertions}/{c.total_assertions} passed")
    print(f"Duration: {c.total_duration_ms}ms")
    print("")
    for it in detail.iterations:
        mark = "PASS" if it.passed else "FAIL"
        status = it.response_status if it.response_status is not None else "-"
        line = f"[{mark}] #{it.iteration_number} {it.request_method} {it.request_name} -> {status}"
        if it.error_message:
            line += f" ({it.error_message})"
        print(line)


def _run_local(args: argparse.Namespace) -> int:
    store = _load_workspace(args.workspace)
    settings = load_settings()
    logger = ConsoleLogger()

    data_filename = None
    data_content = None
    if args.data_file:
        data_path = Path(args.data_file)
        try:
            data_content = data_path.read_text(encoding="utf-8")
        except OSError as exc:
            raise ValueError(f"Unable to read data file: {exc}") from exc
        data_filename = data_path.name

    spec = RunSpec(
        collection_id=args.collection_id,
        team_id=_team_for(store, args),
        environment_id=args.environment_id,
        iteration_count=args.iterations,
        delay_between_requests_ms=args.delay_ms,
        data_filename=data_filename,
        data_content=data_content,
    )

    print("\n=== Executing ===\n")
    detail = _build_runner(store, settings, logger).start_run(spec)
    _print_detail(detail)
    return 0 if detail.result.status == RunStatus.COMPLETED else 1


def _send_local(args: argparse.Namespace) -> int:
    store = _load_workspace(args.workspace)
    settings = load_settings()
    logger = ConsoleLogger()

    response = _build_executor(store, settings, logger).execute_stored_request(
        args.request_id,
        _team_for(store, args),
        environment_id=args.environment_id,
    )
    print("\n=== Response ===")
    print(f"Status: {response.status_code} {response.status_text}")
    print(f"Time: {response.response_time_ms}ms  Size: {response.response_size_bytes} bytes")
    if response.redirect_chain:
        print(f"Redirects: {' -> '.join(response.redirect_chain)}")
    if response.response_body:
        print("")
        print(response.response_body)
    return 0 if response.is_http_ok else 1


def _get_json(url: str):
    response = requests.get(url, timeout=DEFAULT_API_TIMEOUT_SEC)
    response.raise_for_status()
    return response.json()


def _status_api(args: argparse.Namespace) -> int:
    url = f"{args.api_base_url.rstrip('/')}/runs/{args.run_id}"
    data = _get_json(url)
    print(json.dumps(data, indent=2, ensure_ascii=False))
    return 0


def _logs_api(args: argparse.Namespace) -> int:
    url = f"{args.api_base_url.rstrip('/')}/runs/{args.run_id}/logs"
    data = _get_json(url)
    print(json.dumps(data, indent=2, ensure_ascii=False))
    return 0


def main() -> None:
    parser = _build_parser()
    args = parser.parse_args(sys.argv[1:])

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        if args.command == "run":
            exit_code = _run_local(args)
        elif args.command == "send":
            exit_code = _send_local(args)
        elif args.command == "status":
            exit_code = _status_api(args)
        elif args.command == "logs":
            exit_code = _logs_api(args)
        else:
            raise ValueError(f"Unknown command: {args.command}")
    except (ValueError, CourierError) as exc:
        print(f"ERROR: {exc}")
        sys.exit(1)
    except requests.RequestException as exc:
        print(f"ERROR: API request failed: {exc}")
        sys.exit(1)
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
