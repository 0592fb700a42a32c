#!/usr/bin/env python3
"""Energy Dashboard Data Gate CLI.

This module provides a command-line interface to the permission-gated data
access layer. It is the quickest way to check what a role may see or do
without going through the agent.

Architecture:
    - DataGate composes the permission matrix, engines and function catalog
    - One asyncpg pool is created per invocation and closed on exit
    - Every command runs under the role given with --role

Environment Variables:
    - DATABASE_URL: PostgreSQL connection string (not needed for --list-functions)
    - DATAGATE_*: see src/datagate/config.py

Example Usage:
    $ python main.py --list-functions --role operator
    $ python main.py --call queryPowerData --params '{"limit": 5}' --role user
    $ python main.py --sql "SELECT COUNT(*) FROM equipment" --role manager
    $ python main.py --schema --role user
    $ python main.py --serve --port 8000

Author: Energy Dashboard Team
"""
import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime

from dotenv import load_dotenv

load_dotenv()

# Local imports
from src.datagate.api.database import close_pool, create_pool
from src.datagate.api.exceptions import DataGateError
from src.datagate.api.schemas import SQLResponse
from src.datagate.config import DataGateConfig
from src.datagate.service import create_data_gate


def _print_json(payload) -> None:
    print(json.dumps(payload, indent=2, default=str))


async def list_functions(config: DataGateConfig, role: str) -> int:
    gate = create_data_gate(None, config)
    functions = gate.list_database_functions(role)

    print(f"\n[Main] {len(functions)} function(s) available to role '{role}':\n")
    print(f"{'Name':<34} {'Entity':<22} {'Level':<6}")
    print("-" * 64)
    for registration in functions:
        print(
            f"{registration.name.value:<34} "
            f"{registration.required_entity_type.value:<22} "
            f"{registration.required_permission_level.value:<6}"
        )
    return 0


async def describe_schema(config: DataGateConfig, role: str) -> int:
    gate = create_data_gate(None, config)
    tables = gate.describe_schema(role)

    print(f"\n[Main] {len(tables)} table(s) readable by role '{role}':\n")
    for table in tables:
        columns = ", ".join(f"{c['name']} ({c['type']})" for c in table["columns"])
        print(f"{table['table']}: {columns}")
    return 0


async def run_command(args: argparse.Namespace, config: DataGateConfig) -> int:
    if not config.database_url:
        print("[Main] DATABASE_URL is not configured")
        return 2

    try:
        pool = await create_pool(
            config.database_url,
            min_size=config.pool_min_size,
            max_size=config.pool_max_size,
            command_timeout=config.command_timeout,
        )
    except DataGateError as e:
        print(f"[Main] Database connection failed: {e.message}")
        return 1

    start_time = datetime.now()
    try:
        gate = create_data_gate(pool, config)
        if args.call:
            try:
                params = json.loads(args.params)
            except json.JSONDecodeError as e:
                print(f"[Main] --params is not valid JSON: {e}")
                return 2
            result = await gate.execute_database_function(args.call, params, args.role)
            _print_json({"function": args.call, "result": result})
        else:
            result = await gate.execute_sql(args.sql, args.role)
            _print_json(SQLResponse(**result.to_dict()).model_dump(by_alias=True))
            if not result.success:
                return 1
    except DataGateError as e:
        print(f"[Main] {e.__class__.__name__}: {e.message}")
        _print_json(e.to_dict())
        return 1
    finally:
        await close_pool(pool)

    duration = (datetime.now() - start_time).total_seconds()
    print(f"\n[Main] Completed in {duration:.2f} seconds")
    return 0


def serve(port: int) -> int:
    import uvicorn

    uvicorn.run("src.datagate.api.app:app", host="0.0.0.0", port=port)
    return 0


def main():
    parser = argparse.ArgumentParser(
        description="Query application data through the permission-gated data gate",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py --list-functions --role user        # Functions a role may call
  python main.py --call getSettings --role operator  # Call a function
  python main.py --call queryEquipment --params '{"filters": {"status": "active"}}'
  python main.py --sql "SELECT 1" --role admin       # Run raw SQL through the guard
  python main.py --schema --role user                # Tables a role may query
  python main.py --serve                             # Start the HTTP API
        """
    )

    action_group = parser.add_argument_group("Actions")
    actions = action_group.add_mutually_exclusive_group(required=True)
    actions.add_argument(
        "--list-functions",
        action="store_true",
        help="List the database functions the role may execute"
    )
    actions.add_argument(
        "--schema",
        action="store_true",
        help="List the tables and readable columns the role may query"
    )
    actions.add_argument(
        "--call",
        type=str,
        metavar="NAME",
        help="Execute the database function NAME"
    )
    actions.add_argument(
        "--sql",
        type=str,
        metavar="TEXT",
        help="Execute one SQL statement through the raw SQL guard"
    )
    actions.add_argument(
        "--serve",
        action="store_true",
        help="Run the FastAPI application with uvicorn"
    )

    options_group = parser.add_argument_group("Options")
    options_group.add_argument(
        "--role",
        type=str,
        default=None,
        help="Caller role (default: DATAGATE_DEFAULT_ROLE)"
    )
    options_group.add_argument(
        "--params",
        type=str,
        default="{}",
        metavar="JSON",
        help="JSON object of parameters for --call"
    )
    options_group.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port for --serve"
    )

    args = parser.parse_args()

    config = DataGateConfig()
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    if args.role is None:
        args.role = config.default_role

    if args.serve:
        sys.exit(serve(args.port))
    if args.list_functions:
        sys.exit(asyncio.run(list_functions(config, args.role)))
    if args.schema:
        sys.exit(asyncio.run(describe_schema(config, args.role)))
    sys.exit(asyncio.run(run_command(args, config)))


if __name__ == "__main__":
    main()
