#!/usr/bin/env python3
"""Interactive flow runner: run a workspace flow and print live progress."""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

# Ensure project root is importable
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from waveflow import FlowRunState, FlowRunStatus, RunOptions, WaveEngine, WaveFlowError
from waveflow.config import Settings
from waveflow.logger import configure_logging
from waveflow.models import Flow
from waveflow.sinks import CallbackRunStateSink

ICONS = {
    "success": "✓",
    "failed": "✗",
    "skipped": "↷",
    "running": "…",
    "idle": " ",
}


def pick_flow(flows: list[Flow]) -> Flow:
    """Let the user choose a flow from the list."""
    print("\nAvailable flows:")
    for i, flow in enumerate(flows, 1):
        desc = f": {flow.description}" if flow.description else ""
        print(f"  {i}. {flow.id} ({len(flow.nodes)} nodes){desc}")

    while True:
        choice = input(f"\nSelect flow [1-{len(flows)}]: ").strip()
        if choice.isdigit() and 1 <= int(choice) <= len(flows):
            return flows[int(choice) - 1]
        print("Invalid choice, try again.")


def print_progress(flow_id: str, state: FlowRunState) -> None:
    if state.result is None:
        return
    p = state.result.progress
    running = ", ".join(state.running_node_ids) or "-"
    print(
        f"  [{p.completed}/{p.total}] ok={p.succeeded} failed={p.failed} "
        f"skipped={p.skipped} running={running}"
    )


async def run(workspace: Path, flow_id: str | None, options: RunOptions) -> int:
    """Execute the flow and print a per-node summary."""
    settings = Settings.from_env()
    async with WaveEngine(
        workspace,
        settings=settings,
        sink=CallbackRunStateSink(print_progress),
    ) as engine:
        if flow_id is None:
            flows = engine.list_flows()
            if not flows:
                print(f"No .flow.json files found in {workspace / 'flows'}")
                return 1
            flow_id = pick_flow(flows).id

        print(f"\n▶ Running flow: {flow_id}")
        print(f"  Workspace:    {workspace}")
        print(f"  Environment:  {options.environment_id or '-'}")
        print(f"  Mode:         {'parallel' if options.parallel else 'sequential'}")
        print()

        try:
            result = await engine.run(flow_id, options)
        except WaveFlowError as exc:
            print(f"\n✗ Flow failed: {exc}")
            return 1

    print(f"\n{'='*60}")
    print(f"  Status: {result.status.value}")
    print(f"  Validation: {result.validation_status.value}")
    if result.error:
        print(f"  Error:  {result.error}")
    print("  Nodes:")
    for nr in result.node_results.values():
        icon = ICONS.get(nr.status.value, "?")
        status_code = f" {nr.response.status}" if nr.response else ""
        elapsed = f" {nr.response.elapsed_time:.0f}ms" if nr.response else ""
        print(f"    {icon} {nr.alias} [{nr.status.value}]{status_code}{elapsed}")
        if nr.error:
            print(f"      Error: {nr.error}")
        outcome = nr.response.validation_result if nr.response else None
        if outcome is not None:
            for rule in outcome.results:
                mark = "✓" if rule.passed else "✗"
                print(f"      {mark} {rule.rule_name or rule.rule_id}: {rule.message}")
    print(f"{'='*60}")
    return 0 if result.status == FlowRunStatus.SUCCESS else 1


def main() -> None:
    parser = argparse.ArgumentParser(description="Run a WaveFlow flow")
    parser.add_argument("flow_id", nargs="?", help="flow id (prompted if omitted)")
    parser.add_argument("--workspace", default=None, help="workspace directory")
    parser.add_argument("--env", dest="environment_id", default=None)
    parser.add_argument("--auth", dest="default_auth_id", default=None)
    parser.add_argument("--sequential", action="store_true")
    args = parser.parse_args()

    settings = Settings.from_env()
    configure_logging(settings.log_level, settings.log_json)
    workspace = Path(args.workspace or settings.workspace_dir)
    options = RunOptions(
        environment_id=args.environment_id,
        default_auth_id=args.default_auth_id,
        parallel=not args.sequential,
    )
    sys.exit(asyncio.run(run(workspace, args.flow_id, options)))


if __name__ == "__main__":
    main()
