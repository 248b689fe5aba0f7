"""
harness_cli.py - Hazard/Deadline Harness CLI

Click command group over the reference oracle:
  events          run seeds of one condition and write per-run outputs
  compare         run several conditions and aggregate them
  ci              bootstrap CIs per condition and paired differences
  calibrate-gate  measure gaps between gate-open ticks
  move-edges      operator token moves inside recovery windows
  repair-actions  repair moves classified as action motifs

Exit codes:
  0: success
  1: run finished but the verdict is degraded or sparse
  2: fatal error (invalid config, oracle contract violation)
"""

import json
import os
import sys
from dataclasses import replace
from typing import Dict, List, Sequence

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from receipts import StopRule, json_default
from harness.accept_log import run_move_edges, run_repair_actions
from harness.aggregate import (
    aggregate_edge_rows, aggregate_receipt, condition_ci, condition_summary,
    context_divergence, diff_ci, event_conditioned_rows, group_by_condition,
    motif_verdict,
)
from harness.constants import VERDICT_PLAUSIBLE
from harness.export import (
    EDGE_COLUMNS, generate_report, write_csv, write_json, write_jsonl,
    write_run_outputs,
)
from harness.gate import calibrate_gate_gaps
from harness.parallel import run_configs, seed_configs
from harness.reference_oracle import oracle_from_config
from harness.types_config import (
    CONDITIONS, SCENARIO_QUADRANT_DEADLINE, SCENARIO_STRIPE_GATED, RunConfig,
    merge_overrides, parse_set_items,
)

console = Console()

PRESETS = {
    "quadrant": SCENARIO_QUADRANT_DEADLINE,
    "stripe": SCENARIO_STRIPE_GATED,
}


# =============================================================================
# HELPERS
# =============================================================================

def print_success(message: str) -> None:
    console.print(f"[green]✓[/green] {message}")


def print_error(message: str) -> None:
    console.print(f"[red]✗[/red] {message}")


def print_warning(message: str) -> None:
    console.print(f"[yellow]⚠[/yellow] {message}")


def parse_seeds(text: str) -> List[int]:
    """
    Parse a seed list such as "1,2,5-7" into [1, 2, 5, 6, 7].

    Raises:
        click.BadParameter: on empty or malformed input
    """
    seeds = []
    for part in text.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            if "-" in part:
                lo, hi = part.split("-", 1)
                lo_i, hi_i = int(lo), int(hi)
                if hi_i < lo_i:
                    raise ValueError(part)
                seeds.extend(range(lo_i, hi_i + 1))
            else:
                seeds.append(int(part))
        except ValueError:
            raise click.BadParameter(f"invalid seed list {text!r}")
    if not seeds:
        raise click.BadParameter("no seeds given")
    return seeds


def parse_conditions(text: str) -> List[str]:
    names = [c.strip() for c in text.split(",") if c.strip()]
    unknown = [c for c in names if c not in CONDITIONS]
    if not names or unknown:
        raise click.BadParameter(f"conditions must be among {sorted(CONDITIONS)}, got {text!r}")
    return names


def build_config(preset: str, condition: str, set_items: Sequence[str]) -> RunConfig:
    """Preset, then condition, then --set overrides. Validated."""
    config = replace(PRESETS[preset], condition=condition)
    return merge_overrides(config, parse_set_items(set_items))


def _fmt(value) -> str:
    if value is None:
        return "n/a"
    if isinstance(value, float):
        return f"{value:.4g}"
    return str(value)


def _fail(output: str, message: str) -> None:
    if output == "json":
        click.echo(json.dumps({"error": message}))
    else:
        print_error(message)
    sys.exit(2)


def _run_table(results, title: str) -> Table:
    table = Table(title=title)
    table.add_column("condition", style="cyan", no_wrap=True)
    table.add_column("seed", justify="right")
    table.add_column("events", justify="right")
    table.add_column("miss_frac", justify="right", style="red")
    table.add_column("recovery_mean", justify="right", style="green")
    table.add_column("uptime_tail", justify="right", style="blue")
    table.add_column("err_tail_mean", justify="right", style="magenta")
    table.add_column("flags", style="yellow")
    for r in results:
        s = r.summary
        table.add_row(
            s["condition"], str(s["seed"]), str(s["events"]),
            _fmt(s["miss_frac"]), _fmt(s["recovery_mean"]),
            _fmt(s["uptime_tail"]), _fmt(s["err_tail_mean"]),
            ", ".join(r.flags) or "-",
        )
    return table


# =============================================================================
# CLICK GROUP
# =============================================================================

@click.group()
def cli():
    """Hazard/deadline repair harness over the reference oracle."""
    pass


def _common_options(func):
    """Options shared by every run command."""
    func = click.option("--output", "-o", type=click.Choice(["rich", "json"]), default="rich")(func)
    func = click.option("--set", "set_items", multiple=True, help="Override, key=value (repeatable)")(func)
    func = click.option("--seeds", "-s", default="1", help="Seeds, e.g. 1,2,5-7")(func)
    func = click.option("--preset", "-p", type=click.Choice(sorted(PRESETS)), default="quadrant")(func)
    return func


# --- events ---

@cli.command("events")
@_common_options
@click.option("--condition", "-c", type=click.Choice(sorted(CONDITIONS)), default="A")
@click.option("--out", "out_dir", type=click.Path(), help="Directory for per-run outputs")
@click.option("--workers", "-w", type=int, default=1, help="Parallel workers (1 = inline)")
@click.option("--report", is_flag=True, help="Print the text report of every run")
def events_cmd(output: str, set_items, seeds: str, preset: str, condition: str,
               out_dir, workers: int, report: bool) -> None:
    """Run seeds of one condition."""
    try:
        config = build_config(preset, condition, set_items)
        results = run_configs(seed_configs(config, parse_seeds(seeds)), max_workers=workers)
    except StopRule as e:
        _fail(output, str(e))
        return

    written: Dict[int, Dict[str, str]] = {}
    if out_dir:
        for r in results:
            written[r.config.seed] = write_run_outputs(r, out_dir)

    degraded = any(r.summary["miss_frac"] > 0 for r in results)
    if output == "json":
        click.echo(json.dumps({
            "summaries": [r.summary for r in results],
            "merkle_roots": [r.merkle_root for r in results],
            "written": written,
        }, default=json_default))
    else:
        console.print(_run_table(results, f"Condition {condition} ({preset})"))
        if report:
            for r in results:
                console.print(Panel(generate_report(r), title=f"seed {r.config.seed}"))
        if out_dir:
            print_success(f"Wrote {len(results)} run(s) under {out_dir}")
        if degraded:
            print_warning("Some events missed their deadline")
    if degraded:
        sys.exit(1)


# --- compare ---

@cli.command("compare")
@_common_options
@click.option("--conditions", "-c", "conditions", default="A,B,C", help="Comma-separated conditions")
@click.option("--out", "out_dir", type=click.Path(), help="Directory for aggregate outputs")
@click.option("--workers", "-w", type=int, default=1, help="Parallel workers (1 = inline)")
def compare_cmd(output: str, set_items, seeds: str, preset: str, conditions: str,
                out_dir, workers: int) -> None:
    """Run several conditions over the same seeds and aggregate them."""
    try:
        names = parse_conditions(conditions)
        seed_list = parse_seeds(seeds)
        configs = []
        for name in names:
            configs.extend(seed_configs(build_config(preset, name, set_items), seed_list))
        results = run_configs(configs, max_workers=workers)
    except StopRule as e:
        _fail(output, str(e))
        return

    groups = group_by_condition(results)
    summary_rows = [condition_summary(groups[name]) for name in names]
    event_rows = [row for name in names for row in event_conditioned_rows(groups[name])]
    edges = aggregate_edge_rows(row for r in results for row in r.edge_rows)
    divergence = context_divergence(results)
    verdict = motif_verdict(summary_rows)
    receipt = aggregate_receipt(summary_rows, verdict)

    if out_dir:
        for r in results:
            write_run_outputs(r, out_dir)
        write_csv(summary_rows, os.path.join(out_dir, "condition_summary.csv"))
        write_csv(event_rows, os.path.join(out_dir, "event_conditioned.csv"))
        write_csv(edges, os.path.join(out_dir, "transition_edges_top.csv"), EDGE_COLUMNS)
        write_json(divergence, os.path.join(out_dir, "context_divergence.json"))
        write_jsonl([receipt], os.path.join(out_dir, "aggregate_receipts.jsonl"))

    if output == "json":
        click.echo(json.dumps({
            "conditions": summary_rows,
            "event_conditioned": event_rows,
            "context_divergence": divergence,
            "verdict": verdict,
        }, default=json_default))
    else:
        table = Table(title="Condition Summary")
        table.add_column("condition", style="cyan", no_wrap=True)
        table.add_column("runs", justify="right")
        table.add_column("success_rate", justify="right", style="green")
        table.add_column("miss_frac", justify="right", style="red")
        table.add_column("uptime_tail", justify="right", style="blue")
        table.add_column("ep_clock_rate", justify="right", style="magenta")
        table.add_column("unique_op_hazard", justify="right")
        for row in summary_rows:
            table.add_row(
                row["condition"], str(row["runs"]), _fmt(row["success_rate"]),
                _fmt(row["miss_frac_mean"]), _fmt(row["uptime_tail_mean"]),
                _fmt(row["ep_clock_rate_mean"]), _fmt(row["unique_op_hazard_mean"]),
            )
        console.print(table)
        style = "green" if verdict == VERDICT_PLAUSIBLE else "yellow"
        console.print(Panel(f"[{style}]{verdict}[/{style}]\n"
                            f"Context JSD ({divergence['family']}, {divergence['window']}): "
                            f"{_fmt(divergence['average_jsd'])}", title="Verdict"))
        if out_dir:
            print_success(f"Wrote aggregate outputs under {out_dir}")
    if verdict != VERDICT_PLAUSIBLE:
        sys.exit(1)


# --- ci ---

@cli.command("ci")
@_common_options
@click.option("--conditions", "-c", "conditions", default="A,B,C", help="Comma-separated conditions")
@click.option("--baseline", "-b", default="A", help="Condition the others are differenced against")
@click.option("--samples", type=int, default=2000, help="Bootstrap resamples")
@click.option("--workers", "-w", type=int, default=1, help="Parallel workers (1 = inline)")
def ci_cmd(output: str, set_items, seeds: str, preset: str, conditions: str,
           baseline: str, samples: int, workers: int) -> None:
    """Bootstrap CIs per condition and paired differences against a baseline."""
    try:
        names = parse_conditions(conditions)
        if baseline not in names:
            names = [baseline] + names
        seed_list = parse_seeds(seeds)
        configs = []
        for name in names:
            configs.extend(seed_configs(build_config(preset, name, set_items), seed_list))
        results = run_configs(configs, max_workers=workers)
    except StopRule as e:
        _fail(output, str(e))
        return

    groups = group_by_condition(results)
    cis = {name: condition_ci(groups[name], samples) for name in names}
    diffs = {f"{name}-{baseline}": diff_ci(groups[name], groups[baseline], samples)
             for name in names if name != baseline}

    if output == "json":
        click.echo(json.dumps({"ci": cis, "diff": diffs}, default=json_default))
        return

    table = Table(title="Bootstrap 95% CIs")
    table.add_column("condition", style="cyan", no_wrap=True)
    table.add_column("metric", style="green")
    table.add_column("mean", justify="right")
    table.add_column("ci", justify="right", style="magenta")
    for name, metrics in cis.items():
        for metric, est in metrics.items():
            table.add_row(name, metric, _fmt(est["mean"]),
                          f"[{_fmt(est['ci_low'])}, {_fmt(est['ci_high'])}]")
    console.print(table)

    if diffs:
        dtable = Table(title=f"Differences vs {baseline}")
        dtable.add_column("pair", style="cyan", no_wrap=True)
        dtable.add_column("metric", style="green")
        dtable.add_column("diff", justify="right")
        dtable.add_column("ci", justify="right", style="magenta")
        for pair, metrics in diffs.items():
            for metric, est in metrics.items():
                dtable.add_row(pair, metric, _fmt(est["mean"]),
                               f"[{_fmt(est['ci_low'])}, {_fmt(est['ci_high'])}]")
        console.print(dtable)


# --- calibrate-gate ---

@cli.command("calibrate-gate")
@click.option("--preset", "-p", type=click.Choice(sorted(PRESETS)), default="stripe")
@click.option("--set", "set_items", multiple=True, help="Override, key=value (repeatable)")
@click.option("--steps", type=int, default=None, help="Steps to measure (default: run length)")
@click.option("--scale", type=float, default=1.2, help="Deadline = scale * p95 gap")
@click.option("--output", "-o", type=click.Choice(["rich", "json"]), default="rich")
def calibrate_gate_cmd(preset: str, set_items, steps, scale: float, output: str) -> None:
    """Measure gaps between gate-open report ticks and suggest a deadline."""
    try:
        config = build_config(preset, "A", set_items)
        oracle = oracle_from_config(config)
        gaps = calibrate_gate_gaps(oracle, steps or config.steps, config.events.report_every,
                                   config.region, config.gate.span)
    except StopRule as e:
        _fail(output, str(e))
        return

    result = {
        "open_gaps": len(gaps.gaps),
        "p50": gaps.p50,
        "p95": gaps.p95,
        "max": gaps.max,
        "recommended_deadline": gaps.recommended_deadline(scale),
    }
    if output == "json":
        click.echo(json.dumps(result))
        return
    if not gaps.gaps:
        print_warning("Fewer than two gate-open ticks; no gaps measured")
    console.print(Panel(
        "\n".join(f"{k}: {_fmt(v)}" for k, v in result.items()),
        title=f"Gate gaps ({config.region.region_type} {config.region.region_index})",
    ))


# --- move-edges / repair-actions ---

def _accept_log_cmd(runner, kind: str, output: str, set_items, seeds: str,
                    preset: str, condition: str) -> None:
    try:
        config = build_config(preset, condition, set_items)
        results = [runner(c) for c in seed_configs(config, parse_seeds(seeds))]
    except StopRule as e:
        _fail(output, str(e))
        return

    if output == "json":
        click.echo(json.dumps([r.summary for r in results], default=json_default))
        return
    table = Table(title=f"{kind} (condition {condition})")
    table.add_column("seed", justify="right", style="cyan")
    table.add_column("moves hazard", justify="right", style="green")
    table.add_column("moves outside", justify="right", style="blue")
    table.add_column("ep hazard", justify="right", style="magenta")
    table.add_column("ep outside", justify="right", style="magenta")
    for r in results:
        s = r.summary
        table.add_row(str(s["seed"]), str(s["total_moves_hazard"]), str(s["total_moves_outside"]),
                      _fmt(s["total_ep_hazard"]), _fmt(s["total_ep_outside"]))
    console.print(table)


@cli.command("move-edges")
@_common_options
@click.option("--condition", "-c", type=click.Choice(sorted(CONDITIONS)), default="C")
def move_edges_cmd(output: str, set_items, seeds: str, preset: str, condition: str) -> None:
    """Operator token moves inside recovery windows, by offset edge."""
    _accept_log_cmd(run_move_edges, "Move edges", output, set_items, seeds, preset, condition)


@cli.command("repair-actions")
@_common_options
@click.option("--condition", "-c", type=click.Choice(sorted(CONDITIONS)), default="A")
def repair_actions_cmd(output: str, set_items, seeds: str, preset: str, condition: str) -> None:
    """Repair moves inside recovery windows, as action motifs."""
    _accept_log_cmd(run_repair_actions, "Repair actions", output, set_items, seeds, preset, condition)


# =============================================================================
# ENTRY POINT
# =============================================================================

def main() -> int:
    """Entry point for the harness CLI."""
    try:
        cli(standalone_mode=False)
        return 0
    except click.ClickException as e:
        e.show()
        return 2
    except SystemExit as e:
        return e.code if isinstance(e.code, int) else 0


if __name__ == "__main__":
    sys.exit(main())
