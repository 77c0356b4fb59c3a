"""
Force-Directed Layout Runner
============================

Generates a graph, lays it out in 3D and exports the positions.

Usage:
    python -m tools.layout                              # Defaults from config/layout.py
    python -m tools.layout --generator grid -n 400      # 20x20 lattice
    python -m tools.layout --steps 500                  # Fixed step count
    python -m tools.layout --mode each_on_each          # Exact gravity
    python -m tools.layout -o layout.npz                # Export format by extension
    python -m tools.layout --list                       # List graph generators
"""

import sys
import time
import shutil
import argparse
from datetime import timedelta

from config import layout as config
from forcelayout import (
    LayoutEngine, RunStatus, drag_force, gravity_force, spring_force, warmup,
)
from tools.export import export_layout
from tools.graphs import GENERATORS, GENERATORS_HELP, generate


def format_time(seconds: float) -> str:
    if seconds < 60:
        return f"{seconds:.1f}s"
    return str(timedelta(seconds=int(seconds)))


class ProgressPrinter:
    """
    Two-line terminal progress display (bar + details).

    With a known step count the bar fills toward it; when running until
    stable it tracks the step budget.
    """

    def __init__(self, total: int, every: int = 10):
        self.total = max(1, total)
        self.every = max(1, every)
        self.started = time.perf_counter()
        self.printed = False

    def __call__(self, step: int, movement: float):
        if step % self.every and step != self.total:
            return
        try:
            term_width = shutil.get_terminal_size().columns
        except OSError:
            term_width = 80

        bar_width = max(10, term_width - 2)
        filled = min(bar_width, int(bar_width * step / self.total))
        bar = "█" * filled + "░" * (bar_width - filled)

        elapsed = time.perf_counter() - self.started
        pct = min(100.0, step / self.total * 100)
        details = (f"{pct:5.1f}% | Step {step:6d}/{self.total} | "
                   f"Movement: {movement:12.4f} | Elapsed: {format_time(elapsed):>6s}")

        # Move up over the previous two lines and redraw
        if self.printed:
            sys.stdout.write("\033[2A")
        sys.stdout.write(f"\033[K[{bar}]\n")
        sys.stdout.write(f"\033[K{details}\n")
        sys.stdout.flush()
        self.printed = True


def list_generators():
    print("[CLI] Graph generators:")
    for name in GENERATORS:
        print(f"  {name:8s} {GENERATORS_HELP[name]}")


def build_engine(args) -> LayoutEngine:
    graph = generate(args.generator, args.nodes, seed=args.seed)
    forces = [gravity_force(args.gravity, args.mode, args.theta)]
    if not args.no_spring:
        forces.append(spring_force(args.stiffness, args.length))
    if not args.no_drag:
        forces.append(drag_force(args.drag))
    return LayoutEngine(graph, *forces, stable_threshold=args.threshold, verbose=args.verbose)


def main(argv=None):
    cli = config.CLI
    parser = argparse.ArgumentParser(description="Force-directed 3D graph layout")
    parser.add_argument("--generator", "-g", default=cli["generator"], choices=sorted(GENERATORS),
                        help="Graph shape to lay out")
    parser.add_argument("--nodes", "-n", type=int, default=cli["nodes"], help="Number of nodes")
    parser.add_argument("--seed", type=int, default=cli["seed"], help="Random generator seed")
    parser.add_argument("--steps", "-s", type=int, default=cli["steps"],
                        help="Run exactly N steps (default: run until stable)")
    parser.add_argument("--max-steps", type=int, help="Step budget when running until stable")
    parser.add_argument("--time-budget", type=float, help="Seconds budget when running until stable")
    parser.add_argument("--mode", choices=["each_on_each", "barnes_hut"], help="Gravity evaluation")
    parser.add_argument("--gravity", type=float, help="Gravity coefficient (negative repels)")
    parser.add_argument("--theta", "-t", type=float, help="Barnes-Hut opening angle")
    parser.add_argument("--stiffness", type=float, help="Spring stiffness")
    parser.add_argument("--length", type=float, help="Spring rest length")
    parser.add_argument("--drag", type=float, help="Drag coefficient in (0, 1]")
    parser.add_argument("--no-spring", action="store_true", help="Disable link springs")
    parser.add_argument("--no-drag", action="store_true", help="Disable drag")
    parser.add_argument("--threshold", type=float, help="Stability threshold")
    parser.add_argument("--output", "-o", default=cli["output"], help="Output file (.json or .npz)")
    parser.add_argument("--no-progress", action="store_true", help="Hide the progress bar")
    parser.add_argument("--verbose", "-v", action="store_true", help="Print engine log lines")
    parser.add_argument("--list", action="store_true", help="List graph generators")
    args = parser.parse_args(argv)

    if args.list:
        list_generators()
        return 0

    print("[CLI] Compiling kernels...")
    warmup()

    engine = build_engine(args)
    print(f"[CLI] Graph: {args.generator}, {len(engine.nodes()):,} nodes, "
          f"{len(engine.links()):,} links")

    if args.steps is not None:
        progress = None if args.no_progress else ProgressPrinter(args.steps)
        result = engine.run_for(args.steps, progress=progress)
    else:
        budget = args.max_steps if args.max_steps is not None else config.LAYOUT["max_steps"]
        progress = None if args.no_progress else ProgressPrinter(budget, every=100)
        result = engine.run_until_stable(max_steps=budget, time_budget=args.time_budget,
                                         progress=progress)

    print(f"[CLI] {result.status.value}: {result.steps} steps, "
          f"movement {result.movement:.4f}, {format_time(result.elapsed)}")
    if result.status is RunStatus.FAULT:
        print(f"[CLI] Error: {result.fault}")
        return 1

    export_layout(args.output, engine.nodes(), engine.links())
    return 0


if __name__ == "__main__":
    sys.exit(main())
