"""Sandbox test runner: runs each area's test_* functions and prints a summary."""
import importlib
import sys
import time
import traceback
from collections import Counter
from typing import NamedTuple

# ANSI
G, R, Y, C, RST = "\033[32m", "\033[31m", "\033[33m", "\033[36m", "\033[0m"
B = "\033[1m"

AREAS = ["templates", "binder", "status", "store", "tokens", "signing",
         "workflow", "notifications", "web"]

COLORS = {"PASS": G, "FAIL": R, "ERROR": Y}


class Outcome(NamedTuple):
    status: str  # PASS, FAIL, ERROR
    name: str
    detail: str = ""


class SandboxRunner:
    def __init__(self, out=sys.stdout):
        self.out = out
        self.outcomes: list[Outcome] = []
        self.start_time = 0.0

    @property
    def all_passed(self) -> bool:
        return all(o.status == "PASS" for o in self.outcomes)

    def _record(self, outcome: Outcome, trace: list[str] = ()):
        self.outcomes.append(outcome)
        line = f"  {COLORS[outcome.status]}{outcome.status}{RST} {outcome.name}"
        self.out.write(f"{line}: {outcome.detail}\n" if outcome.detail else f"{line}\n")
        for frame in trace:
            self.out.write(f"        {frame}\n")

    def test(self, name: str, fn):
        """Run one test function and record how it ended."""
        try:
            fn()
        except AssertionError as e:
            self._record(Outcome("FAIL", name, str(e)))
        except Exception as e:
            self._record(Outcome("ERROR", name, f"{type(e).__name__}: {e}"),
                         traceback.format_exc().splitlines()[-3:])
        else:
            self._record(Outcome("PASS", name))

    def run_area(self, area: str):
        """Import sc.sandbox.test_<area> and run its test_* functions in file order."""
        self.out.write(f"{C}--- {area} ---{RST}\n")
        try:
            mod = importlib.import_module(f"sc.sandbox.test_{area}")
        except ImportError as e:
            self._record(Outcome("ERROR", f"import:{area}", str(e)))
        else:
            tests = [(n, f) for n, f in vars(mod).items()
                     if n.startswith("test_") and callable(f)]
            for name, fn in tests:
                self.test(f"{area}:{name[5:]}", fn)
        self.out.write("\n")

    def run(self, areas: list[str]):
        self.start_time = time.time()
        rule = f"{B}{'=' * 60}{RST}\n"
        self.out.write(f"\n{rule}{B}  Speaker Contracts Sandbox{RST}\n{rule}\n")
        for area in areas:
            if area not in AREAS:
                self._record(Outcome("ERROR", f"area:{area}",
                                     f"unknown area (choose from {', '.join(AREAS)})"))
                continue
            self.run_area(area)

    def report(self):
        elapsed = time.time() - self.start_time
        counts = Counter(o.status for o in self.outcomes)
        rule = f"{B}{'=' * 60}{RST}\n"

        self.out.write(rule)
        summary = f"  {B}Results:{RST}  {G}{counts['PASS']} passed{RST}  "
        if counts["FAIL"]:
            summary += f"{R}{counts['FAIL']} failed{RST}  "
        if counts["ERROR"]:
            summary += f"{Y}{counts['ERROR']} errors{RST}  "
        self.out.write(f"{summary}/ {len(self.outcomes)} total  ({elapsed:.1f}s)\n")
        self.out.write(rule)

        failures = [o for o in self.outcomes if o.status != "PASS"]
        if failures:
            self.out.write(f"\n{R}Failures:{RST}\n")
            for o in failures:
                self.out.write(f"  {R}{o.status}{RST} {o.name}\n")
                if o.detail:
                    self.out.write(f"         {o.detail}\n")
            self.out.write("\n")
