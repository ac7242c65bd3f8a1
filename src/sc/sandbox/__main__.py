"""Entry point: python -m sc.sandbox [area ...]"""
import logging
import sys

from .runner import AREAS, SandboxRunner

logging.basicConfig(level=logging.CRITICAL)

runner = SandboxRunner()
runner.run(sys.argv[1:] or AREAS)
runner.report()
sys.exit(0 if runner.all_passed else 1)
