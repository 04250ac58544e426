import sys

from .main import run_from_cli

sys.exit(run_from_cli())
