"""Run a bridge over stdio: ``python -m refbridge``."""

from refbridge.api import run_bridge

if __name__ == "__main__":
    run_bridge()
