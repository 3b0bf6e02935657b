"""Entry point for running orchestra as a module.

This allows running the application with:
    python -m orchestra [OPTIONS] COMMAND
"""

from orchestra.cli import app

if __name__ == "__main__":
    app()
