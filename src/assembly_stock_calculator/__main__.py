"""
Main entry point for the Assembly Stock Calculator application.

Configures logging and launches the command-line interface (CLI) defined using Typer.
"""
import logging

# --- Logging Setup ---
logging.basicConfig(
    level=logging.WARNING, # Keep the console readable; the CLI prints its own progress
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)
logger.debug("CLI __main__ script started.")

# The cli module loads config and snapshots itself when a command runs
from .cli import app

def run():
    """Runs the Typer CLI application."""
    app()

if __name__ == "__main__":
    run()
