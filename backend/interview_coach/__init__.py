"""Voice mock interview coach: interview controller, answer evaluator and HTTP backend."""

from dotenv import load_dotenv

# Module-level settings read the environment on import.
load_dotenv()

__version__ = "0.1.0"
