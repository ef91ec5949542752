"""Entry point for running inbox-triage as a module.

Usage:
    python -m inbox_triage triage
    python -m inbox_triage --help
"""

from dotenv import load_dotenv

load_dotenv()  # Load .env before any other imports that need env vars

from inbox_triage.cli import main  # noqa: E402

if __name__ == "__main__":
    main()
