"""
Polls the service /health endpoint and prints the local git state,
to tell whether the deployed version matches the checked-out commit.
"""

import argparse
import os

from app.services.diagnostics import fetch_health
from app.services.diagnostics import format_report
from app.services.diagnostics import git_metadata

# --- Config -----------------------------------------------------
DEFAULT_URL = os.getenv("EXPORT_SERVICE_URL", "http://localhost:8000")


# --- Main -------------------------------------------------------
def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--url", default=DEFAULT_URL, help="Base URL of the export service")
    parser.add_argument("--repo", default=".", help="Git checkout to describe")
    args = parser.parse_args()

    print(format_report(fetch_health(args.url), git_metadata(args.repo)))


if __name__ == "__main__":
    main()
