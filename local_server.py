"""Run an event function locally.

Usage:
    python local_server.py package.module:function

The target can also be given in the EVENTFN_FUNCTION environment variable.
The listen port comes from PORT (see eventfn.config).
"""

import os
import sys

from eventfn.config import ConfigurationError
from eventfn.errors import SignatureError
from eventfn.loader import load_function
from server.http_server import start


def main() -> None:
    """Main entry point."""
    if len(sys.argv) > 1:
        target = sys.argv[1]
    else:
        target = os.environ.get("EVENTFN_FUNCTION")

    if not target:
        print(
            "Error: function target required\n"
            "Usage: eventfn-serve <package.module:function>\n"
            "Or set EVENTFN_FUNCTION environment variable",
            file=sys.stderr,
        )
        sys.exit(1)

    try:
        function = load_function(target)
        start(function)
    except (ConfigurationError, SignatureError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
