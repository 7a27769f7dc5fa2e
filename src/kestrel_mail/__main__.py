# =============================================================================
# Kestrel Mail Entry Point for `python -m kestrel_mail`
# =============================================================================
# Equivalent to running the 'kestrel-mail' command after installation.
# =============================================================================

import sys

from kestrel_mail.app import main

if __name__ == "__main__":
    sys.exit(main())
