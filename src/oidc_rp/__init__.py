"""OpenID Connect authorization-code relying party."""

import sys

__version__ = "0.1.0"


def main() -> None:
    """Console-script entry point (``oidc-rp``)."""
    from oidc_rp.servers.main import main as _run

    sys.exit(_run())


__all__ = ["__version__", "main"]
