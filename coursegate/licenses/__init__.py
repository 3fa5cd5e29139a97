"""License verification module.

Checks on-chain course licenses (active and not expired), failing closed on
ledger errors and re-querying a negative answer once.
"""

from .service import LicenseVerification, LicenseVerifier


__all__ = ["LicenseVerification", "LicenseVerifier"]
