"""SME Financial OS - session/tenant-scoped API client."""

__all__ = ["ApiClient", "AuthContext", "FinancialOSApp", "NavigationGuard", "Settings"]
__version__ = "0.1.0"


def __getattr__(name: str):
    """Lazy imports keep ``import sme_financial_os`` free of httpx/aiosqlite."""
    if name == "Settings":
        from sme_financial_os.settings import Settings

        return Settings
    if name == "ApiClient":
        from sme_financial_os.transport.client import ApiClient

        return ApiClient
    if name == "AuthContext":
        from sme_financial_os.auth.context import AuthContext

        return AuthContext
    if name == "NavigationGuard":
        from sme_financial_os.navigation.guard import NavigationGuard

        return NavigationGuard
    if name == "FinancialOSApp":
        from sme_financial_os.app import FinancialOSApp

        return FinancialOSApp
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
