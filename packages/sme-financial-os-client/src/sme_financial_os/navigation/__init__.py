from sme_financial_os.navigation.guard import (
    GuardDecision,
    NavigationGuard,
    Navigator,
    RenderMode,
    Routes,
    evaluate,
)

__all__ = ["GuardDecision", "NavigationGuard", "Navigator", "RenderMode", "Routes", "evaluate"]
