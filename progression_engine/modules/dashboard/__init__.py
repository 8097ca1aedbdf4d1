from progression_engine.modules.dashboard.service import DashboardService

__all__ = ["DashboardService"]
