from progression_engine.modules.activity.tracker import ActivityTracker, TrackingResult

__all__ = ["ActivityTracker", "TrackingResult"]
