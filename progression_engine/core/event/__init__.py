from progression_engine.core.event.bus import EventBus, ListenerPriority

__all__ = ["EventBus", "ListenerPriority"]
