"""
Static configuration for the progression engine.

Values come from environment variables (with .env support) and are exposed
as attributes of ``Config``.

Usage
-----
```python
from progression_engine.core.config import Config

url = Config.DATABASE_URL
goal = Config.get("DEFAULT_DAILY_GOAL", "regular")
```
"""

from progression_engine.core.config.config import Config, Environment

__all__ = ["Config", "Environment"]
