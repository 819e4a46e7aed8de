"""
ZoneSentinel - Geospatial Risk Zone Scoring & Route-Corridor Risk Engine

Maintains a risk score per H3 cell from historical security events and
analyst adjustments, with an auditable history, and flags routes that pass
near known high-risk highway corridors.

Modules:
    - geo: H3 cell validation, geodesy and the geocoding adapter
    - corridors: static corridor registry and route corridor analyzer
    - core: Redis store access, score engine and batch recalculation
    - posture: dashboard-level security KPIs
    - service: the ZoneSentinel facade wiring everything together
"""

__version__ = "1.0.0"
__author__ = "ZoneSentinel Security Team"
__license__ = "MIT"
