"""
Recommendation Analytics Package

Dashboard rollups for recommendation exposures, experiment performance and daily engagement.
"""

from .dashboard import get_dashboard_data, engagement_trends, strategy_rollup

__all__ = [
    'get_dashboard_data',
    'engagement_trends',
    'strategy_rollup',
]
