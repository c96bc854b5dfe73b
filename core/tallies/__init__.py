"""
Tallies package.

This namespace exposes the record shapes only. The engine, trend estimator,
demographics aggregator and TallyService live in their own modules so that
storage code can import the records without pulling in the service.
"""

from .models import (
    AwardsMetrics,
    CategoryPerformance,
    CategoryRef,
    CategoryStanding,
    DataIntegrityWarnings,
    LocationBreakdown,
    NomineeRef,
    NomineeStanding,
    ResultSet,
    TopPerformer,
    TrendComparison,
    TrendSeries,
    UserRef,
    VoteRecord,
)

__all__ = [
    "AwardsMetrics",
    "CategoryPerformance",
    "CategoryRef",
    "CategoryStanding",
    "DataIntegrityWarnings",
    "LocationBreakdown",
    "NomineeRef",
    "NomineeStanding",
    "ResultSet",
    "TopPerformer",
    "TrendComparison",
    "TrendSeries",
    "UserRef",
    "VoteRecord",
]
