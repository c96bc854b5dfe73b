from services.awards_api.client import AwardsApiClient, FetchFailure
from services.awards_api.source import VoteDataSource

__all__ = ["AwardsApiClient", "FetchFailure", "VoteDataSource"]
