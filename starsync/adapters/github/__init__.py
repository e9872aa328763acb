from starsync.adapters.github.client import (
    GitHubClient,
    GitHubClientError,
    GitHubRetryableError,
    clamp_per_page,
)
from starsync.adapters.github.models import FetchStarredResult, GitHubRepo, StarredItem
from starsync.adapters.github.pages import PageWalkEnd, StarPage, StarredPages
from starsync.adapters.github.readme import ReadmeService

__all__ = [
    "FetchStarredResult",
    "GitHubClient",
    "GitHubClientError",
    "GitHubRepo",
    "GitHubRetryableError",
    "PageWalkEnd",
    "ReadmeService",
    "StarPage",
    "StarredItem",
    "StarredPages",
    "clamp_per_page",
]
