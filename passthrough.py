"""
Passthrough routes: POST {BASE_URL}/{Concept}/{action or query} may call a
concept directly. Anything listed here as an exclusion (and any route that
is not a concept route at all) goes through Requesting.request instead, so
that only declared syncs decide what happens.
"""
from typing import Dict, List

# route -> justification
inclusions: Dict[str, str] = {
    # Review
    "/Review/_getReviewByItemAndUser": "reviews are public",
    "/Review/_getItemReviews": "reviews are public",
    "/Review/_getUserReviews": "reviews are public unless marked otherwise",
    "/Review/_getReviewComments": "comments are public",
    # MusicDiscovery
    "/MusicDiscovery/search": "searching is public",
    "/MusicDiscovery/loadEntityDetails": "searching is public",
    "/MusicDiscovery/_getSearchResults": "searching is public",
    "/MusicDiscovery/_getEntityFromUri": "searching is public",
    # UserAuthentication
    "/UserAuthentication/_getUserByUsername": "public lookup of a user by username",
    "/UserAuthentication/_getUsername": "public lookup of a username by user id",
    # Session
    "/Session/_getUser": "public lookup of a user by session id",
}

exclusions: List[str] = [
    "/Session/create",
    "/Session/delete",
    "/UserAuthentication/register",
    "/UserAuthentication/authenticate",
    "/Playlist/createPlaylist",
    "/Playlist/deletePlaylist",
]
