"""
MAL field lists and display labels used when mapping API responses to view models.
"""

# Fields requested for list sync (minimal set)
ANIME_LIST_FIELDS = [
    "id",
    "title",
    "genres",
    "media_type",
    "status",
    "my_list_status",
    "num_episodes",
    "average_episode_duration",
    "start_season",
    "updated_at",
]

# Fields for full anime details (search, list pages)
ANIME_DETAIL_FIELDS = [
    "id",
    "title",
    "main_picture",
    "alternative_titles",
    "start_date",
    "end_date",
    "synopsis",
    "mean",
    "popularity",
    "genres",
    "media_type",
    "status",
    "my_list_status",
    "num_episodes",
    "start_season",
    "broadcast",
    "source",
    "average_episode_duration",
    "rating",
    "studios",
    "updated_at",
]

USER_FIELDS = ["id", "name", "picture", "anime_statistics"]

SCORE_LABELS = {
    0: "(0) No Score",
    1: "(1) Appalling",
    2: "(2) Horrible",
    3: "(3) Very Bad",
    4: "(4) Bad",
    5: "(5) Average",
    6: "(6) Fine",
    7: "(7) Good",
    8: "(8) Very Good",
    9: "(9) Great",
    10: "(10) Masterpiece",
}

SERIES_STATUS = {
    "currently_airing": {"value": "Airing", "color": "green"},
    "finished_airing": {"value": "Finished Airing", "color": "blue"},
    "not_yet_aired": {"value": "Not Yet Aired", "color": "red"},
}

SERIES_TYPE = {
    "unknown": "Unknown",
    "tv": "TV",
    "ova": "OVA",
    "movie": "Movie",
    "special": "Special",
    "ona": "ONA",
    "music": "Music",
}

RATING = {
    "g": "G",
    "pg": "PG",
    "pg_13": "PG13",
    "r": "R17",
    "r+": "R17",
    "rx": "R18",
}

# MAL list status value -> page title
USER_STATUS = {
    "watching": "Currently Watching",
    "completed": "Completed",
    "dropped": "Dropped",
    "on_hold": "On Hold",
    "plan_to_watch": "Plan To Watch",
}
USER_STATUS_REVERSE = {title: value for value, title in USER_STATUS.items()}
