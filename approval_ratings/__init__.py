from approval_ratings import config  # noqa: F401
