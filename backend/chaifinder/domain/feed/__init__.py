"""Review feed domain exports."""

from .models import FeedSource, FeedState, ReviewFeedItem, SpotDetails  # noqa: F401
from .service import FeedAggregator, get_feed  # noqa: F401
from .spot_cache import SpotDetailsCache  # noqa: F401
