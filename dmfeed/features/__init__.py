from .display import FeedPrinter
from .lottery import LotteryWatcher

__all__ = ["FeedPrinter", "LotteryWatcher"]
