from khidma.modules.bids.models import Bid, BidStatus

__all__ = ["Bid", "BidStatus"]
