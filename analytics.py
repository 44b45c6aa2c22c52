"""Seller dashboard figures, aggregated from listings and orders."""

from auth import Permission, authorize


def _first(cursor, default: dict) -> dict:
    for doc in cursor:
        return doc
    return default


class SellerAnalytics:
    def __init__(self, db):
        self.db = db

    def dashboard(self, seller: dict) -> dict:
        authorize(seller, Permission.view_sales)
        seller_id = seller["_id"]
        phones = self.db["phone"]

        views = _first(phones.aggregate([
            {"$match": {"seller_id": seller_id}},
            {"$group": {"_id": None, "total_views": {"$sum": "$views"}}},
        ]), {"total_views": 0})
        # an order can hold other sellers' lines, so unwind before matching
        sold = _first(self.db["order"].aggregate([
            {"$match": {"items.seller_id": seller_id}},
            {"$unwind": "$items"},
            {"$match": {"items.seller_id": seller_id}},
            {"$group": {
                "_id": None,
                "total_sold": {"$sum": "$items.quantity"},
                "total_revenue": {"$sum": {"$multiply": ["$items.price", "$items.quantity"]}},
            }},
        ]), {"total_sold": 0, "total_revenue": 0})

        return {
            "total_listings": phones.count_documents({"seller_id": seller_id}),
            "active_listings": phones.count_documents({"seller_id": seller_id, "is_available": True}),
            "total_views": views["total_views"],
            "total_sold": sold["total_sold"],
            "total_revenue": sold["total_revenue"],
        }
