"""Read-only sales and rating reports built from aggregation pipelines."""

from typing import List

from pymongo.database import Database

from database import CATEGORIES, ORDERS, PRODUCTS


def sales_by_category_pipeline() -> List[dict]:
    return [
        {"$unwind": "$items"},
        {"$lookup": {
            "from": PRODUCTS,
            "localField": "items.product_id",
            "foreignField": "_id",
            "as": "product",
        }},
        {"$unwind": "$product"},
        {"$lookup": {
            "from": CATEGORIES,
            "localField": "product.category_id",
            "foreignField": "_id",
            "as": "category",
        }},
        {"$unwind": "$category"},
        {"$group": {
            "_id": "$category.name",
            "total_revenue": {"$sum": {"$multiply": ["$items.price", "$items.quantity"]}},
            "total_quantity": {"$sum": "$items.quantity"},
            "order_ids": {"$addToSet": "$_id"},
        }},
        {"$project": {
            "_id": 0,
            "category": "$_id",
            "total_revenue": 1,
            "total_quantity": 1,
            "order_count": {"$size": "$order_ids"},
        }},
        {"$sort": {"total_revenue": -1, "category": 1}},
    ]


def product_ratings_pipeline() -> List[dict]:
    reviews = {"$ifNull": ["$reviews", []]}
    return [
        {"$addFields": {
            "review_count": {"$size": reviews},
            "average_rating": {"$cond": {
                "if": {"$gt": [{"$size": reviews}, 0]},
                "then": {"$avg": "$reviews.rating"},
                "else": 0,
            }},
        }},
        {"$lookup": {
            "from": CATEGORIES,
            "localField": "category_id",
            "foreignField": "_id",
            "as": "category",
        }},
        {"$unwind": {"path": "$category", "preserveNullAndEmptyArrays": True}},
        {"$project": {
            "name": 1,
            "price": 1,
            "stock": 1,
            "category_name": {"$ifNull": ["$category.name", None]},
            "average_rating": {"$round": ["$average_rating", 2]},
            "review_count": 1,
        }},
        {"$sort": {"average_rating": -1, "name": 1}},
    ]


def sales_by_category(db: Database) -> List[dict]:
    return list(db[ORDERS].aggregate(sales_by_category_pipeline()))


def product_ratings(db: Database) -> List[dict]:
    return list(db[PRODUCTS].aggregate(product_ratings_pipeline()))
