"""Tests for the sales and rating reports."""

from unittest.mock import MagicMock, patch

import stats
from database import CATEGORIES
from schemas import OrderLine


def line(product, quantity):
    return OrderLine(product_id=str(product["_id"]), quantity=quantity)


class TestPipelines:
    def test_sales_pipeline_joins_product_then_category(self):
        pipeline = stats.sales_by_category_pipeline()
        lookups = [stage["$lookup"]["from"] for stage in pipeline if "$lookup" in stage]

        assert pipeline[0] == {"$unwind": "$items"}
        assert lookups == ["products", "categories"]

    def test_sales_pipeline_revenue_and_distinct_orders(self):
        group = next(stage["$group"] for stage in stats.sales_by_category_pipeline() if "$group" in stage)

        assert group["_id"] == "$category.name"
        assert group["total_revenue"] == {"$sum": {"$multiply": ["$items.price", "$items.quantity"]}}
        assert group["total_quantity"] == {"$sum": "$items.quantity"}
        assert group["order_ids"] == {"$addToSet": "$_id"}

    def test_sales_sorted_by_revenue_descending(self):
        sort = stats.sales_by_category_pipeline()[-1]["$sort"]
        assert list(sort.items())[0] == ("total_revenue", -1)

    def test_ratings_default_to_zero_and_round(self):
        pipeline = stats.product_ratings_pipeline()
        average = pipeline[0]["$addFields"]["average_rating"]["$cond"]
        project = next(stage["$project"] for stage in pipeline if "$project" in stage)

        assert average["else"] == 0
        assert project["average_rating"] == {"$round": ["$average_rating", 2]}
        assert list(pipeline[-1]["$sort"].items())[0] == ("average_rating", -1)

    def test_ratings_keep_products_without_category(self):
        unwind = next(stage["$unwind"] for stage in stats.product_ratings_pipeline() if "$unwind" in stage)
        assert unwind["preserveNullAndEmptyArrays"] is True


class TestReports:
    def test_sales_by_category_aggregates_orders(self):
        db = MagicMock()
        db.__getitem__.return_value.aggregate.return_value = iter([{"category": "Books"}])

        assert stats.sales_by_category(db) == [{"category": "Books"}]
        db.__getitem__.assert_called_with("orders")
        db.__getitem__.return_value.aggregate.assert_called_once_with(stats.sales_by_category_pipeline())

    def test_product_ratings_aggregates_products(self):
        db = MagicMock()
        db.__getitem__.return_value.aggregate.return_value = iter([])

        assert stats.product_ratings(db) == []
        db.__getitem__.assert_called_with("products")


class TestStatsRoutes:
    def test_sales_route_renders_camel_case(self, client, admin, auth_headers):
        rows = [{"category": "Books", "total_revenue": 30.0, "total_quantity": 3, "order_count": 1}]
        with patch("stats.sales_by_category", return_value=rows):
            response = client.get("/stats/sales", headers=auth_headers(admin))

        assert response.status_code == 200
        assert response.json()["data"] == [
            {"category": "Books", "totalRevenue": 30.0, "totalQuantity": 3, "orderCount": 1}
        ]

    def test_products_route_requires_admin(self, client, customer, auth_headers):
        assert client.get("/stats/products", headers=auth_headers(customer)).status_code == 403
        assert client.get("/stats/products").status_code == 401


class TestSalesReportData:
    def test_revenue_quantity_and_distinct_orders_per_category(self, ctx, orders, customer,
                                                               other_customer, make_product):
        music = ctx.db[CATEGORIES].insert_one({"name": "Music"}).inserted_id
        novel = make_product(name="Novel", price=10.0, stock=10)
        atlas = make_product(name="Atlas", price=5.0, stock=10)
        record = make_product(name="Record", price=3.0, stock=10, category_id=music)

        orders.create_order(str(customer["_id"]), [line(novel, 2), line(atlas, 1)])
        orders.create_order(str(other_customer["_id"]), [line(novel, 1), line(record, 1)])

        assert stats.sales_by_category(ctx.db) == [
            {"category": "Books", "total_revenue": 35.0, "total_quantity": 4, "order_count": 2},
            {"category": "Music", "total_revenue": 3.0, "total_quantity": 1, "order_count": 1},
        ]

    def test_no_orders_no_rows(self, ctx, make_product):
        make_product()
        assert stats.sales_by_category(ctx.db) == []
