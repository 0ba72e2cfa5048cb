import unittest

from sqlalchemy import inspect as sa_inspect
from sqlalchemy.exc import OperationalError

from tablequery.core.errors import InvalidFilterValueError, QueryExecutionError, UnknownColumnError, UnknownRelationError
from tablequery.schemas.table import TableParams
from tablequery.services.request_params import bind_table_params, reset_table_params
from tablequery.services.table_query import TableQuery
from tests.base import Category, Post, SeededDatabaseTestCase, Unmigrated, User


def _ids(page):
    return [row.id for row in page.items]


class TableQueryFilterTests(SeededDatabaseTestCase):
    def _filtered_ids(self, *filters):
        with self.SessionLocal() as session:
            page = TableQuery(session.query(User), {"filters": list(filters), "perPage": 50}).paginated()
            return sorted(_ids(page))

    def test_scalar_value_is_equality(self):
        self.assertEqual(self._filtered_ids({"column": "active", "values": "true"}), [1, 2, 4])
        self.assertEqual(self._filtered_ids({"column": "name", "value": "Mark Twain"}), [3])

    def test_list_value_is_set_membership(self):
        self.assertEqual(self._filtered_ids({"column": "age", "values": [25, "40", 99]}), [2, 3])

    def test_range_is_inclusive(self):
        both_bounds = {"column": "age", "values": [25, 40], "modifiers": {"range": True}}
        self.assertEqual(self._filtered_ids(both_bounds), [1, 2, 3])
        inside = {"column": "age", "values": [26, 39], "modifiers": {"range": "1"}}
        self.assertEqual(self._filtered_ids(inside), [1])

    def test_range_with_blank_bound_is_one_sided(self):
        upper_only = {"column": "age", "values": ["", 30], "modifiers": {"range": True}}
        self.assertEqual(self._filtered_ids(upper_only), [2, 4])
        lower_only = {"column": "age", "values": [40, None], "modifiers": {"range": True}}
        self.assertEqual(self._filtered_ids(lower_only), [3, 5])

    def test_range_needs_exactly_two_values(self):
        three = {"column": "age", "values": [1, 2, 3], "modifiers": {"range": True}}
        self.assertEqual(self._filtered_ids(three), [1, 2, 3, 4, 5])

    def test_datetime_equal_date_matches_whole_day(self):
        self.assertEqual(self._filtered_ids({"column": "created_at", "values": "2026-01-10"}), [1, 2])

    def test_datetime_range_with_date_upper_bound_includes_that_day(self):
        window = {"column": "created_at", "values": ["2026-01-10", "2026-01-11"], "modifiers": {"range": True}}
        self.assertEqual(self._filtered_ids(window), [1, 2, 3])

    def test_filters_are_combined_with_and(self):
        self.assertEqual(
            self._filtered_ids({"column": "active", "values": True}, {"column": "age", "values": [19, 31, 40]}),
            [1, 4],
        )

    def test_missing_value_skips_filter(self):
        self.assertEqual(self._filtered_ids({"column": "age"}, {"column": "name", "values": []}), [1, 2, 3, 4, 5])

    def test_relational_filter_uses_relation_existence(self):
        with self.SessionLocal() as session:
            table = TableQuery(session.query(User), {"filters": [{"column": "profile.city", "values": ["Lisbon", "Berlin"]}]})
            sql = str(table.get_query().statement.compile(compile_kwargs={"literal_binds": True}))
            ids = sorted(_ids(table.paginated()))
        self.assertIn("EXISTS", sql)
        self.assertEqual(ids, [1, 3])

    def test_nested_relational_filter(self):
        self.assertEqual(self._filtered_ids({"column": "profile.country.name", "values": "Portugal"}), [1, 2])

    def test_collection_relational_filter(self):
        self.assertEqual(self._filtered_ids({"column": "posts.title", "values": ["Hello world", "Beta"]}), [1, 4])

    def test_unknown_column_raises_query_execution_error(self):
        with self.SessionLocal() as session:
            with self.assertRaises(UnknownColumnError) as ctx:
                TableQuery(session.query(User), {"filters": [{"column": "nickname", "values": "x"}]})
        self.assertIsInstance(ctx.exception, QueryExecutionError)

    def test_unknown_relation_raises_query_execution_error(self):
        with self.SessionLocal() as session:
            with self.assertRaises(UnknownRelationError):
                TableQuery(session.query(User), {"filters": [{"column": "company.name", "values": "x"}]})

    def test_unconvertible_value_raises(self):
        with self.SessionLocal() as session:
            with self.assertRaises(InvalidFilterValueError):
                TableQuery(session.query(User), {"filters": [{"column": "age", "values": "abc"}]})

    def test_fractional_value_on_integer_column_raises(self):
        with self.SessionLocal() as session:
            with self.assertRaises(InvalidFilterValueError):
                TableQuery(session.query(User), {"filters": [{"column": "age", "values": 31.5}]})
            page = TableQuery(session.query(User), {"filters": [{"column": "age", "values": 31.0}]}).paginated()
        self.assertEqual(_ids(page), [1])


class TableQuerySortTests(SeededDatabaseTestCase):
    def _sorted_ids(self, *sorting):
        with self.SessionLocal() as session:
            return _ids(TableQuery(session.query(User), {"sorting": list(sorting)}).paginated())

    def test_direction_is_case_insensitive(self):
        self.assertEqual(self._sorted_ids({"column": "age", "direction": "DESC"}), [5, 3, 1, 2, 4])

    def test_invalid_entries_do_not_order(self):
        with self.SessionLocal() as session:
            table = TableQuery(
                session.query(User),
                {
                    "sorting": [
                        {"column": "age", "direction": "sideways"},
                        {"column": "name"},
                        {"direction": "asc"},
                    ]
                },
            )
            sql = str(table.get_query().statement)
        self.assertNotIn("ORDER BY", sql)

    def test_multiple_keys_apply_in_order(self):
        ids = self._sorted_ids({"column": "active", "direction": "desc"}, {"column": "name", "direction": "asc"})
        self.assertEqual(ids, [4, 2, 1, 5, 3])

    def test_relational_sort_joins_to_one_relation(self):
        with self.SessionLocal() as session:
            page = TableQuery(session.query(User), {"sorting": [{"column": "profile.city", "direction": "asc"}]}).paginated()
        # SQLite orders NULL first: user 4 has no profile.
        self.assertEqual(_ids(page), [4, 3, 5, 1, 2])
        self.assertEqual(page.total, 5)

    def test_relational_sort_combined_with_relational_filter(self):
        with self.SessionLocal() as session:
            page = TableQuery(
                session.query(User),
                {
                    "filters": [{"column": "profile.country.name", "values": ["Portugal", "Germany"]}],
                    "sorting": [{"column": "profile.city", "direction": "desc"}],
                },
            ).paginated()
        self.assertEqual(_ids(page), [2, 1, 3])

    def test_sort_across_collection_is_skipped(self):
        with self.SessionLocal() as session:
            table = TableQuery(session.query(User), {"sorting": [{"column": "posts.title", "direction": "asc"}]})
            sql = str(table.get_query().statement)
            page = table.paginated()
        self.assertNotIn("ORDER BY", sql)
        self.assertEqual(page.total, 5)


class TableQuerySearchTests(SeededDatabaseTestCase):
    def test_search_matches_substring_case_insensitively(self):
        with self.SessionLocal() as session:
            page = TableQuery(
                session.query(User),
                {"search": "jo", "columns": [{"name": "id"}, {"name": "name", "searchable": True}]},
            ).paginated()
        self.assertEqual(sorted(_ids(page)), [1, 2, 4])

    def test_searchable_flag_is_coerced(self):
        with self.SessionLocal() as session:
            searchable = TableQuery(
                session.query(User), {"search": "STONE", "columns": [{"name": "name", "searchable": "1"}]}
            ).paginated()
            not_searchable = TableQuery(
                session.query(User), {"search": "STONE", "columns": [{"name": "name", "searchable": "0"}]}
            ).paginated()
        self.assertEqual(_ids(searchable), [5])
        self.assertEqual(not_searchable.total, 5)

    def test_search_without_searchable_columns_is_pass_through(self):
        with self.SessionLocal() as session:
            page = TableQuery(session.query(User), {"search": "zzz", "columns": [{"name": "name"}]}).paginated()
        self.assertEqual(page.total, 5)

    def test_non_string_column_is_searched_as_text(self):
        with self.SessionLocal() as session:
            page = TableQuery(session.query(User), {"search": "5", "columns": [{"name": "age", "searchable": True}]}).paginated()
        self.assertEqual(sorted(_ids(page)), [2, 5])

    def test_relational_search_is_scoped_and_eager_loaded(self):
        with self.SessionLocal() as session:
            table = TableQuery(
                session.query(User),
                {
                    "search": "jo",
                    "columns": [
                        {"name": "name", "searchable": True},
                        {"name": "profile.city", "searchable": True},
                    ],
                },
            )
            page = table.paginated()
            unloaded = [sa_inspect(row).unloaded for row in page.items]
        self.assertEqual(table.eager_loads, ["profile"])
        self.assertEqual(sorted(_ids(page)), [1, 2, 4, 5])
        for names in unloaded:
            self.assertNotIn("profile", names)

    def test_search_group_is_anded_with_filters(self):
        with self.SessionLocal() as session:
            page = TableQuery(
                session.query(User),
                {
                    "search": "jo",
                    "filters": [{"column": "active", "values": False}],
                    "columns": [
                        {"name": "name", "searchable": True},
                        {"name": "profile.city", "searchable": True},
                    ],
                },
            ).paginated()
        self.assertEqual(_ids(page), [5])

    def test_search_relations_merge_with_registered_eager_loads(self):
        with self.SessionLocal() as session:
            table = TableQuery(
                session.query(User),
                {"columns": [{"name": "profile.city", "searchable": True}, {"name": "profile.country.name", "searchable": True}]},
                eager_loads=["roles", "profile"],
            )
        self.assertEqual(table.eager_loads, ["roles", "profile", "profile.country"])


class TableQueryProjectionTests(SeededDatabaseTestCase):
    def test_defaults_without_columns(self):
        with self.SessionLocal() as session:
            table = TableQuery(session.query(User), {})
            page = table.paginated()
        self.assertEqual(table.extract_column_names(), ["*"])
        self.assertEqual(page.per_page, 15)
        self.assertEqual(page.total, 5)
        self.assertEqual(page.columns, ["*"])

    def test_relational_columns_are_not_projected(self):
        with self.SessionLocal() as session:
            table = TableQuery(
                session.query(User),
                {"columns": [{"name": "id"}, {"name": "name"}, {"name": "profile.city"}]},
            )
            page = table.paginated()
            unloaded = sa_inspect(page.items[0]).unloaded
        self.assertEqual(table.extract_column_names(), ["id", "name"])
        self.assertIn("email", unloaded)
        self.assertNotIn("name", unloaded)

    def test_eager_loaded_relation_keeps_its_foreign_key(self):
        with self.SessionLocal() as session:
            page = TableQuery(
                session.query(Post),
                {"search": "john", "columns": [{"name": "title"}, {"name": "author.name", "searchable": True}]},
            ).paginated()
            authors = sorted({row.author.name for row in page.items})
            unloaded = sa_inspect(page.items[0]).unloaded
        self.assertEqual(page.total, 2)
        self.assertEqual(authors, ["John Smith"])
        self.assertNotIn("author_id", unloaded)


class TableQueryCountTests(SeededDatabaseTestCase):
    def test_with_count_attaches_counts_without_loading_relation(self):
        with self.SessionLocal() as session:
            page = TableQuery(session.query(User), {"sorting": [{"column": "id", "direction": "asc"}]}).with_count(["posts"]).paginated()
            counts = {row.id: row.posts_count for row in page.items}
            unloaded = sa_inspect(page.items[0]).unloaded
        self.assertEqual(counts, {1: 2, 2: 1, 3: 0, 4: 3, 5: 0})
        self.assertIn("posts", unloaded)

    def test_with_count_accepts_variadic_names(self):
        with self.SessionLocal() as session:
            page = (
                TableQuery(session.query(User), {"filters": [{"column": "id", "values": [1, 3]}]})
                .with_count("posts", "roles")
                .paginated()
            )
            counts = {row.id: (row.posts_count, row.roles_count) for row in page.items}
        self.assertEqual(counts, {1: (2, 2), 3: (0, 0)})

    def test_with_count_on_posts_comments(self):
        with self.SessionLocal() as session:
            page = TableQuery(session.query(Post), {"perPage": 50}).with_count(("comments",)).paginated()
            counts = {row.id: row.comments_count for row in page.items}
        self.assertEqual(counts, {1: 2, 2: 0, 3: 1, 4: 1, 5: 1, 6: 1})

    def test_with_count_on_self_referential_relation(self):
        with self.SessionLocal() as session:
            page = TableQuery(
                session.query(Category), {"sorting": [{"column": "id", "direction": "asc"}]}
            ).with_count("children").paginated()
            counts = {row.id: row.children_count for row in page.items}
        self.assertEqual(counts, {1: 2, 2: 1, 3: 0, 4: 0})

    def test_with_count_on_self_referential_relation_keeps_filters(self):
        with self.SessionLocal() as session:
            page = TableQuery(
                session.query(Category), {"filters": [{"column": "parent_id", "values": 1}]}
            ).with_count("children").paginated()
            counts = {row.id: row.children_count for row in page.items}
        self.assertEqual(counts, {2: 1, 3: 0})


class TableQueryPaginationTests(SeededDatabaseTestCase):
    def test_page_metadata(self):
        with self.SessionLocal() as session:
            page = TableQuery(
                session.query(User),
                {"perPage": "2", "page": 2, "sorting": [{"column": "id", "direction": "asc"}]},
            ).paginated()
        self.assertEqual(_ids(page), [3, 4])
        self.assertEqual(page.total, 5)
        self.assertEqual(page.last_page, 3)
        self.assertEqual((page.from_, page.to), (3, 4))
        self.assertTrue(page.has_more_pages)

    def test_explicit_page_argument_wins(self):
        with self.SessionLocal() as session:
            page = TableQuery(
                session.query(User),
                {"perPage": 2, "page": 1, "sorting": [{"column": "id", "direction": "asc"}]},
            ).paginated(page=3)
        self.assertEqual(_ids(page), [5])
        self.assertFalse(page.has_more_pages)

    def test_unusable_page_argument_falls_back_to_first_page(self):
        with self.SessionLocal() as session:
            table = TableQuery(session.query(User), {"perPage": 2, "sorting": [{"column": "id", "direction": "asc"}]})
            not_a_number = table.paginated(page="abc")
            negative = table.paginated(page="-3")
        self.assertEqual((not_a_number.current_page, _ids(not_a_number)), (1, [1, 2]))
        self.assertEqual((negative.current_page, _ids(negative)), (1, [1, 2]))

    def test_page_past_the_end_is_empty(self):
        with self.SessionLocal() as session:
            page = TableQuery(session.query(User), {"perPage": 10, "page": 4}).paginated()
        self.assertEqual(page.items, [])
        self.assertIsNone(page.from_)
        self.assertEqual(page.to_dict()["last_page"], 1)

    def test_database_errors_are_wrapped(self):
        with self.SessionLocal() as session:
            table = TableQuery(session.query(Unmigrated), {})
            with self.assertRaises(QueryExecutionError) as ctx:
                table.paginated()
        self.assertIsInstance(ctx.exception.__cause__, OperationalError)


class TableQueryAmbientParamsTests(SeededDatabaseTestCase):
    def test_uses_params_bound_for_current_request(self):
        token = bind_table_params(
            TableParams.from_source({"search": "jo", "columns": [{"name": "name", "searchable": True}], "perPage": 2})
        )
        try:
            with self.SessionLocal() as session:
                page = TableQuery(session.query(User)).paginated()
        finally:
            reset_table_params(token)
        self.assertEqual(page.total, 3)
        self.assertEqual(page.per_page, 2)

    def test_without_bound_params_uses_defaults(self):
        with self.SessionLocal() as session:
            page = TableQuery(session.query(User)).paginated()
        self.assertEqual((page.total, page.per_page), (5, 15))

    def test_keyed_column_shape_matches_list_shape(self):
        keyed = {
            "search": "o",
            "columns": {
                "name": {"searchable": "true"},
                "age": {"values": [19, 40], "modifiers": {"range": "1"}, "sortDirection": "desc"},
            },
        }
        listed = {
            "search": "o",
            "columns": [{"name": "name", "searchable": True}, {"name": "age"}],
            "filters": [{"column": "age", "values": [19, 40], "modifiers": {"range": True}}],
            "sorting": [{"column": "age", "direction": "desc"}],
        }
        with self.SessionLocal() as session:
            keyed_ids = _ids(TableQuery(session.query(User), keyed).paginated())
            listed_ids = _ids(TableQuery(session.query(User), listed).paginated())
        self.assertEqual(keyed_ids, listed_ids)
        self.assertEqual(keyed_ids, [1, 2, 4])


if __name__ == "__main__":
    unittest.main()
