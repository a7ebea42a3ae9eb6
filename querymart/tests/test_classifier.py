"""
Tests for the anti-pattern classifier.
"""
import pytest

from conftest import SIX_TABLE_JOIN
from querymart.core.errors import ParseError, ValidationError
from querymart.services.catalog import Catalog
from querymart.services.classifier import (
    LABEL_DESCRIPTIONS,
    MAX_JOINS,
    RULES,
    AntiPattern,
    Classifier,
)


@pytest.fixture
def classifier(catalog):
    return Classifier(catalog, "mysql")


class TestRules:
    """Tests for the rule registry."""

    def test_every_label_has_a_rule(self):
        assert set(RULES) == set(AntiPattern)
        assert set(LABEL_DESCRIPTIONS) == set(AntiPattern)

    def test_labels_are_strings(self):
        assert AntiPattern.TOO_MANY_JOINS == "TOO_MANY_JOINS"


class TestClassify:
    """Tests for Classifier.classify."""

    def test_too_many_joins(self, classifier):
        """Test a six-table join is flagged."""
        assert AntiPattern.TOO_MANY_JOINS in classifier.classify(SIX_TABLE_JOIN)

    def test_single_table_select_has_no_labels(self, classifier):
        assert classifier.classify("SELECT i_item_id, i_color FROM item") == frozenset()

    def test_join_threshold(self, classifier):
        """Test exactly MAX_JOINS joins is still acceptable."""
        four_joins = (
            "SELECT i.i_item_id FROM store_sales ss "
            "JOIN date_dim d ON ss.ss_sold_date_sk = d.d_date_sk "
            "JOIN item i ON ss.ss_item_sk = i.i_item_sk "
            "JOIN customer c ON ss.ss_customer_sk = c.c_customer_sk "
            "JOIN store s ON ss.ss_store_sk = s.s_store_sk"
        )
        assert MAX_JOINS == 4
        assert AntiPattern.TOO_MANY_JOINS not in classifier.classify(four_joins)

    def test_joins_in_subqueries_count(self, classifier):
        sql = (
            "SELECT i.i_item_id FROM item i JOIN store_sales ss ON ss.ss_item_sk = i.i_item_sk "
            "WHERE i.i_item_sk IN ("
            "SELECT ss2.ss_item_sk FROM store_sales ss2 "
            "JOIN date_dim d ON ss2.ss_sold_date_sk = d.d_date_sk "
            "JOIN customer c ON ss2.ss_customer_sk = c.c_customer_sk "
            "JOIN store s ON ss2.ss_store_sk = s.s_store_sk "
            "JOIN promotion p ON ss2.ss_promo_sk = p.p_promo_sk)"
        )
        assert AntiPattern.TOO_MANY_JOINS in classifier.classify(sql)

    def test_cartesian_join(self, classifier):
        labels = classifier.classify("SELECT i_item_id, d_date_id FROM item CROSS JOIN date_dim")
        assert AntiPattern.CARTESIAN_JOIN in labels

    def test_comma_join_with_where_is_not_cartesian(self, classifier):
        labels = classifier.classify(
            "SELECT i_item_id FROM item, store_sales WHERE ss_item_sk = i_item_sk"
        )
        assert AntiPattern.CARTESIAN_JOIN not in labels

    def test_full_table_scan(self, classifier):
        """Test a filter no index can serve is flagged after optimization."""
        labels = classifier.classify("SELECT i_item_id FROM item WHERE i_color = 'red'")
        assert labels == frozenset({AntiPattern.FULL_TABLE_SCAN})

    def test_indexed_filter_is_not_a_full_scan(self, classifier):
        assert classifier.classify("SELECT i_color FROM item WHERE i_item_id = 'x'") == frozenset()

    def test_table_without_indexes_is_not_flagged(self, classifier):
        assert classifier.classify("SELECT p_promo_name FROM promotion WHERE p_promo_name = 'x'") == frozenset()

    def test_unfiltered_modify(self, classifier):
        assert classifier.classify("DELETE FROM item") == frozenset({AntiPattern.UNFILTERED_MODIFY})
        assert AntiPattern.UNFILTERED_MODIFY in classifier.classify("UPDATE item SET i_color = 'red'")
        assert classifier.classify("DELETE FROM item WHERE i_item_sk = 1") == frozenset()

    def test_multiple_labels(self, classifier):
        sql = SIX_TABLE_JOIN + " AND i.i_item_sk > 0 ORDER BY 1"
        sql = sql.replace("JOIN promotion p ON ss.ss_promo_sk = p.p_promo_sk", "CROSS JOIN promotion p")
        # the WHERE clause constrains the cross join
        assert classifier.classify(sql) == frozenset({AntiPattern.TOO_MANY_JOINS})

        labels = classifier.classify(
            "SELECT i.i_item_id FROM item i CROSS JOIN date_dim d "
            "JOIN store_sales ss ON ss.ss_item_sk = i.i_item_sk "
            "JOIN customer c ON ss.ss_customer_sk = c.c_customer_sk "
            "JOIN store s ON ss.ss_store_sk = s.s_store_sk "
            "JOIN promotion p ON ss.ss_promo_sk = p.p_promo_sk"
        )
        assert labels == frozenset({AntiPattern.TOO_MANY_JOINS, AntiPattern.CARTESIAN_JOIN})

    def test_classification_is_deterministic(self, classifier):
        for sql in (SIX_TABLE_JOIN, "SELECT i_item_id FROM item WHERE i_color = 'red'", "DELETE FROM item"):
            assert classifier.classify(sql) == classifier.classify(sql)

    def test_plan_errors_propagate(self, classifier):
        with pytest.raises(ParseError):
            classifier.classify("SELECT * FROM t WHERE (a = 1")
        with pytest.raises(ValidationError):
            classifier.classify("SELECT a FROM missing_table")

    def test_custom_rules(self, catalog):
        classifier = Classifier(catalog, "mysql", rules={AntiPattern.FULL_TABLE_SCAN: lambda plan: True})
        assert classifier.classify("SELECT 1") == frozenset({AntiPattern.FULL_TABLE_SCAN})

    def test_default_catalog_is_permissive(self):
        classifier = Classifier()
        assert isinstance(classifier.catalog, Catalog)
        assert classifier.classify("SELECT a FROM anything") == frozenset()
