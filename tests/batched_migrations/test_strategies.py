from __future__ import annotations

from django.test import SimpleTestCase, TestCase

from dataplatform.batched_migrations.exceptions import ConfigurationError
from dataplatform.batched_migrations.strategies import (
    KeysetBatchingStrategy,
    PrimaryKeyBatchingStrategy,
    strategy_class,
)

from .support import create_widgets_table


class PrimaryKeyBatchingStrategyTests(SimpleTestCase):
    def test_first_range_starts_at_min_value(self) -> None:
        strategy = PrimaryKeyBatchingStrategy(1, 2500)
        self.assertEqual(strategy.next_range("events", "id", None, 1000), (1, 1000))

    def test_ranges_are_contiguous_and_capped(self) -> None:
        strategy = PrimaryKeyBatchingStrategy(1, 2500)
        self.assertEqual(strategy.next_range("events", "id", 1000, 1000), (1001, 2000))
        self.assertEqual(strategy.next_range("events", "id", 2000, 1000), (2001, 2500))

    def test_exhausted_once_previous_end_reaches_max(self) -> None:
        strategy = PrimaryKeyBatchingStrategy(1, 2500)
        self.assertIsNone(strategy.next_range("events", "id", 2500, 1000))
        self.assertIsNone(strategy.next_range("events", "id", 3000, 1000))

    def test_single_value_range(self) -> None:
        strategy = PrimaryKeyBatchingStrategy(7, 7)
        self.assertEqual(strategy.next_range("events", "id", None, 1000), (7, 7))
        self.assertIsNone(strategy.next_range("events", "id", 7, 1000))

    def test_never_regresses_below_min_value(self) -> None:
        strategy = PrimaryKeyBatchingStrategy(100, 500)
        self.assertEqual(strategy.next_range("events", "id", 10, 50), (100, 149))

    def test_successive_ranges_cover_key_space_exactly_once(self) -> None:
        strategy = PrimaryKeyBatchingStrategy(5, 1234)
        ranges = []
        previous = None
        while True:
            bounds = strategy.next_range("events", "id", previous, 100)
            if bounds is None:
                break
            ranges.append(bounds)
            previous = bounds[1]
        self.assertEqual(len(ranges), 13)
        self.assertEqual(ranges[0][0], 5)
        self.assertEqual(ranges[-1][1], 1234)
        for (_, end), (next_start, _) in zip(ranges, ranges[1:]):
            self.assertEqual(next_start, end + 1)


class StrategyLookupTests(SimpleTestCase):
    def test_known_names(self) -> None:
        self.assertIs(strategy_class("primary_key"), PrimaryKeyBatchingStrategy)
        self.assertIs(strategy_class("keyset"), KeysetBatchingStrategy)

    def test_unknown_name_is_configuration_error(self) -> None:
        with self.assertRaises(ConfigurationError):
            strategy_class("LooseIndexScanBatchingStrategy")


class KeysetBatchingStrategyTests(TestCase):
    def setUp(self) -> None:
        create_widgets_table("sparse_widgets", ids=(1, 2, 3, 10, 11, 50, 51, 52, 100))

    def test_batches_follow_existing_keys(self) -> None:
        strategy = KeysetBatchingStrategy(1, 100)
        self.assertEqual(strategy.next_range("sparse_widgets", "id", None, 3), (1, 3))
        self.assertEqual(strategy.next_range("sparse_widgets", "id", 3, 3), (10, 50))
        self.assertEqual(strategy.next_range("sparse_widgets", "id", 50, 3), (51, 100))
        self.assertIsNone(strategy.next_range("sparse_widgets", "id", 100, 3))

    def test_short_tail_is_capped_at_max_value(self) -> None:
        strategy = KeysetBatchingStrategy(1, 60)
        self.assertEqual(strategy.next_range("sparse_widgets", "id", 50, 3), (51, 60))

    def test_exhausted_when_no_keys_remain_below_max(self) -> None:
        strategy = KeysetBatchingStrategy(1, 60)
        self.assertIsNone(strategy.next_range("sparse_widgets", "id", 52, 3))

    def test_respects_min_value(self) -> None:
        strategy = KeysetBatchingStrategy(4, 100)
        self.assertEqual(strategy.next_range("sparse_widgets", "id", None, 2), (10, 11))
