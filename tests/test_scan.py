import unittest
from datetime import datetime, timezone

from rawdirt.config.models import ScanSettings
from rawdirt.errors import TransientStoreError, ValidationError
from rawdirt.scan.cache import BucketScanCache, has_raw_extension
from rawdirt.scan.listing import ListingService, ListRequest, decode_page_token, encode_page_token

from tests.fakes import FaultyObjectStore

T0 = datetime(2024, 5, 1, tzinfo=timezone.utc)


def _fill(store, count: int, *, prefix: str = "shoot/", ext: str = ".CR2") -> None:
    for i in range(count):
        store.add(f"{prefix}img_{i:04d}{ext}", b"x" * (i + 1), last_modified=T0)


class HasRawExtensionTests(unittest.TestCase):
    def test_matches_case_insensitively(self) -> None:
        self.assertTrue(has_raw_extension("a/B.NEF", [".nef"]))
        self.assertFalse(has_raw_extension("a/b.jpg", [".nef", ".cr2"]))


class BucketScanCacheTests(unittest.IsolatedAsyncioTestCase):
    async def test_scan_filters_to_raw_files_across_list_pages(self) -> None:
        store = FaultyObjectStore()
        _fill(store, 7)
        store.add("shoot/readme.txt", b"hi")
        store.add("shoot/preview.jpg", b"hi")
        cache = BucketScanCache(store, ScanSettings(), list_page_size=3)

        await cache.scan("")

        self.assertTrue(cache.populated)
        self.assertEqual(cache.total, 7)
        self.assertEqual(store.list_calls, 3)
        self.assertEqual(cache.objects_scanned, 9)

    async def test_scan_stops_at_object_cap(self) -> None:
        store = FaultyObjectStore()
        _fill(store, 20)
        cache = BucketScanCache(store, ScanSettings(max_objects_to_scan=5), list_page_size=3)

        with self.assertLogs("rawdirt.scan.cache", level="WARNING"):
            await cache.scan("")

        self.assertEqual(cache.total, 5)
        self.assertEqual(store.list_calls, 2)

    async def test_cap_warning_only_when_listing_was_cut_short(self) -> None:
        store = FaultyObjectStore()
        _fill(store, 6)
        cache = BucketScanCache(store, ScanSettings(max_objects_to_scan=6), list_page_size=3)

        with self.assertNoLogs("rawdirt.scan.cache", level="WARNING"):
            await cache.scan("")
        self.assertEqual(cache.total, 6)

        store.add("shoot/img_9999.CR2", b"x", last_modified=T0)
        with self.assertLogs("rawdirt.scan.cache", level="WARNING") as logs:
            await cache.scan("")
        self.assertIn("object cap", logs.output[0])
        self.assertEqual(cache.total, 6)

    async def test_invalidate_forces_a_rescan(self) -> None:
        store = FaultyObjectStore()
        _fill(store, 4)
        cache = BucketScanCache(store, ScanSettings(), list_page_size=10)
        service = ListingService(cache, ScanSettings())
        await service.list_page(ListRequest(page_number=1, page_size=10))
        self.assertEqual(store.list_calls, 1)

        _fill(store, 2, prefix="new/")
        cache.invalidate()
        self.assertFalse(cache.populated)
        self.assertEqual(cache.total, 0)
        self.assertIsNone(cache.scanned_at)

        response = await service.list_page(ListRequest(page_number=1, page_size=10))
        self.assertEqual(store.list_calls, 2)
        self.assertEqual(response.grand_total_raw_files, 6)

    async def test_failed_scan_keeps_previous_cache(self) -> None:
        store = FaultyObjectStore()
        _fill(store, 6)
        cache = BucketScanCache(store, ScanSettings(), list_page_size=2)
        await cache.scan("")
        before = [record.key for record in cache.entries()]

        _fill(store, 4, prefix="new/")
        store.fail_list_after = store.list_calls + 1
        with self.assertRaises(TransientStoreError):
            await cache.scan("")

        self.assertEqual([record.key for record in cache.entries()], before)

    async def test_failed_cold_scan_leaves_cache_unpopulated(self) -> None:
        store = FaultyObjectStore()
        _fill(store, 6)
        store.fail_list_after = 1
        cache = BucketScanCache(store, ScanSettings(), list_page_size=2)

        with self.assertRaises(TransientStoreError):
            await cache.scan("")

        self.assertFalse(cache.populated)
        self.assertEqual(cache.total, 0)

    async def test_page_is_a_pure_slice(self) -> None:
        store = FaultyObjectStore()
        _fill(store, 5)
        cache = BucketScanCache(store, ScanSettings())
        await cache.scan("")

        page = cache.page(2, 2)
        self.assertEqual([r.key for r in page.items], ["shoot/img_0002.CR2", "shoot/img_0003.CR2"])
        self.assertTrue(page.has_more)
        self.assertEqual(page.total, 5)
        self.assertEqual(page.total_pages, 3)

        last = cache.page(3, 2)
        self.assertEqual(len(last.items), 1)
        self.assertFalse(last.has_more)
        self.assertEqual(store.list_calls, 1)


class ListingServiceTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.store = FaultyObjectStore()
        _fill(self.store, 12)
        self.cache = BucketScanCache(self.store, ScanSettings(default_page_size=5))
        self.service = ListingService(self.cache, ScanSettings(default_page_size=5))

    async def test_cold_cache_scans_before_serving(self) -> None:
        response = await self.service.list_page(ListRequest(page_number=2, page_size=5))

        self.assertEqual(self.store.list_calls, 1)
        self.assertEqual(response.page_number, 2)
        self.assertEqual(len(response.files), 5)
        self.assertEqual(response.grand_total_raw_files, 12)
        self.assertEqual(response.total_pages, 3)
        self.assertTrue(response.has_more_files_after_this_page)

    async def test_warm_cache_is_reused_unless_fresh_total_requested(self) -> None:
        await self.service.list_page(ListRequest(page_number=1, page_size=5))
        await self.service.list_page(ListRequest(page_number=2, page_size=5))
        await self.service.list_page(ListRequest(page_number=1, page_size=5))
        self.assertEqual(self.store.list_calls, 1)

        await self.service.list_page(ListRequest(page_number=1, page_size=5, count_total=True))
        self.assertEqual(self.store.list_calls, 2)

    async def test_token_and_page_navigation_agree(self) -> None:
        by_token = []
        response = await self.service.list_page(ListRequest(page_size=5))
        by_token.append([r.key for r in response.files])
        while response.next_continuation_token:
            response = await self.service.list_page(
                ListRequest(continuation_token=response.next_continuation_token)
            )
            by_token.append([r.key for r in response.files])

        by_page = []
        for page_number in range(1, len(by_token) + 1):
            response = await self.service.list_page(ListRequest(page_number=page_number, page_size=5))
            by_page.append([r.key for r in response.files])

        self.assertEqual(by_token, by_page)
        self.assertEqual(len(by_token), 3)

    async def test_page_number_wins_over_token(self) -> None:
        token = encode_page_token(3, 5, "")
        response = await self.service.list_page(ListRequest(continuation_token=token, page_number=1, page_size=5))
        self.assertEqual(response.page_number, 1)

    async def test_last_page_has_no_token(self) -> None:
        response = await self.service.list_page(ListRequest(page_number=3, page_size=5))
        self.assertIsNone(response.next_continuation_token)
        self.assertFalse(response.has_more_files_after_this_page)
        self.assertNotIn("nextContinuationToken", response.to_payload())

    async def test_prefix_outside_cached_scan_triggers_rescan(self) -> None:
        await self.service.list_page(ListRequest(prefix="shoot/", page_number=1))
        await self.service.list_page(ListRequest(prefix="shoot/img_000", page_number=1))
        self.assertEqual(self.store.list_calls, 1)

        await self.service.list_page(ListRequest(prefix="other/", page_number=1))
        self.assertEqual(self.store.list_calls, 2)

    async def test_invalid_requests_are_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            await self.service.list_page(ListRequest(continuation_token="not-a-token"))
        with self.assertRaises(ValidationError):
            await self.service.list_page(ListRequest(page_number=0))
        with self.assertRaises(ValidationError):
            await self.service.list_page(
                ListRequest(prefix="shoot/", continuation_token=encode_page_token(2, 5, "other/"))
            )

    def test_token_round_trip(self) -> None:
        self.assertEqual(decode_page_token(encode_page_token(4, 50, "a/b")), (4, 50, "a/b"))


if __name__ == "__main__":
    unittest.main()
