import json
from datetime import datetime, timezone

from aiohttp import web
from aiohttp.test_utils import AioHTTPTestCase

from rawdirt.config.models import AppConfig, IndexSettings, ScanSettings
from rawdirt.server.app import create_app
from rawdirt.server.services import build_services

from tests.fakes import FaultyObjectStore

INDEX_KEY = "metadata/index.json"
MODIFIED = datetime(2024, 1, 1, tzinfo=timezone.utc)


class ServerTestCase(AioHTTPTestCase):
    async def get_application(self) -> web.Application:
        self.store = FaultyObjectStore()
        for i in range(5):
            self.store.add(f"shoot/IMG_{i:04d}.CR2", b"raw", last_modified=MODIFIED)
        self.store.add("shoot/notes.txt", b"text", last_modified=MODIFIED)
        self.store.add("other/DSC_0001.nef", b"raw", last_modified=MODIFIED)
        config = AppConfig(
            index=IndexSettings(min_write_interval_seconds=0),
            scan=ScanSettings(default_page_size=2),
        )
        return create_app(build_services(config, store=self.store))

    def _seed_index(self, payload: dict) -> None:
        self.store.add(INDEX_KEY, json.dumps(payload).encode("utf-8"))

    def _stored_index(self) -> dict:
        return json.loads(self.store.objects[INDEX_KEY].body.decode("utf-8"))


class ListEndpointTests(ServerTestCase):
    async def test_first_page_lists_raw_files_only(self) -> None:
        resp = await self.client.get("/api/s3/list", params={"countTotal": "true"})
        self.assertEqual(resp.status, 200)
        body = await resp.json()

        self.assertEqual(
            [f["key"] for f in body["files"]],
            ["other/DSC_0001.nef", "shoot/IMG_0000.CR2"],
        )
        self.assertEqual(body["files"][0]["size"], 3)
        self.assertEqual(body["files"][0]["lastModified"], "2024-01-01T00:00:00.000Z")
        self.assertEqual(body["totalFilesFoundInScan"], 6)
        self.assertEqual(body["grandTotalRawFiles"], 6)
        self.assertEqual(body["totalPages"], 3)
        self.assertEqual(body["pageNumber"], 1)
        self.assertTrue(body["hasMoreFilesAfterThisPage"])
        self.assertIn("nextContinuationToken", body)

    async def test_token_and_page_number_return_the_same_slice(self) -> None:
        first = await (await self.client.get("/api/s3/list")).json()
        by_token = await (
            await self.client.get("/api/s3/list", params={"continuationToken": first["nextContinuationToken"]})
        ).json()
        by_page = await (await self.client.get("/api/s3/list", params={"pageNumber": "2"})).json()

        self.assertEqual(by_token["files"], by_page["files"])
        self.assertEqual(by_token["pageNumber"], 2)

    async def test_last_page_has_no_token(self) -> None:
        body = await (await self.client.get("/api/s3/list", params={"pageNumber": "3"})).json()
        self.assertEqual(len(body["files"]), 2)
        self.assertFalse(body["hasMoreFilesAfterThisPage"])
        self.assertNotIn("nextContinuationToken", body)

    async def test_prefix_filters_listing(self) -> None:
        body = await (await self.client.get("/api/s3/list", params={"prefix": "shoot/", "pageSize": "10"})).json()
        self.assertEqual(len(body["files"]), 5)
        self.assertTrue(all(f["key"].startswith("shoot/") for f in body["files"]))

    async def test_invalid_page_number_is_rejected(self) -> None:
        resp = await self.client.get("/api/s3/list", params={"pageNumber": "abc"})
        self.assertEqual(resp.status, 400)
        self.assertIn("pageNumber", (await resp.json())["error"])

    async def test_invalid_token_is_rejected(self) -> None:
        resp = await self.client.get("/api/s3/list", params={"continuationToken": "%%%"})
        self.assertEqual(resp.status, 400)

    async def test_store_failure_maps_to_bad_gateway(self) -> None:
        self.store.fail_list_after = 0
        with self.assertLogs("rawdirt.server.app", level="WARNING"):
            resp = await self.client.get("/api/s3/list")
        self.assertEqual(resp.status, 502)
        self.assertEqual((await resp.json())["error"], "listing failed")


class FileUrlEndpointTests(ServerTestCase):
    async def test_returns_presigned_url(self) -> None:
        resp = await self.client.get("/api/s3/file", params={"key": "shoot/IMG_0001.CR2"})
        self.assertEqual(resp.status, 200)
        url = (await resp.json())["url"]
        self.assertTrue(url.startswith("memory://"))

        again = await (await self.client.get("/api/s3/file", params={"key": "shoot/IMG_0001.CR2"})).json()
        self.assertEqual(again["url"], url)

    async def test_missing_key_is_rejected(self) -> None:
        resp = await self.client.get("/api/s3/file")
        self.assertEqual(resp.status, 400)


class MetadataEndpointTests(ServerTestCase):
    async def test_read_missing_index_returns_default(self) -> None:
        body = await (await self.client.get("/api/metadata/index")).json()
        self.assertEqual(body, {"version": 1, "files": {}})

    async def test_read_corrupt_index_returns_default(self) -> None:
        self.store.add(INDEX_KEY, b"{broken")
        with self.assertLogs("rawdirt.index.store", level="ERROR"):
            body = await (await self.client.get("/api/metadata/index")).json()
        self.assertEqual(body["files"], {})

    async def test_update_single_entry_merges(self) -> None:
        self._seed_index({"version": 1, "files": {"a.cr2": {"rating": 2, "title": "old"}}})

        resp = await self.client.post(
            "/api/metadata/index",
            json={"fileKey": "a.cr2", "metadata": {"title": "new", "exifDate": "2020-02-02T00:00:00Z"}},
        )
        self.assertEqual(resp.status, 200)
        body = await resp.json()

        self.assertEqual(body["message"], "Metadata updated")
        self.assertEqual(body["updatedKey"], "a.cr2")
        self.assertEqual(
            body["metadata"],
            {"rating": 2, "title": "new", "exifDate": "2020-02-02T00:00:00.000Z"},
        )
        self.assertEqual(self._stored_index()["files"]["a.cr2"], body["metadata"])

    async def test_update_without_metadata_is_rejected(self) -> None:
        resp = await self.client.post("/api/metadata/index", json={"fileKey": "a.cr2"})
        self.assertEqual(resp.status, 400)
        self.assertEqual((await resp.json())["error"], "Missing fileKey or metadata")

    async def test_non_json_body_is_rejected(self) -> None:
        resp = await self.client.post("/api/metadata/index", data=b"not json")
        self.assertEqual(resp.status, 400)

    async def test_batch_update(self) -> None:
        self._seed_index({"version": 1, "files": {"a.cr2": {"tags": ["x"]}}})

        resp = await self.client.post(
            "/api/metadata/batch-update",
            json={"files": {"a.cr2": {"title": "A"}, "b.cr2": {"width": 300}}},
        )
        self.assertEqual(resp.status, 200)
        body = await resp.json()

        self.assertEqual(body["updatedCount"], 2)
        stored = self._stored_index()
        self.assertEqual(stored["files"]["a.cr2"], {"tags": ["x"], "title": "A"})
        self.assertEqual(stored["files"]["b.cr2"], {"width": 300})
        self.assertEqual(stored["lastUpdated"], body["timestamp"])

    async def test_empty_batch_is_a_no_op(self) -> None:
        resp = await self.client.post("/api/metadata/batch-update", json={"files": {}})
        body = await resp.json()
        self.assertEqual(body, {"message": "No files to update", "updatedCount": 0})
        self.assertEqual(self.store.put_calls, 0)

    async def test_batch_without_files_is_rejected(self) -> None:
        resp = await self.client.post("/api/metadata/batch-update", json={"files": ["a.cr2"]})
        self.assertEqual(resp.status, 400)
        self.assertEqual((await resp.json())["error"], "Missing or invalid files data in request")

    async def test_write_failure_maps_to_bad_gateway(self) -> None:
        self.store.fail_puts = True
        with self.assertLogs("rawdirt.server.app", level="WARNING"):
            resp = await self.client.post("/api/metadata/batch-update", json={"files": {"a.cr2": {"title": "A"}}})
        self.assertEqual(resp.status, 502)
        self.assertNotIn(INDEX_KEY, self.store.objects)


class IndexStatsEndpointTests(ServerTestCase):
    async def test_missing_index(self) -> None:
        body = await (await self.client.post("/api/metadata/index/cleanup")).json()
        self.assertEqual(body, {"message": "Index file not found", "success": False})

    async def test_reports_counts_without_modifying_index(self) -> None:
        thumb = "data:image/jpeg;base64," + "A" * 4000
        self._seed_index(
            {
                "version": 1,
                "files": {
                    "a.cr2": {"thumbnailDataUrl": thumb},
                    "b.cr2": {"title": "no thumb"},
                    "c.cr2": {"thumbnailDataUrl": thumb},
                },
            }
        )
        before = self.store.objects[INDEX_KEY].body

        body = await (await self.client.post("/api/metadata/index/cleanup")).json()

        self.assertTrue(body["success"])
        self.assertEqual(body["fileCount"], 3)
        self.assertEqual(body["thumbnailCount"], 2)
        self.assertEqual(body["indexSize"], "0.01")
        self.assertEqual(body["thumbnailsSize"], "0.01")
        self.assertEqual(self.store.objects[INDEX_KEY].body, before)
        self.assertEqual(self.store.put_calls, 0)
