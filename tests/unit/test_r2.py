import io

import pytest

from gigscraper import config
from gigscraper.pipeline import r2


class FakeS3:
    def __init__(self, objects=None):
        self.objects = dict(objects or {})

    def get_object(self, Bucket, Key):
        if Key not in self.objects:
            raise KeyError(Key)
        return {"Body": io.BytesIO(self.objects[Key])}

    def put_object(self, Bucket, Key, Body, ContentType):
        self.objects[Key] = Body


@pytest.fixture
def cache_paths(tmp_path, monkeypatch):
    monkeypatch.setattr(config, "BLACKLIST_PATH", tmp_path / "cache" / "blacklist.json")
    monkeypatch.setattr(config, "STATUS_PATH", tmp_path / "scrape-status.json")
    monkeypatch.setattr(config, "DB_PATH", tmp_path / "gigs-db.json")
    monkeypatch.setattr(config, "R2_PREFIX", "scraper/")
    return tmp_path


def test_upload_sends_existing_files(cache_paths):
    (cache_paths / "scrape-status.json").write_text('{"venues": {}}')
    s3 = FakeS3()
    messages = []

    assert r2.upload_to_r2(log_func=messages.append, client=s3)
    assert s3.objects == {"scraper/scrape-status.json": b'{"venues": {}}'}
    assert messages == ["Uploaded to R2: scraper/scrape-status.json"]


def test_download_caches_writes_found_keys(cache_paths):
    s3 = FakeS3({"scraper/blacklist.json": b'{"dead_venues": ["Closed Bar"]}'})
    downloaded = r2.download_caches(log_func=lambda *_: None, client=s3)

    assert downloaded == ["scraper/blacklist.json"]
    assert (cache_paths / "cache" / "blacklist.json").read_text() == '{"dead_venues": ["Closed Bar"]}'
    assert not (cache_paths / "gigs-db.json").exists()


def test_without_credentials_nothing_happens(monkeypatch):
    monkeypatch.setattr(config, "R2_ACCOUNT_ID", None)
    messages = []
    assert r2.download_caches(log_func=messages.append) == []
    assert not r2.upload_to_r2(log_func=messages.append)
    assert messages[-1] in ("R2 upload skipped: boto3 not installed", "R2 upload skipped: missing R2 credentials")
