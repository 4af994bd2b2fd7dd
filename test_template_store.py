"""Template sources and the shared LRU cache."""

from io import BytesIO

import pytest
from botocore.exceptions import ClientError

import config
import template_store
from conftest import build_docx
from errors import StructuralDefect, TemplateNotFound
from template_store import TemplateCache, fetch_template_bytes, read_local_template

DOCX = build_docx(["Claim {claimNumber}"])


class CountingLoader:
    def __init__(self, data=DOCX):
        self.data = data
        self.keys = []

    def __call__(self, key):
        self.keys.append(key)
        return self.data


class FakeS3:
    def __init__(self, objects):
        self.objects = objects

    def get_object(self, Bucket, Key):
        if Key not in self.objects:
            raise ClientError({"Error": {"Code": "NoSuchKey", "Message": "Not Found"}}, "GetObject")
        return {"Body": BytesIO(self.objects[Key])}


@pytest.fixture(autouse=True)
def clean_cache():
    template_store.template_cache.clear()
    yield
    template_store.template_cache.clear()


def test_cache_loads_each_key_once():
    cache = TemplateCache(max_size=4)
    loader = CountingLoader()
    first = cache.get_or_load("a.docx", loader)
    second = cache.get_or_load("a.docx", loader)
    assert first is second
    assert loader.keys == ["a.docx"]
    assert first.key == "a.docx"


def test_cache_evicts_least_recently_used():
    cache = TemplateCache(max_size=2)
    loader = CountingLoader()
    cache.get_or_load("a", loader)
    cache.get_or_load("b", loader)
    cache.get_or_load("a", loader)
    cache.get_or_load("c", loader)
    assert len(cache) == 2
    assert "a" in cache and "c" in cache
    assert "b" not in cache


def test_cache_size_is_at_least_one():
    cache = TemplateCache(max_size=0)
    cache.get_or_load("a", CountingLoader())
    assert len(cache) == 1


def test_broken_template_is_not_cached():
    cache = TemplateCache()
    with pytest.raises(StructuralDefect):
        cache.get_or_load("bad.docx", CountingLoader(b"not a docx"))
    assert "bad.docx" not in cache


def test_read_local_template(tmp_path):
    (tmp_path / "report.docx").write_bytes(DOCX)
    assert read_local_template("report.docx", tmp_path) == DOCX


@pytest.mark.parametrize("key", ["missing.docx", "../outside.docx", "/etc/passwd"])
def test_read_local_template_rejects_unknown_and_escaping_keys(tmp_path, key):
    (tmp_path.parent / "outside.docx").write_bytes(DOCX)
    with pytest.raises(TemplateNotFound) as exc:
        read_local_template(key, tmp_path)
    assert exc.value.template_key == key


def test_fetch_from_s3(monkeypatch):
    monkeypatch.setattr(config, "TEMPLATE_SOURCE", "s3")
    monkeypatch.setattr(template_store, "s3_client", FakeS3({"report.docx": DOCX}))
    assert fetch_template_bytes("report.docx") == DOCX
    with pytest.raises(TemplateNotFound):
        fetch_template_bytes("other.docx")


def test_get_template_uses_shared_cache(monkeypatch, tmp_path):
    (tmp_path / "report.docx").write_bytes(DOCX)
    monkeypatch.setattr(config, "TEMPLATE_SOURCE", "local")
    monkeypatch.setattr(config, "TEMPLATE_DIR", tmp_path)
    template = template_store.get_template("report.docx")
    (tmp_path / "report.docx").unlink()
    assert template_store.get_template("report.docx") is template
