"""Tests for the document store: keys, source confinement and remote fetches."""

import httpx
import pytest

from signflow.core.exceptions import NotFoundError, StorageError, ValidationError
from signflow.services.storage import DocumentStore


def _remote_store(tmp_path, handler, hosts=("docs.example.com",)):
    return DocumentStore(
        tmp_path / "storage",
        transport=httpx.MockTransport(handler),
        allowed_hosts=hosts,
    )


@pytest.mark.asyncio
async def test_save_load_delete_roundtrip(store):
    ref = await store.save(DocumentStore.new_ref("attachments", "My Card.png"), b"data")

    assert ref.startswith("attachments/") and ref.endswith("-My-Card.png")
    assert await store.load(ref) == b"data"
    await store.delete(ref)
    with pytest.raises(NotFoundError):
        await store.load(ref)


@pytest.mark.asyncio
async def test_key_escaping_root_rejected(store):
    with pytest.raises(StorageError):
        await store.load("../../etc/passwd")


@pytest.mark.asyncio
async def test_absolute_path_outside_source_dir_rejected(tmp_path, store):
    outside = tmp_path.parent / f"{tmp_path.name}-elsewhere.pdf"
    outside.write_bytes(b"%PDF secret")
    try:
        with pytest.raises(StorageError):
            await store.load(str(outside))
        with pytest.raises(StorageError):
            await store.load("/etc/passwd")
    finally:
        outside.unlink()


@pytest.mark.asyncio
async def test_absolute_paths_rejected_without_source_dir(tmp_path, source_ref):
    bare = DocumentStore(tmp_path / "storage")
    with pytest.raises(StorageError):
        await bare.load(source_ref)


@pytest.mark.asyncio
async def test_source_inside_source_dir_is_read(store, source_ref, form_pdf):
    assert await store.load(source_ref) == form_pdf


@pytest.mark.asyncio
async def test_remote_host_not_on_allow_list_is_never_requested(tmp_path):
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, content=b"%PDF")

    store = _remote_store(tmp_path, handler)

    with pytest.raises(StorageError, match="not allowed"):
        await store.load("http://169.254.169.254/latest/meta-data")
    assert seen == []


@pytest.mark.asyncio
async def test_no_allow_list_means_no_remote_sources(tmp_path):
    store = _remote_store(tmp_path, lambda request: httpx.Response(200), hosts=())
    with pytest.raises(StorageError):
        await store.load("https://docs.example.com/form.pdf")


@pytest.mark.asyncio
async def test_allowed_host_is_fetched(tmp_path):
    store = _remote_store(tmp_path, lambda request: httpx.Response(200, content=b"%PDF-remote"))
    assert await store.load("https://docs.example.com/form.pdf") == b"%PDF-remote"


@pytest.mark.asyncio
async def test_wildcard_allows_any_host(tmp_path):
    store = _remote_store(tmp_path, lambda request: httpx.Response(200, content=b"ok"), hosts=("*",))
    assert await store.load("https://anything.example.org/f.pdf") == b"ok"


@pytest.mark.asyncio
async def test_redirect_to_disallowed_host_is_blocked(tmp_path):
    def handler(request):
        if request.url.host == "docs.example.com":
            return httpx.Response(302, headers={"location": "http://10.0.0.5/internal.pdf"})
        return httpx.Response(200, content=b"internal")

    store = _remote_store(tmp_path, handler)

    with pytest.raises(StorageError, match="10.0.0.5"):
        await store.load("https://docs.example.com/form.pdf")


@pytest.mark.asyncio
async def test_initiation_rejects_unreadable_source_ref(service):
    with pytest.raises(ValidationError, match="outside the source directory"):
        await service.initiate_workflow("/etc/passwd", [{"name": "Pat"}])

    assert (await service.stats())["total_workflows"] == 0
