from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import pytest

from common.identity import FolderNameIdentityProvider, WorkspaceIdentityService
from common.marshalling import MarshallingError, parse, stringify
from common.uri import Uri
from state.local_store import JsonFileStateStore
from state.models import (
    RemoteUserData,
    StorageScope,
    StorageTarget,
    SyncData,
    WorkspaceStateDocument,
    WorkspaceStateFolder,
)
from workspace_state import IncompatibleRemoteContentError, SyncContext, apply, capture, publish


W, U = StorageScope.WORKSPACE, StorageTarget.USER

FOLDER = WorkspaceStateFolder(resourceUri="file:///repo", workspaceFolderIdentity='{"kind":"name","name":"repo"}')


class _MemoryStore:
    def __init__(self, initial: Optional[Dict[str, Tuple[str, StorageTarget]]] = None) -> None:
        self.data: Dict[str, Tuple[str, StorageTarget]] = dict(initial or {})
        self.writes: List[Tuple[str, Any]] = []

    def list_keys(self, scope, target) -> List[str]:
        assert scope is W
        return [k for k, (_, t) in self.data.items() if t is target]

    def get(self, key, scope) -> Optional[str]:
        entry = self.data.get(key)
        return entry[0] if entry else None

    def set(self, key, value, scope, target) -> None:
        assert isinstance(value, str)
        self.writes.append((key, value))
        self.data[key] = (value, target)


class _MemoryRemote:
    def __init__(self) -> None:
        self.current: Optional[RemoteUserData] = None
        self.writes = 0

    def read(self) -> Optional[RemoteUserData]:
        return self.current

    def write(self, sync_data: SyncData) -> RemoteUserData:
        self.writes += 1
        self.current = RemoteUserData(ref=f"ref-{self.writes}", sync_data=sync_data)
        return self.current


class _FakeIdentity:
    def __init__(self, folders=(FOLDER,), translate=lambda v: v) -> None:
        self.folders = list(folders)
        self.translate = translate
        self.match_calls: List[List[WorkspaceStateFolder]] = []

    async def get_workspace_state_folders(self, token):
        return list(self.folders)

    async def matches(self, incoming, token):
        self.match_calls.append(list(incoming))
        return self.translate


def _ctx(store=None, remote=None, identity=None) -> SyncContext:
    return SyncContext(
        local_store=store or _MemoryStore(),
        remote_store=remote or _MemoryRemote(),
        identity=identity or _FakeIdentity(),
    )


def _remote(storage: Dict[str, str], *, folders=(FOLDER,), version: int = 1) -> RemoteUserData:
    doc = WorkspaceStateDocument(folders=list(folders), storage=storage)
    return RemoteUserData(ref="r", sync_data=SyncData(version=version, content=doc.model_dump_json(by_alias=True)))


@pytest.mark.asyncio
async def test_capture_collects_workspace_user_keys_verbatim():
    store = _MemoryStore(
        {
            "foo.bar": ('{"path":"/repo/x"}', U),
            "machine.only": ("1", StorageTarget.MACHINE),
            "empty": ("", U),
        }
    )
    doc = await capture(_ctx(store=store))

    assert doc is not None
    assert doc.folders == [FOLDER]
    assert doc.storage == {"foo.bar": '{"path":"/repo/x"}'}
    assert store.writes == []


@pytest.mark.asyncio
async def test_capture_without_folders_returns_none_and_nothing_is_published():
    remote = _MemoryRemote()
    ctx = _ctx(store=_MemoryStore({"k": ("v", U)}), remote=remote, identity=_FakeIdentity(folders=()))

    assert await capture(ctx) is None
    assert remote.writes == 0


@pytest.mark.asyncio
async def test_publish_writes_envelope_with_wire_shape():
    remote = _MemoryRemote()
    ctx = _ctx(remote=remote)
    ctx.machine_id = "m-1"
    doc = WorkspaceStateDocument(folders=[FOLDER], storage={"k": '{"a":1}'})

    result = await publish(ctx, doc)

    assert result.ref == "ref-1"
    assert result.sync_data.version == 1
    assert result.sync_data.machine_id == "m-1"
    assert json.loads(result.sync_data.content) == {
        "folders": [{"resourceUri": "file:///repo", "workspaceFolderIdentity": '{"kind":"name","name":"repo"}'}],
        "storage": {"k": '{"a":1}'},
    }


@pytest.mark.asyncio
async def test_publish_propagates_remote_failure():
    class _BrokenRemote(_MemoryRemote):
        def write(self, sync_data):
            raise RuntimeError("remote down")

    with pytest.raises(RuntimeError):
        await publish(_ctx(remote=_BrokenRemote()), WorkspaceStateDocument(folders=[FOLDER], storage={}))


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "remote",
    [
        None,
        RemoteUserData(ref=None, sync_data=None),
        RemoteUserData(ref="r", sync_data=SyncData(version=1, content="")),
        RemoteUserData(ref="r", sync_data=SyncData(version=1, content="null")),
    ],
)
async def test_apply_absent_is_noop(remote, caplog):
    store = _MemoryStore({"k": ("v", U)})
    identity = _FakeIdentity()
    caplog.set_level("INFO", logger="workspace_state")

    await apply(_ctx(store=store, identity=identity), remote)

    assert store.writes == []
    assert identity.match_calls == []
    assert "remote workspace state does not exist" in caplog.text


@pytest.mark.asyncio
async def test_apply_empty_storage_is_noop_without_matching():
    store = _MemoryStore({"k": ("v", U)})
    identity = _FakeIdentity()

    await apply(_ctx(store=store, identity=identity), _remote({}))

    assert store.writes == []
    assert identity.match_calls == []


@pytest.mark.asyncio
async def test_apply_rejected_match_writes_nothing():
    store = _MemoryStore({"k1": ("old", U)})
    identity = _FakeIdentity(translate=None)

    await apply(_ctx(store=store, identity=identity), _remote({"k1": '"new"'}))

    assert identity.match_calls == [[FOLDER]]
    assert store.writes == []
    assert store.get("k1", W) == "old"


@pytest.mark.asyncio
async def test_apply_overwrites_present_keys_and_keeps_local_only_keys():
    store = _MemoryStore({"k1": ("old", U), "k2": ("local-only", U)})

    await apply(_ctx(store=store), _remote({"k1": '"new"'}))

    assert store.writes == [("k1", '"new"')]
    assert store.get("k1", W) == '"new"'
    assert store.get("k2", W) == "local-only"


@pytest.mark.asyncio
async def test_apply_uses_one_translation_for_all_keys_and_writes_marshalled_values():
    calls: List[Any] = []

    def translate(value):
        calls.append(value)
        if isinstance(value, dict):
            return {k: translate(v) for k, v in value.items()}
        if isinstance(value, Uri):
            return Uri.file(value.path.replace("/repo", "/home/dev/repo", 1))
        return value

    store = _MemoryStore()
    identity = _FakeIdentity(translate=translate)
    storage = {
        "a": stringify({"resource": Uri.file("/repo/a.py")}),
        "b": stringify({"n": 1}),
    }

    await apply(_ctx(store=store, identity=identity), _remote(storage))

    assert len(identity.match_calls) == 1
    written = dict(store.writes)
    assert parse(written["a"]) == {"resource": Uri.file("/home/dev/repo/a.py")}
    assert written["b"] == storage["b"]


@pytest.mark.asyncio
async def test_apply_deserialization_failure_propagates():
    store = _MemoryStore()
    with pytest.raises(MarshallingError):
        await apply(_ctx(store=store), _remote({"good": '"ok"', "bad": "{not json"}))


@pytest.mark.asyncio
async def test_apply_malformed_document_propagates():
    remote = RemoteUserData(ref="r", sync_data=SyncData(version=1, content='{"folders": 3}'))
    with pytest.raises(MarshallingError):
        await apply(_ctx(), remote)


@pytest.mark.asyncio
async def test_apply_newer_version_is_rejected():
    store = _MemoryStore()
    with pytest.raises(IncompatibleRemoteContentError):
        await apply(_ctx(store=store), _remote({"k": '"v"'}, version=2))
    assert store.writes == []


def _seed(path: Path, storage: Dict[str, str]) -> JsonFileStateStore:
    store = JsonFileStateStore(path)
    for k, v in storage.items():
        store.set(k, v, W, U)
    return store


@pytest.mark.asyncio
async def test_roundtrip_into_same_workspace_keeps_stored_strings(tmp_path):
    folder = tmp_path / "repo"
    folder.mkdir()
    storage = {
        "foo.bar": stringify({"path": f"{folder}/x", "open": [Uri.file(f"{folder}/a.py")]}),
        "plain": stringify([1, 2, 3]),
        "greeting": '"hello"',
        "spaced": '{"a": 1, "b": [true, null]}',
        "location": stringify({"u": f"file://{folder}/x.py?line=3#L3"}),
        "bare.uri": stringify(f"file://{folder}/x.py?line=3#L3"),
    }
    store = _seed(tmp_path / "state.json", storage)
    identity = WorkspaceIdentityService([folder], providers=[FolderNameIdentityProvider()])
    remote = _MemoryRemote()
    ctx = SyncContext(local_store=store, remote_store=remote, identity=identity)

    doc = await capture(ctx)
    assert doc is not None
    await publish(ctx, doc)
    await apply(ctx, remote.read())

    for key, value in storage.items():
        assert store.get(key, W) == value


@pytest.mark.asyncio
async def test_repeated_cycles_keep_plain_string_values_parseable(tmp_path):
    folder = tmp_path / "repo"
    folder.mkdir()
    store = _seed(tmp_path / "state.json", {"k": '"hello"', "after": '{"n":1}'})
    ctx = SyncContext(
        local_store=store,
        remote_store=_MemoryRemote(),
        identity=WorkspaceIdentityService([folder], providers=[FolderNameIdentityProvider()]),
    )

    for _ in range(2):
        doc = await capture(ctx)
        await publish(ctx, doc)
        await apply(ctx, ctx.remote_store.read())

    assert store.get("k", W) == '"hello"'
    assert store.get("after", W) == '{"n":1}'


@pytest.mark.asyncio
async def test_restore_rewrites_plain_string_path_and_keeps_it_quoted(tmp_path):
    src_folder = tmp_path / "repo"
    dst_folder = tmp_path / "home" / "dev" / "repo"
    src_folder.mkdir()
    dst_folder.mkdir(parents=True)
    providers = [FolderNameIdentityProvider()]

    remote = _MemoryRemote()
    src_ctx = SyncContext(
        local_store=_seed(tmp_path / "src.json", {"last.file": stringify(f"{src_folder}/x.py")}),
        remote_store=remote,
        identity=WorkspaceIdentityService([src_folder], providers=providers),
    )
    await publish(src_ctx, await capture(src_ctx))

    dst_store = JsonFileStateStore(tmp_path / "dst.json")
    dst_ctx = SyncContext(
        local_store=dst_store,
        remote_store=remote,
        identity=WorkspaceIdentityService([dst_folder], providers=providers),
    )
    await apply(dst_ctx, remote.read())

    assert dst_store.get("last.file", W) == stringify(f"{dst_folder}/x.py")


@pytest.mark.asyncio
async def test_restore_into_relocated_workspace_rewrites_paths(tmp_path):
    src_folder = tmp_path / "repo"
    dst_folder = tmp_path / "home" / "dev" / "repo"
    src_folder.mkdir()
    dst_folder.mkdir(parents=True)
    providers = [FolderNameIdentityProvider()]

    remote = _MemoryRemote()
    src_ctx = SyncContext(
        local_store=_seed(tmp_path / "src.json", {"foo.bar": json.dumps({"path": f"{src_folder}/x"})}),
        remote_store=remote,
        identity=WorkspaceIdentityService([src_folder], providers=providers),
    )
    doc = await capture(src_ctx)
    await publish(src_ctx, doc)

    dst_store = _seed(tmp_path / "dst.json", {"local.only": '"keep"'})
    dst_ctx = SyncContext(
        local_store=dst_store,
        remote_store=remote,
        identity=WorkspaceIdentityService([dst_folder], providers=providers),
    )
    await apply(dst_ctx, remote.read())

    assert parse(dst_store.get("foo.bar", W)) == {"path": f"{dst_folder}/x"}
    assert dst_store.get("local.only", W) == '"keep"'


@pytest.mark.asyncio
async def test_restore_into_unrelated_workspace_is_skipped(tmp_path):
    src_folder = tmp_path / "repo"
    dst_folder = tmp_path / "elsewhere"
    src_folder.mkdir()
    dst_folder.mkdir()
    providers = [FolderNameIdentityProvider()]

    remote = _MemoryRemote()
    src_ctx = SyncContext(
        local_store=_seed(tmp_path / "src.json", {"k1": '"new"'}),
        remote_store=remote,
        identity=WorkspaceIdentityService([src_folder], providers=providers),
    )
    await publish(src_ctx, await capture(src_ctx))

    dst_store = _seed(tmp_path / "dst.json", {"k1": '"old"'})
    dst_ctx = SyncContext(
        local_store=dst_store,
        remote_store=remote,
        identity=WorkspaceIdentityService([dst_folder], providers=providers),
    )
    await apply(dst_ctx, remote.read())

    assert dst_store.get("k1", W) == '"old"'
