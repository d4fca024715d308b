"""Tests for vault binding and full-tree reconciliation."""

from unittest.mock import AsyncMock

import pytest

from vaultsync.errors import HostIOError, NetworkError, ProtocolError
from vaultsync.sync.bootstrap import BootstrapStatus, BootstrapSynchronizer
from vaultsync.sync.guard import EventSuppressionGuard
from vaultsync.sync.remote_client import FileRecord, HandshakeResult, VaultStatus

from conftest import MemoryFileTree


def _bootstrap(remote, store, tree, confirm=None):
    guard = EventSuppressionGuard(store)
    kwargs = {}
    if confirm is not None:
        kwargs["confirm_clear"] = confirm
    return BootstrapSynchronizer(remote, store, tree, guard, **kwargs), guard


class TestHandshake:
    @pytest.mark.asyncio
    async def test_handshake_failure_leaves_state_unchanged(self, remote, store, tree):
        remote.handshake.side_effect = NetworkError("offline")
        sync, guard = _bootstrap(remote, store, tree)

        result = await sync.run("a@b.com")

        assert result.status == BootstrapStatus.FAILED
        assert store.state.vault_id is None
        assert store.state.last_sync_timestamp is None
        remote.pull_all.assert_not_awaited()
        remote.push_all.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rebinding_to_another_vault_is_refused(self, remote, bound_store, tree):
        remote.handshake.return_value = HandshakeResult("v-other", VaultStatus.NEW)
        sync, _ = _bootstrap(remote, bound_store, tree)

        result = await sync.run("a@b.com")

        assert result.status == BootstrapStatus.FAILED
        assert bound_store.state.vault_id == "v1"
        remote.push_all.assert_not_awaited()


class TestPush:
    @pytest.mark.asyncio
    async def test_new_vault_pushes_full_tree(self, remote, store):
        """Scenario: a new vault is seeded with the local files."""
        tree = MemoryFileTree({"notes/a.md": "hello"})
        remote.handshake.return_value = HandshakeResult("v1", VaultStatus.NEW)
        sync, _ = _bootstrap(remote, store, tree)

        result = await sync.run("a@b.com")

        assert result.status == BootstrapStatus.PUSHED
        assert result.files_pushed == 1
        remote.push_all.assert_awaited_once_with("v1", [FileRecord("notes/a.md", "hello")])
        assert store.state.vault_id == "v1"
        assert store.state.last_sync_timestamp is not None

    @pytest.mark.asyncio
    async def test_push_sends_every_local_file(self, remote, store):
        files = {"a.md": "1", "x/b.md": "2", "x/y/c.md": "3"}
        tree = MemoryFileTree(files)
        remote.handshake.return_value = HandshakeResult("v1", VaultStatus.NEW)
        sync, _ = _bootstrap(remote, store, tree)

        await sync.run("a@b.com")

        sent = remote.push_all.await_args[0][1]
        assert {r.path: r.content for r in sent} == files

    @pytest.mark.asyncio
    async def test_push_failure_keeps_binding_but_not_timestamp(self, remote, store, tree):
        remote.handshake.return_value = HandshakeResult("v1", VaultStatus.NEW)
        remote.push_all.side_effect = ProtocolError("server error", 500)
        sync, _ = _bootstrap(remote, store, tree)

        result = await sync.run("a@b.com")

        assert result.status == BootstrapStatus.FAILED
        assert store.state.vault_id == "v1"
        assert store.state.last_sync_timestamp is None


class TestPull:
    @pytest.mark.asyncio
    async def test_existing_vault_replaces_local_tree(self, remote, store):
        """Scenario: the local tree ends up equal to the server's file set."""
        tree = MemoryFileTree({"old.md": "stale", "dir/older.md": "stale"})
        remote.handshake.return_value = HandshakeResult("v2", VaultStatus.EXISTING)
        remote.pull_all.return_value = [
            FileRecord("x/y.md", "z"),
            FileRecord("x/deep/w.md", "w"),
            FileRecord("top.md", "t"),
        ]
        sync, guard = _bootstrap(remote, store, tree)

        result = await sync.run("a@b.com")

        assert result.status == BootstrapStatus.PULLED
        assert result.files_pulled == 3
        assert tree.files == {"x/y.md": "z", "x/deep/w.md": "w", "top.md": "t"}
        assert "x" in tree.folders and "x/deep" in tree.folders
        assert "dir" not in tree.folders
        assert store.state.vault_id == "v2"
        assert store.state.last_sync_timestamp is not None
        assert guard.active is False

    @pytest.mark.asyncio
    async def test_guard_held_while_tree_is_rewritten(self, remote, store):
        tree = MemoryFileTree({"old.md": "stale"})
        remote.handshake.return_value = HandshakeResult("v2", VaultStatus.EXISTING)
        remote.pull_all.return_value = [FileRecord("new.md", "n")]
        sync, guard = _bootstrap(remote, store, tree)
        seen = []
        tree.listener = lambda event: seen.append(guard.active)

        await sync.run("a@b.com")

        assert seen and all(seen)
        assert guard.active is False

    @pytest.mark.asyncio
    async def test_declined_clear_keeps_local_tree(self, remote, store):
        tree = MemoryFileTree({"mine.md": "keep"})
        remote.handshake.return_value = HandshakeResult("v2", VaultStatus.EXISTING)
        remote.pull_all.return_value = [FileRecord("theirs.md", "t")]
        confirm = AsyncMock(return_value=False)
        sync, guard = _bootstrap(remote, store, tree, confirm=confirm)

        result = await sync.run("a@b.com")

        assert result.status == BootstrapStatus.DECLINED
        confirm.assert_awaited_once_with(1, 0)
        assert tree.files == {"mine.md": "keep"}
        assert store.state.last_sync_timestamp is None
        assert guard.active is False

    @pytest.mark.asyncio
    async def test_fetch_failure_leaves_local_tree_intact(self, remote, store):
        tree = MemoryFileTree({"mine.md": "keep"})
        remote.handshake.return_value = HandshakeResult("v2", VaultStatus.EXISTING)
        remote.pull_all.side_effect = NetworkError("offline")
        confirm = AsyncMock(return_value=True)
        sync, guard = _bootstrap(remote, store, tree, confirm=confirm)

        result = await sync.run("a@b.com")

        assert result.status == BootstrapStatus.FAILED
        confirm.assert_not_awaited()
        assert tree.files == {"mine.md": "keep"}
        assert guard.active is False

    @pytest.mark.asyncio
    async def test_guard_released_when_materializing_fails(self, remote, store, tree):
        remote.handshake.return_value = HandshakeResult("v2", VaultStatus.EXISTING)
        remote.pull_all.return_value = [FileRecord("a.md", "1"), FileRecord("b.md", "2")]
        tree.create = AsyncMock(side_effect=HostIOError("disk full"))
        sync, guard = _bootstrap(remote, store, tree)

        result = await sync.run("a@b.com")

        assert result.status == BootstrapStatus.FAILED
        assert guard.active is False
        assert store.state.is_ignore_events is False
        assert store.state.last_sync_timestamp is None

    @pytest.mark.asyncio
    async def test_guard_released_on_unexpected_error(self, remote, store, tree):
        remote.handshake.return_value = HandshakeResult("v2", VaultStatus.EXISTING)
        remote.pull_all.return_value = [FileRecord("a.md", "1")]
        tree.create = AsyncMock(side_effect=RuntimeError("bug"))
        sync, guard = _bootstrap(remote, store, tree)

        with pytest.raises(RuntimeError):
            await sync.run("a@b.com")

        assert guard.active is False
        assert store.state.is_ignore_events is False

    @pytest.mark.asyncio
    async def test_incomplete_clear_fails_the_pull(self, remote, store):
        tree = MemoryFileTree({"a.md": "1", "b.md": "2"})
        original_delete = tree.delete

        async def flaky_delete(path, recursive=False):
            if path == "a.md":
                raise HostIOError("locked")
            await original_delete(path, recursive)

        tree.delete = flaky_delete
        remote.handshake.return_value = HandshakeResult("v2", VaultStatus.EXISTING)
        remote.pull_all.return_value = [FileRecord("c.md", "3")]
        sync, guard = _bootstrap(remote, store, tree)

        result = await sync.run("a@b.com")

        assert result.status == BootstrapStatus.FAILED
        assert "a.md" in result.error
        # Every entry is still attempted
        assert "b.md" not in tree.files
        assert "c.md" not in tree.files
        assert store.state.last_sync_timestamp is None
        assert guard.active is False
        assert store.state.is_ignore_events is False
