"""
피어 레지스트리 테스트
"""

import threading
import pytest

from wg_peer_agent.errors import (
    AddressInUse,
    AddressSpaceExhausted,
    ClientFileMissing,
    DuplicateName,
    InvalidAddress,
    InvalidName,
    NotFound,
    PersistenceError,
    RepairImpossible,
    SyncUnavailable,
)
from wg_peer_agent.models import STATUS_OFFLINE, STATUS_ONLINE, STATUS_UNKNOWN, PeerRecord
from wg_peer_agent.registry import PeerRegistry
from wg_peer_agent.sync import RuntimeSynchronizer


def addresses(registry):
    return {s.record.name: s.record.address for s in registry.list()}


def test_add_remove_add_scenario(registry, store):
    """alice -> .2, bob -> .3, alice 삭제 후 carol 이 .2 재사용"""
    assert registry.add("alice").address == "10.0.0.2"
    assert registry.add("bob").address == "10.0.0.3"

    registry.remove("alice")
    assert list(store.load_server_config().peers) == ["bob"]

    assert registry.add("carol").address == "10.0.0.2"
    assert addresses(registry) == {"bob": "10.0.0.3", "carol": "10.0.0.2"}


def test_add_persists_record_and_client_files(registry, store, wg):
    record = registry.add("alice")

    cfg = store.load_server_config()
    assert cfg.peers["alice"] == record
    assert record.allowed_ips == "10.0.0.2/32"
    assert record.persistent_keepalive == 25

    document = store.read_client_file("alice")
    assert "PrivateKey = PRIVATE-0001" in document
    assert "Address = 10.0.0.2/24" in document
    assert "PublicKey = SERVER-PUBLIC" in document
    assert "Endpoint = 203.0.113.10:51820" in document
    assert "AllowedIPs = 0.0.0.0/0" in document
    assert "DNS = 8.8.8.8, 8.8.4.4" in document

    # 서버 문서에는 피어 개인키가 없음
    assert "PRIVATE-0001" not in store.server_config_path.read_text()

    # 라이브 인터페이스에도 반영
    assert wg.peers[record.public_key].allowed_ips == "10.0.0.2/32"


def test_add_with_explicit_address(registry):
    assert registry.add("alice", "10.0.0.50").address == "10.0.0.50"
    assert registry.add("bob").address == "10.0.0.2"


def test_add_explicit_address_in_use(registry, keys):
    registry.add("alice")
    with pytest.raises(AddressInUse) as exc:
        registry.add("bob", "10.0.0.2")

    assert exc.value.peer == "bob"
    assert exc.value.stage == "allocation"
    assert keys.generated == 1


def test_add_explicit_address_outside_subnet(registry):
    with pytest.raises(InvalidAddress):
        registry.add("alice", "192.168.1.2")


def test_duplicate_name_rejected(registry, keys, store):
    """같은 이름 재추가는 덮어쓰지 않고 거부"""
    original = registry.add("alice")
    with pytest.raises(DuplicateName):
        registry.add("alice")

    assert store.load_server_config().peers["alice"] == original
    assert keys.generated == 1


@pytest.mark.parametrize("name", ["", "../etc", "a b", ".hidden", "x" * 65])
def test_invalid_names(registry, name):
    with pytest.raises(InvalidName):
        registry.add(name)


def test_remove_not_found(registry):
    with pytest.raises(NotFound) as exc:
        registry.remove("ghost")
    assert exc.value.peer == "ghost"


def test_remove_twice(registry, store, wg):
    """두 번째 remove 는 레지스트리에서 NotFound, 파일 삭제는 재호출해도 문제 없음"""
    record = registry.add("alice")
    registry.remove("alice")

    assert store.list_client_files() == []
    assert record.public_key not in wg.peers
    assert store.delete_client_files("alice") == []

    with pytest.raises(NotFound):
        registry.remove("alice")


def test_list_after_n_adds(registry):
    """N 번 추가 후 N 개, 모두 다른 주소"""
    for i in range(10):
        registry.add(f"peer{i}")

    statuses = registry.list()
    assert len(statuses) == 10
    octets = {int(s.record.address.rsplit(".", 1)[1]) for s in statuses}
    assert len(octets) == 10
    assert all(2 <= o <= 254 for o in octets)


def test_list_preserves_insertion_order(registry):
    for name in ["zed", "amy", "mike"]:
        registry.add(name)
    assert [s.record.name for s in registry.list()] == ["zed", "amy", "mike"]


def test_list_online_status(store, keys, wg, server_config, agent_config):
    """최근 핸드셰이크 기준 online/offline"""
    registry = PeerRegistry(store, keys, RuntimeSynchronizer(wg),
                            peer_settings=agent_config.peers, clock=lambda: 10_000)
    alice = registry.add("alice")
    bob = registry.add("bob")
    registry.add("carol")
    wg.handshakes[alice.public_key] = 10_000 - 30
    wg.handshakes[bob.public_key] = 10_000 - 600

    statuses = {s.record.name: s for s in registry.list()}
    assert statuses["alice"].status == STATUS_ONLINE
    assert statuses["alice"].latest_handshake == 9_970
    assert statuses["bob"].status == STATUS_OFFLINE
    assert statuses["carol"].status == STATUS_OFFLINE
    assert statuses["carol"].latest_handshake is None


def test_list_degrades_when_live_query_fails(registry, wg):
    registry.add("alice")
    wg.up = False

    statuses = registry.list()
    assert [s.status for s in statuses] == [STATUS_UNKNOWN]


def test_address_space_exhausted(registry, store, server_config):
    """253 개 주소가 모두 사용되면 AddressSpaceExhausted"""
    for octet in range(2, 255):
        name = f"p{octet}"
        server_config.peers[name] = PeerRecord(name=name, public_key=f"K{octet}", address=f"10.0.0.{octet}")
    store.save_server_config(server_config)

    with pytest.raises(AddressSpaceExhausted) as exc:
        registry.add("one-too-many")
    assert exc.value.peer == "one-too-many"
    assert "one-too-many" not in store.load_server_config().peers


def test_sync_unavailable_keeps_persisted_change(registry, store, wg):
    """동기화 실패 시 저장된 변경은 롤백하지 않음"""
    wg.up = False
    with pytest.raises(SyncUnavailable) as exc:
        registry.add("alice")

    assert exc.value.partial is True
    assert exc.value.peer == "alice"
    assert exc.value.stage == "sync"
    assert "alice" in store.load_server_config().peers
    assert store.read_client_file("alice") is not None

    # 재시도는 DuplicateName 으로 불일치를 드러냄
    wg.up = True
    with pytest.raises(DuplicateName):
        registry.add("alice")

    # sync 로 수렴
    result = registry.sync()
    assert result.added == 1
    assert len(wg.peers) == 1


def test_repair_after_failed_sync(registry, store, wg, keys):
    """repair 는 키를 재생성하지 않고 동기화만 다시 수행"""
    wg.up = False
    with pytest.raises(SyncUnavailable):
        registry.add("alice")
    wg.up = True

    record = registry.add("alice", repair=True)

    assert keys.generated == 1
    assert record == store.load_server_config().peers["alice"]
    assert record.public_key in wg.peers


def test_repair_rebuilds_missing_client_document(registry, store):
    record = registry.add("alice")
    store.client_paths("alice")["config"].unlink()

    with pytest.raises(ClientFileMissing):
        registry.show("alice")

    registry.add("alice", repair=True)
    document = registry.show("alice")
    assert "PrivateKey = PRIVATE-0001" in document
    assert f"Address = {record.address}/24" in document


def test_repair_impossible_without_private_key(registry, store):
    registry.add("alice")
    store.client_paths("alice")["config"].unlink()
    store.client_paths("alice")["private_key"].unlink()

    with pytest.raises(RepairImpossible):
        registry.add("alice", repair=True)


def test_client_file_failure_is_partial(registry, store, monkeypatch):
    """클라이언트 문서 저장 실패는 부분 적용으로 보고"""
    def broken(*args, **kwargs):
        raise PersistenceError("disk full")

    monkeypatch.setattr(store, "write_client_file", broken)

    with pytest.raises(PersistenceError) as exc:
        registry.add("alice")

    assert exc.value.partial is True
    assert exc.value.peer == "alice"
    assert "alice" in store.load_server_config().peers


def test_show_unknown_peer(registry):
    with pytest.raises(NotFound):
        registry.show("ghost")


def test_concurrent_adds_never_share_address(registry, store):
    """동시 add 는 직렬화되어 주소가 겹치지 않음"""
    errors = []

    def worker(i):
        try:
            registry.add(f"peer{i}")
        except Exception as e:  # pragma: no cover - 실패 시 assert 로 드러남
            errors.append(e)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(12)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    peers = store.load_server_config().peers
    assert len(peers) == 12
    assert len({p.address for p in peers.values()}) == 12
    assert {p.address for p in peers.values()} == {f"10.0.0.{o}" for o in range(2, 14)}


def test_add_remove_sequence_keeps_addresses_unique(registry, store):
    for i in range(6):
        registry.add(f"p{i}")
    registry.remove("p1")
    registry.remove("p4")
    registry.add("q1")
    registry.add("q2")
    registry.add("q3")

    peers = store.load_server_config().peers
    assert len({p.address for p in peers.values()}) == len(peers) == 7
    assert peers["q1"].address == "10.0.0.3"
    assert peers["q2"].address == "10.0.0.6"
    assert peers["q3"].address == "10.0.0.8"


def test_readd_same_name_after_remove(registry, store, wg):
    """같은 이름을 삭제 후 다시 추가하면 새 키로 등록"""
    first = registry.add("alice")
    registry.remove("alice")

    second = registry.add("alice")

    assert second.address == "10.0.0.2"
    assert second.public_key == "PUBLIC-0002"
    assert second.public_key != first.public_key
    assert "PrivateKey = PRIVATE-0002" in store.read_client_file("alice")
    assert set(wg.peers) == {"PUBLIC-0002"}


def test_remove_revokes_live_peer_when_cleanup_fails(registry, store, wg, monkeypatch):
    """클라이언트 파일 삭제가 실패해도 라이브 인터페이스에서는 제거"""
    record = registry.add("alice")

    def broken(name):
        raise PersistenceError("permission denied", peer=name)

    monkeypatch.setattr(store, "delete_client_files", broken)

    with pytest.raises(PersistenceError) as exc:
        registry.remove("alice")

    assert exc.value.partial is True
    assert exc.value.peer == "alice"
    assert record.public_key not in wg.peers
    assert "alice" not in store.load_server_config().peers


def test_remove_rejects_path_like_name(registry, store):
    with pytest.raises(InvalidName):
        registry.remove("../wg0")
    assert store.server_config_path.exists()


def test_show_rejects_path_like_name(registry):
    with pytest.raises(InvalidName):
        registry.show("../wg0")


def test_repair_refuses_different_address(registry, store):
    """repair 는 등록된 주소를 바꾸지 않음"""
    registry.add("alice")

    with pytest.raises(InvalidAddress) as exc:
        registry.add("alice", "10.0.0.9", repair=True)
    assert exc.value.peer == "alice"
    assert store.load_server_config().peers["alice"].address == "10.0.0.2"

    assert registry.add("alice", "10.0.0.2", repair=True).address == "10.0.0.2"


def test_list_unreadable_document(registry, store):
    store.server_config_path.unlink()
    store.server_config_path.mkdir()

    with pytest.raises(PersistenceError):
        registry.list()
