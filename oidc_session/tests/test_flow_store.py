"""Tests for the pending-flow store."""
import threading
import time

from oidc_session.flow_store import FlowState, FlowStore


def _flow(age: float = 0) -> FlowState:
    return FlowState(state="S", nonce="N", code_verifier="V", created_at=time.monotonic() - age)


def test_save_load_discard():
    store = FlowStore(ttl=600)
    store.save("k", _flow())
    assert store.load("k").state == "S"
    store.discard("k")
    assert store.load("k") is None
    store.discard("k")  # idempotent


def test_new_login_replaces_pending_flow():
    store = FlowStore(ttl=600)
    store.save("k", _flow())
    store.save("k", FlowState(state="S2", nonce="N2", code_verifier="V2"))
    assert store.load("k").state == "S2"
    assert len(store) == 1


def test_expired_flow_is_still_loadable_but_flagged():
    store = FlowStore(ttl=60)
    store.save("k", _flow(age=61))
    stored = store.load("k")
    assert stored is not None
    assert store.is_expired(stored)
    assert not store.is_expired(_flow(age=1))


def test_purge_expired():
    store = FlowStore(ttl=60)
    store.save("old", _flow(age=120))
    store.save("fresh", _flow())
    assert store.purge_expired() == 1
    assert store.load("old") is None
    assert store.load("fresh") is not None
    assert store.purge_expired() == 0


def test_len_while_saving_from_threads():
    store = FlowStore(ttl=600)
    sizes = []

    def save_many(prefix):
        for i in range(200):
            store.save(f"{prefix}-{i}", _flow())
            sizes.append(len(store))

    threads = [threading.Thread(target=save_many, args=(p,)) for p in "abc"]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(store) == 600
    assert max(sizes) == 600
