# tests/conftest.py

import pytest

from courier_node.keys import generate


@pytest.fixture(autouse=True)
def temp_courier_dir(tmp_path, monkeypatch):
    """
    Point all Courier data dirs to a fresh temp directory per test.
    """
    monkeypatch.setenv("COURIER_BASE_DIR", str(tmp_path / "courier_data"))
    monkeypatch.setenv("COURIER_PASSWORD", "")

    import courier_node.config as cfg
    monkeypatch.setattr(cfg, "BASE_DIR", tmp_path / "courier_data")
    monkeypatch.setattr(cfg, "KEYS_DIR", tmp_path / "courier_data" / "keys")
    monkeypatch.setattr(cfg, "DB_PATH", tmp_path / "courier_data" / "courier.db")
    monkeypatch.setattr(cfg, "PRIVATE_KEY_PATH", tmp_path / "courier_data" / "keys" / "private.bin")

    (tmp_path / "courier_data" / "keys").mkdir(parents=True, exist_ok=True)

    # Reset DB connection between tests (close old connection first)
    import courier_node.database as db_mod
    if db_mod._conn is not None:
        try:
            db_mod._conn.close()
        except Exception:
            pass
    monkeypatch.setattr(db_mod, "_conn", None)
    # Patch DB_PATH on the database module too (it binds at import time)
    monkeypatch.setattr(db_mod, "DB_PATH", tmp_path / "courier_data" / "courier.db")

    yield tmp_path

    if db_mod._conn is not None:
        db_mod._conn.close()


# RSA generation is slow; the pairs are immutable, so share them per session.

@pytest.fixture(scope="session")
def alice_keys():
    return generate()


@pytest.fixture(scope="session")
def bob_keys():
    return generate()


@pytest.fixture(scope="session")
def mallory_keys():
    return generate()


@pytest.fixture
def directory(alice_keys, bob_keys):
    """Directory with alice and bob already bound."""
    from courier_node.directory import Directory

    d = Directory()
    d.put_public_key("alice", alice_keys.public_key_b64)
    d.put_public_key("bob", bob_keys.public_key_b64)
    return d
