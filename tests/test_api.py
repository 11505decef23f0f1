from __future__ import annotations

from pathlib import Path

import pytest

from commissionctl.api import MemoryStorageBackend, Node, PairingInfo, decode_pairing_code, encode_pairing_code


@pytest.fixture(autouse=True)
def _isolated_xdg(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "cfg"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))


def test_public_node_pairing_info() -> None:
    node = Node("on_off_plug_in_unit", storage=MemoryStorageBackend())
    info = node.pairing_info()
    assert isinstance(info, PairingInfo)
    assert info.profile_id == "on_off_plug_in_unit"
    assert any(p.id == "on_off_light" for p in node.list_profiles())


def test_public_codec_helpers() -> None:
    info = Node(storage=MemoryStorageBackend()).pairing_info()
    assert encode_pairing_code(info.secret, info.identity) == info.code
    assert decode_pairing_code(info.code.manual_code).passcode == info.secret.passcode


@pytest.mark.asyncio
async def test_public_node_start_stop() -> None:
    node = Node(storage=MemoryStorageBackend(), advertise=False)
    server = await node.start(port=0)
    try:
        assert node.server is server
        assert server.port
    finally:
        await node.stop()
    assert node.server is None
