import json
import logging

import pytest
from unittest.mock import MagicMock

OP_PORT = "0x" + "a1" * 20
BASE_PORT = "0x" + "b2" * 20
OP_UC_PORT = "0x" + "c3" * 20
BASE_UC_PORT = "0x" + "d4" * 20


@pytest.fixture
def config():
    return {
        "isUniversal": False,
        "deploy": {"optimism": "XBridge", "base": "XBridge"},
        "networks": {
            "optimism": {"rpc": "http://localhost:8545", "chainId": 11155420,
                         "accounts": ["PRIVATE_KEY_1", "PRIVATE_KEY_2"]},
            "base": {"rpc": "http://localhost:8546", "chainId": 84532,
                     "accounts": ["PRIVATE_KEY_1", "PRIVATE_KEY_2"]},
        },
        "sendPacket": {
            "optimism": {"portAddr": OP_PORT, "channelId": "channel-10", "timeout": 36000},
            "base": {"portAddr": BASE_PORT, "channelId": "channel-11", "timeout": 7200},
        },
        "sendUniversalPacket": {
            "optimism": {"portAddr": OP_UC_PORT, "channelId": "channel-20", "timeout": 3600},
            "base": {"portAddr": BASE_UC_PORT, "channelId": "channel-21", "timeout": 1800},
        },
    }


@pytest.fixture
def config_file(tmp_path, config, monkeypatch):
    path = tmp_path / "config.json"
    path.write_text(json.dumps(config))
    monkeypatch.setenv("CONFIG_PATH", str(path))
    return path


@pytest.fixture
def fake_w3():
    w3 = MagicMock()
    w3.eth.chain_id = 11155420
    return w3


@pytest.fixture
def logger():
    return logging.getLogger("xbridge.tests")


@pytest.fixture
def fresh_xbridge_logger(monkeypatch):
    """清空 xbridge logger 的 handler，让新建的 StreamHandler 绑定到当前被捕获的 stderr"""
    xbridge_logger = logging.getLogger("xbridge")
    monkeypatch.setattr(xbridge_logger, "handlers", [])
    monkeypatch.setattr(xbridge_logger, "level", xbridge_logger.level)
    yield xbridge_logger
    for handler in xbridge_logger.handlers:
        handler.close()
