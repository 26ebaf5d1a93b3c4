import json

import pytest
from unittest.mock import MagicMock
from web3 import Web3

from xbridge import _events, _script
from xbridge.XBridge import bridge as xbridge_bridge
from xbridge.XBridge import withdraw as xbridge_withdraw
from xbridge.XBridgeUC import bridge as uc_bridge
from xbridge.XBridgeUC import deposit as uc_deposit
from xbridge._helpers import encode_bytes32_string

from conftest import BASE_UC_PORT, OP_UC_PORT


class Recorder:
    """替换脚本模块里的 web3 依赖，记录签名账户下标和发送的交易"""

    def __init__(self, monkeypatch, module, fake_w3):
        self.ibc_app = MagicMock()
        self.signer_index = None
        self.sent = None
        self.account = MagicMock(address="0x" + "ab" * 20)

        monkeypatch.setattr(module, "connect_network", lambda network_config: fake_w3)
        monkeypatch.setattr(module, "get_ibc_app", lambda config, network_name, w3: self.ibc_app)
        monkeypatch.setattr(module, "get_signer", self._get_signer)
        monkeypatch.setattr(module, "send_contract_tx", self._send)

    def _get_signer(self, w3, network_config, index=0):
        self.signer_index = index
        return self.account

    def _send(self, w3, func, account, value=0, logger=None):
        self.sent = {"func": func, "account": account, "value": value}
        return MagicMock(status=1)


def test_xbridge_bridge_from_base(monkeypatch, config, fake_w3, logger):
    monkeypatch.setenv("NETWORK", "base")
    recorder = Recorder(monkeypatch, xbridge_bridge, fake_w3)

    xbridge_bridge.bridge(config, logger)

    recorder.ibc_app.functions.bridge.assert_called_once_with(
        encode_bytes32_string("channel-11"), 7200, 11155420
    )
    assert recorder.signer_index == 0
    assert recorder.sent["value"] == 10 ** 13
    assert recorder.sent["func"] is recorder.ibc_app.functions.bridge.return_value


def test_xbridge_bridge_from_optimism(monkeypatch, config, fake_w3, logger):
    monkeypatch.setenv("NETWORK", "optimism")
    recorder = Recorder(monkeypatch, xbridge_bridge, fake_w3)

    xbridge_bridge.bridge(config, logger)

    recorder.ibc_app.functions.bridge.assert_called_once_with(
        encode_bytes32_string("channel-10"), 36000, 84532
    )


def test_xbridge_bridge_uses_node_chain_id_when_unconfigured(monkeypatch, config, fake_w3, logger):
    monkeypatch.setenv("NETWORK", "base")
    del config["networks"]["base"]["chainId"]
    fake_w3.eth.chain_id = 84532
    recorder = Recorder(monkeypatch, xbridge_bridge, fake_w3)

    xbridge_bridge.bridge(config, logger)

    assert recorder.ibc_app.functions.bridge.call_args[0][2] == 11155420


def test_xbridge_withdraw_passes_amount_without_value(monkeypatch, config, fake_w3, logger):
    monkeypatch.setenv("NETWORK", "optimism")
    recorder = Recorder(monkeypatch, xbridge_withdraw, fake_w3)

    xbridge_withdraw.withdraw(config, logger)

    recorder.ibc_app.functions.withdraw.assert_called_once_with(
        encode_bytes32_string("channel-10"), 36000, 10 ** 13
    )
    assert recorder.signer_index == 0
    assert recorder.sent["value"] == 0


def test_uc_bridge_targets_counterpart_port(monkeypatch, config, fake_w3, logger):
    monkeypatch.setenv("NETWORK", "optimism")
    recorder = Recorder(monkeypatch, uc_bridge, fake_w3)

    uc_bridge.bridge(config, logger)

    recorder.ibc_app.functions.bridge.assert_called_once_with(
        Web3.to_checksum_address(BASE_UC_PORT), encode_bytes32_string("channel-20"), 3600, 84532
    )
    assert recorder.signer_index == 1
    assert recorder.sent["value"] == 10 ** 13


def test_uc_deposit_from_base(monkeypatch, config, fake_w3, logger):
    monkeypatch.setenv("NETWORK", "base")
    recorder = Recorder(monkeypatch, uc_deposit, fake_w3)

    uc_deposit.deposit(config, logger)

    recorder.ibc_app.functions.deposit.assert_called_once_with(
        Web3.to_checksum_address(OP_UC_PORT), encode_bytes32_string("channel-21"), 1800
    )
    assert recorder.signer_index == 0
    assert recorder.sent["value"] == 10 ** 14


def test_bridge_rejects_long_channel_id(monkeypatch, config, fake_w3, logger):
    monkeypatch.setenv("NETWORK", "base")
    config["sendPacket"]["base"]["channelId"] = "channel-" + "9" * 40
    recorder = Recorder(monkeypatch, xbridge_bridge, fake_w3)

    with pytest.raises(ValueError):
        xbridge_bridge.bridge(config, logger)
    assert recorder.sent is None


# ========== 脚本入口 ==========

@pytest.fixture
def no_dotenv(monkeypatch):
    monkeypatch.setattr(_script, "load_dotenv", lambda: None)


def test_main_exits_1_when_config_missing(monkeypatch, tmp_path, no_dotenv):
    monkeypatch.setenv("CONFIG_PATH", str(tmp_path / "missing.json"))
    monkeypatch.setenv("NETWORK", "base")

    with pytest.raises(SystemExit) as exc_info:
        xbridge_bridge.main()
    assert exc_info.value.code == 1


def test_main_exits_1_when_network_unknown(monkeypatch, config_file, fake_w3, no_dotenv):
    monkeypatch.setenv("NETWORK", "arbitrum")
    Recorder(monkeypatch, uc_deposit, fake_w3)

    with pytest.raises(SystemExit) as exc_info:
        uc_deposit.main()
    assert exc_info.value.code == 1


def test_main_exits_1_when_transaction_fails(monkeypatch, config_file, fake_w3, no_dotenv):
    monkeypatch.setenv("NETWORK", "optimism")
    recorder = Recorder(monkeypatch, xbridge_withdraw, fake_w3)

    def reverted(*args, **kwargs):
        raise RuntimeError("交易执行失败")
    monkeypatch.setattr(xbridge_withdraw, "send_contract_tx", reverted)

    with pytest.raises(SystemExit) as exc_info:
        xbridge_withdraw.main()
    assert exc_info.value.code == 1
    assert recorder.signer_index == 0


def test_main_success(monkeypatch, config_file, fake_w3, no_dotenv):
    monkeypatch.setenv("NETWORK", "base")
    recorder = Recorder(monkeypatch, uc_bridge, fake_w3)

    uc_bridge.main()

    assert recorder.sent is not None
    assert recorder.signer_index == 1


def test_main_reports_failure_on_stderr(monkeypatch, tmp_path, no_dotenv, fresh_xbridge_logger, capsys):
    monkeypatch.setenv("CONFIG_PATH", str(tmp_path / "missing.json"))

    with pytest.raises(SystemExit):
        xbridge_bridge.main()

    err = capsys.readouterr().err
    assert "❌ 发送数据包失败" in err
    assert "missing.json" in err


def test_main_reports_failure_at_critical_log_level(monkeypatch, tmp_path, config, no_dotenv,
                                                    fresh_xbridge_logger, capsys):
    config["logging"] = {"log_level": "CRITICAL"}
    path = tmp_path / "config.json"
    path.write_text(json.dumps(config))
    monkeypatch.setenv("CONFIG_PATH", str(path))
    monkeypatch.setenv("NETWORK", "arbitrum")

    with pytest.raises(SystemExit) as exc_info:
        xbridge_bridge.main()

    assert exc_info.value.code == 1
    assert "❌ 发送数据包失败" in capsys.readouterr().err


def test_main_sends_when_counterpart_rpc_is_down(monkeypatch, tmp_path, config, fake_w3, no_dotenv):
    config["dispatcher"] = {"optimism": "0x" + "99" * 20, "base": "0x" + "98" * 20}
    config["events"] = {"poll_interval_seconds": 0.01}
    path = tmp_path / "config.json"
    path.write_text(json.dumps(config))
    monkeypatch.setenv("CONFIG_PATH", str(path))
    monkeypatch.setenv("NETWORK", "optimism")
    fake_w3.eth.block_number = 10

    def connect(network_config):
        if network_config["chainId"] == 84532:
            raise RuntimeError("Web3 连接失败: base down")
        return fake_w3
    monkeypatch.setattr(_events, "connect_network", connect)
    recorder = Recorder(monkeypatch, xbridge_bridge, fake_w3)

    xbridge_bridge.main()

    recorder.ibc_app.functions.bridge.assert_called_once_with(
        encode_bytes32_string("channel-10"), 36000, 84532
    )
    assert recorder.sent is not None
