from .._helpers import (
    encode_bytes32_string,
    get_network_config,
    get_network_name,
    get_packet_config,
    parse_ether,
)
from .._script import run_packet_script
from .._vibc_helpers import connect_network, get_ibc_app, get_signer, send_contract_tx

WITHDRAW_AMOUNT = "0.00001"


def withdraw(config, logger):
    """
    在自定义通道上调用 XBridge.withdraw，提取金额作为参数传入，不附带原生代币
    """
    network_name = get_network_name()
    network_config = get_network_config(config, network_name)
    send_config = get_packet_config(config, "sendPacket", network_name)

    w3 = connect_network(network_config)
    account = get_signer(w3, network_config, 0)
    ibc_app = get_ibc_app(config, network_name, w3)

    channel_id = send_config["channelId"]
    channel_id_bytes = encode_bytes32_string(channel_id)
    timeout_seconds = int(send_config["timeout"])
    amount = parse_ether(WITHDRAW_AMOUNT)

    logger.info(f"使用账户: {account.address}")
    logger.info(f"[{network_name}] withdraw: channel={channel_id}, timeout={timeout_seconds}s, amount={WITHDRAW_AMOUNT} ETH")
    func = ibc_app.functions.withdraw(channel_id_bytes, timeout_seconds, amount)
    return send_contract_tx(w3, func, account, logger=logger)


def main():
    run_packet_script(withdraw)


if __name__ == "__main__":
    main()
