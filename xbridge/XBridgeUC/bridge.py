"""在 universal channel 上调用 XBridgeUC.bridge"""

from .._helpers import (
    checksum,
    destination_chain_id,
    destination_port_addr,
    encode_bytes32_string,
    get_network_config,
    get_network_name,
    get_packet_config,
    parse_ether,
)
from .._script import run_packet_script
from .._vibc_helpers import connect_network, get_chain_id, get_ibc_app, get_signer, send_contract_tx

BRIDGE_VALUE = "0.00001"
SIGNER_INDEX = 1


def bridge(config, logger):
    network_name = get_network_name()
    network_config = get_network_config(config, network_name)
    send_config = get_packet_config(config, "sendUniversalPacket", network_name)

    w3 = connect_network(network_config)
    account = get_signer(w3, network_config, SIGNER_INDEX)
    ibc_app = get_ibc_app(config, network_name, w3)

    # optimism 上发送时目标端口是 base 的，反之亦然
    dest_port_addr = checksum(destination_port_addr(config, network_name))
    channel_id = send_config["channelId"]
    channel_id_bytes = encode_bytes32_string(channel_id)
    timeout_seconds = int(send_config["timeout"])
    dest_chain_id = destination_chain_id(get_chain_id(w3, network_config))

    logger.info(f"使用账户: {account.address}")
    logger.info(
        f"[{network_name}] bridge(UC): 目标端口={dest_port_addr}, channel={channel_id}, "
        f"timeout={timeout_seconds}s, 目标链ID={dest_chain_id}, value={BRIDGE_VALUE} ETH"
    )
    func = ibc_app.functions.bridge(dest_port_addr, channel_id_bytes, timeout_seconds, dest_chain_id)
    return send_contract_tx(w3, func, account, value=parse_ether(BRIDGE_VALUE), logger=logger)


def main():
    run_packet_script(bridge)


if __name__ == "__main__":
    main()
