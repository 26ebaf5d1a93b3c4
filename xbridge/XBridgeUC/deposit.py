from .._helpers import (
    checksum,
    destination_port_addr,
    encode_bytes32_string,
    get_network_config,
    get_network_name,
    get_packet_config,
    parse_ether,
)
from .._script import run_packet_script
from .._vibc_helpers import connect_network, get_ibc_app, get_signer, send_contract_tx

DEPOSIT_VALUE = "0.0001"


def deposit(config, logger):
    network_name = get_network_name()
    network_config = get_network_config(config, network_name)
    send_config = get_packet_config(config, "sendUniversalPacket", network_name)

    w3 = connect_network(network_config)
    account = get_signer(w3, network_config, 0)
    ibc_app = get_ibc_app(config, network_name, w3)

    dest_port_addr = checksum(destination_port_addr(config, network_name))
    channel_id = send_config["channelId"]
    channel_id_bytes = encode_bytes32_string(channel_id)
    timeout_seconds = int(send_config["timeout"])

    logger.info(f"使用账户: {account.address}")
    logger.info(
        f"[{network_name}] deposit(UC): 目标端口={dest_port_addr}, channel={channel_id}, "
        f"timeout={timeout_seconds}s, value={DEPOSIT_VALUE} ETH"
    )
    func = ibc_app.functions.deposit(dest_port_addr, channel_id_bytes, timeout_seconds)
    return send_contract_tx(w3, func, account, value=parse_ether(DEPOSIT_VALUE), logger=logger)


def main():
    run_packet_script(deposit)


if __name__ == "__main__":
    main()
