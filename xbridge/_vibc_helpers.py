import os
import json
import logging
from web3 import Web3
from web3.middleware import ExtraDataToPOAMiddleware

from ._helpers import ConfigError, checksum

# ========== ABI 常量 ==========
XBRIDGE_ABI = [
    {
        "inputs": [
            {"internalType": "bytes32", "name": "channelId", "type": "bytes32"},
            {"internalType": "uint64", "name": "timeoutSeconds", "type": "uint64"},
            {"internalType": "uint256", "name": "destChainId", "type": "uint256"}
        ],
        "name": "bridge",
        "outputs": [],
        "stateMutability": "payable",
        "type": "function"
    },
    {
        "inputs": [
            {"internalType": "bytes32", "name": "channelId", "type": "bytes32"},
            {"internalType": "uint64", "name": "timeoutSeconds", "type": "uint64"},
            {"internalType": "uint256", "name": "amount", "type": "uint256"}
        ],
        "name": "withdraw",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function"
    }
]

XBRIDGE_UC_ABI = [
    {
        "inputs": [
            {"internalType": "address", "name": "destPortAddr", "type": "address"},
            {"internalType": "bytes32", "name": "channelId", "type": "bytes32"},
            {"internalType": "uint64", "name": "timeoutSeconds", "type": "uint64"},
            {"internalType": "uint256", "name": "destChainId", "type": "uint256"}
        ],
        "name": "bridge",
        "outputs": [],
        "stateMutability": "payable",
        "type": "function"
    },
    {
        "inputs": [
            {"internalType": "address", "name": "destPortAddr", "type": "address"},
            {"internalType": "bytes32", "name": "channelId", "type": "bytes32"},
            {"internalType": "uint64", "name": "timeoutSeconds", "type": "uint64"}
        ],
        "name": "deposit",
        "outputs": [],
        "stateMutability": "payable",
        "type": "function"
    }
]

IBC_APP_ABIS = {
    "XBridge": XBRIDGE_ABI,
    "XBridgeUC": XBRIDGE_UC_ABI,
}

DEFAULT_ACCOUNT_ENVS = ["PRIVATE_KEY_1", "PRIVATE_KEY_2", "PRIVATE_KEY_3"]

# ========== Web3 初始化 ==========
def init_web3(rpc_url, enable_poa_middleware=False):
    """
    初始化web3对象，连接指定RPC，连接失败抛出异常
    """
    w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": 30}))

    if enable_poa_middleware:
        # layer=0表示最内层中间件，优先处理区块数据解析
        w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
        logging.getLogger("xbridge").debug(f"已为RPC {rpc_url} 注入POA中间件")

    if not w3.is_connected():
        raise RuntimeError(f"Web3 连接失败: {rpc_url}")
    return w3

def connect_network(network_config):
    if not network_config.get("rpc"):
        raise ConfigError("网络配置缺少 rpc")
    return init_web3(network_config["rpc"], enable_poa_middleware=network_config.get("is_poa", False))

def get_chain_id(w3, network_config):
    """
    优先使用配置中的 chainId，未配置时向节点查询
    """
    chain_id = network_config.get("chainId")
    if chain_id is None:
        chain_id = w3.eth.chain_id
    return int(chain_id)

def get_signer(w3, network_config, index=0):
    """
    按下标取签名账户，私钥从 accounts 列出的环境变量读取
    """
    account_envs = network_config.get("accounts") or DEFAULT_ACCOUNT_ENVS
    if index >= len(account_envs):
        raise ConfigError(f"网络只配置了 {len(account_envs)} 个账户，无法使用 accounts[{index}]")
    private_key = os.getenv(account_envs[index], "").strip()
    if not private_key:
        raise ConfigError(f"环境变量 {account_envs[index]} 未设置私钥")
    if not private_key.startswith("0x"):
        private_key = "0x" + private_key
    return w3.eth.account.from_key(private_key)

# ========== 合约 ==========
def load_abi(abi_path):
    """
    读取ABI文件，兼容 hardhat artifact（含 abi 字段）和纯ABI数组
    """
    with open(abi_path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict):
        return data["abi"]
    return data

def get_ibc_app_address(config, network_name):
    section = "sendUniversalPacket" if config.get("isUniversal") else "sendPacket"
    try:
        return config[section][network_name]["portAddr"]
    except KeyError:
        raise ConfigError(f"{section}.{network_name}.portAddr 未配置")

def get_ibc_app(config, network_name, w3):
    """
    返回当前网络上的IBC应用合约：地址取自 portAddr，合约类型取自 deploy 段
    """
    contract_type = (config.get("deploy") or {}).get(network_name)
    if not contract_type:
        raise ConfigError(f"deploy 段没有网络 {network_name} 的合约类型")

    abi_path = (config.get("abiPath") or {}).get(contract_type)
    if abi_path:
        abi = load_abi(abi_path)
    elif contract_type in IBC_APP_ABIS:
        abi = IBC_APP_ABIS[contract_type]
    else:
        raise ConfigError(f"未知的合约类型 {contract_type}，请在 abiPath 中指定ABI文件")

    address = checksum(get_ibc_app_address(config, network_name))
    return w3.eth.contract(address=address, abi=abi)

# ========== EIP-1559 Gas参数构建工具 ==========
def build_tx_with_gas_params(w3, tx_dict, logger):
    """
    构建交易参数：
    - 非 EIP-1559 链：使用 gasPrice
    - EIP-1559 链：强制使用 maxFeePerGas / maxPriorityFeePerGas
      priority fee 为 0 时使用兜底值，而不是回退
    """

    tx = tx_dict.copy()
    tx["chainId"] = w3.eth.chain_id

    FALLBACK_PRIORITY_FEE = 1000000      # 0.001 gwei
    BASE_FEE_MULTIPLIER = 1.2

    latest_block = w3.eth.get_block("latest")
    base_fee = latest_block.get("baseFeePerGas", 0)

    if base_fee is None or base_fee == 0:
        logger.info("检测到非 EIP-1559 链，使用 gasPrice")
        gas_price = w3.eth.gas_price
        tx["gasPrice"] = gas_price
        tx.pop("maxFeePerGas", None)
        tx.pop("maxPriorityFeePerGas", None)
        logger.info(f"gasPrice = {Web3.from_wei(gas_price, 'gwei')} gwei")
        return tx

    try:
        priority_fee = int(w3.eth.max_priority_fee)
    except Exception as e:
        logger.debug(f"查询 maxPriorityFeePerGas 失败: {e}")
        priority_fee = 0

    if priority_fee <= 0:
        logger.warning(
            f"RPC 返回 maxPriorityFeePerGas={priority_fee}，使用兜底值 {FALLBACK_PRIORITY_FEE}"
        )
        priority_fee = FALLBACK_PRIORITY_FEE

    max_fee = int(base_fee * BASE_FEE_MULTIPLIER) + priority_fee

    tx["maxFeePerGas"] = max_fee
    tx["maxPriorityFeePerGas"] = priority_fee
    tx.pop("gasPrice", None)

    logger.info(
        "使用 EIP-1559 参数构建交易: "
        f"baseFee={Web3.from_wei(base_fee, 'gwei')} gwei, "
        f"maxFeePerGas={Web3.from_wei(max_fee, 'gwei')} gwei, "
        f"maxPriorityFeePerGas={Web3.from_wei(priority_fee, 'gwei')} gwei"
    )
    return tx

# ========== 发送交易 ==========
def send_contract_tx(w3, func, account, value=0, logger=None):
    """
    估算Gas、构建、签名并发送合约调用交易，等待上链；交易回滚时抛出异常
    """
    logger = logger or logging.getLogger("xbridge")
    nonce = w3.eth.get_transaction_count(account.address, 'pending')
    tx_for_estimate = {
        "from": account.address,
        "nonce": nonce,
        "value": value
    }
    try:
        estimated_gas = func.estimate_gas(tx_for_estimate)
        gas_limit = int(estimated_gas * 1.3)  # 增加30%作为Gas上限
        logger.info(f"Gas估算完成 - 估算值: {estimated_gas}, 最终上限: {gas_limit}")
    except Exception as e:
        logger.warning(f"Gas估算失败: {e}，使用默认Gas上限500000")
        gas_limit = 500000

    tx_dict = build_tx_with_gas_params(w3, {
        "from": account.address,
        "nonce": nonce,
        "gas": gas_limit,
        "value": value
    }, logger)
    tx = func.build_transaction(tx_dict)
    signed = account.sign_transaction(tx)
    tx_hash = w3.eth.send_raw_transaction(signed.raw_transaction)
    tx_hash_hex = Web3.to_hex(tx_hash)
    logger.info(f"交易已发送: {tx_hash_hex}")

    receipt = w3.eth.wait_for_transaction_receipt(tx_hash, timeout=120, poll_latency=1)
    if receipt.status != 1:
        raise RuntimeError(f"交易执行失败（合约回滚），交易哈希: {tx_hash_hex}")
    logger.info(f"交易已上链 - 区块高度: {receipt.blockNumber}, Gas消耗: {receipt.gasUsed}")
    return receipt
