import os
import logging
import yaml
from decimal import Decimal
from web3 import Web3

BASE_SEPOLIA_CHAIN_ID = 84532
OP_SEPOLIA_CHAIN_ID = 11155420

DEFAULT_CONFIG_PATH = "config.json"


class ConfigError(Exception):
    """配置文件或运行环境缺少必要字段"""


# ========== 配置与日志 ==========

def get_config_path():
    """
    返回配置文件路径：优先使用环境变量 CONFIG_PATH，否则为当前目录下的 config.json
    """
    return os.getenv("CONFIG_PATH") or DEFAULT_CONFIG_PATH

def load_config(path=None):
    """
    加载配置文件（JSON 是 YAML 的子集，统一用 yaml.safe_load 解析），返回配置字典
    """
    path = path or get_config_path()
    try:
        with open(path, "r", encoding="utf-8") as f:
            config = yaml.safe_load(f)
    except FileNotFoundError:
        raise ConfigError(f"配置文件不存在: {path}")
    if not isinstance(config, dict):
        raise ConfigError(f"配置文件格式错误，顶层必须是对象: {path}")
    return config

def setup_logger(log_level="INFO", log_file=None):
    """
    配置日志系统，日志输出到标准错误，配置了 log_file 时同时写入文件
    """
    logger = logging.getLogger("xbridge")
    logger.setLevel(getattr(logging, log_level.upper()))
    formatter = logging.Formatter('%(asctime)s %(levelname)s %(message)s')
    # 防止重复添加handler（FileHandler 是 StreamHandler 的子类，按精确类型判断）
    if not any(type(h) is logging.StreamHandler for h in logger.handlers):
        ch = logging.StreamHandler()
        ch.setFormatter(formatter)
        logger.addHandler(ch)
    if log_file and not any(isinstance(h, logging.FileHandler) for h in logger.handlers):
        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setFormatter(formatter)
        logger.addHandler(fh)
    return logger

def logger_from_config(config):
    logging_cfg = config.get("logging") or {}
    return setup_logger(logging_cfg.get("log_level", "INFO"), logging_cfg.get("log_file"))

# ========== 运行环境 ==========

def get_network_name():
    """
    当前网络名称，由调用环境通过 NETWORK 环境变量提供
    """
    network_name = os.getenv("NETWORK", "").strip()
    if not network_name:
        raise ConfigError("未设置 NETWORK 环境变量，无法确定当前网络")
    return network_name

def get_network_config(config, network_name):
    networks = config.get("networks") or {}
    if network_name not in networks:
        raise ConfigError(f"配置文件 networks 中没有网络: {network_name}")
    return networks[network_name]

def get_packet_config(config, section, network_name):
    """
    取出 config[section][network_name]，section 为 sendPacket 或 sendUniversalPacket；
    channelId 和 timeout 必须存在
    """
    send_config = config.get(section)
    if not isinstance(send_config, dict):
        raise ConfigError(f"配置文件缺少 {section} 段")
    if network_name not in send_config:
        raise ConfigError(f"{section} 中没有网络 {network_name} 的配置")
    packet_config = send_config[network_name]
    for key in ("channelId", "timeout"):
        if key not in packet_config:
            raise ConfigError(f"{section}.{network_name} 缺少字段 {key}")
    return packet_config

# ========== 工具 ==========

def encode_bytes32_string(text: str) -> bytes:
    """
    将字符串编码为bytes32：UTF-8 字节右侧补零，最多31字节（需保留结尾的\\0）
    """
    data = text.encode("utf-8")
    if len(data) > 31:
        raise ValueError(f"bytes32 字符串必须少于32字节: {text!r}")
    return data.ljust(32, b'\0')

def decode_bytes32_string(data: bytes) -> str:
    if len(data) != 32:
        raise ValueError(f"bytes32 长度错误: {len(data)}")
    if data[31] != 0:
        raise ValueError("bytes32 字符串缺少结尾的\\0")
    return bytes(data).rstrip(b'\0').decode("utf-8")

def parse_ether(amount) -> int:
    # 十进制 ether 金额转 wei
    return Web3.to_wei(Decimal(str(amount)), "ether")

def destination_chain_id(source_chain_id) -> int:
    # Base Sepolia 发往 OP Sepolia，其余一律发往 Base Sepolia
    return OP_SEPOLIA_CHAIN_ID if int(source_chain_id) == BASE_SEPOLIA_CHAIN_ID else BASE_SEPOLIA_CHAIN_ID

def destination_port_addr(config, network_name):
    """
    在 optimism 上发送时使用 base 的端口地址，反之使用 optimism 的
    """
    counterpart = "base" if network_name == "optimism" else "optimism"
    uc_config = config.get("sendUniversalPacket") or {}
    try:
        return uc_config[counterpart]["portAddr"]
    except KeyError:
        raise ConfigError(f"sendUniversalPacket.{counterpart}.portAddr 未配置")

def checksum(address):
    """
    将地址转换为EIP-55校验格式
    """
    return Web3.to_checksum_address(address)
