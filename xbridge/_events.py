"""vIBC 数据包事件监听：轮询各网络 Dispatcher 合约的日志并打印数据包生命周期"""

import logging
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional, Set, Tuple

from hexbytes import HexBytes
from web3 import Web3

from ._helpers import checksum, decode_bytes32_string
from ._vibc_helpers import connect_network

# ========== ABI 常量 ==========
DISPATCHER_EVENTS_ABI = [
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "internalType": "address", "name": "sourcePortAddress", "type": "address"},
            {"indexed": True, "internalType": "bytes32", "name": "sourceChannelId", "type": "bytes32"},
            {"indexed": False, "internalType": "bytes", "name": "packet", "type": "bytes"},
            {"indexed": False, "internalType": "uint64", "name": "sequence", "type": "uint64"},
            {"indexed": False, "internalType": "uint64", "name": "timeoutTimestamp", "type": "uint64"}
        ],
        "name": "SendPacket",
        "type": "event"
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "internalType": "address", "name": "destPortAddress", "type": "address"},
            {"indexed": True, "internalType": "bytes32", "name": "destChannelId", "type": "bytes32"},
            {"indexed": False, "internalType": "uint64", "name": "sequence", "type": "uint64"}
        ],
        "name": "RecvPacket",
        "type": "event"
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "internalType": "address", "name": "writerPortAddress", "type": "address"},
            {"indexed": True, "internalType": "bytes32", "name": "writerChannelId", "type": "bytes32"},
            {"indexed": False, "internalType": "uint64", "name": "sequence", "type": "uint64"},
            {
                "components": [
                    {"internalType": "bool", "name": "success", "type": "bool"},
                    {"internalType": "bytes", "name": "data", "type": "bytes"}
                ],
                "indexed": False,
                "internalType": "struct AckPacket",
                "name": "ackPacket",
                "type": "tuple"
            }
        ],
        "name": "WriteAckPacket",
        "type": "event"
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "internalType": "address", "name": "sourcePortAddress", "type": "address"},
            {"indexed": True, "internalType": "bytes32", "name": "sourceChannelId", "type": "bytes32"},
            {"indexed": False, "internalType": "uint64", "name": "sequence", "type": "uint64"}
        ],
        "name": "Acknowledgement",
        "type": "event"
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "internalType": "address", "name": "sourcePortAddress", "type": "address"},
            {"indexed": True, "internalType": "bytes32", "name": "sourceChannelId", "type": "bytes32"},
            {"indexed": True, "internalType": "uint64", "name": "sequence", "type": "uint64"}
        ],
        "name": "Timeout",
        "type": "event"
    }
]

PACKET_EVENTS = ["SendPacket", "RecvPacket", "WriteAckPacket", "Acknowledgement", "Timeout"]
TERMINAL_EVENTS = ("Acknowledgement", "Timeout")

DEFAULT_POLL_INTERVAL = 5.0
DEFAULT_MAX_BLOCK_RANGE = 1000


@dataclass
class PacketEvent:
    """监听到的一条数据包事件"""
    network: str
    name: str
    port_address: str
    channel_id: str
    sequence: int
    tx_hash: str
    block_number: int
    log_index: int = 0


def channel_label(value) -> str:
    """
    事件里的 bytes32 通道ID转成可读字符串，无法按字符串解码时返回十六进制
    """
    raw = HexBytes(value)
    try:
        return decode_bytes32_string(raw)
    except (ValueError, UnicodeDecodeError):
        return Web3.to_hex(raw)

def to_packet_event(network_name, event_name, log) -> PacketEvent:
    args = log["args"]
    port_key = next(k for k in args if k.endswith("PortAddress"))
    channel_key = next(k for k in args if k.endswith("ChannelId"))
    return PacketEvent(
        network=network_name,
        name=event_name,
        port_address=args[port_key],
        channel_id=channel_label(args[channel_key]),
        sequence=int(args["sequence"]),
        tx_hash=Web3.to_hex(log["transactionHash"]),
        block_number=int(log["blockNumber"]),
        log_index=int(log.get("logIndex", 0)),
    )


class NetworkWatcher:
    """单个网络上的 Dispatcher 日志轮询，按区块区间增量拉取"""

    def __init__(self, network_name, w3, dispatcher, port_address=None, max_block_range=DEFAULT_MAX_BLOCK_RANGE):
        self.network_name = network_name
        self.w3 = w3
        self.dispatcher = dispatcher
        self.port_address = checksum(port_address) if port_address else None
        self.max_block_range = max_block_range
        self.last_block: Optional[int] = None

    def prime(self):
        # 只关心启动之后产生的事件
        self.last_block = self.w3.eth.block_number

    def poll(self) -> List[PacketEvent]:
        if self.last_block is None:
            self.prime()
            return []
        latest = self.w3.eth.block_number
        if latest <= self.last_block:
            return []
        from_block = self.last_block + 1
        to_block = min(latest, self.last_block + self.max_block_range)

        events = []
        for event_name in PACKET_EVENTS:
            logs = getattr(self.dispatcher.events, event_name)().get_logs(
                from_block=from_block, to_block=to_block
            )
            for log in logs:
                event = to_packet_event(self.network_name, event_name, log)
                if self.port_address and checksum(event.port_address) != self.port_address:
                    continue
                events.append(event)
        self.last_block = to_block
        events.sort(key=lambda e: (e.block_number, e.log_index))
        return events


class IbcPacketEventListener:
    """
    后台线程轮询所有网络的数据包事件：
    - 每个事件打印一次
    - 本次启动后发出的数据包收到 Acknowledgement 或 Timeout 时，wait() 返回 True
    """

    def __init__(self, watchers: List[NetworkWatcher], logger=None, poll_interval=DEFAULT_POLL_INTERVAL):
        self.watchers = watchers
        self.logger = logger or logging.getLogger("xbridge")
        self.poll_interval = poll_interval
        self.events: List[PacketEvent] = []
        self.outcome: Optional[PacketEvent] = None
        self._sent: Set[Tuple[str, str, int]] = set()
        self._seen: Set[tuple] = set()
        self._stop_event = threading.Event()
        self._done_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self):
        ready = []
        for watcher in self.watchers:
            if watcher.last_block is None:
                try:
                    watcher.prime()
                except Exception as e:
                    self.logger.warning(f"网络 {watcher.network_name} 查询区块高度失败，跳过事件监听: {e}")
                    continue
            ready.append(watcher)
        self.watchers = ready
        if not self.watchers:
            self.logger.warning("没有可监听的网络，事件监听未启动")
            return self
        self._thread = threading.Thread(target=self._run, name="ibc-event-listener", daemon=True)
        self._thread.start()
        self.logger.info(f"🔔 已开始监听数据包事件: {', '.join(w.network_name for w in self.watchers)}")
        return self

    def stop(self):
        self._stop_event.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=self.poll_interval + 1)

    def wait(self, timeout=None) -> bool:
        return self._done_event.wait(timeout)

    def _run(self):
        while not self._stop_event.is_set():
            try:
                self.poll_once()
            except Exception as e:
                self.logger.error(f"轮询数据包事件时发生异常: {e}")
            self._stop_event.wait(self.poll_interval)

    def poll_once(self):
        for watcher in self.watchers:
            for event in watcher.poll():
                self.handle_event(event)

    def handle_event(self, event: PacketEvent):
        key = (event.network, event.name, event.tx_hash, event.log_index)
        if key in self._seen:
            return
        self._seen.add(key)
        self.events.append(event)

        self.logger.info(
            f"🔔 [{event.network}] {event.name}: channel={event.channel_id}, "
            f"sequence={event.sequence}, port={event.port_address}, tx={event.tx_hash}"
        )

        packet = (event.network, event.channel_id, event.sequence)
        if event.name == "SendPacket":
            self._sent.add(packet)
        elif event.name in TERMINAL_EVENTS and packet in self._sent:
            self.outcome = event
            if event.name == "Acknowledgement":
                self.logger.info(f"✅ 数据包已确认: channel={event.channel_id}, sequence={event.sequence}")
            else:
                self.logger.warning(f"⌛ 数据包超时: channel={event.channel_id}, sequence={event.sequence}")
            self._done_event.set()


# ========== 对外接口 ==========
def setup_ibc_packet_event_listener(config, logger=None, connect=None):
    """
    为 networks 中每个配置了 Dispatcher 地址的网络建立监听并启动后台轮询；
    universal 模式下按 ucHandler 地址过滤，否则按 IBC 应用的 portAddr 过滤
    """
    logger = logger or logging.getLogger("xbridge")
    connect = connect or connect_network
    events_cfg = config.get("events") or {}
    dispatchers: Dict[str, str] = config.get("dispatcher") or {}
    is_universal = bool(config.get("isUniversal"))

    watchers = []
    for network_name, network_config in (config.get("networks") or {}).items():
        dispatcher_address = dispatchers.get(network_name)
        if not dispatcher_address:
            logger.warning(f"网络 {network_name} 未配置 Dispatcher 地址，跳过事件监听")
            continue
        if is_universal:
            port_address = (config.get("ucHandler") or {}).get(network_name)
        else:
            port_address = ((config.get("sendPacket") or {}).get(network_name) or {}).get("portAddr")

        # 监听失败不影响发送交易
        try:
            w3 = connect(network_config)
            dispatcher = w3.eth.contract(address=checksum(dispatcher_address), abi=DISPATCHER_EVENTS_ABI)
        except Exception as e:
            logger.warning(f"网络 {network_name} 连接失败，跳过事件监听: {e}")
            continue
        watchers.append(NetworkWatcher(
            network_name, w3, dispatcher,
            port_address=port_address,
            max_block_range=int(events_cfg.get("max_block_range", DEFAULT_MAX_BLOCK_RANGE)),
        ))

    listener = IbcPacketEventListener(
        watchers, logger,
        poll_interval=float(events_cfg.get("poll_interval_seconds", DEFAULT_POLL_INTERVAL)),
    )
    return listener.start()

def wait_for_packet_outcome(listener, config, logger=None):
    """
    交易上链后按 events.wait_seconds 等待数据包结果，0 表示不等待
    """
    logger = logger or logging.getLogger("xbridge")
    wait_seconds = float((config.get("events") or {}).get("wait_seconds", 0))
    if wait_seconds <= 0 or not listener.watchers:
        return None
    logger.info(f"等待数据包确认，最长 {wait_seconds:g} 秒...")
    try:
        if not listener.wait(wait_seconds):
            logger.warning(f"{wait_seconds:g} 秒内未收到 Acknowledgement/Timeout 事件")
    except KeyboardInterrupt:
        logger.info("已中断等待")
    names = [e.name for e in listener.events]
    logger.info(f"共收到 {len(names)} 个数据包事件: {', '.join(names) or '无'}")
    return listener.outcome
