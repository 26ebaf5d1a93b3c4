import sys
from dotenv import load_dotenv

from ._helpers import load_config, logger_from_config, setup_logger
from ._events import setup_ibc_packet_event_listener, wait_for_packet_outcome


def run_packet_script(operation):
    """
    脚本主流程：加载环境和配置 -> 启动事件监听 -> 发送数据包 -> 等待结果；
    任何异常打印到标准错误并以退出码 1 结束
    """
    load_dotenv()
    logger = setup_logger()
    listener = None
    try:
        config = load_config()
        logger = logger_from_config(config)
        logger.info("配置和日志系统加载完成。")

        listener = setup_ibc_packet_event_listener(config, logger)
        operation(config, logger)
        wait_for_packet_outcome(listener, config, logger)
    except Exception as e:
        # critical 级别保证任何日志级别配置下都会输出到标准错误
        logger.critical(f"❌ 发送数据包失败: {e}", exc_info=True)
        sys.exit(1)
    finally:
        if listener is not None:
            listener.stop()
