"""tmuxcomposer 配置

配置分为以下几类：
- 轮询配置：内容采样间隔
- 控制模式配置：重连退避、socket 轮询、刷新节流
- 探测配置：agent 进程探测节奏
- 自动化配置：按键节奏、scrollback 深度、匹配规则表
- 退出码：区分正常退出与致命错误
"""

import os

# === 轮询配置 ===
POLL_INTERVAL = float(os.environ.get("TMUX_COMPOSER_POLL_INTERVAL", "0.5"))  # 屏幕采样间隔（秒）
MAX_CHECKSUM_CACHE_SIZE = 1000  # 内容 checksum LRU 容量
TMUX_COMMAND_TIMEOUT = 5.0  # 单条 tmux 命令超时（秒）

# === 控制模式配置 ===
RECONNECT_BASE_DELAY = 1.0  # 首次重连延迟（秒）
RECONNECT_MAX_DELAY = 30.0  # 重连延迟上限（秒）
RECONNECT_MAX_ATTEMPTS = 10  # 最大重连次数
RECONNECT_JITTER = 0.25  # 抖动比例 ±25%
SOCKET_POLL_INTERVAL = 1.0  # tmux socket 不存在时的轮询间隔（秒）
CONNECT_SETTLE_DELAY = 0.1  # 启动控制模式后等待首条查询的时间（秒）
REFRESH_THROTTLE = 0.15  # 拓扑刷新节流（秒）
CONTROL_ERROR_MARKERS = ("no server running", "lost server", "server exited")

# === 探测配置 ===
AGENT_COMMAND = "claude"  # 被自动化的 agent 进程名
PROBE_FAST_INTERVAL = 1.0  # 有新 pane 时的探测间隔（秒）
PROBE_SLOW_INTERVAL = 3.0  # 无新 pane 时的探测间隔（秒）
PROBE_RECENT_WINDOW = 20.0  # "新 pane" 判定窗口（秒）
DETECTOR_STRATEGY = "process"  # automate 默认探测策略: "process" | "command"

# === 自动化配置 ===
AUTOMATION_PAUSE = 0.5  # 按键/命令段之间的停顿（秒）
SCROLLBACK_LINES = 2000  # 二阶段确认时抓取的历史行数
MODE_ENV_VAR = "TMUX_COMPOSER_AGENT_MODE"  # session 环境变量，值为 act/plan
SESSION_INVALID_MARKER = "Please run /login"  # agent 登录态失效标记
DEFAULT_TERMINAL_WIDTH = 80
DEFAULT_TERMINAL_HEIGHT = 24

# 依赖 paste buffer 的规则（buffer 为空时不参与匹配）
PASTE_BUFFER_RULES = frozenset({"inject-initial-context-plan", "inject-initial-context-act"})

# 匹配规则表：按声明顺序求值
# trigger: 片段列表，必须按顺序出现；单片段时为任意行包含（前导空格是匹配的一部分）
# wrapped_trigger: 终端折行时的备用 trigger
# response: 按键 DSL，<Key> 为具名按键，{command} 为具名命令
# mode: act / plan / all
MATCHERS: list[dict[str, object]] = [
    {
        "name": "trust-folder",
        "trigger": [
            "Do you trust the files in this folder?",
            " Enter to confirm · Esc to exit",
        ],
        "wrapped_trigger": [
            "Do you trust the files in this",
            " Enter to confirm · Esc to exit",
        ],
        "response": "<Enter>",
        "run_once": True,
        "mode": "all",
    },
    {
        "name": "ensure-plan-mode",
        "trigger": [" ? for shortcuts"],
        "response": "<S-Tab><S-Tab>",
        "run_once": True,
        "mode": "plan",
    },
    {
        "name": "inject-initial-context-plan",
        "trigger": [" ⏸ plan mode on (shift+tab to cycle)"],
        "wrapped_trigger": [" ⏸ plan mode on", "(shift+tab to cycle)"],
        "response": "{paste-buffer}<Enter>",
        "run_once": True,
        "mode": "plan",
    },
    {
        "name": "inject-initial-context-act",
        "trigger": [" ? for shortcuts"],
        "response": "{paste-buffer}<Enter>",
        "run_once": True,
        "mode": "act",
    },
]

# === 事件服务配置 ===
EVENT_SERVER_HOST = "127.0.0.1"
EVENT_SERVER_PORT = 8765

# === 日志配置 ===
LOG_LEVEL = os.environ.get("TMUX_COMPOSER_LOG_LEVEL", "INFO")  # 日志级别
LOG_MAX_LINE_LEN = 200  # 协议行日志截断长度

# === 指标配置 ===
METRICS_ENABLED = True  # 是否启用指标收集

# === 退出码 ===
EXIT_OK = 0  # 正常退出（含信号触发的关闭）
EXIT_STARTUP_FAILED = 1  # 启动失败（tmux 不存在、权限、不在 tmux 内）
EXIT_RECONNECT_EXHAUSTED = 2  # 重连次数耗尽
EXIT_SESSION_INVALID = 3  # agent 登录态失效
