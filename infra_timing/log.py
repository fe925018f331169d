"""带时间戳的终端日志"""

import sys
from datetime import datetime
from typing import Optional, TextIO


class Colors:
    """终端颜色"""
    GREEN = '\033[92m'
    YELLOW = '\033[93m'
    RED = '\033[91m'
    GREY = '\033[90m'
    END = '\033[0m'


LEVEL_COLORS = {
    "debug": Colors.GREY,
    "info": "",
    "success": Colors.GREEN,
    "warning": Colors.YELLOW,
    "error": Colors.RED,
}


class ConsoleLogger:
    """单行日志: `YYYY-MM-DD HH:MM:SS level: message`"""

    def __init__(self, verbose: bool = False, color: bool = False, stream: Optional[TextIO] = None):
        self.verbose = verbose
        self.color = color
        self.stream = stream

    def log(self, level: str, msg: str):
        if level == "debug" and not self.verbose:
            return

        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        line = f"{timestamp} {level}: {msg}"
        color = LEVEL_COLORS.get(level, "")
        if self.color and color:
            line = f"{color}{line}{Colors.END}"

        print(line, file=self.stream or sys.stdout, flush=True)

    def debug(self, msg: str):
        self.log("debug", msg)

    def info(self, msg: str):
        self.log("info", msg)

    def success(self, msg: str):
        self.log("success", msg)

    def warning(self, msg: str):
        self.log("warning", msg)

    def error(self, msg: str):
        self.log("error", msg)

    def banner(self, title: str, width: int = 60):
        """打印结果分隔标题"""
        out = self.stream or sys.stdout
        print("=" * width, file=out)
        print(f"     {title}", file=out)
        print("=" * width, file=out, flush=True)
