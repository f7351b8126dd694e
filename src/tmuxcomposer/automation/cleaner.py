"""终端内容清洗器 - 去除 ANSI 与边框字符，供触发匹配使用"""

import hashlib
import re


class ContentCleaner:
    """终端内容清洗器

    与纯文字白名单不同，这里保留标点和符号（触发片段里有 "?"、"·"、"⏸"），
    只去掉不影响语义的装饰：

    - ANSI 转义序列（CSI / OSC / 单字符 ESC）
    - 框线字符 ╭╮╰╯│─┌┐└┘├┤┬┴┼
    - 行尾空白、首尾空行
    """

    BOX_CHARS = "╭╮╰╯│─┌┐└┘├┤┬┴┼"

    _ANSI_PATTERN = re.compile(
        r"\x1b\[[0-?]*[ -/]*[@-~]"  # CSI
        r"|\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)"  # OSC
        r"|\x1b[@-Z\\-_]"  # 单字符
    )
    _BOX_TABLE = str.maketrans("", "", BOX_CHARS)

    @classmethod
    def clean_line(cls, line: str) -> str:
        """清洗单行：移除 ANSI 与框线，去掉行尾空白"""
        line = cls._ANSI_PATTERN.sub("", line)
        return line.translate(cls._BOX_TABLE).rstrip()

    @classmethod
    def clean_lines(cls, content: str) -> list[str]:
        """清洗整个内容，返回行列表

        中间的空行保留（行号用于顺序匹配），首尾空行去掉。
        """
        lines = [cls.clean_line(line) for line in content.split("\n")]
        start = 0
        while start < len(lines) and not lines[start]:
            start += 1
        end = len(lines)
        while end > start and not lines[end - 1]:
            end -= 1
        return lines[start:end]

    @classmethod
    def clean(cls, content: str) -> str:
        """清洗整个内容，返回换行符连接的字符串"""
        return "\n".join(cls.clean_lines(content))

    @staticmethod
    def checksum(content: str) -> str:
        """原始内容的 MD5，用于变化检测"""
        return hashlib.md5(content.encode("utf-8")).hexdigest()
