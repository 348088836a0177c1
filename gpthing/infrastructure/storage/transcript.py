"""纯文本对话记录（只追加）。"""

from datetime import datetime
from pathlib import Path
from typing import Optional

from gpthing.domain.exceptions import BusinessError

# 非对话事件（例如重置会话）使用的说话人
NOTE_SPEAKER = "--"


class TranscriptWriter:
    """把每轮对话以 "<说话人>: <内容>" 的形式追加到文本文件。

    每次进程运行写一个新文件；只追加，不回读，不用于恢复会话。
    """

    def __init__(self, root: str | Path, started_at: Optional[datetime] = None):
        self._root = Path(root).resolve()
        try:
            self._root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise BusinessError(code="STORE_WRITE_ERROR", message=str(e))
        stamp = (started_at or datetime.now()).strftime("%Y%m%d-%H%M%S")
        self.path = self._root / f"{stamp}.txt"

    def append(self, speaker: str, text: str) -> None:
        try:
            with self.path.open("a", encoding="utf-8") as f:
                f.write(f"{speaker}: {text}\n\n")
        except OSError as e:
            raise BusinessError(code="STORE_WRITE_ERROR", message=str(e))
