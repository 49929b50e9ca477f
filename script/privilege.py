import os
import threading
import common


def find_existing_parent(path: str) -> str:
    """查找路径自身或最近的已存在的祖先目录

    Args:
        path (str): 要检查的路径

    Returns:
        str: 已存在的路径
    """
    path = os.path.abspath(path)
    while not os.path.exists(path):
        parent = os.path.dirname(path)
        if parent == path:
            break
        path = parent
    return path


def need_elevation(path: str) -> bool:
    """判断写入指定路径是否需要提升权限

    Args:
        path (str): 安装目录

    Returns:
        bool: 当前用户无法写入时返回True
    """
    return not os.access(find_existing_parent(path), os.W_OK)


class privilege:
    """当安装目录不可写时使用sudo执行修改安装目录的命令，并在后台定期刷新sudo凭据"""

    enabled: bool  # 是否需要sudo
    refresh_interval: float  # 刷新凭据的间隔，单位为秒
    _stop_event: threading.Event
    _thread: threading.Thread | None

    def __init__(self, prefix: str, enabled: bool | None = None, refresh_interval: float = 60.0) -> None:
        self.enabled = need_elevation(prefix) if enabled is None else enabled
        self.refresh_interval = refresh_interval
        self._stop_event = threading.Event()
        self._thread = None

    def wrap(self, command: str) -> str:
        """为修改安装目录的命令添加sudo前缀

        Args:
            command (str): 原命令

        Returns:
            str: 需要提权时返回带sudo的命令，否则返回原命令
        """
        # sudo会重置PATH，需要显式传递以便使用prefix中的工具
        return f'sudo env "PATH=$PATH" {command}' if self.enabled else command

    def _refresh_loop(self) -> None:
        while not self._stop_event.wait(self.refresh_interval):
            common.run_command("sudo -n -v", ignore_error=True, echo=False)

    def start(self) -> None:
        """获取sudo凭据并启动后台刷新线程"""
        if not self.enabled or self._thread is not None:
            return
        print("[toolchains] Install directory is not writable, using sudo for install steps.")
        common.run_command("sudo -v")
        if common.command_dry_run.get():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._refresh_loop, name="sudo-refresh", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """停止后台刷新线程"""
        if self._thread is None:
            return
        self._stop_event.set()
        self._thread.join()
        self._thread = None

    def __enter__(self) -> "privilege":
        self.start()
        return self

    def __exit__(self, *_) -> None:
        self.stop()
