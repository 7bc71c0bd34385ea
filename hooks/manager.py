import importlib.util
import inspect
import logging
import os
from types import ModuleType
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple, Type

from context import RunContext
from .base import BasePlugin

logger = logging.getLogger(__name__)


def discover_plugin_classes(module: ModuleType) -> List[Type[BasePlugin]]:
    """返回模块中自己定义的 BasePlugin 子类 (忽略 import 进来的)"""
    return [
        obj
        for _, obj in inspect.getmembers(module, inspect.isclass)
        if issubclass(obj, BasePlugin)
        and obj is not BasePlugin
        and obj.__module__ == module.__name__
    ]


class PluginManager:
    """
    [V5.0] 插件管理器
    从 plugins/ 目录加载插件，并按注册顺序分发钩子。
    插件抛出的异常只记录日志，永远不会中断统计流程。
    """

    def __init__(self, context: RunContext):
        self.context = context
        self.plugins: List[BasePlugin] = []
        self.failures: Dict[str, int] = {}

    def load_plugins(self, plugins_dir: Optional[str] = None) -> int:
        """加载目录下所有 .py 插件 (按文件名排序)，返回加载到的插件数量"""
        if plugins_dir is None:
            cfg = self.context.global_config
            plugins_dir = os.path.join(cfg.SCRIPT_BASE_PATH, cfg.PLUGINS_DIR_NAME)

        if not os.path.isdir(plugins_dir):
            # 目录不存在则跳过，这不是错误
            return 0

        logger.debug(f"🔌 [Hooks] 正在扫描插件目录: {plugins_dir}")
        before = len(self.plugins)
        for filename in sorted(os.listdir(plugins_dir)):
            if filename.endswith(".py") and not filename.startswith("__"):
                self._load_plugin_file(os.path.join(plugins_dir, filename))
        return len(self.plugins) - before

    def _load_plugin_file(self, filepath: str):
        module_name = f"churn_plugin_{os.path.splitext(os.path.basename(filepath))[0]}"
        try:
            spec = importlib.util.spec_from_file_location(module_name, filepath)
            if not spec or not spec.loader:
                return
            module = importlib.util.module_from_spec(spec)
            spec.loader.exec_module(module)
            classes = discover_plugin_classes(module)
            for plugin_cls in classes:
                self.register(plugin_cls())
        except Exception as e:
            logger.error(f"❌ [Hooks] 加载插件失败 {filepath}: {e}")
            return

        if not classes:
            logger.warning(f"   ⚠️ [Hooks] 文件 {filepath} 中未发现 BasePlugin 子类")

    def register(self, plugin: BasePlugin):
        """手动注册插件实例"""
        self.plugins.append(plugin)
        logger.info(f"   ✅ [Hooks] 已加载插件: {plugin.name}")

    def _hooks(self, event_name: str) -> Iterator[Tuple[BasePlugin, Callable]]:
        for plugin in self.plugins:
            method = getattr(plugin, event_name, None)
            if callable(method):
                yield plugin, method

    def _report_failure(self, plugin: BasePlugin, event_name: str, error: Exception):
        self.failures[plugin.name] = self.failures.get(plugin.name, 0) + 1
        logger.error(f"❌ [Hooks] 插件 {plugin.name} 执行 {event_name} 失败: {error}")

    def trigger(self, event_name: str, *args, **kwargs):
        """通知型钩子：依次调用，忽略返回值"""
        for plugin, method in self._hooks(event_name):
            try:
                method(self.context, *args, **kwargs)
            except Exception as e:
                self._report_failure(plugin, event_name, e)

    def filter(self, event_name: str, initial_value: Any, *args, **kwargs) -> Any:
        """
        链式处理型钩子：初始值依次经过每个插件。
        插件返回 None 或抛出异常时保持上一个值。
        """
        value = initial_value
        for plugin, method in self._hooks(event_name):
            try:
                new_value = method(self.context, value, *args, **kwargs)
            except Exception as e:
                self._report_failure(plugin, event_name, e)
                continue
            if new_value is not None:
                value = new_value
        return value
