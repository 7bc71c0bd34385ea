"""
[V5.0] 配置管理器
- 全局版本库别名 (data/projects.json)
- 项目级默认值 (data/<Project>/config.json)
"""

import os
import json
import logging
from typing import Dict, Any, Optional
from urllib.parse import urlparse

from errors import ValidationError

logger = logging.getLogger(__name__)

PROJECTS_JSON_FILE = "projects.json"
CONFIG_JSON_FILE = "config.json"

# 项目 config.json 中允许出现的键及其期望类型
PROJECT_CONFIG_KEYS = {
    "default_formats": list,
    "default_include_ext": list,
    "default_exclude_ext": list,
    "default_exclude_paths": list,
    "default_failure_policy": str,
    "default_workers": int,
    "default_per_revision": bool,
    "default_ignore_whitespace": bool,
    "default_ignore_eol": bool,
}

REMOTE_SCHEMES = ("http://", "https://", "svn://", "svn+ssh://", "file://")


def is_remote_repository(repository: str) -> bool:
    return repository.startswith(REMOTE_SCHEMES)


def _read_json(path: str) -> Dict[str, Any]:
    if not os.path.exists(path):
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        raise ValidationError(f"无法读取配置文件 {path}: {e}")
    if not isinstance(data, dict):
        raise ValidationError(f"配置文件 {path} 的顶层必须是 JSON 对象")
    return data


def _write_json(path: str, data: Dict[str, Any]):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=4, ensure_ascii=False, sort_keys=True)


def load_project_aliases(data_root_path: str) -> Dict[str, str]:
    """加载全局别名文件 (data/projects.json)"""
    return _read_json(os.path.join(data_root_path, PROJECTS_JSON_FILE))


def save_project_alias(data_root_path: str, alias: str, repository: str):
    """保存 (或覆盖) 一个别名"""
    if not alias or not alias.strip():
        raise ValidationError("别名不能为空")
    aliases = load_project_aliases(data_root_path)
    aliases[alias.strip()] = repository
    _write_json(os.path.join(data_root_path, PROJECTS_JSON_FILE), aliases)
    logger.info(f"✅ 别名 '{alias}' -> {repository} 已保存至 {PROJECTS_JSON_FILE}")


def get_path_from_alias(data_root_path: str, alias: str) -> Optional[str]:
    """通过别名获取版本库 URL / 路径"""
    return load_project_aliases(data_root_path).get(alias)


def get_project_data_path(data_root_path: str, repository: str) -> str:
    """根据版本库 URL 或本地路径得到项目数据目录"""
    if is_remote_repository(repository):
        path = urlparse(repository).path.rstrip("/")
        project_name = os.path.basename(path) or urlparse(repository).netloc
    else:
        project_name = os.path.basename(os.path.abspath(repository).rstrip(os.sep))
    if not project_name or project_name == ".":
        project_name = "current_dir_project"
    return os.path.join(data_root_path, project_name)


def load_project_config(project_data_path: str) -> Dict[str, Any]:
    """
    加载项目配置 (data/<Project>/config.json)。
    未知的键会被忽略并给出警告；类型不符时抛出 ValidationError。
    """
    config_path = os.path.join(project_data_path, CONFIG_JSON_FILE)
    raw = _read_json(config_path)
    config: Dict[str, Any] = {}
    for key, value in raw.items():
        expected = PROJECT_CONFIG_KEYS.get(key)
        if expected is None:
            logger.warning(f"⚠️ 忽略 {config_path} 中未知的配置项: {key}")
            continue
        if expected is int and isinstance(value, bool):
            raise ValidationError(f"{config_path}: {key} 必须是 int")
        if not isinstance(value, expected):
            raise ValidationError(f"{config_path}: {key} 必须是 {expected.__name__}")
        config[key] = value
    return config


def save_project_config(project_data_path: str, config_data: Dict[str, Any]):
    """保存项目配置 (只写入已知的键)"""
    known = {k: v for k, v in config_data.items() if k in PROJECT_CONFIG_KEYS}
    _write_json(os.path.join(project_data_path, CONFIG_JSON_FILE), known)
    logger.info(f"✅ 项目配置已保存至 {project_data_path}/{CONFIG_JSON_FILE}")
