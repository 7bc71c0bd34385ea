"""
[V5.0] 全局配置
- 从 .env 加载 svn 凭据、超时与并发等运行参数
"""
import os
from dotenv import load_dotenv


# --- 脚本基础路径 ---
SCRIPT_BASE_PATH = os.path.abspath(os.path.dirname(__file__))
env_path = os.path.join(SCRIPT_BASE_PATH, ".env")
if os.path.exists(env_path):
    load_dotenv(env_path)
else:
    load_dotenv()


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "")
    try:
        return int(raw) if raw.strip() else default
    except ValueError:
        return default


class GlobalConfig:
    """
    (V5.0) 代码变更统计的全局应用配置。
    """

    # --- 路径配置 ---
    SCRIPT_BASE_PATH: str = SCRIPT_BASE_PATH
    DATA_ROOT_DIR_NAME: str = "data"
    PLUGINS_DIR_NAME: str = "plugins"
    TEMPLATES_DIR_NAME: str = "templates"

    # --- svn 命令 ---
    # 以 argv 列表形式调用，不经过 shell
    SVN_BINARY: str = os.getenv("CHURN_SVN_BINARY", "svn")
    SVN_LOG_ARGS = ["log", "--non-interactive", "-r", "{from_rev}:{to_rev}", "{repository}"]
    SVN_DIFF_ARGS = ["diff", "--non-interactive", "--internal-diff", "-c", "{revision}", "{repository}"]
    SVN_USERNAME: str = os.getenv("CHURN_SVN_USERNAME", "")
    SVN_PASSWORD: str = os.getenv("CHURN_SVN_PASSWORD", "")

    # Subversion 的修订号从 1 开始 (r0 是空的根修订)
    FIRST_REVISION: int = 1

    # --- 运行参数 ---
    SOURCE_TIMEOUT: int = _env_int("CHURN_SOURCE_TIMEOUT", 60)
    DEFAULT_WORKERS: int = _env_int("CHURN_WORKERS", 1)
    DEFAULT_FAILURE_POLICY: str = os.getenv("CHURN_FAILURE_POLICY", "abort").lower()
    FAILURE_POLICIES = ("abort", "skip")

    # --- 输出 ---
    OUTPUT_FILENAME_PREFIX = "ChurnReport"
    REPORT_FORMATS = ("console", "csv", "json", "markdown", "html")
    FORMAT_EXTENSIONS = {
        "console": "txt",
        "csv": "csv",
        "json": "json",
        "markdown": "md",
        "html": "html",
    }
    DEFAULT_FORMATS = ["console"]

    # --- 智能过滤 (--smart-filter) ---
    SMART_FILTER_PATTERNS: list[str] = [
        "*.lock",
        "**/package-lock.json",
        "**/pnpm-lock.yaml",
        "**/poetry.lock",
        "**/uv.lock",
        "**/dist/**",
        "**/build/**",
        "*.min.js",
        "*.min.css",
        "*.pyc",
        "**/__pycache__/**",
        "**/node_modules/**",
        "**/.idea/**",
        "**/.vscode/**",
    ]

    def svn_auth_args(self) -> list[str]:
        """为 svn 命令追加认证参数 (如已配置)"""
        if not self.SVN_USERNAME:
            return []
        args = ["--username", self.SVN_USERNAME]
        if self.SVN_PASSWORD:
            args += ["--password", self.SVN_PASSWORD]
        return args
