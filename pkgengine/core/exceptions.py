"""统一异常体系

所有业务异常继承 PkgEngineError，每类异常对应错误分类中的一种：
网络 / 完整性 / 签名 / 注册表 / 安装。调度器和解析器把单包异常
转换为该包的 FAILED 结果，CLI 层据此输出友好提示。
"""

from __future__ import annotations


class PkgEngineError(Exception):
    """引擎基础异常"""

    code: str = "UNKNOWN"

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ConfigError(PkgEngineError):
    """配置文件或环境变量内容无效"""

    code = "CONFIG_ERROR"


class RegistryError(PkgEngineError):
    """包不在源注册表中，或注册记录非法（不可重试）"""

    code = "REGISTRY_ERROR"


class AcquisitionError(PkgEngineError):
    """无法获得制品（如离线且缓存缺失）"""

    code = "ACQUISITION_ERROR"


class NetworkError(AcquisitionError):
    """超时、拒绝连接、HTTP 错误：重试耗尽后抛出"""

    code = "NETWORK_ERROR"

    def __init__(self, message: str, attempts: int = 0) -> None:
        super().__init__(message)
        self.attempts = attempts


class IntegrityError(AcquisitionError):
    """校验和不匹配或归档损坏，文件已删除"""

    code = "INTEGRITY_ERROR"


class SignatureError(PkgEngineError):
    """签名校验失败（仅告警，不阻断安装）"""

    code = "SIGNATURE_ERROR"


class InstallationError(PkgEngineError):
    """平台安装器返回非零退出码"""

    code = "INSTALLATION_ERROR"


class ValidationError(PkgEngineError, ValueError):
    """输入数据校验失败"""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, details: list[str] | None = None) -> None:
        super().__init__(message)
        self.details = details or []
