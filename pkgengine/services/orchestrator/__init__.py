"""安装编排器模块

拆分说明:
- models.py: 状态、运行上下文、状态转移判定
- steps.py: 4 个步骤实现
- orchestrator.py: 状态机驱动
"""

from pkgengine.services.orchestrator.models import OrchestratorState, RunContext
from pkgengine.services.orchestrator.orchestrator import InstallOrchestrator
from pkgengine.services.orchestrator.steps import InstallSteps

__all__ = [
    "InstallOrchestrator",
    "InstallSteps",
    "OrchestratorState",
    "RunContext",
]
