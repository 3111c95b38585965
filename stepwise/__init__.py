"""
Stepwise

Plan-and-execute orchestration for repository questions: an orchestrator
turns a request into a dependency-ordered plan, dispatches each step to a
role-specialised worker, persists knowledge at memory checkpoints and
summarizes the results.

Integration:
- Custom LLM clients via the LLMClient protocol (Azure, AWS Bedrock, Ollama, internal APIs)
- Custom workers via WorkerRegistry.register
"""

__version__ = "0.1.0"

from .errors import (
    StepwiseError,
    PlanGenerationError,
    SchemaValidationError,
    PlanParseError,
    RegistryError,
    UnknownWorkerRoleError,
    WorkerNotRegisteredError,
    ContextDecodeError,
    ToolError,
)
from .llm_client import LLMClient, Message, ChatResponse, TokenUsage, SimpleLLMClient
from .config import StepwiseConfig, get_config, set_config, reset_config
from .openrouter_client import OpenRouterClient, OpenRouterError
from .providers import create_llm_client

from .plan_parser import WorkerRole, Plan, Step, StepResult, MemoryCheckpoint, parse_plan
from .state_manager import ExecutionContext
from .registry import Worker, WorkerRegistry
from .context_policy import ContextPolicy, Visibility

from .plan_generator import PlanGenerator
from .execution_engine import StepScheduler, ExecutionReport
from .checkpoints import MemoryCheckpointTrigger
from .summarizer import ResultSummarizer
from .plan_adapter import PlanAdapter
from .orchestrator import OrchestratorAgent, create_orchestrator

from .sub_agent import SubAgent
from .workers import build_default_registry

__all__ = [
    # Errors
    "StepwiseError",
    "PlanGenerationError",
    "SchemaValidationError",
    "PlanParseError",
    "RegistryError",
    "UnknownWorkerRoleError",
    "WorkerNotRegisteredError",
    "ContextDecodeError",
    "ToolError",

    # LLM clients
    "LLMClient",
    "SimpleLLMClient",
    "OpenRouterClient",
    "OpenRouterError",
    "create_llm_client",
    "Message",
    "ChatResponse",
    "TokenUsage",

    # Config
    "StepwiseConfig",
    "get_config",
    "set_config",
    "reset_config",

    # Plan model
    "WorkerRole",
    "Plan",
    "Step",
    "StepResult",
    "MemoryCheckpoint",
    "parse_plan",

    # State
    "ExecutionContext",
    "ContextPolicy",
    "Visibility",

    # Registry and workers
    "Worker",
    "WorkerRegistry",
    "SubAgent",
    "build_default_registry",

    # Engine
    "PlanGenerator",
    "StepScheduler",
    "ExecutionReport",
    "MemoryCheckpointTrigger",
    "ResultSummarizer",
    "PlanAdapter",
    "OrchestratorAgent",
    "create_orchestrator",
]
