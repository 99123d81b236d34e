"""SprintStress engine — the action-and-scenario simulation core.

- StateParser: typed snapshots parsed from text read off the page
- AppStateProbe: Playwright adapter owning every UI-contract string and selector
- GameActions: the atomic action library, one instance per browser session
- Personas: per-role behavioral loops and their pure decision rules
- BrowserSession: one isolated Playwright browser per persona thread
- SprintStressOrchestrator: bounded concurrent execution and run artifacts
- ReportGenerator: Markdown report generation from run results
- SanityChecker: live round-trip checks of trades, contracts and loans
"""

from sprintstress.engine.game_actions import GameActions
from sprintstress.engine.orchestrator import SprintStressOrchestrator, assign_roles
from sprintstress.engine.personas import (
    PERSONAS,
    Persona,
    PersonaAbortedError,
    PersonaRunStats,
    PersonaState,
    create_persona,
)
from sprintstress.engine.protocols import CancelToken, StateProbe, UIControl
from sprintstress.engine.report_generator import Finding, PersonaReport, ReportGenerator, RunResult
from sprintstress.engine.sanity import CheckResult, SanityChecker
from sprintstress.engine.session import BrowserSession
from sprintstress.engine.state_parser import AssetSnapshot, ContractBook, ContractPosition

__all__ = [
    "AssetSnapshot",
    "BrowserSession",
    "CancelToken",
    "CheckResult",
    "ContractBook",
    "ContractPosition",
    "Finding",
    "GameActions",
    "PERSONAS",
    "Persona",
    "PersonaAbortedError",
    "PersonaReport",
    "PersonaRunStats",
    "PersonaState",
    "ReportGenerator",
    "RunResult",
    "SanityChecker",
    "SprintStressOrchestrator",
    "StateProbe",
    "UIControl",
    "assign_roles",
    "create_persona",
]
