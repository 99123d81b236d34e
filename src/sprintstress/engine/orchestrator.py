"""SprintStress Orchestrator — The main coordinator for load-test runs.

Resolves registered credentials, assigns them to persona roles, checks the
target is reachable, then launches every persona in its own browser session
on a bounded worker pool. A failure inside one session is caught at the
session boundary and recorded; it never stops sibling personas. Results are
written as run-status.json, run-result.json and report.md under the run's
evidence directory.
"""

from __future__ import annotations

import dataclasses
import datetime as dt
import json
import logging
import os
import random
import signal
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Any, Callable

import requests

from sprintstress.config import StressConfig
from sprintstress.credentials import Credential, CredentialStore
from sprintstress.engine.personas import Persona, PersonaAbortedError, PersonaState, create_persona
from sprintstress.engine.protocols import CancelToken
from sprintstress.engine.report_generator import Finding, PersonaReport, ReportGenerator, RunResult
from sprintstress.engine.session import BrowserSession
from sprintstress.models import ROLE_LABELS, ROLES

logger = logging.getLogger("sprintstress.engine.orchestrator")

PREFLIGHT_TIMEOUT_SECONDS = 10

# PersonaReport.error prefix -> (severity, category); anything else is a crash
_ERROR_KINDS = {
    "aborted": ("high", "bootstrap"),
    "cancelled": ("high", "interrupted"),
}


@dataclasses.dataclass(frozen=True)
class PersonaAssignment:
    """One persona slot: role, display label and the account it plays."""

    role: str
    label: str
    index: int
    credential: Credential

    @property
    def slug(self) -> str:
        return f"{self.index:02d}-{self.role}-{self.credential.username}"


def assign_roles(config: StressConfig, store: CredentialStore) -> list[PersonaAssignment]:
    """Give each role its share of the credential pool, in role order.

    Accounts are taken by running index; an index past the end of the pool
    falls back to the first registered account.
    """
    assignments: list[PersonaAssignment] = []
    index = 0
    for role in ROLES:
        count = config.user_distribution.get(role, 0)
        for n in range(count):
            label = ROLE_LABELS[role] if count == 1 else f"{ROLE_LABELS[role]}{n + 1}"
            assignments.append(PersonaAssignment(role, label, index, store.pick(index)))
            index += 1
    return assignments


class SprintStressOrchestrator:
    """Coordinates a complete SprintStress run: assign, preflight, execute, report."""

    def __init__(
        self,
        config: StressConfig,
        store: CredentialStore | None = None,
        session_factory: Callable[[StressConfig], Any] = BrowserSession,
        persona_factory: Callable[..., Persona] = create_persona,
        preflight: bool = True,
    ) -> None:
        """
        Args:
            config: StressConfig instance with all paths and settings.
            store: Credential pool; defaults to ``config.users_file``.
            session_factory: Builds one browser session per persona.
            persona_factory: Builds the persona loop for a role.
            preflight: Check the target URL before launching personas.
        """
        self._config = config
        self._store = store or CredentialStore(config.users_file)
        self._session_factory = session_factory
        self._persona_factory = persona_factory
        self._preflight = preflight
        self._report_generator = ReportGenerator()
        self._cancel = CancelToken()

    @property
    def cancel_token(self) -> CancelToken:
        return self._cancel

    # ── Process Management ──────────────────────────────────────────────

    def _install_signal_handlers(self) -> Any:
        """Turn SIGTERM into a cancel request. Returns the previous handler."""
        if threading.current_thread() is not threading.main_thread():
            return None

        def _handle_term(signum: int, frame: Any) -> None:
            logger.info("Received signal %d — requesting graceful shutdown", signum)
            self._cancel.cancel()

        return signal.signal(signal.SIGTERM, _handle_term)

    @staticmethod
    def _restore_signal_handlers(previous: Any) -> None:
        if previous is not None:
            signal.signal(signal.SIGTERM, previous)

    @staticmethod
    def _write_status_file(
        evidence_dir: Path,
        status: str,
        run_id: str,
        start_time: str,
        end_time: str | None = None,
        passed: bool | None = None,
    ) -> None:
        """Write or update the run-status.json file."""
        data: dict[str, Any] = {
            "status": status,
            "pid": os.getpid(),
            "start_time": start_time,
            "run_id": run_id,
        }
        if end_time is not None:
            data["end_time"] = end_time
        if passed is not None:
            data["passed"] = passed
        try:
            (evidence_dir / "run-status.json").write_text(json.dumps(data, indent=2))
        except Exception as exc:
            logger.warning("Failed to write run-status.json: %s", exc)

    # ── Run ─────────────────────────────────────────────────────────────

    def run(self) -> tuple[str, bool, RunResult]:
        """Execute a full run.

        Returns:
            (markdown report, all personas passed, structured result)

        Raises:
            StressConfigError: The distribution is invalid or no credentials exist.
        """
        self._config.validate()
        assignments = assign_roles(self._config, self._store)

        run_id = self._generate_run_id()
        start_iso = dt.datetime.now(dt.timezone.utc).isoformat(timespec="seconds")
        started = time.monotonic()
        evidence_dir = self._config.evidence_dir / run_id
        evidence_dir.mkdir(parents=True, exist_ok=True)
        logger.info(
            "SprintStress run %s starting — %d personas, concurrency %d, target %s",
            run_id, len(assignments), self._config.concurrency, self._config.base_url,
        )
        self._write_status_file(evidence_dir, "running", run_id, start_iso)

        previous_handler = self._install_signal_handlers()
        reports: list[PersonaReport] = []
        findings: list[Finding] = []
        try:
            preflight_errors = self._check_preconditions() if self._preflight else []
            if preflight_errors:
                for error in preflight_errors:
                    logger.error("Preflight failed: %s", error)
                    findings.append(Finding("block", "preflight", error, "", "-"))
            else:
                reports = self._run_personas(assignments, evidence_dir)
                for report in reports:
                    findings.extend(self._findings_for(report))
        finally:
            self._restore_signal_handlers(previous_handler)

        passed = not preflight_errors and bool(reports) and all(r.passed for r in reports)
        end_iso = dt.datetime.now(dt.timezone.utc).isoformat(timespec="seconds")
        result = RunResult(
            run_id=run_id,
            base_url=self._config.base_url,
            passed=passed,
            start_time=start_iso,
            end_time=end_iso,
            duration_seconds=round(time.monotonic() - started, 2),
            total_users=self._config.total_users,
            max_concurrency=self._config.concurrency,
            persona_reports=reports,
            findings=findings,
            distribution=dict(self._config.user_distribution),
        )
        report_md = self._report_generator.generate(result)
        self._save_run_artifacts(result, report_md, evidence_dir)
        self._write_status_file(
            evidence_dir, "completed" if passed else "failed", run_id, start_iso, end_time=end_iso, passed=passed
        )
        logger.info("SprintStress run %s finished — %s", run_id, "PASS" if passed else "FAIL")
        return report_md, passed, result

    def _run_personas(self, assignments: list[PersonaAssignment], evidence_dir: Path) -> list[PersonaReport]:
        results: dict[int, PersonaReport] = {}
        futures: dict[Any, PersonaAssignment] = {}
        pool = ThreadPoolExecutor(max_workers=self._config.concurrency, thread_name_prefix="persona")
        try:
            futures = {
                pool.submit(self._run_persona, assignment, evidence_dir / assignment.slug): assignment
                for assignment in assignments
            }
            for future in as_completed(futures):
                assignment = futures[future]
                results[assignment.index] = future.result()
        except KeyboardInterrupt:
            logger.info("Interrupted — letting in-flight actions finish")
            pool.shutdown(wait=False, cancel_futures=True)
            self._cancel.cancel()
            pool.shutdown(wait=True)
            for future, assignment in futures.items():
                if future.done() and not future.cancelled():
                    results[assignment.index] = future.result()
            for assignment in assignments:
                if assignment.index not in results:
                    results[assignment.index] = self._cancelled_report(assignment)
        finally:
            pool.shutdown(wait=True)
        return [results[i] for i in sorted(results)]

    @staticmethod
    def _cancelled_report(assignment: PersonaAssignment) -> PersonaReport:
        """Report for a persona the interrupt dropped before it ran."""
        return PersonaReport(
            role=assignment.role,
            label=assignment.label,
            username=assignment.credential.username,
            passed=False,
            duration_seconds=0.0,
            final_state=PersonaState.LOGGING_IN.value,
            stop_reason="interrupted",
            error="cancelled: run interrupted before this persona started",
        )

    def _run_persona(self, assignment: PersonaAssignment, evidence_dir: Path) -> PersonaReport:
        """Run one persona in its own session. Never raises."""
        username = assignment.credential.username
        started = time.monotonic()
        persona: Persona | None = None
        error: str | None = None
        session = self._session_factory(self._config)
        try:
            session.start()
            actions = session.actions(username, evidence_dir=evidence_dir, cancel=self._cancel)
            persona = self._persona_factory(
                assignment.role, actions, assignment.credential, self._config, cancel=self._cancel
            )
            persona.run()
        except PersonaAbortedError as exc:
            logger.error("%s aborted: %s", assignment.label, exc.reason)
            error = f"aborted: {exc.reason}"
        except Exception as exc:
            logger.exception("%s crashed", assignment.label)
            error = f"{type(exc).__name__}: {exc}"
        finally:
            session.stop()

        stats = persona.stats if persona is not None else None
        return PersonaReport(
            role=assignment.role,
            label=assignment.label,
            username=username,
            passed=error is None,
            duration_seconds=round(time.monotonic() - started, 2),
            final_state=(persona.state if persona is not None else PersonaState.LOGGING_IN).value,
            stop_reason=stats.stop_reason if stats else "",
            error=error,
            iterations=stats.iterations if stats else 0,
            successes=dict(stats.successes) if stats else {},
            failures=dict(stats.failures) if stats else {},
            anomalies=list(stats.anomalies) if stats else [],
            screenshots=sorted(str(p) for p in evidence_dir.glob("*.png")) if evidence_dir.exists() else [],
        )

    @staticmethod
    def _findings_for(report: PersonaReport) -> list[Finding]:
        findings: list[Finding] = []
        evidence = report.screenshots[-1] if report.screenshots else ""
        if report.error:
            kind = report.error.split(":", 1)[0]
            severity, category = _ERROR_KINDS.get(kind, ("critical", "crash"))
            findings.append(
                Finding(
                    severity=severity,
                    category=category,
                    description=report.error,
                    evidence=evidence,
                    persona=report.label,
                )
            )
        for anomaly in report.anomalies:
            findings.append(Finding("medium", "consistency", anomaly, "", report.label))
        for action, count in sorted(report.failures.items()):
            findings.append(Finding("low", "action", f"{action} failed {count} time(s)", "", report.label))
        return findings

    # ── Preconditions ───────────────────────────────────────────────────

    def _check_preconditions(self) -> list[str]:
        """GET the frontend; unreachable or 5xx blocks the run."""
        url = self._config.base_url
        try:
            resp = requests.get(url, timeout=PREFLIGHT_TIMEOUT_SECONDS)
        except requests.RequestException as exc:
            return [f"Target unreachable: {exc} (URL: {url})"]
        if resp.status_code >= 500:
            return [f"Target returned {resp.status_code} (URL: {url})"]
        return []

    # ── Utilities ────────────────────────────────────────────────────────

    @staticmethod
    def _save_run_artifacts(result: RunResult, report: str, evidence_dir: Path) -> None:
        """Save the run result as JSON and markdown artifacts."""
        try:
            result_json_path = evidence_dir / "run-result.json"
            result_json_path.write_text(
                json.dumps(dataclasses.asdict(result), indent=2, ensure_ascii=False), encoding="utf-8"
            )
            logger.info("Saved run result JSON to %s", result_json_path)
        except Exception as exc:
            logger.warning("Failed to save run-result.json: %s", exc)

        try:
            report_path = evidence_dir / "report.md"
            report_path.write_text(report, encoding="utf-8")
            logger.info("Saved markdown report to %s", report_path)
        except Exception as exc:
            logger.warning("Failed to save report.md: %s", exc)

    @staticmethod
    def _generate_run_id() -> str:
        """Generate a unique run ID."""
        ts = dt.datetime.now(dt.timezone.utc).strftime("%Y%m%d-%H%M%S")
        suffix = "".join(random.choices("abcdefghijklmnopqrstuvwxyz0123456789", k=4))
        return f"SS-RUN-{ts}-{suffix}"
