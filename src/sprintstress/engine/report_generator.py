"""SprintStress Report Generator — Produces run report artifacts in markdown format.

Generates a structured markdown report from a run result: per-persona
verdicts and action counters, findings, and failure screenshots.
"""

from __future__ import annotations

import dataclasses


@dataclasses.dataclass
class Finding:
    """A finding from a run -- represents an issue or observation."""

    severity: str  # block, critical, high, medium, low
    category: str  # preflight, bootstrap, interrupted, crash, consistency, action
    description: str
    evidence: str  # path to screenshot or relevant data
    persona: str


@dataclasses.dataclass
class PersonaReport:
    """Outcome of one persona session."""

    role: str
    label: str  # "User A" ...
    username: str
    passed: bool
    duration_seconds: float
    final_state: str
    stop_reason: str = ""
    error: str | None = None
    iterations: int = 0
    successes: dict[str, int] = dataclasses.field(default_factory=dict)
    failures: dict[str, int] = dataclasses.field(default_factory=dict)
    anomalies: list[str] = dataclasses.field(default_factory=list)
    screenshots: list[str] = dataclasses.field(default_factory=list)


@dataclasses.dataclass
class RunResult:
    """Complete result of a SprintStress run."""

    run_id: str
    base_url: str
    passed: bool
    start_time: str
    end_time: str
    duration_seconds: float
    total_users: int
    max_concurrency: int
    persona_reports: list[PersonaReport]
    findings: list[Finding]
    distribution: dict[str, int] = dataclasses.field(default_factory=dict)


class ReportGenerator:
    """Generates markdown reports from run results."""

    def generate(self, result: RunResult) -> str:
        """Generate a complete report in markdown format.

        Args:
            result: The RunResult to report on.

        Returns:
            Complete markdown report as a string.
        """
        sections = [
            self._header(result),
            self._summary(result),
            self._persona_table(result),
            self._action_counters(result),
            self._anomalies(result),
            self._findings_table(result),
            self._screenshots_section(result),
        ]
        return "\n\n".join(s for s in sections if s)

    def _header(self, r: RunResult) -> str:
        verdict = "PASS" if r.passed else "FAIL"
        distribution = ", ".join(f"{role}={count}" for role, count in r.distribution.items() if count)
        return (
            f"# SprintStress Report: {r.run_id}\n"
            f"\n"
            f"**Target:** {r.base_url}\n"
            f"**Users:** {r.total_users} ({distribution or '-'})\n"
            f"**Concurrency:** {r.max_concurrency}\n"
            f"**Date:** {r.start_time}\n"
            f"**Verdict:** {verdict}"
        )

    def _summary(self, r: RunResult) -> str:
        passed_count = sum(1 for p in r.persona_reports if p.passed)
        total_count = len(r.persona_reports)
        iterations = sum(p.iterations for p in r.persona_reports)
        ok_actions = sum(sum(p.successes.values()) for p in r.persona_reports)
        failed_actions = sum(sum(p.failures.values()) for p in r.persona_reports)
        return (
            f"## Summary\n"
            f"- Personas: {passed_count}/{total_count} passed\n"
            f"- Iterations: {iterations}\n"
            f"- Actions: {ok_actions} succeeded, {failed_actions} failed\n"
            f"- Duration: {r.duration_seconds:.1f}s"
        )

    def _persona_table(self, r: RunResult) -> str:
        if not r.persona_reports:
            return "## Personas\n\nNo personas were launched."
        lines = [
            "## Personas",
            "| Persona | Role | User | Result | Iterations | Duration | Notes |",
            "|---------|------|------|--------|------------|----------|-------|",
        ]
        for p in r.persona_reports:
            result_str = "PASS" if p.passed else "FAIL"
            notes = p.error or p.stop_reason or ""
            if len(notes) > 80:
                notes = notes[:77] + "..."
            lines.append(
                f"| {p.label} | {p.role} | {p.username} | {result_str} | {p.iterations} "
                f"| {p.duration_seconds:.1f}s | {notes} |"
            )
        return "\n".join(lines)

    def _action_counters(self, r: RunResult) -> str:
        rows: list[tuple[str, str, int, int]] = []
        for p in r.persona_reports:
            for action in sorted(set(p.successes) | set(p.failures)):
                rows.append((p.label, action, p.successes.get(action, 0), p.failures.get(action, 0)))
        if not rows:
            return "## Actions\n\nNo actions recorded."
        lines = [
            "## Actions",
            "| Persona | Action | OK | Failed |",
            "|---------|--------|----|--------|",
        ]
        for label, action, ok, failed in rows:
            lines.append(f"| {label} | {action} | {ok} | {failed} |")
        return "\n".join(lines)

    def _anomalies(self, r: RunResult) -> str:
        all_obs: list[tuple[str, str]] = []
        for p in r.persona_reports:
            for obs in p.anomalies:
                all_obs.append((p.label, obs))
        if not all_obs:
            return ""
        lines = ["## State Anomalies", ""]
        for label, obs in all_obs:
            lines.append(f"- **{label}**: {obs}")
        return "\n".join(lines)

    def _findings_table(self, r: RunResult) -> str:
        if not r.findings:
            return "## Findings\n\nNo findings."
        lines = [
            "## Findings",
            "| Severity | Category | Description | Persona | Evidence |",
            "|----------|----------|-------------|---------|----------|",
        ]
        for f in r.findings:
            desc = f.description.replace("\n", " ")
            if len(desc) > 80:
                desc = desc[:77] + "..."
            evidence = f.evidence if f.evidence else "-"
            lines.append(f"| {f.severity} | {f.category} | {desc} | {f.persona} | {evidence} |")
        return "\n".join(lines)

    def _screenshots_section(self, r: RunResult) -> str:
        all_screenshots: list[tuple[str, str]] = []
        for p in r.persona_reports:
            for ss in p.screenshots:
                all_screenshots.append((p.label, ss))
        if not all_screenshots:
            return "## Screenshots\n\nNo screenshots captured."
        lines = ["## Screenshots", ""]
        for label, path in all_screenshots:
            lines.append(f"- **{label}**: `{path}`")
        return "\n".join(lines)
